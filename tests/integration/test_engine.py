"""Integration tests for the conversation state engine."""

import os
from datetime import date, timedelta
from unittest.mock import patch

import pytest

from chatstate.config import EngineConfig
from chatstate.core.engine import ConversationStateEngine
from chatstate.models.session import SessionStatus


class TestConversationStateEngine:
    """Integration tests for ConversationStateEngine."""

    @pytest.fixture
    def engine(self, config):
        """Engine over a temporary data directory."""
        engine = ConversationStateEngine(config)
        yield engine
        engine.shutdown()

    def test_generated_session_id(self, engine):
        """Test a session id is generated when none is given."""
        info = engine.get_or_create_session()

        assert info.session_id.startswith("sess_")
        assert info.status == SessionStatus.ACTIVE
        assert engine.get_stats().active_sessions == 1

    def test_turns_build_memory_and_history(self, engine):
        """Test one user turn feeds the session, memory and transcript."""
        record = engine.record_turn("S1", "user", "我叫小明，我喜欢打篮球")

        assert record.saved is True
        assert record.memories_added == 2
        assert record.session.token_count_estimate == len("我叫小明，我喜欢打篮球") // 4
        assert engine.retrieve_memory("S1", "篮球") == "- 我喜欢打篮球\n- 我叫小明"
        assert [m.content for m in engine.get_history("S1")] == ["我叫小明，我喜欢打篮球"]
        assert os.path.exists(engine.history.live_path("S1"))

    def test_assistant_thinking_not_remembered(self, engine):
        """Test reasoning blocks in assistant turns are skipped by memory."""
        engine.record_turn("S1", "assistant", "<think>I am planning a reply</think>Sure thing.")

        assert engine.memory_stats("S1").total == 0
        assert len(engine.get_history("S1")) == 1

    def test_token_estimate_accumulates(self, engine):
        """Test each turn adds a rough token count."""
        engine.record_turn("S1", "user", "a" * 40)
        record = engine.record_turn("S1", "assistant", "b" * 20)

        assert record.session.token_count_estimate == 15

    def test_end_session_archives_and_removes(self, engine):
        """Test ending a session writes the archive and forgets the session."""
        engine.record_turn("S1", "user", "Hello there")
        engine.record_turn("S1", "assistant", "Hi, how can I help?")

        archive_path = engine.end_session("S1")

        assert archive_path is not None
        assert os.path.exists(archive_path)
        assert engine.registry.get("S1") is None
        assert engine.history.has_buffer("S1") is False
        assert [m.role for m in engine.get_history("S1")] == ["user", "assistant"]

    def test_sweep_archives_and_releases_session(self, engine):
        """Test an idle-expired session leaves no buffer or locks behind."""
        engine.record_turn("S1", "user", "我叫小明，我喜欢打篮球")
        session = engine.registry.get("S1")

        removed = engine.registry.sweep(now=session.last_active_at + timedelta(hours=2))

        assert removed == 1
        assert engine.history.active_conversation_count() == 0
        assert "S1" not in engine.history._buffer_locks
        assert "S1" not in engine.history._file_locks
        archived = engine.history.get_conversations_by_date(date.today())
        assert [c.session_id for c in archived] == ["S1"]
        # memories outlive the session
        assert engine.retrieve_memory("S1", "篮球").startswith("- 我喜欢打篮球")

    def test_sweep_skips_cleanup_for_recreated_session(self, engine):
        """Test cleanup leaves a session alone once a new turn brought it back."""
        engine.record_turn("S1", "user", "hello")
        engine.registry.end("S1")
        engine.record_turn("S1", "user", "back again")

        engine._on_session_expired("S1")

        assert engine.history.has_buffer("S1")
        assert [m.content for m in engine.get_history("S1")] == ["hello", "back again"]

    def test_end_session_releases_locks(self, engine):
        """Test an explicitly ended session drops its history locks."""
        engine.record_turn("S1", "user", "hello")

        engine.end_session("S1")

        assert len(engine.history._buffer_locks) == 0
        assert len(engine.history._file_locks) == 0

    def test_restart_picks_up_history(self, config):
        """Test a new engine continues an earlier transcript from disk."""
        first = ConversationStateEngine(config)
        first.record_turn("S1", "user", "first message")

        second = ConversationStateEngine(config)
        second.record_turn("S1", "assistant", "second message")

        contents = [m.content for m in ConversationStateEngine(config).get_history("S1")]
        assert contents == ["first message", "second message"]

    def test_save_every_turn_disabled(self, tmp_path):
        """Test turns stay buffered until the session ends."""
        config = EngineConfig(data_dir=str(tmp_path / "data"), save_every_turn=False)
        engine = ConversationStateEngine(config)

        record = engine.record_turn("S1", "user", "hello")

        assert record.saved is False
        assert not os.path.exists(engine.history.live_path("S1"))
        engine.end_session("S1")
        assert os.path.exists(engine.history.live_path("S1"))

    def test_retrieve_memory_never_raises(self, engine):
        """Test retrieval failures degrade to an empty digest."""
        with patch.object(engine.memory, "retrieve_result", side_effect=RuntimeError("boom")):
            assert engine.retrieve_memory("S1", "anything") == ""
            assert engine.retrieve_memory_result("S1", "anything").is_empty

    def test_get_history_never_raises(self, engine):
        """Test history failures degrade to an empty list."""
        with patch.object(engine.history, "load_history", side_effect=OSError("disk gone")):
            assert engine.get_history("S1") == []

    def test_memory_failure_does_not_block_turn(self, engine):
        """Test a memory error still records the message."""
        with patch.object(engine.memory, "update", side_effect=RuntimeError("boom")):
            record = engine.record_turn("S1", "user", "My name is Alice and I like tea")

        assert record.memories_added == 0
        assert len(engine.get_history("S1")) == 1

    def test_submit_turn_requires_start(self, engine):
        """Test queued turns need the worker pool."""
        with pytest.raises(RuntimeError):
            engine.submit_turn("S1", "user", "hello")

    def test_submit_turn_runs_on_workers(self, engine):
        """Test queued turns for one session all land in the transcript."""
        engine.start()

        futures = [engine.submit_turn("S1", "user", f"message {i}") for i in range(20)]
        records = [f.result(timeout=5) for f in futures]

        assert all(r.saved for r in records)
        contents = sorted(m.content for m in engine.get_history("S1"))
        assert contents == sorted(f"message {i}" for i in range(20))

    def test_context_manager(self, config):
        """Test the engine starts and stops around a with block."""
        with ConversationStateEngine(config) as engine:
            assert engine.get_stats().running is True
            assert engine.registry.is_sweeping is True

        assert engine.get_stats().running is False
        assert engine.registry.is_sweeping is False

    def test_set_persona(self, engine):
        """Test persona changes are visible in the session snapshot."""
        engine.get_or_create_session("S1")

        assert engine.set_persona("S1", "tutor") is True
        assert engine.get_or_create_session("S1").active_persona_id == "tutor"
        assert engine.set_persona("missing", "tutor") is False
