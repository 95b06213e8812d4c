"""
Tests for the process entry point.
"""

import os
import threading
from unittest.mock import MagicMock, patch

import pytest

from chatstate.config import EngineConfig
from chatstate.main import build_engine, main


@pytest.fixture(autouse=True)
def mock_env_loading():
    """Keep a stray .env file from leaking into the tests."""
    with patch("chatstate.main.load_env_file"):
        yield


class TestBuildEngine:
    """Test engine construction."""

    def test_build_engine_from_config(self, config):
        """Test the engine uses the given config."""
        engine = build_engine(config)

        assert engine.config is config
        assert engine.history.sessions_dir == config.sessions_dir
        assert engine.memory.capacity == config.memory_capacity
        assert engine.registry.timeout_seconds == config.session_timeout_seconds

    def test_build_engine_from_env(self, tmp_path):
        """Test the engine reads the environment when no config is given."""
        env = {"CHATSTATE_DATA_DIR": str(tmp_path), "CHATSTATE_MEMORY_CAPACITY": "42"}
        with patch.dict(os.environ, env):
            engine = build_engine()

        assert engine.memory.capacity == 42
        assert engine.config.sessions_dir == os.path.join(str(tmp_path), "sessions")


class TestMain:
    """Test the main() loop."""

    def test_main_starts_and_stops(self, tmp_path):
        """Test a preset stop event runs start and shutdown once."""
        stop_event = threading.Event()
        stop_event.set()

        with patch.dict(os.environ, {"CHATSTATE_DATA_DIR": str(tmp_path)}):
            main(stop_event=stop_event)

        assert os.path.isdir(os.path.join(str(tmp_path), "sessions"))
        assert os.path.isdir(os.path.join(str(tmp_path), "conversations"))

    def test_main_logs_stats_each_interval(self, tmp_path):
        """Test each wakeup reports engine statistics."""
        stop_event = MagicMock()
        stop_event.wait.side_effect = [False, False, True]
        env = {"CHATSTATE_DATA_DIR": str(tmp_path), "CHATSTATE_SWEEP_INTERVAL": "5"}

        with patch.dict(os.environ, env):
            with patch("chatstate.main.ConversationStateEngine") as mock_engine_cls:
                main(stop_event=stop_event)

        engine = mock_engine_cls.return_value
        engine.start.assert_called_once()
        assert engine.get_stats.call_count == 2
        engine.shutdown.assert_called_once()
        stop_event.wait.assert_called_with(5.0)

    def test_main_handles_keyboard_interrupt(self, tmp_path):
        """Test Ctrl-C still shuts the engine down."""
        stop_event = MagicMock()
        stop_event.wait.side_effect = KeyboardInterrupt

        with patch.dict(os.environ, {"CHATSTATE_DATA_DIR": str(tmp_path)}):
            with patch("chatstate.main.ConversationStateEngine") as mock_engine_cls:
                main(stop_event=stop_event)

        mock_engine_cls.return_value.shutdown.assert_called_once()

    def test_main_invalid_config_exits(self, tmp_path):
        """Test a bad setting aborts with exit status 1."""
        env = {"CHATSTATE_DATA_DIR": str(tmp_path), "CHATSTATE_SESSION_TIMEOUT": "-1"}

        with patch.dict(os.environ, env):
            with pytest.raises(SystemExit) as exc_info:
                main(stop_event=threading.Event())

        assert exc_info.value.code == 1

    def test_main_loads_env_file_first(self, tmp_path):
        """Test the .env file is read before the config."""
        stop_event = threading.Event()
        stop_event.set()

        with patch.dict(os.environ, {"CHATSTATE_DATA_DIR": str(tmp_path)}):
            with patch("chatstate.main.load_env_file") as mock_load:
                main(stop_event=stop_event)

        mock_load.assert_called_once()

    def test_config_defaults_are_usable(self):
        """Test the default config passes validation."""
        assert EngineConfig().memory_capacity == 1000
