"""Composition root wiring sessions, memories and history together."""

import logging
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from ..config import EngineConfig
from ..models.history import ChatMessage
from ..models.memory import MemoryStats, RetrievalResult
from ..models.session import SessionInfo
from ..services.history import HistoryPersistence
from ..services.memory_store import MemoryStore
from ..services.session_registry import SessionRegistry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TurnRecord:
    """Outcome of recording one turn."""

    session: SessionInfo
    saved: bool
    memories_added: int = 0


@dataclass(frozen=True)
class EngineStats:
    active_sessions: int
    active_conversations: int
    memory_sessions: int
    running: bool


class ConversationStateEngine:
    """Handles every inbound turn for the transport layer.

    Each turn refreshes the session, updates long-term memory and appends
    to the transcript. Memory retrieval and history lookups never raise.
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        registry: Optional[SessionRegistry] = None,
        memory: Optional[MemoryStore] = None,
        history: Optional[HistoryPersistence] = None,
    ):
        self.config = config or EngineConfig()
        self.registry = registry or SessionRegistry(
            timeout_seconds=self.config.session_timeout_seconds,
            sweep_interval_seconds=self.config.sweep_interval_seconds,
        )
        self.memory = memory or MemoryStore(
            capacity=self.config.memory_capacity,
            retrieval_limit=self.config.retrieval_limit,
        )
        self.history = history or HistoryPersistence(
            sessions_dir=self.config.sessions_dir,
            conversations_dir=self.config.conversations_dir,
            archive_search_days=self.config.archive_search_days,
        )
        self.registry.on_expire = self._on_session_expired
        self._executor: Optional[ThreadPoolExecutor] = None
        self._running = False

    # Lifecycle

    def start(self) -> "ConversationStateEngine":
        """Start the session sweep and the turn worker pool."""
        if self._running:
            return self
        self.registry.start()
        self._executor = ThreadPoolExecutor(
            max_workers=self.config.worker_threads, thread_name_prefix="turn-worker"
        )
        self._running = True
        logger.info(f"Engine started with {self.config.worker_threads} turn workers")
        return self

    def shutdown(self, wait: bool = True) -> None:
        """Stop the workers and the sweep."""
        if not self._running:
            return
        self._running = False
        if self._executor is not None:
            self._executor.shutdown(wait=wait)
            self._executor = None
        self.registry.stop()
        logger.info("Engine stopped")

    def __enter__(self) -> "ConversationStateEngine":
        return self.start()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown()

    # Boundary operations

    def get_or_create_session(self, session_id: Optional[str] = None) -> SessionInfo:
        """Get a session snapshot, creating the session if needed."""
        session_id = session_id or f"sess_{uuid.uuid4().hex[:12]}"
        return self.registry.get_or_create(session_id).snapshot()

    def record_turn(
        self,
        session_id: str,
        role: str,
        text: str,
        timestamp: Optional[datetime] = None,
    ) -> TurnRecord:
        """Record one message: session activity, memory extraction, transcript."""
        session = self.registry.get_or_create(session_id)
        message = ChatMessage(role=role, content=text, timestamp=timestamp or datetime.now())
        with session.lock:
            session.add_tokens(text)
            if not self.history.has_buffer(session_id):
                # Pick up where an earlier process left off
                seed = self.history.load_history(session_id)
                self.history.start_conversation(session_id, seed=seed)
            self.history.add_message(session_id, message)

        try:
            added = len(self.memory.update(session_id, text))
        except Exception as e:
            logger.error(f"Memory update failed for session {session_id}: {e}", exc_info=True)
            added = 0

        saved = False
        if self.config.save_every_turn:
            saved = self.history.flush(session_id) is not None

        logger.debug(f"Recorded {role} turn for {session_id}, {added} memories added")
        return TurnRecord(session=session.snapshot(), saved=saved, memories_added=added)

    def submit_turn(
        self, session_id: str, role: str, text: str, timestamp: Optional[datetime] = None
    ) -> "Future[TurnRecord]":
        """Queue ``record_turn`` on the worker pool."""
        if self._executor is None:
            raise RuntimeError("Engine is not running; call start() first")
        return self._executor.submit(self.record_turn, session_id, role, text, timestamp)

    def retrieve_memory(self, session_id: str, query: str) -> str:
        """Formatted memory digest for a query, possibly empty."""
        return self.retrieve_memory_result(session_id, query).summary_text

    def retrieve_memory_result(self, session_id: str, query: str) -> RetrievalResult:
        try:
            return self.memory.retrieve_result(session_id, query)
        except Exception as e:
            logger.error(f"Memory retrieval failed for session {session_id}: {e}", exc_info=True)
            return RetrievalResult()

    def end_session(self, session_id: str) -> Optional[str]:
        """Flush the transcript to both layouts and drop the session.

        Returns:
            The archive path, or None if there was nothing to archive.
        """
        archive_path = self.history.end_conversation(session_id)
        self.registry.end(session_id)
        self.history.release(session_id)
        return archive_path

    def _on_session_expired(self, session_id: str) -> None:
        """Archive the transcript of a swept session and drop its locks.

        Memories are kept; they outlive sessions and are bounded per session
        by the memory capacity.
        """
        if session_id in self.registry:
            # a new turn recreated the session before cleanup ran
            return
        if self.history.has_buffer(session_id):
            self.history.end_conversation(session_id)
        self.history.release(session_id)
        logger.debug(f"Cleaned up expired session {session_id}")

    def get_history(self, session_id: str) -> List[ChatMessage]:
        try:
            return self.history.load_history(session_id)
        except Exception as e:
            logger.error(f"History lookup failed for session {session_id}: {e}", exc_info=True)
            return []

    # Extras

    def set_persona(self, session_id: str, persona_id: Optional[str]) -> bool:
        return self.registry.set_persona(session_id, persona_id)

    def memory_stats(self, session_id: str) -> MemoryStats:
        return self.memory.stats(session_id)

    def get_stats(self) -> EngineStats:
        return EngineStats(
            active_sessions=self.registry.active_count(),
            active_conversations=self.history.active_conversation_count(),
            memory_sessions=self.memory.session_count(),
            running=self._running,
        )
