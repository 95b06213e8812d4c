"""Service components for the conversational state engine."""

from .history import HistoryPersistence
from .locks import KeyedLocks
from .memory_store import MemoryStore
from .scheduler import RecurringTimer
from .session_registry import SessionRegistry

__all__ = [
    "HistoryPersistence",
    "KeyedLocks",
    "MemoryStore",
    "RecurringTimer",
    "SessionRegistry",
]
