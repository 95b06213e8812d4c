"""Data models for the conversational state engine."""

from .history import ArchivedConversation, ChatMessage, HistoryStats, StorageLayout
from .memory import MemoryItem, MemoryStats, MemoryType, RetrievalResult
from .session import Session, SessionInfo, SessionStatus

__all__ = [
    "ArchivedConversation",
    "ChatMessage",
    "HistoryStats",
    "MemoryItem",
    "MemoryStats",
    "MemoryType",
    "RetrievalResult",
    "Session",
    "SessionInfo",
    "SessionStatus",
    "StorageLayout",
]
