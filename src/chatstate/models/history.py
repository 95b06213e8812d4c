"""Transcript data models and the on-disk record format."""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


class StorageLayout(str, Enum):
    """Where a transcript is written."""

    LIVE = "live"  # sessions/{session_id}_history.json
    ARCHIVE = "archive"  # conversations/YYYY/MM/DD/{session_id}_{YYYYMMDD_HHMMSS}.json


@dataclass
class ChatMessage:
    """A single role-tagged message in a transcript.

    ``type`` and ``metadata`` carry transport details (streaming flags and the
    like); they are dropped when the message is persisted.
    """

    role: str  # "user", "assistant", "system"
    content: str
    timestamp: datetime = field(default_factory=datetime.now)
    type: str = "text"
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_record(self) -> Dict[str, str]:
        """Convert to the persisted ``{timestamp, role, content}`` shape."""
        return {
            "timestamp": self.timestamp.strftime(TIMESTAMP_FORMAT),
            "role": self.role,
            "content": self.content,
        }

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "ChatMessage":
        """Build a message from a persisted record.

        An unparsable timestamp is replaced with the current time.
        """
        raw_timestamp = record.get("timestamp")
        try:
            timestamp = datetime.strptime(str(raw_timestamp), TIMESTAMP_FORMAT)
        except ValueError:
            logger.debug(f"Unparsable timestamp {raw_timestamp!r}, using now")
            timestamp = datetime.now()
        return cls(
            role=str(record.get("role") or "unknown"),
            content=str(record.get("content") or ""),
            timestamp=timestamp,
        )

    @property
    def is_blank(self) -> bool:
        return not self.content or not self.content.strip()


@dataclass(frozen=True)
class ArchivedConversation:
    """One archive snapshot read back from disk."""

    session_id: str
    path: str
    saved_at: Optional[datetime]
    messages: List[ChatMessage]


@dataclass
class HistoryStats:
    """Aggregate counters over the live layout and in-memory buffers."""

    total_sessions: int = 0
    total_messages: int = 0
    total_file_size: int = 0
    active_conversations: int = 0

    @property
    def formatted_file_size(self) -> str:
        size = self.total_file_size
        if size < 1024:
            return f"{size} B"
        if size < 1024 * 1024:
            return f"{size / 1024:.1f} KB"
        return f"{size / (1024 * 1024):.1f} MB"
