"""Memory-related data models."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional, Tuple

MIN_IMPORTANCE = 1
MAX_IMPORTANCE = 10
MAX_KEYWORDS = 5


class MemoryType(str, Enum):
    """Kind of fact a memory item records."""

    PREFERENCE = "preference"
    FACT = "fact"
    RELATIONSHIP = "relationship"
    EVENT = "event"


def clamp_importance(value: int) -> int:
    """Clamp an importance score into the 1..10 range."""
    return max(MIN_IMPORTANCE, min(MAX_IMPORTANCE, int(value)))


def make_memory_id(session_id: str, memory_type: MemoryType, created_at: datetime) -> str:
    """Build a globally unique memory id from session, type and creation time."""
    stamp = created_at.strftime("%Y%m%d%H%M%S%f")
    return f"mem_{session_id}_{memory_type.value}_{stamp}_{uuid.uuid4().hex[:8]}"


@dataclass
class MemoryItem:
    """A durable fact extracted from conversation text."""

    session_id: str
    content: str
    type: MemoryType = MemoryType.EVENT
    importance: int = 5
    keywords: Tuple[str, ...] = ()
    created_at: datetime = field(default_factory=datetime.now)
    last_used_at: Optional[datetime] = None
    access_count: int = 0
    active: bool = True
    memory_id: str = ""

    def __post_init__(self) -> None:
        self.type = MemoryType(self.type)
        self.importance = clamp_importance(self.importance)
        self.keywords = tuple(self.keywords)[:MAX_KEYWORDS]
        if not self.memory_id:
            self.memory_id = make_memory_id(self.session_id, self.type, self.created_at)

    def mark_used(self, now: Optional[datetime] = None) -> None:
        """Record that a retrieval selected this item."""
        self.last_used_at = now or datetime.now()
        self.access_count += 1


@dataclass(frozen=True)
class MemoryStats:
    """Per-session memory counters."""

    total: int = 0
    active: int = 0
    evicted: int = 0


@dataclass(frozen=True)
class RetrievalResult:
    """Items selected by a retrieval and the digest built from them."""

    items: List[MemoryItem] = field(default_factory=list)
    summary_text: str = ""

    @property
    def is_empty(self) -> bool:
        return not self.items
