"""Session-related data models."""

import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


class SessionStatus(str, Enum):
    """Lifecycle state of a session."""

    ACTIVE = "active"
    IDLE = "idle"
    EXPIRED = "expired"


@dataclass(frozen=True)
class SessionInfo:
    """Immutable snapshot of a session handed out to callers."""

    session_id: str
    created_at: datetime
    last_active_at: datetime
    status: SessionStatus
    token_count_estimate: int
    active_persona_id: Optional[str]


@dataclass
class Session:
    """One ongoing conversation tracked by the session registry."""

    session_id: str
    created_at: datetime = field(default_factory=datetime.now)
    last_active_at: Optional[datetime] = None
    status: SessionStatus = SessionStatus.ACTIVE
    token_count_estimate: int = 0
    active_persona_id: Optional[str] = None
    lock: threading.RLock = field(
        default_factory=threading.RLock, repr=False, compare=False
    )

    def __post_init__(self) -> None:
        if self.last_active_at is None or self.last_active_at < self.created_at:
            self.last_active_at = self.created_at

    def touch(self, now: Optional[datetime] = None) -> None:
        """Record activity on the session."""
        now = now or datetime.now()
        # last_active_at never moves behind created_at
        self.last_active_at = max(now, self.created_at)
        self.status = SessionStatus.ACTIVE

    def add_tokens(self, text: Optional[str]) -> int:
        """Grow the token estimate by a rough four-characters-per-token count."""
        if text:
            self.token_count_estimate += len(text) // 4
        return self.token_count_estimate

    def idle_seconds(self, now: Optional[datetime] = None) -> float:
        now = now or datetime.now()
        return (now - self.last_active_at).total_seconds()

    def is_expired(self, timeout_seconds: float, now: Optional[datetime] = None) -> bool:
        """Check whether the session has been idle longer than the timeout."""
        return self.idle_seconds(now) > timeout_seconds

    def snapshot(self) -> SessionInfo:
        with self.lock:
            return SessionInfo(
                session_id=self.session_id,
                created_at=self.created_at,
                last_active_at=self.last_active_at,
                status=self.status,
                token_count_estimate=self.token_count_estimate,
                active_persona_id=self.active_persona_id,
            )
