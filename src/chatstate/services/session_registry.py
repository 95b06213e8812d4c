"""Session registry with idle expiry."""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from ..models.session import Session, SessionInfo, SessionStatus
from .scheduler import RecurringTimer

logger = logging.getLogger(__name__)


class SessionRegistry:
    """Maps session ids to live session state and sweeps idle sessions.

    The session map is only ever mutated with single atomic dict operations
    (``setdefault``, ``pop``); per-session changes happen under that session's
    own lock. A session is only removed while its lock is held and only if it
    is still the registered instance, so a concurrent lookup either gets the
    full session or finds it absent and creates a new one.
    """

    def __init__(
        self,
        timeout_seconds: float = 1800.0,
        sweep_interval_seconds: float = 60.0,
        on_expire: Optional[Callable[[str], object]] = None,
    ):
        self.timeout_seconds = timeout_seconds
        self.sweep_interval_seconds = sweep_interval_seconds
        # called with the session id of every session the sweep removes
        self.on_expire = on_expire
        self._sessions: Dict[str, Session] = {}
        self._timer = RecurringTimer(sweep_interval_seconds, self.sweep, name="session-sweep")
        self.expired_total = 0

    def start(self) -> None:
        """Start the background sweep."""
        self._timer.start()
        logger.info(f"SessionRegistry started, session timeout: {self.timeout_seconds}s")

    def stop(self) -> None:
        self._timer.stop()

    @property
    def is_sweeping(self) -> bool:
        return self._timer.is_running

    def get_or_create(self, session_id: str) -> Session:
        """Return the session for ``session_id``, creating it if needed.

        An existing session has its last activity refreshed.
        """
        while True:
            session = self._sessions.get(session_id)
            if session is None:
                candidate = Session(session_id=session_id)
                session = self._sessions.setdefault(session_id, candidate)
                if session is candidate:
                    logger.info(
                        f"Created session {session_id}, active sessions: {len(self._sessions)}"
                    )
                    return session

            with session.lock:
                if self._sessions.get(session_id) is session:
                    session.touch()
                    logger.debug(f"Using existing session {session_id}")
                    return session
            # Removed between lookup and lock; go around and recreate it.

    def get(self, session_id: str) -> Optional[Session]:
        """Look up a session. A successful lookup counts as activity."""
        session = self._sessions.get(session_id)
        if session is None:
            logger.debug(f"Session {session_id} not found")
            return None

        with session.lock:
            if self._sessions.get(session_id) is not session:
                return None
            session.touch()
            return session

    def end(self, session_id: str) -> bool:
        """Remove a session immediately.

        Returns:
            True if a session was removed.
        """
        session = self._sessions.get(session_id)
        if session is None:
            return False

        with session.lock:
            if self._sessions.get(session_id) is not session:
                return False
            del self._sessions[session_id]
            session.status = SessionStatus.EXPIRED
        logger.info(f"Ended session {session_id}")
        return True

    def set_persona(self, session_id: str, persona_id: Optional[str]) -> bool:
        """Set the active persona for a session."""
        session = self.get(session_id)
        if session is None:
            return False
        with session.lock:
            session.active_persona_id = persona_id
        return True

    def sweep(self, now: Optional[datetime] = None) -> int:
        """Expire every session idle for longer than the timeout.

        Sessions quiet for more than one sweep interval are marked idle. The
        ``on_expire`` callback runs for each removed session after its lock is
        released; a failing callback is logged and does not stop the sweep.

        Returns:
            Number of sessions removed.
        """
        now = now or datetime.now()
        expired = []

        for session_id, session in list(self._sessions.items()):
            with session.lock:
                if self._sessions.get(session_id) is not session:
                    continue
                if session.is_expired(self.timeout_seconds, now):
                    del self._sessions[session_id]
                    session.status = SessionStatus.EXPIRED
                    expired.append(session_id)
                    logger.info(f"Expired idle session {session_id}")
                elif session.idle_seconds(now) > self.sweep_interval_seconds:
                    session.status = SessionStatus.IDLE

        if expired:
            self.expired_total += len(expired)
            logger.info(f"Sweep removed {len(expired)} sessions, {len(self._sessions)} remain")

        if self.on_expire is not None:
            for session_id in expired:
                try:
                    self.on_expire(session_id)
                except Exception as e:
                    logger.error(
                        f"Expiry callback failed for session {session_id}: {e}", exc_info=True
                    )
        return len(expired)

    def __contains__(self, session_id: str) -> bool:
        """Membership test that, unlike ``get``, does not count as activity."""
        return session_id in self._sessions

    def active_count(self) -> int:
        return len(self._sessions)

    def list_sessions(self) -> List[SessionInfo]:
        """Snapshots of all sessions, most recently active first."""
        snapshots = [s.snapshot() for s in list(self._sessions.values())]
        return sorted(snapshots, key=lambda s: s.last_active_at, reverse=True)

    def get_stats(self) -> Dict[str, Any]:
        """Get session registry statistics."""
        return {
            "active_sessions": len(self._sessions),
            "expired_total": self.expired_total,
            "timeout_seconds": self.timeout_seconds,
            "sweep_interval_seconds": self.sweep_interval_seconds,
            "sweeping": self.is_sweeping,
        }
