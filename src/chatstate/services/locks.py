"""Per-key locks."""

import threading
from typing import Dict


class KeyedLocks:
    """Hands out one re-entrant lock per key.

    Work on different keys never contends; work on the same key is serialized.
    Keys that are done with should be discarded so the map does not grow with
    every key ever seen.
    """

    def __init__(self):
        self._locks: Dict[str, threading.RLock] = {}

    def __call__(self, key: str) -> threading.RLock:
        lock = self._locks.get(key)
        if lock is None:
            # setdefault is atomic, so racing callers end up with the same lock
            lock = self._locks.setdefault(key, threading.RLock())
        return lock

    def discard(self, key: str) -> bool:
        """Forget the lock for ``key`` once its current holder releases it.

        Returns:
            True if a lock was removed.
        """
        lock = self._locks.get(key)
        if lock is None:
            return False
        with lock:
            if self._locks.get(key) is not lock:
                return False
            del self._locks[key]
        return True

    def __contains__(self, key: str) -> bool:
        return key in self._locks

    def __len__(self) -> int:
        return len(self._locks)
