"""Recurring background timer."""

import logging
import threading
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class RecurringTimer:
    """Runs a callback on a fixed interval in a daemon thread.

    The first run happens one interval after ``start()``. Exceptions raised by
    the callback are logged and do not stop the timer; ``stop()`` does.
    """

    def __init__(
        self, interval_seconds: float, callback: Callable[[], object], name: str = "timer"
    ):
        if interval_seconds <= 0:
            raise ValueError(f"interval_seconds must be positive, got {interval_seconds}")
        self.interval_seconds = interval_seconds
        self.callback = callback
        self.name = name
        self.run_count = 0
        self.failure_count = 0
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the timer thread. Starting a running timer is a no-op."""
        with self._lock:
            if self.is_running:
                return
            self._stop_event.clear()
            self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
            self._thread.start()
        logger.info(f"Started {self.name} (every {self.interval_seconds}s)")

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        """Signal the timer to stop and wait for the thread to exit."""
        with self._lock:
            thread = self._thread
            self._stop_event.set()
            self._thread = None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
            logger.info(f"Stopped {self.name} after {self.run_count} runs")

    def _run(self) -> None:
        # wait() returns True once stop() sets the event
        while not self._stop_event.wait(self.interval_seconds):
            self.run_count += 1
            try:
                self.callback()
            except Exception as e:
                self.failure_count += 1
                logger.error(f"{self.name} callback failed: {e}", exc_info=True)
