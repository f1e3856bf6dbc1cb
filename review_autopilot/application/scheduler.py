"""
Periodic Task - Cancellable Ticker
==================================

Runs a callable immediately and then every `interval_seconds` on a daemon
thread. stop() wakes the thread out of its wait; a run already in progress
is allowed to finish.
"""

import logging
import threading
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class PeriodicTask:
    """
    Usage:
        task = PeriodicTask(engine.run_cycle, interval_seconds=900, name="review-automation")
        task.start()
        ...
        task.stop()
    """

    def __init__(self, target: Callable[[], object], interval_seconds: float, name: str = "periodic-task"):
        self._target = target
        self.interval_seconds = interval_seconds
        self.name = name
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> bool:
        """Start ticking. Returns False if already running."""
        with self._lock:
            if self.is_running:
                return False
            self._stop_event = threading.Event()
            self._thread = threading.Thread(
                target=self._run, args=(self._stop_event,), name=self.name, daemon=True
            )
            self._thread.start()
            return True

    def stop(self, timeout: Optional[float] = None) -> None:
        """
        Cancel future runs. With a timeout, wait that long for an in-flight
        run to finish.
        """
        with self._lock:
            thread = self._thread
            self._stop_event.set()
            self._thread = None

        if thread is not None and timeout is not None and thread is not threading.current_thread():
            thread.join(timeout)

    def _run(self, stop_event: threading.Event) -> None:
        while not stop_event.is_set():
            try:
                self._target()
            except Exception:
                logger.exception(f"{self.name}: run failed")
            if stop_event.wait(self.interval_seconds):
                break
        logger.debug(f"{self.name}: stopped")
