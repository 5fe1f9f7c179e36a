"""Timer-driven background loop shared by the queue processors."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable

from offline_pos.errors import StorageError

logger = logging.getLogger(__name__)

FailureListener = Callable[[Any, Exception], None]


class ScheduledTask:
    """Runs run_once() on its own thread, re-armed after next_delay() seconds.

    Each task owns a private worker pool so a slow collaborator behind one
    queue cannot starve the other.
    """

    name = "task"

    def __init__(self, poll_interval: float, workers: int) -> None:
        self.poll_interval = poll_interval
        self.workers = workers
        self._executor: ThreadPoolExecutor | None = None
        self._executor_lock = threading.Lock()
        self._listeners: list[FailureListener] = []
        self._wake = threading.Event()
        self._stopping = threading.Event()
        self._thread: threading.Thread | None = None

    def run_once(self) -> Any:
        raise NotImplementedError

    def next_delay(self) -> float:
        return self.poll_interval

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def subscribe(self, listener: FailureListener) -> None:
        """Register a callback for terminal failures (record, error)."""
        self._listeners.append(listener)

    def _notify(self, record: Any, error: Exception) -> None:
        for listener in list(self._listeners):
            try:
                listener(record, error)
            except Exception:
                logger.exception("%s failure listener raised", self.name)

    def _pool(self) -> ThreadPoolExecutor:
        with self._executor_lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix=self.name)
            return self._executor

    def start(self) -> None:
        if self.running:
            return
        self._stopping.clear()
        self._thread = threading.Thread(target=self._loop, name=f"{self.name}-loop", daemon=True)
        self._thread.start()
        logger.info("%s loop started (interval %.1fs)", self.name, self.poll_interval)

    def wake(self) -> None:
        """Run the next cycle now instead of waiting out the interval."""
        self._wake.set()

    def stop(self, timeout: float | None = None) -> None:
        self._stopping.set()
        self._wake.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        with self._executor_lock:
            if self._executor is not None:
                self._executor.shutdown(wait=False, cancel_futures=True)
                self._executor = None
        logger.info("%s loop stopped", self.name)

    def _loop(self) -> None:
        reported = False
        while not self._stopping.is_set():
            try:
                self.run_once()
                reported = False
            except StorageError as exc:
                logger.error("%s cycle hit a storage failure: %s", self.name, exc)
                # Tell listeners once per outage, not on every poll.
                if not reported:
                    self._notify(None, exc)
                    reported = True
            except Exception:
                logger.exception("%s cycle failed", self.name)
            try:
                delay = self.next_delay()
            except Exception:
                logger.exception("%s could not compute next delay", self.name)
                delay = self.poll_interval
            self._wake.wait(max(0.0, delay))
            self._wake.clear()
