"""
bandpulse - Tick Schedulers
Drive ``FeaturePipeline.tick`` from a background thread.

Schedulers share one surface: ``start(callback)``, ``stop()`` and
``running``. The pipeline's own interval gate still decides whether a call
does any work, so a scheduler firing faster than the analysis interval is
harmless.
"""

import threading
import time
from typing import Callable, Optional

from logging_utils import log_event


class ThreadedTickScheduler:
    """Calls the tick callback every ``interval_ms`` on a daemon thread."""

    def __init__(self, interval_ms: float = 16.0):
        self.interval_ms = interval_ms
        self.running = False
        self.worker_thread: Optional[threading.Thread] = None
        self._callback: Optional[Callable[[], object]] = None
        self._stop_event: Optional[threading.Event] = None

    def start(self, callback: Callable[[], object]) -> None:
        if self.running:
            return
        self._callback = callback
        # One event per worker; a worker that outlived its join still sees its own set
        self._stop_event = threading.Event()
        self.running = True
        self.worker_thread = threading.Thread(target=self._worker_loop,
                                              args=(self._stop_event, callback),
                                              daemon=True, name="bandpulse-tick")
        self.worker_thread.start()
        log_event("INFO", "Scheduler", "Thread scheduler started", interval_ms=self.interval_ms)

    def stop(self, timeout: float = 1.0) -> None:
        if not self.running:
            return
        self.running = False
        if self._stop_event is not None:
            self._stop_event.set()
        thread = self.worker_thread
        # A tick that stops the pipeline runs on this thread; it cannot join itself
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
        self.worker_thread = None
        log_event("INFO", "Scheduler", "Thread scheduler stopped")

    def _worker_loop(self, stop_event: threading.Event, callback: Callable[[], object]) -> None:
        interval_s = max(0.001, self.interval_ms / 1000.0)
        next_due = time.monotonic()
        while not stop_event.is_set():
            try:
                callback()
            except Exception as e:
                log_event("ERROR", "Scheduler", "Tick callback error", error=e)

            next_due += interval_s
            delay = next_due - time.monotonic()
            if delay < 0:
                # Fell behind; resync instead of bursting to catch up
                next_due = time.monotonic()
                delay = 0.0
            stop_event.wait(delay)

