"""Qt host binding: tick the pipeline from the Qt event loop."""

from typing import Callable, Optional

from PyQt6.QtCore import QTimer

from logging_utils import log_event


class QtTickScheduler:
    """Ties ticks to the host Qt event loop through a ``QTimer``.

    Needs a running ``QCoreApplication`` (or ``QApplication``) for the timer
    to fire.
    """

    def __init__(self, interval_ms: float = 16.0):
        self.interval_ms = interval_ms
        self.running = False
        self.timer: Optional[QTimer] = None
        self._callback: Optional[Callable[[], object]] = None

    def start(self, callback: Callable[[], object]) -> None:
        if self.running:
            return
        self._callback = callback
        self.timer = QTimer()
        self.timer.timeout.connect(self._on_timeout)
        self.timer.start(max(1, int(round(self.interval_ms))))
        self.running = True
        log_event("INFO", "Scheduler", "Qt scheduler started", interval_ms=self.interval_ms)

    def stop(self) -> None:
        if not self.running:
            return
        self.running = False
        if self.timer is not None:
            self.timer.stop()
            self.timer.timeout.disconnect(self._on_timeout)
            self.timer = None
        log_event("INFO", "Scheduler", "Qt scheduler stopped")

    def _on_timeout(self) -> None:
        if not self.running or self._callback is None:
            return
        try:
            self._callback()
        except Exception as e:
            log_event("ERROR", "Scheduler", "Tick callback error", error=e)
