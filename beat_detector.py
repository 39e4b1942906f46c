"""
bandpulse - Beat Detector
Refines raw candidate beats against an adaptive bass-energy threshold and a
refractory interval, and keeps the bounded history every downstream
estimator reads.
"""

from collections import deque
from dataclasses import dataclass
from typing import Iterator, List, Optional

from config import BeatDetectionConfig
from logging_utils import log_event


@dataclass(frozen=True)
class BeatEvent:
    """A confirmed beat"""
    time: float      # Monotonic timestamp (seconds)
    energy: float    # Bass energy at detection
    power: float     # Average power at detection


class BeatHistory:
    """Time-ascending FIFO of the most recent beats.

    Backed by a ``deque`` with ``maxlen`` so appending past capacity drops
    index 0 without reallocating.
    """
    __slots__ = ('_events',)

    def __init__(self, maxlen: int = 30):
        self._events: deque[BeatEvent] = deque(maxlen=max(1, int(maxlen)))

    @property
    def maxlen(self) -> int:
        return self._events.maxlen

    def append(self, event: BeatEvent) -> None:
        self._events.append(event)

    def clear(self) -> None:
        self._events.clear()

    @property
    def last(self) -> Optional[BeatEvent]:
        return self._events[-1] if self._events else None

    def times(self) -> List[float]:
        return [event.time for event in self._events]

    def recent_energies(self, count: int) -> List[float]:
        if count <= 0:
            return []
        return [event.energy for event in list(self._events)[-count:]]

    def __len__(self) -> int:
        return len(self._events)

    def __iter__(self) -> Iterator[BeatEvent]:
        return iter(self._events)

    def __getitem__(self, index: int) -> BeatEvent:
        return self._events[index]


class BeatDetector:
    """
    Confirms beats from an upstream candidate signal.

    A candidate becomes a beat when the refractory interval since the last
    beat has passed and the bass energy clears the current threshold. With
    ``adaptive_threshold`` on and more than ``adaptive_window`` beats stored,
    the threshold follows the energy of recent beats instead of the static
    setting, so the detector tracks loudness changes across a track.
    """

    def __init__(self, settings: Optional[BeatDetectionConfig] = None,
                 history: Optional[BeatHistory] = None,
                 adaptive_window: int = 5, adaptive_scale: float = 0.8):
        self.settings = settings if settings is not None else BeatDetectionConfig()
        self.history = history if history is not None else BeatHistory()
        self.adaptive_window = adaptive_window
        self.adaptive_scale = adaptive_scale

    @property
    def last_beat_time(self) -> float:
        last = self.history.last
        return last.time if last is not None else 0.0

    def current_threshold(self) -> float:
        """Threshold the next candidate has to clear."""
        cfg = self.settings
        if cfg.adaptive_threshold and len(self.history) > self.adaptive_window:
            recent = self.history.recent_energies(self.adaptive_window)
            return (sum(recent) / len(recent)) * self.adaptive_scale
        return cfg.threshold

    def in_refractory(self, now: float) -> bool:
        # An empty history never vetoes
        if len(self.history) == 0:
            return False
        return (now - self.last_beat_time) < self.settings.minimum_time

    def detect(self, candidate: bool, bass_energy: float,
               average_power: float, now: float) -> bool:
        """Return True and record a BeatEvent when ``candidate`` is confirmed."""
        if self.in_refractory(now):
            return False

        threshold = self.current_threshold()
        if candidate and bass_energy > threshold:
            self.history.append(BeatEvent(now, bass_energy, average_power))
            log_event(
                "DEBUG",
                "BEAT",
                "Beat confirmed",
                energy=f"{bass_energy:.4f}",
                threshold=f"{threshold:.4f}",
                power=f"{average_power:.4f}",
                history=len(self.history),
            )
            return True
        return False

    def reset(self) -> None:
        """Forget all beats."""
        self.history.clear()
