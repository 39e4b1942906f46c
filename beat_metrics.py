"""Continuous measures derived from the beat history."""

import numpy as np

from beat_detector import BeatDetector


class BeatIntensityTracker:
    """Pulse value that jumps to 1.0 on a beat and decays linearly after it.

    The decay is normalized to ``window_s`` and scaled by the detector's
    ``decay`` setting times ``gain``, so pulse length does not depend on the
    frame rate.
    """

    def __init__(self, detector: BeatDetector, window_s: float = 0.5, gain: float = 20.0):
        self.detector = detector
        self.window_s = window_s
        self.gain = gain

    def intensity(self, beat_detected: bool, now: float) -> float:
        history = self.detector.history
        if len(history) < 2:
            return 1.0 if beat_detected else 0.0

        if beat_detected:
            return 1.0

        elapsed = now - history.last.time
        normalized = min(1.0, elapsed / self.window_s) if self.window_s > 0 else 1.0
        return max(0.0, 1.0 - normalized * self.detector.settings.decay * self.gain)


class RhythmStabilityEstimator:
    """Tempo-independent steadiness score from inter-beat interval spread."""

    def __init__(self, detector: BeatDetector, min_beats: int = 4, default: float = 0.5):
        self.detector = detector
        self.min_beats = min_beats
        self.default = default

    def stability(self) -> float:
        history = self.detector.history
        if len(history) < self.min_beats:
            return self.default

        intervals = np.diff(np.asarray(history.times(), dtype=float))
        avg_interval = float(np.mean(intervals))
        if avg_interval <= 0.0:
            return 0.0

        # np.std is the population deviation: sqrt(mean((x - mean)^2))
        std_dev = float(np.std(intervals))
        normalized_deviation = min(1.0, std_dev / avg_interval)
        return 1.0 - normalized_deviation
