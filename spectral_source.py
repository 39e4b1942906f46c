"""
bandpulse - Spectral Sources
Turn magnitude spectra into band-energy snapshots.

Two sources ship with the pipeline:
  - SimulatedSpectralSource: oscillating test spectrum, no audio device
  - CaptureSpectralSource: live input through sounddevice (PortAudio)

Both expose ``initialized`` and ``update()``; ``update()`` returns a
BandEnergySnapshot or None when there is nothing new to analyse.
"""

import math
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Mapping, Optional

import numpy as np
from scipy.signal import butter, sosfilt, sosfilt_zi

from config import AudioConfig, Config
from frequency_utils import average_power, compute_band_energies, low_frequency_average
from logging_utils import log_event


# camelCase band names used by browser analyzers
_BAND_ALIASES = {"midLow": "mid_low", "highMid": "high_mid"}


def _pick(data: Mapping, name: str, alias: str):
    if name in data:
        return data[name]
    return data.get(alias)


@dataclass(frozen=True)
class BandEnergySnapshot:
    """Energy per band plus overall power for one sampling tick"""
    energy_by_band: Dict[str, float] = field(default_factory=dict)  # each 0.0-1.0
    average_power: float = 0.0                                     # 0.0-1.0
    beat_detected: bool = False                                    # Raw upstream candidate

    @classmethod
    def from_mapping(cls, data: Mapping) -> "BandEnergySnapshot":
        """Build a snapshot from a plain dict as produced by external analyzers.

        Keys may be snake_case or the camelCase used by browser analyzers
        (``energyByBand``, ``averagePower``, ``beatDetected``).
        """
        bands = _pick(data, "energy_by_band", "energyByBand")
        if bands is None:
            log_event("WARN", "Source", "Snapshot dict has no band energies",
                      keys=sorted(str(k) for k in data.keys()))
            bands = {}
        return cls(
            energy_by_band={_BAND_ALIASES.get(str(k), str(k)): float(v)
                            for k, v in bands.items()},
            average_power=float(_pick(data, "average_power", "averagePower") or 0.0),
            beat_detected=bool(_pick(data, "beat_detected", "beatDetected")),
        )


class SpectrumAnalyzer:
    """
    Shared spectrum -> snapshot logic.

    The candidate beat is a plain low-frequency level check: the average of
    the lowest bins must exceed ``candidate_threshold`` raised by the track
    energy hint, at least ``candidate_min_gap`` after the previous candidate.
    The flag stays up for ``candidate_hold`` seconds. The BeatDetector does
    the real refinement.
    """

    def __init__(self, config: Optional[Config] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.config = config if config is not None else Config()
        self.clock = clock
        self.initialized = False
        self._last_candidate_time: Optional[float] = None
        self._candidate = False

    @property
    def audio(self) -> AudioConfig:
        return self.config.audio

    def _candidate_beat(self, spectrum: np.ndarray, now: float) -> bool:
        cfg = self.audio
        low_avg = low_frequency_average(spectrum)
        threshold = cfg.candidate_threshold + cfg.track_energy * 0.1
        since_last = (now - self._last_candidate_time
                      if self._last_candidate_time is not None else math.inf)

        if low_avg > threshold and since_last > cfg.candidate_min_gap:
            self._candidate = True
            self._last_candidate_time = now
            return True

        if since_last > cfg.candidate_hold:
            self._candidate = False
        return self._candidate

    def analyze(self, spectrum: np.ndarray, sample_rate: int,
                now: Optional[float] = None) -> BandEnergySnapshot:
        """Build a snapshot from a spectrum normalized to 0-1."""
        now = self.clock() if now is None else now
        spectrum = np.clip(np.asarray(spectrum, dtype=float), 0.0, 1.0)
        return BandEnergySnapshot(
            energy_by_band=compute_band_energies(spectrum, sample_rate, self.config.bands),
            average_power=average_power(spectrum),
            beat_detected=self._candidate_beat(spectrum, now),
        )

    def set_track_energy(self, energy: float) -> None:
        """Track-level energy hint (0-1); louder tracks need stronger candidates."""
        self.audio.track_energy = min(1.0, max(0.0, float(energy)))


class SimulatedSpectralSource(SpectrumAnalyzer):
    """Generates a moving test spectrum so the pipeline runs without audio."""

    def __init__(self, config: Optional[Config] = None,
                 clock: Callable[[], float] = time.monotonic):
        super().__init__(config, clock)
        self._bins = np.arange(max(1, int(self.audio.simulated_bins)), dtype=float)

    def initialize(self) -> bool:
        self.initialized = True
        log_event("INFO", "Source", "Simulated source ready", bins=len(self._bins))
        return True

    def generate_spectrum(self, t: float) -> np.ndarray:
        """Byte-scale test spectrum at time ``t``, normalized to 0-1."""
        i = self._bins
        value = (
            128.0
            + 30.0 * np.sin(t * 2.0 + i * 0.05)
            + 20.0 * np.sin(t * 5.0 + i * 0.1)
            + 10.0 * np.sin(t * 13.0 + i * 0.2)
        )
        # Higher bins fall off for a more natural shape
        scale = 1.0 - (i / len(i)) * 0.5
        # Slow bass swell so the candidate check fires periodically
        swell = 80.0 * max(0.0, math.sin(t * 2.0 * math.pi))
        value = value * scale
        value[:max(1, len(i) // 32)] += swell
        return np.clip(value, 0.0, 255.0) / 255.0

    def update(self) -> Optional[BandEnergySnapshot]:
        if not self.initialized:
            return None
        now = self.clock()
        return self.analyze(self.generate_spectrum(now), self.audio.sample_rate, now)


class CaptureSpectralSource(SpectrumAnalyzer):
    """
    Live input capture.

    The sounddevice callback only stores the newest block under a lock;
    the FFT runs on the pipeline tick in ``update()``.
    """

    def __init__(self, config: Optional[Config] = None,
                 clock: Callable[[], float] = time.monotonic):
        super().__init__(config, clock)
        self.stream = None
        self.running = False
        self._block: Optional[np.ndarray] = None
        self._block_lock = threading.Lock()
        self._hanning_window: Optional[np.ndarray] = None
        self._smoothed: Optional[np.ndarray] = None
        self._sos = None
        self._zi = None

    def _init_highpass_filter(self) -> None:
        """Butterworth high-pass to strip DC and rumble before the FFT"""
        cutoff = self.audio.highpass_filter_hz
        if not cutoff or cutoff <= 0:
            self._sos = None
            return

        nyquist = self.audio.sample_rate / 2
        norm = max(0.001, min(0.99, cutoff / nyquist))
        try:
            self._sos = butter(4, norm, btype='highpass', output='sos')
            self._zi = None
            log_event("INFO", "Source", "Butterworth high-pass initialized", cutoff=f"{cutoff:.0f}")
        except ValueError as e:
            log_event("ERROR", "Source", "Failed to initialize high-pass filter", error=e)
            self._sos = None

    def initialize(self) -> bool:
        """Open the input stream; False when no device could be opened."""
        if self.running:
            return True
        try:
            import sounddevice as sd
        except (ImportError, OSError) as e:
            log_event("ERROR", "Source", "sounddevice unavailable", error=e)
            return False

        cfg = self.audio
        try:
            self.stream = sd.InputStream(
                samplerate=cfg.sample_rate,
                blocksize=cfg.buffer_size,
                device=cfg.device_index,
                channels=cfg.channels,
                dtype='float32',
                callback=self._audio_callback,
            )
            self.stream.start()
        except Exception as e:
            log_event("ERROR", "Source", "Failed to start capture", error=e)
            self.stream = None
            return False

        self._init_highpass_filter()
        self.running = True
        self.initialized = True
        log_event("INFO", "Source", "Capture started", sample_rate=cfg.sample_rate,
                  block=cfg.buffer_size, channels=cfg.channels)
        return True

    def _audio_callback(self, indata, frames, time_info, status) -> None:
        if status:
            log_event("DEBUG", "Source", "Stream status", status=status)
        block = np.asarray(indata, dtype=np.float32)
        mono = block.mean(axis=1) if block.ndim > 1 else block
        with self._block_lock:
            self._block = mono.copy()

    def feed(self, samples: np.ndarray) -> None:
        """Hand a block of samples in directly (file playback, tests)."""
        self._audio_callback(samples, len(samples), None, None)

    def _magnitude_spectrum(self, mono: np.ndarray) -> np.ndarray:
        cfg = self.audio
        if self._sos is not None:
            if self._zi is None:
                # Start the filter settled at the first sample
                self._zi = sosfilt_zi(self._sos) * mono[0]
            mono, self._zi = sosfilt(self._sos, mono, zi=self._zi)

        if self._hanning_window is None or len(self._hanning_window) != len(mono):
            self._hanning_window = np.hanning(len(mono)).astype(np.float32)

        spectrum = np.abs(np.fft.rfft(mono * self._hanning_window)) / max(1, len(mono))
        spectrum = spectrum * cfg.gain

        # Temporal smoothing, then decibels mapped onto 0-1
        if self._smoothed is None or len(self._smoothed) != len(spectrum):
            self._smoothed = spectrum
        else:
            tau = min(1.0, max(0.0, cfg.smoothing))
            self._smoothed = tau * self._smoothed + (1.0 - tau) * spectrum

        db = 20.0 * np.log10(np.maximum(self._smoothed, 1e-12))
        span = cfg.max_decibels - cfg.min_decibels
        if span <= 0:
            return np.zeros_like(db)
        return np.clip((db - cfg.min_decibels) / span, 0.0, 1.0)

    def update(self) -> Optional[BandEnergySnapshot]:
        with self._block_lock:
            block = self._block
            self._block = None
        if block is None or len(block) == 0:
            return None
        spectrum = self._magnitude_spectrum(block)
        return self.analyze(spectrum, self.audio.sample_rate)

    def stop(self) -> None:
        """Stop audio capture"""
        self.running = False
        self.initialized = False
        if self.stream is not None:
            self.stream.stop()
            self.stream.close()
            self.stream = None
        with self._block_lock:
            self._block = None
        self._smoothed = None
        self._zi = None
        log_event("INFO", "Source", "Capture stopped")
