"""
bandpulse - Feature Pipeline
Pulls one spectral snapshot per tick, runs beat detection, intensity,
stability and feature mapping over it, and hands the resulting
FeatureRecord to the visualization consumer.
"""

import threading
import time
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from typing import Any, Callable, Dict, Mapping, Optional

from beat_detector import BeatDetector, BeatHistory
from beat_metrics import BeatIntensityTracker, RhythmStabilityEstimator
from config import BeatDetectionConfig, Config, FeatureMapping, coerce_value
from feature_mapper import FeatureMapper, total_energy
from logging_utils import log_event
from spectral_source import BandEnergySnapshot


class PipelineState(Enum):
    IDLE = "idle"
    ACTIVE = "active"
    STOPPED = "stopped"


@dataclass(frozen=True)
class FeatureRecord:
    """Everything the consumer gets for one tick"""
    snapshot: BandEnergySnapshot
    beat_detected: bool
    beat_intensity: float                 # 0.0-1.0
    visual_params: Dict[str, float] = field(default_factory=dict)
    total_energy: float = 0.0             # Mean of all band energies
    rhythm_stability: float = 0.5         # 0.0 = chaotic, 1.0 = perfectly steady
    timestamp: float = 0.0                # Monotonic time of the tick

    @property
    def energy_by_band(self) -> Dict[str, float]:
        return self.snapshot.energy_by_band

    @property
    def average_power(self) -> float:
        return self.snapshot.average_power

    def to_dict(self) -> Dict[str, Any]:
        return {
            "energy_by_band": dict(self.snapshot.energy_by_band),
            "average_power": self.snapshot.average_power,
            "beat_detected": self.beat_detected,
            "beat_intensity": self.beat_intensity,
            "visual_params": dict(self.visual_params),
            "total_energy": self.total_energy,
            "rhythm_stability": self.rhythm_stability,
            "timestamp": self.timestamp,
        }


class FeaturePipeline:
    """
    Drives the analysis at a fixed cadence.

    ``tick()`` is the only entry point that touches Beat History; it runs to
    completion under ``_lock``, and settings/mapping updates take the same
    lock, so they always land between ticks. The pipeline never stops itself:
    a failing source or consumer costs one tick and is logged.

    Args:
        source: object with ``initialized`` and ``update()`` returning a
            BandEnergySnapshot (or a dict with the same keys) or None
        consumer: object with ``initialized`` and ``update_audio_data(record)``
        config: application configuration (defaults when None)
        scheduler: optional tick driver with ``start(callback)``/``stop()``
        clock: monotonic time source in seconds
    """

    def __init__(self, source, consumer, config: Optional[Config] = None,
                 scheduler=None, clock: Callable[[], float] = time.monotonic):
        self.config = config if config is not None else Config()
        self.source = source
        self.consumer = consumer
        self.scheduler = scheduler
        self.clock = clock

        pcfg = self.config.pipeline
        self._lock = threading.RLock()
        self._state = PipelineState.IDLE
        self._last_analysis_time: Optional[float] = None

        self.detector = BeatDetector(
            replace(self.config.beat),
            BeatHistory(pcfg.beat_history_max),
            adaptive_window=pcfg.adaptive_window,
            adaptive_scale=pcfg.adaptive_scale,
        )
        self.intensity_tracker = BeatIntensityTracker(
            self.detector, window_s=pcfg.intensity_window_s, gain=pcfg.intensity_gain)
        self.stability_estimator = RhythmStabilityEstimator(
            self.detector, min_beats=pcfg.stability_min_beats, default=pcfg.stability_default)
        self.mapper = FeatureMapper(self.config.mapping, secondary_weight=pcfg.secondary_weight)

        self.connection_state = {
            'analyzer_initialized': False,
            'visualizer_initialized': False,
            'data_flow_active': False,
        }
        self._reset_session_stats()

    # ----- state machine -----

    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def is_active(self) -> bool:
        return self._state is PipelineState.ACTIVE

    def initialize(self) -> bool:
        """Check both collaborators report ready, then start.

        Returns False (state stays IDLE) when either is missing or not ready.
        """
        if self.source is None or self.consumer is None:
            log_event("ERROR", "Pipeline", "Spectral source or consumer not provided")
            return False

        analyzer_ready = bool(getattr(self.source, 'initialized', False))
        visualizer_ready = bool(getattr(self.consumer, 'initialized', False))
        self.connection_state['analyzer_initialized'] = analyzer_ready
        self.connection_state['visualizer_initialized'] = visualizer_ready

        if not analyzer_ready or not visualizer_ready:
            log_event("ERROR", "Pipeline", "Spectral source or consumer not initialized",
                      analyzer=analyzer_ready, visualizer=visualizer_ready)
            return False

        self.start()
        return True

    def start(self) -> None:
        """Begin sampling. No-op while already active."""
        with self._lock:
            if self._state is PipelineState.ACTIVE:
                return
            self._state = PipelineState.ACTIVE
            self.connection_state['data_flow_active'] = True
            self._last_analysis_time = None
            self._reset_session_stats()

        if self.scheduler is not None:
            self.scheduler.start(self.tick)
        log_event("INFO", "Pipeline", "Started",
                  interval_ms=self.config.pipeline.analysis_interval_ms)

    def stop(self) -> None:
        """Halt sampling. Safe to call repeatedly."""
        with self._lock:
            if self._state is not PipelineState.ACTIVE:
                return
            # Ticks check the state under this lock, so none runs after this point
            self._state = PipelineState.STOPPED
            self.connection_state['data_flow_active'] = False
            self._log_session_summary()
        if self.scheduler is not None:
            self.scheduler.stop()
        log_event("INFO", "Pipeline", "Stopped")

    def dispose(self) -> None:
        """Stop and forget all beats."""
        self.stop()
        with self._lock:
            self.detector.reset()

    # ----- tick -----

    def _pull_snapshot(self) -> Optional[BandEnergySnapshot]:
        data = self.source.update()
        if data is None:
            return None
        if isinstance(data, BandEnergySnapshot):
            return data
        if isinstance(data, Mapping):
            return BandEnergySnapshot.from_mapping(data)
        raise TypeError(f"unsupported snapshot type {type(data).__name__}")

    def analyze(self, snapshot: BandEnergySnapshot, now: float) -> FeatureRecord:
        """Run detection and mapping over one snapshot. Caller holds the lock."""
        bass = snapshot.energy_by_band.get('bass', 0.0)
        beat = self.detector.detect(snapshot.beat_detected, bass, snapshot.average_power, now)
        return FeatureRecord(
            snapshot=snapshot,
            beat_detected=beat,
            beat_intensity=self.intensity_tracker.intensity(beat, now),
            visual_params=self.mapper.map(snapshot.energy_by_band),
            total_energy=total_energy(snapshot.energy_by_band),
            rhythm_stability=self.stability_estimator.stability(),
            timestamp=now,
        )

    def tick(self, now: Optional[float] = None) -> Optional[FeatureRecord]:
        """Run one analysis if active and the interval gate allows it.

        Returns the record handed to the consumer, or None when the tick was
        gated, had no data, or failed.
        """
        if self._state is not PipelineState.ACTIVE:
            return None

        with self._lock:
            if self._state is not PipelineState.ACTIVE:
                return None

            now = self.clock() if now is None else now
            interval_s = self.config.pipeline.analysis_interval_ms / 1000.0
            if (self._last_analysis_time is not None
                    and now - self._last_analysis_time < interval_s):
                return None
            self._last_analysis_time = now

            started = time.perf_counter()
            try:
                snapshot = self._pull_snapshot()
            except Exception as e:
                self._session_source_errors += 1
                log_event("ERROR", "Pipeline", "Spectral source failed, skipping tick", error=e)
                return None
            source_s = time.perf_counter() - started
            if interval_s > 0 and source_s > interval_s:
                log_event("WARN", "Pipeline", "Source call overran tick interval",
                          source_ms=f"{source_s * 1000:.1f}",
                          interval_ms=f"{interval_s * 1000:.1f}")

            if snapshot is None:
                self._session_empty_ticks += 1
                log_event("DEBUG", "Pipeline", "No data this tick")
                return None

            try:
                record = self.analyze(snapshot, now)
            except Exception as e:
                self._session_analysis_errors += 1
                log_event("ERROR", "Pipeline", "Analysis failed, skipping tick", error=e)
                return None

            try:
                self.consumer.update_audio_data(record)
            except Exception as e:
                self._session_delivery_errors += 1
                log_event("ERROR", "Pipeline", "Consumer failed, dropping tick", error=e)
                return None

            self._update_session_stats(record)
            return record

    # ----- configuration -----

    @property
    def beat_detection_settings(self) -> BeatDetectionConfig:
        return self.detector.settings

    @property
    def feature_mapping(self) -> Dict[str, FeatureMapping]:
        return dict(self.mapper.table)

    @property
    def beat_history(self) -> BeatHistory:
        return self.detector.history

    def update_beat_detection_settings(self, settings: Optional[Mapping[str, Any]] = None,
                                       **changes: Any) -> BeatDetectionConfig:
        """Shallow-merge new values over the current settings.

        A fresh settings object replaces the old one in a single assignment.
        Unknown keys and values of the wrong type are logged and ignored;
        ranges are not checked.
        """
        merged = dict(settings or {})
        merged.update(changes)

        with self._lock:
            current = self.detector.settings
            known = {f.name for f in fields(BeatDetectionConfig)}
            accepted = {}
            for key, value in merged.items():
                if key not in known:
                    log_event("WARN", "Config", "Unknown beat detection setting", key=key)
                    continue
                try:
                    accepted[key] = coerce_value(getattr(current, key), value)
                except (TypeError, ValueError):
                    log_event("WARN", "Config", "Ignoring beat detection setting of wrong type",
                              key=key, value=value)
            self.detector.settings = replace(current, **accepted)
            return self.detector.settings

    def update_feature_mapping(self, mapping: Mapping[str, Any]) -> Dict[str, FeatureMapping]:
        """Replace the mapping of each band named in ``mapping``; others stay."""
        with self._lock:
            self.mapper.table = self.mapper.merged(mapping)
            return dict(self.mapper.table)

    # ----- status -----

    def get_connection_status(self) -> Dict[str, Any]:
        return {
            **self.connection_state,
            'beat_history_length': len(self.detector.history),
            'is_active': self.is_active,
        }

    # ----- session statistics -----

    def _reset_session_stats(self) -> None:
        self._session_started_at = self.clock()
        self._session_tick_count = 0
        self._session_beat_count = 0
        self._session_empty_ticks = 0
        self._session_source_errors = 0
        self._session_analysis_errors = 0
        self._session_delivery_errors = 0
        self._session_energy_sum = 0.0
        self._session_energy_min: Optional[float] = None
        self._session_energy_max: Optional[float] = None
        self._session_last_stability = 0.5

    def _update_session_stats(self, record: FeatureRecord) -> None:
        self._session_tick_count += 1
        if record.beat_detected:
            self._session_beat_count += 1
        energy = record.total_energy
        self._session_energy_sum += energy
        if self._session_energy_min is None or energy < self._session_energy_min:
            self._session_energy_min = energy
        if self._session_energy_max is None or energy > self._session_energy_max:
            self._session_energy_max = energy
        self._session_last_stability = record.rhythm_stability

    def session_summary(self) -> Dict[str, Any]:
        ticks = self._session_tick_count
        return {
            'ticks': ticks,
            'beats': self._session_beat_count,
            'empty_ticks': self._session_empty_ticks,
            'source_errors': self._session_source_errors,
            'analysis_errors': self._session_analysis_errors,
            'delivery_errors': self._session_delivery_errors,
            'seconds': max(0.0, self.clock() - self._session_started_at),
            'energy_min': float(self._session_energy_min or 0.0),
            'energy_max': float(self._session_energy_max or 0.0),
            'energy_mean': self._session_energy_sum / ticks if ticks else 0.0,
            'rhythm_stability': self._session_last_stability,
        }

    def _log_session_summary(self) -> None:
        summary = self.session_summary()
        errors = (summary['source_errors'] + summary['analysis_errors']
                  + summary['delivery_errors'])
        if summary['ticks'] <= 0 and errors <= 0:
            return

        log_event(
            "INFO",
            "Pipeline",
            "Session summary",
            ticks=summary['ticks'],
            beats=summary['beats'],
            empty=summary['empty_ticks'],
            source_errors=summary['source_errors'],
            analysis_errors=summary['analysis_errors'],
            delivery_errors=summary['delivery_errors'],
            seconds=f"{summary['seconds']:.1f}",
            energy_min=f"{summary['energy_min']:.4f}",
            energy_max=f"{summary['energy_max']:.4f}",
            energy_mean=f"{summary['energy_mean']:.4f}",
            stability=f"{summary['rhythm_stability']:.3f}",
        )
