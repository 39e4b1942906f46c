# bandpulse Configuration
# All default values and constants

from dataclasses import dataclass, field, fields, is_dataclass
from enum import Enum
from typing import Dict, List, Optional, Tuple, get_args, get_type_hints

from logging_utils import log_event


CURRENT_CONFIG_VERSION = 1

# Canonical band names, lowest to highest
BAND_NAMES = ("bass", "mid_low", "mid", "high_mid", "high")


class SourceType(str, Enum):
    """Where spectral snapshots come from"""
    SIMULATED = "simulated"   # Oscillating test spectrum, no audio device needed
    CAPTURE = "capture"       # Live input through sounddevice


@dataclass
class BeatDetectionConfig:
    """Beat detection parameters"""
    threshold: float = 0.2            # Static bass-energy threshold (> 0)
    decay: float = 0.05               # Intensity decay factor (x20 gain over 500ms)
    minimum_time: float = 0.25        # Refractory interval between beats (seconds, >= 0)
    adaptive_threshold: bool = True   # Derive threshold from recent beat energies


@dataclass
class FeatureMapping:
    """How one band's energy feeds named visual parameters"""
    primary: str = ""
    secondary: Optional[str] = None
    weight: float = 1.0               # >= 0


def default_feature_mapping() -> Dict[str, FeatureMapping]:
    return {
        "bass": FeatureMapping("particleSpeed", "pulseFactor", 1.0),
        "mid_low": FeatureMapping("cameraMovement", "colorShift", 0.8),
        "mid": FeatureMapping("waveIntensity", "albumRotation", 0.7),
        "high_mid": FeatureMapping("particleSize", "glowIntensity", 0.6),
        "high": FeatureMapping("bloomIntensity", "colorBrightness", 0.6),
    }


def default_band_edges() -> List[Tuple[str, float, float]]:
    # (name, low_hz, high_hz)
    return [
        ("bass", 20.0, 250.0),        # kick drum, bass line
        ("mid_low", 250.0, 500.0),    # bass guitar upper range, toms
        ("mid", 500.0, 2000.0),       # snare body, vocals, guitars
        ("high_mid", 2000.0, 4000.0), # presence, attack
        ("high", 4000.0, 16000.0),    # hi-hat, cymbals, air
    ]


@dataclass
class PipelineConfig:
    """Pipeline driver cadence and history"""
    analysis_interval_ms: float = 16.0   # Minimum gap between analyses (~60fps)
    beat_history_max: int = 30           # Beat History capacity
    intensity_window_s: float = 0.5      # Beat intensity decay normalization window
    intensity_gain: float = 20.0         # Fixed gain applied to decay
    adaptive_window: int = 5             # Beats averaged for adaptive threshold
    adaptive_scale: float = 0.8          # Adaptive threshold = mean energy * this
    secondary_weight: float = 0.7        # Secondary parameter share of weighted energy
    stability_min_beats: int = 4         # Below this, stability is neutral
    stability_default: float = 0.5       # Neutral stability value


@dataclass
class AudioConfig:
    """Spectral source settings"""
    source: SourceType = SourceType.SIMULATED
    sample_rate: int = 44100
    buffer_size: int = 2048           # Frames per capture block (FFT size)
    channels: int = 2
    device_index: Optional[int] = None  # None means use system default
    gain: float = 1.0
    highpass_filter_hz: int = 30      # Butterworth high-pass cutoff (0 = disabled)
    smoothing: float = 0.85           # Spectrum smoothing time constant (0-1)
    min_decibels: float = -100.0      # Magnitude mapped to 0.0
    max_decibels: float = -30.0       # Magnitude mapped to 1.0
    simulated_bins: int = 512         # Spectrum size of the simulated source
    # Raw candidate beat (upstream check the detector refines)
    candidate_threshold: float = 0.65   # Low-frequency average needed for a candidate
    candidate_min_gap: float = 0.25     # Seconds between candidates
    candidate_hold: float = 0.1         # Seconds a candidate flag stays raised
    track_energy: float = 0.5           # Track-level energy hint raising the candidate threshold


@dataclass
class Config:
    """Master configuration"""
    version: int = 1                  # Schema version for persisted configs
    beat: BeatDetectionConfig = field(default_factory=BeatDetectionConfig)
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)
    audio: AudioConfig = field(default_factory=AudioConfig)
    bands: List[Tuple[str, float, float]] = field(default_factory=default_band_edges)
    mapping: Dict[str, FeatureMapping] = field(default_factory=default_feature_mapping)
    log_level: str = "INFO"           # Logging level (DEBUG/INFO/WARNING/ERROR)


def coerce_mapping(value) -> Optional[FeatureMapping]:
    """Build a FeatureMapping from an instance or a dict, None if impossible."""
    if isinstance(value, FeatureMapping):
        return FeatureMapping(value.primary, value.secondary, value.weight)
    if isinstance(value, dict):
        try:
            weight = float(value.get("weight", 1.0))
        except (TypeError, ValueError):
            return None
        return FeatureMapping(
            primary=value.get("primary") or "",
            secondary=value.get("secondary") or None,
            weight=weight,
        )
    return None


def coerce_value(current, value):
    """Return ``value`` converted to the type of ``current``.

    Raises TypeError when the value cannot stand in for the current one.
    Ranges are not checked.
    """
    if isinstance(current, bool):
        if isinstance(value, bool):
            return value
        raise TypeError(f"expected bool, got {type(value).__name__}")
    if isinstance(current, Enum):
        return current.__class__(value)
    if isinstance(current, (int, float)):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise TypeError(f"expected number, got {type(value).__name__}")
        return type(current)(value)
    return value


def _accepts_none(target, key) -> bool:
    """True when the dataclass field ``key`` is declared Optional."""
    try:
        hints = get_type_hints(type(target))
    except (NameError, TypeError):
        return False
    return type(None) in get_args(hints.get(key))


def apply_dict_to_dataclass(target, data) -> None:
    """Recursively apply values from a dict onto a dataclass instance.
    Unknown keys are ignored; enum and numeric fields are coerced when possible."""
    if not isinstance(data, dict):
        return

    for key, value in data.items():
        if not hasattr(target, key):
            continue

        current = getattr(target, key)

        if is_dataclass(current) and isinstance(value, dict):
            apply_dict_to_dataclass(current, value)
            continue

        if key == "mapping" and isinstance(value, dict):
            table = {}
            for band, entry in value.items():
                mapping = coerce_mapping(entry)
                if mapping is not None:
                    table[band] = mapping
            setattr(target, key, table)
            continue

        if key == "bands" and isinstance(value, list):
            edges = []
            for entry in value:
                try:
                    name, low, high = entry
                    edges.append((str(name), float(low), float(high)))
                except (TypeError, ValueError):
                    log_event("WARN", "Config", "Ignoring malformed band edge", entry=entry)
            setattr(target, key, edges)
            continue

        if value is None:
            if _accepts_none(target, key):
                setattr(target, key, None)
            else:
                log_event("WARN", "Config", f"Ignoring null {key}, keeping default")
            continue

        if current is None:
            setattr(target, key, value)
            continue

        try:
            setattr(target, key, coerce_value(current, value))
        except (TypeError, ValueError):
            log_event("WARN", "Config", f"Could not convert {key}, keeping default",
                      expected=type(current).__name__)


def field_names(dataclass_type) -> set:
    return {f.name for f in fields(dataclass_type)}


def migrate_config(config: Config, loaded_version) -> None:
    """Upgrade older config structures to the current schema.
    Fills values older files stored as null and bumps version."""
    try:
        version = int(loaded_version) if loaded_version is not None else 0
    except (TypeError, ValueError):
        version = 0

    # Beat and pipeline values are never optional, whatever the version
    for section, defaults in ((config.beat, BeatDetectionConfig()),
                              (config.pipeline, PipelineConfig())):
        for name in field_names(type(defaults)):
            if getattr(section, name, None) is None:
                setattr(section, name, getattr(defaults, name))

    if version < 1:
        if not config.mapping:
            config.mapping = default_feature_mapping()
        if not config.bands:
            config.bands = default_band_edges()

    if getattr(config, "log_level", None) is None:
        config.log_level = "INFO"

    # Capacity and cadence must stay usable whatever the file said
    try:
        capacity = int(config.pipeline.beat_history_max)
    except (TypeError, ValueError):
        capacity = 30
    config.pipeline.beat_history_max = max(1, capacity)

    try:
        interval = float(config.pipeline.analysis_interval_ms)
    except (TypeError, ValueError):
        interval = 16.0
    config.pipeline.analysis_interval_ms = max(0.0, interval)

    config.version = CURRENT_CONFIG_VERSION


# Default config instance
DEFAULT_CONFIG = Config()
