from typing import Dict, Iterable, Tuple

import numpy as np


def _freq_per_bin(spectrum: np.ndarray, sample_rate: int) -> float:
    # Nyquist / num_bins
    return sample_rate / (2 * len(spectrum))


def band_slice(
    spectrum: np.ndarray,
    sample_rate: int,
    freq_low: float,
    freq_high: float,
) -> np.ndarray:
    """Return the bins of ``spectrum`` covering ``freq_low``..``freq_high`` Hz."""
    if spectrum is None or len(spectrum) == 0:
        return np.empty(0)

    freq_per_bin = _freq_per_bin(spectrum, sample_rate)
    if freq_per_bin <= 0:
        return np.empty(0)

    low_bin = max(0, int(freq_low / freq_per_bin))
    high_bin = min(len(spectrum) - 1, int(freq_high / freq_per_bin))
    if low_bin > high_bin:
        return np.empty(0)
    return spectrum[low_bin:high_bin + 1]


def compute_band_energies(
    spectrum: np.ndarray | None,
    sample_rate: int,
    bands: Iterable[Tuple[str, float, float]],
) -> Dict[str, float]:
    """Mean normalized magnitude per named band, clamped to [0, 1].

    ``spectrum`` holds magnitudes already normalized to 0-1. Bands falling
    outside the spectrum report 0.0.
    """
    energies: Dict[str, float] = {}
    for name, low_hz, high_hz in bands:
        values = band_slice(spectrum, sample_rate, low_hz, high_hz)
        energy = float(np.mean(values)) if len(values) > 0 else 0.0
        energies[name] = min(1.0, max(0.0, energy))
    return energies


def average_power(spectrum: np.ndarray | None) -> float:
    """Mean of a normalized spectrum (0-1)."""
    if spectrum is None or len(spectrum) == 0:
        return 0.0
    return min(1.0, max(0.0, float(np.mean(spectrum))))


def low_frequency_average(spectrum: np.ndarray | None, max_bins: int = 10) -> float:
    """Average of the lowest bins, at most ``max_bins`` and 1/32 of the spectrum."""
    if spectrum is None or len(spectrum) == 0:
        return 0.0
    count = max(1, min(max_bins, len(spectrum) // 32))
    return float(np.mean(spectrum[:count]))

