"""Energy curve resampling, normalization and shape classification."""

from typing import List, Sequence

import numpy as np

from .config import DEFAULT_CONFIG
from .models import EnergyCurveShape


def _mean(values: np.ndarray) -> float:
    return float(np.mean(values)) if len(values) else 0.0


def normalize_curve(
    curve: Sequence[float],
    resolution: int = DEFAULT_CONFIG.curve_resolution,
    min_range: float = DEFAULT_CONFIG.curve_min_range,
) -> np.ndarray:
    """Resample a curve to a fixed resolution and min-max normalize it.

    Resampling picks the nearest earlier sample. Curves whose value range is
    at most ``min_range`` are not stretched (a near-silent track stays flat),
    only clipped into [0, 1].

    Args:
        curve: Energy values of any length.
        resolution: Number of output samples.
        min_range: Smallest value range that gets stretched to [0, 1].

    Returns:
        Array of ``resolution`` values in [0, 1].
    """
    values = np.nan_to_num(np.asarray(curve, dtype=float), nan=0.0, posinf=0.0, neginf=0.0)
    if len(values) == 0:
        return np.full(resolution, 0.5)

    step = len(values) / resolution
    indices = np.minimum((np.arange(resolution) * step).astype(int), len(values) - 1)
    resampled = values[indices]

    lo = float(resampled.min())
    hi = float(resampled.max())
    if hi - lo > min_range:
        return (resampled - lo) / (hi - lo)
    return np.clip(resampled, 0.0, 1.0)


def pearson_correlation(a: Sequence[float], b: Sequence[float]) -> float:
    """Pearson correlation of two equal-length curves; 0 when undefined."""
    a = np.asarray(a, dtype=float)
    b = np.asarray(b, dtype=float)
    if len(a) != len(b) or len(a) == 0:
        return 0.0
    da = a - a.mean()
    db = b - b.mean()
    denom = np.sqrt(np.sum(da * da)) * np.sqrt(np.sum(db * db))
    if denom <= 0:
        return 0.0
    return float(np.sum(da * db) / denom)


def find_peaks(curve: Sequence[float], threshold: float = DEFAULT_CONFIG.peak_threshold) -> List[int]:
    """Indices that stand above ``threshold`` and both neighbours on each side."""
    peaks = []
    for i in range(2, len(curve) - 2):
        v = curve[i]
        if (
            v > threshold
            and v > curve[i - 1]
            and v > curve[i - 2]
            and v > curve[i + 1]
            and v > curve[i + 2]
        ):
            peaks.append(i)
    return peaks


def _classify_trend(
    curve: np.ndarray, peak_position: float, peak_value: float, avg: float
) -> str:
    n = len(curve)
    quarter = n // 4
    first_mean = _mean(curve[:quarter])
    last_mean = _mean(curve[n - quarter :]) if quarter else 0.0
    diff = last_mean - first_mean

    if abs(diff) < 0.1:
        if 0.3 < peak_position < 0.7 and peak_value > avg + 0.2:
            return "peaked"
        return "flat"
    if diff > 0.2:
        return "rising"
    if diff < -0.2:
        return "falling"

    third = n // 3
    middle_mean = float(np.sum(curve[third : n * 2 // 3]) / third) if third else 0.0
    if middle_mean < first_mean - 0.15 and middle_mean < last_mean - 0.15:
        return "valley"
    return "rising" if diff > 0 else "falling"


def _classify_pattern(curve: np.ndarray, trend: str, variance: float, threshold: float) -> str:
    if variance < 0.02:
        return "steady"
    if trend == "rising":
        return "building"
    if trend == "falling":
        return "dropping"
    if variance > 0.1:
        return "dynamic"
    if len(find_peaks(curve, threshold)) >= 2:
        return "double_climb"
    return "dynamic"


def analyze_shape(
    curve: Sequence[float], peak_threshold: float = DEFAULT_CONFIG.peak_threshold
) -> EnergyCurveShape:
    """Derive an EnergyCurveShape from an already normalized curve."""
    values = np.asarray(curve, dtype=float)
    if len(values) == 0:
        return EnergyCurveShape(
            curve=[],
            peak_position=0.0,
            peak_value=0.0,
            avg_energy=0.0,
            variance=0.0,
            trend="flat",
            pattern="steady",
        )

    peak_idx = int(np.argmax(values))
    peak_position = peak_idx / len(values)
    peak_value = float(values[peak_idx])
    avg = float(values.mean())
    variance = float(np.mean((values - avg) ** 2))

    trend = _classify_trend(values, peak_position, peak_value, avg)
    pattern = _classify_pattern(values, trend, variance, peak_threshold)

    return EnergyCurveShape(
        curve=values.tolist(),
        peak_position=peak_position,
        peak_value=peak_value,
        avg_energy=avg,
        variance=variance,
        trend=trend,
        pattern=pattern,
    )
