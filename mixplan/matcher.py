"""Energy curve matching and transition point search."""

from typing import List, Optional, Sequence, Tuple

import numpy as np

from .config import DEFAULT_CONFIG, AnalysisConfig
from .curves import analyze_shape, normalize_curve, pearson_correlation
from .logging_config import get_logger
from .models import CurveTransitionResult, EnergyCurveMatch, EnergyCurveShape

logger = get_logger(__name__)

MATCH_TYPES = ("parallel", "complementary", "continuation", "contrast")


def _value_at(curve: np.ndarray, idx: int, default: float = 0.5) -> float:
    if 0 <= idx < len(curve):
        return float(curve[idx])
    return default


def shape_score(a: EnergyCurveShape, b: EnergyCurveShape) -> float:
    """Weighted similarity of two shape descriptors (0-1)."""
    score = 0.0
    if a.trend == b.trend:
        score += 0.3

    if a.pattern == b.pattern:
        score += 0.3

    energy_diff = abs(a.avg_energy - b.avg_energy)
    score += (1.0 - min(energy_diff * 2, 1.0)) * 0.2

    peak_diff = abs(a.peak_position - b.peak_position)
    score += (1.0 - peak_diff) * 0.2
    return score


def continuation_score(source: np.ndarray, candidate: np.ndarray) -> float:
    """How seamlessly the candidate's opening carries on from the source's ending."""
    window = max(1, len(source) // 10)
    source_end = source[-window:]
    candidate_start = candidate[:window]
    if len(source_end) == 0 or len(candidate_start) == 0:
        return 0.0

    energy_match = 1.0 - abs(float(source_end.mean()) - float(candidate_start.mean()))

    source_slope = float(source_end[-1] - source_end[0])
    candidate_slope = float(candidate_start[-1] - candidate_start[0])
    slope_match = 0.8 if source_slope * candidate_slope > 0 else 0.4

    return energy_match * 0.6 + slope_match * 0.4


def classify_match(
    correlation: float, complement: float, shape: float, continuation: float
) -> Tuple[str, float]:
    """Pick the match type whose formula scores highest.

    Formulas are evaluated in MATCH_TYPES order and only a strictly higher
    score replaces the current best.
    """
    candidates = [
        ("parallel", correlation * 0.4 + shape * 0.6),
        ("complementary", complement * 0.5 + (1 - shape) * 0.3 + 0.2),
        ("continuation", continuation),
        ("contrast", (1 - abs(correlation)) * 0.3 + (1 - shape) * 0.4 + 0.3),
    ]
    best_type, best_score = candidates[0]
    for match_type, score in candidates[1:]:
        if score > best_score:
            best_type, best_score = match_type, score
    return best_type, float(np.clip(best_score, 0.0, 1.0))


def _match_explanation(
    match_type: str, source: EnergyCurveShape, candidate: EnergyCurveShape, score: float
) -> str:
    quality = "Excellent" if score > 0.8 else ("Good" if score > 0.6 else "Moderate")
    if match_type == "parallel":
        return f"{quality} parallel energy - both tracks {source.pattern}"
    if match_type == "complementary":
        return f"{quality} complement - {source.trend} meets {candidate.trend}"
    if match_type == "continuation":
        return f"{quality} continuation - seamless energy flow"
    return f"{quality} contrast - creative transition opportunity"


def _transition_recommendation(score: float) -> str:
    if score > 0.8:
        return "Excellent transition point - energies align smoothly"
    if score > 0.6:
        return "Good transition - minor energy adjustment needed"
    if score > 0.4:
        return "Moderate transition - consider EQ adjustments"
    return "Challenging transition - significant energy difference"


class EnergyCurveMatcher:
    """Finds tracks whose energy curves fit a source curve."""

    def __init__(self, config: AnalysisConfig = None):
        self.config = config or DEFAULT_CONFIG

    def normalize(self, curve: Sequence[float]) -> np.ndarray:
        """Resample and normalize a curve at the configured resolution."""
        return normalize_curve(curve, self.config.curve_resolution, self.config.curve_min_range)

    def shape(self, curve: Sequence[float]) -> EnergyCurveShape:
        """Shape descriptor of an arbitrary-length curve."""
        return analyze_shape(self.normalize(curve), self.config.peak_threshold)

    def _scan_points(self) -> range:
        cfg = self.config
        return range(cfg.transition_scan_start, cfg.transition_scan_end + 1, cfg.transition_scan_step)

    def find_matches(
        self,
        source_curve: Sequence[float],
        candidate_curves: Sequence[Tuple[int, Sequence[float]]],
        limit: Optional[int] = None,
        preferred_match_type: Optional[str] = None,
    ) -> List[EnergyCurveMatch]:
        """Rank candidate curves against a source curve.

        Args:
            source_curve: Energy curve of the current track.
            candidate_curves: (track_id, curve) pairs to rank.
            limit: Maximum results. Defaults to config.match_limit.
            preferred_match_type: Keep only this match type, unless no
                candidate has it.

        Returns:
            Matches sorted by overall score, best first.
        """
        if preferred_match_type is not None and preferred_match_type not in MATCH_TYPES:
            raise ValueError(f"Unknown match type: {preferred_match_type}")
        limit = self.config.match_limit if limit is None else limit

        source = self.normalize(source_curve)
        source_shape = analyze_shape(source, self.config.peak_threshold)

        matches = [
            self._compute_match(source, source_shape, track_id, curve)
            for track_id, curve in candidate_curves
        ]
        matches.sort(key=lambda m: m.overall_score, reverse=True)

        if preferred_match_type is not None:
            filtered = [m for m in matches if m.match_type == preferred_match_type]
            if filtered:
                return filtered[:limit]
            logger.debug("No %s matches, falling back to full ranking", preferred_match_type)

        return matches[:limit]

    def _compute_match(
        self,
        source: np.ndarray,
        source_shape: EnergyCurveShape,
        track_id: int,
        curve: Sequence[float],
    ) -> EnergyCurveMatch:
        candidate = self.normalize(curve)
        candidate_shape = analyze_shape(candidate, self.config.peak_threshold)

        correlation = pearson_correlation(source, candidate)
        complement = pearson_correlation(source, 1.0 - candidate)
        shape = shape_score(source_shape, candidate_shape)
        continuation = continuation_score(source, candidate)

        match_type, overall = classify_match(correlation, complement, shape, continuation)
        point = self._best_transition_point(source, candidate)

        return EnergyCurveMatch(
            track_id=track_id,
            overall_score=overall,
            correlation_score=float(np.clip(correlation, 0.0, 1.0)),
            complement_score=float(np.clip(complement, 0.0, 1.0)),
            shape_score=shape,
            match_type=match_type,
            best_transition_point=point,
            explanation=_match_explanation(match_type, source_shape, candidate_shape, overall),
        )

    def _best_transition_point(self, source: np.ndarray, candidate: np.ndarray) -> int:
        """Percent position in the source whose level is closest to the candidate's start."""
        best_point = 75
        best_score = 0.0
        candidate_energy = _value_at(candidate, 0)
        for percent in self._scan_points():
            idx = percent * len(source) // 100
            score = 1.0 - abs(_value_at(source, idx) - candidate_energy)
            if score > best_score:
                best_score = score
                best_point = percent
        return best_point

    def analyze_transition(
        self,
        outgoing_curve: Sequence[float],
        incoming_curve: Sequence[float],
        transition_point: float,
    ) -> CurveTransitionResult:
        """Report how well two curves meet when the incoming track starts at
        ``transition_point`` (0-1) of the outgoing one."""
        norm_out = self.normalize(outgoing_curve)
        norm_in = self.normalize(incoming_curve)

        out_idx = int(transition_point * len(norm_out))
        out_energy = _value_at(norm_out, out_idx)
        in_energy = _value_at(norm_in, 0)
        energy_diff = abs(out_energy - in_energy)
        smoothness = 1.0 - min(energy_diff * 2, 1.0)

        overlap = min(20, len(norm_out) - out_idx, len(norm_in))
        overlap_corr = 0.0
        if overlap > 5:
            overlap_corr = pearson_correlation(
                norm_out[out_idx : out_idx + overlap], norm_in[:overlap]
            )

        overall = smoothness * 0.6 + max(0.0, overlap_corr) * 0.4
        return CurveTransitionResult(
            transition_point=transition_point,
            outgoing_energy=out_energy,
            incoming_energy=in_energy,
            energy_difference=energy_diff,
            smoothness_score=smoothness,
            overlap_correlation=overlap_corr,
            overall_score=overall,
            recommendation=_transition_recommendation(overall),
        )

    def find_optimal_transition(
        self, outgoing_curve: Sequence[float], incoming_curve: Sequence[float]
    ) -> Tuple[float, float]:
        """Scan the outgoing curve for the point that best meets the incoming start.

        Returns:
            (point, score) with point as a 0-1 fraction of the outgoing track.
            Ties keep the earliest point.
        """
        norm_out = self.normalize(outgoing_curve)
        norm_in = self.normalize(incoming_curve)
        in_energy = _value_at(norm_in, 0)

        best_point = 0.7
        best_score = 0.0
        for percent in self._scan_points():
            idx = percent * len(norm_out) // 100
            diff = abs(_value_at(norm_out, idx) - in_energy)
            score = 1.0 - min(diff * 2, 1.0)
            if score > best_score:
                best_score = score
                best_point = percent / 100.0

        return best_point, best_score
