"""Phrase-aware transition window and mix point detection."""

from typing import List, Optional, Sequence

import numpy as np

from .config import DEFAULT_CONFIG, AnalysisConfig
from .logging_config import get_logger
from .models import (
    TrackSection,
    TransitionAnalysis,
    TransitionPoint,
    TransitionWindow,
    WindowCharacteristics,
)

logger = get_logger(__name__)

# Section type -> transition window type. Unlisted types become "sustain".
WINDOW_TYPES = {
    "intro": "intro",
    "outro": "outro",
    "breakdown": "breakdown",
    "build": "build_up",
}

# Window types that reward low energy when scored
_QUIET_WINDOW_TYPES = ("intro", "outro", "breakdown")


def _slice_stats(curve: np.ndarray, start_beat: int, end_beat: int):
    start = max(0, start_beat)
    end = min(len(curve), end_beat)
    if end <= start:
        return 0.0, 0.0
    region = curve[start:end]
    mean = float(region.mean())
    return mean, float(np.mean((region - mean) ** 2))


def _nearest_boundary(beat: int, boundaries: Sequence[int]) -> int:
    if not boundaries:
        return beat
    return min(boundaries, key=lambda b: abs(b - beat))


class TransitionAnalyzer:
    """Finds where a track can be mixed in and out."""

    def __init__(self, config: AnalysisConfig = None):
        self.config = config or DEFAULT_CONFIG

    def analyze(
        self,
        samples: Sequence[float],
        sample_rate: float,
        bpm: float,
        sections: Optional[Sequence[TrackSection]] = None,
        track_id: int = 0,
        analysis_version: int = 1,
    ) -> TransitionAnalysis:
        """Analyze one track for transition opportunities.

        Args:
            samples: Mono audio samples.
            sample_rate: Samples per second.
            bpm: Track tempo.
            sections: Structural sections, if known. Without them low-energy
                regions are used as breakdown windows.
            track_id: Identifier stored on the result.
            analysis_version: Analysis version the result belongs to.

        Returns:
            TransitionAnalysis. Degenerate input (no audio, no tempo, or
            fewer than one beat) yields an empty analysis.
        """
        y = np.asarray(samples, dtype=np.float32)
        duration = len(y) / sample_rate if sample_rate > 0 else 0.0
        total_beats = int(duration * bpm / 60.0) if bpm > 0 else 0

        if total_beats <= 0 or len(y) < total_beats:
            logger.debug("Track %s too short for transition analysis", track_id)
            return TransitionAnalysis(
                track_id=track_id,
                mix_in_points=[],
                mix_out_points=[],
                transition_windows=[],
                energy_curve=[],
                phrase_boundaries=[],
                recommended_mix_in_beat=0,
                recommended_mix_out_beat=0,
                analysis_version=analysis_version,
            )

        seconds_per_beat = 60.0 / bpm
        curve = self._beat_energy_curve(y, total_beats)
        boundaries = self._phrase_boundaries(curve, total_beats)
        windows = self._transition_windows(curve, sections or [], seconds_per_beat, boundaries)
        mix_in = self._mix_in_points(curve, windows, seconds_per_beat, boundaries)
        mix_out = self._mix_out_points(curve, windows, seconds_per_beat, boundaries, total_beats)

        logger.info(
            "Transition analysis for track %s: %d mix-in points, %d mix-out points",
            track_id,
            len(mix_in),
            len(mix_out),
        )

        return TransitionAnalysis(
            track_id=track_id,
            mix_in_points=mix_in,
            mix_out_points=mix_out,
            transition_windows=windows,
            energy_curve=curve.tolist(),
            phrase_boundaries=boundaries,
            recommended_mix_in_beat=mix_in[0].beat_index if mix_in else 0,
            recommended_mix_out_beat=mix_out[-1].beat_index if mix_out else total_beats,
            analysis_version=analysis_version,
        )

    def _beat_energy_curve(self, y: np.ndarray, total_beats: int) -> np.ndarray:
        """RMS per beat, normalized to the loudest beat."""
        per_beat = len(y) // total_beats
        frames = y[: per_beat * total_beats].astype(np.float64).reshape(total_beats, per_beat)
        curve = np.sqrt(np.mean(frames**2, axis=1))
        peak = float(curve.max())
        if peak > 0:
            curve = curve / peak
        return curve

    def _phrase_boundaries(self, curve: np.ndarray, total_beats: int) -> List[int]:
        phrase = self.config.phrase_length
        boundaries = set(range(0, total_beats, phrase))
        boundaries.add(0)

        # Sharp energy changes mark the phrase they fall in
        for i in range(1, len(curve) - 1):
            if abs(curve[i] - curve[i - 1]) > self.config.phrase_energy_threshold:
                nearest = (i // phrase) * phrase
                if nearest > 0:
                    boundaries.add(nearest)

        return sorted(boundaries)

    def _is_phrase_aligned(self, beat: int, boundaries: Sequence[int]) -> bool:
        return any(abs(b - beat) <= self.config.phrase_alignment_beats for b in boundaries)

    def _window_score(
        self, window_type: str, avg_energy: float, variance: float, duration: float, on_phrase: bool
    ) -> float:
        score = 0.5
        if window_type in _QUIET_WINDOW_TYPES:
            score += (1.0 - avg_energy) * 0.2
        score += (1.0 - min(variance * 10, 1.0)) * 0.15
        score += min(duration / 32.0, 1.0) * 0.15
        if on_phrase:
            score += 0.1
        return min(score, 1.0)

    def _transition_windows(
        self,
        curve: np.ndarray,
        sections: Sequence[TrackSection],
        seconds_per_beat: float,
        boundaries: Sequence[int],
    ) -> List[TransitionWindow]:
        windows = []
        for section in sections:
            window_type = WINDOW_TYPES.get(section.type, "sustain")
            start_beat = int(section.start_time / seconds_per_beat)
            end_beat = int(section.end_time / seconds_per_beat)
            avg, variance = _slice_stats(curve, start_beat, end_beat)
            on_phrase = self._is_phrase_aligned(start_beat, boundaries)

            windows.append(
                TransitionWindow(
                    start_time=section.start_time,
                    end_time=section.end_time,
                    start_beat=start_beat,
                    end_beat=end_beat,
                    type=window_type,
                    score=self._window_score(window_type, avg, variance, section.duration, on_phrase),
                    characteristics=WindowCharacteristics(
                        avg_energy=avg, energy_variance=variance, phrase_alignment=on_phrase
                    ),
                )
            )

        if not windows:
            windows = self._energy_windows(curve, seconds_per_beat, boundaries)

        windows.sort(key=lambda w: w.score, reverse=True)
        return windows

    def _energy_windows(
        self, curve: np.ndarray, seconds_per_beat: float, boundaries: Sequence[int]
    ) -> List[TransitionWindow]:
        """Breakdown windows from sustained low-energy regions."""
        cfg = self.config
        windows = []
        region_start = None

        # A trailing sentinel closes a region that runs to the end of the track
        for i, value in enumerate(list(curve) + [np.inf]):
            if value < cfg.low_energy_threshold:
                if region_start is None:
                    region_start = i
                continue
            if region_start is None:
                continue

            if (i - region_start) * seconds_per_beat >= cfg.min_transition_window:
                avg, variance = _slice_stats(curve, region_start, i)
                windows.append(
                    TransitionWindow(
                        start_time=region_start * seconds_per_beat,
                        end_time=i * seconds_per_beat,
                        start_beat=region_start,
                        end_beat=i,
                        type="breakdown",
                        score=cfg.energy_window_score,
                        characteristics=WindowCharacteristics(
                            avg_energy=avg,
                            energy_variance=variance,
                            phrase_alignment=self._is_phrase_aligned(region_start, boundaries),
                        ),
                    )
                )
            region_start = None

        return windows

    def _window_point(
        self, window: TransitionWindow, point_type: str, reason: str, boundaries: Sequence[int]
    ) -> TransitionPoint:
        beat = window.start_beat
        return TransitionPoint(
            time_seconds=window.start_time,
            beat_index=beat,
            type=point_type,
            score=window.score,
            reason=reason,
            energy_level=window.characteristics.avg_energy,
            is_on_phrase=beat == _nearest_boundary(beat, boundaries),
        )

    def _phrase_point(
        self, beat: int, point_type: str, reason: str, curve: np.ndarray, seconds_per_beat: float
    ) -> TransitionPoint:
        return TransitionPoint(
            time_seconds=beat * seconds_per_beat,
            beat_index=beat,
            type=point_type,
            score=self.config.phrase_mix_score,
            reason=reason,
            energy_level=float(curve[beat]) if 0 <= beat < len(curve) else 0.5,
            is_on_phrase=True,
        )

    def _mix_in_points(
        self,
        curve: np.ndarray,
        windows: Sequence[TransitionWindow],
        seconds_per_beat: float,
        boundaries: Sequence[int],
    ) -> List[TransitionPoint]:
        points = []
        first_phrase = next((b for b in boundaries if b > 0), None)
        if first_phrase is not None:
            points.append(
                self._phrase_point(
                    first_phrase, "mix_in", "intro on phrase boundary", curve, seconds_per_beat
                )
            )

        for window in windows:
            if window.type == "intro":
                points.append(self._window_point(window, "mix_in", "Track intro", boundaries))
            elif window.type == "breakdown":
                points.append(self._window_point(window, "mix_in", "Breakdown section", boundaries))

        points.sort(key=lambda p: p.score, reverse=True)
        return points

    def _mix_out_points(
        self,
        curve: np.ndarray,
        windows: Sequence[TransitionWindow],
        seconds_per_beat: float,
        boundaries: Sequence[int],
        total_beats: int,
    ) -> List[TransitionPoint]:
        points = []
        cutoff = total_beats - self.config.phrase_length
        before_outro = [b for b in boundaries if b < cutoff]
        if before_outro:
            points.append(
                self._phrase_point(
                    before_outro[-1], "mix_out", "phrase boundary before outro", curve, seconds_per_beat
                )
            )

        for window in windows:
            if window.type == "outro":
                points.append(self._window_point(window, "mix_out", "Track outro", boundaries))
            elif window.type == "breakdown":
                points.append(self._window_point(window, "mix_out", "Breakdown section", boundaries))

        # Latest first
        points.sort(key=lambda p: p.time_seconds, reverse=True)
        return points
