"""Section-level embeddings and track section profiles."""

import threading
from typing import List, Optional, Protocol, Sequence

import librosa
import numpy as np

from .config import DEFAULT_CONFIG, AnalysisConfig
from .curves import pearson_correlation
from .exceptions import InvalidRangeError, OperationCancelledError
from .logging_config import get_logger
from .models import (
    SectionEmbedding,
    SectionMatch,
    SectionSimilarityResult,
    TrackSection,
    TrackSectionProfile,
)
from .scoring import cosine_similarity

logger = get_logger(__name__)


class Embedder(Protocol):
    """Produces a fixed-length embedding for a span of audio."""

    def embed(self, samples: np.ndarray, sample_rate: float) -> np.ndarray:
        ...


class MelSpectrumEmbedder:
    """Log-mel band means and deviations, L2-normalized.

    With the default 256 bands this yields a 512-dim vector, the same shape
    the similarity scorer expects from model embeddings.
    """

    def __init__(self, n_mels: int = 256, n_fft: int = 8192, hop_length: int = 2048):
        self.n_mels = n_mels
        self.n_fft = n_fft
        self.hop_length = hop_length

    def embed(self, samples: np.ndarray, sample_rate: float) -> np.ndarray:
        y = np.asarray(samples, dtype=np.float32)
        if len(y) < self.n_fft:
            y = librosa.util.fix_length(y, size=self.n_fft)

        mel = librosa.feature.melspectrogram(
            y=y,
            sr=int(sample_rate),
            n_fft=self.n_fft,
            hop_length=self.hop_length,
            n_mels=self.n_mels,
        )
        log_mel = librosa.power_to_db(mel, ref=np.max)
        vector = np.concatenate([log_mel.mean(axis=1), log_mel.std(axis=1)])
        return _l2_normalize(np.nan_to_num(vector))


def _l2_normalize(vector: np.ndarray) -> np.ndarray:
    norm = float(np.linalg.norm(vector))
    if norm > 0:
        return vector / norm
    return vector


def rms_energy(samples: np.ndarray) -> float:
    if len(samples) == 0:
        return 0.0
    return float(np.sqrt(np.mean(np.square(samples, dtype=np.float64))))


def zero_crossing_rate(samples: np.ndarray) -> float:
    """Fraction of adjacent sample pairs that change sign (0 counts as positive)."""
    if len(samples) < 2:
        return 0.0
    positive = samples >= 0
    return float(np.count_nonzero(positive[1:] != positive[:-1]) / (len(samples) - 1))


def spectral_centroid(samples: np.ndarray, sample_rate: float, n_fft: int = 2048) -> float:
    """Mean spectral centroid in Hz; 0 for spans shorter than one FFT frame."""
    if len(samples) < n_fft:
        return 0.0
    centroid = librosa.feature.spectral_centroid(
        y=np.asarray(samples, dtype=np.float32), sr=int(sample_rate), n_fft=n_fft
    )
    return float(np.nan_to_num(np.mean(centroid)))


class SectionProfiler:
    """Windows a track into sections, measures them and aggregates a profile."""

    def __init__(self, embedder: Embedder, config: AnalysisConfig = None):
        """Initialize profiler.

        Args:
            embedder: Source of per-section embedding vectors.
            config: Analysis configuration. Uses DEFAULT_CONFIG if not provided.
        """
        self.embedder = embedder
        self.config = config or DEFAULT_CONFIG

    def profile_track(
        self,
        samples: Sequence[float],
        sample_rate: float,
        sections: Optional[Sequence[TrackSection]] = None,
        track_id: int = 0,
        cancel_event: Optional[threading.Event] = None,
    ) -> TrackSectionProfile:
        """Build a section profile for one track.

        Args:
            samples: Mono audio samples.
            sample_rate: Samples per second.
            sections: Structural sections. When empty, overlapping fixed-length
                windows are used instead.
            track_id: Identifier stored on the profile.
            cancel_event: Checked between sections.

        Returns:
            TrackSectionProfile with section embeddings, a duration-weighted
            global embedding and a 100-point energy curve.

        Raises:
            InvalidRangeError: If a section does not cover at least one sample.
            OperationCancelledError: If ``cancel_event`` is set mid-profile.
        """
        y = np.asarray(samples, dtype=np.float32)
        if sections:
            spans = [(s.start_time, s.end_time, s.type) for s in sections]
        else:
            spans = self._sliding_windows(len(y) / sample_rate if sample_rate > 0 else 0.0)

        embeddings = []
        for start, end, section_type in spans:
            if cancel_event is not None and cancel_event.is_set():
                raise OperationCancelledError("Section profiling cancelled")
            embeddings.append(self._embed_section(y, sample_rate, start, end, section_type))

        profile = TrackSectionProfile(
            track_id=track_id,
            sections=embeddings,
            global_embedding=self._global_embedding(embeddings).tolist(),
            energy_curve=self._energy_curve(y).tolist(),
        )
        logger.info("Generated %d section embeddings for track %s", len(embeddings), track_id)
        return profile

    def _sliding_windows(self, duration: float) -> List[tuple]:
        cfg = self.config
        step = cfg.section_window_seconds - cfg.section_window_overlap
        windows = []
        t = 0.0
        index = 0
        while t < duration - 1.0:
            windows.append((t, min(t + cfg.section_window_seconds, duration), f"window_{index}"))
            t += step
            index += 1
        return windows

    def _embed_section(
        self, y: np.ndarray, sample_rate: float, start: float, end: float, section_type: str
    ) -> SectionEmbedding:
        start_sample = int(start * sample_rate)
        end_sample = min(int(end * sample_rate), len(y))
        if end_sample <= start_sample:
            raise InvalidRangeError(start, end)

        segment = y[start_sample:end_sample]
        vector = np.asarray(self.embedder.embed(segment, sample_rate), dtype=float)
        logger.debug("Embedded %s (%.1fs - %.1fs)", section_type, start, end)

        return SectionEmbedding(
            section_type=section_type,
            start_time=start,
            end_time=end,
            vector=vector.tolist(),
            energy=rms_energy(segment),
            spectral_centroid=spectral_centroid(segment, sample_rate, self.config.spectral_fft_size),
            zero_crossing_rate=zero_crossing_rate(segment),
        )

    def _global_embedding(self, sections: List[SectionEmbedding]) -> np.ndarray:
        if not sections:
            return np.zeros(self.config.embedding_dim)

        vectors = np.asarray([s.vector for s in sections], dtype=float)
        durations = np.asarray([s.duration for s in sections], dtype=float)
        total = durations.sum()
        if total <= 0:
            return np.zeros(vectors.shape[1])

        weighted = (vectors * (durations / total)[:, None]).sum(axis=0)
        return _l2_normalize(weighted)

    def _energy_curve(self, y: np.ndarray) -> np.ndarray:
        windows = self.config.curve_resolution
        per_window = len(y) // windows
        curve = np.array(
            [rms_energy(y[i * per_window : (i + 1) * per_window]) for i in range(windows)]
        )
        peak = curve.max() if len(curve) else 0.0
        if peak > 0:
            curve = curve / peak
        return curve

    def compare_profiles(
        self, profile_a: TrackSectionProfile, profile_b: TrackSectionProfile
    ) -> SectionSimilarityResult:
        """Compare two section profiles.

        Section matches are reported for inspection; the overall score only
        averages global embedding similarity and energy curve correlation.
        """
        global_sim = cosine_similarity(profile_a.global_embedding, profile_b.global_embedding)
        energy_corr = pearson_correlation(profile_a.energy_curve, profile_b.energy_curve)

        matches = []
        for i, source in enumerate(profile_a.sections):
            best_index = -1
            best_score = -1.0
            for j, target in enumerate(profile_b.sections):
                score = cosine_similarity(source.vector, target.vector)
                if score > best_score:
                    best_score = score
                    best_index = j
            if best_index >= 0 and best_score > self.config.section_match_threshold:
                matches.append(SectionMatch(source_index=i, target_index=best_index, score=best_score))

        return SectionSimilarityResult(
            global_similarity=global_sim,
            energy_correlation=energy_corr,
            section_matches=matches,
            overall_score=(global_sim + energy_corr) / 2,
        )
