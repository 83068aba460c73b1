"""Pairwise track similarity: embedding, tempo, key and energy."""

import threading
from typing import List, Optional, Sequence

import numpy as np

from .config import DEFAULT_CONFIG, AnalysisConfig
from .exceptions import OperationCancelledError
from .keys import key_similarity
from .logging_config import get_logger
from .models import SimilarityResult, Track

logger = get_logger(__name__)


# --- Pure scoring functions ---


def cosine_similarity(a: Optional[Sequence[float]], b: Optional[Sequence[float]]) -> float:
    """Raw cosine similarity in [-1, 1]; 0 for absent, empty or mismatched vectors."""
    if a is None or b is None:
        return 0.0
    va = np.asarray(a, dtype=float)
    vb = np.asarray(b, dtype=float)
    if va.shape != vb.shape or va.size == 0:
        return 0.0
    norm = np.linalg.norm(va) * np.linalg.norm(vb)
    if norm <= 0 or not np.isfinite(norm):
        return 0.0
    return float(np.clip(np.dot(va, vb) / norm, -1.0, 1.0))


def embedding_similarity(a: Optional[Sequence[float]], b: Optional[Sequence[float]]) -> float:
    """Cosine similarity remapped from [-1, 1] to [0, 1].

    Absent or unusable vectors score 0 rather than the 0.5 an orthogonal
    pair would get.
    """
    if a is None or b is None or len(a) == 0 or len(a) != len(b):
        return 0.0
    va = np.asarray(a, dtype=float)
    vb = np.asarray(b, dtype=float)
    if not np.any(va) or not np.any(vb):
        return 0.0
    return (cosine_similarity(va, vb) + 1.0) / 2.0


def tempo_similarity(bpm_a: float, bpm_b: float, config: AnalysisConfig = DEFAULT_CONFIG) -> float:
    """Tempo similarity with half/double-tempo equivalence (64 ~ 128 BPM)."""
    diff = min(abs(bpm_a - bpm_b), abs(bpm_a - bpm_b * 2), abs(bpm_a * 2 - bpm_b))
    if diff <= config.tempo_full_match:
        return 1.0
    if diff >= config.tempo_zero_match:
        return 0.0
    return 1.0 - diff / config.tempo_zero_match


def energy_similarity(energy_a: int, energy_b: int) -> float:
    """Similarity of two 0-10 energy levels."""
    return max(0.0, 1.0 - abs(energy_a - energy_b) / 10.0)


def _vibe_clause(score: float) -> str:
    percent = int(score * 100)
    if percent >= 70:
        return f"similar vibe ({percent}%)"
    if percent >= 50:
        return f"moderate vibe ({percent}%)"
    if percent > 0:
        return f"weak vibe ({percent}%)"
    return "no vibe data"


def tempo_clause(bpm_delta: float, config: AnalysisConfig = DEFAULT_CONFIG) -> str:
    if abs(bpm_delta) < config.tempo_match_display:
        return "tempo match"
    sign = "+" if bpm_delta >= 0 else ""
    return f"Δ{sign}{bpm_delta:.1f} BPM"


def key_clause(key_a: str, key_b: str, relation: str) -> str:
    if relation == "same":
        return "same key"
    return f"key: {key_a}→{key_b} ({relation})"


def energy_clause(energy_delta: int) -> str:
    if energy_delta == 0:
        return "same energy"
    sign = "+" if energy_delta > 0 else ""
    return f"energy {sign}{energy_delta}"


def build_explanation(
    embedding_sim: float,
    tempo_sim: float,
    relation: str,
    bpm_delta: float,
    key_a: str,
    key_b: str,
    energy_delta: int,
    config: AnalysisConfig = DEFAULT_CONFIG,
) -> str:
    """Assemble a human-readable explanation from discrete clauses."""
    parts = [
        _vibe_clause(embedding_sim),
        tempo_clause(bpm_delta, config),
        key_clause(key_a, key_b, relation),
        energy_clause(energy_delta),
    ]
    if tempo_sim >= config.beat_grid_threshold:
        parts.append("beat-grid aligned")
    return "; ".join(parts)


class SimilarityScorer:
    """Combines embedding, tempo, key and energy similarity per track pair."""

    def __init__(self, config: AnalysisConfig = None, library=None):
        """Initialize scorer.

        Args:
            config: Scoring configuration. Uses DEFAULT_CONFIG if not provided.
            library: Optional TrackLibrary used to look up embeddings and to
                store all-pairs results.
        """
        self.config = config or DEFAULT_CONFIG
        self.library = library

    def embedding_for(self, track: Track) -> Optional[List[float]]:
        if self.library is None:
            return None
        embedding = self.library.fetch_embedding(track.id)
        return embedding.vector if embedding is not None else None

    def score(
        self,
        track_a: Track,
        track_b: Track,
        embedding_a: Optional[Sequence[float]] = None,
        embedding_b: Optional[Sequence[float]] = None,
    ) -> SimilarityResult:
        """Score two tracks. Never raises on missing data.

        Args:
            track_a: First track.
            track_b: Second track.
            embedding_a: Embedding of track_a, if known.
            embedding_b: Embedding of track_b, if known.

        Returns:
            SimilarityResult with sub-scores in [0, 1] and an explanation.
        """
        analysis_a = track_a.analysis
        analysis_b = track_b.analysis
        if analysis_a is None or analysis_b is None:
            return SimilarityResult(
                track_a_id=track_a.id,
                track_b_id=track_b.id,
                embedding_similarity=0.0,
                tempo_similarity=0.0,
                key_similarity=0.0,
                energy_similarity=0.0,
                combined_score=0.0,
                key_relation="unknown",
                explanation="Missing analysis data",
            )

        emb_sim = embedding_similarity(embedding_a, embedding_b)
        tempo_sim = tempo_similarity(analysis_a.bpm, analysis_b.bpm, self.config)
        key_sim, relation = key_similarity(analysis_a.key_value, analysis_b.key_value)
        energy_sim = energy_similarity(analysis_a.energy_global, analysis_b.energy_global)

        w = self.config.weights
        combined = (
            w.embedding * emb_sim + w.tempo * tempo_sim + w.key * key_sim + w.energy * energy_sim
        )
        combined = float(np.clip(combined, 0.0, 1.0))

        explanation = build_explanation(
            emb_sim,
            tempo_sim,
            relation,
            analysis_b.bpm - analysis_a.bpm,
            analysis_a.key_value,
            analysis_b.key_value,
            analysis_b.energy_global - analysis_a.energy_global,
            self.config,
        )

        return SimilarityResult(
            track_a_id=track_a.id,
            track_b_id=track_b.id,
            embedding_similarity=emb_sim,
            tempo_similarity=tempo_sim,
            key_similarity=key_sim,
            energy_similarity=energy_sim,
            combined_score=combined,
            key_relation=relation,
            explanation=explanation,
        )

    def score_tracks(self, track_a: Track, track_b: Track) -> SimilarityResult:
        """Score two tracks, looking embeddings up in the attached library."""
        return self.score(track_a, track_b, self.embedding_for(track_a), self.embedding_for(track_b))

    def find_similar_tracks(
        self, track: Track, candidates: Sequence[Track], limit: int = 10
    ) -> List[SimilarityResult]:
        """Rank candidates by combined score against ``track``.

        Returns:
            Up to ``limit`` results, best first. The query track is skipped.
        """
        query_embedding = self.embedding_for(track)
        results = []
        for other in candidates:
            if other.id == track.id:
                continue
            results.append(self.score(track, other, query_embedding, self.embedding_for(other)))

        results.sort(key=lambda r: r.combined_score, reverse=True)
        logger.debug("Ranked %d candidates for track %s", len(results), track.id)
        return results[:limit]

    def compute_all_similarities(
        self, tracks: Sequence[Track], cancel_event: Optional[threading.Event] = None
    ) -> List[SimilarityResult]:
        """Score every unordered pair of analysed tracks.

        Each result is also inserted into the attached library, if any.

        Args:
            tracks: Tracks to compare. Tracks without analysis are skipped.
            cancel_event: Checked between pairs; when set the sweep stops.

        Raises:
            OperationCancelledError: If ``cancel_event`` is set mid-sweep.
        """
        analyzed = [t for t in tracks if t.analysis is not None]
        embeddings = {t.id: self.embedding_for(t) for t in analyzed}
        results = []

        for i in range(len(analyzed)):
            for j in range(i + 1, len(analyzed)):
                if cancel_event is not None and cancel_event.is_set():
                    logger.info("Similarity sweep cancelled after %d pairs", len(results))
                    raise OperationCancelledError("Similarity sweep cancelled")

                a, b = analyzed[i], analyzed[j]
                result = self.score(a, b, embeddings[a.id], embeddings[b.id])
                if self.library is not None:
                    self.library.insert_similarity(result)
                results.append(result)

        logger.info("Computed %d similarities over %d tracks", len(results), len(analyzed))
        return results
