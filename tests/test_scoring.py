"""Tests for similarity scoring."""

import threading
import unittest.mock as mock

import numpy as np
import pytest

from mixplan.config import AnalysisConfig, SimilarityWeights
from mixplan.exceptions import OperationCancelledError
from mixplan.models import Embedding, Track, TrackAnalysis
from mixplan.repository import InMemoryLibrary
from mixplan.scoring import (
    SimilarityScorer,
    build_explanation,
    cosine_similarity,
    embedding_similarity,
    energy_clause,
    energy_similarity,
    key_clause,
    tempo_clause,
    tempo_similarity,
)


def _make_track(track_id, bpm=128.0, key="8A", energy=5, analyzed=True):
    analysis = None
    if analyzed:
        analysis = TrackAnalysis(track_id=track_id, bpm=bpm, key_value=key, energy_global=energy)
    return Track(id=track_id, path=f"/music/{track_id}.wav", title=f"Track {track_id}", analysis=analysis)


# --- Pure functions ---


class TestEmbeddingSimilarity:
    def test_identical_vectors(self):
        assert embedding_similarity([1.0, 0.0, 0.0], [1.0, 0.0, 0.0]) == 1.0

    def test_opposite_vectors(self):
        assert embedding_similarity([1.0, 0.0], [-1.0, 0.0]) == pytest.approx(0.0)

    def test_orthogonal_vectors(self):
        assert embedding_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.5)

    def test_missing_vector(self):
        assert embedding_similarity(None, [1.0, 0.0]) == 0.0

    def test_length_mismatch(self):
        assert embedding_similarity([1.0, 0.0], [1.0, 0.0, 0.0]) == 0.0

    def test_zero_vector(self):
        assert embedding_similarity([0.0, 0.0], [1.0, 0.0]) == 0.0

    def test_raw_cosine_keeps_sign(self):
        assert cosine_similarity([1.0, 0.0], [-1.0, 0.0]) == pytest.approx(-1.0)
        assert cosine_similarity([], []) == 0.0

    def test_symmetric(self):
        rng = np.random.default_rng(7)
        for size in (2, 16, 512):
            a = rng.standard_normal(size).tolist()
            b = rng.standard_normal(size).tolist()
            assert cosine_similarity(a, b) == pytest.approx(cosine_similarity(b, a))
            assert embedding_similarity(a, b) == pytest.approx(embedding_similarity(b, a))


class TestTempoSimilarity:
    def test_exact_match(self):
        assert tempo_similarity(128.0, 128.0) == 1.0

    def test_within_one_bpm(self):
        assert tempo_similarity(128.0, 128.9) == 1.0

    def test_half_tempo(self):
        assert tempo_similarity(64.0, 128.0) == 1.0
        assert tempo_similarity(128.0, 64.0) == 1.0

    def test_linear_falloff(self):
        assert tempo_similarity(128.0, 133.0) == pytest.approx(0.5)

    def test_far_apart(self):
        assert tempo_similarity(128.0, 140.0) == 0.0

    def test_custom_thresholds(self):
        config = AnalysisConfig(tempo_full_match=0.0, tempo_zero_match=20.0)
        assert tempo_similarity(120.0, 130.0, config) == pytest.approx(0.5)


class TestEnergySimilarity:
    def test_same(self):
        assert energy_similarity(5, 5) == 1.0

    def test_opposite_ends(self):
        assert energy_similarity(0, 10) == 0.0

    def test_partial(self):
        assert energy_similarity(3, 5) == pytest.approx(0.8)


class TestExplanation:
    def test_tempo_match_under_half_bpm(self):
        assert tempo_clause(0.3) == "tempo match"

    def test_tempo_delta_signed(self):
        assert tempo_clause(2.0) == "Δ+2.0 BPM"
        assert tempo_clause(-1.5) == "Δ-1.5 BPM"

    def test_key_clause(self):
        assert key_clause("8A", "8A", "same") == "same key"
        assert key_clause("8A", "9A", "compatible") == "key: 8A→9A (compatible)"

    def test_energy_clause(self):
        assert energy_clause(0) == "same energy"
        assert energy_clause(2) == "energy +2"
        assert energy_clause(-3) == "energy -3"

    def test_vibe_buckets(self):
        assert build_explanation(0.8, 0.0, "same", 0, "8A", "8A", 0).startswith("similar vibe (80%)")
        assert build_explanation(0.55, 0.0, "same", 0, "8A", "8A", 0).startswith("moderate vibe")
        assert build_explanation(0.2, 0.0, "same", 0, "8A", "8A", 0).startswith("weak vibe")
        assert build_explanation(0.0, 0.0, "same", 0, "8A", "8A", 0).startswith("no vibe data")

    def test_beat_grid_clause(self):
        assert build_explanation(0.0, 0.95, "same", 0, "8A", "8A", 0).endswith("beat-grid aligned")
        assert "beat-grid" not in build_explanation(0.0, 0.5, "same", 0, "8A", "8A", 0)


# --- Scorer ---


class TestSimilarityScorer:
    def setup_method(self):
        self.scorer = SimilarityScorer()

    def test_identical_tracks(self):
        a = _make_track(1)
        b = _make_track(2)
        result = self.scorer.score(a, b, [1.0, 0.0, 0.0], [1.0, 0.0, 0.0])
        assert result.combined_score == pytest.approx(1.0)
        assert result.key_relation == "same"
        assert result.explanation == (
            "similar vibe (100%); tempo match; same key; same energy; beat-grid aligned"
        )

    def test_without_embeddings(self):
        result = self.scorer.score(_make_track(1), _make_track(2))
        # tempo 0.2 + key 0.2 + energy 0.1
        assert result.combined_score == pytest.approx(0.5)
        assert result.embedding_similarity == 0.0
        assert "no vibe data" in result.explanation

    def test_explanation_deltas(self):
        a = _make_track(1, bpm=124.0, key="8A", energy=5)
        b = _make_track(2, bpm=126.0, key="9A", energy=7)
        result = self.scorer.score(a, b)
        assert "Δ+2.0 BPM" in result.explanation
        assert "key: 8A→9A (compatible)" in result.explanation
        assert "energy +2" in result.explanation

    def test_missing_analysis(self):
        result = self.scorer.score(_make_track(1), _make_track(2, analyzed=False))
        assert result.combined_score == 0.0
        assert result.key_relation == "unknown"
        assert result.explanation == "Missing analysis data"

    def test_subscores_in_range(self):
        a = _make_track(1, bpm=90.0, key="Am", energy=0)
        b = _make_track(2, bpm=174.0, key="3B", energy=10)
        result = self.scorer.score(a, b, [1.0, -2.0], [-3.0, 0.5])
        for value in (
            result.embedding_similarity,
            result.tempo_similarity,
            result.key_similarity,
            result.energy_similarity,
            result.combined_score,
        ):
            assert 0.0 <= value <= 1.0

    def test_combined_clamped_with_heavy_weights(self):
        config = AnalysisConfig(weights=SimilarityWeights(embedding=1.0, tempo=1.0, key=1.0, energy=1.0))
        result = SimilarityScorer(config).score(_make_track(1), _make_track(2), [1.0], [1.0])
        assert result.combined_score == 1.0

    def test_score_tracks_uses_library_embeddings(self):
        library = InMemoryLibrary()
        for track in (_make_track(1), _make_track(2)):
            library.add_track(track)
            library.insert_embedding(Embedding(track_id=track.id, analysis_version=1, vector=[0.0, 1.0]))
        scorer = SimilarityScorer(library=library)
        result = scorer.score_tracks(library.fetch_track(1), library.fetch_track(2))
        assert result.embedding_similarity == pytest.approx(1.0)


class TestBatchOperations:
    def setup_method(self):
        self.tracks = [
            _make_track(1, bpm=128.0, key="8A", energy=5),
            _make_track(2, bpm=128.0, key="8A", energy=5),
            _make_track(3, bpm=140.0, key="3B", energy=9),
            _make_track(4, bpm=129.0, key="9A", energy=6),
        ]

    def test_find_similar_sorted_and_excludes_self(self):
        results = SimilarityScorer().find_similar_tracks(self.tracks[0], self.tracks)
        assert [r.track_b_id for r in results][0] == 2
        assert all(r.track_b_id != 1 for r in results)
        scores = [r.combined_score for r in results]
        assert scores == sorted(scores, reverse=True)

    def test_find_similar_limit(self):
        results = SimilarityScorer().find_similar_tracks(self.tracks[0], self.tracks, limit=2)
        assert len(results) == 2

    def test_all_pairs(self):
        library = mock.Mock()
        library.fetch_embedding.return_value = None
        results = SimilarityScorer(library=library).compute_all_similarities(self.tracks)
        assert len(results) == 6
        assert library.insert_similarity.call_count == 6
        pairs = {(r.track_a_id, r.track_b_id) for r in results}
        assert (1, 2) in pairs and (3, 4) in pairs

    def test_all_pairs_skips_unanalyzed(self):
        tracks = self.tracks + [_make_track(5, analyzed=False)]
        results = SimilarityScorer().compute_all_similarities(tracks)
        assert len(results) == 6

    def test_cancelled_sweep(self):
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(OperationCancelledError):
            SimilarityScorer().compute_all_similarities(self.tracks, cancel_event=cancel)
