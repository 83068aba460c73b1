"""Tests for the track library, similarity cache and config loading."""

import json
import pickle
import unittest.mock as mock

import pytest

from mixplan.cache import SimilarityCache, pair_key
from mixplan.config import DEFAULT_CONFIG, load_config
from mixplan.exceptions import LibraryError
from mixplan.models import Embedding, SimilarityResult, Track, TrackAnalysis
from mixplan.repository import InMemoryLibrary, load_library


def _make_result(a=1, b=2, score=0.75):
    return SimilarityResult(
        track_a_id=a,
        track_b_id=b,
        embedding_similarity=0.5,
        tempo_similarity=1.0,
        key_similarity=0.85,
        energy_similarity=0.9,
        combined_score=score,
        key_relation="compatible",
        explanation="weak vibe (50%); tempo match; key: 8A→9A (compatible); energy +1",
    )


def _write_library(path, tracks, locations=None):
    document = {"tracks": tracks}
    if locations is not None:
        document["music_locations"] = locations
    path.write_text(json.dumps(document))
    return path


class TestInMemoryLibrary:
    def setup_method(self):
        self.library = InMemoryLibrary()
        self.track = self.library.add_track(Track(id=1, path="/music/a.wav", title="A"))

    def test_analysis_versions(self):
        first = self.library.insert_analysis(TrackAnalysis(track_id=1, bpm=120.0, key_value="8A", energy_global=5))
        second = self.library.insert_analysis(TrackAnalysis(track_id=1, bpm=121.0, key_value="8A", energy_global=6))
        assert (first.version, second.version) == (1, 2)
        assert self.library.fetch_analysis(1).bpm == 121.0
        assert [a.version for a in self.library.analysis_history(1)] == [1, 2]
        assert self.track.analysis is second

    def test_embedding_tied_to_analysis_version(self):
        self.library.insert_analysis(TrackAnalysis(track_id=1, bpm=120.0, key_value="8A", energy_global=5))
        self.library.insert_embedding(Embedding(track_id=1, analysis_version=1, vector=[1.0, 0.0]))
        assert self.library.fetch_embedding(1).vector == [1.0, 0.0]

        self.library.insert_analysis(TrackAnalysis(track_id=1, bpm=120.0, key_value="8A", energy_global=5))
        assert self.library.fetch_embedding(1) is None

    def test_missing_lookups(self):
        assert self.library.fetch_track(42) is None
        assert self.library.fetch_analysis(42) is None
        assert self.library.fetch_embedding(42) is None

    def test_similarity_unordered(self):
        self.library.insert_similarity(_make_result(1, 2))
        assert self.library.fetch_similarity(2, 1).combined_score == 0.75

    def test_similarity_written_through_cache(self, tmp_path):
        cache = SimilarityCache(tmp_path)
        library = InMemoryLibrary(cache=cache)
        library.insert_similarity(_make_result(3, 4))
        assert cache.get(4, 3).combined_score == 0.75

    def test_reversed_lookup_keeps_scored_direction(self):
        self.library.insert_similarity(_make_result(1, 2))
        result = self.library.fetch_similarity(2, 1)
        assert (result.track_a_id, result.track_b_id) == (1, 2)

    def test_music_locations(self):
        self.library.add_music_location("/music")
        locations = self.library.fetch_music_locations()
        assert [(l.id, l.url) for l in locations] == [(1, "/music")]


class TestLoadLibrary:
    def test_loads_tracks_analyses_and_embeddings(self, tmp_path):
        path = _write_library(
            tmp_path / "library.json",
            [
                {
                    "id": 1,
                    "path": "/music/a.wav",
                    "title": "A",
                    "artist": "DJ",
                    "analysis": {
                        "bpm": 124.0,
                        "key_value": "8A",
                        "energy_global": 6,
                        "waveform_preview": [0.1, 0.5, 0.9],
                        "sections": [{"type": "intro", "start_time": 0.0, "end_time": 16.0}],
                    },
                    "embedding": [0.0, 1.0],
                },
                {"id": 2, "path": "/music/b.wav"},
            ],
            locations=["/music"],
        )
        library = load_library(path)
        assert [t.id for t in library.tracks] == [1, 2]
        track = library.fetch_track(1)
        assert track.display_name == "DJ - A"
        assert track.analysis.sections[0].type == "intro"
        assert track.analysis.has_embedding
        assert library.fetch_embedding(1).vector == [0.0, 1.0]
        assert library.fetch_track(2).analysis is None
        assert library.fetch_music_locations()[0].url == "/music"

    def test_missing_file(self, tmp_path):
        with pytest.raises(LibraryError):
            load_library(tmp_path / "missing.json")

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text("{not json")
        with pytest.raises(LibraryError):
            load_library(path)

    def test_missing_tracks_list(self, tmp_path):
        path = tmp_path / "empty.json"
        path.write_text(json.dumps({"songs": []}))
        with pytest.raises(LibraryError):
            load_library(path)

    def test_unknown_track_field(self, tmp_path):
        path = _write_library(tmp_path / "lib.json", [{"id": 1, "path": "/a", "rating": 5}])
        with pytest.raises(LibraryError):
            load_library(path)

    def test_incomplete_analysis(self, tmp_path):
        path = _write_library(tmp_path / "lib.json", [{"id": 1, "path": "/a", "analysis": {"bpm": 120}}])
        with pytest.raises(LibraryError):
            load_library(path)

    def test_null_bpm(self, tmp_path):
        path = _write_library(
            tmp_path / "lib.json",
            [{"id": 1, "path": "/a", "analysis": {"bpm": None, "key_value": "8A", "energy_global": 5}}],
        )
        with pytest.raises(LibraryError):
            load_library(path)

    def test_non_numeric_energy(self, tmp_path):
        path = _write_library(
            tmp_path / "lib.json",
            [{"id": 1, "path": "/a", "analysis": {"bpm": 120, "key_value": "8A", "energy_global": "high"}}],
        )
        with pytest.raises(LibraryError):
            load_library(path)

    def test_non_string_key(self, tmp_path):
        path = _write_library(
            tmp_path / "lib.json",
            [{"id": 1, "path": "/a", "analysis": {"bpm": 120, "key_value": 8, "energy_global": 5}}],
        )
        with pytest.raises(LibraryError):
            load_library(path)

    def test_numeric_strings_coerced(self, tmp_path):
        path = _write_library(
            tmp_path / "lib.json",
            [{"id": 1, "path": "/a", "analysis": {"bpm": "124.5", "key_value": "8A", "energy_global": "6"}}],
        )
        analysis = load_library(path).fetch_analysis(1)
        assert analysis.bpm == 124.5
        assert analysis.energy_global == 6


class TestSimilarityCache:
    def test_roundtrip_either_order(self, tmp_path):
        cache = SimilarityCache(tmp_path)
        cache.set(_make_result(5, 2))
        assert cache.get(2, 5) == _make_result(5, 2)

    def test_pair_key_unordered(self):
        assert pair_key(1, 2) == pair_key(2, 1)
        assert pair_key(1, 2) != pair_key(1, 3)

    def test_miss(self, tmp_path):
        assert SimilarityCache(tmp_path).get(1, 2) is None

    def test_stale_version_invalidated(self, tmp_path):
        cache = SimilarityCache(tmp_path)
        cache.set(_make_result())
        with mock.patch("mixplan.cache.CACHE_VERSION", 99):
            assert cache.get(1, 2) is None
        assert list(tmp_path.glob("*.pkl")) == []

    def test_foreign_entry_invalidated(self, tmp_path):
        cache = SimilarityCache(tmp_path)
        with open(tmp_path / f"{pair_key(1, 2)}.pkl", "wb") as f:
            pickle.dump({"version": 1, "result": "not a result"}, f)
        assert cache.get(1, 2) is None

    def test_corrupt_file_is_miss(self, tmp_path):
        cache = SimilarityCache(tmp_path)
        (tmp_path / f"{pair_key(1, 2)}.pkl").write_bytes(b"garbage")
        assert cache.get(1, 2) is None

    def test_clear(self, tmp_path):
        cache = SimilarityCache(tmp_path)
        cache.set(_make_result(1, 2))
        cache.set(_make_result(1, 3))
        cache.clear()
        assert cache.get(1, 2) is None


class TestLoadConfig:
    def test_overrides(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"phrase_length": 32, "weights": {"embedding": 0.3, "tempo": 0.4}}))
        config = load_config(path)
        assert config.phrase_length == 32
        assert config.weights.embedding == 0.3
        assert config.weights.tempo == 0.4
        assert config.weights.key == DEFAULT_CONFIG.weights.key
        assert config.curve_resolution == DEFAULT_CONFIG.curve_resolution

    def test_unknown_key(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"phrase_lenght": 32}))
        with pytest.raises(ValueError):
            load_config(path)

    def test_bad_weights(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"weights": {"vibe": 1.0}}))
        with pytest.raises(ValueError):
            load_config(path)

    def test_not_an_object(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("[1, 2]")
        with pytest.raises(ValueError):
            load_config(path)
