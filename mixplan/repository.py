"""Track library access: the lookup protocol and an in-memory implementation."""

import json
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Tuple, Union

from .cache import SimilarityCache
from .exceptions import LibraryError
from .logging_config import get_logger
from .models import (
    CuePoint,
    Embedding,
    MusicLocation,
    QAFlag,
    SimilarityResult,
    Track,
    TrackAnalysis,
    TrackSection,
)

logger = get_logger(__name__)


class TrackLibrary(Protocol):
    """Lookups the scoring and planning components need from persistence."""

    def fetch_track(self, track_id: int) -> Optional[Track]:
        ...

    def fetch_analysis(self, track_id: int) -> Optional[TrackAnalysis]:
        ...

    def fetch_embedding(self, track_id: int) -> Optional[Embedding]:
        ...

    def insert_similarity(self, result: SimilarityResult) -> None:
        ...

    def fetch_music_locations(self) -> List[MusicLocation]:
        ...


class InMemoryLibrary:
    """Track library held in memory.

    Analyses are versioned: inserting a new analysis for a track appends a
    version and keeps the earlier ones. Embeddings belong to one analysis
    version, and lookups return the embedding of the latest analysis.
    """

    def __init__(self, cache: Optional[SimilarityCache] = None):
        """Initialize library.

        Args:
            cache: Optional similarity cache that inserted results are
                written through to.
        """
        self.cache = cache
        self._tracks: Dict[int, Track] = {}
        self._analyses: Dict[int, List[TrackAnalysis]] = {}
        self._embeddings: Dict[Tuple[int, int], Embedding] = {}
        self._similarities: Dict[Tuple[int, int], SimilarityResult] = {}
        self._locations: List[MusicLocation] = []

    @property
    def tracks(self) -> List[Track]:
        return list(self._tracks.values())

    def add_track(self, track: Track) -> Track:
        """Register a track, recording its attached analysis as a new version."""
        self._tracks[track.id] = track
        if track.analysis is not None:
            self.insert_analysis(track.analysis)
        return track

    def fetch_track(self, track_id: int) -> Optional[Track]:
        return self._tracks.get(track_id)

    def insert_analysis(self, analysis: TrackAnalysis) -> TrackAnalysis:
        """Store an analysis as the next version for its track.

        Returns:
            The stored analysis, carrying its assigned version.
        """
        history = self._analyses.setdefault(analysis.track_id, [])
        stored = replace(analysis, version=len(history) + 1)
        history.append(stored)

        track = self._tracks.get(analysis.track_id)
        if track is not None:
            track.analysis = stored
        logger.debug("Stored analysis v%d for track %s", stored.version, analysis.track_id)
        return stored

    def fetch_analysis(self, track_id: int) -> Optional[TrackAnalysis]:
        history = self._analyses.get(track_id)
        return history[-1] if history else None

    def analysis_history(self, track_id: int) -> List[TrackAnalysis]:
        return list(self._analyses.get(track_id, []))

    def insert_embedding(self, embedding: Embedding):
        self._embeddings[(embedding.track_id, embedding.analysis_version)] = embedding

    def fetch_embedding(self, track_id: int) -> Optional[Embedding]:
        analysis = self.fetch_analysis(track_id)
        if analysis is None:
            return None
        return self._embeddings.get((track_id, analysis.version))

    def insert_similarity(self, result: SimilarityResult):
        key = tuple(sorted((result.track_a_id, result.track_b_id)))
        self._similarities[key] = result
        if self.cache is not None:
            self.cache.set(result)

    def fetch_similarity(self, track_a_id: int, track_b_id: int) -> Optional[SimilarityResult]:
        """Stored result for an unordered pair, falling back to the cache.

        The result keeps the direction it was scored in, so ``track_a_id``
        and the explanation may describe the pair in the reverse order.
        """
        key = tuple(sorted((track_a_id, track_b_id)))
        result = self._similarities.get(key)
        if result is None and self.cache is not None:
            result = self.cache.get(track_a_id, track_b_id)
        return result

    def add_music_location(self, url: str) -> MusicLocation:
        location = MusicLocation(
            id=len(self._locations) + 1, url=url, created_at=datetime.now()
        )
        self._locations.append(location)
        return location

    def fetch_music_locations(self) -> List[MusicLocation]:
        return list(self._locations)


def _parse_analysis(track_id: int, data: dict) -> TrackAnalysis:
    data = dict(data)
    if not isinstance(data.get("key_value"), str):
        raise TypeError(f"key_value must be a string, got {data.get('key_value')!r}")
    data["bpm"] = float(data.get("bpm"))
    data["energy_global"] = int(data.get("energy_global"))
    sections = [TrackSection(**s) for s in data.pop("sections", [])]
    cue_points = [CuePoint(**c) for c in data.pop("cue_points", [])]
    qa_flags = [QAFlag(**q) for q in data.pop("qa_flags", [])]
    return TrackAnalysis(
        track_id=track_id,
        sections=sections,
        cue_points=cue_points,
        qa_flags=qa_flags,
        **data,
    )


def load_library(path: Union[str, Path], cache: Optional[SimilarityCache] = None) -> InMemoryLibrary:
    """Build a library from a JSON document.

    The document is an object with a ``tracks`` list and an optional
    ``music_locations`` list of URLs. Each track holds Track fields plus an
    optional ``analysis`` object (TrackAnalysis fields without ``track_id``)
    and an optional ``embedding`` vector tied to that analysis.

    Args:
        path: Path to the JSON file.
        cache: Optional similarity cache for the library.

    Returns:
        Populated InMemoryLibrary.

    Raises:
        LibraryError: If the file cannot be read or is malformed.
    """
    try:
        with open(path, encoding="utf-8") as f:
            document = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise LibraryError(f"Cannot read library {path}: {e}") from e

    if not isinstance(document, dict) or not isinstance(document.get("tracks"), list):
        raise LibraryError(f"Library {path} must be an object with a 'tracks' list")

    library = InMemoryLibrary(cache=cache)
    for url in document.get("music_locations", []):
        library.add_music_location(url)

    for entry in document["tracks"]:
        try:
            entry = dict(entry)
            analysis_data = entry.pop("analysis", None)
            vector = entry.pop("embedding", None)
            track = library.add_track(Track(**entry))
            if analysis_data is not None:
                analysis_data = dict(analysis_data, has_embedding=vector is not None)
                stored = library.insert_analysis(_parse_analysis(track.id, analysis_data))
                if vector is not None:
                    library.insert_embedding(
                        Embedding(
                            track_id=track.id,
                            analysis_version=stored.version,
                            vector=[float(v) for v in vector],
                        )
                    )
        except (TypeError, ValueError) as e:
            raise LibraryError(f"Malformed track entry in {path}: {e}") from e

    logger.info("Loaded %d tracks from %s", len(library.tracks), path)
    return library
