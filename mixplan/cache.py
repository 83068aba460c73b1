"""Similarity result caching for MixPlan."""

import hashlib
import pickle
from pathlib import Path
from typing import Optional

from .logging_config import get_logger
from .models import SimilarityResult

logger = get_logger(__name__)

# Bump this when SimilarityResult or scoring changes to invalidate stale cache
CACHE_VERSION = 1


def pair_key(track_a_id: int, track_b_id: int) -> str:
    """Cache key for an unordered track pair."""
    low, high = sorted((track_a_id, track_b_id))
    return hashlib.md5(f"{low}:{high}".encode()).hexdigest()


class SimilarityCache:
    """Pickle-per-pair cache of similarity results."""

    def __init__(self, cache_dir: Optional[Path] = None):
        """Initialize cache.

        Args:
            cache_dir: Directory for cache files. Defaults to ./.mixplan/cache
        """
        if cache_dir is None:
            cache_dir = Path.cwd() / ".mixplan" / "cache"

        self.cache_dir = Path(cache_dir)
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        logger.debug("Cache directory: %s", self.cache_dir)

    def _cache_file(self, track_a_id: int, track_b_id: int) -> Path:
        return self.cache_dir / f"{pair_key(track_a_id, track_b_id)}.pkl"

    def get(self, track_a_id: int, track_b_id: int) -> Optional[SimilarityResult]:
        """Get cached result for a pair in either order, None if missing or stale.

        The result is returned as it was scored; its ids are not swapped to
        match the lookup order.
        """
        label = f"{track_a_id}/{track_b_id}"
        try:
            cache_file = self._cache_file(track_a_id, track_b_id)
            if not cache_file.exists():
                logger.debug("Cache miss: %s", label)
                return None

            with open(cache_file, "rb") as f:
                entry = pickle.load(f)

            # Invalidate stale cache entries
            if not isinstance(entry, dict) or not isinstance(entry.get("result"), SimilarityResult):
                logger.debug("Cache stale (not SimilarityResult): %s", label)
                cache_file.unlink(missing_ok=True)
                return None
            if entry.get("version", 0) < CACHE_VERSION:
                logger.debug(
                    "Cache stale (version %s < %s): %s",
                    entry.get("version", 0),
                    CACHE_VERSION,
                    label,
                )
                cache_file.unlink(missing_ok=True)
                return None

            logger.debug("Cache hit: %s", label)
            return entry["result"]
        except Exception as e:
            logger.warning("Cache read error: %s", e)
            return None

    def set(self, result: SimilarityResult):
        """Cache a result under its unordered track pair."""
        try:
            cache_file = self._cache_file(result.track_a_id, result.track_b_id)
            with open(cache_file, "wb") as f:
                pickle.dump({"version": CACHE_VERSION, "result": result}, f)
            logger.debug("Cached similarity: %s/%s", result.track_a_id, result.track_b_id)
        except Exception as e:
            logger.warning("Cache write error: %s", e)

    def clear(self):
        """Clear all cached results."""
        for cache_file in self.cache_dir.glob("*.pkl"):
            cache_file.unlink()
        logger.info("Cache cleared")
