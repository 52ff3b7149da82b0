"""
Content-hash keyed cache of assessments.

An assessment is stored under the pair (reference hash, student response
hash). Student identity is deliberately not part of the key: two students
who submit identical work to the same task share one cached assessment.
The cache is best-effort. Any storage failure is logged and treated as a
miss so it can never stop a run.
"""

from __future__ import annotations

import hashlib
import logging
from typing import Any

from cachetools import TTLCache
from diskcache import Cache

from assessment_pipeline.assessor.validation import validate_assessment_data
from assessment_pipeline.config import CacheBackend, Settings
from assessment_pipeline.errors import AssessmentValidationError
from assessment_pipeline.models import AssessmentSet

logger = logging.getLogger(__name__)


class AssessmentCache:
    """Caches AssessmentSets keyed by reference and response content hashes."""

    def __init__(
        self,
        store: TTLCache | Cache | None = None,
        ttl_seconds: int = 6 * 60 * 60,
        key_version: str = "",
    ) -> None:
        """Initialize the cache.

        Args:
            store: Backing store. Defaults to an in-memory TTL cache.
            ttl_seconds: Lifetime of entries written to a disk store.
            key_version: Optional prefix mixed into every key.
        """
        self._store = store if store is not None else TTLCache(maxsize=10_000, ttl=ttl_seconds)
        self._ttl_seconds = ttl_seconds
        self._key_version = key_version
        self._hits = 0
        self._misses = 0

    @classmethod
    def from_settings(cls, settings: Settings) -> AssessmentCache:
        """Build a cache using the configured backend."""
        store: TTLCache | Cache
        if settings.cache_backend is CacheBackend.DISK:
            settings.cache_directory.mkdir(parents=True, exist_ok=True)
            store = Cache(directory=str(settings.cache_directory))
            logger.info("Using disk assessment cache at: %s", settings.cache_directory)
        else:
            store = TTLCache(maxsize=10_000, ttl=settings.cache_ttl_seconds)
            logger.info("Using in-memory assessment cache with TTL: %ss", settings.cache_ttl_seconds)
        return cls(store, settings.cache_ttl_seconds, settings.cache_key_version)

    def make_key(self, reference_hash: str | None, response_hash: str | None) -> str | None:
        """
        Build the cache key for a reference/response pair.

        Returns:
            A SHA-256 hex key, or None if either hash is missing or empty.
        """
        if not reference_hash or not response_hash:
            return None
        parts = [reference_hash, response_hash]
        if self._key_version:
            parts.insert(0, self._key_version)
        return hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()

    def get(self, reference_hash: str | None, response_hash: str | None) -> AssessmentSet | None:
        """Return the cached assessment for a pair, or None on a miss."""
        key = self.make_key(reference_hash, response_hash)
        if key is None:
            return None

        try:
            cached = self._store.get(key)
        except Exception as e:  # pylint: disable=broad-except
            logger.warning("Error reading assessment cache for key %s...: %s", key[:16], e)
            self._misses += 1
            return None

        if cached is None:
            logger.debug("Cache miss for key: %s...", key[:16])
            self._misses += 1
            return None

        try:
            assessment = validate_assessment_data(cached)
        except AssessmentValidationError as e:
            logger.warning("Discarding corrupt cache entry %s...: %s", key[:16], e)
            self._misses += 1
            return None

        logger.debug("Cache hit for key: %s...", key[:16])
        self._hits += 1
        return assessment

    def set(
        self,
        reference_hash: str | None,
        response_hash: str | None,
        assessment: AssessmentSet,
    ) -> None:
        """Store an assessment for a pair. No-op if either hash is missing."""
        key = self.make_key(reference_hash, response_hash)
        if key is None:
            return

        value = assessment.to_criteria_map()
        try:
            if isinstance(self._store, Cache):
                self._store.set(key, value, expire=self._ttl_seconds)
            else:
                self._store[key] = value
            logger.debug("Cached assessment for key: %s...", key[:16])
        except Exception as e:  # pylint: disable=broad-except
            logger.warning("Error writing assessment cache for key %s...: %s", key[:16], e)

    def clear(self) -> None:
        """Remove every cached assessment."""
        try:
            self._store.clear()
            logger.info("Assessment cache cleared")
        except Exception as e:  # pylint: disable=broad-except
            logger.error("Error clearing assessment cache: %s", e)

    def stats(self) -> dict[str, Any]:
        """Hit/miss counters for this instance and the current entry count."""
        try:
            size = len(self._store)
        except Exception:  # pylint: disable=broad-except
            size = None
        return {"hits": self._hits, "misses": self._misses, "size": size}

    def close(self) -> None:
        """Release the backing store."""
        if isinstance(self._store, Cache):
            self._store.close()

    def __enter__(self) -> AssessmentCache:
        return self

    def __exit__(self, exc_type: type, exc_val: Exception, exc_tb: Any) -> None:
        self.close()
