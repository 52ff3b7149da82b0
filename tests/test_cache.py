"""
Unit tests for the content-hash keyed assessment cache.
"""

from pathlib import Path
from unittest.mock import MagicMock

from assessment_pipeline.assessor.cache import AssessmentCache
from assessment_pipeline.config import CacheBackend, Settings
from assessment_pipeline.models import Assessment, AssessmentSet


def _assessment(score: float = 4) -> AssessmentSet:
    entry = Assessment(score=score, reasoning="Well argued")
    return AssessmentSet(completeness=entry, accuracy=entry, spag=entry)


class TestAssessmentCache:
    """Tests for AssessmentCache."""

    def test_set_then_get(self) -> None:
        cache = AssessmentCache()
        cache.set("ref-hash", "resp-hash", _assessment(3))

        cached = cache.get("ref-hash", "resp-hash")

        assert cached == _assessment(3)
        assert cache.stats()["hits"] == 1

    def test_miss_for_other_pair(self) -> None:
        cache = AssessmentCache()
        cache.set("ref-hash", "resp-hash", _assessment())

        assert cache.get("other-ref", "resp-hash") is None
        assert cache.get("ref-hash", "other-resp") is None
        assert cache.stats()["misses"] == 2

    def test_missing_hashes_are_noops(self) -> None:
        store = MagicMock()
        cache = AssessmentCache(store)

        cache.set(None, "resp-hash", _assessment())
        cache.set("ref-hash", "", _assessment())

        assert cache.get("", "resp-hash") is None
        assert cache.get("ref-hash", None) is None
        store.__setitem__.assert_not_called()
        store.get.assert_not_called()

    def test_read_failure_degrades_to_miss(self) -> None:
        store = MagicMock()
        store.get.side_effect = RuntimeError("store offline")

        assert AssessmentCache(store).get("ref-hash", "resp-hash") is None

    def test_write_failure_is_swallowed(self) -> None:
        store = MagicMock()
        store.__setitem__.side_effect = RuntimeError("quota exceeded")

        AssessmentCache(store).set("ref-hash", "resp-hash", _assessment())

    def test_corrupt_entry_is_a_miss(self) -> None:
        store = MagicMock()
        store.get.return_value = {"completeness": "garbled"}

        assert AssessmentCache(store).get("ref-hash", "resp-hash") is None

    def test_key_is_order_sensitive_and_fixed_length(self) -> None:
        cache = AssessmentCache()

        key = cache.make_key("a", "b")

        assert key is not None and len(key) == 64
        assert key != cache.make_key("b", "a")

    def test_key_version_changes_key(self) -> None:
        assert AssessmentCache(key_version="v2").make_key("a", "b") != AssessmentCache().make_key(
            "a", "b"
        )

    def test_clear(self) -> None:
        cache = AssessmentCache()
        cache.set("ref-hash", "resp-hash", _assessment())

        cache.clear()

        assert cache.get("ref-hash", "resp-hash") is None


class TestCacheBackends:
    """Tests for building the cache from settings."""

    def test_disk_cache_persists_between_instances(self, temp_dir: Path) -> None:
        settings = Settings(
            assessor_api_key="test-api-key",
            cache_backend=CacheBackend.DISK,
            cache_directory=temp_dir / "cache",
        )

        with AssessmentCache.from_settings(settings) as cache:
            cache.set("ref-hash", "resp-hash", _assessment(2))

        with AssessmentCache.from_settings(settings) as cache:
            assert cache.get("ref-hash", "resp-hash") == _assessment(2)

    def test_memory_cache_is_default(self, test_settings: Settings) -> None:
        cache = AssessmentCache.from_settings(test_settings)
        cache.set("ref-hash", "resp-hash", _assessment())

        assert cache.stats()["size"] == 1
