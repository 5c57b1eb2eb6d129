"""Tests for the in-memory embedding cache."""

import pytest

from issue_intelligence.engine.config import ConfigurationError
from issue_intelligence.engine.embedding_cache import EmbeddingCache


class FakeClock:
    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class TestEmbeddingCacheGetSet:
    def setup_method(self):
        self.clock = FakeClock()
        self.cache = EmbeddingCache(ttl_hours=1, max_size=100, clock=self.clock)

    def test_get_missing_returns_none(self):
        assert self.cache.get("1", "h") is None

    def test_set_then_get(self):
        self.cache.set("1", "h1", [0.1, 0.2])
        assert self.cache.get("1", "h1") == [0.1, 0.2]

    def test_get_returns_copy(self):
        self.cache.set("1", "h1", [0.1, 0.2])
        first = self.cache.get("1", "h1")
        first.append(9.9)
        assert self.cache.get("1", "h1") == [0.1, 0.2]

    def test_set_does_not_alias_caller_list(self):
        vector = [0.1, 0.2]
        self.cache.set("1", "h1", vector)
        vector[0] = 5.0
        assert self.cache.get("1", "h1") == [0.1, 0.2]

    def test_overwrite_replaces_entry(self):
        self.cache.set("1", "h1", [0.1])
        self.cache.set("1", "h2", [0.2])
        assert self.cache.get("1", "h2") == [0.2]
        assert self.cache.size() == 1

    def test_hash_mismatch_invalidates(self):
        self.cache.set("1", "h1", [0.1])
        assert self.cache.get("1", "h2") is None
        assert self.cache.has("1") is False

    def test_present_at_30_minutes(self):
        self.cache.set("1", "h1", [0.1])
        self.clock.advance(30 * 60)
        assert self.cache.get("1", "h1") == [0.1]

    def test_absent_at_61_minutes(self):
        self.cache.set("1", "h1", [0.1])
        self.clock.advance(61 * 60)
        assert self.cache.get("1", "h1") is None
        assert self.cache.has("1") is False

    def test_has_ignores_ttl(self):
        self.cache.set("1", "h1", [0.1])
        self.clock.advance(2 * 3600)
        assert self.cache.has("1") is True


class TestEmbeddingCacheEviction:
    def test_capacity_five_with_six_inserts(self):
        cache = EmbeddingCache(ttl_hours=1, max_size=5, clock=FakeClock())
        for i in range(6):
            cache.set(str(i), f"h{i}", [float(i)])
        assert cache.size() <= 5
        assert cache.get("5", "h5") == [5.0]
        assert cache.has("0") is False

    def test_evicts_oldest_by_timestamp(self):
        clock = FakeClock()
        cache = EmbeddingCache(ttl_hours=1, max_size=3, clock=clock)
        cache.set("a", "h", [1.0])
        clock.advance(1)
        cache.set("b", "h", [1.0])
        clock.advance(1)
        cache.set("c", "h", [1.0])
        clock.advance(1)
        # Refresh "a" so "b" becomes the oldest
        cache.set("a", "h", [2.0])
        clock.advance(1)
        cache.set("d", "h", [1.0])
        assert sorted(cache.keys()) == ["a", "c", "d"]

    def test_eviction_fraction_removes_batch(self):
        cache = EmbeddingCache(ttl_hours=1, max_size=10, eviction_fraction=0.5, clock=FakeClock())
        for i in range(10):
            cache.set(str(i), "h", [0.0])
        cache.set("new", "h", [0.0])
        assert cache.size() == 6
        assert cache.has("new")

    def test_overwrite_at_capacity_does_not_evict(self):
        cache = EmbeddingCache(ttl_hours=1, max_size=2, clock=FakeClock())
        cache.set("a", "h", [0.0])
        cache.set("b", "h", [0.0])
        cache.set("a", "h2", [1.0])
        assert sorted(cache.keys()) == ["a", "b"]


class TestEmbeddingCacheMaintenance:
    def setup_method(self):
        self.clock = FakeClock()
        self.cache = EmbeddingCache(ttl_hours=1, max_size=10, clock=self.clock)

    def test_clean_expired(self):
        self.cache.set("old", "h", [0.0])
        self.clock.advance(2 * 3600)
        self.cache.set("fresh", "h", [0.0])
        assert self.cache.clean_expired() == 1
        assert self.cache.keys() == ["fresh"]

    def test_clear(self):
        self.cache.set("a", "h", [0.0])
        self.cache.clear()
        assert self.cache.size() == 0

    def test_stats_empty(self):
        stats = self.cache.get_stats()
        assert stats.size == 0
        assert stats.max_size == 10
        assert stats.ttl_seconds == 3600
        assert stats.oldest_entry_age is None
        assert stats.newest_entry_age is None

    def test_stats_ages(self):
        self.cache.set("a", "h", [0.0])
        self.clock.advance(100)
        self.cache.set("b", "h", [0.0])
        self.clock.advance(10)
        stats = self.cache.get_stats()
        assert stats.size == 2
        assert stats.oldest_entry_age == pytest.approx(110)
        assert stats.newest_entry_age == pytest.approx(10)


class TestEmbeddingCacheConfig:
    def test_negative_ttl_rejected(self):
        with pytest.raises(ConfigurationError):
            EmbeddingCache(ttl_hours=-1)

    def test_zero_capacity_rejected(self):
        with pytest.raises(ConfigurationError):
            EmbeddingCache(max_size=0)

    def test_bad_eviction_fraction_rejected(self):
        with pytest.raises(ValueError):
            EmbeddingCache(eviction_fraction=0)

    def test_defaults_from_settings(self):
        cache = EmbeddingCache()
        assert cache.ttl_seconds == 24 * 3600
        assert cache.max_size == 10000
