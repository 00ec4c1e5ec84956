"""
Unit tests for BoundedTTLCache.

Covers hit/miss accounting, TTL expiry with an injected clock, insertion-order
eviction, sweeping and statistics, plus property tests for the size bound.
"""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest
from hypothesis import given, settings, strategies as st

from src.pipelines.catalog_retrieval.cache.ttl_cache import BoundedTTLCache, CacheConfig


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return BoundedTTLCache("test", CacheConfig(ttl_seconds=60.0, max_size=3), clock=clock)


class TestBoundedTTLCache:
    """Test basic cache behavior."""

    def test_get_after_put_is_hit(self, cache):
        cache.put("a", 1)

        assert cache.get("a") == 1
        assert cache.hits == 1
        assert cache.misses == 0

    def test_missing_key_is_miss(self, cache):
        assert cache.get("missing") is None
        assert cache.hits == 0
        assert cache.misses == 1

    def test_entry_expires_at_ttl(self, cache, clock):
        cache.put("a", 1)
        clock.advance(59.9)
        assert cache.get("a") == 1

        clock.advance(0.1)  # age == ttl
        assert cache.get("a") is None
        assert len(cache) == 0
        assert cache.hits == 1
        assert cache.misses == 1

    def test_contains_ignores_expired_entries(self, cache, clock):
        cache.put("a", 1)
        assert "a" in cache

        clock.advance(60.0)
        assert "a" not in cache

    def test_eviction_removes_first_inserted(self, cache):
        cache.put("a", 1)
        cache.put("b", 2)
        cache.put("c", 3)
        cache.put("d", 4)

        assert len(cache) == 3
        assert "a" not in cache
        assert cache.get("d") == 4

    def test_reads_do_not_change_eviction_order(self, cache):
        cache.put("a", 1)
        cache.put("b", 2)
        cache.put("c", 3)

        # Reading "a" does not protect it; eviction is by insertion order
        assert cache.get("a") == 1
        cache.put("d", 4)

        assert "a" not in cache
        assert "b" in cache

    def test_replacing_key_does_not_evict(self, cache, clock):
        cache.put("a", 1)
        cache.put("b", 2)
        cache.put("c", 3)

        clock.advance(30.0)
        cache.put("a", 10)

        assert len(cache) == 3
        assert cache.get("a") == 10
        assert cache.get("b") == 2

        # Timestamp was refreshed: "a" outlives "b" and "c"
        clock.advance(45.0)
        assert cache.get("a") == 10
        assert cache.get("b") is None

    def test_sweep_removes_only_expired(self, cache, clock):
        cache.put("old", 1)
        clock.advance(40.0)
        cache.put("new", 2)
        clock.advance(20.0)

        removed = cache.sweep()

        assert removed == 1
        assert "old" not in cache
        assert "new" in cache
        # Sweeping does not touch counters
        assert cache.hits == 0
        assert cache.misses == 0

    def test_clear_resets_entries_and_counters(self, cache):
        cache.put("a", 1)
        cache.get("a")
        cache.get("b")

        cache.clear()

        assert len(cache) == 0
        assert cache.stats() == {'size': 0, 'max_size': 3, 'hits': 0, 'misses': 0, 'hit_rate': 0.0}

    def test_stats_hit_rate_rounded(self, cache):
        cache.put("a", 1)
        cache.get("a")
        cache.get("a")
        cache.get("missing")

        stats = cache.stats()

        assert stats['size'] == 1
        assert stats['hits'] == 2
        assert stats['misses'] == 1
        assert stats['hit_rate'] == 0.67

    def test_stats_hit_rate_zero_without_lookups(self, cache):
        assert cache.stats()['hit_rate'] == 0.0

    @pytest.mark.parametrize("config", [
        CacheConfig(max_size=0),
        CacheConfig(ttl_seconds=0),
        CacheConfig(ttl_seconds=-1),
    ])
    def test_invalid_config_rejected(self, config):
        with pytest.raises(ValueError):
            BoundedTTLCache("bad", config)


class TestBoundedTTLCacheProperties:
    """Property-based tests for cache invariants."""

    @given(
        max_size=st.integers(min_value=1, max_value=10),
        keys=st.lists(st.integers(min_value=0, max_value=30), max_size=100)
    )
    @settings(max_examples=100, deadline=None)
    def test_size_never_exceeds_max_size(self, max_size, keys):
        cache = BoundedTTLCache("prop", CacheConfig(max_size=max_size), clock=FakeClock())

        for key in keys:
            cache.put(key, key)
            assert len(cache) <= max_size

    @given(
        operations=st.lists(
            st.tuples(st.sampled_from(["get", "put"]), st.integers(min_value=0, max_value=10)),
            max_size=100
        )
    )
    @settings(max_examples=100, deadline=None)
    def test_every_get_counts_exactly_once(self, operations):
        cache = BoundedTTLCache("prop", CacheConfig(max_size=5), clock=FakeClock())
        gets = 0

        for operation, key in operations:
            if operation == "put":
                cache.put(key, key)
            else:
                cache.get(key)
                gets += 1

        assert cache.hits + cache.misses == gets

    @given(key=st.text(min_size=1, max_size=20), value=st.integers())
    @settings(max_examples=50, deadline=None)
    def test_get_after_put_within_ttl_returns_value(self, key, value):
        clock = FakeClock()
        cache = BoundedTTLCache("prop", CacheConfig(ttl_seconds=10.0, max_size=2), clock=clock)

        cache.put(key, value)
        clock.advance(9.99)

        assert cache.get(key) == value
        assert cache.hits == 1


class TestBoundedTTLCacheConcurrency:
    """Test that concurrent mutations keep the size bound and counters exact."""

    def test_threads_interleaving_put_and_get(self):
        cache = BoundedTTLCache("shared", CacheConfig(ttl_seconds=3600.0, max_size=10))
        workers, rounds = 8, 2000
        start = threading.Barrier(workers)
        oversized = []

        def worker(worker_id):
            start.wait()
            for i in range(rounds):
                key = f"{worker_id}-{i % 25}"
                cache.put(key, i)
                cache.get(key)
                if len(cache) > 10:
                    oversized.append(len(cache))

        with ThreadPoolExecutor(max_workers=workers) as executor:
            list(executor.map(worker, range(workers)))

        assert oversized == []
        assert len(cache) <= 10
        assert cache.hits + cache.misses == workers * rounds
