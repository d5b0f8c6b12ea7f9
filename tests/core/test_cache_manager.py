"""
Test suite for the TTL cache.

Covers lazy expiry, tag and pattern invalidation, the four eviction
strategies, background refresh and persistence.
"""

import asyncio
import pickle
import threading
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import AsyncMock

import pytest

from brewdeck.core.cache import CacheConfig, CacheManager, EvictionStrategy
from brewdeck.core.exceptions import SerializationError
from brewdeck.models import Package


class TestCacheBasics:
    """Test get/set/invalidate behaviour."""

    def test_set_and_get(self, cache):
        cache.set("packages_formula", ["wget", "curl"])
        assert cache.get("packages_formula") == ["wget", "curl"]
        assert cache.size() == 1

    def test_get_missing_returns_default(self, cache):
        assert cache.get("missing") is None
        assert cache.get("missing", default=[]) == []

    def test_values_are_isolated_from_caller(self, cache):
        names = ["wget"]
        cache.set("key", names)
        names.append("curl")

        cached = cache.get("key")
        cached.append("jq")
        assert cache.get("key") == ["wget"]

    def test_pydantic_models_round_trip(self, cache):
        package = Package(name="wget", version="1.24.5")
        cache.set("package_formula_wget", package)
        assert cache.get("package_formula_wget") == package

    def test_unencodable_value_raises_serialization_error(self, cache):
        with pytest.raises(SerializationError) as exc_info:
            cache.set("bad", lambda: None)
        assert exc_info.value.kind == "SerializationFailure"
        assert "bad" not in cache

    def test_invalidate(self, cache):
        cache.set("a", 1)
        assert cache.invalidate("a") is True
        assert cache.invalidate("a") is False
        assert cache.get("a") is None

    def test_clear(self, cache):
        for i in range(5):
            cache.set(f"k{i}", i)
        cache.clear()
        assert cache.size() == 0

    def test_undecodable_entry_is_dropped(self, cache):
        cache.set("key", "value")
        cache._storage["key"].data = b"not a pickle"
        assert cache.get("key") is None
        assert "key" not in cache


class TestCacheExpiry:
    """Test lazy and swept expiry."""

    def test_entry_absent_after_ttl_without_sweep(self, cache, clock):
        cache.set("short", "value", ttl=60)
        clock.advance(60)
        assert cache.get("short") == "value"
        clock.advance(0.001)
        assert cache.get("short") is None
        assert cache.size() == 0

    def test_default_ttl_applies(self, cache, clock):
        cache.set("key", "value")
        clock.advance(301)
        assert cache.get("key") is None

    def test_cleanup_expired(self, cache, clock):
        cache.set("short", 1, ttl=10)
        cache.set("long", 2, ttl=1000)
        clock.advance(11)
        assert cache.cleanup_expired() == 1
        assert cache.keys() == ["long"]

    def test_keys_snapshot_matches_size(self, cache, clock):
        cache.set("a", 1)
        cache.set("b", 2, ttl=5)
        clock.advance(10)

        keys = cache.keys()
        assert sorted(keys) == ["a", "b"]
        assert len(keys) == cache.size()

        keys.append("c")
        cache.cleanup_expired()
        assert cache.keys() == ["a"]

    def test_touch_updates_access_metadata(self, cache, clock):
        cache.set("key", "value")
        clock.advance(5)
        cache.get("key")
        cache.get("key")
        meta = cache.get_entry_metadata("key")
        assert meta['access_count'] == 2
        assert meta['last_accessed'] == clock.now
        assert meta['last_accessed'] >= meta['created_at']
        assert meta['age'] == 5

    def test_metadata_lookup_does_not_touch(self, cache):
        cache.set("key", "value")
        cache.get_entry_metadata("key")
        assert cache.get_entry_metadata("key")['access_count'] == 0


class TestCacheInvalidation:
    """Test tag and pattern invalidation."""

    def test_invalidate_by_tags_removes_only_tagged(self, cache):
        cache.set("packages_cask", [], tags={"entities", "kind:cask"})
        cache.set("search_cask_fire", [], tags={"search", "kind:cask"})
        cache.set("packages_formula", [], tags={"entities", "kind:formula"})
        cache.set("untagged", [])

        removed = cache.invalidate_by_tags({"kind:cask"})

        assert removed == 2
        assert sorted(cache.keys()) == ["packages_formula", "untagged"]

    def test_invalidate_by_any_of_several_tags(self, cache):
        cache.set("a", 1, tags={"x"})
        cache.set("b", 2, tags={"y"})
        cache.set("c", 3, tags={"z"})
        assert cache.invalidate_by_tags({"x", "y"}) == 2
        assert cache.keys() == ["c"]

    def test_invalidate_pattern_prefix(self, cache):
        cache.set("search_formula_wget", 1)
        cache.set("search_cask_fire", 2)
        cache.set("packages_formula", 3)
        assert cache.invalidate_pattern("search_") == 2
        assert cache.keys() == ["packages_formula"]

    def test_invalidate_pattern_glob(self, cache):
        cache.set("package_formula_wget", 1)
        cache.set("package_cask_firefox", 2)
        assert cache.invalidate_pattern("package_*_wget") == 1
        assert cache.keys() == ["package_cask_firefox"]


class TestCacheEviction:
    """Test the eviction strategies at capacity."""

    def _fill(self, cache, clock, count):
        for i in range(count):
            cache.set(f"key{i:03d}", i)
            clock.advance(1)

    def test_lru_evicts_ten_oldest_accessed(self, cache, clock):
        self._fill(cache, clock, 100)
        # touch the first ten so they become most recent
        for i in range(10):
            cache.get(f"key{i:03d}")
            clock.advance(1)

        cache.set("new", "value")

        assert cache.size() == 91
        assert "new" in cache
        for i in range(10):
            assert f"key{i:03d}" in cache
        for i in range(10, 20):
            assert f"key{i:03d}" not in cache

    def test_lfu_evicts_least_used(self, clock):
        cache = CacheManager(CacheConfig(max_entries=10, strategy=EvictionStrategy.LFU), clock=clock)
        for i in range(10):
            cache.set(f"k{i}", i)
        for i in range(1, 10):
            cache.get(f"k{i}")

        cache.set("new", 1)

        assert "k0" not in cache
        assert cache.size() == 10

    def test_fifo_evicts_oldest_created(self, clock):
        cache = CacheManager(CacheConfig(max_entries=10, strategy=EvictionStrategy.FIFO), clock=clock)
        for i in range(10):
            cache.set(f"k{i}", i)
            clock.advance(1)
        cache.get("k0")

        cache.set("new", 1)

        assert "k0" not in cache
        assert "k1" in cache

    def test_ttl_strategy_only_removes_expired(self, clock):
        cache = CacheManager(CacheConfig(max_entries=3, strategy=EvictionStrategy.TTL), clock=clock)
        cache.set("short", 1, ttl=5)
        cache.set("a", 2, ttl=100)
        cache.set("b", 3, ttl=100)
        clock.advance(10)

        cache.set("c", 4)
        assert sorted(cache.keys()) == ["a", "b", "c"]

        # nothing expired: insertion still succeeds
        cache.set("d", 5)
        assert "d" in cache
        assert cache.size() == 4

    def test_small_capacity_evicts_at_least_one(self, clock):
        cache = CacheManager(CacheConfig(max_entries=5), clock=clock)
        for i in range(5):
            cache.set(f"k{i}", i)
            clock.advance(1)
        cache.set("new", 1)
        assert cache.size() == 5
        assert "k0" not in cache


class TestCacheThreadSafety:
    """Test the cache under concurrent access from worker threads."""

    def test_concurrent_operations_keep_entries_consistent(self, clock):
        cache = CacheManager(CacheConfig(max_entries=20), clock=clock)
        keys = [f"search_formula_{i}" for i in range(30)]
        start = threading.Barrier(8)
        sizes = []

        def worker(seed):
            start.wait()
            for round_ in range(200):
                key = keys[(seed * 7 + round_) % len(keys)]
                step = (seed + round_) % 5
                if step < 2:
                    cache.set(key, (key, list(range(round_ % 10))), tags={f"group:{seed % 3}"})
                elif step == 2:
                    value = cache.get(key)
                    if value is not None:
                        name, items = value
                        assert name == key
                        assert items == list(range(len(items)))
                elif step == 3:
                    cache.invalidate_by_tags({f"group:{round_ % 3}"})
                else:
                    cache.invalidate_pattern(f"search_formula_{round_ % 30}")
                sizes.append(cache.size())

        with ThreadPoolExecutor(max_workers=8) as pool:
            futures = [pool.submit(worker, seed) for seed in range(8)]
            for future in futures:
                future.result()

        assert max(sizes) <= 20
        assert cache.size() <= 20
        assert cache.stats().entry_count == cache.size()


class TestCacheStats:
    """Test statistics reporting."""

    def test_stats(self, cache, clock):
        cache.set("a", 1)
        cache.set("b", 2, ttl=5)
        clock.advance(10)
        cache.get("a")
        cache.get("missing")

        stats = cache.stats()
        assert stats.entry_count == 2
        assert stats.expired_count == 1
        assert stats.total_access_count == 1
        assert stats.average_age == 10
        assert stats.hit_rate == 0.5

    def test_cache_info(self, cache):
        info = cache.get_cache_info()
        assert info['config']['strategy'] == "lru"
        assert info['stats']['entries'] == 0


class TestBackgroundWork:
    """Test refresh and sweep tasks."""

    @pytest.mark.asyncio
    async def test_refresh_in_background_overwrites(self, cache, clock):
        cache.set("packages_formula", ["old"], tags={"entities"})
        clock.advance(200)

        async def fetch():
            return ["new"]

        ok = await cache.refresh_in_background("packages_formula", fetch)

        assert ok is True
        assert cache.get("packages_formula") == ["new"]
        meta = cache.get_entry_metadata("packages_formula")
        assert meta['age'] == 0
        assert meta['tags'] == {"entities"}

    @pytest.mark.asyncio
    async def test_refresh_failure_keeps_entry(self, cache):
        cache.set("key", "old")

        async def fetch():
            raise ConnectionError("offline")

        ok = await cache.refresh_in_background("key", fetch)

        assert ok is False
        assert cache.get("key") == "old"

    @pytest.mark.asyncio
    async def test_refresh_reuses_running_task(self, cache):
        gate = asyncio.Event()

        async def fetch():
            await gate.wait()
            return 1

        first = cache.refresh_in_background("key", fetch)
        second = cache.refresh_in_background("key", fetch)
        assert first is second

        gate.set()
        await first

    @pytest.mark.asyncio
    async def test_start_and_stop(self, cache):
        cache.start()
        assert "sweep" in cache.get_cache_info()['background_tasks']
        await cache.stop()
        assert cache.get_cache_info()['background_tasks'] == []

    @pytest.mark.asyncio
    async def test_refresh_after_stop_spawns_nothing(self, cache):
        cache.set("key", "old")
        fetch = AsyncMock(return_value="new")
        cache.start()
        await cache.stop()

        assert cache.refresh_in_background("key", fetch) is None
        await asyncio.sleep(0)

        fetch.assert_not_awaited()
        assert cache.get_cache_info()['background_tasks'] == []
        assert cache.get("key") == "old"

    @pytest.mark.asyncio
    async def test_restart_allows_refresh_again(self, cache):
        cache.start()
        await cache.stop()
        cache.start()

        async def fetch():
            return "new"

        assert await cache.refresh_in_background("key", fetch) is True
        assert cache.get("key") == "new"
        await cache.stop()


class TestCachePersistence:
    """Test saving and restoring entries."""

    def test_save_and_load(self, tmp_path, clock):
        path = tmp_path / "cache.pkl"
        config = CacheConfig(persistence_enabled=True, persistence_path=path)

        original = CacheManager(config, clock=clock)
        original.set("keep", ["wget"], tags={"entities"})
        original.set("expired", 1, ttl=1)
        clock.advance(2)
        assert original.save() == 1

        restored = CacheManager(config, clock=clock)
        assert restored.load() == 1
        assert restored.get("keep") == ["wget"]
        assert restored.get_entry_metadata("keep")['tags'] == {"entities"}

    def test_load_ignores_unreadable_file(self, tmp_path, clock):
        path = tmp_path / "cache.pkl"
        path.write_bytes(b"garbage")
        cache = CacheManager(CacheConfig(persistence_enabled=True, persistence_path=path), clock=clock)
        assert cache.load() == 0

    def test_load_ignores_non_mapping_snapshot(self, tmp_path, clock):
        path = tmp_path / "cache.pkl"
        path.write_bytes(pickle.dumps(["not", "a", "mapping"]))
        cache = CacheManager(CacheConfig(persistence_enabled=True, persistence_path=path), clock=clock)

        assert cache.load() == 0
        assert cache.size() == 0

    def test_load_skips_malformed_records(self, tmp_path, clock):
        path = tmp_path / "cache.pkl"
        path.write_bytes(pickle.dumps({
            'no_ttl': {'data': pickle.dumps(1)},
            'not_a_record': "junk",
            'bad_ttl': {'data': pickle.dumps(2), 'ttl': None, 'created_at': clock()},
            'good': {'data': pickle.dumps(["wget"]), 'ttl': 300.0, 'created_at': clock()},
        }))
        cache = CacheManager(CacheConfig(persistence_enabled=True, persistence_path=path), clock=clock)

        assert cache.load() == 1
        assert cache.get("good") == ["wget"]
        assert "no_ttl" not in cache

    @pytest.mark.asyncio
    async def test_start_survives_malformed_snapshot(self, tmp_path, clock):
        path = tmp_path / "cache.pkl"
        path.write_bytes(pickle.dumps({'k': {'data': b"x"}}))
        cache = CacheManager(CacheConfig(persistence_enabled=True, persistence_path=path), clock=clock)

        cache.start()
        assert cache.size() == 0
        await cache.stop()

    def test_save_without_path(self, cache):
        assert cache.save() == 0

    def test_snapshot_format(self, tmp_path, clock):
        path = tmp_path / "cache.pkl"
        cache = CacheManager(CacheConfig(persistence_path=path), clock=clock)
        cache.set("key", 1)
        cache.save()
        with open(path, 'rb') as f:
            snapshot = pickle.load(f)
        assert set(snapshot["key"]) >= {'data', 'created_at', 'ttl', 'tags'}
