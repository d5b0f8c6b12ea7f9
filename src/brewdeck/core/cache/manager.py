"""
Cache Manager

TTL cache with tag-based invalidation, selectable eviction policies, a
periodic expiry sweep and optional persistence across restarts.
"""

import asyncio
import fnmatch
import logging
import pickle
import threading
import time
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Set
from dataclasses import dataclass

from brewdeck.core.concurrency.tasks import TaskRegistry
from brewdeck.core.exceptions import SerializationError


logger = logging.getLogger(__name__)


class EvictionStrategy(Enum):
    """Policies used when the cache reaches capacity."""
    LRU = "lru"    # oldest last_accessed first
    LFU = "lfu"    # lowest access_count first
    FIFO = "fifo"  # oldest created_at first
    TTL = "ttl"    # expired entries only


@dataclass
class CacheConfig:
    """Configuration for cache management."""
    default_ttl: float = 300.0  # 5 minutes
    max_entries: int = 1000
    cleanup_interval: float = 60.0
    strategy: EvictionStrategy = EvictionStrategy.LRU
    eviction_fraction: float = 0.1
    persistence_enabled: bool = False
    persistence_path: Optional[Path] = None


@dataclass
class CacheStats:
    """Aggregate cache statistics."""
    entry_count: int = 0
    expired_count: int = 0
    total_access_count: int = 0
    average_age: float = 0.0
    hit_rate: float = 0.0


class CacheEntry:
    """Container for encoded cached data with metadata."""

    __slots__ = ('data', 'created_at', 'ttl', 'access_count', 'last_accessed', 'tags')

    def __init__(self, data: bytes, ttl: float, now: float, tags: Optional[Iterable[str]] = None):
        """
        Initialize cache entry.

        Args:
            data: Pickled value
            ttl: Time-to-live in seconds
            now: Creation timestamp
            tags: Labels used for group invalidation
        """
        self.data = data
        self.created_at = now
        self.ttl = ttl
        self.access_count = 0
        self.last_accessed = now
        self.tags: Set[str] = set(tags or ())

    def is_expired(self, now: float) -> bool:
        return now > self.created_at + self.ttl

    def touch(self, now: float) -> None:
        """Update access statistics."""
        self.access_count += 1
        self.last_accessed = max(now, self.created_at)

    def age(self, now: float) -> float:
        return max(0.0, now - self.created_at)


class CacheManager:
    """
    Thread-safe TTL cache keyed by string.

    Features:
    - Lazy expiry on read plus a periodic background sweep
    - Tag, glob and single-key invalidation
    - LRU / LFU / FIFO / TTL eviction at capacity
    - Non-blocking background refresh of single entries
    - Optional on-disk persistence
    """

    def __init__(
        self,
        config: Optional[CacheConfig] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize cache manager.

        Args:
            config: Cache configuration
            clock: Time source returning seconds (wall clock by default)
        """
        self.config = config or CacheConfig()
        self._clock = clock
        self._storage: Dict[str, CacheEntry] = {}
        self._lock = threading.RLock()
        self._tasks = TaskRegistry("cache")

        self._hits = 0
        self._misses = 0
        self._evictions = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Load persisted entries and start the background expiry sweep."""
        if self.config.persistence_enabled:
            self.load()

        self._tasks.reopen()
        self._tasks.spawn_periodic("sweep", self.config.cleanup_interval, self._sweep)
        logger.info(
            f"Cache started (strategy={self.config.strategy.value}, "
            f"max_entries={self.config.max_entries})"
        )

    async def stop(self) -> None:
        """Stop background work and persist entries when enabled."""
        await self._tasks.shutdown()
        if self.config.persistence_enabled:
            self.save()

    async def _sweep(self) -> None:
        self.cleanup_expired()

    # ------------------------------------------------------------------
    # Encoding
    # ------------------------------------------------------------------

    @staticmethod
    def _encode(key: str, value: Any) -> bytes:
        try:
            return pickle.dumps(value, protocol=pickle.HIGHEST_PROTOCOL)
        except (pickle.PicklingError, TypeError, AttributeError) as e:
            raise SerializationError(f"Failed to serialize value for key '{key}': {e}", cause=e)

    # ------------------------------------------------------------------
    # Core operations
    # ------------------------------------------------------------------

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get value from cache.

        Expired entries are removed on access and reported as misses.

        Args:
            key: Cache key
            default: Value returned on a miss

        Returns:
            Cached value or default
        """
        now = self._clock()
        with self._lock:
            entry = self._storage.get(key)
            if entry is None:
                self._misses += 1
                return default

            if entry.is_expired(now):
                logger.debug(f"Cache entry expired for key: {key}")
                del self._storage[key]
                self._misses += 1
                return default

            entry.touch(now)
            data = entry.data

        try:
            value = pickle.loads(data)
        except Exception as e:
            logger.warning(f"Failed to deserialize cached data for key {key}: {e}")
            with self._lock:
                if self._storage.get(key) is entry:
                    del self._storage[key]
                self._misses += 1
            return default

        with self._lock:
            self._hits += 1
        logger.debug(f"Cache hit for key: {key}")
        return value

    def set(
        self,
        key: str,
        value: Any,
        ttl: Optional[float] = None,
        tags: Optional[Iterable[str]] = None,
    ) -> None:
        """
        Store a value, evicting first when the cache is at capacity.

        Args:
            key: Cache key
            value: Value to cache (must be picklable)
            ttl: Time-to-live in seconds, default TTL when omitted
            tags: Labels for group invalidation

        Raises:
            SerializationError: If the value cannot be encoded
        """
        entry_ttl = self.config.default_ttl if ttl is None else ttl
        data = self._encode(key, value)
        entry = CacheEntry(data, entry_ttl, self._clock(), tags)

        with self._lock:
            if len(self._storage) >= self.config.max_entries:
                self._evict_entries()
            self._storage[key] = entry

        logger.debug(f"Cached data for key: {key} with TTL: {entry_ttl}s and tags: {sorted(entry.tags)}")

    def invalidate(self, key: str) -> bool:
        """
        Remove one entry.

        Returns:
            True if the key was present
        """
        with self._lock:
            found = self._storage.pop(key, None) is not None

        if found:
            logger.debug(f"Invalidated cache entry for key: {key}")
        else:
            logger.debug(f"No cache entry found for key: {key}")
        return found

    @staticmethod
    def _matches(pattern: str, key: str) -> bool:
        return pattern in key or key.startswith(pattern) or fnmatch.fnmatchcase(key, pattern)

    def invalidate_pattern(self, pattern: str) -> int:
        """
        Remove all entries whose key matches ``pattern``.

        A key matches when it contains the pattern, starts with it, or
        matches it as a ``*`` glob.

        Returns:
            Number of removed entries
        """
        with self._lock:
            keys = [key for key in self._storage if self._matches(pattern, key)]
            for key in keys:
                del self._storage[key]

        logger.debug(f"Invalidated {len(keys)} cache entries matching pattern: {pattern}")
        return len(keys)

    def invalidate_by_tags(self, tags: Iterable[str]) -> int:
        """
        Remove every entry carrying at least one of ``tags``.

        Returns:
            Number of removed entries
        """
        wanted = set(tags)
        with self._lock:
            keys = [key for key, entry in self._storage.items() if entry.tags & wanted]
            for key in keys:
                del self._storage[key]

        logger.debug(f"Invalidated {len(keys)} cache entries with tags: {sorted(wanted)}")
        return len(keys)

    def clear(self) -> None:
        """Clear all cache entries."""
        with self._lock:
            count = len(self._storage)
            self._storage.clear()
        logger.info(f"Cleared all {count} cache entries")

    def size(self) -> int:
        with self._lock:
            return len(self._storage)

    def __contains__(self, key: str) -> bool:
        now = self._clock()
        with self._lock:
            entry = self._storage.get(key)
            return entry is not None and not entry.is_expired(now)

    def keys(self) -> List[str]:
        """Snapshot of stored keys. Like :meth:`size`, it counts expired entries until they are swept."""
        with self._lock:
            return list(self._storage)

    def get_entry_metadata(self, key: str) -> Optional[Dict[str, Any]]:
        """Inspect an entry without counting it as an access."""
        now = self._clock()
        with self._lock:
            entry = self._storage.get(key)
            if entry is None:
                return None
            return {
                'created_at': entry.created_at,
                'ttl': entry.ttl,
                'age': entry.age(now),
                'access_count': entry.access_count,
                'last_accessed': entry.last_accessed,
                'tags': set(entry.tags),
                'expired': entry.is_expired(now),
            }

    def stats(self) -> CacheStats:
        """Aggregate statistics over current entries."""
        now = self._clock()
        with self._lock:
            entries = list(self._storage.values())
            lookups = self._hits + self._misses
            hit_rate = self._hits / lookups if lookups else 0.0

        count = len(entries)
        return CacheStats(
            entry_count=count,
            expired_count=sum(1 for e in entries if e.is_expired(now)),
            total_access_count=sum(e.access_count for e in entries),
            average_age=sum(e.age(now) for e in entries) / count if count else 0.0,
            hit_rate=hit_rate,
        )

    # ------------------------------------------------------------------
    # Expiry and eviction
    # ------------------------------------------------------------------

    def cleanup_expired(self) -> int:
        """
        Remove all expired entries.

        Returns:
            Number of entries cleaned up
        """
        now = self._clock()
        with self._lock:
            expired = [key for key, entry in self._storage.items() if entry.is_expired(now)]
            for key in expired:
                del self._storage[key]

        if expired:
            logger.debug(f"Background cleanup removed {len(expired)} expired cache entries")
        return len(expired)

    def _eviction_batch_size(self) -> int:
        return max(1, int(self.config.max_entries * self.config.eviction_fraction))

    def _select_victims(self) -> List[str]:
        strategy = self.config.strategy

        if strategy == EvictionStrategy.TTL:
            now = self._clock()
            return [key for key, entry in self._storage.items() if entry.is_expired(now)]

        if strategy == EvictionStrategy.LRU:
            sort_key = lambda item: item[1].last_accessed
        elif strategy == EvictionStrategy.LFU:
            sort_key = lambda item: item[1].access_count
        else:
            sort_key = lambda item: item[1].created_at

        ranked = sorted(self._storage.items(), key=sort_key)
        return [key for key, _ in ranked[:self._eviction_batch_size()]]

    def _evict_entries(self) -> int:
        """Evict one batch according to the configured strategy. Caller holds the lock."""
        victims = self._select_victims()
        for key in victims:
            del self._storage[key]
        self._evictions += len(victims)

        logger.debug(f"Evicted {len(victims)} cache entries using {self.config.strategy.value} strategy")
        return len(victims)

    # ------------------------------------------------------------------
    # Background refresh
    # ------------------------------------------------------------------

    def refresh_in_background(
        self,
        key: str,
        fetch: Callable[[], Awaitable[Any]],
        ttl: Optional[float] = None,
        tags: Optional[Iterable[str]] = None,
    ) -> Optional[asyncio.Task]:
        """
        Re-fetch one entry without blocking the caller.

        On success the entry is overwritten with a fresh TTL. Failures are
        logged and never retried here. A refresh already running for the same
        key is reused. Nothing is spawned once the cache has been stopped.

        Args:
            key: Cache key to refresh
            fetch: Zero-argument coroutine function producing the new value
            ttl: TTL for the refreshed entry (default TTL when omitted)
            tags: Tags for the refreshed entry (existing tags when omitted)

        Returns:
            The task performing the refresh, or None after :meth:`stop`
        """
        if self._tasks.closed:
            logger.debug(f"Cache stopped; skipping background refresh for key: {key}")
            return None

        name = f"refresh:{key}"
        running = self._tasks.get(name)
        if running is not None and not running.done():
            return running

        if tags is None:
            with self._lock:
                entry = self._storage.get(key)
                tags = set(entry.tags) if entry else set()

        async def _refresh():
            try:
                value = await fetch()
                self.set(key, value, ttl, tags)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(f"Background refresh failed for key {key}: {e}")
                return False
            logger.debug(f"Background refresh completed for key: {key}")
            return True

        return self._tasks.spawn(name, _refresh())

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _persistence_file(self) -> Optional[Path]:
        if not self.config.persistence_path:
            return None
        return Path(self.config.persistence_path)

    def save(self) -> int:
        """
        Write unexpired entries to the persistence file.

        Returns:
            Number of entries written
        """
        path = self._persistence_file()
        if path is None:
            logger.warning("Cache persistence enabled but no persistence_path configured")
            return 0

        now = self._clock()
        with self._lock:
            snapshot = {
                key: {
                    'data': entry.data,
                    'created_at': entry.created_at,
                    'ttl': entry.ttl,
                    'access_count': entry.access_count,
                    'last_accessed': entry.last_accessed,
                    'tags': sorted(entry.tags),
                }
                for key, entry in self._storage.items()
                if not entry.is_expired(now)
            }

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, 'wb') as f:
                pickle.dump(snapshot, f, protocol=pickle.HIGHEST_PROTOCOL)
        except OSError as e:
            logger.warning(f"Failed to write cache file {path}: {e}")
            return 0

        logger.info(f"Persisted {len(snapshot)} cache entries to {path}")
        return len(snapshot)

    def load(self) -> int:
        """
        Restore unexpired entries from the persistence file.

        Returns:
            Number of entries restored
        """
        path = self._persistence_file()
        if path is None or not path.exists():
            return 0

        try:
            with open(path, 'rb') as f:
                snapshot = pickle.load(f)
        except Exception as e:
            logger.warning(f"Failed to read cache file {path}: {e}")
            return 0

        if not isinstance(snapshot, dict):
            logger.warning(f"Ignoring cache file {path}: expected a mapping, got {type(snapshot).__name__}")
            return 0

        now = self._clock()
        restored = 0
        with self._lock:
            for key, raw in snapshot.items():
                try:
                    entry = CacheEntry(raw['data'], raw['ttl'], raw['created_at'], raw.get('tags'))
                    entry.access_count = raw.get('access_count', 0)
                    entry.last_accessed = max(raw.get('last_accessed', entry.created_at), entry.created_at)
                    expired = entry.is_expired(now)
                except (KeyError, TypeError, AttributeError) as e:
                    logger.warning(f"Skipping malformed cache record {key!r} in {path}: {e!r}")
                    continue
                if expired:
                    continue
                self._storage[key] = entry
                restored += 1

        logger.info(f"Restored {restored} cache entries from {path}")
        return restored

    def get_cache_info(self) -> Dict[str, Any]:
        """Get detailed cache information."""
        stats = self.stats()
        with self._lock:
            hits, misses, evictions = self._hits, self._misses, self._evictions
        return {
            'config': {
                'default_ttl': self.config.default_ttl,
                'max_entries': self.config.max_entries,
                'strategy': self.config.strategy.value,
                'persistence_enabled': self.config.persistence_enabled,
            },
            'stats': {
                'entries': stats.entry_count,
                'expired': stats.expired_count,
                'hits': hits,
                'misses': misses,
                'evictions': evictions,
                'hit_rate': stats.hit_rate,
            },
            'background_tasks': self._tasks.names(),
        }
