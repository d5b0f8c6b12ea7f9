"""
Prefetch Scheduler

Network-aware background warm-up of the package cache. Every activity goes
through the :class:`PackageService` facade, so cached data, retries and
fallbacks behave exactly as they do for interactive requests. Failures are
logged and counted, never raised.
"""

import asyncio
import dataclasses
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, List, Optional

from cachetools import TTLCache

from brewdeck.core.cache import CacheManager
from brewdeck.core.concurrency import ConcurrencyLimiter, TaskRegistry
from brewdeck.core.config.models import NetworkConditions, PrefetchConfig
from brewdeck.models import PackageKind
from brewdeck.services.packages import PackageService, listing_key


logger = logging.getLogger(__name__)

POPULAR_THROTTLE = 600.0
POPULAR_TOP_N = 10
POPULAR_DELAY = 0.1
RELATED_MAX_DEPENDENCIES = 3
RELATED_DELAY = 0.2
PREDICTIVE_MAX_PATTERNS = 5
PREDICTIVE_TOP_N = 2
PREDICTIVE_DELAY = 0.5

# effective_type tiers
DENIED_NETWORKS = frozenset({"slow-2g", "2g"})
HIGH_ONLY_NETWORKS = frozenset({"3g"})


class PrefetchPriority(Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


@dataclass
class PrefetchStats:
    """Running counters over individual prefetch attempts."""
    total: int = 0
    successful: int = 0
    failed: int = 0
    bytes_transferred: int = 0
    avg_response_ms: float = 0.0
    hit_rate: float = 0.0


class PrefetchService:
    """
    Schedules cache warm-up around user activity.

    Activities:
    - Popular-package warm-up (throttled per kind)
    - Related-package warm-up for a package's dependencies
    - Stale listing refresh
    - Predictive prefetch from recent search queries
    """

    def __init__(
        self,
        package_service: PackageService,
        cache: CacheManager,
        config: Optional[PrefetchConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize prefetch service.

        Args:
            package_service: Facade used for every fetch
            cache: Cache inspected for listing staleness
            config: Scheduler configuration
            clock: Monotonic time source for throttling
        """
        self.package_service = package_service
        self.cache = cache
        self._config = config or PrefetchConfig()
        self._network: Optional[NetworkConditions] = None
        self._config_lock = asyncio.Lock()

        self._limiter = ConcurrencyLimiter(self._config.max_concurrent_requests)
        self._tasks = TaskRegistry("prefetch")
        self._stats = PrefetchStats()

        self._last_popular_run = TTLCache(maxsize=len(PackageKind), ttl=POPULAR_THROTTLE, timer=clock)
        self._popular_rankings = TTLCache(maxsize=len(PackageKind), ttl=POPULAR_THROTTLE, timer=clock)

    @property
    def config(self) -> PrefetchConfig:
        return self._config

    @property
    def network_conditions(self) -> Optional[NetworkConditions]:
        return self._network

    @property
    def limiter(self) -> ConcurrencyLimiter:
        return self._limiter

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    async def update_config(self, config: PrefetchConfig) -> None:
        """Replace the configuration, resizing the limiter if needed."""
        async with self._config_lock:
            previous = self._config
            self._config = config

            if config.max_concurrent_requests != previous.max_concurrent_requests:
                await self._limiter.resize(config.max_concurrent_requests)
                logger.info(f"Max concurrent requests updated to {config.max_concurrent_requests}")

            if config.interval != previous.interval and self._tasks.get("refresh") is not None:
                self._tasks.spawn_periodic("refresh", config.interval, self.background_refresh_stale_data)

        logger.info("Prefetch configuration updated")

    async def update_network_conditions(self, conditions: NetworkConditions) -> None:
        async with self._config_lock:
            self._network = conditions
        logger.debug(f"Network conditions updated: {conditions}")

    def get_stats(self) -> PrefetchStats:
        return dataclasses.replace(self._stats)

    def should_allow_prefetch(self, priority: PrefetchPriority) -> bool:
        """
        Advisory check run before every activity.

        Denies when prefetch is disabled, the client asked to save data, the
        connection is cellular under a Wi-Fi-only setting, the connection is
        too slow for ``priority``, or no permit is free right now.
        """
        config = self._config
        network = self._network

        if not config.enabled:
            return False

        if network is not None:
            if config.respect_save_data and network.save_data:
                return False

            if config.wifi_only and network.connection_type == "cellular":
                return False

            if network.effective_type in DENIED_NETWORKS:
                return False
            if network.effective_type in HIGH_ONLY_NETWORKS and priority != PrefetchPriority.HIGH:
                return False

        return self._limiter.available_permits() > 0

    def _record(self, success: bool, elapsed_ms: float, bytes_transferred: int = 0) -> None:
        stats = self._stats
        stats.total += 1
        if success:
            stats.successful += 1
        else:
            stats.failed += 1
        stats.bytes_transferred += bytes_transferred
        stats.avg_response_ms += (elapsed_ms - stats.avg_response_ms) / stats.total
        stats.hit_rate = stats.successful / stats.total

    async def _prefetch_details(self, name: str, kind: PackageKind) -> bool:
        start = time.monotonic()
        try:
            await self.package_service.get_package_details(name, kind)
        except Exception as e:
            logger.debug(f"Failed to prefetch {kind} {name}: {e}")
            self._record(False, (time.monotonic() - start) * 1000)
            return False
        self._record(True, (time.monotonic() - start) * 1000)
        return True

    # ------------------------------------------------------------------
    # Activities
    # ------------------------------------------------------------------

    async def get_popular_packages(self, kind: PackageKind) -> List[str]:
        """Names above the popularity threshold, most downloaded first."""
        cached = self._popular_rankings.get(kind)
        if cached is not None:
            return list(cached)

        threshold = self._config.popularity_threshold
        packages = await self.package_service.get_packages(kind)
        popular = sorted(
            (p for p in packages if p.analytics.downloads_365d > threshold),
            key=lambda p: p.analytics.downloads_365d,
            reverse=True,
        )
        ranking = [p.name for p in popular]
        self._popular_rankings[kind] = ranking
        return list(ranking)

    async def prefetch_popular_packages(self, kind: PackageKind) -> int:
        """
        Warm details for the most popular packages of ``kind``.

        Runs at most once every 10 minutes per kind.

        Returns:
            Number of packages successfully prefetched
        """
        if not self._config.cache_warming_enabled or not self.should_allow_prefetch(PrefetchPriority.MEDIUM):
            return 0

        marker = f"popular_{kind.value}"
        if marker in self._last_popular_run:
            logger.debug(f"Popular prefetch for {kind} throttled")
            return 0
        self._last_popular_run[marker] = True

        fetched = 0
        async with self._limiter:
            try:
                names = await self.get_popular_packages(kind)
            except Exception as e:
                logger.warning(f"Failed to rank popular {kind} packages: {e}")
                self._record(False, 0.0)
                return 0

            for i, name in enumerate(names[:POPULAR_TOP_N]):
                if i:
                    await asyncio.sleep(POPULAR_DELAY)
                if await self._prefetch_details(name, kind):
                    fetched += 1

        logger.info(f"Prefetched {fetched} popular {kind} packages")
        return fetched

    async def prefetch_related_packages(self, name: str, kind: PackageKind) -> int:
        """
        Warm details for up to three dependencies of ``name``.

        Returns:
            Number of dependencies successfully prefetched
        """
        if not self.should_allow_prefetch(PrefetchPriority.LOW):
            return 0

        fetched = 0
        async with self._limiter:
            try:
                package = await self.package_service.get_package_details(name, kind)
            except Exception as e:
                logger.warning(f"Failed to load {name} for related prefetch: {e}")
                self._record(False, 0.0)
                return 0

            for i, dependency in enumerate(package.dependencies[:RELATED_MAX_DEPENDENCIES]):
                if i:
                    await asyncio.sleep(RELATED_DELAY)
                # dependencies of casks are formulae
                if await self._prefetch_details(dependency, PackageKind.FORMULA):
                    fetched += 1

        return fetched

    async def background_refresh_stale_data(self) -> int:
        """
        Re-fetch cached listings that have used up ``refresh_threshold`` of
        their TTL. Listings that are absent or already expired are left for
        the next interactive read.

        Returns:
            Number of listings refreshed
        """
        config = self._config
        if not config.background_refresh_enabled or not self.should_allow_prefetch(PrefetchPriority.LOW):
            return 0

        refreshed = 0
        for kind in PackageKind:
            meta = self.cache.get_entry_metadata(listing_key(kind))
            if meta is None or meta['expired']:
                continue
            if meta['age'] < meta['ttl'] * config.refresh_threshold:
                continue

            start = time.monotonic()
            async with self._limiter:
                task = self.package_service.refresh_packages(kind)
                if task is None:
                    logger.debug(f"Cache stopped; not refreshing {kind} listing")
                    break
                ok = await task
            self._record(bool(ok), (time.monotonic() - start) * 1000)
            if ok:
                refreshed += 1
                logger.debug(f"Refreshed stale {kind} listing")
            else:
                logger.warning(f"Failed to refresh stale data for {kind}")

        return refreshed

    async def predictive_prefetch(self, patterns: Iterable[str]) -> int:
        """
        Search recent query strings in both kinds and warm the top results.

        Returns:
            Number of packages successfully prefetched
        """
        if not self._config.predictive_enabled or not self.should_allow_prefetch(PrefetchPriority.LOW):
            return 0

        fetched = 0
        first = True
        for pattern in list(patterns)[:PREDICTIVE_MAX_PATTERNS]:
            for kind in PackageKind:
                if not first:
                    await asyncio.sleep(PREDICTIVE_DELAY)
                first = False

                start = time.monotonic()
                async with self._limiter:
                    try:
                        result = await self.package_service.search_packages(pattern, kind)
                    except Exception as e:
                        logger.debug(f"Predictive search for '{pattern}' failed: {e}")
                        self._record(False, (time.monotonic() - start) * 1000)
                        continue

                for package in result.packages[:PREDICTIVE_TOP_N]:
                    if not self.should_allow_prefetch(PrefetchPriority.LOW):
                        continue
                    async with self._limiter:
                        if await self._prefetch_details(package.name, kind):
                            fetched += 1

        return fetched

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def _warm_popular(self) -> None:
        for kind in PackageKind:
            await self.prefetch_popular_packages(kind)

    def start(self) -> None:
        """Start the periodic refresh and popular warm-up loops."""
        self._tasks.reopen()
        self._tasks.spawn_periodic("refresh", self._config.interval, self.background_refresh_stale_data)
        self._tasks.spawn_periodic("popular", POPULAR_THROTTLE, self._warm_popular)
        logger.info("Background prefetch tasks started")

    async def stop(self) -> None:
        await self._tasks.shutdown()
        logger.info("Background prefetch tasks stopped")
