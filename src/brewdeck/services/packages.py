"""
Package Data Access Facade

Single entry point for reading and mutating packages. Reads are served from
the TTL cache when possible, otherwise from the remote catalog with the local
``brew`` tool as fallback, each path retried with exponential backoff.
Mutations always go through the local tool and invalidate every cached view
they affect.
"""

import logging
import time
from typing import Awaitable, Callable, List, Optional, Tuple

from brewdeck.clients.brew import CommandExecutor, parse_brew_info
from brewdeck.clients.catalog import CatalogSource
from brewdeck.core.cache import CacheManager
from brewdeck.core.config.models import RetryConfig
from brewdeck.core.error_recovery import RecoveryPolicy, retry_with_backoff, with_fallback
from brewdeck.models import (
    OperationResult,
    Overview,
    Package,
    PackageKind,
    SearchResult,
)


logger = logging.getLogger(__name__)

LISTING_TTL = 300.0
SEARCH_TTL = 60.0
DETAILS_TTL = 600.0

MAX_REMOTE_SEARCH_RESULTS = 50
MAX_LOCAL_SEARCH_RESULTS = 20


def listing_key(kind: PackageKind) -> str:
    return f"packages_{kind.value}"


def search_key(query: str, kind: PackageKind) -> str:
    return f"search_{kind.value}_{query}"


def details_key(name: str, kind: PackageKind) -> str:
    return f"package_{kind.value}_{name}"


def kind_tag(kind: PackageKind) -> str:
    return f"kind:{kind.value}"


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


class PackageService:
    """
    Cached, fault-tolerant access to Homebrew packages.

    All collaborators are injected; no instance is shared implicitly.
    """

    def __init__(
        self,
        cache: CacheManager,
        brew: CommandExecutor,
        catalog: CatalogSource,
        retry_config: Optional[RetryConfig] = None,
    ):
        """
        Initialize package service.

        Args:
            cache: Shared TTL cache
            brew: Local package tool adapter
            catalog: Remote catalog adapter
            retry_config: Retry counts and base backoff for both upstreams
        """
        self.cache = cache
        self.brew = brew
        self.catalog = catalog
        self.retry_config = retry_config or RetryConfig()

    # ------------------------------------------------------------------
    # Retry policies
    # ------------------------------------------------------------------

    def _api_policy(self) -> RecoveryPolicy:
        return RecoveryPolicy(
            max_retries=self.retry_config.api_max_retries,
            base_backoff=self.retry_config.base_backoff,
        )

    def _command_policy(self) -> RecoveryPolicy:
        return RecoveryPolicy(
            max_retries=self.retry_config.command_max_retries,
            base_backoff=self.retry_config.base_backoff,
        )

    async def _remote(self, operation: Callable[[], Awaitable]):
        return await retry_with_backoff(operation, self._api_policy())

    async def _local(self, operation: Callable[[], Awaitable]):
        return await retry_with_backoff(operation, self._command_policy())

    # ------------------------------------------------------------------
    # Read operations
    # ------------------------------------------------------------------

    async def get_packages(self, kind: PackageKind) -> List[Package]:
        """
        Full listing for ``kind``.

        Cached for 5 minutes under ``packages_<kind>``.
        """
        key = listing_key(kind)
        cached = self.cache.get(key)
        if cached is not None:
            logger.debug(f"Retrieved {len(cached)} packages from cache")
            return cached

        packages = await with_fallback(
            lambda: self._packages_from_catalog(kind),
            lambda: self._packages_from_brew(kind),
        )

        self.cache.set(key, packages, LISTING_TTL, {"entities", kind_tag(kind)})
        logger.info(f"Retrieved {len(packages)} {kind} packages")
        return packages

    async def search_packages(self, query: str, kind: PackageKind) -> SearchResult:
        """
        Packages of ``kind`` matching ``query``.

        Cached for 60 seconds under ``search_<kind>_<query>``.
        """
        start = time.monotonic()
        key = search_key(query, kind)
        cached = self.cache.get(key)
        if cached is not None:
            logger.debug(f"Retrieved search results from cache for query: {query}")
            return cached

        packages = await with_fallback(
            lambda: self._search_catalog(query, kind),
            lambda: self._search_brew(query, kind),
        )

        result = SearchResult(
            packages=packages,
            total_count=len(packages),
            search_time_ms=_elapsed_ms(start),
        )
        self.cache.set(key, result, SEARCH_TTL, {"search", kind_tag(kind)})
        return result

    async def get_package_details(self, name: str, kind: PackageKind) -> Package:
        """
        Detailed record for one package.

        Cached for 10 minutes under ``package_<kind>_<name>`` and tagged with
        the package name so :meth:`invalidate_package` can drop it.
        """
        key = details_key(name, kind)
        cached = self.cache.get(key)
        if cached is not None:
            logger.debug(f"Retrieved package details from cache for: {name}")
            return cached

        package = await with_fallback(
            lambda: self._details_from_catalog(name, kind),
            lambda: self._details_from_brew(name, kind),
        )

        self.cache.set(key, package, DETAILS_TTL, {"package_details", kind_tag(kind), name})
        return package

    async def get_overview(self, kind: PackageKind) -> Overview:
        packages = await self.get_packages(kind)
        return Overview(
            packages=packages,
            total_installed=sum(1 for p in packages if p.installed),
            total_outdated=sum(1 for p in packages if p.outdated),
        )

    # ------------------------------------------------------------------
    # Mutating operations
    # ------------------------------------------------------------------

    async def install_package(self, name: str, kind: PackageKind) -> OperationResult:
        logger.info(f"Installing {kind} package: {name}")
        return await self._mutate(name, kind, lambda: self.brew.install(name, kind))

    async def uninstall_package(self, name: str, kind: PackageKind) -> OperationResult:
        logger.info(f"Uninstalling {kind} package: {name}")
        return await self._mutate(name, kind, lambda: self.brew.uninstall(name, kind))

    async def update_package(self, name: str, kind: PackageKind) -> OperationResult:
        logger.info(f"Updating {kind} package: {name}")
        return await self._mutate(name, kind, lambda: self.brew.update(name, kind))

    async def update_all(self, kind: Optional[PackageKind] = None) -> OperationResult:
        """Upgrade every outdated package, optionally restricted to one kind."""
        label = kind.value if kind else "all"
        logger.info(f"Updating all {label} packages")
        start = time.monotonic()
        try:
            message = await self.brew.update_all(kind)
        except Exception as e:
            logger.error(f"Bulk update failed: {e}")
            return OperationResult(success=False, message=str(e), package_name=label, duration_ms=_elapsed_ms(start))

        kinds = [kind] if kind else list(PackageKind)
        removed = self.cache.invalidate_by_tags({kind_tag(k) for k in kinds})
        removed += self.cache.invalidate_pattern("search_*")
        logger.info(f"Invalidated {removed} cache entries after bulk update")
        return OperationResult(success=True, message=message, package_name=label, duration_ms=_elapsed_ms(start))

    async def _mutate(
        self,
        name: str,
        kind: PackageKind,
        operation: Callable[[], Awaitable[str]],
    ) -> OperationResult:
        start = time.monotonic()
        try:
            message = await operation()
        except Exception as e:
            logger.error(f"Operation on {name} failed: {e}")
            return OperationResult(success=False, message=str(e), package_name=name, duration_ms=_elapsed_ms(start))

        self.invalidate_package_caches(name, kind)
        return OperationResult(success=True, message=message, package_name=name, duration_ms=_elapsed_ms(start))

    # ------------------------------------------------------------------
    # Invalidation
    # ------------------------------------------------------------------

    def invalidate_package_caches(self, name: str, kind: PackageKind) -> None:
        """Drop the detail view, the listing for ``kind`` and every search."""
        self.cache.invalidate(details_key(name, kind))
        self.cache.invalidate(listing_key(kind))
        self.cache.invalidate_pattern("search_*")
        logger.info(f"Invalidated caches for package: {name}")

    def invalidate_package(self, name: str) -> int:
        """Drop every cached detail view tagged with ``name``."""
        return self.cache.invalidate_by_tags({name})

    def refresh_packages(self, kind: PackageKind):
        """
        Re-fetch the listing for ``kind`` in the background.

        Returns:
            The refresh task, resolving to True on success; None once the
            cache has been stopped
        """
        async def _fetch():
            return await with_fallback(
                lambda: self._packages_from_catalog(kind),
                lambda: self._packages_from_brew(kind),
            )

        return self.cache.refresh_in_background(
            listing_key(kind), _fetch, LISTING_TTL, {"entities", kind_tag(kind)}
        )

    # ------------------------------------------------------------------
    # Remote catalog path
    # ------------------------------------------------------------------

    async def _local_status(self, kind: PackageKind) -> Tuple[List[str], List[str]]:
        """Installed and outdated names; failures degrade to empty lists."""
        try:
            installed = await self.brew.list_installed(kind)
        except Exception as e:
            logger.debug(f"Could not list installed {kind} packages: {e}")
            installed = []
        try:
            outdated = await self.brew.list_outdated(kind)
        except Exception as e:
            logger.debug(f"Could not list outdated {kind} packages: {e}")
            outdated = []
        return installed, outdated

    async def _packages_from_catalog(self, kind: PackageKind) -> List[Package]:
        records = await self._remote(lambda: self.catalog.fetch_all(kind))
        installed, outdated = await self._local_status(kind)
        return [record.to_package(installed, outdated) for record in records]

    async def _search_catalog(self, query: str, kind: PackageKind) -> List[Package]:
        packages = self.cache.get(listing_key(kind))
        if packages is None:
            packages = await self._packages_from_catalog(kind)

        needle = query.lower()
        matches = [
            p for p in packages
            if needle in p.name.lower() or needle in p.description.lower()
        ]
        return matches[:MAX_REMOTE_SEARCH_RESULTS]

    async def _details_from_catalog(self, name: str, kind: PackageKind) -> Package:
        record = await self._remote(lambda: self.catalog.fetch_one(name, kind))
        installed, outdated = await self._local_status(kind)
        return record.to_package(installed, outdated)

    # ------------------------------------------------------------------
    # Local tool path
    # ------------------------------------------------------------------

    async def _packages_from_brew(self, kind: PackageKind) -> List[Package]:
        logger.debug("Fetching packages using brew commands")
        installed = await self._local(lambda: self.brew.list_installed(kind))
        try:
            outdated = await self.brew.list_outdated(kind)
        except Exception as e:
            logger.debug(f"Could not list outdated {kind} packages: {e}")
            outdated = []

        packages = []
        for name in installed:
            try:
                info = await self._local(lambda n=name: self.brew.get_info(n, kind))
                packages.append(parse_brew_info(name, info, kind, installed, outdated))
            except Exception as e:
                logger.warning(f"Failed to get details for package {name}: {e}")
                packages.append(Package(
                    name=name,
                    description=f"{kind} package",
                    installed=True,
                    outdated=name in outdated,
                    kind=kind,
                ))
        return packages

    async def _search_brew(self, query: str, kind: PackageKind) -> List[Package]:
        names = await self._local(lambda: self.brew.search(query, kind))
        installed, outdated = await self._local_status(kind)

        packages = []
        for name in names[:MAX_LOCAL_SEARCH_RESULTS]:
            try:
                info = await self._local(lambda n=name: self.brew.get_info(n, kind))
            except Exception as e:
                logger.warning(f"Failed to get details for search result {name}: {e}")
                continue
            packages.append(parse_brew_info(name, info, kind, installed, outdated))
        return packages

    async def _details_from_brew(self, name: str, kind: PackageKind) -> Package:
        info = await self._local(lambda: self.brew.get_info(name, kind))
        installed, outdated = await self._local_status(kind)
        return parse_brew_info(name, info, kind, installed, outdated)
