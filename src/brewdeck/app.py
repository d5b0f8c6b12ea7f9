"""
BrewDeck Application Container

Builds the cache, upstream clients, data access facade and prefetch
scheduler from one :class:`AppConfig` and owns their lifecycle. The entry
point constructs one instance and hands it to every consumer.
"""

import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

from brewdeck.clients.brew import BrewClient, CommandExecutor
from brewdeck.clients.catalog import CatalogClient, CatalogSource
from brewdeck.core.cache import CacheConfig, CacheManager, EvictionStrategy
from brewdeck.core.config import AppConfig, ConfigManager
from brewdeck.services.packages import PackageService
from brewdeck.services.prefetch import PrefetchService


logger = logging.getLogger(__name__)


def setup_logging(level: str = "INFO") -> None:
    """Set up logging configuration for the application."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )


def cache_config_from(config: AppConfig) -> CacheConfig:
    settings = config.cache
    return CacheConfig(
        default_ttl=settings.default_ttl,
        max_entries=settings.max_entries,
        cleanup_interval=settings.cleanup_interval,
        strategy=EvictionStrategy(settings.strategy),
        persistence_enabled=settings.persistence_enabled,
        persistence_path=settings.persistence_path,
    )


class BrewDeckApp:
    """Explicitly constructed service container."""

    def __init__(
        self,
        config: Optional[AppConfig] = None,
        brew: Optional[CommandExecutor] = None,
        catalog: Optional[CatalogSource] = None,
    ):
        """
        Initialize application services.

        Args:
            config: Application configuration (defaults when omitted)
            brew: Local tool adapter; a :class:`BrewClient` is built when omitted
            catalog: Remote catalog adapter; a :class:`CatalogClient` is built when omitted
        """
        self.config = config or AppConfig()
        clients = self.config.clients

        self.cache = CacheManager(cache_config_from(self.config))
        self.brew = brew or BrewClient(
            brew_path=clients.brew_path,
            command_timeout=clients.command_timeout,
            install_timeout=clients.install_timeout,
            bulk_update_timeout=clients.bulk_update_timeout,
        )
        self.catalog = catalog or CatalogClient(
            base_url=clients.api_base_url,
            timeout=clients.api_timeout,
            user_agent=clients.user_agent,
        )
        self.packages = PackageService(self.cache, self.brew, self.catalog, self.config.retry)
        self.prefetch = PrefetchService(self.packages, self.cache, self.config.prefetch)
        self._started = False

    @classmethod
    def from_config_file(
        cls,
        config_file: Optional[Union[str, Path]] = None,
        overrides: Optional[Dict[str, Any]] = None,
    ) -> 'BrewDeckApp':
        """
        Load configuration through :class:`ConfigManager`, apply its
        ``log_level`` to logging and build the app.
        """
        config = ConfigManager(config_file).load_config(overrides)
        setup_logging(config.log_level)
        return cls(config)

    @property
    def started(self) -> bool:
        return self._started

    def start(self) -> None:
        """Start background work. Must be called from a running event loop."""
        if self._started:
            return
        if self.config.start_background_tasks:
            self.cache.start()
            self.prefetch.start()
        elif self.config.cache.persistence_enabled:
            self.cache.load()
        self._started = True
        logger.info("BrewDeck services started")

    async def shutdown(self) -> None:
        """Cancel background tasks, persist the cache and close the HTTP session."""
        await self.prefetch.stop()
        await self.cache.stop()
        close = getattr(self.catalog, 'close', None)
        if close is not None:
            await close()
        self._started = False
        logger.info("BrewDeck services stopped")

    async def __aenter__(self) -> 'BrewDeckApp':
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.shutdown()
