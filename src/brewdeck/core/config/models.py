"""
Configuration Models

Pydantic models for type-safe configuration management with validation,
defaults, and field documentation.
"""

from pathlib import Path
from typing import Optional
from pydantic import BaseModel, Field, field_validator, ConfigDict


class CacheSettings(BaseModel):
    """Configuration for the TTL cache."""

    default_ttl: float = Field(
        default=300.0,
        gt=0,
        description="Default time-to-live for cache entries (seconds)"
    )
    max_entries: int = Field(
        default=1000,
        ge=1,
        description="Capacity that triggers an eviction pass"
    )
    cleanup_interval: float = Field(
        default=60.0,
        gt=0,
        description="Interval of the background expiry sweep (seconds)"
    )
    strategy: str = Field(
        default="lru",
        description="Eviction strategy (lru, lfu, fifo, ttl)"
    )
    persistence_enabled: bool = Field(
        default=False,
        description="Persist cache entries across restarts"
    )
    persistence_path: Optional[Path] = Field(
        default=None,
        description="File used for cache persistence"
    )

    @field_validator('strategy')
    @classmethod
    def validate_strategy(cls, v):
        """Validate eviction strategy name."""
        valid = {'lru', 'lfu', 'fifo', 'ttl'}
        if v.lower() not in valid:
            raise ValueError(f"Invalid eviction strategy '{v}'. Must be one of: {', '.join(sorted(valid))}")
        return v.lower()


class RetryConfig(BaseModel):
    """Retry policies applied by the data access facade."""

    api_max_retries: int = Field(
        default=2,
        ge=0,
        le=10,
        description="Retries for remote catalog calls"
    )
    command_max_retries: int = Field(
        default=2,
        ge=0,
        le=10,
        description="Retries for local tool invocations"
    )
    base_backoff: float = Field(
        default=1.0,
        ge=0.0,
        le=30.0,
        description="Base delay for exponential backoff (seconds)"
    )


class ClientConfig(BaseModel):
    """Configuration for the two upstream clients."""

    brew_path: Optional[str] = Field(
        default=None,
        description="Path to the brew executable (auto-detected when unset)"
    )
    command_timeout: float = Field(
        default=300.0,
        gt=0,
        description="Timeout for read-only brew commands (seconds)"
    )
    install_timeout: float = Field(
        default=600.0,
        gt=0,
        description="Timeout for install/upgrade commands (seconds)"
    )
    bulk_update_timeout: float = Field(
        default=1800.0,
        gt=0,
        description="Timeout for upgrading every package (seconds)"
    )
    api_base_url: str = Field(
        default="https://formulae.brew.sh/api",
        description="Base URL of the remote catalog API"
    )
    api_timeout: float = Field(
        default=30.0,
        gt=0,
        description="Timeout for catalog API requests (seconds)"
    )
    user_agent: str = Field(
        default="BrewDeck/1.0",
        description="User agent string for catalog requests"
    )


class PrefetchConfig(BaseModel):
    """Prefetch scheduler settings. Replaced wholesale, never mutated."""

    enabled: bool = Field(default=True, description="Enable background prefetching")
    max_concurrent_requests: int = Field(
        default=3,
        ge=1,
        le=32,
        description="Concurrent prefetch units of work"
    )
    wifi_only: bool = Field(default=False, description="Skip prefetching on cellular connections")
    respect_save_data: bool = Field(default=True, description="Honor the client's data-saver flag")
    popularity_threshold: int = Field(
        default=1000,
        ge=0,
        description="Minimum trailing-year installs for the popular warm-up"
    )
    cache_warming_enabled: bool = Field(default=True, description="Enable popular-package warm-up")
    predictive_enabled: bool = Field(default=True, description="Enable predictive prefetch")
    background_refresh_enabled: bool = Field(default=True, description="Enable stale-data refresh")
    interval: float = Field(
        default=300.0,
        gt=0,
        description="Interval of the stale-data refresh (seconds)"
    )
    refresh_threshold: float = Field(
        default=0.5,
        ge=0.0,
        le=1.0,
        description="Fraction of a listing's TTL after which it is refreshed"
    )

    model_config = ConfigDict(frozen=True)


class NetworkConditions(BaseModel):
    """Latest-known client network snapshot."""

    connection_type: str = Field(default="unknown", description="wifi, cellular, ethernet, ...")
    effective_type: str = Field(default="4g", description="slow-2g, 2g, 3g or 4g")
    downlink: float = Field(default=10.0, ge=0, description="Estimated bandwidth (Mbps)")
    rtt: int = Field(default=50, ge=0, description="Estimated round-trip time (ms)")
    save_data: bool = Field(default=False, description="Client requested reduced data usage")

    model_config = ConfigDict(frozen=True)


class AppConfig(BaseModel):
    """Root application configuration model."""

    version: str = Field(default="0.2.0", description="Configuration version")

    cache: CacheSettings = Field(default_factory=CacheSettings, description="Cache configuration")
    retry: RetryConfig = Field(default_factory=RetryConfig, description="Retry configuration")
    clients: ClientConfig = Field(default_factory=ClientConfig, description="Upstream clients")
    prefetch: PrefetchConfig = Field(default_factory=PrefetchConfig, description="Prefetch scheduler")

    start_background_tasks: bool = Field(
        default=True,
        description="Start sweep/refresh/warm-up loops on application start"
    )
    log_level: str = Field(default="INFO", description="Root logging level")

    model_config = ConfigDict(
        extra="forbid",
        validate_assignment=True,
    )

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v):
        """Validate logging level name."""
        valid = {'DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'}
        if v.upper() not in valid:
            raise ValueError(f"Invalid log level '{v}'")
        return v.upper()
