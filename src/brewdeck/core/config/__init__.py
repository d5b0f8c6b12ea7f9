"""
Configuration Management Package

Provides Pydantic-based configuration models and management for BrewDeck.
"""

from brewdeck.core.config.models import (
    AppConfig,
    CacheSettings,
    ClientConfig,
    NetworkConditions,
    PrefetchConfig,
    RetryConfig,
)
from brewdeck.core.config.manager import ConfigManager

__all__ = [
    "AppConfig",
    "CacheSettings",
    "ClientConfig",
    "NetworkConditions",
    "PrefetchConfig",
    "RetryConfig",
    "ConfigManager",
]
