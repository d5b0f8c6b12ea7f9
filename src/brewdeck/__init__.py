"""
BrewDeck - Homebrew package data layer

Caching, retry/fallback and network-aware prefetching over the local
``brew`` tool and the formulae.brew.sh catalog.
"""

__version__ = "0.2.0"

from brewdeck.app import BrewDeckApp, setup_logging
from brewdeck.models import (
    OperationResult,
    Overview,
    Package,
    PackageKind,
    SearchResult,
)

__all__ = [
    '__version__',
    'BrewDeckApp',
    'setup_logging',
    'OperationResult',
    'Overview',
    'Package',
    'PackageKind',
    'SearchResult',
]
