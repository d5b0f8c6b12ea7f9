"""
BrewDeck Services

The data access facade and the prefetch scheduler built on top of it.
"""

from brewdeck.services.packages import PackageService
from brewdeck.services.prefetch import PrefetchPriority, PrefetchService, PrefetchStats

__all__ = [
    'PackageService',
    'PrefetchPriority',
    'PrefetchService',
    'PrefetchStats',
]
