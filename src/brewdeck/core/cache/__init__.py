"""
Core Cache Module

Provides caching capabilities for BrewDeck including:
- TTL-based expiration with lazy and periodic cleanup
- Tag and pattern invalidation
- LRU, LFU, FIFO and TTL eviction policies
- Background refresh and optional persistence
"""

from .manager import CacheManager, CacheConfig, CacheEntry, CacheStats, EvictionStrategy

__all__ = [
    'CacheManager',
    'CacheConfig',
    'CacheEntry',
    'CacheStats',
    'EvictionStrategy'
]
