"""
Core Concurrency Module

Provides concurrency primitives for BrewDeck including:
- Resizable permit limiting for upstream calls
- Ownership of long-running background tasks
"""

from .limiters import ConcurrencyLimiter
from .tasks import TaskRegistry

__all__ = [
    'ConcurrencyLimiter',
    'TaskRegistry'
]
