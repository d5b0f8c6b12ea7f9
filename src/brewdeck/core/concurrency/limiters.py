"""
Concurrency Limiters

Permit-based limiting of simultaneous outbound upstream calls. Unlike a
plain ``asyncio.Semaphore`` the limit can be resized while permits are held.
"""

import asyncio
import time
from typing import Any, Dict


class ConcurrencyLimiter:
    """
    Counting limiter sized to a configurable number of permits.

    Provides:
    - Cooperative acquisition (``async with limiter:``)
    - Non-blocking inspection of free permits
    - Runtime resizing; holders above a shrunk limit drain naturally
    - Acquisition statistics
    """

    def __init__(self, max_concurrent: int):
        """
        Initialize concurrency limiter.

        Args:
            max_concurrent: Number of permits available at once
        """
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")

        self._max_concurrent = max_concurrent
        self._in_use = 0
        self._condition = asyncio.Condition()

        # Statistics
        self._total_acquired = 0
        self._total_wait_time = 0.0

    @property
    def max_concurrent(self) -> int:
        return self._max_concurrent

    @property
    def in_use(self) -> int:
        return self._in_use

    def available_permits(self) -> int:
        """Number of permits that could be acquired right now."""
        return max(0, self._max_concurrent - self._in_use)

    def locked(self) -> bool:
        return self.available_permits() == 0

    async def acquire(self) -> None:
        """Wait until a permit is free and take it."""
        start = time.monotonic()
        async with self._condition:
            await self._condition.wait_for(lambda: self._in_use < self._max_concurrent)
            self._in_use += 1
            self._total_acquired += 1
        self._total_wait_time += time.monotonic() - start

    async def release(self) -> None:
        """Return a permit and wake waiters."""
        async with self._condition:
            if self._in_use == 0:
                raise RuntimeError("release() called more times than acquire()")
            self._in_use -= 1
            self._condition.notify()

    async def resize(self, max_concurrent: int) -> None:
        """Change the number of permits."""
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        async with self._condition:
            self._max_concurrent = max_concurrent
            self._condition.notify_all()

    async def __aenter__(self) -> 'ConcurrencyLimiter':
        await self.acquire()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.release()

    def get_stats(self) -> Dict[str, Any]:
        """Get limiter statistics."""
        return {
            'max_concurrent': self._max_concurrent,
            'in_use': self._in_use,
            'available': self.available_permits(),
            'total_acquired': self._total_acquired,
            'total_wait_time': self._total_wait_time,
        }
