"""
Error Recovery System

Retry-with-backoff and primary/fallback composition over fallible async
operations. The two mechanisms compose orthogonally: retries run inside each
branch, fallback happens once across branches.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, TypeVar

from brewdeck.core.exceptions import is_retryable


T = TypeVar('T')
logger = logging.getLogger(__name__)

MAX_BACKOFF = 30.0


@dataclass
class RecoveryPolicy:
    """
    Retry bookkeeping for one logical operation.

    Build a fresh policy per operation; ``retry_with_backoff`` mutates it.
    """

    can_retry: bool = True
    retry_count: int = 0
    max_retries: int = 3
    base_backoff: float = 1.0
    retry_on: Callable[[BaseException], bool] = field(default=is_retryable, repr=False)

    def with_max_retries(self, max_retries: int) -> 'RecoveryPolicy':
        self.max_retries = max_retries
        return self

    def with_backoff(self, base_backoff: float) -> 'RecoveryPolicy':
        self.base_backoff = base_backoff
        return self

    def no_retry(self) -> 'RecoveryPolicy':
        self.can_retry = False
        self.max_retries = 0
        return self

    def should_retry(self) -> bool:
        return self.can_retry and self.retry_count < self.max_retries

    def increment_retry(self) -> None:
        self.retry_count += 1

    def backoff_delay(self) -> float:
        """Exponential backoff for the current retry count, capped at 30s."""
        return min(self.base_backoff * (2 ** self.retry_count), MAX_BACKOFF)


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    policy: Optional[RecoveryPolicy] = None,
) -> T:
    """
    Invoke ``operation`` until it succeeds or the policy gives up.

    Args:
        operation: Zero-argument callable returning an awaitable
        policy: Retry policy; a default one is created when omitted

    Returns:
        The operation's result

    Raises:
        The last error raised by ``operation``, unmodified
    """
    policy = policy or RecoveryPolicy()

    while True:
        try:
            return await operation()
        except Exception as error:
            if not policy.retry_on(error) or not policy.should_retry():
                raise

            delay = policy.backoff_delay()
            policy.increment_retry()

            logger.warning(
                f"Operation failed, retrying in {delay:.1f}s "
                f"(attempt {policy.retry_count}/{policy.max_retries}): {error}"
            )
            await asyncio.sleep(delay)


async def with_fallback(
    primary: Callable[[], Awaitable[T]],
    fallback: Callable[[], Awaitable[T]],
) -> T:
    """
    Run ``primary``; on failure run ``fallback``.

    When both fail the primary error is raised. The fallback error is only
    logged, since callers need to know why the preferred path failed.
    """
    try:
        return await primary()
    except Exception as primary_error:
        logger.warning(f"Primary operation failed, trying fallback: {primary_error}")
        try:
            result = await fallback()
        except Exception as fallback_error:
            logger.error("Both primary and fallback operations failed")
            logger.error(f"Primary error: {primary_error}")
            logger.error(f"Fallback error: {fallback_error}")
            raise primary_error
        logger.info("Fallback operation succeeded")
        return result

