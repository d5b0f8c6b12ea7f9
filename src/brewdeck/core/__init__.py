"""
Core BrewDeck Package

Contains core infrastructure components: caching, error handling and
recovery, configuration and concurrency primitives.
"""

from brewdeck.core.exceptions import (
    BrewDeckError,
    NotFoundError,
    NetworkError,
    RateLimitedError,
    OperationTimeoutError,
    ExecutionError,
    ParsingError,
    SerializationError,
    ConfigurationError,
    ErrorCode,
    ErrorContext,
    is_retryable,
    to_user_error,
)

from brewdeck.core.error_recovery import (
    RecoveryPolicy,
    retry_with_backoff,
    with_fallback,
)

from brewdeck.core.cache import CacheManager, CacheConfig, EvictionStrategy

__all__ = [
    # Exception classes
    'BrewDeckError',
    'NotFoundError',
    'NetworkError',
    'RateLimitedError',
    'OperationTimeoutError',
    'ExecutionError',
    'ParsingError',
    'SerializationError',
    'ConfigurationError',
    'ErrorCode',
    'ErrorContext',
    'is_retryable',
    'to_user_error',

    # Error recovery
    'RecoveryPolicy',
    'retry_with_backoff',
    'with_fallback',

    # Caching
    'CacheManager',
    'CacheConfig',
    'EvictionStrategy',
]
