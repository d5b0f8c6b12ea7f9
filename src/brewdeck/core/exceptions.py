"""
Core Exception Hierarchy for BrewDeck

Provides error classification with error codes, contextual information and a
uniform ``{kind, message}`` representation for the command surface.
"""

import asyncio
import time
import uuid
from enum import Enum
from typing import Dict, Any, Optional
from dataclasses import dataclass, field


class ErrorCode(Enum):
    """Standard error codes for different error categories."""

    # Lookup errors (1000-1999)
    NOT_FOUND_PACKAGE = 1001
    NOT_FOUND_HOMEBREW = 1002

    # Network related errors (2000-2999)
    NETWORK_CONNECTION_FAILED = 2001
    NETWORK_HTTP_ERROR = 2002
    NETWORK_RATE_LIMITED = 2003
    NETWORK_TIMEOUT = 2004

    # Local tool errors (3000-3999)
    EXECUTION_FAILED = 3001
    EXECUTION_INSTALL_FAILED = 3002
    EXECUTION_UNINSTALL_FAILED = 3003
    EXECUTION_UPDATE_FAILED = 3004
    EXECUTION_PERMISSION_DENIED = 3005

    # Data errors (4000-4999)
    PARSING_FAILED = 4001
    SERIALIZATION_FAILED = 4002

    # Configuration errors (5000-5999)
    CONFIG_INVALID_VALUE = 5001
    CONFIG_INVALID_FORMAT = 5002

    # Generic errors (9000-9999)
    OPERATION_TIMEOUT = 9001
    INTERNAL_ERROR = 9002


# Error kinds exposed to callers
_KIND_BY_CODE = {
    ErrorCode.NOT_FOUND_PACKAGE: "NotFound",
    ErrorCode.NOT_FOUND_HOMEBREW: "NotFound",
    ErrorCode.NETWORK_CONNECTION_FAILED: "NetworkFailure",
    ErrorCode.NETWORK_HTTP_ERROR: "NetworkFailure",
    ErrorCode.NETWORK_RATE_LIMITED: "RateLimited",
    ErrorCode.NETWORK_TIMEOUT: "Timeout",
    ErrorCode.EXECUTION_FAILED: "ExecutionFailure",
    ErrorCode.EXECUTION_INSTALL_FAILED: "ExecutionFailure",
    ErrorCode.EXECUTION_UNINSTALL_FAILED: "ExecutionFailure",
    ErrorCode.EXECUTION_UPDATE_FAILED: "ExecutionFailure",
    ErrorCode.EXECUTION_PERMISSION_DENIED: "ExecutionFailure",
    ErrorCode.PARSING_FAILED: "ParsingFailure",
    ErrorCode.SERIALIZATION_FAILED: "SerializationFailure",
    ErrorCode.CONFIG_INVALID_VALUE: "InvalidConfiguration",
    ErrorCode.CONFIG_INVALID_FORMAT: "InvalidConfiguration",
    ErrorCode.OPERATION_TIMEOUT: "Timeout",
    ErrorCode.INTERNAL_ERROR: "Internal",
}


@dataclass
class ErrorContext:
    """Contextual information about an error occurrence."""

    operation: str = ""
    package: Optional[str] = None
    kind: Optional[str] = None
    url: Optional[str] = None
    command: Optional[str] = None
    correlation_id: Optional[str] = None
    timestamp: float = field(default_factory=time.time)
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert context to dictionary for serialization."""
        return {
            'operation': self.operation,
            'package': self.package,
            'kind': self.kind,
            'url': self.url,
            'command': self.command,
            'correlation_id': self.correlation_id,
            'timestamp': self.timestamp,
            'details': self.details,
        }


class BrewDeckError(Exception):
    """
    Base exception for all BrewDeck errors.

    Carries an error code (which determines the caller-facing error kind),
    the original cause and whether the error is transient enough to retry.
    """

    default_code = ErrorCode.INTERNAL_ERROR
    default_recoverable = False

    def __init__(
        self,
        message: str,
        error_code: Optional[ErrorCode] = None,
        context: Optional[ErrorContext] = None,
        cause: Optional[BaseException] = None,
        recoverable: Optional[bool] = None,
    ):
        """
        Initialize BrewDeck error.

        Args:
            message: Human-readable error description
            error_code: Standardized error code
            context: Contextual information about the error
            cause: Original exception that caused this error
            recoverable: Whether retrying may succeed
        """
        super().__init__(message)

        self.message = message
        self.error_code = error_code or self.default_code
        self.context = context or ErrorContext()
        self.cause = cause
        self.recoverable = self.default_recoverable if recoverable is None else recoverable

        if not self.context.correlation_id:
            self.context.correlation_id = str(uuid.uuid4())[:8]

    @property
    def kind(self) -> str:
        """Caller-facing error kind (NotFound, NetworkFailure, ...)."""
        return _KIND_BY_CODE.get(self.error_code, "Internal")

    def to_user_error(self) -> Dict[str, str]:
        """Structured error for the command surface; never a stack trace."""
        return {'kind': self.kind, 'message': self.message}

    def get_debug_info(self) -> Dict[str, Any]:
        """Get comprehensive debug information."""
        return {
            'error_type': self.__class__.__name__,
            'message': self.message,
            'error_code': self.error_code.value,
            'kind': self.kind,
            'recoverable': self.recoverable,
            'context': self.context.to_dict(),
            'cause': {
                'type': type(self.cause).__name__ if self.cause else None,
                'message': str(self.cause) if self.cause else None,
            },
        }


class NotFoundError(BrewDeckError):
    """A package (or the package manager itself) does not exist."""

    default_code = ErrorCode.NOT_FOUND_PACKAGE

    def __init__(self, message: str, package: Optional[str] = None, **kwargs):
        context = kwargs.get('context') or ErrorContext()
        if package:
            context.package = package
        kwargs['context'] = context
        super().__init__(message, **kwargs)


class NetworkError(BrewDeckError):
    """Exception for connection failures and unsuccessful HTTP responses."""

    default_code = ErrorCode.NETWORK_CONNECTION_FAILED
    default_recoverable = True

    def __init__(
        self,
        message: str,
        url: Optional[str] = None,
        status_code: Optional[int] = None,
        **kwargs
    ):
        context = kwargs.get('context') or ErrorContext()
        if url:
            context.url = url
        if status_code is not None:
            context.details['status_code'] = status_code
        kwargs['context'] = context
        super().__init__(message, **kwargs)
        self.status_code = status_code


class RateLimitedError(NetworkError):
    """HTTP 429 from the catalog API."""

    default_code = ErrorCode.NETWORK_RATE_LIMITED

    def __init__(self, message: str, retry_after: Optional[float] = None, **kwargs):
        kwargs.setdefault('status_code', 429)
        super().__init__(message, **kwargs)
        self.retry_after = retry_after


class OperationTimeoutError(BrewDeckError):
    """An upstream call exceeded its timeout."""

    default_code = ErrorCode.OPERATION_TIMEOUT
    default_recoverable = True


class ExecutionError(BrewDeckError):
    """The local package tool exited unsuccessfully."""

    default_code = ErrorCode.EXECUTION_FAILED

    def __init__(
        self,
        message: str,
        command: Optional[str] = None,
        exit_code: Optional[int] = None,
        **kwargs
    ):
        context = kwargs.get('context') or ErrorContext()
        if command:
            context.command = command
        if exit_code is not None:
            context.details['exit_code'] = exit_code
        kwargs['context'] = context
        super().__init__(message, **kwargs)
        self.exit_code = exit_code


class ParsingError(BrewDeckError):
    """Upstream data had an unexpected shape."""

    default_code = ErrorCode.PARSING_FAILED


class SerializationError(BrewDeckError):
    """A value could not be encoded into or decoded from the cache."""

    default_code = ErrorCode.SERIALIZATION_FAILED


class ConfigurationError(BrewDeckError):
    """Exception for configuration-related errors."""

    default_code = ErrorCode.CONFIG_INVALID_VALUE

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        config_value: Optional[Any] = None,
        **kwargs
    ):
        context = kwargs.get('context') or ErrorContext()
        if config_key:
            context.details['config_key'] = config_key
            context.details['config_value'] = config_value
        kwargs['context'] = context
        super().__init__(message, **kwargs)


def is_retryable(error: BaseException) -> bool:
    """
    Whether ``retry_with_backoff`` should retry after ``error``.

    Taxonomy errors carry their own ``recoverable`` flag: network failures,
    timeouts and rate limiting are retried, missing packages and failed tool
    runs are not. Anything outside the taxonomy is retried until the policy
    runs out.
    """
    if isinstance(error, BrewDeckError):
        return error.recoverable
    return True


def to_user_error(error: BaseException) -> Dict[str, str]:
    """Translate any exception into the ``{kind, message}`` pair."""
    if isinstance(error, BrewDeckError):
        return error.to_user_error()
    if isinstance(error, asyncio.TimeoutError):
        return {'kind': 'Timeout', 'message': str(error) or 'Operation timed out'}
    return {'kind': 'Internal', 'message': str(error) or type(error).__name__}


# Convenience functions for creating common errors
def network_error(message: str, url: Optional[str] = None, **kwargs) -> NetworkError:
    """Create a network error."""
    return NetworkError(message, url=url, **kwargs)


def not_found_error(message: str, package: Optional[str] = None, **kwargs) -> NotFoundError:
    """Create a not-found error for a package."""
    return NotFoundError(message, package=package, **kwargs)


def config_error(message: str, key: Optional[str] = None, **kwargs) -> ConfigurationError:
    """Create a configuration error with key context."""
    return ConfigurationError(message, config_key=key, **kwargs)
