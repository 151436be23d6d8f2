"""
Retry-with-backoff for storage and network calls.

Retries run inline in the calling request. The delay before attempt N+1 is
base * exponential_base^(N-1), capped at max_delay. Only errors the
classifier accepts are retried; anything else propagates immediately.
"""

import asyncio
import logging
from dataclasses import dataclass, replace
from typing import Awaitable, Callable, Optional, Type, TypeVar

import httpx
import requests
from sqlalchemy import exc as sa_exc

from bhavan.config import settings
from bhavan.core.errors import AppError, DatabaseError, NetworkError

logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class RetryConfig:
    max_attempts: int = 3
    base_delay_ms: int = 1000
    max_delay_ms: int = 10000
    exponential_base: float = 2

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after the given (1-based) failed attempt."""
        delay_ms = self.base_delay_ms * (self.exponential_base ** (attempt - 1))
        return min(delay_ms, self.max_delay_ms) / 1000


DEFAULT_RETRY_CONFIG = RetryConfig(
    max_attempts=settings.RETRY_MAX_ATTEMPTS,
    base_delay_ms=settings.NETWORK_RETRY_BASE_DELAY_MS,
    max_delay_ms=settings.RETRY_MAX_DELAY_MS,
    exponential_base=settings.RETRY_EXPONENTIAL_BASE,
)

DATABASE_RETRY_CONFIG = replace(DEFAULT_RETRY_CONFIG, base_delay_ms=settings.DB_RETRY_BASE_DELAY_MS)


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    should_retry: Callable[[Exception], bool],
    config: RetryConfig = DEFAULT_RETRY_CONFIG,
    wrap_as: Optional[Type[AppError]] = None,
    operation_name: str = "operation",
    sleep: Sleep = asyncio.sleep,
) -> T:
    """
    Run an async operation, retrying classified failures with backoff.

    Args:
        operation: Zero-argument callable returning an awaitable
        should_retry: Classifier deciding whether a failure is transient
        config: Attempt count and delay settings
        wrap_as: Taxonomy kind used for bare (non-AppError) failures
        operation_name: Label used in log messages
        sleep: Awaitable sleep, replaceable in tests

    Returns:
        The operation's result

    Raises:
        The last error, wrapped in wrap_as if it was not already an AppError
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            return await operation()
        except Exception as e:
            retryable = should_retry(e)
            if not retryable or attempt >= config.max_attempts:
                if retryable:
                    logger.error(f"{operation_name} failed after {attempt} attempts: {e}")
                wrapped = _wrap(e, wrap_as, operation_name)
                if wrapped is e:
                    raise
                raise wrapped from e

            delay = config.delay_for(attempt)
            logger.warning(
                f"{operation_name} failed (attempt {attempt}/{config.max_attempts}), "
                f"retrying in {delay:.2f}s: {e}"
            )
            await sleep(delay)


def _wrap(error: Exception, wrap_as: Optional[Type[AppError]], operation_name: str) -> Exception:
    if wrap_as is None or isinstance(error, AppError):
        return error
    if wrap_as is NetworkError:
        return NetworkError(f"{operation_name} failed: {error}", retryable=False)
    return wrap_as(f"{operation_name} failed: {error}")


# ==================== CLASSIFIERS ====================

def is_transient_database_error(error: Exception) -> bool:
    if isinstance(error, DatabaseError):
        return True
    if isinstance(error, sa_exc.IntegrityError):
        return False
    if isinstance(error, (sa_exc.OperationalError, sa_exc.InterfaceError, sa_exc.TimeoutError)):
        return True
    if isinstance(error, sa_exc.DBAPIError) and error.connection_invalidated:
        return True
    return False


_TRANSIENT_NETWORK_MARKERS = ("timeout", "etimedout", "econnrefused", "enotfound", "connection reset")


def is_transient_network_error(error: Exception) -> bool:
    if isinstance(error, NetworkError):
        return error.retryable
    if isinstance(error, AppError):
        return False
    if isinstance(error, (httpx.TimeoutException, httpx.ConnectError)):
        return True
    if isinstance(error, (requests.exceptions.Timeout, requests.exceptions.ConnectionError)):
        return True
    if isinstance(error, (TimeoutError, ConnectionError)):
        return True
    message = str(error).lower()
    return any(marker in message for marker in _TRANSIENT_NETWORK_MARKERS)


# ==================== POLICIES ====================

async def with_database_retry(
    operation: Callable[[], Awaitable[T]],
    operation_name: str = "database operation",
    config: RetryConfig = DATABASE_RETRY_CONFIG,
    sleep: Sleep = asyncio.sleep,
) -> T:
    """Retry transient storage failures; bare errors surface as DatabaseError."""
    return await with_retry(
        operation,
        should_retry=is_transient_database_error,
        config=config,
        wrap_as=DatabaseError,
        operation_name=operation_name,
        sleep=sleep,
    )


async def with_network_retry(
    operation: Callable[[], Awaitable[T]],
    operation_name: str = "network request",
    config: RetryConfig = DEFAULT_RETRY_CONFIG,
    sleep: Sleep = asyncio.sleep,
) -> T:
    """Retry transport failures; bare errors surface as NetworkError."""
    return await with_retry(
        operation,
        should_retry=is_transient_network_error,
        config=config,
        wrap_as=NetworkError,
        operation_name=operation_name,
        sleep=sleep,
    )
