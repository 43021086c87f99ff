"""
Retry helpers for transient network failures.
"""

import asyncio
from typing import Awaitable, Callable, TypeVar

import requests
from loguru import logger

from bundlebot.config import RETRY_BASE_DELAY_MS, RETRY_MAX_ATTEMPTS, RETRY_MAX_DELAY_MS
from bundlebot.errors import BundleBotError, RelayUnreachable, UpstreamUnavailable

T = TypeVar("T")

TRANSIENT_ERROR_TYPES = (
    UpstreamUnavailable,
    RelayUnreachable,
    asyncio.TimeoutError,
    TimeoutError,
    ConnectionError,
    requests.exceptions.ConnectionError,
    requests.exceptions.Timeout,
)


def is_transient_error(error: BaseException) -> bool:
    """
    Check if an error is a transient network failure worth retrying.

    Typed engine errors are classified by type only. Other exceptions are
    also matched on their message.

    Args:
        error: The exception to check

    Returns:
        True if the operation may succeed when retried
    """
    if isinstance(error, TRANSIENT_ERROR_TYPES):
        return True

    if isinstance(error, BundleBotError):
        return False

    transient_indicators = [
        "econnrefused",
        "connection refused",
        "connection reset",
        "timeout",
        "timed out",
        "network",
    ]

    error_lower = str(error).lower()
    for indicator in transient_indicators:
        if indicator in error_lower:
            return True
    return False


def backoff_delay_ms(attempt: int, base_delay_ms: int, max_delay_ms: int) -> int:
    """
    Delay to wait after the given failed attempt (1-based).

    Returns:
        min(base * 2^(attempt-1), max) in milliseconds
    """
    return min(base_delay_ms * (2 ** (attempt - 1)), max_delay_ms)


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int = RETRY_MAX_ATTEMPTS,
    base_delay_ms: int = RETRY_BASE_DELAY_MS,
    max_delay_ms: int = RETRY_MAX_DELAY_MS,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
) -> T:
    """
    Run an async operation, retrying transient failures with exponential backoff.

    Args:
        operation: Zero-argument coroutine function to run
        max_attempts: Total number of attempts
        base_delay_ms: Delay after the first failure
        max_delay_ms: Upper bound for any delay
        sleep: Sleep function, replaceable in tests

    Returns:
        Result of the first successful attempt

    Raises:
        The last error once attempts are exhausted, or the first
        non-transient error immediately
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    for attempt in range(1, max_attempts + 1):
        try:
            return await operation()
        except Exception as e:
            if not is_transient_error(e):
                raise

            if attempt >= max_attempts:
                logger.error(f"All {max_attempts} attempts failed: {str(e)}")
                raise

            delay_ms = backoff_delay_ms(attempt, base_delay_ms, max_delay_ms)
            logger.warning(
                f"Transient error on attempt {attempt}/{max_attempts}, retrying in {delay_ms / 1000:.1f}s: {str(e)}"
            )
            await sleep(delay_ms / 1000)

    # Unreachable, the loop always returns or raises
    raise RuntimeError("with_retry exhausted without result")
