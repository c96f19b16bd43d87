"""Retry logic with exponential backoff and jitter.

This module provides:
- retry_with_backoff: Await a coroutine function, retrying transient failures
- is_transient: Default predicate deciding which errors are worth retrying
- is_unsent: Narrower predicate for requests that must not be applied twice
- backoff_delay: Delay for a given attempt (shared with the committer)
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from typing import TypeVar

import httpx

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Default retry configuration
DEFAULT_MAX_RETRIES = 3
DEFAULT_INITIAL_BACKOFF = 1.0  # seconds
DEFAULT_MAX_BACKOFF = 10.0  # seconds
DEFAULT_BACKOFF_MULTIPLIER = 2.0
DEFAULT_JITTER = 0.3  # fraction of the exponential delay

# Status codes that indicate a temporary server-side condition
TRANSIENT_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


def is_transient(error: BaseException) -> bool:
    """Check whether an error is worth retrying.

    Transport errors (connection reset, timeouts) and rate-limit / 5xx
    responses are transient. Authentication, permission and not-found
    errors are not.
    """
    # Imported here to avoid a circular import with the API module
    from sheetsync.client.api import APIError

    if isinstance(error, httpx.TransportError):
        return True
    if isinstance(error, APIError):
        return error.status_code in TRANSIENT_STATUS_CODES
    return False


def is_unsent(error: BaseException) -> bool:
    """Check whether a failed request certainly never took effect.

    Used for non-idempotent calls such as appends: only a failed connection
    or a rate-limit rejection is retried. A timeout or 5xx after the body
    was sent may already have been applied.
    """
    from sheetsync.client.api import APIError

    if isinstance(error, (httpx.ConnectError, httpx.ConnectTimeout, httpx.PoolTimeout)):
        return True
    if isinstance(error, APIError):
        return error.status_code == 429
    return False


def backoff_delay(
    attempt: int,
    initial_backoff: float = DEFAULT_INITIAL_BACKOFF,
    max_backoff: float = DEFAULT_MAX_BACKOFF,
    backoff_multiplier: float = DEFAULT_BACKOFF_MULTIPLIER,
    jitter: float = DEFAULT_JITTER,
) -> float:
    """Compute the delay before retry number ``attempt`` (0-based).

    Returns:
        Exponential delay plus up to ``jitter`` of itself, capped at max_backoff.
    """
    exponential = initial_backoff * (backoff_multiplier**attempt)
    spread = random.uniform(0, jitter * exponential) if jitter else 0.0
    return min(exponential + spread, max_backoff)


async def retry_with_backoff(
    func: Callable[[], Awaitable[T]],
    max_retries: int = DEFAULT_MAX_RETRIES,
    initial_backoff: float = DEFAULT_INITIAL_BACKOFF,
    max_backoff: float = DEFAULT_MAX_BACKOFF,
    backoff_multiplier: float = DEFAULT_BACKOFF_MULTIPLIER,
    should_retry: Callable[[BaseException], bool] = is_transient,
) -> T:
    """Await a coroutine function with exponential backoff retry.

    Args:
        func: Coroutine function to execute.
        max_retries: Maximum number of retry attempts.
        initial_backoff: Initial backoff time in seconds.
        max_backoff: Maximum backoff time in seconds.
        backoff_multiplier: Multiplier for each retry.
        should_retry: Predicate selecting retryable exceptions.

    Returns:
        Result of the coroutine.

    Raises:
        The last exception if all retries fail or the error is not retryable.
    """
    attempt = 0
    while True:
        try:
            return await func()
        except Exception as e:
            if attempt >= max_retries or not should_retry(e):
                if attempt:
                    logger.error(f"Giving up after {attempt + 1} attempts: {e}")
                raise

            delay = backoff_delay(
                attempt, initial_backoff, max_backoff, backoff_multiplier
            )
            logger.warning(
                f"Attempt {attempt + 1}/{max_retries + 1} failed: {e}. "
                f"Retrying in {delay:.1f}s..."
            )
            await asyncio.sleep(delay)
            attempt += 1
