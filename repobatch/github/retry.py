"""Retry with exponential backoff for GitHub write sequences."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from repobatch.core.exceptions import GitHubAPIError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_conflict(error: Exception) -> bool:
    """Ref update rejected because another writer moved the branch."""
    return isinstance(error, GitHubAPIError) and error.is_conflict


async def call_with_retry(
    operation: Callable[[], Awaitable[T]],
    max_retries: int = 3,
    base_delay: float = 0.5,
    backoff_factor: float = 2.0,
    should_retry: Callable[[Exception], bool] = is_conflict,
    description: str = "GitHub operation",
) -> T:
    """Run operation, re-running it from scratch on retryable errors.

    Args:
        operation: Zero-argument coroutine factory; called once per attempt
        max_retries: Maximum number of additional attempts
        base_delay: Delay in seconds, multiplied by backoff_factor**attempt
        backoff_factor: Multiplier for exponential backoff
        should_retry: Predicate selecting retryable errors
        description: Label used in log messages

    Returns:
        Result of the first successful attempt

    Raises:
        Exception: The first non-retryable error, or the last retryable
            error once max_retries is exhausted
    """
    attempt = 0
    while True:
        try:
            return await operation()
        except Exception as e:
            if not should_retry(e) or attempt >= max_retries:
                raise

            attempt += 1
            delay = base_delay * (backoff_factor**attempt)
            logger.info(
                "%s failed (%s), retry %d/%d in %.2fs",
                description,
                e,
                attempt,
                max_retries,
                delay,
            )
            await asyncio.sleep(delay)
