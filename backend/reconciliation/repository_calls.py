"""
Repository Call Policy

Every repository call made by the engine goes through one of these helpers:
- call_read: bounded by a timeout, retried once after a backoff delay
- call_write: bounded by a timeout, never retried

Only RepositoryError and timeouts are retried. Anything else (including a
read that legitimately returns nothing) propagates unchanged.
"""

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from reconciliation.errors import RepositoryError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# First attempt + one retry
READ_MAX_ATTEMPTS = 2


async def call_read(
    operation: Callable[[], Awaitable[T]],
    description: str,
    timeout: float,
    retry_delay: float,
) -> T:
    """
    Run an idempotent repository read.

    Args:
        operation: Zero-argument callable returning the read coroutine
        description: Name of the read for logs and errors
        timeout: Seconds allowed per attempt
        retry_delay: Base backoff before the retry (multiplied by attempt number)

    Raises:
        RepositoryError: if every attempt failed or timed out
    """
    for attempt in range(1, READ_MAX_ATTEMPTS + 1):
        try:
            return await asyncio.wait_for(operation(), timeout=timeout)
        except asyncio.TimeoutError:
            error = RepositoryError(f"{description} timed out after {timeout}s", operation=description)
        except RepositoryError as e:
            error = e

        if attempt == READ_MAX_ATTEMPTS:
            logger.error(f"Repository read failed after {attempt} attempts: {description}: {error}")
            raise error

        delay = retry_delay * attempt
        logger.warning(f"Repository read failed (attempt {attempt}), retry in {delay}s: {description}: {error}")
        await asyncio.sleep(delay)


async def call_write(
    operation: Callable[[], Awaitable[T]],
    description: str,
    timeout: float,
) -> T:
    """
    Run a repository write once.

    A timed-out write may or may not have been applied; the caller is told
    the store failed and is expected to refresh before retrying deliberately.

    Raises:
        RepositoryError: if the write failed or timed out
    """
    try:
        return await asyncio.wait_for(operation(), timeout=timeout)
    except asyncio.TimeoutError:
        logger.error(f"Repository write timed out after {timeout}s: {description}")
        raise RepositoryError(f"{description} timed out after {timeout}s", operation=description)
