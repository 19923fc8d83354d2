"""
Transaction helpers shared by the command executor and ledger operations.

Invariants:
    - run_in_transaction() commits only if the callback returns normally
    - retry_on_contention() retries ContentionError only; other errors propagate
      on the first attempt
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from ..errors import ContentionError, StorageError
from .base import StorageClient, Transaction

logger = logging.getLogger(__name__)

T = TypeVar("T")

SCHEMA = "CREATE TABLE IF NOT EXISTS map (key INTEGER, value INTEGER) STRICT"

# Range of the INTEGER columns
MIN_INTEGER = -(2**63)
MAX_INTEGER = 2**63 - 1


async def run_in_transaction(
    storage: StorageClient,
    fn: Callable[[Transaction], Awaitable[T]],
) -> T:
    """Run fn inside one transaction and return its result.

    Any exception raised by fn rolls the transaction back and propagates
    unchanged.
    """
    async with storage.transaction() as tx:
        return await fn(tx)


async def retry_on_contention(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int,
    delay_s: float,
    description: str,
) -> T:
    """Run operation, retrying with a fixed backoff while it reports contention.

    Args:
        operation: Zero-argument coroutine factory
        max_attempts: Total number of attempts
        delay_s: Sleep between attempts
        description: What is being attempted, for logs and errors

    Raises:
        StorageError: If the database is still locked after max_attempts
    """
    for attempt in range(1, max_attempts + 1):
        try:
            return await operation()
        except ContentionError:
            if attempt == max_attempts:
                break
            logger.warning(
                f"{description}: database locked, retrying",
                extra={"attempt": attempt, "max_attempts": max_attempts},
            )
            await asyncio.sleep(delay_s)

    raise StorageError(f"{description}: database still locked after {max_attempts} retries")


async def ensure_schema(storage: StorageClient, max_attempts: int = 10, delay_s: float = 0.25) -> None:
    """Create the key/value relation, retrying on contention."""
    await retry_on_contention(
        lambda: storage.execute(SCHEMA),
        max_attempts=max_attempts,
        delay_s=delay_s,
        description="create schema",
    )
    logger.info("Schema ready")
