"""
Grow-only set operations.

Elements are rows of the ``map`` relation with a NULL key.
"""

from __future__ import annotations

import logging

from ..storage import StorageClient

logger = logging.getLogger(__name__)


async def add_element(storage: StorageClient, value: str) -> str:
    """Add value to the set and echo it back.

    Raises:
        StorageError: If value is not an integer or the insert fails
    """
    value = value.strip()
    await storage.execute("INSERT INTO map(value) VALUES(?)", (value,))
    logger.debug("Set element added", extra={"value": value})
    return value


async def read_elements(storage: StorageClient) -> list[int]:
    """Return every element in insertion order."""
    rows = await storage.query("SELECT value FROM map WHERE key IS NULL ORDER BY rowid")
    return [row[0] for row in rows]


def render_elements(elements: list[int]) -> str:
    return "[" + " ".join(str(e) for e in elements) + "]"
