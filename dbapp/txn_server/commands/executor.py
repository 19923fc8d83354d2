"""
Execution of command batches against the storage engine.

Invariants:
    - A batch runs inside exactly one transaction
    - One rendered result per operation, in batch order
    - Any failure rolls back every effect of the batch
    - Contention is never retried here; the caller sees ContentionError
    - Keys and values are converted by one rule (optional sign, ASCII digits,
      64-bit range) so every appended key can be read back with the same token
"""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence

from ..errors import StorageError
from ..storage import MAX_INTEGER, MIN_INTEGER, StorageClient, Transaction, run_in_transaction
from .parser import APPEND, READ, AppendOp, Operation, ReadOp, parse_batch

logger = logging.getLogger(__name__)


_INTEGER = re.compile(r"[-+]?[0-9]+")


def parse_integer(token: str, what: str = "key") -> int:
    """Convert a batch token to an integer.

    Raises:
        StorageError: If token is not a plain decimal integer in the column range
    """
    if _INTEGER.fullmatch(token) is None:
        raise StorageError(f"{what} {token!r} is not an integer")
    value = int(token)
    if not MIN_INTEGER <= value <= MAX_INTEGER:
        raise StorageError(f"{what} {token!r} is out of range")
    return value


def render_values(values: Sequence[int]) -> str:
    return "[" + " ".join(str(v) for v in values) + "]"


async def _read(tx: Transaction, op: ReadOp) -> str:
    rows = await tx.query(
        "SELECT value FROM map WHERE key = ? ORDER BY rowid", (parse_integer(op.key),)
    )
    return f"[{READ} {op.key} {render_values([row[0] for row in rows])}]"


async def _append(tx: Transaction, op: AppendOp) -> str:
    key = parse_integer(op.key)
    value = parse_integer(op.value, what="value")
    await tx.execute("INSERT INTO map(key, value) VALUES(?, ?)", (key, value))
    return f"[{APPEND} {op.key} {op.value}]"


async def execute_batch(storage: StorageClient, operations: Sequence[Operation]) -> str:
    """Execute operations atomically and render the batch result.

    Args:
        storage: Storage client
        operations: Parsed batch

    Returns:
        Rendered result, e.g. ``[[:append 1 10] [:r 1 [10]]]``

    Raises:
        StorageError: If any statement fails (nothing is committed)
        ContentionError: If the engine reports a conflict (nothing is committed)
    """

    async def run(tx: Transaction) -> list[str]:
        results = []
        for op in operations:
            if isinstance(op, ReadOp):
                results.append(await _read(tx, op))
            else:
                results.append(await _append(tx, op))
        return results

    results = await run_in_transaction(storage, run)
    logger.debug("Batch committed", extra={"operations": len(operations)})
    return "[" + " ".join(results) + "]"


async def run_batch(storage: StorageClient, document: str) -> str:
    """Parse a batch document and execute it.

    Parse errors are raised before any transaction is opened.
    """
    operations = parse_batch(document)
    return await execute_batch(storage, operations)
