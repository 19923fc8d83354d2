"""
Parser for command batch documents.

A batch is a bracketed list of operations, each itself bracketed:

    [[:append 1 10] [:append 1 20] [:r 1 nil]]

Every element has exactly three tokens, ``op key value``:
- ``:r key nil`` reads all values stored under key
- ``:append key value`` stores value under key

Whitespace between elements is optional. Parsing is purely syntactic:
keys and values are kept as the tokens the client sent, and their numeric
validity is checked when the batch runs against storage.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from ..errors import MalformedBatchError, UnknownOperationError

READ = ":r"
APPEND = ":append"

_ELEMENT = re.compile(r"\s*\[([^\[\]]*)\]")


@dataclass(frozen=True)
class ReadOp:
    """Read every value stored under key, in insertion order."""

    key: str

    def __str__(self) -> str:
        return f"[{READ} {self.key} nil]"


@dataclass(frozen=True)
class AppendOp:
    """Append value under key."""

    key: str
    value: str

    def __str__(self) -> str:
        return f"[{APPEND} {self.key} {self.value}]"


Operation = ReadOp | AppendOp


def parse_batch(document: str) -> list[Operation]:
    """Parse a batch document into its operations, in order.

    Raises:
        MalformedBatchError: If the document or an element is not well formed
        UnknownOperationError: If an element uses an op other than :r or :append
    """
    text = document.strip()
    if len(text) < 2 or text[0] != "[" or text[-1] != "]":
        raise MalformedBatchError("batch must be enclosed in brackets", document=document)

    body = text[1:-1]
    operations: list[Operation] = []
    pos = 0
    while body[pos:].strip():
        match = _ELEMENT.match(body, pos)
        if match is None:
            raise MalformedBatchError(
                f"expected bracketed operation at offset {pos + 1}", document=document
            )
        operations.append(_parse_operation(match.group(1), document))
        pos = match.end()

    return operations


def _parse_operation(element: str, document: str) -> Operation:
    tokens = element.split()
    if len(tokens) != 3:
        raise MalformedBatchError(
            f"operation [{element}] must have exactly 3 tokens, got {len(tokens)}",
            document=document,
        )

    op, key, value = tokens
    if op == READ:
        if value != "nil":
            raise MalformedBatchError(f"read of key {key} must pass nil, got {value}", document=document)
        return ReadOp(key)
    if op == APPEND:
        return AppendOp(key, value)
    raise UnknownOperationError(op)
