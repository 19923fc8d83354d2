"""
Reader for the keyword-map notation used by /bank request bodies.

Grammar:

    map     := '{' entry* '}'
    entry   := keyword value
    value   := integer | vector | keyword | 'nil'
    vector  := '[' value* ']'
    keyword := ':' name

Commas count as whitespace, so ``{:from 1, :to 2, :amount 5}`` and
``{:from 1 :to 2 :amount 5}`` read the same. Keywords are returned without
the leading colon.
"""

from __future__ import annotations

import re
from typing import Any

from ..errors import MalformedRequestError

_TOKEN = re.compile(
    r"""
    (?P<space>[\s,]+)
  | (?P<open>[{\[])
  | (?P<close>[}\]])
  | (?P<integer>[-+]?\d+)(?![\w:.])
  | (?P<keyword>:[A-Za-z_][\w\-?!*.]*)
  | (?P<nil>nil)(?![\w\-])
    """,
    re.VERBOSE,
)


def tokenize(text: str) -> list[tuple[str, str]]:
    """Split text into (kind, token) pairs, dropping whitespace and commas.

    Raises:
        MalformedRequestError: On any character sequence outside the grammar
    """
    tokens = []
    pos = 0
    while pos < len(text):
        match = _TOKEN.match(text, pos)
        if match is None:
            raise MalformedRequestError(f"unexpected input at offset {pos}: {text[pos:pos + 10]!r}")
        kind = match.lastgroup
        if kind != "space":
            tokens.append((kind, match.group()))
        pos = match.end()
    return tokens


class _Reader:
    def __init__(self, tokens: list[tuple[str, str]]) -> None:
        self.tokens = tokens
        self.pos = 0

    def peek(self) -> tuple[str, str] | None:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def next(self) -> tuple[str, str]:
        token = self.peek()
        if token is None:
            raise MalformedRequestError("unexpected end of input")
        self.pos += 1
        return token

    def read_map(self) -> dict[str, Any]:
        kind, token = self.next()
        if token != "{":
            raise MalformedRequestError(f"expected '{{', got {token!r}")

        result: dict[str, Any] = {}
        while True:
            kind, token = self.next()
            if token == "}":
                return result
            if kind != "keyword":
                raise MalformedRequestError(f"expected keyword, got {token!r}")
            name = token[1:]
            if name in result:
                raise MalformedRequestError(f"duplicate key :{name}")
            result[name] = self.read_value()

    def read_value(self) -> Any:
        kind, token = self.next()
        if kind == "integer":
            return int(token)
        if kind == "keyword":
            return token
        if kind == "nil":
            return None
        if token == "[":
            items = []
            while True:
                following = self.peek()
                if following is not None and following[1] == "]":
                    self.pos += 1
                    return items
                items.append(self.read_value())
        raise MalformedRequestError(f"unexpected {token!r}")


def read_map(text: str) -> dict[str, Any]:
    """Read one keyword map from text.

    Raises:
        MalformedRequestError: If text is not exactly one well-formed map
    """
    reader = _Reader(tokenize(text))
    result = reader.read_map()
    if reader.peek() is not None:
        raise MalformedRequestError(f"trailing input after map: {reader.peek()[1]!r}")
    return result
