"""
Error types for the transaction server.

This module defines every failure the server reports to callers:
- TxnServerError: Base exception
- MalformedBatchError / UnknownOperationError: Command batch parsing
- MalformedRequestError: Structured request body parsing
- StorageError / ContentionError: Failures reported by the storage engine
- RequestTimeoutError: Per-request deadline expired
- UnresolvedNodeError / NodeNotFoundError: Node identity translation
- ClusterIncompleteError / NodeNotVoterError: Readiness gate

Invariants:
    - All errors inherit from TxnServerError
    - str(error) is the message rendered to HTTP callers
    - Parse errors are raised before any transaction is started
"""

from __future__ import annotations

from typing import Any


class TxnServerError(Exception):
    """Base exception for all transaction server errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "TXN_SERVER_ERROR"
        self.details = details or {}


class BadRequestError(TxnServerError):
    """No handler exists for the requested path and method."""

    def __init__(self, message: str = "bad request") -> None:
        super().__init__(message, code="BAD_REQUEST")


class MalformedBatchError(TxnServerError):
    """Command batch document is not well formed.

    Raised when:
    - The document is not wrapped in brackets
    - An element is not bracket-delimited
    - An element does not have exactly three tokens
    """

    def __init__(self, message: str, document: str | None = None) -> None:
        super().__init__(
            message,
            code="MALFORMED_BATCH",
            details={"document": document},
        )
        self.document = document


class UnknownOperationError(TxnServerError):
    """Command batch element uses an unsupported operation."""

    def __init__(self, op: str) -> None:
        super().__init__(
            f"unknown operation {op!r}",
            code="UNKNOWN_OPERATION",
            details={"op": op},
        )
        self.op = op


class MalformedRequestError(TxnServerError):
    """Structured request body could not be parsed or validated."""

    def __init__(self, message: str, errors: list[str] | None = None) -> None:
        super().__init__(
            message,
            code="MALFORMED_REQUEST",
            details={"errors": errors or []},
        )
        self.errors = errors or []


class StorageError(TxnServerError):
    """Storage engine reported a failure."""

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message, code=code or "STORAGE_ERROR")


class ContentionError(StorageError):
    """Storage engine reported a busy or lock conflict.

    The enclosing transaction has been rolled back. Retrying is safe.
    """

    def __init__(self, message: str = "database is locked") -> None:
        super().__init__(message, code="CONTENTION")


class RequestTimeoutError(TxnServerError):
    """Request did not complete before its deadline."""

    def __init__(self, timeout_s: float) -> None:
        super().__init__(
            f"request timed out after {timeout_s:g}s",
            code="TIMEOUT",
            details={"timeout_s": timeout_s},
        )
        self.timeout_s = timeout_s


class UnresolvedNodeError(TxnServerError):
    """A node address or name could not be translated.

    Raised when:
    - Reverse lookup of a replication address fails
    - Reverse lookup yields zero or several host names
    - Forward lookup of a host name fails
    """

    def __init__(self, message: str, address: str | None = None) -> None:
        super().__init__(
            message,
            code="UNRESOLVED_NODE",
            details={"address": address},
        )
        self.address = address


class NodeNotFoundError(TxnServerError):
    """No cluster member matches the requested node."""

    def __init__(self, name: str) -> None:
        super().__init__(
            f"no node named {name}",
            code="NODE_NOT_FOUND",
            details={"name": name},
        )
        self.name = name


class ClusterIncompleteError(TxnServerError):
    """Cluster does not have the expected number of members yet."""

    def __init__(self, size: int, expected: int) -> None:
        super().__init__(
            f"cluster has still only {size} nodes",
            code="CLUSTER_INCOMPLETE",
            details={"size": size, "expected": expected},
        )
        self.size = size
        self.expected = expected


class NodeNotVoterError(TxnServerError):
    """A cluster member has not been promoted out of the spare role."""

    def __init__(self, address: str, role: str) -> None:
        super().__init__(
            f"node {address} is still {role}",
            code="NODE_NOT_VOTER",
            details={"address": address, "role": role},
        )
        self.address = address
        self.role = role
