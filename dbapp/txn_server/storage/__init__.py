"""
Storage engine abstraction for the transaction server.

This module provides a pluggable storage client interface supporting:
- SQLite (single node, local development, tests)

Every backend exposes transactional execute/query, a distinguished
contention error, and the cluster operations (leader, members, remove,
handover) of the replicated engine it fronts.

Invariants:
    - One storage client per process, opened at startup and closed at shutdown
    - Transactions are the unit of atomicity for every request
    - Contention is reported as ContentionError so callers can decide to retry
"""

from .base import (
    NodeInfo,
    NodeRole,
    StorageClient,
    Transaction,
    create_storage_client,
)
from .sqlite import SqliteStorageClient
from .transaction import (
    MAX_INTEGER,
    MIN_INTEGER,
    SCHEMA,
    ensure_schema,
    retry_on_contention,
    run_in_transaction,
)

__all__ = [
    # Protocol and types
    "StorageClient",
    "Transaction",
    "NodeInfo",
    "NodeRole",
    # Factory
    "create_storage_client",
    # Implementations
    "SqliteStorageClient",
    # Helpers
    "SCHEMA",
    "MIN_INTEGER",
    "MAX_INTEGER",
    "ensure_schema",
    "retry_on_contention",
    "run_in_transaction",
]
