"""
Base protocol and types for the storage engine abstraction.

This module defines the StorageClient protocol that every storage engine
backend must implement, along with the cluster membership types it reports.

Invariants:
    - A transaction either commits every statement or none of them
    - Busy/lock conflicts surface as ContentionError, never as plain StorageError
    - Membership is owned by the engine; clients only observe it and request removals

How to change safely:
    - Protocol changes require updating all implementations
    - Keep engine-specific error codes inside the backend modules
"""

from __future__ import annotations

import logging
from abc import abstractmethod
from collections.abc import Sequence
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from ..cluster.bootstrap import BootstrapPlan
    from ..config import ServerConfig

logger = logging.getLogger(__name__)

Params = Sequence[Any]
Row = tuple[Any, ...]


class NodeRole(Enum):
    """Role of a node in the replication group."""

    VOTER = "voter"
    STANDBY = "stand-by"
    SPARE = "spare"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class NodeInfo:
    """A cluster member as reported by the storage engine.

    Attributes:
        id: Engine-assigned node identifier
        address: Replication address (host:port)
        role: Current role in the replication group
    """

    id: int
    address: str
    role: NodeRole = NodeRole.VOTER

    @property
    def host(self) -> str:
        """Host part of the replication address."""
        host, _, _ = self.address.rpartition(":")
        return host or self.address

    def __str__(self) -> str:
        return f"NodeInfo(id={self.id}, address={self.address}, role={self.role})"


@runtime_checkable
class Transaction(Protocol):
    """An open transaction on the replicated database."""

    @abstractmethod
    async def execute(self, sql: str, params: Params = ()) -> int:
        """Execute a statement and return the number of affected rows.

        Raises:
            ContentionError: If the engine reports a busy/lock conflict
            StorageError: For any other failure
        """
        ...

    @abstractmethod
    async def query(self, sql: str, params: Params = ()) -> list[Row]:
        """Run a query and return all rows in result order.

        Raises:
            ContentionError: If the engine reports a busy/lock conflict
            StorageError: For any other failure
        """
        ...


@runtime_checkable
class StorageClient(Protocol):
    """Protocol for storage engine backends.

    Lifecycle contract:
        - connect() opens the single long-lived handle
        - ready() returns once this node has joined the cluster
        - handover() hands leadership to another voter before shutdown
        - close() releases the handle

    Transaction contract:
        - transaction() yields a Transaction; leaving the block normally
          commits, leaving it with an exception (or cancellation) rolls back
        - Statement order within a transaction is preserved

    Example:
        >>> await storage.connect()
        >>> async with storage.transaction() as tx:
        ...     await tx.execute("INSERT INTO map(key, value) VALUES(?, ?)", (1, 10))
    """

    @abstractmethod
    async def connect(self) -> None:
        """Open the storage handle.

        Raises:
            StorageError: If the database cannot be opened
        """
        ...

    @abstractmethod
    async def ready(self) -> None:
        """Wait until the node is part of a stable cluster."""
        ...

    @abstractmethod
    async def handover(self) -> None:
        """Transfer leadership and voting rights away from this node."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Close the storage handle."""
        ...

    @abstractmethod
    def transaction(self) -> AbstractAsyncContextManager[Transaction]:
        """Open a transaction."""
        ...

    @abstractmethod
    async def execute(self, sql: str, params: Params = ()) -> int:
        """Execute a single statement in its own transaction."""
        ...

    @abstractmethod
    async def query(self, sql: str, params: Params = ()) -> list[Row]:
        """Run a single query in its own transaction."""
        ...

    @abstractmethod
    async def leader(self) -> NodeInfo | None:
        """Current cluster leader, or None if there is none."""
        ...

    @abstractmethod
    async def cluster(self) -> list[NodeInfo]:
        """Current cluster membership, as seen by the leader."""
        ...

    @abstractmethod
    async def remove(self, node_id: int) -> None:
        """Remove a member from the cluster.

        Raises:
            StorageError: If the engine rejects the removal
        """
        ...

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Whether the storage handle is open."""
        ...


def create_storage_client(config: "ServerConfig", plan: "BootstrapPlan") -> StorageClient:
    """Factory function to create a storage client from configuration.

    Args:
        config: Server configuration
        plan: Bootstrap plan for this node (address, join list, voters)

    Returns:
        Appropriate StorageClient implementation

    Raises:
        ValueError: If backend is not supported
    """
    from pathlib import Path

    from ..config import StorageBackend
    from .sqlite import SqliteStorageClient

    if config.storage.backend == StorageBackend.SQLITE:
        logger.info("Using SQLite storage backend", extra={"database": config.storage.database})
        return SqliteStorageClient(
            path=str(Path(config.node.data_dir) / f"{config.storage.database}.db"),
            address=plan.address,
            busy_timeout_ms=config.storage.busy_timeout_ms,
            join=plan.join,
            voters=plan.voters,
        )
    else:
        raise ValueError(f"Unsupported storage backend: {config.storage.backend}")
