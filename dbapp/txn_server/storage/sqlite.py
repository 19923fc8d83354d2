"""
SQLite storage client for the transaction server.

This backend runs the replicated-database client API on top of a local
SQLite file. It is the engine used for single-node deployments, local
development and tests. Multi-node clusters plug a replicated engine in
behind the same StorageClient protocol.

Membership is tracked in memory: a fresh client reports itself as the only
member, a voter and the leader. Tests and tooling can reshape the reported
cluster with the helpers at the bottom of the class.

Invariants:
    - One connection per client, opened once by connect()
    - Transactions are serialized on that connection
    - "database is locked" / "busy" errors become ContentionError
    - A transaction left through an exception or cancellation is rolled back

How to change safely:
    - Keep error translation in _translate()
    - Test contention paths with a second connection holding a write lock
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from pathlib import Path

from ..errors import ContentionError, StorageError
from .base import NodeInfo, NodeRole, Params, Row

logger = logging.getLogger(__name__)

_BUSY_MARKERS = ("locked", "busy")


def _translate(exc: sqlite3.Error | OverflowError) -> StorageError:
    """Map a sqlite3 (or parameter binding) error onto the storage error taxonomy."""
    message = str(exc)
    if isinstance(exc, sqlite3.OperationalError) and any(
        marker in message.lower() for marker in _BUSY_MARKERS
    ):
        return ContentionError(message)
    return StorageError(message)


def _rollback(conn: sqlite3.Connection) -> None:
    """Roll back the open transaction, if any, without masking the caller's error."""
    # Some errors (e.g. SQLITE_BUSY mid-transaction) already rolled back
    if not conn.in_transaction:
        return
    try:
        conn.execute("ROLLBACK")
    except sqlite3.Error as e:
        logger.warning(f"Rollback failed: {e}")


class SqliteTransaction:
    """Transaction bound to an open SQLite connection."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    async def execute(self, sql: str, params: Params = ()) -> int:
        try:
            cursor = self._conn.execute(sql, tuple(params))
        except (sqlite3.Error, OverflowError) as e:
            raise _translate(e) from e
        return cursor.rowcount

    async def query(self, sql: str, params: Params = ()) -> list[Row]:
        try:
            cursor = self._conn.execute(sql, tuple(params))
            return [tuple(row) for row in cursor.fetchall()]
        except (sqlite3.Error, OverflowError) as e:
            raise _translate(e) from e


class SqliteStorageClient:
    """StorageClient backed by a local SQLite database.

    Attributes:
        path: Database file path (or ":memory:")
        address: Replication address this node advertises
        busy_timeout_ms: SQLite busy timeout before reporting contention
        join: Replication addresses this node was asked to join through
        voters: Target number of voters in the cluster

    Example:
        >>> storage = SqliteStorageClient(":memory:", address="10.0.0.1:8081")
        >>> await storage.connect()
        >>> await storage.execute("CREATE TABLE t (x INTEGER)")
    """

    def __init__(
        self,
        path: str,
        address: str = "127.0.0.1:8081",
        busy_timeout_ms: int = 250,
        join: Sequence[str] = (),
        voters: int = 1,
        members: Sequence[NodeInfo] | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            path: Database file path (or ":memory:")
            address: Replication address of this node
            busy_timeout_ms: SQLite busy timeout
            join: Addresses of nodes to join through
            voters: Target voter count
            members: Initial membership (defaults to this node alone)
        """
        self.path = path
        self.address = address
        self.busy_timeout_ms = busy_timeout_ms
        self.join = tuple(join)
        self.voters = voters
        self._conn: sqlite3.Connection | None = None
        self._lock = asyncio.Lock()
        self._members: list[NodeInfo] = list(members or [NodeInfo(1, address, NodeRole.VOTER)])
        self._leader_id: int | None = self._first_voter()

    @property
    def is_connected(self) -> bool:
        return self._conn is not None

    async def connect(self) -> None:
        """Open the database connection."""
        if self._conn is not None:
            return

        if self.path != ":memory:":
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)

        try:
            conn = sqlite3.connect(
                self.path,
                timeout=self.busy_timeout_ms / 1000.0,
                isolation_level=None,  # Autocommit by default, explicit transactions
                check_same_thread=False,
            )
            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            if self.path != ":memory:":
                conn.execute("PRAGMA journal_mode = WAL")
        except sqlite3.Error as e:
            raise _translate(e) from e

        self._conn = conn
        logger.info(
            "Storage opened",
            extra={"path": self.path, "address": self.address, "join": ",".join(self.join)},
        )

    async def ready(self) -> None:
        """Return once the node is a cluster member.

        A local database is a complete cluster as soon as it is open.
        """
        if self._conn is None:
            raise StorageError("storage is not open")
        logger.info(
            "Storage ready",
            extra={"members": len(self._members), "voters": self.voters},
        )

    async def handover(self) -> None:
        """Hand leadership to another voter, if there is one."""
        if self._leader_id is None or self._member(self._leader_id).address != self.address:
            return

        for member in self._members:
            if member.address != self.address and member.role == NodeRole.VOTER:
                self._leader_id = member.id
                logger.info("Leadership handed over", extra={"to": member.address})
                return

        logger.debug("No voter to hand leadership over to")

    async def close(self) -> None:
        """Close the database connection."""
        if self._conn is None:
            return
        async with self._lock:
            self._conn.close()
            self._conn = None
        logger.info("Storage closed", extra={"path": self.path})

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[SqliteTransaction]:
        """Open a write transaction.

        Yields:
            SqliteTransaction bound to the shared connection

        Raises:
            StorageError: If the storage is not open
            ContentionError: If the write lock cannot be taken
        """
        async with self._lock:
            conn = self._conn
            if conn is None:
                raise StorageError("storage is not open")

            try:
                conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as e:
                raise _translate(e) from e

            try:
                yield SqliteTransaction(conn)
            except (Exception, asyncio.CancelledError):
                _rollback(conn)
                raise

            try:
                conn.execute("COMMIT")
            except sqlite3.Error as e:
                _rollback(conn)
                raise _translate(e) from e

    async def execute(self, sql: str, params: Params = ()) -> int:
        async with self.transaction() as tx:
            return await tx.execute(sql, params)

    async def query(self, sql: str, params: Params = ()) -> list[Row]:
        async with self.transaction() as tx:
            return await tx.query(sql, params)

    async def leader(self) -> NodeInfo | None:
        if self._leader_id is None:
            return None
        return self._member(self._leader_id)

    async def cluster(self) -> list[NodeInfo]:
        return list(self._members)

    async def remove(self, node_id: int) -> None:
        """Remove a member from the tracked membership.

        Raises:
            StorageError: If no member has the given id
        """
        before = len(self._members)
        self._members = [m for m in self._members if m.id != node_id]
        if len(self._members) == before:
            raise StorageError(f"no node with id {node_id}")

        if self._leader_id == node_id:
            self._leader_id = self._first_voter()

        logger.info("Node removed", extra={"node_id": node_id})

    def _member(self, node_id: int) -> NodeInfo:
        for member in self._members:
            if member.id == node_id:
                return member
        raise StorageError(f"no node with id {node_id}")

    def _first_voter(self) -> int | None:
        for member in self._members:
            if member.role == NodeRole.VOTER:
                return member.id
        return None

    # =========================================================================
    # Testing helpers
    # =========================================================================

    def set_members(self, members: Sequence[NodeInfo], leader_id: int | None = None) -> None:
        """Replace the reported membership."""
        self._members = list(members)
        self._leader_id = leader_id if leader_id is not None else self._first_voter()

    def set_leader(self, node_id: int | None) -> None:
        """Change the reported leader (None for no leader)."""
        if node_id is not None:
            self._member(node_id)
        self._leader_id = node_id

    def set_role(self, node_id: int, role: NodeRole) -> None:
        """Change the role of one member."""
        member = self._member(node_id)
        self._members = [
            NodeInfo(m.id, m.address, role) if m.id == member.id else m for m in self._members
        ]
