"""
Unit tests for the SQLite storage client and transaction helpers.

Tests cover:
- Connection lifecycle
- Commit and rollback
- Contention translation
- Schema creation with retries
- Reported cluster membership
"""

import asyncio
import sqlite3
import tempfile
from pathlib import Path

import pytest

from dbapp.txn_server.errors import ContentionError, StorageError
from dbapp.txn_server.storage import (
    NodeInfo,
    NodeRole,
    SqliteStorageClient,
    StorageClient,
    ensure_schema,
    retry_on_contention,
    run_in_transaction,
)


class TestSqliteStorageClient:
    """Tests for SqliteStorageClient."""

    @pytest.fixture
    def data_dir(self):
        """Create temporary data directory."""
        with tempfile.TemporaryDirectory() as tmpdir:
            yield tmpdir

    @pytest.fixture
    def db_path(self, data_dir):
        return str(Path(data_dir) / "nested" / "app.db")

    @pytest.fixture
    def storage(self, db_path):
        return SqliteStorageClient(db_path, address="10.0.0.1:8081", busy_timeout_ms=50)

    def test_implements_protocol(self, storage):
        """SqliteStorageClient satisfies the StorageClient protocol."""
        assert isinstance(storage, StorageClient)

    @pytest.mark.asyncio
    async def test_connect_close(self, storage, db_path):
        """Connection lifecycle."""
        assert not storage.is_connected

        await storage.connect()
        assert storage.is_connected
        assert Path(db_path).exists()

        await storage.close()
        assert not storage.is_connected

    @pytest.mark.asyncio
    async def test_requires_connection(self, storage):
        """Transactions fail before connect()."""
        with pytest.raises(StorageError):
            await storage.execute("SELECT 1")

        with pytest.raises(StorageError):
            await storage.ready()

    @pytest.mark.asyncio
    async def test_commit(self, storage):
        """Statements in a committed transaction are visible."""
        await storage.connect()
        await ensure_schema(storage)

        async with storage.transaction() as tx:
            await tx.execute("INSERT INTO map(key, value) VALUES(?, ?)", (1, 2))
            await tx.execute("INSERT INTO map(key, value) VALUES(?, ?)", (1, 3))

        assert await storage.query("SELECT value FROM map ORDER BY rowid") == [(2,), (3,)]
        await storage.close()

    @pytest.mark.asyncio
    async def test_rollback_on_error(self, storage):
        """An exception inside the block discards every statement."""
        await storage.connect()
        await ensure_schema(storage)

        with pytest.raises(RuntimeError):
            async with storage.transaction() as tx:
                await tx.execute("INSERT INTO map(key, value) VALUES(?, ?)", (1, 2))
                raise RuntimeError("boom")

        assert await storage.query("SELECT count(*) FROM map") == [(0,)]
        await storage.close()

    @pytest.mark.asyncio
    async def test_rollback_on_cancel(self, storage):
        """A cancelled transaction is rolled back."""
        await storage.connect()
        await ensure_schema(storage)

        async def slow(tx):
            await tx.execute("INSERT INTO map(key, value) VALUES(?, ?)", (1, 2))
            await asyncio.sleep(10)

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(run_in_transaction(storage, slow), 0.05)

        assert await storage.query("SELECT count(*) FROM map") == [(0,)]
        await storage.close()

    @pytest.mark.asyncio
    async def test_sql_error_is_storage_error(self, storage):
        """Engine errors are translated."""
        await storage.connect()

        with pytest.raises(StorageError) as exc_info:
            await storage.execute("SELECT * FROM missing_table")

        assert not isinstance(exc_info.value, ContentionError)
        await storage.close()

    @pytest.mark.asyncio
    async def test_strict_integer_columns(self, storage):
        """Non-numeric values are rejected, numeric text is stored as integer."""
        await storage.connect()
        await ensure_schema(storage)

        await storage.execute("INSERT INTO map(key, value) VALUES(?, ?)", ("7", "8"))
        assert await storage.query("SELECT key, value FROM map") == [(7, 8)]

        with pytest.raises(StorageError):
            await storage.execute("INSERT INTO map(key, value) VALUES(?, ?)", ("7", "x"))
        await storage.close()

    @pytest.mark.asyncio
    async def test_lock_conflict_is_contention(self, storage, db_path):
        """A second writer sees ContentionError while the lock is held."""
        await storage.connect()
        await ensure_schema(storage)
        other = SqliteStorageClient(db_path, busy_timeout_ms=50)
        await other.connect()

        async with storage.transaction() as tx:
            await tx.execute("INSERT INTO map(key, value) VALUES(?, ?)", (1, 1))
            with pytest.raises(ContentionError):
                await other.execute("INSERT INTO map(key, value) VALUES(?, ?)", (2, 2))

        assert await other.query("SELECT key FROM map") == [(1,)]
        await other.close()
        await storage.close()

    @pytest.mark.asyncio
    async def test_default_membership(self, storage):
        """A fresh client is the only member, a voter and the leader."""
        me = NodeInfo(1, "10.0.0.1:8081", NodeRole.VOTER)

        assert await storage.cluster() == [me]
        assert await storage.leader() == me

    @pytest.mark.asyncio
    async def test_remove_member(self, storage):
        """Removing members updates cluster and leader."""
        storage.set_members(
            [
                NodeInfo(1, "10.0.0.1:8081"),
                NodeInfo(2, "10.0.0.2:8081"),
            ]
        )

        await storage.remove(1)

        assert [m.id for m in await storage.cluster()] == [2]
        assert (await storage.leader()).id == 2

        with pytest.raises(StorageError):
            await storage.remove(1)

    @pytest.mark.asyncio
    async def test_handover(self, storage):
        """Handover moves leadership to another voter."""
        storage.set_members(
            [
                NodeInfo(1, "10.0.0.1:8081"),
                NodeInfo(2, "10.0.0.2:8081", NodeRole.SPARE),
                NodeInfo(3, "10.0.0.3:8081"),
            ],
            leader_id=1,
        )

        await storage.handover()

        assert (await storage.leader()).id == 3

    @pytest.mark.asyncio
    async def test_oversized_integer_is_storage_error(self, storage):
        """Parameters that do not fit 64 bits are translated."""
        await storage.connect()
        await ensure_schema(storage)

        with pytest.raises(StorageError):
            await storage.execute("INSERT INTO map(key, value) VALUES(?, ?)", (2**64, 1))

        with pytest.raises(StorageError):
            await storage.query("SELECT value FROM map WHERE key = ?", (2**64,))

        assert await storage.query("SELECT count(*) FROM map") == [(0,)]
        await storage.close()

    @pytest.mark.asyncio
    async def test_failed_rollback_keeps_original_error(self, storage):
        """A rollback failure is logged and the block's own error propagates."""
        await storage.connect()
        await ensure_schema(storage)
        real = storage._conn
        storage._conn = RollbackFailingConnection(real)

        with pytest.raises(RuntimeError, match="boom"):
            async with storage.transaction() as tx:
                await tx.execute("INSERT INTO map(key, value) VALUES(?, ?)", (1, 2))
                raise RuntimeError("boom")

        real.execute("ROLLBACK")
        storage._conn = real
        assert await storage.query("SELECT count(*) FROM map") == [(0,)]
        await storage.close()

    def test_node_host(self):
        """Host part of a replication address."""
        assert NodeInfo(1, "10.0.0.1:8081").host == "10.0.0.1"
        assert str(NodeRole.STANDBY) == "stand-by"


class RollbackFailingConnection:
    """Connection wrapper whose ROLLBACK always fails."""

    def __init__(self, conn):
        self._conn = conn

    @property
    def in_transaction(self):
        return self._conn.in_transaction

    def execute(self, sql, params=()):
        if sql == "ROLLBACK":
            raise sqlite3.OperationalError("disk I/O error")
        return self._conn.execute(sql, params)

    def close(self):
        self._conn.close()


class FlakyStorage:
    """Fails with ContentionError a fixed number of times."""

    def __init__(self, failures):
        self.failures = failures
        self.calls = 0

    async def execute(self, sql, params=()):
        self.calls += 1
        if self.calls <= self.failures:
            raise ContentionError()
        return 0


class TestRetryOnContention:
    """Tests for retry_on_contention and ensure_schema."""

    @pytest.mark.asyncio
    async def test_retries_until_success(self):
        """Contention is retried."""
        flaky = FlakyStorage(failures=2)

        await retry_on_contention(
            lambda: flaky.execute("x"), max_attempts=5, delay_s=0, description="test"
        )

        assert flaky.calls == 3

    @pytest.mark.asyncio
    async def test_gives_up(self):
        """After max_attempts the failure is fatal."""
        flaky = FlakyStorage(failures=100)

        with pytest.raises(StorageError) as exc_info:
            await ensure_schema(flaky, max_attempts=3, delay_s=0)

        assert not isinstance(exc_info.value, ContentionError)
        assert "still locked after 3 retries" in str(exc_info.value)
        assert flaky.calls == 3

    @pytest.mark.asyncio
    async def test_other_errors_are_not_retried(self):
        """Non-contention failures propagate immediately."""
        calls = []

        async def broken():
            calls.append(1)
            raise StorageError("disk I/O error")

        with pytest.raises(StorageError, match="disk I/O error"):
            await retry_on_contention(broken, max_attempts=5, delay_s=0, description="test")

        assert len(calls) == 1
