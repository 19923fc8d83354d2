"""
Unit tests for the bank ledger and set workloads.

Tests cover:
- Request body parsing and validation
- One-time account initialization
- Transfers and balance conservation
- Contention handling
- Set inserts and reads
"""

import tempfile
from pathlib import Path

import pytest

from dbapp.txn_server.errors import ContentionError, MalformedRequestError, StorageError
from dbapp.txn_server.ledger import (
    add_element,
    initialize_accounts,
    parse_init_request,
    parse_transfer_request,
    read_balances,
    read_elements,
    render_balances,
    render_elements,
    transfer,
)
from dbapp.txn_server.storage import SqliteStorageClient, ensure_schema


class TestRequestParsing:
    """Tests for bank request bodies."""

    def test_parse_init_request(self):
        """PUT body yields accounts and total."""
        request = parse_init_request("{:accounts [1 2], :total-amount 100}")

        assert request.accounts == [1, 2]
        assert request.total_amount == 100

    def test_parse_transfer_request(self):
        """POST body yields from, to and amount."""
        request = parse_transfer_request("{:from 1, :to 2, :amount 20}")

        assert (request.from_id, request.to_id, request.amount) == (1, 2, 20)

    def test_unknown_keys_are_ignored(self):
        """Extra keys do not invalidate a request."""
        request = parse_transfer_request("{:from 1, :to 2, :amount 20, :note :x}")

        assert request.amount == 20

    def test_missing_field(self):
        """A missing field is a malformed request."""
        with pytest.raises(MalformedRequestError) as exc_info:
            parse_transfer_request("{:from 1, :amount 20}")

        assert any("to" in error for error in exc_info.value.errors)

    def test_empty_accounts(self):
        """Initialization needs at least one account."""
        with pytest.raises(MalformedRequestError):
            parse_init_request("{:accounts [], :total-amount 100}")

    def test_wrong_type(self):
        """Non-integer amounts are rejected."""
        with pytest.raises(MalformedRequestError):
            parse_transfer_request("{:from 1, :to 2, :amount nil}")

    def test_amount_out_of_range(self):
        """Integers that do not fit the storage columns are rejected."""
        with pytest.raises(MalformedRequestError):
            parse_transfer_request("{:from 1, :to 2, :amount 99999999999999999999}")

        with pytest.raises(MalformedRequestError):
            parse_init_request("{:accounts [1 99999999999999999999], :total-amount 100}")

    def test_syntax_error(self):
        """Unparseable bodies are rejected."""
        with pytest.raises(MalformedRequestError):
            parse_init_request(":accounts [1 2], :total-amount 100")


class TestBank:
    """Tests for bank ledger operations."""

    @pytest.fixture
    def data_dir(self):
        """Create temporary data directory."""
        with tempfile.TemporaryDirectory() as tmpdir:
            yield tmpdir

    @pytest.fixture
    def db_path(self, data_dir):
        return str(Path(data_dir) / "app.db")

    @pytest.fixture
    def storage(self, db_path):
        """Create storage client (connected inside each test)."""
        return SqliteStorageClient(db_path, busy_timeout_ms=50)

    async def _open(self, storage):
        await storage.connect()
        await ensure_schema(storage)

    @pytest.mark.asyncio
    async def test_initialize_splits_total(self, storage):
        """Each account gets an even share."""
        await self._open(storage)

        await initialize_accounts(storage, [1, 2], 100)

        assert await read_balances(storage) == {1: 50, 2: 50}
        await storage.close()

    @pytest.mark.asyncio
    async def test_initialize_floors_balance(self, storage):
        """Shares use floor division."""
        await self._open(storage)

        await initialize_accounts(storage, [1, 2, 3], 100)

        assert await read_balances(storage) == {1: 33, 2: 33, 3: 33}
        await storage.close()

    @pytest.mark.asyncio
    async def test_initialize_is_idempotent(self, storage):
        """A second initialization changes nothing."""
        await self._open(storage)

        await initialize_accounts(storage, [1, 2], 100)
        await transfer(storage, 1, 2, 10)
        await initialize_accounts(storage, [1, 2], 100)
        await initialize_accounts(storage, [5, 6, 7], 999)

        assert await read_balances(storage) == {1: 40, 2: 60}
        await storage.close()

    @pytest.mark.asyncio
    async def test_transfer(self, storage):
        """Transfer debits one account and credits the other."""
        await self._open(storage)
        await initialize_accounts(storage, [1, 2], 100)

        await transfer(storage, 1, 2, 20)

        balances = await read_balances(storage)
        assert balances == {1: 30, 2: 70}
        assert render_balances(balances) == "{1 30, 2 70}"
        await storage.close()

    @pytest.mark.asyncio
    async def test_transfer_allows_negative_balance(self, storage):
        """No funds check is performed."""
        await self._open(storage)
        await initialize_accounts(storage, [1, 2], 10)

        await transfer(storage, 1, 2, 8)

        assert await read_balances(storage) == {1: -3, 2: 13}
        await storage.close()

    @pytest.mark.asyncio
    async def test_transfers_conserve_total(self, storage):
        """Sum of balances is unchanged by any sequence of transfers."""
        await self._open(storage)
        await initialize_accounts(storage, [0, 1, 2, 3, 4], 100)

        moves = [(0, 1, 7), (3, 2, 15), (4, 0, 1), (1, 3, 30), (2, 2, 5), (0, 4, 60)]
        for from_id, to_id, amount in moves:
            await transfer(storage, from_id, to_id, amount)
            assert sum((await read_balances(storage)).values()) == 100
        await storage.close()

    @pytest.mark.asyncio
    async def test_read_balances_empty(self, storage):
        """No accounts render as an empty map."""
        await self._open(storage)

        assert render_balances(await read_balances(storage)) == "{}"
        await storage.close()

    @pytest.mark.asyncio
    async def test_oversized_transfer_is_storage_error(self, storage):
        """An amount beyond 64 bits fails inside the error taxonomy."""
        await self._open(storage)
        await initialize_accounts(storage, [1, 2], 100)

        with pytest.raises(StorageError):
            await transfer(storage, 1, 2, 99999999999999999999)

        assert await read_balances(storage) == {1: 50, 2: 50}
        await storage.close()

    @pytest.mark.asyncio
    async def test_balances_exclude_set_elements(self, storage):
        """Set rows share the relation but are not accounts."""
        await self._open(storage)
        await add_element(storage, "5")
        await storage.execute("INSERT INTO map(key, value) VALUES(?, ?)", (1, 50))

        balances = await read_balances(storage)

        assert balances == {1: 50}
        assert render_balances(balances) == "{1 50}"
        await storage.close()

    @pytest.mark.asyncio
    async def test_initialize_swallows_contention(self, storage, db_path):
        """Contention during initialization is not an error."""
        await self._open(storage)
        other = SqliteStorageClient(db_path, busy_timeout_ms=50)
        await other.connect()

        async with storage.transaction() as tx:
            await tx.execute("INSERT INTO map(key, value) VALUES(?, ?)", (100, 1))
            # Write lock held by storage: other cannot start its transaction
            await initialize_accounts(other, [1, 2], 100)

        assert await read_balances(other) == {100: 1}
        await other.close()
        await storage.close()

    @pytest.mark.asyncio
    async def test_transfer_surfaces_contention(self, storage, db_path):
        """Contention during a transfer propagates to the caller."""
        await self._open(storage)
        await initialize_accounts(storage, [1, 2], 100)
        other = SqliteStorageClient(db_path, busy_timeout_ms=50)
        await other.connect()

        async with storage.transaction():
            with pytest.raises(ContentionError):
                await transfer(other, 1, 2, 10)

        assert await read_balances(other) == {1: 50, 2: 50}
        await other.close()
        await storage.close()


class TestSet:
    """Tests for set operations."""

    @pytest.fixture
    def storage(self):
        return SqliteStorageClient(":memory:")

    @pytest.mark.asyncio
    async def test_add_and_read(self, storage):
        """Elements are echoed and read back in insertion order."""
        await storage.connect()
        await ensure_schema(storage)

        assert await add_element(storage, "3") == "3"
        assert await add_element(storage, " 1\n") == "1"

        elements = await read_elements(storage)
        assert elements == [3, 1]
        assert render_elements(elements) == "[3 1]"
        await storage.close()

    @pytest.mark.asyncio
    async def test_read_empty(self, storage):
        """An empty set renders as an empty list."""
        await storage.connect()
        await ensure_schema(storage)

        assert render_elements(await read_elements(storage)) == "[]"
        await storage.close()

    @pytest.mark.asyncio
    async def test_non_integer_element(self, storage):
        """Elements must be integers."""
        await storage.connect()
        await ensure_schema(storage)

        with pytest.raises(StorageError):
            await add_element(storage, "banana")
        await storage.close()
