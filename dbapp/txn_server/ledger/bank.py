"""
Bank ledger operations.

Accounts live in the shared ``map`` relation, one row per account id with
the balance as value. The ledger supports:
- One-time initialization: split a total evenly across a set of accounts
- Transfers: move an amount from one account to another
- Reading every balance

Invariants:
    - Initialization writes nothing if any row already exists (first writer wins)
    - A transfer applies both updates or neither
    - The sum of all balances is conserved by transfers
    - Request bodies are validated before storage is touched

Balances may go negative: transfers do not check funds or account existence.
"""

from __future__ import annotations

import logging
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..errors import ContentionError, MalformedRequestError
from ..storage import MAX_INTEGER, MIN_INTEGER, StorageClient, Transaction, run_in_transaction
from .notation import read_map

logger = logging.getLogger(__name__)

# Integer that fits the storage columns
ColumnInt = Annotated[int, Field(ge=MIN_INTEGER, le=MAX_INTEGER)]


class InitAccountsRequest(BaseModel):
    """Body of PUT /bank: ``{:accounts [1 2 3], :total-amount 100}``."""

    model_config = ConfigDict(populate_by_name=True)

    accounts: list[ColumnInt] = Field(..., min_length=1)
    total_amount: ColumnInt = Field(..., alias="total-amount")


class TransferRequest(BaseModel):
    """Body of POST /bank: ``{:from 1, :to 2, :amount 5}``."""

    model_config = ConfigDict(populate_by_name=True)

    from_id: ColumnInt = Field(..., alias="from")
    to_id: ColumnInt = Field(..., alias="to")
    amount: ColumnInt


def _parse(model: type[BaseModel], body: str) -> BaseModel:
    mapping = read_map(body)
    try:
        return model.model_validate(mapping)
    except ValidationError as e:
        errors = [
            f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in e.errors()
        ]
        raise MalformedRequestError(f"invalid request: {'; '.join(errors)}", errors=errors)


def parse_init_request(body: str) -> InitAccountsRequest:
    """Parse a PUT /bank body.

    Raises:
        MalformedRequestError: If the body is not a valid init request
    """
    return _parse(InitAccountsRequest, body)


def parse_transfer_request(body: str) -> TransferRequest:
    """Parse a POST /bank body.

    Raises:
        MalformedRequestError: If the body is not a valid transfer request
    """
    return _parse(TransferRequest, body)


async def initialize_accounts(
    storage: StorageClient,
    accounts: list[int],
    total_amount: int,
) -> None:
    """Create the accounts with an even share of total_amount each.

    Does nothing if the relation already holds rows. Contention is logged
    and swallowed: another node is bootstrapping concurrently, so this
    attempt is treated as having had no guaranteed effect.

    Raises:
        StorageError: For any non-contention storage failure
    """
    balance = total_amount // len(accounts)

    async def init(tx: Transaction) -> bool:
        rows = await tx.query("SELECT count(*) FROM map")
        if rows[0][0] > 0:
            return False
        for account_id in accounts:
            await tx.execute("INSERT INTO map(key, value) VALUES(?, ?)", (account_id, balance))
        return True

    try:
        created = await run_in_transaction(storage, init)
    except ContentionError as e:
        # TODO: retry instead of reporting success; lost bootstraps are only
        # repaired by the client calling PUT /bank again.
        logger.warning(
            "Account initialization hit contention, skipping",
            extra={"accounts": len(accounts), "error": str(e)},
        )
        return

    if created:
        logger.info(
            "Accounts initialized",
            extra={"accounts": len(accounts), "balance": balance},
        )


async def transfer(storage: StorageClient, from_id: int, to_id: int, amount: int) -> None:
    """Move amount from one account to another.

    Raises:
        StorageError: If either update fails (neither is applied)
        ContentionError: If the engine reports a conflict (neither is applied)
    """

    async def move(tx: Transaction) -> None:
        await tx.execute("UPDATE map SET value = value - ? WHERE key = ?", (amount, from_id))
        await tx.execute("UPDATE map SET value = value + ? WHERE key = ?", (amount, to_id))

    await run_in_transaction(storage, move)


async def read_balances(storage: StorageClient) -> dict[int, int]:
    """Return every account balance, ordered by account id.

    Set elements share the relation with a NULL key and are not accounts.
    """
    rows = await storage.query("SELECT key, value FROM map WHERE key IS NOT NULL ORDER BY key")
    return {account_id: balance for account_id, balance in rows}


def render_balances(balances: dict[int, int]) -> str:
    return "{" + ", ".join(f"{k} {v}" for k, v in balances.items()) + "}"
