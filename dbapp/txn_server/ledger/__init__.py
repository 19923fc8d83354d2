"""
Ledger and set workloads on the shared key/value relation.

This module handles:
- Bank accounts: one-time initialization, transfers, balance reads
- Grow-only set: element inserts and reads
- The keyword-map notation used by bank request bodies
"""

from .bank import (
    InitAccountsRequest,
    TransferRequest,
    initialize_accounts,
    parse_init_request,
    parse_transfer_request,
    read_balances,
    render_balances,
    transfer,
)
from .notation import read_map
from .sets import add_element, read_elements, render_elements

__all__ = [
    "InitAccountsRequest",
    "TransferRequest",
    "add_element",
    "initialize_accounts",
    "parse_init_request",
    "parse_transfer_request",
    "read_balances",
    "read_elements",
    "read_map",
    "render_balances",
    "render_elements",
    "transfer",
]
