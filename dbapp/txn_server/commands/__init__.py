"""
Command batch interpreter.

This module handles the bracketed read/append mini-language:
- parse_batch(): document -> ordered operations (no storage access)
- execute_batch(): operations -> rendered result, in one transaction

Invariants:
    - Parsing never touches storage
    - Execution is all-or-nothing
"""

from .executor import execute_batch, parse_integer, run_batch
from .parser import AppendOp, Operation, ReadOp, parse_batch

__all__ = [
    "AppendOp",
    "Operation",
    "ReadOp",
    "execute_batch",
    "parse_batch",
    "parse_integer",
    "run_batch",
]
