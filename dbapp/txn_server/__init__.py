"""
Transaction server - HTTP front end for a replicated SQL store.

Clients send small textual commands over HTTP; the server runs them as
transactions against the replicated database and exposes the cluster's
lifecycle (leader, members, member removal, readiness).

Architecture:
    ┌─────────────┐     ┌──────────────┐     ┌─────────────────────┐
    │   Client    │────▶│ HTTP API     │────▶│ commands / ledger   │
    │ (text body) │     │ (aiohttp)    │     │ cluster membership  │
    └─────────────┘     └──────────────┘     └──────────┬──────────┘
                                                        │
                                                        ▼
                                             ┌─────────────────────┐
                                             │   StorageClient     │
                                             │ (replicated SQL)    │
                                             └─────────────────────┘

Invariants:
    - Every request runs in at most one transaction
    - Failures are reported in the response body, never by status code
    - Membership truth lives in the storage engine

Version: see _version.py.
"""

from ._version import __version__

__all__ = ["__version__"]
