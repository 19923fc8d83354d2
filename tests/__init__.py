"""
Transaction server test suite.

This package contains:
- unit/: Unit tests (SQLite storage in a temporary directory)
- integration/: HTTP API tests against an in-process aiohttp server
"""
