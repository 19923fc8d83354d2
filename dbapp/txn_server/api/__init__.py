"""
API module for the transaction server.

This module provides the external HTTP interface. Handlers are thin: they
read the body, call into the commands, ledger or cluster modules, and
return the rendered text.
"""

from .http_server import ApiContext, create_http_app, start_http_server

__all__ = [
    "ApiContext",
    "create_http_app",
    "start_http_server",
]
