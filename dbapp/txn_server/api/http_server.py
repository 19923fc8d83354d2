"""
HTTP server implementation for the transaction server.

Routes plain-text requests to the command interpreter, the ledger and set
workloads, and the membership controller.

Endpoints:
    POST   /append   command batch          -> rendered batch result
    GET    /bank     -                      -> {id balance, ...}
    PUT    /bank     {:accounts [..] ...}   -> nil
    POST   /bank     {:from a :to b ...}    -> nil
    GET    /set      -                      -> [v1 v2 ...]
    POST   /set      value                  -> value
    GET    /leader   -                      -> "host" or ""
    GET    /members  -                      -> ["host" ...]
    DELETE /members  host                   -> nil
    GET    /ready    -                      -> nil

Invariants:
    - Every response is text/plain with status 200
    - Failures render as "Error: <message>"; callers must inspect the body
    - Each request (body read included) is bounded by the request timeout

How to change safely:
    - Register new routes before the catch-all
    - Keep rendering in the domain modules, not in handlers
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from aiohttp import web

from ..cluster import MembershipController, render_leader, render_members
from ..commands import run_batch
from ..errors import BadRequestError, RequestTimeoutError, TxnServerError
from ..ledger import (
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
from ..storage import StorageClient

logger = logging.getLogger(__name__)

NIL = "nil"


@dataclass
class ApiContext:
    """Collaborators shared by all request handlers.

    Attributes:
        storage: Storage client
        membership: Membership controller
        expected_nodes: Host names of every node the cluster should contain
        request_timeout_s: Per-request deadline
    """

    storage: StorageClient
    membership: MembershipController
    expected_nodes: tuple[str, ...]
    request_timeout_s: float


CONTEXT = web.AppKey("context", ApiContext)

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


def create_http_app(context: ApiContext) -> web.Application:
    """Create the HTTP application.

    Args:
        context: Collaborators for the handlers

    Returns:
        aiohttp Application instance
    """

    @web.middleware
    async def error_middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
        try:
            return await handler(request)
        except web.HTTPException:
            raise
        except TxnServerError as e:
            logger.debug(
                "Request failed",
                extra={"path": request.path, "method": request.method, "code": e.code},
            )
            return web.Response(text=f"Error: {e}")
        except Exception as e:
            logger.error(f"HTTP handler error: {e}", exc_info=True)
            return web.Response(text=f"Error: {e}")

    @web.middleware
    async def deadline_middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
        timeout = request.app[CONTEXT].request_timeout_s
        try:
            return await asyncio.wait_for(handler(request), timeout)
        except asyncio.TimeoutError:
            raise RequestTimeoutError(timeout)

    app = web.Application(middlewares=[error_middleware, deadline_middleware])
    app[CONTEXT] = context

    app.router.add_post("/append", handle_append)
    app.router.add_get("/bank", handle_bank_get)
    app.router.add_put("/bank", handle_bank_put)
    app.router.add_post("/bank", handle_bank_post)
    app.router.add_get("/set", handle_set_get)
    app.router.add_post("/set", handle_set_post)
    app.router.add_get("/leader", handle_leader)
    app.router.add_get("/members", handle_members_get)
    app.router.add_delete("/members", handle_members_delete)
    app.router.add_get("/ready", handle_ready)
    # Anything else, including a known path with the wrong method
    app.router.add_route("*", "/{tail:.*}", handle_bad_request)

    return app


async def handle_append(request: web.Request) -> web.Response:
    """Handle POST /append - Execute a command batch atomically."""
    context = request.app[CONTEXT]
    result = await run_batch(context.storage, await request.text())
    return web.Response(text=result)


async def handle_bank_get(request: web.Request) -> web.Response:
    """Handle GET /bank - Read every balance."""
    balances = await read_balances(request.app[CONTEXT].storage)
    return web.Response(text=render_balances(balances))


async def handle_bank_put(request: web.Request) -> web.Response:
    """Handle PUT /bank - Initialize accounts once."""
    body = parse_init_request(await request.text())
    await initialize_accounts(request.app[CONTEXT].storage, body.accounts, body.total_amount)
    return web.Response(text=NIL)


async def handle_bank_post(request: web.Request) -> web.Response:
    """Handle POST /bank - Transfer between accounts."""
    body = parse_transfer_request(await request.text())
    await transfer(request.app[CONTEXT].storage, body.from_id, body.to_id, body.amount)
    return web.Response(text=NIL)


async def handle_set_get(request: web.Request) -> web.Response:
    """Handle GET /set - Read every set element."""
    elements = await read_elements(request.app[CONTEXT].storage)
    return web.Response(text=render_elements(elements))


async def handle_set_post(request: web.Request) -> web.Response:
    """Handle POST /set - Add an element."""
    value = await add_element(request.app[CONTEXT].storage, await request.text())
    return web.Response(text=value)


async def handle_leader(request: web.Request) -> web.Response:
    """Handle GET /leader - Host name of the current leader."""
    leader = await request.app[CONTEXT].membership.get_leader()
    return web.Response(text=render_leader(leader))


async def handle_members_get(request: web.Request) -> web.Response:
    """Handle GET /members - Host names of every member."""
    members = await request.app[CONTEXT].membership.get_members()
    return web.Response(text=render_members(members))


async def handle_members_delete(request: web.Request) -> web.Response:
    """Handle DELETE /members - Remove the member named in the body."""
    name = (await request.text()).strip()
    await request.app[CONTEXT].membership.remove_member(name)
    return web.Response(text=NIL)


async def handle_ready(request: web.Request) -> web.Response:
    """Handle GET /ready - Succeed once the cluster is complete."""
    context = request.app[CONTEXT]
    await context.membership.is_ready(context.expected_nodes)
    return web.Response(text=NIL)


async def handle_bad_request(request: web.Request) -> web.Response:
    raise BadRequestError()


async def start_http_server(app: web.Application, host: str, port: int) -> web.AppRunner:
    """Start serving app and return the runner (call runner.cleanup() to stop).

    Args:
        app: Application from create_http_app()
        host: Host to bind to
        port: Port to listen on
    """
    runner = web.AppRunner(app)
    await runner.setup()

    site = web.TCPSite(runner, host, port)
    await site.start()

    logger.info(f"HTTP server running on http://{host}:{port}")
    return runner
