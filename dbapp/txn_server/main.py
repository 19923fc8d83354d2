"""
Transaction server - Main entry point.

This module starts a node of the transaction server:
- Plans how the node enters the cluster (join list, removed/rejoin markers)
- Opens the storage engine and waits for the cluster to be stable
- Creates the schema, retrying while the database is locked
- Serves the HTTP API until SIGINT/SIGTERM
- Hands leadership over and closes the storage engine on shutdown

Usage:
    python -m dbapp.txn_server.main

Configuration is entirely via environment variables.
See config.py for all available settings.

Invariants:
    - A node with a "removed" marker never starts serving
    - The schema exists before the first request is served
    - Handover on shutdown is bounded by HANDOVER_TIMEOUT_S
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from pathlib import Path

import json_log_formatter
from aiohttp import web

from .api import ApiContext, create_http_app, start_http_server
from .cluster import DnsResolver, MembershipController, create_resolver, plan_bootstrap
from .config import ServerConfig
from .errors import StorageError
from .storage import StorageClient, create_storage_client, ensure_schema

logger = logging.getLogger(__name__)


def setup_logging(config: ServerConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Server configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)


class Server:
    """Transaction server orchestrator.

    Manages the lifecycle of the node:
    - Storage engine handle
    - HTTP API

    Attributes:
        config: Server configuration
        storage: Storage client (opened in start())
        membership: Membership controller

    Example:
        >>> server = Server()
        >>> await server.start()
        >>> # Server is running
        >>> await server.stop()
    """

    def __init__(self, config: ServerConfig | None = None) -> None:
        """Initialize the server.

        Args:
            config: Optional server configuration (loaded from env if not provided)
        """
        self.config = config or ServerConfig.from_env()
        self._running = False
        self._shutdown_event = asyncio.Event()

        # Components (initialized in start())
        self.storage: StorageClient | None = None
        self.membership: MembershipController | None = None
        self._runner: web.AppRunner | None = None

    async def start(self) -> None:
        """Start the node and serve until shutdown is requested."""
        if self._running:
            logger.warning("Server already running")
            return

        node = self.config.node
        logger.info("Starting transaction server", extra={"node": node.name})
        self.config.log_config()

        try:
            Path(node.data_dir).mkdir(parents=True, exist_ok=True)

            ip = await DnsResolver().forward(node.name)
            plan = plan_bootstrap(self.config, ip)
            if plan.removed:
                logger.info("Node was removed, not starting")
                return

            self.storage = create_storage_client(self.config, plan)
            await self.storage.connect()

            # Wait for the cluster to be stable (possibly joining this node)
            await self.storage.ready()
            logger.info("Storage engine ready")

            await ensure_schema(
                self.storage,
                max_attempts=self.config.storage.schema_max_retries,
                delay_s=self.config.storage.schema_retry_delay_ms / 1000.0,
            )

            self.membership = MembershipController(
                storage=self.storage,
                resolver=create_resolver(self.config.resolver),
                replication_port=self.config.replication_port,
            )

            app = create_http_app(
                ApiContext(
                    storage=self.storage,
                    membership=self.membership,
                    expected_nodes=node.cluster,
                    request_timeout_s=self.config.request_timeout_s,
                )
            )
            self._runner = await start_http_server(app, self.config.http.host, self.config.http.port)

            self._running = True
            logger.info("Transaction server started successfully")

            # Wait for shutdown signal
            await self._shutdown_event.wait()

        except Exception as e:
            logger.error(f"Server startup failed: {e}", exc_info=True)
            await self.stop()
            raise

    async def stop(self) -> None:
        """Stop the server gracefully."""
        logger.info("Stopping transaction server")

        if self._runner:
            await self._runner.cleanup()
            self._runner = None

        if self.storage and self.storage.is_connected:
            try:
                await asyncio.wait_for(
                    self.storage.handover(), self.config.storage.handover_timeout_s
                )
            except asyncio.TimeoutError:
                logger.warning("Leadership handover timed out")
            except StorageError as e:
                logger.warning(f"Leadership handover failed: {e}")

            await self.storage.close()

        self._running = False
        logger.info("Transaction server stopped")

    def request_shutdown(self) -> None:
        """Request graceful shutdown."""
        self._shutdown_event.set()


def main() -> None:
    """Main entry point."""
    # Load configuration
    try:
        config = ServerConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config)

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    server = Server(config)

    def handle_signal(sig: int) -> None:
        logger.info(f"Received signal {sig}, initiating shutdown")
        server.request_shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, handle_signal, sig)

    try:
        loop.run_until_complete(server.start())
    except KeyboardInterrupt:
        pass
    finally:
        loop.run_until_complete(server.stop())
        loop.close()

    logger.info("exit")


if __name__ == "__main__":
    main()
