"""
Configuration management for the transaction server.

All configuration is done via environment variables.
This module provides typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for a single local node
    - The replication port is always the HTTP port plus one
    - Request timeouts scale with the configured network latency

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Keep derived values (timeouts, ports) as properties, not settings
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)


class StorageBackend(Enum):
    """Supported storage engine backends."""

    SQLITE = "sqlite"


class ResolverBackend(Enum):
    """Supported node identity resolvers."""

    DNS = "dns"
    STATIC = "static"


def _split_list(value: str) -> tuple[str, ...]:
    return tuple(item.strip() for item in value.split(",") if item.strip())


def parse_host_table(value: str) -> dict[str, str]:
    """Parse an ``ip=hostname,ip=hostname`` table.

    Raises:
        ValueError: If an entry is not of the form ip=hostname
    """
    table: dict[str, str] = {}
    for entry in _split_list(value):
        ip, sep, hostname = entry.partition("=")
        if not sep or not ip.strip() or not hostname.strip():
            raise ValueError(f"Invalid RESOLVER_HOSTS entry '{entry}'. Expected ip=hostname")
        table[ip.strip()] = hostname.strip()
    return table


@dataclass(frozen=True)
class NodeConfig:
    """Identity of this node and of the cluster it belongs to.

    Attributes:
        name: Host name of this node
        cluster: Host names of all nodes in the cluster, in join order
        data_dir: Data directory for the storage engine and marker files
        latency_ms: Average one-way network latency in milliseconds
    """

    name: str = "localhost"
    cluster: tuple[str, ...] = ("localhost",)
    data_dir: str = "/var/lib/txn-server"
    latency_ms: int = 5

    @classmethod
    def from_env(cls) -> NodeConfig:
        """Load configuration from environment variables."""
        name = os.getenv("NODE_NAME", "localhost")
        return cls(
            name=name,
            cluster=_split_list(os.getenv("CLUSTER", name)),
            data_dir=os.getenv("DATA_DIR", "/var/lib/txn-server"),
            latency_ms=int(os.getenv("NETWORK_LATENCY_MS", "5")),
        )


@dataclass(frozen=True)
class HttpConfig:
    """HTTP API configuration.

    Attributes:
        host: Address to bind the API listener to
        port: API port (the replication port is port + 1)
    """

    host: str = "0.0.0.0"
    port: int = 8080

    @classmethod
    def from_env(cls) -> HttpConfig:
        """Load configuration from environment variables."""
        return cls(
            host=os.getenv("HTTP_HOST", "0.0.0.0"),
            port=int(os.getenv("HTTP_PORT", "8080")),
        )


@dataclass(frozen=True)
class StorageConfig:
    """Storage engine configuration.

    Attributes:
        backend: Storage engine backend
        database: Database name opened at startup
        busy_timeout_ms: How long the engine waits on a lock before reporting contention
        schema_max_retries: Attempts at creating the schema under contention
        schema_retry_delay_ms: Delay between schema creation attempts
        handover_timeout_s: Grace period for leadership handover on shutdown
    """

    backend: StorageBackend = StorageBackend.SQLITE
    database: str = "app"
    busy_timeout_ms: int = 250
    schema_max_retries: int = 10
    schema_retry_delay_ms: int = 250
    handover_timeout_s: float = 1.0

    @classmethod
    def from_env(cls) -> StorageConfig:
        """Load configuration from environment variables."""
        backend_str = os.getenv("STORAGE_BACKEND", "sqlite").lower()
        try:
            backend = StorageBackend(backend_str)
        except ValueError:
            raise ValueError(f"Invalid STORAGE_BACKEND '{backend_str}'. Must be one of: sqlite")

        return cls(
            backend=backend,
            database=os.getenv("DATABASE_NAME", "app"),
            busy_timeout_ms=int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "250")),
            schema_max_retries=int(os.getenv("SCHEMA_MAX_RETRIES", "10")),
            schema_retry_delay_ms=int(os.getenv("SCHEMA_RETRY_DELAY_MS", "250")),
            handover_timeout_s=float(os.getenv("HANDOVER_TIMEOUT_S", "1.0")),
        )


@dataclass(frozen=True)
class ResolverConfig:
    """Node identity resolution configuration.

    Attributes:
        backend: Resolution strategy
        hosts: Static ip -> hostname table (static backend only)
    """

    backend: ResolverBackend = ResolverBackend.DNS
    hosts: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_env(cls) -> ResolverConfig:
        """Load configuration from environment variables."""
        backend_str = os.getenv("RESOLVER_BACKEND", "dns").lower()
        try:
            backend = ResolverBackend(backend_str)
        except ValueError:
            raise ValueError(
                f"Invalid RESOLVER_BACKEND '{backend_str}'. Must be one of: dns, static"
            )

        return cls(
            backend=backend,
            hosts=parse_host_table(os.getenv("RESOLVER_HOSTS", "")),
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "text"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "text"),
        )


@dataclass
class ServerConfig:
    """Complete server configuration.

    Attributes:
        node: Node and cluster identity
        http: HTTP API configuration
        storage: Storage engine configuration
        resolver: Node identity resolution configuration
        observability: Logging configuration
    """

    node: NodeConfig = field(default_factory=NodeConfig)
    http: HttpConfig = field(default_factory=HttpConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    resolver: ResolverConfig = field(default_factory=ResolverConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @property
    def replication_port(self) -> int:
        """Port the storage engine replicates on."""
        return self.http.port + 1

    @property
    def request_timeout_s(self) -> float:
        """Per-request deadline.

        With 2ms latency the election timeout is about 30ms, so 100x the
        latency leaves room for a few election rounds.
        """
        return 100 * self.node.latency_ms / 1000.0

    @classmethod
    def from_env(cls) -> ServerConfig:
        """Load complete configuration from environment variables.

        Returns:
            ServerConfig with all sections populated from environment.

        Raises:
            ValueError: If required configuration is missing or invalid.
        """
        config = cls(
            node=NodeConfig.from_env(),
            http=HttpConfig.from_env(),
            storage=StorageConfig.from_env(),
            resolver=ResolverConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )

        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if not self.node.name:
            raise ValueError("NODE_NAME is required")
        if not self.node.cluster:
            raise ValueError("CLUSTER must list at least one node")
        if self.node.name not in self.node.cluster:
            raise ValueError(
                f"NODE_NAME '{self.node.name}' is not part of CLUSTER {list(self.node.cluster)}"
            )
        if self.node.latency_ms <= 0:
            raise ValueError("NETWORK_LATENCY_MS must be positive")
        if self.storage.schema_max_retries < 1:
            raise ValueError("SCHEMA_MAX_RETRIES must be at least 1")
        if self.resolver.backend == ResolverBackend.STATIC and not self.resolver.hosts:
            raise ValueError("RESOLVER_HOSTS is required when RESOLVER_BACKEND=static")

        if not os.path.exists(self.node.data_dir):
            logger.warning(
                f"Data directory does not exist: {self.node.data_dir}. "
                "It will be created on startup."
            )

    def log_config(self) -> None:
        """Log the effective configuration."""
        logger.info(
            "Server configuration loaded",
            extra={
                "node": self.node.name,
                "cluster": ",".join(self.node.cluster),
                "data_dir": self.node.data_dir,
                "latency_ms": self.node.latency_ms,
                "http_bind": f"{self.http.host}:{self.http.port}",
                "replication_port": self.replication_port,
                "storage_backend": self.storage.backend.value,
                "resolver_backend": self.resolver.backend.value,
                "request_timeout_s": self.request_timeout_s,
                "log_level": self.observability.log_level,
            },
        )
