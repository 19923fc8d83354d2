"""
Translation between replication addresses and node host names.

The storage engine identifies members by replication address (ip:port),
while operators and clients name nodes by host name. A NodeResolver
translates in both directions:
- reverse(ip): host names registered for an IP
- forward(name): IP a host name resolves to

Backends:
- DnsResolver: system resolver (reverse DNS in the default executor, the
  event loop's getaddrinfo for forward lookups)
- StaticResolver: fixed ip -> hostname table from configuration, for
  environments without usable reverse DNS
"""

from __future__ import annotations

import asyncio
import ipaddress
import logging
import socket
from abc import abstractmethod
from collections.abc import Mapping
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from ..errors import UnresolvedNodeError

if TYPE_CHECKING:
    from ..config import ResolverConfig

logger = logging.getLogger(__name__)


@runtime_checkable
class NodeResolver(Protocol):
    """Protocol for node identity resolvers."""

    @abstractmethod
    async def reverse(self, ip: str) -> list[str]:
        """Return every host name registered for ip (possibly none).

        Raises:
            UnresolvedNodeError: If the lookup itself fails
        """
        ...

    @abstractmethod
    async def forward(self, name: str) -> str:
        """Return the IP address name resolves to.

        Raises:
            UnresolvedNodeError: If name cannot be resolved
        """
        ...


def _is_ip(value: str) -> bool:
    try:
        ipaddress.ip_address(value)
    except ValueError:
        return False
    return True


class DnsResolver:
    """Resolver backed by the system's name service."""

    async def reverse(self, ip: str) -> list[str]:
        loop = asyncio.get_running_loop()
        try:
            hostname, aliases, _ = await loop.run_in_executor(None, socket.gethostbyaddr, ip)
        except OSError as e:
            raise UnresolvedNodeError(f"{ip!r}: {e}", address=ip) from e

        names = [hostname]
        for alias in aliases:
            if alias not in names:
                names.append(alias)
        return names

    async def forward(self, name: str) -> str:
        loop = asyncio.get_running_loop()
        try:
            infos = await loop.getaddrinfo(name, None, type=socket.SOCK_STREAM)
        except OSError as e:
            raise UnresolvedNodeError(f"{name!r}: {e}", address=name) from e

        # Prefer IPv4, the engine advertises IPv4 replication addresses
        infos.sort(key=lambda info: info[0] != socket.AF_INET)
        if not infos:
            raise UnresolvedNodeError(f"{name!r}: no addresses", address=name)
        return infos[0][4][0]


class StaticResolver:
    """Resolver backed by a fixed ip -> hostname table.

    Example:
        >>> resolver = StaticResolver({"172.31.83.238": "n1.example.com"})
        >>> await resolver.reverse("172.31.83.238")
        ['n1.example.com']
    """

    def __init__(self, hosts: Mapping[str, str]) -> None:
        self.hosts = dict(hosts)
        self._addresses = {hostname: ip for ip, hostname in self.hosts.items()}

    async def reverse(self, ip: str) -> list[str]:
        hostname = self.hosts.get(ip)
        return [hostname] if hostname is not None else []

    async def forward(self, name: str) -> str:
        ip = self._addresses.get(name)
        if ip is not None:
            return ip
        if _is_ip(name):
            return name
        raise UnresolvedNodeError(f"unknown node {name!r}", address=name)


def create_resolver(config: "ResolverConfig") -> NodeResolver:
    """Factory function to create a resolver from configuration.

    Raises:
        ValueError: If backend is not supported
    """
    from ..config import ResolverBackend

    if config.backend == ResolverBackend.DNS:
        return DnsResolver()
    elif config.backend == ResolverBackend.STATIC:
        logger.info("Using static node resolver", extra={"hosts": len(config.hosts)})
        return StaticResolver(config.hosts)
    else:
        raise ValueError(f"Unsupported resolver backend: {config.backend}")
