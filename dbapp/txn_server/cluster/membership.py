"""
Cluster membership controller.

Answers leader and membership queries in terms of node host names, removes
members named by host name, and gates on cluster readiness. Every call is a
single round trip to the storage engine's leader; the controller keeps no
state between calls.

Invariants:
    - Member lists are all-or-nothing: one unresolved member fails the call
    - A node is matched for removal by its replication address (replication
      port, not API port)
    - Ready means: exactly the expected number of members, none of them spare
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass

from ..errors import (
    ClusterIncompleteError,
    NodeNotFoundError,
    NodeNotVoterError,
    UnresolvedNodeError,
)
from ..storage import NodeInfo, NodeRole, StorageClient
from .resolver import NodeResolver

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClusterMember:
    """A cluster member with its resolved host name.

    Attributes:
        node: Member as reported by the storage engine
        name: Host name the member's address resolves to
    """

    node: NodeInfo
    name: str

    @property
    def address(self) -> str:
        return self.node.address

    @property
    def role(self) -> NodeRole:
        return self.node.role


def check_readiness(members: Sequence[NodeInfo], expected_nodes: Sequence[str]) -> None:
    """Raise unless members form the complete, fully promoted cluster.

    Raises:
        ClusterIncompleteError: If the member count differs from expected
        NodeNotVoterError: If any member is still a spare
    """
    if len(members) != len(expected_nodes):
        raise ClusterIncompleteError(len(members), len(expected_nodes))

    for member in members:
        if member.role == NodeRole.SPARE:
            raise NodeNotVoterError(member.address, str(member.role))


def is_cluster_ready(members: Sequence[NodeInfo], expected_nodes: Sequence[str]) -> bool:
    """Readiness predicate: True iff check_readiness() would pass."""
    try:
        check_readiness(members, expected_nodes)
    except (ClusterIncompleteError, NodeNotVoterError):
        return False
    return True


class MembershipController:
    """Leader/member queries and member removal by host name.

    Attributes:
        storage: Storage client exposing the cluster operations
        resolver: Address <-> host name translation
        replication_port: Port the storage engine replicates on

    Example:
        >>> controller = MembershipController(storage, DnsResolver(), replication_port=8081)
        >>> await controller.get_leader()
        'n1.example.com'
    """

    def __init__(
        self,
        storage: StorageClient,
        resolver: NodeResolver,
        replication_port: int,
    ) -> None:
        self.storage = storage
        self.resolver = resolver
        self.replication_port = replication_port

    async def resolve_name(self, node: NodeInfo) -> str:
        """Host name of a member.

        Raises:
            UnresolvedNodeError: If the address maps to zero or several names
        """
        names = await self.resolver.reverse(node.host)
        if not names:
            raise UnresolvedNodeError(f"unknown node {node.address}", address=node.address)
        if len(names) != 1:
            raise UnresolvedNodeError(
                f"more than one host associated with {node.address}: {names}",
                address=node.address,
            )
        return names[0]

    async def get_leader(self) -> str | None:
        """Host name of the current leader, or None if there is none."""
        node = await self.storage.leader()
        if node is None:
            return None
        return await self.resolve_name(node)

    async def get_members(self) -> list[ClusterMember]:
        """Every cluster member with its host name."""
        nodes = await self.storage.cluster()
        return [ClusterMember(node, await self.resolve_name(node)) for node in nodes]

    async def remove_member(self, name: str) -> NodeInfo:
        """Remove the member whose replication address name resolves to.

        Returns:
            The removed member

        Raises:
            UnresolvedNodeError: If name cannot be resolved
            NodeNotFoundError: If no member has the resolved address
        """
        nodes = await self.storage.cluster()
        ip = await self.resolver.forward(name)
        address = f"{ip}:{self.replication_port}"

        for node in nodes:
            if node.address == address:
                await self.storage.remove(node.id)
                logger.info(
                    "Removed cluster member",
                    extra={"name": name, "address": address, "node_id": node.id},
                )
                return node

        raise NodeNotFoundError(name)

    async def is_ready(self, expected_nodes: Sequence[str]) -> None:
        """Raise unless the cluster is complete and fully promoted.

        Raises:
            ClusterIncompleteError: If members are missing (or extra)
            NodeNotVoterError: If a member is still a spare
        """
        check_readiness(await self.storage.cluster(), expected_nodes)


def render_leader(name: str | None) -> str:
    return f'"{name or ""}"'


def render_members(members: Sequence[ClusterMember]) -> str:
    return "[" + " ".join(f'"{member.name}"' for member in members) + "]"
