"""
Bootstrap planning for a cluster node.

Decides, before the storage engine starts, how this node enters the cluster:
- A node whose data directory holds a ``removed`` marker does not start
- A fresh node joins through the nodes listed before it, so the first node
  bootstraps a new cluster and each later one joins an existing one
- A node whose data directory holds a ``rejoin`` marker joins through every
  other node, since any of them may be the current leader
"""

from __future__ import annotations

import logging
import os
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from ..config import ServerConfig

logger = logging.getLogger(__name__)

REMOVED_MARKER = "removed"
REJOIN_MARKER = "rejoin"


def make_address(host: str, port: int) -> str:
    return f"{host}:{port}"


def preceding_addresses(node: str, nodes: Sequence[str], port: int) -> list[str]:
    """Replication addresses of every node listed before node.

    E.g. with node="n2" and nodes=["n1", "n2", "n3"] return ["n1:8081"].
    """
    if node not in nodes:
        return []
    return [make_address(name, port) for name in nodes[: list(nodes).index(node)]]


def other_addresses(node: str, nodes: Sequence[str], port: int) -> list[str]:
    """Replication addresses of every node other than node."""
    return [make_address(name, port) for name in nodes if name != node]


def marker_exists(data_dir: str, marker: str) -> bool:
    """Whether a marker file exists in data_dir.

    Raises:
        OSError: If the check fails for any reason other than absence
    """
    try:
        os.stat(Path(data_dir) / marker)
    except FileNotFoundError:
        return False
    return True


@dataclass(frozen=True)
class BootstrapPlan:
    """How this node enters the cluster.

    Attributes:
        address: Replication address this node advertises
        join: Replication addresses to join through (empty: new cluster)
        voters: Target voter count
        removed: Node was removed and must not start
        rejoin: Node is rejoining after a restart
    """

    address: str
    join: tuple[str, ...]
    voters: int
    removed: bool = False
    rejoin: bool = False


def plan_bootstrap(config: ServerConfig, ip: str) -> BootstrapPlan:
    """Build the bootstrap plan for this node.

    Args:
        config: Server configuration
        ip: Resolved IP address of this node
    """
    node = config.node
    port = config.replication_port
    removed = marker_exists(node.data_dir, REMOVED_MARKER)
    rejoin = marker_exists(node.data_dir, REJOIN_MARKER)

    if rejoin:
        join = other_addresses(node.name, node.cluster, port)
    else:
        join = preceding_addresses(node.name, node.cluster, port)

    voters = len(node.cluster) if len(node.cluster) > 1 else 1

    plan = BootstrapPlan(
        address=make_address(ip, port),
        join=tuple(join),
        voters=voters,
        removed=removed,
        rejoin=rejoin,
    )
    logger.info(
        "Bootstrap plan",
        extra={
            "address": plan.address,
            "join": ",".join(plan.join),
            "voters": plan.voters,
            "removed": plan.removed,
            "rejoin": plan.rejoin,
        },
    )
    return plan
