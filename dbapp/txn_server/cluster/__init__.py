"""
Cluster lifecycle for the transaction server.

This module handles:
- Membership queries and removals in terms of node host names
- The readiness gate used by clients before starting a workload
- Address <-> host name resolution (DNS or static table)
- Bootstrap planning (join list, removed/rejoin markers)

Membership truth lives in the storage engine; nothing here caches it.
"""

from .bootstrap import BootstrapPlan, plan_bootstrap
from .membership import (
    ClusterMember,
    MembershipController,
    check_readiness,
    is_cluster_ready,
    render_leader,
    render_members,
)
from .resolver import DnsResolver, NodeResolver, StaticResolver, create_resolver

__all__ = [
    "BootstrapPlan",
    "ClusterMember",
    "DnsResolver",
    "MembershipController",
    "NodeResolver",
    "StaticResolver",
    "check_readiness",
    "create_resolver",
    "is_cluster_ready",
    "plan_bootstrap",
    "render_leader",
    "render_members",
]
