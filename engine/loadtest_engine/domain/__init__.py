"""
Fleet domain model: nodes, roles, the node directory and node filters.
"""

from loadtest_engine.domain.filters import (
    AllNodes,
    AndFilter,
    NodeFilter,
    NotFilter,
    OrFilter,
    RoleFilter,
    all_nodes,
    filter_from_config,
    is_network_map,
    is_notary,
    is_regular,
)
from loadtest_engine.domain.node import Node, NodeDirectory, NodeRole

__all__ = [
    "AllNodes",
    "AndFilter",
    "Node",
    "NodeDirectory",
    "NodeFilter",
    "NodeRole",
    "NotFilter",
    "OrFilter",
    "RoleFilter",
    "all_nodes",
    "filter_from_config",
    "is_network_map",
    "is_notary",
    "is_regular",
]
