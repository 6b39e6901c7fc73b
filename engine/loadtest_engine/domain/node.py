"""
Fleet topology: nodes and the read-only node directory.

The directory is built once from configuration before a run and never
mutated afterwards, so every component may share it without locking.
"""

from collections.abc import Iterable, Iterator
from enum import Enum
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field

if TYPE_CHECKING:
    from loadtest_engine.config import NodeHostConfig
    from loadtest_engine.domain.filters import NodeFilter


class NodeRole(str, Enum):
    """Role tags a fleet member can carry."""

    NETWORK_MAP = "network_map"
    NOTARY = "notary"
    REGULAR = "regular"


class Node(BaseModel):
    """One member of the fleet under test."""

    model_config = ConfigDict(frozen=True)

    identity: str
    host: str
    rpc_port: int = Field(default=10003, gt=0, le=65535)
    roles: frozenset[NodeRole] = Field(default_factory=lambda: frozenset({NodeRole.REGULAR}))

    @property
    def address(self) -> str:
        """Network address as host:port."""
        return f"{self.host}:{self.rpc_port}"

    @property
    def is_network_map(self) -> bool:
        return NodeRole.NETWORK_MAP in self.roles

    @property
    def is_notary(self) -> bool:
        return NodeRole.NOTARY in self.roles

    def has_role(self, role: NodeRole) -> bool:
        """Check if the node carries a role tag."""
        return role in self.roles

    def __str__(self) -> str:
        return self.identity


class NodeDirectory:
    """
    Static, read-only view of the target fleet.

    Nodes keep the order they were configured in; identities are unique.
    """

    def __init__(self, nodes: Iterable[Node]):
        self._nodes: tuple[Node, ...] = tuple(nodes)
        self._by_identity: dict[str, Node] = {}
        for node in self._nodes:
            if node.identity in self._by_identity:
                raise ValueError(f"Duplicate node identity: {node.identity}")
            self._by_identity[node.identity] = node

    @classmethod
    def from_hosts(
        cls,
        hosts: "Iterable[NodeHostConfig]",
        default_rpc_port: int,
    ) -> "NodeDirectory":
        """
        Build a directory from configured host entries.

        Args:
            hosts: Host entries from the run configuration
            default_rpc_port: Port used when an entry does not set one

        Returns:
            NodeDirectory with one node per host entry
        """
        return cls(
            Node(
                identity=entry.identity or entry.host,
                host=entry.host,
                rpc_port=entry.rpc_port or default_rpc_port,
                roles=frozenset(entry.roles),
            )
            for entry in hosts
        )

    @property
    def nodes(self) -> tuple[Node, ...]:
        """All nodes in configuration order."""
        return self._nodes

    @property
    def identities(self) -> list[str]:
        """All node identities in configuration order."""
        return [node.identity for node in self._nodes]

    def get(self, identity: str) -> Node:
        """
        Get a node by identity.

        Raises:
            KeyError: If no node has this identity
        """
        return self._by_identity[identity]

    def select(self, node_filter: "NodeFilter") -> list[Node]:
        """Get the nodes for which the filter holds, in configuration order."""
        return [node for node in self._nodes if node_filter.matches(node)]

    def __iter__(self) -> Iterator[Node]:
        return iter(self._nodes)

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, identity: object) -> bool:
        return identity in self._by_identity
