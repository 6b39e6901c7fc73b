"""
Node connectivity interface.

Defines the contract for the collaborator that turns a Node into a live
RPC handle (tunnelling, certificates and transport are its business).
"""

from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any

from loadtest_engine.domain.node import Node


class NodeConnection(ABC):
    """Live RPC handle to one node."""

    @abstractmethod
    async def call(self, operation: str, **params: Any) -> Any:
        """
        Invoke a domain operation on the node.

        Args:
            operation: Operation name understood by the node
            **params: Operation arguments

        Returns:
            The node's response
        """
        pass

    @abstractmethod
    async def fetch_state(self) -> Mapping[str, Any]:
        """Get the node's current observable aggregate state."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Release the handle."""
        pass


class NodeConnector(ABC):
    """Factory for live connections."""

    @abstractmethod
    async def connect(self, node: Node) -> NodeConnection:
        """
        Establish a connection to a node.

        Raises:
            Exception: If the node cannot be reached
        """
        pass
