"""
Infrastructure interfaces.

NodeInfrastructure performs operations below the RPC layer: resetting
persisted state and the fault injections used by disruptions. RemoteShell
is the command channel the shell-based implementation runs over.
"""

from abc import ABC, abstractmethod

from loadtest_engine.domain.node import Node


class NodeInfrastructure(ABC):
    """Infrastructure-level operations on fleet members."""

    @abstractmethod
    async def reset_state(self, node: Node) -> None:
        """Clear the node's persisted state."""
        pass

    @abstractmethod
    async def hang(self, node: Node, duration_s: float) -> None:
        """Suspend the node's processing for duration_s, then resume it."""
        pass

    @abstractmethod
    async def kill(self, node: Node) -> None:
        """Forcibly terminate the node process. Restarting is not our job."""
        pass

    @abstractmethod
    async def strain_cpu(self, node: Node, parallelism: int, duration_s: int) -> None:
        """Spin parallelism CPU-bound loops on the node for duration_s."""
        pass


class RemoteShell(ABC):
    """Command execution on a node's host."""

    @abstractmethod
    async def run(self, node: Node, command: str) -> str:
        """
        Run a shell command on the node's host.

        Returns:
            Command stdout

        Raises:
            Exception: If the command cannot be run or exits non-zero
        """
        pass
