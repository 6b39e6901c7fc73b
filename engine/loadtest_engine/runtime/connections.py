"""
Connection pool over the node connectivity collaborator.

Connections are opened lazily, cached per node and dropped after a
failure so the next use reconnects (a killed node comes back on a new
process).
"""

import asyncio

from loadtest_engine.domain.node import Node, NodeDirectory
from loadtest_engine.errors import NodeUnreachableError
from loadtest_engine.interfaces.node_connection import NodeConnection, NodeConnector
from loadtest_engine.logging import get_logger

logger = get_logger(__name__)


class ConnectionPool:
    """Per-node cache of live connections."""

    def __init__(self, connector: NodeConnector, directory: NodeDirectory):
        self._connector = connector
        self._directory = directory
        self._connections: dict[str, NodeConnection] = {}
        self._locks: dict[str, asyncio.Lock] = {node_id: asyncio.Lock() for node_id in directory.identities}

    @property
    def open_count(self) -> int:
        return len(self._connections)

    async def get(self, node: Node | str) -> NodeConnection:
        """
        Get a live connection, connecting if needed.

        Raises:
            NodeUnreachableError: If the connector fails
        """
        node = self._directory.get(node) if isinstance(node, str) else node
        async with self._locks[node.identity]:
            connection = self._connections.get(node.identity)
            if connection is not None:
                return connection
            try:
                connection = await self._connector.connect(node)
            except Exception as e:
                raise NodeUnreachableError(node.identity, f"{type(e).__name__}: {e}") from e
            self._connections[node.identity] = connection
            logger.debug("Connected to %s at %s", node.identity, node.address)
            return connection

    async def invalidate(self, node_id: str) -> None:
        """Drop a node's cached connection so the next get reconnects."""
        async with self._locks[node_id]:
            connection = self._connections.pop(node_id, None)
        if connection is not None:
            await self._close_quietly(node_id, connection)

    async def invalidate_all(self) -> None:
        for node_id in list(self._connections):
            await self.invalidate(node_id)

    async def close_all(self) -> None:
        """Close every open connection."""
        connections = list(self._connections.items())
        self._connections.clear()
        for node_id, connection in connections:
            await self._close_quietly(node_id, connection)

    async def _close_quietly(self, node_id: str, connection: NodeConnection) -> None:
        try:
            await connection.close()
        except Exception as e:
            logger.debug("Error closing connection to %s: %s", node_id, e)
