"""
Disruption-aware fleet for chaos testing.

Unlike the plain FakeInfrastructure, disruptions here change how the
fleet behaves:
- hang pauses every call and state query on the node for the duration
- kill makes the node unreachable until it restarts
- strain_cpu slows the node's calls down for the duration
"""

import asyncio
from collections.abc import Mapping
from typing import Any

from loadtest_engine.domain.node import Node, NodeDirectory
from tests.fixtures.fake_fleet import FakeFleet, FakeInfrastructure


class ChaosFleet(FakeFleet):
    """FakeFleet whose nodes can be paused and slowed down."""

    def __init__(self, directory: NodeDirectory, call_delay_s: float = 0.0):
        super().__init__(directory, call_delay_s)
        self._running: dict[str, asyncio.Event] = {}
        self.strained: dict[str, float] = {}

    def running(self, node_id: str) -> asyncio.Event:
        event = self._running.get(node_id)
        if event is None:
            event = asyncio.Event()
            event.set()
            self._running[node_id] = event
        return event

    async def handle_call(self, node_id: str, operation: str, params: dict[str, Any]) -> Any:
        await self.running(node_id).wait()
        extra_delay = self.strained.get(node_id, 0.0)
        if extra_delay:
            await asyncio.sleep(extra_delay)
        return await super().handle_call(node_id, operation, params)

    async def snapshot(self, node_id: str) -> Mapping[str, Any]:
        await self.running(node_id).wait()
        return await super().snapshot(node_id)


class ChaosInfrastructure(FakeInfrastructure):
    """Infrastructure whose disruptions act on a ChaosFleet."""

    def __init__(
        self,
        fleet: ChaosFleet,
        restart_s: float = 0.08,
        strain_s: float = 0.05,
        strain_delay_s: float = 0.005,
    ):
        super().__init__(fleet)
        self._chaos_fleet = fleet
        self.restart_s = restart_s
        self.strain_s = strain_s
        self.strain_delay_s = strain_delay_s

    async def hang(self, node: Node, duration_s: float) -> None:
        self._record("hang", node, duration_s)
        running = self._chaos_fleet.running(node.identity)
        running.clear()
        try:
            await asyncio.sleep(duration_s)
        finally:
            running.set()

    async def kill(self, node: Node) -> None:
        self._record("kill", node)
        self._chaos_fleet.unreachable.add(node.identity)
        asyncio.get_running_loop().call_later(
            self.restart_s, self._chaos_fleet.unreachable.discard, node.identity
        )

    async def strain_cpu(self, node: Node, parallelism: int, duration_s: int) -> None:
        self._record("strain_cpu", node, parallelism, duration_s)
        self._chaos_fleet.strained[node.identity] = self.strain_delay_s
        asyncio.get_running_loop().call_later(
            self.strain_s, self._chaos_fleet.strained.pop, node.identity, None
        )
