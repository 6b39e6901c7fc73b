"""
Predicted state model.

In-memory aggregate state, one entry per node, updated as WorkItems
complete. Each entry has its own condition variable, so updates to
different nodes never contend, while updates to the same node are
serialized.

Entries also track how many admitted WorkItems are in flight against the
node. The invariant checker holds a node (blocking new admissions to that
node only) and waits for its in-flight count to reach zero before reading
the remote snapshot, which makes each per-node comparison atomic.
"""

import asyncio
from collections import deque
from collections.abc import AsyncIterator, Iterable, Mapping
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

from loadtest_engine.logging import get_logger

logger = get_logger(__name__)

# Number of contributing WorkItem ids remembered per node for diagnostics
CAUSAL_HISTORY = 20


@dataclass(frozen=True)
class PredictedEntry:
    """Immutable view of one node's predicted state."""

    node_id: str
    values: dict[str, int]
    applied: int
    contributors: tuple[str, ...]


@dataclass
class _NodeEntry:
    values: dict[str, int] = field(default_factory=dict)
    applied: int = 0
    contributors: deque[str] = field(default_factory=lambda: deque(maxlen=CAUSAL_HISTORY))
    pending: int = 0
    holding: bool = False
    condition: asyncio.Condition = field(default_factory=asyncio.Condition)

    def view(self, node_id: str) -> PredictedEntry:
        return PredictedEntry(
            node_id=node_id,
            values=dict(self.values),
            applied=self.applied,
            contributors=tuple(self.contributors),
        )


class PredictedStateModel:
    """
    Mapping from node identity to predicted aggregate values.

    Mutated only by committing a WorkItem's effects (or by seeding a
    baseline); read by the invariant checker.
    """

    def __init__(self, node_ids: Iterable[str]):
        self._entries: dict[str, _NodeEntry] = {node_id: _NodeEntry() for node_id in node_ids}

    @property
    def node_ids(self) -> list[str]:
        return list(self._entries)

    def _entry(self, node_id: str) -> _NodeEntry:
        try:
            return self._entries[node_id]
        except KeyError:
            raise KeyError(f"Node {node_id} is not tracked by the predicted state") from None

    def seed(self, node_id: str, values: Mapping[str, int]) -> None:
        """
        Set a node's baseline, discarding previous values and history.

        Only valid while no work is in flight (before the run starts).
        """
        entry = self._entry(node_id)
        entry.values = dict(values)
        entry.applied = 0
        entry.contributors.clear()

    def override(self, node_id: str, field_name: str, value: int) -> None:
        """Force a predicted value, bypassing normal execution."""
        entry = self._entry(node_id)
        logger.warning(
            "Predicted %s.%s overridden: %s -> %s",
            node_id,
            field_name,
            entry.values.get(field_name),
            value,
        )
        entry.values[field_name] = value

    def get(self, node_id: str) -> PredictedEntry:
        """Get a view of one node's entry."""
        return self._entry(node_id).view(node_id)

    def value(self, node_id: str, field_name: str) -> int | None:
        return self._entry(node_id).values.get(field_name)

    def snapshot(self) -> dict[str, dict[str, int]]:
        """Copy of all predicted values."""
        return {node_id: dict(entry.values) for node_id, entry in self._entries.items()}

    def in_flight(self, node_id: str) -> int:
        """Number of admitted, uncompleted WorkItems targeting the node."""
        return self._entry(node_id).pending

    async def admit(self, node_ids: Iterable[str]) -> None:
        """
        Register an item as in flight against its target nodes.

        Waits while the checker holds any of the nodes. Nodes are admitted
        in sorted order.
        """
        admitted: list[str] = []
        try:
            for node_id in sorted(set(node_ids)):
                entry = self._entry(node_id)
                async with entry.condition:
                    await entry.condition.wait_for(lambda: not entry.holding)
                    entry.pending += 1
                admitted.append(node_id)
        except BaseException:
            await self.release(admitted)
            raise

    async def release(self, node_ids: Iterable[str]) -> None:
        """Mark an admitted item as finished without applying effects."""
        for node_id in sorted(set(node_ids)):
            entry = self._entry(node_id)
            async with entry.condition:
                entry.pending -= 1
                entry.condition.notify_all()

    async def commit(
        self,
        item_id: str,
        node_ids: Iterable[str],
        effects: Mapping[str, Mapping[str, int]],
    ) -> None:
        """
        Apply a completed item's effects and release its nodes.

        Args:
            item_id: Id of the completed item (kept as causal context)
            node_ids: Nodes the item was admitted against
            effects: Additive deltas per node and field

        Raises:
            ValueError: If effects touch a node the item was not admitted on
        """
        targets = sorted(set(node_ids))
        stray = set(effects) - set(targets)
        if stray:
            await self.release(targets)
            raise ValueError(f"Item {item_id} has effects on non-target nodes: {sorted(stray)}")

        for node_id in targets:
            entry = self._entry(node_id)
            async with entry.condition:
                deltas = effects.get(node_id)
                if deltas:
                    for field_name, delta in deltas.items():
                        entry.values[field_name] = entry.values.get(field_name, 0) + delta
                    entry.applied += 1
                    entry.contributors.append(item_id)
                entry.pending -= 1
                entry.condition.notify_all()

    @asynccontextmanager
    async def hold(self, node_id: str) -> AsyncIterator[PredictedEntry]:
        """
        Quiesce one node for an atomic read-and-compare.

        Blocks new admissions to the node, waits for its in-flight items to
        finish, and yields a view of its entry. Other nodes are unaffected.
        """
        entry = self._entry(node_id)
        async with entry.condition:
            await entry.condition.wait_for(lambda: not entry.holding)
            entry.holding = True
            try:
                await entry.condition.wait_for(lambda: entry.pending == 0)
            except BaseException:
                entry.holding = False
                entry.condition.notify_all()
                raise
            view = entry.view(node_id)

        try:
            yield view
        finally:
            async with entry.condition:
                entry.holding = False
                entry.condition.notify_all()
