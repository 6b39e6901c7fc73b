"""
Disruption engine.

Runs one independent loop per DisruptionSpec of the active pattern for the
lifetime of a run. Each loop waits a randomised quiet period, then applies
its disruption to every node its filter currently selects. Failures are
recorded and the loop carries on; a disruption error never ends a run.
"""

import asyncio
import random
from datetime import UTC, datetime

from loadtest_engine.disruption.actuator import DisruptionActuator
from loadtest_engine.disruption.models import DisruptionPattern, DisruptionSpec
from loadtest_engine.domain.node import Node, NodeDirectory
from loadtest_engine.logging import get_logger
from loadtest_engine.runtime.event_bus import Event, EventBus, EventType
from loadtest_engine.runtime.results import DisruptionEvent, DisruptionFailure, RunRecorder

logger = get_logger(__name__)


class DisruptionEngine:
    """
    Concurrent fault injection for one run.

    Lifecycle: start() before workers begin, stop() once they are done.
    stop() is observed at the next quiet-period wait, so an in-progress
    disruption (such as a hang) completes and its node is restored before
    stop() returns.
    """

    def __init__(
        self,
        pattern: DisruptionPattern,
        directory: NodeDirectory,
        actuator: DisruptionActuator,
        recorder: RunRecorder,
        rng: random.Random | None = None,
        event_bus: EventBus | None = None,
    ):
        self._pattern = pattern
        self._directory = directory
        self._actuator = actuator
        self._recorder = recorder
        self._rng = rng if rng is not None else random.Random()
        self._event_bus = event_bus
        self._stop_event = asyncio.Event()
        self._tasks: list[asyncio.Task[None]] = []
        self._iterations: dict[int, int] = {}

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    @property
    def iterations(self) -> dict[int, int]:
        """Completed application rounds, keyed by spec index."""
        return dict(self._iterations)

    def start(self) -> None:
        """Start one loop per spec. A control pattern starts nothing."""
        if self._tasks:
            raise RuntimeError("Disruption engine already started")
        if self._pattern.is_control:
            logger.info("Control run: no disruptions")
            return

        self._stop_event.clear()
        for index, spec in enumerate(self._pattern.specs):
            self._iterations[index] = 0
            self._tasks.append(
                asyncio.create_task(
                    self._run_spec(index, spec),
                    name=f"disruption-{index}-{spec.disruption.kind}",
                )
            )
        logger.info(
            "Disruption engine started: %s",
            "; ".join(spec.describe() for spec in self._pattern.specs),
        )

    async def stop(self) -> None:
        """Signal every loop to stop and wait for them to finish."""
        self._stop_event.set()
        if not self._tasks:
            return
        results = await asyncio.gather(*self._tasks, return_exceptions=True)
        for task, result in zip(self._tasks, results):
            if isinstance(result, Exception):
                logger.error("Disruption loop %s crashed: %s", task.get_name(), result)
        logger.info(
            "Disruption engine stopped after %d application(s)",
            sum(self._iterations.values()),
        )

    async def _wait_quiet(self, spec: DisruptionSpec) -> bool:
        """Sleep through a drawn quiet period. Returns False if stopped meanwhile."""
        quiet_s = spec.no_disruption_window_ms.draw(self._rng) / 1000
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=quiet_s)
        except asyncio.TimeoutError:
            return not self._stop_event.is_set()
        return False

    async def _run_spec(self, index: int, spec: DisruptionSpec) -> None:
        label = spec.describe()
        while await self._wait_quiet(spec):
            targets = self._directory.select(spec.node_filter)
            if not targets:
                logger.debug("%s: filter selects no nodes", label)
            else:
                await asyncio.gather(*(self._apply(label, spec, node) for node in targets))
            self._iterations[index] += 1

    async def _apply(self, label: str, spec: DisruptionSpec, node: Node) -> None:
        started_at = datetime.now(UTC)
        try:
            applied = await self._actuator.apply(spec.disruption, node)
        except Exception as e:
            failure = DisruptionFailure(
                spec=label,
                node_id=node.identity,
                error=f"{type(e).__name__}: {e}",
            )
            logger.warning("Disruption %s failed on %s: %s", label, node.identity, failure.error)
            self._recorder.record_disruption_failure(failure)
            await self._publish(EventType.DISRUPTION_FAILED, failure.model_dump(mode="json"))
            return

        event = DisruptionEvent(
            spec=label,
            node_id=node.identity,
            applied=applied,
            started_at=started_at,
        )
        self._recorder.record_disruption(event)
        logger.info("Disrupted %s: %s", node.identity, applied)
        await self._publish(EventType.DISRUPTION_APPLIED, event.model_dump(mode="json"))

    async def _publish(self, event_type: EventType, data: dict) -> None:
        if self._event_bus is not None:
            await self._event_bus.publish(
                Event(type=event_type, data=data, run_id=self._recorder.result.run_id)
            )
