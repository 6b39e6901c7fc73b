"""
Run lifecycle events.

The coordinator and the disruption engine publish what happens during a
run; observers such as the command line progress log subscribe without
either publisher knowing about them.
"""

import asyncio
from collections import Counter
from collections.abc import Callable, Coroutine
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from loadtest_engine.logging import get_logger

logger = get_logger(__name__)


class EventType(str, Enum):
    """What happened."""

    RUN_STARTED = "run.started"
    RUN_COMPLETED = "run.completed"
    RUN_ABORTED = "run.aborted"

    CHECK_STARTED = "check.started"
    CHECK_COMPLETED = "check.completed"
    VIOLATION_DETECTED = "check.violation"

    WORK_FAILED = "work.failed"

    DISRUPTION_APPLIED = "disruption.applied"
    DISRUPTION_FAILED = "disruption.failed"


@dataclass(frozen=True)
class Event:
    type: EventType
    data: dict[str, Any] = field(default_factory=dict)
    run_id: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


EventHandler = Callable[[Event], Coroutine[Any, Any, None]]


class EventBus:
    """
    Async fan-out of run events.

    A handler subscribes to one event type, or to every type with None.
    Handlers for one event run concurrently; one that raises is logged and
    does not affect the others or the publisher.
    """

    def __init__(self) -> None:
        self._subscriptions: list[tuple[EventType | None, EventHandler]] = []

    async def subscribe(self, event_type: EventType | None, handler: EventHandler) -> None:
        self._subscriptions.append((event_type, handler))

    async def publish(self, event: Event) -> None:
        handlers = [
            handler
            for event_type, handler in self._subscriptions
            if event_type is None or event_type == event.type
        ]
        if not handlers:
            return

        outcomes = await asyncio.gather(*(handler(event) for handler in handlers), return_exceptions=True)
        for outcome in outcomes:
            if isinstance(outcome, Exception):
                logger.warning("Handler for %s failed: %s", event.type.value, outcome)


class ProgressLog:
    """
    Logs a progress line after every check pass.

    Keeps per-run tallies of failed work items and applied or failed
    disruptions between checks so the line shows what happened so far.
    """

    def __init__(self) -> None:
        self._tallies: dict[str | None, Counter[EventType]] = {}

    async def attach(self, bus: EventBus) -> None:
        for event_type in (EventType.WORK_FAILED, EventType.DISRUPTION_APPLIED, EventType.DISRUPTION_FAILED):
            await bus.subscribe(event_type, self._count)
        await bus.subscribe(EventType.CHECK_COMPLETED, self._on_check)
        await bus.subscribe(EventType.RUN_COMPLETED, self._on_run_completed)

    async def _count(self, event: Event) -> None:
        self._tallies.setdefault(event.run_id, Counter())[event.type] += 1

    async def _on_check(self, event: Event) -> None:
        data = event.data
        tally = self._tallies.get(event.run_id, Counter())
        unreachable = data.get("unreachable") or []
        logger.info(
            "Check %s: %s node(s) checked, %s violation(s), %d failed item(s), %d/%d disruption(s) applied%s",
            data.get("check_pass"),
            data.get("nodes_checked"),
            data.get("violations"),
            tally[EventType.WORK_FAILED],
            tally[EventType.DISRUPTION_APPLIED],
            tally[EventType.DISRUPTION_APPLIED] + tally[EventType.DISRUPTION_FAILED],
            f", unreachable: {', '.join(unreachable)}" if unreachable else "",
        )

    async def _on_run_completed(self, event: Event) -> None:
        self._tallies.pop(event.run_id, None)
