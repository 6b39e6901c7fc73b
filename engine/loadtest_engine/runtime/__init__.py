"""
Runtime: connections, results, the run ledger and lifecycle events.
"""

from loadtest_engine.runtime.event_bus import Event, EventBus, EventType
from loadtest_engine.runtime.results import (
    DisruptionEvent,
    DisruptionFailure,
    ExecutionFailure,
    RunRecorder,
    RunResult,
)
from loadtest_engine.runtime.run_context import generate_run_id

__all__ = [
    "DisruptionEvent",
    "DisruptionFailure",
    "Event",
    "EventBus",
    "EventType",
    "ExecutionFailure",
    "RunRecorder",
    "RunResult",
    "generate_run_id",
]
