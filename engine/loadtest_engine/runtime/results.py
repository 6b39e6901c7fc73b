"""
Run result models and the per-run recorder.

RunResult is the complete, append-only outcome of one run. RunRecorder
collects outcomes while the run is live; coordinator, disruption engine
and checker all record through it, and it mirrors every record into the
run ledger when one is attached.
"""

from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field

from loadtest_engine.verification.models import CheckReport, UnreachableNode, Violation
from loadtest_engine.workload.models import RunParameters

if TYPE_CHECKING:
    from loadtest_engine.runtime.ledger import RunLedger


def _now() -> datetime:
    return datetime.now(UTC)


class ExecutionFailure(BaseModel):
    """A WorkItem execution that failed or timed out."""

    item_id: str
    node_id: str
    attempt: int = 1
    error_type: str
    error: str
    timed_out: bool = False
    timestamp: datetime = Field(default_factory=_now)


class DisruptionEvent(BaseModel):
    """A disruption applied to one node."""

    spec: str
    node_id: str
    applied: str
    started_at: datetime
    finished_at: datetime = Field(default_factory=_now)


class DisruptionFailure(BaseModel):
    """A disruption that could not be applied to one node."""

    spec: str
    node_id: str
    error: str
    timestamp: datetime = Field(default_factory=_now)


class RunResult(BaseModel):
    """Outcome of one run: parameters, counters and every recorded failure."""

    run_id: str
    test: str
    pattern: str
    parameters: RunParameters
    started_at: datetime
    finished_at: datetime | None = None

    succeeded: int = 0
    attempted: int = 0
    retries: int = 0
    replacements: int = 0
    checks_run: int = 0
    checks_coalesced: int = 0

    violations: list[Violation] = Field(default_factory=list)
    execution_failures: list[ExecutionFailure] = Field(default_factory=list)
    unreachable: list[UnreachableNode] = Field(default_factory=list)
    disruptions: list[DisruptionEvent] = Field(default_factory=list)
    disruption_failures: list[DisruptionFailure] = Field(default_factory=list)

    @property
    def passed(self) -> bool:
        """A run passes when no check found a mismatch."""
        return not self.violations

    @property
    def duration_s(self) -> float | None:
        if self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()

    def summary(self) -> dict[str, Any]:
        """Flat summary row (used for suite tables)."""
        return {
            "run_id": self.run_id,
            "test": self.test,
            "pattern": self.pattern,
            "parallelism": self.parameters.parallelism,
            "generate_count": self.parameters.generate_count,
            "succeeded": self.succeeded,
            "attempted": self.attempted,
            "execution_failures": len(self.execution_failures),
            "checks_run": self.checks_run,
            "violations": len(self.violations),
            "unreachable": len(self.unreachable),
            "disruptions": len(self.disruptions),
            "disruption_failures": len(self.disruption_failures),
            "duration_s": self.duration_s,
            "passed": self.passed,
        }


class RunRecorder:
    """
    Append-only collector for one run's outcomes.

    Records are only ever appended; nothing recorded is rewritten.
    """

    def __init__(
        self,
        run_id: str,
        test: str,
        pattern: str,
        parameters: RunParameters,
        ledger: "RunLedger | None" = None,
    ):
        self._result = RunResult(
            run_id=run_id,
            test=test,
            pattern=pattern,
            parameters=parameters,
            started_at=_now(),
        )
        self._ledger = ledger

    @property
    def result(self) -> RunResult:
        return self._result

    @property
    def ledger(self) -> "RunLedger | None":
        return self._ledger

    def record_attempt(self) -> None:
        self._result.attempted += 1

    def record_success(self, item_id: str, node_id: str) -> int:
        """Count a successful execution; returns the success count."""
        self._result.succeeded += 1
        if self._ledger is not None:
            self._ledger.record_success(item_id, node_id)
        return self._result.succeeded

    def record_execution_failure(self, failure: ExecutionFailure) -> None:
        self._result.execution_failures.append(failure)
        if self._ledger is not None:
            self._ledger.record_execution_failure(failure)

    def record_check(self, report: CheckReport) -> None:
        self._result.checks_run += 1
        self._result.violations.extend(report.violations)
        self._result.unreachable.extend(report.unreachable)
        if self._ledger is not None:
            self._ledger.record_check(report)

    def record_coalesced_check(self) -> None:
        self._result.checks_coalesced += 1

    def record_disruption(self, event: DisruptionEvent) -> None:
        self._result.disruptions.append(event)
        if self._ledger is not None:
            self._ledger.record_disruption(event)

    def record_disruption_failure(self, failure: DisruptionFailure) -> None:
        self._result.disruption_failures.append(failure)
        if self._ledger is not None:
            self._ledger.record_disruption_failure(failure)

    def finish(self, retries: int = 0, replacements: int = 0) -> RunResult:
        """Stamp the end time and generator counters; returns the result."""
        self._result.retries = retries
        self._result.replacements = replacements
        self._result.finished_at = _now()
        return self._result
