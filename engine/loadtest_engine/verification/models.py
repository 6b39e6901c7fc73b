"""
Invariant check models.
"""

from datetime import UTC, datetime

from pydantic import BaseModel, Field


def _now() -> datetime:
    return datetime.now(UTC)


class Violation(BaseModel):
    """
    A mismatch between predicted and observed state for one node/field.

    contributing_items holds the ids of the most recent WorkItems folded
    into the node's predicted entry, oldest first.
    """

    node_id: str
    field: str
    expected: int | None
    observed: int | None
    timestamp: datetime = Field(default_factory=_now)
    check_pass: int = 0
    contributing_items: list[str] = Field(default_factory=list)

    def describe(self) -> str:
        return f"{self.node_id}.{self.field}: expected {self.expected}, observed {self.observed}"


class UnreachableNode(BaseModel):
    """A node that could not be queried during a check pass."""

    node_id: str
    error: str
    timed_out: bool = False
    timestamp: datetime = Field(default_factory=_now)
    check_pass: int = 0


class CheckReport(BaseModel):
    """Outcome of one checker pass over the fleet."""

    check_pass: int
    started_at: datetime = Field(default_factory=_now)
    finished_at: datetime | None = None
    nodes_checked: int = 0
    violations: list[Violation] = Field(default_factory=list)
    unreachable: list[UnreachableNode] = Field(default_factory=list)

    @property
    def consistent(self) -> bool:
        """True if no reachable node mismatched."""
        return not self.violations
