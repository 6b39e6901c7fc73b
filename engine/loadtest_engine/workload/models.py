"""
Workload models.

RunParameters is a validated pydantic model (it is read from configuration);
WorkItems are plain frozen dataclasses created and consumed at high rate.
"""

from dataclasses import dataclass
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class FailurePolicy(str, Enum):
    """What a test wants done with a WorkItem whose execution failed."""

    DROP = "drop"  # record and forget
    RETRY = "retry"  # resubmit the same item, up to max_attempts
    REPLACE = "replace"  # generate a fresh item in its place


class RunParameters(BaseModel):
    """Parameters of one run of a load test."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    parallelism: int = Field(ge=1, description="Max concurrent in-flight WorkItems")
    generate_count: int = Field(ge=0, description="Total WorkItems to execute successfully")
    clear_database_before_run: bool = Field(
        default=False,
        description="Reset every node's persisted state before the run",
    )
    gather_frequency: int = Field(
        ge=1,
        description="Successful completions between invariant checks",
    )


@dataclass(frozen=True, slots=True)
class WorkItem:
    """
    One generated unit of load.

    Test kinds subclass this to carry the data needed both to execute the
    action and to compute its effect on the predicted state.

    Attributes:
        item_id: Unique id within a run (sequence based)
        targets: Identities of the nodes the item touches; the first is the
                 node the action is sent to
        attempt: 1 for the first execution, incremented on retry
    """

    item_id: str
    targets: tuple[str, ...]
    attempt: int = 1

    @property
    def primary_target(self) -> str:
        return self.targets[0]
