"""
Disruption models.

The set of fault kinds is closed: Hang, Kill and StrainCpu are explicit
variants carrying their parameters, discriminated by `kind` so they can be
read straight from configuration. A DisruptionSpec pairs a disruption with
the node filter it applies to and the quiet window drawn before each
application.
"""

import random
from dataclasses import dataclass
from typing import Annotated, Any, Literal

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_serializer,
    field_validator,
    model_validator,
)

from loadtest_engine.domain.filters import NodeFilter, all_nodes, filter_from_config


class MsRange(BaseModel):
    """Inclusive range of milliseconds."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    low: int = Field(ge=0)
    high: int = Field(ge=0)

    @model_validator(mode="before")
    @classmethod
    def from_pair(cls, data: Any) -> Any:
        """Accept [low, high] as shorthand."""
        if isinstance(data, (list, tuple)):
            if len(data) != 2:
                raise ValueError(f"Range must have exactly two bounds, got {data!r}")
            return {"low": data[0], "high": data[1]}
        return data

    @model_validator(mode="after")
    def check_order(self) -> "MsRange":
        if self.low > self.high:
            raise ValueError(f"Range low ({self.low}) must not exceed high ({self.high})")
        return self

    def draw(self, rng: random.Random) -> int:
        """Draw uniformly from the range, bounds included."""
        return rng.randint(self.low, self.high)

    def __str__(self) -> str:
        return f"{self.low}..{self.high}ms"


class Hang(BaseModel):
    """Suspend the node's processing for a drawn duration, then resume it."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: Literal["hang"] = "hang"
    duration_ms: MsRange

    def describe(self) -> str:
        return f"hang({self.duration_ms})"


class Kill(BaseModel):
    """Forcibly terminate the node process."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: Literal["kill"] = "kill"

    def describe(self) -> str:
        return "kill"


class StrainCpu(BaseModel):
    """Spin CPU-bound loops on the node's host."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: Literal["strain_cpu"] = "strain_cpu"
    parallelism: int = Field(ge=1)
    duration_seconds: int = Field(ge=1)

    def describe(self) -> str:
        return f"strain_cpu({self.parallelism}x{self.duration_seconds}s)"


Disruption = Annotated[Hang | Kill | StrainCpu, Field(discriminator="kind")]


class DisruptionSpec(BaseModel):
    """A disruption, the nodes it targets and its randomised quiet period."""

    model_config = ConfigDict(frozen=True, extra="forbid", arbitrary_types_allowed=True)

    disruption: Disruption
    node_filter: NodeFilter = all_nodes
    no_disruption_window_ms: MsRange

    @field_validator("node_filter", mode="before")
    @classmethod
    def parse_filter(cls, v: Any) -> NodeFilter:
        return filter_from_config(v)

    @field_serializer("node_filter")
    def serialize_filter(self, v: NodeFilter) -> str:
        return v.describe()

    def describe(self) -> str:
        return (
            f"{self.disruption.describe()} on {self.node_filter.describe()} "
            f"every {self.no_disruption_window_ms}"
        )


@dataclass(frozen=True)
class DisruptionPattern:
    """DisruptionSpecs active simultaneously for one run. Empty means control run."""

    specs: tuple[DisruptionSpec, ...] = ()
    name: str | None = None

    @property
    def is_control(self) -> bool:
        return not self.specs

    @property
    def label(self) -> str:
        if self.name:
            return self.name
        if self.is_control:
            return "control"
        return "+".join(spec.disruption.kind for spec in self.specs)

    def __len__(self) -> int:
        return len(self.specs)


def hang(low_ms: int, high_ms: int) -> Hang:
    return Hang(duration_ms=MsRange(low=low_ms, high=high_ms))


def kill() -> Kill:
    return Kill()


def strain_cpu(parallelism: int, duration_seconds: int) -> StrainCpu:
    return StrainCpu(parallelism=parallelism, duration_seconds=duration_seconds)
