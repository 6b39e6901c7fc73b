"""
Load test suite.

A plan pairs a test kind and its run parameters with the disruption
patterns to run it under. The suite runs every plan under every pattern,
one run at a time.
"""

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import pandas as pd

from loadtest_engine.disruption.models import (
    DisruptionPattern,
    DisruptionSpec,
    MsRange,
    hang,
    kill,
    strain_cpu,
)
from loadtest_engine.domain.filters import all_nodes, is_network_map, is_notary
from loadtest_engine.interfaces.load_test import LoadTest
from loadtest_engine.logging import get_logger
from loadtest_engine.runtime.results import RunResult
from loadtest_engine.workload.models import RunParameters
from loadtest_engine.workload.registry import create_test

if TYPE_CHECKING:
    from loadtest_engine.config import PlanConfig
    from loadtest_engine.runtime.coordinator import RunCoordinator

logger = get_logger(__name__)


@dataclass
class LoadTestPlan:
    """One test kind, its parameters and the patterns to run it under."""

    test: LoadTest
    parameters: RunParameters
    patterns: list[DisruptionPattern] = field(default_factory=lambda: [DisruptionPattern()])


def default_plans() -> list[LoadTestPlan]:
    """
    Built-in plans: self-issue load with and without a mixed disruption pattern.
    """
    mixed = DisruptionPattern(
        specs=(
            DisruptionSpec(
                disruption=hang(2000, 4000),
                node_filter=all_nodes,
                no_disruption_window_ms=MsRange(low=500, high=1000),
            ),
            DisruptionSpec(
                disruption=kill(),
                node_filter=is_network_map | is_notary,
                no_disruption_window_ms=MsRange(low=10000, high=20000),
            ),
            DisruptionSpec(
                disruption=strain_cpu(parallelism=4, duration_seconds=10),
                node_filter=all_nodes,
                no_disruption_window_ms=MsRange(low=5000, high=10000),
            ),
        ),
    )
    return [
        LoadTestPlan(
            test=create_test("self_issue"),
            parameters=RunParameters(
                parallelism=100,
                generate_count=10000,
                clear_database_before_run=False,
                gather_frequency=1000,
            ),
            patterns=[DisruptionPattern(), mixed],
        )
    ]


def plans_from_config(plans: "Sequence[PlanConfig]") -> list[LoadTestPlan]:
    """
    Build plans from configuration entries.

    Raises:
        KeyError: If an entry names an unknown test kind
    """
    return [
        LoadTestPlan(
            test=create_test(plan.test),
            parameters=plan.parameters,
            patterns=[DisruptionPattern(specs=tuple(specs)) for specs in plan.patterns],
        )
        for plan in plans
    ]


async def run_load_tests(
    plans: Sequence[LoadTestPlan],
    coordinator: "RunCoordinator",
) -> list[RunResult]:
    """
    Run every plan under every one of its patterns, sequentially.

    Args:
        plans: Plans to run
        coordinator: Coordinator bound to the target fleet

    Returns:
        One RunResult per (plan, pattern), in order

    Raises:
        SetupError: If any run fails to set up; later runs are not attempted
    """
    results: list[RunResult] = []
    total = sum(len(plan.patterns) for plan in plans)
    for plan in plans:
        for pattern in plan.patterns:
            logger.info(
                "Suite run %d/%d: %s under %s",
                len(results) + 1,
                total,
                plan.test.name,
                pattern.label,
            )
            results.append(await coordinator.run(plan.test, plan.parameters, pattern))
    return results


def summarize(results: Sequence[RunResult]) -> pd.DataFrame:
    """One row per run, for printing and CSV export."""
    return pd.DataFrame([result.summary() for result in results])
