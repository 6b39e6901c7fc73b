"""
Chaos testing configuration and shared fixtures.

Provides a disruption-aware fleet and a coordinator bound to it.
"""

import random
import tempfile
from pathlib import Path

import pytest

from loadtest_engine.disruption.models import DisruptionPattern, DisruptionSpec, MsRange, hang, kill, strain_cpu
from loadtest_engine.domain.filters import all_nodes, is_network_map, is_notary
from loadtest_engine.domain.node import NodeDirectory
from loadtest_engine.runtime.coordinator import RunCoordinator
from tests.chaos.fixtures.fleet_chaos import ChaosFleet, ChaosInfrastructure
from tests.fixtures.fake_fleet import FakeConnector


@pytest.fixture(autouse=True)
def seed_random():
    """Seed random for reproducible chaos scenarios."""
    random.seed(42)
    yield
    random.seed()  # Reset after test


@pytest.fixture
def chaos_temp_dir():
    """Temporary directory for chaos run ledgers."""
    with tempfile.TemporaryDirectory(prefix="chaos_") as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def chaos_fleet(directory: NodeDirectory) -> ChaosFleet:
    return ChaosFleet(directory, call_delay_s=0.001)


@pytest.fixture
def chaos_infrastructure(chaos_fleet: ChaosFleet) -> ChaosInfrastructure:
    return ChaosInfrastructure(chaos_fleet)


@pytest.fixture
def chaos_coordinator(
    directory: NodeDirectory,
    chaos_fleet: ChaosFleet,
    chaos_infrastructure: ChaosInfrastructure,
    chaos_temp_dir: Path,
) -> RunCoordinator:
    return RunCoordinator(
        directory,
        FakeConnector(chaos_fleet),
        chaos_infrastructure,
        execution_timeout_s=0.25,
        check_timeout_s=0.25,
        seed=11,
        data_dir=chaos_temp_dir,
    )


@pytest.fixture
def mixed_pattern() -> DisruptionPattern:
    """The default mixed pattern, scaled down to milliseconds."""
    return DisruptionPattern(
        name="mixed-fast",
        specs=(
            DisruptionSpec(
                disruption=hang(20, 50),
                node_filter=all_nodes,
                no_disruption_window_ms=MsRange(low=30, high=60),
            ),
            DisruptionSpec(
                disruption=kill(),
                node_filter=is_network_map | is_notary,
                no_disruption_window_ms=MsRange(low=50, high=100),
            ),
            DisruptionSpec(
                disruption=strain_cpu(parallelism=4, duration_seconds=10),
                node_filter=all_nodes,
                no_disruption_window_ms=MsRange(low=40, high=80),
            ),
        ),
    )
