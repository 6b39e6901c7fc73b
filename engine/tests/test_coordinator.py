"""
Tests for the run coordinator against the in-memory fleet.
"""

import asyncio
import json
from pathlib import Path

import pandas as pd
import pytest

from loadtest_engine.domain.node import Node, NodeDirectory
from loadtest_engine.errors import StateResetError, StateSyncError
from loadtest_engine.interfaces.load_test import Effects
from loadtest_engine.interfaces.node_connection import NodeConnection
from loadtest_engine.logging import current_run_id
from loadtest_engine.runtime.coordinator import RunCoordinator
from loadtest_engine.runtime.event_bus import Event, EventBus, EventType
from loadtest_engine.workload.models import FailurePolicy, RunParameters, WorkItem
from loadtest_engine.workload.self_issue import SelfIssueTest
from tests.fixtures.fake_fleet import FakeConnector, FakeFleet, FakeInfrastructure

# =============================================================================
# Fixtures
# =============================================================================


class RetryingSelfIssue(SelfIssueTest):
    failure_policy = FailurePolicy.RETRY


class DroppingSelfIssue(SelfIssueTest):
    failure_policy = FailurePolicy.DROP


class OverPredictingSelfIssue(SelfIssueTest):
    """Predicts one extra unit for the first item only."""

    def effects(self, item: WorkItem) -> Effects:
        effects = super().effects(item)
        if item.item_id == "self_issue-000001":
            for deltas in effects.values():
                for field_name in deltas:
                    deltas[field_name] += 1
        return effects


class FailingEffectsSelfIssue(SelfIssueTest):
    """Executes normally but cannot compute its predicted effect."""

    def effects(self, item: WorkItem) -> Effects:
        raise KeyError("missing currency")


class StallingReconnector(FakeConnector):
    """Connects once per node; later connects to `stalled` never return."""

    def __init__(self, fleet: FakeFleet, stalled: str):
        super().__init__(fleet)
        self._stalled = stalled
        self._connected: set[str] = set()

    async def connect(self, node: Node) -> NodeConnection:
        if node.identity == self._stalled and node.identity in self._connected:
            await asyncio.Event().wait()
        self._connected.add(node.identity)
        return await super().connect(node)


def params(
    parallelism: int = 4,
    generate_count: int = 40,
    gather_frequency: int = 10,
    clear: bool = False,
) -> RunParameters:
    return RunParameters(
        parallelism=parallelism,
        generate_count=generate_count,
        gather_frequency=gather_frequency,
        clear_database_before_run=clear,
    )


def total_issued(fleet: FakeFleet) -> int:
    return sum(sum(totals.values()) for totals in fleet.cash.values())


# =============================================================================
# Basic runs
# =============================================================================


class TestRunBasics:
    """Tests for complete runs without faults."""

    @pytest.mark.asyncio
    async def test_clean_run_passes(
        self, coordinator: RunCoordinator, self_issue: SelfIssueTest, fleet: FakeFleet
    ) -> None:
        result = await coordinator.run(self_issue, params())

        assert result.passed
        assert result.succeeded == 40
        assert result.attempted == 40
        assert result.execution_failures == []
        assert result.violations == []
        assert len(fleet.calls) == 40
        assert result.pattern == "control"
        assert result.finished_at is not None

    @pytest.mark.asyncio
    async def test_checks_every_gather_frequency(
        self, coordinator: RunCoordinator, self_issue: SelfIssueTest
    ) -> None:
        result = await coordinator.run(self_issue, params(generate_count=40, gather_frequency=10))

        # Triggers at 10, 20 and 30 successes plus the final pass
        assert result.checks_run + result.checks_coalesced == 4
        assert result.checks_run >= 1

    @pytest.mark.asyncio
    async def test_never_exceeds_parallelism(
        self, coordinator: RunCoordinator, self_issue: SelfIssueTest, fleet: FakeFleet
    ) -> None:
        fleet.call_delay_s = 0.005

        result = await coordinator.run(self_issue, params(parallelism=3, generate_count=60))

        assert result.succeeded == 60
        assert 1 <= fleet.max_in_flight <= 3

    @pytest.mark.asyncio
    async def test_zero_generate_count_returns_immediately(
        self,
        coordinator: RunCoordinator,
        self_issue: SelfIssueTest,
        fleet: FakeFleet,
        infrastructure: FakeInfrastructure,
    ) -> None:
        result = await coordinator.run(self_issue, params(generate_count=0, clear=True))

        assert result.passed
        assert result.succeeded == 0
        assert result.attempted == 0
        assert result.violations == []
        assert result.execution_failures == []
        assert result.checks_run == 0
        assert fleet.connects == 0
        assert fleet.fetches == 0
        assert infrastructure.calls == []

    @pytest.mark.asyncio
    async def test_inherited_state_is_resynced(
        self, coordinator: RunCoordinator, self_issue: SelfIssueTest, fleet: FakeFleet
    ) -> None:
        fleet.cash["bank-a"] = {"USD": 5000, "GBP": 12}

        result = await coordinator.run(self_issue, params())

        assert result.passed
        assert fleet.cash["bank-a"]["GBP"] == 12

    @pytest.mark.asyncio
    async def test_run_id_context_cleared(
        self, coordinator: RunCoordinator, self_issue: SelfIssueTest
    ) -> None:
        result = await coordinator.run(self_issue, params(generate_count=5))

        assert result.run_id.startswith("self_issue_")
        assert current_run_id.get() is None

    @pytest.mark.asyncio
    async def test_coordinator_is_reusable(
        self, coordinator: RunCoordinator, self_issue: SelfIssueTest, fleet: FakeFleet
    ) -> None:
        first = await coordinator.run(self_issue, params(generate_count=10))
        second = await coordinator.run(self_issue, params(generate_count=10))

        assert first.run_id != second.run_id
        assert first.passed and second.passed
        assert len(fleet.calls) == 20


# =============================================================================
# Failures during the run
# =============================================================================


class TestRunFailures:
    """Execution failures are recorded, never fatal."""

    @pytest.mark.asyncio
    async def test_timeouts_recorded_and_count_still_reached(
        self, coordinator: RunCoordinator, self_issue: SelfIssueTest, fleet: FakeFleet
    ) -> None:
        fleet.hang_next(2)

        result = await coordinator.run(self_issue, params(generate_count=20))

        assert result.succeeded == 20
        assert len(result.execution_failures) == 2
        assert all(failure.timed_out for failure in result.execution_failures)
        assert result.replacements == 2
        assert result.passed

    @pytest.mark.asyncio
    async def test_errors_recorded_with_item_and_node(
        self, coordinator: RunCoordinator, self_issue: SelfIssueTest, fleet: FakeFleet
    ) -> None:
        fleet.fail_next(3, error=RuntimeError("flow failed"))

        result = await coordinator.run(self_issue, params(generate_count=20))

        assert result.succeeded == 20
        assert len(result.execution_failures) == 3
        failure = result.execution_failures[0]
        assert failure.error_type == "RuntimeError"
        assert failure.error == "flow failed"
        assert failure.item_id.startswith("self_issue-")
        assert failure.node_id in {"netmap", "bank-a", "bank-b"}
        assert not failure.timed_out

    @pytest.mark.asyncio
    async def test_retry_policy_reexecutes_same_item(
        self, coordinator: RunCoordinator, fleet: FakeFleet
    ) -> None:
        fleet.fail_next(1)

        result = await coordinator.run(RetryingSelfIssue(), params(generate_count=10))

        assert result.succeeded == 10
        assert result.attempted == 11
        assert result.retries == 1
        assert result.replacements == 0

    @pytest.mark.asyncio
    async def test_drop_policy_loses_failed_items(
        self, coordinator: RunCoordinator, fleet: FakeFleet
    ) -> None:
        fleet.fail_next(2)

        result = await coordinator.run(DroppingSelfIssue(), params(generate_count=10))

        assert result.succeeded == 8
        assert result.attempted == 10
        assert result.passed

    @pytest.mark.asyncio
    async def test_mismatch_is_recorded_not_fatal(
        self, coordinator: RunCoordinator, fleet: FakeFleet
    ) -> None:
        result = await coordinator.run(
            OverPredictingSelfIssue(),
            params(generate_count=20, gather_frequency=100),
        )

        assert not result.passed
        assert result.succeeded == 20
        assert result.checks_run == 1
        assert len(result.violations) == 1
        violation = result.violations[0]
        assert violation.expected == violation.observed + 1
        assert "self_issue-000001" in violation.contributing_items

    @pytest.mark.asyncio
    async def test_unfoldable_effects_recorded_not_raised(
        self, coordinator: RunCoordinator, fleet: FakeFleet
    ) -> None:
        result = await coordinator.run(
            FailingEffectsSelfIssue(),
            params(parallelism=2, generate_count=4, gather_frequency=10),
        )

        assert result.succeeded == 0
        assert len(fleet.calls) == 4
        assert len(result.execution_failures) == 4
        assert {failure.error_type for failure in result.execution_failures} == {"KeyError"}
        assert result.replacements == 0

    @pytest.mark.asyncio
    async def test_stalled_reconnect_times_out(
        self,
        directory: NodeDirectory,
        infrastructure: FakeInfrastructure,
        self_issue: SelfIssueTest,
        fleet: FakeFleet,
        tmp_path: Path,
    ) -> None:
        fleet.fail_next(1, node_id="bank-a")
        coordinator = RunCoordinator(
            directory,
            StallingReconnector(fleet, stalled="bank-a"),
            infrastructure,
            execution_timeout_s=0.1,
            check_timeout_s=0.1,
            seed=7,
            data_dir=tmp_path,
        )

        result = await asyncio.wait_for(
            coordinator.run(self_issue, params(generate_count=30, gather_frequency=100)),
            timeout=10,
        )

        assert result.succeeded == 30
        stalled = [f for f in result.execution_failures if f.node_id == "bank-a" and f.timed_out]
        assert stalled
        assert result.replacements == len(result.execution_failures)


# =============================================================================
# Setup failures
# =============================================================================


class TestSetupFailures:
    """Setup failures abort the run before any work starts."""

    @pytest.mark.asyncio
    async def test_reset_failure_is_fatal(
        self,
        coordinator: RunCoordinator,
        self_issue: SelfIssueTest,
        fleet: FakeFleet,
        infrastructure: FakeInfrastructure,
    ) -> None:
        infrastructure.reset_failing.add("bank-a")

        with pytest.raises(StateResetError) as exc_info:
            await coordinator.run(self_issue, params(clear=True))

        assert set(exc_info.value.failures) == {"bank-a"}
        assert fleet.calls == []
        assert current_run_id.get() is None

    @pytest.mark.asyncio
    async def test_reset_clears_state_before_work(
        self,
        coordinator: RunCoordinator,
        self_issue: SelfIssueTest,
        fleet: FakeFleet,
        infrastructure: FakeInfrastructure,
    ) -> None:
        fleet.cash["bank-b"] = {"USD": 999}

        result = await coordinator.run(self_issue, params(generate_count=10, clear=True))

        assert [call.operation for call in infrastructure.calls] == ["reset_state"] * 4
        assert result.passed
        assert total_issued(fleet) == sum(params_amount for _, _, p in fleet.calls for params_amount in [p["amount"]])

    @pytest.mark.asyncio
    async def test_unreachable_node_at_sync_is_fatal(
        self, coordinator: RunCoordinator, self_issue: SelfIssueTest, fleet: FakeFleet
    ) -> None:
        fleet.unreachable.add("notary")

        with pytest.raises(StateSyncError) as exc_info:
            await coordinator.run(self_issue, params())

        assert set(exc_info.value.failures) == {"notary"}
        assert fleet.calls == []


# =============================================================================
# Ledger and events
# =============================================================================


class TestRunArtefacts:
    """Tests for run ledger files and lifecycle events."""

    @pytest.mark.asyncio
    async def test_ledger_files_written(
        self, coordinator: RunCoordinator, fleet: FakeFleet, tmp_path: Path
    ) -> None:
        result = await coordinator.run(
            OverPredictingSelfIssue(),
            params(generate_count=10, gather_frequency=100),
        )

        run_dir = tmp_path / "runs" / result.run_id
        manifest = json.loads((run_dir / "manifest.json").read_text())
        assert manifest["test"] == "self_issue"
        assert manifest["parameters"]["generate_count"] == 10
        assert manifest["passed"] is False
        assert "ended_at" in manifest

        report = json.loads((run_dir / "report.json").read_text())
        assert report["succeeded"] == 10
        assert report["passed"] is False

        violations = pd.read_csv(run_dir / "violations.csv")
        assert len(violations) == 1
        assert violations.loc[0, "field"] == "cash.USD"

        lines = (run_dir / "ledger.jsonl").read_text().splitlines()
        entry_types = [json.loads(line)["entry_type"] for line in lines]
        assert entry_types.count("success") == 10
        assert entry_types.count("violation") == 1

    @pytest.mark.asyncio
    async def test_lifecycle_events(
        self,
        directory: NodeDirectory,
        connector: FakeConnector,
        infrastructure: FakeInfrastructure,
        self_issue: SelfIssueTest,
        fleet: FakeFleet,
    ) -> None:
        bus = EventBus()
        received: list[Event] = []

        async def handler(event: Event) -> None:
            received.append(event)

        await bus.subscribe(None, handler)
        fleet.fail_next(1)
        coordinator = RunCoordinator(
            directory,
            connector,
            infrastructure,
            execution_timeout_s=0.5,
            check_timeout_s=0.5,
            event_bus=bus,
        )

        result = await coordinator.run(self_issue, params(generate_count=10, gather_frequency=5))

        types = [event.type for event in received]
        assert types[0] == EventType.RUN_STARTED
        assert types[-1] == EventType.RUN_COMPLETED
        assert EventType.CHECK_COMPLETED in types
        assert types.count(EventType.WORK_FAILED) == 1
        assert {event.run_id for event in received} == {result.run_id}
        assert received[-1].data["passed"] is True

