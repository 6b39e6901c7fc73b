"""
Run coordinator.

Orchestrates one (test, RunParameters, DisruptionPattern) execution:
- Optional pre-run state reset, then a baseline sync of predicted state
- A pool of `parallelism` workers pulling WorkItems from the generator
- A checker pass every `gather_frequency` successes (coalesced, never overlapping)
- Disruption loops running alongside the workers
- Cooperative shutdown and a final check pass

Only SetupError escapes run(); everything else ends up in the RunResult.
"""

import asyncio
import random
from pathlib import Path
from typing import Any

from loadtest_engine.disruption.actuator import DisruptionActuator
from loadtest_engine.disruption.engine import DisruptionEngine
from loadtest_engine.disruption.models import DisruptionPattern
from loadtest_engine.domain.node import NodeDirectory
from loadtest_engine.errors import SetupError, StateResetError, StateSyncError
from loadtest_engine.interfaces.infrastructure import NodeInfrastructure
from loadtest_engine.interfaces.load_test import LoadTest
from loadtest_engine.interfaces.node_connection import NodeConnector
from loadtest_engine.logging import clear_run_id, get_logger, set_run_id
from loadtest_engine.runtime.connections import ConnectionPool
from loadtest_engine.runtime.event_bus import Event, EventBus, EventType
from loadtest_engine.runtime.ledger import RunLedger
from loadtest_engine.runtime.results import ExecutionFailure, RunRecorder, RunResult
from loadtest_engine.runtime.run_context import generate_run_id
from loadtest_engine.verification.checker import InvariantChecker
from loadtest_engine.workload.generator import WorkloadGenerator
from loadtest_engine.workload.models import RunParameters, WorkItem
from loadtest_engine.workload.state import PredictedStateModel

logger = get_logger(__name__)


class _ActiveRun:
    """Mutable state shared by the workers of one run."""

    def __init__(
        self,
        test: LoadTest,
        parameters: RunParameters,
        generator: WorkloadGenerator,
        predicted: PredictedStateModel,
        checker: InvariantChecker,
        pool: ConnectionPool,
        recorder: RunRecorder,
    ):
        self.test = test
        self.parameters = parameters
        self.generator = generator
        self.predicted = predicted
        self.checker = checker
        self.pool = pool
        self.recorder = recorder
        self.in_flight = 0
        self.progress = asyncio.Condition()
        self.check_task: asyncio.Task[None] | None = None

    @property
    def successes(self) -> int:
        return self.recorder.result.succeeded

    @property
    def target_reached(self) -> bool:
        return self.successes >= self.parameters.generate_count


class RunCoordinator:
    """
    Drives runs against one fleet.

    The coordinator is reusable: every run gets a fresh generator,
    predicted state, connection pool and result.
    """

    def __init__(
        self,
        directory: NodeDirectory,
        connector: NodeConnector,
        infrastructure: NodeInfrastructure,
        *,
        execution_timeout_s: float = 30.0,
        check_timeout_s: float = 30.0,
        seed: int | None = None,
        data_dir: Path | None = None,
        event_bus: EventBus | None = None,
        config_snapshot: dict[str, Any] | None = None,
    ):
        """
        Initialize coordinator.

        Args:
            directory: Target fleet
            connector: Node connectivity collaborator
            infrastructure: Reset and disruption collaborator
            execution_timeout_s: Bound on each WorkItem execution
            check_timeout_s: Bound on each per-node checker query
            seed: Seed for all run randomness (None for nondeterministic)
            data_dir: Where run ledgers go (None disables the ledger)
            event_bus: Optional bus for lifecycle events
            config_snapshot: Redacted configuration for run manifests
        """
        self._directory = directory
        self._connector = connector
        self._infrastructure = infrastructure
        self._execution_timeout_s = execution_timeout_s
        self._check_timeout_s = check_timeout_s
        self._rng = random.Random(seed)
        self._data_dir = data_dir
        self._event_bus = event_bus
        self._config_snapshot = config_snapshot or {}

    @property
    def directory(self) -> NodeDirectory:
        return self._directory

    async def run(
        self,
        test: LoadTest,
        parameters: RunParameters,
        pattern: DisruptionPattern | None = None,
    ) -> RunResult:
        """
        Execute one run.

        Args:
            test: Test kind to generate load for
            parameters: Run parameters
            pattern: Disruptions active during the run (None or empty for control)

        Returns:
            RunResult for the run

        Raises:
            SetupError: If the pre-run reset or baseline sync fails
        """
        pattern = pattern if pattern is not None else DisruptionPattern()
        run_id = generate_run_id(test.name)
        set_run_id(run_id)
        try:
            ledger = self._open_ledger(run_id, test, parameters, pattern)
            recorder = RunRecorder(run_id, test.name, pattern.label, parameters, ledger)

            if parameters.generate_count == 0:
                logger.info("Run %s: generate_count is 0, nothing to do", run_id)
                return self._finish(recorder)

            logger.info(
                "Run %s started: %s x%d, parallelism %d, gather every %d, pattern %s",
                run_id,
                test.name,
                parameters.generate_count,
                parameters.parallelism,
                parameters.gather_frequency,
                pattern.label,
            )
            await self._publish(EventType.RUN_STARTED, run_id, {
                "test": test.name,
                "pattern": pattern.label,
                "parameters": parameters.model_dump(),
            })

            pool = ConnectionPool(self._connector, self._directory)
            try:
                generator = await self._execute(test, parameters, pattern, pool, recorder)
            except SetupError as e:
                logger.critical("Run %s aborted: %s", run_id, e)
                await self._publish(EventType.RUN_ABORTED, run_id, {"error": str(e)})
                raise
            finally:
                await pool.close_all()

            result = self._finish(recorder, generator)
            logger.info(
                "Run %s %s: %d/%d succeeded, %d failure(s), %d check(s), %d violation(s)",
                run_id,
                "PASSED" if result.passed else "FAILED",
                result.succeeded,
                parameters.generate_count,
                len(result.execution_failures),
                result.checks_run,
                len(result.violations),
            )
            await self._publish(EventType.RUN_COMPLETED, run_id, result.summary())
            return result
        finally:
            clear_run_id()

    def _open_ledger(
        self,
        run_id: str,
        test: LoadTest,
        parameters: RunParameters,
        pattern: DisruptionPattern,
    ) -> RunLedger | None:
        if self._data_dir is None:
            return None
        return RunLedger(
            self._data_dir,
            run_id,
            manifest={
                "test": test.name,
                "pattern": pattern.label,
                "disruptions": [spec.model_dump(mode="json") for spec in pattern.specs],
                "parameters": parameters.model_dump(),
                "nodes": self._directory.identities,
                "config": self._config_snapshot,
            },
        )

    def _finish(self, recorder: RunRecorder, generator: WorkloadGenerator | None = None) -> RunResult:
        if generator is None:
            result = recorder.finish()
        else:
            result = recorder.finish(generator.retries, generator.replacements)
        if recorder.ledger is not None:
            recorder.ledger.finalize(result)
        return result

    async def _execute(
        self,
        test: LoadTest,
        parameters: RunParameters,
        pattern: DisruptionPattern,
        pool: ConnectionPool,
        recorder: RunRecorder,
    ) -> WorkloadGenerator:
        if parameters.clear_database_before_run:
            await self._reset_state(pool)

        predicted = PredictedStateModel(self._directory.identities)
        checker = InvariantChecker(test, pool, self._check_timeout_s)
        await self._sync_baseline(checker, predicted)

        generator = WorkloadGenerator(
            test,
            self._directory,
            parameters.generate_count,
            rng=random.Random(self._rng.getrandbits(64)),
        )
        run = _ActiveRun(test, parameters, generator, predicted, checker, pool, recorder)

        disruptions = DisruptionEngine(
            pattern,
            self._directory,
            DisruptionActuator(self._infrastructure, random.Random(self._rng.getrandbits(64))),
            recorder,
            rng=random.Random(self._rng.getrandbits(64)),
            event_bus=self._event_bus,
        )

        worker_count = min(parameters.parallelism, parameters.generate_count)
        disruptions.start()
        try:
            workers = [
                asyncio.create_task(self._worker(run, index), name=f"worker-{index}")
                for index in range(worker_count)
            ]
            try:
                await asyncio.gather(*workers)
            except BaseException:
                for worker in workers:
                    worker.cancel()
                await asyncio.gather(*workers, return_exceptions=True)
                raise
        finally:
            await disruptions.stop()

        if run.check_task is not None:
            await run.check_task
        await self._run_check(run)
        return generator

    # =========================================================================
    # Setup
    # =========================================================================

    async def _reset_state(self, pool: ConnectionPool) -> None:
        """Reset every node's persisted state. Any failure aborts the run."""
        logger.info("Resetting state on %d node(s)", len(self._directory))
        nodes = self._directory.nodes
        outcomes = await asyncio.gather(
            *(self._infrastructure.reset_state(node) for node in nodes),
            return_exceptions=True,
        )
        failures = {
            node.identity: f"{type(outcome).__name__}: {outcome}"
            for node, outcome in zip(nodes, outcomes)
            if isinstance(outcome, BaseException)
        }
        # Reset restarts the node process; cached connections are stale
        await pool.invalidate_all()
        if failures:
            raise StateResetError(failures)

    async def _sync_baseline(self, checker: InvariantChecker, predicted: PredictedStateModel) -> None:
        """Seed predicted state from a snapshot of every node."""
        nodes = self._directory.nodes
        outcomes = await asyncio.gather(
            *(checker.fetch_observed(node) for node in nodes),
            return_exceptions=True,
        )
        failures = {}
        for node, outcome in zip(nodes, outcomes):
            if isinstance(outcome, BaseException):
                failures[node.identity] = f"{type(outcome).__name__}: {outcome}"
            else:
                predicted.seed(node.identity, outcome)
        if failures:
            raise StateSyncError(failures)
        logger.info("Predicted state synced from %d node(s)", len(nodes))

    # =========================================================================
    # Workers
    # =========================================================================

    async def _next_item(self, run: _ActiveRun) -> WorkItem | None:
        """
        Take the next item, or None once the run is done.

        With nothing to hand out while items are still in flight, waits:
        a failure in flight may requeue or replace an item.
        """
        async with run.progress:
            while True:
                if run.target_reached:
                    return None
                item = run.generator.next_item()
                if item is not None:
                    run.in_flight += 1
                    return item
                if run.in_flight == 0:
                    return None
                await run.progress.wait()

    async def _item_done(self, run: _ActiveRun) -> None:
        async with run.progress:
            run.in_flight -= 1
            run.progress.notify_all()

    async def _worker(self, run: _ActiveRun, index: int) -> None:
        logger.debug("Worker %d started", index)
        while True:
            item = await self._next_item(run)
            if item is None:
                break
            try:
                await self._execute_item(run, item)
            finally:
                await self._item_done(run)
        logger.debug("Worker %d finished", index)

    async def _attempt(self, run: _ActiveRun, item: WorkItem) -> None:
        connection = await run.pool.get(item.primary_target)
        await run.test.execute(item, connection)

    async def _execute_item(self, run: _ActiveRun, item: WorkItem) -> None:
        run.recorder.record_attempt()
        await run.predicted.admit(item.targets)

        try:
            # Connecting counts against the execution timeout
            await asyncio.wait_for(self._attempt(run, item), timeout=self._execution_timeout_s)
        except asyncio.TimeoutError:
            await run.predicted.release(item.targets)
            await self._record_failure(
                run,
                item,
                "TimeoutError",
                f"execution timed out after {self._execution_timeout_s}s",
                timed_out=True,
            )
            return
        except Exception as e:
            await run.predicted.release(item.targets)
            await self._record_failure(run, item, type(e).__name__, str(e))
            return

        try:
            effects = run.test.effects(item)
        except Exception as e:
            await run.predicted.release(item.targets)
            self._record_unfoldable(run, item, e)
            return

        try:
            await run.predicted.commit(item.item_id, item.targets, effects)
        except ValueError as e:
            self._record_unfoldable(run, item, e)
            return

        successes = run.recorder.record_success(item.item_id, item.primary_target)
        logger.debug("Item %s succeeded on %s (%d)", item.item_id, item.primary_target, successes)
        if successes % run.parameters.gather_frequency == 0 and not run.target_reached:
            self._trigger_check(run)

    def _record_unfoldable(self, run: _ActiveRun, item: WorkItem, error: Exception) -> None:
        """Executed but its effect cannot be folded in; not retried."""
        logger.error("Item %s: %s: %s", item.item_id, type(error).__name__, error)
        run.recorder.record_execution_failure(
            ExecutionFailure(
                item_id=item.item_id,
                node_id=item.primary_target,
                attempt=item.attempt,
                error_type=type(error).__name__,
                error=str(error),
            )
        )

    async def _record_failure(
        self,
        run: _ActiveRun,
        item: WorkItem,
        error_type: str,
        error: str,
        timed_out: bool = False,
    ) -> None:
        failure = ExecutionFailure(
            item_id=item.item_id,
            node_id=item.primary_target,
            attempt=item.attempt,
            error_type=error_type,
            error=error,
            timed_out=timed_out,
        )
        logger.warning(
            "Item %s failed on %s (attempt %d): %s",
            item.item_id,
            item.primary_target,
            item.attempt,
            error,
        )
        run.recorder.record_execution_failure(failure)
        await run.pool.invalidate(item.primary_target)
        run.generator.report_failure(item)
        await self._publish(EventType.WORK_FAILED, run.recorder.result.run_id, failure.model_dump(mode="json"))

    # =========================================================================
    # Checks
    # =========================================================================

    def _trigger_check(self, run: _ActiveRun) -> None:
        """Start a check pass unless one is already in flight."""
        if run.check_task is not None and not run.check_task.done():
            run.recorder.record_coalesced_check()
            logger.debug("Check already in flight; trigger coalesced")
            return
        run.check_task = asyncio.create_task(self._run_check(run), name="invariant-check")

    async def _run_check(self, run: _ActiveRun) -> None:
        run_id = run.recorder.result.run_id
        await self._publish(EventType.CHECK_STARTED, run_id, {"check_pass": run.checker.passes + 1})
        report = await run.checker.check(run.predicted, self._directory)
        run.recorder.record_check(report)
        for violation in report.violations:
            await self._publish(EventType.VIOLATION_DETECTED, run_id, violation.model_dump(mode="json"))
        await self._publish(EventType.CHECK_COMPLETED, run_id, {
            "check_pass": report.check_pass,
            "nodes_checked": report.nodes_checked,
            "violations": len(report.violations),
            "unreachable": [u.node_id for u in report.unreachable],
        })

    async def _publish(self, event_type: EventType, run_id: str, data: dict[str, Any]) -> None:
        if self._event_bus is not None:
            await self._event_bus.publish(Event(type=event_type, data=data, run_id=run_id))
