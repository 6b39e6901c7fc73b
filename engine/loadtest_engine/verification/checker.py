"""
Invariant checker.

Fetches each node's real state and diffs it against the predicted state.
The remote node is the source of truth, but mismatches are diagnostic
only: the checker never corrects the prediction.
"""

import asyncio
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from loadtest_engine.domain.node import Node, NodeDirectory
from loadtest_engine.interfaces.load_test import LoadTest
from loadtest_engine.logging import get_logger
from loadtest_engine.runtime.connections import ConnectionPool
from loadtest_engine.verification.models import CheckReport, UnreachableNode, Violation
from loadtest_engine.workload.state import PredictedStateModel

logger = get_logger(__name__)


def diff_state(
    node_id: str,
    expected: Mapping[str, int],
    observed: Mapping[str, int],
    check_pass: int = 0,
    contributing_items: list[str] | None = None,
) -> list[Violation]:
    """
    Compare predicted and observed fields of one node.

    Tracked values are additive aggregates, so a field absent on one side
    compares as zero; the raw (possibly None) values are kept in the
    violation.
    """
    violations = []
    for field_name in sorted(set(expected) | set(observed)):
        want = expected.get(field_name)
        got = observed.get(field_name)
        if (want or 0) != (got or 0):
            violations.append(
                Violation(
                    node_id=node_id,
                    field=field_name,
                    expected=want,
                    observed=got,
                    check_pass=check_pass,
                    contributing_items=list(contributing_items or []),
                )
            )
    return violations


class InvariantChecker:
    """
    Periodic predicted-vs-observed comparison across the fleet.

    Nodes are checked concurrently. Each node is held in the predicted
    state model for the duration of its query, so its comparison sees no
    half-applied work.
    """

    def __init__(
        self,
        test: LoadTest,
        connections: ConnectionPool,
        timeout_s: float,
    ):
        """
        Initialize checker.

        Args:
            test: Test kind (maps raw snapshots to tracked fields)
            connections: Connection pool for the fleet
            timeout_s: Bound on each per-node query
        """
        self._test = test
        self._connections = connections
        self._timeout_s = timeout_s
        self._passes = 0

    @property
    def passes(self) -> int:
        """Number of passes started."""
        return self._passes

    async def fetch_observed(self, node: Node) -> dict[str, int]:
        """
        Fetch a node's tracked fields, bounded by the query timeout.

        Raises:
            asyncio.TimeoutError: If the query exceeds the timeout
            Exception: Any connectivity or snapshot failure
        """
        return await asyncio.wait_for(self._fetch(node), timeout=self._timeout_s)

    async def _fetch(self, node: Node) -> dict[str, int]:
        connection = await self._connections.get(node)
        raw: Mapping[str, Any] = await connection.fetch_state()
        return self._test.observe(node, raw)

    async def check(
        self,
        predicted: PredictedStateModel,
        directory: NodeDirectory,
    ) -> CheckReport:
        """
        Run one pass over every node.

        Unreachable nodes are recorded and skipped; the pass always
        completes for the reachable ones.

        Args:
            predicted: Predicted state model (read only)
            directory: Fleet to check

        Returns:
            CheckReport with violations and unreachable nodes
        """
        self._passes += 1
        report = CheckReport(check_pass=self._passes)

        outcomes = await asyncio.gather(
            *(self._check_node(report.check_pass, predicted, node) for node in directory)
        )
        for violations, unreachable in outcomes:
            if unreachable is not None:
                report.unreachable.append(unreachable)
            else:
                report.nodes_checked += 1
                report.violations.extend(violations)

        report.finished_at = datetime.now(UTC)

        if report.violations:
            logger.error(
                "Check #%d: %d violation(s) across %d node(s): %s",
                report.check_pass,
                len(report.violations),
                len({v.node_id for v in report.violations}),
                "; ".join(v.describe() for v in report.violations[:5]),
            )
        else:
            logger.info(
                "Check #%d: %d node(s) consistent, %d unreachable",
                report.check_pass,
                report.nodes_checked,
                len(report.unreachable),
            )
        return report

    async def _check_node(
        self,
        check_pass: int,
        predicted: PredictedStateModel,
        node: Node,
    ) -> tuple[list[Violation], UnreachableNode | None]:
        async with predicted.hold(node.identity) as expected:
            try:
                observed = await self.fetch_observed(node)
            except asyncio.TimeoutError:
                await self._connections.invalidate(node.identity)
                logger.warning("Check #%d: %s timed out after %.1fs", check_pass, node.identity, self._timeout_s)
                return [], UnreachableNode(
                    node_id=node.identity,
                    error=f"query timed out after {self._timeout_s}s",
                    timed_out=True,
                    check_pass=check_pass,
                )
            except Exception as e:
                await self._connections.invalidate(node.identity)
                logger.warning("Check #%d: %s unreachable: %s", check_pass, node.identity, e)
                return [], UnreachableNode(
                    node_id=node.identity,
                    error=f"{type(e).__name__}: {e}",
                    check_pass=check_pass,
                )

        violations = diff_state(
            node.identity,
            expected.values,
            observed,
            check_pass=check_pass,
            contributing_items=list(expected.contributors),
        )
        return violations, None
