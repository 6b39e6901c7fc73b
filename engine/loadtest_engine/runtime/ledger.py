"""
Run ledger for audit logging.

Append-only record of everything that happened during one run:
- Successful executions
- Execution failures and timeouts
- Check passes, violations and unreachable nodes
- Applied and failed disruptions
"""

import json
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import pandas as pd
from pydantic import BaseModel, Field

from loadtest_engine import __version__
from loadtest_engine.logging import get_logger
from loadtest_engine.runtime.results import (
    DisruptionEvent,
    DisruptionFailure,
    ExecutionFailure,
    RunResult,
)
from loadtest_engine.verification.models import CheckReport

logger = get_logger(__name__)

VIOLATION_COLUMNS = [
    "timestamp",
    "check_pass",
    "node_id",
    "field",
    "expected",
    "observed",
    "contributing_items",
]


class LedgerEntry(BaseModel):
    """Single entry in the run ledger."""

    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    entry_type: str  # success, execution_failure, check, violation, disruption, disruption_failure
    item_id: str | None = None
    node_id: str | None = None
    check_pass: int | None = None
    error: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class RunLedger:
    """
    Append-only run ledger.

    Writes to:
    - {run_dir}/manifest.json (run configuration and timing)
    - {run_dir}/ledger.jsonl (JSON lines format)
    - {run_dir}/report.json (final RunResult)
    - {run_dir}/violations.csv (one row per violation)
    """

    def __init__(
        self,
        base_dir: Path,
        run_id: str,
        manifest: dict[str, Any] | None = None,
    ):
        """
        Initialize run ledger.

        Args:
            base_dir: Base directory for runs (e.g., data)
            run_id: Run ID
            manifest: Run description stored in manifest.json
        """
        self._run_id = run_id
        self._run_dir = base_dir / "runs" / run_id
        self._run_dir.mkdir(parents=True, exist_ok=True)

        self._ledger_path = self._run_dir / "ledger.jsonl"
        self._manifest_path = self._run_dir / "manifest.json"

        self._write_manifest(manifest or {})

        logger.info("Run ledger initialized: %s", self._run_dir)

    @property
    def run_id(self) -> str:
        return self._run_id

    @property
    def run_dir(self) -> Path:
        return self._run_dir

    def _write_manifest(self, details: dict[str, Any]) -> None:
        manifest = {
            "run_id": self._run_id,
            "engine_version": __version__,
            "started_at": datetime.now(UTC).isoformat(),
            **details,
        }
        with open(self._manifest_path, "w") as f:
            json.dump(manifest, f, indent=2, default=str)

    def _append_entry(self, entry: LedgerEntry) -> None:
        with open(self._ledger_path, "a") as f:
            f.write(entry.model_dump_json() + "\n")

    def record_success(self, item_id: str, node_id: str) -> None:
        self._append_entry(LedgerEntry(entry_type="success", item_id=item_id, node_id=node_id))

    def record_execution_failure(self, failure: ExecutionFailure) -> None:
        self._append_entry(
            LedgerEntry(
                entry_type="execution_failure",
                timestamp=failure.timestamp,
                item_id=failure.item_id,
                node_id=failure.node_id,
                error=failure.error,
                metadata={
                    "attempt": failure.attempt,
                    "error_type": failure.error_type,
                    "timed_out": failure.timed_out,
                },
            )
        )

    def record_check(self, report: CheckReport) -> None:
        """Record a check pass and each of its violations."""
        self._append_entry(
            LedgerEntry(
                entry_type="check",
                check_pass=report.check_pass,
                metadata={
                    "nodes_checked": report.nodes_checked,
                    "violations": len(report.violations),
                    "unreachable": [u.node_id for u in report.unreachable],
                },
            )
        )
        for violation in report.violations:
            self._append_entry(
                LedgerEntry(
                    entry_type="violation",
                    timestamp=violation.timestamp,
                    node_id=violation.node_id,
                    check_pass=violation.check_pass,
                    metadata={
                        "field": violation.field,
                        "expected": violation.expected,
                        "observed": violation.observed,
                        "contributing_items": violation.contributing_items,
                    },
                )
            )

    def record_disruption(self, event: DisruptionEvent) -> None:
        self._append_entry(
            LedgerEntry(
                entry_type="disruption",
                timestamp=event.started_at,
                node_id=event.node_id,
                metadata={
                    "spec": event.spec,
                    "applied": event.applied,
                    "finished_at": event.finished_at.isoformat(),
                },
            )
        )

    def record_disruption_failure(self, failure: DisruptionFailure) -> None:
        self._append_entry(
            LedgerEntry(
                entry_type="disruption_failure",
                timestamp=failure.timestamp,
                node_id=failure.node_id,
                error=failure.error,
                metadata={"spec": failure.spec},
            )
        )

    def _write_violations(self, result: RunResult) -> None:
        records = [
            {
                "timestamp": v.timestamp,
                "check_pass": v.check_pass,
                "node_id": v.node_id,
                "field": v.field,
                "expected": v.expected,
                "observed": v.observed,
                "contributing_items": " ".join(v.contributing_items),
            }
            for v in result.violations
        ]
        df = pd.DataFrame(records, columns=VIOLATION_COLUMNS)
        df.to_csv(self._run_dir / "violations.csv", index=False)

    def finalize(self, result: RunResult) -> None:
        """Write the final report and close out the manifest."""
        report = result.model_dump(mode="json")
        report["passed"] = result.passed
        with open(self._run_dir / "report.json", "w") as f:
            json.dump(report, f, indent=2, default=str)

        self._write_violations(result)

        if self._manifest_path.exists():
            with open(self._manifest_path) as f:
                manifest = json.load(f)
            manifest["ended_at"] = datetime.now(UTC).isoformat()
            manifest["passed"] = result.passed
            with open(self._manifest_path, "w") as f:
                json.dump(manifest, f, indent=2, default=str)

        logger.info("Run ledger finalized: %s", self._run_dir)

    def get_entries(self, entry_type: str | None = None) -> list[LedgerEntry]:
        """Read ledger entries (for testing/debugging)."""
        if not self._ledger_path.exists():
            return []

        entries = []
        with open(self._ledger_path) as f:
            for line in f:
                if line.strip():
                    entry = LedgerEntry.model_validate_json(line)
                    if entry_type is None or entry.entry_type == entry_type:
                        entries.append(entry)
        return entries
