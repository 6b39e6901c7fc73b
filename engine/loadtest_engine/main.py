"""
Load test runner entry point.

Usage:
    loadtest path/to/loadtest.yaml
    python -m loadtest_engine.main path/to/loadtest.yaml

Exit codes: 0 every run passed, 1 at least one run failed, 2 setup failure.
"""

import argparse
import asyncio
import sys
from pathlib import Path

from loadtest_engine import __version__
from loadtest_engine.config import LoadTestConfiguration, get_settings, load_configuration
from loadtest_engine.domain.node import NodeDirectory
from loadtest_engine.errors import ConfigurationError, SetupError
from loadtest_engine.interfaces.bindings import resolve_bindings
from loadtest_engine.logging import get_logger, setup_logging
from loadtest_engine.runtime.coordinator import RunCoordinator
from loadtest_engine.runtime.event_bus import EventBus, ProgressLog
from loadtest_engine.runtime.results import RunResult
from loadtest_engine.runtime.suite import (
    LoadTestPlan,
    default_plans,
    plans_from_config,
    run_load_tests,
    summarize,
)

logger = get_logger(__name__)

EXIT_PASSED = 0
EXIT_FAILED = 1
EXIT_SETUP_FAILURE = 2


def build_plans(config: LoadTestConfiguration) -> list[LoadTestPlan]:
    """Plans from the configuration, or the built-in defaults."""
    if config.tests is None:
        return default_plans()
    try:
        return plans_from_config(config.tests)
    except KeyError as e:
        raise ConfigurationError(str(e.args[0])) from e


async def run_suite(config: LoadTestConfiguration, data_dir: Path) -> list[RunResult]:
    """Run every configured plan against the configured fleet."""
    directory = NodeDirectory.from_hosts(config.node_hosts, config.rpc_port)
    plans = build_plans(config)
    bindings = resolve_bindings(config)
    event_bus = EventBus()
    await ProgressLog().attach(event_bus)

    coordinator = RunCoordinator(
        directory,
        bindings.connector,
        bindings.infrastructure,
        execution_timeout_s=config.execution_timeout_s,
        check_timeout_s=config.check_timeout_s,
        seed=config.seed,
        data_dir=data_dir,
        config_snapshot=config.get_redacted_config(),
        event_bus=event_bus,
    )
    logger.info(
        "Load testing %d node(s): %s",
        len(directory),
        ", ".join(directory.identities),
    )
    return await run_load_tests(plans, coordinator)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="loadtest",
        description="Run load and disruption tests against a ledger fleet",
    )
    parser.add_argument("config", type=Path, help="Path to the run configuration (YAML)")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    args = parser.parse_args(argv)

    settings = get_settings()
    setup_logging(level=settings.log_level, json_output=settings.json_logs)

    try:
        config = load_configuration(args.config)
        results = asyncio.run(run_suite(config, settings.data_dir))
    except SetupError as e:
        logger.critical("Setup failed: %s", e)
        return EXIT_SETUP_FAILURE

    summary = summarize(results)
    summary_path = settings.data_dir / "suite_summary.csv"
    summary.to_csv(summary_path, index=False)

    print(f"\n{'=' * 60}")
    print("LOAD TEST SUMMARY")
    print(f"{'=' * 60}")
    if summary.empty:
        print("No runs")
    else:
        print(summary[["test", "pattern", "succeeded", "violations", "execution_failures", "passed"]].to_string(index=False))
    print(f"\nSummary written to {summary_path}")

    failed = [result for result in results if not result.passed]
    if failed:
        logger.error("%d of %d run(s) failed", len(failed), len(results))
        return EXIT_FAILED
    logger.info("All %d run(s) passed", len(results))
    return EXIT_PASSED


if __name__ == "__main__":
    sys.exit(main())
