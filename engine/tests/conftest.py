"""
Pytest configuration and shared fixtures.
"""

import os
from collections.abc import Generator
from pathlib import Path

import pytest

from loadtest_engine.domain.node import NodeDirectory
from loadtest_engine.runtime.coordinator import RunCoordinator
from loadtest_engine.workload.self_issue import SelfIssueTest
from tests.fixtures.fake_fleet import (
    FakeConnector,
    FakeFleet,
    FakeInfrastructure,
    make_directory,
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Ensure local LOADTEST_* variables do not leak into tests."""
    from loadtest_engine.config import get_settings

    for var in list(os.environ):
        if var.startswith("LOADTEST_"):
            monkeypatch.delenv(var, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def directory() -> NodeDirectory:
    return make_directory()


@pytest.fixture
def fleet(directory: NodeDirectory) -> FakeFleet:
    return FakeFleet(directory)


@pytest.fixture
def connector(fleet: FakeFleet) -> FakeConnector:
    return FakeConnector(fleet)


@pytest.fixture
def infrastructure(fleet: FakeFleet) -> FakeInfrastructure:
    return FakeInfrastructure(fleet)


@pytest.fixture
def self_issue() -> SelfIssueTest:
    return SelfIssueTest()


@pytest.fixture
def coordinator(
    directory: NodeDirectory,
    connector: FakeConnector,
    infrastructure: FakeInfrastructure,
    tmp_path: Path,
) -> RunCoordinator:
    """Coordinator over the fake fleet with short timeouts and a fixed seed."""
    return RunCoordinator(
        directory,
        connector,
        infrastructure,
        execution_timeout_s=0.5,
        check_timeout_s=0.5,
        seed=7,
        data_dir=tmp_path,
    )
