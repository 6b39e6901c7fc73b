"""
Registry of test kinds addressable by name from configuration.
"""

from collections.abc import Callable

from loadtest_engine.interfaces.load_test import LoadTest
from loadtest_engine.workload.self_issue import SelfIssueTest

TEST_KINDS: dict[str, Callable[[], LoadTest]] = {
    SelfIssueTest.name: SelfIssueTest,
}


def create_test(name: str) -> LoadTest:
    """
    Instantiate a registered test kind.

    Raises:
        KeyError: If no test kind has this name
    """
    try:
        factory = TEST_KINDS[name]
    except KeyError:
        raise KeyError(f"Unknown test kind {name!r}. Available: {sorted(TEST_KINDS)}") from None
    return factory()
