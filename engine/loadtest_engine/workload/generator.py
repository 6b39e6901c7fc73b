"""
Workload generator.

Produces the bounded sequence of WorkItems for one run of a test. A fresh
generator is built per run. Generation only builds descriptors; it never
waits on node availability.
"""

import random
from collections import deque
from collections.abc import Iterator
from dataclasses import replace
from typing import TYPE_CHECKING

from loadtest_engine.domain.node import NodeDirectory
from loadtest_engine.logging import get_logger
from loadtest_engine.workload.models import FailurePolicy, WorkItem

if TYPE_CHECKING:
    from loadtest_engine.interfaces.load_test import LoadTest

logger = get_logger(__name__)


class WorkloadGenerator:
    """
    Bounded, lazily extended WorkItem sequence.

    Yields at most `limit` fresh items. Failed items are handed back through
    report_failure and handled per the test's FailurePolicy: RETRY requeues
    the same item ahead of fresh work, REPLACE extends the bound by one.

    Not safe for use from multiple threads; workers are asyncio tasks on
    one loop and next_item never awaits.
    """

    def __init__(
        self,
        test: "LoadTest",
        directory: NodeDirectory,
        limit: int,
        rng: random.Random | None = None,
    ):
        """
        Initialize generator.

        Args:
            test: Test kind that builds the items
            directory: Fleet the items target
            limit: Number of fresh items to produce
            rng: Random source (seed it for reproducible runs)
        """
        if limit < 0:
            raise ValueError(f"limit must be >= 0, got {limit}")
        self._test = test
        self._directory = directory
        self._limit = limit
        self._rng = rng if rng is not None else random.Random()
        self._issued = 0
        self._retries = 0
        self._replacements = 0
        self._requeued: deque[WorkItem] = deque()
        self._source_exhausted = False

    @property
    def issued(self) -> int:
        """Number of fresh items produced so far."""
        return self._issued

    @property
    def limit(self) -> int:
        """Current bound on fresh items (grows with replacements)."""
        return self._limit

    @property
    def retries(self) -> int:
        return self._retries

    @property
    def replacements(self) -> int:
        return self._replacements

    @property
    def exhausted(self) -> bool:
        """True when next_item would return None."""
        if self._requeued:
            return False
        return self._source_exhausted or self._issued >= self._limit

    def next_item(self) -> WorkItem | None:
        """
        Get the next item to execute.

        Returns:
            A requeued retry if any, else a fresh item, else None
        """
        if self._requeued:
            return self._requeued.popleft()

        if self._source_exhausted or self._issued >= self._limit:
            return None

        item_id = f"{self._test.name}-{self._issued + 1:06d}"
        item = self._test.generate(item_id, self._directory, self._rng)
        if item is None:
            logger.info(
                "Test %s has no more work after %d items",
                self._test.name,
                self._issued,
            )
            self._source_exhausted = True
            return None

        self._issued += 1
        return item

    def report_failure(self, item: WorkItem) -> None:
        """
        Apply the test's failure policy to a failed item.

        Args:
            item: The item whose execution failed
        """
        policy = self._test.failure_policy

        if policy == FailurePolicy.RETRY:
            if item.attempt < self._test.max_attempts:
                self._requeued.append(replace(item, attempt=item.attempt + 1))
                self._retries += 1
                logger.debug("Requeued %s (attempt %d)", item.item_id, item.attempt + 1)
            else:
                logger.debug("Dropping %s after %d attempts", item.item_id, item.attempt)
        elif policy == FailurePolicy.REPLACE:
            self._limit += 1
            self._replacements += 1
            logger.debug("Replacing %s with a fresh item", item.item_id)

    def __iter__(self) -> Iterator[WorkItem]:
        while True:
            item = self.next_item()
            if item is None:
                return
            yield item
