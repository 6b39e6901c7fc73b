"""
Self-issue test kind.

Each item issues an amount of cash on one node to itself. Self-issued cash
never leaves the node, so the predicted invariant is simple: every node's
issued total grows by exactly the amounts of its successful items.
"""

import random
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from loadtest_engine.domain.filters import NodeFilter, is_notary
from loadtest_engine.domain.node import Node, NodeDirectory
from loadtest_engine.interfaces.load_test import Effects, LoadTest
from loadtest_engine.interfaces.node_connection import NodeConnection
from loadtest_engine.workload.models import FailurePolicy, WorkItem

CASH_FIELD_PREFIX = "cash."


def cash_field(currency: str) -> str:
    """Tracked field name for a currency's issued total."""
    return f"{CASH_FIELD_PREFIX}{currency}"


@dataclass(frozen=True, slots=True)
class SelfIssueItem(WorkItem):
    """Issue `amount` minor units of `currency` on the target node."""

    amount: int = 0
    currency: str = "USD"
    issuer_ref: str = ""


class SelfIssueTest(LoadTest):
    """Self-issue random amounts on randomly chosen non-notary nodes."""

    name = "self_issue"
    failure_policy = FailurePolicy.REPLACE

    def __init__(
        self,
        currencies: tuple[str, ...] = ("USD",),
        min_amount: int = 1,
        max_amount: int = 1000,
        issuers: NodeFilter = ~is_notary,
    ):
        if not currencies:
            raise ValueError("At least one currency is required")
        if not 0 < min_amount <= max_amount:
            raise ValueError(f"Invalid amount range {min_amount}..{max_amount}")
        self._currencies = currencies
        self._min_amount = min_amount
        self._max_amount = max_amount
        self._issuers = issuers

    def generate(
        self,
        item_id: str,
        directory: NodeDirectory,
        rng: random.Random,
    ) -> SelfIssueItem | None:
        candidates = directory.select(self._issuers)
        if not candidates:
            return None
        node = rng.choice(candidates)
        return SelfIssueItem(
            item_id=item_id,
            targets=(node.identity,),
            amount=rng.randint(self._min_amount, self._max_amount),
            currency=rng.choice(self._currencies),
            issuer_ref=item_id,
        )

    async def execute(self, item: WorkItem, connection: NodeConnection) -> None:
        assert isinstance(item, SelfIssueItem)
        await connection.call(
            "self_issue",
            amount=item.amount,
            currency=item.currency,
            issuer_ref=item.issuer_ref,
        )

    def effects(self, item: WorkItem) -> Effects:
        assert isinstance(item, SelfIssueItem)
        return {item.primary_target: {cash_field(item.currency): item.amount}}

    def observe(self, node: Node, raw_state: Mapping[str, Any]) -> dict[str, int]:
        # Nodes report {"cash": {"USD": 1234, ...}}
        cash = raw_state.get("cash") or {}
        return {cash_field(currency): int(total) for currency, total in cash.items()}
