"""
Tests for the predicted state model.
"""

import asyncio
import random

import pytest

from loadtest_engine.workload.state import CAUSAL_HISTORY, PredictedStateModel

NODES = ["a", "b", "c"]


@pytest.fixture
def predicted() -> PredictedStateModel:
    return PredictedStateModel(NODES)


async def apply(predicted: PredictedStateModel, item_id: str, node_id: str, amount: int) -> None:
    await predicted.admit([node_id])
    await asyncio.sleep(0)
    await predicted.commit(item_id, [node_id], {node_id: {"cash.USD": amount}})


# =============================================================================
# Folding effects
# =============================================================================


class TestCommit:
    """Tests for applying item effects."""

    @pytest.mark.asyncio
    async def test_concurrent_commits_equal_deterministic_fold(self, predicted: PredictedStateModel) -> None:
        """Any interleaving of N items yields the plain sum of their effects."""
        rng = random.Random(11)
        items = [(f"item-{i}", rng.choice(NODES), rng.randint(1, 1000)) for i in range(500)]

        await asyncio.gather(*(apply(predicted, *item) for item in items))

        for node_id in NODES:
            expected = sum(amount for _, target, amount in items if target == node_id)
            assert predicted.value(node_id, "cash.USD") == (expected or None)
            assert predicted.get(node_id).applied == sum(1 for _, t, _ in items if t == node_id)
            assert predicted.in_flight(node_id) == 0

    @pytest.mark.asyncio
    async def test_contributors_follow_completion_order(self, predicted: PredictedStateModel) -> None:
        for i in range(CAUSAL_HISTORY + 5):
            await apply(predicted, f"item-{i}", "a", 1)

        contributors = predicted.get("a").contributors
        assert len(contributors) == CAUSAL_HISTORY
        assert contributors[-1] == f"item-{CAUSAL_HISTORY + 4}"
        assert contributors[0] == "item-5"

    @pytest.mark.asyncio
    async def test_effects_on_other_nodes_rejected(self, predicted: PredictedStateModel) -> None:
        await predicted.admit(["a"])
        with pytest.raises(ValueError):
            await predicted.commit("bad", ["a"], {"b": {"cash.USD": 1}})

        assert predicted.in_flight("a") == 0
        assert predicted.value("b", "cash.USD") is None

    @pytest.mark.asyncio
    async def test_release_discards_item(self, predicted: PredictedStateModel) -> None:
        await predicted.admit(["a", "b"])
        assert predicted.in_flight("a") == 1
        await predicted.release(["a", "b"])

        assert predicted.in_flight("a") == 0
        assert predicted.snapshot() == {"a": {}, "b": {}, "c": {}}

    def test_unknown_node(self, predicted: PredictedStateModel) -> None:
        with pytest.raises(KeyError):
            predicted.get("zzz")


# =============================================================================
# Seeding and overrides
# =============================================================================


class TestSeedAndOverride:
    """Tests for baseline seeding and forced overrides."""

    def test_seed_replaces_baseline(self, predicted: PredictedStateModel) -> None:
        predicted.seed("a", {"cash.USD": 100})
        predicted.seed("a", {"cash.GBP": 5})
        assert predicted.snapshot()["a"] == {"cash.GBP": 5}

    @pytest.mark.asyncio
    async def test_commit_adds_to_baseline(self, predicted: PredictedStateModel) -> None:
        predicted.seed("a", {"cash.USD": 100})
        await apply(predicted, "i-1", "a", 5)
        assert predicted.value("a", "cash.USD") == 105

    def test_override(self, predicted: PredictedStateModel) -> None:
        predicted.override("b", "cash.USD", 7)
        assert predicted.value("b", "cash.USD") == 7


# =============================================================================
# Hold (atomic read-and-compare)
# =============================================================================


class TestHold:
    """Tests for per-node quiescing."""

    @pytest.mark.asyncio
    async def test_hold_waits_for_in_flight_items(self, predicted: PredictedStateModel) -> None:
        await predicted.admit(["a"])
        seen = []

        async def checker() -> None:
            async with predicted.hold("a") as entry:
                seen.append(entry.values.get("cash.USD"))

        task = asyncio.create_task(checker())
        await asyncio.sleep(0.01)
        assert not seen

        await predicted.commit("i-1", ["a"], {"a": {"cash.USD": 3}})
        await task
        assert seen == [3]

    @pytest.mark.asyncio
    async def test_hold_blocks_admissions_to_that_node_only(self, predicted: PredictedStateModel) -> None:
        release = asyncio.Event()
        admitted = []

        async def checker() -> None:
            async with predicted.hold("a"):
                await release.wait()

        async def worker(node_id: str) -> None:
            await predicted.admit([node_id])
            admitted.append(node_id)

        hold_task = asyncio.create_task(checker())
        await asyncio.sleep(0)
        blocked = asyncio.create_task(worker("a"))
        free = asyncio.create_task(worker("b"))
        await asyncio.sleep(0.01)

        assert admitted == ["b"]
        assert not blocked.done()

        release.set()
        await asyncio.gather(hold_task, blocked, free)
        assert sorted(admitted) == ["a", "b"]

    @pytest.mark.asyncio
    async def test_cancelled_admission_releases_earlier_nodes(self, predicted: PredictedStateModel) -> None:
        release = asyncio.Event()

        async def checker() -> None:
            async with predicted.hold("b"):
                await release.wait()

        hold_task = asyncio.create_task(checker())
        await asyncio.sleep(0)
        admission = asyncio.create_task(predicted.admit(["a", "b"]))
        await asyncio.sleep(0.01)
        assert predicted.in_flight("a") == 1

        admission.cancel()
        with pytest.raises(asyncio.CancelledError):
            await admission
        assert predicted.in_flight("a") == 0

        release.set()
        await hold_task
