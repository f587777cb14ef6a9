"""
Rank Engine Test Suite

Tests:
    - Rank and score lookups on known leaderboards
    - use_highest lookups
    - Counts, removal and error paths
    - Bulk loads with and without transactions
    - Agreement with a brute-force model on random data
    - Concurrent writers and conflict retries
"""

import asyncio

import pytest

from rankmesh.core.errors import (
    ConfigurationMismatchError,
    NotFoundError,
    TransactionExhaustedError,
    ValidationError,
)
from rankmesh.core.types import IsolationLevel
from rankmesh.ranks.guard import EngineState
from rankmesh.reliability.retry import RetryPolicy
from rankmesh.storage.backends import InMemoryDocumentStore


def brute_rank(scores, score):
    return 1 + sum(1 for s in scores if s > score)


class InterferingStore:
    """
    Delegates to an in-memory store; the first attempt of every
    transaction is followed by a blind write to interfere_doc, which
    invalidates any read of that document.
    """

    def __init__(self, store, collection, interfere_doc, field_name):
        self._store = store
        self._collection = collection
        self._interfere_doc = interfere_doc
        self._field_name = field_name
        self.attempts = 0

    def __getattr__(self, name):
        return getattr(self._store, name)

    def transaction_runner(self):
        outer = self
        runner = self._store.transaction_runner()

        class Runner:
            async def start(self, callback, max_retry=-1, isolation=IsolationLevel.SERIALIZABLE):
                async def wrapped(session):
                    outer.attempts += 1
                    value = await callback(session)
                    if outer.attempts == 1:
                        await outer._store.increment(
                            outer._collection, outer._interfere_doc, {outer._field_name: 0}
                        )
                    return value

                return await runner.start(wrapped, max_retry=max_retry, isolation=isolation)

        return Runner()


# =============================================================================
# KNOWN LEADERBOARDS
# =============================================================================
class TestKnownLeaderboard:
    """(1, 100, 8) with 100, 100, 97, 50, 8 tracked."""

    @pytest.fixture
    async def engine(self, make_engine):
        engine = make_engine(1, 100, 8)
        for score in (100, 100, 97, 50, 8):
            await engine.add_score(score)
        return engine

    async def test_rank_by_score(self, engine):
        expected = {100: 1, 98: 3, 97: 3, 50: 4, 49: 5, 3: 6}
        for score, rank in expected.items():
            assert await engine.get_rank_by_score(score) == rank

    async def test_score_by_rank(self, engine):
        expected = [100, 100, 97, 50, 8, 1]
        for rank, score in enumerate(expected, start=1):
            assert await engine.get_score_by_rank(rank) == score

    async def test_counts(self, engine):
        assert await engine.count() == 5
        assert await engine.count_by_score(100) == 2
        assert await engine.count_by_score(97) == 1
        assert await engine.count_by_score(99) == 0

    async def test_remove_updates_ranks(self, engine):
        await engine.remove_score(100)

        assert await engine.count_by_score(100) == 1
        assert await engine.get_rank_by_score(97) == 2
        assert await engine.get_score_by_rank(2) == 97
        assert await engine.count() == 4


class TestUseHighest:
    """(1, 25, 5) with 25, 23, 22, 22, 14, 13, 11, 4, 2 tracked."""

    SCORES = (25, 23, 22, 22, 14, 13, 11, 4, 2)

    async def test_empty_collection_returns_max(self, make_engine):
        engine = make_engine(1, 25, 5)

        assert await engine.get_score_by_rank(1, use_highest=True) == 25
        assert await engine.get_score_by_rank(2, use_highest=True) == 25

    async def test_empty_collection_lowest_returns_min(self, make_engine):
        engine = make_engine(1, 25, 5)
        assert await engine.get_score_by_rank(3) == 1

    async def test_highest_scores(self, make_engine):
        engine = make_engine(1, 25, 5)
        for score in self.SCORES:
            await engine.add_score(score)

        assert await engine.get_score_by_rank(1, use_highest=True) == 25
        assert await engine.get_score_by_rank(5, use_highest=True) == 21
        assert await engine.get_score_by_rank(7, use_highest=True) == 12
        assert await engine.get_score_by_rank(8, use_highest=True) == 10
        assert await engine.get_score_by_rank(9, use_highest=True) == 3

    async def test_highest_score_holds_rank(self, make_engine):
        """The returned score ranks exactly as asked and one more would not."""
        engine = make_engine(1, 25, 5)
        for score in self.SCORES:
            await engine.add_score(score)

        for rank in (5, 7, 8, 9):
            score = await engine.get_score_by_rank(rank, use_highest=True)
            assert brute_rank(self.SCORES, score) == rank
            assert brute_rank(self.SCORES, score + 1) < rank or score + 1 in self.SCORES

    @pytest.mark.parametrize("min_score,max_score,branch_factor", [
        (-250_000, 350_000, 2),
        (1_000, 700_000, 17),
        (0, 500_000, 51),
    ])
    async def test_just_below_previous_score(self, make_engine, rng, min_score, max_score, branch_factor):
        """For distinct scores, rank i + 1 is held up to one below the i-th score."""
        engine = make_engine(min_score, max_score, branch_factor, skip_transaction=True)
        scores = sorted(rng.sample(range(min_score, max_score), 50), reverse=True)

        await asyncio.gather(*(engine.add_score(score) for score in scores))
        assert await engine.count() == len(scores)

        for i in range(len(scores)):
            highest = await engine.get_score_by_rank(i + 1, use_highest=True)
            if i == 0:
                assert highest == max_score
            else:
                assert highest == scores[i - 1] - 1


# =============================================================================
# BULK LOADS
# =============================================================================
class TestBulkLoad:
    """Many writes, with and without transactions."""

    async def test_each_score_i_times(self, make_engine):
        engine = make_engine(1, 16, 4, skip_transaction=True)
        for score in range(1, 17):
            await asyncio.gather(*(engine.add_score(score) for _ in range(score)))

        assert await engine.count() == 136
        for score in range(1, 17):
            assert await engine.count_by_score(score) == score

    async def test_every_score_twice_without_transaction(self, make_engine):
        engine = make_engine(1, 27, 3, skip_transaction=True)
        await engine.init()

        for multiplier in (1, 2):
            await asyncio.gather(*(engine.add_score(s) for s in range(1, 28)))
            assert await engine.count() == 27 * multiplier

            for score in range(27, 0, -1):
                rank = (27 - score) * multiplier + 1
                assert await engine.get_rank_by_score(score) == rank
                assert await engine.get_score_by_rank(rank) == score

    async def test_add_then_remove_everything(self, make_engine, rng):
        engine = make_engine(1, 150, 5)
        with pytest.raises(NotFoundError, match="No such score: 1"):
            await engine.remove_score(1)

        scores = [rng.randint(1, 150) for _ in range(25)]
        for score in scores:
            await engine.add_score(score)
        for score in scores:
            await engine.remove_score(score)

        assert await engine.count() == 0
        with pytest.raises(NotFoundError, match="No such score: 13"):
            await engine.remove_score(13)


class TestAgainstModel:
    """Random leaderboards compared with a brute-force model."""

    @pytest.mark.parametrize("min_score,max_score,branch_factor", [
        (1, 100, 8),
        (-30, 30, 2),
        (0, 999, 10),
        (5, 5, 3),
    ])
    async def test_random_leaderboard(self, make_engine, rng, min_score, max_score, branch_factor):
        engine = make_engine(min_score, max_score, branch_factor)
        scores = [rng.randint(min_score, max_score) for _ in range(60)]
        for score in scores:
            await engine.add_score(score)

        removed = scores[::4]
        for score in removed:
            await engine.remove_score(score)
        for score in removed:
            scores.remove(score)

        ordered = sorted(scores, reverse=True)
        assert await engine.count() == len(scores)

        probes = {min_score, max_score, *rng.sample(range(min_score, max_score + 1), min(20, max_score - min_score + 1))}
        for score in probes:
            assert await engine.get_rank_by_score(score) == brute_rank(scores, score)
            assert await engine.count_by_score(score) == scores.count(score)

        for rank in range(1, len(ordered) + 3):
            expected = ordered[rank - 1] if rank <= len(ordered) else min_score
            assert await engine.get_score_by_rank(rank) == expected

    async def test_rank_of_score_at_rank(self, make_engine, rng):
        """get_rank_by_score(get_score_by_rank(r)) <= r for every held rank."""
        engine = make_engine(1, 500, 6)
        for _ in range(80):
            await engine.add_score(rng.randint(1, 500))

        for rank in range(1, 81):
            score = await engine.get_score_by_rank(rank)
            assert await engine.get_rank_by_score(score) <= rank

    async def test_bucket_sums_match_children(self, make_engine, store, rng):
        """Every field of a bucket equals the total of its child bucket."""
        engine = make_engine(1, 200, 4)
        for _ in range(100):
            await engine.add_score(rng.randint(1, 200))

        namespace = engine.config.namespace
        for node in engine.list_all_nodes():
            document = (await store.find_by_id(namespace, node.document_id)).unwrap() or {}
            for field in node.fields:
                if not field.has_child:
                    continue
                child = next(
                    n for n in engine.list_all_nodes()
                    if n.layer == node.layer + 1 and n.start == field.start and n.end == field.end
                )
                child_doc = (await store.find_by_id(namespace, child.document_id)).unwrap() or {}
                assert document.get(field.field_name, 0) == sum(child_doc.values())


# =============================================================================
# ERRORS
# =============================================================================
class TestArgumentErrors:
    """Argument and configuration errors."""

    async def test_rank_below_one(self, make_engine):
        engine = make_engine(1, 10_000, 10)
        await engine.init()

        with pytest.raises(ValidationError, match="Rank must be >= 1"):
            await engine.get_score_by_rank(0)

    @pytest.mark.parametrize("score", [0, 10_001])
    async def test_score_out_of_range(self, make_engine, score):
        engine = make_engine(1, 10_000, 10)

        with pytest.raises(ValidationError, match="Score must be"):
            await engine.add_score(score)

    @pytest.mark.parametrize("value", [1.5, "7", True, None])
    async def test_non_integer_score(self, make_engine, value):
        engine = make_engine(1, 100, 10)

        with pytest.raises(ValidationError):
            await engine.add_score(value)

    async def test_validation_happens_before_io(self, make_engine, store):
        engine = make_engine(1, 100, 10)

        with pytest.raises(ValidationError):
            await engine.get_rank_by_score(101)
        with pytest.raises(ValidationError, match="Score must be an integer"):
            await engine.add_score(None)
        with pytest.raises(ValidationError, match="Score must be an integer"):
            await engine.remove_score(None)
        with pytest.raises(ValidationError, match="Score must be an integer"):
            await engine.count_by_score(None)
        with pytest.raises(ValidationError, match="Score must be an integer"):
            await engine.get_rank_by_score(None)
        with pytest.raises(ValidationError, match="Rank must be an integer"):
            await engine.get_score_by_rank(None)

        assert engine.state == EngineState.UNINITIALIZED
        assert await store.count_documents(engine.config.namespace) == 0

    @pytest.mark.parametrize("override,field", [
        ({"max_score": 20_000}, "maxScore"),
        ({"min_score": -1}, "minScore"),
        ({"branch_factor": 9}, "branchFactor"),
    ])
    async def test_configuration_mismatch(self, make_engine, override, field):
        options = {"min_score": 1, "max_score": 10_000, "branch_factor": 10}
        await make_engine(**options).init()

        other = make_engine(**{**options, **override})
        with pytest.raises(ConfigurationMismatchError, match=f"{field} mismatch"):
            await other.add_score(1)

    async def test_mismatch_message(self, make_engine):
        await make_engine(1, 100, 10).init()
        other = make_engine(1, 200, 10)

        with pytest.raises(ConfigurationMismatchError) as exc_info:
            await other.count()

        assert exc_info.value.message == (
            "maxScore mismatch with existing data. "
            "Existing maxScore is 100, current maxScore is 200"
        )

    async def test_failed_engine_stays_failed(self, make_engine, store):
        await make_engine(1, 100, 10).init()
        other = make_engine(1, 100, 4)

        with pytest.raises(ConfigurationMismatchError) as first:
            await other.count()
        await store.clear()
        with pytest.raises(ConfigurationMismatchError) as second:
            await other.count()

        assert second.value is first.value
        assert other.state == EngineState.FAILED

    async def test_remove_untracked_changes_nothing(self, make_engine, store):
        engine = make_engine(1, 100, 10)
        await engine.add_score(40)

        before = await store.count_documents(engine.config.namespace)
        with pytest.raises(NotFoundError):
            await engine.remove_score(41)

        assert await store.count_documents(engine.config.namespace) == before
        assert await engine.count() == 1
        assert await engine.count_by_score(40) == 1

    async def test_collections_are_independent(self, make_engine):
        first = make_engine(1, 100, 10, collection_name="weekly")
        second = make_engine(1, 50, 5, collection_name="daily")

        await first.add_score(90)
        await second.add_score(20)

        assert await first.count() == 1
        assert await second.get_rank_by_score(20) == 1


class TestState:
    """Engine state transitions."""

    async def test_lifecycle(self, make_engine):
        engine = make_engine(1, 100, 10)
        assert engine.state == EngineState.UNINITIALIZED

        await engine.init()
        assert engine.state == EngineState.VALIDATED

        await engine.count()
        assert engine.state == EngineState.ACTIVE

    async def test_first_operation_initializes(self, make_engine):
        engine = make_engine(1, 100, 10)
        await engine.add_score(3)
        assert engine.state == EngineState.ACTIVE


# =============================================================================
# CONCURRENCY
# =============================================================================
class TestConcurrency:
    """Concurrent writers against one collection."""

    @pytest.fixture
    def slow_store(self):
        return InMemoryDocumentStore(simulate_latency=True, retry_policy=RetryPolicy.immediate())

    async def test_concurrent_adds(self, make_engine, slow_store):
        engines = [make_engine(1, 1000, 10, target=slow_store) for _ in range(4)]
        scores = list(range(1, 201))

        await asyncio.gather(*(
            engines[i % len(engines)].add_score(score)
            for i, score in enumerate(scores)
        ))

        assert await engines[0].count() == 200
        assert await engines[1].get_rank_by_score(1) == 200

    async def test_concurrent_removes_of_single_occurrence(self, make_engine, slow_store):
        engine = make_engine(1, 100, 10, target=slow_store)
        await engine.add_score(77)

        results = await asyncio.gather(
            engine.remove_score(77),
            engine.remove_score(77),
            return_exceptions=True,
        )

        failures = [r for r in results if isinstance(r, BaseException)]
        assert len(failures) == 1
        assert isinstance(failures[0], NotFoundError)
        assert await engine.count_by_score(77) == 0
        assert await engine.count() == 0

    async def test_conflicting_remove_is_retried(self, make_engine, store):
        engine = make_engine(1, 100, 10)
        await engine.add_score(55)

        interfering = InterferingStore(store, engine.config.namespace, "rank_0_1_100", "range_51_60")
        retried = make_engine(1, 100, 10, target=interfering)
        await retried.remove_score(55)

        assert interfering.attempts == 2
        assert await engine.count() == 0

    async def test_retry_budget_exhausted(self, make_engine, store):
        engine = make_engine(1, 100, 10)
        await engine.add_score(55)

        interfering = InterferingStore(store, engine.config.namespace, "rank_0_1_100", "range_51_60")
        strict = make_engine(1, 100, 10, max_retry=0, target=interfering)

        with pytest.raises(TransactionExhaustedError, match="retry of 0 times"):
            await strict.remove_score(55)

        assert await engine.count_by_score(55) == 1
        assert await engine.count() == 1

    async def test_concurrent_adds_of_same_score(self, make_engine, slow_store):
        engine = make_engine(1, 100, 10, target=slow_store)

        await asyncio.gather(*(engine.add_score(42) for _ in range(50)))

        assert await engine.count() == 50
        assert await engine.count_by_score(42) == 50
        assert await engine.get_rank_by_score(41) == 51


# =============================================================================
# PROPERTIES
# =============================================================================
class TestProperties:
    """Laws that hold for any leaderboard."""

    async def test_inverse_law(self, make_engine, rng):
        engine = make_engine(-20, 80, 3)
        for _ in range(30):
            await engine.add_score(rng.randint(-20, 80))
        before = await engine.count()

        for score in (-20, 0, 33, 80):
            await engine.add_score(score)
            await engine.remove_score(score)
            assert await engine.count() == before

    async def test_conservation(self, make_engine, rng):
        engine = make_engine(1, 64, 4)
        for _ in range(100):
            await engine.add_score(rng.randint(1, 64))

        total = 0
        for score in range(1, 65):
            total += await engine.count_by_score(score)
        assert total == await engine.count() == 100

    async def test_round_trip_without_ties(self, make_engine, rng):
        engine = make_engine(1, 1000, 7)
        scores = rng.sample(range(1, 1001), 40)
        for score in scores:
            await engine.add_score(score)

        for score in scores:
            rank = await engine.get_rank_by_score(score)
            assert await engine.get_score_by_rank(rank) == score


class TestConsistentRead:
    """Reads grouped in one store transaction."""

    async def test_returns_query_value(self, make_engine):
        engine = make_engine(1, 100, 10)
        for score in (90, 80, 80):
            await engine.add_score(score)

        async def standing(view):
            return await view.get_rank_by_score(80), await view.count()

        assert await engine.consistent_read(standing) == (2, 3)

    async def test_retried_when_buckets_change(self, make_engine, store):
        engine = make_engine(1, 100, 10)
        await engine.add_score(55)

        interfering = InterferingStore(store, engine.config.namespace, "rank_0_1_100", "range_51_60")
        reader = make_engine(1, 100, 10, target=interfering)

        assert await reader.consistent_read(lambda view: view.count()) == 1
        assert interfering.attempts == 2

    async def test_validates_configuration(self, make_engine):
        await make_engine(1, 100, 10).init()
        other = make_engine(1, 100, 5)

        with pytest.raises(ConfigurationMismatchError):
            await other.consistent_read(lambda view: view.count())
