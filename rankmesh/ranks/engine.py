"""
Rank Engine: Leaderboard Statistics over a Bounded Score Domain

Tracks how many times each integer score in [min_score, max_score] was
added, in a tree of counter buckets (see rankmesh.ranks.topology), and
answers rank queries by reading at most one chain of buckets.

Ranking convention:
    Higher scores rank closer to 1. Ties share a rank (competition
    ranking 1, 2, 2, 4): rank(score) = 1 + number of tracked scores
    strictly greater than score.

Write path:
    add_score / remove_score touch every bucket on the score's chain.
    By default the chain is updated in one store transaction (retried on
    write conflicts); with skip_transaction each bucket is updated on
    its own and a crash mid-chain can leave ancestor sums inconsistent.

Reads are not transactional and may observe buckets from different
moments under concurrent writes; consistent_read() runs a group of
reads in one store transaction instead.

Complexity (d = tree depth, b = branch factor):
    add_score / remove_score: O(d) documents
    get_rank_by_score: O(d) documents, one round-trip
    get_score_by_rank: O(d) documents (O(d^2) worst case with use_highest)
    count / count_by_score: one document
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, TypeVar

from rankmesh.core.config import RankConfig
from rankmesh.core.errors import NotFoundError
from rankmesh.ranks import topology
from rankmesh.ranks.buckets import BucketAccessor
from rankmesh.ranks.guard import ConfigurationGuard, EngineState
from rankmesh.ranks.topology import TopologyNode
from rankmesh.storage.protocols import DocumentStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RankEngine:
    """
    Leaderboard over one collection of a document store.

    Usage:
        store = InMemoryDocumentStore()
        engine = RankEngine(store, RankConfig(min_score=1, max_score=100, branch_factor=8))

        await engine.add_score(97)
        await engine.get_rank_by_score(97)     # 1
        await engine.get_score_by_rank(1)      # 97

    An instance whose configuration does not match the collection's meta
    document raises ConfigurationMismatchError on every call; discard it.
    """

    __slots__ = ("_store", "_config", "_guard", "_buckets")

    def __init__(self, store: DocumentStore, config: RankConfig) -> None:
        self._store = store
        self._config = config
        self._guard = ConfigurationGuard(store, config)
        self._buckets = BucketAccessor(store, config.namespace)

    @property
    def config(self) -> RankConfig:
        return self._config

    @property
    def state(self) -> EngineState:
        return self._guard.state

    async def init(self) -> None:
        """Validate the configuration against the collection without other I/O."""
        await self._guard.ensure()

    # -------------------------------------------------------------------------
    # WRITE PATH
    # -------------------------------------------------------------------------

    async def add_score(self, score: int) -> None:
        """Track one more occurrence of score."""
        await self._guard.ensure(score=score)
        chain = self._save_chain(score)

        async def add(buckets: BucketAccessor) -> None:
            await buckets.apply(chain, 1)

        await self._run_mutation(add)
        self._guard.mark_active()

    async def remove_score(self, score: int) -> None:
        """
        Forget one occurrence of score.

        Raises:
            NotFoundError: score is not tracked; no counter was changed.
        """
        await self._guard.ensure(score=score)
        chain = self._save_chain(score)

        async def remove(buckets: BucketAccessor) -> None:
            counts = await buckets.chain_counts(chain)
            if any(count <= 0 for count in counts):
                logger.debug(
                    "Remove of untracked score",
                    extra={"namespace": self._config.namespace, "score": score},
                )
                raise NotFoundError.no_such_score(score)
            await buckets.apply(chain, -1)

        await self._run_mutation(remove)
        self._guard.mark_active()

    async def _run_mutation(self, mutation: Callable[[BucketAccessor], Awaitable[T]]) -> T:
        if self._config.skip_transaction:
            return await mutation(self._buckets)

        options = self._config.transaction
        result = await self._store.transaction_runner().start(
            lambda session: mutation(self._buckets.bind(session)),
            max_retry=options.max_retry,
            isolation=options.isolation,
        )
        if result.retries:
            logger.debug(
                "Rank transaction committed after retries",
                extra={"namespace": self._config.namespace, "retries": result.retries},
            )
        return result.value

    # -------------------------------------------------------------------------
    # READ PATH
    # -------------------------------------------------------------------------

    async def count_by_score(self, score: int) -> int:
        """How many times score is tracked (one leaf bucket read)."""
        await self._guard.ensure(score=score)

        leaf = self._save_chain(score)[-1]
        document = await self._buckets.fetch_one(leaf.document_id)
        self._guard.mark_active()
        return document.count(leaf.fields[0].field_name) if document else 0

    async def count(self) -> int:
        """Total number of tracked scores (root bucket read)."""
        await self._guard.ensure()

        root = self._node(self._config.min_score, self._config.max_score, 0)
        document = await self._buckets.fetch_one(root.document_id)
        self._guard.mark_active()
        return document.total() if document else 0

    async def get_rank_by_score(self, score: int) -> int:
        """1 + number of tracked scores strictly greater than score."""
        await self._guard.ensure(score=score)

        chain = [
            link for link in topology.rank_chain(
                self._config.min_score,
                self._config.max_score,
                self._config.branch_factor,
                score,
            )
            if link.fields
        ]
        counts = await self._buckets.chain_counts(chain)
        self._guard.mark_active()
        return sum(counts) + 1

    async def get_score_by_rank(self, rank: int, use_highest: bool = False) -> int:
        """
        Score needed to hold rank.

        Returns the lowest score that achieves rank, or with use_highest
        the highest score that still does not beat it. When fewer than
        rank scores are tracked, min_score (max_score with use_highest
        on an empty tree) is returned.
        """
        await self._guard.ensure(rank=rank)

        score = await self._score_by_rank(
            self._config.min_score,
            self._config.max_score,
            0,
            rank,
            use_highest,
        )
        self._guard.mark_active()
        return score

    async def _score_by_rank(
        self,
        start: int,
        end: int,
        layer: int,
        rank: int,
        use_highest: bool,
    ) -> int:
        node = self._node(start, end, layer)
        document = await self._buckets.fetch_one(node.document_id)

        if document is not None:
            for field in reversed(node.fields):
                total = document.count(field.field_name)

                if use_highest:
                    if rank == 1 and total == 0:
                        return field.end
                    if rank - total == 1 and field.has_child:
                        # a gap inside this field may hold a better answer than field.end
                        probe = await self._score_by_rank(
                            field.start, field.end, layer + 1, rank, use_highest
                        )
                        if probe < field.end:
                            return probe

                if total >= rank:
                    if field.has_child:
                        return await self._score_by_rank(
                            field.start, field.end, layer + 1, rank, use_highest
                        )
                    return field.start

                rank -= total

        return end if use_highest else start

    async def consistent_read(self, query: Callable[[RankEngine], Awaitable[T]]) -> T:
        """
        Run read operations against one store transaction.

        query receives an engine view whose reads join the transaction;
        the result is returned only if none of the buckets it read changed
        before commit, otherwise the query is retried.

        Usage:
            async def standing(view):
                return await view.get_rank_by_score(97), await view.count()

            rank, total = await engine.consistent_read(standing)

        Queries must await reads one at a time.
        """
        await self._guard.ensure()

        options = self._config.transaction
        result = await self._store.transaction_runner().start(
            lambda session: query(self._view(self._buckets.bind(session))),
            max_retry=options.max_retry,
            isolation=options.isolation,
        )
        return result.value

    def _view(self, buckets: BucketAccessor) -> RankEngine:
        view = object.__new__(RankEngine)
        view._store = self._store
        view._config = self._config
        view._guard = self._guard
        view._buckets = buckets
        return view

    # -------------------------------------------------------------------------
    # TOPOLOGY
    # -------------------------------------------------------------------------

    def list_all_nodes(self) -> list[TopologyNode]:
        """Every bucket descriptor of this configuration, depth first."""
        return topology.list_all_nodes(
            self._config.min_score,
            self._config.max_score,
            self._config.branch_factor,
        )

    def _node(self, start: int, end: int, layer: int) -> TopologyNode:
        return topology.derive_node(start, end, layer, self._config.branch_factor)

    def _save_chain(self, score: int) -> list[topology.ChainLink]:
        return topology.save_chain(
            self._config.min_score,
            self._config.max_score,
            self._config.branch_factor,
            score,
        )
