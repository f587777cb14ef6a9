"""
Shared pytest fixtures for rank engine tests.
"""

import random

import pytest
import pytest_asyncio

from rankmesh.core.config import RankConfig, TransactionConfig
from rankmesh.ranks.engine import RankEngine
from rankmesh.reliability.retry import RetryPolicy
from rankmesh.storage.backends import InMemoryDocumentStore


@pytest_asyncio.fixture
async def store():
    """Provide an empty in-memory store that retries conflicts without sleeping."""
    store = InMemoryDocumentStore(retry_policy=RetryPolicy.immediate())
    yield store
    await store.clear()


@pytest.fixture
def make_engine(store):
    """Provide a factory building engines over the shared store."""

    def factory(
        min_score: int,
        max_score: int,
        branch_factor: int,
        *,
        skip_transaction: bool = False,
        max_retry: int = -1,
        collection_name: str = "rank",
        target=None,
    ) -> RankEngine:
        config = RankConfig(
            min_score=min_score,
            max_score=max_score,
            branch_factor=branch_factor,
            skip_transaction=skip_transaction,
            transaction=TransactionConfig(max_retry=max_retry),
            collection_name=collection_name,
        )
        return RankEngine(target if target is not None else store, config)

    return factory


@pytest.fixture
def rng():
    """Provide a seeded random generator."""
    return random.Random(20240611)
