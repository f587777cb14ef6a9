"""
Redis Document Store Test Suite

Runs against fakeredis (with Lua scripting) by default. Integration runs
against a disposable server as well:
    RANKMESH_TEST_REDIS_URL=redis://localhost:6379/15 pytest rankmesh/tests/test_redis_store.py
"""

import asyncio
import logging
import os
import uuid

import fakeredis
import pytest
import pytest_asyncio

from rankmesh.core.config import RankConfig
from rankmesh.core.errors import ConfigurationMismatchError, NotFoundError
from rankmesh.ranks.engine import RankEngine
from rankmesh.reliability.retry import RetryPolicy
from rankmesh.storage.config import RedisConfig
from rankmesh.storage.redis_store import RedisDocumentStore

REDIS_URL = os.environ.get("RANKMESH_TEST_REDIS_URL")


@pytest_asyncio.fixture(params=["fakeredis", "server"])
async def redis_store(request):
    if request.param == "server":
        if not REDIS_URL:
            pytest.skip("RANKMESH_TEST_REDIS_URL not set")
        store = RedisDocumentStore(RedisConfig(url=REDIS_URL), retry_policy=RetryPolicy.immediate())
    else:
        store = RedisDocumentStore.from_client(
            fakeredis.FakeAsyncRedis(decode_responses=True),
            retry_policy=RetryPolicy.immediate(),
        )

    (await store.connect()).unwrap()
    yield store
    await store.close()


@pytest_asyncio.fixture
async def collection(redis_store):
    name = f"test_{uuid.uuid4().hex[:12]}"
    yield name
    (await redis_store.clear(name)).unwrap()
    (await redis_store.clear(f"rankmesh:{name}")).unwrap()


def make_engine(store, collection, **options):
    config = RankConfig(
        min_score=options.pop("min_score", 1),
        max_score=options.pop("max_score", 100),
        branch_factor=options.pop("branch_factor", 8),
        collection_name=collection,
        **options,
    )
    return RankEngine(store, config)


class TestRedisDocumentStore:

    async def test_increment_and_find(self, redis_store, collection):
        await redis_store.increment(collection, "a", {"x": 2, "y": -1})
        await redis_store.increment(collection, "a", {"x": 1})

        assert (await redis_store.find_by_id(collection, "a")).unwrap() == {"x": 3, "y": -1}
        assert (await redis_store.find_many(collection, ["a", "b"])).unwrap() == {"a": {"x": 3, "y": -1}}

    async def test_set_on_insert(self, redis_store, collection):
        first = (await redis_store.set_on_insert(collection, "meta", {"maxScore": 10})).unwrap()
        second = (await redis_store.set_on_insert(collection, "meta", {"maxScore": 20})).unwrap()

        assert first == second == {"maxScore": 10}

    async def test_clear_stays_in_collection(self, redis_store, collection):
        neighbour = f"{collection}_other"
        await redis_store.increment(collection, "a", {"x": 1})
        await redis_store.increment(collection, "b", {"x": 1})
        await redis_store.increment(neighbour, "a", {"x": 1})

        assert (await redis_store.clear(collection)).unwrap() == 2
        assert (await redis_store.find_by_id(collection, "a")).unwrap() is None
        assert (await redis_store.find_by_id(neighbour, "a")).unwrap() == {"x": 1}

        (await redis_store.clear(neighbour)).unwrap()

    async def test_watch_conflict_retries(self, redis_store, collection):
        await redis_store.increment(collection, "a", {"x": 1})
        attempts = 0

        async def callback(session):
            nonlocal attempts
            attempts += 1
            await session.find_by_id(collection, "a")
            if attempts == 1:
                await redis_store.increment(collection, "a", {"x": 1})
            await session.increment(collection, "a", {"x": 10})

        result = await redis_store.transaction_runner().start(callback)

        assert attempts == 2
        assert result.retries == 1
        assert (await redis_store.find_by_id(collection, "a")).unwrap() == {"x": 12}
        assert redis_store.metrics.watch_conflicts == 1

    async def test_read_only_transaction_detects_change(self, redis_store, collection):
        await redis_store.increment(collection, "a", {"x": 1})
        seen = []

        async def callback(session):
            document = (await session.find_by_id(collection, "a")).unwrap()
            seen.append(document["x"])
            if len(seen) == 1:
                await redis_store.increment(collection, "a", {"x": 1})
            return document["x"]

        result = await redis_store.transaction_runner().start(callback)

        assert seen == [1, 2]
        assert result.value == 2

    async def test_connect_logs_client_target(self, caplog):
        client = fakeredis.FakeAsyncRedis(host="cache.internal", decode_responses=True)
        store = RedisDocumentStore.from_client(client)
        caplog.set_level(logging.INFO, logger="rankmesh.storage.redis_store")

        (await store.connect()).unwrap()
        await store.close()

        record = next(r for r in caplog.records if r.getMessage() == "Redis document store connected")
        target = client.connection_pool.connection_kwargs
        assert record.redis_host == target.get("host")
        assert record.redis_db == target.get("db")
        assert record.redis_host != "localhost"

    @pytest.mark.parametrize("redis_store", ["server"], indirect=True)
    async def test_health_check(self, redis_store):
        health = (await redis_store.health_check()).unwrap()
        assert health["connected"]


class TestRankEngineOnRedis:

    async def test_known_leaderboard(self, redis_store, collection):
        engine = make_engine(redis_store, collection)
        for score in (100, 100, 97, 50, 8):
            await engine.add_score(score)

        assert [await engine.get_rank_by_score(s) for s in (100, 98, 97, 50, 49, 3)] == [1, 3, 3, 4, 5, 6]
        assert [await engine.get_score_by_rank(r) for r in range(1, 7)] == [100, 100, 97, 50, 8, 1]

    async def test_concurrent_removes(self, redis_store, collection):
        engine = make_engine(redis_store, collection)
        for _ in range(30):
            await engine.add_score(42)

        results = await asyncio.gather(
            *(engine.remove_score(42) for _ in range(31)),
            return_exceptions=True,
        )

        assert sum(isinstance(r, NotFoundError) for r in results) == 1
        assert await engine.count_by_score(42) == 0
        assert await engine.count() == 0

    async def test_consistent_read_retries_on_change(self, redis_store, collection):
        engine = make_engine(redis_store, collection)
        await engine.add_score(50)
        attempts = 0

        async def standing(view):
            nonlocal attempts
            attempts += 1
            total = await view.count()
            if attempts == 1:
                await engine.add_score(60)
            return total, await view.get_rank_by_score(50)

        assert await engine.consistent_read(standing) == (2, 2)
        assert attempts == 2

    async def test_configuration_is_pinned(self, redis_store, collection):
        await make_engine(redis_store, collection).init()

        other = make_engine(redis_store, collection, max_score=200)
        with pytest.raises(ConfigurationMismatchError, match="maxScore mismatch"):
            await other.count()
