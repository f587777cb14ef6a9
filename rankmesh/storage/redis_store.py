"""
Redis Document Store
====================

Redis/Valkey implementation of DocumentStore, shared by every process
that ranks against the same collection.

Memory Layout:
--------------
Each document is one Redis hash at ``{collection}:{doc_id}`` (the
collection is already ``{db_name}:{collection_name}``); every hash field
holds an integer counter.

Atomicity:
----------
- Single document: HINCRBY is atomic on the server
- Set-on-insert: Lua script (EXISTS + HSET + HGETALL in one step)
- Multi document: WATCH read keys, MULTI, queue HINCRBY, EXEC.
  EXEC fails with WatchError when a watched key changed; the runner
  then retries the whole callback.

Algorithmic Complexity:
-----------------------
| Operation     | Time | Round-trips |
|---------------|------|-------------|
| find_by_id    | O(1) | 1           |
| find_many     | O(k) | 1 (pipeline)|
| increment     | O(f) | 1 (MULTI)   |
| set_on_insert | O(f) | 1 (EVALSHA) |
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, TypeVar

import redis.asyncio as aioredis
from redis.asyncio.client import Pipeline
from redis.exceptions import RedisError, WatchError

from rankmesh.core import constants as C
from rankmesh.core.types import Err, IsolationLevel, Ok, Result
from rankmesh.reliability.retry import RetryContext, RetryPolicy
from rankmesh.storage.config import RedisConfig
from rankmesh.storage.protocols import (
    Document,
    TransactionCallback,
    TransactionResult,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


# =============================================================================
# LUA SCRIPTS
# =============================================================================

# Create the hash only if the key is absent, then return it.
# ARGV holds field/value pairs.
LUA_SET_ON_INSERT_SCRIPT: str = """
local key = KEYS[1]
if redis.call('EXISTS', key) == 0 then
    for i = 1, #ARGV, 2 do
        redis.call('HSET', key, ARGV[i], ARGV[i + 1])
    end
end
return redis.call('HGETALL', key)
"""


def _decode_document(data: Mapping[str, Any]) -> Document:
    return {name: int(value) for name, value in data.items()}


def _pairs_to_document(flat: Sequence[Any]) -> Document:
    return {flat[i]: int(flat[i + 1]) for i in range(0, len(flat), 2)}


# =============================================================================
# METRICS COLLECTOR
# =============================================================================

@dataclass(slots=True)
class RedisMetrics:
    """Operation counters and latency sums (nanoseconds)."""
    read_count: int = 0
    increment_count: int = 0
    transaction_count: int = 0
    watch_conflicts: int = 0
    connection_errors: int = 0

    read_latency_sum_ns: int = 0
    increment_latency_sum_ns: int = 0

    def record_read(self, latency_ns: int) -> None:
        self.read_count += 1
        self.read_latency_sum_ns += latency_ns

    def record_increment(self, latency_ns: int) -> None:
        self.increment_count += 1
        self.increment_latency_sum_ns += latency_ns

    def get_avg_read_latency_ms(self) -> float:
        if self.read_count == 0:
            return 0.0
        return (self.read_latency_sum_ns / self.read_count) / C.NS_PER_MS

    def get_avg_increment_latency_ms(self) -> float:
        if self.increment_count == 0:
            return 0.0
        return (self.increment_latency_sum_ns / self.increment_count) / C.NS_PER_MS


# =============================================================================
# REDIS DOCUMENT STORE
# =============================================================================

class RedisDocumentStore:
    """
    DocumentStore backed by Redis hashes.

    Example:
        >>> store = RedisDocumentStore(RedisConfig(host="redis.example.com"))
        >>> (await store.connect()).unwrap()
        >>> engine = RankEngine(store, RankConfig(min_score=0, max_score=10_000, branch_factor=16))
        >>> await store.close()
    """

    __slots__ = (
        "_config",
        "_pool",
        "_metrics",
        "_set_on_insert_sha",
        "_retry_policy",
        "_connected",
    )

    def __init__(
        self,
        config: RedisConfig,
        retry_policy: Optional[RetryPolicy] = None,
    ) -> None:
        """
        Args:
            config: Redis connection configuration.
            retry_policy: Backoff between WATCH conflict retries.

        Note:
            Call `connect()` before performing operations.
        """
        self._config = config
        self._pool: Optional[aioredis.Redis] = None
        self._metrics = RedisMetrics()
        self._set_on_insert_sha: Optional[str] = None
        self._retry_policy = retry_policy or RetryPolicy.default()
        self._connected = False

    @classmethod
    def from_client(
        cls,
        client: aioredis.Redis,
        retry_policy: Optional[RetryPolicy] = None,
    ) -> RedisDocumentStore:
        """Wrap an existing client (must use decode_responses=True); it is not reconfigured."""
        store = cls(RedisConfig(), retry_policy)
        store._pool = client
        return store

    # -------------------------------------------------------------------------
    # CONNECTION MANAGEMENT
    # -------------------------------------------------------------------------

    async def connect(self) -> Result[None, str]:
        """
        Create the client (unless wrapped), ping, and load Lua scripts.

        Returns:
            Ok(None) on success, Err with message on failure.
        """
        try:
            if self._pool is None:
                kwargs = self._config.get_connection_kwargs()
                if self._config.url:
                    self._pool = aioredis.Redis.from_url(self._config.url, **kwargs)
                else:
                    self._pool = aioredis.Redis(**kwargs)

            await self._pool.ping()
            self._set_on_insert_sha = await self._pool.script_load(LUA_SET_ON_INSERT_SCRIPT)

            self._connected = True
            # a wrapped client may point elsewhere than self._config
            target = self._pool.connection_pool.connection_kwargs
            logger.info(
                "Redis document store connected",
                extra={"redis_host": target.get("host"), "redis_db": target.get("db")},
            )
            return Ok(None)

        except RedisError as e:
            self._metrics.connection_errors += 1
            return Err(f"Redis connection failed: {e}")

    async def close(self) -> None:
        """Close the client. Safe to call multiple times."""
        if self._pool is not None:
            await self._pool.aclose()
            self._pool = None

        self._connected = False

    async def health_check(self) -> Result[Dict[str, Any], str]:
        """Server version plus store metrics."""
        if not self._connected or self._pool is None:
            return Err("Not connected")

        try:
            info = await self._pool.info(section="server")
            return Ok({
                "connected": True,
                "redis_version": info.get("redis_version", "unknown"),
                "metrics": {
                    "read_count": self._metrics.read_count,
                    "increment_count": self._metrics.increment_count,
                    "watch_conflicts": self._metrics.watch_conflicts,
                    "avg_read_latency_ms": self._metrics.get_avg_read_latency_ms(),
                    "avg_increment_latency_ms": self._metrics.get_avg_increment_latency_ms(),
                },
            })
        except RedisError as e:
            return Err(f"Health check failed: {e}")

    @staticmethod
    def document_key(collection: str, doc_id: str) -> str:
        return f"{collection}{C.REDIS_KEY_SEPARATOR}{doc_id}"

    @property
    def client(self) -> aioredis.Redis:
        if not self._connected or self._pool is None:
            raise RuntimeError("RedisDocumentStore is not connected")
        return self._pool

    @property
    def metrics(self) -> RedisMetrics:
        return self._metrics

    # -------------------------------------------------------------------------
    # DocumentStore Implementation
    # -------------------------------------------------------------------------

    async def find_by_id(
        self,
        collection: str,
        doc_id: str,
    ) -> Result[Optional[Document], str]:
        if not self._connected or self._pool is None:
            return Err("Not connected")

        start_ns = time.perf_counter_ns()
        try:
            data = await self._pool.hgetall(self.document_key(collection, doc_id))
        except RedisError as e:
            return Err(f"Redis error: {e}")

        self._metrics.record_read(time.perf_counter_ns() - start_ns)
        return Ok(_decode_document(data) if data else None)

    async def find_many(
        self,
        collection: str,
        doc_ids: Sequence[str],
    ) -> Result[Dict[str, Document], str]:
        if not self._connected or self._pool is None:
            return Err("Not connected")
        if not doc_ids:
            return Ok({})

        start_ns = time.perf_counter_ns()
        try:
            async with self._pool.pipeline(transaction=False) as pipe:
                for doc_id in doc_ids:
                    pipe.hgetall(self.document_key(collection, doc_id))
                values = await pipe.execute()
        except RedisError as e:
            return Err(f"Redis error: {e}")

        self._metrics.record_read(time.perf_counter_ns() - start_ns)
        return Ok({
            doc_id: _decode_document(data)
            for doc_id, data in zip(doc_ids, values)
            if data
        })

    async def increment(
        self,
        collection: str,
        doc_id: str,
        deltas: Mapping[str, int],
    ) -> Result[None, str]:
        """HINCRBY every field inside one MULTI block."""
        if not self._connected or self._pool is None:
            return Err("Not connected")

        start_ns = time.perf_counter_ns()
        key = self.document_key(collection, doc_id)
        try:
            async with self._pool.pipeline(transaction=True) as pipe:
                for name, delta in deltas.items():
                    pipe.hincrby(key, name, delta)
                await pipe.execute()
        except RedisError as e:
            return Err(f"Redis error: {e}")

        self._metrics.record_increment(time.perf_counter_ns() - start_ns)
        return Ok(None)

    async def set_on_insert(
        self,
        collection: str,
        doc_id: str,
        values: Mapping[str, int],
    ) -> Result[Document, str]:
        if not self._connected or self._pool is None:
            return Err("Not connected")

        args: List[Any] = []
        for name, value in values.items():
            args.extend((name, value))

        try:
            flat = await self._pool.evalsha(
                self._set_on_insert_sha,
                1,
                self.document_key(collection, doc_id),
                *args,
            )
        except RedisError as e:
            return Err(f"Redis error: {e}")

        return Ok(_pairs_to_document(flat))

    def transaction_runner(self) -> RedisTransactionRunner:
        return RedisTransactionRunner(self, self._retry_policy)

    # -------------------------------------------------------------------------
    # UTILITY
    # -------------------------------------------------------------------------

    async def clear(self, collection: str) -> Result[int, str]:
        """
        Delete every document of a collection.

        WARNING: destructive; SCAN-based, O(keyspace).
        """
        if not self._connected or self._pool is None:
            return Err("Not connected")

        deleted = 0
        batch: List[str] = []
        try:
            async for key in self._pool.scan_iter(
                match=f"{collection}{C.REDIS_KEY_SEPARATOR}*",
                count=C.MAX_SCAN_COUNT,
            ):
                batch.append(key)
                if len(batch) >= C.MAX_SCAN_COUNT:
                    deleted += await self._pool.delete(*batch)
                    batch.clear()
            if batch:
                deleted += await self._pool.delete(*batch)
        except RedisError as e:
            return Err(f"Redis error: {e}")

        return Ok(deleted)


# =============================================================================
# TRANSACTIONS (WATCH / MULTI / EXEC)
# =============================================================================

class RedisTransactionSession:
    """
    One optimistic attempt on a WATCH-ing pipeline.

    Reads WATCH their keys and execute immediately; increments are queued
    and sent in a single MULTI/EXEC by commit().
    """

    __slots__ = ("_pipe", "_writes")

    def __init__(self, pipe: Pipeline) -> None:
        self._pipe = pipe
        self._writes: List[Tuple[str, Dict[str, int]]] = []

    async def find_by_id(
        self,
        collection: str,
        doc_id: str,
    ) -> Result[Optional[Document], str]:
        result = await self.find_many(collection, [doc_id])
        return result.map(lambda docs: docs.get(doc_id))

    async def find_many(
        self,
        collection: str,
        doc_ids: Sequence[str],
    ) -> Result[Dict[str, Document], str]:
        if not doc_ids:
            return Ok({})

        keys = [RedisDocumentStore.document_key(collection, doc_id) for doc_id in doc_ids]
        try:
            await self._pipe.watch(*keys)
            docs: Dict[str, Document] = {}
            for doc_id, key in zip(doc_ids, keys):
                data = await self._pipe.hgetall(key)
                if data:
                    docs[doc_id] = _decode_document(data)
        except RedisError as e:
            return Err(f"Redis error: {e}")

        return Ok(docs)

    async def increment(
        self,
        collection: str,
        doc_id: str,
        deltas: Mapping[str, int],
    ) -> Result[None, str]:
        self._writes.append((RedisDocumentStore.document_key(collection, doc_id), dict(deltas)))
        return Ok(None)

    async def commit(self) -> int:
        """
        Send queued increments in MULTI/EXEC.

        Raises:
            WatchError: A watched key changed since it was read.
        """
        # an empty MULTI/EXEC still validates the WATCHed read set
        self._pipe.multi()
        for key, deltas in self._writes:
            for name, delta in deltas.items():
                self._pipe.hincrby(key, name, delta)
        await self._pipe.execute()
        return len(self._writes)


class RedisTransactionRunner:
    """Runs callbacks in WATCH/MULTI/EXEC transactions with conflict retry."""

    __slots__ = ("_store", "_policy")

    def __init__(
        self,
        store: RedisDocumentStore,
        policy: RetryPolicy,
    ) -> None:
        self._store = store
        self._policy = policy

    async def start(
        self,
        callback: TransactionCallback[T],
        max_retry: int = C.UNBOUNDED_RETRY,
        isolation: IsolationLevel = IsolationLevel.SERIALIZABLE,
    ) -> TransactionResult[T]:
        # Redis only offers one level: EXEC is serializable w.r.t. WATCHed keys
        ctx = RetryContext(self._policy, max_retry)
        metrics = self._store.metrics
        metrics.transaction_count += 1

        while True:
            async with self._store.client.pipeline(transaction=True) as pipe:
                session = RedisTransactionSession(pipe)
                value = await callback(session)
                try:
                    await session.commit()
                except WatchError as e:
                    metrics.watch_conflicts += 1
                    logger.debug("Transaction conflict", extra={"retries": ctx.retries})
                    conflict = e
                else:
                    return TransactionResult(value=value, committed=True, retries=ctx.retries)

            await ctx.fail(conflict)


__all__ = [
    "RedisDocumentStore",
    "RedisMetrics",
    "RedisTransactionRunner",
    "RedisTransactionSession",
    "LUA_SET_ON_INSERT_SCRIPT",
]
