"""
In-Memory Document Store
========================

Single-process implementation of DocumentStore for development, tests
and the CLI demo.

Features:
    - Optimistic Concurrency Control (OCC) transactions
    - Version tracking for every document
    - Atomic per-document increments under one asyncio.Lock
    - Optional simulated latency so concurrent coroutines interleave

Conflict detection:
    A transaction records the version of every document it reads. At
    commit the versions are compared under the store lock; any change
    (including creation of a document that was absent) rejects the
    attempt and the runner retries it. Blind increments never conflict.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Mapping, Optional, Sequence, Tuple, TypeVar

from rankmesh.core import constants as C
from rankmesh.core.errors import WriteConflictError
from rankmesh.core.types import Err, IsolationLevel, Ok, Result
from rankmesh.reliability.retry import RetryContext, RetryPolicy
from rankmesh.storage.protocols import (
    Document,
    TransactionCallback,
    TransactionResult,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

StoreKey = Tuple[str, str]


# =============================================================================
# VERSIONED DOCUMENT
# =============================================================================
@dataclass
class VersionedDocument:
    """
    Internal record with version tracking for OCC.

    Versions come from a store-wide counter, so a document deleted and
    recreated never repeats a version. 0 is reserved for "absent" in
    read sets.
    """
    values: Document = field(default_factory=dict)
    version: int = 1
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(slots=True)
class StoreMetrics:
    """Operation counters (single-threaded asyncio, no locking needed)."""
    reads: int = 0
    increments: int = 0
    transactions: int = 0
    commits: int = 0
    conflicts: int = 0


# =============================================================================
# IN-MEMORY DOCUMENT STORE
# =============================================================================
class InMemoryDocumentStore:
    """
    In-memory DocumentStore with optimistic transactions.

    Example:
        store = InMemoryDocumentStore()
        await store.increment("db:rank", "rank_0_1_100", {"range_1_13": 1})
        doc = (await store.find_by_id("db:rank", "rank_0_1_100")).unwrap()

        runner = store.transaction_runner()
        result = await runner.start(callback, max_retry=3)
    """

    __slots__ = (
        "_data",
        "_lock",
        "_version_clock",
        "_simulate_latency",
        "_retry_policy",
        "_metrics",
    )

    def __init__(
        self,
        simulate_latency: bool = False,
        retry_policy: Optional[RetryPolicy] = None,
    ) -> None:
        """
        Args:
            simulate_latency: If True, sleep before every store call
            retry_policy: Backoff between conflict retries
        """
        self._data: Dict[StoreKey, VersionedDocument] = {}
        self._lock = asyncio.Lock()
        self._version_clock = 0
        self._simulate_latency = simulate_latency
        self._retry_policy = retry_policy or RetryPolicy.default()
        self._metrics = StoreMetrics()

    async def _simulate_network_latency(self) -> None:
        if self._simulate_latency:
            await asyncio.sleep(C.DEFAULT_SIMULATED_LATENCY_NS / C.NS_PER_S)

    # -------------------------------------------------------------------------
    # DocumentStore Implementation
    # -------------------------------------------------------------------------

    async def find_by_id(
        self,
        collection: str,
        doc_id: str,
    ) -> Result[Optional[Document], str]:
        """Complexity: O(1) average case (hash lookup)."""
        docs, _ = await self._read([(collection, doc_id)])
        return Ok(docs.get(doc_id))

    async def find_many(
        self,
        collection: str,
        doc_ids: Sequence[str],
    ) -> Result[Dict[str, Document], str]:
        """Complexity: O(k) for k ids."""
        docs, _ = await self._read([(collection, doc_id) for doc_id in doc_ids])
        return Ok(docs)

    async def increment(
        self,
        collection: str,
        doc_id: str,
        deltas: Mapping[str, int],
    ) -> Result[None, str]:
        """Upsert with atomic field increments."""
        await self._simulate_network_latency()

        async with self._lock:
            self._apply((collection, doc_id), deltas)
            self._metrics.increments += 1

        return Ok(None)

    async def set_on_insert(
        self,
        collection: str,
        doc_id: str,
        values: Mapping[str, int],
    ) -> Result[Document, str]:
        """First writer wins; later calls return the stored values."""
        await self._simulate_network_latency()

        async with self._lock:
            key = (collection, doc_id)
            record = self._data.get(key)
            if record is None:
                record = VersionedDocument(values=dict(values), version=self._next_version())
                self._data[key] = record
            return Ok(dict(record.values))

    def transaction_runner(self) -> InMemoryTransactionRunner:
        return InMemoryTransactionRunner(self, self._retry_policy)

    # -------------------------------------------------------------------------
    # Utility
    # -------------------------------------------------------------------------

    async def clear(self, collection: Optional[str] = None) -> int:
        """Delete all documents (optionally of one collection)."""
        async with self._lock:
            if collection is None:
                deleted = len(self._data)
                self._data.clear()
                return deleted

            keys = [key for key in self._data if key[0] == collection]
            for key in keys:
                del self._data[key]
            return len(keys)

    async def count_documents(self, collection: str) -> int:
        async with self._lock:
            return sum(1 for key in self._data if key[0] == collection)

    @property
    def metrics(self) -> StoreMetrics:
        return self._metrics

    # -------------------------------------------------------------------------
    # Internals shared with transactions
    # -------------------------------------------------------------------------

    async def _read(
        self,
        keys: Sequence[StoreKey],
    ) -> Tuple[Dict[str, Document], Dict[StoreKey, int]]:
        """Copy documents and their versions (0 when absent)."""
        await self._simulate_network_latency()

        docs: Dict[str, Document] = {}
        versions: Dict[StoreKey, int] = {}

        async with self._lock:
            for key in keys:
                record = self._data.get(key)
                if record is None:
                    versions[key] = 0
                    continue
                docs[key[1]] = dict(record.values)
                versions[key] = record.version
            self._metrics.reads += 1

        return docs, versions

    def _next_version(self) -> int:
        # caller holds self._lock
        self._version_clock += 1
        return self._version_clock

    def _apply(self, key: StoreKey, deltas: Mapping[str, int]) -> None:
        # caller holds self._lock
        record = self._data.get(key)
        if record is None:
            self._data[key] = VersionedDocument(values=dict(deltas), version=self._next_version())
            return

        for name, delta in deltas.items():
            record.values[name] = record.values.get(name, 0) + delta
        record.version = self._next_version()
        record.updated_at = datetime.now(timezone.utc)

    async def _commit(
        self,
        session: InMemoryTransactionSession,
    ) -> Result[int, WriteConflictError]:
        """
        Validate the read set and apply buffered increments atomically.

        Returns:
            Ok(number of documents written) or Err(WriteConflictError)
        """
        await self._simulate_network_latency()

        async with self._lock:
            if session.validates_reads:
                for key, version in session.read_versions.items():
                    current = self._data.get(key)
                    current_version = current.version if current is not None else 0
                    if current_version != version:
                        self._metrics.conflicts += 1
                        return Err(WriteConflictError.on_key(f"{key[0]}/{key[1]}"))

            for key, deltas in session.writes:
                self._apply(key, deltas)

            self._metrics.commits += 1
            return Ok(len(session.writes))


# =============================================================================
# TRANSACTIONS
# =============================================================================
class InMemoryTransactionSession:
    """Read-tracking, write-buffering view of the store for one attempt."""

    __slots__ = ("_store", "_isolation", "read_versions", "writes")

    def __init__(
        self,
        store: InMemoryDocumentStore,
        isolation: IsolationLevel,
    ) -> None:
        self._store = store
        self._isolation = isolation
        self.read_versions: Dict[StoreKey, int] = {}
        self.writes: List[Tuple[StoreKey, Dict[str, int]]] = []

    @property
    def validates_reads(self) -> bool:
        return self._isolation != IsolationLevel.READ_COMMITTED

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
        docs, versions = await self._store._read(
            [(collection, doc_id) for doc_id in doc_ids]
        )
        for key, version in versions.items():
            # first read of a key wins: that is the version the attempt saw
            self.read_versions.setdefault(key, version)
        return Ok(docs)

    async def increment(
        self,
        collection: str,
        doc_id: str,
        deltas: Mapping[str, int],
    ) -> Result[None, str]:
        self.writes.append(((collection, doc_id), dict(deltas)))
        return Ok(None)


class InMemoryTransactionRunner:
    """Runs callbacks against InMemoryTransactionSession with conflict retry."""

    __slots__ = ("_store", "_policy")

    def __init__(
        self,
        store: InMemoryDocumentStore,
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
        ctx = RetryContext(self._policy, max_retry)
        self._store.metrics.transactions += 1

        while True:
            session = InMemoryTransactionSession(self._store, isolation)
            value = await callback(session)

            committed = await self._store._commit(session)
            if committed.is_err():
                logger.debug(
                    "Transaction conflict",
                    extra={"retries": ctx.retries, "reason": committed.error.message},
                )
                await ctx.fail(committed.error)
                continue

            return TransactionResult(value=value, committed=True, retries=ctx.retries)


__all__ = [
    "InMemoryDocumentStore",
    "InMemoryTransactionRunner",
    "InMemoryTransactionSession",
    "StoreMetrics",
    "VersionedDocument",
]
