"""
Bucket Accessor: Counter Documents for Topology Nodes

Maps topology nodes to persisted counter documents and applies
per-field increments through a DocumentWriter, which is either the
store itself (no transaction) or a transaction session.

Store failures (Err values) become StorageError here; nothing above
this layer sees a Result.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Optional, Sequence, TypeVar

from rankmesh.core.errors import StorageError
from rankmesh.core.types import Result
from rankmesh.ranks.topology import ChainLink
from rankmesh.storage.protocols import DocumentWriter

T = TypeVar("T")


def _unwrap(result: Result[T, str], operation: str) -> T:
    if result.is_err():
        raise StorageError.operation_failed(operation, result.error)
    return result.unwrap()


@dataclass(frozen=True, slots=True)
class BucketDocument:
    """Persisted counters of one bucket: field name -> tracked scores."""

    id: str
    values: dict[str, int] = field(default_factory=dict)

    def count(self, field_name: str) -> int:
        return self.values.get(field_name, 0)

    def total(self) -> int:
        return sum(self.values.values())


class BucketAccessor:
    """
    Reads and updates the bucket documents of one collection.

    Usage:
        buckets = BucketAccessor(store, config.namespace)
        await buckets.apply(chain, +1)

        # inside a transaction callback
        await buckets.bind(session).apply(chain, -1)
    """

    __slots__ = ("_writer", "_collection")

    def __init__(self, writer: DocumentWriter, collection: str) -> None:
        self._writer = writer
        self._collection = collection

    @property
    def collection(self) -> str:
        return self._collection

    def bind(self, writer: DocumentWriter) -> BucketAccessor:
        """Same collection, different writer (typically a transaction session)."""
        return BucketAccessor(writer, self._collection)

    async def fetch_one(self, doc_id: str) -> Optional[BucketDocument]:
        values = _unwrap(
            await self._writer.find_by_id(self._collection, doc_id),
            "find_by_id",
        )
        return None if values is None else BucketDocument(id=doc_id, values=values)

    async def fetch_many(self, doc_ids: Sequence[str]) -> dict[str, BucketDocument]:
        """Existing buckets among doc_ids; absent ones are left out."""
        if not doc_ids:
            return {}
        found = _unwrap(
            await self._writer.find_many(self._collection, list(doc_ids)),
            "find_many",
        )
        return {
            doc_id: BucketDocument(id=doc_id, values=values)
            for doc_id, values in found.items()
        }

    async def chain_counts(self, chain: Sequence[ChainLink]) -> list[int]:
        """Stored count of every (link, field) pair on the chain, in order."""
        documents = await self.fetch_many([link.document_id for link in chain])
        counts = []
        for link in chain:
            document = documents.get(link.document_id)
            for topology_field in link.fields:
                counts.append(document.count(topology_field.field_name) if document else 0)
        return counts

    async def apply(self, chain: Sequence[ChainLink], delta: int) -> None:
        """
        Add delta to every chain field, upserting absent buckets.

        Buckets are updated concurrently; each update is atomic on its
        own document.
        """
        results = await asyncio.gather(*(
            self._writer.increment(
                self._collection,
                link.document_id,
                {topology_field.field_name: delta for topology_field in link.fields},
            )
            for link in chain
            if link.fields
        ))
        for result in results:
            _unwrap(result, "increment")
