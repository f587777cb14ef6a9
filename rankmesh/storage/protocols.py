"""
Document Store Protocol Definitions

Structural subtyping protocols (PEP 544) for the collaborators the rank
engine consumes:
- DocumentStore: find-by-id, find-by-id-set, upsert with atomic field
  increments, set-on-insert
- TransactionSession: the view of the store inside one transaction attempt
- TransactionRunner: runs a callback in a transaction, retrying conflicts

A document is a flat mapping of field name to integer. Documents are
addressed by (collection, doc_id); backends decide the physical key.

Design Principles:
    - Store calls return Result[T, str] instead of raising
    - Async-first for non-blocking I/O
    - Exceptions raised by a transaction callback abort the attempt
      and propagate unchanged
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import (
    Awaitable,
    Callable,
    Generic,
    Mapping,
    Optional,
    Protocol,
    Sequence,
    TypeVar,
    runtime_checkable,
)

from rankmesh.core import constants as C
from rankmesh.core.types import IsolationLevel, Result

T = TypeVar("T")

Document = dict[str, int]


@dataclass(frozen=True, slots=True)
class TransactionResult(Generic[T]):
    """
    Outcome of TransactionRunner.start().

    Attributes:
        value: Return value of the committed callback attempt.
        committed: True once the buffered writes were applied.
        retries: Conflict retries before the successful attempt.
    """

    value: T
    committed: bool
    retries: int


@runtime_checkable
class DocumentReader(Protocol):
    """Read side shared by stores and transaction sessions."""

    async def find_by_id(
        self,
        collection: str,
        doc_id: str,
    ) -> Result[Optional[Document], str]:
        """Return the document, or None if it was never written."""
        ...

    async def find_many(
        self,
        collection: str,
        doc_ids: Sequence[str],
    ) -> Result[dict[str, Document], str]:
        """Return the existing documents among doc_ids, keyed by id."""
        ...


@runtime_checkable
class DocumentWriter(DocumentReader, Protocol):
    """Read/increment surface used by the bucket accessor."""

    async def increment(
        self,
        collection: str,
        doc_id: str,
        deltas: Mapping[str, int],
    ) -> Result[None, str]:
        """
        Add deltas to the document's fields, creating document and
        fields at zero when absent. Atomic per document.
        """
        ...


@runtime_checkable
class TransactionSession(DocumentWriter, Protocol):
    """
    Store view inside one transaction attempt.

    Reads register the document for conflict detection; increments are
    buffered and applied atomically when the attempt commits.
    """


TransactionCallback = Callable[[TransactionSession], Awaitable[T]]


@runtime_checkable
class TransactionRunner(Protocol):
    """Runs callbacks in optimistic multi-document transactions."""

    async def start(
        self,
        callback: TransactionCallback[T],
        max_retry: int = C.UNBOUNDED_RETRY,
        isolation: IsolationLevel = IsolationLevel.SERIALIZABLE,
    ) -> TransactionResult[T]:
        """
        Run callback and commit its writes.

        Conflicting attempts are discarded and the callback is run again,
        at most max_retry times (-1 = unbounded).

        Raises:
            TransactionExhaustedError: Retry budget exceeded.
            Exception: Anything the callback raised (nothing committed).
        """
        ...


@runtime_checkable
class DocumentStore(DocumentWriter, Protocol):
    """Backing store consumed by the rank engine."""

    async def set_on_insert(
        self,
        collection: str,
        doc_id: str,
        values: Mapping[str, int],
    ) -> Result[Document, str]:
        """
        Create the document with values if absent (atomically) and
        return the stored document. An existing document is not modified.
        """
        ...

    def transaction_runner(self) -> TransactionRunner:
        """Return a runner bound to this store."""
        ...


__all__ = [
    "Document",
    "DocumentReader",
    "DocumentWriter",
    "DocumentStore",
    "IsolationLevel",
    "TransactionCallback",
    "TransactionResult",
    "TransactionRunner",
    "TransactionSession",
]
