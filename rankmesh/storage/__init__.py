"""
Storage Module: Document Store Collaborators
============================================

Provides:
- Protocol definitions consumed by the rank engine
- In-memory implementation for development/testing
- Redis implementation for shared, multi-process deployments
- Factory function for backend selection

Example:
    >>> # Development (in-memory)
    >>> store = await create_store()

    >>> # Production (configured)
    >>> from rankmesh.storage.config import RedisConfig, StorageConfig, BackendType
    >>> store = await create_store(StorageConfig(
    ...     backend=BackendType.REDIS, redis=RedisConfig(host="redis.prod")))
"""

from __future__ import annotations

from typing import Optional

from rankmesh.core.errors import StorageError
from rankmesh.reliability.retry import RetryPolicy
from rankmesh.storage.protocols import (
    Document,
    DocumentReader,
    DocumentStore,
    DocumentWriter,
    TransactionCallback,
    TransactionResult,
    TransactionRunner,
    TransactionSession,
)
from rankmesh.storage.backends import (
    InMemoryDocumentStore,
    InMemoryTransactionRunner,
    StoreMetrics,
)
from rankmesh.storage.config import (
    BackendType,
    RedisConfig,
    StorageConfig,
)


# =============================================================================
# FACTORY FUNCTIONS
# =============================================================================

async def create_store(
    config: Optional[StorageConfig] = None,
    retry_policy: Optional[RetryPolicy] = None,
) -> DocumentStore:
    """
    Build (and for Redis, connect) the configured document store.

    Raises:
        StorageError: Redis connection failed.
    """
    config = config or StorageConfig.for_development()

    if config.backend == BackendType.REDIS:
        from rankmesh.storage.redis_store import RedisDocumentStore

        store = RedisDocumentStore(config.redis, retry_policy=retry_policy)
        connected = await store.connect()
        if connected.is_err():
            raise StorageError.operation_failed("connect", connected.error)
        return store

    return InMemoryDocumentStore(
        simulate_latency=config.simulate_latency,
        retry_policy=retry_policy,
    )


__all__ = [
    # Protocols
    "Document",
    "DocumentReader",
    "DocumentStore",
    "DocumentWriter",
    "TransactionCallback",
    "TransactionResult",
    "TransactionRunner",
    "TransactionSession",
    # Backends
    "InMemoryDocumentStore",
    "InMemoryTransactionRunner",
    "StoreMetrics",
    # Config
    "BackendType",
    "RedisConfig",
    "StorageConfig",
    # Factory
    "create_store",
]
