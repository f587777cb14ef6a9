"""
Rank Tracking over a Document Store

Answers leaderboard questions for integer scores in a fixed range:
- rank of a score (1 + number of tracked scores above it)
- score needed for a rank
- per-score and total counts

Scores are counted in a tree of range buckets persisted as documents,
so every operation touches one root-to-leaf chain regardless of how
many scores are tracked. Backends: in-memory (development/testing) and
Redis (shared across processes).

License: MIT
"""

__version__ = "1.0.0"

# =============================================================================
# PUBLIC API EXPORTS
# =============================================================================
from rankmesh.core.types import Result, Ok, Err, IsolationLevel
from rankmesh.core.errors import (
    ErrorCode,
    RankMeshError,
    ValidationError,
    ConfigurationMismatchError,
    NotFoundError,
    StorageError,
    WriteConflictError,
    TransactionExhaustedError,
)
from rankmesh.core.config import RankConfig, TransactionConfig

from rankmesh.ranks import (
    RankEngine,
    EngineState,
    TopologyNode,
    TopologyField,
)

from rankmesh.storage import (
    DocumentStore,
    InMemoryDocumentStore,
    StorageConfig,
    RedisConfig,
    BackendType,
    create_store,
)

__all__ = [
    # Version
    "__version__",
    # Core types
    "Result",
    "Ok",
    "Err",
    "IsolationLevel",
    # Errors
    "ErrorCode",
    "RankMeshError",
    "ValidationError",
    "ConfigurationMismatchError",
    "NotFoundError",
    "StorageError",
    "WriteConflictError",
    "TransactionExhaustedError",
    # Config
    "RankConfig",
    "TransactionConfig",
    # Ranks
    "RankEngine",
    "EngineState",
    "TopologyNode",
    "TopologyField",
    # Storage
    "DocumentStore",
    "InMemoryDocumentStore",
    "StorageConfig",
    "RedisConfig",
    "BackendType",
    "create_store",
]
