"""
System-Wide Constants for rankmesh

Naming formats here are part of the persisted layout: changing them
orphans every bucket already written to a collection.
"""

from typing import Final

# =============================================================================
# TIME UNITS
# =============================================================================
SECOND_MS: Final[int] = 1000
NS_PER_MS: Final[int] = 1_000_000
NS_PER_S: Final[int] = 1_000_000_000

# =============================================================================
# PERSISTED LAYOUT
# =============================================================================
DOCUMENT_ID_FORMAT: Final[str] = "rank_{layer}_{start}_{end}"
FIELD_NAME_FORMAT: Final[str] = "range_{start}_{end}"
META_DOCUMENT_ID: Final[str] = "meta"

# Meta document field names (camelCase kept for existing collections)
META_MIN_SCORE: Final[str] = "minScore"
META_MAX_SCORE: Final[str] = "maxScore"
META_BRANCH_FACTOR: Final[str] = "branchFactor"

# =============================================================================
# ENGINE DEFAULTS
# =============================================================================
DEFAULT_DB_NAME: Final[str] = "rankmesh"
DEFAULT_COLLECTION_NAME: Final[str] = "rank"
MIN_BRANCH_FACTOR: Final[int] = 2

# -1 means retry write conflicts forever
UNBOUNDED_RETRY: Final[int] = -1

# =============================================================================
# CONFLICT RETRY BACKOFF
# =============================================================================
CONFLICT_RETRY_BASE_MS: Final[int] = 2
CONFLICT_RETRY_MAX_MS: Final[int] = 250
CONFLICT_RETRY_EXPONENTIAL_BASE: Final[float] = 2.0

# =============================================================================
# STORAGE
# =============================================================================
DEFAULT_SIMULATED_LATENCY_NS: Final[int] = 50_000  # 50 microseconds
MAX_SCAN_COUNT: Final[int] = 1000
REDIS_KEY_SEPARATOR: Final[str] = ":"
