"""
Storage Backend Configuration
=============================

Immutable configuration dataclasses for the document store backends.

Design Principles:
------------------
1. **Immutability**: All configs are frozen
2. **Validation**: Pre-conditions checked at construction time
3. **Environment**: Supports loading from environment variables
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, Dict, Optional


# =============================================================================
# ENUMERATIONS
# =============================================================================

class BackendType(Enum):
    """Document store backend, used by create_store() for dispatch."""
    IN_MEMORY = auto()  # Single process: development, tests, CLI demo
    REDIS = auto()      # Shared across processes (Redis or Valkey)

    @classmethod
    def parse(cls, name: str) -> BackendType:
        aliases = {
            "memory": cls.IN_MEMORY,
            "in_memory": cls.IN_MEMORY,
            "redis": cls.REDIS,
            "valkey": cls.REDIS,
        }
        try:
            return aliases[name.strip().lower()]
        except KeyError:
            raise ValueError(f"Unknown backend: {name!r}") from None


# =============================================================================
# REDIS CONFIGURATION
# =============================================================================

@dataclass(frozen=True, slots=True)
class RedisConfig:
    """
    Redis/Valkey connection configuration.

    Transactions rely on WATCH/MULTI/EXEC over several keys, so only
    standalone (or Sentinel-fronted primary) deployments are supported.

    Attributes:
        host: Redis server hostname or IP address.
        port: Redis server port (1-65535).
        password: Optional authentication password.
        db: Logical database index (0-15).
        max_connections: Connection pool size. Must be > 0.
        connect_timeout_ms: TCP connection timeout in milliseconds.
        socket_timeout_ms: Socket read/write timeout in milliseconds.
        ssl: Enable TLS encryption for connections.
        url: redis:// URL; overrides host/port/password/db when set.

    Example:
        >>> config = RedisConfig.from_env()
        >>> config = RedisConfig(host="redis.example.com", password="secret")
    """
    host: str = "localhost"
    port: int = 6379
    password: Optional[str] = None
    db: int = 0
    max_connections: int = 50
    connect_timeout_ms: int = 2000
    socket_timeout_ms: int = 5000
    ssl: bool = False
    url: Optional[str] = None

    def __post_init__(self) -> None:
        """
        Validate configuration invariants.

        Raises:
            ValueError: If any invariant is violated.
        """
        if not (1 <= self.port <= 65535):
            raise ValueError(f"port must be in [1, 65535], got {self.port}")

        if not (0 <= self.db <= 15):
            raise ValueError(f"db must be in [0, 15], got {self.db}")

        if self.max_connections <= 0:
            raise ValueError(f"max_connections must be > 0, got {self.max_connections}")

        if self.connect_timeout_ms <= 0:
            raise ValueError(f"connect_timeout_ms must be > 0, got {self.connect_timeout_ms}")
        if self.socket_timeout_ms <= 0:
            raise ValueError(f"socket_timeout_ms must be > 0, got {self.socket_timeout_ms}")

    @classmethod
    def from_env(
        cls,
        prefix: str = "REDIS",
        environ: Optional[Dict[str, str]] = None,
    ) -> RedisConfig:
        """
        Construct configuration from environment variables.

        Environment Variables:
        - {prefix}_URL: redis:// URL (takes precedence)
        - {prefix}_HOST: Server hostname (default: localhost)
        - {prefix}_PORT: Server port (default: 6379)
        - {prefix}_PASSWORD: Authentication password
        - {prefix}_DB: Database index (default: 0)
        - {prefix}_SSL: Enable TLS (default: false)
        - {prefix}_MAX_CONNECTIONS: Pool size (default: 50)
        """
        env = os.environ if environ is None else environ

        def _get(key: str, default: str = "") -> str:
            return env.get(f"{prefix}_{key}", default)

        def _get_int(key: str, default: int) -> int:
            val = _get(key)
            return int(val) if val else default

        def _get_bool(key: str, default: bool) -> bool:
            val = _get(key).lower()
            if val in ("true", "1", "yes"):
                return True
            if val in ("false", "0", "no"):
                return False
            return default

        return cls(
            host=_get("HOST", "localhost"),
            port=_get_int("PORT", 6379),
            password=_get("PASSWORD") or None,
            db=_get_int("DB", 0),
            max_connections=_get_int("MAX_CONNECTIONS", 50),
            connect_timeout_ms=_get_int("CONNECT_TIMEOUT_MS", 2000),
            socket_timeout_ms=_get_int("SOCKET_TIMEOUT_MS", 5000),
            ssl=_get_bool("SSL", False),
            url=_get("URL") or None,
        )

    def get_connection_kwargs(self) -> Dict[str, Any]:
        """
        Generate kwargs for redis.asyncio.Redis().

        Responses are always decoded: documents are read back as str and
        converted to int by the store.
        """
        kwargs: Dict[str, Any] = {
            "max_connections": self.max_connections,
            "socket_connect_timeout": self.connect_timeout_ms / 1000.0,
            "socket_timeout": self.socket_timeout_ms / 1000.0,
            "decode_responses": True,
        }
        if self.url:
            return kwargs
        kwargs.update({
            "host": self.host,
            "port": self.port,
            "db": self.db,
            "ssl": self.ssl,
        })
        if self.password:
            kwargs["password"] = self.password
        return kwargs


# =============================================================================
# UNIFIED STORAGE CONFIGURATION
# =============================================================================

@dataclass(frozen=True, slots=True)
class StorageConfig:
    """
    Backend selection for create_store().

    Attributes:
        backend: Which document store to build.
        redis: Redis configuration (required if backend == REDIS).
        simulate_latency: In-memory store only; sleep before each call
            so that concurrent coroutines interleave.
    """
    backend: BackendType = BackendType.IN_MEMORY
    redis: Optional[RedisConfig] = None
    simulate_latency: bool = False

    def __post_init__(self) -> None:
        if self.backend == BackendType.REDIS and self.redis is None:
            raise ValueError("redis config required when backend=REDIS")

    @classmethod
    def for_development(cls) -> StorageConfig:
        return cls()

    @classmethod
    def from_env(cls, prefix: str = "RANKMESH") -> StorageConfig:
        """
        Read {prefix}_BACKEND (memory|redis); Redis settings come from
        REDIS_* variables.
        """
        backend = BackendType.parse(os.environ.get(f"{prefix}_BACKEND", "memory"))
        if backend == BackendType.REDIS:
            return cls(backend=backend, redis=RedisConfig.from_env())
        return cls(backend=backend)
