"""
Cache Configuration

Centralized configuration for the Redis cache layer.

Every query result shares one fixed TTL. The cache is an optimization
only; when disabled or unreachable the application runs against the
store directly.
"""

import os
from dataclasses import dataclass, field
from datetime import timedelta
from functools import lru_cache

from energy_insights.utils.config import Settings


@dataclass(frozen=True)
class CacheTTL:
    """
    Cache TTL configuration.

    Generation data only changes when an ingestion run finishes, and
    ingestion invalidates explicitly, so the TTL is a safety net rather
    than the freshness mechanism.
    """

    QUERY_RESULT: timedelta = timedelta(hours=1)

    @classmethod
    def seconds(cls) -> int:
        return int(cls.QUERY_RESULT.total_seconds())


@dataclass
class CacheConfig:
    """
    Main cache configuration.

    Settings can be overridden via environment variables:
    - CACHE_ENABLED: Enable/disable caching globally
    - REDIS_URL: Redis connection URL
    - CACHE_COMPRESSION_ENABLED / CACHE_COMPRESSION_THRESHOLD
    - CACHE_CIRCUIT_BREAKER_THRESHOLD / CACHE_CIRCUIT_BREAKER_TIMEOUT

    Processes opened through `open_resources` take the toggle and the
    Redis URL from Settings instead (see `from_settings`).
    """

    # Global cache toggle
    enabled: bool = field(default_factory=lambda: os.getenv(
        "CACHE_ENABLED",
        "true"
    ).lower() == "true")

    # Redis connection
    redis_url: str = field(default_factory=lambda: os.getenv(
        "REDIS_URL",
        "redis://localhost:6379/0"
    ))
    max_connections: int = field(default_factory=lambda: int(os.getenv(
        "REDIS_MAX_CONNECTIONS",
        "20"
    )))
    socket_timeout: float = field(default_factory=lambda: float(os.getenv(
        "REDIS_SOCKET_TIMEOUT",
        "5.0"
    )))
    connect_timeout: float = field(default_factory=lambda: float(os.getenv(
        "REDIS_CONNECT_TIMEOUT",
        "5.0"
    )))

    # Compression
    compression_enabled: bool = field(default_factory=lambda: os.getenv(
        "CACHE_COMPRESSION_ENABLED",
        "true"
    ).lower() == "true")
    compression_threshold: int = field(default_factory=lambda: int(os.getenv(
        "CACHE_COMPRESSION_THRESHOLD",
        "1024"
    )))
    zstd_threshold: int = field(default_factory=lambda: int(os.getenv(
        "CACHE_ZSTD_THRESHOLD",
        "102400"
    )))

    # Circuit breaker
    circuit_breaker_threshold: int = field(default_factory=lambda: int(os.getenv(
        "CACHE_CIRCUIT_BREAKER_THRESHOLD",
        "5"
    )))
    circuit_breaker_timeout: int = field(default_factory=lambda: int(os.getenv(
        "CACHE_CIRCUIT_BREAKER_TIMEOUT",
        "30"
    )))

    # Keys fetched per SCAN round trip during prefix deletion
    scan_count: int = field(default_factory=lambda: int(os.getenv(
        "CACHE_SCAN_COUNT",
        "500"
    )))

    @classmethod
    def from_settings(cls, settings: Settings) -> "CacheConfig":
        """Environment defaults, with the toggle and Redis URL taken from `settings`."""
        return cls(enabled=settings.CACHE_ENABLED, redis_url=settings.REDIS_URL)

    @property
    def ttl_seconds(self) -> int:
        return CacheTTL.seconds()


@lru_cache(maxsize=1)
def get_cache_config() -> CacheConfig:
    """Get cached cache configuration."""
    return CacheConfig()
