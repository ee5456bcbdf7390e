"""
Cache Layer

Redis in front of the query engine, with a no-op fallback.

Components:
- redis_cache: CacheBackend interface, RedisCache and NullCache
- keys: deterministic key builders and invalidation prefixes
- compression: LZ4/ZSTD value encoding
- invalidation: prefix-based deletion
- warming: hot-set recomputation after ingestion
- monitoring: health checks
"""

from .config import CacheConfig, CacheTTL, get_cache_config
from .redis_cache import CacheBackend, NullCache, RedisCache, create_cache
from .invalidation import CacheInvalidator, InvalidationResult
from .warming import CacheWarmer, WarmingReport
from .monitoring import CacheMonitor, HealthStatus, HealthCheckResult

__all__ = [
    "CacheConfig",
    "CacheTTL",
    "get_cache_config",
    "CacheBackend",
    "NullCache",
    "RedisCache",
    "create_cache",
    "CacheInvalidator",
    "InvalidationResult",
    "CacheWarmer",
    "WarmingReport",
    "CacheMonitor",
    "HealthStatus",
    "HealthCheckResult",
]
