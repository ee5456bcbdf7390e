"""
Cache Backends

The cache is optional. `CacheBackend` is the capability every caller
sees; two variants implement it:

- RedisCache: Redis with compression, a circuit breaker and statistics.
  Any failure at call time degrades that call to a no-op (get misses,
  set reports False, delete returns 0) through a single guarded path.
- NullCache: the no-op variant, used when caching is disabled or Redis
  is unreachable at startup.

`create_cache()` picks the variant once, at process start.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Deque, Dict, Optional, TypeVar

from redis.asyncio import ConnectionPool, Redis
from redis.exceptions import RedisError

from .compression import CacheCompressor, deserialize_value, serialize_value
from .config import CacheConfig, get_cache_config

logger = logging.getLogger(__name__)

T = TypeVar('T')


@dataclass
class CacheStats:
    """
    Counters for one RedisCache instance, exposed through get_stats().

    `errors` counts operations Redis rejected; `skipped` counts operations
    never sent because the breaker was open or the client was gone.
    """
    hits: int = 0
    misses: int = 0
    writes: int = 0
    errors: int = 0
    skipped: int = 0
    keys_deleted: int = 0
    bytes_written: int = 0
    bytes_read: int = 0
    bytes_saved_compression: int = 0
    # Rolling window of per-call latencies, in seconds
    latency_window: Deque[float] = field(default_factory=lambda: deque(maxlen=100))

    @property
    def hit_rate(self) -> float:
        lookups = self.hits + self.misses
        return self.hits / lookups if lookups else 0.0

    @property
    def avg_latency_ms(self) -> float:
        if not self.latency_window:
            return 0.0
        return sum(self.latency_window) / len(self.latency_window) * 1000

    def record_latency(self, seconds: float):
        self.latency_window.append(seconds)


class CircuitBreaker:
    """
    Stops sending commands to Redis after `threshold` consecutive
    connection failures.

    While open, every cache call returns its no-op default without a
    round trip, so a dead Redis costs query latency nothing. After
    `timeout` seconds the next call is let through; its outcome decides
    whether the breaker stays closed.
    """

    def __init__(self, threshold: int = 5, timeout: int = 30):
        self.threshold = threshold
        self.timeout = timeout
        self.consecutive_failures = 0
        self.opened_at: Optional[float] = None
        self._lock = asyncio.Lock()

    @property
    def is_open(self) -> bool:
        return self.opened_at is not None

    async def allows_request(self) -> bool:
        if not self.is_open:
            return True
        if time.time() - self.opened_at < self.timeout:
            return False

        async with self._lock:
            self.opened_at = None
            self.consecutive_failures = 0
        logger.info("Cache circuit breaker closed, retrying Redis")
        return True

    async def record_success(self):
        async with self._lock:
            self.consecutive_failures = 0
            self.opened_at = None

    async def record_failure(self):
        async with self._lock:
            self.consecutive_failures += 1
            if self.consecutive_failures >= self.threshold and not self.is_open:
                self.opened_at = time.time()
                logger.warning(
                    f"Cache circuit breaker opened after {self.consecutive_failures} "
                    f"failures; serving from the store for {self.timeout}s"
                )


def _escape_glob(value: str) -> str:
    """Escape Redis glob metacharacters so a prefix matches literally."""
    for char in ("\\", "*", "?", "[", "]"):
        value = value.replace(char, "\\" + char)
    return value


# =============================================================================
# INTERFACE
# =============================================================================

class CacheBackend(ABC):
    """Key-value cache with TTL. No operation ever raises."""

    name: str = "abstract"

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        """Cached value, or None on miss."""

    @abstractmethod
    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """Store unconditionally. Returns False when nothing was written."""

    @abstractmethod
    async def delete_by_prefix(self, prefix: str) -> int:
        """Delete every key starting with `prefix`. Returns the exact count removed."""

    @abstractmethod
    async def ping(self) -> bool:
        ...

    @abstractmethod
    async def key_count(self) -> int:
        ...

    @abstractmethod
    async def memory_usage(self) -> int:
        """Bytes used by the backend, 0 when unknown."""

    @abstractmethod
    def get_stats(self) -> Dict[str, Any]:
        ...

    async def close(self) -> None:
        return None


# =============================================================================
# NO-OP VARIANT
# =============================================================================

class NullCache(CacheBackend):
    """Cache that stores nothing. Every get misses."""

    name = "null"

    def __init__(self, reason: str = "disabled"):
        self.reason = reason
        self._misses = 0

    async def get(self, key: str) -> Optional[Any]:
        self._misses += 1
        return None

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        return False

    async def delete_by_prefix(self, prefix: str) -> int:
        return 0

    async def ping(self) -> bool:
        return False

    async def key_count(self) -> int:
        return 0

    async def memory_usage(self) -> int:
        return 0

    def get_stats(self) -> Dict[str, Any]:
        return {
            "backend": self.name,
            "enabled": False,
            "reason": self.reason,
            "hits": 0,
            "misses": self._misses,
            "errors": 0,
            "hit_rate_percent": 0.0,
            "circuit_breaker_open": False,
        }


# =============================================================================
# REDIS VARIANT
# =============================================================================

class RedisCache(CacheBackend):
    """
    Redis cache.

    Features:
    - Automatic LZ4/ZSTD compression for large values
    - Circuit breaker for resilience
    - Cursor-based prefix deletion (never KEYS)
    - Graceful degradation through `_guarded()`
    """

    name = "redis"

    def __init__(
        self,
        config: Optional[CacheConfig] = None,
        client: Optional[Redis] = None,
    ):
        self.config = config or get_cache_config()
        self._pool: Optional[ConnectionPool] = None
        self._redis: Optional[Redis] = client
        self._compressor = CacheCompressor(
            enabled=self.config.compression_enabled,
            threshold=self.config.compression_threshold,
            zstd_threshold=self.config.zstd_threshold,
        )
        self._circuit_breaker = CircuitBreaker(
            threshold=self.config.circuit_breaker_threshold,
            timeout=self.config.circuit_breaker_timeout,
        )
        self._stats = CacheStats()

    async def connect(self) -> "RedisCache":
        """
        Create the connection pool and verify Redis answers.

        Raises:
            RedisError / OSError: when Redis is unreachable
        """
        if self._redis is None:
            self._pool = ConnectionPool.from_url(
                self.config.redis_url,
                max_connections=self.config.max_connections,
                socket_timeout=self.config.socket_timeout,
                socket_connect_timeout=self.config.connect_timeout,
                decode_responses=False,  # We handle bytes directly
            )
            self._redis = Redis(connection_pool=self._pool)

        await self._redis.ping()
        logger.info(f"Redis cache connected: {self.config.redis_url}")
        return self

    async def close(self) -> None:
        """Close the client and its pool."""
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
        if self._pool is not None:
            await self._pool.disconnect()
            self._pool = None
        logger.info("Redis cache closed")

    async def _guarded(
        self,
        operation: str,
        default: T,
        action: Callable[[], Awaitable[T]],
    ) -> T:
        """
        Run one Redis operation; on any failure return `default`.

        Connection-level failures feed the circuit breaker. While the
        breaker is open, the operation is skipped entirely.
        """
        if self._redis is None or not await self._circuit_breaker.allows_request():
            self._stats.skipped += 1
            logger.debug(f"Cache {operation} skipped: Redis unavailable")
            return default

        try:
            result = await action()
        except (RedisError, OSError) as e:
            self._stats.errors += 1
            await self._circuit_breaker.record_failure()
            logger.warning(f"Cache {operation} failed, degrading to no-op: {e}")
            return default
        except Exception as e:
            self._stats.errors += 1
            logger.error(f"Cache {operation} error: {e}")
            return default

        await self._circuit_breaker.record_success()
        return result

    # =========================================================================
    # Core Operations
    # =========================================================================

    async def get(self, key: str) -> Optional[Any]:
        start_time = time.time()

        async def _get():
            data = await self._redis.get(key)
            if data is None:
                return None
            self._stats.bytes_read += len(data)
            return deserialize_value(self._compressor.decompress(data))

        value = await self._guarded(f"get {key}", None, _get)
        self._stats.record_latency(time.time() - start_time)

        if value is None:
            self._stats.misses += 1
            logger.debug(f"Cache miss for {key}")
        else:
            self._stats.hits += 1
            logger.debug(f"Cache hit for {key}")
        return value

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        ttl = ttl or self.config.ttl_seconds
        start_time = time.time()

        async def _set():
            compressed, stats = self._compressor.compress(serialize_value(value))
            await self._redis.setex(key, ttl, compressed)
            if stats:
                self._stats.bytes_saved_compression += stats.bytes_saved
            self._stats.bytes_written += len(compressed)
            self._stats.writes += 1
            return True

        written = await self._guarded(f"set {key}", False, _set)
        self._stats.record_latency(time.time() - start_time)
        return written

    async def delete_by_prefix(self, prefix: str) -> int:
        match = f"{_escape_glob(prefix)}*"

        async def _delete():
            deleted = 0
            cursor = 0
            # Incremental SCAN: each round trip touches at most scan_count keys
            while True:
                cursor, keys = await self._redis.scan(
                    cursor=cursor, match=match, count=self.config.scan_count
                )
                if keys:
                    deleted += await self._redis.delete(*keys)
                if int(cursor) == 0:
                    break
            return deleted

        deleted = await self._guarded(f"delete_by_prefix {prefix}", 0, _delete)
        self._stats.keys_deleted += deleted
        logger.info(f"Deleted {deleted} keys matching {match}")
        return deleted

    # =========================================================================
    # Diagnostics
    # =========================================================================

    async def ping(self) -> bool:
        async def _ping():
            return bool(await self._redis.ping())

        return await self._guarded("ping", False, _ping)

    async def key_count(self) -> int:
        async def _dbsize():
            return int(await self._redis.dbsize())

        return await self._guarded("dbsize", 0, _dbsize)

    async def memory_usage(self) -> int:
        async def _memory():
            info = await self._redis.info("memory")
            return int(info.get("used_memory", 0))

        return await self._guarded("info memory", 0, _memory)

    def get_stats(self) -> Dict[str, Any]:
        return {
            "backend": self.name,
            "enabled": True,
            "hits": self._stats.hits,
            "misses": self._stats.misses,
            "errors": self._stats.errors,
            "skipped": self._stats.skipped,
            "writes": self._stats.writes,
            "keys_deleted": self._stats.keys_deleted,
            "hit_rate_percent": round(self._stats.hit_rate * 100, 2),
            "avg_latency_ms": round(self._stats.avg_latency_ms, 2),
            "bytes_written": self._stats.bytes_written,
            "bytes_read": self._stats.bytes_read,
            "bytes_saved_compression": self._stats.bytes_saved_compression,
            "circuit_breaker_open": self._circuit_breaker.is_open,
        }


async def create_cache(config: Optional[CacheConfig] = None) -> CacheBackend:
    """
    Build the cache backend for this process.

    Returns NullCache when caching is disabled or Redis does not answer.
    The caller owns the result and must close() it at shutdown.
    """
    config = config or get_cache_config()
    if not config.enabled:
        logger.info("Caching disabled (CACHE_ENABLED=false)")
        return NullCache(reason="disabled")

    cache = RedisCache(config)
    try:
        return await cache.connect()
    except (RedisError, OSError) as e:
        logger.warning(f"Redis unreachable at {config.redis_url}, running without cache: {e}")
        await cache.close()
        return NullCache(reason="unreachable")
