"""
Cache Invalidation

Prefix-based invalidation of cached query results.

Generation data changes only through bulk ingestion, and nearly every
cached result depends on it, so invalidation works on whole key families
(`states:`, `state:`, `plants:`, `plant:`) rather than single keys.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

from .keys import GENERATION_PREFIXES
from .redis_cache import CacheBackend

logger = logging.getLogger(__name__)


@dataclass
class InvalidationResult:
    """Result of a cache invalidation operation."""
    keys_invalidated: Dict[str, int] = field(default_factory=dict)
    duration_ms: float = 0.0
    rebuild_ms: Optional[float] = None
    rebuild_result: Any = None
    errors: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors

    @property
    def total_invalidated(self) -> int:
        return sum(self.keys_invalidated.values())


class CacheInvalidator:
    """Deletes cached results by key prefix."""

    def __init__(self, cache: CacheBackend):
        self._cache = cache

    async def delete_by_prefixes(self, prefixes: Iterable[str]) -> Dict[str, int]:
        """
        Delete several key families concurrently.

        Returns:
            prefix -> number of keys removed
        """
        prefixes = list(dict.fromkeys(prefixes))
        counts = await asyncio.gather(
            *(self._cache.delete_by_prefix(prefix) for prefix in prefixes)
        )
        result = dict(zip(prefixes, counts))
        logger.info(f"Invalidated {sum(counts)} keys across prefixes {prefixes}")
        return result

    async def invalidate_generation_data(self) -> InvalidationResult:
        """Drop every cached result derived from generation data."""
        start = time.time()
        deleted = await self.delete_by_prefixes(GENERATION_PREFIXES)
        return InvalidationResult(
            keys_invalidated=deleted,
            duration_ms=(time.time() - start) * 1000,
        )

    async def invalidate_and_rebuild(
        self,
        prefixes: Iterable[str],
        rebuild: Callable[[], Awaitable[Any]],
    ) -> InvalidationResult:
        """
        Delete the given key families, then run `rebuild`.

        A failing rebuild is recorded in `errors`; the deletions stand.
        """
        result = InvalidationResult()

        start = time.time()
        result.keys_invalidated = await self.delete_by_prefixes(prefixes)
        result.duration_ms = (time.time() - start) * 1000

        rebuild_start = time.time()
        try:
            result.rebuild_result = await rebuild()
        except Exception as e:
            result.errors.append(str(e))
            logger.error(f"Cache rebuild failed after invalidation: {e}")
        result.rebuild_ms = (time.time() - rebuild_start) * 1000

        logger.info(
            f"Invalidate-and-rebuild complete: {result.total_invalidated} keys, "
            f"delete {result.duration_ms:.2f}ms, rebuild {result.rebuild_ms:.2f}ms"
        )
        return result
