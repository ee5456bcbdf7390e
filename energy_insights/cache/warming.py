"""
Cache Warming Service

Proactively recomputes and re-caches the hot set after invalidation so
the first requests after an ingestion run do not all miss at once.

Hot set:
1. The all-states listing
2. Each state's detail for a bounded set of top-N values
3. The nationwide top-N plant listings, all years and the detail year
4. State summaries for the priority years and the most recent years

Every step runs in batches of WARMING_BATCH_SIZE concurrent calls. Each
state is isolated: a failure is logged and counted, and never stops the
others.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import (
    TYPE_CHECKING,
    Any,
    Awaitable,
    Callable,
    Dict,
    Iterable,
    List,
    Optional,
    Sequence,
    Tuple,
    TypeVar,
)

from energy_insights.database.repository import GenerationStore
from energy_insights.errors import NotFoundError
from energy_insights.utils.config import Settings, get_settings
from .redis_cache import CacheBackend

if TYPE_CHECKING:
    from energy_insights.services.insights import InsightsService

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


@dataclass
class WarmingReport:
    """Outcome of one warming pass."""
    states_total: int = 0
    states_warmed: int = 0
    states_failed: int = 0
    failed_states: List[str] = field(default_factory=list)
    years_warmed: List[int] = field(default_factory=list)
    listings_warmed: int = 0
    payloads_written: int = 0
    errors: List[str] = field(default_factory=list)
    duration_ms: float = 0.0

    @property
    def success(self) -> bool:
        return self.states_failed == 0 and not self.errors

    def to_dict(self) -> Dict[str, Any]:
        return {
            "states_total": self.states_total,
            "states_warmed": self.states_warmed,
            "states_failed": self.states_failed,
            "failed_states": self.failed_states,
            "years_warmed": self.years_warmed,
            "listings_warmed": self.listings_warmed,
            "payloads_written": self.payloads_written,
            "errors": self.errors,
            "duration_ms": round(self.duration_ms, 2),
        }


class CacheWarmer:
    """
    Re-populates hot cache entries through the cached query service.

    Every call goes through the service with refresh=True, so warming
    writes exactly what a request would have cached.
    """

    def __init__(
        self,
        service: "InsightsService",
        store: GenerationStore,
        cache: CacheBackend,
        settings: Optional[Settings] = None,
    ):
        self.service = service
        self.store = store
        self.cache = cache
        self.settings = settings or get_settings()

    @property
    def batch_size(self) -> int:
        return max(self.settings.WARMING_BATCH_SIZE, 1)

    async def _gather_batched(
        self,
        items: Sequence[T],
        warm: Callable[[T], Awaitable[R]],
        label: str,
    ) -> List[R]:
        """Run `warm` over `items`, at most batch_size calls in flight."""
        outcomes: List[R] = []
        for i in range(0, len(items), self.batch_size):
            batch = items[i:i + self.batch_size]
            outcomes.extend(await asyncio.gather(*(warm(item) for item in batch)))
            logger.debug(f"Warmed {len(outcomes)}/{len(items)} {label}")
        return outcomes

    # =========================================================================
    # States
    # =========================================================================

    async def warm_state(
        self,
        code: str,
        year: int,
        top_values: Optional[Iterable[int]] = None,
    ) -> int:
        """
        Warm one state's detail for each top-N value.

        Returns the number of payloads written. A state with no data in
        `year` writes nothing and is not an error.
        """
        top_values = list(top_values or self.settings.WARMING_TOP_VALUES)
        written = 0
        for top in top_values:
            try:
                await self.service.get_state_detail(code, year, top, refresh=True)
            except NotFoundError:
                logger.debug(f"No data for {code} in {year}, nothing to warm")
                return written
            written += 1
        logger.debug(f"Warmed {written} payloads for state {code}")
        return written

    async def _warm_state_isolated(
        self,
        code: str,
        year: int,
        top_values: List[int],
    ) -> Tuple[str, int, Optional[str]]:
        try:
            return code, await self.warm_state(code, year, top_values), None
        except Exception as e:
            logger.error(f"Failed to warm state {code}: {e}")
            return code, 0, str(e)

    async def warm_all_states(
        self,
        year: Optional[int] = None,
        top_values: Optional[Iterable[int]] = None,
        report: Optional[WarmingReport] = None,
    ) -> WarmingReport:
        """
        Warm the all-states listing, then every state's detail.

        Args:
            year: Year to warm details for (default: latest year with data)
            top_values: top-N values per state (default: WARMING_TOP_VALUES)
        """
        report = report or WarmingReport()
        start = time.time()
        top_values = list(top_values or self.settings.WARMING_TOP_VALUES)

        try:
            states = await self.service.list_states(refresh=True)
            report.payloads_written += 1
        except Exception as e:
            report.errors.append(f"states listing: {e}")
            logger.error(f"Cache warming could not list states: {e}")
            report.duration_ms += (time.time() - start) * 1000
            return report

        report.states_total = len(states)
        if not states:
            logger.warning("No states found to warm")
            report.duration_ms += (time.time() - start) * 1000
            return report

        if year is None:
            years = await self.store.distinct_years(1)
            if not years:
                logger.warning("No generation data found, skipping state detail warming")
                report.duration_ms += (time.time() - start) * 1000
                return report
            year = years[0]

        logger.info(f"Warming {len(states)} states for {year} (top values {top_values})")

        outcomes = await self._gather_batched(
            [state["code"] for state in states],
            lambda code: self._warm_state_isolated(code, year, top_values),
            "states",
        )
        for code, written, error in outcomes:
            if error is None:
                report.states_warmed += 1
                report.payloads_written += written
            else:
                report.states_failed += 1
                report.failed_states.append(code)
                report.errors.append(f"{code}: {error}")

        report.duration_ms += (time.time() - start) * 1000
        logger.info(
            f"State warming completed: {report.states_warmed}/{report.states_total} "
            f"states in {report.duration_ms:.0f}ms"
        )
        return report

    # =========================================================================
    # Top-N listings
    # =========================================================================

    async def _warm_listing_isolated(
        self,
        listing: Tuple[int, Optional[int]],
    ) -> Optional[str]:
        top, year = listing
        try:
            await self.service.get_top_plants(top=top, year=year, refresh=True)
            return None
        except Exception as e:
            logger.warning(f"Failed to warm top {top} listing for {year or 'all years'}: {e}")
            return f"top {top} listing ({year or 'ALL'}): {e}"

    async def warm_top_listings(
        self,
        year: Optional[int] = None,
        top_values: Optional[Iterable[int]] = None,
        report: Optional[WarmingReport] = None,
    ) -> WarmingReport:
        """
        Warm the nationwide top-N listings for every top value, across all
        years and, when given, for `year`.
        """
        report = report or WarmingReport()
        top_values = list(top_values or self.settings.WARMING_TOP_VALUES)
        years: List[Optional[int]] = [None] if year is None else [None, year]
        listings = [(top, y) for y in years for top in top_values]

        errors = await self._gather_batched(listings, self._warm_listing_isolated, "listings")
        warmed = sum(1 for error in errors if error is None)
        report.listings_warmed += warmed
        report.payloads_written += warmed
        report.errors.extend(error for error in errors if error is not None)
        return report

    # =========================================================================
    # Years
    # =========================================================================

    async def _warm_year_isolated(self, year: int) -> Optional[int]:
        try:
            await self.service.get_states_summary(year, refresh=True)
            logger.debug(f"Warmed summary for year {year}")
            return year
        except Exception as e:
            logger.warning(f"Failed to warm summary for year {year}: {e}")
            return None

    async def warm_years(self, years: Iterable[int]) -> List[int]:
        """Warm state summaries for `years`. Returns the years warmed."""
        years = list(dict.fromkeys(years))
        if not years:
            return []
        logger.info(f"Warming cache for years: {', '.join(str(y) for y in years)}")

        outcomes = await self._gather_batched(years, self._warm_year_isolated, "years")
        warmed = [year for year in outcomes if year is not None]
        logger.info(f"Successfully warmed {len(warmed)}/{len(years)} years")
        return warmed

    async def warm_recent_years(self, count: Optional[int] = None) -> List[int]:
        """Warm state summaries for the `count` most recent years with data."""
        count = count or self.settings.WARMING_RECENT_YEARS
        years = await self.store.distinct_years(count)
        if not years:
            logger.warning("No years found to warm")
            return []
        return await self.warm_years(years)

    # =========================================================================
    # Full hot set
    # =========================================================================

    async def warm_hot_set(self, priority_years: Optional[List[int]] = None) -> WarmingReport:
        """
        Warm everything expected to be requested soon.

        Priority years come first among the year summaries; the first of
        them (else the latest year with data) is the year used for state
        details and the year-specific top-N listings.
        """
        start = time.time()
        report = WarmingReport()
        priority_years = list(dict.fromkeys(priority_years or []))

        try:
            recent = await self.store.distinct_years(self.settings.WARMING_RECENT_YEARS)
        except Exception as e:
            report.errors.append(f"recent years: {e}")
            logger.error(f"Could not determine recent years: {e}")
            recent = []

        detail_year = priority_years[0] if priority_years else (recent[0] if recent else None)

        if detail_year is not None:
            await self.warm_all_states(year=detail_year, report=report)
        else:
            logger.warning("No generation data found, skipping state warming")

        await self.warm_top_listings(year=detail_year, report=report)

        years = list(dict.fromkeys(priority_years + recent))
        report.years_warmed = await self.warm_years(years)
        report.payloads_written += len(report.years_warmed)

        report.duration_ms = (time.time() - start) * 1000
        logger.info(
            f"Cache warming complete: {report.states_warmed}/{report.states_total} states, "
            f"{report.listings_warmed} listings, {len(report.years_warmed)} years, "
            f"{report.payloads_written} payloads, "
            f"{report.states_failed} failures in {report.duration_ms:.0f}ms"
        )
        return report

    async def get_warming_stats(self) -> Dict[str, Any]:
        """Key count, memory usage and connectivity of the cache."""
        return {
            "total_keys": await self.cache.key_count(),
            "memory_usage": await self.cache.memory_usage(),
            "is_connected": await self.cache.ping(),
            "backend": self.cache.name,
        }
