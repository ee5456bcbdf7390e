"""
Post-ingestion reconciliation.

Brings the aggregate view and the cache back in line with freshly
committed generation data. Strictly sequential:

1. Refresh the state totals concurrently. Failure stops the pipeline and
   raises AggregateRefreshError; the committed data stays committed.
2. Invalidate every generation-derived key family. Failure is logged and
   ignored; TTL expiry covers it.
3. Warm the hot set. Per-state failures are counted in the report.

Safe to re-run at any time.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from energy_insights.cache.invalidation import CacheInvalidator
from energy_insights.cache.keys import GENERATION_PREFIXES
from energy_insights.cache.warming import CacheWarmer, WarmingReport
from energy_insights.database.repository import GenerationStore
from energy_insights.errors import AggregateRefreshError
from energy_insights.schemas import ReconcileQuery, validate_params

logger = logging.getLogger(__name__)


@dataclass
class ReconciliationResult:
    view_refreshed: bool = False
    keys_invalidated: Dict[str, int] = field(default_factory=dict)
    invalidation_error: Optional[str] = None
    warming: Optional[WarmingReport] = None
    timings_ms: Dict[str, float] = field(default_factory=dict)

    @property
    def total_invalidated(self) -> int:
        return sum(self.keys_invalidated.values())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "view_refreshed": self.view_refreshed,
            "keys_invalidated": self.keys_invalidated,
            "total_invalidated": self.total_invalidated,
            "invalidation_error": self.invalidation_error,
            "warming": self.warming.to_dict() if self.warming else None,
            "timings_ms": {k: round(v, 2) for k, v in self.timings_ms.items()},
        }


class CacheReconciler:
    """Single entry point run after a bulk load commits."""

    def __init__(
        self,
        store: GenerationStore,
        invalidator: CacheInvalidator,
        warmer: CacheWarmer,
    ):
        self.store = store
        self.invalidator = invalidator
        self.warmer = warmer

    async def reconcile_after_bulk_load(
        self,
        priority_years: Optional[List[int]] = None,
    ) -> ReconciliationResult:
        """
        Refresh aggregates, invalidate, then warm.

        Args:
            priority_years: years to warm first (e.g. the year just loaded)

        Raises:
            ValidationFailedError: a priority year is out of range; nothing
                was refreshed or invalidated
            AggregateRefreshError: the aggregate refresh failed; nothing
                was invalidated or warmed
        """
        if priority_years is not None:
            priority_years = validate_params(
                ReconcileQuery, priority_years=list(priority_years)
            ).priority_years

        result = ReconciliationResult()
        logger.info("Starting post-ingestion reconciliation")

        # Step 1: aggregate refresh (fatal on failure)
        start = time.time()
        try:
            await self.store.refresh_aggregates_concurrently()
        except AggregateRefreshError:
            logger.error(
                "Aggregate refresh failed; cache left untouched. "
                "Run scripts/refresh_materialized_view.py once the database is healthy."
            )
            raise
        result.view_refreshed = True
        result.timings_ms["refresh"] = (time.time() - start) * 1000

        # Step 2: invalidation (best effort)
        start = time.time()
        try:
            result.keys_invalidated = await self.invalidator.delete_by_prefixes(
                GENERATION_PREFIXES
            )
        except Exception as e:
            result.invalidation_error = str(e)
            logger.error(f"Cache invalidation failed, entries will expire via TTL: {e}")
        result.timings_ms["invalidate"] = (time.time() - start) * 1000

        # Step 3: warming (isolated per state)
        start = time.time()
        result.warming = await self.warmer.warm_hot_set(priority_years)
        result.timings_ms["warm"] = (time.time() - start) * 1000

        logger.info(
            f"Reconciliation complete: view refreshed, "
            f"{result.total_invalidated} keys invalidated, "
            f"{result.warming.states_warmed}/{result.warming.states_total} states warmed "
            f"({result.warming.states_failed} failed)"
        )
        return result
