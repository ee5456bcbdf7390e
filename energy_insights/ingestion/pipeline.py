"""
Transactional bulk loader.

Reads a source file, prepares the records in memory, then writes states,
plants and one year of generation facts inside a single transaction with
its own time budget. Nothing is visible until the commit; a failure or
timeout rolls everything back and leaves the aggregate view and the
cache untouched.

After a successful commit the loader hands over to reconciliation
(aggregate refresh, cache invalidation, cache warming).
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from energy_insights.database import bulk
from energy_insights.database.repository import GenerationStore, SqlGenerationStore
from energy_insights.database.session import Database
from energy_insights.errors import (
    IngestionError,
    IngestionTimeoutError,
    UpstreamError,
    ValidationFailedError,
)
from energy_insights.schemas import ReconcileQuery, validate_params
from energy_insights.services.reconciliation import CacheReconciler, ReconciliationResult
from energy_insights.utils.config import Settings, get_settings
from .reader import DEFAULT_SHEET, PlantRecord, read_source
from .transform import aggregate_by_state, combine_duplicates, log_top_states

logger = logging.getLogger(__name__)


@dataclass
class IngestionResult:
    source: str
    year: int
    rows_parsed: int = 0
    states: int = 0
    plants: int = 0
    facts_written: int = 0
    facts_deleted: int = 0
    duration_ms: float = 0.0
    table_counts: Dict[str, int] = field(default_factory=dict)
    reconciliation: Optional[ReconciliationResult] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source,
            "year": self.year,
            "rows_parsed": self.rows_parsed,
            "states": self.states,
            "plants": self.plants,
            "facts_written": self.facts_written,
            "facts_deleted": self.facts_deleted,
            "duration_ms": round(self.duration_ms, 2),
            "table_counts": self.table_counts,
            "reconciliation": self.reconciliation.to_dict() if self.reconciliation else None,
        }


class IngestionPipeline:
    """One-shot loader for a single data year."""

    def __init__(
        self,
        database: Database,
        reconciler: Optional[CacheReconciler] = None,
        store: Optional[GenerationStore] = None,
        settings: Optional[Settings] = None,
    ):
        self.database = database
        self.reconciler = reconciler
        self.store = store or SqlGenerationStore(database)
        self.settings = settings or get_settings()

    def prepare(self, records: List[PlantRecord], year: int) -> List[PlantRecord]:
        """Drop records tagged with another year, then merge duplicates."""
        in_year = [r for r in records if r.year is None or r.year == year]
        if len(in_year) != len(records):
            logger.warning(f"Ignored {len(records) - len(in_year)} records not in {year}")
        return combine_duplicates(in_year)

    async def _write(self, records: List[PlantRecord], year: int, result: IngestionResult) -> None:
        totals = aggregate_by_state(records)

        async with self.database.transaction(
            timeout_seconds=self.settings.INGEST_TIMEOUT_SECONDS
        ) as session:
            logger.info("[TX] Step 1: Upserting states...")
            state_ids = await bulk.upsert_states(session, {code: code for code in totals})

            logger.info("[TX] Step 2: Cleaning old data...")
            result.facts_deleted = await bulk.delete_generations_for_year(session, year)

            logger.info("[TX] Step 3: Upserting plants and generations...")
            plant_ids = await bulk.upsert_plants(
                session,
                [(r.plant_name, state_ids[r.state_code]) for r in records],
            )
            facts = [
                (plant_ids[(r.plant_name, state_ids[r.state_code])], year, r.net_generation)
                for r in records
            ]
            result.facts_written = await bulk.upsert_generations(session, facts)

        result.states = len(state_ids)
        result.plants = len(plant_ids)

    async def load(self, records: List[PlantRecord], year: int, result: IngestionResult) -> None:
        """
        Write prepared records in one bounded transaction.

        Raises:
            IngestionTimeoutError: the time budget ran out (rolled back)
            IngestionError: any database failure (rolled back)
        """
        timeout = self.settings.INGEST_TIMEOUT_SECONDS
        tx_start = time.time()
        try:
            await asyncio.wait_for(self._write(records, year, result), timeout=timeout)
        except asyncio.TimeoutError as e:
            logger.error(f"Ingestion transaction exceeded {timeout}s and was rolled back")
            raise IngestionTimeoutError(
                f"Ingestion for {year} exceeded {timeout}s; transaction rolled back"
            ) from e
        except (SQLAlchemyError, OSError) as e:
            if "statement timeout" in str(e):
                logger.error("Ingestion statement hit the server-side timeout; rolled back")
                raise IngestionTimeoutError(
                    f"Ingestion for {year} hit the statement timeout; transaction rolled back"
                ) from e
            logger.error(f"Ingestion transaction failed and was rolled back: {e}")
            raise IngestionError(f"Ingestion for {year} failed: {e}") from e

        logger.info(f"Transaction committed in {(time.time() - tx_start) * 1000:.0f}ms")

    async def run(
        self,
        path: Path,
        year: Optional[int] = None,
        sheet: str = DEFAULT_SHEET,
        reconcile: bool = True,
    ) -> IngestionResult:
        """
        Read, load and reconcile one source file.

        Raises:
            IngestionError: nothing was committed
            AggregateRefreshError: data committed, aggregate refresh failed
        """
        start = time.time()
        year = year or self.settings.DEFAULT_YEAR
        try:
            validate_params(ReconcileQuery, priority_years=[year])
        except ValidationFailedError as e:
            raise IngestionError(f"Cannot ingest year {year}: {e}") from e

        result = IngestionResult(source=str(path), year=year)
        logger.info(f"=== Starting ingestion of {path} for {year} ===")

        raw = await asyncio.to_thread(read_source, Path(path), sheet)
        result.rows_parsed = len(raw)
        records = self.prepare(raw, year)
        if not records:
            raise IngestionError(f"No plant records found in {path}")

        totals = aggregate_by_state(records)
        logger.info(f"Aggregated data for {len(totals)} states")
        log_top_states(totals)

        await self.load(records, year, result)

        try:
            result.table_counts = await self.store.table_counts()
            logger.info(f"Table counts after load: {result.table_counts}")
        except UpstreamError as e:
            logger.warning(f"Could not read table counts after load: {e}")

        if reconcile and self.reconciler is not None:
            result.reconciliation = await self.reconciler.reconcile_after_bulk_load(
                priority_years=[year]
            )
        else:
            logger.warning(
                "Reconciliation skipped; aggregate view and cache may be stale until "
                "scripts/refresh_materialized_view.py --invalidate --warm is run"
            )

        result.duration_ms = (time.time() - start) * 1000
        logger.info(
            f"=== Ingestion complete: {result.facts_written} facts, {result.plants} plants, "
            f"{result.states} states in {result.duration_ms:.0f}ms ==="
        )
        return result
