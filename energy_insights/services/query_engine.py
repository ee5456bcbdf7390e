"""
Query Engine

Answers the ranking questions over generation data:
- top-N plants, nationally or within one state
- per-state totals for a year with share of the national total
- one state's detail with its own top plants
- one plant with its full history

Percentages never re-sum generation facts. State totals come from the
aggregate view in one lookup per distinct (state, year) in the result,
and a missing aggregate row yields 0 percent rather than an error.

Ranks are 1-based by position. Equal generation values keep the store's
order, which breaks ties by generation fact id ascending.
"""

import asyncio
import logging
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from energy_insights.database.repository import (
    GenerationRow,
    GenerationStore,
    StateRow,
    YearGeneration,
)
from energy_insights.errors import NotFoundError

logger = logging.getLogger(__name__)


# =============================================================================
# RESULT TYPES
# =============================================================================

@dataclass
class PlantRanking:
    """A generation fact ranked against others, with its share of the state total."""
    id: int
    plant_id: int
    name: str
    state: StateRow
    year: int
    net_generation: float
    percent_of_state: float
    rank: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class StateSummary:
    state_id: int
    code: str
    name: str
    year: int
    total_generation: float
    percent_of_national: float
    plant_count: int
    rank: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class StateDetail:
    state: StateRow
    year: int
    total_generation: float
    percent_of_national: float
    plant_count: int
    top_plants: List[PlantRanking] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class PlantDetail:
    id: int
    name: str
    state: StateRow
    generations: List[YearGeneration] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def percent_of(part: float, whole: Optional[float]) -> float:
    """part / whole * 100, or 0 when the whole is missing or not positive."""
    if not whole or whole <= 0:
        return 0.0
    return part / whole * 100


# =============================================================================
# ENGINE
# =============================================================================

class QueryEngine:
    """Computes ranked, percentage-annotated results from a GenerationStore."""

    def __init__(self, store: GenerationStore):
        self.store = store

    async def _require_state(self, code: str) -> StateRow:
        state = await self.store.get_state_by_code(code)
        if state is None:
            raise NotFoundError(
                f"State with code '{code}' not found",
                details={"state": code},
            )
        return state

    async def _rank(self, rows: List[GenerationRow]) -> List[PlantRanking]:
        if not rows:
            return []

        totals = await self.store.state_year_totals(
            (row.state_id, row.year) for row in rows
        )
        return [
            PlantRanking(
                id=row.id,
                plant_id=row.plant_id,
                name=row.plant_name,
                state=StateRow(id=row.state_id, code=row.state_code, name=row.state_name),
                year=row.year,
                net_generation=row.net_generation,
                percent_of_state=percent_of(
                    row.net_generation, totals.get((row.state_id, row.year))
                ),
                rank=index + 1,
            )
            for index, row in enumerate(rows)
        ]

    async def get_top_n_plants(
        self,
        top: int,
        state_code: Optional[str] = None,
        year: Optional[int] = None,
    ) -> List[PlantRanking]:
        """
        Top `top` generation facts, highest first.

        An unknown `state_code` is NotFound; a known state or year with no
        facts is an empty list.
        """
        start = time.time()

        state_id = None
        if state_code:
            state_id = (await self._require_state(state_code)).id

        rows = await self.store.top_generations(top, state_id=state_id, year=year)
        plants = await self._rank(rows)

        logger.debug(
            f"Fetched {len(plants)} plants (top={top}, state={state_code or 'ALL'}, "
            f"year={year or 'ALL'}) in {(time.time() - start) * 1000:.1f}ms"
        )
        return plants

    async def list_states(self) -> List[StateRow]:
        return await self.store.list_states()

    async def get_states_summary(self, year: int) -> List[StateSummary]:
        """
        Every state with generation in `year`, largest total first.

        Ranks are left unset; the caller numbers the list.
        """
        totals = await self.store.state_totals_for_year(year)
        if not totals:
            logger.debug(f"No state totals for year {year}")
            return []

        national_total = sum(row.total_generation for row in totals)
        plant_counts = await self.store.plant_counts_for_year(year)

        return [
            StateSummary(
                state_id=row.state_id,
                code=row.code,
                name=row.name,
                year=row.year,
                total_generation=row.total_generation,
                percent_of_national=percent_of(row.total_generation, national_total),
                plant_count=plant_counts.get(row.state_id, 0),
            )
            for row in totals
        ]

    async def get_state_detail(
        self,
        state_code: str,
        year: int,
        top_plants_count: int = 10,
    ) -> StateDetail:
        """
        One state's total, national share, plant count and top plants.

        Raises:
            NotFoundError: unknown state, or no aggregate row for that year
        """
        state = await self._require_state(state_code)

        total = await self.store.state_total(state.id, year)
        if total is None:
            raise NotFoundError(
                f"No data found for state '{state_code}' in year {year}",
                details={"state": state_code, "year": year},
            )

        rows, national_total, plant_count = await asyncio.gather(
            self.store.top_generations(top_plants_count, state_id=state.id, year=year),
            self.store.national_total(year),
            self.store.plant_count(state.id, year),
        )

        return StateDetail(
            state=state,
            year=year,
            total_generation=total,
            percent_of_national=percent_of(total, national_total),
            plant_count=plant_count,
            top_plants=await self._rank(rows),
        )

    async def get_plant_by_id(self, plant_id: int) -> PlantDetail:
        plant = await self.store.get_plant(plant_id)
        if plant is None:
            raise NotFoundError(
                f"Plant with ID {plant_id} not found",
                details={"plant_id": plant_id},
            )
        return PlantDetail(
            id=plant.id,
            name=plant.name,
            state=plant.state,
            generations=list(plant.generations),
        )
