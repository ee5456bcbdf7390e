"""
Storage access for generation data.

`GenerationStore` is the only way the query engine, the warming pipeline
and the scripts talk to the relational store. It returns plain row
dataclasses, never ORM objects, and it hides the fact that the state
totals live in a materialized view.

`SqlGenerationStore` is the PostgreSQL implementation. Every driver or
connection failure is converted to `UpstreamError` in `_reading()`; a
failed read never comes back as an empty result.
"""

import logging
import time
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import func, select, text, tuple_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from energy_insights.errors import AggregateRefreshError, UpstreamError
from .models import Plant, PlantGeneration, State, STATE_GENERATION_VIEW, state_generation_mv
from .session import Database

logger = logging.getLogger(__name__)


# =============================================================================
# ROW TYPES
# =============================================================================

@dataclass(frozen=True)
class StateRow:
    id: int
    code: str
    name: str


@dataclass(frozen=True)
class GenerationRow:
    """One generation fact joined with its plant and state."""
    id: int
    plant_id: int
    plant_name: str
    state_id: int
    state_code: str
    state_name: str
    year: int
    net_generation: float


@dataclass(frozen=True)
class StateTotalRow:
    """One row of the state generation aggregate, joined with the state."""
    state_id: int
    code: str
    name: str
    year: int
    total_generation: float


@dataclass(frozen=True)
class YearGeneration:
    id: int
    year: int
    net_generation: float


@dataclass(frozen=True)
class PlantHistory:
    """A plant with its full generation history, newest year first."""
    id: int
    name: str
    state: StateRow
    generations: List[YearGeneration] = field(default_factory=list)


# =============================================================================
# INTERFACE
# =============================================================================

class GenerationStore(ABC):
    """Read access to states, plants, generation facts and state totals."""

    @abstractmethod
    async def get_state_by_code(self, code: str) -> Optional[StateRow]:
        ...

    @abstractmethod
    async def list_states(self) -> List[StateRow]:
        """All states ordered by code."""

    @abstractmethod
    async def top_generations(
        self,
        limit: int,
        state_id: Optional[int] = None,
        year: Optional[int] = None,
    ) -> List[GenerationRow]:
        """
        Highest generation facts first.

        Ties on net generation are broken by generation fact id ascending.
        """

    @abstractmethod
    async def state_year_totals(
        self,
        pairs: Iterable[Tuple[int, int]],
    ) -> Dict[Tuple[int, int], float]:
        """Aggregate lookup for (state_id, year) pairs. Missing pairs are absent."""

    @abstractmethod
    async def state_totals_for_year(self, year: int) -> List[StateTotalRow]:
        """Aggregate rows for a year, ordered by total desc then state id."""

    @abstractmethod
    async def state_total(self, state_id: int, year: int) -> Optional[float]:
        ...

    @abstractmethod
    async def national_total(self, year: int) -> float:
        ...

    @abstractmethod
    async def plant_counts_for_year(self, year: int) -> Dict[int, int]:
        """Number of plants with a fact in `year`, keyed by state id."""

    @abstractmethod
    async def plant_count(self, state_id: int, year: int) -> int:
        ...

    @abstractmethod
    async def get_plant(self, plant_id: int) -> Optional[PlantHistory]:
        ...

    @abstractmethod
    async def distinct_years(self, limit: int) -> List[int]:
        """Years that have generation facts, most recent first."""

    @abstractmethod
    async def refresh_aggregates_concurrently(self) -> None:
        """
        Rebuild the state totals without blocking concurrent readers.

        Raises:
            AggregateRefreshError: if the refresh did not complete.
        """

    @abstractmethod
    async def table_counts(self) -> Dict[str, int]:
        ...


# =============================================================================
# POSTGRESQL IMPLEMENTATION
# =============================================================================

class SqlGenerationStore(GenerationStore):
    """GenerationStore backed by PostgreSQL through SQLAlchemy asyncio."""

    def __init__(self, database: Database):
        self.database = database
        self.settings = database.settings

    @asynccontextmanager
    async def _reading(self, operation: str) -> AsyncIterator[AsyncSession]:
        try:
            async with self.database.session() as session:
                yield session
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Store read failed during {operation}: {e}")
            raise UpstreamError(
                f"Database query failed: {operation}",
                details={"operation": operation},
            ) from e

    async def get_state_by_code(self, code: str) -> Optional[StateRow]:
        async with self._reading("get_state_by_code") as session:
            result = await session.execute(
                select(State.id, State.code, State.name).where(State.code == code)
            )
            row = result.first()
        return StateRow(*row) if row else None

    async def list_states(self) -> List[StateRow]:
        async with self._reading("list_states") as session:
            result = await session.execute(
                select(State.id, State.code, State.name).order_by(State.code)
            )
            return [StateRow(*row) for row in result]

    async def top_generations(
        self,
        limit: int,
        state_id: Optional[int] = None,
        year: Optional[int] = None,
    ) -> List[GenerationRow]:
        stmt = (
            select(
                PlantGeneration.id,
                PlantGeneration.plant_id,
                Plant.name,
                Plant.state_id,
                State.code,
                State.name,
                PlantGeneration.year,
                PlantGeneration.net_generation,
            )
            .join(Plant, Plant.id == PlantGeneration.plant_id)
            .join(State, State.id == Plant.state_id)
        )
        if year is not None:
            stmt = stmt.where(PlantGeneration.year == year)
        if state_id is not None:
            stmt = stmt.where(Plant.state_id == state_id)
        # Served by the (year, net_generation DESC, id) indexes from migration 002
        stmt = stmt.order_by(
            PlantGeneration.net_generation.desc(),
            PlantGeneration.id.asc(),
        ).limit(limit)

        async with self._reading("top_generations") as session:
            result = await session.execute(stmt)
            return [
                GenerationRow(
                    id=row[0],
                    plant_id=row[1],
                    plant_name=row[2],
                    state_id=row[3],
                    state_code=row[4],
                    state_name=row[5],
                    year=row[6],
                    net_generation=float(row[7]),
                )
                for row in result
            ]

    async def state_year_totals(
        self,
        pairs: Iterable[Tuple[int, int]],
    ) -> Dict[Tuple[int, int], float]:
        pairs = list(dict.fromkeys(pairs))
        if not pairs:
            return {}
        mv = state_generation_mv.c
        stmt = select(mv.state_id, mv.year, mv.total_generation).where(
            tuple_(mv.state_id, mv.year).in_(pairs)
        )
        async with self._reading("state_year_totals") as session:
            result = await session.execute(stmt)
            return {(row[0], row[1]): float(row[2]) for row in result}

    async def state_totals_for_year(self, year: int) -> List[StateTotalRow]:
        mv = state_generation_mv.c
        stmt = (
            select(mv.state_id, State.code, State.name, mv.year, mv.total_generation)
            .join(State, State.id == mv.state_id)
            .where(mv.year == year)
            .order_by(mv.total_generation.desc(), mv.state_id.asc())
        )
        async with self._reading("state_totals_for_year") as session:
            result = await session.execute(stmt)
            return [
                StateTotalRow(
                    state_id=row[0],
                    code=row[1],
                    name=row[2],
                    year=row[3],
                    total_generation=float(row[4]),
                )
                for row in result
            ]

    async def state_total(self, state_id: int, year: int) -> Optional[float]:
        mv = state_generation_mv.c
        stmt = select(mv.total_generation).where(
            mv.state_id == state_id, mv.year == year
        )
        async with self._reading("state_total") as session:
            value = (await session.execute(stmt)).scalar_one_or_none()
        return float(value) if value is not None else None

    async def national_total(self, year: int) -> float:
        mv = state_generation_mv.c
        stmt = select(func.coalesce(func.sum(mv.total_generation), 0)).where(mv.year == year)
        async with self._reading("national_total") as session:
            value = (await session.execute(stmt)).scalar_one()
        return float(value)

    async def plant_counts_for_year(self, year: int) -> Dict[int, int]:
        stmt = (
            select(Plant.state_id, func.count(func.distinct(Plant.id)))
            .join(PlantGeneration, PlantGeneration.plant_id == Plant.id)
            .where(PlantGeneration.year == year)
            .group_by(Plant.state_id)
        )
        async with self._reading("plant_counts_for_year") as session:
            result = await session.execute(stmt)
            return {row[0]: int(row[1]) for row in result}

    async def plant_count(self, state_id: int, year: int) -> int:
        stmt = (
            select(func.count(func.distinct(Plant.id)))
            .join(PlantGeneration, PlantGeneration.plant_id == Plant.id)
            .where(Plant.state_id == state_id, PlantGeneration.year == year)
        )
        async with self._reading("plant_count") as session:
            return int((await session.execute(stmt)).scalar_one())

    async def get_plant(self, plant_id: int) -> Optional[PlantHistory]:
        async with self._reading("get_plant") as session:
            result = await session.execute(
                select(Plant.id, Plant.name, State.id, State.code, State.name)
                .join(State, State.id == Plant.state_id)
                .where(Plant.id == plant_id)
            )
            row = result.first()
            if row is None:
                return None

            history = await session.execute(
                select(PlantGeneration.id, PlantGeneration.year, PlantGeneration.net_generation)
                .where(PlantGeneration.plant_id == plant_id)
                .order_by(PlantGeneration.year.desc())
            )
            generations = [
                YearGeneration(id=g[0], year=g[1], net_generation=float(g[2]))
                for g in history
            ]

        return PlantHistory(
            id=row[0],
            name=row[1],
            state=StateRow(id=row[2], code=row[3], name=row[4]),
            generations=generations,
        )

    async def distinct_years(self, limit: int) -> List[int]:
        stmt = (
            select(PlantGeneration.year)
            .distinct()
            .order_by(PlantGeneration.year.desc())
            .limit(limit)
        )
        async with self._reading("distinct_years") as session:
            return list((await session.execute(stmt)).scalars())

    async def refresh_aggregates_concurrently(self) -> None:
        start = time.time()
        timeout = self.settings.AGGREGATE_REFRESH_TIMEOUT_SECONDS
        try:
            async with self.database.transaction(timeout_seconds=timeout) as session:
                await session.execute(
                    text(f"REFRESH MATERIALIZED VIEW CONCURRENTLY {STATE_GENERATION_VIEW}")
                )
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Refresh of {STATE_GENERATION_VIEW} failed: {e}")
            raise AggregateRefreshError(
                f"Failed to refresh {STATE_GENERATION_VIEW}",
                details={"view": STATE_GENERATION_VIEW, "error": str(e)},
            ) from e

        duration_ms = int((time.time() - start) * 1000)
        logger.info(f"Refreshed {STATE_GENERATION_VIEW} concurrently in {duration_ms}ms")

    async def table_counts(self) -> Dict[str, int]:
        async with self._reading("table_counts") as session:
            counts = {}
            for name, model in (
                ("states", State),
                ("plants", Plant),
                ("plant_generations", PlantGeneration),
            ):
                counts[name] = int(
                    (await session.execute(select(func.count()).select_from(model))).scalar_one()
                )
            counts[STATE_GENERATION_VIEW] = int(
                (await session.execute(
                    select(func.count()).select_from(state_generation_mv)
                )).scalar_one()
            )
            return counts
