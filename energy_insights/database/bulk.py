"""
Batched write helpers for the ingestion transaction.

All functions take an open AsyncSession that is already inside a
transaction; none of them commit. Every statement is an upsert on a
natural key, so re-running a load with the same input changes nothing.
"""

import logging
from typing import Dict, Iterable, List, Sequence, Tuple

from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from .models import Plant, PlantGeneration, State

logger = logging.getLogger(__name__)

BATCH_SIZE = 1000


def _batches(rows: Sequence, size: int = BATCH_SIZE) -> Iterable[Sequence]:
    for i in range(0, len(rows), size):
        yield rows[i:i + size]


async def upsert_states(session: AsyncSession, states: Dict[str, str]) -> Dict[str, int]:
    """
    Insert missing states; existing codes are left untouched.

    Args:
        states: code -> display name

    Returns:
        code -> state id, for every requested code
    """
    if not states:
        return {}

    rows = [{"code": code, "name": name or code} for code, name in states.items()]
    for batch in _batches(rows):
        stmt = insert(State).values(list(batch)).on_conflict_do_nothing(index_elements=["code"])
        await session.execute(stmt)

    result = await session.execute(
        select(State.code, State.id).where(State.code.in_(list(states)))
    )
    ids = {code: state_id for code, state_id in result}
    logger.info(f"Upserted {len(ids)} states")
    return ids


async def delete_generations_for_year(session: AsyncSession, year: int) -> int:
    """Remove every generation fact for `year`. Returns rows deleted."""
    result = await session.execute(
        delete(PlantGeneration).where(PlantGeneration.year == year)
    )
    deleted = result.rowcount or 0
    logger.info(f"Deleted {deleted} generation records for {year}")
    return deleted


async def upsert_plants(
    session: AsyncSession,
    plants: Sequence[Tuple[str, int]],
) -> Dict[Tuple[str, int], int]:
    """
    Upsert plants by (name, state_id).

    Returns:
        (name, state_id) -> plant id
    """
    ids: Dict[Tuple[str, int], int] = {}
    rows = [{"name": name, "state_id": state_id} for name, state_id in dict.fromkeys(plants)]
    for batch in _batches(rows):
        stmt = insert(Plant).values(list(batch))
        # No-op update so RETURNING also yields rows that already existed
        stmt = stmt.on_conflict_do_update(
            constraint="plants_name_state_id_key",
            set_={"name": stmt.excluded.name},
        ).returning(Plant.id, Plant.name, Plant.state_id)
        result = await session.execute(stmt)
        for plant_id, name, state_id in result:
            ids[(name, state_id)] = plant_id
    logger.info(f"Upserted {len(ids)} plants")
    return ids


async def upsert_generations(
    session: AsyncSession,
    facts: List[Tuple[int, int, float]],
) -> int:
    """
    Upsert generation facts by (plant_id, year).

    Args:
        facts: (plant_id, year, net_generation) tuples

    Returns:
        number of facts written
    """
    written = 0
    rows = [
        {"plant_id": plant_id, "year": year, "net_generation": net}
        for plant_id, year, net in facts
    ]
    for batch in _batches(rows):
        stmt = insert(PlantGeneration).values(list(batch))
        stmt = stmt.on_conflict_do_update(
            constraint="plant_generations_plant_id_year_key",
            set_={"net_generation": stmt.excluded.net_generation},
        )
        await session.execute(stmt)
        written += len(batch)
    logger.info(f"Upserted {written} generation records")
    return written
