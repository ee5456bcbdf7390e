"""
In-memory preparation of parsed plant records before loading.
"""

import logging
from collections import OrderedDict
from typing import Dict, List, Tuple

from .reader import PlantRecord

logger = logging.getLogger(__name__)


def combine_duplicates(records: List[PlantRecord]) -> List[PlantRecord]:
    """
    Merge records sharing (plant name, state) by summing their generation.

    A plant is identified by its name within a state, so two rows for the
    same pair would otherwise collide on the same generation fact. First
    occurrence order is kept.
    """
    combined: "OrderedDict[Tuple[str, str], float]" = OrderedDict()
    for record in records:
        key = (record.plant_name, record.state_code)
        combined[key] = combined.get(key, 0.0) + record.net_generation

    duplicates = len(records) - len(combined)
    if duplicates:
        logger.info(f"Combined {duplicates} duplicate plant rows")

    return [
        PlantRecord(plant_name=name, state_code=state, net_generation=total)
        for (name, state), total in combined.items()
    ]


def aggregate_by_state(records: List[PlantRecord]) -> Dict[str, float]:
    """Total net generation per state code."""
    totals: Dict[str, float] = {}
    for record in records:
        totals[record.state_code] = totals.get(record.state_code, 0.0) + record.net_generation
    return totals


def top_states(totals: Dict[str, float], limit: int = 10) -> List[Tuple[str, float]]:
    """States by total generation, largest first; ties by code."""
    return sorted(totals.items(), key=lambda item: (-item[1], item[0]))[:limit]


def log_top_states(totals: Dict[str, float], limit: int = 10) -> None:
    logger.info(f"Top {limit} states by total generation:")
    for index, (state, total) in enumerate(top_states(totals, limit), start=1):
        logger.info(f"{index}. {state}: {total:,.0f} MWh")
