"""
States API

- GET /states?year                 : all states ranked by total generation
- GET /states/{code}?year&topPlants : one state's totals and top plants
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query

from energy_insights.services.insights import InsightsService
from .dependencies import get_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/states", tags=["States"])


@router.get("")
async def get_states_summary(
    year: Optional[int] = Query(None, description="Data year (default 2023)"),
    service: InsightsService = Depends(get_service),
) -> List[Dict[str, Any]]:
    """Every state with generation in the year, with its share of the national total."""
    return await service.get_states_summary(year=year)


@router.get("/{code}")
async def get_state_detail(
    code: str,
    year: Optional[int] = Query(None, description="Data year (default 2023)"),
    top_plants: Optional[int] = Query(None, alias="topPlants", description="Top plants to include (1-100)"),
    service: InsightsService = Depends(get_service),
) -> Dict[str, Any]:
    return await service.get_state_detail(code, year=year, top_plants=top_plants)
