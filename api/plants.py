"""
Plants API

- GET /plants?top&state&year : top-N plants by net generation
- GET /plants/{plant_id}     : one plant with its generation history
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query

from energy_insights.services.insights import InsightsService
from .dependencies import get_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/plants", tags=["Plants"])


@router.get("")
async def get_top_plants(
    top: Optional[int] = Query(None, description="Number of plants (1-100, default 10)"),
    state: Optional[str] = Query(None, description="Two-letter state code, e.g. TX"),
    year: Optional[int] = Query(None, description="Data year (1900-2100)"),
    service: InsightsService = Depends(get_service),
) -> List[Dict[str, Any]]:
    """Top plants nationally, or within one state, ranked by net generation."""
    return await service.get_top_plants(top=top, state=state, year=year)


@router.get("/{plant_id}")
async def get_plant(
    plant_id: int,
    service: InsightsService = Depends(get_service),
) -> Dict[str, Any]:
    return await service.get_plant(plant_id)
