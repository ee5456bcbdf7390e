"""
Cache Management API

Provides endpoints for cache monitoring and manual operations.

Endpoints:
- Health check for monitoring/alerting
- Statistics and warming diagnostics
- Manual reconciliation (refresh aggregates, invalidate, warm)
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from energy_insights.cache.monitoring import CacheMonitor
from energy_insights.cache.redis_cache import CacheBackend
from energy_insights.cache.warming import CacheWarmer
from energy_insights.schemas import Year
from energy_insights.services.reconciliation import CacheReconciler
from .dependencies import get_cache, get_monitor, get_reconciler, get_warmer

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/cache", tags=["Cache Management"])


# =============================================================================
# REQUEST / RESPONSE MODELS
# =============================================================================

class CacheHealthResponse(BaseModel):
    """Cache health check response."""
    status: str = Field(..., description="healthy, degraded or unhealthy")
    backend: str = Field(..., description="redis or null")
    latency_ms: float
    key_count: int = 0
    memory_used_bytes: int = 0
    issues: List[Dict[str, Any]] = []
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class CacheStatsResponse(BaseModel):
    """Cache statistics response."""
    stats: Dict[str, Any]
    total_keys: int
    memory_usage: int
    is_connected: bool


class ReconcileRequest(BaseModel):
    priority_years: Optional[List[Year]] = Field(
        default=None,
        description="Years to warm first (default: most recent years with data)",
    )


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.get("/health", response_model=CacheHealthResponse)
async def cache_health_check(monitor: CacheMonitor = Depends(get_monitor)):
    """
    Check cache infrastructure health.

    An unhealthy cache never fails requests; this endpoint is for
    monitoring only.
    """
    result = await monitor.health_check()
    return CacheHealthResponse(
        status=result.status.value,
        backend=result.backend,
        latency_ms=round(result.latency_ms, 2),
        key_count=result.key_count,
        memory_used_bytes=result.memory_used_bytes,
        issues=result.issues,
        timestamp=result.timestamp,
    )


@router.get("/stats", response_model=CacheStatsResponse)
async def get_cache_stats(
    cache: CacheBackend = Depends(get_cache),
    warmer: CacheWarmer = Depends(get_warmer),
):
    """
    Get current cache statistics.

    Note: hit/miss counters are per process and reset on restart.
    """
    warming = await warmer.get_warming_stats()
    return CacheStatsResponse(
        stats=cache.get_stats(),
        total_keys=warming["total_keys"],
        memory_usage=warming["memory_usage"],
        is_connected=warming["is_connected"],
    )


@router.post("/reconcile")
async def reconcile(
    request: Optional[ReconcileRequest] = None,
    reconciler: CacheReconciler = Depends(get_reconciler),
) -> Dict[str, Any]:
    """
    Refresh the state totals, invalidate cached results and re-warm.

    Same pipeline the ingestion job runs after a load. A failed aggregate
    refresh is returned as a 503.
    """
    priority_years = request.priority_years if request else None
    logger.info(f"Manual reconciliation requested (priority years: {priority_years})")
    result = await reconciler.reconcile_after_bulk_load(priority_years=priority_years)
    return result.to_dict()
