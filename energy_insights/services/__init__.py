"""Query, caching and reconciliation services."""

from .query_engine import (
    QueryEngine,
    PlantRanking,
    StateSummary,
    StateDetail,
    PlantDetail,
)
from .insights import InsightsService
from .reconciliation import CacheReconciler, ReconciliationResult

__all__ = [
    "QueryEngine",
    "PlantRanking",
    "StateSummary",
    "StateDetail",
    "PlantDetail",
    "InsightsService",
    "CacheReconciler",
    "ReconciliationResult",
]
