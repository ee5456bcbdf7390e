"""
Request-scoped access to the resources built in the app lifespan.

Nothing here creates resources; it only reads them from `app.state`.
"""

from fastapi import Request

from energy_insights.cache.monitoring import CacheMonitor
from energy_insights.cache.redis_cache import CacheBackend
from energy_insights.cache.warming import CacheWarmer
from energy_insights.services.insights import InsightsService
from energy_insights.services.reconciliation import CacheReconciler


def get_service(request: Request) -> InsightsService:
    return request.app.state.service


def get_cache(request: Request) -> CacheBackend:
    return request.app.state.cache


def get_monitor(request: Request) -> CacheMonitor:
    return CacheMonitor(request.app.state.cache)


def get_warmer(request: Request) -> CacheWarmer:
    return request.app.state.warmer


def get_reconciler(request: Request) -> CacheReconciler:
    return request.app.state.reconciler
