"""
Process-wide resource wiring.

`open_resources()` builds the database handle, cache backend and the
services on top of them, yields them, and closes what it opened on exit.
The API lifespan and the command-line scripts both go through it; nothing
is kept in module globals.

    async with open_resources() as resources:
        await resources.service.get_top_plants(top=10)
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Optional

from energy_insights.cache.config import CacheConfig
from energy_insights.cache.invalidation import CacheInvalidator
from energy_insights.cache.redis_cache import CacheBackend, create_cache
from energy_insights.cache.warming import CacheWarmer
from energy_insights.database.repository import GenerationStore, SqlGenerationStore
from energy_insights.database.session import Database
from energy_insights.services.insights import InsightsService
from energy_insights.services.query_engine import QueryEngine
from energy_insights.services.reconciliation import CacheReconciler
from energy_insights.utils.config import Settings, get_settings

logger = logging.getLogger(__name__)


@dataclass
class Resources:
    settings: Settings
    database: Optional[Database]
    store: GenerationStore
    cache: CacheBackend
    engine: QueryEngine
    service: InsightsService
    invalidator: CacheInvalidator
    warmer: CacheWarmer
    reconciler: CacheReconciler


def build_resources(
    settings: Settings,
    store: GenerationStore,
    cache: CacheBackend,
    database: Optional[Database] = None,
) -> Resources:
    """Wire the services over an existing store and cache."""
    engine = QueryEngine(store)
    service = InsightsService(engine, cache, settings)
    invalidator = CacheInvalidator(cache)
    warmer = CacheWarmer(service, store, cache, settings)
    return Resources(
        settings=settings,
        database=database,
        store=store,
        cache=cache,
        engine=engine,
        service=service,
        invalidator=invalidator,
        warmer=warmer,
        reconciler=CacheReconciler(store, invalidator, warmer),
    )


@asynccontextmanager
async def open_resources(
    settings: Optional[Settings] = None,
    store: Optional[GenerationStore] = None,
    cache: Optional[CacheBackend] = None,
) -> AsyncIterator[Resources]:
    """
    Open everything a process needs.

    A `store` or `cache` passed in is used as-is and left open on exit;
    anything created here is closed here.
    """
    settings = settings or get_settings()
    database: Optional[Database] = None
    owned_cache: Optional[CacheBackend] = None

    try:
        if store is None:
            database = await Database(settings=settings).connect()
            store = SqlGenerationStore(database)
        if cache is None:
            owned_cache = cache = await create_cache(CacheConfig.from_settings(settings))

        yield build_resources(settings, store, cache, database)
    finally:
        if owned_cache is not None:
            await owned_cache.close()
        if database is not None:
            await database.close()
