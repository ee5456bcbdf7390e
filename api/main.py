"""
Energy Insights API

Read-only HTTP surface over the cached query service.

Resources (database handle, cache backend, services) are opened once in
the lifespan, stored on `app.state`, and closed on shutdown. Pass `store`
and/or `cache` to `create_app()` to run against other backends.

Run locally:
    uvicorn api.main:app --reload
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import Optional

from dotenv import load_dotenv
from fastapi import Depends, FastAPI

from energy_insights import __version__
from energy_insights.cache.redis_cache import CacheBackend
from energy_insights.database.repository import GenerationStore
from energy_insights.runtime import open_resources
from energy_insights.utils.config import Settings, get_settings
from . import cache as cache_routes
from . import plants, states
from .dependencies import get_cache
from .errors import register_exception_handlers

logger = logging.getLogger(__name__)


def configure_logging(level: str = "INFO") -> None:
    # Log to stdout (hosting platforms treat stderr as errors)
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stdout,
        force=True,
    )


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[GenerationStore] = None,
    cache: Optional[CacheBackend] = None,
) -> FastAPI:
    """Build the application. Injected `store`/`cache` are not closed by the app."""
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        async with open_resources(settings, store=store, cache=cache) as resources:
            if resources.database is not None and not await resources.database.check_connection():
                logger.warning("Database connection check failed - continuing anyway")

            app.state.resources = resources
            app.state.cache = resources.cache
            app.state.service = resources.service
            app.state.warmer = resources.warmer
            app.state.reconciler = resources.reconciler
            logger.info(f"Energy Insights API started (cache backend: {resources.cache.name})")
            yield
        logger.info("Energy Insights API stopped")

    app = FastAPI(
        title="Energy Insights API",
        description="Power plant generation rankings by U.S. state and year",
        version=__version__,
        lifespan=lifespan,
    )
    register_exception_handlers(app)
    app.include_router(plants.router)
    app.include_router(states.router)
    app.include_router(cache_routes.router)

    @app.get("/health", tags=["Health"])
    async def health(app_cache: CacheBackend = Depends(get_cache)):
        """Liveness probe. The cache is reported but never required."""
        return {
            "status": "ok",
            "version": __version__,
            "cache": {"backend": app_cache.name, "connected": await app_cache.ping()},
        }

    return app


# CacheConfig reads os.environ directly, so .env has to be loaded first
load_dotenv()
configure_logging(get_settings().LOG_LEVEL)
app = create_app()
