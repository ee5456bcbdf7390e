"""
Cached query surface used by the API and by cache warming.

Each public method validates its parameters, builds the cache key from
them, and only calls the query engine on a miss. Results are cached as
plain dicts, so a hit returns exactly what the original computation did.
"""

import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from energy_insights.cache.config import CacheTTL
from energy_insights.cache.keys import (
    all_states_key,
    plant_key,
    state_detail_key,
    states_summary_key,
    top_plants_key,
)
from energy_insights.cache.redis_cache import CacheBackend
from energy_insights.schemas import (
    PlantQuery,
    StateDetailQuery,
    StatesSummaryQuery,
    TopPlantsQuery,
    validate_params,
)
from energy_insights.utils.config import Settings, get_settings
from .query_engine import QueryEngine

logger = logging.getLogger(__name__)


class InsightsService:
    """Validation + caching in front of the QueryEngine."""

    def __init__(
        self,
        engine: QueryEngine,
        cache: CacheBackend,
        settings: Optional[Settings] = None,
    ):
        self.engine = engine
        self.cache = cache
        self.settings = settings or get_settings()

    async def _cached(
        self,
        key: str,
        compute: Callable[[], Awaitable[Any]],
        refresh: bool = False,
    ) -> Any:
        """
        Return the cached value for `key`, computing and storing it on a miss.

        With refresh=True the cache read is skipped and the entry overwritten.
        """
        if not refresh:
            cached = await self.cache.get(key)
            if cached is not None:
                logger.info(f"Cache hit for {key}")
                return cached
            logger.info(f"Cache miss for {key}")

        value = await compute()
        await self.cache.set(key, value, CacheTTL.seconds())
        return value

    async def get_top_plants(
        self,
        top: Optional[int] = None,
        state: Optional[str] = None,
        year: Optional[int] = None,
        refresh: bool = False,
    ) -> List[Dict[str, Any]]:
        query = validate_params(
            TopPlantsQuery,
            top=self.settings.DEFAULT_TOP if top is None else top,
            state=state,
            year=year,
        )

        async def compute():
            plants = await self.engine.get_top_n_plants(query.top, query.state, query.year)
            return [plant.to_dict() for plant in plants]

        return await self._cached(
            top_plants_key(query.top, query.state, query.year), compute, refresh
        )

    async def get_plant(self, plant_id: int, refresh: bool = False) -> Dict[str, Any]:
        query = validate_params(PlantQuery, plant_id=plant_id)

        async def compute():
            return (await self.engine.get_plant_by_id(query.plant_id)).to_dict()

        return await self._cached(plant_key(query.plant_id), compute, refresh)

    async def list_states(self, refresh: bool = False) -> List[Dict[str, Any]]:
        async def compute():
            return [
                {"id": s.id, "code": s.code, "name": s.name}
                for s in await self.engine.list_states()
            ]

        return await self._cached(all_states_key(), compute, refresh)

    async def get_states_summary(
        self,
        year: Optional[int] = None,
        refresh: bool = False,
    ) -> List[Dict[str, Any]]:
        query = validate_params(
            StatesSummaryQuery,
            year=self.settings.DEFAULT_YEAR if year is None else year,
        )

        async def compute():
            summaries = await self.engine.get_states_summary(query.year)
            result = []
            for index, summary in enumerate(summaries):
                summary.rank = index + 1
                result.append(summary.to_dict())
            return result

        return await self._cached(states_summary_key(query.year), compute, refresh)

    async def get_state_detail(
        self,
        code: str,
        year: Optional[int] = None,
        top_plants: Optional[int] = None,
        refresh: bool = False,
    ) -> Dict[str, Any]:
        query = validate_params(
            StateDetailQuery,
            code=code.upper() if isinstance(code, str) else code,
            year=self.settings.DEFAULT_YEAR if year is None else year,
            top_plants=10 if top_plants is None else top_plants,
        )

        async def compute():
            detail = await self.engine.get_state_detail(
                query.code, query.year, query.top_plants
            )
            return detail.to_dict()

        return await self._cached(
            state_detail_key(query.code, query.year, query.top_plants), compute, refresh
        )
