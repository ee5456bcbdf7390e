"""
Pytest Configuration and Shared Fixtures

Provides an in-memory generation store, a Redis double and the TX/CA/FL
sample dataset used across the test modules.
"""

import fnmatch
from collections import Counter
from typing import Dict, Iterable, List, Optional, Tuple

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from energy_insights.cache.config import CacheConfig
from energy_insights.cache.redis_cache import NullCache, RedisCache
from energy_insights.database.repository import (
    GenerationRow,
    GenerationStore,
    PlantHistory,
    StateRow,
    StateTotalRow,
    YearGeneration,
)
from energy_insights.errors import AggregateRefreshError, UpstreamError
from energy_insights.runtime import build_resources
from energy_insights.utils.config import Settings


# ============================================================================
# In-memory store
# ============================================================================

class InMemoryGenerationStore(GenerationStore):
    """
    GenerationStore over plain dicts.

    State totals live in `aggregates` and only change on
    refresh_aggregates_concurrently(), like the materialized view.
    """

    def __init__(self):
        self.states: Dict[int, StateRow] = {}
        self.plants: Dict[int, Tuple[str, int]] = {}
        self.facts: Dict[int, Tuple[int, int, float]] = {}
        self.aggregates: Dict[Tuple[int, int], float] = {}
        self.calls: Counter = Counter()
        self.fail_reads = False
        self.fail_refresh = False

    # -- setup helpers -------------------------------------------------------

    def add_state(self, code: str, name: str) -> StateRow:
        state = StateRow(id=len(self.states) + 1, code=code, name=name)
        self.states[state.id] = state
        return state

    def add_plant(self, name: str, state_code: str) -> int:
        state = self._state_by_code(state_code)
        plant_id = len(self.plants) + 1
        self.plants[plant_id] = (name, state.id)
        return plant_id

    def add_fact(self, plant_id: int, year: int, net_generation: float) -> int:
        fact_id = len(self.facts) + 1
        self.facts[fact_id] = (plant_id, year, net_generation)
        return fact_id

    def recompute_aggregates(self) -> None:
        totals: Dict[Tuple[int, int], float] = {}
        for plant_id, year, net in self.facts.values():
            key = (self.plants[plant_id][1], year)
            totals[key] = totals.get(key, 0.0) + net
        self.aggregates = totals

    def _state_by_code(self, code: str) -> Optional[StateRow]:
        return next((s for s in self.states.values() if s.code == code), None)

    def _read(self, operation: str) -> None:
        self.calls[operation] += 1
        if self.fail_reads:
            raise UpstreamError(f"Database query failed: {operation}")

    # -- GenerationStore -----------------------------------------------------

    async def get_state_by_code(self, code: str) -> Optional[StateRow]:
        self._read("get_state_by_code")
        return self._state_by_code(code)

    async def list_states(self) -> List[StateRow]:
        self._read("list_states")
        return sorted(self.states.values(), key=lambda s: s.code)

    async def top_generations(
        self,
        limit: int,
        state_id: Optional[int] = None,
        year: Optional[int] = None,
    ) -> List[GenerationRow]:
        self._read("top_generations")
        rows = []
        for fact_id, (plant_id, fact_year, net) in self.facts.items():
            name, plant_state_id = self.plants[plant_id]
            if year is not None and fact_year != year:
                continue
            if state_id is not None and plant_state_id != state_id:
                continue
            state = self.states[plant_state_id]
            rows.append(GenerationRow(
                id=fact_id,
                plant_id=plant_id,
                plant_name=name,
                state_id=state.id,
                state_code=state.code,
                state_name=state.name,
                year=fact_year,
                net_generation=net,
            ))
        rows.sort(key=lambda r: (-r.net_generation, r.id))
        return rows[:limit]

    async def state_year_totals(
        self,
        pairs: Iterable[Tuple[int, int]],
    ) -> Dict[Tuple[int, int], float]:
        self._read("state_year_totals")
        return {pair: self.aggregates[pair] for pair in pairs if pair in self.aggregates}

    async def state_totals_for_year(self, year: int) -> List[StateTotalRow]:
        self._read("state_totals_for_year")
        rows = [
            StateTotalRow(
                state_id=state_id,
                code=self.states[state_id].code,
                name=self.states[state_id].name,
                year=agg_year,
                total_generation=total,
            )
            for (state_id, agg_year), total in self.aggregates.items()
            if agg_year == year
        ]
        rows.sort(key=lambda r: (-r.total_generation, r.state_id))
        return rows

    async def state_total(self, state_id: int, year: int) -> Optional[float]:
        self._read("state_total")
        return self.aggregates.get((state_id, year))

    async def national_total(self, year: int) -> float:
        self._read("national_total")
        return sum(total for (_, y), total in self.aggregates.items() if y == year)

    async def plant_counts_for_year(self, year: int) -> Dict[int, int]:
        self._read("plant_counts_for_year")
        plants_by_state: Dict[int, set] = {}
        for plant_id, fact_year, _ in self.facts.values():
            if fact_year == year:
                plants_by_state.setdefault(self.plants[plant_id][1], set()).add(plant_id)
        return {state_id: len(ids) for state_id, ids in plants_by_state.items()}

    async def plant_count(self, state_id: int, year: int) -> int:
        self._read("plant_count")
        return len({
            plant_id for plant_id, fact_year, _ in self.facts.values()
            if fact_year == year and self.plants[plant_id][1] == state_id
        })

    async def get_plant(self, plant_id: int) -> Optional[PlantHistory]:
        self._read("get_plant")
        if plant_id not in self.plants:
            return None
        name, state_id = self.plants[plant_id]
        generations = [
            YearGeneration(id=fact_id, year=year, net_generation=net)
            for fact_id, (fact_plant, year, net) in self.facts.items()
            if fact_plant == plant_id
        ]
        generations.sort(key=lambda g: g.year, reverse=True)
        return PlantHistory(id=plant_id, name=name, state=self.states[state_id], generations=generations)

    async def distinct_years(self, limit: int) -> List[int]:
        self._read("distinct_years")
        return sorted({year for _, year, _ in self.facts.values()}, reverse=True)[:limit]

    async def refresh_aggregates_concurrently(self) -> None:
        self.calls["refresh_aggregates_concurrently"] += 1
        if self.fail_refresh:
            raise AggregateRefreshError("Failed to refresh state_generation_mv")
        self.recompute_aggregates()

    async def table_counts(self) -> Dict[str, int]:
        self._read("table_counts")
        return {
            "states": len(self.states),
            "plants": len(self.plants),
            "plant_generations": len(self.facts),
            "state_generation_mv": len(self.aggregates),
        }


# ============================================================================
# Redis double
# ============================================================================

class FakeRedis:
    """
    Async stand-in for redis.asyncio.Redis covering the commands RedisCache uses.

    SCAN pages over the sorted keyspace `count` keys at a time, so a single
    prefix deletion can take several round trips.
    """

    def __init__(self):
        self.data: Dict[str, bytes] = {}
        self.ttls: Dict[str, int] = {}
        self.commands: Counter = Counter()
        self.fail = False
        self.closed = False
        self._scan_snapshots: Dict[Optional[str], List[str]] = {}

    def _command(self, name: str) -> None:
        self.commands[name] += 1
        if self.fail:
            raise RedisConnectionError("Connection refused")

    async def get(self, key):
        self._command("get")
        return self.data.get(key)

    async def setex(self, key, ttl, value):
        self._command("setex")
        self.data[key] = value
        self.ttls[key] = ttl
        return True

    async def scan(self, cursor=0, match=None, count=None):
        self._command("scan")
        start = int(cursor)
        if start == 0:
            # Keys present for the whole iteration are returned exactly once
            self._scan_snapshots[match] = sorted(self.data)
        keys = self._scan_snapshots.get(match, [])
        end = start + (count or 10)
        page = [
            k for k in keys[start:end]
            if k in self.data and (match is None or fnmatch.fnmatchcase(k, match))
        ]
        next_cursor = end if end < len(keys) else 0
        return next_cursor, [k.encode() for k in page]

    async def delete(self, *keys):
        self._command("delete")
        removed = 0
        for key in keys:
            key = key.decode() if isinstance(key, bytes) else key
            if self.data.pop(key, None) is not None:
                self.ttls.pop(key, None)
                removed += 1
        return removed

    async def ping(self):
        self._command("ping")
        return True

    async def dbsize(self):
        self._command("dbsize")
        return len(self.data)

    async def info(self, section=None):
        self._command("info")
        return {"used_memory": sum(len(v) for v in self.data.values())}

    async def aclose(self):
        self.closed = True


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        DATABASE_URL=None,
        DEFAULT_YEAR=2023,
        DEFAULT_TOP=10,
        WARMING_BATCH_SIZE=2,
        WARMING_TOP_VALUES=[10, 20],
        WARMING_RECENT_YEARS=5,
    )


@pytest.fixture
def empty_store() -> InMemoryGenerationStore:
    return InMemoryGenerationStore()


@pytest.fixture
def store() -> InMemoryGenerationStore:
    """
    Three states, five plants.

    2023 totals: TX 36,000 / CA 18,000 / FL 12,000 (national 66,000).
    2022 has facts for one TX plant and the CA plant only.
    """
    s = InMemoryGenerationStore()
    s.add_state("TX", "Texas")
    s.add_state("CA", "California")
    s.add_state("FL", "Florida")

    parish = s.add_plant("W A Parish", "TX")
    comanche = s.add_plant("Comanche Peak", "TX")
    diablo = s.add_plant("Diablo Canyon", "CA")
    turkey = s.add_plant("Turkey Point", "FL")
    solar = s.add_plant("Roadrunner Solar", "TX")

    s.add_fact(parish, 2023, 15000.0)
    s.add_fact(comanche, 2023, 20000.0)
    s.add_fact(diablo, 2023, 18000.0)
    s.add_fact(turkey, 2023, 12000.0)
    s.add_fact(solar, 2023, 1000.0)
    s.add_fact(parish, 2022, 14000.0)
    s.add_fact(diablo, 2022, 17000.0)

    s.recompute_aggregates()
    s.calls.clear()
    return s


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def cache_config() -> CacheConfig:
    return CacheConfig(
        enabled=True,
        redis_url="redis://test:6379/0",
        compression_enabled=True,
        compression_threshold=1024,
        circuit_breaker_threshold=3,
        circuit_breaker_timeout=30,
        scan_count=2,
    )


@pytest.fixture
def redis_cache(cache_config, fake_redis) -> RedisCache:
    return RedisCache(cache_config, client=fake_redis)


@pytest.fixture
def null_cache() -> NullCache:
    return NullCache(reason="disabled")


@pytest.fixture
def resources(settings, store, redis_cache):
    """Fully wired services over the sample store and the Redis double."""
    return build_resources(settings, store, redis_cache)
