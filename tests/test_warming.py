"""
Tests for cache warming.

These tests verify:
- The hot set written for a detail year
- States without data for the year counted as warmed
- Per-state failure isolation
- Year summary ordering and de-duplication
- Nationwide top-N listings in the hot set
- No step runs more than WARMING_BATCH_SIZE calls at once
"""

import asyncio

import pytest

from energy_insights.errors import UpstreamError


@pytest.fixture
def warmer(resources):
    return resources.warmer


@pytest.mark.asyncio
class TestWarmHotSet:

    async def test_writes_hot_set(self, warmer, fake_redis):
        report = await warmer.warm_hot_set([2023])

        assert report.success is True
        assert report.states_total == 3
        assert report.states_warmed == 3
        assert report.years_warmed == [2023, 2022]
        assert report.listings_warmed == 4
        assert report.payloads_written == 13
        assert set(fake_redis.data) == {
            "states:all",
            "state:CA:2023:top:10", "state:CA:2023:top:20",
            "state:FL:2023:top:10", "state:FL:2023:top:20",
            "state:TX:2023:top:10", "state:TX:2023:top:20",
            "states:summary:2023", "states:summary:2022",
            "plants:top:10:ALL:ALL", "plants:top:20:ALL:ALL",
            "plants:top:10:ALL:2023", "plants:top:20:ALL:2023",
        }

    async def test_defaults_to_latest_year(self, warmer, fake_redis):
        await warmer.warm_hot_set()
        assert "state:TX:2023:top:10" in fake_redis.data

    async def test_state_without_data_counts_as_warmed(self, warmer, fake_redis):
        """FL has no 2022 facts; that is not a failure."""
        report = await warmer.warm_hot_set([2022])

        assert report.states_warmed == 3
        assert report.states_failed == 0
        assert report.payloads_written == 11
        assert report.years_warmed == [2022, 2023]
        assert not any(key.startswith("state:FL:") for key in fake_redis.data)

    async def test_one_failing_state_does_not_stop_others(self, warmer, monkeypatch):
        original = warmer.service.get_state_detail

        async def flaky(code, year=None, top_plants=None, refresh=False):
            if code == "CA":
                raise UpstreamError("Database query failed: state_total")
            return await original(code, year, top_plants, refresh=refresh)

        monkeypatch.setattr(warmer.service, "get_state_detail", flaky)

        report = await warmer.warm_hot_set([2023])

        assert report.states_warmed == 2
        assert report.states_failed == 1
        assert report.failed_states == ["CA"]
        assert report.success is False
        assert report.years_warmed == [2023, 2022]

    async def test_listing_failure_reported(self, warmer, store):
        store.fail_reads = True

        report = await warmer.warm_hot_set([2023])

        assert report.states_total == 0
        assert report.success is False
        assert report.years_warmed == []

    async def test_empty_store(self, settings, empty_store, redis_cache):
        from energy_insights.runtime import build_resources

        report = await build_resources(settings, empty_store, redis_cache).warmer.warm_hot_set()

        assert report.states_total == 0
        assert report.years_warmed == []
        assert report.success is True

    async def test_report_dict(self, warmer):
        data = (await warmer.warm_hot_set([2023])).to_dict()

        assert data["states_warmed"] == 3
        assert data["failed_states"] == []
        assert data["duration_ms"] >= 0


@pytest.mark.asyncio
class TestWarmPieces:

    async def test_warm_state(self, warmer, fake_redis):
        written = await warmer.warm_state("TX", 2023, [5])

        assert written == 1
        assert "state:TX:2023:top:5" in fake_redis.data

    async def test_warm_years_deduplicates(self, warmer):
        assert await warmer.warm_years([2023, 2023, 2022]) == [2023, 2022]

    async def test_failed_year_skipped(self, warmer):
        assert await warmer.warm_years([1800, 2023]) == [2023]

    async def test_warm_recent_years(self, warmer):
        assert await warmer.warm_recent_years(1) == [2023]

    async def test_warming_stats(self, warmer):
        await warmer.warm_hot_set([2023])
        stats = await warmer.get_warming_stats()

        assert stats["total_keys"] == 13
        assert stats["is_connected"] is True
        assert stats["backend"] == "redis"

    async def test_top_listings_follow_new_data(self, warmer, store, fake_redis):
        turkey_point = 4
        store.add_fact(turkey_point, 2024, 50000.0)

        report = await warmer.warm_top_listings(year=2024, top_values=[10])

        assert report.listings_warmed == 2
        top = await warmer.service.get_top_plants(top=10)
        assert top[0]["name"] == "Turkey Point"
        assert fake_redis.commands["setex"] == 2


def track_in_flight(monkeypatch, target, attr):
    """Wrap an async method and record the peak number of concurrent calls."""
    original = getattr(target, attr)
    counts = {"current": 0, "peak": 0, "calls": 0}

    async def wrapper(*args, **kwargs):
        counts["current"] += 1
        counts["calls"] += 1
        counts["peak"] = max(counts["peak"], counts["current"])
        try:
            await asyncio.sleep(0)
            return await original(*args, **kwargs)
        finally:
            counts["current"] -= 1

    monkeypatch.setattr(target, attr, wrapper)
    return counts


@pytest.mark.asyncio
class TestWarmingConcurrency:
    """WARMING_BATCH_SIZE is 2 in the test settings."""

    async def test_state_warming_is_batched(self, warmer, monkeypatch):
        counts = track_in_flight(monkeypatch, warmer.service, "get_state_detail")

        await warmer.warm_all_states(year=2023)

        assert counts["calls"] == 6
        assert counts["peak"] == 2

    async def test_year_warming_is_batched(self, warmer, monkeypatch):
        counts = track_in_flight(monkeypatch, warmer.service, "get_states_summary")

        await warmer.warm_years(range(2000, 2030))

        assert counts["calls"] == 30
        assert counts["peak"] == 2

    async def test_listing_warming_is_batched(self, warmer, monkeypatch):
        counts = track_in_flight(monkeypatch, warmer.service, "get_top_plants")

        await warmer.warm_top_listings(year=2023, top_values=[5, 10, 20])

        assert counts["calls"] == 6
        assert counts["peak"] == 2

    async def test_hot_set_never_exceeds_batch_size(self, warmer, monkeypatch):
        counters = [
            track_in_flight(monkeypatch, warmer.service, attr)
            for attr in ("get_state_detail", "get_states_summary", "get_top_plants")
        ]

        await warmer.warm_hot_set([2023, 2021, 2020, 2019])

        assert all(c["peak"] <= 2 for c in counters)
