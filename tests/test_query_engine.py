"""
Tests for the query engine.

These tests verify:
- Top-N ranking, tie-breaking and percent-of-state
- State summaries and their national shares
- State detail and plant lookups
- NotFound semantics
"""

import pytest

from energy_insights.errors import NotFoundError
from energy_insights.services.query_engine import QueryEngine, percent_of


@pytest.fixture
def engine(store):
    return QueryEngine(store)


# =============================================================================
# PERCENTAGES
# =============================================================================

class TestPercentOf:

    def test_regular_share(self):
        assert percent_of(25.0, 100.0) == pytest.approx(25.0)

    def test_missing_whole_is_zero(self):
        assert percent_of(10.0, None) == 0.0

    def test_zero_whole_is_zero(self):
        """Never divide by zero."""
        assert percent_of(10.0, 0.0) == 0.0


# =============================================================================
# TOP-N PLANTS
# =============================================================================

@pytest.mark.asyncio
class TestTopPlants:

    async def test_top_two_nationally(self, engine):
        plants = await engine.get_top_n_plants(2, year=2023)

        assert [p.name for p in plants] == ["Comanche Peak", "Diablo Canyon"]
        assert [p.rank for p in plants] == [1, 2]
        assert plants[0].net_generation >= plants[1].net_generation

    async def test_percent_of_state(self, engine):
        plants = await engine.get_top_n_plants(5, year=2023)
        by_name = {p.name: p for p in plants}

        assert by_name["Comanche Peak"].percent_of_state == pytest.approx(20000 / 36000 * 100)
        assert by_name["Diablo Canyon"].percent_of_state == pytest.approx(100.0)
        for plant in plants:
            assert 0 <= plant.percent_of_state <= 100

    async def test_state_filter(self, engine):
        plants = await engine.get_top_n_plants(10, state_code="TX", year=2023)

        assert [p.name for p in plants] == ["Comanche Peak", "W A Parish", "Roadrunner Solar"]
        assert all(p.state.code == "TX" for p in plants)
        assert sum(p.percent_of_state for p in plants) == pytest.approx(100.0)

    async def test_all_years_when_year_omitted(self, engine):
        plants = await engine.get_top_n_plants(100)

        assert len(plants) == 7
        assert {p.year for p in plants} == {2022, 2023}
        assert [p.rank for p in plants] == list(range(1, 8))

    async def test_never_more_than_top(self, engine):
        assert len(await engine.get_top_n_plants(3)) == 3

    async def test_unknown_state_not_found(self, engine):
        with pytest.raises(NotFoundError) as exc:
            await engine.get_top_n_plants(10, state_code="XX")
        assert str(exc.value) == "State with code 'XX' not found"

    async def test_known_state_without_data_is_empty(self, engine):
        """FL exists but has no 2022 facts."""
        assert await engine.get_top_n_plants(10, state_code="FL", year=2022) == []

    async def test_ties_broken_by_fact_id(self, engine, store):
        first = store.add_fact(4, 2021, 500.0)
        second = store.add_fact(2, 2021, 500.0)

        plants = await engine.get_top_n_plants(10, year=2021)

        assert [p.id for p in plants] == [first, second]
        assert [p.rank for p in plants] == [1, 2]

    async def test_stale_aggregate_gives_zero_percent(self, engine, store):
        """Facts written after the last refresh have no aggregate row yet."""
        store.add_fact(1, 2024, 9000.0)

        plants = await engine.get_top_n_plants(10, year=2024)

        assert len(plants) == 1
        assert plants[0].percent_of_state == 0.0

    async def test_one_aggregate_lookup_per_ranking(self, engine, store):
        await engine.get_top_n_plants(5, year=2023)
        assert store.calls["state_year_totals"] == 1

    async def test_result_serializes_state(self, engine):
        plant = (await engine.get_top_n_plants(1, year=2023))[0].to_dict()

        assert plant["state"] == {"id": 1, "code": "TX", "name": "Texas"}
        assert plant["plant_id"] == 2


# =============================================================================
# STATE SUMMARY
# =============================================================================

@pytest.mark.asyncio
class TestStatesSummary:

    async def test_ordered_by_total(self, engine):
        summaries = await engine.get_states_summary(2023)

        assert [s.code for s in summaries] == ["TX", "CA", "FL"]
        assert [s.total_generation for s in summaries] == [36000.0, 18000.0, 12000.0]

    async def test_percentages_sum_to_hundred(self, engine):
        summaries = await engine.get_states_summary(2023)
        assert sum(s.percent_of_national for s in summaries) == pytest.approx(100.0, abs=0.5)

    async def test_plant_counts(self, engine):
        summaries = {s.code: s for s in await engine.get_states_summary(2023)}

        assert summaries["TX"].plant_count == 3
        assert summaries["CA"].plant_count == 1
        assert summaries["FL"].plant_count == 1

    async def test_only_states_with_activity(self, engine):
        summaries = await engine.get_states_summary(2022)
        assert [s.code for s in summaries] == ["CA", "TX"]

    async def test_rank_left_to_caller(self, engine):
        summaries = await engine.get_states_summary(2023)
        assert all(s.rank is None for s in summaries)

    async def test_empty_year(self, engine, store):
        assert await engine.get_states_summary(1999) == []
        assert store.calls["plant_counts_for_year"] == 0


# =============================================================================
# STATE DETAIL
# =============================================================================

@pytest.mark.asyncio
class TestStateDetail:

    async def test_texas_2023(self, engine):
        detail = await engine.get_state_detail("TX", 2023, top_plants_count=2)

        assert detail.state.code == "TX"
        assert detail.total_generation == 36000.0
        assert detail.percent_of_national == pytest.approx(36000 / 66000 * 100)
        assert detail.plant_count == 3
        assert [p.name for p in detail.top_plants] == ["Comanche Peak", "W A Parish"]
        assert [p.rank for p in detail.top_plants] == [1, 2]

    async def test_unknown_state(self, engine):
        with pytest.raises(NotFoundError) as exc:
            await engine.get_state_detail("XX", 2023)
        assert "State with code 'XX' not found" in str(exc.value)

    async def test_known_state_without_year(self, engine):
        with pytest.raises(NotFoundError) as exc:
            await engine.get_state_detail("TX", 1900)
        assert str(exc.value) == "No data found for state 'TX' in year 1900"

    async def test_detail_matches_summary(self, engine):
        summary = {s.code: s for s in await engine.get_states_summary(2023)}["CA"]
        detail = await engine.get_state_detail("CA", 2023)

        assert detail.total_generation == summary.total_generation
        assert detail.percent_of_national == pytest.approx(summary.percent_of_national)
        assert detail.plant_count == summary.plant_count


# =============================================================================
# PLANT LOOKUP
# =============================================================================

@pytest.mark.asyncio
class TestPlantLookup:

    async def test_history_newest_first(self, engine):
        plant = await engine.get_plant_by_id(1)

        assert plant.name == "W A Parish"
        assert plant.state.code == "TX"
        assert [g.year for g in plant.generations] == [2023, 2022]

    async def test_unknown_plant(self, engine):
        with pytest.raises(NotFoundError) as exc:
            await engine.get_plant_by_id(99)
        assert str(exc.value) == "Plant with ID 99 not found"
