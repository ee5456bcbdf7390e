"""
Tests for the HTTP layer.

These tests verify:
- Routes return the service results verbatim
- Error kinds map to status codes inside one envelope shape
- Cache management endpoints
"""

import pytest
from fastapi.testclient import TestClient

from api.main import create_app


@pytest.fixture
def client(settings, store, redis_cache):
    app = create_app(settings, store=store, cache=redis_cache)
    with TestClient(app) as test_client:
        yield test_client


def assert_envelope(response, status_code, path):
    body = response.json()
    assert response.status_code == status_code
    assert body["status_code"] == status_code
    assert body["path"] == path
    assert isinstance(body["message"], list)
    assert body["trace_id"]
    assert set(body) == {"status_code", "error", "message", "timestamp", "path", "method", "trace_id"}
    return body


# =============================================================================
# PLANTS
# =============================================================================

class TestPlantsRoutes:

    def test_top_plants(self, client):
        response = client.get("/plants", params={"top": 2, "year": 2023})

        assert response.status_code == 200
        plants = response.json()
        assert [p["name"] for p in plants] == ["Comanche Peak", "Diablo Canyon"]
        assert [p["rank"] for p in plants] == [1, 2]

    def test_top_plants_by_state(self, client):
        plants = client.get("/plants", params={"state": "CA"}).json()
        assert {p["state"]["code"] for p in plants} == {"CA"}

    def test_top_out_of_range(self, client):
        body = assert_envelope(client.get("/plants", params={"top": 0}), 400, "/plants")

        assert body["error"] == "Bad Request"
        assert "top" in body["message"][0]

    def test_top_not_a_number(self, client):
        assert_envelope(client.get("/plants", params={"top": "many"}), 400, "/plants")

    def test_plant_detail(self, client):
        plant = client.get("/plants/1").json()

        assert plant["name"] == "W A Parish"
        assert len(plant["generations"]) == 2

    def test_plant_not_found(self, client):
        body = assert_envelope(client.get("/plants/99"), 404, "/plants/99")
        assert body["message"] == ["Plant with ID 99 not found"]


# =============================================================================
# STATES
# =============================================================================

class TestStatesRoutes:

    def test_summary(self, client):
        summary = client.get("/states", params={"year": 2023}).json()

        assert [s["code"] for s in summary] == ["TX", "CA", "FL"]
        assert sum(s["percent_of_national"] for s in summary) == pytest.approx(100.0, abs=0.5)

    def test_detail_lowercase_code(self, client):
        detail = client.get("/states/tx", params={"year": 2023, "topPlants": 1}).json()

        assert detail["state"]["code"] == "TX"
        assert len(detail["top_plants"]) == 1

    def test_unknown_state(self, client):
        body = assert_envelope(client.get("/states/ZZ"), 404, "/states/ZZ")
        assert body["message"] == ["State with code 'ZZ' not found"]

    def test_no_data_for_year(self, client):
        assert_envelope(client.get("/states/TX", params={"year": 1900}), 404, "/states/TX")

    def test_year_out_of_range(self, client):
        assert_envelope(client.get("/states", params={"year": 1800}), 400, "/states")

    def test_store_down_is_503(self, client, store):
        store.fail_reads = True
        body = assert_envelope(client.get("/states", params={"year": 2023}), 503, "/states")
        assert body["error"] == "Service Unavailable"


# =============================================================================
# ENVELOPE
# =============================================================================

class TestEnvelope:

    def test_trace_id_propagated(self, client):
        response = client.get("/plants/99", headers={"x-trace-id": "abc-123"})
        assert response.json()["trace_id"] == "abc-123"

    def test_unknown_route(self, client):
        body = assert_envelope(client.get("/nowhere"), 404, "/nowhere")
        assert body["method"] == "GET"


# =============================================================================
# HEALTH + CACHE MANAGEMENT
# =============================================================================

class TestOperationalRoutes:

    def test_health(self, client):
        body = client.get("/health").json()

        assert body["status"] == "ok"
        assert body["cache"] == {"backend": "redis", "connected": True}

    def test_health_with_redis_down(self, client, fake_redis):
        fake_redis.fail = True
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["cache"]["connected"] is False

    def test_cache_health(self, client):
        body = client.get("/cache/health").json()

        assert body["status"] == "healthy"
        assert body["backend"] == "redis"

    def test_cache_stats(self, client):
        client.get("/states", params={"year": 2023})
        client.get("/states", params={"year": 2023})

        body = client.get("/cache/stats").json()

        assert body["stats"]["hits"] == 1
        assert body["total_keys"] == 1
        assert body["is_connected"] is True

    def test_reconcile(self, client, fake_redis):
        client.get("/plants")

        response = client.post("/cache/reconcile", json={"priority_years": [2023]})

        assert response.status_code == 200
        body = response.json()
        assert body["view_refreshed"] is True
        assert body["keys_invalidated"]["plants:"] == 1
        assert body["warming"]["states_warmed"] == 3
        assert "states:summary:2023" in fake_redis.data

    def test_reconcile_without_body(self, client):
        assert client.post("/cache/reconcile").status_code == 200

    def test_reconcile_refresh_failure(self, client, store):
        store.fail_refresh = True
        assert_envelope(client.post("/cache/reconcile"), 503, "/cache/reconcile")

    def test_reconcile_rejects_out_of_range_year(self, client, store, fake_redis):
        client.get("/plants")

        body = assert_envelope(
            client.post("/cache/reconcile", json={"priority_years": [2023, 1800]}),
            400,
            "/cache/reconcile",
        )

        assert "priority_years" in body["message"][0]
        assert store.calls["refresh_aggregates_concurrently"] == 0
        assert "plants:top:10:ALL:ALL" in fake_redis.data
