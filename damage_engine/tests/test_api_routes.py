"""
HTTP API over the sample dataset.
"""

import pytest
from fastapi.testclient import TestClient

from api.main import create_app
from damage_engine.data_acquisition.base_loader import BSTS_SUMMARY, InMemoryDatasetSource
from damage_engine.store import DataStore
from damage_engine.tests.sample_data import dataset_payloads

T9 = "2020-04-08T09:00:00Z"


@pytest.fixture
def client(store, settings):
    with TestClient(create_app(store, settings)) as test_client:
        yield test_client


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_neighborhoods(client):
    response = client.get("/api/v1/neighborhoods")
    assert response.status_code == 200
    assert response.json() == [
        {"id": "1", "name": "Palace Hills"},
        {"id": "5", "name": "Southwest"},
        {"id": "7", "name": "Wilson Forest"},
    ]


def test_geography(client):
    data = client.get("/api/v1/geography").json()
    assert data["count"] == 3
    assert data["features"][1]["centroid"] == pytest.approx([2.8, 2.8])


def test_snapshot(client):
    response = client.get("/api/v1/neighborhoods/5/snapshot", params={"time": T9})
    assert response.status_code == 200
    data = response.json()
    assert data["name"] == "Southwest"
    assert data["categories"]["buildings"]["value"] == 6.2
    assert data["categories"]["buildings"]["source"] == "bsts"
    assert data["categories"]["power"]["reportCount"] == 2


def test_snapshot_unknown_neighborhood(client):
    assert client.get("/api/v1/neighborhoods/42/snapshot").status_code == 404


def test_bad_time_is_422(client):
    response = client.get("/api/v1/neighborhoods/5/snapshot", params={"time": "soon"})
    assert response.status_code == 422


def test_category_map(client):
    response = client.get("/api/v1/categories/Power/map", params={"time": T9})
    assert response.status_code == 200
    data = response.json()
    assert data["category"] == "power"
    assert [n["id"] for n in data["neighborhoods"]] == ["1", "5", "7"]
    assert set(data["neighborhoods"][0]) >= {"value", "ciLower", "ciUpper", "certainty", "severity", "reportCount"}


def test_unknown_category_is_404(client):
    assert client.get("/api/v1/categories/bridges/map").status_code == 404
    assert client.get("/api/v1/forecast/5/bridges").status_code == 404


def test_comparison(client):
    data = client.get("/api/v1/comparison", params={"time": T9, "mode": "raw"}).json()
    assert data["mode"] == "raw"
    power = next(row for row in data["categories"] if row["category"] == "power")
    assert power["medianValue"] == 5.0
    assert client.get("/api/v1/comparison", params={"mode": "mean"}).status_code == 422


def test_forecast(client):
    data = client.get("/api/v1/forecast/5/buildings", params={"start": T9}).json()
    assert [p["value"] for p in data["points"]] == [6.5, 10.0]


def test_insights(client):
    data = client.get("/api/v1/insights", params={"time": T9, "category": "power"}).json()
    assert data["worstHitNeighborhood"] == "Palace Hills"
    assert data["keyEvents"] == ["First Quake"]


def test_report_series(client):
    data = client.get("/api/v1/categories/power/report-series", params={"location": "5"}).json()
    assert data["points"] == [{"time": "2020-04-08T06:00:00+00:00", "value": 5.0, "avg": 4.0, "count": 2}]


def test_cache_stats(client):
    client.get("/api/v1/categories/power/map", params={"time": T9})
    client.get("/api/v1/categories/power/map", params={"time": T9})
    stats = client.get("/api/v1/cache/stats").json()
    assert stats["snapshot_builds"] == 1
    assert stats["hits"] > 0


def test_missing_dataset_is_503(settings):
    payloads = dataset_payloads()
    del payloads[BSTS_SUMMARY]
    store = DataStore(InMemoryDatasetSource(payloads), settings=settings)

    with TestClient(create_app(store, settings)) as client:
        response = client.get("/api/v1/categories/power/map", params={"time": T9})
        assert response.status_code == 503
        assert client.get("/api/v1/neighborhoods").status_code == 200


def test_neighborhood_summary(client):
    data = client.get("/api/v1/neighborhoods/1/summary").json()
    assert data["name"] == "Palace Hills"
    assert data["maxDamage"] == 8.0
    assert data["avgUncertainty"] == 2.0
    assert client.get("/api/v1/neighborhoods/42/summary").status_code == 404


def test_report_filter(client):
    response = client.post("/api/v1/reports/filter", json={
        "categories": ["power"],
        "neighborhood": "5",
        "certainty_level": "high",
    })
    assert response.status_code == 200
    data = response.json()
    assert data["count"] == 2
    assert {r["value"] for r in data["reports"]} == {3.0, 5.0}
    assert data["reports"][0]["time"].startswith("2020-04-08T06:")


def test_report_filter_rejects_bad_criteria(client):
    assert client.post("/api/v1/reports/filter", json={"categories": ["bridges"]}).status_code == 404
    assert client.post("/api/v1/reports/filter", json={"start": "whenever"}).status_code == 422
    assert client.post("/api/v1/reports/filter", json={"certainty_level": "sure"}).status_code == 422
