"""
Data access layer: dataset parsing, single-flight caching, fallbacks and
error propagation.
"""

import asyncio
import json
from datetime import datetime, timezone

import pandas as pd
import pytest

from config.settings import Settings
from damage_engine.data_acquisition.base_loader import (
    DatasetLoadError,
    FileDatasetSource,
    InMemoryDatasetSource,
    BSTS_SUMMARY,
    NEIGHBORHOOD_MAP,
    RAW_REPORTS,
)
from damage_engine.data_acquisition.fallback import NEIGHBORHOOD_NAMES
from damage_engine.data_acquisition.loaders import (
    canonical_category,
    load_geography,
    load_raw_reports,
    normalize_category,
    parse_query_time,
    parse_time,
)
from damage_engine.store import DataStore, RequestSequencer
from damage_engine.tests.sample_data import GEOJSON, dataset_payloads


# =============================================================================
# Parsing
# =============================================================================

def test_parse_time_variants():
    expected = datetime(2020, 4, 8, 9, tzinfo=timezone.utc)
    assert parse_time("2020-04-08T09:00:00Z") == expected
    assert parse_time("2020-04-08 09:00:00") == expected
    assert parse_time(int(expected.timestamp() * 1000)) == expected
    assert parse_time("2020-04-08T11:00:00+02:00") == expected
    assert parse_time("yesterday-ish") is None
    assert parse_time(None) is None


def test_parse_query_time_rejects_garbage():
    assert parse_query_time(None) is None
    with pytest.raises(ValueError):
        parse_query_time("not a time")


def test_category_names():
    assert normalize_category("Roads and Bridges") == "roads_and_bridges"
    assert normalize_category("Sewer-and-Water") == "sewer_and_water"
    assert canonical_category("Shake Intensity") == "shake_intensity"
    with pytest.raises(ValueError):
        canonical_category("bridges")


def test_geography_centroids_and_names():
    shapes = load_geography(GEOJSON)
    assert shapes.location_ids() == ["1", "5", "7"]
    assert shapes.names["7"] == "Wilson Forest"
    # Outer ring mean, closing point included
    assert shapes.features[0].centroid == pytest.approx((0.4, 0.4))
    assert shapes.features[2].geometry_type == "MultiPolygon"


def test_geography_rejects_non_collection():
    with pytest.raises(DatasetLoadError):
        load_geography([1, 2, 3])


def test_wide_report_rows():
    frame = pd.DataFrame([
        {"time": "2020-04-06 00:00:00", "location": 1, "buildings": 3.0, "power": None,
         "power_certainty_level": "low", "medical": None},
        {"time": "2020-04-06 00:05:00", "location": 2, "buildings": None, "power": 9.0,
         "power_certainty_level": None, "medical": 4.0},
    ])
    reports = load_raw_reports(frame)
    by_key = {(r.location, r.category): r for r in reports}

    assert set(by_key) == {("1", "buildings"), ("1", "power"), ("2", "power"), ("2", "medical")}
    assert by_key[("1", "power")].value is None
    assert by_key[("1", "power")].certainty_level == "low"
    assert by_key[("2", "medical")].value == 4.0


def test_long_report_rows_drop_unplaceable():
    rows = [
        {"time": "2020-04-08T07:00:00Z", "location": "5", "category": "Buildings", "reportValue": 4.0},
        {"time": "", "location": "5", "category": "buildings", "value": 1.0},
        {"time": "2020-04-08T07:00:00Z", "location": "", "category": "buildings", "value": 1.0},
        {"time": "2020-04-08T07:00:00Z", "location": "5", "category": "bridges", "value": 1.0},
    ]
    reports = load_raw_reports(rows)
    assert len(reports) == 1
    assert reports[0].category == "buildings"
    assert reports[0].value == 4.0


def test_rows_without_any_category_are_dropped(caplog):
    rows = [
        {"time": "2020-04-08T07:00:00Z", "location": "5", "value": 4.0},
        {"time": "2020-04-08T07:00:00Z", "location": "5", "category": "power", "value": 2.0},
    ]
    with caplog.at_level("WARNING"):
        reports = load_raw_reports(rows)
    assert [r.category for r in reports] == ["power"]
    assert "Dropped 1 of 2" in caplog.text


# =============================================================================
# Caching and single-flight
# =============================================================================

def test_concurrent_snapshots_build_once(store):
    async def scenario():
        return await asyncio.gather(
            store.get_bsts_snapshot("power", "2020-04-08T09:00:00Z"),
            store.get_bsts_snapshot("power", "2020-04-08T09:00:00Z"),
        )

    first, second = asyncio.run(scenario())
    assert first is second
    assert store.stats.snapshot_builds == 1
    assert first["1"]["power"].value == 2.0
    assert "buildings" not in first.get("5", {})


def test_snapshot_is_memoized_and_read_only(store):
    async def scenario():
        a = await store.get_bsts_snapshot(None, "2020-04-08T09:00:00Z")
        b = await store.get_bsts_snapshot(None, datetime(2020, 4, 8, 9, tzinfo=timezone.utc))
        return a, b

    a, b = asyncio.run(scenario())
    assert a is b
    assert store.stats.snapshot_builds == 1
    with pytest.raises(TypeError):
        a["5"] = {}
    with pytest.raises(TypeError):
        a["5"]["buildings"] = None


def test_snapshot_time_filter(store):
    async def scenario():
        early = await store.get_bsts_snapshot("buildings", "2020-04-08T07:00:00Z")
        late = await store.get_bsts_snapshot("buildings", None)
        return early, late

    early, late = asyncio.run(scenario())
    assert "5" not in early
    assert late["5"]["buildings"].value == 7.0


def test_datasets_load_once(source, store):
    async def scenario():
        await asyncio.gather(store.preload(), store.get_raw_reports(), store.get_raw_reports())
        await store.get_raw_reports_by_location("5")

    asyncio.run(scenario())
    assert source.load_counts[RAW_REPORTS] == 1
    assert source.load_counts[BSTS_SUMMARY] == 1


def test_raw_reports_by_location(store):
    reports = asyncio.run(store.get_raw_reports_by_location("5"))
    assert len(reports) == 3
    assert asyncio.run(store.get_raw_reports_by_location("99")) == ()


def test_failed_load_is_not_cached(settings):
    payloads = dataset_payloads()
    del payloads[BSTS_SUMMARY]
    source = InMemoryDatasetSource(payloads)
    store = DataStore(source, settings=settings)

    with pytest.raises(DatasetLoadError):
        asyncio.run(store.get_bsts_snapshot("power", None))
    with pytest.raises(DatasetLoadError):
        asyncio.run(store.get_bsts_snapshot("power", None))
    assert source.load_counts[BSTS_SUMMARY] == 2

    source.datasets[BSTS_SUMMARY] = dataset_payloads()[BSTS_SUMMARY]
    snapshot = asyncio.run(store.get_bsts_snapshot("power", None))
    assert snapshot["1"]["power"].value == 2.0


def test_neighborhood_names_fall_back(settings):
    payloads = dataset_payloads()
    payloads[NEIGHBORHOOD_MAP] = RuntimeError("unreachable")
    store = DataStore(InMemoryDatasetSource(payloads), settings=settings)

    names = asyncio.run(store.get_neighborhood_names())
    assert dict(names) == NEIGHBORHOOD_NAMES
    assert len(names) == 19
    assert names["5"] == "Southwest"


def test_invalid_queries_raise_value_error(store):
    with pytest.raises(ValueError):
        asyncio.run(store.get_bsts_snapshot("bridges", None))
    with pytest.raises(ValueError):
        asyncio.run(store.get_bsts_snapshot("power", "late tuesday"))


def test_aggregated_series_sorted(store):
    series = asyncio.run(store.get_aggregated_time_series("5", "Buildings"))
    assert [p.map for p in series] == [6.2, 6.5, 11.0]
    assert series[1].cir is None


def test_request_sequencer_discards_superseded():
    sequencer = RequestSequencer()
    first = sequencer.issue()
    second = sequencer.issue()
    assert not sequencer.is_latest(first)
    assert sequencer.is_latest(second)


# =============================================================================
# File source
# =============================================================================

def test_file_source_reads_local_files(tmp_path):
    (tmp_path / "processed").mkdir()
    (tmp_path / "neighborhoods.geojson").write_text(json.dumps(GEOJSON))
    (tmp_path / "processed" / "neighborhood_map.json").write_text(json.dumps([{"id": 1, "name": "Palace Hills"}]))
    (tmp_path / "reports.csv").write_text(
        "time,location,shake_intensity,buildings\n"
        "2020-04-06 00:00:00,1,5,2\n"
        "2020-04-06 00:05:00,1,,3\n"
    )
    settings = Settings(data_dir=str(tmp_path), raw_reports_file="reports.csv")
    store = DataStore(FileDatasetSource(settings), settings=settings)

    async def scenario():
        return (
            await store.get_geography(),
            await store.get_neighborhood_names(),
            await store.get_raw_reports(),
        )

    geography, names, reports = asyncio.run(scenario())
    assert len(geography.features) == 3
    assert dict(names) == {"1": "Palace Hills"}
    assert len(reports) == 3


def test_file_source_missing_file(tmp_path):
    settings = Settings(data_dir=str(tmp_path))
    store = DataStore(FileDatasetSource(settings), settings=settings)
    with pytest.raises(DatasetLoadError):
        asyncio.run(store.get_raw_reports())
