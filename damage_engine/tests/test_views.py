"""
Aggregation views over the sample dataset.
"""

import asyncio
from datetime import datetime, timezone

import pytest

from damage_engine.calculation.certainty import certainty_from_cir, certainty_from_sd
from damage_engine.models import Severity
from damage_engine.views import (
    DamageViews,
    active_events,
    certainty_band,
    filter_reports,
    overall_status,
)

T9 = "2020-04-08T09:00:00Z"


@pytest.fixture
def views(store, settings):
    return DamageViews(store, settings)


def run(coro):
    return asyncio.run(coro)


# =============================================================================
# Neighborhood snapshot
# =============================================================================

def test_bsts_preferred_over_raw_report(views):
    """Location 5 / buildings has both a BSTS summary and an earlier raw report."""
    snapshot = run(views.neighborhood_snapshot("5", T9))
    buildings = snapshot.categories["buildings"]

    assert buildings.value == 6.2
    assert buildings.certainty == pytest.approx(certainty_from_cir(1.5))
    assert buildings.severity == Severity.VERY_SEVERE
    assert buildings.source == "bsts"
    assert buildings.ci_lower == pytest.approx(5.45)
    assert buildings.ci_upper == pytest.approx(6.95)
    assert buildings.report_count == 1


def test_snapshot_falls_back_to_latest_raw_report(views):
    snapshot = run(views.neighborhood_snapshot("5", T9))
    power = snapshot.categories["power"]

    assert power.source == "raw_report"
    assert power.value == 5.0
    assert power.certainty == 0.2
    assert power.report_count == 2


def test_snapshot_summary_fields(views):
    snapshot = run(views.neighborhood_snapshot("5", T9))

    assert snapshot.name == "Southwest"
    assert snapshot.report_count == 3
    assert snapshot.avg_damage == pytest.approx((6.2 + 5.0) / 6)
    assert snapshot.overall_status == "Minor impact"
    assert snapshot.latest_report_time == datetime(2020, 4, 8, 7, tzinfo=timezone.utc)
    assert snapshot.categories["medical"].is_no_data

    data = snapshot.to_dict()
    assert data["categories"]["buildings"]["severity"] == "Very severe"
    assert data["categories"]["medical"] == {
        "value": 0.0, "ciLower": 0.0, "ciUpper": 0.0, "certainty": 0.0,
        "severity": "None", "reportCount": 0, "source": "none",
    }


def test_snapshot_before_any_data(views):
    snapshot = run(views.neighborhood_snapshot("5", "2020-04-06T00:00:00Z"))
    assert all(e.is_no_data for e in snapshot.categories.values())
    assert snapshot.overall_status == "No impact"
    assert snapshot.latest_report_time is None


# =============================================================================
# Category map
# =============================================================================

def test_category_map_covers_every_neighborhood(views):
    entries = {e.location: e for e in run(views.category_map("power", T9))}
    assert set(entries) == {"1", "5", "7"}

    assert entries["1"].estimate.certainty == pytest.approx(certainty_from_sd(0.5))
    assert entries["1"].estimate.report_count == 0
    assert entries["5"].estimate.source == "raw_report"
    assert entries["7"].estimate.value == 1.0
    assert entries["7"].estimate.certainty == 0.9
    assert entries["7"].estimate.ci_lower == pytest.approx(0.5)
    assert entries["7"].name == "Wilson Forest"
    assert entries["5"].centroid == pytest.approx((2.8, 2.8))


def test_category_map_sentinels(views):
    entries = {e.location: e for e in run(views.category_map("Medical", T9))}
    assert entries["1"].estimate.is_no_data
    assert entries["5"].estimate.is_no_data
    assert entries["7"].estimate.value == 5.0
    assert entries["7"].to_dict()["reportCount"] == 1


# =============================================================================
# Comparison
# =============================================================================

def test_bsts_comparison(views):
    rows = {r.category: r for r in run(views.comparison(T9, "bsts"))}

    power = rows["power"]
    assert power.count == 2
    assert (power.min, power.q1, power.median, power.q3, power.max) == pytest.approx((1.0, 1.25, 1.5, 1.75, 2.0))
    assert power.confidence == pytest.approx((certainty_from_sd(0.5) + 0.9) / 2)

    assert rows["shake_intensity"].confidence == pytest.approx(0.8)
    assert rows["medical"].count == 0
    assert rows["medical"].confidence == 0.0


def test_bsts_comparison_for_one_location(views):
    rows = {r.category: r for r in run(views.comparison(T9, "bsts", location="1"))}
    assert rows["power"].count == 1
    assert rows["power"].median == 2.0
    assert rows["buildings"].count == 0


def test_raw_comparison_uses_time_window(views):
    rows = {r.category: r for r in run(views.comparison(T9, "raw"))}
    power = rows["power"]
    assert power.count == 3
    assert (power.min, power.q1, power.median, power.q3, power.max) == pytest.approx((3.0, 4.0, 5.0, 6.5, 8.0))
    # Only the labelled report and the CIR report carry a real certainty
    assert power.confidence == pytest.approx((0.8 + 0.5) / 2)
    assert rows["medical"].confidence == 0.0

    early = {r.category: r for r in run(views.comparison("2020-04-08T00:00:00Z", "raw"))}
    assert early["power"].count == 1
    assert early["medical"].count == 1


def test_comparison_rejects_unknown_mode(views):
    with pytest.raises(ValueError):
        run(views.comparison(T9, "median"))


# =============================================================================
# Forecast
# =============================================================================

def test_forecast_window(views):
    points = run(views.forecast("5", "buildings"))
    assert [p.value for p in points] == [6.2, 6.5, 10.0]
    assert points[0].ci_lower == pytest.approx(5.45)
    assert (points[1].ci_lower, points[1].ci_upper) == (6.5, 6.5)
    assert (points[2].ci_lower, points[2].ci_upper) == (9.0, 10.0)

    later = run(views.forecast("5", "buildings", start=T9))
    assert len(later) == 2
    assert run(views.forecast("1", "buildings")) == []


# =============================================================================
# Insights
# =============================================================================

def test_insights(views):
    insights = run(views.insights(T9, "power"))

    assert insights.worst_hit_neighborhood == "Palace Hills"
    assert insights.most_affected_category == "Shake Intensity"
    assert insights.most_affected_value == 9.5
    assert insights.average_certainty_pct == pytest.approx(
        (certainty_from_cir(1.5) + certainty_from_sd(0.5) + 0.8 + 0.9) / 4 * 100
    )
    assert insights.certainty_breakdown == {"low": 0, "medium": 2, "high": 2}
    assert insights.most_reliable == ["Wilson Forest (90%)"]
    assert insights.least_reliable == ["Palace Hills (74%)", "Wilson Forest (90%)"]
    assert insights.selected_category == "Power"
    assert insights.active_events == ["First Quake"]


def test_insights_without_data(views):
    insights = run(views.insights("2020-04-06T00:00:00Z", "power"))
    assert insights.worst_hit_neighborhood == "N/A"
    assert insights.average_certainty_pct == 0.0
    assert insights.most_reliable == []


def test_certainty_band_and_status():
    assert certainty_band(0.39) == "low"
    assert certainty_band(0.4) == "medium"
    assert certainty_band(0.8) == "high"
    assert overall_status(0.0) == "No impact"
    assert overall_status(5.0) == "Severe impact"
    assert overall_status(9.0) == "Catastrophic impact"


def test_active_events():
    assert active_events(datetime(2020, 4, 9, 14, 30, tzinfo=timezone.utc)) == ["Second Quake"]
    assert active_events(datetime(2020, 4, 7, tzinfo=timezone.utc)) == []
    assert active_events(None) == []


# =============================================================================
# Raw report series
# =============================================================================

def test_report_series(views):
    points = run(views.report_series("power"))
    assert [(p.time.hour, p.max, p.mean, p.count) for p in points] == [(6, 5.0, 4.0, 2), (10, 8.0, 8.0, 1)]

    only_five = run(views.report_series("power", location="5"))
    assert len(only_five) == 1
    assert run(views.report_series("sewer_and_water")) == []


# =============================================================================
# Report filtering and neighborhood summaries
# =============================================================================

def _times(reports):
    return sorted(r.time.strftime("%H:%M") for r in reports)


def test_filter_by_certainty_band(store):
    reports = run(store.get_raw_reports())

    # Reports without any certainty signal survive every band
    assert _times(filter_reports(reports, certainty_level="high")) == ["05:30", "06:00", "06:30"]
    assert _times(filter_reports(reports, certainty_level="medium")) == ["05:30", "06:30", "07:00", "10:00"]
    assert _times(filter_reports(reports, certainty_level="very_low")) == ["05:30", "06:30"]
    assert len(filter_reports(reports, certainty_level="any")) == len(reports)

    with pytest.raises(ValueError):
        filter_reports(reports, certainty_level="certain")


def test_filter_by_category_location_and_time(store):
    reports = run(store.get_raw_reports())

    assert _times(filter_reports(reports, categories=["power"], location="5")) == ["06:00", "06:30"]
    window = filter_reports(
        reports,
        start=datetime(2020, 4, 8, 6, 15, tzinfo=timezone.utc),
        end=datetime(2020, 4, 8, 7, tzinfo=timezone.utc),
    )
    assert _times(window) == ["06:30", "07:00"]


def test_filtered_reports_view(views):
    reports = run(views.filtered_reports(["Power"], "5", None, "2020-04-08T06:10:00Z"))
    assert [r.value for r in reports] == [3.0]

    with pytest.raises(ValueError):
        run(views.filtered_reports(["bridges"]))


def test_location_summary(views):
    summary = run(views.location_summary("5"))
    assert summary.name == "Southwest"
    assert summary.report_count == 3
    assert summary.avg_damage == pytest.approx(4.0)
    assert summary.max_damage == 5.0
    assert summary.avg_cir == 1.0
    assert summary.last_update == datetime(2020, 4, 8, 7, tzinfo=timezone.utc)

    assert run(views.location_summary("1")).avg_cir == 2.0


def test_location_summary_without_reports(views):
    summary = run(views.location_summary("12"))
    assert summary.report_count == 0
    assert (summary.avg_damage, summary.max_damage) == (0.0, 0.0)
    assert summary.to_dict()["lastUpdate"] is None
