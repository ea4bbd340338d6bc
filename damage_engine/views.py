"""
Damage Engine: Aggregation views.

Per-consumer reductions over reconciled estimates. The functions at module
level are pure and synchronous: they take already-loaded data and explicit
parameters. DamageViews wires them to a DataStore for async callers such as
the HTTP API.

Every view reconciles through the same normalizer, and a (location, category)
pair with nothing recorded always yields the no-data estimate, never None.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

import pandas as pd

from config.settings import (
    SCALE_MIN,
    SCALE_MAX,
    CATEGORIES,
    CATEGORY_LABELS,
    OVERALL_STATUS_LABELS,
    CERTAINTY_BREAKDOWN,
    MOST_RELIABLE_ABOVE,
    RELIABILITY_LIST_SIZE,
    KEY_EVENTS,
    KEY_EVENT_WINDOW_HOURS,
    CERTAINTY_FILTER_BANDS,
    DEFAULT_LOCATION_CIR,
    Settings,
)
from damage_engine.calculation.certainty import (
    as_finite,
    clamp,
    ci_from_value_and_cir,
    severity_from_value,
)
from damage_engine.calculation.normalizer import normalize
from damage_engine.calculation.statistics import summarize_category
from damage_engine.calculation.temporal_index import TemporalIndex
from damage_engine.data_acquisition.fallback import neighborhood_name
from damage_engine.data_acquisition.loaders import canonical_category, parse_query_time, parse_time
from damage_engine.models import (
    AggregatedPoint,
    BSTSSummary,
    CategoryStats,
    DamageEstimate,
    ForecastPoint,
    GeoShapes,
    Insights,
    LocationSummary,
    MapEntry,
    NeighborhoodSnapshot,
    RawReport,
    RecordKind,
    ReportSeriesPoint,
)
from damage_engine.store import DataStore

logger = logging.getLogger(__name__)

COMPARISON_MODES = ("bsts", "raw")
CERTAINTY_FILTER_ANY = "any"

_KEY_EVENTS = [(parse_time(when), label) for when, label in KEY_EVENTS]


# =============================================================================
# Reconciliation
# =============================================================================

def reconcile(
    bsts: Optional[BSTSSummary],
    raw: Optional[RawReport],
    report_count: int = 0
) -> DamageEstimate:
    """
    One estimate from the best available record: a BSTS summary when there
    is one, otherwise the latest raw report, otherwise no data.
    """
    if bsts is not None:
        estimate = normalize(bsts, RecordKind.BSTS_SUMMARY)
    elif raw is not None:
        estimate = normalize(raw, RecordKind.RAW_REPORT)
    else:
        estimate = DamageEstimate.no_data()
    return estimate.with_report_count(report_count)


def overall_status(avg_damage: float) -> str:
    """'No impact' ... 'Catastrophic impact' for an average damage value."""
    severity = severity_from_value(avg_damage)
    return OVERALL_STATUS_LABELS.get(severity.value, "Unknown impact")


# =============================================================================
# Single neighborhood
# =============================================================================

def neighborhood_snapshot(
    location: str,
    name: str,
    time: Optional[datetime],
    bsts_by_category: Mapping[str, BSTSSummary],
    raw_index: TemporalIndex
) -> NeighborhoodSnapshot:
    """
    All six categories for one neighborhood at one instant.

    Args:
        location: Neighborhood id
        name: Display name
        time: Query instant; None for the latest data overall
        bsts_by_category: category -> latest BSTS summary at time
        raw_index: Temporal index over raw reports

    Returns:
        NeighborhoodSnapshot with one estimate per category
    """
    categories: Dict[str, DamageEstimate] = {}
    total_reports = 0
    latest_report_time = None

    for category in CATEGORIES:
        count = raw_index.count_as_of(location, category, time)
        latest_raw = raw_index.latest(location, category, time)
        if latest_raw is not None and (latest_report_time is None or latest_raw.time > latest_report_time):
            latest_report_time = latest_raw.time

        categories[category] = reconcile(bsts_by_category.get(category), latest_raw, count)
        total_reports += count

    avg_damage = sum(e.value for e in categories.values()) / len(CATEGORIES)

    return NeighborhoodSnapshot(
        location=location,
        name=name,
        time=time,
        categories=categories,
        report_count=total_reports,
        avg_damage=avg_damage,
        overall_status=overall_status(avg_damage),
        latest_report_time=latest_report_time,
    )


# =============================================================================
# All neighborhoods for one category
# =============================================================================

def category_map(
    category: str,
    time: Optional[datetime],
    geography: GeoShapes,
    names: Mapping[str, str],
    bsts_snapshot: Mapping[str, Mapping[str, BSTSSummary]],
    raw_index: TemporalIndex
) -> List[MapEntry]:
    """One entry per geography feature; neighborhoods without data get no-data estimates."""
    entries = []
    for feature in geography.features:
        loc = feature.location
        bsts = bsts_snapshot.get(loc, {}).get(category)
        raw = raw_index.latest(loc, category, time) if bsts is None else None
        estimate = reconcile(bsts, raw, raw_index.count_as_of(loc, category, time))

        entries.append(MapEntry(
            location=loc,
            name=names.get(loc) or feature.name,
            centroid=feature.centroid,
            estimate=estimate,
        ))
    return entries


# =============================================================================
# Category comparison
# =============================================================================

def compare_categories(estimates: Mapping[str, Sequence[DamageEstimate]]) -> List[CategoryStats]:
    """
    Five-number summary per category, in the fixed category order.

    Mean certainty only counts estimates whose certainty came from an actual
    uncertainty signal.
    """
    rows = []
    for category in CATEGORIES:
        items = estimates.get(category, ())
        rows.append(summarize_category(
            category,
            [e.value for e in items],
            [e.certainty for e in items if e.has_derived_certainty],
        ))
    return rows


def _group_estimates(records: Sequence[Any], kind: RecordKind) -> Dict[str, List[DamageEstimate]]:
    grouped: Dict[str, List[DamageEstimate]] = {category: [] for category in CATEGORIES}
    for record in records:
        grouped.setdefault(record.category, []).append(normalize(record, kind))
    return grouped


# =============================================================================
# Forecast
# =============================================================================

def forecast_window(
    points: Sequence[AggregatedPoint],
    start: Optional[datetime] = None,
    end: Optional[datetime] = None
) -> List[ForecastPoint]:
    """
    Time-ordered forecast points, each interval built from the point's own CIR.

    A missing MAP counts as 0 and a missing CIR gives a point interval.
    """
    window = []
    for point in sorted(points, key=lambda p: p.time):
        if start is not None and point.time < start:
            continue
        if end is not None and point.time > end:
            continue
        value = clamp(point.map if point.map is not None else 0.0, SCALE_MIN, SCALE_MAX)
        ci = ci_from_value_and_cir(value, point.cir if point.cir is not None else 0.0)
        window.append(ForecastPoint(time=point.time, value=value, ci_lower=ci["lower"], ci_upper=ci["upper"]))
    return window


# =============================================================================
# Insights
# =============================================================================

def certainty_band(certainty: float) -> str:
    if certainty < CERTAINTY_BREAKDOWN["LOW_BELOW"]:
        return "low"
    if certainty < CERTAINTY_BREAKDOWN["MEDIUM_BELOW"]:
        return "medium"
    return "high"


def active_events(time: Optional[datetime], window_hours: float = KEY_EVENT_WINDOW_HOURS) -> List[str]:
    """Labels of key events within window_hours of time."""
    if time is None:
        return []
    window = timedelta(hours=window_hours)
    return [label for when, label in _KEY_EVENTS if abs(time - when) <= window]


def _reliability_entry(name: str, certainty: float) -> str:
    return f"{name} ({certainty * 100:.0f}%)"


def build_insights(
    bsts_snapshot: Mapping[str, Mapping[str, BSTSSummary]],
    names: Mapping[str, str],
    category: str,
    time: Optional[datetime]
) -> Insights:
    """
    City-wide summary of the BSTS snapshot at one instant.

    Args:
        bsts_snapshot: location -> category -> BSTS summary, all categories
        names: Neighborhood id -> name
        category: Category whose per-neighborhood reliability is listed
        time: Query instant, used for the active key events

    Returns:
        Insights; the worst-hit neighborhood and most affected category are
        where the single highest reconciled value occurs
    """
    insights = Insights(
        selected_category=CATEGORY_LABELS.get(category, category),
        active_events=active_events(time),
    )

    peak = None
    derived = []
    reliability: Dict[str, float] = {}

    for loc, by_category in bsts_snapshot.items():
        for cat, record in by_category.items():
            estimate = normalize(record, RecordKind.BSTS_SUMMARY)

            if peak is None or estimate.value > peak[0]:
                peak = (estimate.value, loc, cat)
            if estimate.has_derived_certainty:
                derived.append(estimate.certainty)
            insights.certainty_breakdown[certainty_band(estimate.certainty)] += 1
            if cat == category:
                reliability[loc] = estimate.certainty

    if peak is None:
        return insights

    value, loc, cat = peak
    insights.worst_hit_neighborhood = neighborhood_name(loc, names)
    insights.most_affected_category = CATEGORY_LABELS.get(cat, cat)
    insights.most_affected_value = value
    insights.average_certainty_pct = (sum(derived) / len(derived)) * 100 if derived else 0.0

    ranked = sorted(reliability.items(), key=lambda item: item[1], reverse=True)
    insights.most_reliable = [
        _reliability_entry(neighborhood_name(loc, names), c)
        for loc, c in ranked
        if c > MOST_RELIABLE_ABOVE
    ][:RELIABILITY_LIST_SIZE]
    insights.least_reliable = [
        _reliability_entry(neighborhood_name(loc, names), c)
        for loc, c in sorted(reliability.items(), key=lambda item: item[1])
    ][:RELIABILITY_LIST_SIZE]

    return insights


# =============================================================================
# Raw report series
# =============================================================================

def report_series(
    reports: Sequence[RawReport],
    category: str,
    location: Optional[str] = None
) -> List[ReportSeriesPoint]:
    """Hourly max, mean and count of raw report values for one category."""
    rows = []
    for report in reports:
        if report.category != category:
            continue
        if location is not None and report.location != location:
            continue
        value = as_finite(report.value)
        if value is not None:
            rows.append((report.time, clamp(value, SCALE_MIN, SCALE_MAX)))

    if not rows:
        return []

    frame = pd.DataFrame(rows, columns=["time", "value"])
    frame["hour"] = pd.to_datetime(frame["time"], utc=True).dt.floor("h")
    grouped = frame.groupby("hour")["value"].agg(["max", "mean", "count"]).sort_index()

    return [
        ReportSeriesPoint(
            time=hour.to_pydatetime(),
            max=float(row["max"]),
            mean=float(row["mean"]),
            count=int(row["count"]),
        )
        for hour, row in grouped.iterrows()
    ]


# =============================================================================
# Report filtering and neighborhood summaries
# =============================================================================

def _in_band(certainty: float, band: str) -> bool:
    lower, upper = CERTAINTY_FILTER_BANDS[band]
    return certainty >= lower and (upper is None or certainty < upper)


def filter_reports(
    reports: Iterable[RawReport],
    categories: Optional[Iterable[str]] = None,
    location: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    certainty_level: Optional[str] = None
) -> List[RawReport]:
    """
    Raw reports matching every given criterion.

    Args:
        reports: Canonical raw reports
        categories: Keep only these categories; None or empty keeps all
        location: Keep only this neighborhood
        start: Earliest report time (inclusive)
        end: Latest report time (inclusive)
        certainty_level: One of CERTAINTY_FILTER_BANDS or "any". Reports
            without a certainty signal are always kept.

    Returns:
        Matching reports in input order

    Raises:
        ValueError: unknown certainty level
    """
    if certainty_level == CERTAINTY_FILTER_ANY:
        certainty_level = None
    if certainty_level is not None and certainty_level not in CERTAINTY_FILTER_BANDS:
        raise ValueError(
            f"certainty_level must be one of {[CERTAINTY_FILTER_ANY, *CERTAINTY_FILTER_BANDS]}"
        )
    wanted = set(categories) if categories else None

    matched = []
    for report in reports:
        if wanted is not None and report.category not in wanted:
            continue
        if location is not None and report.location != location:
            continue
        if start is not None and report.time < start:
            continue
        if end is not None and report.time > end:
            continue
        if certainty_level is not None:
            estimate = normalize(report, RecordKind.RAW_REPORT)
            if estimate.has_derived_certainty and not _in_band(estimate.certainty, certainty_level):
                continue
        matched.append(report)
    return matched


def location_summary(location: str, name: str, reports: Sequence[RawReport]) -> LocationSummary:
    """Average and peak reported damage, mean CIR and last report time for one neighborhood."""
    values = [clamp(v, SCALE_MIN, SCALE_MAX) for v in (as_finite(r.value) for r in reports) if v is not None]
    cirs = [c for c in (as_finite(r.cir) for r in reports) if c is not None]

    return LocationSummary(
        location=location,
        name=name,
        report_count=len(reports),
        avg_damage=sum(values) / len(values) if values else 0.0,
        max_damage=max(values) if values else 0.0,
        avg_cir=sum(cirs) / len(cirs) if cirs else DEFAULT_LOCATION_CIR,
        last_update=max((r.time for r in reports), default=None),
    )


# =============================================================================
# Store-backed facade
# =============================================================================

class DamageViews:
    """
    Async entry points combining DataStore queries with the pure views.

    Query times may be datetimes or timestamp strings; category names may use
    any spelling accepted by canonical_category. Both raise ValueError when
    they cannot be understood.
    """

    def __init__(self, store: DataStore, settings: Optional[Settings] = None):
        self.store = store
        self.settings = settings or store.settings

    async def neighborhood_snapshot(self, location: str, time: Any = None) -> NeighborhoodSnapshot:
        time = parse_query_time(time)
        location = str(location)
        snapshot = await self.store.get_bsts_snapshot(None, time)
        raw_index = await self.store.get_raw_report_index()
        names = await self.store.get_neighborhood_names()

        return neighborhood_snapshot(
            location,
            neighborhood_name(location, names),
            time,
            snapshot.get(location, {}),
            raw_index,
        )

    async def category_map(self, category: str, time: Any = None) -> List[MapEntry]:
        category = canonical_category(category)
        time = parse_query_time(time)
        snapshot = await self.store.get_bsts_snapshot(category, time)

        return category_map(
            category,
            time,
            await self.store.get_geography(),
            await self.store.get_neighborhood_names(),
            snapshot,
            await self.store.get_raw_report_index(),
        )

    async def comparison(self, time: Any = None, mode: str = "bsts", location: Optional[str] = None) -> List[CategoryStats]:
        """
        Category comparison in "bsts" mode (snapshot at time) or "raw" mode
        (reports within raw_report_window_hours of time, or all reports when
        time is None).
        """
        if mode not in COMPARISON_MODES:
            raise ValueError(f"mode must be one of {COMPARISON_MODES}")
        time = parse_query_time(time)
        location = str(location) if location is not None else None

        if mode == "bsts":
            snapshot = await self.store.get_bsts_snapshot(None, time)
            records = [
                record
                for loc, by_category in snapshot.items()
                if location is None or loc == location
                for record in by_category.values()
            ]
            return compare_categories(_group_estimates(records, RecordKind.BSTS_SUMMARY))

        if time is None:
            records = await self.store.get_raw_reports()
        else:
            hours = self.settings.raw_report_window_hours
            records = (await self.store.get_raw_report_index()).window(time, hours, hours)
        if location is not None:
            records = [r for r in records if r.location == location]
        return compare_categories(_group_estimates(records, RecordKind.RAW_REPORT))

    async def forecast(self, location: str, category: str, start: Any = None, end: Any = None) -> List[ForecastPoint]:
        category = canonical_category(category)
        start = parse_query_time(start)
        end = parse_query_time(end)
        points = await self.store.get_aggregated_time_series(str(location), category)
        return forecast_window(points, start, end)

    async def insights(self, time: Any = None, category: str = "shake_intensity") -> Insights:
        category = canonical_category(category)
        time = parse_query_time(time)
        snapshot = await self.store.get_bsts_snapshot(None, time)
        names = await self.store.get_neighborhood_names()
        return build_insights(snapshot, names, category, time)

    async def report_series(self, category: str, location: Optional[str] = None) -> List[ReportSeriesPoint]:
        category = canonical_category(category)
        location = str(location) if location is not None else None
        if location is not None:
            reports = await self.store.get_raw_reports_by_location(location)
        else:
            reports = await self.store.get_raw_reports()
        return report_series(reports, category, location)

    async def filtered_reports(
        self,
        categories: Optional[Iterable[str]] = None,
        location: Optional[str] = None,
        start: Any = None,
        end: Any = None,
        certainty_level: Optional[str] = None
    ) -> List[RawReport]:
        categories = [canonical_category(c) for c in categories] if categories else None
        start = parse_query_time(start)
        end = parse_query_time(end)
        location = str(location) if location is not None else None
        if location is not None:
            reports = await self.store.get_raw_reports_by_location(location)
        else:
            reports = await self.store.get_raw_reports()
        return filter_reports(reports, categories, location, start, end, certainty_level)

    async def location_summary(self, location: str) -> LocationSummary:
        location = str(location)
        names = await self.store.get_neighborhood_names()
        reports = await self.store.get_raw_reports_by_location(location)
        return location_summary(location, neighborhood_name(location, names), reports)
