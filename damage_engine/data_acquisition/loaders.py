"""
Dataset Parsers

Turn raw dataset payloads (decoded JSON or pandas DataFrames) into the
canonical, immutable records of damage_engine.models. Source files use both
camelCase and snake_case spellings; every alias is mapped to one canonical
field name here so nothing downstream has to know about them.

Rows that cannot be placed on the timeline (no parseable time, no location or
no known category) are dropped with a warning. Every other field is passed
through as found and judged later by the normalizer.
"""

import logging
import math
import numbers
import re
from collections import defaultdict
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from config.settings import CATEGORIES
from damage_engine.calculation.certainty import as_finite
from damage_engine.models import (
    AggregatedPoint,
    BSTSSummary,
    GeoFeature,
    GeoShapes,
    RawReport,
)
from .base_loader import (
    DatasetLoadError,
    GEOGRAPHY,
    NEIGHBORHOOD_MAP,
    RAW_REPORTS,
    BSTS_SUMMARY,
    AGGREGATED_SERIES,
)

logger = logging.getLogger(__name__)

# Canonical field -> accepted spellings, in order of preference
TIME_FIELDS = ("time", "dateHour", "date_hour", "timestamp")
LOCATION_FIELDS = ("location", "locationId", "location_id", "loc")
CATEGORY_FIELDS = ("category",)
REPORT_VALUE_FIELDS = ("value", "reportValue", "report_value")
BSTS_VALUE_FIELDS = ("map", "MAP", "mean")
CERTAINTY_FIELDS = ("certainty",)
LEVEL_FIELDS = ("certaintyLevel", "certainty_level")
CI_LOWER_FIELDS = ("ciLower95", "ci_lower_95", "ciLower", "ci_lower")
CI_UPPER_FIELDS = ("ciUpper95", "ci_upper_95", "ciUpper", "ci_upper")
CIR_FIELDS = ("cir", "CIR")
SD_FIELDS = ("sd", "SD", "std")

# Wide report files carry these per-category companion columns
WIDE_SUFFIXES = {
    "certainty_level": "_certainty_level",
    "certainty": "_certainty",
    "cir": "_cir",
    "ci_lower": "_ci_lower",
    "ci_upper": "_ci_upper",
}


# =============================================================================
# Field helpers
# =============================================================================

def _is_absent(x: Any) -> bool:
    if x is None:
        return True
    if isinstance(x, float) and math.isnan(x):
        return True
    if isinstance(x, str) and not x.strip():
        return True
    return False


def _first(row: Dict[str, Any], names: Sequence[str]) -> Any:
    """First non-absent value among the aliases, or None."""
    for name in names:
        value = row.get(name)
        if not _is_absent(value):
            return value
    return None


def _first_numeric(row: Dict[str, Any], names: Sequence[str]) -> Any:
    """First finite alias; otherwise the first non-absent raw value."""
    fallback = None
    for name in names:
        value = row.get(name)
        if _is_absent(value):
            continue
        if as_finite(value) is not None:
            return value
        if fallback is None:
            fallback = value
    return fallback


def normalize_category(name: Any) -> Optional[str]:
    """'Roads and Bridges' -> 'roads_and_bridges'; None when blank."""
    if _is_absent(name):
        return None
    return re.sub(r"[\s\-]+", "_", str(name).strip().lower())


def canonical_category(name: Any) -> str:
    """
    Normalize a category name and check it against the fixed category set.

    Raises:
        ValueError: unknown or missing category
    """
    category = normalize_category(name)
    if category not in CATEGORIES:
        raise ValueError(f"Unknown category: {name!r}")
    return category


def location_id(x: Any) -> Optional[str]:
    """Location ids are strings; numeric ids like 5 or 5.0 become '5'."""
    if _is_absent(x) or isinstance(x, bool):
        return None
    if isinstance(x, numbers.Real):
        value = float(x)
        if not math.isfinite(value):
            return None
        return str(int(value)) if value.is_integer() else str(value)
    return str(x).strip() or None


def parse_time(x: Any) -> Optional[datetime]:
    """
    Parse a timestamp into a timezone-aware UTC datetime.

    Numbers are epoch milliseconds; naive values are taken as UTC.

    Returns:
        datetime, or None when x is missing or unparseable
    """
    if _is_absent(x) or isinstance(x, bool):
        return None
    try:
        if isinstance(x, (datetime, np.datetime64, pd.Timestamp)):
            ts = pd.Timestamp(x)
        elif isinstance(x, numbers.Real):
            ts = pd.Timestamp(float(x), unit="ms")
        else:
            ts = pd.Timestamp(str(x).strip())
    except (ValueError, TypeError, OverflowError):
        return None

    if ts is pd.NaT:
        return None
    if ts.tzinfo is None:
        ts = ts.tz_localize("UTC")
    else:
        ts = ts.tz_convert("UTC")
    return ts.to_pydatetime()


def parse_query_time(x: Any) -> Optional[datetime]:
    """
    Parse a caller-supplied query time; None means "no time filter".

    Raises:
        ValueError: x was given but is not a timestamp
    """
    if x is None:
        return None
    parsed = parse_time(x)
    if parsed is None:
        raise ValueError(f"Invalid timestamp: {x!r}")
    return parsed


def _rows(dataset: str, payload: Any) -> List[Dict[str, Any]]:
    """Tabular payload (DataFrame or list of objects) as a list of dicts."""
    if isinstance(payload, pd.DataFrame):
        frame = payload.astype(object).where(pd.notna(payload), None)
        return frame.to_dict("records")
    if isinstance(payload, dict):
        for key in ("records", "data", "results"):
            if isinstance(payload.get(key), list):
                payload = payload[key]
                break
    if isinstance(payload, list):
        return [row for row in payload if isinstance(row, dict)]
    raise DatasetLoadError(dataset, f"unexpected payload type {type(payload).__name__}")


def _placement(row: Dict[str, Any]) -> Tuple[Optional[datetime], Optional[str], Optional[str]]:
    time = parse_time(_first(row, TIME_FIELDS))
    location = location_id(_first(row, LOCATION_FIELDS))
    category = normalize_category(_first(row, CATEGORY_FIELDS))
    return time, location, category


def _warn_dropped(dataset: str, dropped: int, total: int):
    if dropped:
        logger.warning(f"Dropped {dropped} of {total} {dataset} rows without a usable time, location or category")


# =============================================================================
# Geography
# =============================================================================

def polygon_centroid(geometry_type: str, coordinates: Any) -> Tuple[float, float]:
    """Mean of the outer ring's points; (0, 0) when there is no usable ring."""
    try:
        if geometry_type == "Polygon":
            ring = coordinates[0]
        elif geometry_type == "MultiPolygon":
            ring = coordinates[0][0]
        else:
            return (0.0, 0.0)
        points = np.asarray(ring, dtype=float)
        if points.ndim != 2 or points.shape[0] == 0 or points.shape[1] < 2:
            return (0.0, 0.0)
        x, y = points[:, :2].mean(axis=0)
        return (float(x), float(y))
    except (IndexError, TypeError, ValueError):
        return (0.0, 0.0)


def load_geography(payload: Any) -> GeoShapes:
    """GeoJSON FeatureCollection -> GeoShapes."""
    if not isinstance(payload, dict) or not isinstance(payload.get("features"), list):
        raise DatasetLoadError(GEOGRAPHY, "expected a GeoJSON FeatureCollection")

    features = []
    names = {}
    for feature in payload["features"]:
        if not isinstance(feature, dict):
            continue
        props = feature.get("properties") or {}
        loc = location_id(_first(props, ("loc", "locationId", "id")))
        if loc is None:
            loc = location_id(feature.get("id"))
        if loc is None:
            logger.warning("Skipping GeoJSON feature without a location id")
            continue

        name = _first(props, ("locName", "locationName", "name"))
        name = str(name) if name is not None else f"Neighborhood {loc}"
        geometry = feature.get("geometry") or {}
        geometry_type = geometry.get("type", "")
        coordinates = geometry.get("coordinates", [])

        features.append(GeoFeature(
            location=loc,
            name=name,
            geometry_type=geometry_type,
            coordinates=coordinates,
            centroid=polygon_centroid(geometry_type, coordinates),
        ))
        names[loc] = name

    logger.info(f"Parsed {len(features)} neighborhood boundaries")
    return GeoShapes(features=tuple(features), names=names)


def load_neighborhood_map(payload: Any) -> Dict[str, str]:
    """[{id, name}] (or a plain {id: name} object) -> {id: name}."""
    names = {}
    if isinstance(payload, dict):
        items = payload.items()
    elif isinstance(payload, list):
        items = ((item.get("id"), item.get("name")) for item in payload if isinstance(item, dict))
    else:
        raise DatasetLoadError(NEIGHBORHOOD_MAP, "expected a list of {id, name} objects")

    for raw_id, name in items:
        loc = location_id(raw_id)
        if loc is not None and not _is_absent(name):
            names[loc] = str(name)

    if not names:
        raise DatasetLoadError(NEIGHBORHOOD_MAP, "no neighborhood names found")
    return names


# =============================================================================
# Raw reports
# =============================================================================

def _long_report(row: Dict[str, Any], time: datetime, location: str, category: str) -> RawReport:
    return RawReport(
        time=time,
        location=location,
        category=category,
        value=_first_numeric(row, REPORT_VALUE_FIELDS),
        certainty=_first(row, CERTAINTY_FIELDS),
        certainty_level=_first(row, LEVEL_FIELDS),
        ci_lower=_first(row, CI_LOWER_FIELDS),
        ci_upper=_first(row, CI_UPPER_FIELDS),
        cir=_first(row, CIR_FIELDS),
        sd=_first(row, SD_FIELDS),
    )


def _wide_reports(row: Dict[str, Any], time: datetime, location: str) -> List[RawReport]:
    """One report per category column that holds a value or any uncertainty."""
    reports = []
    for category in CATEGORIES:
        extras = {
            field: row.get(f"{category}{suffix}")
            for field, suffix in WIDE_SUFFIXES.items()
        }
        value = row.get(category)
        if _is_absent(value) and all(_is_absent(v) for v in extras.values()):
            continue
        reports.append(RawReport(
            time=time,
            location=location,
            category=category,
            value=None if _is_absent(value) else value,
            **{field: None if _is_absent(v) else v for field, v in extras.items()},
        ))
    return reports


def load_raw_reports(payload: Any) -> Tuple[RawReport, ...]:
    """
    Citizen reports in long form (one row per category) or in the wide form
    of the survey export (one column per category).
    """
    rows = _rows(RAW_REPORTS, payload)
    reports: List[RawReport] = []
    dropped = 0

    for row in rows:
        time, location, category = _placement(row)
        if time is None or location is None:
            dropped += 1
            continue

        if category is None and not any(name in row for name in CATEGORY_FIELDS):
            wide = _wide_reports(row, time, location)
            if not wide:
                # Neither a category field nor any category column
                dropped += 1
            reports.extend(wide)
        elif category in CATEGORIES:
            reports.append(_long_report(row, time, location, category))
        else:
            dropped += 1

    _warn_dropped(RAW_REPORTS, dropped, len(rows))
    logger.info(f"Parsed {len(reports)} raw reports from {len(rows)} rows")
    return tuple(reports)


# =============================================================================
# BSTS summaries and aggregated series
# =============================================================================

def load_bsts_summaries(payload: Any) -> Tuple[BSTSSummary, ...]:
    """Per (location, category, time) model summaries."""
    rows = _rows(BSTS_SUMMARY, payload)
    summaries: List[BSTSSummary] = []
    dropped = 0

    for row in rows:
        time, location, category = _placement(row)
        if time is None or location is None or category not in CATEGORIES:
            dropped += 1
            continue
        summaries.append(BSTSSummary(
            time=time,
            location=location,
            category=category,
            value=_first_numeric(row, BSTS_VALUE_FIELDS),
            certainty=_first(row, CERTAINTY_FIELDS),
            certainty_level=_first(row, LEVEL_FIELDS),
            ci_lower=_first(row, CI_LOWER_FIELDS),
            ci_upper=_first(row, CI_UPPER_FIELDS),
            cir=_first(row, CIR_FIELDS),
            sd=_first(row, SD_FIELDS),
        ))

    _warn_dropped(BSTS_SUMMARY, dropped, len(rows))
    logger.info(f"Parsed {len(summaries)} BSTS summaries")
    return tuple(summaries)


def load_aggregated_series(payload: Any) -> Dict[Tuple[str, str], Tuple[AggregatedPoint, ...]]:
    """Hourly aggregated BSTS series grouped by (location, category), time-sorted."""
    rows = _rows(AGGREGATED_SERIES, payload)
    groups: Dict[Tuple[str, str], List[AggregatedPoint]] = defaultdict(list)
    dropped = 0

    for row in rows:
        time, location, category = _placement(row)
        if time is None or location is None or category not in CATEGORIES:
            dropped += 1
            continue
        groups[(location, category)].append(AggregatedPoint(
            time=time,
            location=location,
            category=category,
            map=as_finite(_first_numeric(row, ("map", "MAP", "value"))),
            cir=as_finite(_first_numeric(row, ("CIRatMaxMAP", "cir", "CIR"))),
        ))

    _warn_dropped(AGGREGATED_SERIES, dropped, len(rows))
    return {key: tuple(sorted(points, key=lambda p: p.time)) for key, points in groups.items()}


def group_by_location(records: Iterable[RawReport]) -> Dict[str, Tuple[RawReport, ...]]:
    """location -> reports, in source order."""
    groups: Dict[str, List[RawReport]] = defaultdict(list)
    for record in records:
        groups[record.location].append(record)
    return {loc: tuple(items) for loc, items in groups.items()}
