"""
Damage Engine Data Model

Canonical record shapes produced by ingestion and the derived estimate
returned by reconciliation. Every record is immutable (`frozen=True`) so that
cached collections can be shared between consumers without copying.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class RecordKind(str, Enum):
    """Origin of a record fed to the normalizer."""
    RAW_REPORT = "raw_report"
    BSTS_SUMMARY = "bsts"


class Severity(str, Enum):
    """Damage severity label derived purely from the point value."""
    NONE = "None"
    MINOR = "Minor"
    MODERATE = "Moderate"
    SEVERE = "Severe"
    VERY_SEVERE = "Very severe"
    CATASTROPHIC = "Catastrophic"
    UNKNOWN = "Unknown"


class CertaintySource(str, Enum):
    """Which uncertainty signal produced an estimate's certainty."""
    LEVEL = "certainty_level"
    NUMERIC = "certainty"
    CIR = "cir"
    SD = "sd"
    CI_WIDTH = "ci_width"
    DEFAULT = "default"
    NONE = "none"


@dataclass(frozen=True)
class RawReport:
    """One citizen-submitted observation.

    Uncertainty fields keep whatever the source file held; the normalizer
    decides whether each one is usable.
    """
    time: datetime
    location: str
    category: str
    value: Any = None
    certainty: Any = None
    certainty_level: Any = None
    ci_lower: Any = None
    ci_upper: Any = None
    cir: Any = None
    sd: Any = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "time": self.time.isoformat(),
            "location": self.location,
            "category": self.category,
            "value": self.value,
            "certainty": self.certainty,
            "certaintyLevel": self.certainty_level,
            "ciLower": self.ci_lower,
            "ciUpper": self.ci_upper,
            "cir": self.cir,
            "sd": self.sd,
        }


@dataclass(frozen=True)
class BSTSSummary:
    """One model-derived estimate for a (location, category, time) triple."""
    time: datetime
    location: str
    category: str
    value: Any = None  # MAP estimate, or the posterior mean when MAP is missing
    certainty: Any = None
    certainty_level: Any = None
    ci_lower: Any = None  # 95% credible interval bounds
    ci_upper: Any = None
    cir: Any = None
    sd: Any = None


@dataclass(frozen=True)
class AggregatedPoint:
    """One hourly point of the aggregated BSTS series used for forecasts."""
    time: datetime
    location: str
    category: str
    map: Optional[float]
    cir: Optional[float]


@dataclass(frozen=True)
class GeoFeature:
    """Neighborhood boundary."""
    location: str
    name: str
    geometry_type: str
    coordinates: Any
    centroid: Tuple[float, float]


@dataclass(frozen=True)
class GeoShapes:
    """Geography dataset: boundaries plus the id -> name lookup."""
    features: Tuple[GeoFeature, ...]
    names: Dict[str, str]

    def location_ids(self) -> List[str]:
        return [f.location for f in self.features]


@dataclass(frozen=True)
class DamageEstimate:
    """Canonical output of reconciliation for one (location, category, time)."""
    value: float
    ci_lower: float
    ci_upper: float
    certainty: float
    severity: Severity
    report_count: int = 0
    source: str = "none"
    certainty_source: CertaintySource = CertaintySource.NONE

    @classmethod
    def no_data(cls, report_count: int = 0) -> "DamageEstimate":
        """The explicit "nothing recorded" estimate (distinct from a low-certainty zero)."""
        return cls(
            value=0.0,
            ci_lower=0.0,
            ci_upper=0.0,
            certainty=0.0,
            severity=Severity.NONE,
            report_count=report_count,
            source="none",
            certainty_source=CertaintySource.NONE,
        )

    @property
    def is_no_data(self) -> bool:
        return self.source == "none"

    @property
    def has_derived_certainty(self) -> bool:
        """True when certainty came from an actual uncertainty signal."""
        return self.certainty_source not in (CertaintySource.DEFAULT, CertaintySource.NONE)

    def with_report_count(self, report_count: int) -> "DamageEstimate":
        return replace(self, report_count=report_count)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "value": self.value,
            "ciLower": self.ci_lower,
            "ciUpper": self.ci_upper,
            "certainty": self.certainty,
            "severity": self.severity.value,
            "reportCount": self.report_count,
            "source": self.source,
        }


@dataclass(frozen=True)
class NeighborhoodSnapshot:
    """All six categories for one neighborhood at one instant."""
    location: str
    name: str
    time: Optional[datetime]
    categories: Dict[str, DamageEstimate]
    report_count: int
    avg_damage: float
    overall_status: str
    latest_report_time: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.location,
            "name": self.name,
            "time": self.time.isoformat() if self.time else None,
            "avgDamage": self.avg_damage,
            "overallStatus": self.overall_status,
            "reportCount": self.report_count,
            "latestReportTime": self.latest_report_time.isoformat() if self.latest_report_time else None,
            "categories": {cat: est.to_dict() for cat, est in self.categories.items()},
        }


@dataclass(frozen=True)
class MapEntry:
    """One neighborhood on the category map."""
    location: str
    name: str
    centroid: Tuple[float, float]
    estimate: DamageEstimate

    def to_dict(self) -> Dict[str, Any]:
        data = {"id": self.location, "name": self.name, "coordinates": list(self.centroid)}
        data.update(self.estimate.to_dict())
        return data


@dataclass(frozen=True)
class CategoryStats:
    """Five-number summary and mean certainty for one category."""
    category: str
    label: str
    min: float
    q1: float
    median: float
    q3: float
    max: float
    count: int
    confidence: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category,
            "categoryLabel": self.label,
            "minValue": self.min,
            "q1Value": self.q1,
            "medianValue": self.median,
            "q3Value": self.q3,
            "maxValue": self.max,
            "count": self.count,
            "confidence": self.confidence,
        }


@dataclass(frozen=True)
class ForecastPoint:
    """One point of a forecast window."""
    time: datetime
    value: float
    ci_lower: float
    ci_upper: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "time": self.time.isoformat(),
            "value": self.value,
            "ciLower": self.ci_lower,
            "ciUpper": self.ci_upper,
        }


@dataclass(frozen=True)
class ReportSeriesPoint:
    """Hourly bucket of raw report values."""
    time: datetime
    max: float
    mean: float
    count: int

    def to_dict(self) -> Dict[str, Any]:
        return {"time": self.time.isoformat(), "value": self.max, "avg": self.mean, "count": self.count}


@dataclass
class Insights:
    """City-wide summary at one instant."""
    worst_hit_neighborhood: str = "N/A"
    most_affected_category: str = "N/A"
    most_affected_value: float = 0.0
    average_certainty_pct: float = 0.0
    certainty_breakdown: Dict[str, int] = field(default_factory=lambda: {"low": 0, "medium": 0, "high": 0})
    most_reliable: List[str] = field(default_factory=list)
    least_reliable: List[str] = field(default_factory=list)
    selected_category: str = "N/A"
    active_events: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "worstHitNeighborhood": self.worst_hit_neighborhood,
            "mostAffectedInfrastructure": self.most_affected_category,
            "mostAffectedValue": self.most_affected_value,
            "averageCertainty": self.average_certainty_pct,
            "certaintyBreakdown": dict(self.certainty_breakdown),
            "mostReliableForCategory": list(self.most_reliable),
            "leastReliableForCategory": list(self.least_reliable),
            "selectedCategoryForReliability": self.selected_category,
            "keyEvents": list(self.active_events),
        }


@dataclass(frozen=True)
class LocationSummary:
    """Raw-report statistics for one neighborhood."""
    location: str
    name: str
    report_count: int
    avg_damage: float
    max_damage: float
    avg_cir: float
    last_update: Optional[datetime]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.location,
            "name": self.name,
            "reportCount": self.report_count,
            "avgDamage": self.avg_damage,
            "maxDamage": self.max_damage,
            "avgUncertainty": self.avg_cir,
            "lastUpdate": self.last_update.isoformat() if self.last_update else None,
        }
