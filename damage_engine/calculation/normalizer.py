"""
Record Normalizer

Reduces one canonical record (a raw citizen report or a BSTS summary row) to a
single DamageEstimate. The uncertainty representation is chosen by a fixed
priority order; the first rule whose inputs are usable wins and rules are
never blended:

1. explicit interval bounds
2. credible interval range (CIR)
3. standard deviation
4. certainty label (or a stated numeric certainty) only
5. nothing but a value

Malformed fields never raise: each field is classified as present-valid,
present-invalid or absent, and only present-valid fields take part in the
rules.
"""

import logging
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union

from config.settings import (
    SCALE_MIN,
    SCALE_MAX,
    CERTAINTY_LEVELS,
    CERTAINTY_FLOOR,
    CERTAINTY_CEILING,
    LABEL_CI_SPREAD,
    DEFAULT_CI_SPREAD,
    NO_SIGNAL_CERTAINTY,
    SD_TO_CI95,
)
from damage_engine.models import (
    BSTSSummary,
    CertaintySource,
    DamageEstimate,
    RawReport,
    RecordKind,
)
from .certainty import (
    as_finite,
    clamp,
    level_to_certainty,
    certainty_from_cir,
    certainty_from_sd,
    certainty_from_ci_width,
    ci_from_value_and_cir,
    ci_from_value_and_certainty,
    severity_from_value,
)

logger = logging.getLogger(__name__)

Record = Union[RawReport, BSTSSummary]


class FieldState(str, Enum):
    """Classification of one record field at the normalizer boundary."""
    VALID = "present-valid"
    INVALID = "present-invalid"
    ABSENT = "absent"


def _is_blank(x: Any) -> bool:
    return x is None or (isinstance(x, str) and not x.strip())


def classify_number(x: Any) -> Tuple[FieldState, Optional[float]]:
    """Classify a numeric field; only finite numbers are valid."""
    if _is_blank(x):
        return FieldState.ABSENT, None
    value = as_finite(x)
    if value is None:
        return FieldState.INVALID, None
    return FieldState.VALID, value


def classify_certainty(x: Any) -> Tuple[FieldState, Optional[float]]:
    """Classify a stated numeric certainty; valid values lie in [0, 1]."""
    state, value = classify_number(x)
    if state is FieldState.VALID and not (0.0 <= value <= 1.0):
        return FieldState.INVALID, None
    return state, value


def classify_level(x: Any) -> Tuple[FieldState, Optional[str]]:
    """Classify a certainty label; only the known label set is valid."""
    if _is_blank(x):
        return FieldState.ABSENT, None
    if not isinstance(x, str):
        return FieldState.INVALID, None
    level = x.strip().lower()
    if level not in CERTAINTY_LEVELS:
        return FieldState.INVALID, None
    return FieldState.VALID, level


def classify_record(record: Record) -> Dict[str, Tuple[FieldState, Any]]:
    """Classify every reconciliation field of a canonical record."""
    fields = {
        "value": classify_number(record.value),
        "certainty": classify_certainty(record.certainty),
        "certainty_level": classify_level(record.certainty_level),
        "ci_lower": classify_number(record.ci_lower),
        "ci_upper": classify_number(record.ci_upper),
        "cir": classify_number(record.cir),
        "sd": classify_number(record.sd),
    }
    invalid = [name for name, (state, _) in fields.items() if state is FieldState.INVALID]
    if invalid:
        logger.debug(
            f"Ignoring invalid fields {invalid} on {record.location}/{record.category} at {record.time}"
        )
    return fields


def _valid(fields: Dict[str, Tuple[FieldState, Any]], name: str) -> Optional[Any]:
    state, value = fields[name]
    return value if state is FieldState.VALID else None


def _stated_certainty(
    fields: Dict[str, Tuple[FieldState, Any]],
    kind: RecordKind
) -> Optional[Tuple[float, CertaintySource]]:
    """
    Certainty given directly by the record.

    A raw report's own numeric certainty comes before its label; BSTS
    summaries prefer the label.
    """
    level = _valid(fields, "certainty_level")
    numeric = _valid(fields, "certainty")
    from_level = (level_to_certainty(level), CertaintySource.LEVEL) if level is not None else None
    from_number = (
        (clamp(numeric, CERTAINTY_FLOOR, CERTAINTY_CEILING), CertaintySource.NUMERIC)
        if numeric is not None else None
    )
    if kind is RecordKind.RAW_REPORT:
        return from_number or from_level
    return from_level or from_number


def _stated_spread(source: CertaintySource, kind: RecordKind) -> float:
    # Numeric report certainty keeps the wide value-only spread
    if kind is RecordKind.RAW_REPORT and source is CertaintySource.NUMERIC:
        return DEFAULT_CI_SPREAD
    return LABEL_CI_SPREAD


def settle_interval(value: float, lower: float, upper: float) -> Tuple[float, float]:
    """
    Clamp both bounds onto the scale and repair an inverted interval.

    An inverted pair collapses toward the value around its midpoint; if that
    is still inverted both bounds become the value.
    """
    lower = clamp(lower, SCALE_MIN, SCALE_MAX)
    upper = clamp(upper, SCALE_MIN, SCALE_MAX)
    if lower > upper:
        mid = (lower + upper) / 2
        lower = min(value, mid)
        upper = max(value, mid)
        if lower > upper:
            lower = upper = value
    return lower, upper


def _kind_of(record: Record) -> RecordKind:
    if isinstance(record, BSTSSummary):
        return RecordKind.BSTS_SUMMARY
    return RecordKind.RAW_REPORT


def normalize(record: Optional[Record], kind: Optional[RecordKind] = None) -> DamageEstimate:
    """
    Reduce one record to a DamageEstimate.

    Args:
        record: Canonical RawReport or BSTSSummary; None means nothing was
            recorded and yields the no-data estimate
        kind: Record origin; inferred from the record type when omitted

    Returns:
        DamageEstimate with 0 <= ci_lower <= ci_upper <= 10 and 0 <= value <= 10
    """
    if record is None:
        return DamageEstimate.no_data()

    kind = kind or _kind_of(record)
    fields = classify_record(record)

    value = _valid(fields, "value")
    value = clamp(value if value is not None else 0.0, SCALE_MIN, SCALE_MAX)

    stated = _stated_certainty(fields, kind)
    ci_lower = _valid(fields, "ci_lower")
    ci_upper = _valid(fields, "ci_upper")
    cir = _valid(fields, "cir")
    sd = _valid(fields, "sd")

    if ci_lower is not None and ci_upper is not None:
        lower, upper = ci_lower, ci_upper
        if stated is not None:
            certainty, source = stated
        elif cir is not None:
            certainty, source = certainty_from_cir(cir), CertaintySource.CIR
        elif sd is not None:
            certainty, source = certainty_from_sd(sd), CertaintySource.SD
        else:
            certainty = certainty_from_ci_width(lower, upper, value)
            source = CertaintySource.CI_WIDTH

    elif cir is not None:
        certainty, source = stated or (certainty_from_cir(cir), CertaintySource.CIR)
        ci = ci_from_value_and_cir(value, cir)
        lower, upper = ci["lower"], ci["upper"]

    elif sd is not None:
        certainty, source = stated or (certainty_from_sd(sd), CertaintySource.SD)
        ci = ci_from_value_and_cir(value, 2 * SD_TO_CI95 * sd)
        lower, upper = ci["lower"], ci["upper"]

    elif stated is not None:
        certainty, source = stated
        ci = ci_from_value_and_certainty(value, certainty, spread=_stated_spread(source, kind))
        lower, upper = ci["lower"], ci["upper"]

    else:
        certainty, source = NO_SIGNAL_CERTAINTY, CertaintySource.DEFAULT
        ci = ci_from_value_and_certainty(value, certainty, spread=DEFAULT_CI_SPREAD)
        lower, upper = ci["lower"], ci["upper"]

    lower, upper = settle_interval(value, lower, upper)

    return DamageEstimate(
        value=value,
        ci_lower=lower,
        ci_upper=upper,
        certainty=certainty,
        severity=severity_from_value(value),
        source=kind.value,
        certainty_source=source,
    )
