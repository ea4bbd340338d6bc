"""
Certainty Algebra

Pure conversions between the uncertainty representations found in the
damage datasets: categorical certainty labels, numeric certainty (0-1),
credible interval range (CIR), standard deviation and explicit interval
bounds. Every function validates its inputs and falls back to a neutral
default instead of raising.
"""

import math
from typing import Any, Dict, Optional

from config.settings import (
    SCALE_MIN,
    SCALE_MAX,
    CERTAINTY_LEVELS,
    CERTAINTY_DESCRIPTIONS,
    CERTAINTY_FLOOR,
    CERTAINTY_CEILING,
    DEFAULT_CERTAINTY,
    MAX_CREDIBLE_CIR,
    MAX_EXPECTED_SD,
    DEFAULT_CI_SPREAD,
    SEVERITY_THRESHOLDS,
    SEVERITY_NONE_BELOW,
)
from damage_engine.models import Severity


def as_finite(x: Any) -> Optional[float]:
    """Coerce x to a finite float, or None when it is missing or unusable."""
    if x is None or isinstance(x, bool):
        return None
    try:
        value = float(x)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(value):
        return None
    return value


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def level_to_certainty(level: Any) -> float:
    """
    Convert a certainty label to a numeric certainty.

    Args:
        level: One of very_low, low, medium, high, very_high (case-insensitive)

    Returns:
        Numeric certainty; 0.5 for unknown or missing labels
    """
    if not isinstance(level, str) or not level.strip():
        return DEFAULT_CERTAINTY
    return CERTAINTY_LEVELS.get(level.strip().lower(), DEFAULT_CERTAINTY)


def certainty_to_level(certainty: Any) -> str:
    """Convert a numeric certainty back to its label band."""
    c = as_finite(certainty)
    if c is None:
        return "medium"
    if c < 0.2:
        return "very_low"
    if c < 0.4:
        return "low"
    if c < 0.6:
        return "medium"
    if c < 0.8:
        return "high"
    return "very_high"


def certainty_description(certainty: Any) -> str:
    """Human-readable sentence for a certainty label or numeric certainty."""
    if isinstance(certainty, str):
        level = certainty.strip().lower() or "medium"
    else:
        level = certainty_to_level(certainty)
    return CERTAINTY_DESCRIPTIONS.get(level, CERTAINTY_DESCRIPTIONS["medium"])


def _linear_certainty(spread: Any, max_spread: float) -> float:
    """0.9 at zero spread, falling linearly to 0.1 at max_spread."""
    s = as_finite(spread)
    if s is None or s < 0 or max_spread <= 0:
        return DEFAULT_CERTAINTY
    certainty = CERTAINTY_CEILING - (s / max_spread) * (CERTAINTY_CEILING - CERTAINTY_FLOOR)
    return clamp(certainty, CERTAINTY_FLOOR, CERTAINTY_CEILING)


def certainty_from_cir(cir: Any, max_credible_cir: float = MAX_CREDIBLE_CIR) -> float:
    """
    Certainty from a credible interval range.

    Args:
        cir: Full width of the credible interval
        max_credible_cir: CIR at (and beyond) which certainty bottoms out at 0.1

    Returns:
        Certainty in [0.1, 0.9], or 0.5 for negative / invalid input
    """
    return _linear_certainty(cir, max_credible_cir)


def certainty_from_sd(sd: Any, max_expected_sd: float = MAX_EXPECTED_SD) -> float:
    """
    Certainty from a posterior standard deviation.

    Args:
        sd: Standard deviation
        max_expected_sd: SD at (and beyond) which certainty bottoms out at 0.1

    Returns:
        Certainty in [0.1, 0.9], or 0.5 for negative / invalid input
    """
    return _linear_certainty(sd, max_expected_sd)


def certainty_from_ci_width(lower: Any, upper: Any, value: Any, scale_max: float = SCALE_MAX) -> float:
    """
    Certainty from the width of an explicit interval.

    An interval covering the whole scale yields exactly 0.0; this is the only
    certainty allowed below the usual 0.1 floor.

    Args:
        lower: Lower interval bound
        upper: Upper interval bound
        value: Point estimate; an exact zero point estimate is scored 0.7
        scale_max: Width of the full damage scale

    Returns:
        Certainty in {0.0} U [0.1, 0.9], or 0.5 for invalid input
    """
    lo = as_finite(lower)
    hi = as_finite(upper)
    if lo is None or hi is None or scale_max <= 0:
        return DEFAULT_CERTAINTY

    width = abs(hi - lo)
    if width >= scale_max:
        return 0.0
    if width <= 0.01:
        if as_finite(value) == 0:
            return 0.7
        return 0.9
    return clamp(1.0 - width / scale_max, CERTAINTY_FLOOR, CERTAINTY_CEILING)


def certainty_to_cir(certainty: Any) -> float:
    """Inverse of the full-scale linear certainty map (0.9 -> 0, 0.1 -> 10)."""
    c = as_finite(certainty)
    if c is None:
        return 5.0
    c = clamp(c, CERTAINTY_FLOOR, CERTAINTY_CEILING)
    return (CERTAINTY_CEILING - c) * (SCALE_MAX / (CERTAINTY_CEILING - CERTAINTY_FLOOR))


def cir_from_bounds(lower: Any, upper: Any) -> float:
    """Width of an explicit interval; 5.0 when either bound is unusable."""
    lo = as_finite(lower)
    hi = as_finite(upper)
    if lo is None or hi is None:
        return 5.0
    return abs(hi - lo)


def _bounds_around(value: float, half_width: float, scale_min: float, scale_max: float) -> Dict[str, float]:
    lower = max(scale_min, min(value - half_width, value))
    upper = min(scale_max, max(value + half_width, value))

    if lower > upper:
        # Only possible when value itself sits outside the scale
        if value < scale_min:
            lower = upper = scale_min
        elif value > scale_max:
            lower = upper = scale_max
        else:
            lower = upper = value
    return {"lower": lower, "upper": upper}


def ci_from_value_and_cir(
    value: Any,
    cir: Any,
    scale_min: float = SCALE_MIN,
    scale_max: float = SCALE_MAX
) -> Dict[str, float]:
    """
    Symmetric interval of full width |cir| around value, clamped to the scale.

    Args:
        value: Point estimate
        cir: Credible interval range (full width)
        scale_min: Lower scale bound
        scale_max: Upper scale bound

    Returns:
        {'lower': float, 'upper': float} with lower <= upper
    """
    v = as_finite(value)
    c = as_finite(cir)
    if v is None or c is None:
        point = v if v is not None else (scale_min + scale_max) / 2
        point = clamp(point, scale_min, scale_max)
        return {"lower": point, "upper": point}

    return _bounds_around(v, abs(c) / 2, scale_min, scale_max)


def ci_from_value_and_certainty(
    value: Any,
    certainty: Any,
    scale_min: float = SCALE_MIN,
    scale_max: float = SCALE_MAX,
    method: str = "heuristic",
    spread: float = DEFAULT_CI_SPREAD
) -> Dict[str, float]:
    """
    Interval implied by a certainty when no width information exists.

    Args:
        value: Point estimate
        certainty: Numeric certainty (0-1); invalid values count as 0.5
        scale_min: Lower scale bound
        scale_max: Upper scale bound
        method: 'heuristic' uses half-width (1 - certainty) * spread,
            'inverse' uses half of certainty_to_cir(certainty)
        spread: Multiplier for the heuristic method

    Returns:
        {'lower': float, 'upper': float} with lower <= value <= upper when
        value lies on the scale
    """
    v = as_finite(value)
    if v is None:
        return {"lower": 0.0, "upper": 0.0}

    c = as_finite(certainty)
    if c is None:
        c = DEFAULT_CERTAINTY

    if method == "heuristic":
        half_width = (1.0 - c) * spread
    elif method == "inverse":
        half_width = certainty_to_cir(c) / 2
    else:
        raise ValueError("method must be 'heuristic' or 'inverse'")

    return _bounds_around(v, max(0.0, half_width), scale_min, scale_max)


def severity_from_value(value: Any) -> Severity:
    """
    Damage severity band for a point value on the 0-10 scale.

    <0.5 None, <=2 Minor, <=4 Moderate, <=6 Severe, <=8 Very severe,
    otherwise Catastrophic.
    """
    v = as_finite(value)
    if v is None:
        return Severity.UNKNOWN
    if v < SEVERITY_NONE_BELOW:
        return Severity.NONE
    for upper, label in SEVERITY_THRESHOLDS:
        if v <= upper:
            return Severity(label)
    return Severity.CATASTROPHIC
