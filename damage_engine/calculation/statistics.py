"""
Distribution summaries used by the category comparison view.
"""

from typing import Dict, Iterable, Optional

import numpy as np

from config.settings import CATEGORY_LABELS
from damage_engine.models import CategoryStats


def five_number_summary(values: Iterable[float]) -> Optional[Dict[str, float]]:
    """
    Min, quartiles and max with linear interpolation between order statistics
    (position (n - 1) * p in the sorted values).

    Returns:
        Dict with min/q1/median/q3/max, or None for an empty input
    """
    arr = np.asarray([v for v in values if v is not None], dtype=float)
    arr = arr[np.isfinite(arr)]
    if arr.size == 0:
        return None

    q1, median, q3 = np.percentile(arr, [25, 50, 75])
    return {
        "min": float(arr.min()),
        "q1": float(q1),
        "median": float(median),
        "q3": float(q3),
        "max": float(arr.max()),
    }


def mean_certainty(certainties: Iterable[float]) -> float:
    """Arithmetic mean, 0.0 when nothing contributes."""
    arr = np.asarray(list(certainties), dtype=float)
    if arr.size == 0:
        return 0.0
    return float(arr.mean())


def summarize_category(category: str, values: Iterable[float], certainties: Iterable[float]) -> CategoryStats:
    """
    Build the comparison row for one category.

    Args:
        category: Canonical category id
        values: Reconciled damage values of every contributing record
        certainties: Certainties of the records whose certainty came from an
            actual uncertainty signal

    Returns:
        CategoryStats; all zeros with count 0 when no values contribute
    """
    values = list(values)
    summary = five_number_summary(values)
    label = CATEGORY_LABELS.get(category, category)

    if summary is None:
        return CategoryStats(
            category=category, label=label,
            min=0.0, q1=0.0, median=0.0, q3=0.0, max=0.0,
            count=0, confidence=0.0,
        )

    return CategoryStats(
        category=category,
        label=label,
        count=len(values),
        confidence=mean_certainty(certainties),
        **summary,
    )
