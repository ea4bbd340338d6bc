"""
Calculation Engine Module

Pure reconciliation components: certainty conversions, record normalization,
as-of lookups and distribution summaries.
"""

from .certainty import (
    level_to_certainty,
    certainty_to_level,
    certainty_description,
    certainty_from_cir,
    certainty_from_sd,
    certainty_from_ci_width,
    certainty_to_cir,
    cir_from_bounds,
    ci_from_value_and_cir,
    ci_from_value_and_certainty,
    severity_from_value,
)
from .normalizer import FieldState, classify_record, normalize, settle_interval
from .temporal_index import TemporalIndex, latest_as_of, bulk_latest_as_of
from .statistics import five_number_summary, mean_certainty, summarize_category

__all__ = [
    # Certainty algebra
    'level_to_certainty',
    'certainty_to_level',
    'certainty_description',
    'certainty_from_cir',
    'certainty_from_sd',
    'certainty_from_ci_width',
    'certainty_to_cir',
    'cir_from_bounds',
    'ci_from_value_and_cir',
    'ci_from_value_and_certainty',
    'severity_from_value',
    # Normalizer
    'FieldState',
    'classify_record',
    'normalize',
    'settle_interval',
    # Temporal index
    'TemporalIndex',
    'latest_as_of',
    'bulk_latest_as_of',
    # Statistics
    'five_number_summary',
    'mean_certainty',
    'summarize_category',
]
