"""
Data Acquisition Module

Dataset sources and the parsers that turn their payloads into canonical
records.
"""

from .base_loader import (
    DatasetLoadError,
    DatasetSource,
    FileDatasetSource,
    InMemoryDatasetSource,
    DATASETS,
    GEOGRAPHY,
    NEIGHBORHOOD_MAP,
    RAW_REPORTS,
    BSTS_SUMMARY,
    AGGREGATED_SERIES,
)
from .loaders import (
    canonical_category,
    normalize_category,
    parse_time,
    parse_query_time,
    load_geography,
    load_neighborhood_map,
    load_raw_reports,
    load_bsts_summaries,
    load_aggregated_series,
)
from .fallback import NEIGHBORHOOD_NAMES, fallback_neighborhood_names, neighborhood_name

__all__ = [
    'DatasetLoadError',
    'DatasetSource',
    'FileDatasetSource',
    'InMemoryDatasetSource',
    'DATASETS',
    'GEOGRAPHY',
    'NEIGHBORHOOD_MAP',
    'RAW_REPORTS',
    'BSTS_SUMMARY',
    'AGGREGATED_SERIES',
    'canonical_category',
    'normalize_category',
    'parse_time',
    'parse_query_time',
    'load_geography',
    'load_neighborhood_map',
    'load_raw_reports',
    'load_bsts_summaries',
    'load_aggregated_series',
    'NEIGHBORHOOD_NAMES',
    'fallback_neighborhood_names',
    'neighborhood_name',
]
