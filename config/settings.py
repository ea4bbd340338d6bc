"""
Damage Engine Configuration Settings

Centralized configuration management using Pydantic Settings.
Deployment configuration is loaded from environment variables; the fixed
reconciliation constants live next to it as module-level tables.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "St. Himark Damage Uncertainty Engine"
    app_version: str = "1.0.0"
    debug: bool = False
    log_level: str = "INFO"

    # Datasets (file names are resolved against data_dir unless they are URLs)
    data_dir: str = "data"
    geography_file: str = "neighborhoods.geojson"
    neighborhood_map_file: str = "processed/neighborhood_map.json"
    raw_reports_file: str = "mc1-reports-data.csv"
    bsts_summary_file: str = "processed/bsts_results/all_bsts_results.json"
    aggregated_series_file: str = "processed/all_summary_aggregated.csv"

    # Remote dataset fetching
    request_timeout: int = 30  # seconds
    max_retries: int = 3
    retry_backoff_factor: float = 2.0

    # Views
    raw_report_window_hours: float = 6.0
    api_base_url: Optional[str] = None


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Damage scale shared by every value and interval bound
SCALE_MIN = 0.0
SCALE_MAX = 10.0

# Fixed set of damage categories (order used by every view)
CATEGORIES = [
    "shake_intensity",
    "buildings",
    "power",
    "medical",
    "sewer_and_water",
    "roads_and_bridges",
]

CATEGORY_LABELS = {
    "shake_intensity": "Shake Intensity",
    "buildings": "Buildings",
    "power": "Power",
    "medical": "Medical",
    "sewer_and_water": "Sewer & Water",
    "roads_and_bridges": "Roads & Bridges",
}

# Categorical certainty label -> numeric certainty
CERTAINTY_LEVELS = {
    "very_low": 0.1,
    "low": 0.3,
    "medium": 0.5,
    "high": 0.8,
    "very_high": 0.9,
}

CERTAINTY_DESCRIPTIONS = {
    "very_low": "Very low confidence in this estimate",
    "low": "Low confidence in this estimate",
    "medium": "Medium confidence in this estimate",
    "high": "High confidence in this estimate",
    "very_high": "Very high confidence in this estimate",
}

# Certainty bounds for every derived (non CI-width) certainty
CERTAINTY_FLOOR = 0.1
CERTAINTY_CEILING = 0.9
DEFAULT_CERTAINTY = 0.5

# Normalization constants for CIR / SD based certainty
MAX_CREDIBLE_CIR = 4.0
MAX_EXPECTED_SD = 2.5

# Interval heuristics (half-width = (1 - certainty) * spread)
LABEL_CI_SPREAD = 5.0
DEFAULT_CI_SPREAD = 7.0
NO_SIGNAL_CERTAINTY = 0.2
SD_TO_CI95 = 1.96

# Upper bound (inclusive) of each severity band; values below 0.5 are "None"
SEVERITY_THRESHOLDS = [
    (2.0, "Minor"),
    (4.0, "Moderate"),
    (6.0, "Severe"),
    (8.0, "Very severe"),
]
SEVERITY_NONE_BELOW = 0.5

OVERALL_STATUS_LABELS = {
    "None": "No impact",
    "Minor": "Minor impact",
    "Moderate": "Moderate impact",
    "Severe": "Severe impact",
    "Very severe": "Very severe impact",
    "Catastrophic": "Catastrophic impact",
}

# Insights certainty breakdown
CERTAINTY_BREAKDOWN = {
    "LOW_BELOW": 0.4,
    "MEDIUM_BELOW": 0.8,
}
MOST_RELIABLE_ABOVE = 0.85
RELIABILITY_LIST_SIZE = 5

# Timeline of notable events (UTC)
KEY_EVENTS = [
    ("2020-04-06T14:40:00Z", "First Reports"),
    ("2020-04-08T08:35:00Z", "First Quake"),
    ("2020-04-08T18:00:00Z", "Power Outages"),
    ("2020-04-09T15:00:00Z", "Second Quake"),
    ("2020-04-10T06:00:00Z", "Recovery Starts"),
]

# An event is active within this many hours either side of its time
KEY_EVENT_WINDOW_HOURS = 1.0

# Report filter bands over stated certainty: [lower, upper), "high" includes 1.0
CERTAINTY_FILTER_BANDS = {
    "very_low": (0.0, 0.2),
    "low": (0.2, 0.4),
    "medium": (0.4, 0.8),
    "high": (0.8, None),
}

# Average CIR reported for a neighborhood with no CIR-bearing reports
DEFAULT_LOCATION_CIR = 1.0
