"""
Neighborhood name fallback.

The neighborhood map is the only dataset with a built-in substitute: when
it cannot be loaded the 19 St. Himark neighborhood names below are served
instead, so views can still label every location.
"""

import logging
from typing import Dict

logger = logging.getLogger(__name__)

NEIGHBORHOOD_NAMES: Dict[str, str] = {
    "1": "Palace Hills",
    "2": "Northwest",
    "3": "Old Town",
    "4": "Safe Town",
    "5": "Southwest",
    "6": "Downtown",
    "7": "Wilson Forest",
    "8": "Scenic Vista",
    "9": "Broadview",
    "10": "Chapparal",
    "11": "Terrapin",
    "12": "Pepper Mill",
    "13": "Cheddarford",
    "14": "Easton",
    "15": "Weston",
    "16": "Southton",
    "17": "Oak Willow",
    "18": "East Parton",
    "19": "West Parton",
}


def fallback_neighborhood_names(reason: str = "") -> Dict[str, str]:
    """Copy of the built-in id -> name table."""
    logger.warning(f"Using built-in neighborhood names{': ' + reason if reason else ''}")
    return dict(NEIGHBORHOOD_NAMES)


def neighborhood_name(location: str, names: Dict[str, str]) -> str:
    """Name for a location id: loaded map first, then the built-in table."""
    return names.get(location) or NEIGHBORHOOD_NAMES.get(location) or f"Neighborhood {location}"
