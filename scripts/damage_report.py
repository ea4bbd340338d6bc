#!/usr/bin/env python3
"""
Print Damage Estimates from the Command Line

Loads the configured datasets and prints either one neighborhood's snapshot
or one category's city map at a given time.
"""

import asyncio
import sys
import logging
from pathlib import Path
from typing import List, Optional

sys.path.insert(0, str(Path(__file__).parent.parent))

from config.settings import CATEGORY_LABELS, get_settings
from damage_engine.data_acquisition.base_loader import DatasetLoadError
from damage_engine.models import DamageEstimate
from damage_engine.store import DataStore
from damage_engine.views import DamageViews

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)


def format_estimate(label: str, estimate: DamageEstimate) -> str:
    if estimate.is_no_data:
        return f"  {label:<18} no data"
    return (
        f"  {label:<18} {estimate.value:5.2f}  "
        f"[{estimate.ci_lower:.2f}, {estimate.ci_upper:.2f}]  "
        f"certainty {estimate.certainty:.0%}  {estimate.severity.value} ({estimate.source})"
    )


async def snapshot_lines(views: DamageViews, location: str, time: Optional[str]) -> List[str]:
    snapshot = await views.neighborhood_snapshot(location, time)
    lines = [
        f"{snapshot.name} (#{snapshot.location}): {snapshot.overall_status}, "
        f"{snapshot.report_count} reports"
    ]
    for category, estimate in snapshot.categories.items():
        lines.append(format_estimate(CATEGORY_LABELS[category], estimate))
    return lines


async def map_lines(views: DamageViews, category: str, time: Optional[str]) -> List[str]:
    entries = await views.category_map(category, time)
    return [format_estimate(entry.name, entry.estimate) for entry in entries]


def main():
    """Main entry point."""
    import argparse

    parser = argparse.ArgumentParser(description='Print reconciled damage estimates')
    parser.add_argument('--location', help='Neighborhood id for a snapshot')
    parser.add_argument('--category', help='Category for a city-wide map')
    parser.add_argument('--time', help='Query instant (ISO 8601); latest data when omitted')

    args = parser.parse_args()

    if bool(args.location) == bool(args.category):
        parser.error("pass exactly one of --location or --category")

    views = DamageViews(DataStore(settings=get_settings()))
    try:
        if args.location:
            lines = asyncio.run(snapshot_lines(views, args.location, args.time))
        else:
            lines = asyncio.run(map_lines(views, args.category, args.time))
    except DatasetLoadError as e:
        logger.error(f"Dataset unavailable: {e}")
        sys.exit(1)
    except ValueError as e:
        logger.error(str(e))
        sys.exit(2)

    print("\n".join(lines))


if __name__ == '__main__':
    main()
