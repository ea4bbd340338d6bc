"""
Temporal Index

Answers "latest record at or before T" questions over time-stamped records,
both as single point queries and as bulk as-of snapshots across every
(location, category) pair.
"""

import bisect
import logging
from collections import defaultdict
from datetime import datetime, timedelta
from functools import lru_cache
from typing import Dict, Iterable, List, Optional, Tuple, TypeVar

logger = logging.getLogger(__name__)

R = TypeVar("R")

# Point queries remembered per index
DEFAULT_MEMO_SIZE = 4096


def latest_as_of(
    records: Iterable[R],
    time: datetime,
    location: Optional[str] = None,
    category: Optional[str] = None
) -> Optional[R]:
    """
    Latest record with record.time <= time, optionally filtered.

    Args:
        records: Records exposing time, location and category
        time: Query instant (inclusive)
        location: Only consider this location when given
        category: Only consider this category when given

    Returns:
        The matching record with the greatest time (ties go to the last one
        encountered), or None
    """
    best = None
    for record in records:
        if location is not None and record.location != location:
            continue
        if category is not None and record.category != category:
            continue
        if record.time > time:
            continue
        if best is None or record.time >= best.time:
            best = record
    return best


def bulk_latest_as_of(
    records: Iterable[R],
    time: Optional[datetime],
    category: Optional[str] = None
) -> Dict[str, Dict[str, R]]:
    """
    Snapshot of the latest record per (location, category) in one pass.

    Args:
        records: Records exposing time, location and category
        time: Query instant (inclusive); None keeps the latest record overall
        category: Restrict the snapshot to one category

    Returns:
        location -> category -> record
    """
    snapshot: Dict[str, Dict[str, R]] = {}
    for record in records:
        if category is not None and record.category != category:
            continue
        if time is not None and record.time > time:
            continue
        by_category = snapshot.setdefault(record.location, {})
        current = by_category.get(record.category)
        if current is None or record.time >= current.time:
            by_category[record.category] = record
    return snapshot


class TemporalIndex:
    """
    Records grouped by (location, category) and sorted by time once, so that
    point queries are a binary search. The index never changes after
    construction; the most recent memo_size point queries are memoized.
    """

    def __init__(self, records: Iterable[R], memo_size: int = DEFAULT_MEMO_SIZE):
        groups: Dict[Tuple[str, str], List[R]] = defaultdict(list)
        for record in records:
            groups[(record.location, record.category)].append(record)

        # Stable sort keeps encounter order among equal timestamps
        self._series: Dict[Tuple[str, str], Tuple[R, ...]] = {}
        self._times: Dict[Tuple[str, str], List[datetime]] = {}
        for key, group in groups.items():
            group.sort(key=lambda r: r.time)
            self._series[key] = tuple(group)
            self._times[key] = [r.time for r in group]

        self._lookup = lru_cache(maxsize=memo_size)(self._find_latest)
        logger.debug(f"Indexed {sum(len(s) for s in self._series.values())} records "
                     f"in {len(self._series)} series")

    def __len__(self) -> int:
        return sum(len(s) for s in self._series.values())

    def keys(self) -> List[Tuple[str, str]]:
        return list(self._series)

    def locations(self) -> List[str]:
        return sorted({loc for loc, _ in self._series})

    def series(self, location: str, category: str) -> Tuple[R, ...]:
        """All records for one (location, category), oldest first."""
        return self._series.get((location, category), ())

    def latest(self, location: str, category: str, time: Optional[datetime]) -> Optional[R]:
        """Latest record for (location, category) at or before time."""
        return self._lookup(location, category, time)

    def memo_info(self):
        return self._lookup.cache_info()

    def _find_latest(self, location: str, category: str, time: Optional[datetime]) -> Optional[R]:
        series = self._series.get((location, category), ())
        if not series:
            result = None
        elif time is None:
            result = series[-1]
        else:
            pos = bisect.bisect_right(self._times[(location, category)], time)
            result = series[pos - 1] if pos else None

        return result

    def snapshot(self, time: Optional[datetime], category: Optional[str] = None) -> Dict[str, Dict[str, R]]:
        """location -> category -> latest record at or before time."""
        out: Dict[str, Dict[str, R]] = {}
        for loc, cat in self._series:
            if category is not None and cat != category:
                continue
            record = self.latest(loc, cat, time)
            if record is not None:
                out.setdefault(loc, {})[cat] = record
        return out

    def count_as_of(self, location: str, category: str, time: Optional[datetime]) -> int:
        """Number of records for (location, category) with record.time <= time."""
        times = self._times.get((location, category))
        if not times:
            return 0
        if time is None:
            return len(times)
        return bisect.bisect_right(times, time)

    def window(self, time: datetime, before: float, after: float, category: Optional[str] = None) -> List[R]:
        """Records within [time - before, time + after] hours, in index order."""
        start = time - timedelta(hours=before)
        end = time + timedelta(hours=after)
        out: List[R] = []
        for (loc, cat), series in self._series.items():
            if category is not None and cat != category:
                continue
            times = self._times[(loc, cat)]
            lo = bisect.bisect_left(times, start)
            hi = bisect.bisect_right(times, end)
            out.extend(series[lo:hi])
        return out
