"""
Damage Engine: Data access and cache layer.

A DataStore loads every dataset at most once from an injected DatasetSource,
builds the derived indices, and serves memoized queries. Concurrent requests
for the same key share one in-flight task; a failed load is not cached, so
the next request retries it.

Everything handed out is read-only (tuples and MappingProxyType), which is
what allows cached values to be shared between callers without locks.
"""

import asyncio
import logging
from dataclasses import asdict, dataclass
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Dict, Hashable, Mapping, Optional, Tuple

from config.settings import Settings, get_settings
from damage_engine.calculation.temporal_index import TemporalIndex, bulk_latest_as_of
from damage_engine.data_acquisition.base_loader import (
    DatasetLoadError,
    DatasetSource,
    FileDatasetSource,
    GEOGRAPHY,
    NEIGHBORHOOD_MAP,
    RAW_REPORTS,
    BSTS_SUMMARY,
    AGGREGATED_SERIES,
)
from damage_engine.data_acquisition.fallback import fallback_neighborhood_names
from damage_engine.data_acquisition.loaders import (
    canonical_category,
    group_by_location,
    load_aggregated_series,
    load_bsts_summaries,
    load_geography,
    load_neighborhood_map,
    load_raw_reports,
    parse_query_time,
)
from damage_engine.models import AggregatedPoint, BSTSSummary, GeoShapes, RawReport

logger = logging.getLogger(__name__)

BSTSSnapshot = Mapping[str, Mapping[str, BSTSSummary]]


@dataclass
class CacheStats:
    """Counters describing how queries were served."""
    hits: int = 0
    misses: int = 0
    coalesced: int = 0
    dataset_loads: int = 0
    snapshot_builds: int = 0
    failures: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


class RequestSequencer:
    """
    Monotonic ticket counter for discarding superseded results.

    A caller takes a ticket before starting a query and applies the result
    only if no newer ticket was issued in the meantime. Nothing is cancelled.
    """

    def __init__(self):
        self._latest = 0

    def issue(self) -> int:
        self._latest += 1
        return self._latest

    def is_latest(self, ticket: int) -> bool:
        return ticket == self._latest

    @property
    def latest(self) -> int:
        return self._latest


def _freeze_snapshot(snapshot: Dict[str, Dict[str, BSTSSummary]]) -> BSTSSnapshot:
    return MappingProxyType({
        loc: MappingProxyType(dict(by_category))
        for loc, by_category in snapshot.items()
    })


class DataStore:
    """
    Write-once, read-many cache over the damage datasets.

    Usage:
        store = DataStore(FileDatasetSource(settings))
        await store.preload()
        snapshot = await store.get_bsts_snapshot("power", "2020-04-08T09:00:00Z")
    """

    def __init__(self, source: Optional[DatasetSource] = None, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.source = source or FileDatasetSource(self.settings)
        self.stats = CacheStats()
        self._results: Dict[Hashable, Any] = {}
        self._inflight: Dict[Hashable, asyncio.Future] = {}

    # -------------------------------------------------------------------------
    # Single-flight memoization
    # -------------------------------------------------------------------------

    async def _once(self, key: Hashable, factory: Callable[[], Awaitable[Any]]) -> Any:
        """
        Return the cached value for key, joining an in-flight computation or
        starting one. Only successful results are stored.
        """
        if key in self._results:
            self.stats.hits += 1
            logger.debug(f"Cache hit: {key}")
            return self._results[key]

        task = self._inflight.get(key)
        if task is not None:
            self.stats.coalesced += 1
            logger.debug(f"Joining in-flight request: {key}")
            return await asyncio.shield(task)

        self.stats.misses += 1
        task = asyncio.ensure_future(factory())
        self._inflight[key] = task

        def _settle(done: asyncio.Future):
            self._inflight.pop(key, None)
            if done.cancelled():
                return
            if done.exception() is not None:
                self.stats.failures += 1
                return
            self._results[key] = done.result()

        task.add_done_callback(_settle)
        return await asyncio.shield(task)

    def is_cached(self, key: Hashable) -> bool:
        return key in self._results

    # -------------------------------------------------------------------------
    # Datasets
    # -------------------------------------------------------------------------

    async def _dataset(self, name: str, parser: Callable[[Any], Any]) -> Any:
        async def load():
            payload = await self.source.load(name)
            self.stats.dataset_loads += 1
            return parser(payload)

        return await self._once(("dataset", name), load)

    async def get_geography(self) -> GeoShapes:
        """Neighborhood boundaries, centroids and the id -> name lookup."""
        return await self._dataset(GEOGRAPHY, load_geography)

    async def get_neighborhood_names(self) -> Mapping[str, str]:
        """
        id -> name for every neighborhood.

        Falls back to the built-in table when the neighborhood map cannot be
        loaded; the fallback is cached like a successful load.
        """
        async def load():
            try:
                payload = await self.source.load(NEIGHBORHOOD_MAP)
                self.stats.dataset_loads += 1
                names = load_neighborhood_map(payload)
            except DatasetLoadError as e:
                names = fallback_neighborhood_names(str(e))
            return MappingProxyType(names)

        return await self._once(("dataset", NEIGHBORHOOD_MAP), load)

    async def get_raw_reports(self) -> Tuple[RawReport, ...]:
        """Every raw report in source order."""
        return await self._dataset(RAW_REPORTS, load_raw_reports)

    async def get_raw_reports_by_location(self, location: str) -> Tuple[RawReport, ...]:
        """Raw reports for one location; empty for unknown locations."""
        async def build():
            return MappingProxyType(group_by_location(await self.get_raw_reports()))

        by_location = await self._once(("index", "raw_by_location"), build)
        return by_location.get(str(location), ())

    async def get_raw_report_index(self) -> TemporalIndex:
        """Temporal index over raw reports."""
        async def build():
            return TemporalIndex(await self.get_raw_reports())

        return await self._once(("index", "raw_temporal"), build)

    async def get_bsts_summaries(self) -> Tuple[BSTSSummary, ...]:
        """Every BSTS summary in source order."""
        return await self._dataset(BSTS_SUMMARY, load_bsts_summaries)

    async def get_bsts_snapshot(self, category: Optional[str] = None, time: Any = None) -> BSTSSnapshot:
        """
        Latest BSTS summary per (location, category) at or before time.

        Args:
            category: Restrict to one category (any spelling); None for all
            time: datetime or timestamp string; None for the latest overall

        Returns:
            Read-only location -> category -> BSTSSummary

        Raises:
            ValueError: unknown category or unparseable time
            DatasetLoadError: BSTS summaries cannot be loaded
        """
        category = canonical_category(category) if category is not None else None
        time = parse_query_time(time)
        key = ("bsts_snapshot", category or "all", time.isoformat() if time else "all")

        async def build():
            summaries = await self.get_bsts_summaries()
            self.stats.snapshot_builds += 1
            logger.debug(f"Building BSTS snapshot {key[1]} @ {key[2]}")
            return _freeze_snapshot(bulk_latest_as_of(summaries, time, category))

        return await self._once(key, build)

    async def get_aggregated_time_series(self, location: str, category: str) -> Tuple[AggregatedPoint, ...]:
        """Hourly aggregated series for (location, category), oldest first."""
        category = canonical_category(category)
        series = await self._dataset(AGGREGATED_SERIES, load_aggregated_series)
        return series.get((str(location), category), ())

    async def preload(self, include_aggregated: bool = True):
        """
        Load every dataset concurrently.

        Raises:
            DatasetLoadError: a primary dataset failed to load
        """
        loads = [
            self.get_geography(),
            self.get_neighborhood_names(),
            self.get_raw_reports(),
            self.get_bsts_summaries(),
        ]
        if include_aggregated:
            loads.append(self._dataset(AGGREGATED_SERIES, load_aggregated_series))

        await asyncio.gather(*loads)
        logger.info(f"Preloaded datasets from {self.source.source_name} source")

    def cache_info(self) -> Dict[str, Any]:
        return {
            **self.stats.to_dict(),
            "entries": len(self._results),
            "inflight": len(self._inflight),
        }
