"""
Base Dataset Loader

Abstract source for the damage datasets plus the two concrete sources used
by the engine: files on disk or behind an HTTP(S) URL, and in-memory payloads
for fixtures. Provides retry with exponential backoff for remote datasets and
a typed error for every failed load.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Optional
import asyncio
import io
import json
import logging

import aiohttp
import pandas as pd

from config.settings import Settings, get_settings

logger = logging.getLogger(__name__)

# Dataset names understood by every source
GEOGRAPHY = "geography"
NEIGHBORHOOD_MAP = "neighborhood_map"
RAW_REPORTS = "raw_reports"
BSTS_SUMMARY = "bsts_summary"
AGGREGATED_SERIES = "aggregated_series"

DATASETS = (GEOGRAPHY, NEIGHBORHOOD_MAP, RAW_REPORTS, BSTS_SUMMARY, AGGREGATED_SERIES)


class DatasetLoadError(Exception):
    """A dataset could not be fetched or decoded."""

    def __init__(self, dataset: str, message: str):
        self.dataset = dataset
        super().__init__(f"{dataset}: {message}")


class DatasetSource(ABC):
    """
    Abstract provider of raw dataset payloads.

    A payload is either decoded JSON (lists / dicts) or a pandas DataFrame for
    tabular files. Turning payloads into canonical records is the job of
    damage_engine.data_acquisition.loaders.
    """

    def __init__(self):
        self.logger = logging.getLogger(self.__class__.__name__)

    @property
    @abstractmethod
    def source_name(self) -> str:
        """Short label used in logs (e.g., 'files', 'memory')."""
        pass

    @abstractmethod
    async def load(self, dataset: str) -> Any:
        """
        Fetch one dataset.

        Args:
            dataset: One of DATASETS

        Returns:
            Decoded payload

        Raises:
            DatasetLoadError: the dataset is unknown, missing or undecodable
        """
        pass


def decode_payload(dataset: str, location: str, text: str) -> Any:
    """Decode file contents by extension: CSV to a DataFrame, anything else as JSON."""
    try:
        if location.lower().split("?")[0].endswith(".csv"):
            return pd.read_csv(io.StringIO(text))
        return json.loads(text)
    except (ValueError, pd.errors.ParserError) as e:
        raise DatasetLoadError(dataset, f"cannot decode {location}: {e}") from e


class FileDatasetSource(DatasetSource):
    """
    Datasets configured in Settings: local paths (resolved against data_dir)
    or http(s) URLs.
    """

    def __init__(self, settings: Optional[Settings] = None):
        super().__init__()
        self.settings = settings or get_settings()
        self.timeout = self.settings.request_timeout
        self.max_retries = self.settings.max_retries
        self.backoff_factor = self.settings.retry_backoff_factor

    @property
    def source_name(self) -> str:
        return "files"

    def location_of(self, dataset: str) -> str:
        """Resolved path or URL for a dataset name."""
        files = {
            GEOGRAPHY: self.settings.geography_file,
            NEIGHBORHOOD_MAP: self.settings.neighborhood_map_file,
            RAW_REPORTS: self.settings.raw_reports_file,
            BSTS_SUMMARY: self.settings.bsts_summary_file,
            AGGREGATED_SERIES: self.settings.aggregated_series_file,
        }
        if dataset not in files:
            raise DatasetLoadError(dataset, "unknown dataset")

        name = files[dataset]
        if name.startswith(("http://", "https://")):
            return name
        if self.settings.api_base_url:
            return f"{self.settings.api_base_url.rstrip('/')}/{name.lstrip('/')}"
        return str(Path(self.settings.data_dir) / name)

    async def load(self, dataset: str) -> Any:
        location = self.location_of(dataset)
        self.logger.info(f"Loading {dataset} from {location}")

        if location.startswith(("http://", "https://")):
            text = await self._fetch_with_retry(dataset, lambda: self._make_request(location))
        else:
            text = await asyncio.to_thread(self._read_local, dataset, location)

        return decode_payload(dataset, location, text)

    def _read_local(self, dataset: str, path: str) -> str:
        # Missing local files are not retried
        try:
            with open(path, "r", encoding="utf-8") as f:
                return f.read()
        except OSError as e:
            self.logger.error(f"Cannot read {dataset} at {path}: {e}")
            raise DatasetLoadError(dataset, f"cannot read {path}: {e}") from e

    async def _make_request(self, url: str) -> str:
        """GET a URL and return the response body as text."""
        timeout = aiohttp.ClientTimeout(total=self.timeout)

        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.get(url) as response:
                response.raise_for_status()
                return await response.text()

    async def _fetch_with_retry(self, dataset: str, fetch_func) -> str:
        """
        Fetch with exponential backoff retry.

        Args:
            dataset: Dataset name, for errors and logs
            fetch_func: Async callable returning the body

        Returns:
            Response body

        Raises:
            DatasetLoadError: after a client error or once retries run out
        """
        last_error = None

        for attempt in range(self.max_retries):
            try:
                return await fetch_func()

            except aiohttp.ClientResponseError as e:
                last_error = e
                if e.status == 429:  # Rate limited
                    wait_time = self.backoff_factor ** (attempt + 2)
                    self.logger.warning(f"Rate limited, waiting {wait_time}s")
                elif e.status >= 500:  # Server error
                    wait_time = self.backoff_factor ** attempt
                    self.logger.warning(f"Server error {e.status}, retry in {wait_time}s")
                else:
                    self.logger.error(f"Client error {e.status}: {e.message}")
                    raise DatasetLoadError(dataset, f"HTTP {e.status}") from e

            except asyncio.TimeoutError:
                last_error = TimeoutError(f"Request timed out after {self.timeout}s")
                wait_time = self.backoff_factor ** attempt
                self.logger.warning(f"Timeout, retry in {wait_time}s")

            except aiohttp.ClientError as e:
                last_error = e
                wait_time = self.backoff_factor ** attempt
                self.logger.warning(f"Connection error: {e}, retry in {wait_time}s")

            if attempt < self.max_retries - 1:
                await asyncio.sleep(wait_time)

        self.logger.error(f"Failed to load {dataset} after {self.max_retries} attempts: {last_error}")
        raise DatasetLoadError(dataset, f"failed after {self.max_retries} attempts: {last_error}")


class InMemoryDatasetSource(DatasetSource):
    """
    Datasets held in memory, keyed by dataset name.

    Counts loads per dataset and can yield to the event loop before answering,
    which lets tests observe single-flight behaviour.
    """

    def __init__(self, datasets: Optional[Dict[str, Any]] = None, delay: float = 0.0):
        super().__init__()
        self.datasets = dict(datasets or {})
        self.delay = delay
        self.load_counts: Dict[str, int] = {}

    @property
    def source_name(self) -> str:
        return "memory"

    async def load(self, dataset: str) -> Any:
        self.load_counts[dataset] = self.load_counts.get(dataset, 0) + 1
        await asyncio.sleep(self.delay)

        if dataset not in self.datasets:
            raise DatasetLoadError(dataset, "not provided")
        payload = self.datasets[dataset]
        if isinstance(payload, Exception):
            raise DatasetLoadError(dataset, str(payload)) from payload
        if isinstance(payload, pd.DataFrame):
            return payload.copy()
        return payload
