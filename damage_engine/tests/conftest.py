"""
Shared fixtures: the sample dataset served from memory.
"""

import os
import sys

import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))

from config.settings import Settings
from damage_engine.data_acquisition.base_loader import InMemoryDatasetSource
from damage_engine.store import DataStore
from damage_engine.tests.sample_data import dataset_payloads


@pytest.fixture
def settings():
    return Settings(data_dir="unused", raw_report_window_hours=6.0)


@pytest.fixture
def source():
    return InMemoryDatasetSource(dataset_payloads())


@pytest.fixture
def store(source, settings):
    return DataStore(source, settings=settings)
