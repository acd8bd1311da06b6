"""
Shared fixtures for Autolabel tests.
"""

import threading
import time
from datetime import datetime, timedelta
from pathlib import Path

import pytest

from autolabel.events import EventBus
from autolabel.models import ExtractionResult, ObjectColor, PhotoRecord
from autolabel.store import RecordStore
from autolabel.vision.base_extractor import BaseExtractor

SESSION_START = datetime(2024, 5, 1, 9, 0, 0)


class FakeExtractor(BaseExtractor):
    """
    Extractor returning canned results keyed by file name.

    A value that is an exception instance is raised instead of returned.
    Tracks the highest number of concurrent extract() calls.
    """

    def __init__(self, results=None, delay: float = 0.0):
        self.results = results or {}
        self.delay = delay
        self.calls = []
        self.in_flight = 0
        self.max_in_flight = 0
        self._lock = threading.Lock()

    def extract(self, image_path: Path) -> ExtractionResult:
        name = Path(image_path).name
        with self._lock:
            self.calls.append(name)
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                time.sleep(self.delay)
            result = self.results.get(name, ExtractionResult())
            if isinstance(result, Exception):
                raise result
            return result
        finally:
            with self._lock:
                self.in_flight -= 1


def colors(*hex_values):
    return [ObjectColor(color=value) for value in hex_values]


@pytest.fixture
def store():
    return RecordStore()


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def make_record(store):
    """Create a record in the store; keyword arguments override defaults."""
    counter = {"n": 0}

    def _make(original_name=None, seconds=None, **fields):
        counter["n"] += 1
        n = counter["n"]
        original_name = original_name or f"IMG_{n:04d}.jpg"
        record = PhotoRecord(
            original_name=original_name,
            file_path=f"/photos/{original_name}",
            capture_timestamp=SESSION_START + timedelta(seconds=seconds if seconds is not None else n * 10),
            **fields,
        )
        return store.create(record)

    return _make
