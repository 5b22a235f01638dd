"""
Shared fixtures for the cache service tests.

Logging auto-initialisation is disabled and the in-memory backend selected
before any package module is imported.
"""

import os

os.environ.setdefault("TESTING", "1")
os.environ.setdefault("CACHE_BACKEND", "memory")

import pytest

from cursus_cache.shared.config import reset_settings
from cursus_cache.shared.metrics_collector import MetricsCollector
from cursus_cache.shared.caching import CacheService, MemoryKeyValueStore


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture(autouse=True)
def fresh_state():
    """Isolate cached settings and the metrics registry between tests."""
    reset_settings()
    MetricsCollector.reset_instance()
    yield
    reset_settings()
    MetricsCollector.reset_instance()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return MemoryKeyValueStore(clock=clock)


@pytest.fixture
def cache(store):
    return CacheService(store, namespace="test")
