"""
Shared fixtures for drift monitor tests.

Time is always injected: components take a ``clock`` callable, and tests
drive a ``FakeClock`` forward instead of sleeping.
"""

from datetime import datetime, timedelta, timezone
from typing import Iterable

import fakeredis
import pytest

from drift_monitor.alerts import AlertManager
from drift_monitor.config import IngestorConfig
from drift_monitor.drift import BaselineManager, DriftDetector
from drift_monitor.ingest import MetricIngestor
from drift_monitor.store import InMemoryMetricStore, RedisMetricStore

# Wednesday, on the hour
START = datetime(2026, 3, 4, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Mutable time source."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return InMemoryMetricStore(seed=7)


@pytest.fixture
def redis_client():
    client = fakeredis.FakeRedis(decode_responses=True)
    yield client
    client.flushall()


@pytest.fixture
def redis_store(redis_client):
    return RedisMetricStore(client=redis_client, seed=7)


@pytest.fixture
def ingestor(store, clock):
    return MetricIngestor(store, IngestorConfig(), clock=clock, seed=7)


@pytest.fixture
def baselines(store, clock):
    return BaselineManager(store, clock=clock)


@pytest.fixture
def alert_manager(store, clock):
    return AlertManager(store, clock=clock)


@pytest.fixture
def detector(store, baselines, alert_manager, clock):
    return DriftDetector(store, baselines, alert_manager=alert_manager, clock=clock)


@pytest.fixture
def record_period(ingestor, clock):
    """
    Record values in the current hour, flush them and close the period.

    Returns a function ``(tenant, category, name, values)``.
    """
    def _record(tenant_id: str, category: str, name: str, values: Iterable[float]) -> None:
        for value in values:
            assert ingestor.record(tenant_id, category, name, value)
        result = ingestor.flush()
        assert result.retried == 0
        clock.advance(hours=1)

    return _record
