"""
Persistence for metric aggregates, baselines and alerts.

Components:
    - MetricStore: Abstract interface every backend implements
    - InMemoryMetricStore: Lock-guarded dictionaries (single process)
    - RedisMetricStore: Redis hashes/JSON with WATCH/MULTI upserts
    - create_store: Build the backend selected by StoreConfig
"""

from ..config import StoreConfig
from .interface import MetricStore, StoreStats, merge_aggregate_rows
from .memory_store import InMemoryMetricStore
from .redis_store import RedisMetricStore


def create_store(config: StoreConfig) -> MetricStore:
    """Instantiate the backend named by ``config.backend``."""
    if config.backend == "redis":
        return RedisMetricStore(
            host=config.redis_host,
            port=config.redis_port,
            db=config.redis_db,
            password=config.redis_password,
            key_prefix=config.key_prefix,
        )
    return InMemoryMetricStore()


__all__ = [
    "MetricStore",
    "StoreStats",
    "merge_aggregate_rows",
    "InMemoryMetricStore",
    "RedisMetricStore",
    "create_store",
]
