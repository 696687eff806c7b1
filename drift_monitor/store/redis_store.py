"""
Redis-based metric store implementation.

Production backend shared by every API worker and detection job process.
It uses connection pooling, pipelines for batch reads and optimistic
``WATCH``/``MULTI`` transactions for the operations that must be atomic.

Redis Data Model:
    Aggregates (one hash per metric and period):
    - {prefix}:agg:{tenant}:{category}:{name}:{epoch}  → {sample_count, mean, std, min, max, samples, ...}
    - {prefix}:agg:index:{tenant}                      → ZSET of aggregate keys scored by period_start
    - {prefix}:agg:tenants                             → SET of tenant ids that stored aggregates

    Baselines (JSON documents):
    - {prefix}:baseline:{id}                           → Baseline JSON
    - {prefix}:baseline:active:{tenant}:{category}:{name} → id of the active baseline
    - {prefix}:baselines:{tenant}                      → SET of baseline ids
    - {prefix}:baseline:tenants                        → SET of tenant ids

    Alerts (JSON documents):
    - {prefix}:alert:{id}                              → Alert JSON
    - {prefix}:alert:active:{tenant}:{category}:{name} → id of the active alert
    - {prefix}:alerts:{tenant}                         → ZSET of alert ids scored by created_at

Why WATCH/MULTI?
    - Two API workers flushing the same metric in the same hour must both
      land in the aggregate; a plain read-modify-write would lose one
    - Alert transitions and score refreshes only write while the stored
      alert still has the status that was read
    - Baseline activation and active-alert dedup read a pointer and write
      based on it; the transaction retries if another client moved it
"""

import json
import logging
import time
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional, Tuple

import numpy as np
from redis import ConnectionPool, Redis, RedisError
from redis.backoff import ExponentialBackoff
from redis.retry import Retry

from ..errors import PersistenceError
from ..models import (
    Alert,
    AlertQuery,
    AlertStatus,
    Baseline,
    BaselineStatus,
    MetricAggregate,
    MetricCategory,
)
from .interface import MetricStore, StoreStats, merge_aggregate_rows, refresh_active_alert

logger = logging.getLogger(__name__)


class RedisMetricStore(MetricStore):
    """
    Redis implementation of the metric store.

    Architecture:
        ┌──────────────────────┐
        │   RedisMetricStore   │
        └──────────┬───────────┘
                   │
                   ▼
        ┌──────────────────────┐
        │    ConnectionPool    │
        │  (max_connections)   │
        └──────────┬───────────┘
                   │
                   ▼
        ┌──────────────────────┐
        │     Redis Server     │
        └──────────────────────┘

    Usage:
        >>> store = RedisMetricStore(host="localhost", port=6379)
        >>> store.health_check()["healthy"]
        True

    Tests pass a ready client instead (e.g. ``fakeredis.FakeRedis``):
        >>> store = RedisMetricStore(client=fakeredis.FakeRedis(decode_responses=True))
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        password: Optional[str] = None,
        key_prefix: str = "drift",
        max_connections: int = 50,
        socket_timeout: float = 1.0,
        socket_connect_timeout: float = 1.0,
        retry_on_error: bool = True,
        client: Optional[Redis] = None,
        seed: Optional[int] = None,
    ):
        """
        Initialize the Redis metric store.

        Args:
            host: Redis server hostname
            port: Redis server port
            db: Redis database number (0-15)
            password: Optional authentication password
            key_prefix: Namespace for every key this store writes
            max_connections: Maximum connections in pool
            socket_timeout: Timeout for read/write operations (seconds)
            socket_connect_timeout: Timeout for initial connection (seconds)
            retry_on_error: Whether to retry on transient errors
            client: Pre-built client (must use ``decode_responses=True``);
                connection arguments are ignored when given
            seed: Seed for reservoir sampling
        """
        self.host = host
        self.port = port
        self.db = db
        self.prefix = key_prefix

        if client is not None:
            self.pool = None
            self.client = client
        else:
            self.pool = ConnectionPool(
                host=host,
                port=port,
                db=db,
                password=password,
                max_connections=max_connections,
                socket_timeout=socket_timeout,
                socket_connect_timeout=socket_connect_timeout,
                decode_responses=True,
            )
            if retry_on_error:
                retry = Retry(ExponentialBackoff(), retries=2)
                self.client = Redis(connection_pool=self.pool, retry=retry)
            else:
                self.client = Redis(connection_pool=self.pool)

        self._rng = np.random.default_rng(seed)
        self._stats = StoreStats()

        logger.info(f"RedisMetricStore initialized: {host}:{port}/{db} (prefix={key_prefix})")

    # ------------------------------------------------------------------
    # Keys
    # ------------------------------------------------------------------

    def _aggregate_key(self, agg: MetricAggregate) -> str:
        epoch = int(agg.period_start.timestamp())
        return f"{self.prefix}:agg:{agg.tenant_id}:{agg.category.value}:{agg.name}:{epoch}"

    def _aggregate_index_key(self, tenant_id: str) -> str:
        return f"{self.prefix}:agg:index:{tenant_id}"

    def _aggregate_tenants_key(self) -> str:
        return f"{self.prefix}:agg:tenants"

    def _baseline_key(self, baseline_id: str) -> str:
        return f"{self.prefix}:baseline:{baseline_id}"

    def _active_baseline_key(self, tenant_id: str, category: Any, name: str) -> str:
        return f"{self.prefix}:baseline:active:{tenant_id}:{MetricCategory(category).value}:{name}"

    def _tenant_baselines_key(self, tenant_id: str) -> str:
        return f"{self.prefix}:baselines:{tenant_id}"

    def _baseline_tenants_key(self) -> str:
        return f"{self.prefix}:baseline:tenants"

    def _alert_key(self, alert_id: str) -> str:
        return f"{self.prefix}:alert:{alert_id}"

    def _active_alert_key(self, tenant_id: str, category: Any, name: str) -> str:
        return f"{self.prefix}:alert:active:{tenant_id}:{MetricCategory(category).value}:{name}"

    def _tenant_alerts_key(self, tenant_id: str) -> str:
        return f"{self.prefix}:alerts:{tenant_id}"

    @contextmanager
    def _redis_errors(self, action: str) -> Iterator[None]:
        try:
            yield
        except RedisError as e:
            self._stats.errors += 1
            logger.warning(f"Redis error during {action}: {e}")
            raise PersistenceError(f"{action} failed: {e}") from e

    # ------------------------------------------------------------------
    # Aggregates
    # ------------------------------------------------------------------

    @staticmethod
    def _aggregate_to_hash(agg: MetricAggregate) -> Dict[str, Any]:
        # Hash fields are flat strings
        data = agg.to_dict()
        for field_name in ("mean", "std", "min", "max"):
            data[field_name] = repr(float(data[field_name]))
        data["samples"] = json.dumps(data["samples"])
        data["updated_at"] = data["updated_at"] or ""
        return data

    @staticmethod
    def _aggregate_from_hash(raw: Dict[str, str]) -> MetricAggregate:
        data: Dict[str, Any] = dict(raw)
        data["sample_count"] = int(data["sample_count"])
        for field_name in ("mean", "std", "min", "max"):
            data[field_name] = float(data[field_name])
        data["samples"] = json.loads(data.get("samples") or "[]")
        data["updated_at"] = data.get("updated_at") or None
        return MetricAggregate.from_dict(data)

    def merge_aggregate(self, delta: MetricAggregate, reservoir_size: int = 256) -> MetricAggregate:
        row_key = self._aggregate_key(delta)
        index_key = self._aggregate_index_key(delta.tenant_id)

        def _merge(pipe) -> MetricAggregate:
            raw = pipe.hgetall(row_key)
            existing = self._aggregate_from_hash(raw) if raw else None
            merged = merge_aggregate_rows(existing, delta, reservoir_size, self._rng)
            pipe.multi()
            pipe.hset(row_key, mapping=self._aggregate_to_hash(merged))
            pipe.zadd(index_key, {row_key: delta.period_start.timestamp()})
            pipe.sadd(self._aggregate_tenants_key(), delta.tenant_id)
            return merged

        with self._redis_errors(f"merge_aggregate {row_key}"):
            merged = self.client.transaction(_merge, row_key, value_from_callable=True)
        self._stats.writes += 1
        return merged

    def query_aggregates(
        self,
        tenant_id: str,
        category: Optional[str] = None,
        name: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[MetricAggregate]:
        low = start.timestamp() if start is not None else "-inf"
        # period_start < end
        high = f"({end.timestamp()}" if end is not None else "+inf"
        wanted_category = MetricCategory(category) if category is not None else None

        with self._redis_errors(f"query_aggregates {tenant_id}"):
            keys = self.client.zrangebyscore(self._aggregate_index_key(tenant_id), low, high)
            if not keys:
                return []
            pipe = self.client.pipeline(transaction=False)
            for key in keys:
                pipe.hgetall(key)
            raw_rows = pipe.execute()
        self._stats.reads += 1

        rows = []
        for raw in raw_rows:
            if not raw:
                continue
            agg = self._aggregate_from_hash(raw)
            if wanted_category is not None and agg.category != wanted_category:
                continue
            if name is not None and agg.name != name:
                continue
            rows.append(agg)
        rows.sort(key=lambda agg: (agg.period_start, agg.category.value, agg.name))
        return rows

    def delete_aggregates_before(self, tenant_id: str, cutoff: datetime) -> int:
        index_key = self._aggregate_index_key(tenant_id)
        high = f"({cutoff.timestamp()}"
        with self._redis_errors(f"delete_aggregates_before {tenant_id}"):
            keys = self.client.zrangebyscore(index_key, "-inf", high)
            if not keys:
                return 0
            pipe = self.client.pipeline(transaction=True)
            pipe.delete(*keys)
            pipe.zrem(index_key, *keys)
            pipe.execute()
        self._stats.writes += 1
        return len(keys)

    def list_aggregate_tenants(self) -> List[str]:
        with self._redis_errors("list_aggregate_tenants"):
            return sorted(self.client.smembers(self._aggregate_tenants_key()))

    # ------------------------------------------------------------------
    # Baselines
    # ------------------------------------------------------------------

    def activate_baseline(self, baseline: Baseline) -> Optional[str]:
        active_key = self._active_baseline_key(baseline.tenant_id, baseline.category, baseline.name)

        def _activate(pipe) -> Optional[str]:
            previous_id = pipe.get(active_key)
            previous_raw = pipe.get(self._baseline_key(previous_id)) if previous_id else None

            pipe.multi()
            if previous_raw:
                previous = Baseline.from_dict(json.loads(previous_raw))
                previous.status = BaselineStatus.ARCHIVED
                previous.superseded_by = baseline.id
                previous.updated_at = baseline.created_at
                pipe.set(self._baseline_key(previous.id), json.dumps(previous.to_dict()))

            stored = Baseline.from_dict(baseline.to_dict())
            stored.status = BaselineStatus.ACTIVE
            pipe.set(self._baseline_key(stored.id), json.dumps(stored.to_dict()))
            pipe.set(active_key, stored.id)
            pipe.sadd(self._tenant_baselines_key(stored.tenant_id), stored.id)
            pipe.sadd(self._baseline_tenants_key(), stored.tenant_id)
            return previous_id

        with self._redis_errors(f"activate_baseline {baseline.id}"):
            previous_id = self.client.transaction(_activate, active_key, value_from_callable=True)
        self._stats.writes += 1
        return previous_id

    def get_baseline(self, baseline_id: str) -> Optional[Baseline]:
        with self._redis_errors(f"get_baseline {baseline_id}"):
            raw = self.client.get(self._baseline_key(baseline_id))
        self._stats.reads += 1
        return Baseline.from_dict(json.loads(raw)) if raw else None

    def get_active_baseline(self, tenant_id: str, category: str, name: str) -> Optional[Baseline]:
        with self._redis_errors(f"get_active_baseline {tenant_id}/{name}"):
            baseline_id = self.client.get(self._active_baseline_key(tenant_id, category, name))
        if not baseline_id:
            self._stats.reads += 1
            return None
        return self.get_baseline(baseline_id)

    def list_baselines(
        self,
        tenant_id: str,
        category: Optional[str] = None,
        name: Optional[str] = None,
        active_only: bool = False,
    ) -> List[Baseline]:
        wanted_category = MetricCategory(category) if category is not None else None
        with self._redis_errors(f"list_baselines {tenant_id}"):
            ids = sorted(self.client.smembers(self._tenant_baselines_key(tenant_id)))
            raw_rows = self.client.mget([self._baseline_key(i) for i in ids]) if ids else []
        self._stats.reads += 1

        rows = []
        for raw in raw_rows:
            if not raw:
                continue
            baseline = Baseline.from_dict(json.loads(raw))
            if wanted_category is not None and baseline.category != wanted_category:
                continue
            if name is not None and baseline.name != name:
                continue
            if active_only and not baseline.is_active:
                continue
            rows.append(baseline)
        rows.sort(key=lambda b: b.created_at.timestamp() if b.created_at else 0.0)
        return rows

    def archive_baseline(self, baseline_id: str, now: datetime) -> bool:
        key = self._baseline_key(baseline_id)

        def _archive(pipe) -> bool:
            raw = pipe.get(key)
            if not raw:
                return False
            baseline = Baseline.from_dict(json.loads(raw))
            if not baseline.is_active:
                return False
            active_key = self._active_baseline_key(baseline.tenant_id, baseline.category, baseline.name)
            pointer = pipe.get(active_key)

            baseline.status = BaselineStatus.ARCHIVED
            baseline.updated_at = now
            pipe.multi()
            pipe.set(key, json.dumps(baseline.to_dict()))
            if pointer == baseline_id:
                pipe.delete(active_key)
            return True

        with self._redis_errors(f"archive_baseline {baseline_id}"):
            archived = self.client.transaction(_archive, key, value_from_callable=True)
        self._stats.writes += 1
        return archived

    def list_baseline_tenants(self) -> List[str]:
        with self._redis_errors("list_baseline_tenants"):
            return sorted(self.client.smembers(self._baseline_tenants_key()))

    # ------------------------------------------------------------------
    # Alerts
    # ------------------------------------------------------------------

    def upsert_active_alert(self, alert: Alert) -> Tuple[Alert, bool]:
        active_key = self._active_alert_key(alert.tenant_id, alert.category, alert.name)

        def _upsert(pipe) -> Tuple[Alert, bool]:
            active_id = pipe.get(active_key)
            raw = pipe.get(self._alert_key(active_id)) if active_id else None
            existing = Alert.from_dict(json.loads(raw)) if raw else None

            pipe.multi()
            if existing is not None and existing.status == AlertStatus.ACTIVE:
                refresh_active_alert(existing, alert)
                pipe.set(self._alert_key(existing.id), json.dumps(existing.to_dict()))
                return existing, False

            pipe.set(self._alert_key(alert.id), json.dumps(alert.to_dict()))
            pipe.set(active_key, alert.id)
            pipe.zadd(
                self._tenant_alerts_key(alert.tenant_id),
                {alert.id: alert.created_at.timestamp() if alert.created_at else time.time()},
            )
            return alert, True

        with self._redis_errors(f"upsert_active_alert {alert.tenant_id}/{alert.name}"):
            stored, created = self.client.transaction(_upsert, active_key, value_from_callable=True)
        self._stats.writes += 1
        return stored, created

    def get_alert(self, alert_id: str) -> Optional[Alert]:
        with self._redis_errors(f"get_alert {alert_id}"):
            raw = self.client.get(self._alert_key(alert_id))
        self._stats.reads += 1
        return Alert.from_dict(json.loads(raw)) if raw else None

    def get_active_alert(self, tenant_id: str, category: str, name: str) -> Optional[Alert]:
        with self._redis_errors(f"get_active_alert {tenant_id}/{name}"):
            alert_id = self.client.get(self._active_alert_key(tenant_id, category, name))
        return self.get_alert(alert_id) if alert_id else None

    def update_alert(self, alert: Alert, expected_status: Optional[AlertStatus] = None) -> bool:
        alert_key = self._alert_key(alert.id)
        active_key = self._active_alert_key(alert.tenant_id, alert.category, alert.name)

        def _update(pipe) -> bool:
            raw = pipe.get(alert_key)
            if not raw:
                return False
            if expected_status is not None:
                if Alert.from_dict(json.loads(raw)).status != expected_status:
                    return False
            pointer = pipe.get(active_key)
            pipe.multi()
            pipe.set(alert_key, json.dumps(alert.to_dict()))
            if alert.status != AlertStatus.ACTIVE and pointer == alert.id:
                pipe.delete(active_key)
            return True

        with self._redis_errors(f"update_alert {alert.id}"):
            updated = self.client.transaction(_update, alert_key, active_key, value_from_callable=True)
        if updated:
            self._stats.writes += 1
        return updated

    def refresh_active_alert_score(
        self, tenant_id: str, category: str, name: str, score: float, now: datetime
    ) -> bool:
        active_key = self._active_alert_key(tenant_id, category, name)

        def _refresh(pipe) -> bool:
            alert_id = pipe.get(active_key)
            if not alert_id:
                return False
            alert_key = self._alert_key(alert_id)
            pipe.watch(alert_key)
            raw = pipe.get(alert_key)
            if not raw:
                return False
            alert = Alert.from_dict(json.loads(raw))
            if alert.status != AlertStatus.ACTIVE:
                return False
            alert.drift_score = score
            alert.updated_at = now
            pipe.multi()
            pipe.set(alert_key, json.dumps(alert.to_dict()))
            return True

        with self._redis_errors(f"refresh_active_alert_score {tenant_id}/{name}"):
            refreshed = self.client.transaction(_refresh, active_key, value_from_callable=True)
        if refreshed:
            self._stats.writes += 1
        return refreshed

    def _load_tenant_alerts(self, tenant_id: str, max_score: Any = "+inf") -> List[Alert]:
        ids = self.client.zrevrangebyscore(self._tenant_alerts_key(tenant_id), max_score, "-inf")
        if not ids:
            return []
        raw_rows = self.client.mget([self._alert_key(i) for i in ids])
        return [Alert.from_dict(json.loads(raw)) for raw in raw_rows if raw]

    def query_alerts(self, tenant_id: str, query: AlertQuery) -> Tuple[List[Alert], int]:
        with self._redis_errors(f"query_alerts {tenant_id}"):
            alerts = self._load_tenant_alerts(tenant_id)
        self._stats.reads += 1

        matches = [a for a in alerts if query.matches(a)]
        return matches[query.offset:query.offset + query.limit], len(matches)

    def delete_alerts_before(self, tenant_id: str, cutoff: datetime) -> int:
        with self._redis_errors(f"delete_alerts_before {tenant_id}"):
            candidates = self._load_tenant_alerts(tenant_id, max_score=f"({cutoff.timestamp()}")
            doomed = [a.id for a in candidates if a.status.is_terminal]
            if not doomed:
                return 0
            pipe = self.client.pipeline(transaction=True)
            pipe.delete(*[self._alert_key(i) for i in doomed])
            pipe.zrem(self._tenant_alerts_key(tenant_id), *doomed)
            pipe.execute()
        self._stats.writes += 1
        return len(doomed)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def health_check(self) -> Dict[str, Any]:
        """
        Check if Redis is healthy and responsive.

        Performs a PING command and measures latency.
        """
        start_time = time.time()
        try:
            response = self.client.ping()
            latency_ms = (time.time() - start_time) * 1000
            return {
                "healthy": bool(response),
                "latency_ms": latency_ms,
                "message": "Redis is responsive" if response else "Redis PING returned unexpected response",
                "host": self.host,
                "port": self.port,
                "db": self.db,
            }
        except RedisError as e:
            latency_ms = (time.time() - start_time) * 1000
            return {
                "healthy": False,
                "latency_ms": latency_ms,
                "message": f"Redis error: {e}",
                "host": self.host,
                "port": self.port,
                "db": self.db,
            }

    def get_stats(self) -> StoreStats:
        return self._stats

    def close(self) -> None:
        """Close the connection pool."""
        if self.pool is None:
            return
        try:
            self.pool.disconnect()
            logger.info("RedisMetricStore connection pool closed")
        except RedisError as e:
            logger.warning(f"Error closing connection pool: {e}")
