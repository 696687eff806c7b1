"""
In-memory metric store.

Single-process backend used by tests, local runs and deployments that accept
losing state on restart. Every operation runs under one re-entrant lock, which
makes the aggregate merge, baseline activation and alert upsert atomic.

Returned records are copies: callers mutate them and then write them back
explicitly, the same way they would with Redis.
"""

import copy
import logging
import threading
import time
from datetime import datetime
from typing import Any, Dict, List, Optional, Set, Tuple

import numpy as np

from ..models import (
    Alert,
    AlertQuery,
    AlertStatus,
    Baseline,
    BaselineStatus,
    MetricAggregate,
    MetricCategory,
    MetricKey,
    metric_key,
)
from .interface import MetricStore, StoreStats, merge_aggregate_rows, refresh_active_alert

logger = logging.getLogger(__name__)


class InMemoryMetricStore(MetricStore):
    """
    Dictionary-backed ``MetricStore``.

    Example:
        >>> store = InMemoryMetricStore()
        >>> store.health_check()["healthy"]
        True
    """

    def __init__(self, seed: Optional[int] = None):
        """
        Args:
            seed: Seed for reservoir sampling (deterministic tests)
        """
        self._lock = threading.RLock()
        self._rng = np.random.default_rng(seed)

        self._aggregates: Dict[Tuple[MetricKey, datetime], MetricAggregate] = {}
        self._aggregate_tenants: Set[str] = set()
        self._baselines: Dict[str, Baseline] = {}
        self._active_baselines: Dict[MetricKey, str] = {}
        self._alerts: Dict[str, Alert] = {}
        self._active_alerts: Dict[MetricKey, str] = {}

        self._stats = StoreStats()

        logger.info("InMemoryMetricStore initialized")

    # ------------------------------------------------------------------
    # Aggregates
    # ------------------------------------------------------------------

    def merge_aggregate(self, delta: MetricAggregate, reservoir_size: int = 256) -> MetricAggregate:
        row_key = (delta.key, delta.period_start)
        with self._lock:
            merged = merge_aggregate_rows(
                self._aggregates.get(row_key), delta, reservoir_size, self._rng
            )
            self._aggregates[row_key] = merged
            self._aggregate_tenants.add(merged.tenant_id)
            self._stats.writes += 1
            return copy.deepcopy(merged)

    def query_aggregates(
        self,
        tenant_id: str,
        category: Optional[str] = None,
        name: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[MetricAggregate]:
        with self._lock:
            self._stats.reads += 1
            rows = [
                agg for agg in self._aggregates.values()
                if agg.tenant_id == tenant_id
                and (category is None or agg.category == MetricCategory(category))
                and (name is None or agg.name == name)
                and (start is None or agg.period_start >= start)
                and (end is None or agg.period_start < end)
            ]
            rows.sort(key=lambda agg: (agg.period_start, agg.category.value, agg.name))
            return copy.deepcopy(rows)

    def delete_aggregates_before(self, tenant_id: str, cutoff: datetime) -> int:
        with self._lock:
            doomed = [
                row_key for row_key, agg in self._aggregates.items()
                if agg.tenant_id == tenant_id and agg.period_start < cutoff
            ]
            for row_key in doomed:
                del self._aggregates[row_key]
            self._stats.writes += 1
            return len(doomed)

    def list_aggregate_tenants(self) -> List[str]:
        with self._lock:
            return sorted(self._aggregate_tenants)

    # ------------------------------------------------------------------
    # Baselines
    # ------------------------------------------------------------------

    def activate_baseline(self, baseline: Baseline) -> Optional[str]:
        with self._lock:
            previous_id = self._active_baselines.get(baseline.key)
            if previous_id is not None:
                previous = self._baselines[previous_id]
                previous.status = BaselineStatus.ARCHIVED
                previous.superseded_by = baseline.id
                previous.updated_at = baseline.created_at

            stored = copy.deepcopy(baseline)
            stored.status = BaselineStatus.ACTIVE
            self._baselines[stored.id] = stored
            self._active_baselines[stored.key] = stored.id
            self._stats.writes += 1
            return previous_id

    def get_baseline(self, baseline_id: str) -> Optional[Baseline]:
        with self._lock:
            self._stats.reads += 1
            baseline = self._baselines.get(baseline_id)
            return copy.deepcopy(baseline) if baseline is not None else None

    def get_active_baseline(self, tenant_id: str, category: str, name: str) -> Optional[Baseline]:
        with self._lock:
            baseline_id = self._active_baselines.get(metric_key(tenant_id, category, name))
            if baseline_id is None:
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
        with self._lock:
            self._stats.reads += 1
            rows = [
                b for b in self._baselines.values()
                if b.tenant_id == tenant_id
                and (category is None or b.category == MetricCategory(category))
                and (name is None or b.name == name)
                and (not active_only or b.is_active)
            ]
            rows.sort(key=lambda b: b.created_at.timestamp() if b.created_at else 0.0)
            return copy.deepcopy(rows)

    def archive_baseline(self, baseline_id: str, now: datetime) -> bool:
        with self._lock:
            baseline = self._baselines.get(baseline_id)
            if baseline is None or not baseline.is_active:
                return False
            baseline.status = BaselineStatus.ARCHIVED
            baseline.updated_at = now
            if self._active_baselines.get(baseline.key) == baseline_id:
                del self._active_baselines[baseline.key]
            self._stats.writes += 1
            return True

    def list_baseline_tenants(self) -> List[str]:
        with self._lock:
            return sorted({b.tenant_id for b in self._baselines.values()})

    # ------------------------------------------------------------------
    # Alerts
    # ------------------------------------------------------------------

    def upsert_active_alert(self, alert: Alert) -> Tuple[Alert, bool]:
        with self._lock:
            self._stats.writes += 1
            active_id = self._active_alerts.get(alert.key)
            if active_id is not None:
                existing = self._alerts[active_id]
                refresh_active_alert(existing, alert)
                return copy.deepcopy(existing), False

            stored = copy.deepcopy(alert)
            self._alerts[stored.id] = stored
            self._active_alerts[stored.key] = stored.id
            return copy.deepcopy(stored), True

    def get_alert(self, alert_id: str) -> Optional[Alert]:
        with self._lock:
            self._stats.reads += 1
            alert = self._alerts.get(alert_id)
            return copy.deepcopy(alert) if alert is not None else None

    def get_active_alert(self, tenant_id: str, category: str, name: str) -> Optional[Alert]:
        with self._lock:
            alert_id = self._active_alerts.get(metric_key(tenant_id, category, name))
            return self.get_alert(alert_id) if alert_id is not None else None

    def update_alert(self, alert: Alert, expected_status: Optional[AlertStatus] = None) -> bool:
        with self._lock:
            current = self._alerts.get(alert.id)
            if current is None:
                return False
            if expected_status is not None and current.status != expected_status:
                return False
            self._alerts[alert.id] = copy.deepcopy(alert)
            if alert.status != AlertStatus.ACTIVE and self._active_alerts.get(alert.key) == alert.id:
                del self._active_alerts[alert.key]
            self._stats.writes += 1
            return True

    def refresh_active_alert_score(
        self, tenant_id: str, category: str, name: str, score: float, now: datetime
    ) -> bool:
        with self._lock:
            alert_id = self._active_alerts.get(metric_key(tenant_id, category, name))
            alert = self._alerts.get(alert_id) if alert_id is not None else None
            if alert is None or alert.status != AlertStatus.ACTIVE:
                return False
            alert.drift_score = score
            alert.updated_at = now
            self._stats.writes += 1
            return True

    def query_alerts(self, tenant_id: str, query: AlertQuery) -> Tuple[List[Alert], int]:
        with self._lock:
            self._stats.reads += 1
            matches = [
                a for a in self._alerts.values()
                if a.tenant_id == tenant_id and query.matches(a)
            ]
            matches.sort(key=lambda a: a.created_at.timestamp() if a.created_at else 0.0, reverse=True)
            page = matches[query.offset:query.offset + query.limit]
            return copy.deepcopy(page), len(matches)

    def delete_alerts_before(self, tenant_id: str, cutoff: datetime) -> int:
        with self._lock:
            doomed = [
                alert_id for alert_id, a in self._alerts.items()
                if a.tenant_id == tenant_id
                and a.status.is_terminal
                and a.created_at is not None
                and a.created_at < cutoff
            ]
            for alert_id in doomed:
                del self._alerts[alert_id]
            self._stats.writes += 1
            return len(doomed)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def health_check(self) -> Dict[str, Any]:
        start_time = time.time()
        with self._lock:
            sizes = {
                "aggregates": len(self._aggregates),
                "baselines": len(self._baselines),
                "alerts": len(self._alerts),
            }
        return {
            "healthy": True,
            "latency_ms": (time.time() - start_time) * 1000,
            "message": "In-memory store is available",
            **sizes,
        }

    def get_stats(self) -> StoreStats:
        return self._stats
