"""
Metric store interface definition.

This module defines the abstract interface for the persistence backends that
hold metric aggregates, baselines and alerts. The ingestor, baseline manager,
detector and alert manager only talk to a ``MetricStore``; swapping the
in-memory store for Redis changes nothing above this layer.

Design Principles:
1. Merge, never overwrite: ``merge_aggregate`` folds a flush's summary into
   the stored row for that period, so late or retried flushes add up

2. Atomic upserts: activating a baseline (archive old + insert new) and
   creating-or-updating the active alert for a metric are single operations
   that no concurrent caller can interleave with

3. Raise on failure: backends raise ``PersistenceError`` so the caller can
   re-buffer a flush or report a per-metric error, instead of silently
   returning partial data

4. Observability built-in: every backend tracks read/write/error counters
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from ..models import Alert, AlertQuery, AlertStatus, Baseline, MetricAggregate

logger = logging.getLogger(__name__)


@dataclass
class StoreStats:
    """
    Statistics about store operations.

    Attributes:
        reads: Number of read operations
        writes: Number of write operations
        errors: Number of operations that failed
    """

    reads: int = 0
    writes: int = 0
    errors: int = 0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "reads": self.reads,
            "writes": self.writes,
            "errors": self.errors,
        }


def merge_aggregate_rows(
    existing: Optional[MetricAggregate],
    delta: MetricAggregate,
    reservoir_size: int,
    rng: Optional[np.random.Generator] = None,
) -> MetricAggregate:
    """
    Fold a flush summary (``delta``) into the stored row for the same period.

    Count, mean and std use the pooled-summary formula, min/max are combined
    and the sample reservoirs are merged in proportion to the counts they
    stand for.
    """
    # drift imports the store package
    from ..drift.online_stats import downsample, merge_reservoirs, merge_summaries

    if existing is None or existing.sample_count <= 0:
        return MetricAggregate(
            tenant_id=delta.tenant_id,
            category=delta.category,
            name=delta.name,
            period_start=delta.period_start,
            period_end=delta.period_end,
            period_type=delta.period_type,
            sample_count=delta.sample_count,
            mean=delta.mean,
            std=delta.std,
            min=delta.min,
            max=delta.max,
            samples=downsample(delta.samples, reservoir_size, rng),
            updated_at=delta.updated_at,
        )

    count, mean, std = merge_summaries(
        existing.sample_count, existing.mean, existing.std,
        delta.sample_count, delta.mean, delta.std,
    )
    return MetricAggregate(
        tenant_id=existing.tenant_id,
        category=existing.category,
        name=existing.name,
        period_start=existing.period_start,
        period_end=existing.period_end,
        period_type=existing.period_type,
        sample_count=count,
        mean=mean,
        std=std,
        min=min(existing.min, delta.min),
        max=max(existing.max, delta.max),
        samples=merge_reservoirs(
            existing.samples, existing.sample_count,
            delta.samples, delta.sample_count,
            reservoir_size, rng,
        ),
        updated_at=delta.updated_at,
    )


def refresh_active_alert(existing: Alert, incoming: Alert) -> Alert:
    """Copy the latest measurement of ``incoming`` onto the still-active ``existing`` alert."""
    existing.current_value = incoming.current_value
    existing.baseline_value = incoming.baseline_value
    existing.threshold = incoming.threshold
    existing.drift_score = incoming.drift_score
    existing.severity = incoming.severity
    existing.message = incoming.message
    existing.title = incoming.title or existing.title
    existing.deviation_percentage = incoming.deviation_percentage
    existing.metadata = {**existing.metadata, **incoming.metadata}
    existing.updated_at = incoming.updated_at
    return existing


class MetricStore(ABC):
    """
    Abstract interface for drift monitor storage backends.

    Design Decisions:

    1. **Why one store for aggregates, baselines and alerts?**
       - The atomic operations each touch a single entity type, so one
         connection pool and one failure domain is enough
       - Tests and local runs only need to wire up one object

    2. **Why does merge_aggregate take a summary instead of raw values?**
       - The ingestor computes a Welford summary per flush group, so a
         flush of 10,000 observations is one write per metric

    3. **Why return (alert, created) from upsert_active_alert?**
       - Only newly created alerts are published and notified; a coalesced
         update must not re-page anyone
    """

    # ------------------------------------------------------------------
    # Aggregates
    # ------------------------------------------------------------------

    @abstractmethod
    def merge_aggregate(self, delta: MetricAggregate, reservoir_size: int = 256) -> MetricAggregate:
        """
        Merge a flush summary into the aggregate for its period.

        Creates the row if it does not exist. Must be atomic with respect
        to concurrent merges of the same (metric, period_start).

        Returns:
            The stored aggregate after the merge

        Raises:
            PersistenceError: If the backend write failed
        """
        pass

    @abstractmethod
    def query_aggregates(
        self,
        tenant_id: str,
        category: Optional[str] = None,
        name: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[MetricAggregate]:
        """
        Aggregates whose ``period_start`` lies in ``[start, end)``, oldest first.
        """
        pass

    @abstractmethod
    def delete_aggregates_before(self, tenant_id: str, cutoff: datetime) -> int:
        """Delete aggregates with ``period_start < cutoff``; return how many."""
        pass

    @abstractmethod
    def list_aggregate_tenants(self) -> List[str]:
        """Tenants that have stored at least one aggregate, ``_system`` included."""
        pass

    # ------------------------------------------------------------------
    # Baselines
    # ------------------------------------------------------------------

    @abstractmethod
    def activate_baseline(self, baseline: Baseline) -> Optional[str]:
        """
        Insert ``baseline`` as the active baseline of its metric.

        Atomically archives the previously active baseline (if any) and sets
        its ``superseded_by`` to the new id.

        Returns:
            Id of the baseline that was superseded, or None
        """
        pass

    @abstractmethod
    def get_baseline(self, baseline_id: str) -> Optional[Baseline]:
        pass

    @abstractmethod
    def get_active_baseline(self, tenant_id: str, category: str, name: str) -> Optional[Baseline]:
        pass

    @abstractmethod
    def list_baselines(
        self,
        tenant_id: str,
        category: Optional[str] = None,
        name: Optional[str] = None,
        active_only: bool = False,
    ) -> List[Baseline]:
        """Baselines of a tenant ordered by creation time (oldest first)."""
        pass

    @abstractmethod
    def archive_baseline(self, baseline_id: str, now: datetime) -> bool:
        """Archive a baseline; False if it is missing or already archived."""
        pass

    @abstractmethod
    def list_baseline_tenants(self) -> List[str]:
        """Tenants that own at least one baseline."""
        pass

    # ------------------------------------------------------------------
    # Alerts
    # ------------------------------------------------------------------

    @abstractmethod
    def upsert_active_alert(self, alert: Alert) -> Tuple[Alert, bool]:
        """
        Create ``alert`` or coalesce it into the metric's active alert.

        Returns:
            (stored alert, created) where ``created`` is False when an
            existing active alert was refreshed instead
        """
        pass

    @abstractmethod
    def get_alert(self, alert_id: str) -> Optional[Alert]:
        pass

    @abstractmethod
    def get_active_alert(self, tenant_id: str, category: str, name: str) -> Optional[Alert]:
        pass

    @abstractmethod
    def update_alert(self, alert: Alert, expected_status: Optional[AlertStatus] = None) -> bool:
        """
        Persist a modified alert.

        When the alert has left the ``active`` status the metric's
        active-alert slot is released so the next drift opens a new alert.

        Args:
            alert: Modified copy of a stored alert
            expected_status: If given, write only while the stored alert
                still has this status (check-and-set)

        Returns:
            False if the stored alert is missing or its status no longer
            matches ``expected_status``; nothing is written then
        """
        pass

    @abstractmethod
    def refresh_active_alert_score(
        self, tenant_id: str, category: str, name: str, score: float, now: datetime
    ) -> bool:
        """
        Set the drift score of the metric's active alert in one atomic step.

        Returns:
            False if the metric has no alert that is still ``active``
        """
        pass

    @abstractmethod
    def query_alerts(self, tenant_id: str, query: AlertQuery) -> Tuple[List[Alert], int]:
        """Matching alerts newest first, paged, plus the total match count."""
        pass

    @abstractmethod
    def delete_alerts_before(self, tenant_id: str, cutoff: datetime) -> int:
        """Delete resolved/dismissed alerts created before ``cutoff``."""
        pass

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    @abstractmethod
    def health_check(self) -> Dict[str, Any]:
        """
        Check if the store is healthy and responsive.

        Returns:
            Dictionary with at least these keys:
            - "healthy": bool
            - "latency_ms": float
            - "message": str
        """
        pass

    def get_stats(self) -> StoreStats:
        return StoreStats()

    def close(self) -> None:
        """Release connections. Default does nothing."""
        pass
