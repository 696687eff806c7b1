"""
Buffered metric ingestion.

Producers (the conversational pipeline) call ``record`` on the hot path. The
call only appends to an in-memory buffer; a background worker flushes the
buffer to the store when it reaches ``flush_batch_size`` or when
``flush_interval_ms`` elapses, whichever comes first.

Flush algorithm:
================

1. Atomically swap the buffer for an empty one
2. Group observations by metric ``(tenant_id, category, name)``
3. Summarize each group with Welford (count, mean, std, min, max) plus a
   bounded sample reservoir
4. Merge each summary into the aggregate of the period the flush falls in
5. Groups that failed to persist, or were not reached before
   ``flush_timeout_seconds``, go back to the front of the buffer

Delivery is at-least-once: a retried group can be merged twice if the store
applied the write but the acknowledgement was lost.

Backpressure:
=============

The buffer is bounded by ``buffer_max_size``. When full, the oldest
observations are dropped and counted; the count is itself recorded as the
metric ``ingestor_dropped_observations`` for tenant ``_system`` so data loss
shows up in the same dashboards as everything else.
"""

import logging
import math
import threading
import time
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Deque, Dict, Iterable, List, Optional

import numpy as np
import pandas as pd

from ..config import IngestorConfig
from ..drift.online_stats import WelfordAccumulator, downsample, merge_summaries
from ..errors import PersistenceError
from ..models import (
    MetricAggregate,
    MetricCategory,
    MetricKey,
    MetricObservation,
    PeriodType,
)
from ..periods import period_bounds, utc_now
from ..store.interface import MetricStore

logger = logging.getLogger(__name__)


@dataclass
class FlushResult:
    """
    Outcome of one flush.

    Attributes:
        persisted: Observations merged into the store
        retried: Observations pushed back to the buffer for the next flush
    """
    persisted: int = 0
    retried: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {"persisted": self.persisted, "retried": self.retried}


class MetricIngestor:
    """
    Thread-safe buffered writer of metric observations.

    Example:
        >>> ingestor = MetricIngestor(store)
        >>> ingestor.start()
        >>> ingestor.record_latency("tenant-a", 512.0, conversation_id="c-1")
        >>> ingestor.record("tenant-a", "quality", "feedback_score", 1.0)
        >>> ingestor.stop()  # final flush
    """

    SYSTEM_TENANT = "_system"
    DROPPED_METRIC = "ingestor_dropped_observations"
    MAX_RECENT_ERRORS = 20

    GRANULARITIES = {
        "hour": PeriodType.HOURLY,
        "day": PeriodType.DAILY,
        "week": PeriodType.WEEKLY,
    }

    def __init__(
        self,
        store: MetricStore,
        config: Optional[IngestorConfig] = None,
        clock: Callable[[], datetime] = utc_now,
        seed: Optional[int] = None,
    ):
        """
        Args:
            store: Destination of flushed aggregates
            config: Buffering and flush settings
            clock: Time source used to pick the aggregate period
            seed: Seed for reservoir sampling
        """
        self.store = store
        self.config = config or IngestorConfig()
        self._clock = clock
        self._rng = np.random.default_rng(seed)

        self._buffer: Deque[MetricObservation] = deque()
        self._buffer_lock = threading.Lock()
        self._flush_lock = threading.Lock()

        self._wake = threading.Event()
        self._stop_event = threading.Event()
        self._worker: Optional[threading.Thread] = None

        self._recorded = 0
        self._persisted = 0
        self._retried = 0
        self._dropped = 0
        self._pending_dropped = 0
        self._rejected = 0
        self._flushes = 0
        self._failed_flushes = 0
        self._last_flush_at: Optional[datetime] = None
        self._recent_errors: Deque[Dict[str, Any]] = deque(maxlen=self.MAX_RECENT_ERRORS)

    # ------------------------------------------------------------------
    # Producer API
    # ------------------------------------------------------------------

    def record(
        self,
        tenant_id: str,
        category: str,
        name: str,
        value: float,
        dimensions: Optional[Dict[str, str]] = None,
        conversation_id: Optional[str] = None,
        message_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """
        Buffer one observation. Never performs I/O and never raises.

        Returns:
            True if buffered, False if the observation was rejected
            (non-numeric or non-finite value, unknown category)
        """
        observation = self._build(
            tenant_id, category, name, value,
            dimensions, conversation_id, message_id, metadata,
        )
        if observation is None:
            return False

        with self._buffer_lock:
            self._append(observation)
            size = len(self._buffer)

        if size >= self.config.flush_batch_size:
            self._wake.set()
        return True

    def record_batch(self, observations: Iterable[Dict[str, Any]]) -> int:
        """
        Buffer many observations under a single lock acquisition.

        Args:
            observations: Dicts with the keyword arguments of ``record``

        Returns:
            Number of observations buffered
        """
        built = []
        for obs in observations:
            try:
                observation = self._build(
                    obs["tenant_id"], obs["category"], obs["name"], obs["value"],
                    obs.get("dimensions"), obs.get("conversation_id"),
                    obs.get("message_id"), obs.get("metadata"),
                )
            except KeyError as e:
                logger.warning(f"Rejected observation missing field {e}")
                self._count_rejected()
                continue
            if observation is not None:
                built.append(observation)

        if not built:
            return 0

        with self._buffer_lock:
            for observation in built:
                self._append(observation)
            size = len(self._buffer)

        if size >= self.config.flush_batch_size:
            self._wake.set()
        return len(built)

    def record_latency(
        self,
        tenant_id: str,
        latency_ms: float,
        conversation_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> bool:
        return self.record(
            tenant_id, MetricCategory.PERFORMANCE, "response_latency_ms", latency_ms,
            conversation_id=conversation_id, metadata=metadata,
        )

    def record_tokens(
        self,
        tenant_id: str,
        input_tokens: int,
        output_tokens: int,
        conversation_id: Optional[str] = None,
    ) -> bool:
        recorded_input = self.record(
            tenant_id, MetricCategory.PERFORMANCE, "input_tokens", input_tokens,
            conversation_id=conversation_id,
        )
        recorded_output = self.record(
            tenant_id, MetricCategory.PERFORMANCE, "output_tokens", output_tokens,
            conversation_id=conversation_id,
        )
        return recorded_input and recorded_output

    def record_feedback(
        self,
        tenant_id: str,
        is_positive: bool,
        conversation_id: Optional[str] = None,
    ) -> bool:
        return self.record(
            tenant_id, MetricCategory.QUALITY, "feedback_score", 1.0 if is_positive else 0.0,
            conversation_id=conversation_id,
        )

    def record_escalation(
        self,
        tenant_id: str,
        was_escalated: bool,
        conversation_id: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> bool:
        return self.record(
            tenant_id, MetricCategory.QUALITY, "escalation", 1.0 if was_escalated else 0.0,
            conversation_id=conversation_id,
            metadata={"reason": reason} if reason else None,
        )

    def record_input_metric(
        self,
        tenant_id: str,
        name: str,
        value: float,
        dimensions: Optional[Dict[str, str]] = None,
    ) -> bool:
        return self.record(
            tenant_id, MetricCategory.INPUT_DISTRIBUTION, name, value, dimensions=dimensions,
        )

    def record_output_metric(
        self,
        tenant_id: str,
        name: str,
        value: float,
        dimensions: Optional[Dict[str, str]] = None,
    ) -> bool:
        return self.record(
            tenant_id, MetricCategory.OUTPUT_DISTRIBUTION, name, value, dimensions=dimensions,
        )

    def _build(
        self,
        tenant_id: str,
        category: Any,
        name: str,
        value: Any,
        dimensions: Optional[Dict[str, str]],
        conversation_id: Optional[str],
        message_id: Optional[str],
        metadata: Optional[Dict[str, Any]],
    ) -> Optional[MetricObservation]:
        try:
            value = float(value)
            category = MetricCategory(category)
        except (TypeError, ValueError) as e:
            logger.warning(f"Rejected observation {tenant_id}/{name}: {e}")
            self._count_rejected()
            return None

        if not math.isfinite(value):
            logger.warning(f"Rejected non-finite value for {tenant_id}/{category.value}/{name}: {value}")
            self._count_rejected()
            return None

        return MetricObservation(
            tenant_id=tenant_id,
            category=category,
            name=name,
            value=value,
            dimensions=dict(dimensions or {}),
            conversation_id=conversation_id,
            message_id=message_id,
            metadata=dict(metadata or {}),
            recorded_at=self._clock(),
        )

    def _count_rejected(self) -> None:
        with self._buffer_lock:
            self._rejected += 1

    def _append(self, observation: MetricObservation) -> None:
        # Caller holds _buffer_lock
        self._buffer.append(observation)
        self._recorded += 1
        self._enforce_capacity()

    def _enforce_capacity(self) -> None:
        # Caller holds _buffer_lock
        overflow = len(self._buffer) - self.config.buffer_max_size
        if overflow <= 0:
            return
        for _ in range(overflow):
            self._buffer.popleft()
        self._dropped += overflow
        self._pending_dropped += overflow
        logger.warning(
            f"Metric buffer full ({self.config.buffer_max_size}); dropped {overflow} oldest observations"
        )

    # ------------------------------------------------------------------
    # Flushing
    # ------------------------------------------------------------------

    def flush(self) -> FlushResult:
        """
        Persist everything currently buffered.

        Only one flush runs at a time; a concurrent caller waits for the
        running flush to finish and then flushes whatever accumulated since.

        Returns:
            FlushResult with persisted and re-buffered observation counts
        """
        with self._flush_lock:
            now = self._clock()

            with self._buffer_lock:
                batch = list(self._buffer)
                self._buffer.clear()
                dropped = self._pending_dropped
                self._pending_dropped = 0

            if dropped:
                batch.append(MetricObservation(
                    tenant_id=self.SYSTEM_TENANT,
                    category=MetricCategory.PERFORMANCE,
                    name=self.DROPPED_METRIC,
                    value=float(dropped),
                    recorded_at=now,
                ))

            if not batch:
                return FlushResult()

            groups: Dict[MetricKey, List[MetricObservation]] = {}
            for observation in batch:
                groups.setdefault(observation.key, []).append(observation)

            period_start, period_end = period_bounds(now, self.config.period_type)
            deadline = time.monotonic() + self.config.flush_timeout_seconds

            persisted = 0
            retry: List[MetricObservation] = []
            group_items = list(groups.items())

            for index, (key, observations) in enumerate(group_items):
                if time.monotonic() > deadline:
                    skipped = [obs for _, rest in group_items[index:] for obs in rest]
                    retry.extend(skipped)
                    self._record_error(
                        f"Flush timed out after {self.config.flush_timeout_seconds}s; "
                        f"{len(group_items) - index} groups deferred"
                    )
                    break

                delta = self._summarize(observations, period_start, period_end, now)
                try:
                    self.store.merge_aggregate(delta, self.config.reservoir_size)
                    persisted += len(observations)
                except PersistenceError as e:
                    retry.extend(observations)
                    self._record_error(f"Failed to persist {'/'.join(key)}: {e}")

            if retry:
                with self._buffer_lock:
                    self._buffer.extendleft(reversed(retry))
                    self._enforce_capacity()

            with self._buffer_lock:
                self._flushes += 1
                self._persisted += persisted
                self._retried += len(retry)
                self._last_flush_at = now
                if retry:
                    self._failed_flushes += 1
            if retry:
                logger.warning(
                    f"Flush persisted {persisted} observations, re-buffered {len(retry)}"
                )
            else:
                logger.debug(f"Flushed {persisted} observations in {len(groups)} groups")

            return FlushResult(persisted=persisted, retried=len(retry))

    def _summarize(
        self,
        observations: List[MetricObservation],
        period_start: datetime,
        period_end: datetime,
        now: datetime,
    ) -> MetricAggregate:
        values = [obs.value for obs in observations]
        acc = WelfordAccumulator()
        acc.update_many(values)
        first = observations[0]
        return MetricAggregate(
            tenant_id=first.tenant_id,
            category=first.category,
            name=first.name,
            period_start=period_start,
            period_end=period_end,
            period_type=self.config.period_type,
            sample_count=acc.count,
            mean=acc.mean,
            std=acc.std,
            min=acc.min_value,
            max=acc.max_value,
            samples=downsample(values, self.config.reservoir_size, self._rng),
            updated_at=now,
        )

    def _record_error(self, message: str) -> None:
        logger.error(message)
        self._recent_errors.append({"at": self._clock().isoformat(), "error": message})

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the background flush worker (no-op if already running)."""
        if self._worker is not None and self._worker.is_alive():
            return
        self._stop_event.clear()
        self._worker = threading.Thread(
            target=self._run, name="metric-ingestor-flush", daemon=True
        )
        self._worker.start()
        logger.info(
            f"MetricIngestor started (batch={self.config.flush_batch_size}, "
            f"interval={self.config.flush_interval_ms}ms)"
        )

    def stop(self, flush: bool = True, timeout: Optional[float] = None) -> Optional[FlushResult]:
        """
        Stop the background worker.

        Args:
            flush: Run a final flush after the worker exits
            timeout: Seconds to wait for the worker thread

        Returns:
            Result of the final flush, if one ran
        """
        self._stop_event.set()
        self._wake.set()
        if self._worker is not None:
            self._worker.join(timeout)
            self._worker = None
        logger.info("MetricIngestor stopped")
        return self.flush() if flush else None

    @property
    def running(self) -> bool:
        return self._worker is not None and self._worker.is_alive()

    def _run(self) -> None:
        interval = self.config.flush_interval_ms / 1000
        while not self._stop_event.is_set():
            self._wake.wait(timeout=interval)
            self._wake.clear()
            if self._stop_event.is_set():
                break
            try:
                self.flush()
            except Exception as e:
                with self._buffer_lock:
                    self._failed_flushes += 1
                logger.exception("Background flush failed")
                self._recent_errors.append({"at": self._clock().isoformat(), "error": str(e)})

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    def buffered(self) -> int:
        with self._buffer_lock:
            return len(self._buffer)

    def get_stats(self) -> Dict[str, Any]:
        """Counters for the ingestor itself (exposed by the API)."""
        with self._buffer_lock:
            stats = {
                "buffered": len(self._buffer),
                "recorded": self._recorded,
                "persisted": self._persisted,
                "retried": self._retried,
                "dropped": self._dropped,
                "rejected": self._rejected,
                "flushes": self._flushes,
                "failed_flushes": self._failed_flushes,
                "last_flush_at": self._last_flush_at.isoformat() if self._last_flush_at else None,
            }
        stats["running"] = self.running
        stats["recent_errors"] = list(self._recent_errors)
        return stats

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    def query(
        self,
        tenant_id: str,
        category: Optional[str] = None,
        name: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: int = 1000,
    ) -> List[MetricAggregate]:
        """Stored aggregates, newest period first."""
        rows = self.store.query_aggregates(tenant_id, category=category, name=name, start=start, end=end)
        rows.reverse()
        return rows[:limit]

    def aggregate(
        self,
        tenant_id: str,
        category: str,
        start: datetime,
        end: datetime,
    ) -> List[Dict[str, Any]]:
        """
        Per-metric summary of a category over ``[start, end)``.

        Count, mean, std, min and max are exact (pooled from the stored
        summaries). p50 and p95 are estimated from the sample reservoirs.
        """
        rows = self.store.query_aggregates(tenant_id, category=category, start=start, end=end)

        by_name: Dict[str, List[MetricAggregate]] = {}
        for row in rows:
            by_name.setdefault(row.name, []).append(row)

        summaries = []
        for name, metric_rows in sorted(by_name.items()):
            count, mean, std = 0, 0.0, 0.0
            for row in metric_rows:
                count, mean, std = merge_summaries(count, mean, std, row.sample_count, row.mean, row.std)
            samples = [v for row in metric_rows for v in row.samples]
            if not samples:
                samples = [row.mean for row in metric_rows]
            summaries.append({
                "name": name,
                "count": count,
                "mean": mean,
                "std": std,
                "min": min(row.min for row in metric_rows),
                "max": max(row.max for row in metric_rows),
                "p50": float(np.percentile(samples, 50)),
                "p95": float(np.percentile(samples, 95)),
            })
        return summaries

    def get_time_series(
        self,
        tenant_id: str,
        category: str,
        name: str,
        start: datetime,
        end: datetime,
        granularity: str = "hour",
    ) -> List[Dict[str, Any]]:
        """
        Count-weighted mean per time bucket, oldest first.

        Args:
            granularity: "hour", "day" or "week" (weeks start on Sunday)
        """
        if granularity not in self.GRANULARITIES:
            raise ValueError(f"Unknown granularity: {granularity!r}")
        period_type = self.GRANULARITIES[granularity]

        rows = self.store.query_aggregates(tenant_id, category=category, name=name, start=start, end=end)
        if not rows:
            return []

        df = pd.DataFrame([
            {
                "bucket": period_bounds(row.period_start, period_type)[0],
                "weighted": row.mean * row.sample_count,
                "count": row.sample_count,
            }
            for row in rows
        ])
        grouped = df.groupby("bucket", sort=True).agg(
            weighted=("weighted", "sum"),
            count=("count", "sum"),
        )

        return [
            {
                "timestamp": pd.Timestamp(bucket).isoformat(),
                "value": float(row["weighted"] / row["count"]) if row["count"] else 0.0,
                "count": int(row["count"]),
            }
            for bucket, row in grouped.iterrows()
        ]

    def cleanup(self, tenant_id: str, retention_days: int = 90) -> int:
        """Delete aggregates older than ``retention_days``; returns rows deleted."""
        cutoff = self._clock() - timedelta(days=retention_days)
        deleted = self.store.delete_aggregates_before(tenant_id, cutoff)
        if deleted:
            logger.info(f"Deleted {deleted} aggregates older than {retention_days} days for {tenant_id}")
        return deleted
