"""
Baseline management for drift detection.

A baseline is the reference distribution of one metric: summary statistics
plus a 10-bin histogram. Drift is always measured against the single active
baseline of a metric.

Design Decisions:

1. **Versioned, never deleted**: Creating or updating a baseline archives the
   previous active version and links it to its successor via
   ``superseded_by``. History stays queryable for audits and rollbacks.

2. **Equal-width bins over [min, max]**: Simple to explain and to recompute.
   A metric whose reference values are all identical collapses to one bin
   holding all the mass.

3. **Two ways to build a baseline**:
   - From explicit values (offline evaluation sets, a known-good period)
   - From stored aggregates (``create_from_history``): exact pooled
     mean/std/min/max from the summaries, histogram from their reservoirs

4. **Merge updates are lossy**: the old baseline only keeps its histogram,
   so a merge rebuilds representative values at the bin midpoints. Each
   rebuilt point is off by at most one bin width.
"""

import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

import numpy as np

from ..errors import BaselineNotFoundError, DegenerateInputError, InsufficientDataError
from ..models import Baseline, BaselineStatus, MetricAggregate, MetricCategory
from ..periods import utc_now
from ..store.interface import MetricStore
from .metrics import DriftMetrics
from .online_stats import merge_summaries

logger = logging.getLogger(__name__)


class BaselineManager:
    """
    Creates, versions and retrieves metric baselines.

    Example:
        >>> manager = BaselineManager(store)
        >>> baseline = manager.create(
        ...     "tenant-a", "performance", "response_latency_ms",
        ...     values=[480, 510, 495, 530], window_days=7,
        ... )
        >>> manager.get_active("tenant-a", "performance", "response_latency_ms").id == baseline.id
        True
    """

    N_BINS = 10

    # Minimum pooled observations for create_from_history
    MIN_HISTORY_SAMPLES = 10

    VALID_STRATEGIES = ("replace", "merge")

    def __init__(
        self,
        store: MetricStore,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self._clock = clock

    def create(
        self,
        tenant_id: str,
        category: str,
        name: str,
        values: Iterable[float],
        window_days: int,
        description: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Baseline:
        """
        Compute a baseline from raw values and make it the active one.

        Args:
            tenant_id: Owning tenant
            category: Metric category
            name: Metric name
            values: Reference observations
            window_days: Length of the reference window the values came from
            description: Free-text note shown alongside the baseline
            metadata: Extra attributes stored with the baseline

        Returns:
            The newly active Baseline

        Raises:
            DegenerateInputError: If ``values`` holds no finite numbers
        """
        arr = _finite_array(values)
        if arr.size == 0:
            raise DegenerateInputError(
                f"Cannot build baseline for {tenant_id}/{name}: no values"
            )

        now = self._clock()
        baseline = self._build(
            tenant_id=tenant_id,
            category=category,
            name=name,
            values=arr,
            window_days=window_days,
            description=description,
            metadata=metadata,
            baseline_start=now - timedelta(days=window_days),
            baseline_end=now,
        )
        return self._activate(baseline)

    def create_from_history(
        self,
        tenant_id: str,
        category: str,
        name: str,
        window_days: int,
        description: Optional[str] = None,
    ) -> Baseline:
        """
        Build a baseline from the stored aggregates of the last ``window_days``.

        Raises:
            InsufficientDataError: If fewer than 10 observations were recorded
        """
        now = self._clock()
        rows = self.store.query_aggregates(
            tenant_id,
            category=category,
            name=name,
            start=now - timedelta(days=window_days),
            end=now,
        )
        total = sum(row.sample_count for row in rows)
        if total < self.MIN_HISTORY_SAMPLES:
            raise InsufficientDataError(
                f"Only {total} samples for {tenant_id}/{category}/{name} in the last "
                f"{window_days} days (need {self.MIN_HISTORY_SAMPLES})"
            )

        count, mean, std = 0, 0.0, 0.0
        for row in rows:
            count, mean, std = merge_summaries(count, mean, std, row.sample_count, row.mean, row.std)
        min_value = min(row.min for row in rows)
        max_value = max(row.max for row in rows)

        edges = DriftMetrics.equal_width_edges(min_value, max_value, self.N_BINS)
        samples, weights = reservoir_weights(rows)
        proportions = DriftMetrics.histogram_proportions(samples, edges, weights)

        baseline = Baseline(
            id=_new_id(),
            tenant_id=tenant_id,
            category=category,
            name=name,
            mean=mean,
            std=std,
            min=min_value,
            max=max_value,
            bin_edges=edges,
            proportions=proportions,
            sample_count=count,
            window_days=window_days,
            description=description,
            baseline_start=rows[0].period_start,
            baseline_end=rows[-1].period_end,
            metadata={"source": "history", "aggregate_rows": len(rows)},
            created_at=now,
            updated_at=now,
        )
        return self._activate(baseline)

    def get_active(self, tenant_id: str, category: str, name: str) -> Optional[Baseline]:
        return self.store.get_active_baseline(tenant_id, category, name)

    def get(self, baseline_id: str) -> Baseline:
        baseline = self.store.get_baseline(baseline_id)
        if baseline is None:
            raise BaselineNotFoundError(f"Baseline not found: {baseline_id}")
        return baseline

    def list_active(self, tenant_id: str) -> List[Baseline]:
        return self.store.list_baselines(tenant_id, active_only=True)

    def list_history(self, tenant_id: str, category: str, name: str) -> List[Baseline]:
        """All versions of a metric's baseline, oldest first."""
        return self.store.list_baselines(tenant_id, category=category, name=name)

    def list_baselines(
        self,
        tenant_id: str,
        category: Optional[str] = None,
        name: Optional[str] = None,
        active_only: bool = False,
    ) -> List[Baseline]:
        return self.store.list_baselines(
            tenant_id, category=category, name=name, active_only=active_only
        )

    def update(
        self,
        baseline_id: str,
        new_values: Iterable[float],
        strategy: str = "replace",
    ) -> Baseline:
        """
        Produce a new baseline version from ``baseline_id``.

        Strategies:
            - replace: recompute entirely from ``new_values``
            - merge: rebuild representative values from the old histogram
              (bin midpoint repeated round(proportion * sample_count) times),
              append ``new_values``, keep the most recent
              2 * previous sample_count values and recompute

        The new version becomes active and the old one is archived.

        Raises:
            BaselineNotFoundError: If ``baseline_id`` does not exist
            DegenerateInputError: If no values remain to summarize
            ValueError: If ``strategy`` is unknown
        """
        if strategy not in self.VALID_STRATEGIES:
            raise ValueError(f"Unknown update strategy: {strategy!r}")

        previous = self.get(baseline_id)
        arr = _finite_array(new_values)

        if strategy == "merge":
            reconstructed = reconstruct_values(previous)
            combined = np.concatenate([reconstructed, arr])
            keep = 2 * previous.sample_count
            if keep > 0 and combined.size > keep:
                combined = combined[-keep:]
            arr = combined

        if arr.size == 0:
            raise DegenerateInputError(
                f"Cannot update baseline {baseline_id}: no values"
            )

        now = self._clock()
        baseline = self._build(
            tenant_id=previous.tenant_id,
            category=previous.category,
            name=previous.name,
            values=arr,
            window_days=previous.window_days,
            description=previous.description,
            metadata={
                **previous.metadata,
                "previous_baseline_id": previous.id,
                "update_strategy": strategy,
            },
            baseline_start=previous.baseline_start,
            baseline_end=now,
        )
        return self._activate(baseline)

    def archive(self, baseline_id: str) -> bool:
        """
        Archive a baseline without a successor.

        Returns:
            True if the baseline was active and is now archived, False if it
            was already archived

        Raises:
            BaselineNotFoundError: If ``baseline_id`` does not exist
        """
        self.get(baseline_id)
        archived = self.store.archive_baseline(baseline_id, self._clock())
        if archived:
            logger.info(f"Archived baseline {baseline_id}")
        return archived

    def _build(
        self,
        tenant_id: str,
        category: Any,
        name: str,
        values: np.ndarray,
        window_days: int,
        description: Optional[str],
        metadata: Optional[Dict[str, Any]],
        baseline_start: Optional[datetime],
        baseline_end: Optional[datetime],
    ) -> Baseline:
        min_value = float(values.min())
        max_value = float(values.max())
        edges = DriftMetrics.equal_width_edges(min_value, max_value, self.N_BINS)
        now = self._clock()

        return Baseline(
            id=_new_id(),
            tenant_id=tenant_id,
            category=MetricCategory(category),
            name=name,
            mean=float(values.mean()),
            std=float(values.std()),
            min=min_value,
            max=max_value,
            bin_edges=edges,
            proportions=DriftMetrics.histogram_proportions(values, edges),
            sample_count=int(values.size),
            window_days=window_days,
            status=BaselineStatus.ACTIVE,
            description=description,
            baseline_start=baseline_start,
            baseline_end=baseline_end,
            metadata=dict(metadata or {}),
            created_at=now,
            updated_at=now,
        )

    def _activate(self, baseline: Baseline) -> Baseline:
        previous_id = self.store.activate_baseline(baseline)
        if previous_id:
            logger.info(
                f"Baseline {baseline.id} supersedes {previous_id} for "
                f"{baseline.tenant_id}/{baseline.category.value}/{baseline.name}"
            )
        else:
            logger.info(
                f"Created baseline {baseline.id} for "
                f"{baseline.tenant_id}/{baseline.category.value}/{baseline.name} "
                f"(n={baseline.sample_count}, mean={baseline.mean:.4f}, std={baseline.std:.4f})"
            )
        return baseline


def reconstruct_values(baseline: Baseline) -> np.ndarray:
    """
    Representative values rebuilt from a baseline histogram.

    Each bin contributes its midpoint round(proportion * sample_count) times.
    """
    midpoints = baseline.bin_midpoints()
    counts = [int(round(p * baseline.sample_count)) for p in baseline.proportions]
    return np.repeat(np.asarray(midpoints, dtype=float), counts)


def reservoir_weights(rows: List[MetricAggregate]) -> Tuple[List[float], List[float]]:
    """
    Flatten aggregate reservoirs into (values, weights).

    Each sampled value is weighted by how many observations of its row it
    stands for, so busy periods count more than quiet ones.
    """
    values: List[float] = []
    weights: List[float] = []
    for row in rows:
        if not row.samples:
            continue
        weight = row.sample_count / len(row.samples)
        values.extend(row.samples)
        weights.extend([weight] * len(row.samples))
    return values, weights


def _finite_array(values: Iterable[float]) -> np.ndarray:
    arr = np.asarray(list(values), dtype=float)
    finite = arr[np.isfinite(arr)]
    if finite.size != arr.size:
        logger.warning(f"Dropped {arr.size - finite.size} non-finite values")
    return finite


def _new_id() -> str:
    return uuid.uuid4().hex
