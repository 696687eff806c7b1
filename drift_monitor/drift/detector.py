"""
Drift detector that compares recent aggregates against active baselines.

Architecture:
=============

          MetricIngestor flushes
                    │
                    ▼
            ┌───────────────┐
            │  Aggregates   │  ← per metric, per period (store)
            └───────┬───────┘
                    │ closed periods in the trailing window
          ┌─────────┴─────────┐
          ▼                   ▼
    ┌─────────────┐    ┌─────────────┐
    │  Baseline   │    │ DetectionJob│  ← hourly, per tenant
    │  (active)   │    │ (scheduler) │
    └──────┬──────┘    └──────┬──────┘
           │                  │
           └────────┬─────────┘
                    ▼
            ┌───────────────┐
            │ DriftMetrics  │  ← Z-score or PSI, plus KS / CUSUM hints
            └───────┬───────┘
                    │
          ┌─────────┴─────────┐
          ▼                   ▼
    ┌─────────────┐    ┌─────────────┐
    │ DriftReport │    │ AlertManager│  ← auto-alert on drift
    └─────────────┘    └─────────────┘

Test selection:
===============

- performance / quality / custom metrics are continuous: a Z-test of the
  window mean against the baseline mean (SE = sigma_b / sqrt(n))
- input_distribution / output_distribution metrics compare histograms with
  PSI, using the baseline's bin edges

Only closed periods are evaluated, so a half-filled current hour never
dilutes or exaggerates the window.

Example:
    >>> detector = DriftDetector(store, baselines, alerts)
    >>> result = detector.detect("tenant-a", "performance", "response_latency_ms")
    >>> if result.is_drift:
    ...     print(f"z = {result.statistic:.1f}, alert {result.alert_id}")
"""

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Deque, Dict, List, Optional

from ..alerts.manager import AlertManager, AlertParams
from ..config import DetectionConfig
from ..errors import PersistenceError
from ..models import AlertSeverity, AlertType, Baseline, MetricAggregate, MetricCategory
from ..periods import utc_now
from ..store.interface import MetricStore
from .baseline import BaselineManager, reconstruct_values, reservoir_weights
from .metrics import DriftMetrics, DriftResult, DriftStatus
from .online_stats import merge_summaries

logger = logging.getLogger(__name__)


@dataclass
class DriftReport:
    """
    Summary of one ``detect_all`` pass over a tenant.

    Attributes:
        tenant_id: Tenant that was evaluated
        timestamp: When the pass finished (ISO 8601)
        results: Per-metric results
        metadata: Timing and configuration used
    """
    tenant_id: str
    timestamp: str
    results: List[DriftResult]
    metadata: Dict[str, Any] = field(default_factory=dict)

    def count(self, status: DriftStatus) -> int:
        return sum(1 for r in self.results if r.status == status)

    @property
    def has_drift(self) -> bool:
        return any(r.is_drift for r in self.results)

    @property
    def drifting_metrics(self) -> List[str]:
        return [f"{r.category}/{r.name}" for r in self.results if r.is_drift]

    @property
    def overall_status(self) -> str:
        if self.has_drift:
            return "drift"
        if self.count(DriftStatus.ERROR) > 0:
            return "degraded"
        return "ok"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "tenant_id": self.tenant_id,
            "timestamp": self.timestamp,
            "status": self.overall_status,
            "num_metrics": len(self.results),
            "counts": {s.value: self.count(s) for s in DriftStatus},
            "drifting_metrics": self.drifting_metrics,
            "results": [r.to_dict() for r in self.results],
            "metadata": self.metadata,
        }


class DriftDetector:
    """
    Evaluates metrics against their baselines and raises alerts.

    Features:
    - Per-metric evaluation on demand (``detect``)
    - Whole-tenant passes with failure isolation (``detect_all``)
    - Per-call threshold overrides via ``DetectionConfig``
    - Report history per tenant for the API and dashboards
    """

    # Diagnostic CUSUM decision interval, in baseline standard deviations
    CUSUM_THRESHOLD_STDS = 5.0

    def __init__(
        self,
        store: MetricStore,
        baseline_manager: BaselineManager,
        alert_manager: Optional[AlertManager] = None,
        config: Optional[DetectionConfig] = None,
        clock: Callable[[], datetime] = utc_now,
        report_history_size: int = 100,
    ):
        """
        Args:
            store: Source of aggregates
            baseline_manager: Source of active baselines
            alert_manager: Receives auto-alerts (None disables alerting)
            config: Default detection thresholds
            clock: Time source
            report_history_size: Reports kept per tenant
        """
        self.store = store
        self.baseline_manager = baseline_manager
        self.alert_manager = alert_manager
        self.config = config or DetectionConfig()
        self._clock = clock

        self._lock = threading.Lock()
        self._report_history_size = report_history_size
        self._reports: Dict[str, Deque[DriftReport]] = {}

        logger.info(
            f"DriftDetector initialized (z>{self.config.z_score_threshold}, "
            f"psi>{self.config.psi_threshold}, min_samples={self.config.min_samples})"
        )

    def detect(
        self,
        tenant_id: str,
        category: str,
        name: str,
        config: Optional[DetectionConfig] = None,
    ) -> DriftResult:
        """
        Evaluate one metric.

        Never raises for data problems: missing baselines, too few samples,
        zero-variance baselines and store failures come back as typed
        statuses on the result.
        """
        cfg = config or self.config
        category = MetricCategory(category).value
        try:
            baseline = self.baseline_manager.get_active(tenant_id, category, name)
            if baseline is None:
                return self._result(
                    tenant_id, category, name,
                    DriftStatus.INSUFFICIENT_DATA, reason="no baseline",
                )
            return self._evaluate(baseline, cfg)
        except PersistenceError as e:
            logger.error(f"Drift detection failed for {tenant_id}/{category}/{name}: {e}")
            return self._result(tenant_id, category, name, DriftStatus.ERROR, reason=str(e))

    def detect_all(
        self,
        tenant_id: str,
        config: Optional[DetectionConfig] = None,
    ) -> List[DriftResult]:
        """
        Evaluate every metric of ``tenant_id`` that has an active baseline.

        A failure on one metric is logged and reported as an ``error``
        result; the remaining metrics are still evaluated.

        Raises:
            PersistenceError: If the tenant's baselines cannot be listed
        """
        cfg = config or self.config
        start_time = time.time()

        baselines = self.baseline_manager.list_active(tenant_id)
        results: List[DriftResult] = []

        for baseline in baselines:
            try:
                results.append(self._evaluate(baseline, cfg))
            except Exception as e:
                logger.exception(
                    f"Drift detection failed for {tenant_id}/{baseline.category.value}/{baseline.name}"
                )
                results.append(self._result(
                    tenant_id, baseline.category.value, baseline.name,
                    DriftStatus.ERROR, reason=str(e),
                ))

        report = DriftReport(
            tenant_id=tenant_id,
            timestamp=self._clock().isoformat(),
            results=results,
            metadata={
                "computation_time_ms": (time.time() - start_time) * 1000,
                "window_hours": cfg.window_hours,
                "min_samples": cfg.min_samples,
                "z_score_threshold": cfg.z_score_threshold,
                "psi_threshold": cfg.psi_threshold,
            },
        )
        self._store_report(report)

        if report.has_drift:
            logger.warning(
                f"Drift detected for tenant {tenant_id}: "
                f"{', '.join(report.drifting_metrics)}"
            )
        else:
            logger.debug(f"Drift check OK for tenant {tenant_id}: {len(results)} metrics")

        return results

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def _evaluate(self, baseline: Baseline, cfg: DetectionConfig) -> DriftResult:
        tenant_id = baseline.tenant_id
        category = baseline.category
        name = baseline.name

        now = self._clock()
        rows = self.store.query_aggregates(
            tenant_id,
            category=category,
            name=name,
            start=now - timedelta(hours=cfg.window_hours),
            end=now,
        )
        closed = [row for row in rows if row.period_end <= now]

        count, mean, std = 0, 0.0, 0.0
        for row in closed:
            count, mean, std = merge_summaries(count, mean, std, row.sample_count, row.mean, row.std)

        if count < cfg.min_samples:
            return self._result(
                tenant_id, category.value, name,
                DriftStatus.INSUFFICIENT_DATA,
                reason="insufficient samples",
                sample_count=count,
                baseline_value=baseline.mean,
            )

        details: Dict[str, Any] = {
            "baseline_id": baseline.id,
            "periods": len(closed),
            "window_std": std,
            "deviation_percentage": _deviation_percentage(mean, baseline.mean),
        }
        details.update(self._diagnostics(baseline, closed, cfg))

        if category.is_distribution:
            test = "psi"
            threshold = cfg.psi_threshold
            # Zero-width bins only separate values above the edge from the rest
            if baseline.std == 0 or baseline.bin_edges[0] == baseline.bin_edges[-1]:
                return self._result(
                    tenant_id, category.value, name,
                    DriftStatus.CANNOT_EVALUATE,
                    reason="baseline has zero variance",
                    test=test, threshold=threshold, sample_count=count,
                    current_value=mean, baseline_value=baseline.mean, details=details,
                )
            samples, weights = reservoir_weights(closed)
            if not samples:
                return self._result(
                    tenant_id, category.value, name,
                    DriftStatus.CANNOT_EVALUATE,
                    reason="no samples retained for histogram",
                    test=test, threshold=threshold, sample_count=count,
                    current_value=mean, baseline_value=baseline.mean, details=details,
                )
            current = DriftMetrics.histogram_proportions(samples, baseline.bin_edges, weights)
            statistic = DriftMetrics.psi(baseline.proportions, current)
            details["current_proportions"] = current
        else:
            test = "z_score"
            threshold = cfg.z_score_threshold
            statistic = DriftMetrics.z_score_test(baseline.mean, baseline.std, mean, count)
            if statistic is None:
                return self._result(
                    tenant_id, category.value, name,
                    DriftStatus.CANNOT_EVALUATE,
                    reason="baseline standard deviation is zero",
                    test=test, threshold=threshold, sample_count=count,
                    current_value=mean, baseline_value=baseline.mean, details=details,
                )

        score = DriftMetrics.normalized_score(statistic, threshold)
        drifted = statistic > threshold
        result = self._result(
            tenant_id, category.value, name,
            DriftStatus.DRIFT if drifted else DriftStatus.NO_DRIFT,
            test=test,
            statistic=statistic,
            threshold=threshold,
            drift_score=score,
            sample_count=count,
            current_value=mean,
            baseline_value=baseline.mean,
            details=details,
        )

        if self.alert_manager is not None:
            if drifted and cfg.auto_alert:
                self._raise_alert(result)
            elif not drifted:
                self.alert_manager.record_score(tenant_id, category.value, name, score)

        return result

    def _diagnostics(
        self,
        baseline: Baseline,
        closed: List[MetricAggregate],
        cfg: DetectionConfig,
    ) -> Dict[str, Any]:
        """KS test and CUSUM change point; informative only, never gate drift."""
        diagnostics: Dict[str, Any] = {}

        baseline_values = reconstruct_values(baseline)
        current_values = [v for row in closed for v in row.samples]
        if len(baseline_values) > 0 and current_values:
            ks_stat, p_value = DriftMetrics.ks_test(baseline_values, current_values)
            diagnostics["ks_statistic"] = ks_stat
            diagnostics["ks_p_value"] = p_value
            diagnostics["ks_drift"] = p_value < cfg.ks_threshold

        if baseline.std > 0 and closed:
            cusum = DriftMetrics.cusum(
                [row.mean for row in closed],
                target=baseline.mean,
                threshold=self.CUSUM_THRESHOLD_STDS * baseline.std,
                slack=0.5 * baseline.std,
            )
            diagnostics["cusum_change_index"] = cusum.change_index
            diagnostics["cusum_direction"] = cusum.direction
            if cusum.detected:
                diagnostics["cusum_change_period"] = closed[cusum.change_index].period_start.isoformat()

        return diagnostics

    def _raise_alert(self, result: DriftResult) -> None:
        severity = AlertSeverity.HIGH if result.drift_score > 0.5 else AlertSeverity.MEDIUM
        if result.test == "psi":
            message = (
                f"{result.name} distribution shifted: PSI {result.statistic:.3f} "
                f"exceeds {result.threshold}"
            )
        else:
            message = (
                f"{result.name} mean moved from {result.baseline_value:.4g} to "
                f"{result.current_value:.4g} (z={result.statistic:.2f}, threshold {result.threshold})"
            )

        try:
            result.alert_id = self.alert_manager.create_alert(AlertParams(
                tenant_id=result.tenant_id,
                category=result.category,
                name=result.name,
                alert_type=AlertType.DRIFT,
                severity=severity,
                current_value=result.current_value,
                baseline_value=result.baseline_value,
                threshold=result.threshold,
                drift_score=result.drift_score,
                message=message,
                deviation_percentage=result.details.get("deviation_percentage"),
                metadata={
                    "test": result.test,
                    "statistic": result.statistic,
                    "sample_count": result.sample_count,
                    "baseline_id": result.details.get("baseline_id"),
                },
            ))
        except PersistenceError as e:
            logger.error(f"Failed to raise alert for {result.tenant_id}/{result.name}: {e}")
            result.details["alert_error"] = str(e)

    def _result(self, tenant_id: str, category: str, name: str, status: DriftStatus, **kwargs: Any) -> DriftResult:
        return DriftResult(
            tenant_id=tenant_id,
            category=category,
            name=name,
            status=status,
            evaluated_at=self._clock().isoformat(),
            **kwargs,
        )

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------

    def _store_report(self, report: DriftReport) -> None:
        with self._lock:
            history = self._reports.setdefault(
                report.tenant_id, deque(maxlen=self._report_history_size)
            )
            history.append(report)

    def get_last_report(self, tenant_id: str) -> Optional[DriftReport]:
        """Get the most recent report for a tenant."""
        with self._lock:
            history = self._reports.get(tenant_id)
            return history[-1] if history else None

    def get_report_history(self, tenant_id: str, limit: int = 10) -> List[DriftReport]:
        """Get recent reports for a tenant, oldest first."""
        with self._lock:
            return list(self._reports.get(tenant_id, ()))[-limit:]

    def get_status(self) -> Dict[str, Any]:
        """Get current detector status for API endpoints."""
        with self._lock:
            last = {tenant: h[-1] for tenant, h in self._reports.items() if h}
        return {
            "tenants_checked": len(last),
            "config": {
                "ks_threshold": self.config.ks_threshold,
                "psi_threshold": self.config.psi_threshold,
                "z_score_threshold": self.config.z_score_threshold,
                "min_samples": self.config.min_samples,
                "auto_alert": self.config.auto_alert,
                "window_hours": self.config.window_hours,
            },
            "last_reports": {
                tenant: {"timestamp": r.timestamp, "status": r.overall_status}
                for tenant, r in last.items()
            },
        }


def _deviation_percentage(current: float, reference: float) -> Optional[float]:
    if reference == 0:
        return None
    return (current - reference) / abs(reference) * 100
