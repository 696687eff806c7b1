"""
Scheduled drift detection.

``DetectionJob`` runs one detection cycle per ``detection_interval_seconds``:

    for each tenant with baselines:
        detect_all(tenant)                 (bounded by detection_timeout_seconds)
        auto_resolve_normalized_alerts(tenant)
    once a day:
        delete aggregates and closed alerts older than retention_days

A tenant whose detection exceeds the timeout is skipped for the cycle; its
evaluation keeps running on the worker pool and its alerts still land, but
the cycle does not wait for it.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from .alerts.manager import AlertManager
from .config import MonitoringConfig
from .drift.detector import DriftDetector
from .ingest.ingestor import MetricIngestor
from .periods import utc_now

logger = logging.getLogger(__name__)


@dataclass
class JobRunResult:
    """
    Outcome of one detection cycle.

    Attributes:
        started_at: Cycle start
        finished_at: Cycle end
        tenants: Per-tenant outcome ("status" is ok, timeout or error)
        cleanup: Rows deleted by retention cleanup, if it ran this cycle
    """
    started_at: datetime
    finished_at: Optional[datetime] = None
    tenants: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    cleanup: Optional[Dict[str, int]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "tenants": self.tenants,
            "cleanup": self.cleanup,
        }


class DetectionJob:
    """
    Periodic driver for drift detection, auto-resolution and retention.

    Example:
        >>> job = DetectionJob(detector, alert_manager, ingestor, config)
        >>> result = job.run_once()          # one cycle, synchronously
        >>> job.start()                      # or every detection_interval_seconds
    """

    CLEANUP_INTERVAL = timedelta(days=1)

    def __init__(
        self,
        detector: DriftDetector,
        alert_manager: AlertManager,
        ingestor: MetricIngestor,
        config: Optional[MonitoringConfig] = None,
        clock: Callable[[], datetime] = utc_now,
        max_workers: int = 4,
    ):
        self.detector = detector
        self.alert_manager = alert_manager
        self.ingestor = ingestor
        self.config = config or MonitoringConfig()
        self._clock = clock

        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="drift-detect")
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._last_cleanup_at: Optional[datetime] = None
        self._last_result: Optional[JobRunResult] = None

    def run_once(self, tenant_ids: Optional[List[str]] = None) -> JobRunResult:
        """
        Run one detection cycle.

        Args:
            tenant_ids: Tenants to evaluate (default: every tenant with baselines)
        """
        result = JobRunResult(started_at=self._clock())
        tenants = tenant_ids if tenant_ids is not None else self.detector.store.list_baseline_tenants()
        timeout = self.config.detection_timeout_seconds

        for tenant_id in tenants:
            future = self._executor.submit(self.detector.detect_all, tenant_id)
            try:
                drift_results = future.result(timeout=timeout)
            except FutureTimeoutError:
                logger.warning(
                    f"Drift detection for tenant {tenant_id} exceeded {timeout}s; skipped this cycle"
                )
                result.tenants[tenant_id] = {"status": "timeout"}
                continue
            except Exception as e:
                logger.exception(f"Drift detection failed for tenant {tenant_id}")
                result.tenants[tenant_id] = {"status": "error", "error": str(e)}
                continue

            try:
                auto_resolved = self.alert_manager.auto_resolve_normalized_alerts(tenant_id)
            except Exception as e:
                logger.exception(f"Auto-resolution failed for tenant {tenant_id}")
                result.tenants[tenant_id] = {"status": "error", "error": str(e)}
                continue

            result.tenants[tenant_id] = {
                "status": "ok",
                "metrics": len(drift_results),
                "drift": sum(1 for r in drift_results if r.is_drift),
                "auto_resolved": auto_resolved,
            }

        if self._cleanup_due(result.started_at):
            result.cleanup = self._cleanup(self._retention_tenants(tenants))
            self._last_cleanup_at = result.started_at

        result.finished_at = self._clock()
        self._last_result = result
        logger.info(
            f"Detection cycle finished: {len(result.tenants)} tenants, "
            f"{sum(t.get('drift', 0) for t in result.tenants.values())} drifting metrics"
        )
        return result

    def _cleanup_due(self, now: datetime) -> bool:
        return self._last_cleanup_at is None or now - self._last_cleanup_at >= self.CLEANUP_INTERVAL

    def _retention_tenants(self, evaluated: List[str]) -> List[str]:
        """Evaluated tenants plus every tenant that owns baselines or aggregates."""
        store = self.detector.store
        tenants = set(evaluated)
        tenants.update(store.list_baseline_tenants())
        tenants.update(store.list_aggregate_tenants())
        return sorted(tenants)

    def _cleanup(self, tenants: List[str]) -> Dict[str, int]:
        retention_days = self.config.retention_days
        deleted = {"aggregates": 0, "alerts": 0}
        for tenant_id in tenants:
            try:
                deleted["aggregates"] += self.ingestor.cleanup(tenant_id, retention_days)
                deleted["alerts"] += self.alert_manager.cleanup(tenant_id, retention_days)
            except Exception:
                logger.exception(f"Retention cleanup failed for tenant {tenant_id}")
        return deleted

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Run cycles every ``detection_interval_seconds`` on a daemon thread."""
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="drift-detection-job", daemon=True)
        self._thread.start()
        logger.info(f"DetectionJob started (interval={self.config.detection_interval_seconds}s)")

    def stop(self, timeout: Optional[float] = None) -> None:
        """Stop the scheduler thread and the worker pool (not restartable)."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        self._executor.shutdown(wait=False)
        logger.info("DetectionJob stopped")

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run(self) -> None:
        while not self._stop_event.wait(self.config.detection_interval_seconds):
            try:
                self.run_once()
            except Exception:
                logger.exception("Detection cycle failed")

    def get_status(self) -> Dict[str, Any]:
        return {
            "running": self.running,
            "interval_seconds": self.config.detection_interval_seconds,
            "last_cleanup_at": self._last_cleanup_at.isoformat() if self._last_cleanup_at else None,
            "last_run": self._last_result.to_dict() if self._last_result else None,
        }
