"""
Monitoring service that wires the drift monitor components together.

This module provides the MonitoringService class, the single object the HTTP
API (and any embedding application) holds on to. It builds the store, the
ingestor, baselines, alerts, the detector and the scheduled detection job
from one MonitoringConfig, and owns their background threads.

Architecture:
    Producers (conversation pipeline, API)
        ↓ record(...)
    MetricIngestor ── buffer ── flush worker
        ↓ merge_aggregate
    MetricStore (memory | Redis)
        ↑                      ↑
    BaselineManager        DriftDetector ── AlertManager ── notifiers
        ↑                      ↑
        └──── DetectionJob (every detection_interval_seconds)

Design Decisions:
- One composition root: components never construct each other, so tests can
  swap any of them (store, clock) without patching
- Explicit lifecycle: start() launches the flush worker and detection job,
  stop() flushes what is buffered and joins both threads
- Degraded is not down: a failing Redis makes the service "degraded" (writes
  are re-buffered) rather than "unhealthy"
"""

import logging
import time
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from drift_monitor.alerts import AlertManager, AlertPublisher, RedisChannelHandler
from drift_monitor.config import MonitoringConfig
from drift_monitor.drift import BaselineManager, DriftDetector
from drift_monitor.ingest import MetricIngestor
from drift_monitor.jobs import DetectionJob
from drift_monitor.periods import utc_now
from drift_monitor.store import MetricStore, RedisMetricStore, create_store

logger = logging.getLogger(__name__)


class MonitoringService:
    """
    Drift monitor facade owning every component and its background threads.

    Usage:
        # Initialize once (at service startup)
        service = MonitoringService.from_env()
        service.start()

        # Record from the hot path
        service.ingestor.record_latency("tenant-a", 512.0)

        # Shut down cleanly (flushes the buffer)
        service.stop()
    """

    def __init__(
        self,
        config: Optional[MonitoringConfig] = None,
        store: Optional[MetricStore] = None,
        clock: Callable[[], datetime] = utc_now,
        publish_to_redis: bool = True,
    ):
        """
        Initialize the monitoring service.

        Args:
            config: Full configuration (defaults to in-memory store, default thresholds)
            store: Pre-built store; when None one is created from ``config.store``
            clock: Time source shared by every component
            publish_to_redis: With a Redis store, also publish new alerts on
                the ``{key_prefix}:alerts`` pub/sub channel
        """
        logger.info("Initializing MonitoringService...")
        start_time = time.time()

        self.config = config or MonitoringConfig()
        self.clock = clock
        self.store = store if store is not None else create_store(self.config.store)

        self.ingestor = MetricIngestor(self.store, self.config.ingestor, clock=clock)
        self.baselines = BaselineManager(self.store, clock=clock)
        self.alerts = AlertManager(
            self.store,
            config=self.config.alerts,
            publisher=AlertPublisher(),
            clock=clock,
        )
        self.detector = DriftDetector(
            self.store,
            self.baselines,
            alert_manager=self.alerts,
            config=self.config.detection,
            clock=clock,
        )
        self.job = DetectionJob(
            self.detector,
            self.alerts,
            self.ingestor,
            config=self.config,
            clock=clock,
        )

        if publish_to_redis and isinstance(self.store, RedisMetricStore):
            channel = f"{self.store.prefix}:alerts"
            self.alerts.on_alert_created(RedisChannelHandler(self.store.client, channel=channel))
            logger.info(f"Publishing new alerts on Redis channel {channel}")

        self._started = False
        init_time = time.time() - start_time
        logger.info(
            f"MonitoringService initialized in {init_time:.2f}s "
            f"(store: {type(self.store).__name__})"
        )

    @classmethod
    def from_env(cls, **kwargs: Any) -> "MonitoringService":
        """Build the service from ``MonitoringConfig.from_env()``."""
        return cls(config=MonitoringConfig.from_env(), **kwargs)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self, run_detection_job: bool = True) -> None:
        """Start the flush worker and (optionally) the detection job."""
        self.ingestor.start()
        if run_detection_job:
            self.job.start()
        self._started = True
        logger.info("MonitoringService started")

    def stop(self) -> None:
        """Stop background threads, flush the buffer and release connections."""
        self.job.stop()
        result = self.ingestor.stop(flush=True)
        if result is not None and result.retried:
            logger.warning(f"{result.retried} observations could not be persisted at shutdown")
        self.store.close()
        self._started = False
        logger.info("MonitoringService stopped")

    @property
    def started(self) -> bool:
        return self._started

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def health_check(self) -> Dict[str, Any]:
        """
        Perform a health check on the service.

        Returns:
            Dictionary with health status:
            - status: "healthy", "degraded" or "unhealthy"
            - checks: Status of individual components
        """
        checks = {}

        try:
            store_health = self.store.health_check()
            if store_health.get("healthy", False):
                checks["store"] = "healthy"
            else:
                checks["store"] = f"degraded: {store_health.get('message', 'unknown')}"
        except Exception as e:
            checks["store"] = f"degraded: {e}"

        ingestor_stats = self.ingestor.get_stats()
        if self._started and not ingestor_stats["running"]:
            checks["ingestor"] = "unhealthy: flush worker not running"
        else:
            checks["ingestor"] = "healthy"

        checks["detection_job"] = "running" if self.job.running else "stopped"

        if any(v.startswith("unhealthy") for v in checks.values()):
            status = "unhealthy"
        elif any(v.startswith("degraded") for v in checks.values()):
            status = "degraded"
        else:
            status = "healthy"

        return {"status": status, "checks": checks}

    def get_service_info(self) -> Dict[str, Any]:
        """
        Get information about the running components and configuration.

        Useful for debugging and monitoring.
        """
        return {
            "store": {
                "backend": type(self.store).__name__,
                "stats": self.store.get_stats().to_dict(),
            },
            "ingestor": self.ingestor.get_stats(),
            "detector": self.detector.get_status(),
            "alerts": self.alerts.get_status(),
            "job": self.job.get_status(),
        }
