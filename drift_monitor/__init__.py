"""
Metric drift monitoring for AI agent deployments.

Producers record per-conversation metrics (latency, tokens, feedback,
escalations, input/output distributions). The ingestor buffers them and
flushes per-period aggregates to a store. Versioned baselines describe what
"normal" looks like, the detector compares recent windows against them
(Z-score for continuous metrics, PSI for distributions) and the alert
manager turns findings into deduplicated, auditable alerts.

Subpackages:
    - ingest: Buffered metric ingestion and read-side queries
    - drift: Baselines, statistical tests and the drift detector
    - alerts: Alert lifecycle, notifications and event fan-out
    - store: In-memory and Redis persistence
"""

from .alerts import AlertManager, AlertParams
from .config import (
    AlertConfig,
    DetectionConfig,
    IngestorConfig,
    MonitoringConfig,
    StoreConfig,
)
from .drift import BaselineManager, DriftDetector, DriftMetrics, DriftResult, DriftStatus
from .ingest import MetricIngestor
from .jobs import DetectionJob
from .store import InMemoryMetricStore, MetricStore, RedisMetricStore, create_store

__version__ = "1.0.0"

__all__ = [
    "MetricIngestor",
    "BaselineManager",
    "DriftDetector",
    "DriftMetrics",
    "DriftResult",
    "DriftStatus",
    "AlertManager",
    "AlertParams",
    "DetectionJob",
    "MonitoringConfig",
    "DetectionConfig",
    "IngestorConfig",
    "AlertConfig",
    "StoreConfig",
    "MetricStore",
    "InMemoryMetricStore",
    "RedisMetricStore",
    "create_store",
]
