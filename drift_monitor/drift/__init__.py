"""
Drift detection for production metrics.

This package compares recent metric aggregates against versioned baselines
and flags statistically significant shifts.

Components:
    - DriftMetrics: Z-score, PSI, KS and CUSUM calculations
    - BaselineManager: Create, version and look up metric baselines
    - DriftDetector: Per-metric and per-tenant evaluation with auto-alerting
    - WelfordAccumulator / merge_summaries: Streaming statistics for flushes

Example:
    >>> from drift_monitor.drift import BaselineManager, DriftDetector
    >>> baselines = BaselineManager(store)
    >>> baselines.create("tenant-a", "performance", "response_latency_ms", values, window_days=7)
    >>> detector = DriftDetector(store, baselines, alert_manager)
    >>> results = detector.detect_all("tenant-a")
"""

from .baseline import BaselineManager, reconstruct_values
from .detector import DriftDetector, DriftReport
from .metrics import CusumResult, DriftMetrics, DriftResult, DriftStatus
from .online_stats import WelfordAccumulator, merge_summaries

__all__ = [
    "BaselineManager",
    "reconstruct_values",
    "DriftDetector",
    "DriftReport",
    "DriftMetrics",
    "DriftResult",
    "DriftStatus",
    "CusumResult",
    "WelfordAccumulator",
    "merge_summaries",
]
