"""
Drift detection metrics.

This module provides the statistical tests used to compare a metric's recent
behavior against its baseline.

Metrics Implemented:
====================

1. **Z-score test** (continuous metrics: latency, tokens, feedback rate)
   - Compares the recent sample mean against the baseline mean
   - Formula: SE = sigma_b / sqrt(n); z = |mean - mu_b| / SE
   - Drift when z > threshold (default 3)

2. **PSI (Population Stability Index)** (input/output distributions)
   - Compares binned proportions against the baseline histogram
   - Formula: PSI = sum (current_i - baseline_i) * ln(current_i / baseline_i)
   - Proportions are floored at 0.0001 to avoid log(0)
   - Thresholds:
     - PSI < 0.1: No significant change
     - 0.1 <= PSI < 0.2: Moderate change
     - PSI >= 0.2: Significant change

3. **Kolmogorov-Smirnov** (diagnostic)
   - Maximum absolute difference between two empirical CDFs

4. **CUSUM** (diagnostic)
   - Two-sided cumulative sum; reports the first index at which either
     side exceeds a threshold, as a hint of when a shift started
"""

import logging
import math
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
from scipy import stats

logger = logging.getLogger(__name__)

Distribution = Union[Sequence[float], Mapping[str, float]]


@dataclass
class CusumResult:
    """
    Outcome of a two-sided CUSUM scan.

    Attributes:
        change_index: First index where a cumulative sum crossed the
            threshold, or None if it never did
        direction: "increase", "decrease" or None
        upper: Final upper cumulative sum
        lower: Final lower cumulative sum
    """
    change_index: Optional[int]
    direction: Optional[str]
    upper: float
    lower: float

    @property
    def detected(self) -> bool:
        return self.change_index is not None


class DriftMetrics:
    """
    Static statistical helpers for drift detection.

    Example:
        >>> z = DriftMetrics.z_score_test(
        ...     baseline_mean=500.0, baseline_std=50.0, current_mean=650.0, n=40
        ... )
        >>> print(f"z = {z:.2f}")
        z = 18.97
        >>> DriftMetrics.psi([0.5, 0.5], [0.5, 0.5])
        0.0
    """

    N_BINS = 10

    # Floor applied to bin proportions before taking logs
    PSI_FLOOR = 0.0001

    @staticmethod
    def z_score_test(
        baseline_mean: float,
        baseline_std: float,
        current_mean: float,
        n: int,
    ) -> Optional[float]:
        """
        Z statistic of the current sample mean against the baseline.

        Args:
            baseline_mean: Reference mean
            baseline_std: Reference standard deviation
            current_mean: Mean of the current window
            n: Number of observations in the current window

        Returns:
            |z|, or None when the standard error is zero (constant baseline
            or empty sample) and the test cannot be evaluated
        """
        if n <= 0 or not baseline_std > 0:
            return None
        standard_error = baseline_std / math.sqrt(n)
        return abs(current_mean - baseline_mean) / standard_error

    @staticmethod
    def psi(
        baseline_proportions: Sequence[float],
        current_proportions: Sequence[float],
    ) -> float:
        """
        Population Stability Index between two aligned histograms.

        Args:
            baseline_proportions: Proportion of values in each bin (reference)
            current_proportions: Proportion of values in each bin (current)

        Returns:
            PSI value (non-negative). Identical inputs give exactly 0.

        Raises:
            ValueError: If the histograms have different bin counts
        """
        if len(baseline_proportions) != len(current_proportions):
            raise ValueError(
                f"Proportions must have same length "
                f"({len(baseline_proportions)} != {len(current_proportions)})"
            )

        floor = DriftMetrics.PSI_FLOOR
        psi_value = 0.0

        for baseline_p, current_p in zip(baseline_proportions, current_proportions):
            baseline_p = max(float(baseline_p), floor)
            current_p = max(float(current_p), floor)
            psi_value += (current_p - baseline_p) * math.log(current_p / baseline_p)

        return psi_value

    @staticmethod
    def psi_from_distributions(expected: Distribution, actual: Distribution) -> float:
        """
        PSI between two arbitrary discrete distributions.

        Accepts either aligned sequences of counts/proportions or mappings
        from category to count/proportion. Mappings are aligned on the union
        of their keys (missing categories count as zero). Both sides are
        normalized before comparison.

        Example:
            >>> DriftMetrics.psi_from_distributions(
            ...     {"greeting": 40, "booking": 60}, {"greeting": 40, "booking": 60}
            ... )
            0.0
        """
        if isinstance(expected, Mapping) or isinstance(actual, Mapping):
            if not (isinstance(expected, Mapping) and isinstance(actual, Mapping)):
                raise ValueError("Both distributions must be mappings or both sequences")
            categories = sorted(set(expected) | set(actual))
            expected_counts = [float(expected.get(c, 0.0)) for c in categories]
            actual_counts = [float(actual.get(c, 0.0)) for c in categories]
        else:
            expected_counts = [float(v) for v in expected]
            actual_counts = [float(v) for v in actual]

        return DriftMetrics.psi(
            _normalize(expected_counts),
            _normalize(actual_counts),
        )

    @staticmethod
    def equal_width_edges(min_value: float, max_value: float, n_bins: int = N_BINS) -> List[float]:
        """
        Bin edges for ``n_bins`` equal-width bins over [min_value, max_value].

        When min == max every edge equals that value (single degenerate bin).
        """
        if max_value <= min_value:
            return [float(min_value)] * (n_bins + 1)
        return [float(e) for e in np.linspace(min_value, max_value, n_bins + 1)]

    @staticmethod
    def histogram_proportions(
        values: Sequence[float],
        bin_edges: Sequence[float],
        weights: Optional[Sequence[float]] = None,
    ) -> List[float]:
        """
        Normalized histogram of ``values`` over equal-width ``bin_edges``.

        ``weights`` (one per value) let a reservoir sample stand in for the
        larger population it was drawn from.

        Values below the first edge land in the first bin and values above
        the last edge land in the last bin, so no mass is lost when the
        current window ranges wider than the baseline. With zero-width edges
        (degenerate baseline) everything at or below the edge goes to bin 0
        and everything above it to the last bin.
        """
        n_bins = len(bin_edges) - 1
        if n_bins < 1:
            raise ValueError("bin_edges must contain at least two edges")

        arr = np.asarray(values, dtype=float)
        if arr.size == 0:
            return [0.0] * n_bins

        low, high = float(bin_edges[0]), float(bin_edges[-1])
        width = (high - low) / n_bins
        if width <= 0:
            idx = np.where(arr > high, n_bins - 1, 0)
        else:
            idx = np.floor((arr - low) / width).astype(int)
            idx = np.clip(idx, 0, n_bins - 1)

        w = np.asarray(weights, dtype=float) if weights is not None else None
        counts = np.bincount(idx, weights=w, minlength=n_bins)
        if counts.sum() <= 0:
            return [0.0] * n_bins
        return (counts / counts.sum()).tolist()

    @staticmethod
    def ks_test(
        baseline_values: Sequence[float],
        current_values: Sequence[float],
    ) -> Tuple[float, float]:
        """
        Two-sample Kolmogorov-Smirnov test.

        Returns:
            (statistic, p_value). The statistic is the maximum absolute
            difference between the two empirical CDFs.

        Raises:
            ValueError: If either sample is empty
        """
        if len(baseline_values) == 0 or len(current_values) == 0:
            raise ValueError("KS test needs two non-empty samples")
        result = stats.ks_2samp(
            np.asarray(baseline_values, dtype=float),
            np.asarray(current_values, dtype=float),
        )
        return float(result.statistic), float(result.pvalue)

    @staticmethod
    def ks_statistic(
        baseline_values: Sequence[float],
        current_values: Sequence[float],
    ) -> float:
        """Maximum absolute difference between the two empirical CDFs."""
        return DriftMetrics.ks_test(baseline_values, current_values)[0]

    @staticmethod
    def cusum(
        values: Sequence[float],
        target: float,
        threshold: float,
        slack: Optional[float] = None,
    ) -> CusumResult:
        """
        Two-sided CUSUM change-point scan.

        S+(i) = max(0, S+(i-1) + (x_i - target - k))
        S-(i) = max(0, S-(i-1) + (target - x_i - k))

        Args:
            values: Observations in time order
            target: In-control mean
            threshold: Decision interval h
            slack: Allowance k (default 0.5 * |target|)

        Returns:
            CusumResult with the first index where S+ or S- exceeded h
        """
        k = 0.5 * abs(target) if slack is None else slack
        upper = 0.0
        lower = 0.0

        for i, x in enumerate(values):
            upper = max(0.0, upper + (x - target - k))
            lower = max(0.0, lower + (target - x - k))
            if upper > threshold or lower > threshold:
                direction = "increase" if upper > threshold else "decrease"
                return CusumResult(change_index=i, direction=direction, upper=upper, lower=lower)

        return CusumResult(change_index=None, direction=None, upper=upper, lower=lower)

    @staticmethod
    def normalized_score(statistic: float, threshold: float) -> float:
        """Map a test statistic to [0, 1]; the threshold itself maps to 0.5."""
        return min(statistic / (2 * threshold), 1.0)


def _normalize(counts: List[float]) -> List[float]:
    total = sum(counts)
    if total <= 0:
        raise ValueError("Distribution has no mass")
    return [c / total for c in counts]


class DriftStatus(str, Enum):
    """Outcome of evaluating one metric."""
    NO_DRIFT = "no_drift"
    DRIFT = "drift"
    INSUFFICIENT_DATA = "insufficient_data"
    CANNOT_EVALUATE = "cannot_evaluate"
    ERROR = "error"


@dataclass
class DriftResult:
    """
    Drift evaluation of one metric against its active baseline.

    Attributes:
        tenant_id: Owning tenant
        category: Metric category
        name: Metric name
        status: Outcome of the evaluation
        test: "z_score" or "psi" (None when no test ran)
        statistic: Value of the test statistic (|z| or PSI)
        threshold: Threshold the statistic was compared against
        drift_score: Statistic mapped to [0, 1]
        current_value: Pooled mean of the evaluated window
        baseline_value: Baseline mean
        sample_count: Observations in the evaluated window
        reason: Why no verdict was reached (insufficient data, errors)
        details: Diagnostics (KS, CUSUM, deviation percentage, baseline id)
        alert_id: Alert created or refreshed by this evaluation
        evaluated_at: When the evaluation ran
    """
    tenant_id: str
    category: str
    name: str
    status: DriftStatus
    test: Optional[str] = None
    statistic: Optional[float] = None
    threshold: Optional[float] = None
    drift_score: float = 0.0
    current_value: Optional[float] = None
    baseline_value: Optional[float] = None
    sample_count: int = 0
    reason: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)
    alert_id: Optional[str] = None
    evaluated_at: Optional[str] = None

    @property
    def is_drift(self) -> bool:
        return self.status == DriftStatus.DRIFT

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        data = asdict(self)
        data["status"] = self.status.value
        for key in ("statistic", "threshold", "drift_score", "current_value", "baseline_value"):
            value = data[key]
            if value is not None and not math.isfinite(value):
                data[key] = None
        return data
