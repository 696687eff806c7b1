"""
Streaming statistics for metric aggregation.

Flushes fold raw observations into per-period summaries, and later flushes
for the same period must merge into those summaries rather than replace
them. Everything here is commutative and associative, so the order and
batching of flushes does not change the final row.

Welford's Algorithm:
===================

For each new value x:
    n += 1
    delta = x - mean
    mean += delta / n
    M2 += delta * (x - mean)

Variance = M2 / n (population variance, which is what aggregates store).

Merging summaries:
=================

Two summaries (n1, mu1, sigma1) and (n2, mu2, sigma2) combine into:

    n     = n1 + n2
    mu    = (n1*mu1 + n2*mu2) / n
    var   = [n1*(sigma1^2 + (mu1-mu)^2) + n2*(sigma2^2 + (mu2-mu)^2)] / n

which is the same quantity as Chan et al.'s parallel M2 update used by
``WelfordAccumulator.merge``.
"""

import math
from dataclasses import dataclass, replace
from typing import Iterable, List, Optional, Sequence, Tuple

import numpy as np


def merge_summaries(
    n1: int, mean1: float, std1: float,
    n2: int, mean2: float, std2: float,
) -> Tuple[int, float, float]:
    """
    Combine two (count, mean, population std) summaries.

    Example:
        >>> merge_summaries(10, 100.0, 5.0, 10, 120.0, 5.0)
        (20, 110.0, 11.180339887498949)
    """
    if n1 <= 0:
        return n2, mean2, std2
    if n2 <= 0:
        return n1, mean1, std1

    n = n1 + n2
    mean = (n1 * mean1 + n2 * mean2) / n
    variance = (
        n1 * (std1 ** 2 + (mean1 - mean) ** 2)
        + n2 * (std2 ** 2 + (mean2 - mean) ** 2)
    ) / n
    return n, mean, math.sqrt(max(variance, 0.0))


@dataclass
class WelfordAccumulator:
    """
    Running (count, mean, M2, min, max) of one metric.

    ``update_many`` summarizes a whole flush group with numpy and folds it in
    through ``merge``, which lands on the same numbers as one Welford step
    per value without a Python-level loop.

    Example:
        >>> acc = WelfordAccumulator()
        >>> acc.update_many([1, 2, 3, 4, 5])
        >>> acc.count, acc.mean, round(acc.std, 3)
        (5, 3.0, 1.414)
    """
    count: int = 0
    mean: float = 0.0
    m2: float = 0.0
    min_value: float = math.inf
    max_value: float = -math.inf

    def update_many(self, values: Iterable[float]) -> None:
        arr = np.asarray(list(values), dtype=float)
        if arr.size == 0:
            return
        batch_mean = float(arr.mean())
        batch = WelfordAccumulator(
            count=int(arr.size),
            mean=batch_mean,
            m2=float(np.square(arr - batch_mean).sum()),
            min_value=float(arr.min()),
            max_value=float(arr.max()),
        )
        merged = self.merge(batch)
        self.count, self.mean, self.m2 = merged.count, merged.mean, merged.m2
        self.min_value, self.max_value = merged.min_value, merged.max_value

    @property
    def variance(self) -> float:
        """Population variance (M2 / n); zero below two values."""
        if self.count < 2:
            return 0.0
        return max(self.m2 / self.count, 0.0)

    @property
    def std(self) -> float:
        return math.sqrt(self.variance)

    def merge(self, other: "WelfordAccumulator") -> "WelfordAccumulator":
        """Pairwise (Chan et al.) combination; neither input is modified."""
        if other.count == 0:
            return replace(self)
        if self.count == 0:
            return replace(other)

        n = self.count + other.count
        delta = other.mean - self.mean
        return WelfordAccumulator(
            count=n,
            mean=self.mean + delta * other.count / n,
            m2=self.m2 + other.m2 + delta ** 2 * self.count * other.count / n,
            min_value=min(self.min_value, other.min_value),
            max_value=max(self.max_value, other.max_value),
        )


def downsample(
    values: Sequence[float],
    capacity: int,
    rng: Optional[np.random.Generator] = None,
) -> List[float]:
    """Uniform sample of at most ``capacity`` values (without replacement)."""
    if len(values) <= capacity:
        return [float(v) for v in values]
    rng = rng or np.random.default_rng()
    idx = rng.choice(len(values), size=capacity, replace=False)
    return [float(values[i]) for i in sorted(idx)]


def merge_reservoirs(
    samples_a: Sequence[float],
    count_a: int,
    samples_b: Sequence[float],
    count_b: int,
    capacity: int,
    rng: Optional[np.random.Generator] = None,
) -> List[float]:
    """
    Merge two uniform reservoirs drawn from populations of size count_a and count_b.

    Each side contributes in proportion to the population it represents, so
    the result stays an (approximately) uniform sample of the union.
    """
    if len(samples_a) + len(samples_b) <= capacity:
        return [float(v) for v in samples_a] + [float(v) for v in samples_b]

    total = max(count_a + count_b, 1)
    take_a = int(round(capacity * count_a / total))
    take_a = min(take_a, len(samples_a))
    take_b = min(capacity - take_a, len(samples_b))
    # Top up from side A if side B ran short
    take_a = min(capacity - take_b, len(samples_a))

    rng = rng or np.random.default_rng()
    return downsample(samples_a, take_a, rng) + downsample(samples_b, take_b, rng)
