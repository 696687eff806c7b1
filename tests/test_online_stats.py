"""Tests for streaming statistics used by flushes and aggregate merges."""

import math

import numpy as np
import pytest

from drift_monitor.drift.online_stats import (
    WelfordAccumulator,
    downsample,
    merge_reservoirs,
    merge_summaries,
)


class TestMergeSummaries:
    def test_two_equal_periods(self):
        n, mean, std = merge_summaries(10, 100.0, 5.0, 10, 120.0, 5.0)
        assert n == 20
        assert mean == pytest.approx(110.0)
        # within-period variance 25 plus between-period variance 100
        assert std == pytest.approx(math.sqrt(125.0))

    def test_matches_numpy_on_concatenation(self):
        a = [1.0, 2.0, 3.0, 4.0]
        b = [10.0, 12.0, 14.0]
        n, mean, std = merge_summaries(
            len(a), float(np.mean(a)), float(np.std(a)),
            len(b), float(np.mean(b)), float(np.std(b)),
        )
        combined = a + b
        assert n == 7
        assert mean == pytest.approx(np.mean(combined))
        assert std == pytest.approx(np.std(combined))

    def test_empty_side_is_identity(self):
        assert merge_summaries(0, 0.0, 0.0, 5, 3.0, 1.0) == (5, 3.0, 1.0)
        assert merge_summaries(5, 3.0, 1.0, 0, 0.0, 0.0) == (5, 3.0, 1.0)

    def test_order_does_not_matter(self):
        left = merge_summaries(10, 100.0, 5.0, 30, 120.0, 8.0)
        right = merge_summaries(30, 120.0, 8.0, 10, 100.0, 5.0)
        assert left[0] == right[0]
        assert left[1] == pytest.approx(right[1])
        assert left[2] == pytest.approx(right[2])


class TestWelfordAccumulator:
    def test_population_statistics(self):
        acc = WelfordAccumulator()
        acc.update_many([1, 2, 3, 4, 5])
        assert acc.count == 5
        assert acc.mean == pytest.approx(3.0)
        assert acc.std == pytest.approx(math.sqrt(2.0))
        assert acc.min_value == 1
        assert acc.max_value == 5

    def test_single_value_has_zero_variance(self):
        acc = WelfordAccumulator()
        acc.update_many([42.0])
        assert acc.variance == 0.0
        assert acc.min_value == acc.max_value == 42.0

    def test_merge_equals_single_pass(self):
        values = np.random.default_rng(0).normal(50, 10, 200)
        left, right, whole = WelfordAccumulator(), WelfordAccumulator(), WelfordAccumulator()
        left.update_many(values[:70])
        right.update_many(values[70:])
        whole.update_many(values)

        merged = left.merge(right)
        assert merged.count == whole.count
        assert merged.mean == pytest.approx(whole.mean)
        assert merged.std == pytest.approx(whole.std)
        assert merged.min_value == whole.min_value
        assert merged.max_value == whole.max_value


class TestReservoirs:
    def test_downsample_keeps_small_inputs(self):
        assert downsample([1, 2, 3], 10) == [1.0, 2.0, 3.0]

    def test_downsample_caps_size(self):
        rng = np.random.default_rng(1)
        sample = downsample(list(range(1000)), 50, rng)
        assert len(sample) == 50
        assert len(set(sample)) == 50

    def test_merge_is_proportional_to_population(self):
        rng = np.random.default_rng(2)
        a = [0.0] * 100
        b = [1.0] * 100
        merged = merge_reservoirs(a, 900, b, 100, 100, rng)
        assert len(merged) == 100
        assert merged.count(0.0) == 90
        assert merged.count(1.0) == 10

    def test_merge_tops_up_when_one_side_is_short(self):
        rng = np.random.default_rng(3)
        merged = merge_reservoirs([0.0] * 100, 100, [1.0] * 5, 900, 50, rng)
        assert len(merged) == 50
        assert merged.count(1.0) == 5
