"""Tests for the statistical drift tests."""

import math

import numpy as np
import pytest

from drift_monitor.drift.metrics import DriftMetrics, DriftResult, DriftStatus


class TestZScore:
    def test_latency_shift(self):
        z = DriftMetrics.z_score_test(
            baseline_mean=500.0, baseline_std=50.0, current_mean=650.0, n=40
        )
        assert z == pytest.approx(18.97, abs=0.01)

    def test_symmetric(self):
        up = DriftMetrics.z_score_test(100.0, 10.0, 110.0, 25)
        down = DriftMetrics.z_score_test(100.0, 10.0, 90.0, 25)
        assert up == pytest.approx(5.0)
        assert down == pytest.approx(5.0)

    @pytest.mark.parametrize("std,n", [(0.0, 40), (50.0, 0)])
    def test_cannot_evaluate(self, std, n):
        assert DriftMetrics.z_score_test(500.0, std, 650.0, n) is None


class TestPSI:
    def test_identical_histograms_are_zero(self):
        props = [0.1] * 10
        assert DriftMetrics.psi(props, props) == 0.0

    def test_shift_exceeds_threshold(self):
        baseline = [0.25, 0.25, 0.25, 0.25]
        current = [0.05, 0.05, 0.15, 0.75]
        assert DriftMetrics.psi(baseline, current) > 0.2

    def test_grows_as_mass_moves_out_of_a_bin(self):
        baseline = [0.25, 0.25, 0.25, 0.25]
        values = []
        for moved in (0.0, 0.05, 0.1, 0.15, 0.2, 0.24):
            current = [0.25 - moved, 0.25, 0.25, 0.25 + moved]
            values.append(DriftMetrics.psi(baseline, current))

        assert values[0] == 0.0
        assert all(later > earlier for earlier, later in zip(values, values[1:]))

    def test_empty_bins_are_floored(self):
        value = DriftMetrics.psi([0.5, 0.5, 0.0], [0.0, 0.5, 0.5])
        assert math.isfinite(value)
        assert value > 0

    def test_length_mismatch(self):
        with pytest.raises(ValueError):
            DriftMetrics.psi([0.5, 0.5], [1.0])

    def test_from_mappings_aligns_keys(self):
        same = DriftMetrics.psi_from_distributions(
            {"greeting": 40, "booking": 60}, {"booking": 6, "greeting": 4}
        )
        assert same == pytest.approx(0.0)

        shifted = DriftMetrics.psi_from_distributions(
            {"greeting": 50, "booking": 50}, {"greeting": 50, "booking": 10, "refund": 40}
        )
        assert shifted > 0.2

    def test_from_mixed_types_rejected(self):
        with pytest.raises(ValueError):
            DriftMetrics.psi_from_distributions({"a": 1}, [1])


class TestHistogram:
    def test_equal_width_edges(self):
        edges = DriftMetrics.equal_width_edges(0.0, 10.0, 10)
        assert len(edges) == 11
        assert edges[0] == 0.0
        assert edges[-1] == 10.0

    def test_degenerate_edges(self):
        assert DriftMetrics.equal_width_edges(5.0, 5.0, 10) == [5.0] * 11

    def test_proportions_sum_to_one(self):
        values = np.arange(100)
        edges = DriftMetrics.equal_width_edges(0, 99, 10)
        props = DriftMetrics.histogram_proportions(values, edges)
        assert sum(props) == pytest.approx(1.0)
        assert props == pytest.approx([0.1] * 10)

    def test_out_of_range_values_are_clipped(self):
        edges = DriftMetrics.equal_width_edges(0, 10, 10)
        props = DriftMetrics.histogram_proportions([-5, 50], edges)
        assert props[0] == 0.5
        assert props[-1] == 0.5

    def test_degenerate_bins(self):
        edges = [5.0] * 11
        props = DriftMetrics.histogram_proportions([5.0, 5.0, 7.0, 1.0], edges)
        assert props[0] == 0.75
        assert props[-1] == 0.25

    def test_weights(self):
        edges = DriftMetrics.equal_width_edges(0, 10, 2)
        props = DriftMetrics.histogram_proportions([1.0, 9.0], edges, weights=[3.0, 1.0])
        assert props == pytest.approx([0.75, 0.25])

    def test_empty_values(self):
        edges = DriftMetrics.equal_width_edges(0, 10, 10)
        assert DriftMetrics.histogram_proportions([], edges) == [0.0] * 10


class TestKS:
    def test_same_sample(self):
        values = list(range(50))
        statistic, p_value = DriftMetrics.ks_test(values, values)
        assert statistic == 0.0
        assert p_value == pytest.approx(1.0)

    def test_disjoint_samples(self):
        assert DriftMetrics.ks_statistic([1, 2, 3], [10, 11, 12]) == pytest.approx(1.0)

    def test_empty_sample(self):
        with pytest.raises(ValueError):
            DriftMetrics.ks_test([], [1.0])


class TestCusum:
    def test_detects_upward_shift(self):
        values = [10.0] * 10 + [20.0] * 10
        result = DriftMetrics.cusum(values, target=10.0, threshold=20.0, slack=1.0)
        assert result.detected
        assert result.direction == "increase"
        # 9 per step after the shift: 9, 18, 27 crosses 20 at the third shifted value
        assert result.change_index == 12

    def test_detects_downward_shift(self):
        values = [10.0] * 5 + [0.0] * 5
        result = DriftMetrics.cusum(values, target=10.0, threshold=15.0, slack=1.0)
        assert result.direction == "decrease"

    def test_stable_series(self):
        result = DriftMetrics.cusum([10.0, 10.5, 9.5, 10.0], target=10.0, threshold=5.0)
        assert not result.detected
        assert result.change_index is None


def test_normalized_score():
    assert DriftMetrics.normalized_score(3.0, 3.0) == 0.5
    assert DriftMetrics.normalized_score(18.97, 3.0) == 1.0
    assert DriftMetrics.normalized_score(0.0, 0.2) == 0.0


def test_drift_result_to_dict_drops_non_finite():
    result = DriftResult(
        tenant_id="t",
        category="performance",
        name="latency",
        status=DriftStatus.CANNOT_EVALUATE,
        statistic=float("inf"),
        current_value=12.0,
    )
    data = result.to_dict()
    assert data["status"] == "cannot_evaluate"
    assert data["statistic"] is None
    assert data["current_value"] == 12.0
    assert not result.is_drift
