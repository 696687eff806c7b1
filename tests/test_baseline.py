"""Tests for baseline creation, versioning and history-based baselines."""

import math

import pytest

from drift_monitor.errors import BaselineNotFoundError, DegenerateInputError, InsufficientDataError
from drift_monitor.models import BaselineStatus

TENANT = "tenant-a"
LATENCY = ("performance", "response_latency_ms")


def test_create_computes_statistics_and_histogram(baselines):
    baseline = baselines.create(TENANT, *LATENCY, values=[450.0, 550.0] * 20, window_days=7)

    assert baseline.mean == pytest.approx(500.0)
    assert baseline.std == pytest.approx(50.0)
    assert baseline.min == 450.0
    assert baseline.max == 550.0
    assert baseline.sample_count == 40
    assert len(baseline.bin_edges) == len(baseline.proportions) + 1 == 11
    assert sum(baseline.proportions) == pytest.approx(1.0)
    assert baseline.proportions[0] == pytest.approx(0.5)
    assert baseline.proportions[-1] == pytest.approx(0.5)
    assert baseline.status == BaselineStatus.ACTIVE
    assert baselines.get_active(TENANT, *LATENCY).id == baseline.id


def test_constant_values_collapse_to_one_bin(baselines):
    baseline = baselines.create(TENANT, *LATENCY, values=[3.0] * 25, window_days=1)
    assert baseline.std == 0.0
    assert baseline.proportions[0] == 1.0
    assert sum(baseline.proportions[1:]) == 0.0


def test_empty_values_rejected(baselines):
    with pytest.raises(DegenerateInputError):
        baselines.create(TENANT, *LATENCY, values=[], window_days=7)


def test_non_finite_values_dropped(baselines):
    baseline = baselines.create(
        TENANT, *LATENCY, values=[1.0, float("nan"), 3.0, float("inf")], window_days=7
    )
    assert baseline.sample_count == 2
    assert baseline.mean == pytest.approx(2.0)


def test_new_baseline_supersedes_previous(baselines):
    first = baselines.create(TENANT, *LATENCY, values=[1.0, 2.0, 3.0], window_days=7)
    second = baselines.create(TENANT, *LATENCY, values=[4.0, 5.0, 6.0], window_days=7)

    archived = baselines.get(first.id)
    assert archived.status == BaselineStatus.ARCHIVED
    assert archived.superseded_by == second.id

    active = baselines.list_active(TENANT)
    assert [b.id for b in active] == [second.id]
    assert [b.id for b in baselines.list_history(TENANT, *LATENCY)] == [first.id, second.id]


def test_baselines_are_scoped_per_metric(baselines):
    latency = baselines.create(TENANT, *LATENCY, values=[1.0, 2.0], window_days=7)
    tokens = baselines.create(TENANT, "performance", "output_tokens", values=[100.0], window_days=7)
    other_tenant = baselines.create("tenant-b", *LATENCY, values=[9.0], window_days=7)

    assert {b.id for b in baselines.list_active(TENANT)} == {latency.id, tokens.id}
    assert baselines.get_active("tenant-b", *LATENCY).id == other_tenant.id


def test_update_replace(baselines):
    original = baselines.create(TENANT, *LATENCY, values=[10.0] * 10, window_days=7)
    updated = baselines.update(original.id, [20.0, 30.0], strategy="replace")

    assert updated.id != original.id
    assert updated.mean == pytest.approx(25.0)
    assert updated.sample_count == 2
    assert updated.metadata["previous_baseline_id"] == original.id
    assert updated.metadata["update_strategy"] == "replace"
    assert baselines.get(original.id).status == BaselineStatus.ARCHIVED


def test_update_merge_blends_histogram_values(baselines):
    original = baselines.create(TENANT, *LATENCY, values=[0.0, 10.0] * 5, window_days=7)
    updated = baselines.update(original.id, [10.0] * 10, strategy="merge")

    # 10 rebuilt values (midpoints 0.5 and 9.5) + 10 new values, capped at 2 * 10
    assert updated.sample_count == 20
    assert updated.mean == pytest.approx((5 * 0.5 + 5 * 9.5 + 10 * 10.0) / 20)
    assert updated.metadata["update_strategy"] == "merge"


def test_update_unknown_strategy(baselines):
    original = baselines.create(TENANT, *LATENCY, values=[1.0], window_days=7)
    with pytest.raises(ValueError):
        baselines.update(original.id, [2.0], strategy="average")


def test_update_missing_baseline(baselines):
    with pytest.raises(BaselineNotFoundError):
        baselines.update("does-not-exist", [1.0])


def test_archive(baselines):
    baseline = baselines.create(TENANT, *LATENCY, values=[1.0, 2.0], window_days=7)
    assert baselines.archive(baseline.id) is True
    assert baselines.get_active(TENANT, *LATENCY) is None
    assert baselines.archive(baseline.id) is False


def test_create_from_history(baselines, record_period):
    record_period(TENANT, *LATENCY, [100.0, 200.0] * 10)
    record_period(TENANT, *LATENCY, [300.0] * 20)

    baseline = baselines.create_from_history(TENANT, *LATENCY, window_days=7)

    assert baseline.sample_count == 40
    assert baseline.mean == pytest.approx(225.0)
    expected_std = math.sqrt((10 * 125.0 ** 2 + 10 * 25.0 ** 2 + 20 * 75.0 ** 2) / 40)
    assert baseline.std == pytest.approx(expected_std)
    assert baseline.min == 100.0
    assert baseline.max == 300.0
    assert baseline.metadata["source"] == "history"
    assert sum(baseline.proportions) == pytest.approx(1.0)
    assert baseline.proportions[-1] == pytest.approx(0.5)


def test_create_from_history_needs_samples(baselines, record_period):
    record_period(TENANT, *LATENCY, [1.0] * 5)
    with pytest.raises(InsufficientDataError):
        baselines.create_from_history(TENANT, *LATENCY, window_days=7)
