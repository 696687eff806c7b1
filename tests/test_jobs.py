"""Tests for the scheduled detection cycle."""

import threading

import pytest

from drift_monitor.config import MonitoringConfig
from drift_monitor.drift import DriftStatus
from drift_monitor.jobs import DetectionJob

TENANT = "tenant-a"
LATENCY = ("performance", "response_latency_ms")


@pytest.fixture
def job(detector, alert_manager, ingestor, clock):
    job = DetectionJob(detector, alert_manager, ingestor, MonitoringConfig(), clock=clock)
    yield job
    job.stop()


def test_cycle_covers_every_tenant_with_baselines(job, baselines, record_period, detector):
    baselines.create(TENANT, *LATENCY, values=[450.0, 550.0] * 50, window_days=7)
    baselines.create("tenant-b", *LATENCY, values=[450.0, 550.0] * 50, window_days=7)
    record_period(TENANT, *LATENCY, [650.0] * 40)

    result = job.run_once()

    assert result.tenants[TENANT] == {"status": "ok", "metrics": 1, "drift": 1, "auto_resolved": 0}
    assert result.tenants["tenant-b"]["status"] == "ok"
    assert result.tenants["tenant-b"]["drift"] == 0
    assert detector.get_last_report(TENANT).results[0].status == DriftStatus.DRIFT
    assert job.get_status()["last_run"]["tenants"][TENANT]["status"] == "ok"


def test_cycle_auto_resolves_normalized_alerts(job, baselines, record_period, alert_manager, clock):
    baselines.create(TENANT, *LATENCY, values=[450.0, 550.0] * 50, window_days=7)
    record_period(TENANT, *LATENCY, [650.0] * 40)
    job.run_once()

    clock.advance(hours=24)
    record_period(TENANT, *LATENCY, [500.0] * 40)
    result = job.run_once()

    assert result.tenants[TENANT]["auto_resolved"] == 1
    assert alert_manager.query(TENANT, None)[0][0].resolved_by == "system"


def test_failing_tenant_is_reported(detector, alert_manager, ingestor, clock, baselines):
    baselines.create(TENANT, *LATENCY, values=[1.0, 2.0], window_days=7)

    def explode(tenant_id):
        raise RuntimeError("store down")

    detector.detect_all = explode
    job = DetectionJob(detector, alert_manager, ingestor, clock=clock)
    try:
        result = job.run_once()
    finally:
        job.stop()

    assert result.tenants[TENANT] == {"status": "error", "error": "store down"}


def test_slow_tenant_times_out(detector, alert_manager, ingestor, clock):
    release = threading.Event()

    def hang(tenant_id):
        release.wait(5)
        return []

    detector.detect_all = hang
    config = MonitoringConfig(detection_timeout_seconds=0.05)
    job = DetectionJob(detector, alert_manager, ingestor, config, clock=clock)
    try:
        result = job.run_once(tenant_ids=["slow-tenant"])
    finally:
        release.set()
        job.stop()

    assert result.tenants["slow-tenant"] == {"status": "timeout"}


def test_retention_cleanup_runs_once_a_day(job, baselines, record_period, clock):
    baselines.create(TENANT, *LATENCY, values=[1.0, 2.0], window_days=7)
    record_period(TENANT, *LATENCY, [1.0])

    first = job.run_once()
    assert first.cleanup == {"aggregates": 0, "alerts": 0}

    clock.advance(hours=1)
    assert job.run_once().cleanup is None

    clock.advance(days=100)
    third = job.run_once()
    assert third.cleanup == {"aggregates": 1, "alerts": 0}


def test_start_and_stop(detector, alert_manager, ingestor, clock):
    config = MonitoringConfig(detection_interval_seconds=60)
    job = DetectionJob(detector, alert_manager, ingestor, config, clock=clock)
    job.start()
    assert job.get_status()["running"] is True
    job.stop(timeout=1)
    assert job.running is False


def test_cleanup_reaches_tenants_without_baselines(job, store, record_period, clock):
    record_period("tenant-x", *LATENCY, [1.0, 2.0])
    record_period("_system", "performance", "ingestor_dropped_observations", [3.0])
    assert store.list_baseline_tenants() == []

    clock.advance(days=200)
    result = job.run_once()

    assert result.tenants == {}
    assert result.cleanup == {"aggregates": 2, "alerts": 0}
    assert store.query_aggregates("tenant-x") == []
    assert store.query_aggregates("_system") == []
