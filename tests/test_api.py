"""
Tests for the HTTP API.

The service is installed on the module before the client is created, so the
lifespan handler reuses it instead of building one from the environment, and
no background threads are started.
"""

import pytest
from fastapi.testclient import TestClient

from drift_monitor.store import InMemoryMetricStore
from serving import api
from serving.monitoring_service import MonitoringService

TENANT = "tenant-a"
LATENCY = {"tenant_id": TENANT, "category": "performance", "name": "response_latency_ms"}


@pytest.fixture
def service(clock):
    service = MonitoringService(store=InMemoryMetricStore(seed=7), clock=clock)
    api.monitoring_service = service
    yield service
    api.monitoring_service = None


@pytest.fixture
def client(service):
    return TestClient(api.app)


def record_hour(client, clock, values):
    observations = [{**LATENCY, "value": v} for v in values]
    response = client.post("/metrics/batch", json={"observations": observations})
    assert response.status_code == 202
    assert client.post("/metrics/flush").json()["retried"] == 0
    clock.advance(hours=1)


def create_latency_baseline(client):
    response = client.post(
        "/baselines", json={**LATENCY, "values": [450.0, 550.0] * 50, "window_days": 7}
    )
    assert response.status_code == 201
    return response.json()


class TestMetrics:
    def test_record_single_observation(self, client, service):
        response = client.post("/metrics", json={**LATENCY, "value": 512.0, "conversation_id": "c-1"})

        assert response.status_code == 202
        assert response.json() == {"accepted": 1, "rejected": 0}
        assert service.ingestor.buffered() == 1

    def test_unknown_category_is_rejected(self, client):
        response = client.post(
            "/metrics", json={"tenant_id": TENANT, "category": "vibes", "name": "x", "value": 1.0}
        )
        assert response.status_code == 422

    def test_empty_batch_is_rejected(self, client):
        assert client.post("/metrics/batch", json={"observations": []}).status_code == 422

    def test_flush_and_aggregates(self, client, clock):
        record_hour(client, clock, [100.0, 200.0, 300.0])

        response = client.get(
            "/metrics/aggregates", params={"tenant_id": TENANT, "category": "performance"}
        )

        assert response.status_code == 200
        body = response.json()
        assert body["category"] == "performance"
        latency = body["metrics"][0]
        assert latency["name"] == "response_latency_ms"
        assert latency["count"] == 3
        assert latency["mean"] == pytest.approx(200.0)

    def test_timeseries(self, client, clock):
        record_hour(client, clock, [10.0, 10.0])
        record_hour(client, clock, [20.0, 20.0])

        response = client.get(
            "/metrics/timeseries",
            params={**LATENCY, "granularity": "day"},
        )

        assert response.status_code == 200
        points = response.json()["points"]
        assert len(points) == 1
        assert points[0]["value"] == pytest.approx(15.0)
        assert points[0]["count"] == 4

    def test_ingestor_stats(self, client):
        client.post("/metrics", json={**LATENCY, "value": 1.0})
        stats = client.get("/metrics/ingestor").json()
        assert stats["buffered"] == 1
        assert stats["recorded"] == 1


class TestBaselines:
    def test_create_and_fetch_active(self, client):
        created = create_latency_baseline(client)
        assert created["mean"] == pytest.approx(500.0)
        assert created["status"] == "active"

        active = client.get("/baselines/active", params=LATENCY)
        assert active.status_code == 200
        assert active.json()["id"] == created["id"]

        listing = client.get("/baselines", params={"tenant_id": TENANT}).json()
        assert listing["count"] == 1

    def test_empty_values_rejected(self, client):
        response = client.post("/baselines", json={**LATENCY, "values": []})
        assert response.status_code == 422

    def test_update_and_archive(self, client):
        created = create_latency_baseline(client)

        updated = client.put(f"/baselines/{created['id']}", json={"values": [600.0, 700.0]})
        assert updated.status_code == 200
        new_id = updated.json()["id"]
        assert new_id != created["id"]

        archived = client.post(f"/baselines/{new_id}/archive")
        assert archived.json() == {"baseline_id": new_id, "archived": True}
        assert client.get("/baselines/active", params=LATENCY).status_code == 404

    def test_update_unknown_baseline(self, client):
        response = client.put("/baselines/missing", json={"values": [1.0]})
        assert response.status_code == 404
        assert response.json()["error"] == "Baseline not found"

    def test_from_history_without_data(self, client):
        response = client.post("/baselines/from-history", json={**LATENCY, "window_days": 7})
        assert response.status_code == 422
        assert response.json()["error"] == "Insufficient data"

    def test_from_history(self, client, clock):
        record_hour(client, clock, [100.0, 200.0] * 10)

        response = client.post("/baselines/from-history", json={**LATENCY, "window_days": 7})

        assert response.status_code == 201
        assert response.json()["sample_count"] == 20
        assert response.json()["metadata"]["source"] == "history"


class TestDriftAndAlerts:
    def test_detect_raises_alert_and_workflow(self, client, clock):
        create_latency_baseline(client)
        record_hour(client, clock, [650.0] * 40)

        result = client.post("/drift/detect", json=LATENCY).json()
        assert result["status"] == "drift"
        assert result["test"] == "z_score"
        alert_id = result["alert_id"]

        alerts = client.get("/alerts", params={"tenant_id": TENANT, "status": "active"}).json()
        assert alerts["total"] == 1
        assert alerts["alerts"][0]["id"] == alert_id

        acked = client.post(f"/alerts/{alert_id}/acknowledge", json={"by": "oncall"})
        assert acked.status_code == 200
        assert acked.json()["status"] == "acknowledged"

        again = client.post(f"/alerts/{alert_id}/acknowledge", json={"by": "oncall"})
        assert again.status_code == 409
        assert again.json()["error"] == "Invalid alert transition"

        resolved = client.post(f"/alerts/{alert_id}/resolve", json={"note": "rolled back"})
        assert resolved.json()["status"] == "resolved"

        stats = client.get("/alerts/stats", params={"tenant_id": TENANT}).json()
        assert stats["total"] == 1
        assert stats["by_status"] == {"resolved": 1}

    def test_threshold_overrides(self, client, clock):
        create_latency_baseline(client)
        record_hour(client, clock, [650.0] * 40)

        result = client.post("/drift/detect", json={**LATENCY, "min_samples": 100}).json()
        assert result["status"] == "insufficient_data"

        invalid = client.post("/drift/detect", json={**LATENCY, "z_score_threshold": -1})
        assert invalid.status_code == 422

    def test_detect_without_baseline(self, client):
        result = client.post("/drift/detect", json=LATENCY).json()
        assert result["status"] == "insufficient_data"
        assert result["reason"] == "no baseline"

    def test_detect_all_and_report(self, client, clock):
        create_latency_baseline(client)
        record_hour(client, clock, [650.0] * 40)

        assert client.get("/drift/report", params={"tenant_id": TENANT}).status_code == 404

        report = client.post("/drift/detect-all", json={"tenant_id": TENANT}).json()
        assert report["status"] == "drift"
        assert report["drifting_metrics"] == ["performance/response_latency_ms"]

        last = client.get("/drift/report", params={"tenant_id": TENANT})
        assert last.status_code == 200
        assert last.json()["num_metrics"] == 1

        history = client.get("/drift/history", params={"tenant_id": TENANT}).json()
        assert history["count"] == 1

    def test_unknown_alert(self, client):
        response = client.post("/alerts/missing/dismiss", json={"reason": "noise"})
        assert response.status_code == 404
        assert response.json()["error"] == "Alert not found"

    def test_blank_dismiss_reason(self, client):
        response = client.post("/alerts/anything/dismiss", json={"reason": "   "})
        assert response.status_code == 422

    def test_auto_resolve_endpoint(self, client):
        response = client.post("/alerts/auto-resolve", params={"tenant_id": TENANT})
        assert response.json() == {"tenant_id": TENANT, "resolved": 0}


class TestServiceEndpoints:
    def test_health_and_ready(self, client):
        health = client.get("/health")
        assert health.status_code == 200
        assert health.json()["status"] == "healthy"
        assert health.json()["checks"]["detection_job"] == "stopped"

        assert client.get("/ready").json() == {"status": "ready"}

    def test_info(self, client):
        info = client.get("/info").json()
        assert info["store"]["backend"] == "InMemoryMetricStore"
        assert info["alerts"]["notifiers"] == ["log"]

    def test_root(self, client):
        assert client.get("/").json()["message"] == "Drift Monitor API"

    def test_uninitialized_service(self):
        api.monitoring_service = None
        client = TestClient(api.app)

        assert client.get("/health").status_code == 503
        assert client.get("/ready").status_code == 503
        assert client.post("/metrics", json={**LATENCY, "value": 1.0}).status_code == 503
