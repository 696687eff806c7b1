"""Tests for alert creation, notification, lifecycle and queries."""

from datetime import timedelta

import pytest

from drift_monitor.alerts import AlertManager, AlertParams
from drift_monitor.config import AlertConfig
from drift_monitor.errors import AlertNotFoundError, InvalidTransitionError
from drift_monitor.models import AlertQuery, AlertSeverity, AlertStatus

TENANT = "tenant-a"


def make_params(name="response_latency_ms", severity="high", score=1.0, category="performance"):
    return AlertParams(
        tenant_id=TENANT,
        category=category,
        name=name,
        severity=severity,
        current_value=650.0,
        baseline_value=500.0,
        threshold=3.0,
        drift_score=score,
        message=f"{name} moved 30% from baseline",
        deviation_percentage=30.0,
    )


class TestCreate:
    def test_create_stores_active_alert(self, alert_manager, clock):
        alert_id = alert_manager.create_alert(make_params())

        alert = alert_manager.get(alert_id)
        assert alert.status == AlertStatus.ACTIVE
        assert alert.title == "Drift detected: response_latency_ms"
        assert alert.created_at == clock.now
        assert alert.deviation_percentage == 30.0

    def test_high_severity_is_notified(self, alert_manager):
        alert = alert_manager.get(alert_manager.create_alert(make_params()))

        assert len(alert.notifications_sent) == 1
        assert alert.notifications_sent[0]["channel"] == "log"
        assert alert.notifications_sent[0]["success"] is True

    def test_low_severity_is_not_notified(self, alert_manager):
        alert = alert_manager.get(alert_manager.create_alert(make_params(severity="low")))
        assert alert.notifications_sent == []

    def test_failing_notifier_is_recorded(self, store, clock):
        class Pager:
            channel = "pager"

            def __call__(self, alert):
                raise RuntimeError("pager offline")

        manager = AlertManager(store, notifiers=[Pager()], clock=clock)
        alert = manager.get(manager.create_alert(make_params()))

        record = alert.notifications_sent[0]
        assert record["channel"] == "pager"
        assert record["success"] is False
        assert record["error"] == "pager offline"

    def test_subscribers_see_new_alerts_only(self, alert_manager):
        seen = []
        unsubscribe = alert_manager.on_alert_created(seen.append)

        first = alert_manager.create_alert(make_params())
        alert_manager.create_alert(make_params(score=0.9))
        assert [a.id for a in seen] == [first]

        unsubscribe()
        alert_manager.create_alert(make_params(name="output_tokens"))
        assert len(seen) == 1

    def test_failing_subscriber_does_not_block_creation(self, alert_manager):
        def broken(alert):
            raise ValueError("boom")

        alert_manager.on_alert_created(broken)
        alert_id = alert_manager.create_alert(make_params())

        assert alert_manager.get(alert_id).status == AlertStatus.ACTIVE
        assert alert_manager.publisher.failures == 1

    def test_active_alert_is_refreshed(self, alert_manager, clock):
        first = alert_manager.create_alert(make_params(score=0.6))
        clock.advance(minutes=30)
        second = alert_manager.create_alert(make_params(severity="critical", score=0.9))

        assert first == second
        alert = alert_manager.get(first)
        assert alert.drift_score == 0.9
        assert alert.severity == AlertSeverity.CRITICAL
        assert alert.updated_at == clock.now
        assert alert_manager.query(TENANT)[1] == 1


class TestTransitions:
    def test_acknowledge_then_resolve(self, alert_manager, clock):
        alert_id = alert_manager.create_alert(make_params())

        acked = alert_manager.acknowledge_alert(alert_id, by="oncall")
        assert acked.status == AlertStatus.ACKNOWLEDGED
        assert acked.acknowledged_by == "oncall"
        assert acked.acknowledged_at == clock.now

        clock.advance(hours=2)
        resolved = alert_manager.resolve_alert(alert_id, note="rolled back", by="oncall")
        assert resolved.status == AlertStatus.RESOLVED
        assert resolved.resolution == "rolled back"
        assert resolved.resolved_at == clock.now

    def test_dismiss(self, alert_manager):
        alert_id = alert_manager.create_alert(make_params())
        dismissed = alert_manager.dismiss_alert(alert_id, reason="planned load test", by="sre")
        assert dismissed.status == AlertStatus.DISMISSED
        assert dismissed.resolution == "planned load test"

    @pytest.mark.parametrize("action", ["acknowledge", "dismiss"])
    def test_acknowledged_alert_can_only_be_resolved(self, alert_manager, action):
        alert_id = alert_manager.create_alert(make_params())
        alert_manager.acknowledge_alert(alert_id, by="oncall")

        with pytest.raises(InvalidTransitionError):
            if action == "acknowledge":
                alert_manager.acknowledge_alert(alert_id, by="someone-else")
            else:
                alert_manager.dismiss_alert(alert_id, reason="noise")

    def test_terminal_alerts_stay_terminal(self, alert_manager):
        alert_id = alert_manager.create_alert(make_params())
        alert_manager.resolve_alert(alert_id, note="fixed")

        with pytest.raises(InvalidTransitionError) as excinfo:
            alert_manager.resolve_alert(alert_id, note="again")
        assert excinfo.value.current == "resolved"

    def test_unknown_alert(self, alert_manager):
        with pytest.raises(AlertNotFoundError):
            alert_manager.acknowledge_alert("missing", by="oncall")

    def test_acknowledged_alert_frees_the_metric(self, alert_manager):
        first = alert_manager.create_alert(make_params())
        alert_manager.acknowledge_alert(first, by="oncall")

        second = alert_manager.create_alert(make_params())

        assert second != first
        assert alert_manager.get(first).status == AlertStatus.ACKNOWLEDGED
        assert alert_manager.query(TENANT)[1] == 2


@pytest.fixture(params=["memory", "redis"])
def either_store(request):
    return request.getfixturevalue("store" if request.param == "memory" else "redis_store")


def active_alerts_for_latency(store):
    alerts, _ = store.query_alerts(TENANT, AlertQuery(status=AlertStatus.ACTIVE))
    return [a for a in alerts if a.name == "response_latency_ms"]


class TestConcurrentUpdates:
    def test_stale_copy_cannot_reopen_resolved_alert(self, either_store, clock):
        manager = AlertManager(either_store, clock=clock)
        alert_id = manager.create_alert(make_params())

        stale = either_store.get_active_alert(TENANT, "performance", "response_latency_ms")
        manager.resolve_alert(alert_id, note="fixed")
        stale.drift_score = 0.1

        assert either_store.update_alert(stale, expected_status=AlertStatus.ACTIVE) is False
        assert manager.record_score(TENANT, "performance", "response_latency_ms", 0.1) is False
        assert manager.get(alert_id).status == AlertStatus.RESOLVED

        manager.create_alert(make_params())
        assert len(active_alerts_for_latency(either_store)) == 1

    def test_transition_loses_to_concurrent_resolve(self, either_store, clock, monkeypatch):
        manager = AlertManager(either_store, clock=clock)
        alert_id = manager.create_alert(make_params())
        stale = manager.get(alert_id)
        manager.resolve_alert(alert_id, note="fixed")

        real_get = manager.get
        reads = []

        def get_before_resolve(requested_id):
            reads.append(requested_id)
            return stale if len(reads) == 1 else real_get(requested_id)

        monkeypatch.setattr(manager, "get", get_before_resolve)

        with pytest.raises(InvalidTransitionError) as excinfo:
            manager.acknowledge_alert(alert_id, by="oncall")
        assert excinfo.value.current == "resolved"

        monkeypatch.undo()
        assert manager.get(alert_id).status == AlertStatus.RESOLVED
        assert either_store.get_active_alert(TENANT, "performance", "response_latency_ms") is None

    def test_score_refresh_keeps_alert_active(self, either_store, clock):
        manager = AlertManager(either_store, clock=clock)
        alert_id = manager.create_alert(make_params(score=0.9))
        clock.advance(minutes=5)

        assert manager.record_score(TENANT, "performance", "response_latency_ms", 0.2) is True

        alert = manager.get(alert_id)
        assert alert.drift_score == 0.2
        assert alert.updated_at == clock.now
        assert alert.status == AlertStatus.ACTIVE


class TestAutoResolve:
    def test_old_normalized_alert_is_resolved(self, alert_manager, clock):
        alert_id = alert_manager.create_alert(make_params())
        alert_manager.record_score(TENANT, "performance", "response_latency_ms", 0.1)
        clock.advance(hours=25)

        assert alert_manager.auto_resolve_normalized_alerts(TENANT) == 1

        alert = alert_manager.get(alert_id)
        assert alert.status == AlertStatus.RESOLVED
        assert alert.resolution == "Auto-resolved: Metric normalized"
        assert alert.resolved_by == "system"

    def test_recent_alert_is_kept(self, alert_manager, clock):
        alert_manager.create_alert(make_params(score=0.1))
        clock.advance(hours=5)
        assert alert_manager.auto_resolve_normalized_alerts(TENANT) == 0

    def test_still_drifting_alert_is_kept(self, alert_manager, clock):
        alert_manager.create_alert(make_params(score=0.8))
        clock.advance(hours=48)
        assert alert_manager.auto_resolve_normalized_alerts(TENANT) == 0

    def test_acknowledged_alerts_are_left_alone(self, alert_manager, clock):
        alert_id = alert_manager.create_alert(make_params(score=0.1))
        alert_manager.acknowledge_alert(alert_id, by="oncall")
        clock.advance(hours=48)
        assert alert_manager.auto_resolve_normalized_alerts(TENANT) == 0

    def test_thresholds_come_from_config(self, store, clock):
        manager = AlertManager(
            store, config=AlertConfig(auto_resolve_after_hours=1, auto_resolve_score=0.95), clock=clock
        )
        manager.create_alert(make_params(score=0.9))
        clock.advance(hours=2)
        assert manager.auto_resolve_normalized_alerts(TENANT) == 1

    def test_record_score_without_active_alert(self, alert_manager):
        assert alert_manager.record_score(TENANT, "performance", "response_latency_ms", 0.1) is False


class TestQueries:
    def test_filters_and_newest_first(self, alert_manager, clock):
        latency = alert_manager.create_alert(make_params())
        clock.advance(minutes=1)
        tokens = alert_manager.create_alert(make_params(name="output_tokens", severity="low"))
        clock.advance(minutes=1)
        topics = alert_manager.create_alert(
            make_params(name="topic_mix", category="input_distribution")
        )

        alerts, total = alert_manager.query(TENANT)
        assert total == 3
        assert [a.id for a in alerts] == [topics, tokens, latency]

        high, _ = alert_manager.query(TENANT, AlertQuery(severity="high"))
        assert {a.id for a in high} == {latency, topics}

        perf, _ = alert_manager.query(TENANT, AlertQuery(category="performance"))
        assert {a.id for a in perf} == {latency, tokens}

        assert alert_manager.query("tenant-b")[1] == 0

    def test_paging(self, alert_manager, clock):
        for i in range(5):
            alert_manager.create_alert(make_params(name=f"metric_{i}"))
            clock.advance(minutes=1)

        page, total = alert_manager.query(TENANT, AlertQuery(limit=2, offset=2))
        assert total == 5
        assert [a.name for a in page] == ["metric_2", "metric_1"]

    def test_stats(self, alert_manager, clock):
        resolved_id = alert_manager.create_alert(make_params())
        alert_manager.create_alert(make_params(name="output_tokens", severity="low"))
        clock.advance(hours=3)
        alert_manager.resolve_alert(resolved_id, note="fixed")

        stats = alert_manager.get_stats(TENANT)

        assert stats["total"] == 2
        assert stats["active"] == 1
        assert stats["by_severity"] == {"high": 1, "low": 1}
        assert stats["by_status"] == {"resolved": 1, "active": 1}
        assert stats["mean_time_to_resolution_hours"] == pytest.approx(3.0)

    def test_stats_when_empty(self, alert_manager):
        stats = alert_manager.get_stats(TENANT)
        assert stats["total"] == 0
        assert stats["mean_time_to_resolution_hours"] is None

    def test_cleanup_removes_old_terminal_alerts(self, alert_manager, clock):
        old_resolved = alert_manager.create_alert(make_params())
        alert_manager.resolve_alert(old_resolved, note="fixed")
        old_active = alert_manager.create_alert(make_params(name="output_tokens"))
        clock.advance(days=100)
        recent = alert_manager.create_alert(make_params(name="topic_mix"))
        alert_manager.dismiss_alert(recent, reason="noise")

        assert alert_manager.cleanup(TENANT, retention_days=90) == 1

        with pytest.raises(AlertNotFoundError):
            alert_manager.get(old_resolved)
        assert alert_manager.get(old_active).status == AlertStatus.ACTIVE
        assert alert_manager.get(recent).status == AlertStatus.DISMISSED

    def test_since_filter(self, alert_manager, clock):
        alert_manager.create_alert(make_params())
        clock.advance(days=2)
        recent = alert_manager.create_alert(make_params(name="output_tokens"))

        alerts, total = alert_manager.query(TENANT, AlertQuery(since=clock.now - timedelta(days=1)))
        assert total == 1
        assert alerts[0].id == recent
