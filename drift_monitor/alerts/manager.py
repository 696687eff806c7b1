"""
Alert lifecycle management.

Alerts move through a small state machine:

              acknowledge            resolve
    active ──────────────▶ acknowledged ──────────▶ resolved
       │                                              ▲
       ├──────────────────── resolve ─────────────────┘
       │
       └──────────────────── dismiss ─────────────────▶ dismissed

Resolved and dismissed are terminal. Any other transition raises
``InvalidTransitionError``.

Design Decisions:

1. **One active alert per metric**: repeated drift on the same metric
   refreshes the open alert (latest value, score, severity) instead of
   paging again. Once the alert leaves ``active`` the next drift opens a
   new one.

2. **Notify on creation only**: the notification hook runs for newly
   created alerts of the configured severities (high/critical by default)
   and each attempt is recorded in ``notifications_sent``.

3. **Heuristic auto-resolution**: an active alert older than 24h whose
   latest drift score fell below 0.3 is resolved automatically. The detector
   keeps the score current on every non-drifting evaluation.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple

import pandas as pd

from ..config import AlertConfig
from ..errors import AlertNotFoundError, InvalidTransitionError
from ..models import (
    Alert,
    AlertQuery,
    AlertSeverity,
    AlertStatus,
    AlertType,
    MetricCategory,
)
from ..periods import utc_now
from ..store.interface import MetricStore
from .events import AlertHandler, AlertPublisher, LoggingNotifier

logger = logging.getLogger(__name__)


AUTO_RESOLVE_NOTE = "Auto-resolved: Metric normalized"

# target status -> statuses it may be reached from
ALLOWED_TRANSITIONS = {
    AlertStatus.ACKNOWLEDGED: (AlertStatus.ACTIVE,),
    AlertStatus.RESOLVED: (AlertStatus.ACTIVE, AlertStatus.ACKNOWLEDGED),
    AlertStatus.DISMISSED: (AlertStatus.ACTIVE,),
}


@dataclass
class AlertParams:
    """
    Everything needed to raise an alert for one metric.

    Attributes:
        tenant_id: Owning tenant
        category: Metric category
        name: Metric name
        severity: How urgent the finding is
        current_value: Observed value (e.g. window mean)
        baseline_value: Reference value (e.g. baseline mean)
        threshold: Threshold the test statistic crossed
        drift_score: Normalized drift score in [0, 1]
        message: Human-readable explanation
        alert_type: Kind of finding (default drift)
        title: Short headline (derived from type and metric when empty)
        deviation_percentage: Relative change of current vs baseline value
        metadata: Extra attributes (test name, statistic, diagnostics)
    """
    tenant_id: str
    category: MetricCategory
    name: str
    severity: AlertSeverity
    current_value: float
    baseline_value: float
    threshold: float
    drift_score: float
    message: str
    alert_type: AlertType = AlertType.DRIFT
    title: Optional[str] = None
    deviation_percentage: Optional[float] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


class AlertManager:
    """
    Creates, transitions and queries alerts.

    Example:
        >>> manager = AlertManager(store)
        >>> alert_id = manager.create_alert(AlertParams(
        ...     tenant_id="tenant-a", category="performance", name="response_latency_ms",
        ...     severity="high", current_value=650.0, baseline_value=500.0,
        ...     threshold=3.0, drift_score=1.0, message="Latency up 30%",
        ... ))
        >>> manager.acknowledge_alert(alert_id, by="oncall").status
        <AlertStatus.ACKNOWLEDGED: 'acknowledged'>
    """

    # Page size used when a maintenance task walks all of a tenant's alerts
    SCAN_PAGE_SIZE = 500

    def __init__(
        self,
        store: MetricStore,
        config: Optional[AlertConfig] = None,
        publisher: Optional[AlertPublisher] = None,
        notifiers: Optional[List[Callable[[Alert], None]]] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.config = config or AlertConfig()
        self.publisher = publisher or AlertPublisher()
        self.notifiers = notifiers if notifiers is not None else [LoggingNotifier()]
        self._clock = clock

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_alert(self, params: AlertParams) -> str:
        """
        Raise an alert, or refresh the metric's existing active alert.

        Returns:
            Id of the created or refreshed alert
        """
        now = self._clock()
        alert_type = AlertType(params.alert_type)
        alert = Alert(
            id=uuid.uuid4().hex,
            tenant_id=params.tenant_id,
            category=params.category,
            name=params.name,
            alert_type=alert_type,
            severity=params.severity,
            current_value=params.current_value,
            baseline_value=params.baseline_value,
            threshold=params.threshold,
            drift_score=params.drift_score,
            message=params.message,
            title=params.title or f"{alert_type.value.capitalize()} detected: {params.name}",
            deviation_percentage=params.deviation_percentage,
            metadata=dict(params.metadata),
            created_at=now,
            updated_at=now,
        )

        stored, created = self.store.upsert_active_alert(alert)

        if not created:
            logger.info(
                f"Refreshed active alert {stored.id} for "
                f"{stored.tenant_id}/{stored.name} (score={stored.drift_score:.2f})"
            )
            return stored.id

        logger.warning(
            f"Created {stored.severity.value} {stored.alert_type.value} alert {stored.id} "
            f"for {stored.tenant_id}/{stored.category.value}/{stored.name}: {stored.message}"
        )
        self.publisher.publish(stored)
        if stored.severity.value in self.config.notify_severities:
            self._notify(stored)
        return stored.id

    def _notify(self, alert: Alert) -> None:
        for notifier in self.notifiers:
            channel = getattr(notifier, "channel", type(notifier).__name__)
            record: Dict[str, Any] = {
                "channel": channel,
                "sent_at": self._clock().isoformat(),
                "success": True,
            }
            try:
                notifier(alert)
            except Exception as e:
                logger.warning(f"Notification via {channel} failed for alert {alert.id}: {e}")
                record["success"] = False
                record["error"] = str(e)
            alert.notifications_sent.append(record)

        if self.notifiers:
            # only while still active; a concurrent resolve wins
            self.store.update_alert(alert, expected_status=AlertStatus.ACTIVE)

    def on_alert_created(self, handler: AlertHandler) -> Callable[[], None]:
        """Subscribe to newly created alerts; returns an unsubscribe function."""
        return self.publisher.subscribe(handler)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def acknowledge_alert(self, alert_id: str, by: str) -> Alert:
        now = self._clock()
        return self._transition(
            alert_id,
            AlertStatus.ACKNOWLEDGED,
            acknowledged_at=now,
            acknowledged_by=by,
        )

    def resolve_alert(self, alert_id: str, note: str, by: Optional[str] = None) -> Alert:
        now = self._clock()
        return self._transition(
            alert_id,
            AlertStatus.RESOLVED,
            resolved_at=now,
            resolved_by=by,
            resolution=note,
        )

    def dismiss_alert(self, alert_id: str, reason: str, by: Optional[str] = None) -> Alert:
        now = self._clock()
        return self._transition(
            alert_id,
            AlertStatus.DISMISSED,
            resolved_at=now,
            resolved_by=by,
            resolution=reason,
        )

    def _transition(self, alert_id: str, target: AlertStatus, **changes: Any) -> Alert:
        alert = self.get(alert_id)
        if alert.status not in ALLOWED_TRANSITIONS[target]:
            raise InvalidTransitionError(alert.id, alert.status.value, target.value)

        read_status = alert.status
        alert.status = target
        for attr, value in changes.items():
            setattr(alert, attr, value)
        alert.updated_at = self._clock()

        if not self.store.update_alert(alert, expected_status=read_status):
            # Someone else moved the alert between our read and write
            current = self.get(alert_id)
            raise InvalidTransitionError(alert.id, current.status.value, target.value)

        logger.info(f"Alert {alert.id} -> {target.value}")
        return alert

    def record_score(self, tenant_id: str, category: str, name: str, score: float) -> bool:
        """
        Store the latest drift score on the metric's active alert.

        The store applies the change only while the alert is still active, so
        a resolve racing with detection is never undone.

        Returns:
            True if an active alert was updated
        """
        return self.store.refresh_active_alert_score(
            tenant_id, category, name, score, self._clock()
        )

    def auto_resolve_normalized_alerts(self, tenant_id: str) -> int:
        """
        Resolve active alerts that are old enough and whose score normalized.

        Returns:
            Number of alerts resolved
        """
        now = self._clock()
        cutoff = now - timedelta(hours=self.config.auto_resolve_after_hours)

        resolved = 0
        for alert in self._scan(tenant_id, AlertQuery(status=AlertStatus.ACTIVE)):
            if alert.created_at is None or alert.created_at > cutoff:
                continue
            if alert.drift_score >= self.config.auto_resolve_score:
                continue
            try:
                self.resolve_alert(alert.id, AUTO_RESOLVE_NOTE, by="system")
            except InvalidTransitionError as e:
                logger.info(f"Skipped auto-resolve of alert {alert.id}: {e}")
                continue
            resolved += 1

        if resolved:
            logger.info(f"Auto-resolved {resolved} alerts for tenant {tenant_id}")
        return resolved

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, alert_id: str) -> Alert:
        alert = self.store.get_alert(alert_id)
        if alert is None:
            raise AlertNotFoundError(f"Alert not found: {alert_id}")
        return alert

    def query(self, tenant_id: str, query: Optional[AlertQuery] = None) -> Tuple[List[Alert], int]:
        """Alerts of a tenant matching ``query``, newest first, plus the total count."""
        return self.store.query_alerts(tenant_id, query or AlertQuery())

    def _scan(self, tenant_id: str, query: AlertQuery) -> List[Alert]:
        alerts: List[Alert] = []
        offset = 0
        while True:
            page_query = AlertQuery(
                status=query.status,
                severity=query.severity,
                alert_type=query.alert_type,
                category=query.category,
                name=query.name,
                since=query.since,
                limit=self.SCAN_PAGE_SIZE,
                offset=offset,
            )
            page, total = self.store.query_alerts(tenant_id, page_query)
            alerts.extend(page)
            offset += len(page)
            if not page or offset >= total:
                return alerts

    def get_stats(self, tenant_id: str, days: int = 7) -> Dict[str, Any]:
        """
        Summary of a tenant's alerts created in the last ``days`` days.

        Returns:
            Dictionary with total, active count, counts by severity/type/status
            and mean time to resolution in hours (None if nothing resolved)
        """
        since = self._clock() - timedelta(days=days)
        alerts = self._scan(tenant_id, AlertQuery(since=since))

        if not alerts:
            return {
                "total": 0,
                "active": 0,
                "by_severity": {},
                "by_type": {},
                "by_status": {},
                "mean_time_to_resolution_hours": None,
            }

        df = pd.DataFrame([
            {
                "severity": a.severity.value,
                "alert_type": a.alert_type.value,
                "status": a.status.value,
                "resolution_hours": (
                    (a.resolved_at - a.created_at).total_seconds() / 3600
                    if a.status == AlertStatus.RESOLVED and a.resolved_at and a.created_at
                    else None
                ),
            }
            for a in alerts
        ])

        resolution_hours = df["resolution_hours"].dropna()
        return {
            "total": int(len(df)),
            "active": int((df["status"] == AlertStatus.ACTIVE.value).sum()),
            "by_severity": {k: int(v) for k, v in df["severity"].value_counts().items()},
            "by_type": {k: int(v) for k, v in df["alert_type"].value_counts().items()},
            "by_status": {k: int(v) for k, v in df["status"].value_counts().items()},
            "mean_time_to_resolution_hours": (
                float(resolution_hours.mean()) if len(resolution_hours) else None
            ),
        }

    def cleanup(self, tenant_id: str, retention_days: int = 90) -> int:
        """Delete resolved/dismissed alerts older than ``retention_days``."""
        cutoff = self._clock() - timedelta(days=retention_days)
        deleted = self.store.delete_alerts_before(tenant_id, cutoff)
        if deleted:
            logger.info(f"Deleted {deleted} alerts older than {retention_days} days for {tenant_id}")
        return deleted

    def get_status(self) -> Dict[str, Any]:
        return {
            "publisher": self.publisher.get_stats(),
            "notifiers": [getattr(n, "channel", type(n).__name__) for n in self.notifiers],
            "notify_severities": list(self.config.notify_severities),
        }
