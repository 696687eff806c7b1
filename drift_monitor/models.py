"""
Record types shared by the ingestor, stores, detector and alert manager.

A metric is identified by ``(tenant_id, category, name)``. The same triple
keys aggregates, baselines and alerts, so "one active baseline per metric"
and "one active alert per metric" mean the same thing everywhere.

All records are plain dataclasses with ``to_dict``/``from_dict`` so they can
be stored as JSON by any backend and returned directly from the HTTP API.
"""

import math
from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class MetricCategory(str, Enum):
    """What kind of signal a metric carries."""
    PERFORMANCE = "performance"
    QUALITY = "quality"
    INPUT_DISTRIBUTION = "input_distribution"
    OUTPUT_DISTRIBUTION = "output_distribution"
    CUSTOM = "custom"

    @property
    def is_distribution(self) -> bool:
        """Distribution metrics are judged with PSI, the rest with a Z-score test."""
        return self in (
            MetricCategory.INPUT_DISTRIBUTION,
            MetricCategory.OUTPUT_DISTRIBUTION,
        )


class PeriodType(str, Enum):
    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"


class BaselineStatus(str, Enum):
    ACTIVE = "active"
    ARCHIVED = "archived"


class AlertType(str, Enum):
    DRIFT = "drift"
    THRESHOLD = "threshold"
    TREND = "trend"
    ANOMALY = "anomaly"


class AlertSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class AlertStatus(str, Enum):
    ACTIVE = "active"
    ACKNOWLEDGED = "acknowledged"
    RESOLVED = "resolved"
    DISMISSED = "dismissed"

    @property
    def is_terminal(self) -> bool:
        return self in (AlertStatus.RESOLVED, AlertStatus.DISMISSED)


MetricKey = Tuple[str, str, str]


def metric_key(tenant_id: str, category: Any, name: str) -> MetricKey:
    """Normalized ``(tenant_id, category, name)`` tuple."""
    return (tenant_id, MetricCategory(category).value, name)


def _dt_to_str(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _dt_from_str(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


@dataclass
class MetricObservation:
    """
    One raw scalar reading from a producer.

    Observations only ever live in the ingestor's in-memory buffer; they are
    folded into a MetricAggregate on flush and never persisted individually.
    """
    tenant_id: str
    category: MetricCategory
    name: str
    value: float
    dimensions: Dict[str, str] = field(default_factory=dict)
    conversation_id: Optional[str] = None
    message_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    recorded_at: Optional[datetime] = None

    def __post_init__(self):
        self.category = MetricCategory(self.category)

    @property
    def key(self) -> MetricKey:
        return metric_key(self.tenant_id, self.category, self.name)


@dataclass
class MetricAggregate:
    """
    Statistical summary of one metric within one time bucket.

    Attributes:
        tenant_id: Owning tenant
        category: Metric category
        name: Metric name
        period_start: Start of the bucket (inclusive)
        period_end: End of the bucket (exclusive)
        period_type: Bucket granularity
        sample_count: Number of observations folded into this row
        mean: Mean of all observations
        std: Population standard deviation of all observations
        min: Smallest observation
        max: Largest observation
        samples: Bounded uniform reservoir of raw observations, used to
            build histograms for distribution tests
        updated_at: Last time a flush merged into this row
    """
    tenant_id: str
    category: MetricCategory
    name: str
    period_start: datetime
    period_end: datetime
    period_type: PeriodType
    sample_count: int
    mean: float
    std: float
    min: float
    max: float
    samples: List[float] = field(default_factory=list)
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        self.category = MetricCategory(self.category)
        self.period_type = PeriodType(self.period_type)

    @property
    def key(self) -> MetricKey:
        return metric_key(self.tenant_id, self.category, self.name)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["category"] = self.category.value
        data["period_type"] = self.period_type.value
        data["period_start"] = _dt_to_str(self.period_start)
        data["period_end"] = _dt_to_str(self.period_end)
        data["updated_at"] = _dt_to_str(self.updated_at)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MetricAggregate":
        data = dict(data)
        for key in ("period_start", "period_end", "updated_at"):
            data[key] = _dt_from_str(data.get(key))
        return cls(**data)


@dataclass
class Baseline:
    """
    Reference distribution a metric is compared against.

    The histogram uses ``len(proportions)`` equal-width bins spanning
    ``[min, max]``; ``bin_edges`` has one more entry than ``proportions``.
    A metric whose reference values are all identical collapses to a single
    bin (all mass in bin 0, zero-width edges).
    """
    id: str
    tenant_id: str
    category: MetricCategory
    name: str
    mean: float
    std: float
    min: float
    max: float
    bin_edges: List[float]
    proportions: List[float]
    sample_count: int
    window_days: int
    status: BaselineStatus = BaselineStatus.ACTIVE
    description: Optional[str] = None
    superseded_by: Optional[str] = None
    baseline_start: Optional[datetime] = None
    baseline_end: Optional[datetime] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        self.category = MetricCategory(self.category)
        self.status = BaselineStatus(self.status)

    @property
    def key(self) -> MetricKey:
        return metric_key(self.tenant_id, self.category, self.name)

    @property
    def is_active(self) -> bool:
        return self.status == BaselineStatus.ACTIVE

    def bin_midpoints(self) -> List[float]:
        return [
            (self.bin_edges[i] + self.bin_edges[i + 1]) / 2
            for i in range(len(self.proportions))
        ]

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["category"] = self.category.value
        data["status"] = self.status.value
        for key in ("baseline_start", "baseline_end", "created_at", "updated_at"):
            data[key] = _dt_to_str(getattr(self, key))
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Baseline":
        data = dict(data)
        for key in ("baseline_start", "baseline_end", "created_at", "updated_at"):
            data[key] = _dt_from_str(data.get(key))
        return cls(**data)


@dataclass
class Alert:
    """
    A finding of drift for one metric.

    Status moves ``active -> acknowledged -> resolved``, ``active -> resolved``
    or ``active -> dismissed``. Resolved and dismissed alerts are terminal.
    """
    id: str
    tenant_id: str
    category: MetricCategory
    name: str
    alert_type: AlertType
    severity: AlertSeverity
    current_value: float
    baseline_value: float
    threshold: float
    drift_score: float
    message: str
    title: str = ""
    deviation_percentage: Optional[float] = None
    status: AlertStatus = AlertStatus.ACTIVE
    acknowledged_at: Optional[datetime] = None
    acknowledged_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    resolution: Optional[str] = None
    notifications_sent: List[Dict[str, Any]] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        self.category = MetricCategory(self.category)
        self.alert_type = AlertType(self.alert_type)
        self.severity = AlertSeverity(self.severity)
        self.status = AlertStatus(self.status)

    @property
    def key(self) -> MetricKey:
        return metric_key(self.tenant_id, self.category, self.name)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["category"] = self.category.value
        data["alert_type"] = self.alert_type.value
        data["severity"] = self.severity.value
        data["status"] = self.status.value
        for key in ("acknowledged_at", "resolved_at", "created_at", "updated_at"):
            data[key] = _dt_to_str(getattr(self, key))
        # JSON has no representation for inf/nan
        for key in ("current_value", "baseline_value", "threshold", "drift_score"):
            if not math.isfinite(data[key]):
                data[key] = None
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Alert":
        data = dict(data)
        for key in ("acknowledged_at", "resolved_at", "created_at", "updated_at"):
            data[key] = _dt_from_str(data.get(key))
        for key in ("current_value", "baseline_value", "threshold", "drift_score"):
            if data.get(key) is None:
                data[key] = float("nan")
        return cls(**data)


@dataclass
class AlertQuery:
    """
    Filters for listing a tenant's alerts (all optional, newest first).

    Attributes:
        status: Only alerts in this status
        severity: Only alerts with this severity
        alert_type: Only alerts of this type
        category: Only alerts for metrics in this category
        name: Only alerts for this metric name
        since: Only alerts created at or after this time
        limit: Page size
        offset: Number of matching alerts to skip
    """
    status: Optional[AlertStatus] = None
    severity: Optional[AlertSeverity] = None
    alert_type: Optional[AlertType] = None
    category: Optional[MetricCategory] = None
    name: Optional[str] = None
    since: Optional[datetime] = None
    limit: int = 50
    offset: int = 0

    def __post_init__(self):
        if self.status is not None:
            self.status = AlertStatus(self.status)
        if self.severity is not None:
            self.severity = AlertSeverity(self.severity)
        if self.alert_type is not None:
            self.alert_type = AlertType(self.alert_type)
        if self.category is not None:
            self.category = MetricCategory(self.category)

    def matches(self, alert: Alert) -> bool:
        if self.status is not None and alert.status != self.status:
            return False
        if self.severity is not None and alert.severity != self.severity:
            return False
        if self.alert_type is not None and alert.alert_type != self.alert_type:
            return False
        if self.category is not None and alert.category != self.category:
            return False
        if self.name is not None and alert.name != self.name:
            return False
        if self.since is not None and alert.created_at is not None and alert.created_at < self.since:
            return False
        return True
