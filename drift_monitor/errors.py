"""
Error taxonomy for the drift monitor.

Only configuration problems are fatal. Everything raised while ingesting
metrics or evaluating drift is caught at flush / per-metric granularity,
logged, and surfaced through self-observability counters instead of reaching
the conversational pipeline that produced the metric.
"""


class DriftMonitorError(Exception):
    """Base class for all drift monitor errors."""


class ConfigurationError(DriftMonitorError):
    """Invalid configuration values (rejected at construction time)."""


class PersistenceError(DriftMonitorError):
    """A store read or write failed."""


class InsufficientDataError(DriftMonitorError):
    """Not enough samples to build a baseline."""


class DegenerateInputError(DriftMonitorError):
    """Input that cannot be summarized (e.g. an empty value list)."""


class BaselineNotFoundError(DriftMonitorError):
    """No baseline exists with the given id."""


class AlertNotFoundError(DriftMonitorError):
    """No alert exists with the given id."""


class InvalidTransitionError(DriftMonitorError):
    """An alert status change that the lifecycle does not allow."""

    def __init__(self, alert_id: str, current: str, target: str):
        self.alert_id = alert_id
        self.current = current
        self.target = target
        super().__init__(
            f"Alert {alert_id} cannot move from '{current}' to '{target}'"
        )
