"""
Configuration for the drift monitor.

Each component gets its own dataclass, validated in ``__post_init__`` so that
bad thresholds fail at startup rather than during a detection pass.
``MonitoringConfig`` bundles them and can be loaded from YAML or from the
environment.

Example YAML:
    retention_days: 90

    detection:
      z_score_threshold: 3.0
      psi_threshold: 0.2
      min_samples: 30

    ingestor:
      period_type: hourly
      flush_interval_ms: 5000

    store:
      backend: redis
      redis_host: localhost
"""

import os
from dataclasses import dataclass, field, asdict, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .errors import ConfigurationError
from .models import PeriodType


def _require(condition: bool, message: str) -> None:
    if not condition:
        raise ConfigurationError(message)


@dataclass
class DetectionConfig:
    """
    Thresholds and sample requirements for drift tests.

    Attributes:
        ks_threshold: p-value below which the KS diagnostic flags a shift
        psi_threshold: PSI above which a distribution metric is drifting
        z_score_threshold: |z| above which a continuous metric is drifting
        min_samples: Minimum observations in the window before testing
        auto_alert: Create alerts automatically when drift is detected
        window_hours: Trailing window of aggregates to evaluate
    """
    ks_threshold: float = 0.05
    psi_threshold: float = 0.2
    z_score_threshold: float = 3.0
    min_samples: int = 30
    auto_alert: bool = True
    window_hours: int = 24

    def __post_init__(self):
        _require(0 < self.ks_threshold < 1, f"ks_threshold must be in (0, 1), got {self.ks_threshold}")
        _require(self.psi_threshold > 0, f"psi_threshold must be positive, got {self.psi_threshold}")
        _require(self.z_score_threshold > 0, f"z_score_threshold must be positive, got {self.z_score_threshold}")
        _require(self.min_samples >= 1, f"min_samples must be >= 1, got {self.min_samples}")
        _require(self.window_hours >= 1, f"window_hours must be >= 1, got {self.window_hours}")

    def with_overrides(self, **overrides: Any) -> "DetectionConfig":
        """Copy with some fields replaced (validated again)."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})


@dataclass
class IngestorConfig:
    """
    Buffering and flush behavior of the metric ingestor.

    Attributes:
        flush_batch_size: Buffer length that wakes the flush worker
        buffer_max_size: Hard buffer capacity; oldest entries beyond it are dropped
        flush_interval_ms: Period of the timer-driven flush
        flush_timeout_seconds: Budget for one flush; unreached groups are re-buffered
        period_type: Granularity of aggregate buckets
        reservoir_size: Raw samples kept per aggregate row for histograms
    """
    flush_batch_size: int = 100
    buffer_max_size: int = 10_000
    flush_interval_ms: int = 5000
    flush_timeout_seconds: float = 10.0
    period_type: PeriodType = PeriodType.HOURLY
    reservoir_size: int = 256

    def __post_init__(self):
        try:
            self.period_type = PeriodType(self.period_type)
        except ValueError:
            raise ConfigurationError(f"Unknown period_type: {self.period_type}")
        _require(self.flush_batch_size >= 1, "flush_batch_size must be >= 1")
        _require(
            self.buffer_max_size >= self.flush_batch_size,
            f"buffer_max_size ({self.buffer_max_size}) must be >= "
            f"flush_batch_size ({self.flush_batch_size})",
        )
        _require(self.flush_interval_ms > 0, "flush_interval_ms must be positive")
        _require(self.flush_timeout_seconds > 0, "flush_timeout_seconds must be positive")
        _require(self.reservoir_size >= 10, "reservoir_size must be >= 10")


@dataclass
class AlertConfig:
    """
    Alert lifecycle tuning.

    Attributes:
        auto_resolve_after_hours: Minimum alert age before auto-resolution
        auto_resolve_score: Latest drift score below which an alert counts as normalized
        notify_severities: Severities that trigger the notification hook
    """
    auto_resolve_after_hours: float = 24.0
    auto_resolve_score: float = 0.3
    notify_severities: tuple = ("high", "critical")

    def __post_init__(self):
        _require(self.auto_resolve_after_hours > 0, "auto_resolve_after_hours must be positive")
        _require(0 < self.auto_resolve_score <= 1, "auto_resolve_score must be in (0, 1]")
        self.notify_severities = tuple(self.notify_severities)


@dataclass
class StoreConfig:
    """
    Storage backend selection.

    ``backend`` is ``"memory"`` (single process, tests, local runs) or
    ``"redis"``.
    """
    backend: str = "memory"
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_db: int = 0
    redis_password: Optional[str] = None
    key_prefix: str = "drift"

    def __post_init__(self):
        self.backend = self.backend.lower()
        _require(
            self.backend in ("memory", "redis"),
            f"Unknown store backend: {self.backend}",
        )


@dataclass
class MonitoringConfig:
    """Top-level configuration for a monitoring process."""
    detection: DetectionConfig = field(default_factory=DetectionConfig)
    ingestor: IngestorConfig = field(default_factory=IngestorConfig)
    alerts: AlertConfig = field(default_factory=AlertConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    retention_days: int = 90
    detection_interval_seconds: float = 3600.0
    detection_timeout_seconds: float = 60.0

    def __post_init__(self):
        _require(self.retention_days >= 1, "retention_days must be >= 1")
        _require(self.detection_interval_seconds > 0, "detection_interval_seconds must be positive")
        _require(self.detection_timeout_seconds > 0, "detection_timeout_seconds must be positive")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MonitoringConfig":
        """Build from a nested dictionary (unknown keys are rejected)."""
        data = dict(data or {})
        sections = {
            "detection": DetectionConfig,
            "ingestor": IngestorConfig,
            "alerts": AlertConfig,
            "store": StoreConfig,
        }
        kwargs: Dict[str, Any] = {}
        for name, section_cls in sections.items():
            section = data.pop(name, None) or {}
            _check_keys(section_cls, section, name)
            kwargs[name] = section_cls(**section)
        _check_keys(cls, data, "root")
        kwargs.update(data)
        return cls(**kwargs)

    @classmethod
    def from_yaml(cls, yaml_path: Path) -> "MonitoringConfig":
        """
        Load configuration from a YAML file.

        Args:
            yaml_path: Path to YAML config file

        Returns:
            MonitoringConfig instance

        Raises:
            ConfigurationError: If the file contains invalid values
        """
        with open(yaml_path) as f:
            config_dict = yaml.safe_load(f) or {}
        return cls.from_dict(config_dict)

    @classmethod
    def from_env(cls) -> "MonitoringConfig":
        """
        Build configuration from environment variables.

        Environment Variables:
            DRIFT_CONFIG: Optional YAML file loaded first
            METRIC_STORE_MODE: "memory" or "redis" (default: memory)
            REDIS_HOST / REDIS_PORT / REDIS_DB / REDIS_PASSWORD
            DRIFT_Z_SCORE_THRESHOLD, DRIFT_PSI_THRESHOLD, DRIFT_KS_THRESHOLD,
            DRIFT_MIN_SAMPLES, DRIFT_AUTO_ALERT, DRIFT_PERIOD_TYPE,
            DRIFT_FLUSH_INTERVAL_MS, DRIFT_BUFFER_MAX_SIZE, DRIFT_RETENTION_DAYS
        """
        config_path = os.getenv("DRIFT_CONFIG")
        config = cls.from_yaml(Path(config_path)) if config_path else cls()

        detection = asdict(config.detection)
        _env_override(detection, "z_score_threshold", "DRIFT_Z_SCORE_THRESHOLD", float)
        _env_override(detection, "psi_threshold", "DRIFT_PSI_THRESHOLD", float)
        _env_override(detection, "ks_threshold", "DRIFT_KS_THRESHOLD", float)
        _env_override(detection, "min_samples", "DRIFT_MIN_SAMPLES", int)
        _env_override(detection, "auto_alert", "DRIFT_AUTO_ALERT", _parse_bool)

        ingestor = asdict(config.ingestor)
        _env_override(ingestor, "period_type", "DRIFT_PERIOD_TYPE", str)
        _env_override(ingestor, "flush_interval_ms", "DRIFT_FLUSH_INTERVAL_MS", int)
        _env_override(ingestor, "buffer_max_size", "DRIFT_BUFFER_MAX_SIZE", int)

        store = asdict(config.store)
        _env_override(store, "backend", "METRIC_STORE_MODE", str)
        _env_override(store, "redis_host", "REDIS_HOST", str)
        _env_override(store, "redis_port", "REDIS_PORT", int)
        _env_override(store, "redis_db", "REDIS_DB", int)
        _env_override(store, "redis_password", "REDIS_PASSWORD", str)

        retention_days = int(os.getenv("DRIFT_RETENTION_DAYS", config.retention_days))

        return cls(
            detection=DetectionConfig(**detection),
            ingestor=IngestorConfig(**ingestor),
            alerts=config.alerts,
            store=StoreConfig(**store),
            retention_days=retention_days,
            detection_interval_seconds=config.detection_interval_seconds,
            detection_timeout_seconds=config.detection_timeout_seconds,
        )


def _check_keys(section_cls, section: Dict[str, Any], label: str) -> None:
    valid = {f.name for f in fields(section_cls)}
    unknown = set(section) - valid
    if unknown:
        raise ConfigurationError(
            f"Unknown {label} config keys: {sorted(unknown)}. Valid keys: {sorted(valid)}"
        )


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_override(target: Dict[str, Any], key: str, env_var: str, cast) -> None:
    raw = os.getenv(env_var)
    if raw is None or raw == "":
        return
    try:
        target[key] = cast(raw)
    except ValueError:
        raise ConfigurationError(f"Invalid value for {env_var}: {raw!r}")
