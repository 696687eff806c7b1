"""
FastAPI REST API for the drift monitor.

This module exposes the MonitoringService over HTTP: metric ingestion,
baseline management, on-demand drift detection and the alert workflow.

Endpoints:
    POST /metrics                          - Record one observation
    POST /metrics/batch                    - Record many observations (202)
    POST /metrics/flush                    - Flush the ingestion buffer now
    GET  /metrics/aggregates               - Per-metric summary of a category
    GET  /metrics/timeseries               - Bucketed time series of one metric
    GET  /metrics/ingestor                 - Ingestor counters
    POST /baselines                        - Create a baseline from values
    POST /baselines/from-history           - Create a baseline from stored aggregates
    GET  /baselines/active                 - Active baseline of a metric
    GET  /baselines                        - List baselines of a tenant
    PUT  /baselines/{id}                   - New baseline version (replace | merge)
    POST /baselines/{id}/archive           - Archive a baseline
    POST /drift/detect                     - Evaluate one metric
    POST /drift/detect-all                 - Evaluate every baselined metric of a tenant
    GET  /drift/report                     - Last drift report of a tenant
    GET  /drift/history                    - Recent drift reports of a tenant
    GET  /drift/status                     - Detector and detection job status
    GET  /alerts                           - Query alerts
    POST /alerts/{id}/acknowledge|resolve|dismiss
    GET  /alerts/stats                     - Alert statistics
    POST /alerts/auto-resolve              - Resolve normalized alerts now
    GET  /health, /ready, /info, /

Architecture:
    HTTP Request → FastAPI → Pydantic Validation → MonitoringService → HTTP Response

Design Decisions:
- Pydantic models for request validation (unknown categories, empty value
  lists and bad strategies never reach the service)
- Domain errors map to status codes in one place: not found → 404,
  invalid alert transition → 409, not enough data → 422, store down → 503
- Endpoints that touch the store are plain ``def`` so FastAPI runs them in
  its threadpool and a slow Redis call does not stall the event loop
- Health vs Readiness: Different semantics for load balancers
"""

import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import Any, Dict, List, Literal, Optional

from fastapi import FastAPI, HTTPException, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, field_validator

from drift_monitor.drift import DriftReport
from drift_monitor.errors import (
    AlertNotFoundError,
    BaselineNotFoundError,
    ConfigurationError,
    DegenerateInputError,
    InsufficientDataError,
    InvalidTransitionError,
    PersistenceError,
)
from drift_monitor.models import (
    AlertQuery,
    AlertSeverity,
    AlertStatus,
    AlertType,
    MetricCategory,
)
from drift_monitor.periods import ensure_utc
from serving.monitoring_service import MonitoringService

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Global service instance (initialized at startup)
monitoring_service: Optional[MonitoringService] = None


# ============================================================================
# Pydantic Models (Request/Response Schemas)
# ============================================================================

class MetricRecordRequest(BaseModel):
    """
    One metric observation.

    Attributes:
        tenant_id: Owning tenant
        category: performance, quality, input_distribution, output_distribution or custom
        name: Metric name within the category
        value: Observed value (must be finite)
    """
    tenant_id: str = Field(..., min_length=1)
    category: MetricCategory
    name: str = Field(..., min_length=1)
    value: float
    dimensions: Optional[Dict[str, str]] = None
    conversation_id: Optional[str] = None
    message_id: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None

    model_config = {
        "json_schema_extra": {
            "example": {
                "tenant_id": "tenant-a",
                "category": "performance",
                "name": "response_latency_ms",
                "value": 512.0,
                "conversation_id": "conv-123"
            }
        }
    }


class MetricBatchRequest(BaseModel):
    """Batch of observations recorded under one buffer lock."""
    observations: List[MetricRecordRequest] = Field(..., min_length=1, max_length=10_000)


class RecordResponse(BaseModel):
    accepted: int
    rejected: int


class FlushResponse(BaseModel):
    """Observations persisted and re-buffered by a flush."""
    persisted: int
    retried: int


class BaselineCreateRequest(BaseModel):
    """
    Request schema for creating a baseline from raw values.

    Attributes:
        values: Reference observations (at least one)
        window_days: Length of the reference window the values came from
    """
    tenant_id: str = Field(..., min_length=1)
    category: MetricCategory
    name: str = Field(..., min_length=1)
    values: List[float] = Field(..., min_length=1)
    window_days: int = Field(7, ge=1, le=365)
    description: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None

    model_config = {
        "json_schema_extra": {
            "example": {
                "tenant_id": "tenant-a",
                "category": "performance",
                "name": "response_latency_ms",
                "values": [480.0, 510.0, 495.0, 530.0, 502.0],
                "window_days": 7,
                "description": "Latency before the prompt change"
            }
        }
    }


class BaselineFromHistoryRequest(BaseModel):
    """Build a baseline from the last ``window_days`` of stored aggregates."""
    tenant_id: str = Field(..., min_length=1)
    category: MetricCategory
    name: str = Field(..., min_length=1)
    window_days: int = Field(7, ge=1, le=365)
    description: Optional[str] = None


class BaselineUpdateRequest(BaseModel):
    """
    Request schema for a new baseline version.

    Attributes:
        values: New observations
        strategy: "replace" recomputes from ``values``; "merge" blends them
            with values rebuilt from the previous histogram
    """
    values: List[float] = Field(..., min_length=1)
    strategy: Literal["replace", "merge"] = "replace"


class DetectionOverrides(BaseModel):
    """Per-request threshold overrides (unset fields use the service defaults)."""
    z_score_threshold: Optional[float] = Field(None, gt=0)
    psi_threshold: Optional[float] = Field(None, gt=0)
    ks_threshold: Optional[float] = Field(None, gt=0, lt=1)
    min_samples: Optional[int] = Field(None, ge=1)
    window_hours: Optional[int] = Field(None, ge=1)
    auto_alert: Optional[bool] = None

    def overrides(self) -> Dict[str, Any]:
        return {
            k: v for k, v in self.model_dump().items()
            if k in DetectionOverrides.model_fields and v is not None
        }


class DetectRequest(DetectionOverrides):
    tenant_id: str = Field(..., min_length=1)
    category: MetricCategory
    name: str = Field(..., min_length=1)

    model_config = {
        "json_schema_extra": {
            "example": {
                "tenant_id": "tenant-a",
                "category": "performance",
                "name": "response_latency_ms",
                "z_score_threshold": 3.0
            }
        }
    }


class DetectAllRequest(DetectionOverrides):
    tenant_id: str = Field(..., min_length=1)


class AcknowledgeRequest(BaseModel):
    by: str = Field(..., min_length=1, description="Who acknowledged the alert")


class ResolveRequest(BaseModel):
    note: str = Field(..., min_length=1)
    by: Optional[str] = None


class DismissRequest(BaseModel):
    reason: str = Field(..., min_length=1)
    by: Optional[str] = None

    @field_validator("reason")
    @classmethod
    def reason_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("reason must not be blank")
        return v


class AlertListResponse(BaseModel):
    """Page of alerts (newest first) plus the total match count."""
    alerts: List[Dict[str, Any]]
    total: int


class HealthResponse(BaseModel):
    """Health check response schema."""
    status: str
    checks: dict

    model_config = {
        "json_schema_extra": {
            "example": {
                "status": "healthy",
                "checks": {
                    "store": "healthy",
                    "ingestor": "healthy",
                    "detection_job": "running"
                }
            }
        }
    }


class ErrorResponse(BaseModel):
    """Error response schema."""
    error: str
    detail: Optional[str] = None
    status_code: int

    model_config = {
        "json_schema_extra": {
            "example": {
                "error": "Alert not found",
                "detail": "Alert not found: 5f0c...",
                "status_code": 404
            }
        }
    }


# ============================================================================
# Lifespan Event Handler (Startup/Shutdown)
# ============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup and shutdown events.

    A service installed before startup (tests, embedding applications) is
    used as-is; otherwise one is built from the environment.
    """
    # Startup
    global monitoring_service
    logger.info("Starting drift monitor...")

    owned = monitoring_service is None
    if owned:
        try:
            monitoring_service = MonitoringService.from_env()
            monitoring_service.start()
            logger.info("Drift monitor started successfully")
        except Exception as e:
            logger.error(f"Failed to start drift monitor: {e}")
            raise

    yield

    # Shutdown
    logger.info("Shutting down drift monitor...")
    if owned and monitoring_service is not None:
        monitoring_service.stop()
        monitoring_service = None


def _service() -> MonitoringService:
    if monitoring_service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Drift monitor is not initialized"
        )
    return monitoring_service


def _window(start: Optional[datetime], end: Optional[datetime], hours: int):
    end = ensure_utc(end) if end else _service().clock()
    start = ensure_utc(start) if start else end - timedelta(hours=hours)
    return start, end


# ============================================================================
# FastAPI Application
# ============================================================================

app = FastAPI(
    title="Drift Monitor API",
    description="Metric ingestion, baselines, drift detection and alerting for AI agents",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================================
# Middleware for Request Logging
# ============================================================================

@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log every request with its status code and duration."""
    start_time = time.time()

    logger.info(f"→ {request.method} {request.url.path}")

    response = await call_next(request)

    duration = (time.time() - start_time) * 1000
    logger.info(
        f"← {request.method} {request.url.path} "
        f"status={response.status_code} duration={duration:.1f}ms"
    )

    return response


# ============================================================================
# Metric Endpoints
# ============================================================================

@app.post(
    "/metrics",
    response_model=RecordResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Record a metric observation",
    responses={422: {"description": "Value rejected", "model": ErrorResponse}}
)
async def record_metric(request: MetricRecordRequest) -> RecordResponse:
    """
    Buffer one observation. The call never touches the store; the value
    becomes visible to queries after the next flush.
    """
    service = _service()
    accepted = service.ingestor.record(**request.model_dump())
    if not accepted:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Observation rejected for {request.tenant_id}/{request.name}"
        )
    return RecordResponse(accepted=1, rejected=0)


@app.post(
    "/metrics/batch",
    response_model=RecordResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Record many metric observations"
)
async def record_metric_batch(request: MetricBatchRequest) -> RecordResponse:
    service = _service()
    accepted = service.ingestor.record_batch(obs.model_dump() for obs in request.observations)
    return RecordResponse(accepted=accepted, rejected=len(request.observations) - accepted)


@app.post(
    "/metrics/flush",
    response_model=FlushResponse,
    summary="Flush the ingestion buffer",
    description="Persist buffered observations now instead of waiting for the flush interval"
)
def flush_metrics() -> FlushResponse:
    result = _service().ingestor.flush()
    return FlushResponse(**result.to_dict())


@app.get(
    "/metrics/aggregates",
    summary="Summarize a metric category",
    description="Count, mean, std, min, max, p50 and p95 per metric name over a time range"
)
def metric_aggregates(
    tenant_id: str,
    category: MetricCategory,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    hours: int = Query(24, ge=1, description="Window length when start is omitted"),
):
    start, end = _window(start, end, hours)
    summaries = _service().ingestor.aggregate(tenant_id, category.value, start, end)
    return {
        "tenant_id": tenant_id,
        "category": category.value,
        "start": start.isoformat(),
        "end": end.isoformat(),
        "metrics": summaries,
    }


@app.get(
    "/metrics/timeseries",
    summary="Time series of one metric",
    description="Count-weighted mean per hour, day or week bucket"
)
def metric_timeseries(
    tenant_id: str,
    category: MetricCategory,
    name: str,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    granularity: Literal["hour", "day", "week"] = "hour",
    hours: int = Query(24, ge=1, description="Window length when start is omitted"),
):
    start, end = _window(start, end, hours)
    points = _service().ingestor.get_time_series(
        tenant_id, category.value, name, start, end, granularity=granularity
    )
    return {
        "tenant_id": tenant_id,
        "category": category.value,
        "name": name,
        "granularity": granularity,
        "points": points,
    }


@app.get("/metrics/ingestor", summary="Ingestor counters")
async def ingestor_stats():
    return _service().ingestor.get_stats()


# ============================================================================
# Baseline Endpoints
# ============================================================================

@app.post(
    "/baselines",
    status_code=status.HTTP_201_CREATED,
    summary="Create a baseline from values",
    responses={422: {"description": "No usable values", "model": ErrorResponse}}
)
def create_baseline(request: BaselineCreateRequest):
    """
    Compute a baseline and make it the active one for its metric.

    The previously active baseline (if any) is archived.
    """
    baseline = _service().baselines.create(
        request.tenant_id,
        request.category.value,
        request.name,
        request.values,
        window_days=request.window_days,
        description=request.description,
        metadata=request.metadata,
    )
    return baseline.to_dict()


@app.post(
    "/baselines/from-history",
    status_code=status.HTTP_201_CREATED,
    summary="Create a baseline from stored aggregates",
    responses={422: {"description": "Not enough history", "model": ErrorResponse}}
)
def create_baseline_from_history(request: BaselineFromHistoryRequest):
    baseline = _service().baselines.create_from_history(
        request.tenant_id,
        request.category.value,
        request.name,
        window_days=request.window_days,
        description=request.description,
    )
    return baseline.to_dict()


@app.get(
    "/baselines/active",
    summary="Active baseline of a metric",
    responses={404: {"description": "No active baseline", "model": ErrorResponse}}
)
def get_active_baseline(tenant_id: str, category: MetricCategory, name: str):
    baseline = _service().baselines.get_active(tenant_id, category.value, name)
    if baseline is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No active baseline for {tenant_id}/{category.value}/{name}"
        )
    return baseline.to_dict()


@app.get("/baselines", summary="List baselines of a tenant")
def list_baselines(
    tenant_id: str,
    category: Optional[MetricCategory] = None,
    name: Optional[str] = None,
    active_only: bool = False,
):
    baselines = _service().baselines.list_baselines(
        tenant_id,
        category=category.value if category else None,
        name=name,
        active_only=active_only,
    )
    return {"count": len(baselines), "baselines": [b.to_dict() for b in baselines]}


@app.put(
    "/baselines/{baseline_id}",
    summary="Create a new baseline version",
    responses={404: {"description": "Baseline not found", "model": ErrorResponse}}
)
def update_baseline(baseline_id: str, request: BaselineUpdateRequest):
    baseline = _service().baselines.update(
        baseline_id, request.values, strategy=request.strategy
    )
    return baseline.to_dict()


@app.post(
    "/baselines/{baseline_id}/archive",
    summary="Archive a baseline",
    responses={404: {"description": "Baseline not found", "model": ErrorResponse}}
)
def archive_baseline(baseline_id: str):
    archived = _service().baselines.archive(baseline_id)
    return {"baseline_id": baseline_id, "archived": archived}


# ============================================================================
# Drift Detection Endpoints
# ============================================================================

@app.post(
    "/drift/detect",
    summary="Evaluate one metric",
    description="Compare the metric's recent window against its active baseline"
)
def detect_drift(request: DetectRequest):
    """
    Run drift detection for a single metric.

    Data problems (no baseline, too few samples, zero-variance baseline)
    come back as a result status, not an HTTP error.
    """
    service = _service()
    config = service.detector.config.with_overrides(**request.overrides())
    result = service.detector.detect(
        request.tenant_id, request.category.value, request.name, config=config
    )
    return result.to_dict()


@app.post(
    "/drift/detect-all",
    summary="Evaluate every baselined metric of a tenant"
)
def detect_drift_all(request: DetectAllRequest):
    service = _service()
    config = service.detector.config.with_overrides(**request.overrides())
    results = service.detector.detect_all(request.tenant_id, config=config)
    report = DriftReport(
        tenant_id=request.tenant_id,
        timestamp=service.clock().isoformat(),
        results=results,
    )
    return report.to_dict()


@app.get(
    "/drift/report",
    summary="Get last drift report",
    responses={404: {"description": "No report yet", "model": ErrorResponse}}
)
async def drift_report(tenant_id: str):
    report = _service().detector.get_last_report(tenant_id)
    if report is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No drift report available for {tenant_id}. Run /drift/detect-all first."
        )
    return report.to_dict()


@app.get("/drift/history", summary="Get drift report history")
async def drift_history(tenant_id: str, limit: int = Query(10, ge=1, le=100)):
    history = _service().detector.get_report_history(tenant_id, limit=limit)
    return {
        "count": len(history),
        "reports": [r.to_dict() for r in history]
    }


@app.get("/drift/status", summary="Get drift detection status")
async def drift_status():
    service = _service()
    return {
        **service.detector.get_status(),
        "job": service.job.get_status(),
    }


# ============================================================================
# Alert Endpoints
# ============================================================================

@app.get("/alerts", response_model=AlertListResponse, summary="Query alerts")
def list_alerts(
    tenant_id: str,
    status_filter: Optional[AlertStatus] = Query(None, alias="status"),
    severity: Optional[AlertSeverity] = None,
    alert_type: Optional[AlertType] = None,
    category: Optional[MetricCategory] = None,
    name: Optional[str] = None,
    since: Optional[datetime] = None,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
) -> AlertListResponse:
    query = AlertQuery(
        status=status_filter,
        severity=severity,
        alert_type=alert_type,
        category=category,
        name=name,
        since=ensure_utc(since) if since else None,
        limit=limit,
        offset=offset,
    )
    alerts, total = _service().alerts.query(tenant_id, query)
    return AlertListResponse(alerts=[a.to_dict() for a in alerts], total=total)


@app.get("/alerts/stats", summary="Alert statistics")
def alert_stats(tenant_id: str, days: int = Query(7, ge=1, le=365)):
    return _service().alerts.get_stats(tenant_id, days=days)


@app.post(
    "/alerts/auto-resolve",
    summary="Resolve normalized alerts",
    description="Resolve active alerts older than the configured age whose drift score dropped"
)
def auto_resolve_alerts(tenant_id: str):
    resolved = _service().alerts.auto_resolve_normalized_alerts(tenant_id)
    return {"tenant_id": tenant_id, "resolved": resolved}


@app.post(
    "/alerts/{alert_id}/acknowledge",
    summary="Acknowledge an alert",
    responses={
        404: {"description": "Alert not found", "model": ErrorResponse},
        409: {"description": "Alert is not active", "model": ErrorResponse}
    }
)
def acknowledge_alert(alert_id: str, request: AcknowledgeRequest):
    return _service().alerts.acknowledge_alert(alert_id, by=request.by).to_dict()


@app.post(
    "/alerts/{alert_id}/resolve",
    summary="Resolve an alert",
    responses={
        404: {"description": "Alert not found", "model": ErrorResponse},
        409: {"description": "Alert already closed", "model": ErrorResponse}
    }
)
def resolve_alert(alert_id: str, request: ResolveRequest):
    return _service().alerts.resolve_alert(alert_id, request.note, by=request.by).to_dict()


@app.post(
    "/alerts/{alert_id}/dismiss",
    summary="Dismiss an alert",
    responses={
        404: {"description": "Alert not found", "model": ErrorResponse},
        409: {"description": "Alert is not active", "model": ErrorResponse}
    }
)
def dismiss_alert(alert_id: str, request: DismissRequest):
    return _service().alerts.dismiss_alert(alert_id, request.reason, by=request.by).to_dict()


# ============================================================================
# Service Endpoints
# ============================================================================

@app.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    responses={503: {"description": "Service is unhealthy", "model": HealthResponse}}
)
async def health_check() -> HealthResponse:
    """
    Health check endpoint.

    A degraded store still reports 200: observations are re-buffered until
    the store recovers. Only an unhealthy component returns 503.
    """
    if monitoring_service is None:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={
                "status": "unhealthy",
                "checks": {"monitoring_service": "not initialized"}
            }
        )

    health = monitoring_service.health_check()
    if health["status"] == "unhealthy":
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=health
        )

    return HealthResponse(**health)


@app.get(
    "/ready",
    summary="Readiness check",
    responses={503: {"description": "Service is not ready"}}
)
async def readiness_check():
    """
    Readiness check endpoint.

    - /health: Is the service running properly? (used for restarts)
    - /ready: Can it accept traffic? (service built and store reachable)
    """
    if monitoring_service is None:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "not ready", "reason": "service not initialized"}
        )

    store_health = monitoring_service.store.health_check()
    if not store_health.get("healthy", False):
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "not ready", "reason": store_health.get("message")}
        )

    return {"status": "ready"}


@app.get("/info", summary="Service information")
async def service_info():
    return _service().get_service_info()


@app.get("/", summary="Root endpoint")
async def root():
    return {
        "message": "Drift Monitor API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health"
    }


# ============================================================================
# Error Handlers
# ============================================================================

def _error(status_code: int, error: str, exc: Exception) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": error, "detail": str(exc), "status_code": status_code}
    )


@app.exception_handler(BaselineNotFoundError)
async def baseline_not_found_handler(request: Request, exc: BaselineNotFoundError):
    return _error(status.HTTP_404_NOT_FOUND, "Baseline not found", exc)


@app.exception_handler(AlertNotFoundError)
async def alert_not_found_handler(request: Request, exc: AlertNotFoundError):
    return _error(status.HTTP_404_NOT_FOUND, "Alert not found", exc)


@app.exception_handler(InvalidTransitionError)
async def invalid_transition_handler(request: Request, exc: InvalidTransitionError):
    return _error(status.HTTP_409_CONFLICT, "Invalid alert transition", exc)


@app.exception_handler(InsufficientDataError)
async def insufficient_data_handler(request: Request, exc: InsufficientDataError):
    return _error(status.HTTP_422_UNPROCESSABLE_ENTITY, "Insufficient data", exc)


@app.exception_handler(DegenerateInputError)
async def degenerate_input_handler(request: Request, exc: DegenerateInputError):
    return _error(status.HTTP_422_UNPROCESSABLE_ENTITY, "Degenerate input", exc)


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError):
    return _error(status.HTTP_422_UNPROCESSABLE_ENTITY, "Invalid configuration", exc)


@app.exception_handler(PersistenceError)
async def persistence_error_handler(request: Request, exc: PersistenceError):
    logger.error(f"Store unavailable during {request.method} {request.url.path}: {exc}")
    return _error(status.HTTP_503_SERVICE_UNAVAILABLE, "Store unavailable", exc)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """
    Global exception handler for unhandled errors.

    Catches anything not mapped above and returns a structured 500.
    """
    logger.error(f"Unhandled exception: {exc}", exc_info=True)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "Internal server error",
            "detail": str(exc),
            "status_code": 500
        }
    )


# ============================================================================
# Run Server (for local development)
# ============================================================================

if __name__ == "__main__":
    import uvicorn

    # Run with: python -m serving.api
    # or: uvicorn serving.api:app --reload
    uvicorn.run(
        "serving.api:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info"
    )
