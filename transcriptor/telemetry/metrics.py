"""Prometheus metrics definitions and helpers."""

from __future__ import annotations

from prometheus_client import Counter, Histogram

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests processed",
    ("method", "route", "status"),
)

REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ("method", "route"),
    buckets=(
        0.005,
        0.01,
        0.025,
        0.05,
        0.1,
        0.25,
        0.5,
        1.0,
        2.5,
        5.0,
        10.0,
    ),
)

ERROR_COUNTER = Counter(
    "app_internal_errors_total",
    "Number of requests ending in internal server error responses",
    ("method", "route"),
)

SESSIONS_CREATED = Counter(
    "transcriptor_sessions_created_total",
    "Number of transcription sessions created from uploads",
)

SESSIONS_FINISHED = Counter(
    "transcriptor_sessions_finished_total",
    "Number of sessions that reached a terminal status",
    ("status",),
)

PROVIDER_RETRIES = Counter(
    "transcriptor_provider_retries_total",
    "Transient transcription provider failures that were retried",
    ("operation",),
)

DETECTION_RUNS = Counter(
    "transcriptor_detection_runs_total",
    "Code detection runs by trigger and outcome",
    ("trigger", "outcome"),
)


def observe_request(
    method: str,
    route: str,
    status_code: int,
    duration_seconds: float,
) -> None:
    """Record metrics for a completed HTTP request."""

    safe_route = route or "unknown"
    safe_method = method or "UNKNOWN"
    status_label = str(status_code)
    observed_duration = duration_seconds if duration_seconds >= 0 else 0

    REQUEST_COUNT.labels(
        method=safe_method,
        route=safe_route,
        status=status_label,
    ).inc()
    REQUEST_LATENCY.labels(
        method=safe_method,
        route=safe_route,
    ).observe(observed_duration)

    if status_code >= 500:
        ERROR_COUNTER.labels(
            method=safe_method,
            route=safe_route,
        ).inc()


def increment_session_created() -> None:
    SESSIONS_CREATED.inc()


def increment_session_finished(status: str) -> None:
    SESSIONS_FINISHED.labels(status=status).inc()


def increment_provider_retry(operation: str) -> None:
    PROVIDER_RETRIES.labels(operation=operation or "unknown").inc()


def increment_detection_run(trigger: str, outcome: str) -> None:
    DETECTION_RUNS.labels(trigger=trigger, outcome=outcome).inc()
