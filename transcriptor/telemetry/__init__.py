"""Telemetry helpers and metrics."""

from .metrics import (
    DETECTION_RUNS,
    ERROR_COUNTER,
    PROVIDER_RETRIES,
    REQUEST_COUNT,
    REQUEST_LATENCY,
    SESSIONS_CREATED,
    SESSIONS_FINISHED,
    increment_detection_run,
    increment_provider_retry,
    increment_session_created,
    increment_session_finished,
    observe_request,
)

__all__ = [
    "DETECTION_RUNS",
    "ERROR_COUNTER",
    "PROVIDER_RETRIES",
    "REQUEST_COUNT",
    "REQUEST_LATENCY",
    "SESSIONS_CREATED",
    "SESSIONS_FINISHED",
    "increment_detection_run",
    "increment_provider_retry",
    "increment_session_created",
    "increment_session_finished",
    "observe_request",
]
