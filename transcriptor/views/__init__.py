"""Pydantic schemas used as views in the MVC architecture."""

from .common import ErrorResponse, SuccessResponse
from .health import (
    CapabilitiesResponse,
    DetectionCapability,
    ExtractionCapability,
    HealthResponse,
    TranscriptionCapability,
)
from .sessions import (
    DetectCodesResponse,
    MaintenanceResult,
    SessionCreated,
    SessionList,
    SessionsSummaryView,
)

__all__ = [
    "CapabilitiesResponse",
    "DetectCodesResponse",
    "DetectionCapability",
    "ErrorResponse",
    "ExtractionCapability",
    "HealthResponse",
    "MaintenanceResult",
    "SessionCreated",
    "SessionList",
    "SessionsSummaryView",
    "SuccessResponse",
    "TranscriptionCapability",
]
