"""Pydantic schemas for health and capability probes."""

from typing import Any, Literal, Optional

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    status: Literal["OK", "ERROR"]
    timestamp: str
    services: dict[str, bool] = Field(
        ..., description="Check name -> passed (transcription, sessions, file_system)"
    )
    details: Optional[dict[str, Any]] = None


class ExtractionCapability(BaseModel):
    available: bool
    message: str


class DetectionCapability(BaseModel):
    available: bool
    model: Optional[str] = None
    error: Optional[str] = None


class TranscriptionCapability(BaseModel):
    configured: bool
    supported_formats: list[str]
    direct_upload_limit_mb: int


class CapabilitiesResponse(BaseModel):
    extraction: ExtractionCapability
    detection: DetectionCapability
    transcription: TranscriptionCapability
