"""Pydantic models for transcription sessions and their results.

The persisted JSON document and the HTTP payloads share these models, so
field aliases follow the camelCase names the UI already consumes.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class SessionStatus(str, Enum):
    """Lifecycle state of a session."""

    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionStatus.COMPLETED, SessionStatus.ERROR)

    def can_advance_to(self, target: "SessionStatus") -> bool:
        """Return True when ``target`` is a legal next state (or the same state)."""

        if target == self:
            return True
        return target in _ALLOWED_TRANSITIONS[self]


_ALLOWED_TRANSITIONS: dict[SessionStatus, frozenset[SessionStatus]] = {
    SessionStatus.QUEUED: frozenset({SessionStatus.PROCESSING, SessionStatus.ERROR}),
    SessionStatus.PROCESSING: frozenset({SessionStatus.COMPLETED, SessionStatus.ERROR}),
    SessionStatus.COMPLETED: frozenset(),
    SessionStatus.ERROR: frozenset(),
}


class VariationType(str, Enum):
    """How a detected code's surface form deviates from the canonical spelling."""

    STANDARD = "standard"
    SPACED = "spaced"
    DOTTED = "dotted"
    HYPHENATED = "hyphenated"
    LOWERCASE = "lowercase"
    SPOKEN = "spoken"
    EXTENDED = "extended"


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class Word(_CamelModel):
    text: str
    start: int = Field(..., ge=0, description="Start offset in milliseconds")
    end: int = Field(..., ge=0, description="End offset in milliseconds")
    confidence: float = Field(0.0, ge=0.0, le=1.0)
    speaker: Optional[str] = None


class Chapter(_CamelModel):
    headline: str = ""
    summary: str = ""
    gist: str = ""
    start: int = Field(..., ge=0)
    end: int = Field(..., ge=0)

    @model_validator(mode="after")
    def check_bounds(self) -> "Chapter":
        if self.start > self.end:
            raise ValueError("chapter start must not be after its end")
        return self


class TranscriptionResult(_CamelModel):
    """Normalized transcript returned by the provider once a job completes."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    id: Optional[str] = None
    text: str = ""
    confidence: float = Field(0.0, ge=0.0, le=1.0)
    words: list[Word] = Field(default_factory=list)
    chapters: Optional[list[Chapter]] = None


class DetectionRecord(_CamelModel):
    code: str
    original_text: str = Field(..., alias="originalText")
    context: str = ""
    timestamp: int = Field(..., ge=0, description="Offset in milliseconds")
    confidence: float = Field(..., ge=0.0, le=1.0)
    variation_type: VariationType = Field(..., alias="variationType")


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class Session(_CamelModel):
    """One upload-to-result tracking record."""

    id: str
    filename: str
    upload_timestamp: str = Field(default_factory=utc_now_iso, alias="uploadTimestamp")
    status: SessionStatus = SessionStatus.QUEUED
    provider_job_id: Optional[str] = Field(default=None, alias="providerJobId")
    provider_status: Optional[str] = Field(default=None, alias="providerStatus")
    transcription_result: Optional[TranscriptionResult] = Field(
        default=None, alias="transcriptionResult"
    )
    detected_codes: Optional[list[DetectionRecord]] = Field(default=None, alias="detectedCodes")
    expected_code_count: Optional[int] = Field(default=None, alias="expectedCodeCount", ge=0)
    media_url: Optional[str] = Field(default=None, alias="mediaUrl")
    error_message: Optional[str] = Field(default=None, alias="errorMessage")

    @property
    def uploaded_at(self) -> datetime:
        """Parse ``upload_timestamp`` into an aware datetime for ordering."""

        raw = self.upload_timestamp.replace("Z", "+00:00")
        try:
            parsed = datetime.fromisoformat(raw)
        except ValueError:
            return datetime.min.replace(tzinfo=timezone.utc)
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed

    def to_document(self) -> dict:
        """Serialize with camelCase aliases, dropping unset optionals."""

        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


__all__ = [
    "Chapter",
    "DetectionRecord",
    "Session",
    "SessionStatus",
    "TranscriptionResult",
    "VariationType",
    "Word",
    "utc_now_iso",
]
