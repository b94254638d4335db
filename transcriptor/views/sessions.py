"""Pydantic schemas for session endpoints."""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from transcriptor.models import DetectionRecord, Session, SessionStatus


class _CamelView(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class SessionCreated(_CamelView):
    session_id: str = Field(..., alias="sessionId")
    filename: str
    status: SessionStatus
    media_url: Optional[str] = Field(None, alias="mediaUrl")
    message: str = "Transcription started"


class SessionList(_CamelView):
    sessions: list[Session]
    count: int


class SessionsSummaryView(_CamelView):
    total: int
    by_status: dict[str, int] = Field(..., alias="byStatus")
    oldest_session: Optional[str] = Field(None, alias="oldestSession")
    newest_session: Optional[str] = Field(None, alias="newestSession")


class DetectCodesResponse(_CamelView):
    session_id: str = Field(..., alias="sessionId")
    detected_codes: list[DetectionRecord] = Field(default_factory=list, alias="detectedCodes")
    expected_code_count: Optional[int] = Field(None, alias="expectedCodeCount")
    message: str


class MaintenanceResult(_CamelView):
    deleted_sessions: int = Field(..., alias="deletedSessions")
    cleaned_uploads: int = Field(..., alias="cleanedUploads")
