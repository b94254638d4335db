"""Session endpoints: upload, inspection, deletion, detection and media playback.

An upload returns as soon as the session is queued. Extraction,
transcription polling and code detection continue in the background via
:class:`transcriptor.pipelines.session.SessionOrchestrator`.
"""

import logging
from typing import Annotated, Optional

from fastapi import APIRouter, File, Form, Header, HTTPException, Query, UploadFile, status
from fastapi.responses import StreamingResponse

from transcriptor.controllers.dependencies import (
    OrchestratorDep,
    SettingsDep,
    StorageDep,
    StoreDep,
)
from transcriptor.models import Session, SessionStatus
from transcriptor.pipelines.session import (
    DetectionUnavailableError,
    TranscriptNotReadyError,
    UploadValidationError,
    resolve_content_type,
    stage_upload,
)
from transcriptor.services.code_detection import CodeDetectionError
from transcriptor.services.session_store import SessionNotFoundError, SessionStore
from transcriptor.services.storage import (
    RangeNotSatisfiableError,
    guess_content_type,
    iter_file_range,
    parse_byte_range,
)
from transcriptor.views import (
    DetectCodesResponse,
    ErrorResponse,
    MaintenanceResult,
    SessionCreated,
    SessionList,
    SessionsSummaryView,
    SuccessResponse,
)

router = APIRouter(prefix="/sessions", tags=["sessions"])

logger = logging.getLogger(__name__)

_MEDIA_FILE_UPLOAD = File(...)
_EXTRACT_AUDIO_FORM = Form(False)
_NOT_FOUND = {status.HTTP_404_NOT_FOUND: {"model": ErrorResponse}}

LimitQuery = Annotated[Optional[int], Query(ge=1, le=1000)]
StatusQuery = Annotated[Optional[SessionStatus], Query(alias="status")]


def _get_or_404(store: SessionStore, session_id: str) -> Session:
    try:
        return store.get(session_id)
    except SessionNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Session not found",
        ) from None


@router.post(
    "",
    response_model=SessionCreated,
    status_code=status.HTTP_202_ACCEPTED,
    responses={
        400: {"model": ErrorResponse},
        413: {"model": ErrorResponse},
        415: {"model": ErrorResponse},
    },
)
async def upload_session(
    orchestrator: OrchestratorDep,
    storage: StorageDep,
    settings: SettingsDep,
    file: UploadFile = _MEDIA_FILE_UPLOAD,
    extract_audio: bool = _EXTRACT_AUDIO_FORM,
) -> SessionCreated:
    """Accept a video/audio upload and start transcribing it in the background."""

    filename = file.filename or "upload"
    try:
        content_type = resolve_content_type(file)
        staged_path = storage.staging_path(filename)
        size_bytes = await stage_upload(file, staged_path, settings.storage.max_upload_bytes)
    except UploadValidationError as exc:
        logger.warning("Rejected upload %s: %s", filename, exc)
        raise HTTPException(status_code=exc.status_code, detail=str(exc)) from None

    logger.info(
        "Upload received: %s (%.1fMB, %s, extract_audio=%s)",
        filename,
        size_bytes / (1024 * 1024),
        content_type,
        extract_audio,
    )
    session = await orchestrator.start(
        staged_path,
        filename,
        content_type,
        extract_audio=extract_audio,
    )
    return SessionCreated(
        session_id=session.id,
        filename=session.filename,
        status=session.status,
        media_url=session.media_url,
    )


@router.get("", response_model=SessionList, response_model_exclude_none=True)
async def list_sessions(
    store: StoreDep,
    status_filter: StatusQuery = None,
    limit: LimitQuery = None,
) -> SessionList:
    sessions = store.list(status=status_filter, limit=limit)
    return SessionList(sessions=sessions, count=len(sessions))


@router.get("/summary", response_model=SessionsSummaryView)
async def sessions_summary(store: StoreDep) -> SessionsSummaryView:
    summary = store.summary()
    return SessionsSummaryView(
        total=summary.total,
        by_status=summary.by_status,
        oldest_session=summary.oldest_session,
        newest_session=summary.newest_session,
    )


@router.post("/maintenance", response_model=MaintenanceResult)
async def run_maintenance(
    orchestrator: OrchestratorDep,
    older_than_days: Annotated[int, Query(ge=0, le=3650)] = 30,
) -> MaintenanceResult:
    """Delete failed sessions and staged uploads older than the cutoff."""

    report = await orchestrator.maintenance(older_than_days)
    return MaintenanceResult(
        deleted_sessions=report.deleted_sessions,
        cleaned_uploads=report.cleaned_uploads,
    )


@router.get(
    "/{session_id}",
    response_model=Session,
    response_model_exclude_none=True,
    responses=_NOT_FOUND,
)
async def get_session(session_id: str, store: StoreDep) -> Session:
    return _get_or_404(store, session_id)


@router.delete("/{session_id}", response_model=SuccessResponse, responses=_NOT_FOUND)
async def delete_session(session_id: str, orchestrator: OrchestratorDep) -> SuccessResponse:
    if not await orchestrator.delete_session(session_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Session not found",
        )
    return SuccessResponse(message="Session deleted successfully", session_id=session_id)


@router.post(
    "/{session_id}/detect-codes",
    response_model=DetectCodesResponse,
    responses={
        400: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        502: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
)
async def detect_codes(
    session_id: str,
    orchestrator: OrchestratorDep,
    confidence_threshold: Annotated[Optional[float], Query(ge=0.0, le=1.0)] = None,
) -> DetectCodesResponse:
    """Re-run code detection on an existing transcript and overwrite the stored codes."""

    logger.info("Manual code detection requested for session %s", session_id)
    try:
        session, outcome = await orchestrator.redetect(session_id, confidence_threshold)
    except SessionNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Session not found",
        ) from None
    except TranscriptNotReadyError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No transcription result available for code detection",
        ) from None
    except DetectionUnavailableError:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Code detection not available - check Bedrock credentials",
        ) from None
    except CodeDetectionError as exc:
        logger.error("Manual code detection failed for session %s: %s", session_id, exc)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Code detection failed",
        ) from None

    return DetectCodesResponse(
        session_id=session.id,
        detected_codes=outcome.codes,
        expected_code_count=session.expected_code_count,
        message=f"Code detection completed: {len(outcome.codes)} codes found",
    )


@router.get(
    "/{session_id}/media",
    responses={
        206: {"description": "Partial content"},
        404: {"model": ErrorResponse},
        416: {"model": ErrorResponse},
    },
)
async def stream_media(
    session_id: str,
    store: StoreDep,
    storage: StorageDep,
    range_header: Annotated[Optional[str], Header(alias="range")] = None,
) -> StreamingResponse:
    """Stream the stored media, honouring single byte-range requests for scrubbing."""

    _get_or_404(store, session_id)
    path = storage.locate(session_id)
    if path is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Media not found",
        )

    file_size = path.stat().st_size
    media_type = guess_content_type(path)
    if not range_header:
        return StreamingResponse(
            iter_file_range(path, 0, file_size - 1),
            media_type=media_type,
            headers={"Accept-Ranges": "bytes", "Content-Length": str(file_size)},
        )

    try:
        byte_range = parse_byte_range(range_header, file_size)
    except RangeNotSatisfiableError as exc:
        raise HTTPException(
            status_code=416,
            detail=str(exc),
            headers={"Content-Range": f"bytes */{file_size}"},
        ) from None

    return StreamingResponse(
        iter_file_range(path, byte_range.start, byte_range.end),
        status_code=status.HTTP_206_PARTIAL_CONTENT,
        media_type=media_type,
        headers={
            "Accept-Ranges": "bytes",
            "Content-Range": f"bytes {byte_range.start}-{byte_range.end}/{file_size}",
            "Content-Length": str(byte_range.length),
        },
    )
