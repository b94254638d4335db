"""Health and capability probes used by operators and UI feature gating."""

from datetime import datetime, timezone

from fastapi import APIRouter, Response, status
from fastapi.concurrency import run_in_threadpool

from transcriptor.controllers.dependencies import (
    DetectionDep,
    ExtractionDep,
    StorageDep,
    StoreDep,
    TranscriptionDep,
)
from transcriptor.views import (
    CapabilitiesResponse,
    DetectionCapability,
    ExtractionCapability,
    HealthResponse,
    TranscriptionCapability,
)

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse, response_model_exclude_none=True)
async def health_check(
    response: Response,
    transcription: TranscriptionDep,
    store: StoreDep,
    storage: StorageDep,
    detailed: bool = False,
) -> HealthResponse:
    """Aggregate provider reachability, session store integrity and storage layout."""

    provider_ok, provider_details = await transcription.health()
    integrity = store.validate()
    file_system_ok = storage.directories_ready()

    healthy = provider_ok and integrity.valid and file_system_ok
    response.status_code = status.HTTP_200_OK if healthy else status.HTTP_503_SERVICE_UNAVAILABLE

    details = None
    if detailed:
        details = {
            "transcription": provider_details,
            "sessions": integrity.issues,
            "session_count": store.summary().total,
        }

    return HealthResponse(
        status="OK" if healthy else "ERROR",
        timestamp=datetime.now(timezone.utc).isoformat(),
        services={
            "transcription": provider_ok,
            "sessions": integrity.valid,
            "file_system": file_system_ok,
        },
        details=details,
    )


@router.get("/capabilities", response_model=CapabilitiesResponse, response_model_exclude_none=True)
async def capabilities(
    extraction: ExtractionDep,
    detection: DetectionDep,
    transcription: TranscriptionDep,
) -> CapabilitiesResponse:
    ffmpeg_available = await run_in_threadpool(extraction.is_available)
    return CapabilitiesResponse(
        extraction=ExtractionCapability(
            available=ffmpeg_available,
            message=(
                "Audio extraction available"
                if ffmpeg_available
                else "FFmpeg not found - audio extraction disabled"
            ),
        ),
        detection=DetectionCapability(**detection.status()),
        transcription=TranscriptionCapability(
            configured=transcription.configured,
            supported_formats=list(transcription.supported_formats()),
            direct_upload_limit_mb=transcription.direct_upload_limit_bytes // (1024 * 1024),
        ),
    )
