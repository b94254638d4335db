"""Session pipeline package.

Modules follow the order in which an upload is processed:

1. `ingestion` – validate the upload and stage it on disk.
2. `orchestrator` – persist the media, run extraction and transcription,
   record every provider status, then schedule code detection.

The FastAPI controllers import from here so the HTTP layer stays free of
lifecycle rules.
"""

from .ingestion import ALLOWED_CONTENT_TYPES, UploadValidationError, resolve_content_type, stage_upload
from .orchestrator import (
    DetectionUnavailableError,
    MaintenanceReport,
    SessionOrchestrator,
    TranscriptNotReadyError,
)

__all__ = [
    "ALLOWED_CONTENT_TYPES",
    "DetectionUnavailableError",
    "MaintenanceReport",
    "SessionOrchestrator",
    "TranscriptNotReadyError",
    "UploadValidationError",
    "resolve_content_type",
    "stage_upload",
]
