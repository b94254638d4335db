"""Common FastAPI dependencies reused across controllers.

Services are built once in :func:`transcriptor.main.create_app` and kept on
``app.state``; these providers hand them to the route functions.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request

from transcriptor.config.settings import Settings
from transcriptor.pipelines.session import SessionOrchestrator
from transcriptor.services.audio_extraction import AudioExtractionService
from transcriptor.services.code_detection import CodeDetectionService
from transcriptor.services.session_store import SessionStore
from transcriptor.services.storage import MediaStorage
from transcriptor.services.transcription import TranscriptionService


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_store(request: Request) -> SessionStore:
    return request.app.state.store


def get_storage(request: Request) -> MediaStorage:
    return request.app.state.storage


def get_orchestrator(request: Request) -> SessionOrchestrator:
    return request.app.state.orchestrator


def get_transcription(request: Request) -> TranscriptionService:
    return request.app.state.transcription


def get_extraction(request: Request) -> AudioExtractionService:
    return request.app.state.extraction


def get_detection(request: Request) -> CodeDetectionService:
    return request.app.state.detection


SettingsDep = Annotated[Settings, Depends(get_settings)]
StoreDep = Annotated[SessionStore, Depends(get_store)]
StorageDep = Annotated[MediaStorage, Depends(get_storage)]
OrchestratorDep = Annotated[SessionOrchestrator, Depends(get_orchestrator)]
TranscriptionDep = Annotated[TranscriptionService, Depends(get_transcription)]
ExtractionDep = Annotated[AudioExtractionService, Depends(get_extraction)]
DetectionDep = Annotated[CodeDetectionService, Depends(get_detection)]


__all__ = [
    "DetectionDep",
    "ExtractionDep",
    "OrchestratorDep",
    "SettingsDep",
    "StorageDep",
    "StoreDep",
    "TranscriptionDep",
]
