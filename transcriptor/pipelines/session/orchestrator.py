"""Drive a session from upload to transcript, then run best-effort code detection."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Coroutine, Optional
from uuid import uuid4

from transcriptor.models import Session, SessionStatus, TranscriptionResult
from transcriptor.services.audio_extraction import AudioExtractionService, ExtractionError
from transcriptor.services.code_detection import CodeDetectionService, DetectionOutcome
from transcriptor.services.session_store import (
    InvalidTransitionError,
    SessionNotFoundError,
    SessionStore,
)
from transcriptor.services.storage import MediaStorage
from transcriptor.services.transcription import TranscriptionError, TranscriptionService
from transcriptor.telemetry import (
    increment_detection_run,
    increment_session_created,
    increment_session_finished,
)

logger = logging.getLogger("transcriptor.pipeline")


class TranscriptNotReadyError(RuntimeError):
    """Raised when detection is requested before a transcript exists."""


class DetectionUnavailableError(RuntimeError):
    """Raised when detection is requested but no model credential is configured."""


@dataclass(frozen=True)
class MaintenanceReport:
    deleted_sessions: int
    cleaned_uploads: int


class SessionOrchestrator:
    """Owns the queued -> processing -> completed|error lifecycle of sessions."""

    def __init__(
        self,
        store: SessionStore,
        storage: MediaStorage,
        transcription: TranscriptionService,
        extraction: AudioExtractionService,
        detection: CodeDetectionService,
    ) -> None:
        self._store = store
        self._storage = storage
        self._transcription = transcription
        self._extraction = extraction
        self._detection = detection
        self._tasks: set[asyncio.Task] = set()
        self._active_jobs: dict[str, str] = {}

    @property
    def store(self) -> SessionStore:
        return self._store

    @property
    def pending_tasks(self) -> int:
        return len(self._tasks)

    async def start(
        self,
        staged_path: Path,
        filename: str,
        content_type: str,
        *,
        extract_audio: bool = False,
    ) -> Session:
        """Persist a staged upload, create its queued session and start processing."""

        session_id = str(uuid4())
        try:
            media_path = await self._storage.persist(staged_path, session_id, filename)
        finally:
            self._storage.discard(staged_path)

        session = self._store.create(
            Session(
                id=session_id,
                filename=filename,
                media_url=self._storage.media_url(session_id),
            )
        )
        increment_session_created()
        logger.info("Session %s queued for %s (%s)", session_id, filename, content_type)
        self._spawn(
            self.run(session_id, media_path, content_type, extract_audio=extract_audio),
            name=f"transcribe-{session_id}",
        )
        return session

    async def run(
        self,
        session_id: str,
        media_path: Path,
        content_type: str,
        *,
        extract_audio: bool = False,
    ) -> None:
        """Transcribe one session. Never raises for provider or store outcomes."""

        try:
            job_id = await self._submit(session_id, media_path, content_type, extract_audio)
            self._active_jobs[session_id] = job_id
            self._store.advance(
                session_id,
                SessionStatus.PROCESSING,
                provider_job_id=job_id,
                provider_status="queued",
            )
            result = await self._transcription.poll_until_terminal(
                job_id,
                lambda provider_status: self._record_provider_status(session_id, provider_status),
            )
            self._store.advance(
                session_id,
                SessionStatus.COMPLETED,
                transcription_result=result,
                provider_status="completed",
            )
        except SessionNotFoundError:
            logger.info("Session %s was deleted while in flight; stopping", session_id)
            return
        except TranscriptionError as exc:
            self._fail(session_id, str(exc))
            return
        except Exception as exc:
            logger.exception("Unexpected failure while processing session %s", session_id)
            self._fail(session_id, f"Processing failed: {exc}")
            return
        finally:
            self._active_jobs.pop(session_id, None)

        increment_session_finished(SessionStatus.COMPLETED.value)
        logger.info("Session %s completed (%d characters)", session_id, len(result.text))
        self._spawn(self._auto_detect(session_id, result), name=f"detect-{session_id}")

    async def _submit(
        self,
        session_id: str,
        media_path: Path,
        content_type: str,
        extract_audio: bool,
    ) -> str:
        audio_path: Optional[Path] = None
        if extract_audio and self._extraction.is_applicable(media_path, content_type):
            try:
                options = self._extraction.choose_options(media_path.stat().st_size)
                extracted = await self._extraction.extract(media_path, options)
                audio_path = extracted.output_path
            except ExtractionError as exc:
                logger.warning(
                    "Audio extraction failed for session %s, using original media: %s",
                    session_id,
                    exc,
                )

        try:
            if audio_path is not None:
                reference = self._storage.reference(session_id, audio_path)
            else:
                reference = self._storage.reference(session_id, media_path, content_type)
            filename = self._store.get(session_id).filename
            return await self._transcription.submit(
                reference, {"session_id": session_id, "filename": filename}
            )
        finally:
            self._extraction.cleanup(audio_path)

    def _record_provider_status(self, session_id: str, provider_status: str) -> None:
        self._store.update(session_id, provider_status=provider_status)

    def _fail(self, session_id: str, message: str) -> None:
        logger.error("Session %s failed: %s", session_id, message)
        try:
            self._store.advance(session_id, SessionStatus.ERROR, error_message=message)
        except SessionNotFoundError:
            logger.info("Session %s no longer exists; failure not recorded", session_id)
            return
        except InvalidTransitionError as exc:
            logger.warning("Ignoring failure for session %s: %s", session_id, exc)
            return
        increment_session_finished(SessionStatus.ERROR.value)

    async def _auto_detect(self, session_id: str, result: TranscriptionResult) -> None:
        """Post-completion detection pass; failures never touch the session status."""

        if not self._detection.is_available():
            logger.info("Code detection unavailable; skipping session %s", session_id)
            increment_detection_run("automatic", "skipped")
            return

        try:
            outcome = await self._detection.detect(result, self._detection.default_threshold)
        except Exception as exc:
            logger.warning("Automatic code detection failed for session %s: %s", session_id, exc)
            increment_detection_run("automatic", "failed")
            return

        increment_detection_run("automatic", "succeeded")
        changes = {}
        if outcome.codes:
            changes["detected_codes"] = outcome.codes
        if outcome.expected_count is not None:
            changes["expected_code_count"] = outcome.expected_count
        if not changes:
            logger.info("No codes detected for session %s", session_id)
            return
        try:
            self._store.update(session_id, **changes)
        except SessionNotFoundError:
            logger.info("Session %s deleted before detection results were stored", session_id)
            return
        logger.info("Stored %d detected codes for session %s", len(outcome.codes), session_id)

    async def redetect(
        self,
        session_id: str,
        confidence_threshold: float | None = None,
    ) -> tuple[Session, DetectionOutcome]:
        """Re-run detection on demand and overwrite the stored codes.

        Raises ``SessionNotFoundError``, ``TranscriptNotReadyError``,
        ``DetectionUnavailableError`` or ``CodeDetectionError``.
        """

        session = self._store.get(session_id)
        if session.transcription_result is None:
            raise TranscriptNotReadyError(f"Session {session_id} has no transcription result yet")
        if not self._detection.is_available():
            raise DetectionUnavailableError("Code detection is not configured")

        threshold = (
            self._detection.manual_threshold
            if confidence_threshold is None
            else confidence_threshold
        )
        try:
            outcome = await self._detection.detect(session.transcription_result, threshold)
        except Exception:
            increment_detection_run("manual", "failed")
            raise
        increment_detection_run("manual", "succeeded")

        changes = {"detected_codes": outcome.codes}
        if outcome.expected_count is not None:
            changes["expected_code_count"] = outcome.expected_count
        updated = self._store.update(session_id, **changes)
        logger.info(
            "Manual detection for session %s stored %d codes (threshold %.2f)",
            session_id,
            len(outcome.codes),
            threshold,
        )
        return updated, outcome

    async def delete_session(self, session_id: str) -> bool:
        """Remove the record and its media, cancelling any in-flight provider job."""

        job_id = self._active_jobs.pop(session_id, None)
        if not self._store.delete(session_id):
            return False
        self._storage.delete(session_id)
        if job_id:
            await self._transcription.cancel(job_id)
        return True

    async def maintenance(self, older_than_days: int = 30) -> MaintenanceReport:
        """Purge old failed sessions and abandoned staged uploads."""

        deleted = 0
        for session in self._store.stale_sessions(timedelta(days=older_than_days)):
            if await self.delete_session(session.id):
                deleted += 1
        cleaned = self._storage.purge_stale_uploads(older_than_days * 24 * 60 * 60)
        if deleted or cleaned:
            logger.info("Maintenance complete: %d sessions, %d temp files cleaned", deleted, cleaned)
        return MaintenanceReport(deleted_sessions=deleted, cleaned_uploads=cleaned)

    async def wait_idle(self) -> None:
        """Wait until every scheduled background task has finished."""

        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _spawn(self, coroutine: Coroutine, *, name: str) -> asyncio.Task:
        task = asyncio.create_task(coroutine, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task


__all__ = [
    "DetectionUnavailableError",
    "MaintenanceReport",
    "SessionOrchestrator",
    "TranscriptNotReadyError",
]
