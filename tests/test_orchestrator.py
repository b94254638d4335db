"""Lifecycle tests for the session orchestrator with scripted provider responses."""

from __future__ import annotations

import asyncio
import json
import os
import subprocess
import time
from pathlib import Path

import httpx
import pytest

from conftest import FakeLlmClient, FakeProvider, completed_transcript, no_sleep
from transcriptor.models import Session, SessionStatus
from transcriptor.pipelines.session import (
    DetectionUnavailableError,
    SessionOrchestrator,
    TranscriptNotReadyError,
)
from transcriptor.services.audio_extraction import AudioExtractionService
from transcriptor.services.code_detection import CodeDetectionError, CodeDetectionService
from transcriptor.services.session_store import SessionNotFoundError, SessionStore
from transcriptor.services.storage import MediaStorage
from transcriptor.services.transcription import TranscriptionService

SPOKEN_TEXT = "the code is jay bee aye one two three"


class RecordingStore(SessionStore):
    """Session store that remembers the status after every write."""

    def __init__(self, path: Path) -> None:
        super().__init__(path)
        self.history: list[tuple[SessionStatus, str | None]] = []

    def update(self, session_id, **changes):
        updated = super().update(session_id, **changes)
        self.history.append((updated.status, updated.provider_status))
        return updated


def _spoken_transcript() -> dict:
    words = [
        {"text": token, "start": index * 400, "end": index * 400 + 350, "confidence": 0.9}
        for index, token in enumerate(SPOKEN_TEXT.split())
    ]
    return completed_transcript(text=SPOKEN_TEXT, words=words)


def _spoken_candidate(confidence: float = 0.92) -> dict:
    return {
        "code": "JBA123",
        "originalText": "jay bee aye one two three",
        "context": SPOKEN_TEXT,
        "confidence": confidence,
    }


class SteppingClock:
    """Monotonic clock that only moves when the poller sleeps."""

    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.now += seconds


def _build(settings, provider, llm=None, sleep=no_sleep, clock=time.monotonic):
    store = RecordingStore(settings.storage.sessions_file)
    storage = MediaStorage(settings.storage)
    transcription = TranscriptionService(
        settings.assemblyai,
        transport=httpx.MockTransport(provider),
        sleep=sleep,
        clock=clock,
    )
    orchestrator = SessionOrchestrator(
        store,
        storage,
        transcription,
        AudioExtractionService(settings.extraction),
        CodeDetectionService(settings.detection, llm or FakeLlmClient("[]")),
    )
    return orchestrator, store, storage


def _stage(storage: MediaStorage, name: str = "talk.mp3", payload: bytes = b"a" * 2048) -> Path:
    path = storage.staging_path(name)
    path.write_bytes(payload)
    return path


def _run(orchestrator, staged, filename="talk.mp3", content_type="audio/mpeg", **kwargs) -> Session:
    async def scenario() -> Session:
        session = await orchestrator.start(staged, filename, content_type, **kwargs)
        assert session.status == SessionStatus.QUEUED
        await orchestrator.wait_idle()
        return session

    return asyncio.run(scenario())


def test_upload_to_completion_without_codes(settings):
    provider = FakeProvider(
        statuses=[{"id": "job-1", "status": "processing"}, completed_transcript()]
    )
    llm = FakeLlmClient("[]")
    orchestrator, store, storage = _build(settings, provider, llm)
    staged = _stage(storage)

    created = _run(orchestrator, staged)
    session = store.get(created.id)

    assert session.status == SessionStatus.COMPLETED
    assert session.provider_job_id == "job-1"
    assert session.provider_status == "completed"
    assert session.transcription_result.text == "hello world"
    assert session.transcription_result.words[0].start == 0
    assert session.transcription_result.words[0].end == 500
    assert session.detected_codes is None
    assert session.media_url == f"/sessions/{created.id}/media"
    assert len(llm.calls) == 1
    assert not staged.exists()
    assert storage.locate(created.id) is not None


def test_status_only_moves_forward_and_every_provider_status_is_kept(settings):
    provider = FakeProvider(
        statuses=[
            {"id": "job-1", "status": "queued"},
            {"id": "job-1", "status": "processing"},
            completed_transcript(),
        ]
    )
    orchestrator, store, storage = _build(settings, provider)

    _run(orchestrator, _stage(storage))

    statuses = [status for status, _ in store.history]
    order = [SessionStatus.QUEUED, SessionStatus.PROCESSING, SessionStatus.COMPLETED, SessionStatus.ERROR]
    ranks = [order.index(status) for status in statuses]
    assert ranks == sorted(ranks)
    assert [provider_status for _, provider_status in store.history] == [
        "queued",
        "queued",
        "processing",
        "completed",
        "completed",
    ]
    assert statuses[-1] == SessionStatus.COMPLETED


_STATUS_ORDER = [
    SessionStatus.QUEUED,
    SessionStatus.PROCESSING,
    SessionStatus.COMPLETED,
    SessionStatus.ERROR,
]


@pytest.mark.parametrize(
    ("statuses", "final_status"),
    [
        pytest.param(
            [{"id": "job-1", "status": "processing"}, {"id": "job-1", "status": "error", "error": "bad audio"}],
            SessionStatus.ERROR,
            id="error-after-processing",
        ),
        pytest.param(
            [
                {"id": "job-1", "status": "throttled"},
                {"id": "job-1", "status": ""},
                {"id": "job-1", "status": "processing"},
                completed_transcript(),
            ],
            SessionStatus.COMPLETED,
            id="unknown-status-strings",
        ),
        pytest.param(
            [
                {"id": "job-1", "status": "processing"},
                {"id": "job-1", "status": "queued"},
                {"id": "job-1", "status": "processing"},
                completed_transcript(),
            ],
            SessionStatus.COMPLETED,
            id="queued-after-processing",
        ),
        pytest.param(
            [{"id": "job-1", "status": "processing"}],
            SessionStatus.ERROR,
            id="polling-timeout",
        ),
        pytest.param(
            [completed_transcript()],
            SessionStatus.COMPLETED,
            id="immediate-completion",
        ),
    ],
)
def test_status_progression_is_monotonic_for_any_provider_script(make_settings, statuses, final_status):
    settings = make_settings(poll_interval_seconds=1.0, max_poll_seconds=5.0)
    settings.storage.ensure_dirs()
    provider = FakeProvider(statuses=statuses)
    clock = SteppingClock()
    orchestrator, store, storage = _build(settings, provider, sleep=clock.sleep, clock=clock)

    created = _run(orchestrator, _stage(storage))

    ranks = [_STATUS_ORDER.index(status) for status, _ in store.history]
    assert ranks == sorted(ranks)
    assert store.history[0][0] == SessionStatus.PROCESSING
    session = store.get(created.id)
    assert session.status == final_status
    if final_status == SessionStatus.COMPLETED:
        assert session.transcription_result is not None
    else:
        assert session.error_message
        assert session.transcription_result is None


def test_detected_codes_are_stored_after_completion(settings):
    provider = FakeProvider(statuses=[_spoken_transcript()])
    llm = FakeLlmClient(json.dumps([_spoken_candidate()]) + '\n{"expectedCount": 1}')
    orchestrator, store, storage = _build(settings, provider, llm)

    created = _run(orchestrator, _stage(storage))
    session = store.get(created.id)

    assert session.status == SessionStatus.COMPLETED
    assert [record.code for record in session.detected_codes] == ["JBA123"]
    assert session.detected_codes[0].timestamp == 1200
    assert session.expected_code_count == 1


def test_detection_failure_keeps_session_completed(settings):
    provider = FakeProvider()
    orchestrator, store, storage = _build(settings, provider, FakeLlmClient(error="model unavailable"))

    created = _run(orchestrator, _stage(storage))
    session = store.get(created.id)

    assert session.status == SessionStatus.COMPLETED
    assert session.detected_codes is None
    assert session.transcription_result is not None


def test_provider_error_marks_session_failed_and_keeps_media(settings):
    provider = FakeProvider(statuses=[{"id": "job-1", "status": "error", "error": "unsupported codec"}])
    llm = FakeLlmClient("[]")
    orchestrator, store, storage = _build(settings, provider, llm)

    created = _run(orchestrator, _stage(storage))
    session = store.get(created.id)

    assert session.status == SessionStatus.ERROR
    assert "unsupported codec" in session.error_message
    assert session.transcription_result is None
    assert storage.locate(created.id) is not None
    assert llm.calls == []


def test_missing_provider_key_fails_from_queued(make_settings):
    settings = make_settings(api_key=None)
    settings.storage.ensure_dirs()
    provider = FakeProvider()
    orchestrator, store, storage = _build(settings, provider)

    created = _run(orchestrator, _stage(storage))
    session = store.get(created.id)

    assert session.status == SessionStatus.ERROR
    assert "ASSEMBLYAI_API_KEY" in session.error_message
    assert provider.requests == []


def test_deleting_mid_poll_does_not_resurrect_session(settings):
    provider = FakeProvider(
        statuses=[
            {"id": "job-1", "status": "processing"},
            {"id": "job-1", "status": "processing"},
            completed_transcript(),
        ]
    )
    holder: dict = {}

    async def deleting_sleep(_seconds: float) -> None:
        for session in holder["store"].list():
            await holder["orchestrator"].delete_session(session.id)

    orchestrator, store, storage = _build(settings, provider, sleep=deleting_sleep)
    holder.update(orchestrator=orchestrator, store=store)

    created = _run(orchestrator, _stage(storage))

    assert store.list() == []
    with pytest.raises(SessionNotFoundError):
        store.get(created.id)
    assert provider.deleted == ["job-1"]
    assert storage.locate(created.id) is None
    persisted = json.loads(settings.storage.sessions_file.read_text(encoding="utf-8"))
    assert persisted["sessions"] == []


def test_extraction_failure_falls_back_to_original_media(settings):
    provider = FakeProvider()
    orchestrator, store, storage = _build(settings, provider)
    original = b"v" * 4096

    created = _run(
        orchestrator,
        _stage(storage, "lecture.mp4", original),
        "lecture.mp4",
        "video/mp4",
        extract_audio=True,
    )

    assert store.get(created.id).status == SessionStatus.COMPLETED
    assert provider.uploaded_bytes == len(original)


def test_extracted_audio_is_uploaded_then_removed(settings, monkeypatch):
    provider = FakeProvider()
    orchestrator, store, storage = _build(settings, provider)
    extracted = b"w" * 100

    def fake_run(cmd, **kwargs):
        Path(cmd[-1]).write_bytes(extracted)
        return subprocess.CompletedProcess(cmd, 0, b"", b"")

    monkeypatch.setattr(subprocess, "run", fake_run)

    created = _run(
        orchestrator,
        _stage(storage, "lecture.mp4", b"v" * 4096),
        "lecture.mp4",
        "video/mp4",
        extract_audio=True,
    )

    assert store.get(created.id).status == SessionStatus.COMPLETED
    assert provider.uploaded_bytes == len(extracted)
    assert list(settings.storage.media_dir.glob("*.audio.*")) == []


def test_extraction_only_runs_when_requested(settings, monkeypatch):
    provider = FakeProvider()
    orchestrator, store, storage = _build(settings, provider)

    def fail_run(cmd, **kwargs):
        raise AssertionError("ffmpeg should not run")

    monkeypatch.setattr(subprocess, "run", fail_run)

    _run(orchestrator, _stage(storage, "lecture.mp4", b"v" * 512), "lecture.mp4", "video/mp4")

    assert provider.uploaded_bytes == 512


def test_redetect_overwrites_codes_with_manual_threshold(settings):
    provider = FakeProvider(statuses=[_spoken_transcript()])
    llm = FakeLlmClient(json.dumps([_spoken_candidate(confidence=0.65)]))
    orchestrator, store, storage = _build(settings, provider, llm)
    created = _run(orchestrator, _stage(storage))
    assert store.get(created.id).detected_codes is None

    session, outcome = asyncio.run(orchestrator.redetect(created.id))

    assert [record.code for record in outcome.codes] == ["JBA123"]
    assert session.detected_codes[0].confidence == pytest.approx(0.65)
    assert store.get(created.id).status == SessionStatus.COMPLETED


def test_redetect_error_cases(settings):
    orchestrator, store, storage = _build(settings, FakeProvider(), FakeLlmClient(configured=False))
    store.create(Session(id="pending", filename="a.mp3"))

    with pytest.raises(SessionNotFoundError):
        asyncio.run(orchestrator.redetect("missing"))
    with pytest.raises(TranscriptNotReadyError):
        asyncio.run(orchestrator.redetect("pending"))

    created = _run(orchestrator, _stage(storage))
    with pytest.raises(DetectionUnavailableError):
        asyncio.run(orchestrator.redetect(created.id))


def test_redetect_surfaces_model_failures(settings):
    llm = FakeLlmClient("[]")
    orchestrator, store, storage = _build(settings, FakeProvider(), llm)
    created = _run(orchestrator, _stage(storage))
    llm.error = "throttled"

    with pytest.raises(CodeDetectionError):
        asyncio.run(orchestrator.redetect(created.id))
    assert store.get(created.id).status == SessionStatus.COMPLETED


def test_maintenance_purges_old_failures_and_stale_uploads(settings):
    orchestrator, store, storage = _build(settings, FakeProvider())
    store.create(Session(id="old", filename="a.mp4", upload_timestamp="2020-01-01T00:00:00.000Z"))
    store.advance("old", SessionStatus.ERROR, error_message="boom")
    store.create(Session(id="recent", filename="b.mp4"))
    store.advance("recent", SessionStatus.ERROR, error_message="boom")
    (settings.storage.media_dir / "old.mp4").write_bytes(b"x")
    stale_upload = _stage(storage, "left-behind.mp4")
    old_time = time.time() - 40 * 24 * 60 * 60
    os.utime(stale_upload, (old_time, old_time))
    fresh_upload = _stage(storage, "in-progress.mp4")

    report = asyncio.run(orchestrator.maintenance(30))

    assert report.deleted_sessions == 1
    assert report.cleaned_uploads == 1
    assert [session.id for session in store.list()] == ["recent"]
    assert not (settings.storage.media_dir / "old.mp4").exists()
    assert not stale_upload.exists()
    assert fresh_upload.exists()
