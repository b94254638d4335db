"""HTTP-level tests for the session, media and health endpoints."""

from __future__ import annotations

import json
import time

import httpx
import pytest
from fastapi.testclient import TestClient

from conftest import FakeLlmClient, FakeProvider, no_sleep
from transcriptor.main import create_app
from transcriptor.models import Session, SessionStatus, TranscriptionResult, Word
from transcriptor.services.audio_extraction import AudioExtractionService, ExtractionError
from transcriptor.services.code_detection import CodeDetectionService
from transcriptor.services.transcription import TranscriptionService

AUDIO_BYTES = b"ID3" + b"\x00" * 1021


def _client(settings, provider=None, llm=None, extraction=None) -> TestClient:
    transcription = TranscriptionService(
        settings.assemblyai,
        transport=httpx.MockTransport(provider or FakeProvider()),
        sleep=no_sleep,
    )
    detection = CodeDetectionService(settings.detection, llm or FakeLlmClient("[]"))
    app = create_app(
        settings,
        transcription=transcription,
        detection=detection,
        extraction=extraction,
        configure_logging=False,
    )
    return TestClient(app)


def _upload(client: TestClient, name: str = "talk.mp3", payload: bytes = AUDIO_BYTES, content_type="audio/mpeg"):
    return client.post("/sessions", files={"file": (name, payload, content_type)})


def _wait_for_status(client: TestClient, session_id: str, status: str, timeout: float = 5.0) -> dict:
    deadline = time.monotonic() + timeout
    payload: dict = {}
    while time.monotonic() < deadline:
        payload = client.get(f"/sessions/{session_id}").json()
        if payload.get("status") == status:
            return payload
        time.sleep(0.02)
    raise AssertionError(f"session {session_id} never reached {status}: {payload}")


def _completed_session(session_id: str) -> Session:
    return Session(
        id=session_id,
        filename="talk.mp3",
        status=SessionStatus.COMPLETED,
        transcription_result=TranscriptionResult(
            id="job-9",
            text="the code is jba one two three",
            confidence=0.9,
            words=[
                Word(text=token, start=index * 500, end=index * 500 + 400, confidence=0.9)
                for index, token in enumerate("the code is jba one two three".split())
            ],
        ),
    )


def test_upload_transcribes_in_background(settings):
    with _client(settings) as client:
        response = _upload(client)

        assert response.status_code == 202
        body = response.json()
        assert body["status"] == "queued"
        assert body["mediaUrl"] == f"/sessions/{body['sessionId']}/media"

        session = _wait_for_status(client, body["sessionId"], "completed")

    assert session["filename"] == "talk.mp3"
    assert session["providerJobId"] == "job-1"
    assert session["transcriptionResult"]["text"] == "hello world"
    assert session["transcriptionResult"]["words"][0] == {
        "text": "hello",
        "start": 0,
        "end": 500,
        "confidence": 0.98,
    }
    assert "detectedCodes" not in session


def test_failed_transcription_is_reported(settings):
    provider = FakeProvider(statuses=[{"id": "job-1", "status": "error", "error": "file too short"}])
    with _client(settings, provider) as client:
        session_id = _upload(client).json()["sessionId"]
        session = _wait_for_status(client, session_id, "error")

    assert "file too short" in session["errorMessage"]


@pytest.mark.parametrize(
    ("name", "payload", "content_type", "status_code"),
    [
        ("empty.mp3", b"", "audio/mpeg", 400),
        ("notes.txt", b"hello", "text/plain", 415),
    ],
)
def test_invalid_uploads_are_rejected(settings, name, payload, content_type, status_code):
    with _client(settings) as client:
        response = _upload(client, name, payload, content_type)
        listed = client.get("/sessions").json()

    assert response.status_code == status_code
    assert listed["count"] == 0
    assert list(settings.storage.uploads_dir.iterdir()) == []


def test_oversized_upload_is_rejected(settings):
    settings.storage.max_upload_bytes = 100
    with _client(settings) as client:
        response = _upload(client)

    assert response.status_code == 413
    assert list(settings.storage.uploads_dir.iterdir()) == []


class RecordingExtraction(AudioExtractionService):
    """Extraction adapter that records calls and always falls back."""

    def __init__(self, config) -> None:
        super().__init__(config)
        self.extracted: list[str] = []

    async def extract(self, source, options=None):
        self.extracted.append(source.name)
        raise ExtractionError("no ffmpeg in tests")


def test_extraction_runs_only_when_requested(settings):
    extraction = RecordingExtraction(settings.extraction)
    with _client(settings, extraction=extraction) as client:
        plain = _upload(client, "talk.mp4", b"v" * 2048, "video/mp4").json()["sessionId"]
        _wait_for_status(client, plain, "completed")
        assert extraction.extracted == []

        requested = client.post(
            "/sessions",
            files={"file": ("talk.mp4", b"v" * 2048, "video/mp4")},
            data={"extract_audio": "true"},
        ).json()["sessionId"]
        _wait_for_status(client, requested, "completed")

    assert extraction.extracted == [f"{requested}.mp4"]


def test_content_type_is_guessed_from_filename(settings):
    with _client(settings) as client:
        response = _upload(client, "talk.mp3", AUDIO_BYTES, "application/octet-stream")

    assert response.status_code == 202


def test_list_filters_and_limits(settings):
    with _client(settings) as client:
        store = client.app.state.store
        store.create(Session(id="a", filename="a.mp3", upload_timestamp="2024-01-01T00:00:00.000Z"))
        store.create(Session(id="b", filename="b.mp3", upload_timestamp="2024-01-02T00:00:00.000Z"))
        store.advance("a", SessionStatus.ERROR, error_message="boom")

        everything = client.get("/sessions").json()
        limited = client.get("/sessions", params={"limit": 1}).json()
        failed = client.get("/sessions", params={"status": "error"}).json()
        invalid = client.get("/sessions", params={"status": "exploded"})

    assert [session["id"] for session in everything["sessions"]] == ["b", "a"]
    assert limited["count"] == 1
    assert [session["id"] for session in failed["sessions"]] == ["a"]
    assert invalid.status_code == 422


def test_get_unknown_session_returns_404(settings):
    with _client(settings) as client:
        response = client.get("/sessions/does-not-exist")

    assert response.status_code == 404
    assert response.json() == {"detail": "Session not found"}


def test_delete_removes_session_and_media(settings):
    with _client(settings) as client:
        session_id = _upload(client).json()["sessionId"]
        _wait_for_status(client, session_id, "completed")

        deleted = client.delete(f"/sessions/{session_id}")
        after = client.get(f"/sessions/{session_id}")
        media = client.get(f"/sessions/{session_id}/media")
        again = client.delete(f"/sessions/{session_id}")
        listed = client.get("/sessions").json()

    assert deleted.status_code == 200
    assert deleted.json()["message"] == "Session deleted successfully"
    assert after.status_code == 404
    assert media.status_code == 404
    assert again.status_code == 404
    assert listed["count"] == 0
    assert list(settings.storage.media_dir.iterdir()) == []


def test_media_supports_byte_ranges(settings):
    with _client(settings) as client:
        session_id = _upload(client).json()["sessionId"]

        full = client.get(f"/sessions/{session_id}/media")
        partial = client.get(f"/sessions/{session_id}/media", headers={"Range": "bytes=0-3"})
        suffix = client.get(f"/sessions/{session_id}/media", headers={"Range": "bytes=-4"})
        invalid = client.get(f"/sessions/{session_id}/media", headers={"Range": "bytes=5000-"})

    assert full.status_code == 200
    assert full.content == AUDIO_BYTES
    assert full.headers["accept-ranges"] == "bytes"
    assert full.headers["content-type"].startswith("audio/mpeg")

    assert partial.status_code == 206
    assert partial.content == AUDIO_BYTES[:4]
    assert partial.headers["content-range"] == f"bytes 0-3/{len(AUDIO_BYTES)}"

    assert suffix.status_code == 206
    assert suffix.content == AUDIO_BYTES[-4:]

    assert invalid.status_code == 416
    assert invalid.headers["content-range"] == f"bytes */{len(AUDIO_BYTES)}"


def test_detect_codes_error_responses(settings):
    with _client(settings, llm=FakeLlmClient(configured=False)) as client:
        store = client.app.state.store
        store.create(Session(id="pending", filename="a.mp3"))
        store.create(_completed_session("done"))

        missing = client.post("/sessions/missing/detect-codes")
        not_ready = client.post("/sessions/pending/detect-codes")
        unavailable = client.post("/sessions/done/detect-codes")

    assert missing.status_code == 404
    assert not_ready.status_code == 400
    assert unavailable.status_code == 503


def test_detect_codes_returns_and_stores_detections(settings):
    candidate = {
        "code": "JBA123",
        "originalText": "jba one two three",
        "context": "the code is jba one two three",
        "confidence": 0.64,
    }
    llm = FakeLlmClient(json.dumps([candidate]) + '\n{"expectedCount": 2}')
    with _client(settings, llm=llm) as client:
        client.app.state.store.create(_completed_session("done"))

        response = client.post("/sessions/done/detect-codes")
        strict = client.post("/sessions/done/detect-codes", params={"confidence_threshold": 0.9})
        stored = client.get("/sessions/done").json()

    assert response.status_code == 200
    body = response.json()
    assert body["expectedCodeCount"] == 2
    assert body["detectedCodes"][0]["code"] == "JBA123"
    assert body["detectedCodes"][0]["variationType"] == "lowercase"
    assert body["detectedCodes"][0]["timestamp"] == 1500

    assert strict.status_code == 200
    assert strict.json()["detectedCodes"] == []
    assert stored["detectedCodes"] == []
    assert stored["status"] == "completed"


def test_detect_codes_model_failure_is_bad_gateway(settings):
    with _client(settings, llm=FakeLlmClient(error="throttled")) as client:
        client.app.state.store.create(_completed_session("done"))
        response = client.post("/sessions/done/detect-codes")
        stored = client.get("/sessions/done").json()

    assert response.status_code == 502
    assert stored["status"] == "completed"


def test_summary_and_maintenance(settings):
    with _client(settings) as client:
        store = client.app.state.store
        store.create(Session(id="old", filename="a.mp3", upload_timestamp="2020-01-01T00:00:00.000Z"))
        store.advance("old", SessionStatus.ERROR, error_message="boom")
        store.create(Session(id="new", filename="b.mp3"))

        summary = client.get("/sessions/summary").json()
        maintenance = client.post("/sessions/maintenance", params={"older_than_days": 30}).json()
        remaining = client.get("/sessions").json()

    assert summary["total"] == 2
    assert summary["byStatus"]["error"] == 1
    assert summary["oldestSession"] == "2020-01-01T00:00:00.000Z"
    assert maintenance == {"deletedSessions": 1, "cleanedUploads": 0}
    assert [session["id"] for session in remaining["sessions"]] == ["new"]


def test_health_reports_ok_when_everything_passes(settings):
    with _client(settings) as client:
        response = client.get("/health", params={"detailed": "true"})

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "OK"
    assert body["services"] == {"transcription": True, "sessions": True, "file_system": True}
    assert body["details"]["session_count"] == 0


def test_health_is_unavailable_without_provider_key(make_settings):
    settings = make_settings(api_key=None)
    with _client(settings) as client:
        response = client.get("/health")

    assert response.status_code == 503
    assert response.json()["services"]["transcription"] is False
    assert "details" not in response.json()


def test_capabilities_report_feature_gates(settings):
    with _client(settings) as client:
        body = client.get("/capabilities").json()

    assert body["extraction"]["available"] is False
    assert body["detection"] == {"available": True, "model": "test-model"}
    assert body["transcription"]["configured"] is True
    assert body["transcription"]["direct_upload_limit_mb"] == 500
    assert "mp4" in body["transcription"]["supported_formats"]


def test_root_and_metrics(settings):
    with _client(settings) as client:
        _upload(client)
        root = client.get("/")
        metrics = client.get("/metrics")

    assert root.json()["status"] == "operational"
    assert metrics.status_code == 200
    assert "transcriptor_sessions_created_total" in metrics.text
    assert "http_requests_total" in metrics.text
