"""Shared fixtures and fakes for the transcriptor test-suite."""

from __future__ import annotations

import json
from pathlib import Path
import sys
from typing import Any, Callable

import httpx
import pytest

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from transcriptor.config.settings import (  # noqa: E402
    AssemblyAIConfig,
    DetectionConfig,
    ExtractionConfig,
    Settings,
    StorageConfig,
)
from transcriptor.services.llm_client import LlmInvocationError  # noqa: E402

API_KEY = "test-key"


class FakeLlmClient:
    """Stands in for :class:`BedrockLlmClient`, returning a canned response."""

    def __init__(self, response: str | None = "[]", *, configured: bool = True, error: str | None = None):
        self.response = response
        self.configured = configured
        self.error = error
        self.model_id = "test-model"
        self.calls: list[dict[str, Any]] = []

    async def invoke(self, **kwargs: Any) -> str | None:
        self.calls.append(kwargs)
        if self.error:
            raise LlmInvocationError(self.error)
        return self.response


async def no_sleep(_seconds: float) -> None:
    return None


def json_response(payload: Any, status_code: int = 200) -> httpx.Response:
    return httpx.Response(status_code, content=json.dumps(payload).encode("utf-8"))


def completed_transcript(job_id: str = "job-1", text: str = "hello world", words: list | None = None) -> dict:
    return {
        "id": job_id,
        "status": "completed",
        "text": text,
        "confidence": 0.93,
        "words": words
        if words is not None
        else [{"text": "hello", "start": 0, "end": 500, "confidence": 0.98}],
    }


class FakeProvider:
    """Scripted AssemblyAI endpoints served through ``httpx.MockTransport``.

    ``statuses`` is the sequence of transcript payloads returned by
    successive ``GET /v2/transcript/{id}`` calls; the last one repeats.
    """

    def __init__(self, statuses: list[dict] | None = None, job_id: str = "job-1") -> None:
        self.job_id = job_id
        self.statuses = list(statuses or [completed_transcript(job_id)])
        self.requests: list[httpx.Request] = []
        self.submitted: list[dict] = []
        self.uploaded_bytes = 0
        self.deleted: list[str] = []
        self.poll_count = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if request.method == "POST" and path == "/v2/upload":
            self.uploaded_bytes += len(request.content)
            return json_response({"upload_url": "https://cdn.example.com/upload/abc"})
        if request.method == "POST" and path == "/v2/transcript":
            self.submitted.append(json.loads(request.content))
            return json_response({"id": self.job_id, "status": "queued"})
        if request.method == "GET" and path == f"/v2/transcript/{self.job_id}":
            index = min(self.poll_count, len(self.statuses) - 1)
            self.poll_count += 1
            return json_response(self.statuses[index])
        if request.method == "DELETE" and path.startswith("/v2/transcript/"):
            self.deleted.append(path.rsplit("/", 1)[-1])
            return json_response({"status": "error"})
        if request.method == "GET" and path == "/v2/transcript":
            return json_response({"transcripts": []})
        return json_response({"error": "not found"}, status_code=404)


@pytest.fixture
def make_settings(tmp_path: Path) -> Callable[..., Settings]:
    """Build settings rooted in ``tmp_path`` with a fake provider key."""

    def _factory(**assemblyai_overrides: Any) -> Settings:
        assemblyai_values = {
            "api_key": API_KEY,
            "poll_interval_seconds": 0.01,
            "retry_base_delay_seconds": 1.0,
        }
        assemblyai_values.update(assemblyai_overrides)
        return Settings(
            log_file=str(tmp_path / "logs" / "app.log"),
            pipeline_log_file=str(tmp_path / "logs" / "pipeline.log"),
            transcript_log_file=str(tmp_path / "logs" / "transcripts.log"),
            assemblyai=AssemblyAIConfig(**assemblyai_values),
            storage=StorageConfig(
                data_dir=tmp_path / "data",
                uploads_dir=tmp_path / "uploads",
                media_dir=tmp_path / "media",
            ),
            extraction=ExtractionConfig(ffmpeg_binary=str(tmp_path / "missing-ffmpeg")),
            detection=DetectionConfig(),
        )

    return _factory


@pytest.fixture
def settings(make_settings: Callable[..., Settings]) -> Settings:
    config = make_settings()
    config.storage.ensure_dirs()
    return config
