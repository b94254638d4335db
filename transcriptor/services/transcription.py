"""AssemblyAI integration: submission, status polling and result retrieval."""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, AsyncIterator, Awaitable, Callable, Mapping, Optional

import httpx
from fastapi.concurrency import run_in_threadpool
from pydantic import ValidationError

from transcriptor.config.settings import AssemblyAIConfig
from transcriptor.models import TranscriptionResult
from transcriptor.services.storage import MediaReference
from transcriptor.telemetry import increment_provider_retry

logger = logging.getLogger(__name__)

_MB = 1024 * 1024
_UPLOAD_CHUNK_SIZE = 5 * _MB

# Connection reset / refused / host not found.
_TRANSIENT_TRANSPORT_ERRORS = (
    httpx.ConnectError,
    httpx.ReadError,
    httpx.WriteError,
    httpx.RemoteProtocolError,
)

SUPPORTED_FORMATS = (
    "mp3", "mp4", "m4a", "aac", "wav", "flac", "ogg", "webm",
    "mov", "avi", "mkv", "wmv", "3gp", "mpg", "mpeg",
)

StatusCallback = Callable[[str], Optional[Awaitable[None]]]


class TranscriptionError(RuntimeError):
    """Base class for transcription provider failures."""


class ProviderConfigurationError(TranscriptionError):
    """Raised when the provider cannot be used with the current settings."""


class TransientProviderError(TranscriptionError):
    """A 5xx or connection-level failure that may succeed on retry."""


class TranscriptionFailedError(TranscriptionError):
    """Raised when the provider rejects a request or reports a failed job."""


class TranscriptionTimeoutError(TranscriptionError):
    """Raised when a job does not reach a terminal state in time."""


@dataclass(frozen=True)
class ProviderStatus:
    """Remote job state plus the normalized result once completed."""

    job_id: str
    status: str
    result: TranscriptionResult | None = None
    error: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in ("completed", "error")


def is_transient(exc: BaseException) -> bool:
    """Return True for failures worth retrying (5xx or connection errors)."""

    if isinstance(exc, TransientProviderError):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code >= 500
    return isinstance(exc, _TRANSIENT_TRANSPORT_ERRORS)


def normalize_transcript(payload: Mapping[str, Any]) -> TranscriptionResult:
    """Map a provider transcript payload onto :class:`TranscriptionResult`."""

    words = []
    for word in payload.get("words") or []:
        speaker = word.get("speaker")
        words.append(
            {
                "text": word.get("text") or "",
                "start": int(word.get("start") or 0),
                "end": int(word.get("end") or 0),
                "confidence": float(word.get("confidence") or 0.0),
                "speaker": str(speaker) if speaker is not None else None,
            }
        )

    chapters = None
    if payload.get("chapters"):
        chapters = [
            {
                "headline": chapter.get("headline") or "",
                "summary": chapter.get("summary") or "",
                "gist": chapter.get("gist") or "",
                "start": int(chapter.get("start") or 0),
                "end": int(chapter.get("end") or 0),
            }
            for chapter in payload["chapters"]
        ]

    return TranscriptionResult.model_validate(
        {
            "id": payload.get("id"),
            "text": payload.get("text") or "",
            "confidence": float(payload.get("confidence") or 0.0),
            "words": words,
            "chapters": chapters,
        }
    )


class TranscriptionService:
    """Thin async client for the AssemblyAI v2 REST API."""

    def __init__(
        self,
        config: AssemblyAIConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config
        self._sleep = sleep
        self._clock = clock
        headers = {}
        if config.api_key:
            headers["authorization"] = config.api_key.get_secret_value()
        self._client = httpx.AsyncClient(
            base_url=config.base_url,
            headers=headers,
            timeout=config.request_timeout_seconds,
            transport=transport,
        )

    @property
    def configured(self) -> bool:
        return self._config.configured

    @property
    def direct_upload_limit_bytes(self) -> int:
        return self._config.direct_upload_limit_mb * _MB

    @staticmethod
    def supported_formats() -> tuple[str, ...]:
        return SUPPORTED_FORMATS

    async def aclose(self) -> None:
        await self._client.aclose()

    def _ensure_configured(self) -> None:
        if not self._config.configured:
            raise ProviderConfigurationError("ASSEMBLYAI_API_KEY is not configured")

    async def submit(self, media: MediaReference, metadata: Mapping[str, Any] | None = None) -> str:
        """Submit ``media`` for transcription and return the provider job id."""

        self._ensure_configured()
        label = (metadata or {}).get("filename") or media.path.name
        size_mb = media.size_bytes / _MB
        use_direct_upload = media.size_bytes <= self.direct_upload_limit_bytes
        logger.info(
            "Starting transcription for %s (%.1fMB) upload=%s",
            label,
            size_mb,
            "direct" if use_direct_upload else "url",
        )

        if use_direct_upload:
            audio_url = await self._upload(media.path)
        else:
            if not media.public_url:
                raise ProviderConfigurationError(
                    "STORAGE_PUBLIC_BASE_URL must be configured for files larger than "
                    f"{self._config.direct_upload_limit_mb}MB"
                )
            audio_url = media.public_url
            logger.info("Using public URL %s", audio_url)

        params: dict[str, Any] = {
            "audio_url": audio_url,
            "auto_chapters": self._config.auto_chapters,
        }
        if self._config.word_boost:
            params["word_boost"] = list(self._config.word_boost)
            params["boost_param"] = self._config.boost_param

        payload = await self._with_retry(
            "submit", lambda: self._request("POST", "/v2/transcript", json=params)
        )
        job_id = payload.get("id")
        if not job_id:
            raise TranscriptionFailedError("Provider response did not include a transcript id")
        logger.info("Transcription submitted: %s", job_id)
        return str(job_id)

    async def _upload(self, path: Path) -> str:
        payload = await self._with_retry(
            "upload",
            lambda: self._request("POST", "/v2/upload", content=_aiter_file(path)),
        )
        upload_url = payload.get("upload_url")
        if not upload_url:
            raise TranscriptionFailedError("Provider upload did not return an upload_url")
        return str(upload_url)

    async def fetch_status(self, job_id: str) -> ProviderStatus:
        """Return the current remote status, with the result once completed."""

        self._ensure_configured()
        payload = await self._with_retry(
            "status", lambda: self._request("GET", f"/v2/transcript/{job_id}")
        )
        status = str(payload.get("status") or "unknown")
        result = None
        if status == "completed":
            try:
                result = normalize_transcript(payload)
            except (ValidationError, TypeError, ValueError) as exc:
                raise TranscriptionFailedError(f"Malformed transcript payload for {job_id}: {exc}") from exc
            logger.info(
                "Transcript %s: %d characters, confidence %.1f%%, %d chapters",
                job_id,
                len(result.text),
                result.confidence * 100,
                len(result.chapters or []),
            )
        return ProviderStatus(job_id=job_id, status=status, result=result, error=payload.get("error"))

    async def poll_until_terminal(
        self,
        job_id: str,
        on_status_change: StatusCallback | None = None,
    ) -> TranscriptionResult:
        """Poll ``job_id`` until it completes, fails, or the overall ceiling passes.

        Every observed status is reported to ``on_status_change``, terminal
        ones included.
        """

        interval = self._config.poll_interval_seconds
        ceiling = self._config.max_poll_seconds
        started = self._clock()
        logger.info("Starting transcription polling for %s", job_id)

        while self._clock() - started < ceiling:
            observed = await self.fetch_status(job_id)
            if on_status_change is not None:
                outcome = on_status_change(observed.status)
                if inspect.isawaitable(outcome):
                    await outcome

            if observed.status == "completed":
                logger.info("Transcription completed: %s", job_id)
                if observed.result is None:
                    raise TranscriptionFailedError(f"Transcription {job_id} completed without a result")
                return observed.result
            if observed.status == "error":
                raise TranscriptionFailedError(
                    f"Transcription failed: {observed.error or job_id}"
                )
            if observed.status not in ("queued", "processing"):
                logger.warning("Unknown status '%s' for transcription %s", observed.status, job_id)
            else:
                logger.debug("Transcription %s: %s", observed.status, job_id)
            await self._sleep(interval)

        raise TranscriptionTimeoutError(
            f"Transcription polling timeout after {ceiling / 60:.0f} minutes: {job_id}"
        )

    async def cancel(self, job_id: str) -> bool:
        """Delete a provider job; failures are logged, not raised."""

        if not self._config.configured:
            return False
        try:
            await self._request("DELETE", f"/v2/transcript/{job_id}")
        except TranscriptionError as exc:
            logger.warning("Failed to cancel transcription %s: %s", job_id, exc)
            return False
        logger.info("Cancelled transcription %s", job_id)
        return True

    async def health(self) -> tuple[bool, dict[str, Any]]:
        """Check that the provider API is reachable with our credentials."""

        if not self._config.configured:
            return False, {"api_accessible": False, "error": "ASSEMBLYAI_API_KEY not configured"}
        try:
            await self._request("GET", "/v2/transcript", params={"limit": 1})
        except TranscriptionError as exc:
            logger.warning("Transcription provider health check failed: %s", exc)
            return False, {"api_accessible": False, "error": str(exc)}
        return True, {"api_accessible": True, "account_valid": True}

    async def _request(self, method: str, url: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = await self._client.request(method, url, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            message = f"{method} {url} returned {exc.response.status_code}: {_error_detail(exc.response)}"
            if is_transient(exc):
                raise TransientProviderError(message) from exc
            raise TranscriptionFailedError(message) from exc
        except httpx.HTTPError as exc:
            message = f"{method} {url} failed: {exc.__class__.__name__}: {exc}"
            if is_transient(exc):
                raise TransientProviderError(message) from exc
            raise TranscriptionFailedError(message) from exc

        if not response.content:
            return {}
        try:
            data = response.json()
        except ValueError as exc:
            raise TranscriptionFailedError(f"Invalid JSON from provider for {method} {url}") from exc
        return data if isinstance(data, dict) else {"data": data}

    async def _with_retry(
        self,
        operation: str,
        call: Callable[[], Awaitable[dict[str, Any]]],
    ) -> dict[str, Any]:
        """Run ``call`` retrying transient failures with exponential backoff."""

        max_attempts = self._config.max_retries
        for attempt in range(1, max_attempts + 1):
            try:
                return await call()
            except TransientProviderError as exc:
                logger.warning(
                    "Transcription %s attempt %s/%s failed: %s",
                    operation,
                    attempt,
                    max_attempts,
                    exc,
                )
                if attempt >= max_attempts:
                    raise TranscriptionFailedError(
                        f"Transcription {operation} failed after {max_attempts} attempts: {exc}"
                    ) from exc
                delay = self._config.retry_base_delay_seconds * 2 ** (attempt - 1)
                increment_provider_retry(operation)
                logger.info("Retrying transcription %s in %.1fs", operation, delay)
                await self._sleep(delay)

        raise TranscriptionFailedError(f"Transcription {operation} failed")


async def _aiter_file(path: Path, chunk_size: int = _UPLOAD_CHUNK_SIZE) -> AsyncIterator[bytes]:
    handle = await run_in_threadpool(path.open, "rb")
    try:
        while True:
            chunk = await run_in_threadpool(handle.read, chunk_size)
            if not chunk:
                break
            yield chunk
    finally:
        await run_in_threadpool(handle.close)


def _error_detail(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(data, dict) and data.get("error"):
        return str(data["error"])
    return str(data)[:200]


__all__ = [
    "ProviderConfigurationError",
    "ProviderStatus",
    "SUPPORTED_FORMATS",
    "TranscriptionError",
    "TranscriptionFailedError",
    "TranscriptionService",
    "TranscriptionTimeoutError",
    "TransientProviderError",
    "is_transient",
    "normalize_transcript",
]
