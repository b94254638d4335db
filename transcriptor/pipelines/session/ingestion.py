"""Upload ingestion helpers (first stage of the session pipeline)."""

from __future__ import annotations

import mimetypes
from pathlib import Path
from typing import Final

from fastapi import UploadFile, status
from fastapi.concurrency import run_in_threadpool

_READ_CHUNK_SIZE = 1024 * 1024

ALLOWED_CONTENT_TYPES: Final[frozenset[str]] = frozenset(
    {
        "video/mp4",
        "video/quicktime",
        "video/x-msvideo",
        "video/webm",
        "audio/mpeg",
        "audio/mp3",
        "audio/wav",
        "audio/x-wav",
        "audio/mp4",
        "audio/x-m4a",
        "audio/aac",
        "audio/ogg",
    }
)
_GENERIC_CONTENT_TYPES: Final[frozenset[str]] = frozenset({"", "application/octet-stream"})


class UploadValidationError(ValueError):
    """Raised when an upload is rejected before any session exists."""

    def __init__(self, message: str, status_code: int = status.HTTP_400_BAD_REQUEST) -> None:
        super().__init__(message)
        self.status_code = status_code


def resolve_content_type(upload: UploadFile) -> str:
    """Accept audio/video uploads even when the client sent a generic content-type."""

    content_type = (upload.content_type or "").split(";")[0].strip().lower()
    if content_type in _GENERIC_CONTENT_TYPES and upload.filename:
        guessed_type, _ = mimetypes.guess_type(upload.filename)
        content_type = (guessed_type or "").lower()

    if content_type not in ALLOWED_CONTENT_TYPES:
        raise UploadValidationError(
            "Only video (mp4, mov, avi, webm) and audio (mp3, wav, m4a, aac, ogg) files are supported",
            status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
        )
    return content_type


async def stage_upload(upload: UploadFile, destination: Path, max_bytes: int) -> int:
    """Stream the upload to ``destination`` and return the number of bytes written.

    Empty and oversized uploads are rejected and the partial file is removed.
    """

    written = 0
    destination.parent.mkdir(parents=True, exist_ok=True)
    try:
        with destination.open("wb") as handle:
            while True:
                chunk = await upload.read(_READ_CHUNK_SIZE)
                if not chunk:
                    break
                written += len(chunk)
                if written > max_bytes:
                    raise UploadValidationError(
                        f"File exceeds the {max_bytes // (1024 * 1024)}MB upload limit",
                        413,
                    )
                await run_in_threadpool(handle.write, chunk)
    except BaseException:
        destination.unlink(missing_ok=True)
        raise
    finally:
        await upload.close()

    if written == 0:
        destination.unlink(missing_ok=True)
        raise UploadValidationError("Uploaded file is empty")
    return written


__all__ = [
    "ALLOWED_CONTENT_TYPES",
    "UploadValidationError",
    "resolve_content_type",
    "stage_upload",
]
