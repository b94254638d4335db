"""Local storage helpers for uploaded media assets."""

from __future__ import annotations

import glob
import logging
import mimetypes
import os
import re
import shutil
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional
from uuid import uuid4

from fastapi.concurrency import run_in_threadpool

from transcriptor.config.settings import StorageConfig

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 1024 * 1024
_RANGE_PATTERN = re.compile(r"^bytes=(\d*)-(\d*)$")


class StorageError(RuntimeError):
    """Raised when media persistence fails."""


class RangeNotSatisfiableError(ValueError):
    """Raised when a Range header cannot be served for the asset."""


@dataclass(frozen=True)
class ByteRange:
    start: int
    end: int

    @property
    def length(self) -> int:
        return self.end - self.start + 1


@dataclass(frozen=True)
class MediaReference:
    """A persisted media file handed to the transcription provider."""

    path: Path
    content_type: str
    size_bytes: int
    public_url: Optional[str] = None


def parse_byte_range(header: str, file_size: int) -> ByteRange:
    """Parse a single-range ``Range`` header against ``file_size``."""

    match = _RANGE_PATTERN.match(header.strip())
    if not match or file_size <= 0:
        raise RangeNotSatisfiableError(f"Unsupported range: {header}")

    raw_start, raw_end = match.groups()
    if not raw_start and not raw_end:
        raise RangeNotSatisfiableError(f"Unsupported range: {header}")

    if not raw_start:
        # Suffix range: the last N bytes.
        suffix = int(raw_end)
        if suffix == 0:
            raise RangeNotSatisfiableError(f"Unsupported range: {header}")
        return ByteRange(max(file_size - suffix, 0), file_size - 1)

    start = int(raw_start)
    end = int(raw_end) if raw_end else file_size - 1
    end = min(end, file_size - 1)
    if start >= file_size or start > end:
        raise RangeNotSatisfiableError(f"Range {header} outside of {file_size} bytes")
    return ByteRange(start, end)


def iter_file_range(path: Path, start: int, end: int, chunk_size: int = _CHUNK_SIZE) -> Iterator[bytes]:
    """Yield the bytes ``start..end`` (inclusive) of ``path``."""

    remaining = end - start + 1
    with path.open("rb") as handle:
        handle.seek(start)
        while remaining > 0:
            chunk = handle.read(min(chunk_size, remaining))
            if not chunk:
                break
            remaining -= len(chunk)
            yield chunk


class MediaStorage:
    """Owns the upload staging area and the permanent media directory."""

    def __init__(self, config: StorageConfig) -> None:
        self._config = config

    @property
    def uploads_dir(self) -> Path:
        return self._config.uploads_dir

    @property
    def media_dir(self) -> Path:
        return self._config.media_dir

    def staging_path(self, filename: str) -> Path:
        """Return a fresh temporary path for an incoming upload."""

        extension = Path(filename or "").suffix.lower()
        return self.uploads_dir / f"{uuid4().hex}{extension}"

    async def persist(self, staged_path: Path, session_id: str, filename: str) -> Path:
        """Move a staged upload into permanent storage under the session id."""

        extension = Path(filename or "").suffix.lower()
        target = self.media_dir / f"{session_id}{extension}"
        try:
            await run_in_threadpool(self.media_dir.mkdir, parents=True, exist_ok=True)
            await run_in_threadpool(shutil.move, str(staged_path), str(target))
        except OSError as exc:
            raise StorageError(f"Failed to persist media for session {session_id}: {exc}") from exc
        return target

    def locate(self, session_id: str) -> Path | None:
        """Find the persisted media file for ``session_id``."""

        if not session_id or not self.media_dir.exists():
            return None
        for candidate in sorted(self.media_dir.glob(f"{glob.escape(session_id)}*")):
            if candidate.is_file() and candidate.stem == session_id:
                return candidate
        return None

    def delete(self, session_id: str) -> bool:
        path = self.locate(session_id)
        if path is None:
            return False
        try:
            path.unlink()
        except OSError as exc:
            logger.error("Failed to delete media file %s: %s", path.name, exc)
            return False
        logger.info("Deleted media file %s", path.name)
        return True

    @staticmethod
    def discard(path: Path | None) -> None:
        """Remove a temporary artifact if it still exists."""

        if path is None:
            return
        try:
            if path.exists():
                path.unlink()
                logger.info("Cleaned up temporary file %s", path.name)
        except OSError as exc:
            logger.warning("Failed to clean up temporary file %s: %s", path, exc)

    def purge_stale_uploads(self, older_than_seconds: float, *, now: float | None = None) -> int:
        """Delete staged uploads whose mtime is older than the cutoff."""

        if not self.uploads_dir.exists():
            return 0
        cutoff = (now if now is not None else time.time()) - older_than_seconds
        cleaned = 0
        for entry in self.uploads_dir.iterdir():
            try:
                if entry.is_file() and entry.stat().st_mtime < cutoff:
                    entry.unlink()
                    cleaned += 1
            except OSError as exc:
                logger.warning("Failed to purge stale upload %s: %s", entry.name, exc)
        return cleaned

    @staticmethod
    def media_url(session_id: str) -> str:
        return f"/sessions/{session_id}/media"

    def public_url(self, session_id: str) -> str | None:
        """Provider-fetchable URL for the session media, when configured."""

        base = (self._config.public_base_url or "").strip().rstrip("/")
        if not base:
            return None
        return f"{base}{self.media_url(session_id)}"

    def reference(self, session_id: str, path: Path, content_type: str | None = None) -> MediaReference:
        return MediaReference(
            path=path,
            content_type=content_type or guess_content_type(path),
            size_bytes=os.path.getsize(path),
            public_url=self.public_url(session_id),
        )

    def directories_ready(self) -> bool:
        return all(
            directory.is_dir()
            for directory in (self._config.data_dir, self.uploads_dir, self.media_dir)
        )


def guess_content_type(path: Path | str) -> str:
    guessed, _ = mimetypes.guess_type(str(path))
    return guessed or "application/octet-stream"


__all__ = [
    "ByteRange",
    "MediaReference",
    "MediaStorage",
    "RangeNotSatisfiableError",
    "StorageError",
    "guess_content_type",
    "iter_file_range",
    "parse_byte_range",
]
