"""File-backed session store.

All sessions live in one JSON document that is rewritten after every
mutation. Mutations are serialized by a single re-entrant lock, so a
read-modify-write on one record can never interleave with another write.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Iterable, Optional

from pydantic import ValidationError

from transcriptor.models import Session, SessionStatus, utc_now_iso

logger = logging.getLogger(__name__)


class SessionStoreError(RuntimeError):
    """Raised when the sessions document cannot be read or written."""


class SessionNotFoundError(KeyError):
    """Raised when a session identifier is unknown to the store."""

    def __init__(self, session_id: str) -> None:
        super().__init__(session_id)
        self.session_id = session_id

    def __str__(self) -> str:
        return f"Session {self.session_id} not found"


class DuplicateSessionError(ValueError):
    """Raised when creating a session whose identifier already exists."""


class InvalidTransitionError(ValueError):
    """Raised when a status change would move a session backwards."""


@dataclass(frozen=True)
class SessionsSummary:
    total: int
    by_status: dict[str, int]
    oldest_session: Optional[str] = None
    newest_session: Optional[str] = None


@dataclass
class IntegrityReport:
    valid: bool
    issues: list[str] = field(default_factory=list)


class SessionStore:
    """Durable mapping from session id to :class:`Session`."""

    def __init__(self, path: Path) -> None:
        self._path = Path(path)
        self._lock = threading.RLock()
        self._sessions: dict[str, Session] = {}
        self._load()

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> None:
        """Load prior state, or initialize an empty document."""

        if not self._path.exists():
            self._sessions = {}
            self._flush()
            logger.info("Created new sessions storage at %s", self._path)
            return

        try:
            raw = self._path.read_text(encoding="utf-8")
            document = json.loads(raw) if raw.strip() else {}
        except (OSError, json.JSONDecodeError) as exc:
            raise SessionStoreError(f"Failed to read sessions file {self._path}: {exc}") from exc
        if not isinstance(document, dict):
            raise SessionStoreError(
                f"Sessions file {self._path} must hold a JSON object, got {type(document).__name__}"
            )

        loaded: dict[str, Session] = {}
        for entry in document.get("sessions", []) or []:
            try:
                session = Session.model_validate(entry)
            except ValidationError as exc:
                logger.warning("Skipping malformed session entry: %s", exc)
                continue
            loaded[session.id] = session

        self._sessions = loaded
        logger.info("Loaded %d existing sessions from %s", len(loaded), self._path)

    def _commit(self, sessions: dict[str, Session]) -> None:
        """Write ``sessions`` to disk, then make it the in-memory state."""

        self._flush(sessions)
        self._sessions = sessions

    def _flush(self, sessions: dict[str, Session] | None = None) -> None:
        """Atomically rewrite the sessions document."""

        if sessions is None:
            sessions = self._sessions
        document = {
            "sessions": [session.to_document() for session in sessions.values()],
            "lastUpdated": utc_now_iso(),
        }
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self._path.name}.", suffix=".tmp", dir=self._path.parent
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(document, handle, indent=2)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, self._path)
        except OSError as exc:
            if os.path.exists(tmp_name):
                os.remove(tmp_name)
            raise SessionStoreError(f"Failed to save session data: {exc}") from exc

    def create(self, session: Session) -> Session:
        with self._lock:
            if session.id in self._sessions:
                raise DuplicateSessionError(f"Session {session.id} already exists")
            self._commit({**self._sessions, session.id: session})
        logger.info("Created session %s (%s)", session.id, session.filename)
        return session

    def get(self, session_id: str) -> Session:
        with self._lock:
            session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def update(self, session_id: str, **changes: Any) -> Session:
        """Merge ``changes`` (field names) into the stored record.

        A ``status`` change is checked against the lifecycle inside the
        lock, so status can only move forward.
        """

        with self._lock:
            current = self._sessions.get(session_id)
            if current is None:
                raise SessionNotFoundError(session_id)
            if "status" in changes:
                target = SessionStatus(changes["status"])
                if not current.status.can_advance_to(target):
                    raise InvalidTransitionError(
                        f"Session {session_id} cannot move from "
                        f"{current.status.value} to {target.value}"
                    )
            updated = self._merge(current, changes)
            self._commit({**self._sessions, session_id: updated})
        if "status" in changes:
            logger.info("Updated session %s status=%s", session_id, updated.status.value)
        return updated

    def advance(self, session_id: str, status: SessionStatus, **changes: Any) -> Session:
        """Move ``status`` forward and merge ``changes`` in one critical section."""

        return self.update(session_id, status=status, **changes)

    @staticmethod
    def _merge(current: Session, changes: dict[str, Any]) -> Session:
        unknown = set(changes) - set(Session.model_fields)
        if unknown:
            raise ValueError(f"Unknown session fields: {sorted(unknown)}")
        for immutable in ("id", "filename", "upload_timestamp"):
            if immutable in changes and changes[immutable] != getattr(current, immutable):
                raise ValueError(f"Session field {immutable} is immutable")
        if (
            "transcription_result" in changes
            and current.transcription_result is not None
            and changes["transcription_result"] != current.transcription_result
        ):
            raise ValueError("Transcription result is already attached")
        data = current.model_dump()
        data.update(changes)
        return Session.model_validate(data)

    def list(
        self,
        status: SessionStatus | str | None = None,
        limit: int | None = None,
    ) -> list[Session]:
        """Return sessions newest upload first, optionally filtered."""

        with self._lock:
            sessions = list(self._sessions.values())
        if status is not None:
            wanted = SessionStatus(status)
            sessions = [session for session in sessions if session.status == wanted]
        sessions.sort(key=lambda session: session.uploaded_at, reverse=True)
        if limit is not None:
            sessions = sessions[: max(limit, 0)]
        return sessions

    def delete(self, session_id: str) -> bool:
        with self._lock:
            remaining = dict(self._sessions)
            removed = remaining.pop(session_id, None)
            if removed is None:
                logger.warning("Session %s not found for deletion", session_id)
                return False
            self._commit(remaining)
        logger.info("Deleted session %s (%s)", session_id, removed.filename)
        return True

    def summary(self) -> SessionsSummary:
        with self._lock:
            sessions = list(self._sessions.values())
        by_status = {status.value: 0 for status in SessionStatus}
        for session in sessions:
            by_status[session.status.value] += 1
        ordered = sorted(sessions, key=lambda session: session.uploaded_at)
        return SessionsSummary(
            total=len(sessions),
            by_status=by_status,
            oldest_session=ordered[0].upload_timestamp if ordered else None,
            newest_session=ordered[-1].upload_timestamp if ordered else None,
        )

    def stale_sessions(
        self,
        older_than: timedelta,
        *,
        status: SessionStatus = SessionStatus.ERROR,
        now: datetime | None = None,
    ) -> list[Session]:
        cutoff = (now or datetime.now(timezone.utc)) - older_than
        return [session for session in self.list(status=status) if session.uploaded_at < cutoff]

    def validate(self) -> IntegrityReport:
        """Check that the document exists and every record is well formed."""

        issues: list[str] = []
        if not self._path.exists():
            issues.append("Sessions file does not exist")
        with self._lock:
            sessions: Iterable[Session] = list(self._sessions.values())
        for index, session in enumerate(sessions):
            if not session.id:
                issues.append(f"Session at index {index} missing ID")
            if not session.filename:
                issues.append(f"Session {session.id} missing filename")
            if session.status == SessionStatus.COMPLETED and session.transcription_result is None:
                issues.append(f"Session {session.id} completed without a transcription result")
        return IntegrityReport(valid=not issues, issues=issues)


__all__ = [
    "DuplicateSessionError",
    "IntegrityReport",
    "InvalidTransitionError",
    "SessionNotFoundError",
    "SessionStore",
    "SessionStoreError",
    "SessionsSummary",
]
