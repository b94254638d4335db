"""Domain models shared by the store, services and controllers."""

from .session import (
    Chapter,
    DetectionRecord,
    Session,
    SessionStatus,
    TranscriptionResult,
    VariationType,
    Word,
    utc_now_iso,
)

__all__ = [
    "Chapter",
    "DetectionRecord",
    "Session",
    "SessionStatus",
    "TranscriptionResult",
    "VariationType",
    "Word",
    "utc_now_iso",
]
