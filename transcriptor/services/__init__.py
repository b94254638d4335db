"""Service layer helpers for storage and external integrations."""

from .audio_extraction import (
    AudioExtractionService,
    AudioFormat,
    ExtractionError,
    ExtractionOptions,
    ExtractionResult,
)
from .code_detection import CodeDetectionError, CodeDetectionService, DetectionOutcome
from .llm_client import BedrockLlmClient, LlmInvocationError
from .session_store import (
    DuplicateSessionError,
    InvalidTransitionError,
    SessionNotFoundError,
    SessionStore,
    SessionStoreError,
)
from .storage import MediaReference, MediaStorage, RangeNotSatisfiableError, StorageError
from .transcription import (
    ProviderConfigurationError,
    TranscriptionError,
    TranscriptionFailedError,
    TranscriptionService,
    TranscriptionTimeoutError,
    TransientProviderError,
)

__all__ = [
    "AudioExtractionService",
    "AudioFormat",
    "BedrockLlmClient",
    "CodeDetectionError",
    "CodeDetectionService",
    "DetectionOutcome",
    "DuplicateSessionError",
    "ExtractionError",
    "ExtractionOptions",
    "ExtractionResult",
    "InvalidTransitionError",
    "LlmInvocationError",
    "MediaReference",
    "MediaStorage",
    "ProviderConfigurationError",
    "RangeNotSatisfiableError",
    "SessionNotFoundError",
    "SessionStore",
    "SessionStoreError",
    "StorageError",
    "TranscriptionError",
    "TranscriptionFailedError",
    "TranscriptionService",
    "TranscriptionTimeoutError",
    "TransientProviderError",
]
