"""Language-model detection of spoken JBA codes in finished transcripts.

The model only proposes candidates. Each candidate is then mapped back to
the word timeline with a sliding-window search, normalized, classified
and filtered by confidence before it is attached to a session.
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass, field
from typing import Optional, Sequence

from transcriptor.config.settings import DetectionConfig
from transcriptor.models import DetectionRecord, TranscriptionResult, VariationType, Word
from transcriptor.services.llm_client import BedrockLlmClient, LlmInvocationError
from transcriptor.services.response_contract import (
    ResponseContractError,
    extract_expected_count,
    parse_candidates,
)

logger = logging.getLogger(__name__)
transcript_logger = logging.getLogger("transcriptor.logs.transcript")

PHONETIC_ACRONYM_TOKENS = frozenset({"jba", "jay", "bee", "aye", "j", "b", "a"})

_SPOKEN_DIGITS = {
    "ZERO": "0",
    "ONE": "1",
    "TWO": "2",
    "THREE": "3",
    "FOUR": "4",
    "FIVE": "5",
    "SIX": "6",
    "SEVEN": "7",
    "EIGHT": "8",
    "NINE": "9",
}
_SPOKEN_DIGIT_PATTERN = re.compile(r"\b(" + "|".join(_SPOKEN_DIGITS) + r")\b")
_SPOKEN_ACRONYM_PATTERN = re.compile(r"JAY[\s-]*BEE[\s-]*AYE")
_SPACED_ACRONYM_PATTERN = re.compile(r"J\s*B\s*A")

SYSTEM_PROMPT = """You are an expert legal transcript analyzer specializing in detecting Continuing Legal Education (CLE) codes, specifically JBA codes.

CONTEXT:
- JBA codes are alphanumeric codes given during legal education sessions
- Attorneys need these codes to receive CLE credits
- Speakers typically announce when they are about to provide a code
- Because the transcript comes from speech-to-text, "JBA" may appear in many forms

YOUR TASK:
Identify every JBA code in the transcript. Look for:

1. ANNOUNCEMENT PATTERNS:
   - "Here's your JBA code"
   - "The code is..."
   - "For your CLE credits, the code is..."
   - "Please write down this code"
   - "Your participation code is..."

2. JBA VARIATIONS:
   - "JBA" (exact) or "jba" (lowercase)
   - "jay bee aye" or "jay-bee-aye"
   - "j b a", "J.B.A" or "J-B-A"
   - Any other phonetic rendering

3. CODE FORMATS:
   - Usually starts with a JBA variation
   - Followed by numbers or letters (e.g. "JBA123", "JBA-45-B")
   - May include hyphens, spaces or other separators
   - Typically 5-15 characters in total

4. CONTEXT CLUES:
   - Usually given near the end of a session
   - May be repeated or spelled out letter by letter
   - Often preceded by instructions to write it down

RESPONSE FORMAT:
Return a JSON array with one object per detected code:
[
  {
    "code": "normalized_code_here",
    "originalText": "exact_text_from_transcript",
    "context": "surrounding_context_for_verification",
    "confidence": 0.95
  }
]
"originalText" must be copied verbatim from the transcript.
If the speaker says how many codes will be given, add one line after the array:
{"expectedCount": <number>}

Be thorough but precise. Report high-confidence codes only."""


class CodeDetectionError(RuntimeError):
    """Raised when the language-model call itself fails."""


@dataclass(frozen=True)
class DetectionOutcome:
    codes: list[DetectionRecord] = field(default_factory=list)
    expected_count: Optional[int] = None


def select_transcript_window(text: str, max_chars: int, strategy: str = "tail") -> str:
    """Bound the transcript sent to the model.

    ``tail`` keeps the end of long transcripts, where codes are usually
    announced. ``head`` keeps the beginning and ``full`` sends everything.
    """

    if strategy == "full" or len(text) <= max_chars:
        return text
    if strategy == "head":
        return text[:max_chars] + "..."
    return "..." + text[-max_chars:]


def build_user_prompt(transcript: str) -> str:
    return (
        "Please analyze this legal education transcript and identify all JBA codes "
        "for CLE credits.\n\n"
        f"TRANSCRIPT TO ANALYZE:\n{transcript}\n\n"
        'Remember to look for announcement patterns, handle speech-to-text variations of "JBA", '
        "and provide high-confidence detections only. Return results as a JSON array."
    )


def _search_tokens(text: str) -> list[str]:
    return re.sub(r"[^\w\s]", " ", text.lower()).split()


def _word_token(word: Word) -> str:
    return re.sub(r"[^\w]", "", word.text.lower())


def tokens_similar(left: str, right: str) -> bool:
    """Tolerant token comparison used by the timeline search."""

    if left == right:
        return True
    if left in PHONETIC_ACRONYM_TOKENS and right in PHONETIC_ACRONYM_TOKENS:
        return True
    if abs(len(left) - len(right)) > 2:
        return False
    longest = max(len(left), len(right))
    differences = sum(
        1
        for index in range(longest)
        if index >= len(left) or index >= len(right) or left[index] != right[index]
    )
    return differences <= 2


def locate_in_timeline(
    original_text: str,
    words: Sequence[Word],
    match_ratio: float = 0.7,
) -> Optional[int]:
    """Return the index of the first word of the earliest matching window."""

    search = _search_tokens(original_text or "")
    if not words or not search or len(words) < len(search):
        return None

    required = math.ceil(round(len(search) * match_ratio, 6))
    tokens = [_word_token(word) for word in words]
    for start in range(len(tokens) - len(search) + 1):
        matched = sum(
            1
            for offset, expected in enumerate(search)
            if tokens_similar(tokens[start + offset], expected)
        )
        if matched >= required:
            return start
    return None


def normalize_code(code: str) -> str:
    """Canonical uppercase spelling, e.g. ``jay bee aye one two three`` -> ``JBA123``."""

    normalized = code.strip().upper()
    normalized = _SPOKEN_ACRONYM_PATTERN.sub("JBA", normalized)
    normalized = _SPOKEN_DIGIT_PATTERN.sub(lambda match: _SPOKEN_DIGITS[match.group(1)], normalized)
    normalized = _SPACED_ACRONYM_PATTERN.sub("JBA", normalized)
    normalized = re.sub(r"\s+", "", normalized)
    return re.sub(r"[^\w-]", "", normalized)


def classify_variation_type(original_text: str) -> VariationType:
    text = original_text.lower()
    if "jay" in text or "bee" in text or "aye" in text:
        return VariationType.SPOKEN
    if "j.b.a" in text:
        return VariationType.DOTTED
    if "j-b-a" in text or "jba-" in text:
        return VariationType.HYPHENATED
    if "j b a" in text:
        return VariationType.SPACED
    if "jba" in original_text:
        return VariationType.LOWERCASE
    if len(text) > 10:
        return VariationType.EXTENDED
    return VariationType.STANDARD


def format_timestamp(milliseconds: int) -> str:
    total_seconds = max(milliseconds, 0) // 1000
    return f"{total_seconds // 60}:{total_seconds % 60:02d}"


def _context_snippet(words: Sequence[Word], index: int, radius: int) -> str:
    lower = max(index - radius, 0)
    upper = min(index + radius, len(words))
    return " ".join(word.text for word in words[lower:upper])


class CodeDetectionService:
    """Find JBA codes in a transcript with a Bedrock-hosted model."""

    def __init__(self, config: DetectionConfig, llm_client: BedrockLlmClient) -> None:
        self._config = config
        self._llm = llm_client

    @property
    def default_threshold(self) -> float:
        return self._config.confidence_threshold

    @property
    def manual_threshold(self) -> float:
        return self._config.manual_confidence_threshold

    def is_available(self) -> bool:
        return self._llm.configured

    def status(self) -> dict:
        if not self.is_available():
            return {"available": False, "error": "Bedrock credentials not configured"}
        return {"available": True, "model": self._llm.model_id}

    async def detect(
        self,
        result: TranscriptionResult,
        confidence_threshold: float | None = None,
    ) -> DetectionOutcome:
        """Propose, locate and filter codes for one transcription result."""

        if not self.is_available():
            logger.warning("Code detection skipped - Bedrock not configured")
            return DetectionOutcome()

        threshold = self.default_threshold if confidence_threshold is None else confidence_threshold
        transcript = select_transcript_window(
            result.text,
            self._config.max_transcript_chars,
            self._config.transcript_window,
        )
        logger.info(
            "Starting code detection (transcript=%d chars, prompt=%d chars, threshold=%.2f)",
            len(result.text),
            len(transcript),
            threshold,
        )

        try:
            raw_response = await self._llm.invoke(
                system_prompt=SYSTEM_PROMPT,
                user_prompt=build_user_prompt(transcript),
            )
        except LlmInvocationError as exc:
            raise CodeDetectionError(f"Code detection failed: {exc}") from exc

        if not raw_response:
            logger.warning("Empty response from detection model")
            return DetectionOutcome()

        expected_count = extract_expected_count(raw_response)
        try:
            candidates = parse_candidates(raw_response)
        except ResponseContractError as exc:
            logger.warning("%s; discarding detection response", exc)
            return DetectionOutcome(expected_count=expected_count)

        records: list[DetectionRecord] = []
        for candidate in candidates:
            index = locate_in_timeline(candidate.original_text, result.words, self._config.match_ratio)
            if index is None:
                logger.warning("Could not find timestamp for code: %s", candidate.original_text)
                continue
            if candidate.confidence < threshold:
                continue
            records.append(
                DetectionRecord(
                    code=normalize_code(candidate.code),
                    original_text=candidate.original_text,
                    context=candidate.context
                    or _context_snippet(result.words, index, self._config.context_window_words),
                    timestamp=result.words[index].start,
                    confidence=candidate.confidence,
                    variation_type=classify_variation_type(candidate.original_text),
                )
            )

        logger.info("Code detection complete: %d codes found", len(records))
        for position, record in enumerate(records, start=1):
            transcript_logger.info(
                "%d. %s at %s (confidence: %.1f%%, %s)",
                position,
                record.code,
                format_timestamp(record.timestamp),
                record.confidence * 100,
                record.variation_type.value,
            )
        return DetectionOutcome(codes=records, expected_count=expected_count)


__all__ = [
    "CodeDetectionError",
    "CodeDetectionService",
    "DetectionOutcome",
    "classify_variation_type",
    "format_timestamp",
    "locate_in_timeline",
    "normalize_code",
    "select_transcript_window",
    "tokens_similar",
]
