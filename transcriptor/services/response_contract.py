"""Pydantic models for validating LLM JSON responses.

The detection prompt asks for a JSON array of candidates, but models often
wrap it in prose or Markdown fences. These helpers pull out the first
well-formed array and validate each entry into a normalized object.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)

DEFAULT_CANDIDATE_CONFIDENCE = 0.8

_EXPECTED_COUNT_PATTERN = re.compile(
    r'"expected_?[cC]ount"\s*:\s*(?:\{\s*"count"\s*:\s*)?(\d+)'
)


class ResponseContractError(RuntimeError):
    """Raised when the LLM response contract cannot be validated."""


class DetectionCandidate(BaseModel):
    """One code proposed by the language model, before timestamp resolution."""

    code: str
    original_text: str = Field(alias="originalText")
    context: str = ""
    confidence: float = DEFAULT_CANDIDATE_CONFIDENCE

    model_config = {"populate_by_name": True, "extra": "allow"}

    @field_validator("confidence", mode="before")
    @classmethod
    def normalize_confidence(cls, value: Any) -> float:
        if value is None or value == "":
            return DEFAULT_CANDIDATE_CONFIDENCE
        try:
            numeric = float(value)
        except (TypeError, ValueError):
            return DEFAULT_CANDIDATE_CONFIDENCE
        if numeric == 0:
            # A zero (or missing) score falls back to the default, as unscored.
            return DEFAULT_CANDIDATE_CONFIDENCE
        return max(0.0, min(1.0, numeric))

    @field_validator("context", mode="before")
    @classmethod
    def default_context(cls, value: Any) -> str:
        return "" if value is None else str(value)


def extract_first_array(payload: str) -> Optional[list[Any]]:
    """Return the first well-formed JSON array embedded in ``payload``."""

    cleaned = _clean_json_payload(payload)
    if not cleaned:
        return None

    decoder = json.JSONDecoder()
    index = cleaned.find("[")
    while index != -1:
        try:
            value, _ = decoder.raw_decode(cleaned, index)
        except json.JSONDecodeError:
            index = cleaned.find("[", index + 1)
            continue
        if isinstance(value, list):
            return value
        index = cleaned.find("[", index + 1)
    return None


def parse_candidates(payload: str) -> list[DetectionCandidate]:
    """Validate every array entry, skipping the ones that do not fit the schema."""

    entries = extract_first_array(payload)
    if entries is None:
        raise ResponseContractError("No JSON array found in model response")

    candidates: list[DetectionCandidate] = []
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        try:
            candidates.append(DetectionCandidate.model_validate(entry))
        except ValidationError as exc:
            logger.warning("Skipping malformed detection candidate: %s", exc)
    return candidates


def extract_expected_count(payload: str) -> Optional[int]:
    """Read the optional expected-code-count hint from the model response."""

    if not payload:
        return None
    match = _EXPECTED_COUNT_PATTERN.search(payload)
    if not match:
        return None
    return int(match.group(1))


def _clean_json_payload(payload: str) -> str:
    """Strip Markdown code fences around the model output."""
    if not payload:
        return ""

    cleaned = payload.strip()
    if cleaned.startswith("```json"):
        cleaned = cleaned[7:]
    elif cleaned.startswith("```"):
        cleaned = cleaned[3:]

    if cleaned.endswith("```"):
        cleaned = cleaned[:-3]

    return cleaned.strip()


__all__ = [
    "DEFAULT_CANDIDATE_CONFIDENCE",
    "DetectionCandidate",
    "ResponseContractError",
    "extract_expected_count",
    "extract_first_array",
    "parse_candidates",
]
