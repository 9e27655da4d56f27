"""Parsing of raw provider completions into primary categories."""

from __future__ import annotations

import json
import math
import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from reach_inbox.core.config import DEFAULT_REMAP
from reach_inbox.core.models import PRIMARY_CATEGORIES, Category

DEFAULT_CONFIDENCE = 0.7

_THINK_BLOCK = re.compile(r"<think>.*?</think>", re.IGNORECASE | re.DOTALL)
_THINK_UNTERMINATED = re.compile(r"<think>.*", re.IGNORECASE | re.DOTALL)
_ASSISTANT_PREFIX = re.compile(
    r"^(?:AI|Assistant|Bot|Groq AI|ChatGPT):[ \t]*", re.IGNORECASE | re.MULTILINE
)
_EXTRA_NEWLINES = re.compile(r"\n{3,}")
_NON_LABEL_CHARS = re.compile(r"[^A-Z_]")


@dataclass(frozen=True, slots=True)
class ParsedLabel:
    """Label, confidence and reasoning read from a provider completion."""

    label: str
    confidence: float
    reasoning: str


def clean_response_text(text: str | None) -> str:
    """Strip reasoning-trace markup and assistant prefixes."""
    if not text:
        return ""
    cleaned = _THINK_BLOCK.sub("", text)
    cleaned = _THINK_UNTERMINATED.sub("", cleaned)
    cleaned = _ASSISTANT_PREFIX.sub("", cleaned)
    cleaned = _EXTRA_NEWLINES.sub("\n\n", cleaned)
    return cleaned.strip()


def extract_json_object(text: str) -> dict[str, Any]:
    """Return the first JSON object embedded in ``text``."""
    decoder = json.JSONDecoder()
    position = text.find("{")
    while position != -1:
        try:
            candidate, _ = decoder.raw_decode(text, position)
        except json.JSONDecodeError:
            position = text.find("{", position + 1)
            continue
        if isinstance(candidate, dict):
            return candidate
        position = text.find("{", position + 1)
    raise ValueError("No JSON object found in provider output")


def parse_classification(raw: str | None) -> ParsedLabel:
    """Parse a completion; raise ``ValueError`` when it carries no category."""
    payload = extract_json_object(clean_response_text(raw))
    label = payload.get("category")
    if not isinstance(label, str) or not label.strip():
        raise ValueError("Provider output missing string 'category'")
    reasoning = payload.get("reasoning")
    return ParsedLabel(
        label=label.strip(),
        confidence=_coerce_confidence(payload.get("confidence")),
        reasoning=reasoning.strip() if isinstance(reasoning, str) else "",
    )


def normalize_label(label: str) -> str:
    """Uppercase, map spaces and hyphens to underscores, drop other punctuation."""
    upper = label.strip().upper().replace(" ", "_").replace("-", "_")
    return _NON_LABEL_CHARS.sub("", upper)


class CategoryMapper:
    """Map free-form provider labels onto the five primary categories."""

    def __init__(
        self,
        remap: Mapping[str, Category] | None = None,
        *,
        default: Category = Category.INTERESTED,
    ) -> None:
        table = DEFAULT_REMAP if remap is None else remap
        self._remap = {normalize_label(key): value for key, value in table.items()}
        self._default = default if default in PRIMARY_CATEGORIES else Category.INTERESTED

    def map(self, label: str) -> Category:
        """Return the primary category for ``label``."""
        normalized = normalize_label(label)
        try:
            category = Category(normalized.lower())
        except ValueError:
            category = None
        if category is not None and category in PRIMARY_CATEGORIES:
            return category
        remapped = self._remap.get(normalized)
        if remapped is not None and remapped in PRIMARY_CATEGORIES:
            return remapped
        return self._default


def _coerce_confidence(value: Any) -> float:
    if isinstance(value, bool) or value is None:
        return DEFAULT_CONFIDENCE
    try:
        confidence = float(value)
    except (TypeError, ValueError):
        return DEFAULT_CONFIDENCE
    if math.isnan(confidence):
        return DEFAULT_CONFIDENCE
    return min(max(confidence, 0.0), 1.0)


__all__ = [
    "CategoryMapper",
    "DEFAULT_CONFIDENCE",
    "ParsedLabel",
    "clean_response_text",
    "extract_json_object",
    "normalize_label",
    "parse_classification",
]
