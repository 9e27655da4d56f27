"""Deterministic keyword rules shared by the normalizer and the classifier.

Two rule sets live here. The provisional set tags freshly normalized
messages and may emit auxiliary buckets such as ``newsletter``. The fallback
set is the last link of the classifier chain and only emits the five primary
categories.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass

from reach_inbox.core.models import Category, ClassificationResult


@dataclass(frozen=True)
class KeywordRule:
    """One category cue evaluated against lower-cased subject and body."""

    category: Category
    confidence: float
    subject_keywords: tuple[str, ...] = ()
    body_keywords: tuple[str, ...] = ()
    patterns: tuple[re.Pattern[str], ...] = ()

    def match(self, subject: str, body: str) -> str | None:
        """Return the cue that matched, or ``None``."""
        for keyword in self.subject_keywords:
            if keyword in subject:
                return keyword
        for keyword in self.body_keywords:
            if keyword in body:
                return keyword
        for pattern in self.patterns:
            found = pattern.search(subject) or pattern.search(body)
            if found:
                return found.group(0)
        return None


class DeterministicRules:
    """Ordered keyword rules with a default outcome; never raises."""

    def __init__(
        self,
        rules: Sequence[KeywordRule],
        *,
        default_category: Category,
        default_confidence: float,
        label: str,
    ) -> None:
        self._rules = tuple(rules)
        self._default_category = default_category
        self._default_confidence = default_confidence
        self._label = label

    @property
    def categories(self) -> frozenset[Category]:
        """Every category this rule set can emit."""
        return frozenset(
            [rule.category for rule in self._rules] + [self._default_category]
        )

    def evaluate(self, subject: object, body: object) -> ClassificationResult:
        """Return the first matching rule's category, or the default."""
        subject_text = _as_text(subject)
        body_text = _as_text(body)
        for rule in self._rules:
            cue = rule.match(subject_text, body_text)
            if cue is not None:
                return ClassificationResult(
                    category=rule.category,
                    confidence=rule.confidence,
                    reasoning=f"{self._label} (matched '{cue}')",
                    provider="rules",
                    used_fallback=True,
                )
        return ClassificationResult(
            category=self._default_category,
            confidence=self._default_confidence,
            reasoning=f"{self._label} (no keyword matched)",
            provider="rules",
            used_fallback=True,
        )


def _as_text(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace").lower()
    return str(value).lower()


PROVISIONAL_RULES = DeterministicRules(
    (
        KeywordRule(
            Category.NEWSLETTER, 0.6, subject_keywords=("newsletter", "digest")
        ),
        KeywordRule(
            Category.MEETING_BOOKED, 0.7, subject_keywords=("meeting", "appointment")
        ),
        KeywordRule(Category.BUSINESS, 0.6, subject_keywords=("invoice", "payment")),
        KeywordRule(
            Category.OUT_OF_OFFICE,
            0.8,
            subject_keywords=("out of office",),
            body_keywords=("out of office",),
        ),
        KeywordRule(
            Category.PROMOTIONAL, 0.6, subject_keywords=("discount", "offer")
        ),
    ),
    default_category=Category.INTERESTED,
    default_confidence=0.5,
    label="Provisional keyword tag",
)

_SPAM_PATTERN = re.compile(
    r"viagra|cialis|free\s+money|lottery|winner|prize|click\s+here|urgent\s+reply"
    r"|bank\s+transfer|nigerian|millions|inheritance|investment\s+opportunity"
    r"|bitcoin|crypto|\${3}|!{3}",
    re.IGNORECASE,
)

FALLBACK_RULES = DeterministicRules(
    (
        KeywordRule(
            Category.OUT_OF_OFFICE,
            0.9,
            subject_keywords=("out of office", "automatic reply", "auto reply"),
            body_keywords=(
                "out of office",
                "on vacation",
                "will return",
                "auto reply",
                "auto-reply",
                "automatic reply",
                "away from my desk",
                "not in office",
                "annual leave",
            ),
        ),
        KeywordRule(
            Category.MEETING_BOOKED,
            0.9,
            subject_keywords=("meeting", "call scheduled", "invitation:"),
            body_keywords=(
                "schedule a call",
                "appointment",
                "zoom",
                "google meet",
                "microsoft teams",
                "calendar invite",
                "booking confirmed",
                "meeting confirmation",
                "meeting is confirmed",
            ),
        ),
        KeywordRule(
            Category.NOT_INTERESTED,
            0.85,
            subject_keywords=("unsubscribe", "remove me"),
            body_keywords=(
                "not interested",
                "no thanks",
                "no, thanks",
                "unsubscribe",
                "stop contacting",
                "remove me",
                "don't contact",
                "do not contact",
                "not a fit",
                "decline",
            ),
        ),
        KeywordRule(Category.SPAM, 0.9, patterns=(_SPAM_PATTERN,)),
        KeywordRule(
            Category.INTERESTED,
            0.85,
            subject_keywords=("interested",),
            body_keywords=(
                "interested",
                "follow up",
                "looking forward",
                "would like to learn more",
                "sounds good",
                "tell me more",
                "more information",
                "pricing",
                "demo",
            ),
        ),
    ),
    default_category=Category.INTERESTED,
    default_confidence=0.6,
    label="Rule-based fallback categorization",
)


def provisional_tag(subject: object, body: object) -> ClassificationResult:
    """Return the low-confidence first-pass tag for a new message."""
    return PROVISIONAL_RULES.evaluate(subject, body)


def fallback_classification(subject: object, body: object) -> ClassificationResult:
    """Return the final rule-based result; only primary categories."""
    return FALLBACK_RULES.evaluate(subject, body)


__all__ = [
    "DeterministicRules",
    "FALLBACK_RULES",
    "KeywordRule",
    "PROVISIONAL_RULES",
    "fallback_classification",
    "provisional_tag",
]
