"""Reply suggestions drawn from the provider chain with canned fallbacks."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass

from reach_inbox.core.models import Category, Message, ReplySuggestion, SuggestedReply

from .orchestrator import ClassificationOrchestrator
from .prompts import REPLY_SYSTEM_PROMPT, build_reply_prompt
from .response import DEFAULT_CONFIDENCE, clean_response_text, extract_json_object

LOGGER = logging.getLogger(__name__)

MAX_REPLIES = 3
FALLBACK_CONFIDENCE = 0.5
SIGNATURE = "[Your Name]"

_FALLBACK_BODIES: dict[Category, tuple[str, ...]] = {
    Category.INTERESTED: (
        "Thank you for your interest. I would be happy to share more details. "
        "Could we schedule a quick call to go over your needs?",
        "Thanks for getting back to me. Which parts would you like to hear more "
        "about? I can send material or set up a short call.",
    ),
    Category.MEETING_BOOKED: (
        "Thanks for confirming. I have the meeting in my calendar and look "
        "forward to speaking with you. Let me know if the time needs to change.",
    ),
    Category.NOT_INTERESTED: (
        "Thank you for letting me know. If your needs change in the future, "
        "please don't hesitate to reach out.",
    ),
    Category.SPAM: (),
    Category.OUT_OF_OFFICE: (
        "Thanks for the note. I will follow up once you are back in the office.",
    ),
}
_ACKNOWLEDGEMENT = (
    "Thank you for your email. I have received your message and will get back "
    "to you shortly."
)


@dataclass(frozen=True, slots=True)
class ParsedReplies:
    """Replies and optional label read from a provider completion."""

    label: str | None
    confidence: float
    replies: tuple[SuggestedReply, ...]


class ReplySuggester:
    """Suggest replies for a message, falling back to per-category templates.

    Providers are reached through the orchestrator so a provider disabled for
    authentication or quota reasons is skipped here as well. Spam gets no
    suggestions.
    """

    def __init__(
        self,
        orchestrator: ClassificationOrchestrator | None = None,
        *,
        max_replies: int = MAX_REPLIES,
    ) -> None:
        self._orchestrator = orchestrator
        self._max_replies = max(1, max_replies)

    def suggest(
        self,
        message: Message,
        context: Sequence[str] = (),
        product_info: str | None = None,
    ) -> ReplySuggestion:
        """Return up to ``max_replies`` replies for ``message``; never raises."""
        if self._orchestrator is not None and message.category is not Category.SPAM:
            default_subject = _reply_subject(message.subject)
            try:
                prompt = build_reply_prompt(message, context, product_info)
                answer = self._orchestrator.run_chain(
                    REPLY_SYSTEM_PROMPT,
                    prompt,
                    lambda raw: parse_replies(raw, default_subject),
                )
            except Exception:  # noqa: BLE001 - suggestions degrade to templates
                LOGGER.exception("Reply suggestion failed for message %s", message.id)
                answer = None
            if answer is not None:
                parsed, provider = answer
                category = (
                    self._orchestrator.mapper.map(parsed.label)
                    if parsed.label
                    else _primary_or_default(message.category)
                )
                return ReplySuggestion(
                    message_id=message.id,
                    category=category,
                    confidence=parsed.confidence,
                    replies=parsed.replies[: self._max_replies],
                    provider=provider,
                )

        LOGGER.debug("Using template replies for message %s", message.id)
        return fallback_suggestion(message, max_replies=self._max_replies)


def parse_replies(raw: str | None, default_subject: str) -> ParsedReplies:
    """Parse a reply completion; raise ``ValueError`` when it holds no reply."""
    payload = extract_json_object(clean_response_text(raw))
    entries = payload.get("replies")
    if not isinstance(entries, list):
        raise ValueError("Provider output missing 'replies' list")
    replies: list[SuggestedReply] = []
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        body = entry.get("body")
        body = clean_response_text(body) if isinstance(body, str) else ""
        if not body:
            continue
        subject = entry.get("subject")
        if not isinstance(subject, str) or not subject.strip():
            subject = default_subject
        replies.append(SuggestedReply(subject=subject.strip(), body=body))
    if not replies:
        raise ValueError("Provider output contained no usable reply")

    label = payload.get("category")
    confidence = payload.get("confidence")
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
        confidence = DEFAULT_CONFIDENCE
    return ParsedReplies(
        label=label.strip() if isinstance(label, str) and label.strip() else None,
        confidence=min(max(float(confidence), 0.0), 1.0),
        replies=tuple(replies),
    )


def fallback_suggestion(
    message: Message, *, max_replies: int = MAX_REPLIES
) -> ReplySuggestion:
    """Build template replies from the message's current category."""
    category = _primary_or_default(message.category)
    name = message.sender.name or "there"
    subject = _reply_subject(message.subject)
    bodies = _FALLBACK_BODIES.get(category, (_ACKNOWLEDGEMENT,))
    replies = tuple(
        SuggestedReply(
            subject=subject,
            body=f"Hi {name},\n\n{body}\n\nBest regards,\n{SIGNATURE}",
        )
        for body in bodies[:max_replies]
    )
    return ReplySuggestion(
        message_id=message.id,
        category=category,
        confidence=FALLBACK_CONFIDENCE,
        replies=replies,
        provider="templates",
        used_fallback=True,
    )


def _reply_subject(subject: str) -> str:
    subject = subject.strip()
    if subject.lower().startswith("re:"):
        return subject
    return f"Re: {subject}" if subject else "Re: your message"


def _primary_or_default(category: Category) -> Category:
    return category if category.is_primary else Category.INTERESTED


__all__ = ["ParsedReplies", "ReplySuggester", "fallback_suggestion", "parse_replies"]
