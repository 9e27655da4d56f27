"""Size-bounded message projections handed to notifiers."""

from __future__ import annotations

import re
from typing import Any

from reach_inbox.core.models import ClassificationResult, Message

BODY_PREVIEW_CHARS = 500
MAX_RECIPIENTS = 3

_TAGS = re.compile(r"<[^>]+>")
_WHITESPACE = re.compile(r"\s+")


def build_projection(
    message: Message, result: ClassificationResult | None = None
) -> dict[str, Any]:
    """Return a sanitized, JSON-ready summary of ``message``."""
    category = result.category if result is not None else message.category
    confidence = result.confidence if result is not None else message.confidence
    projection: dict[str, Any] = {
        "id": message.id,
        "messageId": message.message_id,
        "account": message.account,
        "folder": message.folder,
        "subject": message.subject,
        "sender": {"name": message.sender.name, "address": message.sender.address},
        "recipients": [
            {"name": recipient.name, "address": recipient.address}
            for recipient in message.recipients[:MAX_RECIPIENTS]
        ],
        "date": message.date.isoformat(),
        "category": category.value,
        "confidence": round(confidence, 3),
        "bodyPreview": body_preview(message),
        "attachments": [
            {
                "filename": attachment.filename,
                "contentType": attachment.content_type,
                "size": attachment.size,
            }
            for attachment in message.attachments
        ],
        "threadId": message.thread_id,
    }
    if result is not None:
        projection["provider"] = result.provider
        projection["reasoning"] = result.reasoning
    return projection


def body_preview(message: Message, limit: int = BODY_PREVIEW_CHARS) -> str:
    """Plain-text body collapsed to single spaces and cut at ``limit`` chars."""
    source = message.body_text or _TAGS.sub(" ", message.body_html)
    text = _WHITESPACE.sub(" ", source).strip()
    if len(text) <= limit:
        return text
    return text[: limit - 3].rstrip() + "..."


__all__ = ["BODY_PREVIEW_CHARS", "MAX_RECIPIENTS", "body_preview", "build_projection"]
