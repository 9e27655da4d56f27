"""Prompt templates for provider-backed categorisation."""

from __future__ import annotations

from collections.abc import Sequence
from textwrap import dedent

from reach_inbox.core.models import Message

MAX_PROMPT_BODY_CHARS = 4000

SYSTEM_PROMPT = dedent(
    """
    You are an email categorization system for a sales and outreach tool.
    Categorize each incoming email into EXACTLY ONE of these categories:

    1. INTERESTED - shows genuine interest, asks for more information, pricing or next steps
    2. MEETING_BOOKED - contains meeting confirmations, calendar invites or scheduling details
    3. NOT_INTERESTED - explicitly declines, says not interested or asks to be removed
    4. SPAM - unsolicited promotion, suspicious content or clear spam
    5. OUT_OF_OFFICE - automated out-of-office or vacation replies

    Respond strictly with JSON using this schema:
    {
      "category": "CATEGORY_NAME",
      "confidence": 0.95,
      "reasoning": "Brief explanation of the choice"
    }

    Confidence is a number between 0 and 1. Do not include <think> tags,
    internal reasoning or any prose outside the JSON object.
    """
).strip()


def build_categorization_prompt(message: Message) -> str:
    """Compose the user prompt describing ``message``."""
    sender = getattr(message, "sender", None)
    sender_name = getattr(sender, "name", "") or ""
    sender_address = getattr(sender, "address", "") or "unknown@example.com"
    subject = getattr(message, "subject", "") or "(no subject)"
    date = getattr(message, "date", None)
    date_line = date.isoformat() if hasattr(date, "isoformat") else "(unknown date)"
    body = (getattr(message, "body_text", "") or "")[:MAX_PROMPT_BODY_CHARS]
    attachments = "Yes" if getattr(message, "attachments", ()) else "No"
    thread_id = getattr(message, "thread_id", "") or "None"

    lines = [
        "Please categorize the following email.",
        "",
        f"From: {sender_name} <{sender_address}>",
        f"Subject: {subject}",
        f"Date: {date_line}",
        "",
        "Email body:",
        body,
        "",
        "Additional context:",
        f"- Account: {getattr(message, 'account', '')}",
        f"- Folder: {getattr(message, 'folder', '')}",
        f"- Has attachments: {attachments}",
        f"- Thread ID: {thread_id}",
    ]
    return "\n".join(lines).strip()


REPLY_SYSTEM_PROMPT = dedent(
    """
    You write short, professional replies for a sales and outreach inbox.
    Read the email, decide which of INTERESTED, MEETING_BOOKED, NOT_INTERESTED,
    SPAM or OUT_OF_OFFICE it belongs to, then draft up to three replies that are
    courteous, relevant to the email and action-oriented where appropriate.

    Respond strictly with JSON using this schema:
    {
      "category": "CATEGORY_NAME",
      "confidence": 0.85,
      "replies": [
        {"subject": "Re: original subject", "body": "Reply with greeting and closing"}
      ]
    }

    Do not include <think> tags or any prose outside the JSON object.
    """
).strip()


def build_reply_prompt(
    message: Message, context: Sequence[str] = (), product_info: str | None = None
) -> str:
    """Compose the user prompt asking for replies to ``message``."""
    sender = message.sender
    lines = [
        "Suggest replies to the following email.",
        "",
        f"From: {sender.name} <{sender.address or 'unknown@example.com'}>",
        f"Subject: {message.subject or '(no subject)'}",
        f"Current category: {message.category.value}",
        "",
        "Email body:",
        message.body_text[:MAX_PROMPT_BODY_CHARS],
    ]
    if product_info:
        lines.extend(["", "Product information:", product_info.strip()])
    snippets = [snippet.strip() for snippet in context if snippet and snippet.strip()]
    if snippets:
        lines.extend(["", "Relevant context:"])
        lines.extend(f"- {snippet}" for snippet in snippets)
    return "\n".join(lines).strip()


__all__ = [
    "MAX_PROMPT_BODY_CHARS",
    "REPLY_SYSTEM_PROMPT",
    "SYSTEM_PROMPT",
    "build_categorization_prompt",
    "build_reply_prompt",
]
