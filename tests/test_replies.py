"""Tests for reply suggestions."""

from __future__ import annotations

import json
from datetime import UTC, datetime

import pytest

from reach_inbox.core.errors import ProviderError, ProviderErrorKind
from reach_inbox.core.models import Category, EmailAddress, Message
from reach_inbox.intelligence import (
    ClassificationOrchestrator,
    ReplySuggester,
    fallback_suggestion,
)
from reach_inbox.intelligence.prompts import build_reply_prompt
from reach_inbox.intelligence.replies import parse_replies

NOW = datetime(2025, 10, 6, 9, 0, tzinfo=UTC)


class ScriptedProvider:
    def __init__(self, name: str, answer: object) -> None:
        self.name = name
        self.model = "scripted"
        self.answer = answer
        self.prompts: list[tuple[str, str]] = []

    def complete(self, system_prompt: str, user_prompt: str) -> str:
        self.prompts.append((system_prompt, user_prompt))
        if isinstance(self.answer, Exception):
            raise self.answer
        return str(self.answer)


def _message(category: Category = Category.INTERESTED, **overrides: object) -> Message:
    values: dict[str, object] = {
        "id": "m1",
        "message_id": "<m1@example.com>",
        "account": "primary",
        "folder": "INBOX",
        "sender": EmailAddress("jane@example.com", "Jane"),
        "recipients": (EmailAddress("sales@example.com"),),
        "subject": "Pricing",
        "body_text": "Could you send pricing for ten seats?",
        "body_html": "",
        "date": NOW,
        "created_at": NOW,
        "updated_at": NOW,
        "category": category,
    }
    values.update(overrides)
    return Message(**values)  # type: ignore[arg-type]


def test_provider_replies_are_returned() -> None:
    answer = {
        "category": "INTERESTED",
        "confidence": 0.85,
        "replies": [
            {"subject": "Re: Pricing", "body": "<think>draft</think>Hi Jane, pricing attached."},
            {"body": "Happy to walk you through it."},
            {"subject": "ignored", "body": "   "},
        ],
    }
    provider = ScriptedProvider("groq", json.dumps(answer))
    suggester = ReplySuggester(ClassificationOrchestrator([provider]))

    suggestion = suggester.suggest(
        _message(), context=["Ten seats cost 900 EUR"], product_info="Outreach suite"
    )

    assert suggestion.provider == "groq"
    assert suggestion.used_fallback is False
    assert suggestion.category is Category.INTERESTED
    assert suggestion.confidence == 0.85
    assert [reply.body for reply in suggestion.replies] == [
        "Hi Jane, pricing attached.",
        "Happy to walk you through it.",
    ]
    assert suggestion.replies[1].subject == "Re: Pricing"
    user_prompt = provider.prompts[0][1]
    assert "Product information:\nOutreach suite" in user_prompt
    assert "- Ten seats cost 900 EUR" in user_prompt


def test_disabled_provider_is_not_used_for_replies() -> None:
    rejected = ScriptedProvider(
        "deepseek", ProviderError("no balance", kind=ProviderErrorKind.QUOTA)
    )
    orchestrator = ClassificationOrchestrator([rejected])
    suggester = ReplySuggester(orchestrator)

    first = suggester.suggest(_message())
    second = suggester.suggest(_message())

    assert len(rejected.prompts) == 1
    assert first.used_fallback is second.used_fallback is True
    assert orchestrator.available_providers == []


def test_unusable_answer_falls_back_to_templates() -> None:
    provider = ScriptedProvider("groq", '{"replies": []}')

    suggestion = ReplySuggester(ClassificationOrchestrator([provider])).suggest(
        _message(Category.MEETING_BOOKED)
    )

    assert suggestion.provider == "templates"
    assert suggestion.category is Category.MEETING_BOOKED
    assert suggestion.confidence == 0.5
    assert len(suggestion.replies) == 1
    assert suggestion.replies[0].body.startswith("Hi Jane,")
    assert suggestion.replies[0].body.endswith("Best regards,\n[Your Name]")


def test_spam_gets_no_replies_and_skips_providers() -> None:
    provider = ScriptedProvider("groq", '{"replies": [{"body": "hi"}]}')

    suggestion = ReplySuggester(ClassificationOrchestrator([provider])).suggest(
        _message(Category.SPAM)
    )

    assert suggestion.replies == ()
    assert provider.prompts == []


def test_fallback_uses_category_templates() -> None:
    interested = fallback_suggestion(_message(), max_replies=5)
    provisional = fallback_suggestion(
        _message(Category.NEWSLETTER, subject="Re: Update", sender=EmailAddress("x@example.com"))
    )

    assert len(interested.replies) == 2
    assert all(reply.subject == "Re: Pricing" for reply in interested.replies)
    assert provisional.category is Category.INTERESTED
    assert provisional.replies[0].subject == "Re: Update"
    assert provisional.replies[0].body.startswith("Hi there,")


def test_parse_replies_requires_a_reply() -> None:
    with pytest.raises(ValueError):
        parse_replies('{"category": "INTERESTED"}', "Re: x")
    with pytest.raises(ValueError):
        parse_replies('{"replies": [{"subject": "Re: x"}]}', "Re: x")

    parsed = parse_replies('{"replies": [{"body": "ok"}], "confidence": 7}', "Re: x")

    assert parsed.confidence == 1.0
    assert parsed.label is None


def test_reply_prompt_mentions_current_category() -> None:
    prompt = build_reply_prompt(_message(Category.MEETING_BOOKED))

    assert "Current category: meeting_booked" in prompt
    assert "Relevant context" not in prompt
