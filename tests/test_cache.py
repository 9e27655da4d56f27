"""Tests for the in-memory message cache."""

from __future__ import annotations

from dataclasses import replace
from datetime import UTC, datetime, timedelta

import pytest

from reach_inbox.core.errors import NotFoundError, ValidationError
from reach_inbox.core.models import Category, EmailAddress, Message
from reach_inbox.storage import MailCache

BASE = datetime(2025, 10, 6, 9, 0, tzinfo=UTC)


def _message(message_id: str, account: str = "primary", **overrides: object) -> Message:
    values: dict[str, object] = {
        "id": message_id,
        "message_id": f"<{message_id}@example.com>",
        "account": account,
        "folder": "INBOX",
        "sender": EmailAddress(f"{message_id}@example.com"),
        "recipients": (),
        "subject": f"Subject {message_id}",
        "body_text": "body",
        "body_html": "",
        "date": BASE,
        "created_at": BASE,
        "updated_at": BASE,
    }
    values.update(overrides)
    return Message(**values)  # type: ignore[arg-type]


def test_upsert_is_idempotent_and_keeps_user_state() -> None:
    cache = MailCache()
    original = cache.upsert(_message("a"))
    cache.update("a", {"is_read": True, "is_starred": True})

    refreshed = cache.upsert(_message("a", subject="Edited subject"))

    assert cache.count() == 1
    assert refreshed.subject == "Edited subject"
    assert refreshed.is_read is True
    assert refreshed.is_starred is True
    assert refreshed.created_at == original.created_at
    assert refreshed.updated_at > original.updated_at


def test_update_advances_updated_at_and_validates_fields() -> None:
    cache = MailCache()
    stored = cache.upsert(_message("a", updated_at=BASE + timedelta(days=3650)))

    updated = cache.update("a", {"category": "spam", "confidence": 0.9, "flags": ["\\Seen"]})

    assert updated.category is Category.SPAM
    assert updated.confidence == 0.9
    assert updated.flags == ("\\Seen",)
    assert updated.updated_at > stored.updated_at

    for bad in (
        {"subject": "nope"},
        {"is_read": "yes"},
        {"category": "definitely-not"},
        {"confidence": 1.5},
        {"confidence": True},
        {"folder": "  "},
        {"flags": "\\Seen"},
    ):
        with pytest.raises(ValidationError):
            cache.update("a", bad)


def test_missing_ids_raise_not_found() -> None:
    cache = MailCache()

    assert cache.get("missing") is None
    with pytest.raises(NotFoundError):
        cache.update("missing", {"is_read": True})
    with pytest.raises(NotFoundError):
        cache.delete("missing")


def test_delete_removes_message() -> None:
    cache = MailCache()
    cache.upsert_many([_message("a"), _message("b")])

    cache.delete("a")

    assert cache.get("a") is None
    assert [message.id for message in cache.snapshot()] == ["b"]


def test_replace_account_swaps_only_that_partition() -> None:
    cache = MailCache()
    cache.upsert_many([_message("a"), _message("b"), _message("x", account="backup")])
    cache.update("b", {"is_starred": True})

    count = cache.replace_account("primary", [_message("c"), _message("b")])

    assert count == 2
    assert cache.get("a") is None
    assert cache.get("b").is_starred is True  # type: ignore[union-attr]
    assert [message.id for message in cache.snapshot("primary")] == ["b", "c"]
    assert [message.id for message in cache.snapshot("backup")] == ["x"]
    assert cache.accounts() == ["backup", "primary"]


def test_snapshot_is_a_copy() -> None:
    cache = MailCache()
    cache.upsert(_message("a"))

    snapshot = cache.snapshot()
    cache.upsert(_message("b"))

    assert [message.id for message in snapshot] == ["a"]
    assert cache.count() == 2


def test_stats_and_clear() -> None:
    cache = MailCache()
    cache.upsert_many(
        [
            _message("a", category=Category.INTERESTED),
            _message("b", category=Category.SPAM, folder="Archive"),
            _message("c", account="backup", category=Category.INTERESTED),
        ]
    )

    stats = cache.stats()

    assert stats["total"] == 3
    assert stats["by_account"] == {"backup": 1, "primary": 2}
    assert stats["by_category"] == {"interested": 2, "spam": 1}
    assert stats["by_folder"] == {"Archive": 1, "INBOX": 2}

    cache.clear()
    assert cache.count() == 0
    assert cache.stats()["total"] == 0


def test_query_accepts_mapping_parameters() -> None:
    cache = MailCache()
    cache.upsert_many(
        [
            _message("a", date=BASE),
            _message("b", date=BASE + timedelta(hours=1), is_read=True),
        ]
    )

    page = cache.query({"is_read": False})

    assert [message.id for message in page.emails] == ["a"]
    with pytest.raises(ValidationError):
        cache.query({"page": 0})


def test_upsert_moves_message_between_accounts() -> None:
    cache = MailCache()
    message = cache.upsert(_message("a"))

    cache.upsert(replace(message, account="backup"))

    assert cache.count("primary") == 0
    assert cache.count("backup") == 1


def test_refetch_keeps_category_until_content_changes() -> None:
    cache = MailCache()
    cache.upsert(_message("a", category=Category.NEWSLETTER, confidence=0.6))
    cache.update("a", {"category": "interested", "confidence": 0.95})

    same = cache.upsert(_message("a", category=Category.NEWSLETTER, confidence=0.6))

    assert (same.category, same.confidence) == (Category.INTERESTED, 0.95)

    changed = cache.upsert(
        _message("a", body_text="new body", category=Category.NEWSLETTER, confidence=0.6)
    )

    assert (changed.category, changed.confidence) == (Category.NEWSLETTER, 0.6)


def test_replace_account_keeps_category_of_unchanged_messages() -> None:
    cache = MailCache()
    cache.upsert(_message("a"))
    cache.update("a", {"category": "meeting_booked", "confidence": 0.9})

    cache.replace_account("primary", [_message("a", category=Category.BUSINESS)])

    stored = cache.get("a")
    assert stored is not None
    assert stored.category is Category.MEETING_BOOKED
