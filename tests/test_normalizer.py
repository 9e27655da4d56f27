"""Tests for canonical message normalisation."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta, timezone

from reach_inbox.core.models import AttachmentMeta, Category, EmailAddress, RawMessage
from reach_inbox.ingestion import MessageNormalizer, message_fingerprint, normalize_addresses
from reach_inbox.ingestion.normalizer import EPOCH
from reach_inbox.storage import MailCache


def _raw(**overrides: object) -> RawMessage:
    values: dict[str, object] = {
        "uid": 1,
        "message_id": "<abc@example.com>",
        "subject": "Pricing question",
        "sender": [("Jane Doe", "jane@example.com")],
        "to": "Sales <sales@example.com>, ops@example.com",
        "date": datetime(2025, 10, 6, 9, 15, tzinfo=timezone(timedelta(hours=2))),
        "text": "Could you send pricing?",
        "flags": ("\\Seen",),
    }
    values.update(overrides)
    return RawMessage(**values)  # type: ignore[arg-type]


def test_normalize_builds_deterministic_id() -> None:
    normalizer = MessageNormalizer()
    raw = _raw()

    first = normalizer.normalize(raw, "primary")
    second = normalizer.normalize(raw, "primary")

    assert first.id == second.id
    assert len(first.id) == 16
    assert first.id == message_fingerprint("<abc@example.com>", "Pricing question", raw.date)
    assert first.account == "primary"
    assert first.folder == "INBOX"
    assert first.sender == EmailAddress(address="jane@example.com", name="Jane Doe")
    assert [r.address for r in first.recipients] == ["sales@example.com", "ops@example.com"]
    assert first.recipients[0].name == "Sales"
    assert first.is_read is True
    assert first.is_starred is False


def test_normalize_applies_provisional_tag() -> None:
    normalizer = MessageNormalizer()

    newsletter = normalizer.normalize(_raw(subject="Weekly newsletter"), "primary")
    meeting = normalizer.normalize(_raw(subject="Meeting tomorrow"), "primary")
    ooo = normalizer.normalize(
        _raw(subject="Re: hello", text="I am out of office until Monday"), "primary"
    )
    plain = normalizer.normalize(_raw(subject="Hello there", text="hi"), "primary")

    assert (newsletter.category, newsletter.confidence) == (Category.NEWSLETTER, 0.6)
    assert (meeting.category, meeting.confidence) == (Category.MEETING_BOOKED, 0.7)
    assert (ooo.category, ooo.confidence) == (Category.OUT_OF_OFFICE, 0.8)
    assert (plain.category, plain.confidence) == (Category.INTERESTED, 0.5)


def test_normalize_tolerates_missing_fields() -> None:
    before = datetime.now(tz=UTC)
    message = MessageNormalizer().normalize(RawMessage(uid=9), "primary")

    assert message.message_id == ""
    assert message.subject == ""
    assert message.sender.address == ""
    assert message.recipients == ()
    assert message.body_text == ""
    assert message.date >= before
    assert message.thread_id == ""


def test_thread_id_resolution_order() -> None:
    normalizer = MessageNormalizer()

    explicit = normalizer.normalize(
        _raw(thread_id="T-1", references=("<root@x>",), in_reply_to="<p@x>"), "a"
    )
    from_references = normalizer.normalize(
        _raw(references=("<root@x>", "<p@x>"), in_reply_to="<p@x>"), "a"
    )
    from_reply = normalizer.normalize(_raw(in_reply_to="<p@x>"), "a")

    assert explicit.thread_id == "T-1"
    assert from_references.thread_id == "<root@x>"
    assert from_reply.thread_id == "<p@x>"


def test_normalize_addresses_accepts_mixed_shapes() -> None:
    addresses = normalize_addresses(
        [
            "Alice <alice@example.com>",
            {"name": "Bob", "address": "bob@example.com"},
            ("Carol", "carol@example.com"),
            {"name": "No Address", "address": ""},
            None,
            42,
        ]
    )

    assert [a.address for a in addresses] == [
        "alice@example.com",
        "bob@example.com",
        "carol@example.com",
    ]
    assert normalize_addresses({"address": "solo@example.com"}) == (
        EmailAddress(address="solo@example.com"),
    )


def test_normalize_keeps_attachments_and_flags() -> None:
    attachment = AttachmentMeta("deck.pdf", "application/pdf", 2048)
    message = MessageNormalizer().normalize(
        _raw(attachments=(attachment,), flags=("\\Flagged",)), "primary", folder="Sales"
    )

    assert message.attachments == (attachment,)
    assert message.has_attachments
    assert message.is_starred is True
    assert message.is_read is False
    assert message.folder == "Sales"


def test_undated_messages_keep_the_same_id_across_fetches() -> None:
    normalizer = MessageNormalizer()
    cache = MailCache()

    first = cache.upsert(normalizer.normalize(_raw(date=None), "primary"))
    second = cache.upsert(normalizer.normalize(_raw(date=None), "primary"))

    assert first.id == second.id
    assert cache.count() == 1
    assert first.id == message_fingerprint("<abc@example.com>", "Pricing question", EPOCH)


def test_internal_date_stands_in_for_a_missing_date_header() -> None:
    received = datetime(2025, 10, 7, 8, 0, tzinfo=UTC)

    message = MessageNormalizer().normalize(_raw(date=None, received_at=received), "primary")

    assert message.date == received
    assert message.id == message_fingerprint("<abc@example.com>", "Pricing question", received)
