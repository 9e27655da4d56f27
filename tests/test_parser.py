"""Tests for RFC822 parsing into raw message records."""

from __future__ import annotations

from datetime import timedelta
from email.message import EmailMessage
from pathlib import Path

import pytest

from reach_inbox.core.errors import ParseError
from reach_inbox.ingestion import EmailParser

FIXTURE_PATH = Path(__file__).parent / "fixtures" / "sample_email.eml"


def test_email_parser_extracts_headers_and_bodies() -> None:
    payload = FIXTURE_PATH.read_bytes()
    parser = EmailParser()

    raw = parser.parse(uid=101, payload=payload, flags=("\\Seen",))

    assert raw.uid == 101
    assert raw.subject == "Test Email"
    assert raw.sender == [("Sender Name", "sender@example.com")]
    assert raw.to == [("", "user@example.com")]
    assert raw.cc == [("Another Person", "another@example.com")]
    assert raw.bcc == []
    assert raw.message_id == "<1234@example.com>"
    assert raw.in_reply_to == "<parent@example.com>"
    assert raw.references == ("<thread@example.com>", "<parent@example.com>")
    assert raw.thread_id is None
    assert raw.text == "Hello world."
    assert "<strong>world</strong>" in (raw.html or "")
    assert raw.flags == ("\\Seen",)
    assert raw.date is not None
    assert raw.date.utcoffset() == timedelta(hours=2)
    assert len(raw.attachments) == 1
    attachment = raw.attachments[0]
    assert attachment.filename == "note.txt"
    assert attachment.content_type == "application/octet-stream"
    assert attachment.size == 18


def test_email_parser_reads_explicit_thread_header() -> None:
    message = EmailMessage()
    message["Subject"] = "Threaded"
    message["From"] = "a@example.com"
    message["X-GM-THRID"] = "1790000000000000001"
    message.set_content("body")

    raw = EmailParser().parse(7, message.as_bytes())

    assert raw.thread_id == "1790000000000000001"
    assert raw.date is None
    assert raw.attachments == ()


def test_email_parser_rejects_empty_payload() -> None:
    with pytest.raises(ParseError):
        EmailParser().parse(1, b"")
