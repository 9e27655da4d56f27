"""Turn loosely shaped parsed payloads into canonical :class:`Message` records."""

from __future__ import annotations

import hashlib
import logging
from collections.abc import Mapping
from datetime import UTC, datetime
from email.utils import getaddresses
from typing import Any

from ..core.datetime_utils import ensure_aware, utc_now
from ..core.models import AttachmentMeta, EmailAddress, Message, RawMessage
from ..intelligence.rules import provisional_tag

LOGGER = logging.getLogger(__name__)

SEEN_FLAG = "\\Seen"
FLAGGED_FLAG = "\\Flagged"
EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


def message_fingerprint(message_id: str, subject: str, date: datetime) -> str:
    """Return the 16 hex character content id for a message."""
    millis = int(date.timestamp() * 1000)
    digest = hashlib.sha256(f"{message_id}{subject}{millis}".encode("utf-8"))
    return digest.hexdigest()[:16]


class MessageNormalizer:
    """Build canonical messages; tolerant of every malformed field."""

    def __init__(self, *, folder: str = "INBOX") -> None:
        self._folder = folder

    def normalize(
        self, raw: RawMessage, account_id: str, *, folder: str | None = None
    ) -> Message:
        """Return a :class:`Message` for ``raw``; never raises on bad input."""
        now = utc_now()
        sent = _coerce_date(getattr(raw, "date", None))
        received = _coerce_date(getattr(raw, "received_at", None))
        # The id must not depend on when the message happened to be fetched.
        stable_date = sent or received or EPOCH
        message_id = _text(getattr(raw, "message_id", None))
        subject = _text(getattr(raw, "subject", None))
        body_text = _text(getattr(raw, "text", None))
        body_html = _text(getattr(raw, "html", None))
        flags = _flags(getattr(raw, "flags", ()))
        references = _references(getattr(raw, "references", ()))
        in_reply_to = _text(getattr(raw, "in_reply_to", None))

        senders = normalize_addresses(getattr(raw, "sender", None))
        provisional = provisional_tag(subject, body_text)

        return Message(
            id=message_fingerprint(message_id, subject, stable_date),
            message_id=message_id,
            account=account_id,
            folder=folder or self._folder,
            sender=senders[0] if senders else EmailAddress(address=""),
            recipients=normalize_addresses(getattr(raw, "to", None)),
            cc=normalize_addresses(getattr(raw, "cc", None)),
            bcc=normalize_addresses(getattr(raw, "bcc", None)),
            subject=subject,
            body_text=body_text,
            body_html=body_html,
            date=sent or received or now,
            created_at=now,
            updated_at=now,
            flags=flags,
            attachments=_attachments(getattr(raw, "attachments", ())),
            thread_id=_thread_id(
                _text(getattr(raw, "thread_id", None)), references, in_reply_to
            ),
            in_reply_to=in_reply_to,
            references=references,
            category=provisional.category,
            confidence=provisional.confidence,
            is_read=SEEN_FLAG in flags,
            is_starred=FLAGGED_FLAG in flags,
        )


def normalize_addresses(value: Any) -> tuple[EmailAddress, ...]:
    """Flatten string, pair, mapping or list shapes into ``EmailAddress`` values."""
    collected: list[EmailAddress] = []
    _collect_addresses(value, collected)
    return tuple(collected)


def _collect_addresses(value: Any, collected: list[EmailAddress]) -> None:
    if value is None:
        return
    if isinstance(value, EmailAddress):
        if value.address:
            collected.append(value)
        return
    if isinstance(value, str):
        for name, address in getaddresses([value]):
            if address:
                collected.append(EmailAddress(address=address.strip(), name=name.strip()))
        return
    if isinstance(value, Mapping):
        address = _text(value.get("address"))
        if address:
            collected.append(EmailAddress(address=address, name=_text(value.get("name"))))
        return
    if (
        isinstance(value, tuple)
        and len(value) == 2
        and all(isinstance(part, str) or part is None for part in value)
    ):
        name, address = value
        if address:
            collected.append(EmailAddress(address=address.strip(), name=_text(name)))
        return
    if isinstance(value, (list, tuple, set, frozenset)):
        for item in value:
            _collect_addresses(item, collected)
        return
    LOGGER.debug("Ignoring address of unsupported type %s", type(value).__name__)


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace").strip()
    return str(value).strip()


def _coerce_date(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return ensure_aware(value)
    return None


def _flags(value: Any) -> tuple[str, ...]:
    if not value or isinstance(value, (str, bytes)):
        return ()
    return tuple(_text(flag) for flag in value if _text(flag))


def _references(value: Any) -> tuple[str, ...]:
    if not value:
        return ()
    if isinstance(value, str):
        return tuple(value.split())
    return tuple(_text(item) for item in value if _text(item))


def _attachments(value: Any) -> tuple[AttachmentMeta, ...]:
    if not value or isinstance(value, (str, bytes)):
        return ()
    return tuple(item for item in value if isinstance(item, AttachmentMeta))


def _thread_id(explicit: str, references: tuple[str, ...], in_reply_to: str) -> str:
    if explicit:
        return explicit
    if references:
        return references[0]
    return in_reply_to


__all__ = ["MessageNormalizer", "message_fingerprint", "normalize_addresses"]
