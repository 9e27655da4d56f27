"""Utilities for parsing raw RFC822 messages into loosely-typed records."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import datetime
from email import policy
from email.message import EmailMessage
from email.parser import BytesParser
from email.utils import getaddresses, parsedate_to_datetime

from ..core.datetime_utils import ensure_aware
from ..core.errors import ParseError
from ..core.models import AttachmentMeta, RawMessage

_THREAD_HEADERS = ("X-GM-THRID", "Thread-Index", "Thread-Id")
_BODY_SEPARATORS = {"text/plain": "\n\n", "text/html": "\n"}


class EmailParser:
    """Convert raw email payloads into :class:`RawMessage` records."""

    def __init__(self) -> None:
        self._bytes_parser = BytesParser(policy=policy.default)

    def parse(
        self,
        uid: int,
        payload: bytes,
        flags: Sequence[str] = (),
        *,
        received_at: datetime | None = None,
    ) -> RawMessage:
        """Parse raw RFC822 bytes; raise :class:`ParseError` when unreadable."""
        if not payload:
            raise ParseError(f"Empty payload for UID {uid}")
        try:
            message = self._bytes_parser.parsebytes(payload)
            text, html = _extract_bodies(message)
            return RawMessage(
                uid=uid,
                message_id=_header(message, "Message-ID"),
                subject=_header(message, "Subject"),
                sender=_address_pairs(message.get_all("From", [])),
                to=_address_pairs(message.get_all("To", [])),
                cc=_address_pairs(message.get_all("Cc", [])),
                bcc=_address_pairs(message.get_all("Bcc", [])),
                date=_parse_date(_header(message, "Date")),
                text=text,
                html=html,
                attachments=tuple(_collect_attachments(message)),
                in_reply_to=_header(message, "In-Reply-To"),
                references=tuple((_header(message, "References") or "").split()),
                thread_id=_explicit_thread_id(message),
                flags=tuple(flags),
                received_at=received_at,
            )
        except ParseError:
            raise
        except Exception as exc:  # noqa: BLE001 - any malformed MIME is one bad message
            raise ParseError(f"Failed to parse message UID {uid}") from exc


def _header(message: EmailMessage, name: str) -> str | None:
    value = message.get(name)
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _address_pairs(headers: Iterable[object]) -> list[tuple[str, str]]:
    return [
        (name, address)
        for name, address in getaddresses([str(header) for header in headers])
        if address
    ]


def _explicit_thread_id(message: EmailMessage) -> str | None:
    for header in _THREAD_HEADERS:
        value = _header(message, header)
        if value:
            return value.split()[0]
    return None


def _extract_bodies(message: EmailMessage) -> tuple[str | None, str | None]:
    """Join every inline text part per type; attachments never count as body."""
    found: dict[str, list[str]] = {kind: [] for kind in _BODY_SEPARATORS}
    for part in message.walk():
        kind = part.get_content_type()
        if kind not in found or part.get_content_disposition() == "attachment":
            continue
        try:
            content = part.get_content()
        except (LookupError, ValueError):
            # Unknown charset or broken transfer encoding.
            continue
        if isinstance(content, str) and content.strip():
            found[kind].append(content.strip())
    text, html = (
        _BODY_SEPARATORS[kind].join(found[kind]) or None
        for kind in ("text/plain", "text/html")
    )
    return text, html


def _collect_attachments(message: EmailMessage) -> Iterable[AttachmentMeta]:
    for part in message.iter_attachments():
        payload = part.get_payload(decode=True) or b""
        yield AttachmentMeta(
            filename=part.get_filename() or "",
            content_type=part.get_content_type(),
            size=len(payload),
        )


def _parse_date(header_value: str | None) -> datetime | None:
    if header_value is None:
        return None
    try:
        return ensure_aware(parsedate_to_datetime(header_value))
    except (TypeError, ValueError, IndexError):
        return None


__all__ = ["EmailParser"]
