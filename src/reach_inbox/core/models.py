"""Core domain models used across the application."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any


class Category(StrEnum):
    """Closed set of labels a message can carry."""

    INTERESTED = "interested"
    MEETING_BOOKED = "meeting_booked"
    NOT_INTERESTED = "not_interested"
    SPAM = "spam"
    OUT_OF_OFFICE = "out_of_office"
    # Auxiliary buckets, only produced by the provisional keyword tag.
    NEWSLETTER = "newsletter"
    PROMOTIONAL = "promotional"
    PERSONAL = "personal"
    BUSINESS = "business"
    SUPPORT = "support"
    UNCATEGORIZED = "uncategorized"

    @property
    def is_primary(self) -> bool:
        """Return ``True`` for the five outreach categories."""
        return self in PRIMARY_CATEGORIES


PRIMARY_CATEGORIES: frozenset[Category] = frozenset(
    {
        Category.INTERESTED,
        Category.MEETING_BOOKED,
        Category.NOT_INTERESTED,
        Category.SPAM,
        Category.OUT_OF_OFFICE,
    }
)

HIGH_VALUE_CATEGORIES: frozenset[Category] = frozenset(
    {Category.INTERESTED, Category.MEETING_BOOKED}
)


class ConnectionState(StrEnum):
    """Lifecycle of a single mailbox connection."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DEGRADED = "degraded"


@dataclass(frozen=True, slots=True)
class Account:
    """Identity and credentials for one remote mailbox."""

    id: str
    host: str
    port: int
    username: str | None
    password: str | None = field(default=None, repr=False)
    use_ssl: bool = True
    active: bool = True
    folder: str = "INBOX"
    name: str | None = None

    @property
    def display_name(self) -> str:
        """Return a label suitable for log lines."""
        return self.name or self.id


@dataclass(frozen=True, slots=True)
class EmailAddress:
    """Mailbox address with an optional display name."""

    address: str
    name: str = ""


@dataclass(frozen=True, slots=True)
class AttachmentMeta:
    """Metadata describing an email attachment."""

    filename: str
    content_type: str
    size: int


@dataclass(slots=True)
class RawMessage:
    """Parsed-but-not-normalized payload returned by the connection manager.

    Address fields are deliberately loose: a plain string, a single
    ``(name, address)`` pair or mapping, or a list of any of those.
    """

    uid: int
    message_id: str | None = None
    subject: str | None = None
    sender: Any = None
    to: Any = None
    cc: Any = None
    bcc: Any = None
    date: datetime | None = None
    text: str | None = None
    html: str | None = None
    attachments: tuple[AttachmentMeta, ...] = ()
    in_reply_to: str | None = None
    references: tuple[str, ...] = ()
    thread_id: str | None = None
    flags: tuple[str, ...] = ()
    received_at: datetime | None = None


# pylint: disable=too-many-instance-attributes
@dataclass(frozen=True, slots=True)
class Message:
    """Canonical, provider-agnostic representation of one mail item."""

    id: str
    message_id: str
    account: str
    folder: str
    sender: EmailAddress
    recipients: tuple[EmailAddress, ...]
    subject: str
    body_text: str
    body_html: str
    date: datetime
    created_at: datetime
    updated_at: datetime
    cc: tuple[EmailAddress, ...] = ()
    bcc: tuple[EmailAddress, ...] = ()
    flags: tuple[str, ...] = ()
    attachments: tuple[AttachmentMeta, ...] = ()
    thread_id: str = ""
    in_reply_to: str = ""
    references: tuple[str, ...] = ()
    category: Category = Category.UNCATEGORIZED
    confidence: float = 0.0
    is_read: bool = False
    is_starred: bool = False

    @property
    def has_attachments(self) -> bool:
        """Return ``True`` when the message carries attachment metadata."""
        return bool(self.attachments)

    @property
    def content_key(self) -> tuple[str, str, str]:
        """Fields whose change means the message must be classified again."""
        return (self.subject, self.body_text, self.body_html)


@dataclass(frozen=True, slots=True)
class ClassificationResult:
    """Outcome of routing a message through the classifier chain."""

    category: Category
    confidence: float
    reasoning: str
    provider: str = "rules"
    used_fallback: bool = False


@dataclass(frozen=True, slots=True)
class SuggestedReply:
    """One candidate answer to a message."""

    subject: str
    body: str


@dataclass(frozen=True, slots=True)
class ReplySuggestion:
    """Candidate replies for one message and where they came from."""

    message_id: str
    category: Category
    confidence: float
    replies: tuple[SuggestedReply, ...]
    provider: str = "templates"
    used_fallback: bool = False


@dataclass(slots=True)
class Page:
    """One page of query results."""

    emails: list[Message]
    total: int
    page: int
    limit: int
    total_pages: int
    has_next_page: bool
    has_prev_page: bool


@dataclass(slots=True)
class AccountStatus:
    """Connection snapshot for one account."""

    account_id: str
    state: ConnectionState
    email_count: int


@dataclass(slots=True)
class SupervisorStatus:
    """Health summary exposed to probes and the CLI."""

    is_running: bool
    connected_accounts: int
    total_accounts: int
    last_sync: datetime | None
    accounts: tuple[AccountStatus, ...] = ()

    def as_dict(self) -> dict[str, Any]:
        """Return the probe payload."""
        return {
            "isRunning": self.is_running,
            "connectedAccounts": self.connected_accounts,
            "totalAccounts": self.total_accounts,
            "lastSync": self.last_sync.isoformat() if self.last_sync else None,
            "accounts": [
                {
                    "accountId": status.account_id,
                    "state": status.state.value,
                    "emailCount": status.email_count,
                }
                for status in self.accounts
            ],
        }


@dataclass(slots=True)
class SyncReport:
    """Outcome summary for one account's fetch cycle."""

    account_id: str
    fetched: int
    classified: int
    notified: int
    error: str | None = None


__all__ = [
    "Account",
    "AccountStatus",
    "AttachmentMeta",
    "Category",
    "ClassificationResult",
    "ConnectionState",
    "EmailAddress",
    "HIGH_VALUE_CATEGORIES",
    "Message",
    "PRIMARY_CATEGORIES",
    "Page",
    "RawMessage",
    "ReplySuggestion",
    "SuggestedReply",
    "SupervisorStatus",
    "SyncReport",
]
