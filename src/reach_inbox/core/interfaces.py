"""Protocol interfaces for decoupling components."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING, Any, Protocol

from .models import Account, ConnectionState, Message, Page, RawMessage

if TYPE_CHECKING:
    from reach_inbox.storage.query import MessageFilter


class MailboxProvider(Protocol):
    """Abstraction over one remote mailbox session such as IMAP."""

    account: Account

    @property
    def state(self) -> ConnectionState:
        """Current connection state."""
        raise NotImplementedError

    def connect(self) -> None:
        """Open and authenticate the session."""
        raise NotImplementedError

    def fetch_recent(self, limit: int, folder: str | None = None) -> list[RawMessage]:
        """Return up to ``limit`` most recent messages, newest first."""
        raise NotImplementedError

    def close(self) -> None:
        """Release any network resources."""
        raise NotImplementedError


class ClassifierProvider(Protocol):
    """Remote model able to answer a categorisation prompt."""

    @property
    def name(self) -> str:
        """Short identifier used in logs and circuit state."""
        raise NotImplementedError

    @property
    def model(self) -> str:
        """Model identifier sent to the provider."""
        raise NotImplementedError

    def complete(self, system_prompt: str, user_prompt: str) -> str:
        """Return the raw text completion; raise ``ProviderError`` on failure."""
        raise NotImplementedError


class SearchIndex(Protocol):
    """Optional external full-text index consulted opportunistically."""

    def index_document(self, message: Message) -> None:
        """Index or replace one message."""
        raise NotImplementedError

    def bulk_index(self, messages: Sequence[Message]) -> None:
        """Index many messages at once."""
        raise NotImplementedError

    def search(self, query: MessageFilter) -> Page:
        """Run a ranked search for ``query``."""
        raise NotImplementedError

    def aggregate(self) -> Mapping[str, Any]:
        """Return counts grouped by account, category and folder."""
        raise NotImplementedError


class Notifier(Protocol):
    """Outbound transport for high-value message events."""

    def notify(self, event: str, payload: Mapping[str, Any]) -> None:
        """Deliver ``payload`` for ``event``; raise ``NotifierError`` on failure."""
        raise NotImplementedError


__all__ = [
    "ClassifierProvider",
    "MailboxProvider",
    "Notifier",
    "SearchIndex",
]
