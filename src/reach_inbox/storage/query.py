"""Filtering, sorting and pagination over cached messages."""

from __future__ import annotations

import logging
import math
from collections.abc import Callable, Iterable, Mapping, Sequence
from datetime import datetime
from typing import TYPE_CHECKING, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from reach_inbox.core.datetime_utils import ensure_utc
from reach_inbox.core.errors import ValidationError
from reach_inbox.core.interfaces import SearchIndex
from reach_inbox.core.models import Category, Message, Page

if TYPE_CHECKING:
    from .cache import MailCache

LOGGER = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100

SortKey = Literal["date", "sender", "subject"]
SortOrder = Literal["asc", "desc"]


class MessageFilter(BaseModel):
    """Query parameters accepted by :meth:`MailCache.query`."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    account: str | None = None
    folder: str | None = None
    category: Category | None = None
    sender: str | None = Field(default=None, description="Substring of sender")
    subject: str | None = Field(default=None, description="Substring of subject")
    is_read: bool | None = None
    is_starred: bool | None = None
    has_attachments: bool | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None
    q: str | None = Field(default=None, description="Free-text substring")
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=DEFAULT_PAGE_SIZE, ge=1)
    sort_by: SortKey = "date"
    sort_order: SortOrder = "desc"

    @field_validator("limit", mode="after")
    @classmethod
    def _clamp_limit(cls, value: int) -> int:
        return min(value, MAX_PAGE_SIZE)

    @field_validator("sender", "subject", "q", "account", "folder", mode="after")
    @classmethod
    def _blank_to_none(cls, value: str | None) -> str | None:
        if value is None:
            return None
        stripped = value.strip()
        return stripped or None

    @classmethod
    def build(cls, params: Mapping[str, Any] | None = None, **kwargs: Any) -> MessageFilter:
        """Validate ``params``; raise :class:`ValidationError` for bad input."""
        merged = {**(params or {}), **kwargs}
        try:
            return cls.model_validate(merged)
        except PydanticValidationError as exc:
            raise ValidationError(f"Invalid message filter: {exc}") from exc

    def matches(self, message: Message) -> bool:
        """Return ``True`` when ``message`` satisfies every set criterion."""
        if self.account is not None and message.account != self.account:
            return False
        if self.folder is not None and message.folder != self.folder:
            return False
        if self.category is not None and message.category != self.category:
            return False
        if self.is_read is not None and message.is_read != self.is_read:
            return False
        if self.is_starred is not None and message.is_starred != self.is_starred:
            return False
        if (
            self.has_attachments is not None
            and message.has_attachments != self.has_attachments
        ):
            return False
        if not _in_range(message.date, self.date_from, self.date_to):
            return False
        if self.sender is not None:
            needle = self.sender.lower()
            if (
                needle not in message.sender.address.lower()
                and needle not in message.sender.name.lower()
            ):
                return False
        if self.subject is not None and self.subject.lower() not in message.subject.lower():
            return False
        if self.q is not None:
            needle = self.q.lower()
            haystacks = (
                message.subject,
                message.body_text,
                message.sender.name,
                message.sender.address,
            )
            if not any(needle in text.lower() for text in haystacks):
                return False
        return True


def _in_range(
    value: datetime, start: datetime | None, end: datetime | None
) -> bool:
    moment = ensure_utc(value)
    if start is not None and moment < ensure_utc(start):
        return False
    if end is not None and moment > ensure_utc(end):
        return False
    return True


def _sort_key(sort_by: str) -> Callable[[Message], Any]:
    if sort_by == "sender":
        return lambda message: (message.sender.name or message.sender.address).lower()
    if sort_by == "subject":
        return lambda message: message.subject.lower()
    return lambda message: ensure_utc(message.date)


def sort_messages(
    messages: Iterable[Message], sort_by: str = "date", sort_order: str = "desc"
) -> list[Message]:
    """Sort stably; ties keep the incoming (insertion) order in both directions."""
    if sort_by not in ("date", "sender", "subject"):
        raise ValidationError(f"Unknown sort key '{sort_by}'")
    if sort_order not in ("asc", "desc"):
        raise ValidationError(f"Unknown sort order '{sort_order}'")
    return sorted(messages, key=_sort_key(sort_by), reverse=sort_order == "desc")


def paginate(messages: Sequence[Message], page: int, limit: int) -> Page:
    """Slice ``messages`` into a 1-indexed :class:`Page`."""
    if page < 1:
        raise ValidationError("page must be >= 1")
    if limit < 1:
        raise ValidationError("limit must be >= 1")
    limit = min(limit, MAX_PAGE_SIZE)
    total = len(messages)
    start = (page - 1) * limit
    return Page(
        emails=list(messages[start : start + limit]),
        total=total,
        page=page,
        limit=limit,
        total_pages=math.ceil(total / limit) if total else 0,
        has_next_page=page * limit < total,
        has_prev_page=page > 1,
    )


def run_query(messages: Iterable[Message], query: MessageFilter) -> Page:
    """Apply filter, sort and pagination to messages in insertion order."""
    selected = [message for message in messages if query.matches(message)]
    ordered = sort_messages(selected, query.sort_by, query.sort_order)
    return paginate(ordered, query.page, query.limit)


class QueryService:
    """Serve queries from the cache, consulting an optional search index.

    The index is only used for free-text queries. Any index failure falls back
    to in-memory filtering.
    """

    def __init__(self, cache: MailCache, index: SearchIndex | None = None) -> None:
        self._cache = cache
        self._index = index

    @property
    def index(self) -> SearchIndex | None:
        """The injected search index, if any."""
        return self._index

    def search(self, query: MessageFilter | Mapping[str, Any] | None = None) -> Page:
        """Return one page of results for ``query``."""
        if query is None:
            query = MessageFilter()
        elif not isinstance(query, MessageFilter):
            query = MessageFilter.build(query)
        if self._index is not None and query.q:
            try:
                return self._index.search(query)
            except Exception as exc:  # noqa: BLE001 - index is optional
                LOGGER.warning("Search index query failed; using cache: %s", exc)
        return self._cache.query(query)

    def index_messages(self, messages: Sequence[Message]) -> bool:
        """Bulk-index ``messages``; return ``False`` when the index failed."""
        if self._index is None or not messages:
            return False
        try:
            self._index.bulk_index(messages)
        except Exception as exc:  # noqa: BLE001 - index is optional
            LOGGER.warning("Bulk indexing of %s messages failed: %s", len(messages), exc)
            return False
        return True


__all__ = [
    "DEFAULT_PAGE_SIZE",
    "MAX_PAGE_SIZE",
    "MessageFilter",
    "QueryService",
    "paginate",
    "run_query",
    "sort_messages",
]
