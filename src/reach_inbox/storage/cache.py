"""In-memory, account-partitioned message store."""

from __future__ import annotations

import itertools
import logging
import threading
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, replace
from typing import Any

from reach_inbox.core.datetime_utils import monotonic_after
from reach_inbox.core.errors import NotFoundError, ValidationError
from reach_inbox.core.models import Category, Message, Page

from .analytics import AnalyticsRequest, AnalyticsResult, compute_analytics, group_counts
from .query import MessageFilter, run_query

LOGGER = logging.getLogger(__name__)

UPDATABLE_FIELDS = frozenset(
    {"is_read", "is_starred", "category", "confidence", "folder", "flags"}
)


@dataclass(frozen=True, slots=True)
class _Entry:
    sequence: int
    message: Message


class MailCache:
    """Thread-safe store of canonical messages keyed by id.

    Records are frozen and replaced wholesale under the lock, so readers that
    take a snapshot never observe a half-applied update.
    """

    def __init__(self) -> None:
        self._partitions: dict[str, dict[str, _Entry]] = {}
        self._owners: dict[str, str] = {}
        self._sequence = itertools.count()
        self._lock = threading.RLock()

    # Writes -------------------------------------------------------------------
    def upsert(self, message: Message) -> Message:
        """Insert ``message`` or refresh the record that shares its id."""
        with self._lock:
            return self._upsert_locked(message)

    def upsert_many(self, messages: Iterable[Message]) -> list[Message]:
        """Upsert every message under a single lock acquisition."""
        with self._lock:
            return [self._upsert_locked(message) for message in messages]

    def update(self, message_id: str, fields: Mapping[str, Any]) -> Message:
        """Apply a partial update; only user-editable fields are accepted."""
        changes = _validate_update(fields)
        with self._lock:
            entry = self._find(message_id)
            if entry is None:
                raise NotFoundError(f"Message '{message_id}' not found")
            current = entry.message
            updated = replace(
                current, **changes, updated_at=monotonic_after(current.updated_at)
            )
            self._store(current.account, _Entry(entry.sequence, updated))
            return updated

    def delete(self, message_id: str) -> None:
        """Remove a message; raise :class:`NotFoundError` when absent."""
        with self._lock:
            account = self._owners.pop(message_id, None)
            if account is None:
                raise NotFoundError(f"Message '{message_id}' not found")
            self._partitions[account].pop(message_id, None)

    def replace_account(self, account_id: str, messages: Iterable[Message]) -> int:
        """Swap an account's contents for ``messages``; return the new count.

        Ids that survive the refresh keep their creation time, position and
        read/starred state.
        """
        with self._lock:
            previous = self._partitions.pop(account_id, {})
            for message_id in previous:
                if self._owners.get(message_id) == account_id:
                    del self._owners[message_id]
            self._partitions[account_id] = {}
            for message in messages:
                prior = previous.get(message.id)
                if message.account != account_id:
                    message = replace(message, account=account_id)
                if prior is not None and message.id not in self._owners:
                    refreshed = _refresh(prior.message, message)
                    self._store(account_id, _Entry(prior.sequence, refreshed))
                else:
                    self._upsert_locked(message)
            count = len(self._partitions[account_id])
        LOGGER.debug("Replaced cache contents for %s with %s messages", account_id, count)
        return count

    def clear(self) -> None:
        """Drop every message."""
        with self._lock:
            self._partitions.clear()
            self._owners.clear()

    # Reads --------------------------------------------------------------------
    def get(self, message_id: str) -> Message | None:
        """Return the message with ``message_id`` or ``None``."""
        with self._lock:
            entry = self._find(message_id)
            return entry.message if entry is not None else None

    def snapshot(self, account_id: str | None = None) -> list[Message]:
        """Return a consistent copy of messages in insertion order."""
        with self._lock:
            if account_id is not None:
                entries = list(self._partitions.get(account_id, {}).values())
            else:
                entries = [
                    entry
                    for partition in self._partitions.values()
                    for entry in partition.values()
                ]
        entries.sort(key=lambda entry: entry.sequence)
        return [entry.message for entry in entries]

    def count(self, account_id: str | None = None) -> int:
        """Return the number of cached messages, optionally for one account."""
        with self._lock:
            if account_id is not None:
                return len(self._partitions.get(account_id, {}))
            return len(self._owners)

    def accounts(self) -> list[str]:
        """Return account ids that currently hold messages."""
        with self._lock:
            return sorted(account for account, items in self._partitions.items() if items)

    def query(self, query: MessageFilter | Mapping[str, Any] | None = None) -> Page:
        """Filter, sort and paginate over the current snapshot."""
        if query is None:
            query = MessageFilter()
        elif not isinstance(query, MessageFilter):
            query = MessageFilter.build(query)
        return run_query(self.snapshot(), query)

    def analytics(
        self, request: AnalyticsRequest | Mapping[str, Any] | None = None
    ) -> AnalyticsResult:
        """Compute aggregations over the current snapshot."""
        if request is not None and not isinstance(request, AnalyticsRequest):
            request = AnalyticsRequest.build(request)
        return compute_analytics(self.snapshot(), request)

    def stats(self) -> dict[str, Any]:
        """Return totals grouped by account, category and folder."""
        messages = self.snapshot()
        return {"total": len(messages), **group_counts(messages)}

    # Internal helpers ---------------------------------------------------------
    def _upsert_locked(self, message: Message) -> Message:
        entry = self._find(message.id)
        if entry is None:
            self._store(message.account, _Entry(next(self._sequence), message))
            return message
        merged = _refresh(entry.message, message)
        if entry.message.account != merged.account:
            self._partitions[entry.message.account].pop(message.id, None)
        self._store(merged.account, _Entry(entry.sequence, merged))
        return merged

    def _find(self, message_id: str) -> _Entry | None:
        account = self._owners.get(message_id)
        if account is None:
            return None
        return self._partitions.get(account, {}).get(message_id)

    def _store(self, account_id: str, entry: _Entry) -> None:
        self._partitions.setdefault(account_id, {})[entry.message.id] = entry
        self._owners[entry.message.id] = account_id


def _refresh(existing: Message, incoming: Message) -> Message:
    """Return ``incoming`` carrying the identity and user state of ``existing``.

    The stored category survives a re-fetch of unchanged content; only new
    content brings its provisional category along until it is classified.
    """
    kept: dict[str, Any] = {}
    if incoming.content_key == existing.content_key:
        kept = {"category": existing.category, "confidence": existing.confidence}
    return replace(
        incoming,
        created_at=existing.created_at,
        updated_at=monotonic_after(existing.updated_at, incoming.updated_at),
        is_read=existing.is_read,
        is_starred=existing.is_starred,
        **kept,
    )


def _validate_update(fields: Mapping[str, Any]) -> dict[str, Any]:
    if not isinstance(fields, Mapping):
        raise ValidationError("Update payload must be a mapping")
    unknown = set(fields) - UPDATABLE_FIELDS
    if unknown:
        raise ValidationError(f"Fields cannot be updated: {', '.join(sorted(unknown))}")

    changes: dict[str, Any] = {}
    for name, value in fields.items():
        if name in ("is_read", "is_starred"):
            if not isinstance(value, bool):
                raise ValidationError(f"'{name}' must be a boolean")
            changes[name] = value
        elif name == "category":
            try:
                changes[name] = Category(value)
            except ValueError as exc:
                raise ValidationError(f"Unknown category '{value}'") from exc
        elif name == "confidence":
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValidationError("'confidence' must be a number")
            if not 0.0 <= float(value) <= 1.0:
                raise ValidationError("'confidence' must be between 0 and 1")
            changes[name] = float(value)
        elif name == "folder":
            if not isinstance(value, str) or not value.strip():
                raise ValidationError("'folder' must be a non-empty string")
            changes[name] = value.strip()
        elif name == "flags":
            if isinstance(value, (str, bytes)) or not isinstance(value, (list, tuple)):
                raise ValidationError("'flags' must be a list of strings")
            if not all(isinstance(flag, str) for flag in value):
                raise ValidationError("'flags' must be a list of strings")
            changes[name] = tuple(value)
    return changes


__all__ = ["MailCache", "UPDATABLE_FIELDS"]
