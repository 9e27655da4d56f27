"""Datetime helpers shared across the application."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

__all__ = [
    "ensure_aware",
    "ensure_utc",
    "monotonic_after",
    "utc_now",
]


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(tz=UTC)


def ensure_aware(value: datetime) -> datetime:
    """Return ``value`` with UTC attached when it is naive."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def ensure_utc(value: datetime | None) -> datetime | None:
    """Return ``value`` converted to UTC; naive values are assumed UTC."""
    if value is None:
        return None
    return ensure_aware(value).astimezone(UTC)


def monotonic_after(previous: datetime, candidate: datetime | None = None) -> datetime:
    """Return a timestamp strictly later than ``previous``."""
    current = candidate or utc_now()
    if current <= previous:
        return previous + timedelta(microseconds=1)
    return current
