"""Time-bucketed aggregations and thread response-time statistics."""

from __future__ import annotations

import statistics
from collections import Counter, defaultdict
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as PydanticValidationError

from reach_inbox.core.datetime_utils import ensure_aware, ensure_utc
from reach_inbox.core.errors import ValidationError
from reach_inbox.core.models import Category, Message

MAX_REPLY_GAP = timedelta(days=7)

RESPONSE_BUCKETS = ("<1h", "1-4h", "4-12h", "12-24h", ">24h")


class AnalyticsRequest(BaseModel):
    """Subset selection for :func:`compute_analytics`."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    date_from: datetime | None = None
    date_to: datetime | None = None
    account: str | None = None
    category: Category | None = None

    @classmethod
    def build(
        cls, params: Mapping[str, Any] | None = None, **kwargs: Any
    ) -> AnalyticsRequest:
        """Validate ``params``; raise :class:`ValidationError` for bad input."""
        try:
            return cls.model_validate({**(params or {}), **kwargs})
        except PydanticValidationError as exc:
            raise ValidationError(f"Invalid analytics request: {exc}") from exc

    def includes(self, message: Message) -> bool:
        """Return ``True`` when ``message`` falls inside the requested subset."""
        if self.account is not None and message.account != self.account:
            return False
        if self.category is not None and message.category != self.category:
            return False
        moment = ensure_utc(message.date)
        if self.date_from is not None and moment < ensure_utc(self.date_from):
            return False
        if self.date_to is not None and moment > ensure_utc(self.date_to):
            return False
        return True


@dataclass(slots=True)
class ResponseTimeStats:
    """Reply latency between consecutive messages of a thread, in hours."""

    count: int = 0
    mean_hours: float | None = None
    min_hours: float | None = None
    max_hours: float | None = None
    median_hours: float | None = None
    histogram: dict[str, int] = field(
        default_factory=lambda: dict.fromkeys(RESPONSE_BUCKETS, 0)
    )


@dataclass(slots=True)
class AnalyticsResult:
    """Aggregations over the selected messages."""

    total: int
    by_account: dict[str, int]
    by_category: dict[str, int]
    by_folder: dict[str, int]
    daily_volume: dict[str, int]
    hourly_distribution: list[int]
    weekly_trends: dict[str, dict[str, int]]
    response_times: ResponseTimeStats


def group_counts(messages: Iterable[Message]) -> dict[str, dict[str, int]]:
    """Return message counts by account, category and folder."""
    by_account: Counter[str] = Counter()
    by_category: Counter[str] = Counter()
    by_folder: Counter[str] = Counter()
    for message in messages:
        by_account[message.account] += 1
        by_category[message.category.value] += 1
        by_folder[message.folder] += 1
    return {
        "by_account": dict(sorted(by_account.items())),
        "by_category": dict(sorted(by_category.items())),
        "by_folder": dict(sorted(by_folder.items())),
    }


def compute_analytics(
    messages: Sequence[Message], request: AnalyticsRequest | None = None
) -> AnalyticsResult:
    """Aggregate ``messages`` restricted to ``request``."""
    request = request or AnalyticsRequest()
    selected = [message for message in messages if request.includes(message)]
    groups = group_counts(selected)
    return AnalyticsResult(
        total=len(selected),
        by_account=groups["by_account"],
        by_category=groups["by_category"],
        by_folder=groups["by_folder"],
        daily_volume=daily_volume(selected),
        hourly_distribution=hourly_distribution(selected),
        weekly_trends=weekly_trends(selected),
        response_times=response_time_stats(selected),
    )


def daily_volume(messages: Iterable[Message]) -> dict[str, int]:
    """Count messages per UTC calendar day, ascending."""
    counts: Counter[str] = Counter(
        ensure_utc(message.date).date().isoformat() for message in messages
    )
    return dict(sorted(counts.items()))


def hourly_distribution(messages: Iterable[Message]) -> list[int]:
    """Count messages per hour of day in each message's own offset."""
    buckets = [0] * 24
    for message in messages:
        buckets[ensure_aware(message.date).hour] += 1
    return buckets


def weekly_trends(messages: Iterable[Message]) -> dict[str, dict[str, int]]:
    """Category counts per ISO week, keyed by the Monday that starts it (UTC)."""
    matrix: dict[str, Counter[str]] = defaultdict(Counter)
    for message in messages:
        day = ensure_utc(message.date).date()
        week_start = day - timedelta(days=day.weekday())
        matrix[week_start.isoformat()][message.category.value] += 1
    return {week: dict(sorted(counts.items())) for week, counts in sorted(matrix.items())}


def response_time_stats(messages: Iterable[Message]) -> ResponseTimeStats:
    """Reconstruct threads and measure gaps between consecutive messages."""
    threads: dict[str, list[datetime]] = defaultdict(list)
    for message in messages:
        key = message.thread_id or message.message_id or message.id
        threads[key].append(ensure_utc(message.date))

    deltas: list[float] = []
    for moments in threads.values():
        moments.sort()
        for earlier, later in zip(moments, moments[1:]):
            gap = later - earlier
            if gap < MAX_REPLY_GAP:
                deltas.append(gap.total_seconds() / 3600)

    stats = ResponseTimeStats()
    if not deltas:
        return stats
    stats.count = len(deltas)
    stats.mean_hours = statistics.fmean(deltas)
    stats.min_hours = min(deltas)
    stats.max_hours = max(deltas)
    stats.median_hours = statistics.median(deltas)
    for hours in deltas:
        stats.histogram[_bucket(hours)] += 1
    return stats


def _bucket(hours: float) -> str:
    if hours < 1:
        return "<1h"
    if hours < 4:
        return "1-4h"
    if hours < 12:
        return "4-12h"
    if hours <= 24:
        return "12-24h"
    return ">24h"


__all__ = [
    "AnalyticsRequest",
    "AnalyticsResult",
    "RESPONSE_BUCKETS",
    "ResponseTimeStats",
    "compute_analytics",
    "daily_volume",
    "group_counts",
    "hourly_distribution",
    "response_time_stats",
    "weekly_trends",
]
