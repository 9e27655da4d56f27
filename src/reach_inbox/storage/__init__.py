"""In-memory message storage, query and analytics."""

from .analytics import AnalyticsRequest, AnalyticsResult, ResponseTimeStats
from .cache import MailCache
from .query import MessageFilter, QueryService

__all__ = [
    "AnalyticsRequest",
    "AnalyticsResult",
    "MailCache",
    "MessageFilter",
    "QueryService",
    "ResponseTimeStats",
]
