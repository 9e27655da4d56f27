"""Exception taxonomy shared by ingestion, classification and query paths."""

from __future__ import annotations

from enum import StrEnum


class ReachInboxError(RuntimeError):
    """Base class for all package errors."""


class ConnectError(ReachInboxError):
    """Raised when a mailbox connection attempt or session fails.

    ``reason`` is one of ``timeout``, ``auth``, ``network`` or ``protocol``.
    """

    def __init__(self, message: str, *, reason: str = "network") -> None:
        super().__init__(message)
        self.reason = reason


class ParseError(ReachInboxError):
    """Raised when a single fetched message cannot be parsed."""


class ProviderErrorKind(StrEnum):
    """Failure classes reported by classification providers."""

    AUTH = "auth"
    QUOTA = "quota"
    RATE_LIMIT = "rate_limit"
    TIMEOUT = "timeout"
    INVALID_RESPONSE = "invalid_response"
    TRANSIENT = "transient"

    @property
    def is_fatal(self) -> bool:
        """Return ``True`` when the provider should be disabled for good."""
        return self in (ProviderErrorKind.AUTH, ProviderErrorKind.QUOTA)


class ProviderError(ReachInboxError):
    """Raised when a classification provider call fails."""

    def __init__(
        self,
        message: str,
        *,
        kind: ProviderErrorKind = ProviderErrorKind.TRANSIENT,
        provider: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.provider = provider
        self.status_code = status_code


class NotFoundError(ReachInboxError, LookupError):
    """Raised when a record id does not exist in the cache."""


class ValidationError(ReachInboxError, ValueError):
    """Raised for malformed filter or update input."""


class NotifierError(ReachInboxError):
    """Raised when a notification could not be delivered."""


__all__ = [
    "ConnectError",
    "NotFoundError",
    "NotifierError",
    "ParseError",
    "ProviderError",
    "ProviderErrorKind",
    "ReachInboxError",
    "ValidationError",
]
