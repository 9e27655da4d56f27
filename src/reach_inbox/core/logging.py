"""Logging setup and redaction helpers for credentials that end up in output."""

from __future__ import annotations

import logging.config
from typing import Any
from urllib.parse import urlsplit

from .config import LoggingSettings

_FORMATS: dict[bool, dict[str, str]] = {
    False: {"format": "%(asctime)s %(levelname)s %(name)s %(message)s"},
    True: {
        "format": '{{"time": "{asctime}", "level": "{levelname}", '
        '"logger": "{name}", "message": "{message}"}}',
        "style": "{",
    },
}

# HTTP client internals log every request at INFO.
_QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access")


def build_logging_config(settings: LoggingSettings) -> dict[str, Any]:
    """Translate :class:`LoggingSettings` into a ``dictConfig`` mapping."""
    level = settings.level.upper()
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {"default": dict(_FORMATS[settings.structured])},
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "default",
                "level": level,
            },
        },
        "loggers": {name: {"level": "WARNING"} for name in _QUIET_LOGGERS},
        "root": {"handlers": ["console"], "level": level},
    }


def configure_logging(settings: LoggingSettings) -> None:
    logging.config.dictConfig(build_logging_config(settings))


def mask_secret(value: str | None, *, keep: int = 4) -> str:
    """Return ``value`` with everything but the edges replaced by ``*``."""
    if not value:
        return "<unset>"
    if len(value) <= keep * 2:
        return "*" * len(value)
    return f"{value[:keep]}****{value[-keep:]}"


def mask_url(url: str | None) -> str:
    """Return ``url`` reduced to scheme and host so tokens in paths stay hidden."""
    if not url:
        return "<unset>"
    parts = urlsplit(url)
    if not parts.scheme or not parts.hostname:
        return mask_secret(url)
    host = parts.hostname if parts.port is None else f"{parts.hostname}:{parts.port}"
    suffix = "/***" if parts.path.strip("/") or parts.query else ""
    return f"{parts.scheme}://{host}{suffix}"


__all__ = ["build_logging_config", "configure_logging", "mask_secret", "mask_url"]
