"""Application configuration models and loader utilities."""

from __future__ import annotations

import os
from collections.abc import Iterable
from functools import lru_cache
from pathlib import Path
from typing import Any, cast

from dotenv import dotenv_values
from pydantic import BaseModel, Field, field_validator

from .models import Account, Category

DEFAULT_PROVIDER_ORDER = ("groq", "deepseek", "ollama", "mistral", "anthropic", "openai")

DEFAULT_REMAP: dict[str, Category] = {
    "PROMOTIONAL": Category.SPAM,
    "NEWSLETTER": Category.SPAM,
    "ADVERTISEMENT": Category.SPAM,
    "MARKETING": Category.SPAM,
    "PERSONAL": Category.INTERESTED,
    "BUSINESS": Category.INTERESTED,
    "SUPPORT": Category.INTERESTED,
    "INQUIRY": Category.INTERESTED,
}


class AccountSettings(BaseModel):
    """Connection details for a single IMAP mailbox."""

    name: str | None = Field(default=None, description="Display name")
    host: str = Field(default="imap.gmail.com", description="IMAP hostname")
    port: int = Field(default=993, description="IMAP port, typically 993 for SSL")
    username: str | None = Field(default=None, description="Account username")
    password: str | None = Field(default=None, description="Password or app token")
    use_ssl: bool = Field(default=True, description="Whether to enforce SSL")
    folder: str = Field(default="INBOX", description="Mailbox to monitor")
    active: bool = Field(default=True, description="Skip the account when false")


class ImapSettings(BaseModel):
    """Timeouts and bounds shared by every mailbox connection."""

    connect_timeout_seconds: float = Field(
        default=15.0, gt=0, description="Socket connect timeout"
    )
    auth_timeout_seconds: float = Field(
        default=15.0, gt=0, description="Timeout applied while authenticating"
    )
    fetch_limit: int = Field(
        default=100, ge=1, description="Most recent messages loaded per account"
    )


class ProviderSettings(BaseModel):
    """Credentials and endpoint for one classification provider."""

    api_key: str | None = Field(default=None, description="Provider API key")
    base_url: str | None = Field(default=None, description="Override base URL")
    model: str | None = Field(default=None, description="Model identifier")


class ClassificationSettings(BaseModel):
    """Settings for the classifier chain."""

    provider_order: tuple[str, ...] = Field(
        default=DEFAULT_PROVIDER_ORDER, description="Providers tried in order"
    )
    request_timeout_seconds: float = Field(
        default=30.0, gt=0, description="Per-request timeout for providers"
    )
    temperature: float = Field(default=0.3, ge=0.0, le=1.0)
    max_output_tokens: int = Field(default=150, ge=16)
    batch_size: int = Field(default=5, ge=1, description="Concurrent classifications")
    batch_delay_seconds: float = Field(
        default=1.0, ge=0.0, description="Pause between classification batches"
    )
    remap: dict[str, Category] = Field(
        default_factory=lambda: dict(DEFAULT_REMAP),
        description="Non-primary labels mapped onto primary categories",
    )
    default_category: Category = Field(
        default=Category.INTERESTED,
        description="Category used for labels missing from the remap table",
    )

    @field_validator("provider_order", mode="before")
    @classmethod
    def _split_order(cls, value: Any) -> Any:
        if isinstance(value, str):
            return tuple(part.strip().lower() for part in value.split(",") if part.strip())
        return value

    @field_validator("remap", mode="before")
    @classmethod
    def _extend_default_remap(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return {**DEFAULT_REMAP, **value}
        return value

    @field_validator("remap", mode="after")
    @classmethod
    def _normalise_remap_keys(cls, value: dict[str, Category]) -> dict[str, Category]:
        for key, category in value.items():
            if not category.is_primary:
                raise ValueError(f"Remap target for '{key}' must be a primary category")
        return {key.upper().replace("-", "_").replace(" ", "_"): cat for key, cat in value.items()}

    @field_validator("default_category")
    @classmethod
    def _require_primary_default(cls, value: Category) -> Category:
        if not value.is_primary:
            raise ValueError("default_category must be a primary category")
        return value


class NotifySettings(BaseModel):
    """Outbound notification targets."""

    webhook_url: str | None = Field(default=None, description="Generic webhook URL")
    slack_bot_token: str | None = Field(default=None, description="Slack bot token")
    slack_channel_id: str | None = Field(default=None, description="Slack channel")
    timeout_seconds: float = Field(default=10.0, gt=0)
    retry_attempts: int = Field(default=3, ge=1)


class LoggingSettings(BaseModel):
    """Logging preferences."""

    level: str = Field(default="INFO", description="Root logging level")
    structured: bool = Field(
        default=False, description="Toggle JSON structured logging"
    )


class SyncSettings(BaseModel):
    """Settings controlling the supervisor timers."""

    sync_interval_seconds: float = Field(
        default=300.0, gt=0, description="Seconds between sync cycles"
    )
    health_interval_seconds: float = Field(
        default=60.0, gt=0, description="Seconds between self-heal checks"
    )


class WebSettings(BaseModel):
    """Bind address for the health probe server."""

    host: str = Field(default="127.0.0.1", description="Interface to bind")
    port: int = Field(default=8080, ge=1, le=65535, description="TCP port")


class AppSettings(BaseModel):
    """Aggregated application configuration."""

    accounts: dict[str, AccountSettings] = Field(default_factory=dict)
    imap: ImapSettings = Field(default_factory=ImapSettings)
    providers: dict[str, ProviderSettings] = Field(default_factory=dict)
    classification: ClassificationSettings = Field(
        default_factory=ClassificationSettings
    )
    notify: NotifySettings = Field(default_factory=NotifySettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    sync: SyncSettings = Field(default_factory=SyncSettings)
    web: WebSettings = Field(default_factory=WebSettings)

    def build_accounts(self) -> tuple[Account, ...]:
        """Return immutable account records for every configured mailbox."""
        return tuple(
            Account(
                id=account_id,
                host=entry.host,
                port=entry.port,
                username=entry.username,
                password=entry.password,
                use_ssl=entry.use_ssl,
                active=entry.active,
                folder=entry.folder,
                name=entry.name,
            )
            for account_id, entry in sorted(self.accounts.items())
        )


ENV_PREFIX = "REACH_INBOX_"


def _key_path(raw_key: str) -> list[str]:
    """``REACH_INBOX_ACCOUNTS__WORK__HOST`` -> ``["accounts", "work", "host"]``."""
    return [part.lower() for part in raw_key.removeprefix(ENV_PREFIX).split("__") if part]


def _coerce(value: str | None) -> Any:
    if value is None or value == "":
        return None
    lowered = value.lower()
    if lowered in ("true", "false"):
        return lowered == "true"
    return value


def _prefixed(items: Iterable[tuple[str, str | None]]) -> dict[str, str | None]:
    return {key: value for key, value in items if key and key.startswith(ENV_PREFIX)}


def _collect_env_values(
    env_file: Path | str | None, *, include_environment: bool = True
) -> dict[str, Any]:
    """Fold prefixed keys from ``env_file`` and the process into a nested tree.

    Process variables win over the file.
    """
    flat: dict[str, str | None] = {}
    if env_file and Path(env_file).is_file():
        flat.update(_prefixed(dotenv_values(env_file).items()))
    if include_environment:
        flat.update(_prefixed(os.environ.items()))

    tree: dict[str, Any] = {}
    for key, value in flat.items():
        path = _key_path(key)
        if not path:
            continue
        node = tree
        for segment in path[:-1]:
            node = cast(dict[str, Any], node.setdefault(segment, {}))
        node[path[-1]] = _coerce(value)
    return tree


@lru_cache(maxsize=1)
def load_app_settings(
    env_file: Path | str | None = None,
    include_environment: bool = True,
    **overrides: Any,
) -> AppSettings:
    """Load application settings, applying env files and overrides."""
    collected = _collect_env_values(env_file, include_environment=include_environment)
    if overrides:
        collected.update(overrides)
    return AppSettings.model_validate(collected)


__all__ = [
    "AccountSettings",
    "AppSettings",
    "ClassificationSettings",
    "DEFAULT_PROVIDER_ORDER",
    "DEFAULT_REMAP",
    "ImapSettings",
    "LoggingSettings",
    "NotifySettings",
    "ProviderSettings",
    "SyncSettings",
    "WebSettings",
    "load_app_settings",
]
