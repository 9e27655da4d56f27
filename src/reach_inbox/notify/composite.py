"""Fan-out notifier and construction from settings."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any

import httpx

from reach_inbox.core.config import NotifySettings
from reach_inbox.core.errors import NotifierError
from reach_inbox.core.interfaces import Notifier

from .slack import SlackNotifier
from .webhook import WebhookNotifier

LOGGER = logging.getLogger(__name__)


class CompositeNotifier:
    """Deliver to several notifiers; one failing target does not block the rest."""

    def __init__(self, notifiers: Sequence[Notifier]) -> None:
        self._notifiers = tuple(notifiers)

    def __len__(self) -> int:
        return len(self._notifiers)

    def notify(self, event: str, payload: Mapping[str, Any]) -> None:
        """Notify every target; raise only when all of them failed."""
        failures = 0
        for notifier in self._notifiers:
            try:
                notifier.notify(event, payload)
            except Exception as exc:  # noqa: BLE001 - isolate each target
                failures += 1
                LOGGER.warning(
                    "Notifier %s failed for %s: %s", type(notifier).__name__, event, exc
                )
        if self._notifiers and failures == len(self._notifiers):
            raise NotifierError(f"All {failures} notifiers failed for {event}")


def build_notifier(
    settings: NotifySettings, *, client: httpx.Client | None = None
) -> CompositeNotifier | None:
    """Return a notifier for every configured target, or ``None``."""
    targets: list[Notifier] = []
    if settings.webhook_url:
        targets.append(
            WebhookNotifier(
                settings.webhook_url,
                timeout_seconds=settings.timeout_seconds,
                retry_attempts=settings.retry_attempts,
                client=client,
            )
        )
    if settings.slack_bot_token and settings.slack_channel_id:
        targets.append(
            SlackNotifier(
                settings.slack_bot_token,
                settings.slack_channel_id,
                timeout_seconds=settings.timeout_seconds,
                client=client,
            )
        )
    if not targets:
        LOGGER.info("No notification targets configured")
        return None
    return CompositeNotifier(targets)


__all__ = ["CompositeNotifier", "build_notifier"]
