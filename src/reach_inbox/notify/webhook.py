"""Generic JSON webhook notifier with bounded retries."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping
from typing import Any

import httpx

from reach_inbox.core.datetime_utils import utc_now
from reach_inbox.core.errors import NotifierError
from reach_inbox.core.logging import mask_url

LOGGER = logging.getLogger(__name__)

EVENT_HEADER = "X-ReachInbox-Event"
TIMESTAMP_HEADER = "X-ReachInbox-Timestamp"


class WebhookNotifier:
    """POST each event to a configured URL.

    Delivery is attempted ``retry_attempts`` times with exponential backoff
    (``backoff_seconds``, then double) between attempts.
    """

    def __init__(
        self,
        url: str,
        *,
        timeout_seconds: float = 10.0,
        retry_attempts: int = 3,
        backoff_seconds: float = 2.0,
        client: httpx.Client | None = None,
        sleep: Callable[[float], Any] = time.sleep,
    ) -> None:
        if not url:
            raise ValueError("Webhook URL is required")
        self._url = url
        self._timeout = timeout_seconds
        self._attempts = max(1, retry_attempts)
        self._backoff = backoff_seconds
        self._client = client
        self._sleep = sleep
        LOGGER.info("Webhook notifier targeting %s", mask_url(url))

    def notify(self, event: str, payload: Mapping[str, Any]) -> None:
        """Deliver ``payload``; raise :class:`NotifierError` after the last attempt."""
        timestamp = utc_now().isoformat()
        body = {"event": event, "timestamp": timestamp, "data": dict(payload)}
        headers = {
            "Content-Type": "application/json",
            "User-Agent": "reach-inbox-webhook/1.0",
            EVENT_HEADER: event,
            TIMESTAMP_HEADER: timestamp,
        }
        last_error: str = "no attempt made"
        for attempt in range(1, self._attempts + 1):
            try:
                response = self._post(body, headers)
                if response.status_code < 400:
                    LOGGER.debug(
                        "Webhook %s delivered on attempt %s", event, attempt
                    )
                    return
                last_error = f"HTTP {response.status_code}"
            except httpx.HTTPError as exc:
                last_error = type(exc).__name__
            LOGGER.warning(
                "Webhook attempt %s/%s to %s failed: %s",
                attempt,
                self._attempts,
                mask_url(self._url),
                last_error,
            )
            if attempt < self._attempts:
                self._sleep(self._backoff * 2 ** (attempt - 1))

        raise NotifierError(
            f"Webhook delivery to {mask_url(self._url)} failed after "
            f"{self._attempts} attempts ({last_error})"
        )

    def _post(self, body: dict[str, Any], headers: dict[str, str]) -> httpx.Response:
        if self._client is not None:
            return self._client.post(
                self._url, json=body, headers=headers, timeout=self._timeout
            )
        return httpx.post(self._url, json=body, headers=headers, timeout=self._timeout)


__all__ = ["EVENT_HEADER", "TIMESTAMP_HEADER", "WebhookNotifier"]
