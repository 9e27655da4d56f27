"""Slack Web API notifier for high-value messages."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

import httpx

from reach_inbox.core.errors import NotifierError

LOGGER = logging.getLogger(__name__)

POST_MESSAGE_URL = "https://slack.com/api/chat.postMessage"

_HEADLINES = {
    "interested": ":dart: New interested email received",
    "meeting_booked": ":calendar: Meeting booked",
}


def format_message(event: str, payload: Mapping[str, Any]) -> tuple[str, list[dict[str, Any]]]:
    """Return fallback text and Block Kit blocks for ``payload``."""
    sender = payload.get("sender") or {}
    sender_line = f"{sender.get('name') or 'Unknown'} <{sender.get('address', '')}>"
    subject = payload.get("subject") or "(no subject)"
    confidence = round(float(payload.get("confidence") or 0.0) * 100)
    headline = _HEADLINES.get(event, f"Email categorized as {event}")

    text = f"{headline}: {subject} from {sender_line}"
    blocks: list[dict[str, Any]] = [
        {"type": "header", "text": {"type": "plain_text", "text": headline}},
        {
            "type": "section",
            "fields": [
                {"type": "mrkdwn", "text": f"*From:* {sender_line}"},
                {"type": "mrkdwn", "text": f"*Account:* {payload.get('account', '')}"},
                {"type": "mrkdwn", "text": f"*Date:* {payload.get('date', '')}"},
                {"type": "mrkdwn", "text": f"*Confidence:* {confidence}%"},
            ],
        },
        {"type": "section", "text": {"type": "mrkdwn", "text": f"*Subject:* {subject}"}},
    ]
    preview = payload.get("bodyPreview")
    if preview:
        blocks.append(
            {"type": "section", "text": {"type": "mrkdwn", "text": f"*Preview:*\n{preview}"}}
        )
    blocks.append(
        {
            "type": "context",
            "elements": [
                {
                    "type": "mrkdwn",
                    "text": f"Email ID: {payload.get('id', '')} | Folder: {payload.get('folder', '')}",
                }
            ],
        }
    )
    return text, blocks


class SlackNotifier:
    """Post a formatted message to one channel with a bot token."""

    def __init__(
        self,
        token: str,
        channel_id: str,
        *,
        timeout_seconds: float = 10.0,
        client: httpx.Client | None = None,
    ) -> None:
        if not token or not channel_id:
            raise ValueError("Slack token and channel id are required")
        self._token = token
        self._channel = channel_id
        self._timeout = timeout_seconds
        self._client = client

    def notify(self, event: str, payload: Mapping[str, Any]) -> None:
        """Send the message; raise :class:`NotifierError` when Slack refuses it."""
        text, blocks = format_message(event, payload)
        body = {"channel": self._channel, "text": text, "blocks": blocks}
        headers = {
            "Authorization": f"Bearer {self._token}",
            "Content-Type": "application/json; charset=utf-8",
        }
        try:
            if self._client is not None:
                response = self._client.post(
                    POST_MESSAGE_URL, json=body, headers=headers, timeout=self._timeout
                )
            else:
                response = httpx.post(
                    POST_MESSAGE_URL, json=body, headers=headers, timeout=self._timeout
                )
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise NotifierError("Slack request failed") from exc

        if not isinstance(data, dict) or not data.get("ok"):
            error = data.get("error") if isinstance(data, dict) else "invalid response"
            raise NotifierError(f"Slack rejected message: {error}")
        LOGGER.debug("Slack notification sent for %s", payload.get("id"))


__all__ = ["POST_MESSAGE_URL", "SlackNotifier", "format_message"]
