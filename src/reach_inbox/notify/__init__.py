"""Outbound notifications for high-value messages."""

from .composite import CompositeNotifier, build_notifier
from .projection import build_projection
from .slack import SlackNotifier
from .webhook import WebhookNotifier

__all__ = [
    "CompositeNotifier",
    "SlackNotifier",
    "WebhookNotifier",
    "build_notifier",
    "build_projection",
]
