"""Shared building blocks: settings, logging, wiring, errors and domain records."""

from .config import AppSettings, SyncSettings, load_app_settings
from .container import ServiceContainer
from .errors import ConnectError, NotFoundError
from .logging import configure_logging, mask_secret
from .models import Account, Category, ConnectionState, Message

__all__ = [
    "Account",
    "AppSettings",
    "Category",
    "ConnectError",
    "ConnectionState",
    "Message",
    "NotFoundError",
    "ServiceContainer",
    "SyncSettings",
    "configure_logging",
    "load_app_settings",
    "mask_secret",
]
