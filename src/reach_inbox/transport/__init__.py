"""Transport adapters for remote mailbox providers."""

from .imap_client import MailboxConnection, default_imap_factory

__all__ = ["MailboxConnection", "default_imap_factory"]
