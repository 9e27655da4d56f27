"""Ingestion pipeline components."""

from .normalizer import MessageNormalizer, message_fingerprint, normalize_addresses
from .parser import EmailParser

__all__ = [
    "EmailParser",
    "MessageNormalizer",
    "message_fingerprint",
    "normalize_addresses",
]
