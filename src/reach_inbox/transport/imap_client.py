"""IMAP transport adapter owning one persistent mailbox session."""

from __future__ import annotations

import imaplib
import logging
import threading
import time
from collections.abc import Callable, Sequence
from datetime import UTC, datetime
from types import TracebackType

from ..core.config import ImapSettings
from ..core.datetime_utils import ensure_utc
from ..core.errors import ConnectError, ParseError
from ..core.models import Account, ConnectionState, RawMessage
from ..ingestion.parser import EmailParser

LOGGER = logging.getLogger(__name__)

ImapFactory = Callable[[Account, float], imaplib.IMAP4]

_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


def default_imap_factory(account: Account, timeout: float) -> imaplib.IMAP4:
    """Open a plain or SSL ``imaplib`` connection for ``account``."""
    if account.use_ssl:
        LOGGER.debug("Connecting to IMAP host %s:%s via SSL", account.host, account.port)
        return imaplib.IMAP4_SSL(account.host, account.port, timeout=timeout)
    LOGGER.debug("Connecting to IMAP host %s:%s without SSL", account.host, account.port)
    return imaplib.IMAP4(account.host, account.port, timeout=timeout)


class MailboxConnection:
    """Thin wrapper around ``imaplib`` for a single account.

    Protocol commands are serialized by an internal lock. The manager never
    reconnects on its own; callers inspect :attr:`state` and call
    :meth:`connect` again.
    """

    def __init__(
        self,
        account: Account,
        settings: ImapSettings | None = None,
        *,
        parser: EmailParser | None = None,
        imap_factory: ImapFactory | None = None,
    ) -> None:
        """Initialise the connection for ``account`` without opening it."""
        self.account = account
        self._settings = settings or ImapSettings()
        self._parser = parser or EmailParser()
        self._factory = imap_factory or default_imap_factory
        self._connection: imaplib.IMAP4 | None = None
        self._state = ConnectionState.DISCONNECTED
        self._lock = threading.RLock()

    # Context manager helpers -------------------------------------------------
    def __enter__(self) -> MailboxConnection:
        """Connect on entering a context manager scope."""
        self.connect()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Ensure resources are released on context exit."""
        self.close()

    # Public API ---------------------------------------------------------------
    @property
    def state(self) -> ConnectionState:
        """Current lifecycle state."""
        return self._state

    @property
    def is_connected(self) -> bool:
        """Return ``True`` when the session is usable."""
        return self._state is ConnectionState.CONNECTED

    def connect(self) -> None:
        """Open and authenticate the session; raise :class:`ConnectError`."""
        with self._lock:
            if self._connection is not None and self.is_connected:
                return
            self._discard_connection()
            self._state = ConnectionState.CONNECTING
            try:
                connection = self._open()
                self._login(connection)
            except ConnectError:
                self._state = ConnectionState.DISCONNECTED
                raise
            self._connection = connection
            self._state = ConnectionState.CONNECTED
            LOGGER.info("Connected to mailbox %s", self.account.display_name)

    def fetch_recent(self, limit: int, folder: str | None = None) -> list[RawMessage]:
        """Return up to ``limit`` most recent messages, newest first."""
        if limit < 1:
            return []
        mailbox = folder or self.account.folder
        with self._lock:
            connection = self._require_connection()
            try:
                status, data = connection.select(mailbox, readonly=True)
                if status != "OK":
                    self._state = ConnectionState.DEGRADED
                    raise ConnectError(
                        f"Unable to select mailbox '{mailbox}' for {self.account.id}",
                        reason="protocol",
                    )
                total = _parse_count(data)
                if total == 0:
                    LOGGER.debug("Mailbox %s of %s is empty", mailbox, self.account.id)
                    return []
                uids = self._recent_uids(connection, total, limit)
                messages = []
                for uid in uids:
                    message = self._fetch_one(connection, uid)
                    if message is not None:
                        messages.append(message)
            except imaplib.IMAP4.abort as exc:
                self._mark_lost()
                raise ConnectError(
                    f"Connection to {self.account.id} aborted", reason="network"
                ) from exc
            except OSError as exc:
                self._mark_lost()
                raise ConnectError(
                    f"Socket error while fetching from {self.account.id}",
                    reason="network",
                ) from exc
            except imaplib.IMAP4.error as exc:
                self._state = ConnectionState.DEGRADED
                raise ConnectError(
                    f"IMAP error while fetching from {self.account.id}",
                    reason="protocol",
                ) from exc

        LOGGER.debug(
            "Fetched %s of %s requested messages from %s",
            len(messages),
            len(uids),
            self.account.id,
        )
        return sort_newest_first(messages)

    def close(self) -> None:
        """Terminate the IMAP session cleanly."""
        with self._lock:
            self._discard_connection()
            self._state = ConnectionState.DISCONNECTED

    # Internal helpers ---------------------------------------------------------
    def _open(self) -> imaplib.IMAP4:
        timeout = self._settings.connect_timeout_seconds
        try:
            return self._factory(self.account, timeout)
        except TimeoutError as exc:
            raise ConnectError(
                f"Timed out connecting to {self.account.host}:{self.account.port}",
                reason="timeout",
            ) from exc
        except (OSError, imaplib.IMAP4.error) as exc:
            raise ConnectError(
                f"Unable to reach {self.account.host}:{self.account.port}",
                reason="network",
            ) from exc

    def _login(self, connection: imaplib.IMAP4) -> None:
        username = self.account.username
        password = self.account.password
        if not username or not password:
            _quiet_logout(connection)
            raise ConnectError(
                f"IMAP credentials are not configured for {self.account.id}",
                reason="auth",
            )
        LOGGER.debug("Authenticating as %s", username)
        _set_timeout(connection, self._settings.auth_timeout_seconds)
        try:
            status, _ = connection.login(username, password)
            if status != "OK":
                raise imaplib.IMAP4.error(f"LOGIN returned {status}")
        except TimeoutError as exc:
            _quiet_logout(connection)
            raise ConnectError(
                f"Authentication timed out for {self.account.id}", reason="timeout"
            ) from exc
        except imaplib.IMAP4.abort as exc:
            _quiet_logout(connection)
            raise ConnectError(
                f"Connection dropped during login for {self.account.id}",
                reason="network",
            ) from exc
        except imaplib.IMAP4.error as exc:
            _quiet_logout(connection)
            raise ConnectError(
                f"Authentication rejected for {self.account.id}", reason="auth"
            ) from exc
        except OSError as exc:
            _quiet_logout(connection)
            raise ConnectError(
                f"Socket error during login for {self.account.id}", reason="network"
            ) from exc
        _set_timeout(connection, self._settings.connect_timeout_seconds)

    def _recent_uids(
        self, connection: imaplib.IMAP4, total: int, limit: int
    ) -> list[int]:
        uids: list[int] = []
        try:
            status, data = connection.uid("SEARCH", None, "ALL")  # type: ignore[arg-type]
            if status == "OK":
                raw_ids = data[0].split() if data and data[0] else []
                uids = [int(raw) for raw in raw_ids]
            else:
                LOGGER.warning(
                    "UID SEARCH failed for %s; falling back to range", self.account.id
                )
                uids = _fallback_range(total, limit)
        except imaplib.IMAP4.abort:
            raise
        except (imaplib.IMAP4.error, ValueError):
            LOGGER.warning(
                "UID SEARCH raised for %s; falling back to range", self.account.id
            )
            uids = _fallback_range(total, limit)
        return sorted(uids, reverse=True)[:limit]

    def _fetch_one(self, connection: imaplib.IMAP4, uid: int) -> RawMessage | None:
        try:
            status, fetch_data = connection.uid(
                "FETCH", str(uid), "(RFC822 FLAGS INTERNALDATE)"
            )
        except imaplib.IMAP4.abort:
            raise
        except imaplib.IMAP4.error:
            LOGGER.warning("FETCH raised for UID %s on %s", uid, self.account.id)
            return None
        if status != "OK":
            LOGGER.warning("Failed to fetch message UID %s on %s", uid, self.account.id)
            return None
        payload = _extract_rfc822(fetch_data)
        if payload is None:
            LOGGER.warning("No RFC822 payload returned for UID %s", uid)
            return None
        try:
            return self._parser.parse(
                uid,
                payload,
                _extract_flags(fetch_data),
                received_at=_extract_internal_date(fetch_data),
            )
        except ParseError:
            LOGGER.warning(
                "Dropping unparseable message UID %s on %s",
                uid,
                self.account.id,
                exc_info=True,
            )
            return None

    def _require_connection(self) -> imaplib.IMAP4:
        if self._connection is None or self._state is ConnectionState.DISCONNECTED:
            raise ConnectError(
                f"IMAP connection for {self.account.id} has not been established",
                reason="network",
            )
        return self._connection

    def _mark_lost(self) -> None:
        LOGGER.warning("Lost connection to mailbox %s", self.account.display_name)
        self._connection = None
        self._state = ConnectionState.DISCONNECTED

    def _discard_connection(self) -> None:
        if self._connection is None:
            return
        connection = self._connection
        self._connection = None
        try:
            LOGGER.debug("Closing IMAP connection for %s", self.account.id)
            if connection.state == "SELECTED":
                connection.close()
        except (imaplib.IMAP4.error, OSError):  # pragma: no cover - depends on server state
            LOGGER.debug("IMAP close raised; continuing with logout")
        finally:
            _quiet_logout(connection)


def sort_newest_first(messages: Sequence[RawMessage]) -> list[RawMessage]:
    """Order by date descending, UID descending; undated messages last."""
    return sorted(
        messages,
        key=lambda message: (
            message.date is not None,
            ensure_utc(message.date) or _EPOCH,
            message.uid,
        ),
        reverse=True,
    )


def _fallback_range(total: int, limit: int) -> list[int]:
    return list(range(max(1, total - limit + 1), total + 1))


def _parse_count(data: Sequence[bytes | None] | None) -> int:
    if not data or data[0] is None:
        return 0
    try:
        return int(data[0])
    except (TypeError, ValueError):
        return 0


def _set_timeout(connection: imaplib.IMAP4, timeout: float) -> None:
    sock = getattr(connection, "sock", None)
    if sock is not None:
        sock.settimeout(timeout)


def _quiet_logout(connection: imaplib.IMAP4) -> None:
    try:
        connection.logout()
    except (imaplib.IMAP4.error, OSError):  # pragma: no cover
        LOGGER.debug("IMAP logout raised; suppressing during shutdown")


def _extract_rfc822(fetch_data: list[tuple[bytes, bytes] | bytes]) -> bytes | None:
    """Extract RFC822 payload from ``imaplib`` response chunks."""
    for entry in fetch_data or ():
        if isinstance(entry, tuple) and len(entry) == 2:
            return entry[1]
    return None


def _extract_flags(fetch_data: list[tuple[bytes, bytes] | bytes]) -> tuple[str, ...]:
    """Collect ``FLAGS`` from either the envelope line or the trailing chunk."""
    for entry in fetch_data or ():
        line = entry[0] if isinstance(entry, tuple) else entry
        if not isinstance(line, bytes):
            continue
        flags = imaplib.ParseFlags(line)
        if flags:
            return tuple(flag.decode("ascii", errors="replace") for flag in flags)
    return ()


def _extract_internal_date(
    fetch_data: list[tuple[bytes, bytes] | bytes],
) -> datetime | None:
    """Return the server receive time, used when the Date header is missing."""
    for entry in fetch_data or ():
        line = entry[0] if isinstance(entry, tuple) else entry
        if not isinstance(line, bytes):
            continue
        parsed = imaplib.Internaldate2tuple(line)
        if parsed is not None:
            return datetime.fromtimestamp(time.mktime(parsed), tz=UTC)
    return None


__all__ = [
    "ImapFactory",
    "MailboxConnection",
    "default_imap_factory",
    "sort_newest_first",
]
