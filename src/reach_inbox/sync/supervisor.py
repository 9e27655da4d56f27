"""Periodic driver tying connections, cache, classifier and notifiers together."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from datetime import datetime
from typing import Any

from reach_inbox.core.config import SyncSettings
from reach_inbox.core.datetime_utils import utc_now
from reach_inbox.core.errors import ConnectError, NotFoundError
from reach_inbox.core.interfaces import MailboxProvider, Notifier
from reach_inbox.core.models import (
    HIGH_VALUE_CATEGORIES,
    Account,
    AccountStatus,
    ClassificationResult,
    ConnectionState,
    Message,
    SupervisorStatus,
    SyncReport,
)
from reach_inbox.ingestion.normalizer import MessageNormalizer
from reach_inbox.intelligence.orchestrator import ClassificationOrchestrator
from reach_inbox.notify.projection import build_projection
from reach_inbox.storage.cache import MailCache
from reach_inbox.storage.query import QueryService

from .scheduler import AsyncioScheduler, Cancellable, Scheduler

LOGGER = logging.getLogger(__name__)

SYNC_JOB = "sync-tick"
HEALTH_JOB = "health-tick"

ConnectionFactory = Callable[[Account], MailboxProvider]


class SyncSupervisor:
    """Running/stopped state machine over every configured account.

    :meth:`restart` is the single recovery entry point; the health tick calls it
    whenever the supervisor is no longer running. Timers come from the injected
    scheduler and survive a restart.
    """

    def __init__(
        self,
        accounts: Sequence[Account],
        *,
        connection_factory: ConnectionFactory,
        cache: MailCache,
        orchestrator: ClassificationOrchestrator,
        normalizer: MessageNormalizer | None = None,
        notifier: Notifier | None = None,
        query_service: QueryService | None = None,
        scheduler: Scheduler | None = None,
        settings: SyncSettings | None = None,
        fetch_limit: int = 100,
    ) -> None:
        self._accounts = {account.id: account for account in accounts if account.active}
        self._connection_factory = connection_factory
        self._cache = cache
        self._orchestrator = orchestrator
        self._normalizer = normalizer or MessageNormalizer()
        self._notifier = notifier
        self._query_service = query_service
        self._scheduler: Scheduler = scheduler or AsyncioScheduler()
        self._settings = settings or SyncSettings()
        self._fetch_limit = fetch_limit
        self._connections: dict[str, MailboxProvider] = {}
        # Content last classified per account and message id.
        self._classified: dict[str, dict[str, tuple[str, str, str]]] = {}
        self._jobs: list[Cancellable] = []
        self._background: list[Cancellable] = []
        self._is_running = False
        self._restarting = False
        self._last_sync: datetime | None = None

    # Lifecycle ----------------------------------------------------------------
    @property
    def is_running(self) -> bool:
        """Whether the supervisor considers itself healthy."""
        return self._is_running

    @property
    def cache(self) -> MailCache:
        """The shared message cache."""
        return self._cache

    async def start(self) -> SupervisorStatus:
        """Connect, load every account once and schedule the ticks."""
        if self._is_running:
            return self.get_status()
        LOGGER.info("Starting sync supervisor for %s account(s)", len(self._accounts))
        await self._bring_up()
        self._schedule_ticks()
        self._is_running = True
        return self.get_status()

    async def stop(self) -> None:
        """Cancel timers and background work, close connections, clear the cache."""
        LOGGER.info("Stopping sync supervisor")
        for handle in self._jobs + self._background:
            handle.cancel()
        self._jobs.clear()
        self._background.clear()
        self._is_running = False
        await self._close_connections()
        self._cache.clear()
        self._classified.clear()

    async def drain(self) -> None:
        """Wait for queued notifications, indexing and manual syncs to finish."""
        while True:
            pending = [
                handle for handle in self._background if isinstance(handle, asyncio.Future)
            ]
            self._background = [
                handle for handle in self._background if handle not in pending
            ]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    async def restart(self) -> SupervisorStatus:
        """Tear down connections and bring everything up again.

        Timers are left in place and cached messages are kept until the
        reload replaces them.
        """
        if self._restarting:
            return self.get_status()
        self._restarting = True
        try:
            LOGGER.warning("Restarting sync supervisor")
            self._is_running = False
            await self._close_connections()
            await self._bring_up()
            self._schedule_ticks()
            self._is_running = True
        finally:
            self._restarting = False
        return self.get_status()

    async def health_check(self) -> SupervisorStatus:
        """Restart when not running; report degraded accounts."""
        if not self._is_running and not self._restarting:
            await self.restart()
        status = self.get_status()
        for account in status.accounts:
            if account.state is not ConnectionState.CONNECTED:
                LOGGER.warning(
                    "Account %s is %s; it will be reconnected on the next sync",
                    account.account_id,
                    account.state,
                )
        return status

    # Sync ---------------------------------------------------------------------
    async def sync_all(self) -> list[SyncReport]:
        """Run a sync cycle for every account concurrently."""
        reports = await asyncio.gather(
            *(self.sync_account(account_id) for account_id in self._accounts)
        )
        return list(reports)

    async def sync_account(self, account_id: str, *, replace: bool = False) -> SyncReport:
        """Fetch, normalise, store, classify and notify for one account."""
        account = self._require_account(account_id)
        connection = self._connection_for(account)
        if connection.state is not ConnectionState.CONNECTED:
            try:
                await asyncio.to_thread(connection.connect)
            except ConnectError as exc:
                LOGGER.warning(
                    "Reconnect failed for %s (%s): %s", account_id, exc.reason, exc
                )
                return SyncReport(account_id, 0, 0, 0, error=str(exc))

        try:
            raw_messages = await asyncio.to_thread(
                connection.fetch_recent, self._fetch_limit, account.folder
            )
        except ConnectError as exc:
            LOGGER.warning("Fetch failed for %s (%s): %s", account_id, exc.reason, exc)
            return SyncReport(account_id, 0, 0, 0, error=str(exc))

        messages = [
            self._normalizer.normalize(raw, account_id, folder=account.folder)
            for raw in raw_messages
        ]
        absent = {
            message.id for message in messages if self._cache.get(message.id) is None
        }
        if replace:
            self._cache.replace_account(account_id, messages)
            known = self._classified.pop(account_id, {})
            self._classified[account_id] = {
                message.id: known[message.id] for message in messages if message.id in known
            }
        else:
            self._cache.upsert_many(messages)

        pending = self._unclassified(account_id, messages, absent)
        results = await self._orchestrator.classify_batch(pending)
        classified = self._apply_results(pending, results)
        seen = self._classified.setdefault(account_id, {})
        for message, _ in classified:
            seen[message.id] = message.content_key
        notified = self._dispatch(classified)
        self._index(classified)
        self._last_sync = utc_now()
        LOGGER.info(
            "Synced %s: %s fetched, %s classified, %s notified",
            account_id,
            len(messages),
            len(classified),
            notified,
        )
        return SyncReport(account_id, len(messages), len(classified), notified)

    def trigger_manual_sync(self, account_id: str | None = None) -> dict[str, Any]:
        """Queue a background resync and acknowledge immediately."""
        if account_id is not None:
            self._require_account(account_id)
            targets = [account_id]
        else:
            targets = list(self._accounts)
        handle = self._scheduler.spawn(
            self._manual_sync(targets), name=f"manual-sync:{account_id or 'all'}"
        )
        self._track(handle)
        LOGGER.info("Manual sync queued for %s", ", ".join(targets) or "(no accounts)")
        return {"accepted": True, "accounts": targets}

    # Status -------------------------------------------------------------------
    def get_status(self) -> SupervisorStatus:
        """Return a snapshot of running state and per-account connections."""
        accounts = tuple(
            AccountStatus(
                account_id=account_id,
                state=self._connections[account_id].state
                if account_id in self._connections
                else ConnectionState.DISCONNECTED,
                email_count=self._cache.count(account_id),
            )
            for account_id in self._accounts
        )
        return SupervisorStatus(
            is_running=self._is_running,
            connected_accounts=sum(
                1 for status in accounts if status.state is ConnectionState.CONNECTED
            ),
            total_accounts=len(self._accounts),
            last_sync=self._last_sync,
            accounts=accounts,
        )

    # Internal helpers ---------------------------------------------------------
    async def _bring_up(self) -> None:
        for account in self._accounts.values():
            connection = self._connection_for(account)
            try:
                await asyncio.to_thread(connection.connect)
            except ConnectError as exc:
                LOGGER.error(
                    "Could not connect %s (%s): %s",
                    account.display_name,
                    exc.reason,
                    exc,
                )
        for account_id, connection in list(self._connections.items()):
            if connection.state is not ConnectionState.CONNECTED:
                continue
            try:
                await self.sync_account(account_id, replace=True)
            except Exception:  # noqa: BLE001 - one account must not block the others
                LOGGER.exception("Initial load failed for %s", account_id)

    def _schedule_ticks(self) -> None:
        if self._jobs:
            return
        self._jobs.append(
            self._scheduler.every(
                self._settings.sync_interval_seconds, self._sync_tick, name=SYNC_JOB
            )
        )
        self._jobs.append(
            self._scheduler.every(
                self._settings.health_interval_seconds,
                self._health_tick,
                name=HEALTH_JOB,
            )
        )

    async def _sync_tick(self) -> None:
        if not self._is_running:
            return
        try:
            await self.sync_all()
        except Exception:  # noqa: BLE001 - health tick owns recovery
            LOGGER.exception("Sync cycle failed; marking supervisor as not running")
            self._is_running = False

    async def _health_tick(self) -> None:
        await self.health_check()

    async def _manual_sync(self, account_ids: Sequence[str]) -> None:
        for account_id in account_ids:
            try:
                await self.sync_account(account_id)
            except Exception:  # noqa: BLE001 - background work must not crash the loop
                LOGGER.exception("Manual sync failed for %s", account_id)

    async def _close_connections(self) -> None:
        for account_id, connection in list(self._connections.items()):
            try:
                await asyncio.to_thread(connection.close)
            except Exception:  # noqa: BLE001 - shutdown continues for other accounts
                LOGGER.exception("Error closing connection for %s", account_id)

    def _track(self, handle: Cancellable) -> None:
        done = getattr(handle, "done", None)
        self._background = [
            pending
            for pending in self._background
            if not (callable(getattr(pending, "done", None)) and pending.done())
        ]
        if not (callable(done) and done()):
            self._background.append(handle)

    def _unclassified(
        self, account_id: str, messages: Sequence[Message], absent: set[str]
    ) -> list[Message]:
        """New ids, ids missing from the cache and ids whose content changed."""
        seen = self._classified.get(account_id, {})
        pending: dict[str, Message] = {}
        for message in messages:
            if message.id in absent or seen.get(message.id) != message.content_key:
                pending[message.id] = message
        return list(pending.values())

    def _connection_for(self, account: Account) -> MailboxProvider:
        connection = self._connections.get(account.id)
        if connection is None:
            connection = self._connection_factory(account)
            self._connections[account.id] = connection
        return connection

    def _require_account(self, account_id: str) -> Account:
        account = self._accounts.get(account_id)
        if account is None:
            raise NotFoundError(f"Account '{account_id}' is not configured")
        return account

    def _apply_results(
        self, messages: Sequence[Message], results: Sequence[ClassificationResult]
    ) -> list[tuple[Message, ClassificationResult]]:
        classified: list[tuple[Message, ClassificationResult]] = []
        for message, result in zip(messages, results):
            try:
                updated = self._cache.update(
                    message.id,
                    {"category": result.category, "confidence": result.confidence},
                )
            except NotFoundError:
                LOGGER.debug("Message %s vanished before classification", message.id)
                continue
            classified.append((updated, result))
        return classified

    def _dispatch(self, classified: Sequence[tuple[Message, ClassificationResult]]) -> int:
        if self._notifier is None:
            return 0
        dispatched = 0
        for message, result in classified:
            if result.category not in HIGH_VALUE_CATEGORIES:
                continue
            projection = build_projection(message, result)
            handle = self._scheduler.spawn(
                self._notify(result.category.value, projection),
                name=f"notify:{message.id}",
            )
            self._track(handle)
            dispatched += 1
        return dispatched

    async def _notify(self, event: str, projection: dict[str, Any]) -> None:
        notifier = self._notifier
        if notifier is None:
            return
        try:
            await asyncio.to_thread(notifier.notify, event, projection)
        except Exception as exc:  # noqa: BLE001 - notification is best effort
            LOGGER.warning("Notification for %s failed: %s", projection.get("id"), exc)

    def _index(self, classified: Sequence[tuple[Message, ClassificationResult]]) -> None:
        if self._query_service is None or self._query_service.index is None:
            return
        messages = [message for message, _ in classified]
        if messages:
            handle = self._scheduler.spawn(
                asyncio.to_thread(self._query_service.index_messages, messages),
                name="bulk-index",
            )
            self._track(handle)


__all__ = ["ConnectionFactory", "HEALTH_JOB", "SYNC_JOB", "SyncSupervisor"]
