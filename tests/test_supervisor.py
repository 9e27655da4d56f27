"""Tests for the sync supervisor lifecycle and dispatch."""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from dataclasses import replace
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from reach_inbox.core.config import SyncSettings
from reach_inbox.core.errors import ConnectError, NotFoundError, NotifierError
from reach_inbox.core.models import Account, Category, ConnectionState, RawMessage
from reach_inbox.ingestion import MessageNormalizer
from reach_inbox.intelligence import ClassificationOrchestrator
from reach_inbox.storage import MailCache, QueryService
from reach_inbox.sync import HEALTH_JOB, SYNC_JOB, ManualScheduler, SyncSupervisor

BASE = datetime(2025, 10, 6, 9, 0, tzinfo=UTC)


def _raw(uid: int, subject: str, text: str) -> RawMessage:
    return RawMessage(
        uid=uid,
        message_id=f"<{uid}@example.com>",
        subject=subject,
        sender=[("Lead", f"lead{uid}@example.com")],
        to=[("", "sales@example.com")],
        date=BASE + timedelta(minutes=uid),
        text=text,
    )


class FakeConnection:
    """In-memory mailbox session."""

    def __init__(
        self,
        account: Account,
        messages: list[RawMessage] | None = None,
        *,
        reachable: bool = True,
        fetch_failures: int = 0,
    ) -> None:
        self.account = account
        self.messages = messages or []
        self.reachable = reachable
        self.fetch_failures = fetch_failures
        self.state = ConnectionState.DISCONNECTED
        self.connects = 0
        self.fetches = 0
        self.closes = 0

    def connect(self) -> None:
        self.connects += 1
        if not self.reachable:
            raise ConnectError("connection refused", reason="network")
        self.state = ConnectionState.CONNECTED

    def fetch_recent(self, limit: int, folder: str | None = None) -> list[RawMessage]:
        self.fetches += 1
        if self.fetch_failures:
            self.fetch_failures -= 1
            raise RuntimeError("mailbox exploded")
        return self.messages[:limit]

    def close(self) -> None:
        self.closes += 1
        self.state = ConnectionState.DISCONNECTED


class RecordingNotifier:
    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.events: list[tuple[str, dict[str, Any]]] = []

    def notify(self, event: str, payload: Mapping[str, Any]) -> None:
        self.events.append((event, dict(payload)))
        if self.fail:
            raise NotifierError("target down")


class RecordingIndex:
    def __init__(self) -> None:
        self.batches: list[list[str]] = []

    def index_document(self, message: Any) -> None:
        self.batches.append([message.id])

    def bulk_index(self, messages: Any) -> None:
        self.batches.append([message.id for message in messages])

    def search(self, query: Any) -> Any:
        raise ConnectionError("not used")

    def aggregate(self) -> dict[str, Any]:
        return {}


def _account(account_id: str) -> Account:
    return Account(id=account_id, host="imap.example.com", port=993, username=account_id)


def _build(
    connections: dict[str, FakeConnection],
    *,
    notifier: RecordingNotifier | None = None,
    query_service: QueryService | None = None,
    cache: MailCache | None = None,
) -> tuple[SyncSupervisor, ManualScheduler, MailCache]:
    scheduler = ManualScheduler()
    cache = cache if cache is not None else MailCache()
    supervisor = SyncSupervisor(
        [connection.account for connection in connections.values()],
        connection_factory=lambda account: connections[account.id],
        cache=cache,
        orchestrator=ClassificationOrchestrator(batch_delay_seconds=0),
        notifier=notifier,
        query_service=query_service,
        scheduler=scheduler,
        settings=SyncSettings(sync_interval_seconds=30, health_interval_seconds=10),
    )
    return supervisor, scheduler, cache


def test_start_loads_classifies_and_notifies() -> None:
    connections = {
        "primary": FakeConnection(
            _account("primary"),
            [
                _raw(1, "Meeting confirmed", "See you on zoom"),
                _raw(2, "You are a WINNER", "Claim your prize"),
            ],
        ),
        "backup": FakeConnection(_account("backup"), reachable=False),
    }
    notifier = RecordingNotifier()
    supervisor, scheduler, cache = _build(connections, notifier=notifier)

    async def scenario() -> None:
        status = await supervisor.start()

        assert status.is_running is True
        assert status.connected_accounts == 1
        assert status.total_accounts == 2
        assert status.last_sync is not None
        assert len(scheduler.active(SYNC_JOB)) == 1
        assert len(scheduler.active(HEALTH_JOB)) == 1
        assert scheduler.active(SYNC_JOB)[0].interval == 30

        categories = {message.subject: message.category for message in cache.snapshot()}
        assert categories == {
            "Meeting confirmed": Category.MEETING_BOOKED,
            "You are a WINNER": Category.SPAM,
        }
        await scheduler.drain()

    asyncio.run(scenario())

    assert [event for event, _ in notifier.events] == ["meeting_booked"]
    payload = notifier.events[0][1]
    assert payload["subject"] == "Meeting confirmed"
    assert payload["category"] == "meeting_booked"
    assert payload["provider"] == "rules"


def test_unreachable_accounts_still_serve_cached_queries() -> None:
    connections = {"primary": FakeConnection(_account("primary"), reachable=False)}
    cache = MailCache()
    cache.upsert(MessageNormalizer().normalize(_raw(1, "Hello", "hi"), "primary"))
    supervisor, _, _ = _build(connections, cache=cache)

    status = asyncio.run(supervisor.start())

    assert status.connected_accounts == 0
    assert status.is_running is True
    assert status.accounts[0].state is ConnectionState.DISCONNECTED
    assert status.accounts[0].email_count == 1
    assert cache.query().total == 1


def test_inactive_accounts_are_ignored() -> None:
    inactive = Account(id="old", host="imap.example.com", port=993, username="old", active=False)
    connections = {
        "primary": FakeConnection(_account("primary")),
        "old": FakeConnection(inactive),
    }
    supervisor, _, _ = _build(connections)

    status = asyncio.run(supervisor.start())

    assert status.total_accounts == 1
    assert connections["old"].connects == 0


def test_stop_cancels_timers_closes_connections_and_clears_cache() -> None:
    connection = FakeConnection(_account("primary"), [_raw(1, "Hello", "pricing please")])
    supervisor, scheduler, cache = _build({"primary": connection})

    async def scenario() -> None:
        await supervisor.start()
        assert cache.count() == 1
        await supervisor.stop()

    asyncio.run(scenario())

    assert supervisor.is_running is False
    assert scheduler.active() == []
    assert connection.closes == 1
    assert cache.count() == 0
    assert supervisor.get_status().connected_accounts == 0


def test_sync_tick_reconnects_degraded_accounts() -> None:
    connection = FakeConnection(_account("primary"), [_raw(1, "Hello", "hi")])
    supervisor, scheduler, cache = _build({"primary": connection})

    async def scenario() -> None:
        await supervisor.start()
        connection.state = ConnectionState.DEGRADED
        connection.messages.append(_raw(2, "Second", "tell me more"))
        await scheduler.fire(SYNC_JOB)

    asyncio.run(scenario())

    assert connection.connects == 2
    assert connection.fetches == 2
    assert cache.count() == 2


def test_failed_sync_tick_is_recovered_by_health_tick() -> None:
    connection = FakeConnection(_account("primary"), [_raw(1, "Hello", "hi")])
    supervisor, scheduler, cache = _build({"primary": connection})

    async def scenario() -> None:
        await supervisor.start()
        connection.fetch_failures = 1
        await scheduler.fire(SYNC_JOB)
        assert supervisor.is_running is False

        await scheduler.fire(HEALTH_JOB)

    asyncio.run(scenario())

    assert supervisor.is_running is True
    assert connection.closes == 1
    assert connection.connects == 2
    assert len(scheduler.active(SYNC_JOB)) == 1
    assert len(scheduler.active(HEALTH_JOB)) == 1
    assert cache.count() == 1


def test_restart_keeps_running_when_initial_load_fails() -> None:
    connection = FakeConnection(_account("primary"), [_raw(1, "Hello", "hi")], fetch_failures=1)
    supervisor, _, cache = _build({"primary": connection})

    status = asyncio.run(supervisor.restart())

    assert status.is_running is True
    assert status.connected_accounts == 1
    assert cache.count() == 0


def test_manual_sync_is_acknowledged_then_runs_in_background() -> None:
    connection = FakeConnection(_account("primary"), [_raw(1, "Hello", "hi")])
    supervisor, scheduler, _ = _build({"primary": connection})

    async def scenario() -> dict[str, Any]:
        await supervisor.start()
        with pytest.raises(NotFoundError):
            supervisor.trigger_manual_sync("missing")
        ack = supervisor.trigger_manual_sync("primary")
        assert connection.fetches == 1
        await scheduler.drain()
        return ack

    ack = asyncio.run(scenario())

    assert ack == {"accepted": True, "accounts": ["primary"]}
    assert connection.fetches == 2


def test_notification_failures_are_absorbed() -> None:
    connection = FakeConnection(_account("primary"), [_raw(1, "Interested", "tell me more")])
    notifier = RecordingNotifier(fail=True)
    supervisor, scheduler, _ = _build({"primary": connection}, notifier=notifier)

    async def scenario() -> None:
        await supervisor.start()
        await scheduler.drain()

    asyncio.run(scenario())

    assert [event for event, _ in notifier.events] == ["interested"]
    assert supervisor.is_running is True


def test_classified_messages_are_sent_to_the_index() -> None:
    connection = FakeConnection(
        _account("primary"), [_raw(1, "Hello", "hi"), _raw(2, "Again", "hi")]
    )
    index = RecordingIndex()
    cache = MailCache()
    supervisor, scheduler, _ = _build(
        {"primary": connection}, query_service=QueryService(cache, index), cache=cache
    )

    async def scenario() -> None:
        await supervisor.start()
        await scheduler.drain()

    asyncio.run(scenario())

    assert len(index.batches) == 1
    assert sorted(index.batches[0]) == sorted(message.id for message in cache.snapshot())


def test_sync_account_reports_connect_errors() -> None:
    connection = FakeConnection(_account("primary"), reachable=False)
    supervisor, _, _ = _build({"primary": connection})

    report = asyncio.run(supervisor.sync_account("primary"))

    assert report.fetched == 0
    assert report.error == "connection refused"
    with pytest.raises(NotFoundError):
        asyncio.run(supervisor.sync_account("missing"))


class CountingOrchestrator(ClassificationOrchestrator):
    def __init__(self) -> None:
        super().__init__(batch_delay_seconds=0)
        self.classified: list[str] = []

    async def classify_batch(self, messages):  # type: ignore[override]
        self.classified.extend(message.subject for message in messages)
        return await super().classify_batch(messages)


def test_repeated_sync_ticks_notify_once() -> None:
    connection = FakeConnection(
        _account("primary"), [_raw(1, "Meeting confirmed", "See you on zoom")]
    )
    notifier = RecordingNotifier()
    supervisor, scheduler, _ = _build({"primary": connection}, notifier=notifier)

    async def scenario() -> None:
        await supervisor.start()
        await scheduler.fire(SYNC_JOB)
        await scheduler.fire(SYNC_JOB)
        await scheduler.drain()

    asyncio.run(scenario())

    assert connection.fetches == 3
    assert [event for event, _ in notifier.events] == ["meeting_booked"]


def test_only_new_changed_or_evicted_messages_are_classified() -> None:
    connection = FakeConnection(
        _account("primary"),
        [_raw(1, "Hello", "tell me more"), _raw(2, "Pricing", "what does it cost")],
    )
    orchestrator = CountingOrchestrator()
    cache = MailCache()
    supervisor = SyncSupervisor(
        [connection.account],
        connection_factory=lambda account: connection,
        cache=cache,
        orchestrator=orchestrator,
        scheduler=ManualScheduler(),
    )

    async def scenario() -> None:
        await supervisor.start()
        by_subject = {message.subject: message for message in cache.snapshot()}
        cache.update(by_subject["Hello"].id, {"category": "spam"})
        cache.delete(by_subject["Pricing"].id)
        connection.messages[0] = replace(connection.messages[0], text="edited body")
        connection.messages.append(_raw(3, "New lead", "interested"))
        await supervisor.sync_account("primary")
        await supervisor.sync_account("primary")

    asyncio.run(scenario())

    assert orchestrator.classified == ["Hello", "Pricing", "Hello", "Pricing", "New lead"]
    assert cache.count() == 3


def test_refetch_keeps_manual_category_override() -> None:
    connection = FakeConnection(_account("primary"), [_raw(1, "Hello", "tell me more")])
    supervisor, scheduler, cache = _build({"primary": connection})

    async def scenario() -> None:
        await supervisor.start()
        message_id = cache.snapshot()[0].id
        cache.update(message_id, {"category": "not_interested"})
        await scheduler.fire(SYNC_JOB)

    asyncio.run(scenario())

    assert cache.snapshot()[0].category is Category.NOT_INTERESTED


def test_drain_delivers_notifications_before_stop() -> None:
    connection = FakeConnection(_account("primary"), [_raw(1, "Interested", "tell me more")])
    notifier = RecordingNotifier()
    supervisor = SyncSupervisor(
        [connection.account],
        connection_factory=lambda account: connection,
        cache=MailCache(),
        orchestrator=ClassificationOrchestrator(batch_delay_seconds=0),
        notifier=notifier,
    )

    async def scenario() -> None:
        await supervisor.start()
        try:
            await supervisor.drain()
        finally:
            await supervisor.stop()

    asyncio.run(scenario())

    assert [event for event, _ in notifier.events] == ["interested"]
