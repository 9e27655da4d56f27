"""Integration tests for the probe web application."""

from __future__ import annotations

from datetime import UTC, datetime

from fastapi.testclient import TestClient

from reach_inbox.core.models import AccountStatus, ConnectionState, SupervisorStatus
from reach_inbox.web import create_app


class StubSupervisor:
    def __init__(self) -> None:
        self.running = False
        self.started = 0
        self.stopped = 0

    def get_status(self) -> SupervisorStatus:
        return SupervisorStatus(
            is_running=self.running,
            connected_accounts=1 if self.running else 0,
            total_accounts=2,
            last_sync=datetime(2025, 10, 6, 9, 0, tzinfo=UTC) if self.running else None,
            accounts=(
                AccountStatus(
                    "primary",
                    ConnectionState.CONNECTED if self.running else ConnectionState.DISCONNECTED,
                    3,
                ),
                AccountStatus("backup", ConnectionState.DEGRADED, 0),
            ),
        )

    async def start(self) -> SupervisorStatus:
        self.started += 1
        self.running = True
        return self.get_status()

    async def stop(self) -> None:
        self.stopped += 1
        self.running = False


def test_health_reports_status_payload() -> None:
    supervisor = StubSupervisor()
    client = TestClient(create_app(supervisor))

    response = client.get("/health")

    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "ok"
    assert payload["isRunning"] is False
    assert payload["connectedAccounts"] == 0
    assert payload["totalAccounts"] == 2
    assert payload["lastSync"] is None
    assert payload["accounts"][1] == {
        "accountId": "backup",
        "state": "degraded",
        "emailCount": 0,
    }


def test_ready_is_unavailable_until_running() -> None:
    supervisor = StubSupervisor()
    client = TestClient(create_app(supervisor))

    not_ready = client.get("/ready")
    supervisor.running = True
    ready = client.get("/ready")

    assert not_ready.status_code == 503
    assert not_ready.json()["ready"] is False
    assert ready.status_code == 200
    assert ready.json()["ready"] is True
    assert ready.json()["lastSync"] == "2025-10-06T09:00:00+00:00"


def test_managed_lifecycle_starts_and_stops_supervisor() -> None:
    supervisor = StubSupervisor()

    with TestClient(create_app(supervisor, manage_lifecycle=True)) as client:
        assert supervisor.started == 1
        assert client.get("/ready").status_code == 200

    assert supervisor.stopped == 1
    assert supervisor.running is False


def test_unmanaged_app_leaves_supervisor_alone() -> None:
    supervisor = StubSupervisor()

    with TestClient(create_app(supervisor)) as client:
        client.get("/health")

    assert (supervisor.started, supervisor.stopped) == (0, 0)
