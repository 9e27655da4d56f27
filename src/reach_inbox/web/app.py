"""FastAPI application exposing supervisor health and readiness."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any, Protocol

from fastapi import FastAPI, status as http_status
from fastapi.responses import JSONResponse

from reach_inbox.core.models import SupervisorStatus

LOGGER = logging.getLogger(__name__)


class StatusSource(Protocol):
    """Anything able to report a :class:`SupervisorStatus`."""

    def get_status(self) -> SupervisorStatus:
        """Return the current status snapshot."""
        raise NotImplementedError


class ManagedSource(StatusSource, Protocol):
    """Status source whose lifecycle the application owns."""

    async def start(self) -> Any:
        """Bring the source up."""
        raise NotImplementedError

    async def stop(self) -> Any:
        """Shut the source down."""
        raise NotImplementedError


def create_app(supervisor: StatusSource, *, manage_lifecycle: bool = False) -> FastAPI:
    """Create the probe application bound to ``supervisor``.

    With ``manage_lifecycle`` the supervisor is started when the application
    starts and stopped when it shuts down.
    """

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        managed: ManagedSource = supervisor  # type: ignore[assignment]
        LOGGER.info("Starting supervisor with probe application")
        await managed.start()
        try:
            yield
        finally:
            LOGGER.info("Stopping supervisor with probe application")
            await managed.stop()

    app = FastAPI(
        title="reach-inbox",
        docs_url=None,
        redoc_url=None,
        lifespan=lifespan if manage_lifecycle else None,
    )

    @app.get("/health")
    async def health() -> dict[str, Any]:
        status = supervisor.get_status().as_dict()
        return {"status": "ok", **status}

    @app.get("/ready")
    async def ready() -> JSONResponse:
        snapshot = supervisor.get_status()
        if not snapshot.is_running:
            LOGGER.debug("Readiness probe failed: supervisor not running")
            return JSONResponse(
                status_code=http_status.HTTP_503_SERVICE_UNAVAILABLE,
                content={"ready": False, **snapshot.as_dict()},
            )
        return JSONResponse(content={"ready": True, **snapshot.as_dict()})

    return app


__all__ = ["ManagedSource", "StatusSource", "create_app"]
