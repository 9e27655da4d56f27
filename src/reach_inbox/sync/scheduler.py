"""Timer abstraction used by the sync supervisor."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Coroutine
from dataclasses import dataclass, field
from typing import Any, Protocol

LOGGER = logging.getLogger(__name__)

Callback = Callable[[], Awaitable[Any]]


class Cancellable(Protocol):
    """Handle returned for scheduled work."""

    def cancel(self) -> Any:
        """Stop the work; no-op when already finished."""
        raise NotImplementedError


class Scheduler(Protocol):
    """Source of periodic ticks and background tasks."""

    def every(self, interval: float, callback: Callback, *, name: str) -> Cancellable:
        """Invoke ``callback`` every ``interval`` seconds until cancelled."""
        raise NotImplementedError

    def spawn(self, coro: Coroutine[Any, Any, Any], *, name: str) -> Cancellable:
        """Run ``coro`` in the background."""
        raise NotImplementedError


class AsyncioScheduler:
    """Scheduler backed by tasks on the running event loop."""

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[Any]] = set()

    def every(self, interval: float, callback: Callback, *, name: str) -> Cancellable:
        """Start a task that sleeps ``interval`` then awaits ``callback``."""

        async def _loop() -> None:
            while True:
                await asyncio.sleep(interval)
                try:
                    await callback()
                except asyncio.CancelledError:
                    raise
                except Exception:  # noqa: BLE001 - a failing tick must not stop the timer
                    LOGGER.exception("Periodic job %s failed", name)

        return self._track(asyncio.get_running_loop().create_task(_loop(), name=name))

    def spawn(self, coro: Coroutine[Any, Any, Any], *, name: str) -> Cancellable:
        """Schedule ``coro`` as a task on the running loop."""
        return self._track(asyncio.get_running_loop().create_task(coro, name=name))

    @property
    def pending(self) -> int:
        """Number of tasks that have not finished yet."""
        return len(self._tasks)

    def _track(self, task: asyncio.Task[Any]) -> asyncio.Task[Any]:
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task


@dataclass(slots=True)
class ManualJob:
    """Periodic or one-shot job driven explicitly by :class:`ManualScheduler`."""

    name: str
    interval: float | None = None
    callback: Callback | None = None
    coro: Coroutine[Any, Any, Any] | None = None
    cancelled: bool = False

    def cancel(self) -> bool:
        """Mark the job cancelled and release a pending coroutine."""
        if self.cancelled:
            return False
        self.cancelled = True
        if self.coro is not None:
            self.coro.close()
            self.coro = None
        return True


@dataclass(slots=True)
class ManualScheduler:
    """Deterministic scheduler for tests: nothing runs until asked."""

    periodic: list[ManualJob] = field(default_factory=list)
    spawned: list[ManualJob] = field(default_factory=list)

    def every(self, interval: float, callback: Callback, *, name: str) -> Cancellable:
        """Record a periodic job; run it with :meth:`fire`."""
        job = ManualJob(name=name, interval=interval, callback=callback)
        self.periodic.append(job)
        return job

    def spawn(self, coro: Coroutine[Any, Any, Any], *, name: str) -> Cancellable:
        """Record a background coroutine; run it with :meth:`drain`."""
        job = ManualJob(name=name, coro=coro)
        self.spawned.append(job)
        return job

    def active(self, name: str | None = None) -> list[ManualJob]:
        """Return periodic jobs that have not been cancelled."""
        return [
            job
            for job in self.periodic
            if not job.cancelled and (name is None or job.name == name)
        ]

    async def fire(self, name: str) -> int:
        """Run one tick of every active periodic job called ``name``."""
        jobs = self.active(name)
        for job in jobs:
            if job.callback is not None:
                await job.callback()
        return len(jobs)

    async def drain(self) -> int:
        """Await spawned coroutines, including ones spawned while draining."""
        ran = 0
        while True:
            pending = [job for job in self.spawned if job.coro is not None]
            if not pending:
                return ran
            for job in pending:
                coro = job.coro
                job.coro = None
                if coro is None or job.cancelled:
                    continue
                await coro
                ran += 1


__all__ = [
    "AsyncioScheduler",
    "Cancellable",
    "ManualJob",
    "ManualScheduler",
    "Scheduler",
]
