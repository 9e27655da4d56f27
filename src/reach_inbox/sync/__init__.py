"""Supervisor and timers driving periodic mailbox synchronisation."""

from .scheduler import AsyncioScheduler, ManualScheduler, Scheduler
from .supervisor import HEALTH_JOB, SYNC_JOB, SyncSupervisor

__all__ = [
    "AsyncioScheduler",
    "HEALTH_JOB",
    "ManualScheduler",
    "SYNC_JOB",
    "Scheduler",
    "SyncSupervisor",
]
