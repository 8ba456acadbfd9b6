"""Scheduler package.

`scheduler.types` is the persisted contract (Pydantic models).
Runtime behavior lives in `scheduler.service`; calendar mirroring in
`scheduler.calendar_sync`.
"""

from marketclaw.scheduler.calendar_sync import CalendarSync
from marketclaw.scheduler.events import CalendarSyncedEvent, JobErrorEvent, JobExecuteEvent
from marketclaw.scheduler.service import JobScheduler
from marketclaw.scheduler.store import JobStore
from marketclaw.scheduler.timeparse import is_one_shot, parse_to_cron, parse_to_timestamp
from marketclaw.scheduler.types import (
    CalendarSyncOptions,
    CalendarSyncResult,
    CalendarSyncState,
    JobPatch,
    JobPayload,
    ScheduledJob,
)

__all__ = [
    "JobScheduler",
    "JobStore",
    "CalendarSync",
    "ScheduledJob",
    "JobPayload",
    "JobPatch",
    "CalendarSyncState",
    "CalendarSyncResult",
    "CalendarSyncOptions",
    "JobExecuteEvent",
    "JobErrorEvent",
    "CalendarSyncedEvent",
    "parse_to_cron",
    "parse_to_timestamp",
    "is_one_shot",
]
