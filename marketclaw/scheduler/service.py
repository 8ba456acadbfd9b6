"""Scheduling core: owns the job map, arms timers, fires jobs, reconciles calendars."""

import asyncio
import uuid
from pathlib import Path
from typing import Any, Awaitable, Callable, Coroutine

from loguru import logger

from marketclaw.errors import InvalidScheduleError, StoreWriteError
from marketclaw.scheduler.calendar_sync import CalendarSync
from marketclaw.scheduler.events import (
    CalendarSyncedEvent,
    JobErrorEvent,
    JobEventHub,
    JobExecuteEvent,
    JobListener,
)
from marketclaw.scheduler.store import JobStore
from marketclaw.scheduler.timeparse import (
    is_one_shot,
    is_valid_cron,
    next_cron_run,
    parse_to_cron,
    parse_to_timestamp,
)
from marketclaw.scheduler.types import (
    CalendarSyncOptions,
    CalendarSyncState,
    JobPatch,
    JobPayload,
    JobType,
    ScheduledJob,
)
from marketclaw.utils.helpers import get_workspace_path, now_ms

JobCallback = Callable[[ScheduledJob], Awaitable[Any]]
SyncOptionsResolver = Callable[[ScheduledJob], CalendarSyncOptions | None]

_SCHEDULE_FIELDS = {"cron_expression", "execute_at", "enabled"}


def _new_job_id() -> str:
    return f"job_{now_ms()}_{uuid.uuid4().hex[:6]}"


class JobScheduler:
    """
    Service for managing and executing scheduled jobs.

    Jobs are either recurring (``cron_expression``) or one-shot
    (``execute_at``). Each armed job owns one asyncio timer task; a firing
    runs as its own task so a slow callback never holds up another job's
    timer, and cancelling a timer never aborts a callback already running.
    """

    parse_to_cron = staticmethod(parse_to_cron)
    parse_to_timestamp = staticmethod(parse_to_timestamp)
    is_one_shot = staticmethod(is_one_shot)

    def __init__(
        self,
        workspace: Path | str | None = None,
        on_job_execute: JobCallback | None = None,
        calendar: CalendarSync | None = None,
        sync_options: SyncOptionsResolver | None = None,
        timezone: str | None = None,
        arm_timers: bool = True,
    ):
        self.workspace = get_workspace_path(workspace)
        self.store = JobStore(self.workspace)
        self.on_job_execute = on_job_execute
        self.calendar = calendar
        self.timezone = timezone  # cron evaluation zone; None = local time
        self._sync_options = sync_options
        self._jobs: dict[str, ScheduledJob] = {}
        self._timers: dict[str, asyncio.Task] = {}
        self._firings: set[asyncio.Task] = set()
        self._events = JobEventHub()
        # offline instances (CLI) compute next_run but never create timers
        self._running = arm_timers

    def subscribe(self, listener: JobListener) -> Callable[[], None]:
        """Receive job:execute, job:error and job:calendar-synced events."""
        return self._events.subscribe(listener)

    # ========== Persistence ==========

    async def load(self) -> None:
        """Load jobs from disk and arm every enabled one.

        Raises ``StoreCorruptError`` if the file exists but cannot be parsed.
        """
        jobs = self.store.load()
        self.stop_all()
        self._jobs = {job.id: job for job in jobs}
        for job in jobs:
            if job.enabled:
                self._start_job(job)
        logger.info(f"Scheduler loaded {len(jobs)} jobs ({len(self._timers)} armed)")

    async def start(self) -> None:
        """Start the scheduler (alias of ``load``)."""
        await self.load()

    async def save(self) -> None:
        """Write the full job collection to disk."""
        await self.store.save(lambda: list(self._jobs.values()))

    async def _save_from_timer(self) -> None:
        try:
            await self.save()
        except StoreWriteError:
            logger.warning("Job store is behind memory; the next save will retry")

    # ========== Timers ==========

    def _start_job(self, job: ScheduledJob, arm: bool = True) -> None:
        """Compute ``next_run`` and, when ``arm`` and running, start the timer."""
        self._stop_timer(job.id)
        arm = arm and self._running

        if job.one_shot:
            if job.execute_at is None:
                logger.warning(f"One-shot job {job.id} has no executeAt, not scheduling")
                job.next_run = None
                return
            job.next_run = job.execute_at
            if not arm:
                return
            delay_s = max(0, job.execute_at - now_ms()) / 1000
            self._timers[job.id] = asyncio.create_task(
                self._one_shot_timer(job, delay_s), name=f"job-timer-{job.id}"
            )
            return

        if not is_valid_cron(job.cron_expression):
            logger.warning(f"Invalid cron expression for job {job.id}: {job.cron_expression!r}")
            job.next_run = None
            return

        job.next_run = next_cron_run(job.cron_expression, now_ms(), self.timezone)
        if not arm:
            return
        self._timers[job.id] = asyncio.create_task(
            self._cron_timer(job, job.cron_expression), name=f"job-timer-{job.id}"
        )

    def _stop_timer(self, job_id: str) -> bool:
        task = self._timers.pop(job_id, None)
        if task is None:
            return False
        if task is not asyncio.current_task():
            task.cancel()
        return True

    async def _one_shot_timer(self, job: ScheduledJob, delay_s: float) -> None:
        await asyncio.sleep(delay_s)
        self._timers.pop(job.id, None)
        self._dispatch(self._fire_one_shot(job), job)

    async def _cron_timer(self, job: ScheduledJob, expression: str) -> None:
        target = job.next_run or next_cron_run(expression, now_ms(), self.timezone)
        while True:
            remaining_ms = target - now_ms()
            if remaining_ms > 0:
                await asyncio.sleep(remaining_ms / 1000)
                continue
            # missed fire times while the process was suspended collapse into one
            target = next_cron_run(expression, max(target, now_ms()), self.timezone)
            job.next_run = target
            self._dispatch(self._execute_job(job), job)

    def _dispatch(self, coro: Coroutine[Any, Any, None], job: ScheduledJob) -> None:
        task = asyncio.create_task(coro, name=f"job-firing-{job.id}")
        self._firings.add(task)
        task.add_done_callback(self._on_firing_done)

    def _on_firing_done(self, task: asyncio.Task) -> None:
        self._firings.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.opt(exception=exc).error(f"Firing task {task.get_name()} crashed")

    async def _fire_one_shot(self, job: ScheduledJob) -> None:
        await self._execute_job(job)
        if self._jobs.get(job.id) is not job:
            return  # removed while firing

        if job.delete_after_run is not False:
            del self._jobs[job.id]
            logger.info(f"One-shot job '{job.name}' ({job.id}) done, removed")
        else:
            job.enabled = False
            job.next_run = None
        await self._save_from_timer()

    # ========== Execution ==========

    async def _execute_job(self, job: ScheduledJob, *, manual: bool = False) -> None:
        """Single execution path for scheduled and manual firings.

        Scheduled firings swallow callback errors (logged, emitted as
        job:error), resync the calendar and persist. Manual firings re-raise
        callback errors and leave the calendar alone; ``run_now`` persists.
        """
        fired_at = now_ms()
        job.last_run = fired_at
        job.run_count += 1
        job.updated_at = fired_at
        logger.info(f"Executing job '{job.name}' ({job.id}), run #{job.run_count}")

        await self._events.emit(JobExecuteEvent(job=job, manual=manual))

        try:
            if self.on_job_execute is not None:
                await self.on_job_execute(job)
        except Exception as e:
            if manual:
                logger.error(f"Manual run of job {job.id} failed: {e}")
                raise
            logger.exception(f"Error executing job {job.id}")
            await self._events.emit(JobErrorEvent(job=job, error=e))

        if manual:
            return

        if job.is_recurring and job.enabled and is_valid_cron(job.cron_expression):
            if job.next_run is None or job.next_run <= fired_at:
                job.next_run = next_cron_run(job.cron_expression, fired_at, self.timezone)

        if self._calendar_eligible(job):
            result = await self.calendar.sync_after_run(job, self._options_for(job))
            CalendarSync.apply_result(job, result)
            await self._events.emit(CalendarSyncedEvent(job=job, result=result))

        await self._save_from_timer()

    # ========== Calendar ==========

    def _options_for(self, job: ScheduledJob) -> CalendarSyncOptions | None:
        return self._sync_options(job) if self._sync_options else None

    def _calendar_eligible(self, job: ScheduledJob) -> bool:
        return (
            self.calendar is not None
            and self._jobs.get(job.id) is job
            and job.enabled
            and self.calendar.should_sync_to_calendar(job)
        )

    async def _reconcile_calendar(self, job: ScheduledJob) -> None:
        """Move the mirrored event after a schedule change, or drop it when disabled."""
        if self.calendar is None:
            return
        if self._calendar_eligible(job):
            result = await self.calendar.update_event(job, self._options_for(job))
        elif job.calendar_sync and job.calendar_sync.event_id:
            result = await self.calendar.delete_event(job, self._options_for(job))
        else:
            return
        CalendarSync.apply_result(job, result)

    # ========== Public API ==========

    async def add_job(
        self,
        name: str,
        *,
        cron_expression: str | None = None,
        execute_at: int | None = None,
        type: JobType = "task",
        description: str | None = None,
        enabled: bool = True,
        payload: JobPayload | dict[str, Any] | None = None,
        delete_after_run: bool | None = None,
        timezone: str | None = None,
        calendar_sync: CalendarSyncState | None = None,
        sync_to_calendar: bool | None = None,
    ) -> ScheduledJob:
        """Create, persist and arm a job; mirror it to the calendar when eligible."""
        if (cron_expression is None) == (execute_at is None):
            raise InvalidScheduleError("A job needs exactly one of cron_expression or execute_at")

        one_shot = execute_at is not None
        if delete_after_run is None:
            delete_after_run = one_shot
        if sync_to_calendar is not None:
            calendar_sync = calendar_sync or CalendarSyncState()
            calendar_sync.enabled = sync_to_calendar
        if not isinstance(payload, JobPayload):
            payload = JobPayload.model_validate(payload or {})

        now = now_ms()
        job = ScheduledJob(
            id=_new_job_id(),
            name=name,
            description=description,
            cron_expression=cron_expression,
            execute_at=execute_at,
            one_shot=one_shot,
            delete_after_run=delete_after_run,
            type=type,
            enabled=enabled,
            payload=payload,
            run_count=0,
            created_at=now,
            updated_at=now,
            calendar_sync=calendar_sync,
            timezone=timezone,
        )

        self._jobs[job.id] = job
        await self.save()

        # next_run only; the timer is armed once the event id is on the job
        if job.enabled:
            self._start_job(job, arm=False)

        if self._calendar_eligible(job) and await self.calendar.is_connected():
            result = await self.calendar.create_event(job, self._options_for(job))
            CalendarSync.apply_result(job, result)
            if self._jobs.get(job.id) is not job and job.calendar_sync.event_id:
                # removed while the create was in flight
                await self.calendar.delete_event(job, self._options_for(job))

        if job.enabled and self._jobs.get(job.id) is job:
            self._start_job(job)

        await self.save()
        logger.info(f"Added job '{name}' ({job.id})")
        return job

    async def update_job(
        self, job_id: str, patch: JobPatch | dict[str, Any]
    ) -> ScheduledJob | None:
        """Merge ``patch`` into a job; re-arm its timer if the schedule changed."""
        job = self._jobs.get(job_id)
        if job is None:
            return None

        if not isinstance(patch, JobPatch):
            patch = JobPatch.model_validate(patch)
        changes = patch.changes()

        # switching schedule kind keeps exactly one of the two set
        if changes.get("cron_expression") is not None and "execute_at" not in changes:
            changes.update(execute_at=None, one_shot=False)
        elif changes.get("execute_at") is not None and "cron_expression" not in changes:
            changes.update(cron_expression=None, one_shot=True)
        if changes.get("one_shot", job.one_shot) != job.one_shot:
            # new kind, new default: one-shots purge, recurring jobs stay
            changes.setdefault("delete_after_run", changes["one_shot"])

        for field_name, value in changes.items():
            setattr(job, field_name, value)
        job.updated_at = now_ms()

        if changes.keys() & _SCHEDULE_FIELDS:
            self._stop_timer(job_id)
            if job.enabled:
                self._start_job(job)
            else:
                job.next_run = None
            await self._reconcile_calendar(job)

        await self.save()
        logger.info(f"Updated job {job_id}: {sorted(changes)}")
        return job

    async def remove_job(self, job_id: str) -> bool:
        """Stop, un-mirror and delete a job."""
        job = self._jobs.pop(job_id, None)
        if job is None:
            return False

        self._stop_timer(job_id)
        if self.calendar is not None:
            await self.calendar.delete_event(job, self._options_for(job))

        await self.save()
        logger.info(f"Removed job '{job.name}' ({job_id})")
        return True

    def get_job(self, job_id: str) -> ScheduledJob | None:
        return self._jobs.get(job_id)

    def list_jobs(
        self,
        type: str | None = None,
        enabled: bool | None = None,
        product_id: str | None = None,
    ) -> list[ScheduledJob]:
        """List jobs, soonest ``next_run`` first (jobs without one sort first)."""
        jobs = list(self._jobs.values())
        if type:
            jobs = [j for j in jobs if j.type == type]
        if enabled is not None:
            jobs = [j for j in jobs if j.enabled == enabled]
        if product_id:
            jobs = [j for j in jobs if j.payload.product_id == product_id]
        return sorted(jobs, key=lambda j: j.next_run or 0)

    async def enable_job(self, job_id: str) -> bool:
        return await self.update_job(job_id, JobPatch(enabled=True)) is not None

    async def disable_job(self, job_id: str) -> bool:
        return await self.update_job(job_id, JobPatch(enabled=False)) is not None

    async def run_now(self, job_id: str) -> bool:
        """Fire a job immediately, outside its schedule.

        Callback errors propagate to the caller; bookkeeping is persisted
        either way. The calendar is not resynced.
        """
        job = self._jobs.get(job_id)
        if job is None:
            return False

        try:
            await self._execute_job(job, manual=True)
        finally:
            await self.save()
        return True

    def is_armed(self, job_id: str) -> bool:
        """True while a live timer exists for the job."""
        task = self._timers.get(job_id)
        return task is not None and not task.done()

    def stop_all(self) -> None:
        """Cancel every pending timer. Persisted state is left untouched."""
        for task in self._timers.values():
            task.cancel()
        self._timers.clear()

    def status(self) -> dict:
        """Get scheduler status."""
        pending = [j.next_run for j in self._jobs.values() if j.enabled and j.next_run]
        return {
            "jobs": len(self._jobs),
            "armed": len(self._timers),
            "next_run": min(pending) if pending else None,
        }
