"""Keep one calendar event per job in step with the job's next firing."""

import re
from datetime import datetime, timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from loguru import logger

from marketclaw.config.schema import CalendarSyncConfig
from marketclaw.providers.calendar import CalendarPort
from marketclaw.scheduler.types import (
    CalendarSyncOptions,
    CalendarSyncResult,
    CalendarSyncState,
    ScheduledJob,
)
from marketclaw.utils.helpers import now_ms

EVENT_DURATION = timedelta(minutes=30)
CONTENT_PREVIEW_CHARS = 200

_TITLE_EMOJI = {
    "reminder": "🔔",
    "post": "📝",
    "task": "🤖",
}
_MINUTE_STEP = re.compile(r"^\*/(\d+)$")


def build_event_title(job: ScheduledJob) -> str:
    return f"{_TITLE_EMOJI.get(job.type, '⚙️')} {job.name}"


def build_event_description(job: ScheduledJob) -> str:
    lines = [
        "**MarketClaw Scheduled Job**",
        "",
        f"Type: {job.type}",
        f"ID: {job.id}",
    ]

    if job.description:
        lines += ["", job.description]

    content = job.payload.content
    if content:
        preview = content[:CONTENT_PREVIEW_CHARS]
        if len(content) > CONTENT_PREVIEW_CHARS:
            preview += "..."
        lines += ["", f"Content: {preview}"]

    if job.payload.product_id:
        lines.append(f"Product: {job.payload.product_id}")

    if job.cron_expression:
        lines += ["", f"Schedule: {job.cron_expression}"]

    return "\n".join(lines)


class CalendarSync:
    """
    Calendar adapter for scheduled jobs.

    Every operation returns a ``CalendarSyncResult`` and never raises:
    updates that fail fall back to creating a fresh event, and deletes are
    always reported successful because the remote event may already be gone.
    """

    def __init__(self, port: CalendarPort, config: CalendarSyncConfig | None = None):
        self.port = port
        self.config = config or CalendarSyncConfig()

    def configure(self, **changes) -> None:
        """Update global sync settings (enabled, default_calendar_id, default_timezone)."""
        self.config = self.config.model_copy(update=changes)
        logger.info(
            f"Calendar sync configured: enabled={self.config.enabled} "
            f"calendar={self.config.default_calendar_id} tz={self.config.default_timezone}"
        )

    async def is_connected(self) -> bool:
        try:
            return await self.port.is_connected()
        except Exception as e:
            logger.debug(f"Calendar connectivity check failed: {e}")
            return False

    # ========== Resolution ==========

    def resolve_calendar_id(
        self, job: ScheduledJob, options: CalendarSyncOptions | None = None
    ) -> str:
        """Job override, then product config, then global default, then "primary"."""
        return (
            (job.calendar_sync and job.calendar_sync.calendar_id)
            or (options and options.product_calendar_id)
            or self.config.default_calendar_id
            or "primary"
        )

    def resolve_timezone(
        self, job: ScheduledJob, options: CalendarSyncOptions | None = None
    ) -> str:
        """Job override, then member preference, then global default, then UTC."""
        return (
            job.timezone
            or (options and options.member_timezone)
            or self.config.default_timezone
            or "UTC"
        )

    def _event_window(self, job: ScheduledJob, tz_name: str) -> tuple[str, str] | None:
        start_ms = job.execute_at if job.execute_at is not None else job.next_run
        if start_ms is None:
            return None

        try:
            tz = ZoneInfo(tz_name)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning(f"Unknown timezone '{tz_name}' for job {job.id}, using UTC")
            tz = ZoneInfo("UTC")

        start = datetime.fromtimestamp(start_ms / 1000, tz=tz)
        return start.isoformat(), (start + EVENT_DURATION).isoformat()

    # ========== Operations ==========

    async def create_event(
        self, job: ScheduledJob, options: CalendarSyncOptions | None = None
    ) -> CalendarSyncResult:
        if not self.config.enabled:
            return CalendarSyncResult(success=False, error="Calendar sync disabled")

        if job.calendar_sync and not job.calendar_sync.enabled:
            return CalendarSyncResult(success=False, error="Calendar sync disabled for this job")

        calendar_id = self.resolve_calendar_id(job, options)
        window = self._event_window(job, self.resolve_timezone(job, options))
        if window is None:
            return CalendarSyncResult(success=False, error="No scheduled time found")
        start, end = window

        try:
            event_id = await self.port.create_event(
                calendar_id,
                build_event_title(job),
                start,
                end,
                build_event_description(job),
            )
        except Exception as e:
            logger.error(f"Failed to create calendar event for job {job.id}: {e}")
            return CalendarSyncResult(success=False, error=str(e))

        logger.info(f"Calendar event {event_id} created for job {job.id} in {calendar_id}")
        return CalendarSyncResult(success=True, event_id=event_id)

    async def update_event(
        self, job: ScheduledJob, options: CalendarSyncOptions | None = None
    ) -> CalendarSyncResult:
        event_id = job.calendar_sync.event_id if job.calendar_sync else None
        if not event_id:
            return await self.create_event(job, options)

        calendar_id = self.resolve_calendar_id(job, options)
        window = self._event_window(job, self.resolve_timezone(job, options))
        if window is None:
            return CalendarSyncResult(success=False, error="No scheduled time found")
        start, end = window

        try:
            await self.port.update_event(calendar_id, event_id, build_event_title(job), start, end)
        except Exception as e:
            logger.error(f"Failed to update calendar event {event_id} for job {job.id}: {e}")
            return await self.create_event(job, options)

        logger.info(f"Calendar event {event_id} updated for job {job.id}")
        return CalendarSyncResult(success=True, event_id=event_id)

    async def delete_event(
        self, job: ScheduledJob, options: CalendarSyncOptions | None = None
    ) -> CalendarSyncResult:
        event_id = job.calendar_sync.event_id if job.calendar_sync else None
        if not event_id:
            return CalendarSyncResult(success=True)

        calendar_id = self.resolve_calendar_id(job, options)
        try:
            await self.port.delete_event(calendar_id, event_id)
        except Exception as e:
            logger.warning(
                f"Failed to delete calendar event {event_id} for job {job.id} "
                f"(may already be deleted): {e}"
            )
            return CalendarSyncResult(success=True)

        logger.info(f"Calendar event {event_id} deleted for job {job.id}")
        return CalendarSyncResult(success=True)

    async def event_exists(self, event_id: str, calendar_id: str | None = None) -> bool:
        calendar = calendar_id or self.config.default_calendar_id or "primary"
        try:
            await self.port.get_event(calendar, event_id)
        except Exception:
            return False
        return True

    async def sync_after_run(
        self, job: ScheduledJob, options: CalendarSyncOptions | None = None
    ) -> CalendarSyncResult:
        """Reconcile after a firing.

        One-shot jobs only lose their event. Recurring jobs always get the
        stale event deleted and a new one created for ``next_run``; the old
        event id is never reused.
        """
        if job.one_shot or not job.cron_expression:
            return await self.delete_event(job, options)

        await self.delete_event(job, options)
        if job.calendar_sync:
            job.calendar_sync.event_id = None
        return await self.create_event(job, options)

    def should_sync_to_calendar(self, job: ScheduledJob) -> bool:
        if job.calendar_sync and not job.calendar_sync.enabled:
            return False

        if not self.config.enabled:
            return False

        # too frequent to be calendar-worthy
        if job.type == "heartbeat":
            return False

        fields = (job.cron_expression or "").split()
        if fields:
            m = _MINUTE_STEP.match(fields[0])
            if m and int(m.group(1)) < 60:
                return False

        return True

    @staticmethod
    def apply_result(job: ScheduledJob, result: CalendarSyncResult) -> None:
        """Fold an operation result into ``job.calendar_sync``."""
        state = job.calendar_sync or CalendarSyncState()
        if result.success:
            state.event_id = result.event_id
            state.last_synced_at = now_ms()
            state.sync_error = None
        else:
            state.sync_error = result.error
        job.calendar_sync = state
