"""Factory for wiring a calendar adapter and scheduler from configuration."""

from pathlib import Path

from marketclaw.config.schema import Config
from marketclaw.providers.calendar import CalendarPort, GogCalendarBackend, GoogleCalendarBackend


def create_calendar_backend(config: Config) -> CalendarPort | None:
    """
    Create the calendar backend selected by ``calendar.backend``.

    Args:
        config: The marketclaw configuration.

    Returns:
        A calendar backend, or None when calendar sync has no backend.
    """
    cal = config.calendar
    if cal.backend == "gog":
        return GogCalendarBackend(binary=cal.gog_binary, timeout=cal.command_timeout)
    if cal.backend == "google":
        return GoogleCalendarBackend(token_path=cal.token_path)
    return None


def create_scheduler(
    config: Config,
    on_job_execute=None,
    workspace: Path | None = None,
    arm_timers: bool = True,
):
    """Build a JobScheduler with the configured calendar adapter attached."""
    from marketclaw.scheduler.calendar_sync import CalendarSync
    from marketclaw.scheduler.service import JobScheduler

    backend = create_calendar_backend(config)
    calendar = CalendarSync(backend, config.calendar) if backend is not None else None
    return JobScheduler(
        workspace=workspace or config.workspace_path,
        on_job_execute=on_job_execute,
        calendar=calendar,
        timezone=config.scheduler.timezone,
        arm_timers=arm_timers,
    )
