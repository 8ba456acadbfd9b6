"""Calendar backends."""

from marketclaw.providers.calendar import CalendarPort, GogCalendarBackend, GoogleCalendarBackend
from marketclaw.providers.factory import create_calendar_backend, create_scheduler

__all__ = [
    "CalendarPort",
    "GogCalendarBackend",
    "GoogleCalendarBackend",
    "create_calendar_backend",
    "create_scheduler",
]
