"""Shared error types for marketclaw.

Scheduling and persistence failures are explicit exceptions; calendar
failures are converted into sync results at the adapter boundary.
"""


class MarketClawError(Exception):
    """Base error for marketclaw."""


class SchedulerError(MarketClawError):
    """Scheduling core failure."""


class InvalidScheduleError(SchedulerError):
    """A job was created without exactly one of cron expression / execute-at."""


class StoreError(SchedulerError):
    """Job store could not be read or written."""


class StoreCorruptError(StoreError):
    """Job store file exists but is not a valid job list."""


class StoreWriteError(StoreError):
    """Writing the job store to disk failed."""


class CalendarBackendError(MarketClawError):
    """Calendar backend call failed (process error, API error, bad output)."""
