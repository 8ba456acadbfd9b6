"""Job lifecycle events and the observer registry that delivers them."""

import inspect
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Literal, Union

from loguru import logger

from marketclaw.scheduler.types import CalendarSyncResult, ScheduledJob


@dataclass
class JobExecuteEvent:
    """A job is firing (scheduled or manual)."""
    job: ScheduledJob
    manual: bool = False
    kind: Literal["job:execute"] = field(default="job:execute", init=False)


@dataclass
class JobErrorEvent:
    """The execution callback raised during a scheduled firing."""
    job: ScheduledJob
    error: BaseException
    kind: Literal["job:error"] = field(default="job:error", init=False)


@dataclass
class CalendarSyncedEvent:
    """Calendar reconciliation finished after a firing."""
    job: ScheduledJob
    result: CalendarSyncResult
    kind: Literal["job:calendar-synced"] = field(default="job:calendar-synced", init=False)


JobEvent = Union[JobExecuteEvent, JobErrorEvent, CalendarSyncedEvent]
JobListener = Callable[[JobEvent], Union[None, Awaitable[None]]]


class JobEventHub:
    """
    Ordered, explicit subscription list.

    Listeners run in subscription order and are awaited when they return an
    awaitable, so the order of side effects is the order of emission. A
    listener that raises is logged and skipped.
    """

    def __init__(self):
        self._listeners: list[JobListener] = []

    def subscribe(self, listener: JobListener) -> Callable[[], None]:
        """Register a listener; returns a function that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def emit(self, event: JobEvent) -> None:
        for listener in list(self._listeners):
            try:
                result = listener(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(f"Listener for {event.kind} on job {event.job.id} failed")
