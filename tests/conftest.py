"""Shared fixtures for scheduler tests."""

import asyncio

import pytest

from marketclaw.config.schema import CalendarSyncConfig
from marketclaw.errors import CalendarBackendError
from marketclaw.providers.calendar import CalendarPort
from marketclaw.scheduler.calendar_sync import CalendarSync
from marketclaw.scheduler.service import JobScheduler


class FakeCalendar(CalendarPort):
    """In-memory calendar backend that records every call."""

    def __init__(self, connected: bool = True):
        self.connected = connected
        self.events: dict[str, dict] = {}
        self.calls: list[tuple] = []
        self.fail_create = False
        self.fail_update = False
        self.fail_delete = False
        self.create_delay = 0.0
        self._counter = 0

    async def create_event(self, calendar_id, title, start, end, description):
        self.calls.append(("create", calendar_id, title))
        if self.create_delay:
            await asyncio.sleep(self.create_delay)
        if self.fail_create:
            raise CalendarBackendError("create failed")
        self._counter += 1
        event_id = f"evt-{self._counter}"
        self.events[event_id] = {
            "calendarId": calendar_id,
            "title": title,
            "start": start,
            "end": end,
            "description": description,
        }
        return event_id

    async def update_event(self, calendar_id, event_id, title, start, end):
        self.calls.append(("update", calendar_id, event_id))
        if self.fail_update or event_id not in self.events:
            raise CalendarBackendError(f"event {event_id} not found")
        self.events[event_id].update(title=title, start=start, end=end)

    async def delete_event(self, calendar_id, event_id):
        self.calls.append(("delete", calendar_id, event_id))
        if self.fail_delete or event_id not in self.events:
            raise CalendarBackendError(f"event {event_id} not found")
        del self.events[event_id]

    async def get_event(self, calendar_id, event_id):
        self.calls.append(("get", calendar_id, event_id))
        if event_id not in self.events:
            raise CalendarBackendError(f"event {event_id} not found")
        return self.events[event_id]

    async def is_connected(self):
        return self.connected

    def ops(self) -> list[str]:
        return [call[0] for call in self.calls]


@pytest.fixture
def fake_calendar():
    return FakeCalendar()


@pytest.fixture
def calendar_sync(fake_calendar):
    return CalendarSync(fake_calendar, CalendarSyncConfig(default_calendar_id="primary"))


@pytest.fixture
def executed():
    """Jobs seen by the execution callback, in order."""
    return []


@pytest.fixture
def make_scheduler(tmp_path, executed):
    """Factory for schedulers rooted in a temp workspace."""

    def factory(calendar=None, callback=None, workspace=None, **kwargs) -> JobScheduler:
        async def record(job):
            executed.append(job.id)

        scheduler = JobScheduler(
            workspace=workspace or tmp_path / "workspace",
            on_job_execute=callback or record,
            calendar=calendar,
            **kwargs,
        )
        return scheduler

    return factory
