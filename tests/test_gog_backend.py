"""Tests for the gog CLI calendar backend (subprocess is faked)."""

import asyncio
import json

import pytest

from marketclaw.errors import CalendarBackendError
from marketclaw.providers.calendar import GogCalendarBackend


class FakeProcess:
    def __init__(self, stdout: str = "", stderr: str = "", returncode: int = 0, hang: bool = False):
        self._stdout = stdout.encode()
        self._stderr = stderr.encode()
        self.returncode = returncode
        self.hang = hang
        self.killed = False

    async def communicate(self):
        if self.hang:
            await asyncio.sleep(10)
        return self._stdout, self._stderr

    def kill(self):
        self.killed = True

    async def wait(self):
        return self.returncode


@pytest.fixture
def spawn(monkeypatch):
    """Replace process creation; returns the list of argv seen and a slot for the next process."""
    state = {"argv": [], "process": FakeProcess(stdout="[]")}

    async def fake_exec(*cmd, **kwargs):
        state["argv"].append(list(cmd))
        if isinstance(state["process"], Exception):
            raise state["process"]
        return state["process"]

    monkeypatch.setattr(asyncio, "create_subprocess_exec", fake_exec)
    return state


@pytest.mark.asyncio
async def test_create_event_builds_argv_and_parses_id(spawn) -> None:
    spawn["process"] = FakeProcess(stdout=json.dumps({"id": "abc123"}))
    backend = GogCalendarBackend()

    event_id = await backend.create_event(
        "primary", "📝 launch; rm -rf /", "2026-03-10T09:00:00+00:00",
        "2026-03-10T09:30:00+00:00", "line one\nline two",
    )

    assert event_id == "abc123"
    assert spawn["argv"] == [[
        "gog", "calendar", "create",
        "--calendar", "primary",
        "--title", "📝 launch; rm -rf /",
        "--start", "2026-03-10T09:00:00+00:00",
        "--end", "2026-03-10T09:30:00+00:00",
        "--description", "line one\nline two",
        "--json",
    ]]


@pytest.mark.asyncio
async def test_create_event_accepts_event_id_key(spawn) -> None:
    spawn["process"] = FakeProcess(stdout=json.dumps({"eventId": "xyz"}))

    assert await GogCalendarBackend().create_event("c", "t", "s", "e", "d") == "xyz"


@pytest.mark.asyncio
async def test_create_event_without_id_fails(spawn) -> None:
    spawn["process"] = FakeProcess(stdout=json.dumps({"status": "ok"}))

    with pytest.raises(CalendarBackendError, match="no event id"):
        await GogCalendarBackend().create_event("c", "t", "s", "e", "d")


@pytest.mark.asyncio
async def test_unparseable_output_fails(spawn) -> None:
    spawn["process"] = FakeProcess(stdout="Created event abc123")

    with pytest.raises(CalendarBackendError, match="Unexpected calendar output"):
        await GogCalendarBackend().create_event("c", "t", "s", "e", "d")


@pytest.mark.asyncio
async def test_update_and_delete_argv(spawn) -> None:
    spawn["process"] = FakeProcess(stdout="{}")
    backend = GogCalendarBackend(binary="/usr/local/bin/gog")

    await backend.update_event("team", "evt-1", "🔔 ping", "s", "e")
    await backend.delete_event("team", "evt-1")

    assert spawn["argv"] == [
        ["/usr/local/bin/gog", "calendar", "update", "--calendar", "team", "--event", "evt-1",
         "--title", "🔔 ping", "--start", "s", "--end", "e", "--json"],
        ["/usr/local/bin/gog", "calendar", "delete", "--calendar", "team", "--event", "evt-1",
         "--json"],
    ]


@pytest.mark.asyncio
async def test_nonzero_exit_raises_with_stderr(spawn) -> None:
    spawn["process"] = FakeProcess(stderr="event not found\n", returncode=1)

    with pytest.raises(CalendarBackendError, match="event not found"):
        await GogCalendarBackend().delete_event("primary", "gone")


@pytest.mark.asyncio
async def test_get_event(spawn) -> None:
    spawn["process"] = FakeProcess(stdout=json.dumps({"id": "evt-1", "summary": "x"}))
    assert (await GogCalendarBackend().get_event("primary", "evt-1"))["summary"] == "x"

    spawn["process"] = FakeProcess(stdout="null")
    with pytest.raises(CalendarBackendError):
        await GogCalendarBackend().get_event("primary", "evt-1")


@pytest.mark.asyncio
async def test_missing_binary(spawn) -> None:
    spawn["process"] = FileNotFoundError("gog")

    with pytest.raises(CalendarBackendError, match="not installed"):
        await GogCalendarBackend().delete_event("primary", "evt-1")
    assert await GogCalendarBackend().is_connected() is False


@pytest.mark.asyncio
async def test_is_connected(spawn) -> None:
    spawn["process"] = FakeProcess(stdout='[{"id": "evt-1"}]')
    assert await GogCalendarBackend().is_connected() is True
    assert spawn["argv"][-1] == ["gog", "calendar", "list", "--limit", "1", "--json"]

    spawn["process"] = FakeProcess(stderr="not authorised", returncode=2)
    assert await GogCalendarBackend().is_connected() is False


@pytest.mark.asyncio
async def test_timeout_kills_process(spawn) -> None:
    process = FakeProcess(hang=True)
    spawn["process"] = process

    with pytest.raises(CalendarBackendError, match="timed out"):
        await GogCalendarBackend(timeout=0.05).delete_event("primary", "evt-1")
    assert process.killed is True
