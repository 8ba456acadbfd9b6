"""Calendar backend interface and implementations."""

import asyncio
import json
import os.path
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Optional

from loguru import logger

from marketclaw.errors import CalendarBackendError

if TYPE_CHECKING:
    from google.oauth2.credentials import Credentials


class CalendarPort(ABC):
    """Abstract base class for calendar backends.

    Times are ISO-8601 strings. Every method raises ``CalendarBackendError``
    when the backend call fails.
    """

    @abstractmethod
    async def create_event(
        self, calendar_id: str, title: str, start: str, end: str, description: str
    ) -> str:
        """Create an event. Returns the new event id."""
        pass

    @abstractmethod
    async def update_event(
        self, calendar_id: str, event_id: str, title: str, start: str, end: str
    ) -> None:
        """Update title and time window of an existing event."""
        pass

    @abstractmethod
    async def delete_event(self, calendar_id: str, event_id: str) -> None:
        """Delete an event."""
        pass

    @abstractmethod
    async def get_event(self, calendar_id: str, event_id: str) -> dict[str, Any]:
        """Fetch an event; raises if it does not exist."""
        pass

    @abstractmethod
    async def is_connected(self) -> bool:
        """True if the backend is reachable and authorised."""
        pass


class GogCalendarBackend(CalendarPort):
    """Calendar backend driving the ``gog`` command-line client.

    Arguments are passed as an argv list, never through a shell.
    """

    def __init__(self, binary: str = "gog", timeout: float = 30.0):
        self.binary = binary
        self.timeout = timeout

    async def _run(self, *args: str) -> str:
        cmd = [self.binary, "calendar", *args, "--json"]
        logger.debug(f"Calendar command: {cmd[:3]}")
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise CalendarBackendError(
                f"{self.binary} CLI is not installed or not on PATH"
            ) from e

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            proc.kill()
            await proc.wait()
            raise CalendarBackendError(
                f"{self.binary} calendar {args[0]} timed out after {self.timeout}s"
            ) from e

        out = stdout.decode("utf-8", errors="replace")
        if proc.returncode != 0:
            err = stderr.decode("utf-8", errors="replace").strip() or out.strip()
            raise CalendarBackendError(
                err or f"{self.binary} calendar {args[0]} exited with code {proc.returncode}"
            )
        return out

    @staticmethod
    def _parse_json(stdout: str) -> Any:
        try:
            return json.loads(stdout)
        except json.JSONDecodeError as e:
            raise CalendarBackendError(f"Unexpected calendar output: {stdout[:200]!r}") from e

    async def create_event(
        self, calendar_id: str, title: str, start: str, end: str, description: str
    ) -> str:
        stdout = await self._run(
            "create",
            "--calendar", calendar_id,
            "--title", title,
            "--start", start,
            "--end", end,
            "--description", description,
        )
        result = self._parse_json(stdout)
        event_id = None
        if isinstance(result, dict):
            event_id = result.get("id") or result.get("eventId")
        if not event_id:
            raise CalendarBackendError("Calendar create returned no event id")
        return str(event_id)

    async def update_event(
        self, calendar_id: str, event_id: str, title: str, start: str, end: str
    ) -> None:
        await self._run(
            "update",
            "--calendar", calendar_id,
            "--event", event_id,
            "--title", title,
            "--start", start,
            "--end", end,
        )

    async def delete_event(self, calendar_id: str, event_id: str) -> None:
        await self._run("delete", "--calendar", calendar_id, "--event", event_id)

    async def get_event(self, calendar_id: str, event_id: str) -> dict[str, Any]:
        stdout = await self._run("get", "--calendar", calendar_id, "--event", event_id)
        result = self._parse_json(stdout)
        if not isinstance(result, dict):
            raise CalendarBackendError(f"Event {event_id} not found")
        return result

    async def is_connected(self) -> bool:
        try:
            stdout = await self._run("list", "--limit", "1")
        except CalendarBackendError:
            return False
        return "[" in stdout


class GoogleCalendarBackend(CalendarPort):
    """Google Calendar v3 backend using an existing authorised-user token."""

    SCOPES = ["https://www.googleapis.com/auth/calendar"]

    def __init__(self, token_path: str):
        self.token_path = token_path
        self._service = None

    def _get_credentials(self) -> Optional["Credentials"]:
        from google.oauth2.credentials import Credentials
        from google.auth.transport.requests import Request

        token_path = os.path.expanduser(self.token_path)
        creds = None

        if os.path.exists(token_path):
            creds = Credentials.from_authorized_user_file(token_path, self.SCOPES)

        if not creds or not creds.valid:
            if creds and creds.expired and creds.refresh_token:
                try:
                    creds.refresh(Request())
                    with open(token_path, "w") as token:
                        token.write(creds.to_json())
                except Exception as e:
                    logger.warning(f"Google token refresh failed: {e}")
                    return None
            else:
                return None

        return creds

    def _get_service(self):
        if self._service:
            return self._service

        creds = self._get_credentials()
        if not creds:
            raise CalendarBackendError(
                f"Google Calendar is not authorised (no valid token at {self.token_path})"
            )

        from googleapiclient.discovery import build
        self._service = build("calendar", "v3", credentials=creds)
        return self._service

    async def _call(self, build_request) -> Any:
        def run():
            return build_request(self._get_service()).execute()

        try:
            return await asyncio.to_thread(run)
        except CalendarBackendError:
            raise
        except Exception as e:
            raise CalendarBackendError(str(e)) from e

    async def create_event(
        self, calendar_id: str, title: str, start: str, end: str, description: str
    ) -> str:
        created = await self._call(lambda service: service.events().insert(
            calendarId=calendar_id,
            body={
                "summary": title,
                "description": description,
                "start": {"dateTime": start},
                "end": {"dateTime": end},
            },
        ))
        return created["id"]

    async def update_event(
        self, calendar_id: str, event_id: str, title: str, start: str, end: str
    ) -> None:
        await self._call(lambda service: service.events().patch(
            calendarId=calendar_id,
            eventId=event_id,
            body={
                "summary": title,
                "start": {"dateTime": start},
                "end": {"dateTime": end},
            },
        ))

    async def delete_event(self, calendar_id: str, event_id: str) -> None:
        await self._call(lambda service: service.events().delete(
            calendarId=calendar_id, eventId=event_id
        ))

    async def get_event(self, calendar_id: str, event_id: str) -> dict[str, Any]:
        event = await self._call(lambda service: service.events().get(
            calendarId=calendar_id, eventId=event_id
        ))
        if event.get("status") == "cancelled":
            raise CalendarBackendError(f"Event {event_id} was deleted")
        return event

    async def is_connected(self) -> bool:
        try:
            await self._call(lambda service: service.calendarList().list(maxResults=1))
        except CalendarBackendError:
            return False
        return True
