"""Translate operator phrases into cron expressions or one-shot timestamps.

Everything here is pure: ``now`` can be injected for deterministic results.

    >>> parse_to_cron("every 5 minutes")
    '*/5 * * * *'
    >>> is_one_shot("tomorrow at 9:30")
    True
"""

import re
from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

from croniter import croniter

_FIXED_CRON = {
    "every minute": "* * * * *",
    "every hour": "0 * * * *",
    "every day": "0 9 * * *",
    "daily": "0 9 * * *",
    "every week": "0 9 * * 1",
    "weekly": "0 9 * * 1",
    "every month": "0 9 1 * *",
    "monthly": "0 9 1 * *",
}

_EVERY_MINUTES = re.compile(r"every (\d+) minutes?")
_EVERY_HOURS = re.compile(r"every (\d+) hours?")
_AT_WEEKDAYS = re.compile(r"at (\d{1,2}):(\d{2}) on weekdays")
_AT_TIME = re.compile(r"at (\d{1,2}):(\d{2})")

_IN_OFFSET = re.compile(r"^in (\d+) (seconds?|secs?|minutes?|mins?|hours?|hrs?)$")
_TOMORROW = re.compile(r"^tomorrow at (\d{1,2})(?::(\d{2}))?\s*(am|pm)?$")
_TONIGHT = re.compile(r"^tonight at (\d{1,2})(?::(\d{2}))?\s*(pm)?$")
_AT_MERIDIEM = re.compile(r"^at (\d{1,2})(?::(\d{2}))?\s*(am|pm)$")
_AT_CLOCK = re.compile(r"^at (\d{1,2}):(\d{2})$")
_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}")

_ONE_SHOT_PREFIXES = ("in ", "at ", "tomorrow", "tonight")
_RECURRING_MARKERS = ("every", "daily", "weekly", "monthly", "weekdays")

_UNIT_SECONDS = {"s": 1, "m": 60, "h": 3600}


def _normalize(text: str) -> str:
    return " ".join(text.lower().split())


def is_valid_cron(expression: str | None) -> bool:
    """True for a 5-field cron expression croniter accepts."""
    if not expression or len(expression.split()) != 5:
        return False
    try:
        return croniter.is_valid(expression)
    except Exception:
        return False


def next_cron_run(expression: str, after_ms: int, tz: str | None = None) -> int:
    """Epoch ms of the first fire time of ``expression`` strictly after ``after_ms``.

    Without ``tz`` the base is naive local wall time, so the result follows
    the host's DST rules instead of a fixed UTC offset.
    """
    zone = ZoneInfo(tz) if tz else None
    base = datetime.fromtimestamp(after_ms / 1000, tz=zone)
    nxt = croniter(expression, base).get_next(datetime)
    return int(nxt.timestamp() * 1000)


def parse_to_cron(text: str) -> str | None:
    """Parse a recurring phrase into a cron expression, or None if unparseable."""
    lower = _normalize(text)

    if lower in _FIXED_CRON:
        return _FIXED_CRON[lower]

    if m := _EVERY_MINUTES.search(lower):
        step = int(m.group(1))
        return f"*/{step} * * * *" if 1 <= step <= 59 else None

    if m := _EVERY_HOURS.search(lower):
        step = int(m.group(1))
        return f"0 */{step} * * *" if 1 <= step <= 23 else None

    # weekday form first: the plain "at HH:MM" pattern would swallow it
    if m := _AT_WEEKDAYS.search(lower):
        return _daily_at(m.group(1), m.group(2), "1-5")

    if m := _AT_TIME.search(lower):
        return _daily_at(m.group(1), m.group(2), "*")

    literal = text.strip()
    if is_valid_cron(literal):
        return literal

    return None


def _daily_at(hour: str, minute: str, day_of_week: str) -> str | None:
    h, m = int(hour), int(minute)
    if h > 23 or m > 59:
        return None
    return f"{m} {h} * * {day_of_week}"


def parse_to_timestamp(text: str, now: datetime | None = None) -> int | None:
    """Parse a one-shot phrase into epoch milliseconds, or None if unparseable.

    Clock-time forms ("at 9:00", "at 3pm", "tonight at 8") resolve against
    ``now`` and roll forward a day unless strictly in the future. ISO-8601
    input is taken as given.
    """
    now = now or datetime.now().astimezone()
    lower = _normalize(text)

    if m := _IN_OFFSET.match(lower):
        seconds = int(m.group(1)) * _UNIT_SECONDS[m.group(2)[0]]
        return _to_ms(now + timedelta(seconds=seconds))

    if m := _TOMORROW.match(lower):
        hour = _to_24h(int(m.group(1)), m.group(3))
        minute = int(m.group(2) or 0)
        if hour is None or minute > 59:
            return None
        target = (now + timedelta(days=1)).replace(
            hour=hour, minute=minute, second=0, microsecond=0
        )
        return _to_ms(target)

    if m := _TONIGHT.match(lower):
        hour = int(m.group(1))
        if 1 <= hour <= 11:
            hour += 12
        return _next_clock_time(now, hour, int(m.group(2) or 0))

    if m := _AT_MERIDIEM.match(lower):
        hour = _to_24h(int(m.group(1)), m.group(3))
        if hour is None:
            return None
        return _next_clock_time(now, hour, int(m.group(2) or 0))

    if m := _AT_CLOCK.match(lower):
        return _next_clock_time(now, int(m.group(1)), int(m.group(2)))

    if _ISO_DATE.match(text.strip()):
        iso = text.strip()
        if iso[-1] in "zZ":
            iso = iso[:-1] + "+00:00"  # fromisoformat rejects "Z" before 3.11
        try:
            parsed = datetime.fromisoformat(iso)
        except ValueError:
            return None
        if parsed.tzinfo is None:
            parsed = parsed.astimezone()
        return _to_ms(parsed)

    return None


def is_one_shot(text: str) -> bool:
    """True when the phrase describes a single firing rather than a recurrence."""
    lower = _normalize(text)
    if any(marker in lower for marker in _RECURRING_MARKERS):
        return False
    return lower.startswith(_ONE_SHOT_PREFIXES) or bool(_ISO_DATE.match(lower))


def _to_24h(hour: int, meridiem: str | None) -> int | None:
    if meridiem is None:
        return hour if hour <= 23 else None
    if not 1 <= hour <= 12:
        return None
    if meridiem == "am":
        return 0 if hour == 12 else hour
    return 12 if hour == 12 else hour + 12


def _next_clock_time(now: datetime, hour: int, minute: int) -> int | None:
    if hour > 23 or minute > 59:
        return None
    target = now.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if target <= now:
        target += timedelta(days=1)
    return _to_ms(target)


def _to_ms(dt: datetime) -> int:
    return int(dt.timestamp() * 1000)
