import time
from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

import pytest

from marketclaw.scheduler.service import JobScheduler
from marketclaw.scheduler.timeparse import (
    is_one_shot,
    is_valid_cron,
    next_cron_run,
    parse_to_cron,
    parse_to_timestamp,
)

UTC = ZoneInfo("UTC")


def _ms(dt: datetime) -> int:
    return int(dt.timestamp() * 1000)


# ---------------------------------------------------------------------------
# parse_to_cron
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "phrase, expected",
    [
        ("every minute", "* * * * *"),
        ("every hour", "0 * * * *"),
        ("every day", "0 9 * * *"),
        ("daily", "0 9 * * *"),
        ("every week", "0 9 * * 1"),
        ("weekly", "0 9 * * 1"),
        ("every month", "0 9 1 * *"),
        ("monthly", "0 9 1 * *"),
        ("every 5 minutes", "*/5 * * * *"),
        ("every 1 minute", "*/1 * * * *"),
        ("every 2 hours", "0 */2 * * *"),
        ("at 14:30", "30 14 * * *"),
        ("at 09:05", "5 9 * * *"),
        ("at 9:00 on weekdays", "0 9 * * 1-5"),
    ],
)
def test_parse_to_cron_phrases(phrase: str, expected: str) -> None:
    assert parse_to_cron(phrase) == expected


def test_parse_to_cron_is_case_insensitive_and_trims() -> None:
    assert parse_to_cron("  Every HOUR ") == "0 * * * *"
    assert parse_to_cron("EVERY 10 Minutes") == "*/10 * * * *"


def test_parse_to_cron_passes_valid_cron_through() -> None:
    assert parse_to_cron("15 8 * * 1-5") == "15 8 * * 1-5"


@pytest.mark.parametrize(
    "phrase",
    ["gibberish", "every 0 minutes", "every 90 minutes", "at 25:00", "at 10:75", "0 9 * *"],
)
def test_parse_to_cron_unparseable(phrase: str) -> None:
    assert parse_to_cron(phrase) is None


def test_scheduler_exposes_parsers_statically() -> None:
    assert JobScheduler.parse_to_cron("every hour") == "0 * * * *"
    assert JobScheduler.is_one_shot("in 5 minutes") is True
    assert JobScheduler.parse_to_timestamp("nonsense") is None


# ---------------------------------------------------------------------------
# parse_to_timestamp
# ---------------------------------------------------------------------------


def test_at_time_before_target_resolves_today() -> None:
    now = datetime(2026, 3, 10, 8, 0, tzinfo=UTC)
    assert parse_to_timestamp("at 9:00", now) == _ms(datetime(2026, 3, 10, 9, 0, tzinfo=UTC))


def test_at_time_after_target_rolls_to_tomorrow() -> None:
    now = datetime(2026, 3, 10, 10, 0, tzinfo=UTC)
    assert parse_to_timestamp("at 9:00", now) == _ms(datetime(2026, 3, 11, 9, 0, tzinfo=UTC))


def test_at_time_exactly_now_rolls_forward() -> None:
    now = datetime(2026, 3, 10, 9, 0, tzinfo=UTC)
    assert parse_to_timestamp("at 9:00", now) == _ms(datetime(2026, 3, 11, 9, 0, tzinfo=UTC))


@pytest.mark.parametrize(
    "phrase, delta",
    [
        ("in 30 seconds", timedelta(seconds=30)),
        ("in 1 second", timedelta(seconds=1)),
        ("in 20 minutes", timedelta(minutes=20)),
        ("in 5 mins", timedelta(minutes=5)),
        ("in 2 hours", timedelta(hours=2)),
        ("in 1 hr", timedelta(hours=1)),
    ],
)
def test_relative_offsets(phrase: str, delta: timedelta) -> None:
    now = datetime(2026, 3, 10, 8, 0, 15, tzinfo=UTC)
    assert parse_to_timestamp(phrase, now) == _ms(now + delta)


def test_meridiem_times() -> None:
    now = datetime(2026, 3, 10, 8, 0, tzinfo=UTC)
    assert parse_to_timestamp("at 3pm", now) == _ms(datetime(2026, 3, 10, 15, 0, tzinfo=UTC))
    assert parse_to_timestamp("at 3:45 pm", now) == _ms(datetime(2026, 3, 10, 15, 45, tzinfo=UTC))
    assert parse_to_timestamp("at 12pm", now) == _ms(datetime(2026, 3, 10, 12, 0, tzinfo=UTC))
    # midnight has already passed today
    assert parse_to_timestamp("at 12am", now) == _ms(datetime(2026, 3, 11, 0, 0, tzinfo=UTC))
    assert parse_to_timestamp("at 7am", now) == _ms(datetime(2026, 3, 11, 7, 0, tzinfo=UTC))


def test_tomorrow_at() -> None:
    now = datetime(2026, 3, 10, 8, 0, tzinfo=UTC)
    assert parse_to_timestamp("tomorrow at 9:30", now) == _ms(
        datetime(2026, 3, 11, 9, 30, tzinfo=UTC)
    )
    assert parse_to_timestamp("Tomorrow at 9pm", now) == _ms(
        datetime(2026, 3, 11, 21, 0, tzinfo=UTC)
    )


def test_tonight_coerces_to_pm() -> None:
    now = datetime(2026, 3, 10, 8, 0, tzinfo=UTC)
    assert parse_to_timestamp("tonight at 8", now) == _ms(datetime(2026, 3, 10, 20, 0, tzinfo=UTC))
    assert parse_to_timestamp("tonight at 10:15", now) == _ms(
        datetime(2026, 3, 10, 22, 15, tzinfo=UTC)
    )
    assert parse_to_timestamp("tonight at 21:00", now) == _ms(
        datetime(2026, 3, 10, 21, 0, tzinfo=UTC)
    )


def test_tonight_rolls_forward_when_passed() -> None:
    now = datetime(2026, 3, 10, 21, 0, tzinfo=UTC)
    assert parse_to_timestamp("tonight at 8", now) == _ms(datetime(2026, 3, 11, 20, 0, tzinfo=UTC))


def test_iso_timestamps_are_taken_as_given() -> None:
    now = datetime(2026, 3, 10, 8, 0, tzinfo=UTC)
    assert parse_to_timestamp("2026-12-25T10:00:00+00:00", now) == _ms(
        datetime(2026, 12, 25, 10, 0, tzinfo=UTC)
    )


def test_iso_zulu_suffix() -> None:
    now = datetime(2026, 3, 10, 8, 0, tzinfo=UTC)
    expected = _ms(datetime(2026, 10, 20, 9, 0, tzinfo=UTC))
    assert parse_to_timestamp("2026-10-20T09:00:00Z", now) == expected
    assert parse_to_timestamp("2026-10-20T09:00:00z", now) == expected


@pytest.mark.parametrize("phrase", ["whenever", "at 13pm", "at 24:00", "in some minutes", "2026-13-45"])
def test_unparseable_timestamps(phrase: str) -> None:
    now = datetime(2026, 3, 10, 8, 0, tzinfo=UTC)
    assert parse_to_timestamp(phrase, now) is None


# ---------------------------------------------------------------------------
# is_one_shot / cron helpers
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "phrase, expected",
    [
        ("in 20 minutes", True),
        ("at 3pm", True),
        ("at 9:00", True),
        ("tomorrow at 9am", True),
        ("tonight at 8", True),
        ("2026-12-25T10:00:00", True),
        ("every day", False),
        ("every 5 minutes", False),
        ("daily", False),
        ("at 9:00 on weekdays", False),
        ("0 9 * * *", False),
    ],
)
def test_is_one_shot(phrase: str, expected: bool) -> None:
    assert is_one_shot(phrase) is expected


def test_is_valid_cron() -> None:
    assert is_valid_cron("0 9 * * *")
    assert is_valid_cron("*/15 * * * 1-5")
    assert not is_valid_cron("0 9 * *")
    assert not is_valid_cron("61 * * * *")
    assert not is_valid_cron("every day")
    assert not is_valid_cron(None)


def test_next_cron_run_is_true_next_occurrence() -> None:
    after = _ms(datetime(2026, 3, 10, 8, 0, tzinfo=UTC))
    assert next_cron_run("0 9 * * *", after, "UTC") == _ms(datetime(2026, 3, 10, 9, 0, tzinfo=UTC))
    # strictly after: a fire time equal to the base is skipped
    at_nine = _ms(datetime(2026, 3, 10, 9, 0, tzinfo=UTC))
    assert next_cron_run("0 9 * * *", at_nine, "UTC") == _ms(datetime(2026, 3, 11, 9, 0, tzinfo=UTC))
    # monthly schedules are far away, not a fixed placeholder
    assert next_cron_run("0 9 1 * *", after, "UTC") == _ms(datetime(2026, 4, 1, 9, 0, tzinfo=UTC))


@pytest.fixture
def new_york_local_time(monkeypatch):
    """Run with America/New_York as the process-local zone."""
    if not hasattr(time, "tzset"):
        pytest.skip("time.tzset is unavailable on this platform")
    monkeypatch.setenv("TZ", "America/New_York")
    time.tzset()
    yield
    monkeypatch.undo()
    time.tzset()


def test_next_cron_run_local_time_follows_dst(new_york_local_time) -> None:
    # Saturday 10:00 EDT; DST ends early Sunday 2026-11-01
    after = _ms(datetime(2026, 10, 31, 14, 0, tzinfo=UTC))
    fire = next_cron_run("0 9 * * *", after)
    # 09:00 EST is 14:00 UTC
    assert fire == _ms(datetime(2026, 11, 1, 14, 0, tzinfo=UTC))
    assert datetime.fromtimestamp(fire / 1000).hour == 9
