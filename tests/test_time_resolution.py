from __future__ import annotations

from datetime import date, datetime, timezone

import pytest

from lara.core.time_resolution import make_clock, parse_clock, resolve_due_date, resolve_reminder_time


# A Monday afternoon.
NOW = datetime(2026, 10, 19, 14, 0, tzinfo=timezone.utc)
TODAY = NOW.date()


@pytest.mark.parametrize(
    "phrase,expected",
    [
        ("tomorrow at 5pm", datetime(2026, 10, 20, 17, 0)),
        ("tomorrow", datetime(2026, 10, 20, 9, 0)),
        ("tomorrow evening", datetime(2026, 10, 20, 19, 0)),
        ("tonight", datetime(2026, 10, 19, 21, 0)),
        ("this evening", datetime(2026, 10, 19, 19, 0)),
        ("5 pm", datetime(2026, 10, 19, 17, 0)),
        ("5 p m", datetime(2026, 10, 19, 17, 0)),
        ("17:45", datetime(2026, 10, 19, 17, 45)),
        ("noon tomorrow", datetime(2026, 10, 20, 12, 0)),
        ("on friday", datetime(2026, 10, 23, 9, 0)),
        ("monday at 10 30 am", datetime(2026, 10, 26, 10, 30)),
        ("next week", datetime(2026, 10, 26, 9, 0)),
        ("march 5", datetime(2027, 3, 5, 9, 0)),
        ("in 20 minutes", datetime(2026, 10, 19, 14, 20)),
        ("in an hour", datetime(2026, 10, 19, 15, 0)),
        (None, datetime(2026, 10, 19, 21, 0)),
    ],
)
def test_reminder_phrases_resolve_to_concrete_times(phrase, expected):
    assert resolve_reminder_time(phrase, NOW) == expected.replace(tzinfo=timezone.utc)


def test_passed_time_today_moves_to_tomorrow():
    assert resolve_reminder_time("9 am", NOW) == datetime(2026, 10, 20, 9, 0, tzinfo=timezone.utc)
    late = datetime(2026, 10, 19, 22, 30, tzinfo=timezone.utc)
    assert resolve_reminder_time("tonight", late) == datetime(2026, 10, 20, 21, 0, tzinfo=timezone.utc)


def test_named_day_is_never_rolled_forward():
    assert resolve_reminder_time("2026-10-19 at 9 am", NOW) == datetime(2026, 10, 19, 9, 0, tzinfo=timezone.utc)


@pytest.mark.parametrize(
    "phrase,expected",
    [
        ("tomorrow", date(2026, 10, 20)),
        ("today", date(2026, 10, 19)),
        ("friday", date(2026, 10, 23)),
        ("monday", date(2026, 10, 26)),
        ("next week", date(2026, 10, 26)),
        ("the 5th of march", date(2027, 3, 5)),
        ("2026-12-01", date(2026, 12, 1)),
        ("someday", date(2026, 10, 19)),
        (None, date(2026, 10, 19)),
    ],
)
def test_due_dates(phrase, expected):
    assert resolve_due_date(phrase, TODAY) == expected


def test_parse_clock():
    assert parse_clock("at 12 am") == (0, 0)
    assert parse_clock("12 pm") == (12, 0)
    assert parse_clock("midnight") == (0, 0)
    assert parse_clock("at 7") == (7, 0)
    assert parse_clock("13 pm") is None
    assert parse_clock("whenever") is None


def test_make_clock_uses_named_zone():
    assert make_clock("Asia/Kolkata")().utcoffset().total_seconds() == 5.5 * 3600
    assert make_clock(None)().tzinfo is not None


def test_timestamps_from_the_primary_tier_pass_through():
    assert resolve_reminder_time("2026-10-20T17:30:00", NOW) == datetime(2026, 10, 20, 17, 30, tzinfo=timezone.utc)
    stamped = resolve_reminder_time("2026-10-20T17:30:00+05:30", NOW)
    assert stamped.utcoffset().total_seconds() == 5.5 * 3600
