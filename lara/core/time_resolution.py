from __future__ import annotations

import re
from datetime import date, datetime, time, timedelta
from typing import Callable, Optional, Tuple
from zoneinfo import ZoneInfo

Clock = Callable[[], datetime]

# Hour used when a phrase names a day but no clock time.
DEFAULT_HOURS = {
    "none": 21,
    "today": 21,
    "tomorrow": 9,
    "day_after_tomorrow": 9,
    "next_week": 9,
    "weekday": 9,
    "date": 9,
}
PART_OF_DAY_HOURS = {
    "morning": 9,
    "afternoon": 15,
    "evening": 19,
    "tonight": 21,
    "night": 21,
}

# Days the user named outright; a time on them that has already passed is not rolled forward.
_EXPLICIT_DAYS = {"tomorrow", "day_after_tomorrow", "next_week", "weekday", "date"}

_WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")
_MONTHS = {
    "january": 1, "jan": 1, "february": 2, "feb": 2, "march": 3, "mar": 3, "april": 4, "apr": 4,
    "may": 5, "june": 6, "jun": 6, "july": 7, "jul": 7, "august": 8, "aug": 8,
    "september": 9, "sep": 9, "sept": 9, "october": 10, "oct": 10, "november": 11, "nov": 11,
    "december": 12, "dec": 12,
}
_NUMBER_WORDS = {
    "a": 1, "an": 1, "one": 1, "two": 2, "three": 3, "four": 4, "five": 5, "ten": 10,
    "fifteen": 15, "twenty": 20, "thirty": 30, "forty five": 45,
}

_MONTH_ALT = "|".join(sorted(_MONTHS, key=len, reverse=True))
_ISO_DATE = re.compile(r"\b(\d{4})-(\d{2})-(\d{2})\b")
_MONTH_DAY = re.compile(r"\b(?P<month>" + _MONTH_ALT + r")\.?\s+(?P<day>\d{1,2})(?:st|nd|rd|th)?\b")
_DAY_MONTH = re.compile(r"\b(?P<day>\d{1,2})(?:st|nd|rd|th)?\s+(?:of\s+)?(?P<month>" + _MONTH_ALT + r")\b")
_HALF_HOUR = re.compile(r"\bin\s+half\s+an?\s+hour\b")
_OFFSET = re.compile(
    r"\bin\s+(?P<n>\d+|forty five|" + "|".join(k for k in _NUMBER_WORDS if k != "forty five") + r")"
    r"\s+(?P<unit>minute|min|hour|hr|day|week)s?\b"
)
_CLOCK_12H = re.compile(r"\b(?P<hour>\d{1,2})(?:[:\s](?P<minute>[0-5]\d))?\s*(?P<period>[ap])\.?\s?m\b\.?")
_CLOCK_24H = re.compile(r"\b(?P<hour>[01]?\d|2[0-3]):(?P<minute>[0-5]\d)\b")
_CLOCK_BARE = re.compile(r"\b(?:at|by)\s+(?P<hour>\d{1,2})\b")


def local_clock() -> datetime:
    return datetime.now().astimezone()


def make_clock(timezone: Optional[str]) -> Clock:
    """A clock in the named IANA zone, or the system zone when none is given."""
    if not timezone:
        return local_clock
    zone = ZoneInfo(timezone)
    return lambda: datetime.now(zone)


def _clean(phrase: Optional[str]) -> str:
    return " ".join((phrase or "").lower().replace(",", " ").split())


def _offset(text: str) -> Optional[timedelta]:
    if _HALF_HOUR.search(text):
        return timedelta(minutes=30)
    m = _OFFSET.search(text)
    if not m:
        return None
    raw = m.group("n")
    n = int(raw) if raw.isdigit() else _NUMBER_WORDS[raw]
    unit = m.group("unit")
    if unit in {"minute", "min"}:
        return timedelta(minutes=n)
    if unit in {"hour", "hr"}:
        return timedelta(hours=n)
    if unit == "day":
        return timedelta(days=n)
    return timedelta(weeks=n)


def _calendar_date(text: str, today: date) -> Tuple[Optional[date], str]:
    """Explicit calendar dates; returns the date and the text with it removed."""
    m = _ISO_DATE.search(text)
    if m:
        try:
            return date(int(m.group(1)), int(m.group(2)), int(m.group(3))), text[: m.start()] + text[m.end():]
        except ValueError:
            return None, text
    for pattern in (_MONTH_DAY, _DAY_MONTH):
        m = pattern.search(text)
        if not m:
            continue
        try:
            day = date(today.year, _MONTHS[m.group("month")], int(m.group("day")))
        except ValueError:
            return None, text
        if day < today:
            try:
                day = day.replace(year=today.year + 1)
            except ValueError:
                return None, text
        return day, text[: m.start()] + text[m.end():]
    return None, text


def resolve_day(phrase: Optional[str], today: date) -> Tuple[date, str, str]:
    """
    Resolve the day a spoken phrase refers to.

    Returns (day, kind, rest) where kind says how the day was found ("none" when
    the phrase names no day, which means today) and rest is the phrase with any
    calendar date removed, ready for clock parsing.
    """
    text = _clean(phrase)
    day, rest = _calendar_date(text, today)
    if day is not None:
        return day, "date", rest
    if "day after tomorrow" in text:
        return today + timedelta(days=2), "day_after_tomorrow", text
    if "tomorrow" in text:
        return today + timedelta(days=1), "tomorrow", text
    if "next week" in text:
        return today + timedelta(days=7 - today.weekday()), "next_week", text
    for index, name in enumerate(_WEEKDAYS):
        if re.search(r"\b" + name + r"\b", text):
            # Naming today's weekday means the one a week away.
            ahead = (index - today.weekday()) % 7 or 7
            return today + timedelta(days=ahead), "weekday", text
    if "today" in text or "tonight" in text:
        return today, "today", text
    return today, "none", text


def parse_clock(phrase: Optional[str]) -> Optional[Tuple[int, int]]:
    text = _clean(phrase)
    if re.search(r"\bnoon\b|\bmidday\b", text):
        return 12, 0
    if re.search(r"\bmidnight\b", text):
        return 0, 0
    m = _CLOCK_12H.search(text)
    if m:
        hour = int(m.group("hour"))
        minute = int(m.group("minute") or 0)
        if not 1 <= hour <= 12:
            return None
        if m.group("period") == "p" and hour != 12:
            hour += 12
        elif m.group("period") == "a" and hour == 12:
            hour = 0
        return hour, minute
    m = _CLOCK_24H.search(text)
    if m:
        return int(m.group("hour")), int(m.group("minute"))
    m = _CLOCK_BARE.search(text)
    if m and int(m.group("hour")) <= 23:
        return int(m.group("hour")), 0
    return None


def _part_of_day_hour(text: str) -> Optional[int]:
    for word, hour in PART_OF_DAY_HOURS.items():
        if re.search(r"\b" + word + r"\b", text):
            return hour
    return None


def resolve_reminder_time(phrase: Optional[str], now: datetime) -> datetime:
    """
    Concrete time for a spoken reminder phrase such as "tomorrow at 5pm",
    "tonight", "on friday" or "in 20 minutes".

    A day without a clock time gets the default hour for that day or part of the
    day (tomorrow 9:00, evening 19:00, tonight 21:00); no phrase at all means
    today at 21:00. A time that has already passed today moves to the next day
    unless the phrase named the day outright.
    """
    text = _clean(phrase)
    try:
        exact = datetime.fromisoformat((phrase or "").strip())
    except ValueError:
        exact = None
    # Only a full timestamp; a bare date still gets the default hour below.
    if exact is not None and ":" in text:
        return exact if exact.tzinfo is not None else exact.replace(tzinfo=now.tzinfo)
    offset = _offset(text)
    if offset is not None:
        return (now + offset).replace(second=0, microsecond=0)

    day, kind, rest = resolve_day(text, now.date())
    clock = parse_clock(rest)
    if clock is None:
        part = _part_of_day_hour(rest)
        clock = (part if part is not None else DEFAULT_HOURS[kind], 0)
    when = datetime.combine(day, time(clock[0], clock[1]), tzinfo=now.tzinfo)
    if when <= now and kind not in _EXPLICIT_DAYS:
        when += timedelta(days=1)
    return when


def resolve_due_date(phrase: Optional[str], today: date) -> date:
    """Due date for a spoken task phrase; anything unrecognised is due today."""
    day, _kind, _rest = resolve_day(phrase, today)
    return day
