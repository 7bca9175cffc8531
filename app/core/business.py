# app/core/business.py
from __future__ import annotations

import math
from datetime import date, datetime, timedelta, timezone
from typing import Iterator, Protocol

from app.core.errors import InvalidRequestError

UTC = timezone.utc

# date.weekday(): 0=Mon .. 6=Sun
WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    def now(self) -> datetime:
        return datetime.now(UTC)


class FixedClock:
    """Clock pinned to an instant; advance() moves it forward."""

    def __init__(self, instant: datetime):
        self.instant = instant if instant.tzinfo else instant.replace(tzinfo=UTC)

    def now(self) -> datetime:
        return self.instant

    def advance(self, **kwargs) -> None:
        self.instant = self.instant + timedelta(**kwargs)


system_clock = SystemClock()


# ---------- time-of-day arithmetic (minutes since midnight) ----------

def time_to_minutes(value: str) -> int:
    try:
        hours, minutes = value.split(":")
        return int(hours) * 60 + int(minutes)
    except (AttributeError, ValueError):
        raise InvalidRequestError(f"Invalid time of day: {value!r}, expected HH:MM")


def minutes_to_time(minutes: int) -> str:
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def add_minutes(value: str, minutes: int) -> str:
    return minutes_to_time(time_to_minutes(value) + minutes)


def span_minutes(start: str, end: str) -> int:
    return time_to_minutes(end) - time_to_minutes(start)


# ---------- dates ----------

def weekday_name(day: date) -> str:
    return WEEKDAYS[day.weekday()]


def iter_dates(start: date, end: date) -> Iterator[date]:
    """Every calendar date in [start, end], inclusive."""
    cur = start
    while cur <= end:
        yield cur
        cur += timedelta(days=1)


# ---------- appointment instants ----------

def parse_instant(value: str) -> datetime:
    """
    Parse an ISO-8601 instant. Naive values are taken as UTC; no other
    timezone conversion happens here.
    """
    try:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (AttributeError, ValueError):
        raise InvalidRequestError(f"Invalid datetime: {value!r}, expected ISO-8601")
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt


def split_instant(value: str) -> tuple[date, str]:
    """(date, "HH:MM") taken from the text of the instant, before and after 'T'."""
    if "T" not in value:
        raise InvalidRequestError(f"Invalid datetime: {value!r}, expected YYYY-MM-DDTHH:MM")
    day_part, time_part = value.split("T", 1)
    try:
        day = date.fromisoformat(day_part)
    except ValueError:
        raise InvalidRequestError(f"Invalid date portion in {value!r}")
    start_time = time_part[:5]
    time_to_minutes(start_time)
    return day, start_time


def days_until(instant: datetime, now: datetime) -> int:
    return math.ceil((instant - now).total_seconds() / 86400)


def hours_until(instant: datetime, now: datetime) -> int:
    return math.ceil((instant - now).total_seconds() / 3600)
