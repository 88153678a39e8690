"""Time and calendar helpers for scheduling.

Pure functions only: weekday mapping, "HH:MM" parsing, timezone-aware
date/time combination, and half-open interval arithmetic.
"""

import re
from datetime import date, datetime, time, timedelta
from enum import IntEnum
from typing import Iterator, NamedTuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from salon_scheduler.services.scheduling_errors import InvalidConfigError


DURATION_INCREMENT_MINUTES = 15
MIN_DURATION_MINUTES = 15

_HHMM_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)(?::([0-5]\d))?$")


# =============================================================================
# Weekdays
# =============================================================================

class Weekday(IntEnum):
    """Day of week, ISO order (Monday=0, Sunday=6) like ``date.weekday()``."""

    MONDAY = 0
    TUESDAY = 1
    WEDNESDAY = 2
    THURSDAY = 3
    FRIDAY = 4
    SATURDAY = 5
    SUNDAY = 6

    @property
    def label(self) -> str:
        return self.name.lower()

    @classmethod
    def from_date(cls, value: date) -> "Weekday":
        return cls(value.weekday())

    @classmethod
    def from_index(cls, index: int) -> "Weekday":
        """Monday=0 index, as stored in staff schedule rules."""
        try:
            return cls(int(index))
        except (TypeError, ValueError):
            raise InvalidConfigError(f"Invalid weekday index: {index!r}")

    @classmethod
    def from_sunday_index(cls, index: int) -> "Weekday":
        """Sunday=0 index, as used by legacy business-hours payloads."""
        try:
            value = int(index)
        except (TypeError, ValueError):
            raise InvalidConfigError(f"Invalid weekday index: {index!r}")
        if not 0 <= value <= 6:
            raise InvalidConfigError(f"Invalid weekday index: {index!r}")
        return cls((value - 1) % 7)

    @classmethod
    def from_name(cls, name: str) -> "Weekday":
        try:
            return cls[name.strip().upper()]
        except (AttributeError, KeyError):
            raise InvalidConfigError(f"Invalid weekday name: {name!r}")


def weekday_name(index: int) -> str:
    """Map a Monday=0 day index to its lowercase English name."""
    return Weekday.from_index(index).label


# =============================================================================
# Time of day
# =============================================================================

def parse_hhmm(value: str) -> time:
    """Parse "HH:MM" (or "HH:MM:SS") into a time. Malformed input is a config error."""
    if not isinstance(value, str):
        raise InvalidConfigError(f"Invalid time value: {value!r}")
    match = _HHMM_RE.match(value.strip())
    if not match:
        raise InvalidConfigError(f"Invalid time format (expected HH:MM): {value!r}")
    hours, minutes, seconds = match.groups()
    return time(int(hours), int(minutes), int(seconds or 0))


def format_hhmm(value: time) -> str:
    return value.strftime("%H:%M")


def time_to_minutes(value: time) -> int:
    return value.hour * 60 + value.minute


def minutes_to_time(minutes: int) -> time:
    if not 0 <= minutes < 24 * 60:
        raise ValueError(f"Minutes out of range for a time of day: {minutes}")
    return time(minutes // 60, minutes % 60)


def validate_duration(minutes: int) -> bool:
    """Durations are whole quarter hours, at least 15 minutes."""
    return minutes >= MIN_DURATION_MINUTES and minutes % DURATION_INCREMENT_MINUTES == 0


def round_duration(minutes: int) -> int:
    """Round to the nearest quarter hour (minimum 15)."""
    if minutes < MIN_DURATION_MINUTES:
        return MIN_DURATION_MINUTES
    return int(round(minutes / DURATION_INCREMENT_MINUTES)) * DURATION_INCREMENT_MINUTES


# =============================================================================
# Dates and timezones
# =============================================================================

def parse_timezone(name: str) -> ZoneInfo:
    """Resolve an IANA timezone name. Unknown names are a config error."""
    if not name:
        raise InvalidConfigError("Timezone is required")
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        raise InvalidConfigError(f"Unknown timezone: {name!r}")


def local_datetime(day: date, at: time, tz: ZoneInfo) -> datetime:
    """Combine a local date and time of day into an aware datetime."""
    return datetime.combine(day, at, tzinfo=tz)


def date_range(start: date, end: date) -> Iterator[date]:
    """Yield each date from start to end, inclusive."""
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def week_bounds(day: date) -> tuple[date, date]:
    """Monday and Sunday of the ISO week containing ``day``."""
    monday = day - timedelta(days=day.weekday())
    return monday, monday + timedelta(days=6)


def day_bounds(day: date, tz: ZoneInfo) -> tuple[datetime, datetime]:
    """Half-open [start, end) of a local calendar day."""
    start = local_datetime(day, time.min, tz)
    end = local_datetime(day + timedelta(days=1), time.min, tz)
    return start, end


# =============================================================================
# Intervals
# =============================================================================

class Interval(NamedTuple):
    """Half-open interval [start, end)."""
    start: datetime
    end: datetime

    @property
    def is_empty(self) -> bool:
        return self.end <= self.start


def merge_intervals(intervals: list[Interval]) -> list[Interval]:
    """Sort and merge overlapping or touching intervals."""
    merged: list[Interval] = []
    for interval in sorted(i for i in intervals if not i.is_empty):
        if merged and interval.start <= merged[-1].end:
            last = merged[-1]
            merged[-1] = Interval(last.start, max(last.end, interval.end))
        else:
            merged.append(interval)
    return merged


def intersect_intervals(left: list[Interval], right: list[Interval]) -> list[Interval]:
    """Intersection of two interval sets."""
    result: list[Interval] = []
    for a in merge_intervals(left):
        for b in merge_intervals(right):
            start = max(a.start, b.start)
            end = min(a.end, b.end)
            if start < end:
                result.append(Interval(start, end))
    return merge_intervals(result)


def subtract_intervals(base: list[Interval], cuts: list[Interval]) -> list[Interval]:
    """Remove every cut from the base intervals."""
    remaining = merge_intervals(base)
    for cut in merge_intervals(cuts):
        next_remaining: list[Interval] = []
        for interval in remaining:
            if cut.end <= interval.start or cut.start >= interval.end:
                next_remaining.append(interval)
                continue
            if interval.start < cut.start:
                next_remaining.append(Interval(interval.start, cut.start))
            if cut.end < interval.end:
                next_remaining.append(Interval(cut.end, interval.end))
        remaining = next_remaining
    return remaining
