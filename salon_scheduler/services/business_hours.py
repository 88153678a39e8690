"""Tenant opening hours resolution.

Answers "is the salon open on this date, and when" from the weekly
business hours plus tenant-wide schedule exceptions (closures, re-timed
days, extra hours).
"""

from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo

from salon_scheduler.db.enums import ExceptionKind
from salon_scheduler.services.schedule_types import (
    BusinessHours,
    ScheduleException,
    TenantScheduleConfig,
)
from salon_scheduler.services.time_utils import Interval, Weekday, local_datetime


NEXT_OPEN_LOOKAHEAD_DAYS = 7


class BusinessHoursResolver:
    """Resolve effective opening hours for one tenant."""

    def __init__(self, config: TenantScheduleConfig):
        self.config = config
        self.tz: ZoneInfo = config.tz

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    def _weekly(self, day: date) -> BusinessHours:
        return self.config.business_hours[Weekday.from_date(day)]

    def _closure_for(self, day: date) -> ScheduleException | None:
        matches = [c for c in self.config.closures if c.exception_date == day]
        return matches[-1] if matches else None

    def is_open(self, day: date) -> bool:
        return self.hours_for(day) is not None

    def hours_for(self, day: date) -> tuple[time, time] | None:
        """Effective (open, close) for the date, or None when closed."""
        weekly = self._weekly(day)
        exception = self._closure_for(day)

        if exception is not None:
            if exception.kind == ExceptionKind.BLOCKED:
                return None
            if exception.kind == ExceptionKind.OVERRIDE:
                return exception.start, exception.end
            if exception.kind == ExceptionKind.EXTRA_HOURS:
                if weekly.closed:
                    return exception.start, exception.end
                return min(weekly.open, exception.start), max(weekly.close, exception.end)

        if weekly.closed:
            return None
        return weekly.open, weekly.close

    def breaks_for(self, day: date) -> list[tuple[time, time]]:
        """Tenant-wide breaks inside the effective hours of the date."""
        hours = self.hours_for(day)
        if hours is None:
            return []
        open_at, close_at = hours
        return [
            (start, end)
            for start, end in self._weekly(day).breaks
            if start >= open_at and end <= close_at
        ]

    def open_intervals(self, day: date) -> list[Interval]:
        """Aware intervals the salon is open on the date, breaks removed."""
        hours = self.hours_for(day)
        if hours is None:
            return []
        open_at, close_at = hours
        intervals = []
        cursor = open_at
        for start, end in sorted(self.breaks_for(day)):
            if start > cursor:
                intervals.append(
                    Interval(local_datetime(day, cursor, self.tz), local_datetime(day, start, self.tz))
                )
            cursor = max(cursor, end)
        if cursor < close_at:
            intervals.append(
                Interval(local_datetime(day, cursor, self.tz), local_datetime(day, close_at, self.tz))
            )
        return intervals

    # -------------------------------------------------------------------------
    # Search
    # -------------------------------------------------------------------------

    def next_open_moment(self, after: datetime) -> tuple[date, time] | None:
        """
        Earliest local (date, time) at or after ``after`` when the salon is open.

        Looks at the current day and up to 7 following days. Returns None if
        the tenant has no open time in that window.
        """
        local = after.astimezone(self.tz)
        for offset in range(NEXT_OPEN_LOOKAHEAD_DAYS + 1):
            day = local.date() + timedelta(days=offset)
            for interval in self.open_intervals(day):
                if interval.end <= local:
                    continue
                moment = max(interval.start, local).astimezone(self.tz)
                return moment.date(), moment.time().replace(tzinfo=None)
        return None
