"""Staff availability - bookable slot computation.

Slots come from the staff member's working intervals (weekly schedule plus
date exceptions, clipped to the tenant's opening hours and breaks), minus
buffered existing bookings and unexpired slot holds, filtered by the
tenant's booking rules.

Configuration, staff schedule and bookings are read fresh on every call.
"""

import logging
from collections.abc import Iterable
from datetime import date, datetime, time, timedelta, timezone
from uuid import UUID

from salon_scheduler.core.structured_logging import build_log_context
from salon_scheduler.db.enums import ExceptionKind
from salon_scheduler.services.booking_rules import BookingRulesEngine
from salon_scheduler.services.business_hours import BusinessHoursResolver
from salon_scheduler.services.conflict_detector import has_conflict
from salon_scheduler.services.schedule_types import (
    Booking,
    SlotHold,
    StaffSchedule,
    TenantScheduleConfig,
    TimeSlot,
)
from salon_scheduler.services.scheduling_store import SchedulingStore
from salon_scheduler.services.time_utils import (
    Interval,
    Weekday,
    date_range,
    day_bounds,
    intersect_intervals,
    local_datetime,
    merge_intervals,
)

logger = logging.getLogger(__name__)

DEFAULT_SLOT_GRANULARITY_MINUTES = 15


def _interval(day: date, start: time, end: time, tz) -> Interval:
    return Interval(local_datetime(day, start, tz), local_datetime(day, end, tz))


def working_intervals(
    resolver: BusinessHoursResolver,
    schedule: StaffSchedule,
    day: date,
) -> list[Interval]:
    """
    When the staff member can work on ``day``.

    The staff exception for the date is applied first (blocked removes the
    day, override replaces the weekly blocks, extra_hours adds to them), then
    the result is clipped to the tenant's open intervals.
    """
    open_intervals = resolver.open_intervals(day)
    if not open_intervals:
        return []

    tz = resolver.tz
    weekly = [
        _interval(day, start, end, tz)
        for start, end in schedule.week.get(Weekday.from_date(day), ())
    ]

    exception = schedule.exception_for(day)
    if exception is None:
        staff_intervals = weekly
    elif exception.kind == ExceptionKind.BLOCKED:
        return []
    elif exception.kind == ExceptionKind.OVERRIDE:
        staff_intervals = [_interval(day, exception.start, exception.end, tz)]
    else:
        staff_intervals = weekly + [_interval(day, exception.start, exception.end, tz)]

    return intersect_intervals(merge_intervals(staff_intervals), open_intervals)


class AvailabilityEngine:
    """Compute bookable slots for one staff member."""

    def __init__(self, store: SchedulingStore):
        self.store = store

    # -------------------------------------------------------------------------
    # Loading
    # -------------------------------------------------------------------------

    def _occupied(
        self,
        config: TenantScheduleConfig,
        staff_id: UUID,
        date_from: date,
        date_to: date,
        exclude_booking_id: UUID | None,
        now: datetime,
    ) -> list[Booking | SlotHold]:
        """Active bookings plus unexpired holds around the date range."""
        tz = config.tz
        rules = config.rules
        margin = timedelta(minutes=rules.buffer_before_minutes + rules.buffer_after_minutes)
        range_start, _ = day_bounds(date_from, tz)
        _, range_end = day_bounds(date_to, tz)
        bookings = self.store.get_existing_bookings(
            config.tenant_id, staff_id, range_start - margin, range_end + margin
        )
        if exclude_booking_id is not None:
            bookings = [b for b in bookings if b.id != exclude_booking_id]
        holds = self.store.get_active_holds(
            config.tenant_id, staff_id, range_start - margin, range_end + margin, now
        )
        return [*bookings, *holds]

    # -------------------------------------------------------------------------
    # Slot computation
    # -------------------------------------------------------------------------

    def compute_slots(
        self,
        tenant_id: UUID,
        staff_id: UUID,
        date_from: date,
        date_to: date,
        service_duration: int,
        slot_granularity_minutes: int = DEFAULT_SLOT_GRANULARITY_MINUTES,
        now: datetime | None = None,
        exclude_booking_id: UUID | None = None,
        extra_occupied: Iterable[Booking] = (),
    ) -> dict[date, list[TimeSlot]]:
        """
        Bookable slots per local date, chronological.

        Every date in [date_from, date_to] has a key; closed days map to an
        empty list. ``extra_occupied`` holds planned but unwritten bookings
        (series sessions) that must block slots like real ones.
        """
        if date_to < date_from:
            raise ValueError("date_to must be on or after date_from")
        if service_duration <= 0:
            raise ValueError("Service duration must be positive")
        if slot_granularity_minutes <= 0:
            raise ValueError("Slot granularity must be positive")

        now = now or datetime.now(timezone.utc)
        config = self.store.get_tenant_config(tenant_id)
        schedule = self.store.get_staff_schedule(tenant_id, staff_id)
        resolver = BusinessHoursResolver(config)
        rules_engine = BookingRulesEngine(config.rules, config.tz)
        buffer = config.rules.buffer

        occupied = self._occupied(config, staff_id, date_from, date_to, exclude_booking_id, now)
        occupied.extend(b for b in extra_occupied if b.staff_id == staff_id)

        duration = timedelta(minutes=service_duration)
        step = timedelta(minutes=slot_granularity_minutes)
        buffer_after = timedelta(minutes=buffer.after_minutes)

        result: dict[date, list[TimeSlot]] = {}
        for day in date_range(date_from, date_to):
            slots: list[TimeSlot] = []
            for interval in working_intervals(resolver, schedule, day):
                candidate = interval.start
                while candidate + duration + buffer_after <= interval.end:
                    proposed = Interval(candidate, candidate + duration)
                    if not has_conflict(staff_id, proposed, occupied, buffer) and (
                        rules_engine.is_requested_time_allowed(candidate, now)
                    ):
                        slots.append(TimeSlot(start=proposed.start, end=proposed.end))
                    candidate += step
            result[day] = slots

        logger.debug(
            "Computed %d slots",
            sum(len(s) for s in result.values()),
            extra=build_log_context(tenant_id=tenant_id, staff_id=staff_id),
        )
        return result

    def find_nearest_slot(
        self,
        tenant_id: UUID,
        staff_id: UUID,
        service_duration: int,
        not_before: datetime,
        search_days: int,
        slot_granularity_minutes: int = DEFAULT_SLOT_GRANULARITY_MINUTES,
        now: datetime | None = None,
        preferred_time: time | None = None,
        exclude_booking_id: UUID | None = None,
        extra_occupied: Iterable[Booking] = (),
    ) -> TimeSlot | None:
        """
        Earliest slot starting at or after ``not_before`` within ``search_days``.

        With ``preferred_time`` the first slot at or after that local time of
        day is taken on the earliest day that has any slot; if that day has
        none that late, its first slot is used.
        """
        config = self.store.get_tenant_config(tenant_id)
        start_day = not_before.astimezone(config.tz).date()
        end_day = start_day + timedelta(days=max(search_days, 1) - 1)
        by_day = self.compute_slots(
            tenant_id,
            staff_id,
            start_day,
            end_day,
            service_duration,
            slot_granularity_minutes=slot_granularity_minutes,
            now=now,
            exclude_booking_id=exclude_booking_id,
            extra_occupied=extra_occupied,
        )
        for day in sorted(by_day):
            slots = [s for s in by_day[day] if s.start >= not_before]
            if not slots:
                continue
            if preferred_time is not None:
                for slot in slots:
                    if slot.start.astimezone(config.tz).time() >= preferred_time:
                        return slot
            return slots[0]
        return None

    def is_slot_available(
        self,
        tenant_id: UUID,
        staff_id: UUID,
        start: datetime,
        service_duration: int,
        now: datetime | None = None,
        exclude_booking_id: UUID | None = None,
        extra_occupied: Iterable[Booking] = (),
        check_rules: bool = True,
    ) -> bool:
        """Check one explicit start time, not aligned to the slot grid."""
        now = now or datetime.now(timezone.utc)
        config = self.store.get_tenant_config(tenant_id)
        schedule = self.store.get_staff_schedule(tenant_id, staff_id)
        return self.fits_schedule(
            config,
            schedule,
            start,
            service_duration,
            self._occupied(
                config,
                staff_id,
                start.astimezone(config.tz).date(),
                start.astimezone(config.tz).date(),
                exclude_booking_id,
                now,
            )
            + [b for b in extra_occupied if b.staff_id == staff_id],
            now=now,
            check_rules=check_rules,
        )

    @staticmethod
    def within_working_hours(
        config: TenantScheduleConfig,
        schedule: StaffSchedule,
        start: datetime,
        service_duration: int,
    ) -> bool:
        """Booking plus trailing buffer fits inside one working interval."""
        resolver = BusinessHoursResolver(config)
        end = start + timedelta(minutes=service_duration + config.rules.buffer_after_minutes)
        day = start.astimezone(config.tz).date()
        return any(
            interval.start <= start and end <= interval.end
            for interval in working_intervals(resolver, schedule, day)
        )

    @classmethod
    def fits_schedule(
        cls,
        config: TenantScheduleConfig,
        schedule: StaffSchedule,
        start: datetime,
        service_duration: int,
        occupied: Iterable[Booking | SlotHold],
        now: datetime,
        check_rules: bool = True,
    ) -> bool:
        if not cls.within_working_hours(config, schedule, start, service_duration):
            return False
        proposed = Interval(start, start + timedelta(minutes=service_duration))
        if has_conflict(schedule.staff_id, proposed, occupied, config.rules.buffer):
            return False
        if check_rules:
            return BookingRulesEngine(config.rules, config.tz).is_requested_time_allowed(start, now)
        return True
