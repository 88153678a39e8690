"""
Tests for bookable slot computation.

Coverage:
- slot grid inside working hours with buffers
- existing bookings, planned (unwritten) bookings and exclusions
- staff exceptions, tenant closures, breaks and clipping to opening hours
- booking rules filtering slots
- nearest-slot search and single-slot checks
"""
from dataclasses import replace
from datetime import date, datetime, time, timedelta, timezone

import pytest

from salon_scheduler.db.enums import ExceptionKind
from salon_scheduler.services.availability_service import AvailabilityEngine
from salon_scheduler.services.conflict_detector import overlaps, padded_interval
from salon_scheduler.services.schedule_types import (
    BufferConfig,
    BusinessHours,
    ScheduleException,
    StaffSchedule,
)
from salon_scheduler.services.time_utils import Weekday

MONDAY = date(2030, 1, 7)


def _at(day: date, hour: int, minute: int = 0) -> datetime:
    return datetime(day.year, day.month, day.day, hour, minute, tzinfo=timezone.utc)


def _starts(slots) -> list[time]:
    return [s.start.astimezone(timezone.utc).time() for s in slots]


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def engine(store) -> AvailabilityEngine:
    return AvailabilityEngine(store)


@pytest.fixture
def buffered(store, tenant_id):
    store.set_rules(tenant_id, buffer_before_minutes=15, buffer_after_minutes=15)
    return store


# =============================================================================
# Slot grid
# =============================================================================

def test_slots_respect_buffer_after_at_day_end(engine, buffered, tenant_id, staff_id, now):
    slots = engine.compute_slots(tenant_id, staff_id, MONDAY, MONDAY, 60, now=now)[MONDAY]

    assert slots[0].start == _at(MONDAY, 9)
    assert slots[-1].start == _at(MONDAY, 15, 45)
    assert slots[-1].end == _at(MONDAY, 16, 45)
    assert len(slots) == 28


def test_slots_without_buffer_fill_to_close(engine, tenant_id, staff_id, now):
    slots = engine.compute_slots(tenant_id, staff_id, MONDAY, MONDAY, 60, now=now)[MONDAY]
    assert slots[-1].start == _at(MONDAY, 16)


def test_granularity(engine, tenant_id, staff_id, now):
    slots = engine.compute_slots(
        tenant_id, staff_id, MONDAY, MONDAY, 60, slot_granularity_minutes=60, now=now
    )[MONDAY]
    assert _starts(slots) == [time(h) for h in range(9, 17)]


def test_every_day_in_range_has_a_key(engine, tenant_id, staff_id, now):
    result = engine.compute_slots(tenant_id, staff_id, MONDAY, MONDAY + timedelta(days=6), 60, now=now)
    assert sorted(result) == [MONDAY + timedelta(days=i) for i in range(7)]
    assert result[MONDAY + timedelta(days=6)] == []  # Sunday


@pytest.mark.parametrize(
    "kwargs",
    [
        dict(date_from=MONDAY, date_to=MONDAY - timedelta(days=1), service_duration=60),
        dict(date_from=MONDAY, date_to=MONDAY, service_duration=0),
        dict(date_from=MONDAY, date_to=MONDAY, service_duration=60, slot_granularity_minutes=0),
    ],
)
def test_invalid_queries(engine, tenant_id, staff_id, kwargs):
    with pytest.raises(ValueError):
        engine.compute_slots(tenant_id, staff_id, **kwargs)


# =============================================================================
# Existing bookings
# =============================================================================

def test_existing_booking_blocks_padded_range(engine, buffered, tenant_id, staff_id, make_booking, now):
    buffered.add_booking(make_booking(_at(MONDAY, 11)))
    starts = _starts(engine.compute_slots(tenant_id, staff_id, MONDAY, MONDAY, 60, now=now)[MONDAY])

    assert time(9, 30) in starts
    assert time(9, 45) not in starts
    assert time(12, 15) not in starts
    assert time(12, 30) in starts


def test_slots_never_overlap_existing_bookings(engine, buffered, tenant_id, staff_id, make_booking, now):
    existing = [
        make_booking(_at(MONDAY, 9, 30), duration_minutes=45),
        make_booking(_at(MONDAY, 13), duration_minutes=90),
        make_booking(_at(MONDAY, 16), duration_minutes=30),
    ]
    for booking in existing:
        buffered.add_booking(booking)

    buffer = BufferConfig(15, 15)
    slots = engine.compute_slots(tenant_id, staff_id, MONDAY, MONDAY, 60, now=now)[MONDAY]
    assert slots
    for slot in slots:
        proposal = padded_interval(slot.start, 60, buffer)
        for booking in existing:
            assert not overlaps(proposal, padded_interval(booking.scheduled_at, booking.duration_minutes, buffer))


def test_excluded_booking_frees_its_slot(engine, tenant_id, staff_id, make_booking, store, now):
    booking = store.add_booking(make_booking(_at(MONDAY, 10)))
    blocked = _starts(engine.compute_slots(tenant_id, staff_id, MONDAY, MONDAY, 60, now=now)[MONDAY])
    freed = _starts(
        engine.compute_slots(
            tenant_id, staff_id, MONDAY, MONDAY, 60, now=now, exclude_booking_id=booking.id
        )[MONDAY]
    )
    assert time(10) not in blocked
    assert time(10) in freed


def test_planned_bookings_block_slots(engine, tenant_id, staff_id, make_booking, now):
    planned = [make_booking(_at(MONDAY, 9))]
    starts = _starts(
        engine.compute_slots(tenant_id, staff_id, MONDAY, MONDAY, 60, now=now, extra_occupied=planned)[MONDAY]
    )
    assert starts[0] == time(10)


# =============================================================================
# Schedules and exceptions
# =============================================================================

def test_staff_blocked_exception(engine, store, tenant_id, staff_id, now):
    schedule = store.get_staff_schedule(tenant_id, staff_id)
    store.add_staff(replace(schedule, exceptions=(ScheduleException(MONDAY, ExceptionKind.BLOCKED),)))
    assert engine.compute_slots(tenant_id, staff_id, MONDAY, MONDAY, 60, now=now)[MONDAY] == []


def test_staff_override_exception(engine, store, tenant_id, staff_id, now):
    schedule = store.get_staff_schedule(tenant_id, staff_id)
    store.add_staff(replace(schedule, exceptions=(
        ScheduleException(MONDAY, ExceptionKind.OVERRIDE, start=time(13), end=time(15)),
    )))
    starts = _starts(engine.compute_slots(tenant_id, staff_id, MONDAY, MONDAY, 60, now=now)[MONDAY])
    assert starts == [time(13), time(13, 15), time(13, 30), time(13, 45), time(14)]


def test_staff_hours_are_clipped_to_business_hours(engine, store, tenant_id, staff_id, now):
    store.add_staff(StaffSchedule(
        tenant_id=tenant_id,
        staff_id=staff_id,
        week={Weekday.MONDAY: ((time(7), time(21)),)},
    ))
    starts = _starts(engine.compute_slots(tenant_id, staff_id, MONDAY, MONDAY, 60, now=now)[MONDAY])
    assert starts[0] == time(9)
    assert starts[-1] == time(16)


def test_staff_split_shift(engine, store, tenant_id, staff_id, now):
    store.add_staff(StaffSchedule(
        tenant_id=tenant_id,
        staff_id=staff_id,
        week={Weekday.MONDAY: ((time(9), time(11)), (time(14), time(16)))},
    ))
    starts = _starts(
        engine.compute_slots(tenant_id, staff_id, MONDAY, MONDAY, 60, slot_granularity_minutes=60, now=now)[MONDAY]
    )
    assert starts == [time(9), time(10), time(14), time(15)]


def test_tenant_break_removes_slots(engine, store, tenant_id, staff_id, tenant_config, now):
    hours = dict(tenant_config.business_hours)
    hours[Weekday.MONDAY] = BusinessHours(open=time(9), close=time(17), breaks=((time(12), time(13)),))
    store.add_tenant(replace(tenant_config, business_hours=hours))

    starts = _starts(engine.compute_slots(tenant_id, staff_id, MONDAY, MONDAY, 60, now=now)[MONDAY])
    assert time(11) in starts
    assert time(11, 15) not in starts
    assert time(12) not in starts
    assert time(13) in starts


def test_tenant_closure_empties_day(engine, store, tenant_id, staff_id, tenant_config, now):
    store.add_tenant(replace(tenant_config, closures=(ScheduleException(MONDAY, ExceptionKind.BLOCKED),)))
    assert engine.compute_slots(tenant_id, staff_id, MONDAY, MONDAY, 60, now=now)[MONDAY] == []


def test_slots_follow_tenant_timezone(engine, store, tenant_id, staff_id, tenant_config, now):
    store.add_tenant(replace(tenant_config, timezone="Europe/Berlin"))
    slots = engine.compute_slots(tenant_id, staff_id, MONDAY, MONDAY, 60, now=now)[MONDAY]
    # 09:00 Berlin in January is 08:00 UTC
    assert slots[0].start.astimezone(timezone.utc) == _at(MONDAY, 8)


# =============================================================================
# Booking rules
# =============================================================================

def test_min_advance_filters_early_slots(engine, store, tenant_id, staff_id):
    store.set_rules(tenant_id, min_advance_hours=2)
    now = _at(MONDAY, 9, 10)
    starts = _starts(engine.compute_slots(tenant_id, staff_id, MONDAY, MONDAY, 60, now=now)[MONDAY])
    assert starts[0] == time(11, 15)


def test_same_day_disallowed(engine, store, tenant_id, staff_id):
    store.set_rules(tenant_id, allow_same_day=False)
    now = _at(MONDAY, 7)
    result = engine.compute_slots(tenant_id, staff_id, MONDAY, MONDAY + timedelta(days=1), 60, now=now)
    assert result[MONDAY] == []
    assert result[MONDAY + timedelta(days=1)]


# =============================================================================
# Nearest slot and single slot checks
# =============================================================================

def test_find_nearest_slot_skips_closed_days(engine, tenant_id, staff_id, now):
    sunday = datetime(2030, 1, 13, 0, 0, tzinfo=timezone.utc)
    slot = engine.find_nearest_slot(tenant_id, staff_id, 60, not_before=sunday, search_days=14, now=now)
    assert slot.start == _at(MONDAY + timedelta(days=7), 9)


def test_find_nearest_slot_with_preferred_time(engine, tenant_id, staff_id, now):
    slot = engine.find_nearest_slot(
        tenant_id, staff_id, 60, not_before=_at(MONDAY, 0), search_days=14, now=now,
        preferred_time=time(14),
    )
    assert slot.start == _at(MONDAY, 14)


def test_preferred_time_falls_back_to_first_slot_of_day(engine, tenant_id, staff_id, now):
    slot = engine.find_nearest_slot(
        tenant_id, staff_id, 60, not_before=_at(MONDAY, 0), search_days=14, now=now,
        preferred_time=time(19),
    )
    assert slot.start == _at(MONDAY, 9)


def test_find_nearest_slot_none_when_window_closed(engine, store, tenant_id, staff_id, tenant_config, now):
    closures = tuple(
        ScheduleException(MONDAY + timedelta(days=i), ExceptionKind.BLOCKED) for i in range(3)
    )
    store.add_tenant(replace(tenant_config, closures=closures))
    assert engine.find_nearest_slot(
        tenant_id, staff_id, 60, not_before=_at(MONDAY, 0), search_days=3, now=now
    ) is None


def test_is_slot_available_off_grid(engine, tenant_id, staff_id, now):
    assert engine.is_slot_available(tenant_id, staff_id, _at(MONDAY, 9, 7), 60, now=now)
    assert not engine.is_slot_available(tenant_id, staff_id, _at(MONDAY, 16, 30), 60, now=now)
    assert not engine.is_slot_available(tenant_id, staff_id, _at(MONDAY, 8), 60, now=now)


def test_is_slot_available_checks_conflicts(engine, store, tenant_id, staff_id, make_booking, now):
    store.add_booking(make_booking(_at(MONDAY, 10)))
    assert not engine.is_slot_available(tenant_id, staff_id, _at(MONDAY, 10, 30), 60, now=now)
    assert engine.is_slot_available(tenant_id, staff_id, _at(MONDAY, 11), 60, now=now)


def test_within_working_hours(store, tenant_id, staff_id, tenant_config):
    schedule = store.get_staff_schedule(tenant_id, staff_id)
    assert AvailabilityEngine.within_working_hours(tenant_config, schedule, _at(MONDAY, 16), 60)
    assert not AvailabilityEngine.within_working_hours(tenant_config, schedule, _at(MONDAY, 16, 15), 60)
