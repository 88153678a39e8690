"""
Tests for treatment series scheduling.

Coverage:
- session placement, spacing after a slipped session, preferred time
- all-or-nothing creation (infeasible series, storage failure, client caps)
- staff fallback when no preferred staff member is given
- pause / resume / cancel lifecycle and completion
- rescheduling a single session and replacing a missed one
"""
import uuid
from dataclasses import replace
from datetime import date, datetime, time, timedelta, timezone

import pytest

from salon_scheduler.db.enums import BookingStatus, ExceptionKind, SeriesStatus
from salon_scheduler.services.schedule_types import ScheduleException
from salon_scheduler.services.scheduling_errors import (
    BookingRuleViolation,
    InvalidStateError,
    NotFoundError,
    SchedulingInfeasibleError,
    SlotUnavailableError,
    StorageUnavailableError,
)
from salon_scheduler.services.series_service import TreatmentSeriesScheduler

MONDAY = date(2030, 1, 7)


def _at(day: date, hour: int, minute: int = 0) -> datetime:
    return datetime(day.year, day.month, day.day, hour, minute, tzinfo=timezone.utc)


def _block_days(store, tenant_id, staff_id, first: date, days: int) -> None:
    schedule = store.get_staff_schedule(tenant_id, staff_id)
    blocked = tuple(
        ScheduleException(first + timedelta(days=i), ExceptionKind.BLOCKED) for i in range(days)
    )
    store.add_staff(replace(schedule, exceptions=schedule.exceptions + blocked))


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def scheduler(store, locks) -> TreatmentSeriesScheduler:
    return TreatmentSeriesScheduler(store, locks=locks, search_window_days=14)


@pytest.fixture
def create(scheduler, tenant_id, client_id, service_id, staff_id, now):
    """Create a series with defaults; keyword arguments override them."""

    def _create(**overrides):
        kwargs = dict(
            total_sessions=6,
            interval_days=7,
            first_session_date=MONDAY,
            preferred_staff_id=staff_id,
            now=now,
        )
        kwargs.update(overrides)
        return scheduler.create_series(tenant_id, client_id, service_id, **kwargs)

    return _create


# =============================================================================
# Creation
# =============================================================================

def test_six_weekly_sessions(create, store, staff_id):
    series, sessions = create()

    assert series.status == SeriesStatus.ACTIVE
    assert series.staff_id == staff_id
    assert [b.series_session_number for b in sessions] == [1, 2, 3, 4, 5, 6]
    assert [b.scheduled_at for b in sessions] == [
        _at(MONDAY + timedelta(weeks=i), 9) for i in range(6)
    ]
    assert all(b.status == BookingStatus.CONFIRMED for b in sessions)
    assert len(store.list_series_bookings(series.tenant_id, series.id)) == 6


def test_sessions_wait_for_approval_when_required(create, store, tenant_id):
    store.set_rules(tenant_id, require_approval=True)
    _, sessions = create(total_sessions=2)
    assert all(b.status == BookingStatus.SCHEDULED for b in sessions)


def test_slipped_session_pushes_later_ones(create, store, tenant_id, staff_id):
    _block_days(store, tenant_id, staff_id, MONDAY + timedelta(days=7), 1)
    _, sessions = create(total_sessions=3)

    days = [b.scheduled_at.date() for b in sessions]
    assert days == [date(2030, 1, 7), date(2030, 1, 15), date(2030, 1, 22)]
    for earlier, later in zip(days, days[1:]):
        assert (later - earlier).days >= 7


def test_existing_booking_moves_session_later_same_day(create, store, make_booking):
    store.add_booking(make_booking(_at(MONDAY + timedelta(days=7), 9), client_id=uuid.uuid4()))
    _, sessions = create(total_sessions=2)
    assert sessions[1].scheduled_at == _at(MONDAY + timedelta(days=7), 10)


def test_preferred_time(create):
    _, sessions = create(total_sessions=3, preferred_time=time(14))
    assert all(b.scheduled_at.time() == time(14) for b in sessions)


def test_custom_dates_fix_first_sessions(create):
    _, sessions = create(total_sessions=3, custom_dates=[_at(date(2030, 1, 8), 10, 30)])
    assert sessions[0].scheduled_at == _at(date(2030, 1, 8), 10, 30)
    assert sessions[1].scheduled_at.date() >= date(2030, 1, 15)


def test_custom_dates_too_close_are_infeasible(create, store):
    with pytest.raises(SchedulingInfeasibleError) as exc_info:
        create(total_sessions=2, custom_dates=[_at(MONDAY, 10), _at(MONDAY + timedelta(days=3), 10)])
    assert exc_info.value.session_number == 2
    assert store.series == {}


def test_infeasible_series_writes_nothing(create, store, tenant_id, staff_id):
    _block_days(store, tenant_id, staff_id, MONDAY + timedelta(days=14), 14)

    with pytest.raises(SchedulingInfeasibleError) as exc_info:
        create()

    assert exc_info.value.session_number == 3
    assert exc_info.value.to_detail()["session_number"] == 3
    assert store.series == {}
    assert store.bookings == {}


def test_storage_failure_writes_nothing(create, store):
    store.fail_writes = True
    with pytest.raises(StorageUnavailableError):
        create(total_sessions=2)
    assert store.bookings == {}


def test_client_weekly_cap_counts_planned_sessions(create, store, tenant_id):
    store.set_rules(tenant_id, max_bookings_per_client_per_week=1)
    with pytest.raises(BookingRuleViolation):
        create(total_sessions=2, interval_days=3)
    assert store.bookings == {}


def test_falls_back_to_next_qualified_staff(
    create, store, add_staff_member, tenant_id, service_id, staff_id
):
    other_staff = uuid.uuid4()
    add_staff_member(other_staff)
    store.add_service(store.get_service(tenant_id, service_id), [staff_id, other_staff])
    _block_days(store, tenant_id, staff_id, MONDAY, 60)

    series, sessions = create(total_sessions=2, preferred_staff_id=None)

    assert series.staff_id == other_staff
    assert {b.staff_id for b in sessions} == {other_staff}


def test_no_qualified_staff(create, store, tenant_id, service_id):
    store.add_service(store.get_service(tenant_id, service_id), [])
    with pytest.raises(SchedulingInfeasibleError):
        create(preferred_staff_id=None)


@pytest.mark.parametrize(
    "overrides",
    [dict(total_sessions=0), dict(interval_days=0), dict(total_sessions=1, custom_dates=[
        _at(MONDAY, 9), _at(MONDAY + timedelta(days=7), 9)
    ])],
)
def test_invalid_series_arguments(create, overrides):
    with pytest.raises(ValueError):
        create(**overrides)


# =============================================================================
# Lifecycle
# =============================================================================

def test_pause_and_resume(create, scheduler, tenant_id, now):
    series, _ = create(total_sessions=2)

    paused = scheduler.pause_series(tenant_id, series.id, now=now)
    assert paused.status == SeriesStatus.PAUSED
    assert paused.paused_at == now
    with pytest.raises(InvalidStateError):
        scheduler.pause_series(tenant_id, series.id, now=now)

    resumed = scheduler.resume_series(tenant_id, series.id)
    assert resumed.status == SeriesStatus.ACTIVE
    assert resumed.paused_at is None
    with pytest.raises(InvalidStateError):
        scheduler.resume_series(tenant_id, series.id)


def test_cancel_keeps_completed_sessions(create, scheduler, orchestrator, tenant_id, now):
    series, sessions = create(total_sessions=3)
    for booking in sessions[:2]:
        orchestrator.update_booking_status(tenant_id, booking.id, BookingStatus.COMPLETED, now=now)

    cancelled, after = scheduler.cancel_series(tenant_id, series.id, reason="Moved away", now=now)

    assert cancelled.status == SeriesStatus.CANCELLED
    assert cancelled.cancelled_at == now
    assert [b.status for b in after] == [
        BookingStatus.COMPLETED,
        BookingStatus.COMPLETED,
        BookingStatus.CANCELLED,
    ]
    assert after[2].cancellation_reason == "Moved away"

    with pytest.raises(InvalidStateError):
        scheduler.cancel_series(tenant_id, series.id, now=now)


def test_paused_series_can_be_cancelled(create, scheduler, tenant_id, now):
    series, _ = create(total_sessions=2)
    scheduler.pause_series(tenant_id, series.id, now=now)
    cancelled, sessions = scheduler.cancel_series(tenant_id, series.id, now=now)
    assert cancelled.status == SeriesStatus.CANCELLED
    assert all(b.status == BookingStatus.CANCELLED for b in sessions)


def test_series_completes_with_last_session(create, orchestrator, store, tenant_id, now):
    series, sessions = create(total_sessions=2)

    orchestrator.update_booking_status(tenant_id, sessions[0].id, BookingStatus.COMPLETED, now=now)
    assert store.get_series(tenant_id, series.id).status == SeriesStatus.ACTIVE

    orchestrator.update_booking_status(tenant_id, sessions[1].id, BookingStatus.COMPLETED, now=now)
    completed = store.get_series(tenant_id, series.id)
    assert completed.status == SeriesStatus.COMPLETED
    assert completed.completed_at == now


def test_series_completes_after_a_cancelled_session(create, orchestrator, store, tenant_id, now):
    series, sessions = create(total_sessions=3)

    orchestrator.cancel_booking(tenant_id, sessions[0].id, reason="Sick", now=now)
    orchestrator.update_booking_status(tenant_id, sessions[1].id, BookingStatus.COMPLETED, now=now)
    assert store.get_series(tenant_id, series.id).status == SeriesStatus.ACTIVE

    orchestrator.update_booking_status(tenant_id, sessions[2].id, BookingStatus.COMPLETED, now=now)
    assert store.get_series(tenant_id, series.id).status == SeriesStatus.COMPLETED


def test_cancelling_the_last_open_session_completes_series(create, orchestrator, store, tenant_id, now):
    series, sessions = create(total_sessions=2)
    orchestrator.update_booking_status(tenant_id, sessions[0].id, BookingStatus.COMPLETED, now=now)

    orchestrator.cancel_booking(tenant_id, sessions[1].id, now=now)

    completed = store.get_series(tenant_id, series.id)
    assert completed.status == SeriesStatus.COMPLETED
    assert completed.completed_at == now


def test_series_with_every_session_cancelled_is_cancelled(create, orchestrator, store, tenant_id, now):
    series, sessions = create(total_sessions=2)
    for booking in sessions:
        orchestrator.cancel_booking(tenant_id, booking.id, now=now)

    cancelled = store.get_series(tenant_id, series.id)
    assert cancelled.status == SeriesStatus.CANCELLED
    assert cancelled.cancelled_at == now


def test_unreplaced_no_show_keeps_series_open(create, scheduler, orchestrator, store, tenant_id, now):
    series, sessions = create(total_sessions=2)
    orchestrator.update_booking_status(tenant_id, sessions[0].id, BookingStatus.NO_SHOW, now=now)
    orchestrator.cancel_booking(tenant_id, sessions[1].id, now=now)

    assert store.get_series(tenant_id, series.id).status == SeriesStatus.ACTIVE
    replacement = scheduler.replace_missed_session(tenant_id, series.id, sessions[0].id, now=now)
    assert replacement.series_session_number == 3


# =============================================================================
# Session changes
# =============================================================================

def test_reschedule_session_moves_only_that_session(create, scheduler, tenant_id, now):
    series, sessions = create(total_sessions=3)
    new_start = _at(MONDAY + timedelta(days=8), 11)

    moved = scheduler.reschedule_session(tenant_id, series.id, sessions[1].id, new_start, now=now)

    assert moved.scheduled_at == new_start
    _, after = scheduler.get_series(tenant_id, series.id)
    assert after[0].scheduled_at == sessions[0].scheduled_at
    assert after[2].scheduled_at == sessions[2].scheduled_at


def test_reschedule_session_into_taken_slot(create, scheduler, tenant_id, now):
    series, sessions = create(total_sessions=2, interval_days=1)
    with pytest.raises(SlotUnavailableError):
        scheduler.reschedule_session(
            tenant_id, series.id, sessions[1].id, sessions[0].scheduled_at, now=now
        )


def test_reschedule_session_of_paused_series(create, scheduler, tenant_id, now):
    series, sessions = create(total_sessions=2)
    scheduler.pause_series(tenant_id, series.id, now=now)
    with pytest.raises(InvalidStateError):
        scheduler.reschedule_session(
            tenant_id, series.id, sessions[1].id, _at(MONDAY + timedelta(days=9), 9), now=now
        )


def test_replace_missed_session(create, scheduler, orchestrator, tenant_id, now):
    series, sessions = create(total_sessions=3)
    orchestrator.update_booking_status(tenant_id, sessions[1].id, BookingStatus.NO_SHOW, now=now)

    replacement = scheduler.replace_missed_session(
        tenant_id, series.id, sessions[1].id, preferred_time=time(11), now=now
    )

    assert replacement.series_id == series.id
    assert replacement.series_session_number == 4
    assert replacement.scheduled_at == _at(MONDAY + timedelta(days=21), 11)
    _, after = scheduler.get_series(tenant_id, series.id)
    assert len(after) == 4


def test_replace_requires_no_show(create, scheduler, tenant_id, now):
    series, sessions = create(total_sessions=2)
    with pytest.raises(InvalidStateError):
        scheduler.replace_missed_session(tenant_id, series.id, sessions[0].id, now=now)


def test_replace_refused_while_paused(create, scheduler, orchestrator, tenant_id, now):
    series, sessions = create(total_sessions=2)
    orchestrator.update_booking_status(tenant_id, sessions[0].id, BookingStatus.NO_SHOW, now=now)
    scheduler.pause_series(tenant_id, series.id, now=now)
    with pytest.raises(InvalidStateError):
        scheduler.replace_missed_session(tenant_id, series.id, sessions[0].id, now=now)


def test_replace_only_once(create, scheduler, orchestrator, tenant_id, now):
    series, sessions = create(total_sessions=2)
    orchestrator.update_booking_status(tenant_id, sessions[0].id, BookingStatus.NO_SHOW, now=now)
    scheduler.replace_missed_session(tenant_id, series.id, sessions[0].id, now=now)
    with pytest.raises(InvalidStateError):
        scheduler.replace_missed_session(tenant_id, series.id, sessions[0].id, now=now)


def test_session_of_other_series_is_not_found(create, scheduler, tenant_id, now):
    first, _ = create(total_sessions=1)
    _, other_sessions = create(total_sessions=1, first_session_date=MONDAY + timedelta(days=1))
    with pytest.raises(NotFoundError):
        scheduler.reschedule_session(
            tenant_id, first.id, other_sessions[0].id, _at(MONDAY + timedelta(days=2), 9), now=now
        )
