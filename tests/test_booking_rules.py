"""
Tests for tenant booking policy checks.

Coverage:
- min/max advance and same-day rules, all violations reported together
- cancellation window and fee
- client daily/weekly caps including pending series sessions
"""
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from zoneinfo import ZoneInfo

import pytest

from salon_scheduler.services.booking_rules import BookingRulesEngine
from salon_scheduler.services.schedule_types import BookingRules, ClientBookingCounts
from salon_scheduler.services.scheduling_errors import BookingRuleViolation, RuleViolation

UTC = ZoneInfo("UTC")
NOW = datetime(2030, 1, 1, 8, 0, tzinfo=timezone.utc)


def _engine(**rules) -> BookingRulesEngine:
    return BookingRulesEngine(BookingRules(**rules), UTC)


# =============================================================================
# Requested time
# =============================================================================

def test_min_advance_hours():
    engine = _engine(min_advance_hours=2)
    assert engine.requested_time_violations(NOW + timedelta(hours=1), NOW) == [RuleViolation.TOO_SOON]
    assert engine.is_requested_time_allowed(NOW + timedelta(hours=2), NOW)
    assert engine.is_requested_time_allowed(NOW + timedelta(hours=3), NOW)


def test_max_advance_days():
    engine = _engine(max_advance_days=30)
    assert engine.is_requested_time_allowed(NOW + timedelta(days=30), NOW)
    assert engine.requested_time_violations(NOW + timedelta(days=31), NOW) == [
        RuleViolation.TOO_FAR_AHEAD
    ]


def test_zero_max_advance_disables_horizon():
    assert _engine(max_advance_days=0).is_requested_time_allowed(NOW + timedelta(days=3650), NOW)


def test_same_day_uses_tenant_timezone():
    tokyo = BookingRulesEngine(BookingRules(allow_same_day=False), ZoneInfo("Asia/Tokyo"))
    # 08:00 UTC is 17:00 in Tokyo; from 15:00 UTC on it is already tomorrow there
    assert not tokyo.is_requested_time_allowed(NOW + timedelta(hours=2), NOW)
    assert tokyo.is_requested_time_allowed(NOW + timedelta(hours=16), NOW)


def test_all_violations_are_reported():
    engine = _engine(min_advance_hours=4, allow_same_day=False)
    with pytest.raises(BookingRuleViolation) as exc_info:
        engine.validate_requested_time(NOW + timedelta(hours=1), NOW)
    assert exc_info.value.violations == [
        RuleViolation.TOO_SOON,
        RuleViolation.SAME_DAY_NOT_ALLOWED,
    ]
    assert exc_info.value.to_detail()["violations"] == ["too_soon", "same_day_not_allowed"]


def test_past_time_is_too_soon():
    assert RuleViolation.TOO_SOON in _engine().requested_time_violations(NOW - timedelta(minutes=1), NOW)


def test_online_booking_disabled():
    _engine().validate_online_booking()
    with pytest.raises(BookingRuleViolation) as exc_info:
        _engine(online_booking_enabled=False).validate_online_booking()
    assert exc_info.value.violations == [RuleViolation.ONLINE_BOOKING_DISABLED]


# =============================================================================
# Cancellation
# =============================================================================

def test_cancellation_outside_deadline_is_free():
    engine = _engine(cancellation_deadline_hours=24, charge_cancellation_fee=True,
                     cancellation_fee_percentage=Decimal("50"))
    outcome = engine.cancellation_outcome(NOW + timedelta(hours=48), NOW)
    assert outcome.allowed
    assert not outcome.fee_required


def test_late_cancellation_charges_fee():
    engine = _engine(cancellation_deadline_hours=24, charge_cancellation_fee=True,
                     cancellation_fee_percentage=Decimal("50"))
    outcome = engine.cancellation_outcome(NOW + timedelta(hours=2), NOW)
    assert outcome.allowed
    assert outcome.fee_required
    assert outcome.fee_percentage == Decimal("50")


def test_late_cancellation_without_fee_policy():
    outcome = _engine(cancellation_deadline_hours=24).cancellation_outcome(NOW + timedelta(hours=2), NOW)
    assert outcome.allowed
    assert not outcome.fee_required


def test_cancellation_at_start_time_is_allowed():
    assert _engine().cancellation_outcome(NOW, NOW).allowed


def test_cancellation_of_past_appointment_is_refused():
    assert not _engine().cancellation_outcome(NOW - timedelta(seconds=1), NOW).allowed


# =============================================================================
# Buffers
# =============================================================================

def test_apply_buffer():
    start = datetime(2030, 1, 7, 10, 0, tzinfo=timezone.utc)
    padded = _engine(buffer_before_minutes=15, buffer_after_minutes=10).apply_buffer(start, 60)
    assert padded.buffered_start == start - timedelta(minutes=15)
    assert padded.end == start + timedelta(minutes=60)
    assert padded.buffered_end == start + timedelta(minutes=70)


# =============================================================================
# Client caps
# =============================================================================

class _CountingStore:
    def __init__(self, daily: int, weekly: int):
        self.counts = ClientBookingCounts(daily, weekly)
        self.calls = 0

    def get_client_booking_counts(self, tenant_id, client_id, day, tz):
        self.calls += 1
        return self.counts


def test_client_limit_daily_cap():
    engine = _engine(max_bookings_per_client_per_day=2)
    day = date(2030, 1, 7)
    assert not engine.client_limit_exceeded(ClientBookingCounts(1, 1), day)
    assert engine.client_limit_exceeded(ClientBookingCounts(2, 2), day)


def test_client_limit_counts_pending_dates():
    engine = _engine(max_bookings_per_client_per_week=2)
    monday = date(2030, 1, 7)
    assert not engine.client_limit_exceeded(ClientBookingCounts(0, 0), monday, [date(2030, 1, 14)])
    assert engine.client_limit_exceeded(ClientBookingCounts(0, 1), monday, [date(2030, 1, 9)])


def test_zero_caps_mean_unlimited(tenant_id, client_id):
    store = _CountingStore(daily=50, weekly=50)
    engine = BookingRulesEngine(BookingRules(), UTC, store, tenant_id)
    engine.within_client_limits(client_id, date(2030, 1, 7))
    assert store.calls == 0


def test_within_client_limits_raises_limit_exceeded(tenant_id, client_id):
    store = _CountingStore(daily=1, weekly=1)
    engine = BookingRulesEngine(BookingRules(max_bookings_per_client_per_day=1), UTC, store, tenant_id)
    with pytest.raises(BookingRuleViolation) as exc_info:
        engine.within_client_limits(client_id, date(2030, 1, 7))
    assert exc_info.value.violations == [RuleViolation.LIMIT_EXCEEDED]


def test_within_client_limits_needs_store(client_id):
    engine = _engine(max_bookings_per_client_per_day=1)
    with pytest.raises(RuntimeError):
        engine.within_client_limits(client_id, date(2030, 1, 7))
