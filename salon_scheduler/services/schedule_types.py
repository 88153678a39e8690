"""Scheduling domain types shared by the scheduling services.

These are plain value objects; the storage layer maps ORM rows onto them so
the scheduling logic never touches a database session directly.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import NamedTuple
from uuid import UUID
from zoneinfo import ZoneInfo

from salon_scheduler.db.enums import (
    ACTIVE_BOOKING_STATUSES,
    BookingStatus,
    ExceptionKind,
    SeriesStatus,
)
from salon_scheduler.services.time_utils import Interval, Weekday, parse_timezone


# =============================================================================
# Slots and buffers
# =============================================================================

class TimeSlot(NamedTuple):
    """Bookable window for one staff member."""
    start: datetime
    end: datetime


class BufferedInterval(NamedTuple):
    """Booking interval with buffer padding on both sides."""
    buffered_start: datetime
    start: datetime
    end: datetime
    buffered_end: datetime

    @property
    def padded(self) -> Interval:
        return Interval(self.buffered_start, self.buffered_end)


class BufferConfig(NamedTuple):
    """Minutes a staff member is blocked before and after each booking."""
    before_minutes: int = 0
    after_minutes: int = 0

    def pad(self, start: datetime, duration_minutes: int) -> BufferedInterval:
        end = start + timedelta(minutes=duration_minutes)
        return BufferedInterval(
            buffered_start=start - timedelta(minutes=self.before_minutes),
            start=start,
            end=end,
            buffered_end=end + timedelta(minutes=self.after_minutes),
        )


class ClientBookingCounts(NamedTuple):
    daily_count: int
    weekly_count: int


class CancellationOutcome(NamedTuple):
    allowed: bool
    fee_required: bool = False
    fee_percentage: Decimal = Decimal("0")


# =============================================================================
# Tenant configuration
# =============================================================================

@dataclass(frozen=True)
class BusinessHours:
    """Opening hours for one weekday."""
    open: time | None = None
    close: time | None = None
    closed: bool = False
    breaks: tuple[tuple[time, time], ...] = ()


@dataclass(frozen=True)
class BookingRules:
    """Tenant booking policy."""
    min_advance_hours: int = 0
    max_advance_days: int = 90  # 0 disables the horizon check
    allow_same_day: bool = True
    online_booking_enabled: bool = True
    require_approval: bool = False
    buffer_before_minutes: int = 0
    buffer_after_minutes: int = 0
    cancellation_deadline_hours: int = 24
    charge_cancellation_fee: bool = False
    cancellation_fee_percentage: Decimal = Decimal("0")
    max_concurrent_bookings: int = 1
    max_bookings_per_client_per_day: int = 0  # 0 = unlimited
    max_bookings_per_client_per_week: int = 0  # 0 = unlimited

    @property
    def buffer(self) -> BufferConfig:
        return BufferConfig(self.buffer_before_minutes, self.buffer_after_minutes)


@dataclass(frozen=True)
class ScheduleException:
    """Date-specific override of the recurring schedule."""
    exception_date: date
    kind: ExceptionKind
    start: time | None = None
    end: time | None = None
    reason: str | None = None


@dataclass(frozen=True)
class TenantScheduleConfig:
    tenant_id: UUID
    timezone: str
    business_hours: dict[Weekday, BusinessHours]
    rules: BookingRules = field(default_factory=BookingRules)
    closures: tuple[ScheduleException, ...] = ()

    @property
    def tz(self) -> ZoneInfo:
        return parse_timezone(self.timezone)


@dataclass(frozen=True)
class StaffSchedule:
    tenant_id: UUID
    staff_id: UUID
    week: dict[Weekday, tuple[tuple[time, time], ...]]
    exceptions: tuple[ScheduleException, ...] = ()

    def exception_for(self, day: date) -> ScheduleException | None:
        # Last matching entry wins
        matches = [e for e in self.exceptions if e.exception_date == day]
        return matches[-1] if matches else None


@dataclass(frozen=True)
class ServiceInfo:
    id: UUID
    tenant_id: UUID
    name: str
    duration_minutes: int
    price: Decimal | None = None


# =============================================================================
# Bookings and series
# =============================================================================

@dataclass
class Booking:
    id: UUID
    tenant_id: UUID
    staff_id: UUID
    client_id: UUID
    service_id: UUID
    scheduled_at: datetime
    duration_minutes: int
    status: BookingStatus = BookingStatus.SCHEDULED
    series_id: UUID | None = None
    series_session_number: int | None = None
    idempotency_key: str | None = None
    cancelled_at: datetime | None = None
    cancellation_reason: str | None = None
    cancellation_fee_percentage: Decimal | None = None
    cancellation_fee_amount: Decimal | None = None
    created_at: datetime | None = None

    @property
    def end(self) -> datetime:
        return self.scheduled_at + timedelta(minutes=self.duration_minutes)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_BOOKING_STATUSES


@dataclass
class TreatmentSeries:
    id: UUID
    tenant_id: UUID
    client_id: UUID
    service_id: UUID
    staff_id: UUID | None
    total_sessions: int
    interval_days: int
    status: SeriesStatus = SeriesStatus.ACTIVE
    created_at: datetime | None = None
    package_discount: Decimal | None = None
    notes: str | None = None
    paused_at: datetime | None = None
    cancelled_at: datetime | None = None
    completed_at: datetime | None = None


@dataclass
class SlotHold:
    """
    Slot reserved for one booking session until ``expires_at``.

    Storage only returns unexpired holds to the slot checks, so a hold that
    is handed to conflict detection always occupies its interval.
    """
    id: UUID
    tenant_id: UUID
    staff_id: UUID
    service_id: UUID
    session_id: str
    scheduled_at: datetime
    duration_minutes: int
    expires_at: datetime
    client_id: UUID | None = None
    created_at: datetime | None = None

    @property
    def end(self) -> datetime:
        return self.scheduled_at + timedelta(minutes=self.duration_minutes)

    @property
    def is_active(self) -> bool:
        return True

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now
