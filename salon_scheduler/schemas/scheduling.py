"""Scheduling schemas - Pydantic models for the availability, booking and series API."""

from datetime import date, datetime
from decimal import Decimal
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, Field


# =============================================================================
# Availability
# =============================================================================

class TimeSlotRead(BaseModel):
    """Schema for an available time slot."""
    start: datetime
    end: datetime


class DayAvailabilityRead(BaseModel):
    """Slots for one local date (empty when closed or fully booked)."""
    date: date
    slots: list[TimeSlotRead]


class AvailabilityResponse(BaseModel):
    """Schema for an availability query response."""
    staff_id: UUID
    service_id: UUID
    days: list[DayAvailabilityRead]


# =============================================================================
# Bookings
# =============================================================================

class BookingCreate(BaseModel):
    """Schema for creating a booking."""
    client_id: UUID
    staff_id: UUID
    service_id: UUID
    scheduled_at: datetime = Field(..., description="Start time with timezone offset")
    idempotency_key: str | None = Field(None, max_length=64)


class BookingReschedule(BaseModel):
    """Schema for rescheduling a booking."""
    scheduled_at: datetime


class BookingCancel(BaseModel):
    """Schema for cancelling a booking."""
    reason: str | None = Field(None, max_length=1000)


class BookingStatusUpdate(BaseModel):
    """Schema for a manual booking status change."""
    status: Literal["confirmed", "in_progress", "completed", "no_show"]


class BookingRead(BaseModel):
    """Schema for reading a booking."""
    id: UUID
    staff_id: UUID
    client_id: UUID
    service_id: UUID
    scheduled_at: datetime
    scheduled_end: datetime
    duration_minutes: int
    status: str
    series_id: UUID | None
    series_session_number: int | None
    cancelled_at: datetime | None
    cancellation_reason: str | None
    cancellation_fee_percentage: Decimal | None
    cancellation_fee_amount: Decimal | None
    created_at: datetime | None


class BookingCancelRead(BookingRead):
    """Cancelled booking plus the fee charged for it, if any."""
    cancelled: bool = True
    fee_charged: Decimal | None = None


# =============================================================================
# Treatment Series
# =============================================================================

class SeriesCreate(BaseModel):
    """Schema for creating a treatment series."""
    client_id: UUID
    service_id: UUID
    total_sessions: int = Field(..., ge=1, le=52)
    interval_days: int = Field(..., ge=1, le=365)
    first_session_date: date
    preferred_staff_id: UUID | None = None
    preferred_time: str | None = Field(None, pattern=r"^\d{2}:\d{2}$", description="HH:MM format")
    custom_dates: list[datetime] | None = Field(None, max_length=52)
    package_discount: Decimal | None = Field(None, ge=0, le=100)
    notes: str | None = Field(None, max_length=2000)


class SeriesCancel(BaseModel):
    """Schema for cancelling a treatment series."""
    reason: str | None = Field(None, max_length=1000)


class SessionReschedule(BaseModel):
    """Schema for moving one series session."""
    scheduled_at: datetime


class SessionReplace(BaseModel):
    """Schema for booking a make-up session."""
    preferred_time: str | None = Field(None, pattern=r"^\d{2}:\d{2}$", description="HH:MM format")


class SeriesRead(BaseModel):
    """Schema for reading a treatment series."""
    id: UUID
    client_id: UUID
    service_id: UUID
    staff_id: UUID | None
    total_sessions: int
    interval_days: int
    status: str
    package_discount: Decimal | None
    notes: str | None
    paused_at: datetime | None
    cancelled_at: datetime | None
    completed_at: datetime | None
    created_at: datetime | None


class SeriesDetailRead(SeriesRead):
    """Series with its sessions, in session order."""
    sessions: list[BookingRead]


# =============================================================================
# Slot Holds
# =============================================================================

class HoldCreate(BaseModel):
    """Schema for holding a slot during checkout."""
    session_id: str = Field(..., min_length=1, max_length=100)
    staff_id: UUID
    service_id: UUID
    scheduled_at: datetime = Field(..., description="Start time with timezone offset")
    client_id: UUID | None = None


class HoldConfirm(BaseModel):
    """Schema for turning a hold into a booking."""
    session_id: str = Field(..., min_length=1, max_length=100)
    client_id: UUID | None = None
    idempotency_key: str | None = Field(None, max_length=64)


class HoldRead(BaseModel):
    """Schema for reading a slot hold."""
    id: UUID
    session_id: str
    staff_id: UUID
    service_id: UUID
    client_id: UUID | None
    scheduled_at: datetime
    scheduled_end: datetime
    duration_minutes: int
    expires_at: datetime


class HoldReleaseRead(BaseModel):
    released: bool


class HoldPurgeRead(BaseModel):
    purged: int
