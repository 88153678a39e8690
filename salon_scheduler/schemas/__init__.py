"""Pydantic schemas for API request/response models."""

from salon_scheduler.schemas.scheduling import (
    AvailabilityResponse,
    BookingCancel,
    BookingCreate,
    BookingRead,
    BookingReschedule,
    BookingStatusUpdate,
    DayAvailabilityRead,
    SeriesCancel,
    SeriesCreate,
    SeriesDetailRead,
    SeriesRead,
    SessionReplace,
    SessionReschedule,
    TimeSlotRead,
)
from salon_scheduler.schemas.tenant_settings import (
    BookingSettingsPayload,
    DayHoursPayload,
)

__all__ = [
    # Availability
    "AvailabilityResponse",
    "DayAvailabilityRead",
    "TimeSlotRead",
    # Bookings
    "BookingCancel",
    "BookingCreate",
    "BookingRead",
    "BookingReschedule",
    "BookingStatusUpdate",
    # Series
    "SeriesCancel",
    "SeriesCreate",
    "SeriesDetailRead",
    "SeriesRead",
    "SessionReplace",
    "SessionReschedule",
    # Tenant settings
    "BookingSettingsPayload",
    "DayHoursPayload",
]
