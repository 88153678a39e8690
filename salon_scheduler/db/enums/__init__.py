"""Enum definitions for application constants."""

from salon_scheduler.db.enums.scheduling import (
    ACTIVE_BOOKING_STATUSES,
    SERIES_CANCELLABLE_STATUSES,
    TERMINAL_SERIES_STATUSES,
    BookingStatus,
    ExceptionKind,
    SeriesStatus,
)

__all__ = [
    "ACTIVE_BOOKING_STATUSES",
    "SERIES_CANCELLABLE_STATUSES",
    "TERMINAL_SERIES_STATUSES",
    "BookingStatus",
    "ExceptionKind",
    "SeriesStatus",
]
