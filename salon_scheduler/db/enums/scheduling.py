"""Booking and scheduling enums."""

from enum import Enum


class BookingStatus(str, Enum):
    """
    Booking lifecycle status.

    Flow: scheduled → confirmed → in_progress → completed
              ↘ cancelled
              ↘ no_show
    """

    SCHEDULED = "scheduled"  # Requested, awaiting salon confirmation
    CONFIRMED = "confirmed"  # Confirmed by the salon
    IN_PROGRESS = "in_progress"  # Client is in the chair
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"


class SeriesStatus(str, Enum):
    """
    Treatment series status.

    Flow: active ⇄ paused
          active → completed
          active|paused → cancelled
    """

    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ExceptionKind(str, Enum):
    """Date-specific schedule exception kinds."""

    BLOCKED = "blocked"  # Closed / day off
    EXTRA_HOURS = "extra_hours"  # Extends the regular hours
    OVERRIDE = "override"  # Replaces the regular hours


# Statuses that occupy the staff member's time
ACTIVE_BOOKING_STATUSES = (
    BookingStatus.SCHEDULED,
    BookingStatus.CONFIRMED,
    BookingStatus.IN_PROGRESS,
)

# Statuses a series cancellation sweeps up
SERIES_CANCELLABLE_STATUSES = (
    BookingStatus.SCHEDULED,
    BookingStatus.CONFIRMED,
)

TERMINAL_SERIES_STATUSES = (
    SeriesStatus.COMPLETED,
    SeriesStatus.CANCELLED,
)
