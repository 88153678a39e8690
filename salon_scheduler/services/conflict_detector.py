"""Staff booking conflict detection.

Intervals are half-open [start, end): a booking ending at 10:00 and one
starting at 10:00 do not overlap. Buffers are applied to both sides before
comparing.
"""

from collections.abc import Iterable
from datetime import datetime
from uuid import UUID

from salon_scheduler.services.schedule_types import Booking, BufferConfig, SlotHold
from salon_scheduler.services.time_utils import Interval


def overlaps(a: Interval, b: Interval) -> bool:
    return a.start < b.end and b.start < a.end


def padded_interval(start: datetime, duration_minutes: int, buffer: BufferConfig) -> Interval:
    return buffer.pad(start, duration_minutes).padded


def find_conflict(
    staff_id: UUID,
    proposed: Interval,
    existing: Iterable[Booking | SlotHold],
    buffer: BufferConfig,
    exclude_booking_id: UUID | None = None,
) -> Booking | SlotHold | None:
    """First active booking or hold of ``staff_id`` that collides with the proposal."""
    duration = int((proposed.end - proposed.start).total_seconds() // 60)
    proposal = padded_interval(proposed.start, duration, buffer)

    for booking in existing:
        if booking.staff_id != staff_id or not booking.is_active:
            continue
        if exclude_booking_id is not None and booking.id == exclude_booking_id:
            continue
        occupied = padded_interval(booking.scheduled_at, booking.duration_minutes, buffer)
        if overlaps(proposal, occupied):
            return booking
    return None


def has_conflict(
    staff_id: UUID,
    proposed: Interval,
    existing: Iterable[Booking | SlotHold],
    buffer: BufferConfig,
    exclude_booking_id: UUID | None = None,
) -> bool:
    return find_conflict(staff_id, proposed, existing, buffer, exclude_booking_id) is not None
