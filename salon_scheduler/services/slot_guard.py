"""Write-side slot checks shared by single bookings and series sessions.

Both helpers are meant to run while the staff member's booking lock is held,
so the check and the following write see the same bookings and holds.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from uuid import UUID

from salon_scheduler.core.locks import LockTimeoutError, StaffLockRegistry
from salon_scheduler.core.telemetry import get_tracer
from salon_scheduler.services.availability_service import AvailabilityEngine
from salon_scheduler.services.conflict_detector import find_conflict
from salon_scheduler.services.schedule_types import TenantScheduleConfig
from salon_scheduler.services.scheduling_errors import (
    SlotUnavailableError,
    StorageUnavailableError,
)
from salon_scheduler.services.scheduling_store import SchedulingStore
from salon_scheduler.services.time_utils import Interval


@contextmanager
def staff_locks(registry: StaffLockRegistry, tenant_id: UUID, *staff_ids: UUID) -> Iterator[None]:
    """Hold booking locks; a lock timeout is reported as storage unavailability."""
    attributes = {
        "salon.tenant_id": str(tenant_id),
        "salon.staff_ids": [str(s) for s in staff_ids],
    }
    try:
        with get_tracer().start_as_current_span("salon.staff_lock", attributes=attributes):
            with registry.hold(tenant_id, *staff_ids):
                yield
    except LockTimeoutError as e:
        raise StorageUnavailableError("Booking lock unavailable, retry shortly") from e


def ensure_slot_free(
    store: SchedulingStore,
    config: TenantScheduleConfig,
    staff_id: UUID,
    start: datetime,
    duration_minutes: int,
    exclude_booking_id: UUID | None = None,
    hold_session_id: str | None = None,
    now: datetime | None = None,
) -> None:
    """
    Raise SlotUnavailableError unless the staff member can take this booking.

    Unexpired holds block the slot like bookings do, except the ones taken
    by ``hold_session_id`` itself.
    """
    schedule = store.get_staff_schedule(config.tenant_id, staff_id)
    if not AvailabilityEngine.within_working_hours(config, schedule, start, duration_minutes):
        raise SlotUnavailableError("Requested time is outside the staff member's working hours")

    now = now or datetime.now(timezone.utc)
    buffer = config.rules.buffer
    margin = timedelta(minutes=buffer.before_minutes + buffer.after_minutes)
    end = start + timedelta(minutes=duration_minutes)
    window_start, window_end = start - margin, end + margin

    existing = [
        *store.get_existing_bookings(config.tenant_id, staff_id, window_start, window_end),
        *(
            hold
            for hold in store.get_active_holds(config.tenant_id, staff_id, window_start, window_end, now)
            if hold_session_id is None or hold.session_id != hold_session_id
        ),
    ]
    conflict = find_conflict(
        staff_id,
        Interval(start, end),
        existing,
        buffer,
        exclude_booking_id=exclude_booking_id,
    )
    if conflict is not None:
        raise SlotUnavailableError("Selected time is no longer available")
