"""Booking orchestration.

Single entry point the API layer calls. Sequencing for a new booking:
idempotency replay -> booking rules -> (staff lock) idempotency replay ->
client caps -> conflict check -> persist. Persisting is always the last step.

Online checkout goes through a short slot hold first: hold_slot reserves the
slot for one booking session, confirm_hold turns it into a booking.
"""

import hashlib
import logging
from datetime import date, datetime, time, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from uuid import UUID, uuid4

from salon_scheduler.core.config import settings
from salon_scheduler.core.locks import StaffLockRegistry, get_lock_registry
from salon_scheduler.core.structured_logging import build_log_context
from salon_scheduler.db.enums import SERIES_CANCELLABLE_STATUSES, BookingStatus
from salon_scheduler.services.availability_service import AvailabilityEngine
from salon_scheduler.services.booking_rules import BookingRulesEngine
from salon_scheduler.services.schedule_types import Booking, SlotHold, TimeSlot, TreatmentSeries
from salon_scheduler.services.scheduling_errors import (
    HoldExpiredError,
    InvalidStateError,
    NotFoundError,
)
from salon_scheduler.services.scheduling_store import SchedulingStore
from salon_scheduler.services.series_service import (
    TreatmentSeriesScheduler,
    initial_booking_status,
)
from salon_scheduler.services.slot_guard import ensure_slot_free, staff_locks

logger = logging.getLogger(__name__)

# Manual status changes. Cancellation has its own operation.
STATUS_TRANSITIONS: dict[BookingStatus, set[BookingStatus]] = {
    BookingStatus.SCHEDULED: {BookingStatus.CONFIRMED, BookingStatus.IN_PROGRESS, BookingStatus.NO_SHOW},
    BookingStatus.CONFIRMED: {BookingStatus.IN_PROGRESS, BookingStatus.COMPLETED, BookingStatus.NO_SHOW},
    BookingStatus.IN_PROGRESS: {BookingStatus.COMPLETED},
}

_CENT = Decimal("0.01")


def normalize_idempotency_key(tenant_id: UUID, client_id: UUID, key: str) -> str:
    """Normalize idempotency key to avoid cross-tenant collisions."""
    raw = f"{tenant_id}:{client_id}:{key}".encode()
    return hashlib.sha256(raw).hexdigest()


def _require_aware(value: datetime, field: str) -> None:
    if value.tzinfo is None:
        raise ValueError(f"{field} must include a timezone offset")


class BookingOrchestrator:
    """Façade over availability, rules, conflicts and series scheduling."""

    def __init__(
        self,
        store: SchedulingStore,
        locks: StaffLockRegistry | None = None,
        slot_granularity_minutes: int | None = None,
        series_search_window_days: int | None = None,
        hold_minutes: int | None = None,
    ):
        self.store = store
        self.hold_minutes = hold_minutes or settings.SLOT_HOLD_MINUTES
        self.locks = locks or get_lock_registry()
        self.slot_granularity_minutes = slot_granularity_minutes or settings.SLOT_GRANULARITY_MINUTES
        self.availability = AvailabilityEngine(store)
        self.series = TreatmentSeriesScheduler(
            store,
            availability=self.availability,
            locks=self.locks,
            search_window_days=series_search_window_days or settings.SERIES_SEARCH_WINDOW_DAYS,
            slot_granularity_minutes=self.slot_granularity_minutes,
        )

    # =========================================================================
    # Availability
    # =========================================================================

    def get_availability(
        self,
        tenant_id: UUID,
        staff_id: UUID,
        service_id: UUID,
        date_from: date,
        date_to: date,
        slot_granularity_minutes: int | None = None,
        now: datetime | None = None,
    ) -> dict[date, list[TimeSlot]]:
        """Read-only slot query. Takes no lock."""
        service = self.store.get_service(tenant_id, service_id, staff_id)
        return self.availability.compute_slots(
            tenant_id,
            staff_id,
            date_from,
            date_to,
            service.duration_minutes,
            slot_granularity_minutes=slot_granularity_minutes or self.slot_granularity_minutes,
            now=now,
        )

    # =========================================================================
    # Bookings
    # =========================================================================

    def create_booking(
        self,
        tenant_id: UUID,
        client_id: UUID,
        staff_id: UUID,
        service_id: UUID,
        requested_at: datetime,
        idempotency_key: str | None = None,
        now: datetime | None = None,
    ) -> Booking:
        """
        Book one appointment.

        Raises:
            BookingRuleViolation: requested time or client caps break policy
            SlotUnavailableError: the staff member is busy or not working then
            StorageUnavailableError: storage or lock failure, nothing written
        """
        _require_aware(requested_at, "requested_at")
        now = now or datetime.now(timezone.utc)

        if idempotency_key:
            idempotency_key = normalize_idempotency_key(tenant_id, client_id, idempotency_key)
            existing = self.store.find_booking_by_idempotency_key(tenant_id, idempotency_key)
            if existing:
                return existing

        config = self.store.get_tenant_config(tenant_id)
        service = self.store.get_service(tenant_id, service_id, staff_id)
        rules_engine = BookingRulesEngine(config.rules, config.tz, self.store, tenant_id)
        rules_engine.validate_requested_time(requested_at, now)

        log_context = build_log_context(tenant_id=tenant_id, staff_id=staff_id)
        with staff_locks(self.locks, tenant_id, staff_id):
            if idempotency_key:
                # A concurrent retry may have written while we waited on the lock
                existing = self.store.find_booking_by_idempotency_key(tenant_id, idempotency_key)
                if existing:
                    return existing
            rules_engine.within_client_limits(client_id, requested_at.astimezone(config.tz).date())
            ensure_slot_free(
                self.store, config, staff_id, requested_at, service.duration_minutes, now=now
            )

            booking = Booking(
                id=uuid4(),
                tenant_id=tenant_id,
                staff_id=staff_id,
                client_id=client_id,
                service_id=service_id,
                scheduled_at=requested_at.astimezone(timezone.utc),
                duration_minutes=service.duration_minutes,
                status=initial_booking_status(config),
                idempotency_key=idempotency_key,
            )
            booking = self.store.write_booking(booking)

        logger.info("Booking created", extra={**log_context, "booking_id": str(booking.id)})
        return booking

    def get_booking(self, tenant_id: UUID, booking_id: UUID) -> Booking:
        return self.store.get_booking(tenant_id, booking_id)

    def cancel_booking(
        self,
        tenant_id: UUID,
        booking_id: UUID,
        reason: str | None = None,
        now: datetime | None = None,
    ) -> Booking:
        """Cancel a booking, recording the cancellation fee when policy requires one."""
        now = now or datetime.now(timezone.utc)
        booking = self.store.get_booking(tenant_id, booking_id)
        if booking.status not in SERIES_CANCELLABLE_STATUSES:
            raise InvalidStateError(f"Cannot cancel a booking that is {booking.status.value}")

        config = self.store.get_tenant_config(tenant_id)
        outcome = BookingRulesEngine(config.rules, config.tz).cancellation_outcome(
            booking.scheduled_at, now
        )
        if not outcome.allowed:
            raise InvalidStateError("Cannot cancel a past appointment")

        booking.status = BookingStatus.CANCELLED
        booking.cancelled_at = now
        booking.cancellation_reason = reason
        if outcome.fee_required:
            booking.cancellation_fee_percentage = outcome.fee_percentage
            try:
                price = self.store.get_service(tenant_id, booking.service_id).price
            except NotFoundError:
                # Service retired since booking; percentage alone is recorded
                price = None
            if price is not None:
                booking.cancellation_fee_amount = (
                    price * outcome.fee_percentage / Decimal("100")
                ).quantize(_CENT, rounding=ROUND_HALF_UP)

        booking = self.store.update_booking(booking)
        logger.info(
            "Booking cancelled (fee_required=%s)",
            outcome.fee_required,
            extra=build_log_context(tenant_id=tenant_id, booking_id=booking_id),
        )

        if booking.series_id is not None:
            self.series.refresh_completion(tenant_id, booking.series_id, now=now)
        return booking

    def reschedule_booking(
        self,
        tenant_id: UUID,
        booking_id: UUID,
        new_start: datetime,
        now: datetime | None = None,
    ) -> Booking:
        """Move a booking to a new start time on the same staff member."""
        _require_aware(new_start, "new_start")
        now = now or datetime.now(timezone.utc)
        booking = self.store.get_booking(tenant_id, booking_id)
        if booking.series_id is not None:
            return self.series.reschedule_session(
                tenant_id, booking.series_id, booking_id, new_start, now=now
            )
        if booking.status not in SERIES_CANCELLABLE_STATUSES:
            raise InvalidStateError(f"Cannot reschedule a booking that is {booking.status.value}")

        config = self.store.get_tenant_config(tenant_id)
        BookingRulesEngine(config.rules, config.tz).validate_requested_time(new_start, now)

        with staff_locks(self.locks, tenant_id, booking.staff_id):
            ensure_slot_free(
                self.store,
                config,
                booking.staff_id,
                new_start,
                booking.duration_minutes,
                exclude_booking_id=booking.id,
                now=now,
            )
            booking.scheduled_at = new_start.astimezone(timezone.utc)
            booking = self.store.update_booking(booking)

        logger.info(
            "Booking rescheduled",
            extra=build_log_context(tenant_id=tenant_id, booking_id=booking_id),
        )
        return booking

    def update_booking_status(
        self,
        tenant_id: UUID,
        booking_id: UUID,
        status: BookingStatus,
        now: datetime | None = None,
    ) -> Booking:
        """Move a booking along its lifecycle (confirm, start, complete, no-show)."""
        booking = self.store.get_booking(tenant_id, booking_id)
        allowed = STATUS_TRANSITIONS.get(booking.status, set())
        if status not in allowed:
            raise InvalidStateError(
                f"Cannot change booking status from {booking.status.value} to {status.value}"
            )
        booking.status = status
        booking = self.store.update_booking(booking)

        if booking.series_id is not None and status == BookingStatus.COMPLETED:
            self.series.refresh_completion(tenant_id, booking.series_id, now=now)
        return booking

    # =========================================================================
    # Slot holds
    # =========================================================================

    def hold_slot(
        self,
        tenant_id: UUID,
        session_id: str,
        staff_id: UUID,
        service_id: UUID,
        start: datetime,
        client_id: UUID | None = None,
        now: datetime | None = None,
    ) -> SlotHold:
        """
        Reserve a slot for one booking session while the client checks out.

        A session keeps at most one hold: holding again releases the earlier
        one. The hold lapses after ``hold_minutes`` unless confirmed.
        """
        _require_aware(start, "start")
        if not session_id:
            raise ValueError("session_id is required")
        now = now or datetime.now(timezone.utc)

        config = self.store.get_tenant_config(tenant_id)
        service = self.store.get_service(tenant_id, service_id, staff_id)
        rules_engine = BookingRulesEngine(config.rules, config.tz)
        rules_engine.validate_online_booking()
        rules_engine.validate_requested_time(start, now)

        self.store.delete_expired_holds(now, tenant_id=tenant_id)
        with staff_locks(self.locks, tenant_id, staff_id):
            ensure_slot_free(
                self.store,
                config,
                staff_id,
                start,
                service.duration_minutes,
                hold_session_id=session_id,
                now=now,
            )
            hold = self.store.replace_session_hold(
                SlotHold(
                    id=uuid4(),
                    tenant_id=tenant_id,
                    staff_id=staff_id,
                    service_id=service_id,
                    session_id=session_id,
                    scheduled_at=start.astimezone(timezone.utc),
                    duration_minutes=service.duration_minutes,
                    expires_at=now + timedelta(minutes=self.hold_minutes),
                    client_id=client_id,
                )
            )

        logger.info(
            "Slot held until %s",
            hold.expires_at.isoformat(),
            extra=build_log_context(tenant_id=tenant_id, staff_id=staff_id),
        )
        return hold

    def release_slot(self, tenant_id: UUID, hold_id: UUID, session_id: str) -> bool:
        """Drop a session's hold. Releasing an unknown or lapsed hold is a no-op."""
        return self.store.delete_hold(tenant_id, hold_id, session_id)

    def _session_hold(
        self, tenant_id: UUID, hold_id: UUID, session_id: str, now: datetime
    ) -> SlotHold:
        hold = self.store.get_hold(tenant_id, hold_id)
        if hold.session_id != session_id:
            raise NotFoundError("Hold not found or expired")
        if hold.is_expired(now):
            self.store.delete_hold(tenant_id, hold.id, session_id)
            raise HoldExpiredError("Hold has expired")
        return hold

    def confirm_hold(
        self,
        tenant_id: UUID,
        hold_id: UUID,
        session_id: str,
        client_id: UUID | None = None,
        idempotency_key: str | None = None,
        now: datetime | None = None,
    ) -> Booking:
        """
        Turn a session's hold into a booking.

        Raises:
            NotFoundError: no such hold for this session (never taken, released
                or already confirmed)
            HoldExpiredError: the hold lapsed; the slot must be held again
            BookingRuleViolation: online booking is off or client caps are hit
        """
        now = now or datetime.now(timezone.utc)
        if idempotency_key:
            # The hold is gone once confirmed, so replay before looking it up
            if client_id is None:
                raise ValueError("client_id is required with an idempotency key")
            idempotency_key = normalize_idempotency_key(tenant_id, client_id, idempotency_key)
            existing = self.store.find_booking_by_idempotency_key(tenant_id, idempotency_key)
            if existing:
                return existing

        hold = self._session_hold(tenant_id, hold_id, session_id, now)
        client_id = client_id or hold.client_id
        if client_id is None:
            raise ValueError("client_id is required to confirm a hold")

        config = self.store.get_tenant_config(tenant_id)
        rules_engine = BookingRulesEngine(config.rules, config.tz, self.store, tenant_id)
        rules_engine.validate_online_booking()

        with staff_locks(self.locks, tenant_id, hold.staff_id):
            if idempotency_key:
                existing = self.store.find_booking_by_idempotency_key(tenant_id, idempotency_key)
                if existing:
                    return existing
            # Re-read under the lock; a concurrent confirm may have consumed it
            hold = self._session_hold(tenant_id, hold_id, session_id, now)
            rules_engine.within_client_limits(client_id, hold.scheduled_at.astimezone(config.tz).date())
            ensure_slot_free(
                self.store,
                config,
                hold.staff_id,
                hold.scheduled_at,
                hold.duration_minutes,
                hold_session_id=session_id,
                now=now,
            )
            booking = self.store.confirm_hold(
                hold,
                Booking(
                    id=uuid4(),
                    tenant_id=tenant_id,
                    staff_id=hold.staff_id,
                    client_id=client_id,
                    service_id=hold.service_id,
                    scheduled_at=hold.scheduled_at,
                    duration_minutes=hold.duration_minutes,
                    status=initial_booking_status(config),
                    idempotency_key=idempotency_key,
                ),
            )

        logger.info(
            "Booking created from hold",
            extra=build_log_context(
                tenant_id=tenant_id, staff_id=booking.staff_id, booking_id=booking.id
            ),
        )
        return booking

    def purge_expired_holds(self, tenant_id: UUID | None = None, now: datetime | None = None) -> int:
        """Delete lapsed holds, for one tenant or all of them."""
        purged = self.store.delete_expired_holds(now or datetime.now(timezone.utc), tenant_id=tenant_id)
        if purged:
            logger.info("Purged %d expired holds", purged, extra=build_log_context(tenant_id=tenant_id))
        return purged

    # =========================================================================
    # Treatment series
    # =========================================================================

    def create_series(
        self,
        tenant_id: UUID,
        client_id: UUID,
        service_id: UUID,
        total_sessions: int,
        interval_days: int,
        first_session_date: date,
        preferred_staff_id: UUID | None = None,
        preferred_time: time | None = None,
        custom_dates: list[datetime] | None = None,
        package_discount: Decimal | None = None,
        notes: str | None = None,
        now: datetime | None = None,
    ) -> tuple[TreatmentSeries, list[Booking]]:
        for value in custom_dates or []:
            _require_aware(value, "custom_dates")
        return self.series.create_series(
            tenant_id,
            client_id,
            service_id,
            total_sessions,
            interval_days,
            first_session_date,
            preferred_staff_id=preferred_staff_id,
            preferred_time=preferred_time,
            custom_dates=custom_dates,
            package_discount=package_discount,
            notes=notes,
            now=now,
        )

    def get_series(self, tenant_id: UUID, series_id: UUID) -> tuple[TreatmentSeries, list[Booking]]:
        return self.series.get_series(tenant_id, series_id)

    def pause_series(self, tenant_id: UUID, series_id: UUID, now: datetime | None = None) -> TreatmentSeries:
        return self.series.pause_series(tenant_id, series_id, now=now)

    def resume_series(self, tenant_id: UUID, series_id: UUID) -> TreatmentSeries:
        return self.series.resume_series(tenant_id, series_id)

    def cancel_series(
        self,
        tenant_id: UUID,
        series_id: UUID,
        reason: str | None = None,
        now: datetime | None = None,
    ) -> tuple[TreatmentSeries, list[Booking]]:
        return self.series.cancel_series(tenant_id, series_id, reason=reason, now=now)

    def reschedule_session(
        self,
        tenant_id: UUID,
        series_id: UUID,
        booking_id: UUID,
        new_start: datetime,
        now: datetime | None = None,
    ) -> Booking:
        _require_aware(new_start, "new_start")
        return self.series.reschedule_session(tenant_id, series_id, booking_id, new_start, now=now)

    def replace_missed_session(
        self,
        tenant_id: UUID,
        series_id: UUID,
        booking_id: UUID,
        preferred_time: time | None = None,
        now: datetime | None = None,
    ) -> Booking:
        return self.series.replace_missed_session(
            tenant_id, series_id, booking_id, preferred_time=preferred_time, now=now
        )
