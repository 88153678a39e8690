"""Treatment series scheduling.

A treatment series is N sessions of one service booked as a single
commitment. Sessions are spaced at least ``interval_days`` apart; each one
takes the nearest free slot on or after its target date. A series is
written whole or not at all.

Lifecycle: active <-> paused, active -> completed, active/paused -> cancelled.
An active series closes by itself once no session is upcoming any more,
whether its sessions were completed or cancelled one by one.
"""

import logging
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from uuid import UUID, uuid4

from salon_scheduler.core.locks import StaffLockRegistry, get_lock_registry
from salon_scheduler.core.structured_logging import build_log_context
from salon_scheduler.db.enums import (
    ACTIVE_BOOKING_STATUSES,
    SERIES_CANCELLABLE_STATUSES,
    TERMINAL_SERIES_STATUSES,
    BookingStatus,
    SeriesStatus,
)
from salon_scheduler.services.availability_service import (
    DEFAULT_SLOT_GRANULARITY_MINUTES,
    AvailabilityEngine,
)
from salon_scheduler.services.booking_rules import BookingRulesEngine
from salon_scheduler.services.schedule_types import (
    Booking,
    ServiceInfo,
    TenantScheduleConfig,
    TreatmentSeries,
)
from salon_scheduler.services.scheduling_errors import (
    InvalidStateError,
    NotFoundError,
    SchedulingInfeasibleError,
)
from salon_scheduler.services.scheduling_store import SchedulingStore
from salon_scheduler.services.slot_guard import ensure_slot_free, staff_locks
from salon_scheduler.services.time_utils import local_datetime

logger = logging.getLogger(__name__)

DEFAULT_SEARCH_WINDOW_DAYS = 14


def initial_booking_status(config: TenantScheduleConfig) -> BookingStatus:
    """New bookings wait for approval when the tenant requires it."""
    if config.rules.require_approval:
        return BookingStatus.SCHEDULED
    return BookingStatus.CONFIRMED


class TreatmentSeriesScheduler:
    """Plan, write and manage treatment series."""

    def __init__(
        self,
        store: SchedulingStore,
        availability: AvailabilityEngine | None = None,
        locks: StaffLockRegistry | None = None,
        search_window_days: int = DEFAULT_SEARCH_WINDOW_DAYS,
        slot_granularity_minutes: int = DEFAULT_SLOT_GRANULARITY_MINUTES,
    ):
        self.store = store
        self.availability = availability or AvailabilityEngine(store)
        self.locks = locks or get_lock_registry()
        self.search_window_days = search_window_days
        self.slot_granularity_minutes = slot_granularity_minutes

    # =========================================================================
    # Planning
    # =========================================================================

    def plan_sessions(
        self,
        config: TenantScheduleConfig,
        series: TreatmentSeries,
        service: ServiceInfo,
        staff_id: UUID,
        first_session_date: date,
        now: datetime,
        preferred_time: time | None = None,
        custom_dates: list[datetime] | None = None,
    ) -> list[Booking]:
        """
        Place every session of ``series`` for one staff member.

        Session k targets ``first_session_date + k * interval``, pushed later
        if the previous session slipped, so consecutive sessions are never
        closer than the interval. Explicit ``custom_dates`` fix the start of
        the first sessions and must themselves be free slots.

        Raises SchedulingInfeasibleError naming the first session that could
        not be placed. Nothing is written here.
        """
        tz = config.tz
        interval = timedelta(days=series.interval_days)
        rules_engine = BookingRulesEngine(config.rules, tz, self.store, config.tenant_id)
        custom_dates = custom_dates or []
        status = initial_booking_status(config)

        planned: list[Booking] = []
        for index in range(series.total_sessions):
            session_number = index + 1
            previous_day = planned[-1].scheduled_at.astimezone(tz).date() if planned else None

            if index < len(custom_dates):
                start = custom_dates[index]
                if previous_day is not None and start.astimezone(tz).date() - previous_day < interval:
                    raise SchedulingInfeasibleError(
                        f"Session {session_number} is closer than {series.interval_days} days to the previous session",
                        session_number=session_number,
                    )
                if not self.availability.is_slot_available(
                    config.tenant_id,
                    staff_id,
                    start,
                    service.duration_minutes,
                    now=now,
                    extra_occupied=planned,
                ):
                    raise SchedulingInfeasibleError(
                        f"Requested time for session {session_number} is not available",
                        session_number=session_number,
                    )
            else:
                target_day = first_session_date + index * interval
                if previous_day is not None:
                    target_day = max(target_day, previous_day + interval)
                slot = self.availability.find_nearest_slot(
                    config.tenant_id,
                    staff_id,
                    service.duration_minutes,
                    not_before=local_datetime(target_day, time.min, tz),
                    search_days=self.search_window_days,
                    slot_granularity_minutes=self.slot_granularity_minutes,
                    now=now,
                    preferred_time=preferred_time,
                    extra_occupied=planned,
                )
                if slot is None:
                    raise SchedulingInfeasibleError(
                        f"No available slot for session {session_number} within "
                        f"{self.search_window_days} days of {target_day.isoformat()}",
                        session_number=session_number,
                    )
                start = slot.start

            rules_engine.within_client_limits(
                series.client_id,
                start.astimezone(tz).date(),
                pending=[b.scheduled_at.astimezone(tz).date() for b in planned],
            )
            planned.append(
                Booking(
                    id=uuid4(),
                    tenant_id=series.tenant_id,
                    staff_id=staff_id,
                    client_id=series.client_id,
                    service_id=series.service_id,
                    scheduled_at=start,
                    duration_minutes=service.duration_minutes,
                    status=status,
                    series_id=series.id,
                    series_session_number=session_number,
                )
            )
        return planned

    # =========================================================================
    # Creation
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
        """
        Create a series with all of its sessions, or nothing.

        Without a preferred staff member every qualified one is tried in
        order; the first who can take the whole series gets it.
        """
        if total_sessions < 1:
            raise ValueError("A series needs at least one session")
        if interval_days < 1:
            raise ValueError("Series interval must be at least one day")
        if custom_dates and len(custom_dates) > total_sessions:
            raise ValueError("More custom dates than sessions")

        now = now or datetime.now(timezone.utc)
        config = self.store.get_tenant_config(tenant_id)

        if preferred_staff_id is not None:
            candidates = [preferred_staff_id]
        else:
            candidates = self.store.list_qualified_staff(tenant_id, service_id)
            if not candidates:
                raise SchedulingInfeasibleError("No staff member offers this service")

        last_error: SchedulingInfeasibleError | None = None
        for staff_id in candidates:
            try:
                service = self.store.get_service(tenant_id, service_id, staff_id)
            except NotFoundError:
                if preferred_staff_id is not None:
                    raise
                continue

            series = TreatmentSeries(
                id=uuid4(),
                tenant_id=tenant_id,
                client_id=client_id,
                service_id=service_id,
                staff_id=staff_id,
                total_sessions=total_sessions,
                interval_days=interval_days,
                status=SeriesStatus.ACTIVE,
                package_discount=package_discount,
                notes=notes,
            )
            with staff_locks(self.locks, tenant_id, staff_id):
                try:
                    planned = self.plan_sessions(
                        config,
                        series,
                        service,
                        staff_id,
                        first_session_date,
                        now,
                        preferred_time=preferred_time,
                        custom_dates=custom_dates,
                    )
                except SchedulingInfeasibleError as e:
                    logger.info(
                        "Series not placeable for staff member: %s",
                        e.message,
                        extra=build_log_context(tenant_id=tenant_id, staff_id=staff_id),
                    )
                    last_error = e
                    continue
                written_series, sessions = self.store.write_series(series, planned)

            logger.info(
                "Treatment series created with %d sessions",
                len(sessions),
                extra=build_log_context(
                    tenant_id=tenant_id, staff_id=staff_id, series_id=written_series.id
                ),
            )
            return written_series, sessions

        if last_error is not None and len(candidates) == 1:
            raise last_error
        raise SchedulingInfeasibleError(
            "No qualified staff member can take the whole series",
            session_number=last_error.session_number if last_error else None,
        )

    # =========================================================================
    # Lookups
    # =========================================================================

    def get_series(self, tenant_id: UUID, series_id: UUID) -> tuple[TreatmentSeries, list[Booking]]:
        series = self.store.get_series(tenant_id, series_id)
        return series, self.store.list_series_bookings(tenant_id, series_id)

    def _get_session(self, tenant_id: UUID, series_id: UUID, booking_id: UUID) -> Booking:
        booking = self.store.get_booking(tenant_id, booking_id)
        if booking.series_id != series_id:
            raise NotFoundError("Session not found in this series")
        return booking

    # =========================================================================
    # State transitions
    # =========================================================================

    def pause_series(
        self, tenant_id: UUID, series_id: UUID, now: datetime | None = None
    ) -> TreatmentSeries:
        series = self.store.get_series(tenant_id, series_id)
        if series.status != SeriesStatus.ACTIVE:
            raise InvalidStateError(f"Cannot pause a series that is {series.status.value}")
        series.status = SeriesStatus.PAUSED
        series.paused_at = now or datetime.now(timezone.utc)
        logger.info("Series paused", extra=build_log_context(tenant_id=tenant_id, series_id=series_id))
        return self.store.update_series(series)

    def resume_series(self, tenant_id: UUID, series_id: UUID) -> TreatmentSeries:
        series = self.store.get_series(tenant_id, series_id)
        if series.status != SeriesStatus.PAUSED:
            raise InvalidStateError(f"Cannot resume a series that is {series.status.value}")
        series.status = SeriesStatus.ACTIVE
        series.paused_at = None
        logger.info("Series resumed", extra=build_log_context(tenant_id=tenant_id, series_id=series_id))
        return self.store.update_series(series)

    def cancel_series(
        self,
        tenant_id: UUID,
        series_id: UUID,
        reason: str | None = None,
        now: datetime | None = None,
    ) -> tuple[TreatmentSeries, list[Booking]]:
        """Cancel the series and its upcoming sessions. Completed sessions are kept."""
        now = now or datetime.now(timezone.utc)
        series = self.store.get_series(tenant_id, series_id)
        if series.status in TERMINAL_SERIES_STATUSES:
            raise InvalidStateError(f"Cannot cancel a series that is {series.status.value}")

        sessions = self.store.list_series_bookings(tenant_id, series_id)
        cancelled = []
        for booking in sessions:
            if booking.status in SERIES_CANCELLABLE_STATUSES:
                booking.status = BookingStatus.CANCELLED
                booking.cancelled_at = now
                booking.cancellation_reason = reason or "Treatment series cancelled"
                cancelled.append(booking)

        series.status = SeriesStatus.CANCELLED
        series.cancelled_at = now
        series = self.store.update_series(series, cancelled)
        logger.info(
            "Series cancelled, %d sessions released",
            len(cancelled),
            extra=build_log_context(tenant_id=tenant_id, series_id=series_id),
        )
        return series, self.store.list_series_bookings(tenant_id, series_id)

    def refresh_completion(
        self, tenant_id: UUID, series_id: UUID, now: datetime | None = None
    ) -> TreatmentSeries:
        """
        Close an active series once none of its sessions is still upcoming.

        At least one completed session closes it as completed; if every
        session was cancelled the series is cancelled. Unreplaced no-shows
        with nothing completed keep it active so a make-up can be booked.
        """
        series = self.store.get_series(tenant_id, series_id)
        if series.status != SeriesStatus.ACTIVE:
            return series
        sessions = self.store.list_series_bookings(tenant_id, series_id)
        if not sessions or any(b.status in ACTIVE_BOOKING_STATUSES for b in sessions):
            return series

        now = now or datetime.now(timezone.utc)
        statuses = {b.status for b in sessions}
        if BookingStatus.COMPLETED in statuses:
            series.status = SeriesStatus.COMPLETED
            series.completed_at = now
        elif statuses == {BookingStatus.CANCELLED}:
            series.status = SeriesStatus.CANCELLED
            series.cancelled_at = now
        else:
            return series

        series = self.store.update_series(series)
        logger.info(
            "Series closed as %s",
            series.status.value,
            extra=build_log_context(tenant_id=tenant_id, series_id=series_id),
        )
        return series

    # =========================================================================
    # Session changes
    # =========================================================================

    def reschedule_session(
        self,
        tenant_id: UUID,
        series_id: UUID,
        booking_id: UUID,
        new_start: datetime,
        now: datetime | None = None,
    ) -> Booking:
        """Move one session. Other sessions of the series are left alone."""
        now = now or datetime.now(timezone.utc)
        series = self.store.get_series(tenant_id, series_id)
        if series.status != SeriesStatus.ACTIVE:
            raise InvalidStateError(f"Cannot reschedule sessions of a {series.status.value} series")
        booking = self._get_session(tenant_id, series_id, booking_id)
        if booking.status not in SERIES_CANCELLABLE_STATUSES:
            raise InvalidStateError(f"Cannot reschedule a session that is {booking.status.value}")

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
            booking.scheduled_at = new_start
            booking = self.store.update_booking(booking)

        logger.info(
            "Series session rescheduled",
            extra=build_log_context(tenant_id=tenant_id, series_id=series_id, booking_id=booking_id),
        )
        return booking

    def replace_missed_session(
        self,
        tenant_id: UUID,
        series_id: UUID,
        booking_id: UUID,
        preferred_time: time | None = None,
        now: datetime | None = None,
    ) -> Booking:
        """
        Book a make-up session for a no-show.

        The replacement goes after the last session, at least one interval
        later. Refused while the series is paused.
        """
        now = now or datetime.now(timezone.utc)
        series = self.store.get_series(tenant_id, series_id)
        if series.status == SeriesStatus.PAUSED:
            raise InvalidStateError("Resume the series before replacing a missed session")
        if series.status != SeriesStatus.ACTIVE:
            raise InvalidStateError(f"Cannot replace sessions of a {series.status.value} series")

        missed = self._get_session(tenant_id, series_id, booking_id)
        if missed.status != BookingStatus.NO_SHOW:
            raise InvalidStateError("Only no-show sessions can be replaced")

        sessions = self.store.list_series_bookings(tenant_id, series_id)
        kept = [b for b in sessions if b.status not in (BookingStatus.NO_SHOW, BookingStatus.CANCELLED)]
        if len(kept) >= series.total_sessions:
            raise InvalidStateError("Series already has all of its sessions booked")

        config = self.store.get_tenant_config(tenant_id)
        staff_id = series.staff_id or missed.staff_id
        service = self.store.get_service(tenant_id, series.service_id, staff_id)
        last = max(sessions, key=lambda b: b.scheduled_at)
        target_day = last.scheduled_at.astimezone(config.tz).date() + timedelta(days=series.interval_days)
        session_number = max(b.series_session_number or 0 for b in sessions) + 1

        with staff_locks(self.locks, tenant_id, staff_id):
            slot = self.availability.find_nearest_slot(
                tenant_id,
                staff_id,
                service.duration_minutes,
                not_before=local_datetime(target_day, time.min, config.tz),
                search_days=self.search_window_days,
                slot_granularity_minutes=self.slot_granularity_minutes,
                now=now,
                preferred_time=preferred_time,
            )
            if slot is None:
                raise SchedulingInfeasibleError(
                    f"No available slot for a replacement session within "
                    f"{self.search_window_days} days of {target_day.isoformat()}",
                    session_number=session_number,
                )
            BookingRulesEngine(config.rules, config.tz, self.store, tenant_id).within_client_limits(
                series.client_id, slot.start.astimezone(config.tz).date()
            )
            replacement = Booking(
                id=uuid4(),
                tenant_id=tenant_id,
                staff_id=staff_id,
                client_id=series.client_id,
                service_id=series.service_id,
                scheduled_at=slot.start,
                duration_minutes=service.duration_minutes,
                status=initial_booking_status(config),
                series_id=series.id,
                series_session_number=session_number,
            )
            replacement = self.store.write_booking(replacement)

        logger.info(
            "Replacement session booked",
            extra=build_log_context(
                tenant_id=tenant_id, series_id=series_id, booking_id=replacement.id
            ),
        )
        return replacement
