"""Storage collaborator for the scheduling core.

SchedulingStore is the interface the scheduling services depend on;
SqlSchedulingStore implements it on a SQLAlchemy session. Any database
failure is rolled back and surfaced as StorageUnavailableError, so callers
never observe a partial write.
"""

import logging
from collections import defaultdict
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from datetime import date, datetime, timedelta
from typing import Protocol
from uuid import UUID
from zoneinfo import ZoneInfo

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from salon_scheduler.core.structured_logging import build_log_context
from salon_scheduler.db.enums import (
    ACTIVE_BOOKING_STATUSES,
    BookingStatus,
    ExceptionKind,
    SeriesStatus,
)
from salon_scheduler.db.models import (
    BookingHold,
    BookingRecord,
    SalonService,
    ScheduleExceptionRule,
    StaffScheduleRule,
    StaffServiceAssignment,
    TenantScheduleSettings,
    TreatmentSeriesRecord,
)
from salon_scheduler.services.schedule_config import build_tenant_config, validate_exception
from salon_scheduler.services.schedule_types import (
    Booking,
    ClientBookingCounts,
    ScheduleException,
    ServiceInfo,
    SlotHold,
    StaffSchedule,
    TenantScheduleConfig,
    TreatmentSeries,
)
from salon_scheduler.services.scheduling_errors import (
    InvalidConfigError,
    NotFoundError,
    StorageUnavailableError,
)
from salon_scheduler.services.time_utils import Weekday, day_bounds, week_bounds

logger = logging.getLogger(__name__)

# Longest booking we expect; bookings starting this far before a window can
# still reach into it.
MAX_BOOKING_LOOKBACK = timedelta(days=1)

# Cancelled bookings do not count towards client caps
_UNCOUNTED_STATUSES = (BookingStatus.CANCELLED.value,)


class SchedulingStore(Protocol):
    """Everything the scheduling core reads from or writes to storage."""

    def get_tenant_config(self, tenant_id: UUID) -> TenantScheduleConfig: ...

    def get_staff_schedule(self, tenant_id: UUID, staff_id: UUID) -> StaffSchedule: ...

    def get_service(
        self, tenant_id: UUID, service_id: UUID, staff_id: UUID | None = None
    ) -> ServiceInfo: ...

    def list_qualified_staff(self, tenant_id: UUID, service_id: UUID) -> list[UUID]: ...

    def get_existing_bookings(
        self, tenant_id: UUID, staff_id: UUID, start: datetime, end: datetime
    ) -> list[Booking]: ...

    def get_client_booking_counts(
        self, tenant_id: UUID, client_id: UUID, day: date, tz: ZoneInfo
    ) -> ClientBookingCounts: ...

    def get_booking(self, tenant_id: UUID, booking_id: UUID) -> Booking: ...

    def find_booking_by_idempotency_key(self, tenant_id: UUID, key: str) -> Booking | None: ...

    def write_booking(self, booking: Booking) -> Booking: ...

    def update_booking(self, booking: Booking) -> Booking: ...

    def get_series(self, tenant_id: UUID, series_id: UUID) -> TreatmentSeries: ...

    def list_series_bookings(self, tenant_id: UUID, series_id: UUID) -> list[Booking]: ...

    def write_series(
        self, series: TreatmentSeries, bookings: list[Booking]
    ) -> tuple[TreatmentSeries, list[Booking]]: ...

    def update_series(
        self, series: TreatmentSeries, bookings: Iterable[Booking] = ()
    ) -> TreatmentSeries: ...

    def get_active_holds(
        self, tenant_id: UUID, staff_id: UUID, start: datetime, end: datetime, now: datetime
    ) -> list[SlotHold]: ...

    def get_hold(self, tenant_id: UUID, hold_id: UUID) -> SlotHold: ...

    def replace_session_hold(self, hold: SlotHold) -> SlotHold: ...

    def delete_hold(self, tenant_id: UUID, hold_id: UUID, session_id: str) -> bool: ...

    def delete_expired_holds(self, now: datetime, tenant_id: UUID | None = None) -> int: ...

    def confirm_hold(self, hold: SlotHold, booking: Booking) -> Booking: ...


# =============================================================================
# Row mapping
# =============================================================================

def _to_booking(record: BookingRecord) -> Booking:
    return Booking(
        id=record.id,
        tenant_id=record.tenant_id,
        staff_id=record.staff_id,
        client_id=record.client_id,
        service_id=record.service_id,
        scheduled_at=record.scheduled_at,
        duration_minutes=record.duration_minutes,
        status=BookingStatus(record.status),
        series_id=record.series_id,
        series_session_number=record.series_session_number,
        idempotency_key=record.idempotency_key,
        cancelled_at=record.cancelled_at,
        cancellation_reason=record.cancellation_reason,
        cancellation_fee_percentage=record.cancellation_fee_percentage,
        cancellation_fee_amount=record.cancellation_fee_amount,
        created_at=record.created_at,
    )


def _apply_booking(record: BookingRecord, booking: Booking) -> BookingRecord:
    record.tenant_id = booking.tenant_id
    record.staff_id = booking.staff_id
    record.client_id = booking.client_id
    record.service_id = booking.service_id
    record.scheduled_at = booking.scheduled_at
    record.duration_minutes = booking.duration_minutes
    record.status = booking.status.value
    record.series_id = booking.series_id
    record.series_session_number = booking.series_session_number
    record.idempotency_key = booking.idempotency_key
    record.cancelled_at = booking.cancelled_at
    record.cancellation_reason = booking.cancellation_reason
    record.cancellation_fee_percentage = booking.cancellation_fee_percentage
    record.cancellation_fee_amount = booking.cancellation_fee_amount
    return record


def _to_series(record: TreatmentSeriesRecord) -> TreatmentSeries:
    return TreatmentSeries(
        id=record.id,
        tenant_id=record.tenant_id,
        client_id=record.client_id,
        service_id=record.service_id,
        staff_id=record.staff_id,
        total_sessions=record.total_sessions,
        interval_days=record.interval_days,
        status=SeriesStatus(record.status),
        created_at=record.created_at,
        package_discount=record.package_discount,
        notes=record.notes,
        paused_at=record.paused_at,
        cancelled_at=record.cancelled_at,
        completed_at=record.completed_at,
    )


def _apply_series(record: TreatmentSeriesRecord, series: TreatmentSeries) -> TreatmentSeriesRecord:
    record.tenant_id = series.tenant_id
    record.client_id = series.client_id
    record.service_id = series.service_id
    record.staff_id = series.staff_id
    record.total_sessions = series.total_sessions
    record.interval_days = series.interval_days
    record.status = series.status.value
    record.package_discount = series.package_discount
    record.notes = series.notes
    record.paused_at = series.paused_at
    record.cancelled_at = series.cancelled_at
    record.completed_at = series.completed_at
    return record


def _to_hold(record: BookingHold) -> SlotHold:
    return SlotHold(
        id=record.id,
        tenant_id=record.tenant_id,
        staff_id=record.staff_id,
        service_id=record.service_id,
        session_id=record.session_id,
        scheduled_at=record.scheduled_at,
        duration_minutes=record.duration_minutes,
        expires_at=record.expires_at,
        client_id=record.client_id,
        created_at=record.created_at,
    )


def _to_exception(row: ScheduleExceptionRule) -> ScheduleException:
    try:
        kind = ExceptionKind(row.kind)
    except ValueError:
        raise InvalidConfigError(f"Unknown schedule exception kind: {row.kind!r}")
    return validate_exception(
        ScheduleException(
            exception_date=row.exception_date,
            kind=kind,
            start=row.start_time,
            end=row.end_time,
            reason=row.reason,
        )
    )


# =============================================================================
# SQLAlchemy implementation
# =============================================================================

class SqlSchedulingStore:
    """SchedulingStore backed by a SQLAlchemy session."""

    def __init__(self, db: Session):
        self.db = db

    @contextmanager
    def _guard(self, operation: str, tenant_id: UUID | None = None) -> Iterator[None]:
        try:
            yield
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.exception(
                "Scheduling storage failure during %s",
                operation,
                extra=build_log_context(tenant_id=tenant_id),
            )
            raise StorageUnavailableError(f"Storage unavailable during {operation}") from e

    # -------------------------------------------------------------------------
    # Configuration
    # -------------------------------------------------------------------------

    def get_tenant_config(self, tenant_id: UUID) -> TenantScheduleConfig:
        with self._guard("get_tenant_config", tenant_id):
            settings_row = self.db.get(TenantScheduleSettings, tenant_id)
            if not settings_row:
                raise NotFoundError("Tenant schedule settings not found")
            closures = self.db.scalars(
                select(ScheduleExceptionRule)
                .where(
                    ScheduleExceptionRule.tenant_id == tenant_id,
                    ScheduleExceptionRule.staff_id.is_(None),
                )
                .order_by(ScheduleExceptionRule.exception_date, ScheduleExceptionRule.created_at)
            ).all()

        return build_tenant_config(
            tenant_id=tenant_id,
            timezone=settings_row.timezone,
            business_hours=settings_row.business_hours,
            booking_settings=settings_row.booking_settings,
            closures=[_to_exception(c) for c in closures],
        )

    def get_staff_schedule(self, tenant_id: UUID, staff_id: UUID) -> StaffSchedule:
        with self._guard("get_staff_schedule", tenant_id):
            rules = self.db.scalars(
                select(StaffScheduleRule)
                .where(
                    StaffScheduleRule.tenant_id == tenant_id,
                    StaffScheduleRule.staff_id == staff_id,
                )
                .order_by(StaffScheduleRule.day_of_week, StaffScheduleRule.start_time)
            ).all()
            exceptions = self.db.scalars(
                select(ScheduleExceptionRule)
                .where(
                    ScheduleExceptionRule.tenant_id == tenant_id,
                    ScheduleExceptionRule.staff_id == staff_id,
                )
                .order_by(ScheduleExceptionRule.exception_date, ScheduleExceptionRule.created_at)
            ).all()

        week: dict[Weekday, list] = defaultdict(list)
        for rule in rules:
            if rule.start_time >= rule.end_time:
                raise InvalidConfigError(
                    f"Staff schedule block on {Weekday.from_index(rule.day_of_week).label} ends before it starts"
                )
            week[Weekday.from_index(rule.day_of_week)].append((rule.start_time, rule.end_time))

        return StaffSchedule(
            tenant_id=tenant_id,
            staff_id=staff_id,
            week={day: tuple(blocks) for day, blocks in week.items()},
            exceptions=tuple(_to_exception(e) for e in exceptions),
        )

    def get_service(
        self, tenant_id: UUID, service_id: UUID, staff_id: UUID | None = None
    ) -> ServiceInfo:
        with self._guard("get_service", tenant_id):
            service = self.db.scalar(
                select(SalonService).where(
                    SalonService.id == service_id,
                    SalonService.tenant_id == tenant_id,
                    SalonService.is_active.is_(True),
                )
            )
            if not service:
                raise NotFoundError("Service not found")

            duration = service.duration_minutes
            if staff_id is not None:
                assignments = {
                    a.staff_id: a
                    for a in self.db.scalars(
                        select(StaffServiceAssignment).where(
                            StaffServiceAssignment.service_id == service_id,
                            StaffServiceAssignment.tenant_id == tenant_id,
                            StaffServiceAssignment.is_active.is_(True),
                        )
                    )
                }
                # Services without assignments can be performed by anyone
                if assignments:
                    assignment = assignments.get(staff_id)
                    if assignment is None:
                        raise NotFoundError("Staff member does not offer this service")
                    if assignment.custom_duration_minutes:
                        duration = assignment.custom_duration_minutes

        return ServiceInfo(
            id=service.id,
            tenant_id=service.tenant_id,
            name=service.name,
            duration_minutes=duration,
            price=service.price,
        )

    def list_qualified_staff(self, tenant_id: UUID, service_id: UUID) -> list[UUID]:
        with self._guard("list_qualified_staff", tenant_id):
            return list(
                self.db.scalars(
                    select(StaffServiceAssignment.staff_id)
                    .where(
                        StaffServiceAssignment.tenant_id == tenant_id,
                        StaffServiceAssignment.service_id == service_id,
                        StaffServiceAssignment.is_active.is_(True),
                    )
                    .order_by(StaffServiceAssignment.staff_id)
                )
            )

    # -------------------------------------------------------------------------
    # Bookings
    # -------------------------------------------------------------------------

    def get_existing_bookings(
        self, tenant_id: UUID, staff_id: UUID, start: datetime, end: datetime
    ) -> list[Booking]:
        """Active bookings of the staff member that intersect [start, end)."""
        with self._guard("get_existing_bookings", tenant_id):
            records = self.db.scalars(
                select(BookingRecord)
                .where(
                    BookingRecord.tenant_id == tenant_id,
                    BookingRecord.staff_id == staff_id,
                    BookingRecord.status.in_([s.value for s in ACTIVE_BOOKING_STATUSES]),
                    BookingRecord.scheduled_at < end,
                    BookingRecord.scheduled_at >= start - MAX_BOOKING_LOOKBACK,
                )
                .order_by(BookingRecord.scheduled_at)
            ).all()
        bookings = [_to_booking(r) for r in records]
        return [b for b in bookings if b.end > start]

    def _count_client_bookings(
        self, tenant_id: UUID, client_id: UUID, start: datetime, end: datetime
    ) -> int:
        return self.db.scalar(
            select(func.count(BookingRecord.id)).where(
                BookingRecord.tenant_id == tenant_id,
                BookingRecord.client_id == client_id,
                BookingRecord.status.not_in(_UNCOUNTED_STATUSES),
                BookingRecord.scheduled_at >= start,
                BookingRecord.scheduled_at < end,
            )
        ) or 0

    def get_client_booking_counts(
        self, tenant_id: UUID, client_id: UUID, day: date, tz: ZoneInfo
    ) -> ClientBookingCounts:
        day_start, day_end = day_bounds(day, tz)
        monday, sunday = week_bounds(day)
        week_start, _ = day_bounds(monday, tz)
        _, week_end = day_bounds(sunday, tz)
        with self._guard("get_client_booking_counts", tenant_id):
            return ClientBookingCounts(
                daily_count=self._count_client_bookings(tenant_id, client_id, day_start, day_end),
                weekly_count=self._count_client_bookings(tenant_id, client_id, week_start, week_end),
            )

    def get_booking(self, tenant_id: UUID, booking_id: UUID) -> Booking:
        with self._guard("get_booking", tenant_id):
            record = self.db.scalar(
                select(BookingRecord).where(
                    BookingRecord.id == booking_id,
                    BookingRecord.tenant_id == tenant_id,
                )
            )
        if not record:
            raise NotFoundError("Booking not found")
        return _to_booking(record)

    def find_booking_by_idempotency_key(self, tenant_id: UUID, key: str) -> Booking | None:
        with self._guard("find_booking_by_idempotency_key", tenant_id):
            record = self.db.scalar(
                select(BookingRecord).where(
                    BookingRecord.idempotency_key == key,
                    BookingRecord.tenant_id == tenant_id,
                )
            )
        return _to_booking(record) if record else None

    def write_booking(self, booking: Booking) -> Booking:
        record = _apply_booking(BookingRecord(id=booking.id), booking)
        with self._guard("write_booking", booking.tenant_id):
            try:
                self.db.add(record)
                self.db.commit()
            except IntegrityError:
                self.db.rollback()
                if not booking.idempotency_key:
                    raise
                # Concurrent request with the same key won the insert
                existing = self.find_booking_by_idempotency_key(
                    booking.tenant_id, booking.idempotency_key
                )
                if existing is None:
                    raise
                return existing
            self.db.refresh(record)
        logger.info(
            "Booking written",
            extra=build_log_context(
                tenant_id=booking.tenant_id, staff_id=booking.staff_id, booking_id=record.id
            ),
        )
        return _to_booking(record)

    def update_booking(self, booking: Booking) -> Booking:
        with self._guard("update_booking", booking.tenant_id):
            record = self.db.scalar(
                select(BookingRecord).where(
                    BookingRecord.id == booking.id,
                    BookingRecord.tenant_id == booking.tenant_id,
                )
            )
            if not record:
                raise NotFoundError("Booking not found")
            _apply_booking(record, booking)
            self.db.commit()
            self.db.refresh(record)
        return _to_booking(record)

    # -------------------------------------------------------------------------
    # Series
    # -------------------------------------------------------------------------

    def get_series(self, tenant_id: UUID, series_id: UUID) -> TreatmentSeries:
        with self._guard("get_series", tenant_id):
            record = self.db.scalar(
                select(TreatmentSeriesRecord).where(
                    TreatmentSeriesRecord.id == series_id,
                    TreatmentSeriesRecord.tenant_id == tenant_id,
                )
            )
        if not record:
            raise NotFoundError("Treatment series not found")
        return _to_series(record)

    def list_series_bookings(self, tenant_id: UUID, series_id: UUID) -> list[Booking]:
        with self._guard("list_series_bookings", tenant_id):
            records = self.db.scalars(
                select(BookingRecord)
                .where(
                    BookingRecord.tenant_id == tenant_id,
                    BookingRecord.series_id == series_id,
                )
                .order_by(BookingRecord.series_session_number, BookingRecord.scheduled_at)
            ).all()
        return [_to_booking(r) for r in records]

    def write_series(
        self, series: TreatmentSeries, bookings: list[Booking]
    ) -> tuple[TreatmentSeries, list[Booking]]:
        """Insert the series and all its sessions in one transaction."""
        with self._guard("write_series", series.tenant_id):
            series_record = _apply_series(TreatmentSeriesRecord(id=series.id), series)
            booking_records = [_apply_booking(BookingRecord(id=b.id), b) for b in bookings]
            self.db.add(series_record)
            self.db.flush()
            self.db.add_all(booking_records)
            self.db.commit()
            self.db.refresh(series_record)
            for record in booking_records:
                self.db.refresh(record)
        logger.info(
            "Treatment series written",
            extra=build_log_context(tenant_id=series.tenant_id, series_id=series_record.id),
        )
        return _to_series(series_record), [_to_booking(r) for r in booking_records]

    def update_series(
        self, series: TreatmentSeries, bookings: Iterable[Booking] = ()
    ) -> TreatmentSeries:
        """Update the series and any changed sessions in one transaction."""
        with self._guard("update_series", series.tenant_id):
            record = self.db.scalar(
                select(TreatmentSeriesRecord).where(
                    TreatmentSeriesRecord.id == series.id,
                    TreatmentSeriesRecord.tenant_id == series.tenant_id,
                )
            )
            if not record:
                raise NotFoundError("Treatment series not found")
            _apply_series(record, series)
            for booking in bookings:
                booking_record = self.db.get(BookingRecord, booking.id)
                if booking_record is None:
                    self.db.add(_apply_booking(BookingRecord(id=booking.id), booking))
                else:
                    _apply_booking(booking_record, booking)
            self.db.commit()
            self.db.refresh(record)
        return _to_series(record)

    # -------------------------------------------------------------------------
    # Slot holds
    # -------------------------------------------------------------------------

    def get_active_holds(
        self, tenant_id: UUID, staff_id: UUID, start: datetime, end: datetime, now: datetime
    ) -> list[SlotHold]:
        """Unexpired holds on the staff member that intersect [start, end)."""
        with self._guard("get_active_holds", tenant_id):
            records = self.db.scalars(
                select(BookingHold)
                .where(
                    BookingHold.tenant_id == tenant_id,
                    BookingHold.staff_id == staff_id,
                    BookingHold.expires_at > now,
                    BookingHold.scheduled_at < end,
                    BookingHold.scheduled_at >= start - MAX_BOOKING_LOOKBACK,
                )
                .order_by(BookingHold.scheduled_at)
            ).all()
        holds = [_to_hold(r) for r in records]
        return [h for h in holds if h.end > start]

    def get_hold(self, tenant_id: UUID, hold_id: UUID) -> SlotHold:
        with self._guard("get_hold", tenant_id):
            record = self.db.scalar(
                select(BookingHold).where(
                    BookingHold.id == hold_id,
                    BookingHold.tenant_id == tenant_id,
                )
            )
        if not record:
            raise NotFoundError("Hold not found or expired")
        return _to_hold(record)

    def replace_session_hold(self, hold: SlotHold) -> SlotHold:
        """Drop the session's earlier holds and insert this one in one transaction."""
        with self._guard("replace_session_hold", hold.tenant_id):
            self.db.execute(
                delete(BookingHold).where(
                    BookingHold.tenant_id == hold.tenant_id,
                    BookingHold.session_id == hold.session_id,
                ).execution_options(synchronize_session=False)
            )
            record = BookingHold(
                id=hold.id,
                tenant_id=hold.tenant_id,
                staff_id=hold.staff_id,
                service_id=hold.service_id,
                client_id=hold.client_id,
                session_id=hold.session_id,
                scheduled_at=hold.scheduled_at,
                duration_minutes=hold.duration_minutes,
                expires_at=hold.expires_at,
            )
            self.db.add(record)
            self.db.commit()
            self.db.refresh(record)
        return _to_hold(record)

    def delete_hold(self, tenant_id: UUID, hold_id: UUID, session_id: str) -> bool:
        with self._guard("delete_hold", tenant_id):
            result = self.db.execute(
                delete(BookingHold).where(
                    BookingHold.id == hold_id,
                    BookingHold.tenant_id == tenant_id,
                    BookingHold.session_id == session_id,
                ).execution_options(synchronize_session=False)
            )
            self.db.commit()
        return bool(result.rowcount)

    def delete_expired_holds(self, now: datetime, tenant_id: UUID | None = None) -> int:
        """Remove holds whose window has passed; returns how many were removed."""
        query = (
            delete(BookingHold)
            .where(BookingHold.expires_at <= now)
            .execution_options(synchronize_session=False)
        )
        if tenant_id:
            query = query.where(BookingHold.tenant_id == tenant_id)
        with self._guard("delete_expired_holds", tenant_id):
            result = self.db.execute(query)
            if result.rowcount:
                self.db.commit()
        return result.rowcount or 0

    def confirm_hold(self, hold: SlotHold, booking: Booking) -> Booking:
        """Insert the booking and delete the hold in one transaction."""
        record = _apply_booking(BookingRecord(id=booking.id), booking)
        with self._guard("confirm_hold", hold.tenant_id):
            self.db.execute(
                delete(BookingHold).where(
                    BookingHold.id == hold.id,
                    BookingHold.tenant_id == hold.tenant_id,
                ).execution_options(synchronize_session=False)
            )
            self.db.add(record)
            self.db.commit()
            self.db.refresh(record)
        logger.info(
            "Hold confirmed as booking",
            extra=build_log_context(
                tenant_id=booking.tenant_id, staff_id=booking.staff_id, booking_id=record.id
            ),
        )
        return _to_booking(record)
