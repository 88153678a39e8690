"""SQLAlchemy ORM models for scheduling."""

from __future__ import annotations

import uuid
from datetime import date, datetime, time, timezone
from decimal import Decimal

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Time,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from salon_scheduler.db.base import Base
from salon_scheduler.db.enums import BookingStatus, SeriesStatus


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TenantScheduleSettings(Base):
    """
    Per-tenant scheduling configuration.

    business_hours: weekday -> {open, close, closed, breaks}
    booking_settings: nested policy document (advance_booking, cancellation,
    buffer_time, online_booking, capacity, restrictions).
    """

    __tablename__ = "tenant_schedule_settings"

    tenant_id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True)
    timezone: Mapped[str] = mapped_column(String(50), default="UTC", nullable=False)
    business_hours: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    booking_settings: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)

    created_at: Mapped[datetime] = mapped_column(default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=_utcnow, onupdate=_utcnow, nullable=False)


class StaffScheduleRule(Base):
    """
    Weekly working block for a staff member (e.g., "Monday 9am-1pm").

    Uses ISO weekday: Monday=0, Sunday=6. Several blocks per day are allowed.
    """

    __tablename__ = "staff_schedule_rules"
    __table_args__ = (
        Index("idx_staff_schedule_rules_staff", "tenant_id", "staff_id"),
        CheckConstraint("day_of_week >= 0 AND day_of_week <= 6", name="ck_staff_rule_day_of_week"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    staff_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)

    day_of_week: Mapped[int] = mapped_column(Integer, nullable=False)
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[time] = mapped_column(Time, nullable=False)

    created_at: Mapped[datetime] = mapped_column(default=_utcnow, nullable=False)


class ScheduleExceptionRule(Base):
    """
    Date-specific schedule exception.

    staff_id NULL applies to the whole tenant (holiday closure, late opening).
    Blocked exceptions have no times; override and extra_hours have both.
    """

    __tablename__ = "schedule_exceptions"
    __table_args__ = (
        Index("idx_schedule_exceptions_lookup", "tenant_id", "staff_id", "exception_date"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    staff_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)

    exception_date: Mapped[date] = mapped_column(Date, nullable=False)
    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    start_time: Mapped[time | None] = mapped_column(Time, nullable=True)
    end_time: Mapped[time | None] = mapped_column(Time, nullable=True)

    # Reason (optional, e.g., "Holiday", "Training")
    reason: Mapped[str | None] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(default=_utcnow, nullable=False)


class SalonService(Base):
    """Bookable service (e.g., "Laser session", "Haircut")."""

    __tablename__ = "salon_services"
    __table_args__ = (Index("idx_salon_services_tenant", "tenant_id", "is_active"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, default=60, nullable=False)
    price: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(default=_utcnow, nullable=False)

    assignments: Mapped[list["StaffServiceAssignment"]] = relationship(
        back_populates="service", cascade="all, delete-orphan"
    )


class StaffServiceAssignment(Base):
    """Which staff can perform a service, with an optional custom duration."""

    __tablename__ = "staff_service_assignments"
    __table_args__ = (
        UniqueConstraint("staff_id", "service_id", name="uq_staff_service"),
        Index("idx_staff_service_assignments_service", "tenant_id", "service_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    staff_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    service_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("salon_services.id", ondelete="CASCADE"), nullable=False
    )
    custom_duration_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    service: Mapped["SalonService"] = relationship(back_populates="assignments")


class TreatmentSeriesRecord(Base):
    """
    Multi-session treatment package.

    Lifecycle: active <-> paused, active -> completed, active/paused -> cancelled
    """

    __tablename__ = "treatment_series"
    __table_args__ = (
        Index("idx_treatment_series_tenant_status", "tenant_id", "status"),
        Index("idx_treatment_series_client", "tenant_id", "client_id"),
        CheckConstraint("total_sessions >= 1", name="ck_series_total_sessions"),
        CheckConstraint("interval_days >= 1", name="ck_series_interval_days"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    client_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    service_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("salon_services.id", ondelete="RESTRICT"), nullable=False
    )
    staff_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)

    total_sessions: Mapped[int] = mapped_column(Integer, nullable=False)
    interval_days: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=SeriesStatus.ACTIVE.value, nullable=False
    )
    package_discount: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    paused_at: Mapped[datetime | None] = mapped_column(nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    created_at: Mapped[datetime] = mapped_column(default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=_utcnow, onupdate=_utcnow, nullable=False)

    bookings: Mapped[list["BookingRecord"]] = relationship(
        back_populates="series", order_by="BookingRecord.series_session_number"
    )


class BookingRecord(Base):
    """
    Booked appointment.

    Lifecycle: scheduled -> confirmed -> in_progress -> completed,
    or cancelled / no_show. Never hard-deleted by the scheduler.
    """

    __tablename__ = "bookings"
    __table_args__ = (
        Index("idx_bookings_staff_time", "tenant_id", "staff_id", "scheduled_at"),
        Index("idx_bookings_client_time", "tenant_id", "client_id", "scheduled_at"),
        Index("idx_bookings_series", "series_id"),
        UniqueConstraint("idempotency_key", name="uq_booking_idempotency"),
        CheckConstraint("duration_minutes > 0", name="ck_booking_duration"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    staff_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    client_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    service_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("salon_services.id", ondelete="RESTRICT"), nullable=False
    )

    series_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("treatment_series.id", ondelete="SET NULL"), nullable=True
    )
    series_session_number: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Scheduling (stored in UTC)
    scheduled_at: Mapped[datetime] = mapped_column(nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)

    status: Mapped[str] = mapped_column(
        String(20), default=BookingStatus.SCHEDULED.value, nullable=False
    )

    # Idempotency (prevent duplicate bookings)
    idempotency_key: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # Cancellation tracking
    cancelled_at: Mapped[datetime | None] = mapped_column(nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    cancellation_fee_percentage: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)
    cancellation_fee_amount: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)

    created_at: Mapped[datetime] = mapped_column(default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=_utcnow, onupdate=_utcnow, nullable=False)

    series: Mapped["TreatmentSeriesRecord | None"] = relationship(back_populates="bookings")


class BookingHold(Base):
    """
    Short-lived reservation of a slot while a client checks out.

    One hold per booking session; an unexpired hold blocks the slot for
    everyone else. Confirming turns it into a booking and deletes it.
    """

    __tablename__ = "booking_holds"
    __table_args__ = (
        Index("idx_booking_holds_staff_time", "tenant_id", "staff_id", "scheduled_at"),
        Index("idx_booking_holds_session", "tenant_id", "session_id"),
        Index("idx_booking_holds_expires", "expires_at"),
        CheckConstraint("duration_minutes > 0", name="ck_booking_hold_duration"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    staff_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    service_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("salon_services.id", ondelete="CASCADE"), nullable=False
    )
    client_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    session_id: Mapped[str] = mapped_column(String(100), nullable=False)

    scheduled_at: Mapped[datetime] = mapped_column(nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(nullable=False)

    created_at: Mapped[datetime] = mapped_column(default=_utcnow, nullable=False)
