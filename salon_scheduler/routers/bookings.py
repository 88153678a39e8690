"""Bookings router - create, cancel, reschedule and progress single bookings."""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Request

from salon_scheduler.core.deps import get_orchestrator, get_tenant_id
from salon_scheduler.core.rate_limit import BOOKING_LIMIT, limiter
from salon_scheduler.db.enums import BookingStatus
from salon_scheduler.schemas.scheduling import (
    BookingCancel,
    BookingCancelRead,
    BookingCreate,
    BookingRead,
    BookingReschedule,
    BookingStatusUpdate,
)
from salon_scheduler.services.booking_orchestrator import BookingOrchestrator
from salon_scheduler.services.schedule_types import Booking

router = APIRouter()


# =============================================================================
# Helper Functions
# =============================================================================

def booking_to_read(booking: Booking) -> BookingRead:
    """Convert a Booking to its read schema."""
    return BookingRead(
        id=booking.id,
        staff_id=booking.staff_id,
        client_id=booking.client_id,
        service_id=booking.service_id,
        scheduled_at=booking.scheduled_at,
        scheduled_end=booking.end,
        duration_minutes=booking.duration_minutes,
        status=booking.status.value,
        series_id=booking.series_id,
        series_session_number=booking.series_session_number,
        cancelled_at=booking.cancelled_at,
        cancellation_reason=booking.cancellation_reason,
        cancellation_fee_percentage=booking.cancellation_fee_percentage,
        cancellation_fee_amount=booking.cancellation_fee_amount,
        created_at=booking.created_at,
    )


# =============================================================================
# Endpoints
# =============================================================================

@router.post("", response_model=BookingRead, status_code=201)
@limiter.limit(BOOKING_LIMIT)
def create_booking(
    request: Request,
    data: BookingCreate,
    tenant_id: UUID = Depends(get_tenant_id),
    orchestrator: BookingOrchestrator = Depends(get_orchestrator),
):
    """
    Book an appointment.

    Returns 409 if the slot was just taken (re-query availability), 422 if
    the time breaks a booking rule. Replaying an idempotency key returns the
    original booking.
    """
    try:
        booking = orchestrator.create_booking(
            tenant_id=tenant_id,
            client_id=data.client_id,
            staff_id=data.staff_id,
            service_id=data.service_id,
            requested_at=data.scheduled_at,
            idempotency_key=data.idempotency_key,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return booking_to_read(booking)


@router.get("/{booking_id}", response_model=BookingRead)
def get_booking(
    booking_id: UUID,
    tenant_id: UUID = Depends(get_tenant_id),
    orchestrator: BookingOrchestrator = Depends(get_orchestrator),
):
    return booking_to_read(orchestrator.get_booking(tenant_id, booking_id))


@router.post("/{booking_id}/cancel", response_model=BookingCancelRead)
def cancel_booking(
    booking_id: UUID,
    data: BookingCancel | None = None,
    tenant_id: UUID = Depends(get_tenant_id),
    orchestrator: BookingOrchestrator = Depends(get_orchestrator),
):
    """
    Cancel a booking. The body and its reason are optional.

    ``fee_charged`` is the late-cancellation fee owed, null when none applies.
    """
    booking = orchestrator.cancel_booking(
        tenant_id, booking_id, reason=data.reason if data else None
    )
    return BookingCancelRead(
        **booking_to_read(booking).model_dump(),
        cancelled=True,
        fee_charged=booking.cancellation_fee_amount,
    )


@router.post("/{booking_id}/reschedule", response_model=BookingRead)
def reschedule_booking(
    booking_id: UUID,
    data: BookingReschedule,
    tenant_id: UUID = Depends(get_tenant_id),
    orchestrator: BookingOrchestrator = Depends(get_orchestrator),
):
    try:
        booking = orchestrator.reschedule_booking(tenant_id, booking_id, data.scheduled_at)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return booking_to_read(booking)


@router.post("/{booking_id}/status", response_model=BookingRead)
def update_booking_status(
    booking_id: UUID,
    data: BookingStatusUpdate,
    tenant_id: UUID = Depends(get_tenant_id),
    orchestrator: BookingOrchestrator = Depends(get_orchestrator),
):
    """Confirm, start, complete or mark a booking as no-show."""
    booking = orchestrator.update_booking_status(
        tenant_id, booking_id, BookingStatus(data.status)
    )
    return booking_to_read(booking)
