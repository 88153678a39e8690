"""Slot holds router - reserve a slot during online checkout, then confirm it."""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from salon_scheduler.core.deps import get_orchestrator, get_tenant_id
from salon_scheduler.core.rate_limit import BOOKING_LIMIT, limiter
from salon_scheduler.routers.bookings import booking_to_read
from salon_scheduler.schemas.scheduling import (
    BookingRead,
    HoldConfirm,
    HoldCreate,
    HoldPurgeRead,
    HoldRead,
    HoldReleaseRead,
)
from salon_scheduler.services.booking_orchestrator import BookingOrchestrator
from salon_scheduler.services.schedule_types import SlotHold

router = APIRouter()


def hold_to_read(hold: SlotHold) -> HoldRead:
    return HoldRead(
        id=hold.id,
        session_id=hold.session_id,
        staff_id=hold.staff_id,
        service_id=hold.service_id,
        client_id=hold.client_id,
        scheduled_at=hold.scheduled_at,
        scheduled_end=hold.end,
        duration_minutes=hold.duration_minutes,
        expires_at=hold.expires_at,
    )


@router.post("", response_model=HoldRead, status_code=201)
@limiter.limit(BOOKING_LIMIT)
def hold_slot(
    request: Request,
    data: HoldCreate,
    tenant_id: UUID = Depends(get_tenant_id),
    orchestrator: BookingOrchestrator = Depends(get_orchestrator),
):
    """
    Hold a slot for the checkout session.

    Replaces the session's earlier hold. Returns 409 if someone else holds
    or booked the slot, 422 if online booking is off or the time breaks a
    booking rule.
    """
    try:
        hold = orchestrator.hold_slot(
            tenant_id=tenant_id,
            session_id=data.session_id,
            staff_id=data.staff_id,
            service_id=data.service_id,
            start=data.scheduled_at,
            client_id=data.client_id,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return hold_to_read(hold)


@router.delete("/{hold_id}", response_model=HoldReleaseRead)
def release_slot(
    hold_id: UUID,
    session_id: str = Query(..., min_length=1, max_length=100),
    tenant_id: UUID = Depends(get_tenant_id),
    orchestrator: BookingOrchestrator = Depends(get_orchestrator),
):
    return HoldReleaseRead(released=orchestrator.release_slot(tenant_id, hold_id, session_id))


@router.post("/{hold_id}/confirm", response_model=BookingRead, status_code=201)
@limiter.limit(BOOKING_LIMIT)
def confirm_hold(
    request: Request,
    hold_id: UUID,
    data: HoldConfirm,
    tenant_id: UUID = Depends(get_tenant_id),
    orchestrator: BookingOrchestrator = Depends(get_orchestrator),
):
    """Book the held slot. Returns 410 once the hold has lapsed."""
    try:
        booking = orchestrator.confirm_hold(
            tenant_id=tenant_id,
            hold_id=hold_id,
            session_id=data.session_id,
            client_id=data.client_id,
            idempotency_key=data.idempotency_key,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return booking_to_read(booking)


@router.post("/purge-expired", response_model=HoldPurgeRead)
def purge_expired_holds(
    tenant_id: UUID = Depends(get_tenant_id),
    orchestrator: BookingOrchestrator = Depends(get_orchestrator),
):
    return HoldPurgeRead(purged=orchestrator.purge_expired_holds(tenant_id))
