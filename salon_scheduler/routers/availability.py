"""Availability router - bookable slot queries."""

from datetime import date
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query

from salon_scheduler.core.config import settings
from salon_scheduler.core.deps import get_orchestrator, get_tenant_id
from salon_scheduler.schemas.scheduling import (
    AvailabilityResponse,
    DayAvailabilityRead,
    TimeSlotRead,
)
from salon_scheduler.services.booking_orchestrator import BookingOrchestrator

router = APIRouter()


@router.get("", response_model=AvailabilityResponse)
def get_availability(
    staff_id: UUID = Query(...),
    service_id: UUID = Query(...),
    date_from: date = Query(...),
    date_to: date = Query(...),
    granularity: int | None = Query(None, ge=5, le=240, description="Slot step in minutes"),
    tenant_id: UUID = Depends(get_tenant_id),
    orchestrator: BookingOrchestrator = Depends(get_orchestrator),
):
    """
    Bookable slots for one staff member and service, per local date.

    Read-only; a slot shown here can still be lost to a concurrent booking.
    """
    if date_to < date_from:
        raise HTTPException(status_code=400, detail="date_to must be on or after date_from")
    if (date_to - date_from).days + 1 > settings.MAX_AVAILABILITY_RANGE_DAYS:
        raise HTTPException(
            status_code=400,
            detail=f"Date range cannot exceed {settings.MAX_AVAILABILITY_RANGE_DAYS} days",
        )

    try:
        by_day = orchestrator.get_availability(
            tenant_id,
            staff_id,
            service_id,
            date_from,
            date_to,
            slot_granularity_minutes=granularity,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return AvailabilityResponse(
        staff_id=staff_id,
        service_id=service_id,
        days=[
            DayAvailabilityRead(
                date=day,
                slots=[TimeSlotRead(start=s.start, end=s.end) for s in slots],
            )
            for day, slots in sorted(by_day.items())
        ],
    )
