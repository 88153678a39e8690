"""Treatment series router - multi-session packages."""

from datetime import time
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Request

from salon_scheduler.core.deps import get_orchestrator, get_tenant_id
from salon_scheduler.core.rate_limit import BOOKING_LIMIT, limiter
from salon_scheduler.routers.bookings import booking_to_read
from salon_scheduler.schemas.scheduling import (
    BookingRead,
    SeriesCancel,
    SeriesCreate,
    SeriesDetailRead,
    SeriesRead,
    SessionReplace,
    SessionReschedule,
)
from salon_scheduler.services.booking_orchestrator import BookingOrchestrator
from salon_scheduler.services.schedule_types import Booking, TreatmentSeries
from salon_scheduler.services.scheduling_errors import InvalidConfigError
from salon_scheduler.services.time_utils import parse_hhmm

# Two prefixes: creation lives at /booking-series, management at /series
create_router = APIRouter()
router = APIRouter()


# =============================================================================
# Helper Functions
# =============================================================================

def _series_fields(series: TreatmentSeries) -> dict:
    return dict(
        id=series.id,
        client_id=series.client_id,
        service_id=series.service_id,
        staff_id=series.staff_id,
        total_sessions=series.total_sessions,
        interval_days=series.interval_days,
        status=series.status.value,
        package_discount=series.package_discount,
        notes=series.notes,
        paused_at=series.paused_at,
        cancelled_at=series.cancelled_at,
        completed_at=series.completed_at,
        created_at=series.created_at,
    )


def _parse_preferred_time(value: str | None) -> time | None:
    if not value:
        return None
    try:
        return parse_hhmm(value)
    except InvalidConfigError as e:
        raise HTTPException(status_code=400, detail=e.message)


def series_to_read(series: TreatmentSeries) -> SeriesRead:
    return SeriesRead(**_series_fields(series))


def series_to_detail(series: TreatmentSeries, sessions: list[Booking]) -> SeriesDetailRead:
    return SeriesDetailRead(
        **_series_fields(series),
        sessions=[booking_to_read(b) for b in sessions],
    )


# =============================================================================
# Creation
# =============================================================================

@create_router.post("", response_model=SeriesDetailRead, status_code=201)
@limiter.limit(BOOKING_LIMIT)
def create_series(
    request: Request,
    data: SeriesCreate,
    tenant_id: UUID = Depends(get_tenant_id),
    orchestrator: BookingOrchestrator = Depends(get_orchestrator),
):
    """
    Book a whole treatment series.

    All sessions are placed or none: 422 with the first unplaceable session
    number when the series does not fit.
    """
    try:
        series, sessions = orchestrator.create_series(
            tenant_id=tenant_id,
            client_id=data.client_id,
            service_id=data.service_id,
            total_sessions=data.total_sessions,
            interval_days=data.interval_days,
            first_session_date=data.first_session_date,
            preferred_staff_id=data.preferred_staff_id,
            preferred_time=_parse_preferred_time(data.preferred_time),
            custom_dates=data.custom_dates,
            package_discount=data.package_discount,
            notes=data.notes,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return series_to_detail(series, sessions)


# =============================================================================
# Management
# =============================================================================

@router.get("/{series_id}", response_model=SeriesDetailRead)
def get_series(
    series_id: UUID,
    tenant_id: UUID = Depends(get_tenant_id),
    orchestrator: BookingOrchestrator = Depends(get_orchestrator),
):
    series, sessions = orchestrator.get_series(tenant_id, series_id)
    return series_to_detail(series, sessions)


@router.post("/{series_id}/pause", response_model=SeriesRead)
def pause_series(
    series_id: UUID,
    tenant_id: UUID = Depends(get_tenant_id),
    orchestrator: BookingOrchestrator = Depends(get_orchestrator),
):
    return series_to_read(orchestrator.pause_series(tenant_id, series_id))


@router.post("/{series_id}/resume", response_model=SeriesRead)
def resume_series(
    series_id: UUID,
    tenant_id: UUID = Depends(get_tenant_id),
    orchestrator: BookingOrchestrator = Depends(get_orchestrator),
):
    return series_to_read(orchestrator.resume_series(tenant_id, series_id))


@router.post("/{series_id}/cancel", response_model=SeriesDetailRead)
def cancel_series(
    series_id: UUID,
    data: SeriesCancel,
    tenant_id: UUID = Depends(get_tenant_id),
    orchestrator: BookingOrchestrator = Depends(get_orchestrator),
):
    """Cancel the series; upcoming sessions are cancelled, completed ones kept."""
    series, sessions = orchestrator.cancel_series(tenant_id, series_id, reason=data.reason)
    return series_to_detail(series, sessions)


@router.post("/{series_id}/sessions/{booking_id}/reschedule", response_model=BookingRead)
def reschedule_session(
    series_id: UUID,
    booking_id: UUID,
    data: SessionReschedule,
    tenant_id: UUID = Depends(get_tenant_id),
    orchestrator: BookingOrchestrator = Depends(get_orchestrator),
):
    try:
        booking = orchestrator.reschedule_session(tenant_id, series_id, booking_id, data.scheduled_at)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return booking_to_read(booking)


@router.post(
    "/{series_id}/sessions/{booking_id}/replace", response_model=BookingRead, status_code=201
)
def replace_missed_session(
    series_id: UUID,
    booking_id: UUID,
    data: SessionReplace,
    tenant_id: UUID = Depends(get_tenant_id),
    orchestrator: BookingOrchestrator = Depends(get_orchestrator),
):
    """Book a make-up session for a no-show, after the last session."""
    booking = orchestrator.replace_missed_session(
        tenant_id,
        series_id,
        booking_id,
        preferred_time=_parse_preferred_time(data.preferred_time),
    )
    return booking_to_read(booking)
