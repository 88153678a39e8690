"""Load tenant schedule configuration from its stored JSON form.

Malformed data fails here, at load time, with InvalidConfigError. Slot
computation only ever sees a validated TenantScheduleConfig.
"""

import logging
from collections.abc import Iterable, Mapping
from datetime import time
from uuid import UUID

from pydantic import ValidationError

from salon_scheduler.db.enums import ExceptionKind
from salon_scheduler.schemas.tenant_settings import BookingSettingsPayload, DayHoursPayload
from salon_scheduler.services.schedule_types import (
    BookingRules,
    BusinessHours,
    ScheduleException,
    TenantScheduleConfig,
)
from salon_scheduler.services.scheduling_errors import InvalidConfigError
from salon_scheduler.services.time_utils import Weekday, parse_hhmm, parse_timezone

logger = logging.getLogger(__name__)


def _weekday_from_key(key: object) -> Weekday:
    """Accept weekday names ("monday") or legacy Sunday=0 indices ("0".."6")."""
    if isinstance(key, int) or (isinstance(key, str) and key.strip().isdigit()):
        return Weekday.from_sunday_index(int(key))
    if isinstance(key, str):
        return Weekday.from_name(key)
    raise InvalidConfigError(f"Invalid business hours key: {key!r}")


def _validate_range(start: time, end: time, label: str) -> None:
    if start >= end:
        raise InvalidConfigError(f"{label}: end time must be after start time")


def parse_day_hours(raw: Mapping, label: str) -> BusinessHours:
    """Parse one weekday entry."""
    try:
        payload = DayHoursPayload.model_validate(raw)
    except ValidationError as e:
        raise InvalidConfigError(f"{label}: {e.errors()[0]['msg']}")

    if payload.closed:
        return BusinessHours(closed=True)

    if not payload.open or not payload.close:
        raise InvalidConfigError(f"{label}: open and close are required unless closed")
    open_at = parse_hhmm(payload.open)
    close_at = parse_hhmm(payload.close)
    _validate_range(open_at, close_at, label)

    breaks = []
    for item in payload.breaks:
        start = parse_hhmm(item.start)
        end = parse_hhmm(item.end)
        _validate_range(start, end, f"{label} break")
        if start < open_at or end > close_at:
            raise InvalidConfigError(f"{label}: break {item.start}-{item.end} outside opening hours")
        breaks.append((start, end))

    return BusinessHours(open=open_at, close=close_at, closed=False, breaks=tuple(sorted(breaks)))


def parse_business_hours(raw: Mapping | None) -> dict[Weekday, BusinessHours]:
    """Parse the weekly business_hours document. Exactly one entry per weekday."""
    if not isinstance(raw, Mapping):
        raise InvalidConfigError("Business hours must be an object keyed by weekday")

    hours: dict[Weekday, BusinessHours] = {}
    for key, value in raw.items():
        weekday = _weekday_from_key(key)
        if weekday in hours:
            raise InvalidConfigError(f"Duplicate business hours for {weekday.label}")
        if not isinstance(value, Mapping):
            raise InvalidConfigError(f"Business hours for {weekday.label} must be an object")
        hours[weekday] = parse_day_hours(value, weekday.label)

    missing = [d.label for d in Weekday if d not in hours]
    if missing:
        raise InvalidConfigError(f"Business hours missing for: {', '.join(missing)}")
    return hours


def parse_booking_rules(raw: Mapping | None) -> BookingRules:
    """Parse the nested booking_settings document into BookingRules."""
    try:
        payload = BookingSettingsPayload.model_validate(raw or {})
    except ValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(part) for part in first["loc"])
        raise InvalidConfigError(f"Invalid booking settings ({location}): {first['msg']}")

    return BookingRules(
        min_advance_hours=payload.advance_booking.min_hours,
        max_advance_days=payload.advance_booking.max_days,
        online_booking_enabled=payload.online_booking.enabled,
        allow_same_day=payload.online_booking.allow_same_day,
        require_approval=payload.online_booking.require_approval,
        buffer_before_minutes=payload.buffer_time.before_minutes,
        buffer_after_minutes=payload.buffer_time.after_minutes,
        cancellation_deadline_hours=payload.cancellation.allowed_hours_before,
        charge_cancellation_fee=payload.cancellation.charge_fee,
        cancellation_fee_percentage=payload.cancellation.fee_percentage,
        max_concurrent_bookings=payload.capacity.max_concurrent_bookings,
        max_bookings_per_client_per_day=payload.restrictions.max_bookings_per_client_per_day,
        max_bookings_per_client_per_week=payload.restrictions.max_bookings_per_client_per_week,
    )


def validate_exception(exception: ScheduleException) -> ScheduleException:
    """Blocked exceptions carry no hours; the others need a valid range."""
    if exception.kind == ExceptionKind.BLOCKED:
        return exception
    if exception.start is None or exception.end is None:
        raise InvalidConfigError(
            f"{exception.kind.value} exception on {exception.exception_date} needs start and end"
        )
    _validate_range(exception.start, exception.end, f"exception on {exception.exception_date}")
    return exception


def build_tenant_config(
    tenant_id: UUID,
    timezone: str,
    business_hours: Mapping | None,
    booking_settings: Mapping | None,
    closures: Iterable[ScheduleException] = (),
) -> TenantScheduleConfig:
    """Build a validated TenantScheduleConfig from stored values."""
    parse_timezone(timezone)
    try:
        config = TenantScheduleConfig(
            tenant_id=tenant_id,
            timezone=timezone,
            business_hours=parse_business_hours(business_hours),
            rules=parse_booking_rules(booking_settings),
            closures=tuple(validate_exception(c) for c in closures),
        )
    except InvalidConfigError as e:
        logger.error("Invalid schedule config for tenant %s: %s", tenant_id, e.message)
        raise
    return config
