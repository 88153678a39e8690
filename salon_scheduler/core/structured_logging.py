"""Structured logging helpers (no client PII)."""

from typing import Any
from uuid import UUID


def build_log_context(
    *,
    tenant_id: UUID | str | None = None,
    staff_id: UUID | str | None = None,
    booking_id: UUID | str | None = None,
    series_id: UUID | str | None = None,
    booking_date: str | None = None,
    request_id: str | None = None,
    route: str | None = None,
    method: str | None = None,
) -> dict[str, Any]:
    """Return a log context dict. Client identifiers are never included."""
    context: dict[str, Any] = {}
    if tenant_id:
        context["tenant_id"] = str(tenant_id)
    if staff_id:
        context["staff_id"] = str(staff_id)
    if booking_id:
        context["booking_id"] = str(booking_id)
    if series_id:
        context["series_id"] = str(series_id)
    if booking_date:
        context["booking_date"] = booking_date
    if request_id:
        context["request_id"] = request_id
    if route:
        context["route"] = route
    if method:
        context["method"] = method
    return context
