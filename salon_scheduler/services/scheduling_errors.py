"""Typed scheduling errors.

Every failure the scheduling core reports to its callers is one of these.
The web layer maps ``SchedulingError.kind`` to a status code, so "pick another
time" (slot unavailable) and "this time is not allowed" (rule violation)
stay distinguishable all the way to the UI.
"""

from enum import Enum


class ErrorKind(str, Enum):
    """Error taxonomy surfaced to API clients."""

    INVALID_CONFIG = "invalid_config"
    BOOKING_RULE_VIOLATION = "booking_rule_violation"
    SLOT_UNAVAILABLE = "slot_unavailable"
    SCHEDULING_INFEASIBLE = "scheduling_infeasible"
    UNAVAILABLE = "unavailable"
    NOT_FOUND = "not_found"
    INVALID_STATE = "invalid_state"
    HOLD_EXPIRED = "hold_expired"


class RuleViolation(str, Enum):
    """Individual booking policy violations."""

    TOO_SOON = "too_soon"
    TOO_FAR_AHEAD = "too_far_ahead"
    SAME_DAY_NOT_ALLOWED = "same_day_not_allowed"
    LIMIT_EXCEEDED = "limit_exceeded"
    ONLINE_BOOKING_DISABLED = "online_booking_disabled"


class SchedulingError(Exception):
    """Base class for scheduling failures."""

    kind: ErrorKind = ErrorKind.INVALID_STATE

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_detail(self) -> dict:
        return {"code": self.kind.value, "message": self.message}


class InvalidConfigError(SchedulingError):
    """Tenant schedule data is malformed. Fatal, not retried."""

    kind = ErrorKind.INVALID_CONFIG


class BookingRuleViolation(SchedulingError):
    """Requested time breaks one or more tenant booking policies."""

    kind = ErrorKind.BOOKING_RULE_VIOLATION

    def __init__(self, violations: list[RuleViolation], message: str | None = None):
        self.violations = list(violations)
        super().__init__(
            message or "Booking not allowed: " + ", ".join(v.value for v in self.violations)
        )

    def to_detail(self) -> dict:
        detail = super().to_detail()
        detail["violations"] = [v.value for v in self.violations]
        return detail


class SlotUnavailableError(SchedulingError):
    """Slot was taken by another booking. Re-query availability and pick again."""

    kind = ErrorKind.SLOT_UNAVAILABLE


class SchedulingInfeasibleError(SchedulingError):
    """A treatment series cannot be fully placed. Nothing was written."""

    kind = ErrorKind.SCHEDULING_INFEASIBLE

    def __init__(self, message: str, session_number: int | None = None):
        self.session_number = session_number
        super().__init__(message)

    def to_detail(self) -> dict:
        detail = super().to_detail()
        if self.session_number is not None:
            detail["session_number"] = self.session_number
        return detail


class StorageUnavailableError(SchedulingError):
    """Storage I/O failed. Safe to retry with backoff."""

    kind = ErrorKind.UNAVAILABLE


class NotFoundError(SchedulingError):
    """Referenced booking, series, service or tenant does not exist."""

    kind = ErrorKind.NOT_FOUND


class InvalidStateError(SchedulingError):
    """Operation is not allowed in the entity's current status."""

    kind = ErrorKind.INVALID_STATE


class HoldExpiredError(SchedulingError):
    """Slot hold ran out before it was confirmed. Hold the slot again."""

    kind = ErrorKind.HOLD_EXPIRED
