"""Tenant booking policy checks.

Everything here is a pure function of the tenant's BookingRules and the
instants involved, except within_client_limits, which reads client booking
counts through the storage collaborator.
"""

import logging
from collections.abc import Iterable
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID
from zoneinfo import ZoneInfo

from salon_scheduler.core.structured_logging import build_log_context
from salon_scheduler.services.schedule_types import (
    BookingRules,
    BufferedInterval,
    CancellationOutcome,
    ClientBookingCounts,
)
from salon_scheduler.services.scheduling_errors import BookingRuleViolation, RuleViolation
from salon_scheduler.services.time_utils import week_bounds

if TYPE_CHECKING:
    from salon_scheduler.services.scheduling_store import SchedulingStore

logger = logging.getLogger(__name__)


class BookingRulesEngine:
    """Evaluate one tenant's booking rules."""

    def __init__(
        self,
        rules: BookingRules,
        tz: ZoneInfo,
        store: "SchedulingStore | None" = None,
        tenant_id: UUID | None = None,
    ):
        self.rules = rules
        self.tz = tz
        self.store = store
        self.tenant_id = tenant_id

    # =========================================================================
    # Requested time
    # =========================================================================

    def requested_time_violations(self, requested: datetime, now: datetime) -> list[RuleViolation]:
        """All policy checks for a requested start, evaluated independently."""
        violations: list[RuleViolation] = []
        lead_time = requested - now

        if lead_time < timedelta(hours=self.rules.min_advance_hours):
            violations.append(RuleViolation.TOO_SOON)

        if self.rules.max_advance_days > 0 and lead_time > timedelta(days=self.rules.max_advance_days):
            violations.append(RuleViolation.TOO_FAR_AHEAD)

        if not self.rules.allow_same_day:
            if requested.astimezone(self.tz).date() == now.astimezone(self.tz).date():
                violations.append(RuleViolation.SAME_DAY_NOT_ALLOWED)

        return violations

    def is_requested_time_allowed(self, requested: datetime, now: datetime) -> bool:
        return not self.requested_time_violations(requested, now)

    def validate_requested_time(self, requested: datetime, now: datetime) -> None:
        """Raise BookingRuleViolation listing every broken rule."""
        violations = self.requested_time_violations(requested, now)
        if violations:
            raise BookingRuleViolation(violations)

    def validate_online_booking(self) -> None:
        """Clients can only hold and confirm slots themselves when the tenant allows it."""
        if not self.rules.online_booking_enabled:
            raise BookingRuleViolation(
                [RuleViolation.ONLINE_BOOKING_DISABLED],
                "Online booking is disabled for this salon",
            )

    # =========================================================================
    # Cancellation
    # =========================================================================

    def cancellation_outcome(self, appointment_at: datetime, now: datetime) -> CancellationOutcome:
        """
        Whether an appointment can be cancelled, and at what fee.

        Past appointments cannot be cancelled. An appointment starting exactly
        now still can. Inside the deadline the fee follows tenant policy.
        """
        if appointment_at < now:
            return CancellationOutcome(allowed=False)

        deadline = timedelta(hours=self.rules.cancellation_deadline_hours)
        if appointment_at - now < deadline and self.rules.charge_cancellation_fee:
            return CancellationOutcome(
                allowed=True,
                fee_required=True,
                fee_percentage=self.rules.cancellation_fee_percentage,
            )
        return CancellationOutcome(allowed=True, fee_required=False, fee_percentage=Decimal("0"))

    # =========================================================================
    # Buffers
    # =========================================================================

    def apply_buffer(self, start: datetime, duration_minutes: int) -> BufferedInterval:
        return self.rules.buffer.pad(start, duration_minutes)

    # =========================================================================
    # Client caps
    # =========================================================================

    def client_limit_exceeded(
        self,
        counts: ClientBookingCounts,
        day: date,
        pending: Iterable[date] = (),
    ) -> bool:
        """
        True if one more booking on ``day`` would break a cap.

        ``pending`` holds dates of bookings planned in the same request but
        not written yet (series sessions).
        """
        pending = list(pending)
        monday, sunday = week_bounds(day)
        daily = counts.daily_count + sum(1 for d in pending if d == day)
        weekly = counts.weekly_count + sum(1 for d in pending if monday <= d <= sunday)

        daily_cap = self.rules.max_bookings_per_client_per_day
        weekly_cap = self.rules.max_bookings_per_client_per_week
        if daily_cap and daily + 1 > daily_cap:
            return True
        if weekly_cap and weekly + 1 > weekly_cap:
            return True
        return False

    def within_client_limits(
        self,
        client_id: UUID,
        day: date,
        pending: Iterable[date] = (),
    ) -> None:
        """Raise BookingRuleViolation(LIMIT_EXCEEDED) if the client is at a cap."""
        rules = self.rules
        if not rules.max_bookings_per_client_per_day and not rules.max_bookings_per_client_per_week:
            return
        if self.store is None or self.tenant_id is None:
            raise RuntimeError("Client limit check requires a storage collaborator")

        counts = self.store.get_client_booking_counts(self.tenant_id, client_id, day, self.tz)
        if self.client_limit_exceeded(counts, day, pending):
            logger.info(
                "Client booking cap reached",
                extra=build_log_context(tenant_id=self.tenant_id, booking_date=day.isoformat()),
            )
            raise BookingRuleViolation([RuleViolation.LIMIT_EXCEEDED])
