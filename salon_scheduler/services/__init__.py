"""Scheduling service layer."""

from salon_scheduler.services.availability_service import AvailabilityEngine
from salon_scheduler.services.booking_orchestrator import BookingOrchestrator
from salon_scheduler.services.booking_rules import BookingRulesEngine
from salon_scheduler.services.business_hours import BusinessHoursResolver
from salon_scheduler.services.conflict_detector import find_conflict, has_conflict, overlaps
from salon_scheduler.services.scheduling_errors import (
    BookingRuleViolation,
    ErrorKind,
    InvalidConfigError,
    InvalidStateError,
    NotFoundError,
    RuleViolation,
    SchedulingError,
    SchedulingInfeasibleError,
    SlotUnavailableError,
    StorageUnavailableError,
)
from salon_scheduler.services.scheduling_store import SchedulingStore, SqlSchedulingStore
from salon_scheduler.services.series_service import TreatmentSeriesScheduler

__all__ = [
    "AvailabilityEngine",
    "BookingOrchestrator",
    "BookingRulesEngine",
    "BusinessHoursResolver",
    "TreatmentSeriesScheduler",
    "SchedulingStore",
    "SqlSchedulingStore",
    "find_conflict",
    "has_conflict",
    "overlaps",
    # Errors
    "BookingRuleViolation",
    "ErrorKind",
    "InvalidConfigError",
    "InvalidStateError",
    "NotFoundError",
    "RuleViolation",
    "SchedulingError",
    "SchedulingInfeasibleError",
    "SlotUnavailableError",
    "StorageUnavailableError",
]
