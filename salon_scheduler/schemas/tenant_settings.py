"""Tenant settings schemas - shape of the stored booking_settings JSON."""

from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field


class _SettingsBlock(BaseModel):
    model_config = ConfigDict(extra="ignore")


class AdvanceBookingSettings(_SettingsBlock):
    min_hours: int = Field(0, ge=0)
    max_days: int = Field(90, ge=0, description="0 disables the horizon check")


class CancellationSettings(_SettingsBlock):
    allowed_hours_before: int = Field(24, ge=0)
    charge_fee: bool = False
    fee_percentage: Decimal = Field(Decimal("0"), ge=0, le=100)


class BufferTimeSettings(_SettingsBlock):
    before_minutes: int = Field(0, ge=0, le=240)
    after_minutes: int = Field(0, ge=0, le=240)


class OnlineBookingSettings(_SettingsBlock):
    enabled: bool = True
    require_approval: bool = False
    allow_same_day: bool = True


class CapacitySettings(_SettingsBlock):
    max_concurrent_bookings: int = Field(1, ge=1)


class RestrictionSettings(_SettingsBlock):
    max_bookings_per_client_per_day: int = Field(0, ge=0)
    max_bookings_per_client_per_week: int = Field(0, ge=0)


class BookingSettingsPayload(_SettingsBlock):
    """Nested booking_settings document as edited in the admin settings UI."""
    advance_booking: AdvanceBookingSettings = Field(default_factory=AdvanceBookingSettings)
    cancellation: CancellationSettings = Field(default_factory=CancellationSettings)
    buffer_time: BufferTimeSettings = Field(default_factory=BufferTimeSettings)
    online_booking: OnlineBookingSettings = Field(default_factory=OnlineBookingSettings)
    capacity: CapacitySettings = Field(default_factory=CapacitySettings)
    restrictions: RestrictionSettings = Field(default_factory=RestrictionSettings)


class BreakPayload(_SettingsBlock):
    start: str
    end: str


class DayHoursPayload(_SettingsBlock):
    """One weekday entry of the business_hours JSON."""
    open: str | None = None
    close: str | None = None
    closed: bool = False
    breaks: list[BreakPayload] = Field(default_factory=list)
