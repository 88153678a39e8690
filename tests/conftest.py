"""
Test configuration and fixtures.

Provides:
- In-memory SchedulingStore for service-level tests
- Tenant configuration builders (business hours, booking rules)
- SQLite database session (schema created per test)
- HTTPX AsyncClient with the tenant header set
"""
import os
import threading
import time as time_module
import uuid
from dataclasses import replace
from datetime import date, datetime, time, timezone
from decimal import Decimal
from typing import AsyncGenerator, Generator

# Settings are read at import time; point them at SQLite before importing the app
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["TESTING"] = "1"
os.environ.setdefault("REDIS_URL", "memory://")

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.orm import Session

from salon_scheduler.core.locks import StaffLockRegistry
import salon_scheduler.db.models  # noqa: F401  (register tables on Base.metadata)
from salon_scheduler.db.base import Base
from salon_scheduler.db.enums import ACTIVE_BOOKING_STATUSES, BookingStatus
from salon_scheduler.db.session import SessionLocal, engine
from salon_scheduler.services.booking_orchestrator import BookingOrchestrator
from salon_scheduler.services.schedule_types import (
    Booking,
    BookingRules,
    BusinessHours,
    ClientBookingCounts,
    ServiceInfo,
    StaffSchedule,
    TenantScheduleConfig,
)
from salon_scheduler.services.scheduling_errors import NotFoundError, StorageUnavailableError
from salon_scheduler.services.time_utils import Weekday, week_bounds


# =============================================================================
# In-memory store
# =============================================================================

class InMemorySchedulingStore:
    """Thread-safe SchedulingStore used by the service tests."""

    def __init__(self, write_delay: float = 0.0):
        self.configs: dict[uuid.UUID, TenantScheduleConfig] = {}
        self.schedules: dict[tuple[uuid.UUID, uuid.UUID], StaffSchedule] = {}
        self.services: dict[tuple[uuid.UUID, uuid.UUID], ServiceInfo] = {}
        self.qualified: dict[tuple[uuid.UUID, uuid.UUID], list[uuid.UUID]] = {}
        self.bookings: dict[uuid.UUID, Booking] = {}
        self.series: dict = {}
        self.holds: dict = {}
        self.write_delay = write_delay
        self.fail_writes = False
        self._lock = threading.Lock()

    # Setup helpers ------------------------------------------------------------

    def add_tenant(self, config: TenantScheduleConfig) -> None:
        self.configs[config.tenant_id] = config

    def set_rules(self, tenant_id: uuid.UUID, **changes) -> None:
        config = self.configs[tenant_id]
        self.configs[tenant_id] = replace(config, rules=replace(config.rules, **changes))

    def add_staff(self, schedule: StaffSchedule) -> None:
        self.schedules[(schedule.tenant_id, schedule.staff_id)] = schedule

    def add_service(self, service: ServiceInfo, staff_ids: list[uuid.UUID]) -> None:
        self.services[(service.tenant_id, service.id)] = service
        self.qualified[(service.tenant_id, service.id)] = list(staff_ids)

    def add_booking(self, booking: Booking) -> Booking:
        with self._lock:
            self.bookings[booking.id] = replace(booking)
        return booking

    # SchedulingStore ----------------------------------------------------------

    def get_tenant_config(self, tenant_id):
        try:
            return self.configs[tenant_id]
        except KeyError:
            raise NotFoundError("Tenant schedule settings not found")

    def get_staff_schedule(self, tenant_id, staff_id):
        return self.schedules.get(
            (tenant_id, staff_id),
            StaffSchedule(tenant_id=tenant_id, staff_id=staff_id, week={}),
        )

    def get_service(self, tenant_id, service_id, staff_id=None):
        service = self.services.get((tenant_id, service_id))
        if service is None:
            raise NotFoundError("Service not found")
        if staff_id is not None and staff_id not in self.qualified.get((tenant_id, service_id), []):
            raise NotFoundError("Staff member does not offer this service")
        return service

    def list_qualified_staff(self, tenant_id, service_id):
        return list(self.qualified.get((tenant_id, service_id), []))

    def get_existing_bookings(self, tenant_id, staff_id, start, end):
        with self._lock:
            return sorted(
                (
                    replace(b)
                    for b in self.bookings.values()
                    if b.tenant_id == tenant_id
                    and b.staff_id == staff_id
                    and b.status in ACTIVE_BOOKING_STATUSES
                    and b.scheduled_at < end
                    and b.end > start
                ),
                key=lambda b: b.scheduled_at,
            )

    def get_client_booking_counts(self, tenant_id, client_id, day, tz):
        monday, sunday = week_bounds(day)
        daily = weekly = 0
        with self._lock:
            for b in self.bookings.values():
                if b.tenant_id != tenant_id or b.client_id != client_id:
                    continue
                if b.status == BookingStatus.CANCELLED:
                    continue
                local_day = b.scheduled_at.astimezone(tz).date()
                if local_day == day:
                    daily += 1
                if monday <= local_day <= sunday:
                    weekly += 1
        return ClientBookingCounts(daily_count=daily, weekly_count=weekly)

    def get_booking(self, tenant_id, booking_id):
        booking = self.bookings.get(booking_id)
        if booking is None or booking.tenant_id != tenant_id:
            raise NotFoundError("Booking not found")
        return replace(booking)

    def find_booking_by_idempotency_key(self, tenant_id, key):
        with self._lock:
            for b in self.bookings.values():
                if b.tenant_id == tenant_id and b.idempotency_key == key:
                    return replace(b)
        return None

    def write_booking(self, booking):
        if self.write_delay:
            time_module.sleep(self.write_delay)
        if self.fail_writes:
            raise StorageUnavailableError("Storage unavailable during write_booking")
        with self._lock:
            self.bookings[booking.id] = replace(
                booking, created_at=booking.created_at or datetime.now(timezone.utc)
            )
            return replace(self.bookings[booking.id])

    def update_booking(self, booking):
        with self._lock:
            if booking.id not in self.bookings:
                raise NotFoundError("Booking not found")
            self.bookings[booking.id] = replace(booking)
            return replace(booking)

    def get_series(self, tenant_id, series_id):
        series = self.series.get(series_id)
        if series is None or series.tenant_id != tenant_id:
            raise NotFoundError("Treatment series not found")
        return replace(series)

    def list_series_bookings(self, tenant_id, series_id):
        with self._lock:
            sessions = [
                replace(b)
                for b in self.bookings.values()
                if b.tenant_id == tenant_id and b.series_id == series_id
            ]
        return sorted(sessions, key=lambda b: (b.series_session_number or 0, b.scheduled_at))

    def write_series(self, series, bookings):
        if self.fail_writes:
            raise StorageUnavailableError("Storage unavailable during write_series")
        with self._lock:
            self.series[series.id] = replace(series, created_at=datetime.now(timezone.utc))
            for b in bookings:
                self.bookings[b.id] = replace(b)
        return replace(self.series[series.id]), [replace(b) for b in bookings]

    def update_series(self, series, bookings=()):
        with self._lock:
            if series.id not in self.series:
                raise NotFoundError("Treatment series not found")
            self.series[series.id] = replace(series)
            for b in bookings:
                self.bookings[b.id] = replace(b)
        return replace(series)

    def get_active_holds(self, tenant_id, staff_id, start, end, now):
        with self._lock:
            return sorted(
                (
                    replace(h)
                    for h in self.holds.values()
                    if h.tenant_id == tenant_id
                    and h.staff_id == staff_id
                    and h.expires_at > now
                    and h.scheduled_at < end
                    and h.end > start
                ),
                key=lambda h: h.scheduled_at,
            )

    def get_hold(self, tenant_id, hold_id):
        hold = self.holds.get(hold_id)
        if hold is None or hold.tenant_id != tenant_id:
            raise NotFoundError("Hold not found or expired")
        return replace(hold)

    def replace_session_hold(self, hold):
        if self.fail_writes:
            raise StorageUnavailableError("Storage unavailable during replace_session_hold")
        with self._lock:
            for key in [
                k for k, h in self.holds.items()
                if h.tenant_id == hold.tenant_id and h.session_id == hold.session_id
            ]:
                del self.holds[key]
            self.holds[hold.id] = replace(hold, created_at=datetime.now(timezone.utc))
            return replace(self.holds[hold.id])

    def delete_hold(self, tenant_id, hold_id, session_id):
        with self._lock:
            hold = self.holds.get(hold_id)
            if hold is None or hold.tenant_id != tenant_id or hold.session_id != session_id:
                return False
            del self.holds[hold_id]
            return True

    def delete_expired_holds(self, now, tenant_id=None):
        with self._lock:
            expired = [
                k for k, h in self.holds.items()
                if h.expires_at <= now and (tenant_id is None or h.tenant_id == tenant_id)
            ]
            for key in expired:
                del self.holds[key]
        return len(expired)

    def confirm_hold(self, hold, booking):
        if self.write_delay:
            time_module.sleep(self.write_delay)
        if self.fail_writes:
            raise StorageUnavailableError("Storage unavailable during confirm_hold")
        with self._lock:
            self.holds.pop(hold.id, None)
            self.bookings[booking.id] = replace(booking, created_at=datetime.now(timezone.utc))
            return replace(self.bookings[booking.id])


# =============================================================================
# Tenant configuration
# =============================================================================

def weekday_hours(open_at: time = time(9), close_at: time = time(17), sunday_closed: bool = True):
    """Mon-Sat open_at-close_at, Sunday optionally closed."""
    hours = {day: BusinessHours(open=open_at, close=close_at) for day in Weekday}
    if sunday_closed:
        hours[Weekday.SUNDAY] = BusinessHours(closed=True)
    return hours


def full_week(start: time = time(9), end: time = time(17)):
    return {day: ((start, end),) for day in Weekday if day != Weekday.SUNDAY}


@pytest.fixture
def tenant_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def staff_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def client_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def service_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def now() -> datetime:
    """Tuesday 2030-01-01 08:00 UTC."""
    return datetime(2030, 1, 1, 8, 0, tzinfo=timezone.utc)


@pytest.fixture
def monday() -> date:
    return date(2030, 1, 7)


@pytest.fixture
def tenant_config(tenant_id) -> TenantScheduleConfig:
    return TenantScheduleConfig(
        tenant_id=tenant_id,
        timezone="UTC",
        business_hours=weekday_hours(),
        rules=BookingRules(),
    )


@pytest.fixture
def store(tenant_config, tenant_id, staff_id, service_id) -> InMemorySchedulingStore:
    """Tenant open Mon-Sat 9-17, one staff member, one 60 minute service at 100.00."""
    store = InMemorySchedulingStore()
    store.add_tenant(tenant_config)
    store.add_staff(StaffSchedule(tenant_id=tenant_id, staff_id=staff_id, week=full_week()))
    store.add_service(
        ServiceInfo(
            id=service_id,
            tenant_id=tenant_id,
            name="Laser session",
            duration_minutes=60,
            price=Decimal("100.00"),
        ),
        [staff_id],
    )
    return store


@pytest.fixture
def add_staff_member(store, tenant_id):
    """Register another staff member working Mon-Sat 9-17."""

    def _add(staff_id: uuid.UUID | None = None) -> uuid.UUID:
        staff_id = staff_id or uuid.uuid4()
        store.add_staff(StaffSchedule(tenant_id=tenant_id, staff_id=staff_id, week=full_week()))
        return staff_id

    return _add


@pytest.fixture
def locks() -> StaffLockRegistry:
    return StaffLockRegistry(redis_client=None, timeout_seconds=5, ttl_seconds=30)


@pytest.fixture
def orchestrator(store, locks) -> BookingOrchestrator:
    return BookingOrchestrator(
        store, locks=locks, slot_granularity_minutes=15, series_search_window_days=14
    )


@pytest.fixture
def make_booking(tenant_id, staff_id, client_id, service_id):
    """Factory for Booking values with sensible defaults."""

    def _make(scheduled_at: datetime, duration_minutes: int = 60, **overrides) -> Booking:
        fields = dict(
            id=uuid.uuid4(),
            tenant_id=tenant_id,
            staff_id=staff_id,
            client_id=client_id,
            service_id=service_id,
            scheduled_at=scheduled_at,
            duration_minutes=duration_minutes,
            status=BookingStatus.CONFIRMED,
        )
        fields.update(overrides)
        return Booking(**fields)

    return _make


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """
    SQLite session on a freshly created schema.

    The in-memory database lives on one shared connection, so the schema is
    dropped after each test instead of rolling back a savepoint.
    """
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


# =============================================================================
# HTTP Client Fixtures
# =============================================================================

@pytest.fixture
async def client(db: Session, tenant_id: uuid.UUID) -> AsyncGenerator[AsyncClient, None]:
    """Async client with the tenant header and the test database session."""
    from salon_scheduler.core.deps import get_db
    from salon_scheduler.main import app

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="https://test",
        headers={"X-Tenant-ID": str(tenant_id)},
    ) as c:
        yield c

    app.dependency_overrides.clear()
