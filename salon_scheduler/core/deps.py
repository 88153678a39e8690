"""FastAPI dependencies for tenant resolution, database access and services."""

from typing import Generator
from uuid import UUID

from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session

from salon_scheduler.core.locks import get_lock_registry
from salon_scheduler.db.session import SessionLocal
from salon_scheduler.services.booking_orchestrator import BookingOrchestrator
from salon_scheduler.services.scheduling_store import SqlSchedulingStore

TENANT_HEADER = "X-Tenant-ID"


def get_db() -> Generator[Session, None, None]:
    """
    Database session dependency.

    Yields a database session and ensures it's closed after the request.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_tenant_id(x_tenant_id: str | None = Header(None, alias=TENANT_HEADER)) -> UUID:
    """Tenant id set by the upstream gateway after authentication."""
    if not x_tenant_id:
        raise HTTPException(status_code=400, detail=f"Missing {TENANT_HEADER} header")
    try:
        return UUID(x_tenant_id)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid {TENANT_HEADER} header")


def get_store(db: Session = Depends(get_db)) -> SqlSchedulingStore:
    return SqlSchedulingStore(db)


def get_orchestrator(store: SqlSchedulingStore = Depends(get_store)) -> BookingOrchestrator:
    return BookingOrchestrator(store, locks=get_lock_registry())
