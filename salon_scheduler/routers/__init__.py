"""API routers."""

from salon_scheduler.routers.availability import router as availability_router
from salon_scheduler.routers.bookings import router as bookings_router
from salon_scheduler.routers.series import create_router as series_create_router
from salon_scheduler.routers.series import router as series_router

__all__ = [
    "availability_router",
    "bookings_router",
    "series_create_router",
    "series_router",
]
