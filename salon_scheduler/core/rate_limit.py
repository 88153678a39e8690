"""Rate limiting configuration for the scheduling API."""

import os

from slowapi import Limiter
from slowapi.util import get_remote_address

from salon_scheduler.core.config import settings
from salon_scheduler.core.redis_client import MEMORY_BACKEND, get_redis_url, redis_reachable

# Redis storage for multi-worker support. Falls back to in-memory if Redis
# is not configured or not reachable (dev/test mode).
IS_TESTING = os.getenv("TESTING", "").lower() in ("1", "true", "yes")
DEFAULT_LIMITS = (
    []
    if IS_TESTING or settings.RATE_LIMIT_API <= 0
    else [f"{settings.RATE_LIMIT_API}/minute"]
)
BOOKING_LIMIT = (
    f"{settings.RATE_LIMIT_BOOKING}/minute"
    if not IS_TESTING and settings.RATE_LIMIT_BOOKING > 0
    else "1000000/minute"
)


def _storage_uri() -> str:
    if IS_TESTING:
        return MEMORY_BACKEND
    url = get_redis_url()
    if url is None or not redis_reachable(url):
        return MEMORY_BACKEND
    return url


limiter = Limiter(
    key_func=get_remote_address,
    storage_uri=_storage_uri(),
    default_limits=DEFAULT_LIMITS,
)
