"""Per-staff booking locks.

Booking writes for one (tenant, staff) pair are serialized so the conflict
check and the insert happen as one step. Uses Redis locks when REDIS_URL is
configured (multi-worker), otherwise process-local locks.
"""

import logging
import threading
from collections.abc import Iterator
from contextlib import ExitStack, contextmanager
from uuid import UUID

from redis.exceptions import LockError, RedisError

from salon_scheduler.core.config import settings
from salon_scheduler.core.redis_client import get_redis_client

logger = logging.getLogger(__name__)

LOCK_PREFIX = "salon:booking-lock"


class LockTimeoutError(Exception):
    """Could not acquire a booking lock in time."""


def lock_key(tenant_id: UUID, staff_id: UUID) -> str:
    return f"{LOCK_PREFIX}:{tenant_id}:{staff_id}"


class StaffLockRegistry:
    """Hand out exclusive locks keyed by (tenant, staff)."""

    def __init__(
        self,
        redis_client=None,
        timeout_seconds: float | None = None,
        ttl_seconds: int | None = None,
    ):
        self.redis = redis_client
        self.timeout_seconds = (
            timeout_seconds if timeout_seconds is not None else settings.BOOKING_LOCK_TIMEOUT_SECONDS
        )
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else settings.BOOKING_LOCK_TTL_SECONDS
        self._local_locks: dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def _local_lock(self, key: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._local_locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._local_locks[key] = lock
            return lock

    @contextmanager
    def _acquire_local(self, key: str) -> Iterator[None]:
        lock = self._local_lock(key)
        if not lock.acquire(timeout=self.timeout_seconds):
            raise LockTimeoutError(f"Timed out waiting for {key}")
        try:
            yield
        finally:
            lock.release()

    @contextmanager
    def _acquire_redis(self, key: str) -> Iterator[None]:
        lock = self.redis.lock(key, timeout=self.ttl_seconds, blocking_timeout=self.timeout_seconds)
        try:
            acquired = lock.acquire()
        except RedisError as e:
            raise LockTimeoutError(f"Redis lock failed for {key}: {e}") from e
        if not acquired:
            raise LockTimeoutError(f"Timed out waiting for {key}")
        try:
            yield
        finally:
            try:
                lock.release()
            except LockError:
                # Expired under us; the TTL already freed it.
                logger.warning("Booking lock %s expired before release", key)

    @contextmanager
    def hold(self, tenant_id: UUID, *staff_ids: UUID) -> Iterator[None]:
        """Hold the locks of every listed staff member. Keys are taken in sorted order."""
        keys = sorted({lock_key(tenant_id, staff_id) for staff_id in staff_ids})
        acquire = self._acquire_redis if self.redis is not None else self._acquire_local
        with ExitStack() as stack:
            for key in keys:
                stack.enter_context(acquire(key))
            yield


_registry: StaffLockRegistry | None = None
_registry_guard = threading.Lock()


def get_lock_registry() -> StaffLockRegistry:
    global _registry
    with _registry_guard:
        if _registry is None:
            _registry = StaffLockRegistry(redis_client=get_redis_client())
        return _registry
