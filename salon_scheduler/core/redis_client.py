"""Shared Redis connection for booking locks and rate limit storage."""

from __future__ import annotations

import logging

import redis

from salon_scheduler.core.config import settings

logger = logging.getLogger(__name__)

MEMORY_BACKEND = "memory://"

_client: redis.Redis | None = None


def get_redis_url() -> str | None:
    """Configured Redis URL, or None when Redis is switched off."""
    url = (settings.REDIS_URL or "").strip()
    if not url or url.lower() == MEMORY_BACKEND:
        return None
    return url


def redis_reachable(url: str) -> bool:
    try:
        redis.Redis.from_url(url, socket_connect_timeout=1).ping()
    except redis.RedisError as e:
        logger.warning("Redis at configured REDIS_URL is unreachable: %s", e)
        return False
    return True


def get_redis_client() -> redis.Redis | None:
    """Process-wide pooled client; None means callers use their local fallback."""
    global _client
    url = get_redis_url()
    if url is None:
        return None
    if _client is None:
        pool = redis.ConnectionPool.from_url(
            url,
            max_connections=settings.REDIS_MAX_CONNECTIONS,
            socket_connect_timeout=settings.REDIS_SOCKET_TIMEOUT_SECONDS,
            socket_timeout=settings.REDIS_SOCKET_TIMEOUT_SECONDS,
            retry_on_timeout=True,
        )
        _client = redis.Redis(connection_pool=pool)
    return _client


def reset_redis_client() -> None:
    global _client
    _client = None
