import pytest

from salon_scheduler.core import redis_client
from salon_scheduler.core.config import settings


@pytest.fixture(autouse=True)
def fresh_client():
    redis_client.reset_redis_client()
    yield
    redis_client.reset_redis_client()


def test_get_redis_url_disabled(monkeypatch):
    monkeypatch.setattr(settings, "REDIS_URL", "")
    assert redis_client.get_redis_url() is None

    monkeypatch.setattr(settings, "REDIS_URL", "memory://")
    assert redis_client.get_redis_url() is None


def test_client_none_when_disabled(monkeypatch):
    monkeypatch.setattr(settings, "REDIS_URL", "memory://")
    assert redis_client.get_redis_client() is None


def test_client_uses_pool_settings(monkeypatch):
    monkeypatch.setattr(settings, "REDIS_URL", "redis://localhost:6379/0")
    monkeypatch.setattr(settings, "REDIS_MAX_CONNECTIONS", 7)

    client = redis_client.get_redis_client()

    assert client is not None
    assert client.connection_pool.max_connections == 7
    assert redis_client.get_redis_client() is client


def test_unreachable_redis():
    # Nothing listens on port 1
    assert redis_client.redis_reachable("redis://127.0.0.1:1/0") is False
