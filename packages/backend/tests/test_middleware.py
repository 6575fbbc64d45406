"""Tests for middleware — security headers, request IDs, rate limit buckets.

Learn: The httpx client never runs the lifespan, so no Redis is opened
and rate limiting is skipped there. The limiter itself is exercised
through TestClient (which does run the lifespan) with an in-memory
counter standing in for Redis.
"""

import pytest
from starlette.requests import Request
from starlette.testclient import TestClient

from firemarket.config import settings
from firemarket.main import create_app
from firemarket.middleware.rate_limit import is_write
from firemarket.realtime import pubsub


@pytest.mark.asyncio
async def test_security_headers_on_health(client):
    r = await client.get("/api/v1/health")
    assert r.status_code == 200
    assert r.headers["X-Content-Type-Options"] == "nosniff"
    assert r.headers["X-Frame-Options"] == "DENY"
    assert r.headers["Referrer-Policy"] == "strict-origin-when-cross-origin"


@pytest.mark.asyncio
async def test_request_id_generated(client):
    """Each request gets a unique X-Request-ID header."""
    r1 = await client.get("/api/v1/health")
    r2 = await client.get("/api/v1/health")
    assert r1.headers["X-Request-ID"] != r2.headers["X-Request-ID"]


@pytest.mark.asyncio
async def test_request_id_propagated(client):
    r = await client.get("/api/v1/health", headers={"X-Request-ID": "trace-42"})
    assert r.headers["X-Request-ID"] == "trace-42"


@pytest.mark.asyncio
async def test_no_hsts_on_http(client):
    r = await client.get("/api/v1/health")
    assert "Strict-Transport-Security" not in r.headers


def _request(method: str, path: str) -> Request:
    return Request({"type": "http", "method": method, "path": path, "headers": [], "query_string": b""})


def test_write_bucket():
    assert is_write(_request("POST", "/api/v1/marketplace/ads"))
    assert is_write(_request("POST", "/api/v1/marketplace/ads/abc/bids"))
    assert is_write(_request("POST", "/api/v1/reviews"))
    assert not is_write(_request("GET", "/api/v1/marketplace/ads"))
    assert not is_write(_request("PUT", "/api/v1/marketplace/bids/abc/accept"))
    assert not is_write(_request("POST", "/api/v1/notifications/mark-all-read"))


class CounterRedis:
    """Just enough of a Redis client for the rate limiter."""

    def __init__(self):
        self.counts: dict[str, int] = {}
        self.closed = False

    async def ping(self):
        return True

    async def incr(self, key):
        self.counts[key] = self.counts.get(key, 0) + 1
        return self.counts[key]

    async def expire(self, key, seconds):
        return True

    async def aclose(self):
        self.closed = True


def test_rate_limit_active_with_memory_realtime_backend(monkeypatch):
    fake = CounterRedis()

    async def fake_init_redis():
        pubsub._redis = fake
        return fake

    monkeypatch.setattr(pubsub, "_redis", None)
    monkeypatch.setattr(pubsub, "init_redis", fake_init_redis)
    monkeypatch.setattr(settings, "create_tables", False)
    monkeypatch.setattr(settings, "realtime_backend", "memory")
    monkeypatch.setattr(settings, "rate_limit_rpm", 2)

    app = create_app()
    with TestClient(app) as tc:
        assert pubsub.get_redis() is fake
        assert app.state.realtime.stats()["backend"] == "LocalDispatcher"

        first = tc.get("/no-such-route")
        assert first.status_code == 404
        assert first.headers["X-RateLimit-Limit"] == "2"
        assert tc.get("/no-such-route").status_code == 404
        third = tc.get("/no-such-route")
        assert third.status_code == 429
        assert third.headers["Retry-After"] == "60"

    assert fake.closed is True
    assert pubsub._redis is None
