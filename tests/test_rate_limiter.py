"""Tests for the Redis rate limiting middleware."""

import fakeredis
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from redis_rate_limiter import RedisRateLimiter


def _app(redis_client, per_ip=3, per_user=2):
    app = FastAPI()
    app.add_middleware(
        RedisRateLimiter,
        redis_client=redis_client,
        requests_per_minute_ip=per_ip,
        requests_per_minute_user=per_user,
    )

    @app.get("/ping")
    async def ping():
        return {"ok": True}

    return app


@pytest.fixture
def fake_redis():
    return fakeredis.FakeRedis()


class TestRateLimits:
    def test_ip_limit(self, fake_redis):
        client = TestClient(_app(fake_redis))

        statuses = [client.get("/ping").status_code for _ in range(4)]

        assert statuses == [200, 200, 200, 429]

    def test_rejection_body(self, fake_redis):
        client = TestClient(_app(fake_redis, per_ip=1))
        client.get("/ping")

        response = client.get("/ping")

        assert response.status_code == 429
        assert response.json() == {"success": False, "error": "Rate limit exceeded. Maximum 1 requests per minute."}
        assert response.headers["Retry-After"] == "60"

    def test_user_limit_is_separate(self, fake_redis):
        client = TestClient(_app(fake_redis, per_ip=10, per_user=2))
        headers = {"Authorization": "Bearer token-one"}

        statuses = [client.get("/ping", headers=headers).status_code for _ in range(3)]

        assert statuses == [200, 200, 429]
        assert client.get("/ping").status_code == 200

    def test_forwarded_for_used_as_client_ip(self, fake_redis):
        client = TestClient(_app(fake_redis, per_ip=1))

        first = client.get("/ping", headers={"X-Forwarded-For": "10.0.0.1, 172.16.0.1"})
        second = client.get("/ping", headers={"X-Forwarded-For": "10.0.0.2"})

        assert first.status_code == 200
        assert second.status_code == 200
        assert fake_redis.exists("rate:ip:10.0.0.1")

    def test_fails_open_without_redis(self):
        server = fakeredis.FakeServer()
        server.connected = False
        client = TestClient(_app(fakeredis.FakeRedis(server=server), per_ip=1))

        statuses = [client.get("/ping").status_code for _ in range(3)]

        assert statuses == [200, 200, 200]


class TestSuspiciousActivity:
    def test_repeated_unauthorized_flagged(self, fake_redis):
        limiter = RedisRateLimiter(_app(fake_redis), redis_client=fake_redis)

        results = [limiter._detect_suspicious_activity(401, "10.0.0.9") for _ in range(5)]

        assert results[:4] == [None] * 4
        assert results[4] == "credential_stuffing"

    def test_success_not_counted(self, fake_redis):
        limiter = RedisRateLimiter(_app(fake_redis), redis_client=fake_redis)

        assert limiter._detect_suspicious_activity(200, "10.0.0.9") is None
        assert fake_redis.keys("suspicious:*") == []
