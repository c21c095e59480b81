"""Tests for the application factory and its HTTP surface.

Tests cover:
- Health check (ok and degraded)
- Global rate limit middleware wiring and CORS on 429s
- Admin reset endpoint and token checks
- Metrics and stats endpoints
- Request ID propagation and the generic 500 handler
"""

from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
import redis

from admission.app.core.config import Settings
from admission.app.exceptions import InvalidConfiguration
from admission.app.main import create_app
from admission.app.services.counter_store import CounterStore
from admission.app.services.rate_limit import RateLimitConfig, client_address

ADMIN_HEADERS = {"Authorization": "Bearer secret"}


def make_settings(**overrides):
    values = {"admin_token": "secret", "cors_origins": ["http://example.com"]}
    values.update(overrides)
    return Settings(_env_file=None, **values)


def api_limit(max_requests=2):
    return RateLimitConfig(name="api", window_ms=60000, max_requests=max_requests, key_func=client_address)


def make_app(store, clock=None, config=None, limits=None, **kwargs):
    return create_app(
        config=config or make_settings(),
        store=store,
        limits=limits if limits is not None else [api_limit()],
        clock=clock,
        configure_logging=False,
        **kwargs,
    )


def client_for(app, **kwargs):
    transport = httpx.ASGITransport(app=app, **kwargs)
    return httpx.AsyncClient(transport=transport, base_url="http://test")


class TestHealth:
    """Tests for the health check."""

    @pytest.mark.asyncio
    async def test_health_ok(self, store):
        async with client_for(make_app(store)) as client:
            response = await client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"
        assert "X-RateLimit-Limit" not in response.headers

    @pytest.mark.asyncio
    async def test_health_degraded_when_store_down(self):
        mock_redis = AsyncMock()
        mock_redis.ping.side_effect = redis.ConnectionError("down")

        async with client_for(make_app(CounterStore(mock_redis))) as client:
            response = await client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "degraded"
        assert body["components"]["store"]["fail_open"] is True


class TestGlobalLimit:
    """Tests for the app-wide preset."""

    @pytest.mark.asyncio
    async def test_global_preset_blocks(self, store, clock):
        async with client_for(make_app(store, clock=clock)) as client:
            responses = [await client.get("/v1/things") for _ in range(3)]

        assert [r.status_code for r in responses] == [404, 404, 429]
        assert responses[0].headers["X-RateLimit-Remaining"] == "1"

    @pytest.mark.asyncio
    async def test_429_carries_cors_headers(self, store, clock):
        origin = {"Origin": "http://example.com"}
        async with client_for(make_app(store, clock=clock, limits=[api_limit(max_requests=1)])) as client:
            await client.get("/v1/things", headers=origin)
            response = await client.get("/v1/things", headers=origin)

        assert response.status_code == 429
        assert response.headers["access-control-allow-origin"] == "http://example.com"
        assert "X-RateLimit-Reset" in response.headers["access-control-expose-headers"]

    @pytest.mark.asyncio
    async def test_global_preset_can_be_disabled(self, store, clock):
        app = make_app(store, clock=clock, limits=[api_limit(max_requests=1)], global_preset=None)

        async with client_for(app) as client:
            responses = [await client.get("/v1/things") for _ in range(3)]

        assert all(r.status_code == 404 for r in responses)

    def test_unknown_global_preset_fails_fast(self):
        with pytest.raises(InvalidConfiguration):
            make_app(CounterStore(MagicMock()), global_preset="missing")

    def test_invalid_limit_fails_fast(self):
        with pytest.raises(InvalidConfiguration):
            RateLimitConfig(name="api", window_ms=0, max_requests=10, key_func=client_address)


class TestAdminReset:
    """Tests for DELETE /admin/rate-limits/{identifier}."""

    @pytest.mark.asyncio
    async def test_reset_unblocks_identifier(self, store, clock):
        async with client_for(make_app(store, clock=clock)) as client:
            for _ in range(3):
                blocked = await client.get("/v1/things")
            reset = await client.delete("/admin/rate-limits/127.0.0.1", headers=ADMIN_HEADERS)
            after = await client.get("/v1/things")

        assert blocked.status_code == 429
        assert reset.status_code == 200
        assert reset.json() == {"identifier": "127.0.0.1", "scope": None, "deleted": 1}
        assert after.status_code == 404
        assert after.headers["X-RateLimit-Remaining"] == "1"

    @pytest.mark.asyncio
    async def test_scoped_reset(self, store, clock):
        async with client_for(make_app(store, clock=clock)) as client:
            response = await client.delete(
                "/admin/rate-limits/127.0.0.1", params={"scope": "api"}, headers=ADMIN_HEADERS
            )

        assert response.status_code == 200
        assert response.json()["scope"] == "api"
        assert response.json()["deleted"] == 0

    @pytest.mark.asyncio
    async def test_unknown_scope_is_404(self, store):
        async with client_for(make_app(store)) as client:
            response = await client.delete(
                "/admin/rate-limits/127.0.0.1", params={"scope": "missing"}, headers=ADMIN_HEADERS
            )

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_requires_token(self, store):
        async with client_for(make_app(store)) as client:
            missing = await client.delete("/admin/rate-limits/127.0.0.1")
            wrong = await client.delete(
                "/admin/rate-limits/127.0.0.1", headers={"Authorization": "Bearer nope"}
            )

        assert missing.status_code == 401
        assert wrong.status_code == 401

    @pytest.mark.asyncio
    async def test_disabled_without_configured_token(self, store):
        app = make_app(store, config=make_settings(admin_token=""))

        async with client_for(app) as client:
            response = await client.delete("/admin/rate-limits/127.0.0.1", headers=ADMIN_HEADERS)

        assert response.status_code == 503

    @pytest.mark.asyncio
    async def test_store_down_is_503(self):
        mock_redis = MagicMock()
        mock_redis.scan_iter.side_effect = redis.ConnectionError("down")
        app = make_app(CounterStore(mock_redis), global_preset=None)

        async with client_for(app) as client:
            response = await client.delete("/admin/rate-limits/127.0.0.1", headers=ADMIN_HEADERS)

        assert response.status_code == 503
        assert response.json()["detail"]["error"] == "store_unavailable"

    @pytest.mark.asyncio
    async def test_list_presets(self, store):
        async with client_for(make_app(store)) as client:
            response = await client.get("/admin/rate-limits", headers=ADMIN_HEADERS)

        assert response.status_code == 200
        assert response.json()["presets"] == [
            {"name": "api", "window_ms": 60000, "max_requests": 2, "algorithm": "fixed_window"}
        ]


class TestMetricsEndpoints:
    """Tests for /metrics and /stats."""

    @pytest.mark.asyncio
    async def test_prometheus_metrics(self, store, clock):
        async with client_for(make_app(store, clock=clock, limits=[api_limit(max_requests=1)])) as client:
            await client.get("/v1/things")
            await client.get("/v1/things")
            response = await client.get("/metrics", headers=ADMIN_HEADERS)

        assert response.status_code == 200
        assert 'admission_decisions_total{preset="api",outcome="pass"} 1' in response.text
        assert 'admission_decisions_total{preset="api",outcome="block"} 1' in response.text
        assert 'admission_requests_total{endpoint="/v1/things"} 2' in response.text

    @pytest.mark.asyncio
    async def test_stats(self, store, clock):
        async with client_for(make_app(store, clock=clock)) as client:
            await client.get("/v1/things")
            response = await client.get("/stats", headers=ADMIN_HEADERS)

        assert response.status_code == 200
        body = response.json()
        assert body["decisions"] == {"api": {"pass": 1}}
        assert body["total_requests"] >= 1

    @pytest.mark.asyncio
    async def test_metrics_require_admin(self, store):
        async with client_for(make_app(store)) as client:
            response = await client.get("/metrics")

        assert response.status_code == 401


class TestRequestHandling:
    """Tests for request IDs and unhandled errors."""

    @pytest.mark.asyncio
    async def test_request_id_echoed(self, store):
        async with client_for(make_app(store)) as client:
            response = await client.get("/health", headers={"X-Request-ID": "abc-123"})

        assert response.headers["X-Request-ID"] == "abc-123"

    @pytest.mark.asyncio
    async def test_malformed_request_id_replaced(self, store):
        async with client_for(make_app(store)) as client:
            response = await client.get("/health", headers={"X-Request-ID": "not a valid id!"})

        assert response.headers["X-Request-ID"] != "not a valid id!"
        assert len(response.headers["X-Request-ID"]) == 36

    @pytest.mark.asyncio
    async def test_unhandled_error_is_generic_500(self, store):
        app = make_app(store, global_preset=None)

        @app.get("/boom")
        async def boom():
            raise RuntimeError("secret details")

        async with client_for(app, raise_app_exceptions=False) as client:
            response = await client.get("/boom", headers={"X-Request-ID": "req-500"})

        assert response.status_code == 500
        assert response.json()["error"] == "internal_error"
        assert response.json()["request_id"] == "req-500"
        assert "secret details" not in response.text
