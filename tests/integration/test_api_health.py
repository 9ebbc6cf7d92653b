"""Integration tests for the health and metrics endpoints."""

from __future__ import annotations

import pytest
from httpx import AsyncClient

pytestmark = pytest.mark.integration


class TestHealth:
    async def test_liveness(self, client: AsyncClient) -> None:
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    async def test_deep_health_ok(self, client: AsyncClient) -> None:
        response = await client.get("/api/health")

        body = response.json()
        assert response.status_code == 200
        assert body["status"] == "ok"
        assert body["database"] == "ok"
        assert body["redis"] == "ok"

    async def test_deep_health_degraded_when_redis_down(
        self, client: AsyncClient, fake_redis, monkeypatch
    ) -> None:
        async def _refuse() -> bool:
            raise ConnectionError("redis unavailable")

        monkeypatch.setattr(fake_redis, "ping", _refuse)

        response = await client.get("/api/health")

        assert response.status_code == 200
        assert response.json()["status"] == "degraded"
        assert response.json()["redis"] == "error"

    async def test_request_id_is_echoed(self, client: AsyncClient) -> None:
        response = await client.get("/health", headers={"X-Request-ID": "req-123"})

        assert response.headers["X-Request-ID"] == "req-123"

    async def test_metrics_exposed(self, client: AsyncClient) -> None:
        await client.get("/health")

        response = await client.get("/metrics")

        assert response.status_code == 200
        assert "http_requests_total" in response.text
