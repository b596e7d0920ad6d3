"""Integration tests for health check and metrics endpoints."""

import pytest
from httpx import AsyncClient

pytestmark = pytest.mark.integration


class TestHealthEndpoint:
    """Tests for GET /health endpoint."""

    async def test_health_returns_healthy(self, test_client: AsyncClient):
        """Test basic health check returns 200 and healthy status."""
        response = await test_client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["version"] == "0.1.0"
        assert "timestamp" in data

    async def test_health_echoes_request_id(self, test_client: AsyncClient):
        """Test responses carry the request id header."""
        response = await test_client.get("/health")

        assert "X-Request-ID" in response.headers


class TestHealthDbEndpoint:
    """Tests for GET /health/db endpoint."""

    async def test_health_db_is_healthy(self, test_client: AsyncClient):
        """Test the per-test database answers."""
        response = await test_client.get("/health/db")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert "message" in data["database"]


class TestHealthReadyEndpoint:
    """Tests for GET /health/ready endpoint."""

    async def test_ready_with_memory_cache(self, test_client: AsyncClient):
        """Test the in-memory handoff cache needs no Redis."""
        response = await test_client.get("/health/ready")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["handoff_cache"]["status"] == "healthy"
        assert data["billing"]["status"] == "healthy"
        assert data["details"] == {
            "billing_provider": "mock",
            "webhook_format": "stripe",
            "handoff_cache_backend": "memory",
        }

    async def test_ready_degraded_without_secret(self, test_app, test_client: AsyncClient):
        """Test a missing webhook secret degrades readiness."""
        test_app.state.settings = test_app.state.settings.model_copy(
            update={"billing_webhook_secret": None}
        )

        response = await test_client.get("/health/ready")

        assert response.status_code == 200
        assert response.json()["status"] == "degraded"
        assert response.json()["billing"]["status"] == "degraded"


class TestMetricsEndpoint:
    """Tests for GET /metrics endpoint."""

    async def test_metrics_exposed(self, test_client: AsyncClient):
        """Test the Prometheus scrape endpoint answers without auth."""
        await test_client.get("/health")
        response = await test_client.get("/metrics")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")
