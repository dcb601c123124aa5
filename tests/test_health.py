"""Tests for health check endpoints."""

from unittest.mock import AsyncMock, patch

import pytest

from oncall.services.escalation_activities import ALERT_ORCHESTRATOR


class TestHealthEndpoint:
    """Tests for /health endpoint."""

    @pytest.mark.asyncio
    async def test_returns_healthy_with_db_connected(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["database"] == "connected"
        assert data["scheduler"] == "stopped"
        assert data["orchestrations"] == {
            "pending": 0,
            "running": 0,
            "suspended": 0,
            "completed": 0,
            "failed": 0,
        }

    @pytest.mark.asyncio
    async def test_counts_orchestrations(self, client, runtime):
        await runtime.start_new(ALERT_ORCHESTRATOR, "alert-1", {
            "id": "alert-1",
            "customer_id": "cust-1",
            "resource_id": "db-1",
            "status": "received",
        })

        response = await client.get("/health")

        assert response.json()["orchestrations"]["pending"] == 1

    @pytest.mark.asyncio
    async def test_returns_degraded_when_db_disconnected(self, client):
        with patch(
            "oncall.routers.health.check_database_connection",
            new_callable=AsyncMock,
        ) as mock_db:
            mock_db.return_value = False

            response = await client.get("/health")

        assert response.status_code == 503
        data = response.json()
        assert data["status"] == "degraded"
        assert data["database"] == "disconnected"


class TestProbes:
    """Tests for Kubernetes probes."""

    @pytest.mark.asyncio
    async def test_liveness(self, client):
        response = await client.get("/health/live")

        assert response.status_code == 200
        assert response.json() == {"status": "alive"}

    @pytest.mark.asyncio
    async def test_readiness(self, client):
        response = await client.get("/health/ready")

        assert response.status_code == 200
        assert response.json()["status"] == "ready"

    @pytest.mark.asyncio
    async def test_not_ready_without_database(self, client):
        with patch(
            "oncall.routers.health.check_database_connection",
            new_callable=AsyncMock,
        ) as mock_db:
            mock_db.return_value = False

            response = await client.get("/health/ready")

        assert response.status_code == 503


class TestRoot:
    """Tests for the root endpoint."""

    @pytest.mark.asyncio
    async def test_root(self, client):
        response = await client.get("/")

        assert response.status_code == 200
        assert "name" in response.json()
