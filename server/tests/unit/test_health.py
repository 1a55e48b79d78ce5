"""Unit tests for health endpoints."""

import pytest
from sqlalchemy.exc import OperationalError

from venue_reservations.core.dependencies import get_db


@pytest.mark.asyncio
async def test_health_check(test_client):
    """Test the health check endpoint."""
    response = await test_client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["service"] == "venue-reservations-api"
    assert "version" in data


@pytest.mark.asyncio
async def test_ready_check(test_client):
    """Test the readiness check endpoint."""
    response = await test_client.get("/ready")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ready"
    assert data["checks"]["database"] == "ok"
    assert data["checks"]["scheduler"] == "stopped"


@pytest.mark.asyncio
async def test_ready_check_database_down(test_app, test_client):
    """Test readiness reports 503 when the database cannot be queried."""

    class UnreachableSession:
        async def execute(self, *args, **kwargs):
            raise OperationalError("SELECT 1", {}, Exception("connection refused"))

    async def override_get_db():
        yield UnreachableSession()

    test_app.dependency_overrides[get_db] = override_get_db

    response = await test_client.get("/ready")

    assert response.status_code == 503
    data = response.json()
    assert data["status"] == "not_ready"
    assert data["checks"]["database"] == "unavailable"


@pytest.mark.asyncio
async def test_info_endpoint(test_client):
    """Test the service info endpoint."""
    response = await test_client.get("/info")
    assert response.status_code == 200
    data = response.json()
    assert "service" in data
    assert "version" in data
    assert data["hold_ttl_seconds"] > 0
    assert data["photoshoot_overlap_policy"] in ("ALLOW_CONCURRENT", "REJECT_OVERLAP")


@pytest.mark.asyncio
async def test_health_ping_rpc(test_client):
    """Test the RPC-style health ping endpoint."""
    response = await test_client.post("/v1/health/ping", json={})
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert "timestamp" in data
