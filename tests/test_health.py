"""Health endpoint tests."""

import pytest
from httpx import AsyncClient


@pytest.mark.asyncio
async def test_health(client: AsyncClient) -> None:
    """GET /health returns 200 with healthy status."""
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


@pytest.mark.asyncio
async def test_readiness(client: AsyncClient) -> None:
    """GET /ready checks the database and the seeded economy record."""
    response = await client.get("/ready")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ready"
    assert data["checks"]["database"] == "ok"
    assert data["checks"]["economy"] == "ok"
    # Redis is never initialized in the test suite
    assert data["checks"]["redis"] == "disabled"


@pytest.mark.asyncio
async def test_readiness_degraded_without_economy(bare_db_session, client: AsyncClient) -> None:
    """An unseeded economy is reported as degraded, not as a crash."""
    from sqlalchemy import delete

    from runcoin.db.models import EconomyConfig

    await bare_db_session.execute(delete(EconomyConfig))
    await bare_db_session.commit()

    response = await client.get("/ready")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "degraded"
    assert data["checks"]["economy"] == "not_configured"


@pytest.mark.asyncio
async def test_version(client: AsyncClient) -> None:
    """GET /version returns version and environment."""
    response = await client.get("/version")
    assert response.status_code == 200
    data = response.json()
    assert data["version"] == "0.1.0"
    assert "environment" in data
