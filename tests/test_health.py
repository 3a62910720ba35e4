"""Tests for health endpoints."""

from unittest.mock import AsyncMock, patch

import pytest
from httpx import AsyncClient


@pytest.mark.asyncio
async def test_ping(client: AsyncClient) -> None:
    response = await client.get("/api/v1/ping")

    assert response.status_code == 200
    assert response.json() == {"message": "pong"}


@pytest.mark.asyncio
async def test_health(client: AsyncClient) -> None:
    response = await client.get("/api/v1/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


@pytest.mark.asyncio
async def test_detailed_health_degraded_without_queue(client: AsyncClient) -> None:
    with (
        patch(
            "reminder_service.api.v1.endpoints.health.check_database_connection",
            AsyncMock(return_value=True),
        ),
        patch(
            "reminder_service.api.v1.endpoints.health.check_redis_connection",
            AsyncMock(return_value=True),
        ),
    ):
        response = await client.get("/api/v1/health/detailed")

    assert response.status_code == 200
    data = response.json()
    assert data["database"] == "healthy"
    assert data["redis"] == "healthy"
    assert data["job_queue"] == "unhealthy"
    assert data["status"] == "degraded"
