"""Health check endpoints."""

from fastapi import APIRouter, Request, status
from pydantic import BaseModel
from redis.exceptions import RedisError

from reminder_service.config import settings
from reminder_service.core.redis_client import check_redis_connection
from reminder_service.database import check_database_connection

router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str
    version: str
    environment: str


class DetailedHealthResponse(HealthResponse):
    """Detailed health check response model."""

    database: str
    redis: str
    job_queue: str


async def check_job_queue(request: Request) -> bool:
    """Ping Redis through the arq pool the API enqueues with."""
    pool = getattr(request.app.state, "arq_pool", None)
    if pool is None:
        return False
    try:
        await pool.ping()
    except (RedisError, OSError):
        return False
    return True


@router.get(
    "/health",
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
    tags=["Health"],
    summary="Basic health check",
)
async def health_check() -> HealthResponse:
    """
    Basic health check endpoint.

    Returns:
        Basic health status
    """
    return HealthResponse(
        status="healthy",
        version=settings.app_version,
        environment=settings.environment,
    )


@router.get(
    "/health/detailed",
    response_model=DetailedHealthResponse,
    status_code=status.HTTP_200_OK,
    tags=["Health"],
    summary="Detailed health check",
)
async def detailed_health_check(request: Request) -> DetailedHealthResponse:
    """
    Health of the database, Redis and the job queue connection.

    Returns:
        ``degraded`` if any dependency is unhealthy
    """
    db_healthy = await check_database_connection()
    redis_healthy = await check_redis_connection()
    queue_healthy = await check_job_queue(request)

    def label(healthy: bool) -> str:
        return "healthy" if healthy else "unhealthy"

    return DetailedHealthResponse(
        status="healthy" if db_healthy and redis_healthy and queue_healthy else "degraded",
        version=settings.app_version,
        environment=settings.environment,
        database=label(db_healthy),
        redis=label(redis_healthy),
        job_queue=label(queue_healthy),
    )


@router.get(
    "/ping",
    status_code=status.HTTP_200_OK,
    tags=["Health"],
    summary="Simple ping",
)
async def ping() -> dict[str, str]:
    """Liveness probe."""
    return {"message": "pong"}
