"""FastAPI dependencies."""

import secrets
from typing import Annotated

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from reminder_service.config import settings
from reminder_service.core.exceptions import AppException, UnauthorizedException
from reminder_service.core.queue import ArqJobQueue, JobQueue
from reminder_service.database import get_db
from reminder_service.services.dispatcher import Dispatcher
from reminder_service.services.intake import IntakeService

# Security
security = HTTPBearer(auto_error=False)


async def verify_service_token(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
) -> None:
    """
    Check the bearer token against the configured service token.

    Raises:
        UnauthorizedException: If the token is missing or wrong
    """
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise UnauthorizedException("Missing bearer token")
    if not secrets.compare_digest(credentials.credentials, settings.service_token):
        raise UnauthorizedException("Invalid service token")


async def get_job_queue(request: Request) -> JobQueue:
    """Job queue backed by the arq pool created at startup."""
    pool = getattr(request.app.state, "arq_pool", None)
    if pool is None:
        raise AppException("Job queue is unavailable", status_code=503)
    return ArqJobQueue(pool)


async def get_dispatcher(
    queue: Annotated[JobQueue, Depends(get_job_queue)],
) -> Dispatcher:
    return Dispatcher(queue)


async def get_intake_service(
    db: Annotated[AsyncSession, Depends(get_db)],
    dispatcher: Annotated[Dispatcher, Depends(get_dispatcher)],
) -> IntakeService:
    return IntakeService(
        db,
        dispatcher,
        quiet_start=settings.quiet_start,
        quiet_end=settings.quiet_end,
    )


# Type aliases for dependency injection
DatabaseSession = Annotated[AsyncSession, Depends(get_db)]
ServiceAuth = Depends(verify_service_token)
Intake = Annotated[IntakeService, Depends(get_intake_service)]
