"""Job queue integration on top of arq."""

from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Protocol
from urllib.parse import urlparse

import structlog
from arq import ArqRedis
from arq.connections import RedisSettings

from reminder_service.config import Settings

logger = structlog.get_logger(__name__)

DELIVER_FUNCTION = "deliver_reminder"


class JobQueue(Protocol):
    """Submission capability the dispatcher depends on."""

    async def submit(
        self,
        *,
        queue_name: str,
        job_id: str,
        payload: dict[str, Any],
        defer_by: timedelta,
    ) -> bool: ...


class ArqJobQueue:
    """Submits delivery jobs to an arq pool.

    arq refuses a job whose id is already queued, running or retained as a
    result, so submitting the same job key twice is a no-op.
    """

    def __init__(self, pool: ArqRedis, function_name: str = DELIVER_FUNCTION):
        self.pool = pool
        self.function_name = function_name

    async def submit(
        self,
        *,
        queue_name: str,
        job_id: str,
        payload: dict[str, Any],
        defer_by: timedelta,
    ) -> bool:
        """Enqueue a job; returns False when the job id already exists."""
        job = await self.pool.enqueue_job(
            self.function_name,
            payload,
            _job_id=job_id,
            _queue_name=queue_name,
            _defer_by=defer_by,
        )
        return job is not None


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt budget and exponential backoff for transient failures."""

    max_attempts: int = 6
    base_delay_seconds: float = 60.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.delivery_max_attempts,
            base_delay_seconds=settings.delivery_backoff_base_seconds,
        )

    def backoff_for(self, job_try: int) -> timedelta:
        """Delay before the next try after try number ``job_try`` failed."""
        return timedelta(seconds=self.base_delay_seconds * 2 ** (max(job_try, 1) - 1))

    def has_tries_left(self, job_try: int) -> bool:
        return job_try < self.max_attempts


def redis_settings_from(settings: Settings) -> RedisSettings:
    """Get Redis settings for the arq pool and workers."""
    if settings.redis_url:
        # Format: redis[s]://[username:password@]host:port[/db]
        parsed = urlparse(settings.redis_url)
        database = parsed.path.lstrip("/")
        return RedisSettings(
            host=parsed.hostname or "localhost",
            port=parsed.port or 6379,
            username=parsed.username,
            password=parsed.password,
            database=int(database) if database.isdigit() else 0,
            ssl=parsed.scheme == "rediss",
            conn_timeout=15,
            conn_retry_delay=1,
        )

    return RedisSettings(
        host=settings.redis_host,
        port=settings.redis_port,
        username=settings.redis_username if settings.redis_password else None,
        password=settings.redis_password or None,
        conn_timeout=15,
        conn_retry_delay=1,
    )
