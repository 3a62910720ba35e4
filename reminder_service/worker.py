"""
arq workers for reminder delivery.

Run one process per channel:

    arq reminder_service.worker.EmailWorkerSettings
    arq reminder_service.worker.SmsWorkerSettings
"""

from typing import Any, NoReturn

import structlog
from arq import Retry, func
from prometheus_client import start_http_server
from sqlalchemy.exc import SQLAlchemyError

from reminder_service.adapters import build_adapters
from reminder_service.config import get_settings
from reminder_service.core.exceptions import PermanentDeliveryFailure, RetryExhausted
from reminder_service.core.metrics import ReminderMetrics
from reminder_service.core.queue import DELIVER_FUNCTION, RetryPolicy, redis_settings_from
from reminder_service.database import build_engine, build_session_factory
from reminder_service.middleware.logging import configure_logging
from reminder_service.schemas.notifications import Channel, ReminderJob
from reminder_service.services.delivery import DeliveryWorker
from reminder_service.services.dispatcher import CHANNEL_QUEUES
from reminder_service.services.outcomes import DeliveryOutcome

logger = structlog.get_logger(__name__)

settings = get_settings()
retry_policy = RetryPolicy.from_settings(settings)


def make_startup(queue_name: str, metrics_port: int):
    """Build the on_startup hook for one channel worker."""

    async def startup(ctx: dict[str, Any]) -> None:
        configure_logging()
        engine = build_engine(settings.database_url)
        metrics = ReminderMetrics()
        if metrics_port:
            start_http_server(metrics_port, registry=metrics.registry)

        ctx["engine"] = engine
        ctx["metrics"] = metrics
        ctx["retry_policy"] = retry_policy
        ctx["delivery_worker"] = DeliveryWorker.from_settings(
            settings,
            build_session_factory(engine),
            build_adapters(settings),
            metrics=metrics,
        )
        logger.info("worker_started", queue=queue_name, metrics_port=metrics_port or None)

    return startup


async def shutdown(ctx: dict[str, Any]) -> None:
    engine = ctx.get("engine")
    if engine is not None:
        await engine.dispose()
    logger.info("worker_stopped")


async def deliver_reminder(ctx: dict[str, Any], payload: dict[str, Any]) -> dict[str, Any]:
    """
    Deliver one reminder and translate the result into arq semantics.

    Args:
        ctx: arq context (``job_try``, plus objects set up in ``startup``)
        payload: ReminderJob payload as submitted by the dispatcher

    Returns:
        Result summary for sent and skipped jobs

    Raises:
        Retry: Transient failure or worker error with tries left
        RetryExhausted: Any failure on the final try, or a try past the budget;
            the plan is canceled first
        PermanentDeliveryFailure: The failure will not succeed on retry
    """
    job = ReminderJob.model_validate(payload)
    worker: DeliveryWorker = ctx["delivery_worker"]
    policy: RetryPolicy = ctx["retry_policy"]
    job_try = ctx.get("job_try", 1)

    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(
        job_key=job.job_key,
        job_try=job_try,
        request_id=job.trace.request_id if job.trace else None,
    )

    if job_try > policy.max_attempts:
        # Re-queued by arq after an interrupted final try; nothing is sent
        await exhaust(worker, job, job_try)

    try:
        result = await worker.process(job)
    except Exception as exc:
        if not policy.has_tries_left(job_try):
            logger.error("delivery_error", error=str(exc), error_type=type(exc).__name__)
            await exhaust(worker, job, job_try, cause=exc)
        logger.warning("delivery_error_retrying", error=str(exc), error_type=type(exc).__name__)
        raise Retry(defer=policy.backoff_for(job_try)) from exc

    if result.outcome == DeliveryOutcome.TRANSIENT_FAILURE:
        if policy.has_tries_left(job_try):
            defer = policy.backoff_for(job_try)
            logger.info("delivery_retry_scheduled", defer_seconds=defer.total_seconds())
            raise Retry(defer=defer)
        await exhaust(worker, job, job_try)

    if result.outcome == DeliveryOutcome.PERMANENT_FAILURE:
        code = result.classification.code if result.classification else None
        raise PermanentDeliveryFailure(job.job_key, code)

    return result.summary()


async def exhaust(
    worker: DeliveryWorker,
    job: ReminderJob,
    job_try: int,
    cause: BaseException | None = None,
) -> NoReturn:
    """Cancel the still-scheduled plan and fail the job for good."""
    try:
        await worker.finalize_exhausted(job.job_key)
    except SQLAlchemyError as exc:
        logger.error("finalize_exhausted_failed", error=str(exc))
    worker.metrics.retries_exhausted.labels(channel=job.channel.value).inc()
    raise RetryExhausted(job.job_key, job_try) from cause


# One extra try so deliver_reminder sees jobs re-queued after an interrupted final try
ARQ_MAX_TRIES = retry_policy.max_attempts + 1

DELIVERY_FUNCTIONS = [
    func(deliver_reminder, name=DELIVER_FUNCTION, max_tries=ARQ_MAX_TRIES),
]


# arq reads worker options from the class __dict__, so each class spells them out
class EmailWorkerSettings:
    """arq settings for the email channel."""

    functions = DELIVERY_FUNCTIONS
    queue_name = CHANNEL_QUEUES[Channel.EMAIL]
    redis_settings = redis_settings_from(settings)
    on_startup = make_startup(CHANNEL_QUEUES[Channel.EMAIL], settings.worker_metrics_port)
    on_shutdown = shutdown
    max_jobs = settings.email_worker_concurrency
    job_timeout = settings.arq_job_timeout
    keep_result = settings.arq_keep_result
    max_tries = ARQ_MAX_TRIES


class SmsWorkerSettings:
    """arq settings for the SMS channel."""

    functions = DELIVERY_FUNCTIONS
    queue_name = CHANNEL_QUEUES[Channel.SMS]
    redis_settings = redis_settings_from(settings)
    on_startup = make_startup(
        CHANNEL_QUEUES[Channel.SMS],
        settings.worker_metrics_port + 1 if settings.worker_metrics_port else 0,
    )
    on_shutdown = shutdown
    max_jobs = settings.sms_worker_concurrency
    job_timeout = settings.arq_job_timeout
    keep_result = settings.arq_keep_result
    max_tries = ARQ_MAX_TRIES
