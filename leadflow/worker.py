"""
ARQ background worker for LeadFlow.

Runs dispatch cycles on demand, in addition to the polling loop inside the
API process. Both may run at once: per-event version checks keep them from
overwriting each other, and a webhook may be delivered more than once.

Start with: arq leadflow.worker.WorkerSettings
"""
from dataclasses import asdict

from arq import create_pool
from arq.connections import RedisSettings

from leadflow.config import settings
from leadflow.dispatcher import AutomationEventDispatcher
from leadflow.logging_config import get_logger
from leadflow.sentry_config import configure_sentry

log = get_logger(component="worker")

DISPATCH_JOB = "dispatch_pending_job"
# One queued dispatch is enough; further triggers collapse into it
DISPATCH_JOB_ID = "automation-dispatch"


async def dispatch_pending_job(ctx: dict) -> dict:
    """Run one dispatch cycle."""
    log.info("dispatch_job_started", job_try=ctx.get("job_try", 1))
    summary = await AutomationEventDispatcher().run_once()
    if summary is None:
        return {"status": "error"}
    return {"status": "completed", **asdict(summary)}


async def enqueue_dispatch() -> bool:
    """Queue a dispatch cycle for the worker. Returns False if Redis is unavailable."""
    try:
        redis = await create_pool(RedisSettings.from_dsn(settings.REDIS_URL))
        try:
            job = await redis.enqueue_job(DISPATCH_JOB, _job_id=DISPATCH_JOB_ID)
        finally:
            await redis.aclose()
    except Exception as e:
        log.warning("dispatch_enqueue_failed", error=str(e))
        return False

    log.info("dispatch_enqueued", already_queued=job is None)
    return True


async def startup(ctx: dict) -> None:
    configure_sentry()


class WorkerSettings:
    """Settings for ARQ worker - use with 'arq leadflow.worker.WorkerSettings'"""
    redis_settings = RedisSettings.from_dsn(settings.REDIS_URL)
    functions = [dispatch_pending_job]
    on_startup = startup
    job_timeout = 300
    max_tries = 1
    keep_result = 0
