"""ARQ worker tasks for periodic maintenance.

Tasks:
- drain_like_queue: Flush queued likes/unlikes into the likes table
- fail_stale_generations: Fail and refund generations stuck in processing

Usage:
    Start worker with: arq app.workers.arq_tasks.WorkerSettings
"""

import logging
from datetime import timedelta

from arq import cron, func

from app.core.arq_config import QUEUE_NAME, get_redis_settings
from app.core.config import settings
from app.core.database import close_db, get_session_factory
from app.core.redis import redis_conn
from app.services.generation_service import GenerationService
from app.services.interaction_queue import InteractionQueue

logger = logging.getLogger(__name__)


async def drain_like_queue(ctx: dict) -> dict:
    """Apply one batch of queued interactions.

    Args:
        ctx: ARQ context

    Returns:
        Dict with processed and failed counts
    """
    client = await redis_conn.get_client()
    session_factory = get_session_factory()

    async with session_factory() as db:
        queue = InteractionQueue(client, db)
        result = await queue.drain_batch(settings.LIKE_QUEUE_BATCH_SIZE)

    if result.failed:
        logger.warning(f"Like queue drain: {result.failed} of {result.popped} records failed")

    return {
        "status": "completed",
        "processed": result.processed,
        "failed": result.failed,
    }


async def fail_stale_generations(ctx: dict) -> dict:
    """Fail and refund generation jobs stuck in processing.

    A job is stale once it has been processing longer than
    STALE_GENERATION_MINUTES, which only happens if the API process died
    between the debit and the provider result.

    Args:
        ctx: ARQ context

    Returns:
        Dict with the number of refunded jobs
    """
    session_factory = get_session_factory()

    async with session_factory() as db:
        service = GenerationService(db)
        refunded = await service.fail_stale_jobs(
            timedelta(minutes=settings.STALE_GENERATION_MINUTES)
        )

    logger.info(f"Stale generation sweep completed: {refunded} jobs refunded")
    return {
        "status": "completed",
        "refunded_count": refunded,
    }


# Worker settings for ARQ
class WorkerSettings:
    """ARQ Worker configuration.

    Usage: arq app.workers.arq_tasks.WorkerSettings
    """

    redis_settings = get_redis_settings()
    queue_name = QUEUE_NAME

    # Worker behavior
    max_jobs = 10
    job_timeout = 300  # 5 minutes
    max_tries = 1  # A drain pops its records; retrying would not see them again
    poll_delay = 0.5

    # Health check
    health_check_interval = 30

    # Registered task functions (eager drains are enqueued by job id, so
    # results are not kept and the id can be reused right away)
    functions = [
        func(drain_like_queue, keep_result=0),
        fail_stale_generations,
    ]

    cron_jobs = [
        cron(drain_like_queue, second=0, unique=True),  # every minute
        cron(fail_stale_generations, minute={0, 15, 30, 45}, second=0, unique=True),
    ]

    # Startup hook
    @staticmethod
    async def on_startup(ctx: dict) -> None:
        """Called when worker starts."""
        logger.info("ARQ Worker starting up...")
        # Initialize Redis connection for the worker
        await redis_conn.connect()
        logger.info("ARQ Worker ready to process jobs")

    # Shutdown hook
    @staticmethod
    async def on_shutdown(ctx: dict) -> None:
        """Called when worker shuts down."""
        logger.info("ARQ Worker shutting down...")
        await redis_conn.close()
        await close_db()
        logger.info("ARQ Worker shutdown complete")
