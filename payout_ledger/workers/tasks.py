"""
Celery Tasks for Scheduled Payouts

Every task opens its own event loop and task-scoped DB session; results are the
services' result objects as plain dicts.
"""
from __future__ import annotations

import asyncio
from contextlib import contextmanager

from payout_ledger.workers.celery_app import celery_app
from payout_ledger.core.config import settings
from payout_ledger.core.logging import correlation_scope, get_logger
from payout_ledger.core.redis_client import acquire_lock, release_lock
from payout_ledger.db.database import get_task_session
from payout_ledger.domain.services.payout_automation_service import PayoutAutomationService

logger = get_logger(__name__)

PAYOUT_CHECK_LOCK = "payout-check"


@contextmanager
def get_event_loop():
    """
    Fresh event loop per task, closed with its pending tasks and the Redis client
    bound to it.
    """
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        yield loop
    finally:
        try:
            # the Redis singleton is bound to this loop; the next task gets a new one
            from payout_ledger.core.redis_client import close_redis
            loop.run_until_complete(close_redis())
        except Exception as e:
            logger.warning(
                "Failed to close Redis at task end",
                extra_data={"error": str(e)},
            )
        try:
            pending = asyncio.all_tasks(loop)
            for task in pending:
                task.cancel()
            if pending:
                loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
        finally:
            loop.run_until_complete(loop.shutdown_asyncgens())
            loop.close()


def run_async(coro, correlation_id: str | None = None):
    """Run a coroutine to completion inside a Celery task, under one correlation id"""
    with correlation_scope(correlation_id), get_event_loop() as loop:
        return loop.run_until_complete(coro)


@celery_app.task(name="payout_ledger.workers.tasks.run_automated_payout_check")
def run_automated_payout_check():
    """
    Daily scheduler entry point.

    A Redis lock keeps a duplicated beat delivery from running the check twice at
    the same time; the check itself is a no-op once today's job exists.
    """

    async def _check():
        if not await acquire_lock(PAYOUT_CHECK_LOCK, settings.PAYOUT_JOB_DEADLINE_SECONDS + 60):
            logger.info("Automated payout check already running, skipping")
            return {"success": True, "jobs_created": 0, "error": "Payout check already running"}
        try:
            async with get_task_session() as db:
                result = await PayoutAutomationService(db).run_automated_payout_check()
        finally:
            await release_lock(PAYOUT_CHECK_LOCK)

        logger.info(
            "Automated payout check task finished",
            extra_data={"jobs_created": result.jobs_created, "job_id": result.job_id, "reason": result.error},
        )
        return result.to_dict()

    return run_async(_check())


@celery_app.task(name="payout_ledger.workers.tasks.process_payout_job")
def process_payout_job(job_id: int):
    """Process one pending job; a job that is not pending is reported, not re-run"""

    async def _process():
        async with get_task_session() as db:
            result = await PayoutAutomationService(db).process_payout_job(job_id)
            return result.to_dict()

    return run_async(_process(), correlation_id=f"job-{job_id}")


@celery_app.task(name="payout_ledger.workers.tasks.retry_failed_payouts")
def retry_failed_payouts(job_id: int, process: bool = True):
    """Create the retry job for a failed job's creators and, by default, run it"""

    async def _retry():
        async with get_task_session() as db:
            service = PayoutAutomationService(db)
            scheduled = await service.retry_failed_payouts(job_id)
            if not scheduled.success or not process:
                return scheduled.to_dict()
            processed = await service.process_payout_job(scheduled.job_id)
            return {**scheduled.to_dict(), "payout_result": processed.to_dict()}

    return run_async(_retry(), correlation_id=f"retry-{job_id}")
