"""
Claim Celery Tasks
Worker side of the claim submission and status refresh jobs.
Source: https://docs.celeryq.dev/en/stable/userguide/tasks.html#automatic-retry-for-known-exceptions
Verified: 2026-10-16
"""

import asyncio
from typing import Any

from claimflow.core.enums import JobType
from claimflow.services.runtime import build_claim_runtime
from claimflow.services.scheduler import CeleryJobScheduler, JobContext
from claimflow.utils.celery_app import celery_app
from claimflow.utils.errors import StorageUnavailableError
from claimflow.utils.logging import get_logger

logger = get_logger(__name__)


async def run_claim_job(
    job_type: JobType, payload: dict[str, Any], context: JobContext
) -> dict[str, Any]:
    """
    Build a runtime for this job and dispatch the payload to its handler.

    Follow-up jobs are sent back to Celery. The runtime's HTTP clients and,
    in live mode, the database pool are closed before returning because each
    task runs on its own event loop.
    """
    runtime = build_claim_runtime(scheduler=CeleryJobScheduler(celery_app))
    try:
        return await runtime.scheduler.dispatch(job_type, payload, context)
    finally:
        await runtime.close()
        if not runtime.settings.is_demo_mode:
            from claimflow.db.connection import close_db_connection

            await close_db_connection()


def _context(task: Any, job_type: JobType) -> JobContext:
    return JobContext(
        job_id=str(task.request.id),
        job_type=job_type,
        attempt=task.request.retries + 1,
    )


@celery_app.task(
    name="claims.submit_batch",
    bind=True,
    autoretry_for=(StorageUnavailableError,),
    retry_backoff=True,
    max_retries=5,
)
def submit_batch_task(self, payload: dict[str, Any]) -> dict[str, Any]:
    """
    Submit a batch of claims.

    Args:
        self: Task instance (bind=True required)
        payload: ClaimSubmissionJobRequest payload

    Returns:
        Batch result dictionary
    """
    logger.info(f"Claim submission task {self.request.id} started")
    result = asyncio.run(
        run_claim_job(JobType.CLAIM_SUBMISSION, payload, _context(self, JobType.CLAIM_SUBMISSION))
    )
    logger.info(f"Claim submission task {self.request.id} completed")
    return result


@celery_app.task(
    name="claims.refresh_status",
    bind=True,
    autoretry_for=(StorageUnavailableError,),
    retry_backoff=True,
    max_retries=5,
)
def refresh_status_task(self, payload: dict[str, Any]) -> dict[str, Any]:
    """
    Refresh external status for a set of claims.

    Args:
        self: Task instance (bind=True required)
        payload: StatusRefreshJobRequest payload

    Returns:
        Batch result dictionary
    """
    logger.info(f"Claim status refresh task {self.request.id} started")
    result = asyncio.run(
        run_claim_job(
            JobType.CLAIM_STATUS_REFRESH, payload, _context(self, JobType.CLAIM_STATUS_REFRESH)
        )
    )
    logger.info(f"Claim status refresh task {self.request.id} completed")
    return result
