"""
Background Job Scheduler.

Provides:
- JobScheduler contract: create_job(type, payload, run_at), register_handler
- Typed scheduling of refresh and submission job requests
- InMemoryJobScheduler for demo mode and tests
- CeleryJobScheduler dispatching through the Celery broker

Handlers are async callables taking (payload, context). Delivery is
at-least-once, so handlers must be idempotent.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Optional, Union
from uuid import uuid4

from claimflow.core.enums import JobType
from claimflow.schemas.jobs import ClaimSubmissionJobRequest, StatusRefreshJobRequest

logger = logging.getLogger(__name__)


@dataclass
class JobContext:
    """Execution context handed to a job handler."""

    job_id: str
    job_type: JobType
    attempt: int = 1
    scheduled_for: Optional[datetime] = None


JobHandler = Callable[[dict[str, Any], JobContext], Awaitable[Any]]
JobRequest = Union[StatusRefreshJobRequest, ClaimSubmissionJobRequest]


class UnknownJobTypeError(Exception):
    """Raised when no handler is registered for a job type."""

    pass


class JobScheduler(ABC):
    """Job scheduler collaborator."""

    def __init__(self) -> None:
        self._handlers: dict[JobType, JobHandler] = {}

    def register_handler(self, job_type: JobType, handler: JobHandler) -> None:
        """Register the handler invoked for a job type."""
        self._handlers[job_type] = handler
        logger.info(f"Registered handler for job type {job_type.value}")

    def get_handler(self, job_type: JobType) -> JobHandler:
        handler = self._handlers.get(job_type)
        if handler is None:
            raise UnknownJobTypeError(f"No handler registered for {job_type.value}")
        return handler

    @abstractmethod
    async def create_job(
        self,
        job_type: JobType,
        payload: dict[str, Any],
        run_at: Optional[datetime] = None,
    ) -> str:
        """Queue a job. Returns the job id."""
        pass

    async def schedule(self, request: JobRequest, now: Optional[datetime] = None) -> str:
        """Queue a typed job request, honoring its delay."""
        run_at = None
        if request.delay_minutes:
            now = now or datetime.now(timezone.utc)
            run_at = now + timedelta(minutes=request.delay_minutes)
        return await self.create_job(request.job_type, request.to_payload(), run_at)

    async def dispatch(
        self, job_type: JobType, payload: dict[str, Any], context: JobContext
    ) -> Any:
        """Invoke the registered handler for a job."""
        handler = self.get_handler(job_type)
        return await handler(payload, context)


# =============================================================================
# In-Memory Scheduler
# =============================================================================


@dataclass
class ScheduledJob:
    """A job held by the in-memory scheduler."""

    id: str
    job_type: JobType
    payload: dict[str, Any]
    run_at: Optional[datetime] = None
    status: str = "scheduled"
    attempts: int = 0
    result: Any = None
    error: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def is_due(self, now: datetime) -> bool:
        return self.status == "scheduled" and (self.run_at is None or self.run_at <= now)


class InMemoryJobScheduler(JobScheduler):
    """Scheduler that keeps jobs in memory and runs them on demand."""

    def __init__(self) -> None:
        super().__init__()
        self.jobs: list[ScheduledJob] = []

    async def create_job(
        self,
        job_type: JobType,
        payload: dict[str, Any],
        run_at: Optional[datetime] = None,
    ) -> str:
        job = ScheduledJob(id=uuid4().hex, job_type=job_type, payload=payload, run_at=run_at)
        self.jobs.append(job)
        logger.info(
            f"Scheduled {job_type.value} job {job.id}"
            + (f" for {run_at.isoformat()}" if run_at else "")
        )
        return job.id

    def jobs_of_type(self, job_type: JobType) -> list[ScheduledJob]:
        return [job for job in self.jobs if job.job_type == job_type]

    async def run_due(self, now: Optional[datetime] = None) -> list[ScheduledJob]:
        """
        Run every job due at `now`.

        Handler failures mark the job failed and are logged; they never
        propagate out of the scheduler.
        """
        now = now or datetime.now(timezone.utc)
        ran = []
        for job in [j for j in self.jobs if j.is_due(now)]:
            job.attempts += 1
            context = JobContext(
                job_id=job.id,
                job_type=job.job_type,
                attempt=job.attempts,
                scheduled_for=job.run_at,
            )
            try:
                job.result = await self.dispatch(job.job_type, job.payload, context)
                job.status = "completed"
            except Exception as e:
                job.status = "failed"
                job.error = str(e)
                logger.error(f"Job {job.id} ({job.job_type.value}) failed: {e}")
            ran.append(job)
        return ran


# =============================================================================
# Celery Scheduler
# =============================================================================


CELERY_TASK_NAMES: dict[JobType, str] = {
    JobType.CLAIM_SUBMISSION: "claims.submit_batch",
    JobType.CLAIM_STATUS_REFRESH: "claims.refresh_status",
}


class CeleryJobScheduler(JobScheduler):
    """
    Scheduler that sends jobs to Celery workers.

    Workers build their own scheduler, register the same handlers and call
    dispatch() from the task body.
    """

    def __init__(self, celery_app: Any = None):
        super().__init__()
        if celery_app is None:
            from claimflow.utils.celery_app import celery_app as default_app

            celery_app = default_app
        self.celery_app = celery_app

    async def create_job(
        self,
        job_type: JobType,
        payload: dict[str, Any],
        run_at: Optional[datetime] = None,
    ) -> str:
        result = self.celery_app.send_task(
            CELERY_TASK_NAMES[job_type],
            kwargs={"payload": payload},
            eta=run_at,
        )
        logger.info(f"Sent {job_type.value} job {result.id} to Celery")
        return result.id
