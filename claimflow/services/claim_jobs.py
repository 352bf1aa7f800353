"""
Claim Background Job Handlers.

Provides:
- claim-submission job: batch submit given or ready claims, then schedule the
  first status refresh
- claim-status-refresh job: batch refresh, then reschedule claims still open
- Operator notifications for errors and job failures

Handlers may run more than once for the same payload. Submission is safe to
repeat because submitted claims are no longer submittable, and refresh only
writes when the external status moved.

Source: Design Document Section 4.6 - Scheduling Contract
Verified: 2026-10-16
"""

import logging
from typing import Any, Optional
from uuid import UUID

from claimflow.core.enums import ClaimStatus, JobType, NotificationSeverity
from claimflow.repositories.base import ClaimRepository
from claimflow.schemas.claim import BatchSubmitRequest
from claimflow.schemas.jobs import ClaimSubmissionJobRequest
from claimflow.schemas.results import BatchResult, RefreshResult
from claimflow.services.claim_lifecycle import ClaimLifecycleService
from claimflow.services.notifications import Notifier, NotificationTopic, notify_safely
from claimflow.services.scheduler import JobContext, JobScheduler

logger = logging.getLogger(__name__)


def _format_errors(result: BatchResult) -> str:
    return "; ".join(
        f"Claim ID: {error.claim_id}, Message: {error.message}" for error in result.errors
    )


class ClaimJobHandlers:
    """Job handlers for claim submission and status refresh."""

    def __init__(
        self,
        repository: ClaimRepository,
        lifecycle: ClaimLifecycleService,
        notifier: Optional[Notifier] = None,
    ):
        self.repository = repository
        self.lifecycle = lifecycle
        self.notifier = notifier
        self.settings = lifecycle.settings

    def register(self, scheduler: JobScheduler) -> None:
        """Register both handlers with a scheduler."""
        scheduler.register_handler(JobType.CLAIM_SUBMISSION, self.handle_submission_job)
        scheduler.register_handler(JobType.CLAIM_STATUS_REFRESH, self.handle_status_refresh_job)
        logger.info("Claim job handlers registered")

    # =========================================================================
    # Submission Job
    # =========================================================================

    async def handle_submission_job(
        self, payload: dict[str, Any], context: JobContext
    ) -> dict[str, Any]:
        """
        Submit claims in the background.

        Uses the payload's claim ids, or every VALIDATED claim when none are
        given. Failures are notified and re-raised to the scheduler.
        """
        request = ClaimSubmissionJobRequest.model_validate(payload)
        logger.info(f"Starting claim submission job {context.job_id} (attempt {context.attempt})")

        claim_ids = request.claim_ids
        if not claim_ids:
            ready = await self.repository.find_by_statuses([ClaimStatus.VALIDATED])
            claim_ids = [claim.id for claim in ready]
            if not claim_ids:
                logger.info("No claims found ready for submission, exiting job")
                return BatchResult().to_dict()

        try:
            result = await self.lifecycle.submit_batch(
                BatchSubmitRequest(
                    claim_ids=claim_ids,
                    submission_method=request.submission_method,
                    notes=request.notes or "Submitted via batch job",
                ),
                request.user_id,
            )
        except Exception as e:
            logger.error(f"Claim submission job {context.job_id} failed: {e}")
            await notify_safely(
                self.notifier,
                NotificationTopic.SUBMISSION_FAILURE,
                NotificationSeverity.CRITICAL,
                f"Claim submission batch job failed: {e}",
                {"job_id": context.job_id, "error": str(e)},
            )
            raise

        logger.info(
            f"Claim submission job {context.job_id} completed: "
            f"{result.success_count} submitted, {result.error_count} failed"
        )
        if result.error_count:
            details = _format_errors(result)
            await notify_safely(
                self.notifier,
                NotificationTopic.SUBMISSION_ERRORS,
                NotificationSeverity.ERROR,
                f"Claim submission batch job completed with errors: {details}",
                {"error_count": result.error_count, "error_details": details},
            )
        else:
            await notify_safely(
                self.notifier,
                NotificationTopic.SUBMISSION_SUCCESS,
                NotificationSeverity.INFO,
                f"Claim submission batch job completed successfully. "
                f"{result.success_count} claims submitted.",
                {"success_count": result.success_count},
            )
        return result.to_dict()

    # =========================================================================
    # Status Refresh Job
    # =========================================================================

    async def handle_status_refresh_job(
        self, payload: dict[str, Any], context: JobContext
    ) -> dict[str, Any]:
        """
        Refresh claim statuses and reschedule claims still awaiting a decision.

        Claims that errored or have no external status source are not
        rescheduled. Failures are notified and re-raised to the scheduler.
        """
        claim_ids = [UUID(str(cid)) for cid in payload.get("claim_ids", [])]
        logger.info(
            f"Starting claim status refresh job {context.job_id} for {len(claim_ids)} claim(s)"
        )

        try:
            result = await self.lifecycle.batch_service.batch_refresh(claim_ids)
        except Exception as e:
            logger.error(f"Claim status refresh job {context.job_id} failed: {e}")
            await notify_safely(
                self.notifier,
                NotificationTopic.STATUS_REFRESH_FAILURE,
                NotificationSeverity.CRITICAL,
                f"Claim status refresh batch job failed: {e}",
                {"job_id": context.job_id, "error": str(e)},
            )
            raise

        if result.updated_count:
            await notify_safely(
                self.notifier,
                NotificationTopic.STATUS_UPDATES,
                NotificationSeverity.INFO,
                f"Claim status refresh batch job completed. "
                f"{result.updated_count} claims updated.",
                {"updated_count": result.updated_count},
            )
        if result.error_count:
            details = _format_errors(result)
            await notify_safely(
                self.notifier,
                NotificationTopic.STATUS_REFRESH_ERRORS,
                NotificationSeverity.WARNING,
                f"Claim status refresh batch job completed with errors: {details}",
                {"error_count": result.error_count, "error_details": details},
            )

        still_open = [
            claim_id
            for claim_id in result.processed_claims
            if isinstance(result.results.get(claim_id), RefreshResult)
            and result.results[claim_id].is_open
            and result.results[claim_id].external_status is not None
        ]
        if still_open:
            await self.lifecycle.schedule_status_refresh(
                still_open, self.settings.REFRESH_RECHECK_DELAY_MINUTES
            )
        return result.to_dict()
