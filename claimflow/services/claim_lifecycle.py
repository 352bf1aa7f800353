"""
Claim Lifecycle Orchestrator.

Provides:
- Validate -> submit sequencing (single and batch)
- Status transitions with submission and adjudication side effects
- Void, appeal, denial and payment handling
- Progress monitoring and aging risk assessment
- Follow-up status refresh scheduling

Source: Design Document Section 4.6 - Lifecycle Orchestrator
Verified: 2026-10-16
"""

import logging
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Callable, Optional
from uuid import UUID

from claimflow.core.config import ClaimsSettings, get_claims_settings
from claimflow.core.enums import ClaimStatus, DenialReason, NotificationSeverity, RiskLevel
from claimflow.repositories.base import ClaimRepository
from claimflow.schemas.claim import (
    BatchSubmitRequest,
    ClaimRecord,
    StatusUpdate,
    SubmitClaimRequest,
)
from claimflow.schemas.jobs import StatusRefreshJobRequest
from claimflow.schemas.results import (
    BatchResult,
    ClaimLifecycle,
    ClaimProgress,
    RiskAssessment,
)
from claimflow.services.claim_batch import ClaimBatchService
from claimflow.services.claim_state_machine import (
    OPEN_STATUSES,
    ClaimStateMachine,
    get_claim_state_machine,
    is_submittable_status,
)
from claimflow.services.claim_submission import ClaimSubmissionService
from claimflow.services.claim_tracking import ClaimTrackingService
from claimflow.services.claim_validation import (
    ClaimValidationService,
    resolve_submission_method,
)
from claimflow.services.notifications import Notifier, NotificationTopic, notify_safely
from claimflow.services.scheduler import JobScheduler
from claimflow.utils.errors import (
    BusinessRuleError,
    ClaimValidationFailedError,
    InvalidStatusTransitionError,
    NotFoundError,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Progress Projections
# =============================================================================


# Advisory only; not derived from historical processing times
NEXT_MILESTONES: dict[ClaimStatus, str] = {
    ClaimStatus.DRAFT: "Validation",
    ClaimStatus.VALIDATED: "Submission",
    ClaimStatus.SUBMITTED: "Payer acknowledgment",
    ClaimStatus.ACKNOWLEDGED: "Adjudication",
    ClaimStatus.PENDING: "Payment decision",
    ClaimStatus.PARTIAL_PAID: "Final payment",
    ClaimStatus.DENIED: "Appeal or void",
    ClaimStatus.APPEALED: "Appeal decision",
}

TYPICAL_DAYS_TO_COMPLETION: dict[ClaimStatus, int] = {
    ClaimStatus.DRAFT: 45,
    ClaimStatus.VALIDATED: 40,
    ClaimStatus.SUBMITTED: 30,
    ClaimStatus.ACKNOWLEDGED: 25,
    ClaimStatus.PENDING: 14,
    ClaimStatus.PARTIAL_PAID: 14,
    ClaimStatus.DENIED: 60,
    ClaimStatus.APPEALED: 45,
}


def calculate_aging_risk(claim: ClaimRecord, today: date) -> RiskAssessment:
    """
    Score how likely an open claim is to age out unpaid.

    Age over 90/60/30 days adds 50/30/10, DENIED/PENDING/DRAFT adds 40/20/15
    and an amount over 10,000/5,000 adds 20/10. Levels: critical above 80,
    high above 50, medium above 20.
    """
    score = 0
    factors: list[str] = []

    age = (today - claim.created_at.date()).days
    if age > 90:
        score += 50
        factors.append("Age > 90 days")
    elif age > 60:
        score += 30
        factors.append("Age > 60 days")
    elif age > 30:
        score += 10
        factors.append("Age > 30 days")

    status_weights = {
        ClaimStatus.DENIED: (40, "Claim Denied"),
        ClaimStatus.PENDING: (20, "Claim Pending"),
        ClaimStatus.DRAFT: (15, "Claim in Draft"),
    }
    if claim.status in status_weights:
        weight, factor = status_weights[claim.status]
        score += weight
        factors.append(factor)

    if claim.total_amount > Decimal("10000"):
        score += 20
        factors.append("Claim Amount > $10,000")
    elif claim.total_amount > Decimal("5000"):
        score += 10
        factors.append("Claim Amount > $5,000")

    if score > 80:
        level = RiskLevel.CRITICAL
        actions = ["Immediately review claim details", "Contact payer for status"]
    elif score > 50:
        level = RiskLevel.HIGH
        actions = ["Review claim details", "Verify documentation"]
    elif score > 20:
        level = RiskLevel.MEDIUM
        actions = ["Check claim status"]
    else:
        level = RiskLevel.LOW
        actions = []

    return RiskAssessment(level=level, score=score, factors=factors, recommended_actions=actions)


# =============================================================================
# Lifecycle Service
# =============================================================================


class ClaimLifecycleService:
    """Top-level sequencing of the claim lifecycle."""

    def __init__(
        self,
        repository: ClaimRepository,
        validation_service: ClaimValidationService,
        submission_service: ClaimSubmissionService,
        tracking_service: ClaimTrackingService,
        batch_service: ClaimBatchService,
        scheduler: Optional[JobScheduler] = None,
        notifier: Optional[Notifier] = None,
        state_machine: Optional[ClaimStateMachine] = None,
        settings: Optional[ClaimsSettings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.repository = repository
        self.validation_service = validation_service
        self.submission_service = submission_service
        self.tracking_service = tracking_service
        self.batch_service = batch_service
        self.scheduler = scheduler
        self.notifier = notifier
        self.state_machine = state_machine or get_claim_state_machine()
        self.settings = settings or get_claims_settings()
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    async def _get_claim(self, claim_id: UUID) -> ClaimRecord:
        claim = await self.repository.find_by_id(claim_id)
        if claim is None:
            raise NotFoundError("Claim", claim_id)
        return claim

    # =========================================================================
    # Sequencing
    # =========================================================================

    async def process_claim(self, claim_id: UUID, user_id: Optional[UUID] = None) -> ClaimRecord:
        """
        Validate a claim and, when auto-submit is enabled, submit it.

        An invalid claim is left as it was and returned; it is not an error.
        """
        logger.info(f"Starting claim processing for claim {claim_id}")
        await self._get_claim(claim_id)

        validation = await self.validation_service.validate_claim(claim_id, user_id=user_id)
        if not validation.is_valid:
            logger.warning(
                f"Claim {claim_id} failed validation: {validation.summary()}"
            )
            return await self._get_claim(claim_id)

        claim = await self._get_claim(claim_id)
        if self.settings.AUTO_SUBMIT and claim.status == ClaimStatus.VALIDATED:
            payer = await self.repository.find_payer(claim.payer_id)
            method = resolve_submission_method(
                claim, payer, self.settings.DEFAULT_SUBMISSION_METHOD
            )
            logger.info(f"Auto-submitting claim {claim_id} via {method.value}")
            await self.submission_service.submit_claim(
                claim_id, SubmitClaimRequest(submission_method=method), user_id
            )
            if self.settings.AUTO_REFRESH_STATUS:
                await self.schedule_status_refresh(
                    [claim_id], self.settings.REFRESH_INITIAL_DELAY_MINUTES
                )

        claim = await self._get_claim(claim_id)
        logger.info(f"Claim processing completed for claim {claim_id}: {claim.status.value}")
        return claim

    async def validate_and_submit(
        self,
        claim_id: UUID,
        request: SubmitClaimRequest,
        user_id: Optional[UUID] = None,
    ) -> ClaimRecord:
        """
        Validate then submit, failing closed on any validation error.

        Raises:
            ClaimValidationFailedError: Claim has validation errors
        """
        validation = await self.validation_service.validate_claim(
            claim_id, user_id=user_id, method=request.submission_method
        )
        if not validation.is_valid:
            logger.warning(f"Claim {claim_id} failed validation, not submitting")
            raise ClaimValidationFailedError(validation)

        await self.submission_service.submit_claim(claim_id, request, user_id)
        logger.info(f"Claim {claim_id} validated and submitted")
        return await self._get_claim(claim_id)

    async def submit_batch(
        self, request: BatchSubmitRequest, user_id: Optional[UUID] = None
    ) -> BatchResult:
        """
        Validate and submit a batch, then schedule the first status refresh
        for the claims that went out.
        """
        result = await self.batch_service.batch_submit(request, user_id)
        if result.processed_claims and self.settings.AUTO_REFRESH_STATUS:
            await self.schedule_status_refresh(
                result.processed_claims, self.settings.REFRESH_INITIAL_DELAY_MINUTES
            )
        return result

    # =========================================================================
    # Status Transitions
    # =========================================================================

    async def transition_status(
        self,
        claim_id: UUID,
        target: ClaimStatus,
        data: Optional[StatusUpdate] = None,
        user_id: Optional[UUID] = None,
    ) -> ClaimRecord:
        """
        Move a claim to `target` after checking legality.

        VALIDATED goes through the validation engine and SUBMITTED through the
        submission dispatcher; every other target goes through the tracking
        service's status update with its adjudication data.

        Raises:
            InvalidStatusTransitionError: Transition not allowed
            ClaimValidationFailedError: Claim failed validation
        """
        claim = await self._get_claim(claim_id)
        self.state_machine.ensure_transition(claim.status, target)

        if target == ClaimStatus.VALIDATED:
            validation = await self.validation_service.validate_claim(claim_id, user_id=user_id)
            if not validation.is_valid:
                raise ClaimValidationFailedError(validation)
            return await self._get_claim(claim_id)

        if target == ClaimStatus.SUBMITTED:
            payer = await self.repository.find_payer(claim.payer_id) if claim.payer_id else None
            method = resolve_submission_method(
                claim, payer, self.settings.DEFAULT_SUBMISSION_METHOD
            )
            await self.submission_service.submit_claim(
                claim_id,
                SubmitClaimRequest(submission_method=method, notes=data.notes if data else None),
                user_id,
            )
            return await self._get_claim(claim_id)

        fields = data.model_dump() if data else {}
        fields["status"] = target
        updated = await self.tracking_service.update_status(
            claim_id, StatusUpdate(**fields), user_id
        )

        if target in (ClaimStatus.PAID, ClaimStatus.DENIED, ClaimStatus.FINAL_DENIED):
            await notify_safely(
                self.notifier,
                NotificationTopic.STATUS_UPDATES,
                NotificationSeverity.INFO,
                f"Claim {claim.claim_number} adjudicated as {target.value}",
                {"claim_id": str(claim_id), "total_amount": str(claim.total_amount)},
            )
        return updated

    async def void_claim(
        self, claim_id: UUID, notes: Optional[str] = None, user_id: Optional[UUID] = None
    ) -> ClaimRecord:
        """
        Void a claim.

        Raises:
            InvalidStatusTransitionError: Claim is already VOID or FINAL_DENIED
        """
        claim = await self._get_claim(claim_id)
        if claim.status == ClaimStatus.VOID:
            raise InvalidStatusTransitionError(
                claim.status, ClaimStatus.VOID, message="Claim is already voided"
            )
        if claim.status == ClaimStatus.FINAL_DENIED:
            raise InvalidStatusTransitionError(
                claim.status,
                ClaimStatus.VOID,
                message="Claim is final denied and cannot be voided",
            )

        updated = await self.tracking_service.update_status(
            claim_id,
            StatusUpdate(status=ClaimStatus.VOID, notes=notes or "Claim voided"),
            user_id,
        )
        logger.info(f"Claim {claim_id} voided")
        return updated

    async def appeal_claim(
        self, claim_id: UUID, notes: Optional[str] = None, user_id: Optional[UUID] = None
    ) -> ClaimRecord:
        """
        Appeal a denied claim.

        Raises:
            BusinessRuleError: Claim is not DENIED
        """
        claim = await self._get_claim(claim_id)
        if claim.status != ClaimStatus.DENIED:
            raise BusinessRuleError(
                "Claim is not in DENIED status, cannot be appealed",
                code="CLAIM_NOT_DENIED",
                context={"claim_id": str(claim_id), "status": claim.status.value},
            )

        updated = await self.tracking_service.update_status(
            claim_id,
            StatusUpdate(status=ClaimStatus.APPEALED, notes=notes or "Claim appealed"),
            user_id,
        )
        logger.info(f"Claim {claim_id} appealed")
        return updated

    async def record_denial(
        self,
        claim_id: UUID,
        reason: DenialReason,
        details: Optional[str] = None,
        adjustment_codes: Optional[list[str]] = None,
        adjudication_date: Optional[date] = None,
        user_id: Optional[UUID] = None,
    ) -> ClaimRecord:
        """
        Record a payer denial.

        A denied appeal becomes FINAL_DENIED; anything else becomes DENIED.
        """
        claim = await self._get_claim(claim_id)
        target = (
            ClaimStatus.FINAL_DENIED
            if claim.status == ClaimStatus.APPEALED
            else ClaimStatus.DENIED
        )
        return await self.transition_status(
            claim_id,
            target,
            StatusUpdate(
                status=target,
                notes=f"Denied: {reason.value}" + (f" - {details}" if details else ""),
                denial_reason=reason,
                denial_details=details,
                adjustment_codes=adjustment_codes,
                adjudication_date=adjudication_date,
            ),
            user_id,
        )

    async def record_payment(
        self,
        claim_id: UUID,
        adjudication_date: Optional[date] = None,
        adjustment_codes: Optional[list[str]] = None,
        partial: bool = False,
        notes: Optional[str] = None,
        user_id: Optional[UUID] = None,
    ) -> ClaimRecord:
        """
        Post a payment against a claim.

        A claim still waiting on acknowledgment or adjudication is moved along
        the legal path first, with the skipped steps noted as inferred.

        Raises:
            BusinessRuleError: Claim has not been submitted
            InvalidStatusTransitionError: No legal path to the payment status
        """
        claim = await self._get_claim(claim_id)
        if is_submittable_status(claim.status):
            raise BusinessRuleError(
                "Payments can only be posted against submitted claims",
                code="CLAIM_NOT_SUBMITTED",
                context={"claim_id": str(claim_id), "status": claim.status.value},
            )
        target = ClaimStatus.PARTIAL_PAID if partial else ClaimStatus.PAID
        path = self.state_machine.find_path(claim.status, target)
        if not path:
            raise InvalidStatusTransitionError(claim.status, target)

        async with self.repository.transaction() as tx:
            for step in path[:-1]:
                await self.tracking_service.update_status(
                    claim_id,
                    StatusUpdate(status=step, notes="Inferred from payment posting"),
                    user_id,
                    tx=tx,
                )
            updated = await self.tracking_service.update_status(
                claim_id,
                StatusUpdate(
                    status=target,
                    notes=notes or ("Partial payment received" if partial else "Payment received"),
                    adjudication_date=adjudication_date,
                    adjustment_codes=adjustment_codes,
                ),
                user_id,
                tx=tx,
            )

        await notify_safely(
            self.notifier,
            NotificationTopic.STATUS_UPDATES,
            NotificationSeverity.INFO,
            f"Payment posted for claim {claim.claim_number}",
            {"claim_id": str(claim_id), "status": target.value},
        )
        return updated

    # =========================================================================
    # Inspection
    # =========================================================================

    async def monitor_progress(self, claim_id: UUID) -> ClaimProgress:
        """Days in the current status, total age and advisory projections."""
        claim = await self._get_claim(claim_id)
        history = await self.repository.get_status_history(claim_id)
        now = self.clock()

        status_since = history[-1].timestamp if history else claim.created_at
        typical_days = TYPICAL_DAYS_TO_COMPLETION.get(claim.status)
        return ClaimProgress(
            claim_id=claim_id,
            current_status=claim.status,
            days_in_status=max(0, (now - status_since).days),
            total_age=max(0, (now - claim.created_at).days),
            next_milestone=NEXT_MILESTONES.get(claim.status),
            estimated_completion=(
                now.date() + timedelta(days=typical_days) if typical_days else None
            ),
        )

    async def get_claim_lifecycle(self, claim_id: UUID) -> ClaimLifecycle:
        """Claim, timeline, age, next actions and aging risk in one view."""
        claim = await self._get_claim(claim_id)
        today = self.clock().date()
        return ClaimLifecycle(
            claim=claim,
            timeline=await self.tracking_service.get_timeline(claim_id),
            age_days=max(0, (today - claim.created_at.date()).days),
            next_actions=self.tracking_service.get_transition_options(claim.status),
            risk=calculate_aging_risk(claim, today),
        )

    # =========================================================================
    # Status Refresh Scheduling
    # =========================================================================

    async def schedule_status_refresh(
        self, claim_ids: list[UUID], delay_minutes: int
    ) -> Optional[str]:
        """
        Queue a delayed status refresh.

        Scheduling is fire-and-forget: a scheduler failure is logged and
        reported, and the caller carries on.

        Returns:
            Job id, or None when nothing was scheduled
        """
        if not claim_ids or self.scheduler is None:
            return None

        request = StatusRefreshJobRequest(claim_ids=claim_ids, delay_minutes=delay_minutes)
        try:
            job_id = await self.scheduler.schedule(request, now=self.clock())
        except Exception as e:
            logger.error(f"Failed to schedule status refresh for {len(claim_ids)} claim(s): {e}")
            await notify_safely(
                self.notifier,
                NotificationTopic.STATUS_REFRESH_ERRORS,
                NotificationSeverity.ERROR,
                f"Failed to schedule status refresh: {e}",
                {"claim_ids": [str(cid) for cid in claim_ids]},
            )
            return None

        logger.info(
            f"Scheduled status refresh job {job_id} for {len(claim_ids)} claim(s) "
            f"in {delay_minutes} minutes"
        )
        return job_id

    async def refresh_claim_statuses(
        self, user_id: Optional[UUID] = None, limit: Optional[int] = None
    ) -> BatchResult:
        """Refresh every submitted claim still awaiting a payer decision."""
        if not self.settings.AUTO_REFRESH_STATUS:
            logger.warning("Claim status refresh is disabled in configuration")
            return BatchResult()

        claims = await self.repository.find_by_statuses(list(OPEN_STATUSES), limit=limit)
        claim_ids = [claim.id for claim in claims if claim.is_submitted]
        logger.info(f"Refreshing status of {len(claim_ids)} open claim(s)")
        return await self.batch_service.batch_refresh(claim_ids, user_id)
