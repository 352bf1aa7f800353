"""
Claim Lifecycle Orchestrator Tests.

Tests for:
- Validate -> submit sequencing and auto-submit
- Void, appeal, denial and payment handling
- Aging risk and progress monitoring
- Status refresh scheduling
"""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from claimflow.core.config import ClaimsSettings
from claimflow.core.enums import (
    ClaimStatus,
    DenialReason,
    IntegrationMode,
    JobType,
    RiskLevel,
    SubmissionMethod,
)
from claimflow.schemas.claim import (
    BatchSubmitRequest,
    StatusUpdate,
    SubmissionConfig,
    SubmitClaimRequest,
)
from claimflow.services.claim_lifecycle import calculate_aging_risk
from claimflow.services.runtime import build_claim_runtime
from claimflow.services.scheduler import InMemoryJobScheduler
from claimflow.utils.errors import (
    BusinessRuleError,
    ClaimValidationFailedError,
    InvalidStatusTransitionError,
)


class BrokenScheduler(InMemoryJobScheduler):
    """Scheduler whose broker is down."""

    async def create_job(self, job_type, payload, run_at=None):
        raise RuntimeError("broker down")


@pytest.fixture
def runtime_factory(
    repository, scheduler, notifier, document_store, clearinghouse, payer_gateway, clock
):
    """Build a runtime over the shared fakes with settings overrides."""

    def _build(scheduler_override=None, **overrides):
        settings = ClaimsSettings(
            _env_file=None,
            INTEGRATION_MODE=IntegrationMode.DEMO,
            INTEGRATION_RETRY_DELAY_SECONDS=0,
            **overrides,
        )
        return build_claim_runtime(
            settings=settings,
            repository=repository,
            scheduler=scheduler_override or scheduler,
            notifier=notifier,
            document_store=document_store,
            clearinghouse=clearinghouse,
            payer_gateway=payer_gateway,
            clock=clock,
        )

    return _build


class TestProcessClaim:
    """Tests for validate -> submit sequencing."""

    @pytest.mark.asyncio
    async def test_validates_without_auto_submit(self, runtime, make_claim, scheduler):
        claim = make_claim()

        processed = await runtime.lifecycle.process_claim(claim.id)

        assert processed.status == ClaimStatus.VALIDATED
        assert scheduler.jobs == []

    @pytest.mark.asyncio
    async def test_auto_submit_submits_and_schedules_refresh(
        self, runtime_factory, make_claim, scheduler, clock
    ):
        runtime = runtime_factory(AUTO_SUBMIT=True)
        claim = make_claim()

        processed = await runtime.lifecycle.process_claim(claim.id)

        assert processed.status == ClaimStatus.SUBMITTED
        [job] = scheduler.jobs_of_type(JobType.CLAIM_STATUS_REFRESH)
        assert job.payload == {"claim_ids": [str(claim.id)]}
        assert job.run_at == clock() + timedelta(minutes=30)

    @pytest.mark.asyncio
    async def test_auto_submit_without_auto_refresh(
        self, runtime_factory, make_claim, scheduler
    ):
        runtime = runtime_factory(AUTO_SUBMIT=True, AUTO_REFRESH_STATUS=False)
        claim = make_claim()

        processed = await runtime.lifecycle.process_claim(claim.id)

        assert processed.status == ClaimStatus.SUBMITTED
        assert scheduler.jobs == []

    @pytest.mark.asyncio
    async def test_invalid_claim_returned_unchanged(
        self, runtime_factory, make_claim, clearinghouse
    ):
        runtime = runtime_factory(AUTO_SUBMIT=True)
        claim = make_claim(amounts=())

        processed = await runtime.lifecycle.process_claim(claim.id)

        assert processed.status == ClaimStatus.DRAFT
        assert clearinghouse.calls == []

    @pytest.mark.asyncio
    async def test_validate_and_submit_fails_closed(self, runtime, make_claim, clearinghouse):
        claim = make_claim(amounts=())

        with pytest.raises(ClaimValidationFailedError) as exc_info:
            await runtime.lifecycle.validate_and_submit(
                claim.id, SubmitClaimRequest(submission_method=SubmissionMethod.ELECTRONIC)
            )

        assert exc_info.value.result.is_valid is False
        assert clearinghouse.calls == []

    @pytest.mark.asyncio
    async def test_validate_and_submit_checks_chosen_channel(
        self, payer_factory, runtime, repository, make_claim, document_store
    ):
        payer = payer_factory(
            submission_methods={
                SubmissionMethod.PAPER: SubmissionConfig(mailing_address="PO Box 9")
            }
        )
        repository.seed_payers([payer])
        claim = make_claim(payer_record=payer)

        submitted = await runtime.lifecycle.validate_and_submit(
            claim.id, SubmitClaimRequest(submission_method=SubmissionMethod.PAPER)
        )

        assert submitted.status == ClaimStatus.SUBMITTED
        assert document_store.object_exists("paper-claims", f"{claim.claim_number}.json")

    @pytest.mark.asyncio
    async def test_validate_and_submit(self, runtime, make_claim):
        claim = make_claim()

        submitted = await runtime.lifecycle.validate_and_submit(
            claim.id, SubmitClaimRequest(submission_method=SubmissionMethod.ELECTRONIC)
        )

        assert submitted.status == ClaimStatus.SUBMITTED
        assert submitted.external_claim_id.startswith("CH-")


class TestSubmitBatch:
    """Tests for batch submission with follow-up scheduling."""

    @pytest.mark.asyncio
    async def test_schedules_refresh_for_submitted_claims(
        self, runtime, make_claim, scheduler
    ):
        good, bad = make_claim(), make_claim(amounts=())

        result = await runtime.lifecycle.submit_batch(
            BatchSubmitRequest(claim_ids=[good.id, bad.id])
        )

        assert result.processed_claims == [good.id]
        [job] = scheduler.jobs_of_type(JobType.CLAIM_STATUS_REFRESH)
        assert job.payload == {"claim_ids": [str(good.id)]}

    @pytest.mark.asyncio
    async def test_nothing_submitted_schedules_nothing(self, runtime, make_claim, scheduler):
        bad = make_claim(amounts=())

        await runtime.lifecycle.submit_batch(BatchSubmitRequest(claim_ids=[bad.id]))

        assert scheduler.jobs == []

    @pytest.mark.asyncio
    async def test_scheduler_failure_does_not_fail_batch(
        self, runtime_factory, make_claim, notifier
    ):
        runtime = runtime_factory(scheduler_override=BrokenScheduler())
        claim = make_claim()

        result = await runtime.lifecycle.submit_batch(BatchSubmitRequest(claim_ids=[claim.id]))

        assert result.success_count == 1
        assert "claim-status-refresh-errors" in notifier.topics()


class TestTransitions:
    """Tests for void, appeal, denial and payment."""

    @pytest.mark.asyncio
    async def test_transition_to_submitted_goes_through_dispatcher(
        self, runtime, repository, make_claim, clearinghouse
    ):
        claim = make_claim(status=ClaimStatus.VALIDATED)

        updated = await runtime.lifecycle.transition_status(claim.id, ClaimStatus.SUBMITTED)

        assert updated.status == ClaimStatus.SUBMITTED
        assert len(clearinghouse.calls_to("submit_claim")) == 1
        assert len(await repository.get_submission_history(claim.id)) == 1

    @pytest.mark.asyncio
    async def test_transition_to_validated_runs_validation(
        self, runtime, repository, make_claim
    ):
        claim = make_claim()

        updated = await runtime.lifecycle.transition_status(claim.id, ClaimStatus.VALIDATED)

        assert updated.status == ClaimStatus.VALIDATED
        history = await repository.get_status_history(claim.id)
        assert history[-1].notes == "Claim passed validation"

    @pytest.mark.asyncio
    async def test_invalid_claim_cannot_be_marked_validated(
        self, runtime, repository, make_claim, clearinghouse
    ):
        """Test a claim with no lines stays DRAFT and never reaches the clearinghouse."""
        claim = make_claim(amounts=())

        with pytest.raises(ClaimValidationFailedError):
            await runtime.lifecycle.transition_status(claim.id, ClaimStatus.VALIDATED)
        with pytest.raises(ClaimValidationFailedError):
            await runtime.submission.submit_claim(
                claim.id, SubmitClaimRequest(submission_method=SubmissionMethod.ELECTRONIC)
            )

        assert (await repository.find_by_id(claim.id)).status == ClaimStatus.DRAFT
        assert clearinghouse.calls == []

    @pytest.mark.asyncio
    async def test_illegal_transition(self, runtime, make_claim):
        claim = make_claim(status=ClaimStatus.DRAFT)
        with pytest.raises(InvalidStatusTransitionError):
            await runtime.lifecycle.transition_status(claim.id, ClaimStatus.PAID)

    @pytest.mark.asyncio
    async def test_void_keeps_services_attached(self, runtime, repository, make_claim):
        claim = make_claim(status=ClaimStatus.PAID, submitted=True)

        voided = await runtime.lifecycle.void_claim(claim.id, notes="Billed in error")

        assert voided.status == ClaimStatus.VOID
        services = await repository.find_services(claim.service_ids)
        assert all(s.claim_id == claim.id for s in services)
        history = await repository.get_status_history(claim.id)
        assert history[-1].notes == "Billed in error"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [ClaimStatus.VOID, ClaimStatus.FINAL_DENIED])
    async def test_void_rejected(self, runtime, repository, make_claim, status):
        claim = make_claim(status=status)

        with pytest.raises(InvalidStatusTransitionError) as exc_info:
            await runtime.lifecycle.void_claim(claim.id)

        assert exc_info.value.code == "INVALID_STATUS_TRANSITION"
        assert exc_info.value.target_status == ClaimStatus.VOID
        assert (await repository.find_by_id(claim.id)).status == status

    @pytest.mark.asyncio
    async def test_appeal_denied_claim(self, runtime, make_claim):
        claim = make_claim(status=ClaimStatus.DENIED, submitted=True)

        appealed = await runtime.lifecycle.appeal_claim(claim.id, notes="Auth was on file")

        assert appealed.status == ClaimStatus.APPEALED

    @pytest.mark.asyncio
    async def test_appeal_requires_denial(self, runtime, make_claim):
        claim = make_claim(status=ClaimStatus.PENDING, submitted=True)

        with pytest.raises(BusinessRuleError) as exc_info:
            await runtime.lifecycle.appeal_claim(claim.id)

        assert exc_info.value.code == "CLAIM_NOT_DENIED"

    @pytest.mark.asyncio
    async def test_record_denial(self, runtime, make_claim, notifier):
        claim = make_claim(status=ClaimStatus.PENDING, submitted=True)

        denied = await runtime.lifecycle.record_denial(
            claim.id,
            DenialReason.SERVICE_NOT_COVERED,
            details="Not a covered benefit",
            adjustment_codes=["CO-96"],
        )

        assert denied.status == ClaimStatus.DENIED
        assert denied.denial_reason == DenialReason.SERVICE_NOT_COVERED
        assert denied.denial_details == "Not a covered benefit"
        assert denied.adjustment_codes == ["CO-96"]
        assert notifier.topics() == ["claim-status-updates"]

    @pytest.mark.asyncio
    async def test_denied_appeal_is_final(self, runtime, make_claim):
        claim = make_claim(status=ClaimStatus.APPEALED, submitted=True)

        denied = await runtime.lifecycle.record_denial(claim.id, DenialReason.TIMELY_FILING)

        assert denied.status == ClaimStatus.FINAL_DENIED

    @pytest.mark.asyncio
    async def test_payment_walks_legal_path(self, runtime, repository, make_claim):
        claim = make_claim(status=ClaimStatus.SUBMITTED, submitted=True)

        paid = await runtime.lifecycle.record_payment(
            claim.id, adjudication_date=date(2024, 1, 28)
        )

        assert paid.status == ClaimStatus.PAID
        assert paid.adjudication_date == date(2024, 1, 28)
        history = await repository.get_status_history(claim.id)
        assert [(h.status, h.notes) for h in history[-3:]] == [
            (ClaimStatus.ACKNOWLEDGED, "Inferred from payment posting"),
            (ClaimStatus.PENDING, "Inferred from payment posting"),
            (ClaimStatus.PAID, "Payment received"),
        ]

    @pytest.mark.asyncio
    async def test_payment_requires_submission(self, runtime, make_claim):
        claim = make_claim(status=ClaimStatus.VALIDATED)
        with pytest.raises(BusinessRuleError):
            await runtime.lifecycle.record_payment(claim.id)

    @pytest.mark.asyncio
    async def test_payment_on_final_denial_rejected(self, runtime, make_claim):
        claim = make_claim(status=ClaimStatus.FINAL_DENIED, submitted=True)
        with pytest.raises(InvalidStatusTransitionError):
            await runtime.lifecycle.record_payment(claim.id)

    @pytest.mark.asyncio
    async def test_payment_on_denial_needs_appeal(self, runtime, repository, make_claim):
        """Test no appeal is inferred when a denied claim is paid."""
        claim = make_claim(status=ClaimStatus.DENIED, submitted=True)

        with pytest.raises(InvalidStatusTransitionError):
            await runtime.lifecycle.record_payment(claim.id)

        history = await repository.get_status_history(claim.id)
        assert ClaimStatus.APPEALED not in [h.status for h in history]

    @pytest.mark.asyncio
    async def test_partial_payment_needs_extension(
        self, runtime, runtime_factory, make_claim
    ):
        claim = make_claim(status=ClaimStatus.PENDING, submitted=True)
        with pytest.raises(InvalidStatusTransitionError):
            await runtime.lifecycle.record_payment(claim.id, partial=True)

        extended = runtime_factory(ENABLE_PARTIAL_PAYMENT_TRANSITIONS=True)
        partial = await extended.lifecycle.record_payment(claim.id, partial=True)
        assert partial.status == ClaimStatus.PARTIAL_PAID

    @pytest.mark.asyncio
    async def test_denial_update_requires_reason(self, runtime, make_claim):
        with pytest.raises(ValueError):
            await runtime.lifecycle.transition_status(
                make_claim(status=ClaimStatus.PENDING, submitted=True).id,
                ClaimStatus.DENIED,
                StatusUpdate(status=ClaimStatus.DENIED),
            )


class TestAgingRisk:
    """Tests for the aging risk score."""

    def test_critical(self, make_claim):
        claim = make_claim(
            status=ClaimStatus.DENIED,
            created_at=datetime(2023, 10, 1, tzinfo=timezone.utc),
            total_amount=Decimal("12000.00"),
        )

        risk = calculate_aging_risk(claim, date(2024, 2, 1))

        assert risk.score == 110
        assert risk.level == RiskLevel.CRITICAL
        assert risk.factors == ["Age > 90 days", "Claim Denied", "Claim Amount > $10,000"]

    def test_medium(self, make_claim):
        claim = make_claim(
            status=ClaimStatus.PENDING,
            created_at=datetime(2023, 12, 15, tzinfo=timezone.utc),
            total_amount=Decimal("6000.00"),
        )

        risk = calculate_aging_risk(claim, date(2024, 2, 1))

        assert risk.score == 40
        assert risk.level == RiskLevel.MEDIUM
        assert risk.recommended_actions == ["Check claim status"]

    def test_low(self, make_claim):
        claim = make_claim(status=ClaimStatus.SUBMITTED)
        risk = calculate_aging_risk(claim, date(2024, 2, 1))
        assert risk.score == 0
        assert risk.level == RiskLevel.LOW


class TestInspection:
    """Tests for progress and lifecycle views."""

    @pytest.mark.asyncio
    async def test_monitor_progress(self, runtime, make_claim):
        claim = make_claim(status=ClaimStatus.PENDING, submitted=True)

        progress = await runtime.lifecycle.monitor_progress(claim.id)

        assert progress.current_status == ClaimStatus.PENDING
        assert progress.days_in_status == 1
        assert progress.total_age == 1
        assert progress.next_milestone == "Payment decision"
        assert progress.estimated_completion == date(2024, 2, 15)

    @pytest.mark.asyncio
    async def test_closed_claim_has_no_projection(self, runtime, make_claim):
        claim = make_claim(status=ClaimStatus.PAID, submitted=True)

        progress = await runtime.lifecycle.monitor_progress(claim.id)

        assert progress.next_milestone is None
        assert progress.estimated_completion is None

    @pytest.mark.asyncio
    async def test_lifecycle_view(self, runtime, make_claim):
        claim = make_claim(status=ClaimStatus.DENIED, submitted=True)

        view = await runtime.lifecycle.get_claim_lifecycle(claim.id)

        assert view.claim.id == claim.id
        assert view.age_days == 1
        assert [entry.status for entry in view.timeline] == [ClaimStatus.DENIED]
        assert {o.status for o in view.next_actions} == {ClaimStatus.APPEALED, ClaimStatus.VOID}
        assert view.risk.factors == ["Claim Denied"]


class TestRefreshOpenClaims:
    """Tests for refreshing every open claim."""

    @pytest.mark.asyncio
    async def test_refreshes_submitted_open_claims(self, runtime, make_claim, clearinghouse):
        open_claim = make_claim(status=ClaimStatus.SUBMITTED, submitted=True)
        make_claim(status=ClaimStatus.PAID, submitted=True)
        make_claim(status=ClaimStatus.VALIDATED)

        result = await runtime.lifecycle.refresh_claim_statuses()

        assert result.processed_claims == [open_claim.id]
        assert clearinghouse.calls_to("check_status") == [open_claim.id]

    @pytest.mark.asyncio
    async def test_disabled_refresh_does_nothing(
        self, runtime_factory, make_claim, clearinghouse
    ):
        runtime = runtime_factory(AUTO_REFRESH_STATUS=False)
        make_claim(status=ClaimStatus.SUBMITTED, submitted=True)

        result = await runtime.lifecycle.refresh_claim_statuses()

        assert result.total_processed == 0
        assert clearinghouse.calls == []
