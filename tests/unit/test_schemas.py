"""
Unit Tests for Claim Schemas and Operation Results
Tests request validation and result bookkeeping
"""

from datetime import date, timedelta
from decimal import Decimal
from uuid import uuid4

import pytest
from pydantic import ValidationError

from claimflow.core.enums import (
    ClaimStatus,
    ClaimType,
    DenialReason,
    SubmissionMethod,
    ValidationErrorCode,
)
from claimflow.schemas.claim import (
    BatchSubmitRequest,
    ClaimCreate,
    ClaimLine,
    ClaimRecord,
    PayerRecord,
    StatusUpdate,
    SubmissionConfig,
)
from claimflow.schemas.results import (
    BatchResult,
    RefreshResult,
    TimelyFilingCheck,
    ValidationIssue,
    ValidationResult,
)


def claim_create(**overrides) -> ClaimCreate:
    fields = {
        "client_id": uuid4(),
        "payer_id": uuid4(),
        "service_start_date": date(2024, 1, 1),
        "service_end_date": date(2024, 1, 10),
    }
    fields.update(overrides)
    return ClaimCreate(**fields)


@pytest.mark.unit
class TestClaimCreateSchema:
    """Test ClaimCreate schema validation"""

    def test_valid_claim(self):
        """Test that a single-day service period is accepted"""
        data = claim_create(service_end_date=date(2024, 1, 1))
        assert data.claim_type == ClaimType.ORIGINAL

    def test_reversed_service_period(self):
        """Test that start after end is rejected"""
        with pytest.raises(ValidationError) as exc_info:
            claim_create(service_start_date=date(2024, 2, 1))

        assert any("on or before" in str(error) for error in exc_info.value.errors())

    @pytest.mark.parametrize("claim_type", [ClaimType.ADJUSTMENT, ClaimType.REPLACEMENT])
    def test_lineage_required(self, claim_type):
        """Test that adjustments and replacements need the original claim"""
        with pytest.raises(ValidationError) as exc_info:
            claim_create(claim_type=claim_type)

        assert any("original_claim_id" in str(error) for error in exc_info.value.errors())

    def test_duplicate_services_rejected(self):
        service_id = uuid4()
        with pytest.raises(ValidationError):
            claim_create(service_ids=[service_id, service_id])


@pytest.mark.unit
class TestRequestSchemas:
    """Test submission and status request schemas"""

    def test_batch_needs_claims(self):
        with pytest.raises(ValidationError):
            BatchSubmitRequest(claim_ids=[])

    def test_denial_needs_reason(self):
        """Test that denying without a reason is rejected"""
        with pytest.raises(ValidationError):
            StatusUpdate(status=ClaimStatus.DENIED)

        update = StatusUpdate(
            status=ClaimStatus.DENIED, denial_reason=DenialReason.TIMELY_FILING
        )
        assert update.denial_reason == DenialReason.TIMELY_FILING

    def test_non_denial_needs_no_reason(self):
        assert StatusUpdate(status=ClaimStatus.PAID).denial_reason is None


@pytest.mark.unit
class TestRecords:
    """Test record helpers"""

    def test_line_total_and_submitted_flag(self):
        claim = ClaimRecord(
            lines=[
                ClaimLine(service_id=uuid4(), line_number=1, billed_amount=Decimal("40.00")),
                ClaimLine(service_id=uuid4(), line_number=2, billed_amount=Decimal("60.50")),
            ]
        )

        assert claim.line_total == Decimal("100.50")
        assert not claim.is_submitted
        claim.external_claim_id = "CH-1"
        claim.submission_date = claim.created_at
        assert claim.is_submitted

    def test_line_numbers_start_at_one(self):
        with pytest.raises(ValidationError):
            ClaimLine(service_id=uuid4(), line_number=0)

    def test_electronic_falls_back_to_clearinghouse_config(self):
        config = SubmissionConfig(clearinghouse="Availity")
        payer = PayerRecord(
            name="Lakeside", submission_methods={SubmissionMethod.CLEARINGHOUSE: config}
        )

        assert payer.submission_config(SubmissionMethod.ELECTRONIC) == config
        assert payer.submission_config(SubmissionMethod.PAPER) is None
        assert payer.timely_filing_days is None


@pytest.mark.unit
class TestResults:
    """Test result bookkeeping"""

    def test_validation_issue_defaults(self):
        """Test issue defaults with a field name and a fresh context"""
        first = ValidationIssue(ValidationErrorCode.INVALID_INPUT, "Bad units")
        second = ValidationIssue(ValidationErrorCode.INVALID_INPUT, "Bad amount", field="services[1]")
        first.context["line"] = 1

        assert second.context == {}
        assert first.field is None
        assert second.to_dict()["field"] == "services[1]"
        assert second.to_dict()["severity"] == "error"

    def test_validation_result_errors_and_warnings(self):
        result = ValidationResult(claim_id=uuid4())
        result.add_warning(ValidationErrorCode.FUTURE_DATE, "Date is in the future", "service_end_date")
        assert result.is_valid

        result.add_error(ValidationErrorCode.MISSING_REQUIRED_FIELD, "No services", "services")

        assert not result.is_valid
        assert result.error_count == 1
        assert result.warning_count == 1
        assert [e.message for e in result.errors_for("services")] == ["No services"]
        assert result.summary() == "No services"

    def test_timely_filing_days_over(self):
        late = TimelyFilingCheck(deadline=date(2025, 1, 9), days_remaining=-143, filing_days=365)
        on_time = TimelyFilingCheck(
            deadline=date(2024, 1, 10) + timedelta(days=365), days_remaining=10, filing_days=365
        )

        assert not late.is_within_limit
        assert late.days_over == 143
        assert on_time.is_within_limit
        assert on_time.days_over == 0

    def test_batch_result_accounting(self):
        ok, bad = uuid4(), uuid4()
        batch = BatchResult()
        batch.record_success(ok, updated=True)
        batch.record_error(bad, "Claim not found")

        assert batch.total_processed == 2
        assert batch.success_count + batch.error_count == batch.total_processed
        assert batch.updated_count == 1
        assert batch.processed_claims == [ok]
        assert batch.error_for(bad) == "Claim not found"
        assert batch.error_for(ok) is None
        assert batch.to_dict()["processed_claims"] == [str(ok)]

    def test_refresh_result_open_states(self):
        claim_id = uuid4()
        pending = RefreshResult(claim_id, ClaimStatus.SUBMITTED, ClaimStatus.PENDING)
        paid = RefreshResult(claim_id, ClaimStatus.PENDING, ClaimStatus.PAID, changed=True)

        assert pending.is_open
        assert not paid.is_open
