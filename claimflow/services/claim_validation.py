"""
Claim Validation Service.

Provides:
- Header validation (parties, dates, claim number, type, lineage)
- Service line validation (presence, documentation, ownership, amounts)
- Payer validation (activity, billing requirements, channel configuration)
- Timely filing validation
- Promotion of DRAFT claims to VALIDATED on an all-clear result
- Batch validation with per-claim error capture

Every check runs; nothing short-circuits, so callers see all problems at once.

Source: Design Document Section 4.2 - Validation Engine
Verified: 2026-10-16
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Optional
from uuid import UUID

from claimflow.core.config import ClaimsSettings, get_claims_settings
from claimflow.core.enums import (
    ClaimStatus,
    ClaimType,
    SubmissionFormat,
    SubmissionMethod,
    ValidationErrorCode,
    ValidationSeverity,
)
from claimflow.repositories.base import ClaimRepository
from claimflow.schemas.claim import ClaimRecord, PayerRecord
from claimflow.schemas.results import (
    BatchResult,
    TimelyFilingCheck,
    ValidationIssue,
    ValidationResult,
)
from claimflow.services.claim_state_machine import ClaimStateMachine, get_claim_state_machine
from claimflow.utils.errors import ClaimsError, NotFoundError, StorageUnavailableError

logger = logging.getLogger(__name__)


@dataclass
class ValidationConfig:
    """Configuration for claim validation."""

    default_timely_filing_days: int = 365
    timely_filing_warning_days: int = 30
    min_service_lines: int = 1
    default_submission_method: SubmissionMethod = SubmissionMethod.ELECTRONIC

    @classmethod
    def from_settings(cls, settings: ClaimsSettings) -> "ValidationConfig":
        return cls(
            default_timely_filing_days=settings.DEFAULT_TIMELY_FILING_DAYS,
            timely_filing_warning_days=settings.TIMELY_FILING_WARNING_DAYS,
            default_submission_method=settings.DEFAULT_SUBMISSION_METHOD,
        )


def resolve_submission_method(
    claim: ClaimRecord,
    payer: Optional[PayerRecord],
    default: SubmissionMethod,
) -> SubmissionMethod:
    """Claim's own method, else the payer's preferred method, else the default."""
    if claim.submission_method is not None:
        return claim.submission_method
    if payer is not None and payer.preferred_submission_method is not None:
        return payer.preferred_submission_method
    return default


def check_timely_filing(
    service_end_date: date, filing_days: int, today: date
) -> TimelyFilingCheck:
    """
    Evaluate a payer's timely filing window.

    deadline = service_end_date + filing_days; days_remaining is negative once
    the deadline has passed.
    """
    deadline = service_end_date + timedelta(days=filing_days)
    return TimelyFilingCheck(
        deadline=deadline,
        days_remaining=(deadline - today).days,
        filing_days=filing_days,
    )


def check_submission_config(
    payer: PayerRecord, method: SubmissionMethod
) -> list[ValidationIssue]:
    """
    Check that a payer is configured for a submission channel.

    Returns:
        Issues found (empty when the channel is usable)
    """
    issues: list[ValidationIssue] = []

    def missing(message: str, **context: Any) -> None:
        issues.append(
            ValidationIssue(
                code=ValidationErrorCode.SUBMISSION_CONFIG_MISSING,
                message=message,
                field="payer.submission_method",
                context={"payer_id": str(payer.id), "method": method.value, **context},
            )
        )

    if method == SubmissionMethod.PAPER:
        config = payer.submission_config(method)
        if config is None or not config.mailing_address:
            issues.append(
                ValidationIssue(
                    code=ValidationErrorCode.SUBMISSION_CONFIG_MISSING,
                    message="Payer has no paper claim mailing address",
                    field="payer.submission_method",
                    context={"payer_id": str(payer.id), "method": method.value},
                    severity=ValidationSeverity.WARNING,
                )
            )
        return issues

    config = payer.submission_config(method)
    if config is None:
        missing(f"Payer has no {method.value} submission configuration")
        return issues

    if method in (
        SubmissionMethod.ELECTRONIC,
        SubmissionMethod.CLEARINGHOUSE,
        SubmissionMethod.DIRECT,
    ):
        if not payer.is_electronic:
            issues.append(
                ValidationIssue(
                    code=ValidationErrorCode.BUSINESS_RULE_VIOLATION,
                    message="Payer does not accept electronic claims",
                    field="payer.is_electronic",
                    context={"payer_id": str(payer.id), "method": method.value},
                )
            )
        if not config.endpoint:
            missing(f"{method.value} submission requires an endpoint", item="endpoint")
        if not config.credentials:
            missing(f"{method.value} submission requires credentials", item="credentials")

    if method in (SubmissionMethod.ELECTRONIC, SubmissionMethod.CLEARINGHOUSE):
        if not config.clearinghouse:
            missing("Clearinghouse submission requires a clearinghouse", item="clearinghouse")
        requirements = payer.billing_requirements
        if (
            requirements is not None
            and requirements.submission_format == SubmissionFormat.EDI_837P
            and not config.trading_partner_id
        ):
            missing("EDI 837P submission requires a trading partner id", item="trading_partner_id")

    if method == SubmissionMethod.PORTAL and not config.endpoint:
        missing("Portal submission requires a portal URL", item="endpoint")

    return issues


# =============================================================================
# Claim Validation Service
# =============================================================================


class ClaimValidationService:
    """
    Service for claim validation.

    Validates:
    - Header completeness and consistency
    - Service lines
    - Payer rules and channel configuration
    - Timely filing
    """

    def __init__(
        self,
        repository: ClaimRepository,
        state_machine: Optional[ClaimStateMachine] = None,
        config: Optional[ValidationConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize validation service.

        Args:
            repository: Claim storage
            state_machine: Status transition rules
            config: Validation configuration (defaults from settings)
            clock: Current time source
        """
        self.repository = repository
        self.state_machine = state_machine or get_claim_state_machine()
        self.config = config or ValidationConfig.from_settings(get_claims_settings())
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    async def validate_claim(
        self,
        claim_id: UUID,
        user_id: Optional[UUID] = None,
        promote: bool = True,
        method: Optional[SubmissionMethod] = None,
        tx: Any = None,
    ) -> ValidationResult:
        """
        Validate a claim and promote it to VALIDATED when it passes.

        Args:
            claim_id: Claim to validate
            user_id: Acting user recorded on the promotion
            promote: Move a passing DRAFT claim to VALIDATED
            method: Submission method the claim is headed for (defaults to the
                claim's own, then the payer's preferred method)
            tx: Optional transaction handle

        Returns:
            ValidationResult with all errors and warnings

        Raises:
            NotFoundError: Claim does not exist
        """
        claim = await self.repository.find_by_id(claim_id, tx=tx)
        if claim is None:
            raise NotFoundError("Claim", claim_id)

        payer = None
        if claim.payer_id is not None:
            payer = await self.repository.find_payer(claim.payer_id, tx=tx)

        result = self.evaluate(claim, payer, method=method)

        if result.is_valid and promote and claim.status == ClaimStatus.DRAFT:
            await self.state_machine.execute_transition(
                self.repository,
                claim.id,
                ClaimStatus.DRAFT,
                ClaimStatus.VALIDATED,
                notes="Claim passed validation",
                actor_id=user_id,
                tx=tx,
            )
            result.promoted = True

        if result.is_valid:
            logger.info(
                f"Claim {claim_id} validated with {result.warning_count} warning(s)"
            )
        else:
            logger.info(
                f"Claim {claim_id} failed validation: {result.error_count} error(s), "
                f"{result.warning_count} warning(s)"
            )
        return result

    def evaluate(
        self,
        claim: ClaimRecord,
        payer: Optional[PayerRecord],
        today: Optional[date] = None,
        method: Optional[SubmissionMethod] = None,
    ) -> ValidationResult:
        """Run every check against a claim snapshot without side effects."""
        today = today or self.clock().date()
        result = ValidationResult(claim_id=claim.id, validated_at=self.clock())

        self._validate_header(claim, result, today)
        self._validate_service_lines(claim, result)
        self._validate_payer(claim, payer, result, method)
        self._validate_timely_filing(claim, payer, result, today)

        return result

    async def validate_many(
        self, claim_ids: list[UUID], method: Optional[SubmissionMethod] = None
    ) -> BatchResult:
        """
        Validate claims one by one, never letting one failure stop the rest.

        Results per claim are in BatchResult.results. An exception validating a
        claim is captured as a synthetic error result for that id; storage
        outages propagate.
        """
        batch = BatchResult()
        for claim_id in claim_ids:
            try:
                result = await self.validate_claim(claim_id, method=method)
            except StorageUnavailableError:
                raise
            except Exception as e:
                if not isinstance(e, ClaimsError):
                    logger.exception(f"Unexpected error validating claim {claim_id}")
                result = ValidationResult(claim_id=claim_id)
                result.add_error(
                    ValidationErrorCode.INTERNAL_ERROR,
                    f"Validation failed: {e}",
                )
                batch.record_error(claim_id, f"Validation failed: {e}", result)
                continue

            if result.is_valid:
                batch.record_success(claim_id, result)
            else:
                batch.record_error(claim_id, f"Validation failed: {result.summary()}", result)

        logger.info(
            f"Batch validation: {batch.success_count} valid, "
            f"{batch.error_count} invalid of {batch.total_processed}"
        )
        return batch

    # =========================================================================
    # Header Validation
    # =========================================================================

    def _validate_header(
        self, claim: ClaimRecord, result: ValidationResult, today: date
    ) -> None:
        """Validate parties, service period, number, type and lineage."""
        if claim.client_id is None:
            result.add_error(
                ValidationErrorCode.MISSING_REQUIRED_FIELD,
                "Client is required",
                "client_id",
            )
        if claim.payer_id is None:
            result.add_error(
                ValidationErrorCode.MISSING_REQUIRED_FIELD,
                "Payer is required",
                "payer_id",
            )

        start, end = claim.service_start_date, claim.service_end_date
        if start is None or end is None:
            result.add_error(
                ValidationErrorCode.MISSING_REQUIRED_FIELD,
                "Service start and end dates are required",
                "service_dates",
            )
        elif start > end:
            result.add_error(
                ValidationErrorCode.INVALID_DATE_RANGE,
                "Service start date cannot be after service end date",
                "service_dates",
                service_start_date=start.isoformat(),
                service_end_date=end.isoformat(),
            )

        for field_name, value in (
            ("service_start_date", start),
            ("service_end_date", end),
        ):
            if value is not None and value > today:
                result.add_warning(
                    ValidationErrorCode.FUTURE_DATE,
                    f"{field_name.replace('_', ' ').capitalize()} is in the future",
                    field_name,
                    date=value.isoformat(),
                )

        if not claim.claim_number:
            result.add_error(
                ValidationErrorCode.MISSING_REQUIRED_FIELD,
                "Claim number is required",
                "claim_number",
            )
        if claim.claim_type is None:
            result.add_error(
                ValidationErrorCode.MISSING_REQUIRED_FIELD,
                "Claim type is required",
                "claim_type",
            )
        elif (
            claim.claim_type in (ClaimType.ADJUSTMENT, ClaimType.REPLACEMENT)
            and claim.original_claim_id is None
        ):
            result.add_error(
                ValidationErrorCode.MISSING_REQUIRED_FIELD,
                f"Original claim is required for {claim.claim_type.value} claims",
                "original_claim_id",
            )

    # =========================================================================
    # Service Line Validation
    # =========================================================================

    def _validate_service_lines(self, claim: ClaimRecord, result: ValidationResult) -> None:
        """Validate line presence, documentation, ownership and amounts."""
        if len(claim.lines) < self.config.min_service_lines:
            result.add_error(
                ValidationErrorCode.MISSING_REQUIRED_FIELD,
                "Claim must have at least one service line",
                "services",
            )
            return

        seen: set[UUID] = set()
        for line in claim.lines:
            field_prefix = f"services[{line.line_number}]"

            if line.service_id in seen:
                result.add_error(
                    ValidationErrorCode.DUPLICATE_SERVICE,
                    f"Service {line.service_id} appears more than once",
                    field_prefix,
                    service_id=str(line.service_id),
                )
            seen.add(line.service_id)

            if line.billed_units <= 0 or line.billed_amount <= 0:
                result.add_error(
                    ValidationErrorCode.INVALID_INPUT,
                    f"Line {line.line_number} must have positive units and amount",
                    field_prefix,
                    billed_units=str(line.billed_units),
                    billed_amount=str(line.billed_amount),
                )

            service = line.service
            if service is None:
                result.add_error(
                    ValidationErrorCode.INVALID_INPUT,
                    f"Service {line.service_id} on line {line.line_number} does not exist",
                    field_prefix,
                    service_id=str(line.service_id),
                )
                continue

            if not service.is_documented:
                result.add_error(
                    ValidationErrorCode.DOCUMENTATION_INCOMPLETE,
                    f"Documentation for service on line {line.line_number} is not complete",
                    f"{field_prefix}.documentation_status",
                    service_id=str(service.id),
                    documentation_status=service.documentation_status.value,
                )

            if service.claim_id is not None and service.claim_id != claim.id:
                result.add_error(
                    ValidationErrorCode.SERVICE_ALREADY_CLAIMED,
                    f"Service on line {line.line_number} is attached to another claim",
                    field_prefix,
                    service_id=str(service.id),
                    other_claim_id=str(service.claim_id),
                )

            start, end = claim.service_start_date, claim.service_end_date
            if start and end and not (start <= service.service_date <= end):
                result.add_warning(
                    ValidationErrorCode.INVALID_DATE_RANGE,
                    f"Service on line {line.line_number} is outside the claim period",
                    f"{field_prefix}.service_date",
                    service_date=service.service_date.isoformat(),
                )

        if claim.total_amount != claim.line_total:
            result.add_error(
                ValidationErrorCode.AMOUNT_MISMATCH,
                "Claim total does not equal the sum of line amounts",
                "total_amount",
                total_amount=str(claim.total_amount),
                line_total=str(claim.line_total),
            )

    # =========================================================================
    # Payer Validation
    # =========================================================================

    def _validate_payer(
        self,
        claim: ClaimRecord,
        payer: Optional[PayerRecord],
        result: ValidationResult,
        method: Optional[SubmissionMethod] = None,
    ) -> None:
        """Validate payer activity, billing requirements and channel setup."""
        if claim.payer_id is None:
            return  # Reported by the header check
        if payer is None:
            result.add_error(
                ValidationErrorCode.INVALID_INPUT,
                f"Payer {claim.payer_id} does not exist",
                "payer",
            )
            return

        if not payer.is_active:
            result.add_error(
                ValidationErrorCode.PAYER_INACTIVE,
                f"Payer {payer.name} is not active",
                "payer",
                payer_status=payer.status.value,
            )

        self._validate_billing_requirements(claim, payer, result)

        if method is None:
            method = resolve_submission_method(
                claim, payer, self.config.default_submission_method
            )
        for issue in check_submission_config(payer, method):
            result.add_issue(issue)

    def _validate_billing_requirements(
        self,
        claim: ClaimRecord,
        payer: PayerRecord,
        result: ValidationResult,
    ) -> None:
        requirements = payer.billing_requirements
        field_name = "payer.billing_requirements"
        if requirements is None:
            result.add_error(
                ValidationErrorCode.PAYER_REQUIREMENT_MISSING,
                "Payer billing requirements are not configured",
                field_name,
            )
            return

        if requirements.submission_format is None:
            result.add_error(
                ValidationErrorCode.PAYER_REQUIREMENT_MISSING,
                "Payer submission format is not configured",
                field_name,
                item="submission_format",
            )
        if requirements.timely_filing_days is not None and requirements.timely_filing_days <= 0:
            result.add_error(
                ValidationErrorCode.PAYER_REQUIREMENT_MISSING,
                "Payer timely filing window must be positive",
                field_name,
                item="timely_filing_days",
            )

        for required in requirements.required_fields:
            value = getattr(claim, required, None)
            if value is None or value == "" or value == []:
                result.add_error(
                    ValidationErrorCode.MISSING_REQUIRED_FIELD,
                    f"Payer requires {required}",
                    required,
                    payer_id=str(payer.id),
                )

    # =========================================================================
    # Timely Filing Validation
    # =========================================================================

    def _validate_timely_filing(
        self,
        claim: ClaimRecord,
        payer: Optional[PayerRecord],
        result: ValidationResult,
        today: date,
    ) -> None:
        """Check the payer's filing deadline against today."""
        if claim.service_end_date is None or payer is None:
            return

        filing_days = payer.timely_filing_days or self.config.default_timely_filing_days
        if filing_days <= 0:
            return  # Reported as a payer requirement error
        check = check_timely_filing(claim.service_end_date, filing_days, today)
        context = {
            "deadline": check.deadline.isoformat(),
            "days_remaining": check.days_remaining,
            "days_over": check.days_over,
            "timely_filing_days": filing_days,
        }

        if not check.is_within_limit:
            result.add_error(
                ValidationErrorCode.TIMELY_FILING_EXCEEDED,
                f"Timely filing deadline {check.deadline.isoformat()} passed "
                f"{check.days_over} day(s) ago",
                "service_end_date",
                **context,
            )
        elif check.days_remaining <= self.config.timely_filing_warning_days:
            result.add_warning(
                ValidationErrorCode.TIMELY_FILING_APPROACHING,
                f"Timely filing deadline in {check.days_remaining} day(s)",
                "service_end_date",
                **context,
            )
