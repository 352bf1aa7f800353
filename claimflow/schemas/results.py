"""
Operation Results.

Ephemeral values returned by the lifecycle services. None of these are
persisted; they summarize side effects already committed to storage.

Source: Design Document Sections 3 and 4
Verified: 2026-10-16
"""

import dataclasses
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Optional
from uuid import UUID

from claimflow.core.enums import (
    ClaimStatus,
    RiskLevel,
    SubmissionMethod,
    ValidationErrorCode,
    ValidationSeverity,
)


# =============================================================================
# Validation Results
# =============================================================================


@dataclass
class ValidationIssue:
    """A single validation error or warning."""

    code: ValidationErrorCode
    message: str
    field: Optional[str] = None
    context: dict[str, Any] = dataclasses.field(default_factory=dict)
    severity: ValidationSeverity = ValidationSeverity.ERROR

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code.value,
            "message": self.message,
            "field": self.field,
            "context": self.context,
            "severity": self.severity.value,
        }


@dataclass
class ValidationResult:
    """Result of validating one claim."""

    claim_id: UUID
    is_valid: bool = True
    errors: list[ValidationIssue] = field(default_factory=list)
    warnings: list[ValidationIssue] = field(default_factory=list)
    validated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    promoted: bool = False  # Claim moved DRAFT -> VALIDATED by this run

    def add_error(
        self,
        code: ValidationErrorCode,
        message: str,
        field_name: Optional[str] = None,
        **context: Any,
    ) -> None:
        """Add a blocking error."""
        self.errors.append(
            ValidationIssue(
                code=code,
                message=message,
                field=field_name,
                context=context,
                severity=ValidationSeverity.ERROR,
            )
        )
        self.is_valid = False

    def add_warning(
        self,
        code: ValidationErrorCode,
        message: str,
        field_name: Optional[str] = None,
        **context: Any,
    ) -> None:
        """Add a non-blocking warning."""
        self.warnings.append(
            ValidationIssue(
                code=code,
                message=message,
                field=field_name,
                context=context,
                severity=ValidationSeverity.WARNING,
            )
        )

    def add_issue(self, issue: ValidationIssue) -> None:
        """Add an issue, routing it by severity."""
        if issue.severity == ValidationSeverity.ERROR:
            self.errors.append(issue)
            self.is_valid = False
        else:
            self.warnings.append(issue)

    @property
    def error_count(self) -> int:
        return len(self.errors)

    @property
    def warning_count(self) -> int:
        return len(self.warnings)

    def errors_for(self, field_name: str) -> list[ValidationIssue]:
        """Get errors reported against a field."""
        return [e for e in self.errors if e.field == field_name]

    def summary(self) -> str:
        """One-line description of the errors, for batch messages."""
        if self.is_valid:
            return "valid"
        return "; ".join(e.message for e in self.errors)


@dataclass
class TimelyFilingCheck:
    """Timely filing evaluation for a claim."""

    deadline: date
    days_remaining: int  # Negative once the deadline has passed
    filing_days: int

    @property
    def is_within_limit(self) -> bool:
        return self.days_remaining >= 0

    @property
    def days_over(self) -> int:
        return max(0, -self.days_remaining)


# =============================================================================
# Submission Results
# =============================================================================


@dataclass
class SubmissionResult:
    """Normalized result of a channel submission."""

    success: bool
    method: SubmissionMethod
    tracking_number: Optional[str] = None
    details: dict[str, Any] = field(default_factory=dict)
    claim_id: Optional[UUID] = None
    correlation_id: Optional[str] = None


# =============================================================================
# Batch Results
# =============================================================================


@dataclass
class BatchError:
    """A failed batch element."""

    claim_id: UUID
    message: str


@dataclass
class BatchResult:
    """
    Uniform result of batch validation, submission and refresh.

    success_count counts completed elements; updated_count counts elements whose
    status changed (refresh only).
    """

    total_processed: int = 0
    success_count: int = 0
    updated_count: int = 0
    error_count: int = 0
    errors: list[BatchError] = field(default_factory=list)
    processed_claims: list[UUID] = field(default_factory=list)
    results: dict[UUID, Any] = field(default_factory=dict)

    def record_success(self, claim_id: UUID, result: Any = None, updated: bool = False) -> None:
        self.total_processed += 1
        self.success_count += 1
        if updated:
            self.updated_count += 1
        self.processed_claims.append(claim_id)
        if result is not None:
            self.results[claim_id] = result

    def record_error(self, claim_id: UUID, message: str, result: Any = None) -> None:
        self.total_processed += 1
        self.error_count += 1
        self.errors.append(BatchError(claim_id=claim_id, message=message))
        if result is not None:
            self.results[claim_id] = result

    def error_for(self, claim_id: UUID) -> Optional[str]:
        for error in self.errors:
            if error.claim_id == claim_id:
                return error.message
        return None

    def to_dict(self) -> dict[str, Any]:
        """JSON-safe summary for job results."""
        return {
            "total_processed": self.total_processed,
            "success_count": self.success_count,
            "updated_count": self.updated_count,
            "error_count": self.error_count,
            "errors": [
                {"claim_id": str(e.claim_id), "message": e.message} for e in self.errors
            ],
            "processed_claims": [str(cid) for cid in self.processed_claims],
        }


# =============================================================================
# Tracking Results
# =============================================================================


@dataclass
class StatusInfo:
    """Current status of a claim."""

    status: ClaimStatus
    last_updated: datetime
    details: dict[str, Any] = field(default_factory=dict)


@dataclass
class RefreshResult:
    """Outcome of reconciling a claim against an external system."""

    claim_id: UUID
    previous_status: ClaimStatus
    current_status: ClaimStatus
    external_status: Optional[str] = None
    changed: bool = False
    unmapped: bool = False
    unreconciled: bool = False  # Mapped status has no legal path from current
    applied_path: list[ClaimStatus] = field(default_factory=list)
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def is_open(self) -> bool:
        """Claim still awaits a payer decision."""
        return self.current_status in (
            ClaimStatus.SUBMITTED,
            ClaimStatus.ACKNOWLEDGED,
            ClaimStatus.PENDING,
            ClaimStatus.APPEALED,
            ClaimStatus.PARTIAL_PAID,
        )


@dataclass
class TimelineEntry:
    """One step in a claim's status timeline."""

    status: ClaimStatus
    label: str
    timestamp: datetime
    notes: Optional[str] = None
    actor_id: Optional[UUID] = None
    is_active: bool = False


@dataclass
class TransitionOption:
    """A legal next status with UI hints."""

    status: ClaimStatus
    label: str
    color: str
    requires_data: bool = False


# =============================================================================
# Lifecycle Results
# =============================================================================


@dataclass
class ClaimProgress:
    """Advisory progress projection for a claim."""

    claim_id: UUID
    current_status: ClaimStatus
    days_in_status: int
    total_age: int
    next_milestone: Optional[str] = None
    estimated_completion: Optional[date] = None


@dataclass
class RiskAssessment:
    """Aging risk of an open claim."""

    level: RiskLevel
    score: int
    factors: list[str] = field(default_factory=list)
    recommended_actions: list[str] = field(default_factory=list)


@dataclass
class ClaimLifecycle:
    """Full lifecycle view of a claim."""

    claim: Any
    timeline: list[TimelineEntry]
    age_days: int
    next_actions: list[TransitionOption]
    risk: RiskAssessment
