"""
Pydantic Schemas for Claims, Payers and Services.

Records are snapshots handed out by the storage layer; callers never mutate
them to change persisted state.

Source: Design Document Section 3 - Data Model
Verified: 2026-10-16
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from claimflow.core.enums import (
    BillingStatus,
    ClaimStatus,
    ClaimType,
    DenialReason,
    DocumentationStatus,
    PayerType,
    RecordStatus,
    SubmissionAction,
    SubmissionFormat,
    SubmissionMethod,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Payer Schemas
# =============================================================================


class BillingRequirements(BaseModel):
    """Billing rules a payer declares for the claims it accepts."""

    submission_format: Optional[SubmissionFormat] = Field(
        None, description="Claim format accepted by the payer"
    )
    timely_filing_days: Optional[int] = Field(
        None, description="Days after the last service date the payer accepts claims"
    )
    required_fields: list[str] = Field(
        default_factory=list,
        description="Claim fields the payer requires to be populated",
    )


class SubmissionConfig(BaseModel):
    """Connection details for one submission channel of a payer."""

    endpoint: Optional[str] = Field(None, description="API endpoint or portal URL")
    credentials: Optional[dict[str, str]] = Field(
        None, description="Channel credentials (opaque to the core)"
    )
    clearinghouse: Optional[str] = Field(None, description="Clearinghouse name")
    trading_partner_id: Optional[str] = Field(
        None, description="EDI trading partner id"
    )
    automated: bool = Field(
        default=False,
        description="Portal channel has an automated submission API",
    )
    mailing_address: Optional[str] = Field(None, description="Paper claim address")


class PayerRecord(BaseModel):
    """Snapshot of a payer."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(default_factory=uuid4)
    name: str
    payer_code: Optional[str] = None
    payer_type: PayerType = PayerType.OTHER
    status: RecordStatus = RecordStatus.ACTIVE
    is_electronic: bool = False
    preferred_submission_method: Optional[SubmissionMethod] = None
    billing_requirements: Optional[BillingRequirements] = None
    submission_methods: dict[SubmissionMethod, SubmissionConfig] = Field(
        default_factory=dict
    )

    @property
    def is_active(self) -> bool:
        return self.status == RecordStatus.ACTIVE

    @property
    def timely_filing_days(self) -> Optional[int]:
        if self.billing_requirements is None:
            return None
        return self.billing_requirements.timely_filing_days

    def submission_config(self, method: SubmissionMethod) -> Optional[SubmissionConfig]:
        """Get the channel configuration for a submission method."""
        config = self.submission_methods.get(method)
        if config is None and method == SubmissionMethod.ELECTRONIC:
            # Electronic claims route through the clearinghouse channel
            config = self.submission_methods.get(SubmissionMethod.CLEARINGHOUSE)
        return config


# =============================================================================
# Service Schemas
# =============================================================================


class ServiceRecord(BaseModel):
    """Snapshot of a rendered, billable service."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(default_factory=uuid4)
    client_id: UUID
    service_date: date
    service_code: str
    description: Optional[str] = None
    units: Decimal = Field(default=Decimal("1"))
    amount: Decimal = Field(default=Decimal("0"))
    documentation_status: DocumentationStatus = DocumentationStatus.PENDING
    billing_status: BillingStatus = BillingStatus.READY_FOR_BILLING
    claim_id: Optional[UUID] = Field(None, description="Claim currently owning this service")

    @property
    def is_documented(self) -> bool:
        return self.documentation_status in (
            DocumentationStatus.COMPLETE,
            DocumentationStatus.APPROVED,
        )


class ClaimLine(BaseModel):
    """Line item linking a claim to a billed service."""

    model_config = ConfigDict(from_attributes=True)

    service_id: UUID
    line_number: int = Field(..., ge=1)
    billed_units: Decimal = Field(default=Decimal("1"))
    billed_amount: Decimal = Field(default=Decimal("0"))
    service: Optional[ServiceRecord] = None


# =============================================================================
# History Schemas
# =============================================================================


class StatusHistoryEntry(BaseModel):
    """Append-only status history entry."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: UUID = Field(default_factory=uuid4)
    claim_id: UUID
    status: ClaimStatus
    timestamp: datetime = Field(default_factory=_utcnow)
    notes: Optional[str] = None
    actor_id: Optional[UUID] = None


class SubmissionHistoryEntry(BaseModel):
    """Record of a submission or status check sent to an external system."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: UUID = Field(default_factory=uuid4)
    claim_id: UUID
    action: SubmissionAction
    method: Optional[SubmissionMethod] = None
    timestamp: datetime = Field(default_factory=_utcnow)
    tracking_number: Optional[str] = None
    correlation_id: Optional[str] = None
    details: dict[str, Any] = Field(default_factory=dict)
    actor_id: Optional[UUID] = None


# =============================================================================
# Claim Schemas
# =============================================================================


class ClaimRecord(BaseModel):
    """
    Snapshot of a claim with its line items.

    Header references are optional here so that incomplete records coming from
    storage can still be validated and reported on.
    """

    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(default_factory=uuid4)
    claim_number: Optional[str] = None
    external_claim_id: Optional[str] = None
    client_id: Optional[UUID] = None
    payer_id: Optional[UUID] = None
    claim_type: Optional[ClaimType] = ClaimType.ORIGINAL
    original_claim_id: Optional[UUID] = None
    total_amount: Decimal = Decimal("0")
    service_start_date: Optional[date] = None
    service_end_date: Optional[date] = None
    status: ClaimStatus = ClaimStatus.DRAFT

    submission_method: Optional[SubmissionMethod] = None
    submission_date: Optional[datetime] = None

    adjudication_date: Optional[date] = None
    denial_reason: Optional[DenialReason] = None
    denial_details: Optional[str] = None
    adjustment_codes: list[str] = Field(default_factory=list)

    notes: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    created_by: Optional[UUID] = None
    updated_by: Optional[UUID] = None

    lines: list[ClaimLine] = Field(default_factory=list)

    @property
    def service_ids(self) -> list[UUID]:
        return [line.service_id for line in self.lines]

    @property
    def line_total(self) -> Decimal:
        """Sum of billed line amounts."""
        return sum((line.billed_amount for line in self.lines), Decimal("0"))

    @property
    def is_submitted(self) -> bool:
        return self.submission_date is not None and bool(self.external_claim_id)


# =============================================================================
# Request Schemas
# =============================================================================


class ClaimCreate(BaseModel):
    """Schema for creating a claim from a set of services."""

    client_id: UUID
    payer_id: UUID
    claim_type: ClaimType = ClaimType.ORIGINAL
    service_start_date: date
    service_end_date: date
    service_ids: list[UUID] = Field(default_factory=list)
    original_claim_id: Optional[UUID] = None
    submission_method: Optional[SubmissionMethod] = None
    notes: Optional[str] = Field(None, max_length=2000)

    @field_validator("service_ids")
    @classmethod
    def validate_unique_services(cls, v: list[UUID]) -> list[UUID]:
        """A service may appear only once per claim."""
        if len(set(v)) != len(v):
            raise ValueError("service_ids must not contain duplicates")
        return v

    @model_validator(mode="after")
    def validate_header(self) -> "ClaimCreate":
        """Enforce service period ordering and lineage."""
        if self.service_start_date > self.service_end_date:
            raise ValueError("service_start_date must be on or before service_end_date")
        if (
            self.claim_type in (ClaimType.ADJUSTMENT, ClaimType.REPLACEMENT)
            and self.original_claim_id is None
        ):
            raise ValueError(
                f"original_claim_id is required for {self.claim_type.value} claims"
            )
        return self


class SubmitClaimRequest(BaseModel):
    """Instructions for submitting a single claim."""

    submission_method: SubmissionMethod
    submission_date: Optional[datetime] = None
    external_claim_id: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = Field(None, max_length=2000)


class BatchSubmitRequest(BaseModel):
    """Instructions for submitting many claims at once."""

    claim_ids: list[UUID] = Field(..., min_length=1)
    submission_method: Optional[SubmissionMethod] = Field(
        None, description="Batch default when neither claim nor payer declares a method"
    )
    submission_date: Optional[datetime] = None
    notes: Optional[str] = Field(None, max_length=2000)


class StatusUpdate(BaseModel):
    """A requested status change with adjudication data."""

    status: ClaimStatus
    notes: Optional[str] = Field(None, max_length=2000)
    adjudication_date: Optional[date] = None
    denial_reason: Optional[DenialReason] = None
    denial_details: Optional[str] = Field(None, max_length=2000)
    adjustment_codes: Optional[list[str]] = None

    @model_validator(mode="after")
    def validate_denial(self) -> "StatusUpdate":
        """Denials must carry a reason."""
        if (
            self.status in (ClaimStatus.DENIED, ClaimStatus.FINAL_DENIED)
            and self.denial_reason is None
        ):
            raise ValueError("denial_reason is required when denying a claim")
        return self
