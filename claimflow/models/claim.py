"""
Claim, Payer and Service Models.
Source: Design Document Section 3 - Data Model
Verified: 2026-10-16
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from claimflow.core.enums import (
    BillingStatus,
    ClaimStatus,
    ClaimType,
    DenialReason,
    DocumentationStatus,
    PayerType,
    RecordStatus,
    SubmissionAction,
    SubmissionMethod,
)
from claimflow.models.base import Base, TimeStampedModel, UUIDModel, utcnow


class Payer(Base, UUIDModel, TimeStampedModel):
    """
    Payer responsible for adjudicating claims.

    Billing requirements and per-channel submission settings are stored as
    JSON documents shaped like BillingRequirements and SubmissionConfig.
    """

    __tablename__ = "payers"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    payer_code: Mapped[Optional[str]] = mapped_column(
        String(50), nullable=True, index=True, comment="Payer identifier used in EDI"
    )
    payer_type: Mapped[PayerType] = mapped_column(
        Enum(PayerType), default=PayerType.OTHER, nullable=False
    )
    status: Mapped[RecordStatus] = mapped_column(
        Enum(RecordStatus), default=RecordStatus.ACTIVE, nullable=False
    )
    is_electronic: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False, comment="Accepts electronic claims"
    )
    preferred_submission_method: Mapped[Optional[SubmissionMethod]] = mapped_column(
        Enum(SubmissionMethod), nullable=True
    )
    billing_requirements: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    submission_methods: Mapped[dict] = mapped_column(
        JSON, default=dict, nullable=False, comment="Channel settings keyed by method"
    )


class Service(Base, UUIDModel, TimeStampedModel):
    """A rendered, billable service."""

    __tablename__ = "services"

    client_id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), nullable=False, index=True)
    service_date: Mapped[date] = mapped_column(Date, nullable=False)
    service_code: Mapped[str] = mapped_column(String(20), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    units: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("1"), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"), nullable=False)
    documentation_status: Mapped[DocumentationStatus] = mapped_column(
        Enum(DocumentationStatus), default=DocumentationStatus.PENDING, nullable=False
    )
    billing_status: Mapped[BillingStatus] = mapped_column(
        Enum(BillingStatus),
        default=BillingStatus.READY_FOR_BILLING,
        nullable=False,
        index=True,
        comment="IN_CLAIM while attached to an active claim",
    )
    claim_id: Mapped[Optional[UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("claims.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
        comment="Claim currently owning this service",
    )


class Claim(Base, UUIDModel, TimeStampedModel):
    """Claim for payment covering one or more rendered services."""

    __tablename__ = "claims"

    claim_number: Mapped[Optional[str]] = mapped_column(
        String(50),
        unique=True,
        nullable=True,
        index=True,
        comment="Human-readable claim number (e.g., CLM-2026-000001)",
    )
    external_claim_id: Mapped[Optional[str]] = mapped_column(
        String(100), nullable=True, index=True, comment="Payer or clearinghouse id"
    )
    client_id: Mapped[Optional[UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True)
    payer_id: Mapped[Optional[UUID]] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("payers.id"), nullable=True, index=True
    )
    claim_type: Mapped[Optional[ClaimType]] = mapped_column(
        Enum(ClaimType), default=ClaimType.ORIGINAL, nullable=True
    )
    original_claim_id: Mapped[Optional[UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("claims.id"),
        nullable=True,
        comment="Claim being adjusted or replaced",
    )
    total_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), default=Decimal("0"), nullable=False
    )
    service_start_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    service_end_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    status: Mapped[ClaimStatus] = mapped_column(
        Enum(ClaimStatus),
        default=ClaimStatus.DRAFT,
        nullable=False,
        index=True,
        comment="Current claim status",
    )

    # Submission
    submission_method: Mapped[Optional[SubmissionMethod]] = mapped_column(
        Enum(SubmissionMethod), nullable=True
    )
    submission_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Adjudication
    adjudication_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    denial_reason: Mapped[Optional[DenialReason]] = mapped_column(
        Enum(DenialReason), nullable=True
    )
    denial_details: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    adjustment_codes: Mapped[list] = mapped_column(JSON, default=list, nullable=False)

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_by: Mapped[Optional[UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True)
    updated_by: Mapped[Optional[UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True)

    lines: Mapped[list["ClaimServiceLine"]] = relationship(
        back_populates="claim",
        cascade="all, delete-orphan",
        order_by="ClaimServiceLine.line_number",
    )
    status_history: Mapped[list["ClaimStatusHistory"]] = relationship(
        back_populates="claim",
        cascade="all, delete-orphan",
        order_by="ClaimStatusHistory.timestamp",
    )

    __table_args__ = (
        Index("ix_claims_payer_status", "payer_id", "status"),
    )


class ClaimServiceLine(Base, UUIDModel):
    """Line item linking a claim to a billed service."""

    __tablename__ = "claim_services"

    claim_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("claims.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    service_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("services.id"), nullable=False
    )
    line_number: Mapped[int] = mapped_column(
        Integer, nullable=False, comment="Line item number (1-based)"
    )
    billed_units: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    billed_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    claim: Mapped["Claim"] = relationship(back_populates="lines")
    service: Mapped["Service"] = relationship(lazy="joined")

    __table_args__ = (
        UniqueConstraint("claim_id", "line_number", name="uq_claim_services_line"),
        UniqueConstraint("claim_id", "service_id", name="uq_claim_services_service"),
    )


class ClaimStatusHistory(Base, UUIDModel):
    """Append-only status history entry."""

    __tablename__ = "claim_status_history"

    claim_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("claims.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    status: Mapped[ClaimStatus] = mapped_column(Enum(ClaimStatus), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False, index=True
    )
    sequence: Mapped[int] = mapped_column(
        Integer, nullable=False, comment="Per-claim append order"
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    actor_id: Mapped[Optional[UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True)

    claim: Mapped["Claim"] = relationship(back_populates="status_history")

    __table_args__ = (
        UniqueConstraint("claim_id", "sequence", name="uq_claim_status_history_seq"),
    )


class ClaimSubmissionHistory(Base, UUIDModel):
    """Record of a submission or status check."""

    __tablename__ = "claim_submission_history"

    claim_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("claims.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    action: Mapped[SubmissionAction] = mapped_column(Enum(SubmissionAction), nullable=False)
    method: Mapped[Optional[SubmissionMethod]] = mapped_column(
        Enum(SubmissionMethod), nullable=True
    )
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    tracking_number: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    correlation_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    details: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    actor_id: Mapped[Optional[UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True)
