"""
Claim Repository Contract.
Source: Design Document Sections 5 and 6 - Storage Collaborator
Verified: 2026-10-16

Abstract storage interface supporting demo (in-memory) and live (database)
backends. Every method accepts an optional transaction handle obtained from
transaction(); without one, the call runs as its own unit of work.
"""

from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID

from claimflow.core.enums import ClaimStatus, DenialReason, SubmissionMethod
from claimflow.schemas.claim import (
    ClaimLine,
    ClaimRecord,
    PayerRecord,
    ServiceRecord,
    StatusHistoryEntry,
    SubmissionHistoryEntry,
)


class AdapterMode(str, Enum):
    """Repository operating mode."""

    DEMO = "demo"
    LIVE = "live"


class ClaimRepository(ABC):
    """
    Abstract storage collaborator.

    Implementations must make each transaction() block all-or-nothing and must
    honor expected_status in update_status as a compare-and-swap.
    """

    mode: AdapterMode = AdapterMode.DEMO

    def is_demo_mode(self) -> bool:
        """Check if running in demo mode."""
        return self.mode == AdapterMode.DEMO

    # =========================================================================
    # Units of Work
    # =========================================================================

    @abstractmethod
    def transaction(self, tx: Any = None) -> AbstractAsyncContextManager[Any]:
        """
        Open an atomic unit of work.

        Passing an existing handle joins it instead of opening a new one.
        """
        pass

    # =========================================================================
    # Reads
    # =========================================================================

    @abstractmethod
    async def find_by_id(self, claim_id: UUID, tx: Any = None) -> Optional[ClaimRecord]:
        """Get a claim with its line items."""
        pass

    @abstractmethod
    async def find_by_ids(
        self, claim_ids: list[UUID], tx: Any = None
    ) -> list[ClaimRecord]:
        """Get claims in the order requested, skipping unknown ids."""
        pass

    @abstractmethod
    async def find_by_statuses(
        self,
        statuses: list[ClaimStatus],
        limit: Optional[int] = None,
        tx: Any = None,
    ) -> list[ClaimRecord]:
        """Get claims currently in any of the given statuses, oldest first."""
        pass

    @abstractmethod
    async def find_payer(self, payer_id: UUID, tx: Any = None) -> Optional[PayerRecord]:
        """Get a payer."""
        pass

    @abstractmethod
    async def find_services(
        self, service_ids: list[UUID], tx: Any = None
    ) -> list[ServiceRecord]:
        """Get services in the order requested, skipping unknown ids."""
        pass

    @abstractmethod
    async def get_status_history(
        self, claim_id: UUID, tx: Any = None
    ) -> list[StatusHistoryEntry]:
        """Get status history in append order."""
        pass

    @abstractmethod
    async def get_submission_history(
        self, claim_id: UUID, tx: Any = None
    ) -> list[SubmissionHistoryEntry]:
        """Get submission history in append order."""
        pass

    # =========================================================================
    # Reference Data
    # =========================================================================

    @abstractmethod
    async def save_payer(self, payer: PayerRecord, tx: Any = None) -> PayerRecord:
        """Insert or replace a payer."""
        pass

    @abstractmethod
    async def save_service(self, service: ServiceRecord, tx: Any = None) -> ServiceRecord:
        """Insert or replace a service."""
        pass

    # =========================================================================
    # Claim Mutations
    # =========================================================================

    @abstractmethod
    async def next_claim_sequence(self, tx: Any = None) -> int:
        """Allocate the next claim number sequence value."""
        pass

    @abstractmethod
    async def create_claim(self, claim: ClaimRecord, tx: Any = None) -> ClaimRecord:
        """Persist a new claim header (lines are attached separately)."""
        pass

    @abstractmethod
    async def update_status(
        self,
        claim_id: UUID,
        status: ClaimStatus,
        notes: Optional[str] = None,
        actor_id: Optional[UUID] = None,
        expected_status: Optional[ClaimStatus] = None,
        tx: Any = None,
    ) -> ClaimRecord:
        """
        Set the claim status and append the matching history entry.

        Raises:
            NotFoundError: Claim does not exist
            StaleClaimStatusError: expected_status no longer matches
        """
        pass

    @abstractmethod
    async def append_status_history(
        self, entry: StatusHistoryEntry, tx: Any = None
    ) -> StatusHistoryEntry:
        """Append a status history entry without touching the claim."""
        pass

    @abstractmethod
    async def attach_service(
        self,
        claim_id: UUID,
        service_id: UUID,
        line_number: int,
        billed_units: Decimal,
        billed_amount: Decimal,
        tx: Any = None,
    ) -> ClaimLine:
        """
        Attach a service to a claim and mark it in-claim.

        Raises:
            NotFoundError: Claim or service does not exist
            BusinessRuleError: Service belongs to another claim
        """
        pass

    @abstractmethod
    async def detach_service(self, claim_id: UUID, service_id: UUID, tx: Any = None) -> None:
        """Remove a service line and mark the service ready for billing."""
        pass

    @abstractmethod
    async def renumber_lines(self, claim_id: UUID, tx: Any = None) -> None:
        """Close gaps in line numbering, keeping the current order."""
        pass

    @abstractmethod
    async def update_total_amount(
        self, claim_id: UUID, total_amount: Decimal, tx: Any = None
    ) -> None:
        """Set the claim total."""
        pass

    @abstractmethod
    async def update_submission_details(
        self,
        claim_id: UUID,
        submission_method: SubmissionMethod,
        submission_date: datetime,
        external_claim_id: Optional[str] = None,
        actor_id: Optional[UUID] = None,
        tx: Any = None,
    ) -> None:
        """Record how and when a claim was submitted."""
        pass

    @abstractmethod
    async def update_adjudication_details(
        self,
        claim_id: UUID,
        adjudication_date: Optional[date] = None,
        denial_reason: Optional[DenialReason] = None,
        denial_details: Optional[str] = None,
        adjustment_codes: Optional[list[str]] = None,
        tx: Any = None,
    ) -> None:
        """Record the payer's adjudication outcome."""
        pass

    @abstractmethod
    async def add_submission_history(
        self, entry: SubmissionHistoryEntry, tx: Any = None
    ) -> SubmissionHistoryEntry:
        """Append a submission history record."""
        pass
