"""
In-Memory Claim Repository.
Source: Design Document Section 4.4 - Demo Mode
Verified: 2026-10-16

Demo and test backend. Units of work are serialized by an asyncio lock and
rolled back by restoring a snapshot of the store taken when they began.
"""

import asyncio
import copy
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, AsyncIterator, Optional
from uuid import UUID

from claimflow.core.enums import BillingStatus, ClaimStatus, DenialReason, SubmissionMethod
from claimflow.repositories.base import AdapterMode, ClaimRepository
from claimflow.schemas.claim import (
    ClaimLine,
    ClaimRecord,
    PayerRecord,
    ServiceRecord,
    StatusHistoryEntry,
    SubmissionHistoryEntry,
)
from claimflow.utils.errors import (
    BusinessRuleError,
    NotFoundError,
    StaleClaimStatusError,
    StorageUnavailableError,
)

logger = logging.getLogger(__name__)


@dataclass
class _Store:
    claims: dict[UUID, ClaimRecord] = field(default_factory=dict)
    payers: dict[UUID, PayerRecord] = field(default_factory=dict)
    services: dict[UUID, ServiceRecord] = field(default_factory=dict)
    status_history: dict[UUID, list[StatusHistoryEntry]] = field(default_factory=dict)
    submission_history: dict[UUID, list[SubmissionHistoryEntry]] = field(
        default_factory=dict
    )
    claim_sequence: int = 0


class InMemoryTransaction:
    """Handle for an open in-memory unit of work."""

    def __init__(self) -> None:
        self.closed = False


class InMemoryClaimRepository(ClaimRepository):
    """
    Claim repository backed by Python dictionaries.

    Reads outside a transaction are not isolated from a unit of work in
    progress on another task.
    """

    mode = AdapterMode.DEMO

    def __init__(self) -> None:
        self._store = _Store()
        self._lock = asyncio.Lock()
        self.available = True

    # =========================================================================
    # Units of Work
    # =========================================================================

    @asynccontextmanager
    async def transaction(self, tx: Any = None) -> AsyncIterator[Any]:
        if tx is not None:
            yield tx
            return

        self._check_available()
        async with self._lock:
            snapshot = copy.deepcopy(self._store)
            handle = InMemoryTransaction()
            try:
                yield handle
            except BaseException:
                self._store = snapshot
                logger.debug("In-memory transaction rolled back")
                raise
            finally:
                handle.closed = True

    def _check_available(self) -> None:
        if not self.available:
            raise StorageUnavailableError("In-memory claim store is unavailable")

    # =========================================================================
    # Seeding (demo data)
    # =========================================================================

    def seed_payers(self, payers: list[PayerRecord]) -> None:
        for payer in payers:
            self._store.payers[payer.id] = payer.model_copy(deep=True)

    def seed_services(self, services: list[ServiceRecord]) -> None:
        for service in services:
            self._store.services[service.id] = service.model_copy(deep=True)

    def seed_claims(self, claims: list[ClaimRecord], with_history: bool = True) -> None:
        """Load claims as-is; lines mark their services in-claim."""
        for claim in claims:
            stored = claim.model_copy(deep=True)
            for line in stored.lines:
                line.service = None
                service = self._store.services.get(line.service_id)
                if service is not None:
                    service.billing_status = BillingStatus.IN_CLAIM
                    service.claim_id = claim.id
            self._store.claims[claim.id] = stored
            if with_history:
                self._store.status_history.setdefault(claim.id, []).append(
                    StatusHistoryEntry(
                        claim_id=claim.id,
                        status=claim.status,
                        timestamp=claim.updated_at,
                        notes="Seeded",
                    )
                )

    def clear(self) -> None:
        self._store = _Store()

    # =========================================================================
    # Reads
    # =========================================================================

    def _hydrate(self, claim: ClaimRecord) -> ClaimRecord:
        record = claim.model_copy(deep=True)
        for line in record.lines:
            service = self._store.services.get(line.service_id)
            line.service = service.model_copy(deep=True) if service else None
        return record

    def _get_claim(self, claim_id: UUID) -> ClaimRecord:
        claim = self._store.claims.get(claim_id)
        if claim is None:
            raise NotFoundError("Claim", claim_id)
        return claim

    async def find_by_id(self, claim_id: UUID, tx: Any = None) -> Optional[ClaimRecord]:
        self._check_available()
        claim = self._store.claims.get(claim_id)
        return self._hydrate(claim) if claim else None

    async def find_by_ids(self, claim_ids: list[UUID], tx: Any = None) -> list[ClaimRecord]:
        self._check_available()
        return [
            self._hydrate(self._store.claims[cid])
            for cid in claim_ids
            if cid in self._store.claims
        ]

    async def find_by_statuses(
        self,
        statuses: list[ClaimStatus],
        limit: Optional[int] = None,
        tx: Any = None,
    ) -> list[ClaimRecord]:
        self._check_available()
        wanted = set(statuses)
        matches = sorted(
            (c for c in self._store.claims.values() if c.status in wanted),
            key=lambda c: c.created_at,
        )
        if limit is not None:
            matches = matches[:limit]
        return [self._hydrate(c) for c in matches]

    async def find_payer(self, payer_id: UUID, tx: Any = None) -> Optional[PayerRecord]:
        self._check_available()
        payer = self._store.payers.get(payer_id)
        return payer.model_copy(deep=True) if payer else None

    async def find_services(
        self, service_ids: list[UUID], tx: Any = None
    ) -> list[ServiceRecord]:
        self._check_available()
        return [
            self._store.services[sid].model_copy(deep=True)
            for sid in service_ids
            if sid in self._store.services
        ]

    async def get_status_history(
        self, claim_id: UUID, tx: Any = None
    ) -> list[StatusHistoryEntry]:
        self._check_available()
        return list(self._store.status_history.get(claim_id, []))

    async def get_submission_history(
        self, claim_id: UUID, tx: Any = None
    ) -> list[SubmissionHistoryEntry]:
        self._check_available()
        return list(self._store.submission_history.get(claim_id, []))

    # =========================================================================
    # Reference Data
    # =========================================================================

    async def save_payer(self, payer: PayerRecord, tx: Any = None) -> PayerRecord:
        async with self.transaction(tx):
            self._store.payers[payer.id] = payer.model_copy(deep=True)
        return payer

    async def save_service(self, service: ServiceRecord, tx: Any = None) -> ServiceRecord:
        async with self.transaction(tx):
            self._store.services[service.id] = service.model_copy(deep=True)
        return service

    # =========================================================================
    # Claim Mutations
    # =========================================================================

    async def next_claim_sequence(self, tx: Any = None) -> int:
        async with self.transaction(tx):
            self._store.claim_sequence += 1
            return self._store.claim_sequence

    async def create_claim(self, claim: ClaimRecord, tx: Any = None) -> ClaimRecord:
        async with self.transaction(tx):
            if claim.id in self._store.claims:
                raise BusinessRuleError(
                    f"Claim already exists: {claim.id}", code="DUPLICATE_CLAIM"
                )
            stored = claim.model_copy(deep=True, update={"lines": []})
            self._store.claims[claim.id] = stored
            return self._hydrate(stored)

    async def update_status(
        self,
        claim_id: UUID,
        status: ClaimStatus,
        notes: Optional[str] = None,
        actor_id: Optional[UUID] = None,
        expected_status: Optional[ClaimStatus] = None,
        tx: Any = None,
    ) -> ClaimRecord:
        async with self.transaction(tx) as handle:
            claim = self._get_claim(claim_id)
            if expected_status is not None and claim.status != expected_status:
                raise StaleClaimStatusError(expected_status, claim.status, status)

            now = datetime.now(timezone.utc)
            claim.status = status
            claim.updated_at = now
            claim.updated_by = actor_id
            await self.append_status_history(
                StatusHistoryEntry(
                    claim_id=claim_id,
                    status=status,
                    timestamp=now,
                    notes=notes,
                    actor_id=actor_id,
                ),
                tx=handle,
            )
            return self._hydrate(claim)

    async def append_status_history(
        self, entry: StatusHistoryEntry, tx: Any = None
    ) -> StatusHistoryEntry:
        async with self.transaction(tx):
            self._get_claim(entry.claim_id)
            history = self._store.status_history.setdefault(entry.claim_id, [])
            if history and entry.timestamp < history[-1].timestamp:
                # Keep append order and timestamp order identical
                entry = entry.model_copy(update={"timestamp": history[-1].timestamp})
            history.append(entry)
            return entry

    async def attach_service(
        self,
        claim_id: UUID,
        service_id: UUID,
        line_number: int,
        billed_units: Decimal,
        billed_amount: Decimal,
        tx: Any = None,
    ) -> ClaimLine:
        async with self.transaction(tx):
            claim = self._get_claim(claim_id)
            service = self._store.services.get(service_id)
            if service is None:
                raise NotFoundError("Service", service_id)
            if service.claim_id is not None and service.claim_id != claim_id:
                raise BusinessRuleError(
                    f"Service {service_id} is already attached to claim {service.claim_id}",
                    code="SERVICE_ALREADY_CLAIMED",
                    context={"service_id": str(service_id), "claim_id": str(service.claim_id)},
                )
            if any(line.service_id == service_id for line in claim.lines):
                raise BusinessRuleError(
                    f"Service {service_id} is already on claim {claim_id}",
                    code="DUPLICATE_SERVICE",
                )
            if any(line.line_number == line_number for line in claim.lines):
                raise BusinessRuleError(
                    f"Line number {line_number} is already used on claim {claim_id}",
                    code="DUPLICATE_LINE_NUMBER",
                )

            line = ClaimLine(
                service_id=service_id,
                line_number=line_number,
                billed_units=billed_units,
                billed_amount=billed_amount,
            )
            claim.lines.append(line)
            claim.lines.sort(key=lambda ln: ln.line_number)
            service.billing_status = BillingStatus.IN_CLAIM
            service.claim_id = claim_id
            return line.model_copy(update={"service": service.model_copy(deep=True)})

    async def detach_service(self, claim_id: UUID, service_id: UUID, tx: Any = None) -> None:
        async with self.transaction(tx):
            claim = self._get_claim(claim_id)
            remaining = [ln for ln in claim.lines if ln.service_id != service_id]
            if len(remaining) == len(claim.lines):
                raise NotFoundError("Claim line", service_id)
            claim.lines = remaining
            service = self._store.services.get(service_id)
            if service is not None:
                service.billing_status = BillingStatus.READY_FOR_BILLING
                service.claim_id = None

    async def renumber_lines(self, claim_id: UUID, tx: Any = None) -> None:
        async with self.transaction(tx):
            claim = self._get_claim(claim_id)
            for number, line in enumerate(claim.lines, start=1):
                line.line_number = number

    async def update_total_amount(
        self, claim_id: UUID, total_amount: Decimal, tx: Any = None
    ) -> None:
        async with self.transaction(tx):
            claim = self._get_claim(claim_id)
            claim.total_amount = total_amount
            claim.updated_at = datetime.now(timezone.utc)

    async def update_submission_details(
        self,
        claim_id: UUID,
        submission_method: SubmissionMethod,
        submission_date: datetime,
        external_claim_id: Optional[str] = None,
        actor_id: Optional[UUID] = None,
        tx: Any = None,
    ) -> None:
        async with self.transaction(tx):
            claim = self._get_claim(claim_id)
            claim.submission_method = submission_method
            claim.submission_date = submission_date
            if external_claim_id:
                claim.external_claim_id = external_claim_id
            claim.updated_by = actor_id
            claim.updated_at = datetime.now(timezone.utc)

    async def update_adjudication_details(
        self,
        claim_id: UUID,
        adjudication_date: Optional[date] = None,
        denial_reason: Optional[DenialReason] = None,
        denial_details: Optional[str] = None,
        adjustment_codes: Optional[list[str]] = None,
        tx: Any = None,
    ) -> None:
        async with self.transaction(tx):
            claim = self._get_claim(claim_id)
            if adjudication_date is not None:
                claim.adjudication_date = adjudication_date
            if denial_reason is not None:
                claim.denial_reason = denial_reason
            if denial_details is not None:
                claim.denial_details = denial_details
            if adjustment_codes is not None:
                claim.adjustment_codes = list(adjustment_codes)
            claim.updated_at = datetime.now(timezone.utc)

    async def add_submission_history(
        self, entry: SubmissionHistoryEntry, tx: Any = None
    ) -> SubmissionHistoryEntry:
        async with self.transaction(tx):
            self._get_claim(entry.claim_id)
            self._store.submission_history.setdefault(entry.claim_id, []).append(entry)
            return entry
