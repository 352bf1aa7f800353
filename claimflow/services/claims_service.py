"""
Claims Service.

Provides:
- Claim creation from a set of rendered services
- Line item management (add, remove, replace)
- Total recalculation
- Claim number generation

Multi-step mutations run inside one repository transaction so a failure
midway leaves the prior state intact.

Source: Design Document Sections 3 and 5
Verified: 2026-10-16
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Optional
from uuid import UUID

from claimflow.core.enums import ClaimStatus, ClaimType
from claimflow.repositories.base import ClaimRepository
from claimflow.schemas.claim import ClaimCreate, ClaimRecord, ServiceRecord, StatusHistoryEntry
from claimflow.services.claim_state_machine import ClaimStateMachine, get_claim_state_machine
from claimflow.utils.errors import BusinessRuleError, NotFoundError

logger = logging.getLogger(__name__)


EDITABLE_STATUSES = (ClaimStatus.DRAFT, ClaimStatus.VALIDATED)


def generate_claim_number(year: int, sequence: int) -> str:
    """Format a human-readable claim number, e.g. CLM-2026-000042."""
    return f"CLM-{year}-{sequence:06d}"


class ClaimsService:
    """Claim construction and line item management."""

    def __init__(
        self,
        repository: ClaimRepository,
        state_machine: Optional[ClaimStateMachine] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.repository = repository
        self.state_machine = state_machine or get_claim_state_machine()
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    # =========================================================================
    # Reads
    # =========================================================================

    async def get_claim(self, claim_id: UUID, tx: Any = None) -> ClaimRecord:
        """
        Get claim by ID.

        Raises:
            NotFoundError: If claim not found
        """
        claim = await self.repository.find_by_id(claim_id, tx=tx)
        if claim is None:
            raise NotFoundError("Claim", claim_id)
        return claim

    async def _load_services(
        self, service_ids: list[UUID], client_id: Optional[UUID], tx: Any = None
    ) -> list[ServiceRecord]:
        services = await self.repository.find_services(service_ids, tx=tx)
        found = {s.id for s in services}
        for service_id in service_ids:
            if service_id not in found:
                raise NotFoundError("Service", service_id)
        if client_id is not None:
            for service in services:
                if service.client_id != client_id:
                    raise BusinessRuleError(
                        f"Service {service.id} belongs to a different client",
                        context={"service_id": str(service.id)},
                    )
        return services

    # =========================================================================
    # Creation
    # =========================================================================

    async def create_claim(
        self, data: ClaimCreate, user_id: Optional[UUID] = None
    ) -> ClaimRecord:
        """
        Create a DRAFT claim with one line per service.

        Args:
            data: Claim header and service ids
            user_id: Acting user

        Returns:
            Created claim with lines and total
        """
        payer = await self.repository.find_payer(data.payer_id)
        if payer is None:
            raise NotFoundError("Payer", data.payer_id)

        if data.claim_type in (ClaimType.ADJUSTMENT, ClaimType.REPLACEMENT):
            original = await self.repository.find_by_id(data.original_claim_id)
            if original is None:
                raise NotFoundError("Claim", data.original_claim_id)

        async with self.repository.transaction() as tx:
            services = await self._load_services(data.service_ids, data.client_id, tx=tx)
            now = self.clock()
            sequence = await self.repository.next_claim_sequence(tx=tx)

            claim = await self.repository.create_claim(
                ClaimRecord(
                    claim_number=generate_claim_number(now.year, sequence),
                    client_id=data.client_id,
                    payer_id=data.payer_id,
                    claim_type=data.claim_type,
                    original_claim_id=data.original_claim_id,
                    service_start_date=data.service_start_date,
                    service_end_date=data.service_end_date,
                    submission_method=data.submission_method,
                    status=ClaimStatus.DRAFT,
                    notes=data.notes,
                    created_at=now,
                    updated_at=now,
                    created_by=user_id,
                    updated_by=user_id,
                ),
                tx=tx,
            )

            for line_number, service in enumerate(services, start=1):
                await self.repository.attach_service(
                    claim.id,
                    service.id,
                    line_number,
                    billed_units=service.units,
                    billed_amount=service.amount,
                    tx=tx,
                )

            await self._recalculate_total(claim.id, tx=tx)
            await self.repository.append_status_history(
                StatusHistoryEntry(
                    claim_id=claim.id,
                    status=ClaimStatus.DRAFT,
                    timestamp=now,
                    notes="Claim created",
                    actor_id=user_id,
                ),
                tx=tx,
            )
            claim = await self.get_claim(claim.id, tx=tx)

        logger.info(
            f"Created claim {claim.claim_number} with {len(claim.lines)} line(s), "
            f"total {claim.total_amount}"
        )
        return claim

    # =========================================================================
    # Line Items
    # =========================================================================

    async def _ensure_editable(
        self, claim: ClaimRecord, user_id: Optional[UUID], tx: Any
    ) -> None:
        if claim.status not in EDITABLE_STATUSES:
            raise BusinessRuleError(
                f"Claim lines cannot be changed in status {claim.status.value}",
                context={"claim_id": str(claim.id), "status": claim.status.value},
            )
        if claim.status == ClaimStatus.VALIDATED:
            # Validation no longer reflects the claim contents
            await self.state_machine.execute_transition(
                self.repository,
                claim.id,
                ClaimStatus.VALIDATED,
                ClaimStatus.DRAFT,
                notes="Claim lines changed; revalidation required",
                actor_id=user_id,
                tx=tx,
            )

    async def _recalculate_total(self, claim_id: UUID, tx: Any) -> Decimal:
        claim = await self.get_claim(claim_id, tx=tx)
        total = claim.line_total
        await self.repository.update_total_amount(claim_id, total, tx=tx)
        return total

    async def add_services(
        self,
        claim_id: UUID,
        service_ids: list[UUID],
        user_id: Optional[UUID] = None,
    ) -> ClaimRecord:
        """Append services as new lines and recompute the total."""
        async with self.repository.transaction() as tx:
            claim = await self.get_claim(claim_id, tx=tx)
            await self._ensure_editable(claim, user_id, tx)
            services = await self._load_services(service_ids, claim.client_id, tx=tx)

            next_line = max((ln.line_number for ln in claim.lines), default=0) + 1
            for offset, service in enumerate(services):
                await self.repository.attach_service(
                    claim_id,
                    service.id,
                    next_line + offset,
                    billed_units=service.units,
                    billed_amount=service.amount,
                    tx=tx,
                )

            await self._recalculate_total(claim_id, tx=tx)
            return await self.get_claim(claim_id, tx=tx)

    async def remove_service(
        self,
        claim_id: UUID,
        service_id: UUID,
        user_id: Optional[UUID] = None,
    ) -> ClaimRecord:
        """Detach a service, renumber lines and recompute the total."""
        async with self.repository.transaction() as tx:
            claim = await self.get_claim(claim_id, tx=tx)
            await self._ensure_editable(claim, user_id, tx)
            await self.repository.detach_service(claim_id, service_id, tx=tx)
            await self.repository.renumber_lines(claim_id, tx=tx)
            await self._recalculate_total(claim_id, tx=tx)
            return await self.get_claim(claim_id, tx=tx)

    async def replace_services(
        self,
        claim_id: UUID,
        service_ids: list[UUID],
        user_id: Optional[UUID] = None,
    ) -> ClaimRecord:
        """
        Replace all claim lines with the given services.

        All-or-nothing: if any service cannot be attached, the original lines
        and total are kept.
        """
        if len(set(service_ids)) != len(service_ids):
            raise BusinessRuleError("service_ids must not contain duplicates")

        async with self.repository.transaction() as tx:
            claim = await self.get_claim(claim_id, tx=tx)
            await self._ensure_editable(claim, user_id, tx)

            for line in claim.lines:
                await self.repository.detach_service(claim_id, line.service_id, tx=tx)

            services = await self._load_services(service_ids, claim.client_id, tx=tx)
            for line_number, service in enumerate(services, start=1):
                await self.repository.attach_service(
                    claim_id,
                    service.id,
                    line_number,
                    billed_units=service.units,
                    billed_amount=service.amount,
                    tx=tx,
                )

            total = await self._recalculate_total(claim_id, tx=tx)
            logger.info(
                f"Replaced lines on claim {claim_id}: {len(services)} line(s), total {total}"
            )
            return await self.get_claim(claim_id, tx=tx)
