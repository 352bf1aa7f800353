"""
SQLAlchemy Claim Repository.
Source: https://docs.sqlalchemy.org/en/20/orm/extensions/asyncio.html
Verified: 2026-10-16

Live backend. A transaction handle is an AsyncSession with an open
transaction; the status compare-and-swap is a conditional UPDATE whose row
count decides the outcome.
"""

from contextlib import asynccontextmanager
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, AsyncIterator, Optional
from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from claimflow.core.enums import BillingStatus, ClaimStatus, DenialReason, SubmissionMethod
from claimflow.models.claim import (
    Claim,
    ClaimServiceLine,
    ClaimStatusHistory,
    ClaimSubmissionHistory,
    Payer,
    Service,
)
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
from claimflow.utils.logging import get_logger

logger = get_logger(__name__)


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite drops tzinfo; stored values are always UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _to_claim_record(claim: Claim) -> ClaimRecord:
    record = ClaimRecord.model_validate(claim)
    record.created_at = _aware(record.created_at)
    record.updated_at = _aware(record.updated_at)
    record.submission_date = _aware(record.submission_date)
    return record


class SQLAlchemyClaimRepository(ClaimRepository):
    """Claim repository backed by an async SQLAlchemy session maker."""

    mode = AdapterMode.LIVE

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    # =========================================================================
    # Units of Work
    # =========================================================================

    @asynccontextmanager
    async def transaction(self, tx: Any = None) -> AsyncIterator[AsyncSession]:
        if tx is not None:
            yield tx
            return

        try:
            async with self._session_maker() as session:
                async with session.begin():
                    yield session
        except (OperationalError, InterfaceError) as e:
            logger.error(f"Claim storage unavailable: {e}")
            raise StorageUnavailableError(f"Claim storage unavailable: {e}") from e

    @asynccontextmanager
    async def _reader(self, tx: Any = None) -> AsyncIterator[AsyncSession]:
        if tx is not None:
            yield tx
            return

        try:
            async with self._session_maker() as session:
                yield session
        except (OperationalError, InterfaceError) as e:
            logger.error(f"Claim storage unavailable: {e}")
            raise StorageUnavailableError(f"Claim storage unavailable: {e}") from e

    @staticmethod
    def _claim_query():
        return (
            select(Claim)
            .options(selectinload(Claim.lines).selectinload(ClaimServiceLine.service))
            .execution_options(populate_existing=True)
        )

    async def _load_claim(self, session: AsyncSession, claim_id: UUID) -> Claim:
        claim = await session.scalar(self._claim_query().where(Claim.id == claim_id))
        if claim is None:
            raise NotFoundError("Claim", claim_id)
        return claim

    # =========================================================================
    # Reads
    # =========================================================================

    async def find_by_id(self, claim_id: UUID, tx: Any = None) -> Optional[ClaimRecord]:
        async with self._reader(tx) as session:
            claim = await session.scalar(self._claim_query().where(Claim.id == claim_id))
            return _to_claim_record(claim) if claim else None

    async def find_by_ids(self, claim_ids: list[UUID], tx: Any = None) -> list[ClaimRecord]:
        if not claim_ids:
            return []
        async with self._reader(tx) as session:
            rows = await session.scalars(self._claim_query().where(Claim.id.in_(claim_ids)))
            by_id = {claim.id: _to_claim_record(claim) for claim in rows}
        return [by_id[cid] for cid in claim_ids if cid in by_id]

    async def find_by_statuses(
        self,
        statuses: list[ClaimStatus],
        limit: Optional[int] = None,
        tx: Any = None,
    ) -> list[ClaimRecord]:
        query = (
            self._claim_query()
            .where(Claim.status.in_(statuses))
            .order_by(Claim.created_at)
        )
        if limit is not None:
            query = query.limit(limit)
        async with self._reader(tx) as session:
            rows = await session.scalars(query)
            return [_to_claim_record(claim) for claim in rows]

    async def find_payer(self, payer_id: UUID, tx: Any = None) -> Optional[PayerRecord]:
        async with self._reader(tx) as session:
            payer = await session.get(Payer, payer_id)
            return PayerRecord.model_validate(payer) if payer else None

    async def find_services(
        self, service_ids: list[UUID], tx: Any = None
    ) -> list[ServiceRecord]:
        if not service_ids:
            return []
        async with self._reader(tx) as session:
            rows = await session.scalars(select(Service).where(Service.id.in_(service_ids)))
            by_id = {s.id: ServiceRecord.model_validate(s) for s in rows}
        return [by_id[sid] for sid in service_ids if sid in by_id]

    async def get_status_history(
        self, claim_id: UUID, tx: Any = None
    ) -> list[StatusHistoryEntry]:
        async with self._reader(tx) as session:
            rows = await session.scalars(
                select(ClaimStatusHistory)
                .where(ClaimStatusHistory.claim_id == claim_id)
                .order_by(ClaimStatusHistory.sequence)
            )
            return [
                StatusHistoryEntry(
                    id=row.id,
                    claim_id=row.claim_id,
                    status=row.status,
                    timestamp=_aware(row.timestamp),
                    notes=row.notes,
                    actor_id=row.actor_id,
                )
                for row in rows
            ]

    async def get_submission_history(
        self, claim_id: UUID, tx: Any = None
    ) -> list[SubmissionHistoryEntry]:
        async with self._reader(tx) as session:
            rows = await session.scalars(
                select(ClaimSubmissionHistory)
                .where(ClaimSubmissionHistory.claim_id == claim_id)
                .order_by(ClaimSubmissionHistory.timestamp)
            )
            return [
                SubmissionHistoryEntry(
                    id=row.id,
                    claim_id=row.claim_id,
                    action=row.action,
                    method=row.method,
                    timestamp=_aware(row.timestamp),
                    tracking_number=row.tracking_number,
                    correlation_id=row.correlation_id,
                    details=row.details or {},
                    actor_id=row.actor_id,
                )
                for row in rows
            ]

    # =========================================================================
    # Reference Data
    # =========================================================================

    async def save_payer(self, payer: PayerRecord, tx: Any = None) -> PayerRecord:
        data = payer.model_dump(mode="json")
        async with self.transaction(tx) as session:
            await session.merge(
                Payer(
                    id=payer.id,
                    name=payer.name,
                    payer_code=payer.payer_code,
                    payer_type=payer.payer_type,
                    status=payer.status,
                    is_electronic=payer.is_electronic,
                    preferred_submission_method=payer.preferred_submission_method,
                    billing_requirements=data["billing_requirements"],
                    submission_methods=data["submission_methods"],
                )
            )
        return payer

    async def save_service(self, service: ServiceRecord, tx: Any = None) -> ServiceRecord:
        async with self.transaction(tx) as session:
            await session.merge(Service(**service.model_dump()))
        return service

    # =========================================================================
    # Claim Mutations
    # =========================================================================

    async def next_claim_sequence(self, tx: Any = None) -> int:
        # Unique constraint on claim_number rejects a concurrent duplicate
        async with self.transaction(tx) as session:
            count = await session.scalar(select(func.count(Claim.id)))
            return int(count or 0) + 1

    async def create_claim(self, claim: ClaimRecord, tx: Any = None) -> ClaimRecord:
        fields = claim.model_dump(exclude={"lines"})
        async with self.transaction(tx) as session:
            session.add(Claim(**fields))
            await session.flush()
            return _to_claim_record(await self._load_claim(session, claim.id))

    async def update_status(
        self,
        claim_id: UUID,
        status: ClaimStatus,
        notes: Optional[str] = None,
        actor_id: Optional[UUID] = None,
        expected_status: Optional[ClaimStatus] = None,
        tx: Any = None,
    ) -> ClaimRecord:
        now = datetime.now(timezone.utc)
        async with self.transaction(tx) as session:
            stmt = update(Claim).where(Claim.id == claim_id)
            if expected_status is not None:
                stmt = stmt.where(Claim.status == expected_status)
            stmt = stmt.values(status=status, updated_at=now, updated_by=actor_id)
            result = await session.execute(stmt.execution_options(synchronize_session=False))

            if result.rowcount == 0:
                current = await session.scalar(select(Claim.status).where(Claim.id == claim_id))
                if current is None:
                    raise NotFoundError("Claim", claim_id)
                raise StaleClaimStatusError(expected_status, current, status)

            await self.append_status_history(
                StatusHistoryEntry(
                    claim_id=claim_id,
                    status=status,
                    timestamp=now,
                    notes=notes,
                    actor_id=actor_id,
                ),
                tx=session,
            )
            return _to_claim_record(await self._load_claim(session, claim_id))

    async def append_status_history(
        self, entry: StatusHistoryEntry, tx: Any = None
    ) -> StatusHistoryEntry:
        async with self.transaction(tx) as session:
            last = await session.scalar(
                select(func.max(ClaimStatusHistory.sequence)).where(
                    ClaimStatusHistory.claim_id == entry.claim_id
                )
            )
            session.add(
                ClaimStatusHistory(
                    id=entry.id,
                    claim_id=entry.claim_id,
                    status=entry.status,
                    timestamp=entry.timestamp,
                    sequence=(last or 0) + 1,
                    notes=entry.notes,
                    actor_id=entry.actor_id,
                )
            )
            await session.flush()
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
        async with self.transaction(tx) as session:
            claim = await self._load_claim(session, claim_id)
            service = await session.scalar(
                select(Service).where(Service.id == service_id).with_for_update()
            )
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

            line = ClaimServiceLine(
                claim_id=claim_id,
                service_id=service_id,
                line_number=line_number,
                billed_units=billed_units,
                billed_amount=billed_amount,
            )
            session.add(line)
            service.billing_status = BillingStatus.IN_CLAIM
            service.claim_id = claim_id
            await session.flush()
            return ClaimLine(
                service_id=service_id,
                line_number=line_number,
                billed_units=billed_units,
                billed_amount=billed_amount,
                service=ServiceRecord.model_validate(service),
            )

    async def detach_service(self, claim_id: UUID, service_id: UUID, tx: Any = None) -> None:
        async with self.transaction(tx) as session:
            result = await session.execute(
                delete(ClaimServiceLine)
                .where(ClaimServiceLine.claim_id == claim_id)
                .where(ClaimServiceLine.service_id == service_id)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise NotFoundError("Claim line", service_id)
            await session.execute(
                update(Service)
                .where(Service.id == service_id)
                .values(billing_status=BillingStatus.READY_FOR_BILLING, claim_id=None)
                .execution_options(synchronize_session=False)
            )

    async def renumber_lines(self, claim_id: UUID, tx: Any = None) -> None:
        async with self.transaction(tx) as session:
            rows = await session.scalars(
                select(ClaimServiceLine)
                .where(ClaimServiceLine.claim_id == claim_id)
                .order_by(ClaimServiceLine.line_number)
                .execution_options(populate_existing=True)
            )
            # Ascending order keeps every target number free when it is assigned
            for number, line in enumerate(list(rows), start=1):
                if line.line_number != number:
                    line.line_number = number
                    await session.flush()

    async def update_total_amount(
        self, claim_id: UUID, total_amount: Decimal, tx: Any = None
    ) -> None:
        async with self.transaction(tx) as session:
            await self._update_claim(session, claim_id, total_amount=total_amount)

    async def update_submission_details(
        self,
        claim_id: UUID,
        submission_method: SubmissionMethod,
        submission_date: datetime,
        external_claim_id: Optional[str] = None,
        actor_id: Optional[UUID] = None,
        tx: Any = None,
    ) -> None:
        values: dict[str, Any] = {
            "submission_method": submission_method,
            "submission_date": submission_date,
            "updated_by": actor_id,
        }
        if external_claim_id:
            values["external_claim_id"] = external_claim_id
        async with self.transaction(tx) as session:
            await self._update_claim(session, claim_id, **values)

    async def update_adjudication_details(
        self,
        claim_id: UUID,
        adjudication_date: Optional[date] = None,
        denial_reason: Optional[DenialReason] = None,
        denial_details: Optional[str] = None,
        adjustment_codes: Optional[list[str]] = None,
        tx: Any = None,
    ) -> None:
        values: dict[str, Any] = {}
        if adjudication_date is not None:
            values["adjudication_date"] = adjudication_date
        if denial_reason is not None:
            values["denial_reason"] = denial_reason
        if denial_details is not None:
            values["denial_details"] = denial_details
        if adjustment_codes is not None:
            values["adjustment_codes"] = list(adjustment_codes)
        async with self.transaction(tx) as session:
            await self._update_claim(session, claim_id, **values)

    async def _update_claim(self, session: AsyncSession, claim_id: UUID, **values: Any) -> None:
        values["updated_at"] = datetime.now(timezone.utc)
        result = await session.execute(
            update(Claim)
            .where(Claim.id == claim_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise NotFoundError("Claim", claim_id)

    async def add_submission_history(
        self, entry: SubmissionHistoryEntry, tx: Any = None
    ) -> SubmissionHistoryEntry:
        async with self.transaction(tx) as session:
            session.add(
                ClaimSubmissionHistory(
                    id=entry.id,
                    claim_id=entry.claim_id,
                    action=entry.action,
                    method=entry.method,
                    timestamp=entry.timestamp,
                    tracking_number=entry.tracking_number,
                    correlation_id=entry.correlation_id,
                    details=entry.details,
                    actor_id=entry.actor_id,
                )
            )
            await session.flush()
        return entry
