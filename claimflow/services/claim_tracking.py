"""
Claim Tracking & Reconciliation Service.

Provides:
- Current status lookup and status timeline
- Legal next statuses with labels, colors and data requirements
- Manual status updates with adjudication details
- External status refresh through the clearinghouse or payer
- Mapping of external status codes to internal statuses
- Multi-step reconciliation along the shortest legal path

Unmapped external codes never change a claim's status unless a fallback has
been configured explicitly; they are flagged on the result and reported to
operators instead.

Source: Design Document Section 4.4 - Tracking & Reconciliation Engine
Verified: 2026-10-16
"""

import logging
import re
from datetime import date, datetime, timezone
from typing import Any, Callable, Optional
from uuid import UUID

from claimflow.core.config import ClaimsSettings, get_claims_settings
from claimflow.core.enums import (
    ClaimStatus,
    NotificationSeverity,
    PayerType,
    SubmissionAction,
    SubmissionMethod,
)
from claimflow.gateways.base import IntegrationRequestOptions, IntegrationResponse
from claimflow.gateways.clearinghouse import ClearinghouseGateway
from claimflow.gateways.payer import PayerGateway
from claimflow.repositories.base import ClaimRepository
from claimflow.schemas.claim import ClaimRecord, StatusUpdate, SubmissionHistoryEntry
from claimflow.schemas.results import (
    RefreshResult,
    StatusInfo,
    TimelineEntry,
    TransitionOption,
)
from claimflow.services.claim_state_machine import (
    ClaimStateMachine,
    get_claim_state_machine,
    get_status_display_name,
)
from claimflow.services.notifications import Notifier, NotificationTopic, notify_safely
from claimflow.utils.errors import (
    BusinessRuleError,
    ClaimsError,
    IntegrationError,
    NotFoundError,
)
from claimflow.utils.logging import create_correlation_id

logger = logging.getLogger(__name__)


# =============================================================================
# External Status Mapping
# =============================================================================


# First match wins. Codes are matched after trimming and upper-casing.
STATUS_MAPPING_RULES: list[tuple[re.Pattern, ClaimStatus]] = [
    (re.compile(r"^(A0|A1|ACKNOWLEDGED|RECEIVED|ACCEPTED)$"), ClaimStatus.ACKNOWLEDGED),
    (re.compile(r"^(A2|P\d*|PENDING|IN[ _]?PROCESS|SUSPENDED)$"), ClaimStatus.PENDING),
    (re.compile(r"^(F1|PAID|FINALIZED[ _]PAID)$"), ClaimStatus.PAID),
    (re.compile(r"^(PARTIAL|PARTIAL[ _]PAID|PARTIALLY[ _]PAID)$"), ClaimStatus.PARTIAL_PAID),
    (
        re.compile(r"^(F2|A3|A4|A6|A7|A8|DENIED|REJECTED|FINALIZED[ _]DENIED)$"),
        ClaimStatus.DENIED,
    ),
]

ADJUDICATED_STATUSES = (
    ClaimStatus.PAID,
    ClaimStatus.PARTIAL_PAID,
    ClaimStatus.DENIED,
    ClaimStatus.FINAL_DENIED,
)


def map_external_status(external_status: Optional[str]) -> Optional[ClaimStatus]:
    """
    Map a clearinghouse or payer status code to an internal status.

    Returns:
        Internal status, or None when the code is not recognized
    """
    if not external_status:
        return None
    code = str(external_status).strip().upper()
    for pattern, status in STATUS_MAPPING_RULES:
        if pattern.match(code):
            return status
    return None


# =============================================================================
# Tracking Service
# =============================================================================


class ClaimTrackingService:
    """Status lookup, manual updates and external reconciliation."""

    def __init__(
        self,
        repository: ClaimRepository,
        clearinghouse: ClearinghouseGateway,
        payer_gateway: PayerGateway,
        state_machine: Optional[ClaimStateMachine] = None,
        notifier: Optional[Notifier] = None,
        settings: Optional[ClaimsSettings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.repository = repository
        self.clearinghouse = clearinghouse
        self.payer_gateway = payer_gateway
        self.state_machine = state_machine or get_claim_state_machine()
        self.notifier = notifier
        self.settings = settings or get_claims_settings()
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    async def _get_claim(self, claim_id: UUID) -> ClaimRecord:
        claim = await self.repository.find_by_id(claim_id)
        if claim is None:
            raise NotFoundError("Claim", claim_id)
        return claim

    # =========================================================================
    # Status Queries
    # =========================================================================

    async def get_status(self, claim_id: UUID) -> StatusInfo:
        """
        Get the current status of a claim.

        last_updated comes from the latest history entry, or the claim's
        creation time when no history exists.
        """
        claim = await self._get_claim(claim_id)
        history = await self.repository.get_status_history(claim_id)

        if not history:
            return StatusInfo(
                status=claim.status,
                last_updated=claim.created_at,
                details={"external_claim_id": claim.external_claim_id},
            )

        latest = history[-1]
        return StatusInfo(
            status=claim.status,
            last_updated=latest.timestamp,
            details={
                "notes": latest.notes,
                "actor_id": str(latest.actor_id) if latest.actor_id else None,
                "external_claim_id": claim.external_claim_id,
            },
        )

    async def get_timeline(self, claim_id: UUID) -> list[TimelineEntry]:
        """Get status history oldest first, with the latest entry flagged active."""
        await self._get_claim(claim_id)
        history = sorted(
            await self.repository.get_status_history(claim_id),
            key=lambda entry: entry.timestamp,
        )

        timeline = [
            TimelineEntry(
                status=entry.status,
                label=get_status_display_name(entry.status),
                timestamp=entry.timestamp,
                notes=entry.notes,
                actor_id=entry.actor_id,
            )
            for entry in history
        ]
        if timeline:
            timeline[-1].is_active = True
        return timeline

    def get_transition_options(self, status: ClaimStatus) -> list[TransitionOption]:
        """Get legal next statuses for a claim in `status`."""
        return self.state_machine.get_transition_options(status)

    # =========================================================================
    # Manual Updates
    # =========================================================================

    async def update_status(
        self,
        claim_id: UUID,
        update: StatusUpdate,
        user_id: Optional[UUID] = None,
        tx: Any = None,
    ) -> ClaimRecord:
        """
        Apply a requested status change and its adjudication data.

        Raises:
            NotFoundError: Claim does not exist
            InvalidStatusTransitionError: Transition not allowed
            BusinessRuleError: VALIDATED requested without running validation
            StaleClaimStatusError: Status changed concurrently
        """
        claim = await self.repository.find_by_id(claim_id, tx=tx)
        if claim is None:
            raise NotFoundError("Claim", claim_id)
        self.state_machine.ensure_transition(claim.status, update.status)
        if update.status == ClaimStatus.VALIDATED:
            raise BusinessRuleError(
                "Claims become VALIDATED only by passing validation",
                code="VALIDATION_REQUIRED",
                context={"claim_id": str(claim_id)},
            )

        async with self.repository.transaction(tx) as handle:
            await self.state_machine.execute_transition(
                self.repository,
                claim_id,
                claim.status,
                update.status,
                notes=update.notes,
                actor_id=user_id,
                tx=handle,
            )

            adjudication_date = update.adjudication_date
            if adjudication_date is None and update.status in ADJUDICATED_STATUSES:
                adjudication_date = self.clock().date()

            if (
                adjudication_date is not None
                or update.denial_reason is not None
                or update.denial_details is not None
                or update.adjustment_codes is not None
            ):
                await self.repository.update_adjudication_details(
                    claim_id,
                    adjudication_date=adjudication_date,
                    denial_reason=update.denial_reason,
                    denial_details=update.denial_details,
                    adjustment_codes=update.adjustment_codes,
                    tx=handle,
                )
            updated = await self.repository.find_by_id(claim_id, tx=handle)

        logger.info(
            f"Claim {claim_id} status updated: {claim.status.value} -> {update.status.value}"
        )
        return updated

    # =========================================================================
    # External Refresh
    # =========================================================================

    async def refresh_status(
        self, claim_id: UUID, user_id: Optional[UUID] = None
    ) -> RefreshResult:
        """
        Query the external disposition of a claim and reconcile it.

        Args:
            claim_id: Submitted claim
            user_id: Acting user, if any

        Returns:
            RefreshResult describing what changed

        Raises:
            NotFoundError: Claim does not exist
            BusinessRuleError: Claim has not been submitted
            IntegrationError: External query failed (claim unchanged)
        """
        claim = await self._get_claim(claim_id)
        if not claim.is_submitted:
            raise BusinessRuleError(
                "Claim has not been submitted yet",
                code="CLAIM_NOT_SUBMITTED",
                context={"claim_id": str(claim_id)},
            )

        previous = claim.status
        correlation_id = create_correlation_id()
        response = await self._query_external(claim, correlation_id)
        if response is None:
            method = claim.submission_method.value if claim.submission_method else "unknown method"
            logger.warning(
                f"Claim {claim_id} was submitted via {method}; no external status source"
            )
            return RefreshResult(
                claim_id=claim_id,
                previous_status=previous,
                current_status=previous,
                details={"reason": "Status refresh not supported for this submission method"},
            )

        if not response.success:
            logger.error(f"Failed to refresh claim status for claim {claim_id}: {response.error}")
            raise IntegrationError(
                f"Failed to refresh claim status: {response.error}",
                service="ClaimTrackingService",
                endpoint="refreshClaimStatus",
            )

        external_status = response.data.get("status")
        details = response.data.get("details") or {}
        result = RefreshResult(
            claim_id=claim_id,
            previous_status=previous,
            current_status=previous,
            external_status=external_status,
            details=details,
        )

        target = map_external_status(external_status)
        if target is None:
            result.unmapped = True
            target = self.settings.UNMAPPED_STATUS_FALLBACK
            await self._report_unmapped(claim, external_status, target)

        if target == ClaimStatus.DENIED and previous == ClaimStatus.APPEALED:
            target = ClaimStatus.FINAL_DENIED

        async with self.repository.transaction() as tx:
            await self.repository.add_submission_history(
                SubmissionHistoryEntry(
                    claim_id=claim_id,
                    action=SubmissionAction.STATUS_CHECK,
                    method=claim.submission_method,
                    timestamp=self.clock(),
                    tracking_number=claim.external_claim_id,
                    correlation_id=correlation_id,
                    details={
                        "external_status": external_status,
                        "mapped_status": target.value if target else None,
                    },
                    actor_id=user_id,
                ),
                tx=tx,
            )
            if target is not None and target != previous:
                await self._reconcile(claim, target, external_status, details, result, user_id, tx)

        if result.changed:
            logger.info(
                f"Claim {claim_id} reconciled {previous.value} -> {result.current_status.value} "
                f"(external status {external_status})"
            )
            await notify_safely(
                self.notifier,
                NotificationTopic.STATUS_UPDATES,
                NotificationSeverity.INFO,
                f"Claim {claim.claim_number} is now {get_status_display_name(result.current_status)}",
                {"claim_id": str(claim_id), "previous_status": previous.value},
            )
        return result

    async def _query_external(
        self, claim: ClaimRecord, correlation_id: str
    ) -> Optional[IntegrationResponse]:
        """Route the status query by submission method and payer type."""
        options = IntegrationRequestOptions.from_settings(self.settings, correlation_id)

        try:
            if claim.submission_method in (
                SubmissionMethod.ELECTRONIC,
                SubmissionMethod.CLEARINGHOUSE,
            ):
                return await self.clearinghouse.check_status(
                    claim.external_claim_id, claim.id, options
                )

            payer = await self.repository.find_payer(claim.payer_id) if claim.payer_id else None
            if claim.submission_method == SubmissionMethod.DIRECT or (
                payer is not None and payer.payer_type == PayerType.MEDICAID
            ):
                return await self.payer_gateway.check_status(
                    claim.payer_id, claim.external_claim_id, claim.id, options
                )
        except ClaimsError:
            raise
        except Exception as e:
            logger.error(f"Failed to refresh claim status for claim {claim.id}: {e}")
            raise IntegrationError(
                f"Failed to refresh claim status: {e}",
                service="ClaimTrackingService",
                endpoint="refreshClaimStatus",
                original_error=e,
            ) from e

        return None

    async def _reconcile(
        self,
        claim: ClaimRecord,
        target: ClaimStatus,
        external_status: Optional[str],
        details: dict[str, Any],
        result: RefreshResult,
        user_id: Optional[UUID],
        tx: Any,
    ) -> None:
        """Walk the shortest legal path from the claim's status to `target`."""
        path = self.state_machine.find_path(claim.status, target)
        if not path:
            result.unreconciled = True
            logger.warning(
                f"Claim {claim.id}: external status {external_status} maps to "
                f"{target.value}, unreachable from {claim.status.value}"
            )
            await notify_safely(
                self.notifier,
                NotificationTopic.UNMAPPED_STATUS,
                NotificationSeverity.WARNING,
                f"Claim {claim.claim_number} reported as {target.value} by payer but "
                f"cannot move there from {claim.status.value}",
                {"claim_id": str(claim.id), "external_status": external_status},
            )
            return

        message = details.get("message")
        current = claim.status
        for step in path:
            if step == target:
                notes = f"External status {external_status}" + (f": {message}" if message else "")
            else:
                notes = f"Inferred from external status {external_status}"
            await self.state_machine.execute_transition(
                self.repository, claim.id, current, step, notes=notes, actor_id=user_id, tx=tx
            )
            current = step

        if target in ADJUDICATED_STATUSES:
            await self.repository.update_adjudication_details(
                claim.id,
                adjudication_date=_parse_date(details.get("adjudication_date"))
                or self.clock().date(),
                denial_details=(
                    details.get("denial_details")
                    if target in (ClaimStatus.DENIED, ClaimStatus.FINAL_DENIED)
                    else None
                ),
                adjustment_codes=details.get("adjustment_codes"),
                tx=tx,
            )

        result.current_status = target
        result.applied_path = list(path)
        result.changed = True

    async def _report_unmapped(
        self,
        claim: ClaimRecord,
        external_status: Optional[str],
        fallback: Optional[ClaimStatus],
    ) -> None:
        logger.warning(
            f"Claim {claim.id}: unmapped external status {external_status!r}"
            + (f", applying fallback {fallback.value}" if fallback else ", status left unchanged")
        )
        await notify_safely(
            self.notifier,
            NotificationTopic.UNMAPPED_STATUS,
            NotificationSeverity.WARNING,
            f"Unrecognized external status {external_status!r} for claim {claim.claim_number}",
            {
                "claim_id": str(claim.id),
                "external_status": external_status,
                "fallback": fallback.value if fallback else None,
            },
        )


def _parse_date(value: Any) -> Optional[date]:
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value[:10])
        except ValueError:
            return None
    return None
