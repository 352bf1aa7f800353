"""
Claim Submission Service.

Provides:
- Channel dispatch (electronic/clearinghouse, direct, portal, paper)
- Payer-specific payload generation
- Idempotent clearinghouse calls keyed by a deterministic correlation id
- Submission metadata, history and SUBMITTED transition in one unit of work
- Pre-flight submission requirement checks

A claim must be DRAFT or VALIDATED to be submitted; anything else is rejected
before any adapter is called. DRAFT claims are validated first.

Source: Design Document Section 4.3 - Submission Dispatcher
Verified: 2026-10-16
"""

import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional
from uuid import NAMESPACE_URL, UUID, uuid5

from claimflow.core.config import ClaimsSettings, get_claims_settings
from claimflow.core.enums import (
    ClaimStatus,
    SubmissionAction,
    SubmissionFormat,
    SubmissionMethod,
    ValidationSeverity,
)
from claimflow.gateways.base import IntegrationRequestOptions
from claimflow.gateways.clearinghouse import ClearinghouseGateway
from claimflow.gateways.payer import PayerGateway
from claimflow.repositories.base import ClaimRepository
from claimflow.schemas.claim import (
    ClaimRecord,
    PayerRecord,
    SubmissionHistoryEntry,
    SubmitClaimRequest,
)
from claimflow.schemas.results import SubmissionResult
from claimflow.services.claim_state_machine import (
    ClaimStateMachine,
    get_claim_state_machine,
    is_submittable_status,
)
from claimflow.services.claim_validation import (
    ClaimValidationService,
    check_submission_config,
)
from claimflow.services.document_store import DocumentStore, InMemoryDocumentStore
from claimflow.utils.errors import (
    BusinessRuleError,
    ClaimValidationFailedError,
    IntegrationError,
    NotFoundError,
)

logger = logging.getLogger(__name__)


PAPER_CLAIMS_BUCKET = "paper-claims"

ChannelHandler = Callable[
    [ClaimRecord, PayerRecord, SubmitClaimRequest, str], Awaitable[SubmissionResult]
]


def submission_correlation_id(claim: ClaimRecord) -> str:
    """
    Deterministic correlation id for submitting a claim.

    Derived from the claim id and its last modification time. A failed attempt
    changes nothing, so every retry of the same submission reuses the id and
    the receiver can deduplicate it.
    """
    key = f"claimflow:{claim.id}:submit:{claim.updated_at.isoformat()}"
    return uuid5(NAMESPACE_URL, key).hex


# =============================================================================
# Payload Generation
# =============================================================================


def _line_items(claim: ClaimRecord) -> list[dict[str, Any]]:
    items = []
    for line in claim.lines:
        service = line.service
        items.append(
            {
                "line_number": line.line_number,
                "service_id": str(line.service_id),
                "service_code": service.service_code if service else None,
                "service_date": service.service_date.isoformat() if service else None,
                "units": str(line.billed_units),
                "amount": str(line.billed_amount),
            }
        )
    return items


def generate_submission_payload(
    claim: ClaimRecord, payer: PayerRecord, method: SubmissionMethod
) -> dict[str, Any]:
    """
    Build the channel payload for a claim.

    Electronic and direct channels get an 837-style JSON document, portal
    gets a flat form field map and paper gets CMS-1500 form fields.
    """
    period = {
        "start": claim.service_start_date.isoformat() if claim.service_start_date else None,
        "end": claim.service_end_date.isoformat() if claim.service_end_date else None,
    }

    if method == SubmissionMethod.PAPER:
        config = payer.submission_config(method)
        return {
            "form_type": SubmissionFormat.CMS_1500.value,
            "payer_name": payer.name,
            "payer_address": config.mailing_address if config else None,
            "insured_id": str(claim.client_id),
            "claim_number": claim.claim_number,
            "original_claim_id": str(claim.original_claim_id) if claim.original_claim_id else None,
            "service_lines": [
                {
                    "24a_date_of_service": item["service_date"],
                    "24d_procedure": item["service_code"],
                    "24f_charges": item["amount"],
                    "24g_units": item["units"],
                }
                for item in _line_items(claim)
            ],
            "28_total_charge": str(claim.total_amount),
        }

    if method == SubmissionMethod.PORTAL:
        return {
            "claim_number": claim.claim_number,
            "claim_type": claim.claim_type.value if claim.claim_type else None,
            "member_id": str(claim.client_id),
            "service_from": period["start"],
            "service_to": period["end"],
            "total_charge": str(claim.total_amount),
            "line_count": len(claim.lines),
            "lines": _line_items(claim),
        }

    requirements = payer.billing_requirements
    config = payer.submission_config(method)
    return {
        "format": (
            requirements.submission_format.value
            if requirements and requirements.submission_format
            else SubmissionFormat.EDI_837P.value
        ),
        "claim_id": str(claim.id),
        "claim_number": claim.claim_number,
        "claim_type": claim.claim_type.value if claim.claim_type else None,
        "original_claim_id": str(claim.original_claim_id) if claim.original_claim_id else None,
        "client_id": str(claim.client_id),
        "payer": {
            "id": str(payer.id),
            "code": payer.payer_code,
            "name": payer.name,
            "trading_partner_id": config.trading_partner_id if config else None,
        },
        "service_period": period,
        "total_amount": str(claim.total_amount),
        "lines": _line_items(claim),
    }


def portal_instructions(claim: ClaimRecord, payer: PayerRecord, portal_url: Optional[str]) -> list[str]:
    """Manual steps for submitting through a payer portal."""
    return [
        f"Log in to the {payer.name} provider portal"
        + (f" at {portal_url}" if portal_url else ""),
        "Start a new claim and enter the member and service period from the form data",
        f"Enter {len(claim.lines)} service line(s) totaling {claim.total_amount}",
        "Submit the claim and record the portal confirmation number as the external claim id",
    ]


# =============================================================================
# Submission Service
# =============================================================================


class ClaimSubmissionService:
    """Routes claims to a submission channel and records the outcome."""

    def __init__(
        self,
        repository: ClaimRepository,
        validation_service: ClaimValidationService,
        clearinghouse: ClearinghouseGateway,
        payer_gateway: PayerGateway,
        state_machine: Optional[ClaimStateMachine] = None,
        document_store: Optional[DocumentStore] = None,
        settings: Optional[ClaimsSettings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.repository = repository
        self.validation_service = validation_service
        self.clearinghouse = clearinghouse
        self.payer_gateway = payer_gateway
        self.state_machine = state_machine or get_claim_state_machine()
        self.document_store = document_store or InMemoryDocumentStore()
        self.settings = settings or get_claims_settings()
        self.clock = clock or (lambda: datetime.now(timezone.utc))

        self._handlers: dict[SubmissionMethod, ChannelHandler] = {
            SubmissionMethod.ELECTRONIC: self._submit_electronic,
            SubmissionMethod.CLEARINGHOUSE: self._submit_electronic,
            SubmissionMethod.DIRECT: self._submit_direct,
            SubmissionMethod.PORTAL: self._submit_portal,
            SubmissionMethod.PAPER: self._submit_paper,
        }

    # =========================================================================
    # Public Operations
    # =========================================================================

    async def submit_claim(
        self,
        claim_id: UUID,
        request: SubmitClaimRequest,
        user_id: Optional[UUID] = None,
    ) -> SubmissionResult:
        """
        Submit a claim through the requested channel.

        Args:
            claim_id: Claim to submit
            request: Method, date, optional external id and notes
            user_id: Acting user

        Returns:
            Normalized submission result

        Raises:
            NotFoundError: Claim or payer does not exist
            BusinessRuleError: Claim not submittable or channel not usable
            ClaimValidationFailedError: DRAFT claim failed validation
            IntegrationError: Adapter failed after retries
        """
        claim, payer = await self.prepare_claim(
            claim_id, user_id, method=request.submission_method
        )

        handler = self._handlers.get(request.submission_method)
        if handler is None:
            raise BusinessRuleError(
                f"Unsupported submission method: {request.submission_method}",
                code="UNSUPPORTED_SUBMISSION_METHOD",
            )

        correlation_id = submission_correlation_id(claim)
        result = await handler(claim, payer, request, correlation_id)
        result.claim_id = claim.id
        result.correlation_id = correlation_id

        await self.record_submission(
            claim,
            request.submission_method,
            result,
            submission_date=request.submission_date or self.clock(),
            external_claim_id=request.external_claim_id,
            notes=request.notes,
            user_id=user_id,
        )
        logger.info(
            f"Claim {claim.claim_number} submitted via {request.submission_method.value}"
            f" (tracking={result.tracking_number})"
        )
        return result

    async def prepare_claim(
        self,
        claim_id: UUID,
        user_id: Optional[UUID] = None,
        method: Optional[SubmissionMethod] = None,
    ) -> tuple[ClaimRecord, PayerRecord]:
        """
        Load a claim for submission and bring it to VALIDATED.

        Raises:
            BusinessRuleError: Claim status is not DRAFT or VALIDATED
            ClaimValidationFailedError: DRAFT claim failed validation
        """
        claim = await self.repository.find_by_id(claim_id)
        if claim is None:
            raise NotFoundError("Claim", claim_id)
        self.ensure_submittable(claim)

        if claim.payer_id is None:
            raise BusinessRuleError("Claim has no payer", context={"claim_id": str(claim_id)})
        payer = await self.repository.find_payer(claim.payer_id)
        if payer is None:
            raise NotFoundError("Payer", claim.payer_id)

        if claim.status == ClaimStatus.DRAFT:
            validation = await self.validation_service.validate_claim(
                claim.id, user_id=user_id, method=method
            )
            if not validation.is_valid:
                raise ClaimValidationFailedError(validation)
            claim = await self.repository.find_by_id(claim_id)

        return claim, payer

    @staticmethod
    def ensure_submittable(claim: ClaimRecord) -> None:
        if not is_submittable_status(claim.status):
            raise BusinessRuleError(
                f"Claim is not in a submittable state. Current status: {claim.status.value}",
                code="CLAIM_NOT_SUBMITTABLE",
                context={"claim_id": str(claim.id), "status": claim.status.value},
            )

    async def record_submission(
        self,
        claim: ClaimRecord,
        method: SubmissionMethod,
        result: SubmissionResult,
        submission_date: datetime,
        external_claim_id: Optional[str] = None,
        notes: Optional[str] = None,
        user_id: Optional[UUID] = None,
    ) -> ClaimRecord:
        """
        Persist a successful submission as one unit of work.

        Updates submission metadata, appends the submission history record and
        moves the claim VALIDATED -> SUBMITTED.
        """
        async with self.repository.transaction() as tx:
            await self.repository.update_submission_details(
                claim.id,
                method,
                submission_date,
                external_claim_id=external_claim_id or result.tracking_number,
                actor_id=user_id,
                tx=tx,
            )
            await self.repository.add_submission_history(
                SubmissionHistoryEntry(
                    claim_id=claim.id,
                    action=SubmissionAction.SUBMITTED,
                    method=method,
                    timestamp=submission_date,
                    tracking_number=result.tracking_number,
                    correlation_id=result.correlation_id,
                    details={k: v for k, v in result.details.items() if k != "form"},
                    actor_id=user_id,
                ),
                tx=tx,
            )
            return await self.state_machine.execute_transition(
                self.repository,
                claim.id,
                ClaimStatus.VALIDATED,
                ClaimStatus.SUBMITTED,
                notes=notes or f"Claim submitted to payer via {method.value}",
                actor_id=user_id,
                tx=tx,
            )

    async def validate_submission_requirements(
        self, claim_id: UUID, method: SubmissionMethod
    ) -> list[str]:
        """
        Pre-flight check without side effects.

        Returns:
            Blocking problems; empty when the claim could be submitted
        """
        claim = await self.repository.find_by_id(claim_id)
        if claim is None:
            raise NotFoundError("Claim", claim_id)

        problems: list[str] = []
        if not is_submittable_status(claim.status):
            problems.append(
                f"Claim is not in a submittable state. Current status: {claim.status.value}"
            )

        payer = await self.repository.find_payer(claim.payer_id) if claim.payer_id else None
        if payer is None:
            problems.append("Claim payer does not exist")
            return problems

        if claim.status == ClaimStatus.DRAFT:
            evaluation = self.validation_service.evaluate(claim, payer, method=method)
            problems.extend(issue.message for issue in evaluation.errors)

        problems.extend(
            issue.message
            for issue in check_submission_config(payer, method)
            if issue.severity == ValidationSeverity.ERROR
            and issue.message not in problems
        )
        return problems

    async def get_submission_history(self, claim_id: UUID) -> list[SubmissionHistoryEntry]:
        """Get submission and status-check records for a claim."""
        if await self.repository.find_by_id(claim_id) is None:
            raise NotFoundError("Claim", claim_id)
        return await self.repository.get_submission_history(claim_id)

    def request_options(self, correlation_id: str) -> IntegrationRequestOptions:
        return IntegrationRequestOptions.from_settings(self.settings, correlation_id)

    def ensure_channel_ready(self, payer: PayerRecord, method: SubmissionMethod) -> None:
        """
        Raise if the payer cannot take claims through a channel.

        Raises:
            BusinessRuleError: Payer not electronic-capable or channel unconfigured
        """
        if method in (
            SubmissionMethod.ELECTRONIC,
            SubmissionMethod.CLEARINGHOUSE,
            SubmissionMethod.DIRECT,
        ) and not payer.is_electronic:
            raise BusinessRuleError(
                f"Payer {payer.name} does not support electronic submission",
                code="PAYER_NOT_ELECTRONIC",
                context={"payer_id": str(payer.id)},
            )

        errors = [
            issue.message
            for issue in check_submission_config(payer, method)
            if issue.severity == ValidationSeverity.ERROR
        ]
        if errors:
            raise BusinessRuleError(
                f"Payer {payer.name} is not configured for {method.value} submission: "
                + "; ".join(errors),
                code="SUBMISSION_CONFIG_MISSING",
                context={"payer_id": str(payer.id), "errors": errors},
            )

    # =========================================================================
    # Channel Handlers
    # =========================================================================

    async def _submit_electronic(
        self,
        claim: ClaimRecord,
        payer: PayerRecord,
        request: SubmitClaimRequest,
        correlation_id: str,
    ) -> SubmissionResult:
        """Submit through the clearinghouse."""
        self.ensure_channel_ready(payer, request.submission_method)
        payload = generate_submission_payload(claim, payer, request.submission_method)

        response = await self.clearinghouse.submit_claim(
            payer.id, payload, self.request_options(correlation_id)
        )
        if not response.success:
            raise IntegrationError(
                f"Clearinghouse submission failed: {response.error}",
                service=self.clearinghouse.service_name,
                endpoint="submitClaim",
            )

        config = payer.submission_config(request.submission_method)
        return SubmissionResult(
            success=True,
            method=request.submission_method,
            tracking_number=response.data.get("tracking_number"),
            details={
                "clearinghouse": config.clearinghouse if config else None,
                "response": response.data,
            },
        )

    async def _submit_direct(
        self,
        claim: ClaimRecord,
        payer: PayerRecord,
        request: SubmitClaimRequest,
        correlation_id: str,
    ) -> SubmissionResult:
        """Submit straight to the payer's claim API."""
        self.ensure_channel_ready(payer, SubmissionMethod.DIRECT)
        config = payer.submission_config(SubmissionMethod.DIRECT)
        payload = generate_submission_payload(claim, payer, SubmissionMethod.DIRECT)

        response = await self.payer_gateway.submit_claim(
            payer.id,
            payload,
            self.request_options(correlation_id),
            endpoint_url=config.endpoint if config else None,
        )
        if not response.success:
            raise IntegrationError(
                f"Payer submission failed: {response.error}",
                service=self.payer_gateway.service_name,
                endpoint="submitClaim",
            )

        return SubmissionResult(
            success=True,
            method=SubmissionMethod.DIRECT,
            tracking_number=response.data.get("tracking_number"),
            details={"response": response.data},
        )

    async def _submit_portal(
        self,
        claim: ClaimRecord,
        payer: PayerRecord,
        request: SubmitClaimRequest,
        correlation_id: str,
    ) -> SubmissionResult:
        """
        Submit through the payer portal.

        Without an automated portal API this succeeds with manual instructions.
        """
        config = payer.submission_config(SubmissionMethod.PORTAL)
        form = generate_submission_payload(claim, payer, SubmissionMethod.PORTAL)
        portal_url = config.endpoint if config else None

        if config is not None and config.automated:
            response = await self.payer_gateway.submit_portal(
                payer.id,
                form,
                self.request_options(correlation_id),
                endpoint_url=portal_url,
            )
            if not response.success:
                raise IntegrationError(
                    f"Portal submission failed: {response.error}",
                    service=self.payer_gateway.service_name,
                    endpoint="submitPortal",
                )
            return SubmissionResult(
                success=True,
                method=SubmissionMethod.PORTAL,
                tracking_number=response.data.get("tracking_number"),
                details={"automated": True, "portal_url": portal_url, "form": form},
            )

        return SubmissionResult(
            success=True,
            method=SubmissionMethod.PORTAL,
            tracking_number=request.external_claim_id,
            details={
                "automated": False,
                "portal_url": portal_url,
                "instructions": portal_instructions(claim, payer, portal_url),
                "form": form,
            },
        )

    async def _submit_paper(
        self,
        claim: ClaimRecord,
        payer: PayerRecord,
        request: SubmitClaimRequest,
        correlation_id: str,
    ) -> SubmissionResult:
        """Generate the paper claim form; printing and mailing happen downstream."""
        form = generate_submission_payload(claim, payer, SubmissionMethod.PAPER)
        reference = await self.document_store.put_document(
            PAPER_CLAIMS_BUCKET, f"{claim.claim_number or claim.id}.json", form
        )
        return SubmissionResult(
            success=True,
            method=SubmissionMethod.PAPER,
            tracking_number=request.external_claim_id,
            details={
                "form": form,
                "document_reference": reference,
                "mailing_address": form["payer_address"],
            },
        )
