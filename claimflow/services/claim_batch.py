"""
Claim Batch Processor.

Provides:
- Batch validation
- Batch submission grouped by (payer, effective submission method)
- Batch status refresh
- Chunking of large groups

No element's failure aborts the batch. Every requested id ends up either in
processed_claims or in errors, so success_count + error_count always equals
total_processed. A storage outage is the one failure that stops a batch.

Source: Design Document Section 4.5 - Batch Processor
Verified: 2026-10-16
"""

import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Optional, TypeVar
from uuid import NAMESPACE_URL, UUID, uuid5

from claimflow.core.config import ClaimsSettings, get_claims_settings
from claimflow.core.enums import SubmissionMethod
from claimflow.repositories.base import ClaimRepository
from claimflow.schemas.claim import (
    BatchSubmitRequest,
    ClaimRecord,
    PayerRecord,
    SubmitClaimRequest,
)
from claimflow.schemas.results import BatchResult, SubmissionResult, ValidationResult
from claimflow.services.claim_state_machine import is_submittable_status
from claimflow.services.claim_submission import (
    ClaimSubmissionService,
    generate_submission_payload,
    submission_correlation_id,
)
from claimflow.services.claim_tracking import ClaimTrackingService
from claimflow.services.claim_validation import (
    ClaimValidationService,
    resolve_submission_method,
)
from claimflow.utils.errors import ClaimsError, StorageUnavailableError

logger = logging.getLogger(__name__)

T = TypeVar("T")

CLEARINGHOUSE_METHODS = (SubmissionMethod.ELECTRONIC, SubmissionMethod.CLEARINGHOUSE)


def split_into_chunks(items: list[T], chunk_size: int) -> list[list[T]]:
    """Split a list into consecutive chunks of at most chunk_size items."""
    if chunk_size < 1:
        raise ValueError("chunk_size must be at least 1")
    return [items[i : i + chunk_size] for i in range(0, len(items), chunk_size)]


def validation_summary(batch: BatchResult) -> dict[str, Any]:
    """Aggregate error and warning counts of a batch validation."""
    results: list[ValidationResult] = [
        r for r in batch.results.values() if isinstance(r, ValidationResult)
    ]
    return {
        "is_valid": batch.error_count == 0,
        "total_claims": batch.total_processed,
        "valid_claims": batch.success_count,
        "invalid_claims": batch.error_count,
        "total_errors": sum(r.error_count for r in results),
        "total_warnings": sum(r.warning_count for r in results),
        "results": {str(cid): r for cid, r in batch.results.items()},
    }


@dataclass
class SubmissionGroup:
    """Claims sharing a payer and an effective submission method."""

    payer: PayerRecord
    method: SubmissionMethod
    claims: list[ClaimRecord] = field(default_factory=list)

    @property
    def key(self) -> tuple[UUID, SubmissionMethod]:
        return (self.payer.id, self.method)


class ClaimBatchService:
    """Applies single-claim operations across many claims."""

    def __init__(
        self,
        repository: ClaimRepository,
        validation_service: ClaimValidationService,
        submission_service: ClaimSubmissionService,
        tracking_service: ClaimTrackingService,
        settings: Optional[ClaimsSettings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.repository = repository
        self.validation_service = validation_service
        self.submission_service = submission_service
        self.tracking_service = tracking_service
        self.settings = settings or get_claims_settings()
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    # =========================================================================
    # Validation
    # =========================================================================

    async def batch_validate(self, claim_ids: list[UUID]) -> BatchResult:
        """Validate each claim; results per claim are in BatchResult.results."""
        return await self.validation_service.validate_many(claim_ids)

    # =========================================================================
    # Submission
    # =========================================================================

    async def batch_submit(
        self, request: BatchSubmitRequest, user_id: Optional[UUID] = None
    ) -> BatchResult:
        """
        Submit many claims, one clearinghouse call per payer group chunk.

        Args:
            request: Claim ids and batch-level submission defaults
            user_id: Acting user

        Returns:
            BatchResult; results map claim ids to SubmissionResult

        Raises:
            StorageUnavailableError: Storage could not be reached
        """
        batch = BatchResult()
        default_method = request.submission_method or self.settings.DEFAULT_SUBMISSION_METHOD
        submission_date = request.submission_date or self.clock()

        groups = await self._group_claims(request.claim_ids, default_method, batch)
        logger.info(
            f"Batch submission of {len(request.claim_ids)} claim(s) in {len(groups)} group(s)"
        )

        for group in groups.values():
            for chunk in split_into_chunks(group.claims, self.settings.BATCH_CHUNK_SIZE):
                valid = await self._validate_members(chunk, group.method, batch, user_id)
                if not valid:
                    continue
                if group.method in CLEARINGHOUSE_METHODS:
                    await self._submit_clearinghouse_group(
                        group, valid, batch, submission_date, request.notes, user_id
                    )
                else:
                    await self._submit_individually(
                        group.method, valid, batch, submission_date, request.notes, user_id
                    )

        logger.info(
            f"Batch submission completed: {batch.success_count} submitted, "
            f"{batch.error_count} failed of {batch.total_processed}"
        )
        return batch

    async def _group_claims(
        self,
        claim_ids: list[UUID],
        default_method: SubmissionMethod,
        batch: BatchResult,
    ) -> "OrderedDict[tuple[UUID, SubmissionMethod], SubmissionGroup]":
        """Load claims and group them; unusable claims go straight to errors."""
        claims = {claim.id: claim for claim in await self.repository.find_by_ids(claim_ids)}
        payers: dict[UUID, Optional[PayerRecord]] = {}
        groups: "OrderedDict[tuple[UUID, SubmissionMethod], SubmissionGroup]" = OrderedDict()
        seen: set[UUID] = set()

        for claim_id in claim_ids:
            if claim_id in seen:
                batch.record_error(claim_id, "Duplicate claim id in batch")
                continue
            seen.add(claim_id)

            claim = claims.get(claim_id)
            if claim is None:
                batch.record_error(claim_id, f"Claim not found: {claim_id}")
                continue
            if not is_submittable_status(claim.status):
                batch.record_error(
                    claim_id,
                    f"Claim is not in a submittable state. Current status: {claim.status.value}",
                )
                continue
            if claim.payer_id is None:
                batch.record_error(claim_id, "Claim has no payer")
                continue

            if claim.payer_id not in payers:
                payers[claim.payer_id] = await self.repository.find_payer(claim.payer_id)
            payer = payers[claim.payer_id]
            if payer is None:
                batch.record_error(claim_id, f"Payer not found: {claim.payer_id}")
                continue

            method = resolve_submission_method(claim, payer, default_method)
            key = (payer.id, method)
            if key not in groups:
                groups[key] = SubmissionGroup(payer=payer, method=method)
            groups[key].claims.append(claim)

        return groups

    async def _validate_members(
        self,
        claims: list[ClaimRecord],
        method: SubmissionMethod,
        batch: BatchResult,
        user_id: Optional[UUID],
    ) -> list[ClaimRecord]:
        """Validate group members, returning fresh snapshots of the valid ones."""
        valid: list[ClaimRecord] = []
        for claim in claims:
            try:
                result = await self.validation_service.validate_claim(
                    claim.id, user_id=user_id, method=method
                )
            except StorageUnavailableError:
                raise
            except Exception as e:
                if not isinstance(e, ClaimsError):
                    logger.exception(f"Unexpected error validating claim {claim.id}")
                batch.record_error(claim.id, f"Validation failed: {e}")
                continue

            if not result.is_valid:
                batch.record_error(claim.id, f"Validation failed: {result.summary()}", result)
                continue

            refreshed = await self.repository.find_by_id(claim.id)
            if refreshed is None:
                batch.record_error(claim.id, f"Claim not found: {claim.id}")
                continue
            valid.append(refreshed)
        return valid

    async def _submit_clearinghouse_group(
        self,
        group: SubmissionGroup,
        claims: list[ClaimRecord],
        batch: BatchResult,
        submission_date: datetime,
        notes: Optional[str],
        user_id: Optional[UUID],
    ) -> None:
        """Send one clearinghouse call for the chunk and record each outcome."""
        payer = group.payer
        try:
            self.submission_service.ensure_channel_ready(payer, group.method)
        except ClaimsError as e:
            for claim in claims:
                batch.record_error(claim.id, e.message)
            return

        correlation_ids = {claim.id: submission_correlation_id(claim) for claim in claims}
        group_correlation_id = uuid5(
            NAMESPACE_URL, "claimflow:batch:" + ":".join(sorted(correlation_ids.values()))
        ).hex
        payloads = [
            {
                **generate_submission_payload(claim, payer, group.method),
                "correlation_id": correlation_ids[claim.id],
            }
            for claim in claims
        ]

        response = await self.submission_service.clearinghouse.submit_batch(
            payer.id,
            payloads,
            self.submission_service.request_options(group_correlation_id),
        )
        if not response.success:
            logger.error(
                f"Clearinghouse batch for payer {payer.name} failed for "
                f"{len(claims)} claim(s): {response.error}"
            )
            for claim in claims:
                batch.record_error(claim.id, f"Clearinghouse submission failed: {response.error}")
            return

        outcomes = {
            str(entry.get("claim_id")): entry for entry in response.data.get("results", [])
        }
        for claim in claims:
            outcome = outcomes.get(str(claim.id))
            if outcome is None:
                batch.record_error(claim.id, "Clearinghouse returned no result for claim")
                continue
            if not outcome.get("success", False):
                batch.record_error(
                    claim.id,
                    f"Clearinghouse rejected claim: {outcome.get('error') or 'no reason given'}",
                )
                continue

            result = SubmissionResult(
                success=True,
                method=group.method,
                tracking_number=outcome.get("tracking_number"),
                details={"batch_correlation_id": group_correlation_id},
                claim_id=claim.id,
                correlation_id=correlation_ids[claim.id],
            )
            try:
                await self.submission_service.record_submission(
                    claim,
                    group.method,
                    result,
                    submission_date=submission_date,
                    notes=notes,
                    user_id=user_id,
                )
            except StorageUnavailableError:
                raise
            except ClaimsError as e:
                batch.record_error(claim.id, e.message)
                continue
            batch.record_success(claim.id, result)

    async def _submit_individually(
        self,
        method: SubmissionMethod,
        claims: list[ClaimRecord],
        batch: BatchResult,
        submission_date: datetime,
        notes: Optional[str],
        user_id: Optional[UUID],
    ) -> None:
        """Submit claims one at a time for channels without a batch call."""
        for claim in claims:
            request = SubmitClaimRequest(
                submission_method=method,
                submission_date=submission_date,
                notes=notes,
            )
            try:
                result = await self.submission_service.submit_claim(claim.id, request, user_id)
            except StorageUnavailableError:
                raise
            except Exception as e:
                if not isinstance(e, ClaimsError):
                    logger.exception(f"Unexpected error submitting claim {claim.id}")
                batch.record_error(claim.id, str(e))
                continue
            batch.record_success(claim.id, result)

    # =========================================================================
    # Status Refresh
    # =========================================================================

    async def batch_refresh(
        self, claim_ids: list[UUID], user_id: Optional[UUID] = None
    ) -> BatchResult:
        """
        Refresh external status for each claim.

        updated_count counts claims whose status changed; results map claim
        ids to RefreshResult.
        """
        batch = BatchResult()
        for claim_id in claim_ids:
            try:
                result = await self.tracking_service.refresh_status(claim_id, user_id)
            except StorageUnavailableError:
                raise
            except Exception as e:
                if not isinstance(e, ClaimsError):
                    logger.exception(f"Unexpected error refreshing claim {claim_id}")
                else:
                    logger.error(f"Failed to refresh claim status for claim {claim_id}: {e}")
                batch.record_error(claim_id, str(e))
                continue
            batch.record_success(claim_id, result, updated=result.changed)

        logger.info(
            f"Batch refresh completed. Total processed: {batch.total_processed}, "
            f"Updated: {batch.updated_count}, Errors: {batch.error_count}"
        )
        return batch
