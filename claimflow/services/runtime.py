"""
Claim Runtime Wiring.

Provides:
- ClaimRuntime: the fully wired set of claim services
- build_claim_runtime(): builds storage, gateways and services from settings

Demo mode wires the in-memory repository; live mode uses the SQLAlchemy
repository on the configured database.

Source: Design Document Section 4.6 - Scheduling Contract
Verified: 2026-10-16
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

import httpx

from claimflow.core.config import ClaimsSettings, get_claims_settings
from claimflow.gateways.clearinghouse import ClearinghouseGateway
from claimflow.gateways.payer import PayerGateway
from claimflow.repositories.base import ClaimRepository
from claimflow.services.claim_batch import ClaimBatchService
from claimflow.services.claim_jobs import ClaimJobHandlers
from claimflow.services.claim_lifecycle import ClaimLifecycleService
from claimflow.services.claim_state_machine import ClaimStateMachine
from claimflow.services.claim_submission import ClaimSubmissionService
from claimflow.services.claim_tracking import ClaimTrackingService
from claimflow.services.claim_validation import ClaimValidationService, ValidationConfig
from claimflow.services.claims_service import ClaimsService
from claimflow.services.document_store import DocumentStore, InMemoryDocumentStore
from claimflow.services.notifications import LoggingNotifier, Notifier
from claimflow.services.scheduler import InMemoryJobScheduler, JobScheduler

logger = logging.getLogger(__name__)


@dataclass
class ClaimRuntime:
    """Wired claim services sharing one repository and one scheduler."""

    settings: ClaimsSettings
    repository: ClaimRepository
    scheduler: JobScheduler
    notifier: Notifier
    clearinghouse: ClearinghouseGateway
    payer_gateway: PayerGateway
    claims: ClaimsService
    validation: ClaimValidationService
    submission: ClaimSubmissionService
    tracking: ClaimTrackingService
    batch: ClaimBatchService
    lifecycle: ClaimLifecycleService
    jobs: ClaimJobHandlers

    async def close(self) -> None:
        """Close outbound HTTP clients."""
        await self.clearinghouse.close()
        await self.payer_gateway.close()


def _default_repository(settings: ClaimsSettings) -> ClaimRepository:
    if settings.is_demo_mode:
        from claimflow.repositories.memory import InMemoryClaimRepository

        return InMemoryClaimRepository()

    from claimflow.db.connection import get_session_maker
    from claimflow.repositories.sqlalchemy import SQLAlchemyClaimRepository

    return SQLAlchemyClaimRepository(get_session_maker())


def build_claim_runtime(
    settings: Optional[ClaimsSettings] = None,
    repository: Optional[ClaimRepository] = None,
    scheduler: Optional[JobScheduler] = None,
    notifier: Optional[Notifier] = None,
    document_store: Optional[DocumentStore] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    clearinghouse: Optional[ClearinghouseGateway] = None,
    payer_gateway: Optional[PayerGateway] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> ClaimRuntime:
    """
    Build the claim services from settings.

    Any collaborator may be passed in to replace the default. Job handlers
    are registered on the scheduler before returning.

    Args:
        settings: Configuration (defaults to the global settings)
        repository: Claim storage
        scheduler: Background job scheduler
        notifier: Operator notifications
        document_store: Paper claim form storage
        http_client: Shared client for both gateways
        clearinghouse: Clearinghouse adapter
        payer_gateway: Payer-direct adapter
        clock: Current time source

    Returns:
        ClaimRuntime
    """
    settings = settings or get_claims_settings()
    repository = repository or _default_repository(settings)
    scheduler = scheduler or InMemoryJobScheduler()
    notifier = notifier or LoggingNotifier()
    state_machine = ClaimStateMachine(
        allow_partial_payment=settings.ENABLE_PARTIAL_PAYMENT_TRANSITIONS
    )

    clearinghouse = clearinghouse or ClearinghouseGateway(settings=settings, client=http_client)
    payer_gateway = payer_gateway or PayerGateway(settings=settings, client=http_client)

    validation = ClaimValidationService(
        repository,
        state_machine=state_machine,
        config=ValidationConfig.from_settings(settings),
        clock=clock,
    )
    submission = ClaimSubmissionService(
        repository,
        validation,
        clearinghouse,
        payer_gateway,
        state_machine=state_machine,
        document_store=document_store or InMemoryDocumentStore(),
        settings=settings,
        clock=clock,
    )
    tracking = ClaimTrackingService(
        repository,
        clearinghouse,
        payer_gateway,
        state_machine=state_machine,
        notifier=notifier,
        settings=settings,
        clock=clock,
    )
    batch = ClaimBatchService(
        repository, validation, submission, tracking, settings=settings, clock=clock
    )
    lifecycle = ClaimLifecycleService(
        repository,
        validation,
        submission,
        tracking,
        batch,
        scheduler=scheduler,
        notifier=notifier,
        state_machine=state_machine,
        settings=settings,
        clock=clock,
    )
    jobs = ClaimJobHandlers(repository, lifecycle, notifier)
    jobs.register(scheduler)

    logger.info(
        f"Claim runtime built ({settings.INTEGRATION_MODE.value} mode, "
        f"{type(repository).__name__}, {type(scheduler).__name__})"
    )
    return ClaimRuntime(
        settings=settings,
        repository=repository,
        scheduler=scheduler,
        notifier=notifier,
        clearinghouse=clearinghouse,
        payer_gateway=payer_gateway,
        claims=ClaimsService(repository, state_machine=state_machine, clock=clock),
        validation=validation,
        submission=submission,
        tracking=tracking,
        batch=batch,
        lifecycle=lifecycle,
        jobs=jobs,
    )
