"""
Pytest Configuration and Fixtures.
Shared test fixtures for all test modules.
"""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID, uuid4

import pytest

from claimflow.core.config import ClaimsSettings
from claimflow.core.enums import (
    BillingStatus,
    ClaimStatus,
    DocumentationStatus,
    IntegrationMode,
    PayerType,
    SubmissionFormat,
    SubmissionMethod,
)
from claimflow.gateways.base import IntegrationResponse
from claimflow.gateways.clearinghouse import ClearinghouseGateway
from claimflow.gateways.payer import PayerGateway
from claimflow.repositories.memory import InMemoryClaimRepository
from claimflow.schemas.claim import (
    BillingRequirements,
    ClaimLine,
    ClaimRecord,
    PayerRecord,
    ServiceRecord,
    SubmissionConfig,
)
from claimflow.services.document_store import InMemoryDocumentStore
from claimflow.services.runtime import build_claim_runtime
from claimflow.services.scheduler import InMemoryJobScheduler

FIXED_NOW = datetime(2024, 2, 1, 12, 0, tzinfo=timezone.utc)


# =============================================================================
# Test Doubles
# =============================================================================


class FixedClock:
    """Clock frozen at a settable instant."""

    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def set(self, now: datetime) -> None:
        self.now = now


class RecordingNotifier:
    """Notifier that keeps every notification it receives."""

    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []

    async def send_system_notification(self, topic, severity, message, context=None) -> None:
        self.sent.append(
            {"topic": topic, "severity": severity, "message": message, "context": context or {}}
        )

    def topics(self) -> list[str]:
        return [n["topic"] for n in self.sent]


class FakeClearinghouse(ClearinghouseGateway):
    """Clearinghouse answering with demo responses unless a test scripts one."""

    def __init__(self, settings: ClaimsSettings):
        super().__init__(settings=settings, mode=IntegrationMode.DEMO)
        self.calls: list[tuple[str, Any]] = []
        self.submit_response: Optional[IntegrationResponse] = None
        self.batch_response: Optional[IntegrationResponse] = None
        self.statuses: dict[UUID, Any] = {}
        self.default_status: str = "A2"

    async def submit_claim(self, payer_id, claim, options=None):
        self.calls.append(("submit_claim", claim))
        if self.submit_response is not None:
            return self.submit_response
        return await super().submit_claim(payer_id, claim, options)

    async def submit_batch(self, payer_id, claims, options=None):
        self.calls.append(("submit_batch", claims))
        if self.batch_response is not None:
            return self.batch_response
        return await super().submit_batch(payer_id, claims, options)

    async def check_status(self, external_claim_id, claim_id, options=None):
        self.calls.append(("check_status", claim_id))
        scripted = self.statuses.get(claim_id, self.default_status)
        if isinstance(scripted, Exception):
            raise scripted
        if isinstance(scripted, IntegrationResponse):
            return scripted
        return IntegrationResponse(success=True, data={"status": scripted, "details": {}})

    def calls_to(self, name: str) -> list[Any]:
        return [args for call, args in self.calls if call == name]


class FakePayerGateway(PayerGateway):
    """Payer gateway answering with demo responses unless a test scripts one."""

    def __init__(self, settings: ClaimsSettings):
        super().__init__(settings=settings, mode=IntegrationMode.DEMO)
        self.calls: list[tuple[str, Any]] = []
        self.statuses: dict[UUID, Any] = {}
        self.default_status: str = "PENDING"

    async def submit_claim(self, payer_id, claim, options=None, endpoint_url=None):
        self.calls.append(("submit_claim", claim))
        return await super().submit_claim(payer_id, claim, options, endpoint_url)

    async def submit_portal(self, payer_id, form, options=None, endpoint_url=None):
        self.calls.append(("submit_portal", form))
        return await super().submit_portal(payer_id, form, options, endpoint_url)

    async def check_status(self, payer_id, external_claim_id, claim_id, options=None):
        self.calls.append(("check_status", claim_id))
        scripted = self.statuses.get(claim_id, self.default_status)
        if isinstance(scripted, Exception):
            raise scripted
        if isinstance(scripted, IntegrationResponse):
            return scripted
        return IntegrationResponse(success=True, data={"status": scripted, "details": {}})


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def settings():
    """Demo settings without retry delays."""
    return ClaimsSettings(
        _env_file=None,
        INTEGRATION_MODE=IntegrationMode.DEMO,
        INTEGRATION_RETRY_DELAY_SECONDS=0,
    )


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def repository():
    return InMemoryClaimRepository()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def scheduler():
    return InMemoryJobScheduler()


@pytest.fixture
def document_store():
    return InMemoryDocumentStore()


@pytest.fixture
def clearinghouse(settings):
    return FakeClearinghouse(settings)


@pytest.fixture
def payer_gateway(settings):
    return FakePayerGateway(settings)


def build_payer(**overrides: Any) -> PayerRecord:
    """Active electronic payer routed through a clearinghouse."""
    fields: dict[str, Any] = {
        "name": "Blue Valley Health Plan",
        "payer_code": "BVHP",
        "payer_type": PayerType.PRIVATE_INSURANCE,
        "is_electronic": True,
        "billing_requirements": BillingRequirements(
            submission_format=SubmissionFormat.EDI_837P,
            timely_filing_days=365,
        ),
        "submission_methods": {
            SubmissionMethod.ELECTRONIC: SubmissionConfig(
                endpoint="https://clearinghouse.example.com/837",
                credentials={"api_key": "test-key"},
                clearinghouse="Availity",
                trading_partner_id="TP-0042",
            ),
        },
    }
    fields.update(overrides)
    return PayerRecord(**fields)


@pytest.fixture
def payer_factory():
    """Build unseeded payers with field overrides."""
    return build_payer


@pytest.fixture
def payer(repository):
    """Active electronic payer, seeded into the repository."""
    record = build_payer()
    repository.seed_payers([record])
    return record


@pytest.fixture
def make_claim(repository, payer):
    """
    Factory seeding a claim with documented services.

    The default claim covers 2024-01-01..2024-01-10 with one 100.00 line and
    passes validation on 2024-02-01.
    """
    sequence = iter(range(1, 100_000))

    def _make(
        status: ClaimStatus = ClaimStatus.DRAFT,
        amounts: tuple[str, ...] = ("100.00",),
        payer_record: Optional[PayerRecord] = None,
        submitted: bool = False,
        **overrides: Any,
    ) -> ClaimRecord:
        number = next(sequence)
        claim_id = overrides.pop("id", uuid4())
        client_id = uuid4()
        services = [
            ServiceRecord(
                client_id=client_id,
                service_date=date(2024, 1, 2) + timedelta(days=index),
                service_code="H2019",
                units=Decimal("1"),
                amount=Decimal(amount),
                documentation_status=DocumentationStatus.COMPLETE,
                billing_status=BillingStatus.IN_CLAIM,
                claim_id=claim_id,
            )
            for index, amount in enumerate(amounts)
        ]
        repository.seed_services(services)

        fields: dict[str, Any] = {
            "id": claim_id,
            "claim_number": f"CLM-2024-{number:06d}",
            "client_id": client_id,
            "payer_id": (payer_record or payer).id,
            "service_start_date": date(2024, 1, 1),
            "service_end_date": date(2024, 1, 10),
            "status": status,
            "total_amount": sum((s.amount for s in services), Decimal("0")),
            "lines": [
                ClaimLine(
                    service_id=service.id,
                    line_number=line_number,
                    billed_units=service.units,
                    billed_amount=service.amount,
                )
                for line_number, service in enumerate(services, start=1)
            ],
            "created_at": FIXED_NOW - timedelta(days=1),
            "updated_at": FIXED_NOW - timedelta(days=1),
        }
        if submitted:
            fields.update(
                submission_method=SubmissionMethod.ELECTRONIC,
                submission_date=FIXED_NOW - timedelta(hours=1),
                external_claim_id=f"CH-{number:06d}",
            )
        fields.update(overrides)

        claim = ClaimRecord(**fields)
        repository.seed_claims([claim])
        return claim

    return _make


@pytest.fixture
def runtime(
    settings,
    repository,
    scheduler,
    notifier,
    document_store,
    clearinghouse,
    payer_gateway,
    clock,
):
    """All claim services wired over the in-memory repository and fakes."""
    return build_claim_runtime(
        settings=settings,
        repository=repository,
        scheduler=scheduler,
        notifier=notifier,
        document_store=document_store,
        clearinghouse=clearinghouse,
        payer_gateway=payer_gateway,
        clock=clock,
    )


# Configure pytest markers
def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers", "unit: mark test as a unit test"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as an integration test"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )
