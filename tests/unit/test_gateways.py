"""
Integration Gateway Tests.

Tests for:
- Live requests through an httpx mock transport
- Retry of transient failures and no retry of client errors
- Per-attempt timeouts
- Circuit breaker
- Demo mode simulation
"""

import asyncio
from uuid import uuid4

import httpx
import pytest

from claimflow.core.config import ClaimsSettings
from claimflow.core.enums import EndpointStatus, IntegrationMode
from claimflow.gateways.base import (
    IntegrationRequestOptions,
    TransientIntegrationError,
    call_with_retry,
)
from claimflow.gateways.clearinghouse import ClearinghouseGateway
from claimflow.gateways.payer import PayerGateway


@pytest.fixture
def live_settings():
    return ClaimsSettings(
        _env_file=None,
        INTEGRATION_MODE=IntegrationMode.LIVE,
        INTEGRATION_RETRY_COUNT=3,
        INTEGRATION_RETRY_DELAY_SECONDS=0,
        CIRCUIT_BREAKER_THRESHOLD=2,
        CLEARINGHOUSE_API_KEY="secret-key",
    )


class Recorder:
    """Mock transport handler replaying scripted responses."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        return httpx.Response(
            response.status_code, content=response.content, headers=response.headers
        )


def clearinghouse_with(settings, recorder) -> ClearinghouseGateway:
    client = httpx.AsyncClient(
        transport=httpx.MockTransport(recorder), base_url=settings.CLEARINGHOUSE_BASE_URL
    )
    return ClearinghouseGateway(settings=settings, client=client)


def options(**overrides) -> IntegrationRequestOptions:
    fields = {"retry_count": 3, "retry_delay_seconds": 0, "correlation_id": "corr-123"}
    fields.update(overrides)
    return IntegrationRequestOptions(**fields)


class TestLiveRequests:
    """Tests for live mode transport."""

    @pytest.mark.asyncio
    async def test_success_carries_headers_and_data(self, live_settings):
        recorder = Recorder(
            httpx.Response(200, json={"success": True, "data": {"tracking_number": "CH-9"}})
        )
        gateway = clearinghouse_with(live_settings, recorder)

        response = await gateway.submit_claim(uuid4(), {"claim_number": "CLM-1"}, options())

        assert response.success is True
        assert response.data == {"tracking_number": "CH-9"}
        assert response.attempts == 1
        [request] = recorder.requests
        assert request.url.path == "/api/v1/claims"
        assert request.headers["Idempotency-Key"] == "corr-123"
        assert request.headers["X-Correlation-ID"] == "corr-123"
        assert request.headers["Authorization"] == "Bearer secret-key"

    @pytest.mark.asyncio
    async def test_server_errors_are_retried(self, live_settings):
        recorder = Recorder(
            httpx.Response(503),
            httpx.Response(200, json={"data": {"status": "A2"}}),
        )
        gateway = clearinghouse_with(live_settings, recorder)

        response = await gateway.check_status("CH-1", uuid4(), options())

        assert response.success is True
        assert response.data == {"status": "A2"}
        assert response.attempts == 2
        assert len(recorder.requests) == 2
        assert {r.headers["Idempotency-Key"] for r in recorder.requests} == {"corr-123"}

    @pytest.mark.asyncio
    async def test_client_error_is_not_retried(self, live_settings):
        recorder = Recorder(httpx.Response(422, json={"error": "Invalid member id"}))
        gateway = clearinghouse_with(live_settings, recorder)

        response = await gateway.submit_claim(uuid4(), {}, options())

        assert response.success is False
        assert response.error == "Invalid member id"
        assert response.status_code == 422
        assert len(recorder.requests) == 1

    @pytest.mark.asyncio
    async def test_retry_budget_exhausted(self, live_settings):
        recorder = Recorder(httpx.Response(502))
        gateway = clearinghouse_with(live_settings, recorder)

        response = await gateway.submit_claim(uuid4(), {}, options())

        assert response.success is False
        assert response.status_code == 502
        assert response.attempts == 3
        assert len(recorder.requests) == 3

    @pytest.mark.asyncio
    async def test_transport_error_is_failure(self, live_settings):
        recorder = Recorder(httpx.ConnectError("connection refused"))
        gateway = clearinghouse_with(live_settings, recorder)

        response = await gateway.submit_claim(uuid4(), {}, options(retry_count=1))

        assert response.success is False
        assert response.error.startswith("Transport error")

    @pytest.mark.asyncio
    async def test_timeout_is_failure(self, live_settings):
        async def slow(request):
            await asyncio.sleep(1)
            return httpx.Response(200, json={})

        gateway = clearinghouse_with(live_settings, slow)

        response = await gateway.submit_claim(
            uuid4(), {}, options(retry_count=1, timeout_seconds=0.01)
        )

        assert response.success is False
        assert response.error == "Request timed out after 0.01s"

    @pytest.mark.asyncio
    async def test_rejected_envelope(self, live_settings):
        recorder = Recorder(httpx.Response(200, json={"success": False, "error": "Duplicate"}))
        gateway = clearinghouse_with(live_settings, recorder)

        response = await gateway.submit_claim(uuid4(), {}, options())

        assert response.success is False
        assert response.error == "Duplicate"

    @pytest.mark.asyncio
    async def test_payer_endpoint_override(self, live_settings):
        recorder = Recorder(httpx.Response(200, json={"data": {"tracking_number": "PY-1"}}))
        client = httpx.AsyncClient(transport=httpx.MockTransport(recorder))
        gateway = PayerGateway(settings=live_settings, client=client)

        await gateway.submit_claim(
            uuid4(), {}, options(), endpoint_url="https://payer.example.com/edi/"
        )

        assert str(recorder.requests[0].url) == "https://payer.example.com/edi/claims"


class TestCircuitBreaker:
    """Tests for the per-endpoint circuit breaker."""

    @pytest.mark.asyncio
    async def test_circuit_opens_after_threshold(self, live_settings):
        recorder = Recorder(httpx.Response(500))
        gateway = clearinghouse_with(live_settings, recorder)

        for _ in range(2):
            await gateway.submit_claim(uuid4(), {}, options(retry_count=1))
        response = await gateway.submit_claim(uuid4(), {}, options(retry_count=1))

        assert response.success is False
        assert "circuit open" in response.error
        assert len(recorder.requests) == 2
        health = gateway.get_health("submitClaim")
        assert health.status == EndpointStatus.UNHEALTHY
        assert health.is_circuit_open

    @pytest.mark.asyncio
    async def test_circuits_are_per_endpoint(self, live_settings):
        recorder = Recorder(httpx.Response(500))
        gateway = clearinghouse_with(live_settings, recorder)

        for _ in range(2):
            await gateway.submit_claim(uuid4(), {}, options(retry_count=1))

        assert not gateway.get_health("checkClaimStatus").is_circuit_open

    @pytest.mark.asyncio
    async def test_success_resets_failures(self, live_settings):
        recorder = Recorder(
            httpx.Response(500),
            httpx.Response(200, json={}),
        )
        gateway = clearinghouse_with(live_settings, recorder)

        await gateway.submit_claim(uuid4(), {}, options(retry_count=1))
        await gateway.submit_claim(uuid4(), {}, options(retry_count=1))

        health = gateway.get_health("submitClaim")
        assert health.consecutive_failures == 0
        assert health.status == EndpointStatus.HEALTHY


class TestDemoMode:
    """Tests for simulated responses."""

    @pytest.mark.asyncio
    async def test_demo_tracking_number_follows_correlation_id(self, settings):
        gateway = ClearinghouseGateway(settings=settings)

        response = await gateway.submit_claim(uuid4(), {}, options(correlation_id="abcdef123456789"))

        assert response.success is True
        assert response.data["tracking_number"] == "CH-ABCDEF123456"
        await gateway.close()

    @pytest.mark.asyncio
    async def test_demo_payer_status(self, settings):
        gateway = PayerGateway(settings=settings)

        response = await gateway.check_status(uuid4(), "PY-1", uuid4(), options())

        assert response.data["status"] == "PENDING"


class TestCallWithRetry:
    @pytest.mark.asyncio
    async def test_non_transient_errors_propagate(self):
        calls = []

        async def operation():
            calls.append(1)
            raise KeyError("bad")

        with pytest.raises(KeyError):
            await call_with_retry(operation, max_attempts=3, delay=0)
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_last_transient_error_raised(self):
        async def operation():
            raise TransientIntegrationError("still down", status_code=503)

        with pytest.raises(TransientIntegrationError) as exc_info:
            await call_with_retry(operation, max_attempts=2, delay=0)
        assert exc_info.value.status_code == 503
