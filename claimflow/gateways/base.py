"""
Base Integration Gateway.

Shared transport for clearinghouse and payer-direct adapters with:
- Bounded per-attempt timeout (a timeout is a failure, never "unknown")
- Fixed retry budget with exponential backoff
- Per-endpoint circuit breaker
- Correlation id and idempotency key on every request
- Demo mode that simulates responses without network I/O
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Optional, TypeVar

import httpx

from claimflow.core.config import ClaimsSettings, get_claims_settings
from claimflow.core.enums import EndpointStatus, IntegrationMode
from claimflow.utils.logging import create_correlation_id

logger = logging.getLogger(__name__)

T = TypeVar("T")


class TransientIntegrationError(Exception):
    """A failure worth retrying: transport error, timeout or 5xx."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class IntegrationRequestOptions:
    """Per-call transport options."""

    timeout_seconds: float = 60.0
    retry_count: int = 3
    retry_delay_seconds: float = 2.0
    correlation_id: str = field(default_factory=create_correlation_id)

    @classmethod
    def from_settings(
        cls, settings: ClaimsSettings, correlation_id: Optional[str] = None
    ) -> "IntegrationRequestOptions":
        return cls(
            timeout_seconds=settings.INTEGRATION_TIMEOUT_SECONDS,
            retry_count=settings.INTEGRATION_RETRY_COUNT,
            retry_delay_seconds=settings.INTEGRATION_RETRY_DELAY_SECONDS,
            correlation_id=correlation_id or create_correlation_id(),
        )


@dataclass
class IntegrationResponse:
    """Success/failure envelope returned by every adapter call."""

    success: bool
    data: dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    status_code: Optional[int] = None
    attempts: int = 0
    latency_ms: float = 0.0


@dataclass
class EndpointHealth:
    """Health and circuit breaker state for one endpoint."""

    status: EndpointStatus = EndpointStatus.HEALTHY
    consecutive_failures: int = 0
    last_error: Optional[str] = None
    request_count: int = 0
    error_count: int = 0
    avg_latency_ms: float = 0.0
    circuit_open_until: Optional[datetime] = None

    @property
    def is_circuit_open(self) -> bool:
        """Check if circuit breaker is open."""
        if self.circuit_open_until is None:
            return False
        return datetime.now(timezone.utc) < self.circuit_open_until

    def record_success(self, latency_ms: float) -> None:
        """Record a successful request."""
        self.consecutive_failures = 0
        self.request_count += 1
        self.circuit_open_until = None
        if self.request_count == 1:
            self.avg_latency_ms = latency_ms
        else:
            self.avg_latency_ms = self.avg_latency_ms * 0.9 + latency_ms * 0.1
        self.status = EndpointStatus.HEALTHY

    def record_failure(self, error: str, threshold: int, reset_seconds: float) -> None:
        """Record a failed request and open the circuit past the threshold."""
        self.consecutive_failures += 1
        self.error_count += 1
        self.request_count += 1
        self.last_error = error

        if self.consecutive_failures >= threshold:
            self.circuit_open_until = datetime.now(timezone.utc) + timedelta(
                seconds=reset_seconds
            )
            self.status = EndpointStatus.UNHEALTHY
        elif self.consecutive_failures >= max(1, threshold // 2):
            self.status = EndpointStatus.DEGRADED


async def call_with_retry(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    delay: float = 1.0,
    backoff_factor: float = 2.0,
    exceptions: tuple = (TransientIntegrationError,),
    on_retry: Optional[Callable[[int], None]] = None,
) -> T:
    """Run an operation with retry and exponential backoff."""
    last_exception: Optional[BaseException] = None
    current_delay = delay

    for attempt in range(max_attempts):
        if on_retry is not None:
            on_retry(attempt + 1)
        try:
            return await operation()
        except exceptions as e:
            last_exception = e
            if attempt < max_attempts - 1:
                logger.warning(
                    f"Attempt {attempt + 1}/{max_attempts} failed: {e}. "
                    f"Retrying in {current_delay:.1f}s..."
                )
                await asyncio.sleep(current_delay)
                current_delay *= backoff_factor
            else:
                logger.error(f"All {max_attempts} attempts failed. Last error: {e}")

    assert last_exception is not None
    raise last_exception


class BaseIntegrationGateway(ABC):
    """
    Abstract base class for outbound integration gateways.

    Subclasses build requests; this class owns transport, retries, timeouts,
    the circuit breaker and demo simulation.
    """

    def __init__(
        self,
        settings: Optional[ClaimsSettings] = None,
        client: Optional[httpx.AsyncClient] = None,
        mode: Optional[IntegrationMode] = None,
    ):
        self.settings = settings or get_claims_settings()
        self.mode = mode or self.settings.INTEGRATION_MODE
        self._client = client
        self._owns_client = client is None
        self._health: dict[str, EndpointHealth] = {}

    @property
    @abstractmethod
    def service_name(self) -> str:
        """Name of this integration for logs and errors."""
        pass

    @property
    @abstractmethod
    def base_url(self) -> str:
        """Base URL for live requests."""
        pass

    @abstractmethod
    async def _simulate(
        self, endpoint: str, payload: dict[str, Any], options: IntegrationRequestOptions
    ) -> dict[str, Any]:
        """Produce a demo-mode response body for an endpoint."""
        pass

    def _auth_headers(self) -> dict[str, str]:
        return {}

    def is_demo_mode(self) -> bool:
        return self.mode == IntegrationMode.DEMO

    def default_options(self, correlation_id: Optional[str] = None) -> IntegrationRequestOptions:
        return IntegrationRequestOptions.from_settings(self.settings, correlation_id)

    def get_health(self, endpoint: str) -> EndpointHealth:
        """Get or create health status for an endpoint."""
        if endpoint not in self._health:
            self._health[endpoint] = EndpointHealth()
        return self._health[endpoint]

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(base_url=self.base_url)
        return self._client

    async def close(self) -> None:
        """Close the HTTP client if this gateway created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def _send(
        self,
        method: str,
        url: str,
        payload: Optional[dict[str, Any]],
        options: IntegrationRequestOptions,
    ) -> tuple[int, dict[str, Any]]:
        headers = {
            "X-Correlation-ID": options.correlation_id,
            "Idempotency-Key": options.correlation_id,
            **self._auth_headers(),
        }
        try:
            response = await asyncio.wait_for(
                self._get_client().request(method, url, json=payload, headers=headers),
                timeout=options.timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise TransientIntegrationError(
                f"Request timed out after {options.timeout_seconds}s"
            ) from e
        except httpx.TransportError as e:
            raise TransientIntegrationError(f"Transport error: {e}") from e

        if response.status_code >= 500:
            raise TransientIntegrationError(
                f"Server error {response.status_code}", status_code=response.status_code
            )

        try:
            body = response.json() if response.content else {}
        except ValueError:
            body = {"raw": response.text}
        return response.status_code, body

    async def request(
        self,
        endpoint: str,
        method: str,
        url: str,
        payload: Optional[dict[str, Any]] = None,
        options: Optional[IntegrationRequestOptions] = None,
    ) -> IntegrationResponse:
        """
        Execute a request and return a success/failure envelope.

        Args:
            endpoint: Logical endpoint name (circuit breaker key)
            method: HTTP method
            url: Path relative to base_url
            payload: JSON body
            options: Timeout, retry and correlation settings
        """
        options = options or self.default_options()
        health = self.get_health(endpoint)

        if health.is_circuit_open:
            logger.warning(f"{self.service_name}.{endpoint} circuit open, request skipped")
            return IntegrationResponse(
                success=False,
                error=f"{self.service_name} {endpoint} unavailable (circuit open)",
            )

        attempts = 0

        def count_attempt(attempt: int) -> None:
            nonlocal attempts
            attempts = attempt

        start_time = time.perf_counter()
        try:
            if self.is_demo_mode():
                status_code = 200
                body = await asyncio.wait_for(
                    self._simulate(endpoint, payload or {}, options),
                    timeout=options.timeout_seconds,
                )
                attempts = 1
            else:
                status_code, body = await call_with_retry(
                    lambda: self._send(method, url, payload, options),
                    max_attempts=options.retry_count,
                    delay=options.retry_delay_seconds,
                    on_retry=count_attempt,
                )
        except (TransientIntegrationError, asyncio.TimeoutError) as e:
            latency = (time.perf_counter() - start_time) * 1000
            error = str(e) or "Request timed out"
            health.record_failure(
                error,
                self.settings.CIRCUIT_BREAKER_THRESHOLD,
                self.settings.CIRCUIT_BREAKER_RESET_SECONDS,
            )
            logger.error(
                f"{self.service_name}.{endpoint} failed "
                f"(correlation_id={options.correlation_id}): {error}"
            )
            return IntegrationResponse(
                success=False,
                error=error,
                status_code=getattr(e, "status_code", None),
                attempts=attempts,
                latency_ms=latency,
            )

        latency = (time.perf_counter() - start_time) * 1000
        health.record_success(latency)

        if status_code >= 400:
            # Client errors are definitive rejections, not retried
            error = body.get("error") or body.get("message") or f"HTTP {status_code}"
            return IntegrationResponse(
                success=False,
                data=body,
                error=str(error),
                status_code=status_code,
                attempts=attempts,
                latency_ms=latency,
            )

        success = bool(body.get("success", True))
        return IntegrationResponse(
            success=success,
            data=body.get("data", body),
            error=None if success else str(body.get("error", "Request rejected")),
            status_code=status_code,
            attempts=attempts,
            latency_ms=latency,
        )
