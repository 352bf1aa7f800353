"""
Payer Gateway.

Direct payer integration: direct electronic submission, automated portal
submission and payer-side status queries.
"""

import logging
from typing import Any, Optional
from uuid import UUID

from claimflow.gateways.base import (
    BaseIntegrationGateway,
    IntegrationRequestOptions,
    IntegrationResponse,
)

logger = logging.getLogger(__name__)


class PayerGateway(BaseIntegrationGateway):
    """Payer-direct integration."""

    @property
    def service_name(self) -> str:
        return "PayerIntegration"

    @property
    def base_url(self) -> str:
        return self.settings.PAYER_API_BASE_URL

    def _payer_url(self, payer_id: UUID, path: str, endpoint_url: Optional[str]) -> str:
        if endpoint_url:
            return f"{endpoint_url.rstrip('/')}{path}"
        return f"/payers/{payer_id}{path}"

    async def submit_claim(
        self,
        payer_id: UUID,
        claim: dict[str, Any],
        options: Optional[IntegrationRequestOptions] = None,
        endpoint_url: Optional[str] = None,
    ) -> IntegrationResponse:
        """Submit one claim directly to the payer."""
        return await self.request(
            "submitClaim",
            "POST",
            self._payer_url(payer_id, "/claims", endpoint_url),
            {"claim": claim},
            options,
        )

    async def submit_portal(
        self,
        payer_id: UUID,
        form: dict[str, Any],
        options: Optional[IntegrationRequestOptions] = None,
        endpoint_url: Optional[str] = None,
    ) -> IntegrationResponse:
        """Submit a portal form through the payer's automated portal API."""
        return await self.request(
            "submitPortal",
            "POST",
            self._payer_url(payer_id, "/portal/submissions", endpoint_url),
            {"form": form},
            options,
        )

    async def check_status(
        self,
        payer_id: UUID,
        external_claim_id: str,
        claim_id: UUID,
        options: Optional[IntegrationRequestOptions] = None,
    ) -> IntegrationResponse:
        """Query claim status from the payer."""
        return await self.request(
            "checkClaimStatus",
            "GET",
            f"/payers/{payer_id}/claims/{external_claim_id}/status?claim_id={claim_id}",
            None,
            options,
        )

    async def _simulate(
        self, endpoint: str, payload: dict[str, Any], options: IntegrationRequestOptions
    ) -> dict[str, Any]:
        if endpoint in ("submitClaim", "submitPortal"):
            prefix = "PY" if endpoint == "submitClaim" else "PT"
            return {
                "success": True,
                "data": {"tracking_number": f"{prefix}-{options.correlation_id[:12].upper()}"},
            }
        if endpoint == "checkClaimStatus":
            return {
                "success": True,
                "data": {"status": "PENDING", "details": {"message": "In process"}},
            }
        logger.warning(f"No demo response for payer endpoint {endpoint}")
        return {"success": False, "error": f"Unknown endpoint {endpoint}"}
