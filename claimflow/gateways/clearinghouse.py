"""
Clearinghouse Gateway.

Submits electronic claims (singly or per payer group) and queries claim
status. Payload encoding (X12 837/277) is the clearinghouse's concern; this
gateway exchanges JSON envelopes.
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


class ClearinghouseGateway(BaseIntegrationGateway):
    """Clearinghouse integration."""

    @property
    def service_name(self) -> str:
        return "ClearinghouseIntegration"

    @property
    def base_url(self) -> str:
        return self.settings.CLEARINGHOUSE_BASE_URL

    def _auth_headers(self) -> dict[str, str]:
        if self.settings.CLEARINGHOUSE_API_KEY:
            return {"Authorization": f"Bearer {self.settings.CLEARINGHOUSE_API_KEY}"}
        return {}

    async def submit_claim(
        self,
        payer_id: UUID,
        claim: dict[str, Any],
        options: Optional[IntegrationRequestOptions] = None,
    ) -> IntegrationResponse:
        """Submit one claim. Data carries tracking_number on success."""
        return await self.request(
            "submitClaim",
            "POST",
            "/claims",
            {"payer_id": str(payer_id), "claim": claim},
            options,
        )

    async def submit_batch(
        self,
        payer_id: UUID,
        claims: list[dict[str, Any]],
        options: Optional[IntegrationRequestOptions] = None,
    ) -> IntegrationResponse:
        """
        Submit a group of claims for one payer in a single call.

        Data carries "results": one entry per claim with claim_id, success,
        tracking_number and error.
        """
        return await self.request(
            "submitBatch",
            "POST",
            "/claims/batch",
            {"payer_id": str(payer_id), "claims": claims},
            options,
        )

    async def check_status(
        self,
        external_claim_id: str,
        claim_id: UUID,
        options: Optional[IntegrationRequestOptions] = None,
    ) -> IntegrationResponse:
        """Query claim status. Data carries status (external code) and details."""
        return await self.request(
            "checkClaimStatus",
            "GET",
            f"/claims/{external_claim_id}/status?claim_id={claim_id}",
            None,
            options,
        )

    async def _simulate(
        self, endpoint: str, payload: dict[str, Any], options: IntegrationRequestOptions
    ) -> dict[str, Any]:
        # Tracking numbers derive from the correlation id so retries stay idempotent
        if endpoint == "submitClaim":
            return {
                "success": True,
                "data": {
                    "tracking_number": f"CH-{options.correlation_id[:12].upper()}",
                    "accepted": True,
                },
            }
        if endpoint == "submitBatch":
            results = []
            for index, claim in enumerate(payload.get("claims", []), start=1):
                results.append(
                    {
                        "claim_id": claim.get("claim_id"),
                        "success": True,
                        "tracking_number": f"CH-{options.correlation_id[:8].upper()}-{index:04d}",
                    }
                )
            return {"success": True, "data": {"results": results}}
        if endpoint == "checkClaimStatus":
            return {
                "success": True,
                "data": {"status": "A2", "details": {"message": "Accepted for adjudication"}},
            }
        logger.warning(f"No demo response for clearinghouse endpoint {endpoint}")
        return {"success": False, "error": f"Unknown endpoint {endpoint}"}
