"""Outbound integration gateways (clearinghouse and payer-direct)."""

from claimflow.gateways.base import (
    BaseIntegrationGateway,
    IntegrationRequestOptions,
    IntegrationResponse,
)
from claimflow.gateways.clearinghouse import ClearinghouseGateway
from claimflow.gateways.payer import PayerGateway

__all__ = [
    "BaseIntegrationGateway",
    "ClearinghouseGateway",
    "IntegrationRequestOptions",
    "IntegrationResponse",
    "PayerGateway",
]
