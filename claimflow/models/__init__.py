"""SQLAlchemy ORM models for claims, payers, services and history."""

from claimflow.models.base import Base
from claimflow.models.claim import (
    Claim,
    ClaimServiceLine,
    ClaimStatusHistory,
    ClaimSubmissionHistory,
    Payer,
    Service,
)

__all__ = [
    "Base",
    "Claim",
    "ClaimServiceLine",
    "ClaimStatusHistory",
    "ClaimSubmissionHistory",
    "Payer",
    "Service",
]
