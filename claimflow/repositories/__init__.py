"""Storage collaborators for claims, payers and services."""

from claimflow.repositories.base import AdapterMode, ClaimRepository
from claimflow.repositories.memory import InMemoryClaimRepository

__all__ = ["AdapterMode", "ClaimRepository", "InMemoryClaimRepository"]
