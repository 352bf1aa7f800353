"""
Claim Lifecycle Error Taxonomy.

Provides:
- NotFoundError: claim, service or payer absent (terminal, never retried)
- ClaimValidationFailedError: carries the full error/warning list
- InvalidStatusTransitionError: current/target status in context
- IntegrationError: outbound adapter failure after the retry budget
- BusinessRuleError: operation not permitted for the claim's state or payer

Errors are transport-agnostic. The API layer maps them to status codes.

Source: Design Document Section 7 - Error Handling
Verified: 2026-10-16
"""

from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:
    from claimflow.core.enums import ClaimStatus
    from claimflow.schemas.results import ValidationResult


class ClaimsError(Exception):
    """Base exception for claim lifecycle errors."""

    code: str = "CLAIMS_ERROR"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        context: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.context = context or {}

    def to_dict(self) -> dict[str, Any]:
        """Serialize for logs and job results."""
        return {"code": self.code, "message": self.message, "context": self.context}


class NotFoundError(ClaimsError):
    """Raised when a claim, service or payer does not exist."""

    code = "NOT_FOUND"

    def __init__(self, resource: str, resource_id: Any):
        super().__init__(
            f"{resource} not found: {resource_id}",
            context={"resource": resource, "id": str(resource_id)},
        )
        self.resource = resource
        self.resource_id = resource_id


class ClaimValidationFailedError(ClaimsError):
    """Raised when a claim fails validation and an operation cannot proceed."""

    code = "VALIDATION_FAILED"

    def __init__(self, result: "ValidationResult", message: Optional[str] = None):
        super().__init__(
            message or f"Claim {result.claim_id} failed validation "
            f"with {result.error_count} error(s)",
            context={
                "claim_id": str(result.claim_id),
                "errors": [issue.to_dict() for issue in result.errors],
                "warnings": [issue.to_dict() for issue in result.warnings],
            },
        )
        self.result = result

    @property
    def errors(self) -> list:
        return self.result.errors

    @property
    def warnings(self) -> list:
        return self.result.warnings


class InvalidStatusTransitionError(ClaimsError):
    """Raised when a status transition is not in the transition table."""

    code = "INVALID_STATUS_TRANSITION"

    def __init__(
        self,
        current_status: "ClaimStatus",
        target_status: "ClaimStatus",
        message: Optional[str] = None,
    ):
        super().__init__(
            message
            or f"Invalid status transition from {current_status.value} "
            f"to {target_status.value}",
            context={
                "current_status": current_status.value,
                "target_status": target_status.value,
            },
        )
        self.current_status = current_status
        self.target_status = target_status


class StaleClaimStatusError(InvalidStatusTransitionError):
    """Raised when a concurrent writer changed the status first (CAS miss)."""

    code = "STALE_CLAIM_STATUS"

    def __init__(
        self,
        expected_status: "ClaimStatus",
        actual_status: "ClaimStatus",
        target_status: "ClaimStatus",
    ):
        super().__init__(
            actual_status,
            target_status,
            message=f"Claim status changed concurrently: expected "
            f"{expected_status.value}, found {actual_status.value}",
        )
        self.expected_status = expected_status
        self.context["expected_status"] = expected_status.value


class IntegrationError(ClaimsError):
    """Raised when an outbound integration fails after retries or times out."""

    code = "INTEGRATION_ERROR"

    def __init__(
        self,
        message: str,
        service: str,
        endpoint: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        super().__init__(
            message,
            context={"service": service, "endpoint": endpoint},
        )
        self.service = service
        self.endpoint = endpoint
        self.original_error = original_error


class BusinessRuleError(ClaimsError):
    """Raised when an operation violates a business rule."""

    code = "BUSINESS_RULE_VIOLATION"


class StorageUnavailableError(ClaimsError):
    """Raised when the storage layer cannot be reached.

    Batch operations re-raise this instead of recording a per-item failure.
    """

    code = "STORAGE_UNAVAILABLE"
