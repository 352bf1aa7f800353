"""
Core Enumerations for the Claim Lifecycle.
Source: Design Document Sections 3 and 4.1
Verified: 2026-10-16
"""

from enum import Enum


# =============================================================================
# Claim Enums
# =============================================================================


class ClaimStatus(str, Enum):
    """Claim lifecycle status."""

    DRAFT = "draft"
    VALIDATED = "validated"
    SUBMITTED = "submitted"
    ACKNOWLEDGED = "acknowledged"
    PENDING = "pending"
    PAID = "paid"
    PARTIAL_PAID = "partial_paid"
    DENIED = "denied"
    APPEALED = "appealed"
    FINAL_DENIED = "final_denied"
    VOID = "void"


class ClaimType(str, Enum):
    """Type of claim being billed."""

    ORIGINAL = "original"
    ADJUSTMENT = "adjustment"  # Requires original_claim_id
    REPLACEMENT = "replacement"  # Requires original_claim_id
    VOID = "void"


class SubmissionMethod(str, Enum):
    """Channel used to deliver a claim to the payer."""

    ELECTRONIC = "electronic"
    CLEARINGHOUSE = "clearinghouse"
    DIRECT = "direct"
    PORTAL = "portal"
    PAPER = "paper"


class SubmissionFormat(str, Enum):
    """Payer-accepted claim format."""

    EDI_837P = "EDI_837P"
    EDI_837I = "EDI_837I"
    CMS_1500 = "CMS_1500"
    UB_04 = "UB_04"
    PROPRIETARY = "proprietary"


class SubmissionAction(str, Enum):
    """Kind of entry written to the submission history."""

    SUBMITTED = "submitted"
    STATUS_CHECK = "status_check"
    RESUBMITTED = "resubmitted"


class DenialReason(str, Enum):
    """Standardized payer denial reasons."""

    DUPLICATE_CLAIM = "duplicate_claim"
    SERVICE_NOT_COVERED = "service_not_covered"
    AUTHORIZATION_MISSING = "authorization_missing"
    AUTHORIZATION_INVALID = "authorization_invalid"
    CLIENT_INELIGIBLE = "client_ineligible"
    PROVIDER_INELIGIBLE = "provider_ineligible"
    TIMELY_FILING = "timely_filing"
    INVALID_CODING = "invalid_coding"
    MISSING_INFORMATION = "missing_information"
    OTHER = "other"


# =============================================================================
# Payer and Service Enums
# =============================================================================


class PayerType(str, Enum):
    """Payer program category."""

    MEDICAID = "medicaid"
    MEDICARE = "medicare"
    PRIVATE_INSURANCE = "private_insurance"
    MANAGED_CARE = "managed_care"
    SELF_PAY = "self_pay"
    GRANT = "grant"
    OTHER = "other"


class RecordStatus(str, Enum):
    """Activity status of a reference record (payer)."""

    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"


class DocumentationStatus(str, Enum):
    """Completeness of a rendered service's documentation."""

    PENDING = "pending"
    INCOMPLETE = "incomplete"
    COMPLETE = "complete"
    APPROVED = "approved"


class BillingStatus(str, Enum):
    """Billing ownership flag of a service record."""

    UNBILLED = "unbilled"
    READY_FOR_BILLING = "ready_for_billing"
    IN_CLAIM = "in_claim"
    BILLED = "billed"


# =============================================================================
# Validation Enums
# =============================================================================


class ValidationErrorCode(str, Enum):
    """Codes attached to validation errors and warnings."""

    MISSING_REQUIRED_FIELD = "MISSING_REQUIRED_FIELD"
    INVALID_INPUT = "INVALID_INPUT"
    INVALID_DATE_RANGE = "INVALID_DATE_RANGE"
    FUTURE_DATE = "FUTURE_DATE"
    BUSINESS_RULE_VIOLATION = "BUSINESS_RULE_VIOLATION"
    DOCUMENTATION_INCOMPLETE = "DOCUMENTATION_INCOMPLETE"
    SERVICE_ALREADY_CLAIMED = "SERVICE_ALREADY_CLAIMED"
    DUPLICATE_SERVICE = "DUPLICATE_SERVICE"
    AMOUNT_MISMATCH = "AMOUNT_MISMATCH"
    PAYER_INACTIVE = "PAYER_INACTIVE"
    PAYER_REQUIREMENT_MISSING = "PAYER_REQUIREMENT_MISSING"
    SUBMISSION_CONFIG_MISSING = "SUBMISSION_CONFIG_MISSING"
    TIMELY_FILING_EXCEEDED = "TIMELY_FILING_EXCEEDED"
    TIMELY_FILING_APPROACHING = "TIMELY_FILING_APPROACHING"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class ValidationSeverity(str, Enum):
    """Severity of a validation issue."""

    ERROR = "error"  # Blocks validation
    WARNING = "warning"  # Informational only


# =============================================================================
# Operational Enums
# =============================================================================


class IntegrationMode(str, Enum):
    """System integration mode."""

    DEMO = "demo"  # Demo mode: in-memory storage, simulated external systems
    LIVE = "live"  # Live mode: database storage, real external integrations


class JobType(str, Enum):
    """Background job types handed to the scheduler."""

    CLAIM_SUBMISSION = "claim-submission"
    CLAIM_STATUS_REFRESH = "claim-status-refresh"


class NotificationSeverity(str, Enum):
    """Severity of operator notifications."""

    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class RiskLevel(str, Enum):
    """Aging risk level for an open claim."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class EndpointStatus(str, Enum):
    """Health status of an outbound integration endpoint."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"
