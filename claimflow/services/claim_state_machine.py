"""
Claim Status State Machine.

Provides:
- Valid status transitions
- Transition validation
- Legal path search for reconciling external statuses
- Status labels and colors

Source: Design Document Section 4.1 - Claim Status State Machine
Verified: 2026-10-16

State Diagram:
    DRAFT -> VALIDATED | VOID
    VALIDATED -> SUBMITTED | DRAFT | VOID
    SUBMITTED -> ACKNOWLEDGED | DENIED | VOID
    ACKNOWLEDGED -> PENDING | DENIED | VOID
    PENDING -> PAID | DENIED | VOID
    PAID -> VOID
    DENIED -> APPEALED | VOID
    APPEALED -> PENDING | FINAL_DENIED | VOID
    FINAL_DENIED -> VOID
    VOID (terminal)

PARTIAL_PAID has no edges unless the partial payment extension is enabled:
    PENDING -> PARTIAL_PAID
    PARTIAL_PAID -> PAID | DENIED | VOID
"""

import logging
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional
from uuid import UUID

from claimflow.core.config import get_claims_settings
from claimflow.core.enums import ClaimStatus
from claimflow.schemas.results import TransitionOption
from claimflow.utils.errors import InvalidStatusTransitionError

if TYPE_CHECKING:
    from claimflow.repositories.base import ClaimRepository
    from claimflow.schemas.claim import ClaimRecord

logger = logging.getLogger(__name__)


class TransitionEvent(str, Enum):
    """Events that trigger state transitions."""

    VALIDATE = "validate"
    SUBMIT = "submit"
    REOPEN = "reopen"
    ACKNOWLEDGE = "acknowledge"
    START_ADJUDICATION = "start_adjudication"
    PAY = "pay"
    PARTIAL_PAY = "partial_pay"
    DENY = "deny"
    APPEAL = "appeal"
    FINAL_DENY = "final_deny"
    VOID = "void"


@dataclass(frozen=True)
class Transition:
    """Represents a valid state transition."""

    from_status: ClaimStatus
    to_status: ClaimStatus
    event: TransitionEvent
    requires_reason: bool = False
    auto_transition: bool = False  # Triggered by the system, not a user


# Statuses that record a decision; never inferred on the way to another status
DECISION_STATUSES = (ClaimStatus.VOID, ClaimStatus.DENIED, ClaimStatus.APPEALED)


# =============================================================================
# Valid Transitions Definition
# =============================================================================


def _void(from_status: ClaimStatus) -> Transition:
    return Transition(from_status, ClaimStatus.VOID, TransitionEvent.VOID)


VALID_TRANSITIONS: list[Transition] = [
    # From DRAFT
    Transition(ClaimStatus.DRAFT, ClaimStatus.VALIDATED, TransitionEvent.VALIDATE, auto_transition=True),
    _void(ClaimStatus.DRAFT),

    # From VALIDATED
    Transition(ClaimStatus.VALIDATED, ClaimStatus.SUBMITTED, TransitionEvent.SUBMIT),
    Transition(ClaimStatus.VALIDATED, ClaimStatus.DRAFT, TransitionEvent.REOPEN),
    _void(ClaimStatus.VALIDATED),

    # From SUBMITTED
    Transition(ClaimStatus.SUBMITTED, ClaimStatus.ACKNOWLEDGED, TransitionEvent.ACKNOWLEDGE, auto_transition=True),
    Transition(ClaimStatus.SUBMITTED, ClaimStatus.DENIED, TransitionEvent.DENY, requires_reason=True),
    _void(ClaimStatus.SUBMITTED),

    # From ACKNOWLEDGED
    Transition(ClaimStatus.ACKNOWLEDGED, ClaimStatus.PENDING, TransitionEvent.START_ADJUDICATION, auto_transition=True),
    Transition(ClaimStatus.ACKNOWLEDGED, ClaimStatus.DENIED, TransitionEvent.DENY, requires_reason=True),
    _void(ClaimStatus.ACKNOWLEDGED),

    # From PENDING
    Transition(ClaimStatus.PENDING, ClaimStatus.PAID, TransitionEvent.PAY),
    Transition(ClaimStatus.PENDING, ClaimStatus.DENIED, TransitionEvent.DENY, requires_reason=True),
    _void(ClaimStatus.PENDING),

    # From PAID
    _void(ClaimStatus.PAID),

    # From DENIED
    Transition(ClaimStatus.DENIED, ClaimStatus.APPEALED, TransitionEvent.APPEAL),
    _void(ClaimStatus.DENIED),

    # From APPEALED
    Transition(ClaimStatus.APPEALED, ClaimStatus.PENDING, TransitionEvent.START_ADJUDICATION),
    Transition(ClaimStatus.APPEALED, ClaimStatus.FINAL_DENIED, TransitionEvent.FINAL_DENY, requires_reason=True),
    _void(ClaimStatus.APPEALED),

    # From FINAL_DENIED
    _void(ClaimStatus.FINAL_DENIED),
]


PARTIAL_PAYMENT_TRANSITIONS: list[Transition] = [
    Transition(ClaimStatus.PENDING, ClaimStatus.PARTIAL_PAID, TransitionEvent.PARTIAL_PAY),
    Transition(ClaimStatus.PARTIAL_PAID, ClaimStatus.PAID, TransitionEvent.PAY),
    Transition(ClaimStatus.PARTIAL_PAID, ClaimStatus.DENIED, TransitionEvent.DENY, requires_reason=True),
    _void(ClaimStatus.PARTIAL_PAID),
]


# =============================================================================
# State Machine
# =============================================================================


class ClaimStateMachine:
    """
    State machine for claim status transitions.

    Manages valid status transitions and validates transition requests.
    """

    def __init__(self, allow_partial_payment: bool = False):
        """
        Initialize state machine with transition map.

        Args:
            allow_partial_payment: Add the PARTIAL_PAID edges to the table
        """
        self.allow_partial_payment = allow_partial_payment
        self._transitions: dict[tuple[ClaimStatus, ClaimStatus], Transition] = {}
        self._from_status_map: dict[ClaimStatus, list[Transition]] = {}

        self._build_transition_maps()

    def _build_transition_maps(self) -> None:
        """Build lookup maps for transitions."""
        transitions = list(VALID_TRANSITIONS)
        if self.allow_partial_payment:
            transitions.extend(PARTIAL_PAYMENT_TRANSITIONS)

        for transition in transitions:
            self._transitions[(transition.from_status, transition.to_status)] = transition
            self._from_status_map.setdefault(transition.from_status, []).append(transition)

    def get_valid_transitions(self, status: ClaimStatus) -> list[Transition]:
        """Get all valid transitions from a given status."""
        return list(self._from_status_map.get(status, []))

    def get_next_statuses(self, status: ClaimStatus) -> list[ClaimStatus]:
        """Get all possible next statuses from current status."""
        return [t.to_status for t in self.get_valid_transitions(status)]

    def can_transition(self, from_status: ClaimStatus, to_status: ClaimStatus) -> bool:
        """Check if transition from one status to another is valid."""
        return (from_status, to_status) in self._transitions

    def get_transition(
        self, from_status: ClaimStatus, to_status: ClaimStatus
    ) -> Optional[Transition]:
        """Get the transition between two statuses, if legal."""
        return self._transitions.get((from_status, to_status))

    def ensure_transition(
        self, from_status: ClaimStatus, to_status: ClaimStatus
    ) -> Transition:
        """
        Get a legal transition or raise.

        Raises:
            InvalidStatusTransitionError: Transition not in the table
        """
        transition = self.get_transition(from_status, to_status)
        if transition is None:
            logger.warning(
                f"Rejected status transition {from_status.value} -> {to_status.value}"
            )
            raise InvalidStatusTransitionError(from_status, to_status)
        return transition

    async def execute_transition(
        self,
        repository: "ClaimRepository",
        claim_id: UUID,
        from_status: ClaimStatus,
        to_status: ClaimStatus,
        notes: Optional[str] = None,
        actor_id: Optional[UUID] = None,
        tx: Any = None,
    ) -> "ClaimRecord":
        """
        Validate and persist a transition.

        The write is conditional on the claim still being in from_status, so a
        concurrent writer makes this fail instead of both updates applying.

        Raises:
            InvalidStatusTransitionError: Transition not in the table
            StaleClaimStatusError: Status changed since it was read
        """
        self.ensure_transition(from_status, to_status)
        claim = await repository.update_status(
            claim_id,
            to_status,
            notes=notes,
            actor_id=actor_id,
            expected_status=from_status,
            tx=tx,
        )
        logger.info(
            f"Claim {claim_id} transitioned: {from_status.value} -> {to_status.value}"
        )
        return claim

    def is_terminal(self, status: ClaimStatus) -> bool:
        """Check if status has no outgoing transitions."""
        return not self._from_status_map.get(status)

    def find_path(
        self, from_status: ClaimStatus, to_status: ClaimStatus
    ) -> Optional[list[ClaimStatus]]:
        """
        Find the shortest sequence of legal transitions between two statuses.

        Decision statuses (VOID, DENIED, APPEALED) may end a path but are
        never passed through.

        Returns:
            Statuses to apply in order (excluding from_status), [] if already
            there, or None when unreachable
        """
        if from_status == to_status:
            return []

        previous: dict[ClaimStatus, ClaimStatus] = {}
        queue = deque([from_status])
        seen = {from_status}

        while queue:
            current = queue.popleft()
            for next_status in self.get_next_statuses(current):
                if next_status in seen:
                    continue
                if next_status in DECISION_STATUSES and next_status != to_status:
                    continue
                previous[next_status] = current
                if next_status == to_status:
                    path = [next_status]
                    while path[-1] in previous and previous[path[-1]] != from_status:
                        path.append(previous[path[-1]])
                    return list(reversed(path))
                seen.add(next_status)
                queue.append(next_status)

        return None

    def get_transition_options(self, status: ClaimStatus) -> list[TransitionOption]:
        """Get legal next statuses with labels and data requirements."""
        return [
            TransitionOption(
                status=t.to_status,
                label=get_status_display_name(t.to_status),
                color=get_status_color(t.to_status),
                requires_data=t.requires_reason,
            )
            for t in self.get_valid_transitions(status)
        ]


# =============================================================================
# Status Helpers
# =============================================================================


SUBMITTABLE_STATUSES = (ClaimStatus.DRAFT, ClaimStatus.VALIDATED)

OPEN_STATUSES = (
    ClaimStatus.SUBMITTED,
    ClaimStatus.ACKNOWLEDGED,
    ClaimStatus.PENDING,
    ClaimStatus.APPEALED,
    ClaimStatus.PARTIAL_PAID,
)


def is_submittable_status(status: ClaimStatus) -> bool:
    """Check if a claim in this status may be submitted."""
    return status in SUBMITTABLE_STATUSES


def is_open_status(status: ClaimStatus) -> bool:
    """Check if claim awaits a payer decision."""
    return status in OPEN_STATUSES


def is_finalized_status(status: ClaimStatus) -> bool:
    """Check if claim is finalized."""
    return status in (ClaimStatus.PAID, ClaimStatus.FINAL_DENIED, ClaimStatus.VOID)


def get_status_display_name(status: ClaimStatus) -> str:
    """Get human-readable status name."""
    display_names = {
        ClaimStatus.DRAFT: "Draft",
        ClaimStatus.VALIDATED: "Validated",
        ClaimStatus.SUBMITTED: "Submitted",
        ClaimStatus.ACKNOWLEDGED: "Acknowledged",
        ClaimStatus.PENDING: "Pending",
        ClaimStatus.PAID: "Paid",
        ClaimStatus.PARTIAL_PAID: "Partial Paid",
        ClaimStatus.DENIED: "Denied",
        ClaimStatus.APPEALED: "Appealed",
        ClaimStatus.FINAL_DENIED: "Final Denied",
        ClaimStatus.VOID: "Void",
    }
    return display_names.get(status, status.value)


def get_status_color(status: ClaimStatus) -> str:
    """Get status color for UI."""
    colors = {
        ClaimStatus.DRAFT: "info",
        ClaimStatus.VALIDATED: "success",
        ClaimStatus.SUBMITTED: "primary",
        ClaimStatus.ACKNOWLEDGED: "primary",
        ClaimStatus.PENDING: "warning",
        ClaimStatus.PAID: "success",
        ClaimStatus.PARTIAL_PAID: "warning",
        ClaimStatus.DENIED: "error",
        ClaimStatus.APPEALED: "warning",
        ClaimStatus.FINAL_DENIED: "error",
        ClaimStatus.VOID: "default",
    }
    return colors.get(status, "default")


# =============================================================================
# Singleton Instance
# =============================================================================


_state_machine: Optional[ClaimStateMachine] = None


def get_claim_state_machine() -> ClaimStateMachine:
    """Get singleton state machine instance configured from settings."""
    global _state_machine
    if _state_machine is None:
        _state_machine = ClaimStateMachine(
            allow_partial_payment=get_claims_settings().ENABLE_PARTIAL_PAYMENT_TRANSITIONS
        )
    return _state_machine
