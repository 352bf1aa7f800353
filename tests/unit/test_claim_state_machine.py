"""
Claim Status State Machine Tests.

Tests for:
- Transition table
- Partial payment extension
- Shortest legal path search
- Conditional transitions against the repository
"""

import pytest

from claimflow.core.enums import ClaimStatus
from claimflow.services.claim_state_machine import (
    ClaimStateMachine,
    get_status_color,
    get_status_display_name,
    is_finalized_status,
    is_open_status,
    is_submittable_status,
)
from claimflow.utils.errors import InvalidStatusTransitionError, StaleClaimStatusError

EXPECTED_TABLE = {
    ClaimStatus.DRAFT: {ClaimStatus.VALIDATED, ClaimStatus.VOID},
    ClaimStatus.VALIDATED: {ClaimStatus.SUBMITTED, ClaimStatus.DRAFT, ClaimStatus.VOID},
    ClaimStatus.SUBMITTED: {ClaimStatus.ACKNOWLEDGED, ClaimStatus.DENIED, ClaimStatus.VOID},
    ClaimStatus.ACKNOWLEDGED: {ClaimStatus.PENDING, ClaimStatus.DENIED, ClaimStatus.VOID},
    ClaimStatus.PENDING: {ClaimStatus.PAID, ClaimStatus.DENIED, ClaimStatus.VOID},
    ClaimStatus.PAID: {ClaimStatus.VOID},
    ClaimStatus.DENIED: {ClaimStatus.APPEALED, ClaimStatus.VOID},
    ClaimStatus.APPEALED: {ClaimStatus.PENDING, ClaimStatus.FINAL_DENIED, ClaimStatus.VOID},
    ClaimStatus.FINAL_DENIED: {ClaimStatus.VOID},
    ClaimStatus.VOID: set(),
    ClaimStatus.PARTIAL_PAID: set(),
}


@pytest.fixture
def state_machine():
    return ClaimStateMachine()


class TestTransitionTable:
    """Tests for the default transition table."""

    @pytest.mark.parametrize("status", list(ClaimStatus))
    def test_next_statuses_match_table(self, state_machine, status):
        """Test each status allows exactly its listed successors."""
        assert set(state_machine.get_next_statuses(status)) == EXPECTED_TABLE[status]

    def test_every_pair_agrees_with_can_transition(self, state_machine):
        """Test can_transition is true only for listed pairs."""
        for source in ClaimStatus:
            for target in ClaimStatus:
                expected = target in EXPECTED_TABLE[source]
                assert state_machine.can_transition(source, target) is expected

    def test_void_is_terminal(self, state_machine):
        """Test VOID has no outgoing transitions."""
        assert state_machine.is_terminal(ClaimStatus.VOID)
        assert not state_machine.is_terminal(ClaimStatus.PAID)

    def test_ensure_transition_rejects_illegal_pair(self, state_machine):
        """Test an illegal transition raises with both statuses."""
        with pytest.raises(InvalidStatusTransitionError) as exc_info:
            state_machine.ensure_transition(ClaimStatus.DRAFT, ClaimStatus.PAID)
        assert exc_info.value.context["current_status"] == "draft"
        assert exc_info.value.context["target_status"] == "paid"

    def test_denials_require_reason(self, state_machine):
        """Test deny edges are flagged as needing data."""
        options = {o.status: o for o in state_machine.get_transition_options(ClaimStatus.PENDING)}
        assert options[ClaimStatus.DENIED].requires_data is True
        assert options[ClaimStatus.PAID].requires_data is False
        assert options[ClaimStatus.PAID].label == "Paid"


class TestPartialPayment:
    """Tests for the optional PARTIAL_PAID edges."""

    def test_partial_paid_unreachable_by_default(self, state_machine):
        """Test PARTIAL_PAID is not reachable without the extension."""
        assert not state_machine.can_transition(ClaimStatus.PENDING, ClaimStatus.PARTIAL_PAID)
        assert state_machine.find_path(ClaimStatus.SUBMITTED, ClaimStatus.PARTIAL_PAID) is None

    def test_extension_adds_partial_paid_edges(self):
        """Test enabling the extension adds the partial payment edges."""
        machine = ClaimStateMachine(allow_partial_payment=True)
        assert machine.can_transition(ClaimStatus.PENDING, ClaimStatus.PARTIAL_PAID)
        assert set(machine.get_next_statuses(ClaimStatus.PARTIAL_PAID)) == {
            ClaimStatus.PAID,
            ClaimStatus.DENIED,
            ClaimStatus.VOID,
        }


class TestFindPath:
    """Tests for shortest legal path search."""

    def test_same_status_is_empty_path(self, state_machine):
        assert state_machine.find_path(ClaimStatus.PENDING, ClaimStatus.PENDING) == []

    def test_submitted_to_paid_walks_intermediate_steps(self, state_machine):
        """Test SUBMITTED -> PAID goes through ACKNOWLEDGED and PENDING."""
        path = state_machine.find_path(ClaimStatus.SUBMITTED, ClaimStatus.PAID)
        assert path == [ClaimStatus.ACKNOWLEDGED, ClaimStatus.PENDING, ClaimStatus.PAID]

    def test_direct_edge_is_single_step(self, state_machine):
        path = state_machine.find_path(ClaimStatus.SUBMITTED, ClaimStatus.DENIED)
        assert path == [ClaimStatus.DENIED]

    def test_path_never_passes_through_void(self, state_machine):
        """Test no path leaves a terminal status."""
        assert state_machine.find_path(ClaimStatus.VOID, ClaimStatus.PENDING) is None

    def test_void_allowed_as_destination(self, state_machine):
        assert state_machine.find_path(ClaimStatus.PAID, ClaimStatus.VOID) == [ClaimStatus.VOID]

    def test_unreachable_backwards(self, state_machine):
        """Test a paid claim cannot be reconciled back to pending."""
        assert state_machine.find_path(ClaimStatus.PAID, ClaimStatus.PENDING) is None

    def test_every_step_is_legal(self, state_machine):
        path = state_machine.find_path(ClaimStatus.DRAFT, ClaimStatus.PAID)
        assert path is not None
        current = ClaimStatus.DRAFT
        for step in path:
            assert state_machine.can_transition(current, step)
            current = step
        assert current == ClaimStatus.PAID

    def test_denied_claim_never_infers_an_appeal(self, state_machine):
        """Test DENIED -> PAID has no path without a filed appeal."""
        assert state_machine.find_path(ClaimStatus.DENIED, ClaimStatus.PAID) is None
        assert state_machine.find_path(ClaimStatus.PENDING, ClaimStatus.FINAL_DENIED) is None

    def test_appealed_claim_can_be_paid(self, state_machine):
        path = state_machine.find_path(ClaimStatus.APPEALED, ClaimStatus.PAID)
        assert path == [ClaimStatus.PENDING, ClaimStatus.PAID]


class TestExecuteTransition:
    """Tests for persisted, conditional transitions."""

    @pytest.mark.asyncio
    async def test_execute_writes_status_and_history(self, state_machine, repository, make_claim):
        claim = make_claim(status=ClaimStatus.VALIDATED)

        updated = await state_machine.execute_transition(
            repository, claim.id, ClaimStatus.VALIDATED, ClaimStatus.DRAFT, notes="Reopened"
        )

        assert updated.status == ClaimStatus.DRAFT
        history = await repository.get_status_history(claim.id)
        assert history[-1].status == ClaimStatus.DRAFT
        assert history[-1].notes == "Reopened"

    @pytest.mark.asyncio
    async def test_execute_rejects_illegal_transition_without_writing(
        self, state_machine, repository, make_claim
    ):
        claim = make_claim(status=ClaimStatus.DRAFT)

        with pytest.raises(InvalidStatusTransitionError):
            await state_machine.execute_transition(
                repository, claim.id, ClaimStatus.DRAFT, ClaimStatus.PAID
            )

        stored = await repository.find_by_id(claim.id)
        assert stored.status == ClaimStatus.DRAFT
        assert len(await repository.get_status_history(claim.id)) == 1

    @pytest.mark.asyncio
    async def test_stale_expected_status_loses(self, state_machine, repository, make_claim):
        """Test a writer holding an old status cannot overwrite a newer one."""
        claim = make_claim(status=ClaimStatus.PENDING)
        await state_machine.execute_transition(
            repository, claim.id, ClaimStatus.PENDING, ClaimStatus.PAID
        )

        with pytest.raises(StaleClaimStatusError):
            await state_machine.execute_transition(
                repository, claim.id, ClaimStatus.PENDING, ClaimStatus.DENIED
            )

        stored = await repository.find_by_id(claim.id)
        assert stored.status == ClaimStatus.PAID


class TestStatusHelpers:
    """Tests for status classification helpers."""

    def test_submittable_statuses(self):
        assert is_submittable_status(ClaimStatus.DRAFT)
        assert is_submittable_status(ClaimStatus.VALIDATED)
        assert not is_submittable_status(ClaimStatus.DENIED)
        assert not is_submittable_status(ClaimStatus.PAID)

    def test_open_and_finalized(self):
        assert is_open_status(ClaimStatus.ACKNOWLEDGED)
        assert not is_open_status(ClaimStatus.PAID)
        assert is_finalized_status(ClaimStatus.FINAL_DENIED)
        assert not is_finalized_status(ClaimStatus.DENIED)

    def test_labels_and_colors(self):
        assert get_status_display_name(ClaimStatus.FINAL_DENIED) == "Final Denied"
        assert get_status_color(ClaimStatus.DENIED) == "error"
        assert get_status_color(ClaimStatus.VOID) == "default"
