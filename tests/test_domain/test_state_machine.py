"""Tests for the milestone, escrow and case state machine guards.

These tests verify that:
    1. All valid transitions are allowed.
    2. Invalid transitions are blocked with the domain's errors.
    3. The convenience function advance works.
    4. Terminal states accept nothing.
"""

from __future__ import annotations

import pytest
from statemachine.exceptions import TransitionNotAllowed

from visa_escrow.domain.exceptions import (
    InvalidMilestoneStateError,
    InvalidStateTransitionError,
)
from visa_escrow.domain.state_machine import (
    CaseStateMachine,
    EscrowStateMachine,
    MilestoneStateMachine,
    advance,
)


class TestMilestoneMachine:
    def test_happy_path(self) -> None:
        sm = MilestoneStateMachine("pending")
        sm.submit()
        assert sm.status == "submitted"
        sm.approve()
        assert sm.status == "approved"
        sm.mark_released()
        assert sm.status == "released"

    def test_reject_then_resubmit(self) -> None:
        sm = MilestoneStateMachine("submitted")
        sm.reject()
        assert sm.status == "rejected"
        sm.submit()
        assert sm.status == "submitted"

    def test_cannot_approve_pending(self) -> None:
        sm = MilestoneStateMachine("pending")
        with pytest.raises(TransitionNotAllowed):
            sm.approve()

    def test_released_is_terminal(self) -> None:
        sm = MilestoneStateMachine("released")
        assert sm.get_allowed_events() == []

    @pytest.mark.parametrize("status", ["pending", "submitted", "approved", "rejected"])
    def test_arbitrated_release_from_any_open_state(self, status: str) -> None:
        assert advance(MilestoneStateMachine, status, "arbitrated_release") == "released"


class TestEscrowMachine:
    def test_release_path(self) -> None:
        sm = EscrowStateMachine("unfunded")
        sm.fund()
        sm.release_partial()
        assert sm.status == "partially_released"
        sm.release_partial()
        assert sm.status == "partially_released"
        sm.release_final()
        assert sm.status == "fully_released"

    def test_hold_and_lift(self) -> None:
        assert advance(EscrowStateMachine, "partially_released", "place_hold") == "on_hold"
        assert advance(EscrowStateMachine, "on_hold", "lift_hold_partial") == "partially_released"
        assert advance(EscrowStateMachine, "on_hold", "lift_hold_funded") == "funded"

    def test_no_release_while_on_hold(self) -> None:
        with pytest.raises(InvalidStateTransitionError):
            advance(EscrowStateMachine, "on_hold", "release_partial")

    def test_cannot_hold_unfunded(self) -> None:
        with pytest.raises(InvalidStateTransitionError):
            advance(EscrowStateMachine, "unfunded", "place_hold")

    def test_cannot_fund_twice(self) -> None:
        with pytest.raises(InvalidStateTransitionError) as exc_info:
            advance(EscrowStateMachine, "funded", "fund")
        assert exc_info.value.code == "INVALID_STATE_TRANSITION"

    @pytest.mark.parametrize("status", ["fully_released", "refunded"])
    def test_terminal_states(self, status: str) -> None:
        assert EscrowStateMachine(status).get_allowed_events() == []


class TestCaseMachine:
    def test_dispute_round_trip(self) -> None:
        assert advance(CaseStateMachine, "active", "open_dispute") == "disputed"
        assert advance(CaseStateMachine, "disputed", "resume") == "active"

    def test_complete_and_cancel(self) -> None:
        assert advance(CaseStateMachine, "active", "complete") == "completed"
        assert advance(CaseStateMachine, "disputed", "cancel") == "cancelled"

    def test_cannot_reopen_completed(self) -> None:
        with pytest.raises(InvalidStateTransitionError):
            advance(CaseStateMachine, "completed", "open_dispute")


class TestAdvance:
    def test_milestone_errors_are_milestone_specific(self) -> None:
        with pytest.raises(InvalidMilestoneStateError) as exc_info:
            advance(MilestoneStateMachine, "pending", "approve")
        assert exc_info.value.code == "INVALID_MILESTONE_STATE"

    def test_unknown_status(self) -> None:
        with pytest.raises(ValueError, match="Unknown milestone status"):
            MilestoneStateMachine("lost")

    def test_unknown_event(self) -> None:
        with pytest.raises(ValueError, match="Unknown event"):
            advance(CaseStateMachine, "active", "explode")
