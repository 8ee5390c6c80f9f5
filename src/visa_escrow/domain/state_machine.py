"""State machine guards for milestones, escrow accounts and cases.

Uses python-statemachine to enforce legal state transitions at the domain level.
Entities never assign a status directly: they fire a named event on a guard
instantiated at the current status, and an illegal event raises the domain's
InvalidStateTransitionError (or InvalidMilestoneStateError) instead of
statemachine's TransitionNotAllowed.

Milestone transition table:
    pending     -> submitted       (submit)
    rejected    -> submitted       (submit)
    submitted   -> approved        (approve)
    submitted   -> rejected        (reject)
    approved    -> released        (mark_released)
    any open    -> released        (arbitrated_release)

Escrow transition table:
    unfunded            -> funded               (fund)
    funded|partial      -> partially_released   (release_partial)
    funded|partial      -> fully_released       (release_final)
    funded|partial      -> on_hold              (place_hold)
    on_hold             -> funded               (lift_hold_funded)
    on_hold             -> partially_released   (lift_hold_partial)
    on_hold             -> fully_released       (settle_released)
    funded|partial|hold -> refunded             (settle_refunded)
    funded|partial|hold -> (same state)         (refund_partial)

Case transition table:
    active              -> disputed             (open_dispute)
    disputed            -> active               (resume)
    active|disputed     -> completed            (complete)
    active|disputed     -> cancelled            (cancel)
"""

from __future__ import annotations

from statemachine import State, StateMachine
from statemachine.exceptions import TransitionNotAllowed

from visa_escrow.domain.exceptions import (
    InvalidMilestoneStateError,
    InvalidStateTransitionError,
)


class _StatusGuard:
    """Shared construction and helpers for the status guards below."""

    entity = "entity"

    def __init__(self, current_status: str) -> None:
        """Initialize the state machine at a given status.

        Args:
            current_status: The current status value (e.g., "funded").
                           Must match one of the State value strings exactly.
        """
        valid_values = {s.value for s in self.states}
        if current_status not in valid_values:
            valid = ", ".join(sorted(valid_values))
            raise ValueError(
                f"Unknown {self.entity} status '{current_status}'. Valid states: {valid}"
            )
        # start_value expects the string value, not the State object
        super().__init__(start_value=current_status)

    @property
    def status(self) -> str:
        """Return the current state value as a string (matches the status enum)."""
        return str(self.current_state.value)

    def get_allowed_events(self) -> list[str]:
        """Return a list of event names that can fire from the current state."""
        return [event.name for event in self.allowed_events]


class MilestoneStateMachine(_StatusGuard, StateMachine):
    entity = "milestone"

    pending = State("Pending", value="pending", initial=True)
    submitted = State("Submitted", value="submitted")
    approved = State("Approved", value="approved")
    rejected = State("Rejected", value="rejected")
    released = State("Released", value="released", final=True)

    submit = pending.to(submitted) | rejected.to(submitted)
    approve = submitted.to(approved)
    reject = submitted.to(rejected)
    mark_released = approved.to(released)

    # Dispute settled in the agent's favour: funds already left escrow.
    arbitrated_release = (
        pending.to(released)
        | submitted.to(released)
        | approved.to(released)
        | rejected.to(released)
    )


class EscrowStateMachine(_StatusGuard, StateMachine):
    entity = "escrow"

    unfunded = State("Unfunded", value="unfunded", initial=True)
    funded = State("Funded", value="funded")
    partially_released = State("Partially released", value="partially_released")
    on_hold = State("On hold", value="on_hold")
    fully_released = State("Fully released", value="fully_released", final=True)
    refunded = State("Refunded", value="refunded", final=True)

    # Funding
    fund = unfunded.to(funded)

    # Milestone releases
    release_partial = funded.to(partially_released) | partially_released.to.itself()
    release_final = funded.to(fully_released) | partially_released.to(fully_released)

    # Disputes
    place_hold = funded.to(on_hold) | partially_released.to(on_hold)
    lift_hold_funded = on_hold.to(funded)
    lift_hold_partial = on_hold.to(partially_released)
    settle_released = on_hold.to(fully_released)

    # Refunds
    settle_refunded = (
        funded.to(refunded) | partially_released.to(refunded) | on_hold.to(refunded)
    )
    refund_partial = (
        funded.to.itself() | partially_released.to.itself() | on_hold.to.itself()
    )


class CaseStateMachine(_StatusGuard, StateMachine):
    entity = "case"

    active = State("Active", value="active", initial=True)
    disputed = State("Disputed", value="disputed")
    completed = State("Completed", value="completed", final=True)
    cancelled = State("Cancelled", value="cancelled", final=True)

    open_dispute = active.to(disputed)
    resume = disputed.to(active)
    complete = active.to(completed) | disputed.to(completed)
    cancel = active.to(cancelled) | disputed.to(cancelled)


def advance(
    machine_cls: type[_StatusGuard],
    current_status: str,
    event_name: str,
) -> str:
    """Fire ``event_name`` on a guard at ``current_status`` and return the new status.

    Raises:
        InvalidMilestoneStateError: for an illegal milestone transition.
        InvalidStateTransitionError: for an illegal escrow or case transition.
        ValueError: if the status or event name is unknown.
    """
    sm = machine_cls(current_status)

    event_method = getattr(sm, event_name, None)
    if event_method is None or not callable(event_method):
        raise ValueError(
            f"Unknown event '{event_name}'. "
            f"Allowed events from {current_status}: {sm.get_allowed_events()}"
        )

    try:
        event_method()
    except TransitionNotAllowed as err:
        if machine_cls is MilestoneStateMachine:
            raise InvalidMilestoneStateError(current_status, event_name) from err
        raise InvalidStateTransitionError(machine_cls.entity, current_status, event_name) from err
    return sm.status
