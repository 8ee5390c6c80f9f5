"""Case aggregate: the work contract between a client and an agent.

A Case exclusively owns its ordered milestones, its escrow account and its
dispute history. It is mutated only by the workflow engine, which loads the
whole aggregate, calls the methods below and writes it back in one
transaction.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import TYPE_CHECKING

from visa_escrow.domain.enums import (
    CaseStatus,
    DispositionType,
    DisputeStatus,
    EscrowStatus,
    Role,
)
from visa_escrow.domain.escrow_account import Disposition, EscrowAccount, Settlement
from visa_escrow.domain.exceptions import (
    AlreadyOnHoldError,
    InvalidAmountError,
    InvalidStateTransitionError,
    MilestoneIndexError,
    MilestoneSumMismatchError,
)
from visa_escrow.domain.milestone import Milestone, MilestoneSpec
from visa_escrow.domain.money import Money, add, total
from visa_escrow.domain.state_machine import CaseStateMachine, advance

if TYPE_CHECKING:
    from collections.abc import Sequence
    from datetime import datetime

_RESOLVED_STATUS = {
    DispositionType.RELEASE_TO_AGENT: DisputeStatus.RESOLVED_RELEASE,
    DispositionType.REFUND_TO_CLIENT: DisputeStatus.RESOLVED_REFUND,
    DispositionType.SPLIT: DisputeStatus.RESOLVED_SPLIT,
}


@dataclass
class Dispute:
    """A dispute raised on a case. Kept as history after resolution."""

    raised_by: uuid.UUID
    raised_by_role: Role
    reason: str
    held_amount: Money
    description: str = ""
    evidence: list[str] = field(default_factory=list)
    status: DisputeStatus = DisputeStatus.OPEN
    resolved_by: uuid.UUID | None = None
    released_amount: Money | None = None
    refunded_amount: Money | None = None
    agent_percent: Decimal | None = None
    created_at: datetime | None = None
    resolved_at: datetime | None = None
    id: uuid.UUID = field(default_factory=uuid.uuid4)

    @property
    def is_open(self) -> bool:
        return self.status == DisputeStatus.OPEN

    def resolve(
        self,
        disposition: Disposition,
        resolver: uuid.UUID,
        settlement: Settlement,
        now: datetime,
    ) -> None:
        if not self.is_open:
            raise InvalidStateTransitionError("dispute", self.status.value, "resolve")
        self.status = _RESOLVED_STATUS[disposition.type]
        self.resolved_by = resolver
        self.released_amount = settlement.released
        self.refunded_amount = settlement.refunded
        self.agent_percent = disposition.agent_percent
        self.resolved_at = now


@dataclass
class Case:
    client_id: uuid.UUID
    agent_id: uuid.UUID
    escrow: EscrowAccount
    milestones: list[Milestone]
    title: str = ""
    proposal_id: uuid.UUID | None = None
    status: CaseStatus = CaseStatus.ACTIVE
    disputes: list[Dispute] = field(default_factory=list)
    cancellation_reason: str | None = None
    created_at: datetime | None = None
    completed_at: datetime | None = None
    cancelled_at: datetime | None = None
    version: int | None = None
    id: uuid.UUID = field(default_factory=uuid.uuid4)

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def create_with_milestones(
        cls,
        client_id: uuid.UUID,
        agent_id: uuid.UUID,
        specs: Sequence[MilestoneSpec],
        funded_total: Money,
        now: datetime,
        title: str = "",
        proposal_id: uuid.UUID | None = None,
        case_id: uuid.UUID | None = None,
        escrow_id: uuid.UUID | None = None,
    ) -> Case:
        """Build a case and its unfunded escrow account.

        Raises:
            InvalidAmountError: no milestones, or a milestone of zero.
            MilestoneSumMismatchError: amounts do not sum to ``funded_total``.
        """
        if not specs:
            raise InvalidAmountError("A case needs at least one milestone")
        for spec in specs:
            if spec.amount.is_zero:
                raise InvalidAmountError(f"Milestone '{spec.title}' must have a positive amount")

        milestone_total = total([s.amount for s in specs], funded_total.currency)
        if milestone_total != funded_total:
            raise MilestoneSumMismatchError(milestone_total.amount, funded_total.amount)

        case_id = case_id or uuid.uuid4()
        milestones = [
            Milestone(index=i, title=s.title, amount=s.amount, description=s.description)
            for i, s in enumerate(specs)
        ]
        escrow = EscrowAccount(
            id=escrow_id or uuid.uuid4(),
            case_id=case_id,
            currency=funded_total.currency,
            created_at=now,
        )
        return cls(
            id=case_id,
            client_id=client_id,
            agent_id=agent_id,
            escrow=escrow,
            milestones=milestones,
            title=title,
            proposal_id=proposal_id,
            created_at=now,
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def milestone(self, index: int) -> Milestone:
        for m in self.milestones:
            if m.index == index:
                return m
        raise MilestoneIndexError(str(self.id), index)

    @property
    def active_dispute(self) -> Dispute | None:
        return next((d for d in self.disputes if d.is_open), None)

    @property
    def is_terminal(self) -> bool:
        return self.status in (CaseStatus.COMPLETED, CaseStatus.CANCELLED)

    def role_of(self, actor_id: uuid.UUID) -> Role | None:
        """Return the party role ``actor_id`` plays on this case, if any."""
        if actor_id == self.client_id:
            return Role.CLIENT
        if actor_id == self.agent_id:
            return Role.AGENT
        return None

    # ------------------------------------------------------------------
    # Disputes
    # ------------------------------------------------------------------

    def raise_dispute(
        self,
        reason: str,
        raised_by: uuid.UUID,
        raised_by_role: Role,
        now: datetime,
        description: str = "",
        evidence: Sequence[str] = (),
    ) -> Dispute:
        """Open a dispute and freeze every available fund on the escrow."""
        if self.active_dispute is not None or self.escrow.status == EscrowStatus.ON_HOLD:
            raise AlreadyOnHoldError(str(self.escrow.id))
        new_status = advance(CaseStateMachine, self.status.value, "open_dispute")

        held = self.escrow.hold()
        dispute = Dispute(
            raised_by=raised_by,
            raised_by_role=raised_by_role,
            reason=reason,
            description=description,
            evidence=list(evidence),
            held_amount=held,
            created_at=now,
        )
        self.disputes.append(dispute)
        self.status = CaseStatus(new_status)
        return dispute

    def resolve_dispute(
        self,
        disposition: Disposition,
        resolver: uuid.UUID,
        now: datetime,
    ) -> Settlement:
        """Settle the open dispute and move the case on.

        The case returns to active while escrow funds remain available.
        Otherwise, if everything went to the agent, every outstanding milestone
        is settled by arbitration and the case completes; any refund cancels it.
        """
        dispute = self.active_dispute
        if self.status != CaseStatus.DISPUTED or dispute is None:
            raise InvalidStateTransitionError("case", self.status.value, "resolve_dispute")

        settlement = self.escrow.resolve_hold(disposition)
        dispute.resolve(disposition, resolver, settlement, now)

        if not self.escrow.available.is_zero:
            self.status = CaseStatus(advance(CaseStateMachine, self.status.value, "resume"))
        elif self.escrow.status == EscrowStatus.FULLY_RELEASED:
            for m in self.milestones:
                if not m.is_released:
                    m.arbitrated_release(now)
            self.status = CaseStatus(advance(CaseStateMachine, self.status.value, "resume"))
            self.check_completion(now)
        else:
            self._close_cancelled(f"dispute resolved: {disposition.type.value}", now)
        return settlement

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def check_completion(self, now: datetime) -> bool:
        """Complete the case once every milestone is released."""
        if self.status != CaseStatus.ACTIVE:
            return False
        if not all(m.is_released for m in self.milestones):
            return False
        if self.escrow.status != EscrowStatus.FULLY_RELEASED:
            raise RuntimeError(
                f"Case {self.id} has all milestones released but escrow is {self.escrow.status}"
            )
        self.status = CaseStatus(advance(CaseStateMachine, self.status.value, "complete"))
        self.completed_at = now
        return True

    def cancel(self, reason: str, actor: uuid.UUID, now: datetime) -> Money:
        """Cancel the case and refund every unreleased fund to the client.

        An open dispute is resolved as a refund first. Returns the total
        refunded by this call.
        """
        advance(CaseStateMachine, self.status.value, "cancel")
        refunded = Money.zero(self.escrow.currency)

        dispute = self.active_dispute
        if dispute is not None:
            disposition = Disposition.refund_to_client()
            settlement = self.escrow.resolve_hold(disposition)
            dispute.resolve(disposition, actor, settlement, now)
            refunded = add(refunded, settlement.refunded)
        if not self.escrow.available.is_zero:
            refunded = add(refunded, self.escrow.refund())

        self._close_cancelled(reason, now)
        return refunded

    def _close_cancelled(self, reason: str, now: datetime) -> None:
        self.status = CaseStatus(advance(CaseStateMachine, self.status.value, "cancel"))
        self.cancellation_reason = reason
        self.cancelled_at = now
