"""Escrow account entity: the funds container bound 1:1 to a case.

Balance buckets (all Money, same currency):
    funded    -- what the client deposited; set once by fund()
    released  -- paid out to the agent; never decreases
    held      -- frozen by an open dispute
    refunded  -- returned to the client
    available -- derived: funded - released - held - refunded

Ledger invariant after every operation:
    funded == released + held + refunded + available   (all >= 0)
and held > 0 only while the account is on_hold.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import TYPE_CHECKING

from visa_escrow.domain.enums import DispositionType, EscrowStatus, MilestoneStatus, PaymentMethod
from visa_escrow.domain.exceptions import (
    AlreadyOnHoldError,
    ExceedsAvailableFundsError,
    InvalidAmountError,
    InvalidMilestoneStateError,
    InvalidPercentageError,
    InvalidStateTransitionError,
)
from visa_escrow.domain.money import HUNDRED, Money, add, allocate, subtract, to_percentage
from visa_escrow.domain.state_machine import EscrowStateMachine, advance

if TYPE_CHECKING:
    from datetime import datetime

    from visa_escrow.domain.milestone import Milestone


@dataclass(frozen=True)
class Disposition:
    """Outcome chosen by an arbitrator for the held funds.

    ``agent_percent`` is required for SPLIT and forbidden otherwise.
    """

    type: DispositionType
    agent_percent: Decimal | None = None

    def __post_init__(self) -> None:
        if self.type == DispositionType.SPLIT:
            if self.agent_percent is None:
                raise InvalidPercentageError("A split disposition requires agent_percent")
            object.__setattr__(self, "agent_percent", to_percentage(self.agent_percent))
        elif self.agent_percent is not None:
            raise InvalidPercentageError(f"agent_percent only applies to a split, not {self.type}")

    @classmethod
    def release_to_agent(cls) -> Disposition:
        return cls(DispositionType.RELEASE_TO_AGENT)

    @classmethod
    def refund_to_client(cls) -> Disposition:
        return cls(DispositionType.REFUND_TO_CLIENT)

    @classmethod
    def split(cls, agent_percent: Decimal | str | int) -> Disposition:
        return cls(DispositionType.SPLIT, Decimal(str(agent_percent)))


@dataclass(frozen=True)
class Settlement:
    """How a hold was paid out: to the agent and back to the client."""

    released: Money
    refunded: Money


@dataclass(frozen=True)
class EscrowFees:
    platform: Money
    payment: Money

    @property
    def total(self) -> Money:
        return add(self.platform, self.payment)


@dataclass
class EscrowAccount:
    case_id: uuid.UUID
    currency: str = "USD"
    status: EscrowStatus = EscrowStatus.UNFUNDED
    funded: Money | None = None
    released: Money | None = None
    held: Money | None = None
    refunded: Money | None = None
    payment_reference: str | None = None
    payment_method: PaymentMethod | None = None
    fees: EscrowFees | None = None
    funded_at: datetime | None = None
    created_at: datetime | None = None
    id: uuid.UUID = field(default_factory=uuid.uuid4)

    def __post_init__(self) -> None:
        zero = Money.zero(self.currency)
        self.funded = self.funded or zero
        self.released = self.released or zero
        self.held = self.held or zero
        self.refunded = self.refunded or zero

    # ------------------------------------------------------------------
    # Balances
    # ------------------------------------------------------------------

    @property
    def available(self) -> Money:
        """Funds not yet assigned to any outcome (release, hold or refund)."""
        committed = add(add(self.released, self.held), self.refunded)
        return subtract(self.funded, committed)

    @property
    def is_terminal(self) -> bool:
        return self.status in (EscrowStatus.FULLY_RELEASED, EscrowStatus.REFUNDED)

    def verify_ledger(self) -> None:
        """Raise RuntimeError if the balance buckets are inconsistent."""
        parts = self.released.amount + self.held.amount + self.refunded.amount
        if parts > self.funded.amount:
            raise RuntimeError(
                f"corrupt ledger on escrow {self.id}: committed {parts} > funded {self.funded.amount}"
            )
        if self.held.amount > 0 and self.status != EscrowStatus.ON_HOLD:
            raise RuntimeError(f"corrupt ledger on escrow {self.id}: held funds while {self.status}")

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def fund(
        self,
        amount: Money,
        payment_reference: str,
        payment_method: PaymentMethod,
        now: datetime,
        fees: EscrowFees | None = None,
    ) -> None:
        """Credit the deposit. Valid only from unfunded.

        Deduplicating the triggering payment event is the gateway's job; a
        second call on the same account fails the unfunded guard.
        """
        new_status = advance(EscrowStateMachine, self.status.value, "fund")
        if amount.is_zero:
            raise InvalidAmountError("Escrow must be funded with a positive amount")
        self.funded = add(Money.zero(self.currency), amount)
        self.payment_reference = payment_reference
        self.payment_method = payment_method
        self.fees = fees
        self.funded_at = now
        self.status = EscrowStatus(new_status)

    def release(self, amount: Money, milestone: Milestone, now: datetime) -> None:
        """Pay ``amount`` to the agent for an approved milestone.

        Frozen while on_hold. The milestone is marked released in the same
        step, so a release never happens against a non-approved milestone.
        """
        if amount.is_zero:
            raise InvalidAmountError("Release amount must be positive")
        available = self.available
        event = "release_final" if amount == available else "release_partial"
        new_status = advance(EscrowStateMachine, self.status.value, event)
        if amount.amount > available.amount:
            raise ExceedsAvailableFundsError(requested=amount.amount, available=available.amount)
        if milestone.status != MilestoneStatus.APPROVED:
            raise InvalidMilestoneStateError(milestone.status.value, "mark_released")
        released = add(self.released, amount)

        milestone.mark_released(now)
        self.released = released
        self.status = EscrowStatus(new_status)

    def hold(self, amount: Money | None = None) -> Money:
        """Freeze ``amount`` (default: everything available) for a dispute.

        Returns the amount now held.
        """
        if self.status == EscrowStatus.ON_HOLD:
            raise AlreadyOnHoldError(str(self.id))
        new_status = advance(EscrowStateMachine, self.status.value, "place_hold")
        available = self.available
        to_hold = available if amount is None else amount
        if to_hold.is_zero:
            raise InvalidAmountError("Nothing available to hold")
        if to_hold.amount > available.amount:
            raise ExceedsAvailableFundsError(requested=to_hold.amount, available=available.amount)

        self.held = add(self.held, to_hold)
        self.status = EscrowStatus(new_status)
        return to_hold

    def resolve_hold(self, disposition: Disposition) -> Settlement:
        """Pay the held funds out per ``disposition``. Valid only from on_hold."""
        if self.status != EscrowStatus.ON_HOLD:
            raise InvalidStateTransitionError("escrow", self.status.value, "resolve_hold")

        held = self.held
        if disposition.type == DispositionType.RELEASE_TO_AGENT:
            to_agent, to_client = held, Money.zero(self.currency)
        elif disposition.type == DispositionType.REFUND_TO_CLIENT:
            to_agent, to_client = Money.zero(self.currency), held
        else:
            to_agent, to_client = allocate(
                held, [disposition.agent_percent, HUNDRED - disposition.agent_percent]
            )

        released = add(self.released, to_agent)
        refunded = add(self.refunded, to_client)
        funded_remaining = self.funded.amount - released.amount - refunded.amount
        if funded_remaining > 0:
            event = "lift_hold_partial" if released.amount > 0 else "lift_hold_funded"
        elif refunded.amount > 0:
            event = "settle_refunded"
        else:
            event = "settle_released"
        new_status = advance(EscrowStateMachine, self.status.value, event)

        self.released = released
        self.refunded = refunded
        self.held = Money.zero(self.currency)
        self.status = EscrowStatus(new_status)
        return Settlement(released=to_agent, refunded=to_client)

    def refund(self, amount: Money | None = None, from_held: bool = False) -> Money:
        """Return funds to the client from the available or the held bucket.

        Never touches released funds. Returns the amount refunded.
        """
        bucket = self.held if from_held else self.available
        to_refund = bucket if amount is None else amount
        if to_refund.is_zero:
            raise InvalidAmountError("Nothing to refund")
        if to_refund.amount > bucket.amount:
            raise ExceedsAvailableFundsError(requested=to_refund.amount, available=bucket.amount)

        held = subtract(self.held, to_refund) if from_held else self.held
        refunded = add(self.refunded, to_refund)
        remaining = self.funded.amount - self.released.amount - held.amount - refunded.amount
        if held.amount > 0:
            event = "refund_partial"
        elif remaining > 0:
            if self.status == EscrowStatus.ON_HOLD:
                event = "lift_hold_partial" if self.released.amount > 0 else "lift_hold_funded"
            else:
                event = "refund_partial"
        else:
            event = "settle_refunded"
        new_status = advance(EscrowStateMachine, self.status.value, event)

        self.held = held
        self.refunded = refunded
        self.status = EscrowStatus(new_status)
        return to_refund
