"""Milestone entity: a single payment-triggering deliverable of a case."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from visa_escrow.domain.enums import MilestoneStatus
from visa_escrow.domain.state_machine import MilestoneStateMachine, advance

if TYPE_CHECKING:
    from datetime import datetime

    from visa_escrow.domain.money import Money


@dataclass
class MilestoneSpec:
    """Milestone plan entry taken from an accepted proposal."""

    title: str
    amount: Money
    description: str = ""


@dataclass
class Milestone:
    """One step of the case's ordered milestone sequence.

    ``index`` is unique within the case and defines execution order.
    Status changes only through the methods below, each of which is guarded
    by MilestoneStateMachine and raises InvalidMilestoneStateError when the
    current state does not allow it.
    """

    index: int
    title: str
    amount: Money
    description: str = ""
    status: MilestoneStatus = MilestoneStatus.PENDING
    evidence: list[str] = field(default_factory=list)
    notes: str | None = None
    submitted_at: datetime | None = None
    approved_at: datetime | None = None
    released_at: datetime | None = None
    rejection_reason: str | None = None
    id: uuid.UUID = field(default_factory=uuid.uuid4)

    def submit(self, evidence: list[str], now: datetime, notes: str | None = None) -> None:
        """Deliver work (from pending, or again after a rejection)."""
        self._fire("submit")
        self.evidence = list(evidence)
        self.notes = notes
        self.submitted_at = now
        self.rejection_reason = None

    def approve(self, now: datetime) -> None:
        self._fire("approve")
        self.approved_at = now

    def reject(self, reason: str, now: datetime) -> None:
        self._fire("reject")
        self.rejection_reason = reason
        self.approved_at = None

    def mark_released(self, now: datetime) -> None:
        self._fire("mark_released")
        self.released_at = now

    def arbitrated_release(self, now: datetime) -> None:
        """Settle the milestone as paid after a dispute resolved for the agent."""
        self._fire("arbitrated_release")
        self.released_at = now

    @property
    def is_released(self) -> bool:
        return self.status == MilestoneStatus.RELEASED

    def _fire(self, event_name: str) -> None:
        self.status = MilestoneStatus(advance(MilestoneStateMachine, self.status.value, event_name))
