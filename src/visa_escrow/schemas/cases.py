"""Pydantic schemas for case-scoped actions: milestones, disputes, timeline."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from pydantic import Field, model_validator

from visa_escrow.domain.enums import CaseStatus, DispositionType, EventType
from visa_escrow.schemas.escrow import ApiModel


class CompleteMilestoneRequest(ApiModel):
    """Agent delivers a milestone with supporting documents."""

    evidence: list[str] = Field(
        ...,
        min_length=1,
        max_length=50,
        description="Opaque document references stored by the document service",
    )
    notes: str | None = Field(default=None, max_length=5000)


class RejectMilestoneRequest(ApiModel):
    reason: str = Field(..., min_length=3, max_length=2000)


class ResolveDisputeRequest(ApiModel):
    """Arbitrator's decision on the held funds."""

    disposition: DispositionType
    agent_percent: Decimal | None = Field(
        default=None,
        ge=0,
        le=100,
        decimal_places=2,
        description="Agent's share of the held funds; required for split",
    )

    @model_validator(mode="after")
    def _percent_matches_disposition(self) -> ResolveDisputeRequest:
        if self.disposition == DispositionType.SPLIT and self.agent_percent is None:
            raise ValueError("agentPercent is required for a split")
        if self.disposition != DispositionType.SPLIT and self.agent_percent is not None:
            raise ValueError("agentPercent is only allowed for a split")
        return self


class CancelCaseRequest(ApiModel):
    reason: str = Field(..., min_length=3, max_length=2000)


class TimelineEvent(ApiModel):
    position: int
    event_type: EventType
    actor_id: str
    milestone_index: int | None
    amount: Decimal | None
    metadata: dict | None
    created_at: datetime


class PaymentSummary(ApiModel):
    currency: str
    total: Decimal
    released: Decimal
    held: Decimal
    refunded: Decimal
    remaining: Decimal


class TimelineResponse(ApiModel):
    case_id: str
    case_status: CaseStatus
    events: list[TimelineEvent]
    payment_summary: PaymentSummary
