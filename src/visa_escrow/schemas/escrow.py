"""Pydantic schemas for the escrow and proposal API.

These schemas define the request/response shapes for the REST API. They
are separate from the ORM models and from the domain entities to keep
clean boundaries: the gateway converts validated requests into domain
values (e.g. ``Money``) before anything reaches the workflow engine.

Field names travel as camelCase on the wire (``proposalId``); Python code
uses snake_case. Amounts are decimal major units (``"2000.00"``).
"""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from visa_escrow.domain.enums import (
    CaseStatus,
    DisputeStatus,
    EscrowStatus,
    MilestoneStatus,
    PaymentMethod,
    ProposalStatus,
    Role,
)


class ApiModel(BaseModel):
    """Base for every API schema: camelCase aliases, snake_case attributes."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------


class MilestonePlanItem(ApiModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(default="", max_length=5000)
    amount: Decimal = Field(..., gt=0, description="Milestone amount in major units")


class CreateProposalRequest(ApiModel):
    """Request body for an agent proposing a milestone plan to a client."""

    client_id: uuid.UUID = Field(..., description="Client the proposal is addressed to")
    title: str = Field(..., min_length=3, max_length=200, examples=["H-1B visa petition"])
    description: str | None = Field(default=None, max_length=5000)
    currency: str = Field(default="USD", min_length=3, max_length=3)
    milestones: list[MilestonePlanItem] = Field(..., min_length=1, max_length=50)


class FundEscrowRequest(ApiModel):
    """Request body for funding escrow from an accepted proposal."""

    proposal_id: uuid.UUID
    amount: Decimal = Field(..., gt=0, description="Total to deposit, in major units")
    payment_method: PaymentMethod = Field(..., examples=["stripe"])
    currency: str | None = Field(
        default=None,
        min_length=3,
        max_length=3,
        description="Defaults to the platform currency",
    )


class ReleaseFundsRequest(ApiModel):
    """Request body for approving a milestone and releasing its funds."""

    milestone_index: int = Field(..., ge=0, description="0-based milestone index")


class DisputeRequest(ApiModel):
    """Request body for raising a dispute (places the escrow on hold)."""

    reason: str = Field(..., min_length=3, max_length=200)
    description: str = Field(default="", max_length=5000)
    evidence: list[str] = Field(
        default_factory=list,
        max_length=50,
        description="Opaque document references",
    )


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------


class MilestonePlanResponse(ApiModel):
    title: str
    description: str
    amount: Decimal


class ProposalResponse(ApiModel):
    id: uuid.UUID
    client_id: uuid.UUID
    agent_id: uuid.UUID
    title: str
    description: str | None
    currency: str
    total_amount: Decimal
    status: ProposalStatus
    milestones: list[MilestonePlanResponse]
    created_at: datetime


class FeeBreakdown(ApiModel):
    platform_fee: Decimal
    payment_fee: Decimal
    total_fees: Decimal


class FundEscrowResponse(ApiModel):
    escrow_id: uuid.UUID
    case_id: uuid.UUID
    status: EscrowStatus
    payment_reference: str
    funded_amount: Decimal
    currency: str
    fees: FeeBreakdown | None = None


class MilestoneView(ApiModel):
    index: int
    title: str
    description: str
    amount: Decimal
    status: MilestoneStatus
    evidence: list[str]
    evidence_urls: list[str | None] = Field(
        description="Retrievable URL per evidence reference (null if unavailable)"
    )
    notes: str | None
    rejection_reason: str | None
    submitted_at: datetime | None
    approved_at: datetime | None
    released_at: datetime | None


class DisputeView(ApiModel):
    id: uuid.UUID
    status: DisputeStatus
    reason: str
    description: str
    evidence: list[str]
    raised_by: uuid.UUID
    raised_by_role: Role
    held_amount: Decimal
    released_amount: Decimal | None
    refunded_amount: Decimal | None
    agent_percent: Decimal | None
    resolved_by: uuid.UUID | None
    created_at: datetime | None
    resolved_at: datetime | None


class EscrowStatusResponse(ApiModel):
    """Client-facing snapshot combining case, escrow and milestone states."""

    escrow_id: uuid.UUID
    case_id: uuid.UUID
    client_id: uuid.UUID
    agent_id: uuid.UUID
    title: str
    status: EscrowStatus
    case_status: CaseStatus
    currency: str
    funded_amount: Decimal
    released_amount: Decimal
    held_amount: Decimal
    refunded_amount: Decimal
    available_amount: Decimal
    progress_percent: Decimal = Field(description="Share of funded money released, 0-100")
    milestones: list[MilestoneView]
    active_dispute: DisputeView | None = None
    disputes: list[DisputeView] = Field(default_factory=list)
    version: int | None = None


class EscrowSummary(ApiModel):
    escrow_id: uuid.UUID
    case_id: uuid.UUID
    client_id: uuid.UUID
    agent_id: uuid.UUID
    title: str
    status: EscrowStatus
    case_status: CaseStatus
    currency: str
    funded_amount: Decimal
    released_amount: Decimal
    available_amount: Decimal
    created_at: datetime | None


class Pagination(ApiModel):
    total: int
    page: int
    limit: int
    pages: int


class EscrowListResponse(ApiModel):
    items: list[EscrowSummary]
    pagination: Pagination


class ErrorResponse(ApiModel):
    """Body of every rejected request."""

    error: str = Field(description="Stable error code, e.g. ALREADY_ON_HOLD")
    kind: str = Field(description="validation | not_found | authorization | state_conflict | funds")
    message: str
    retriable: bool = False


class HealthResponse(ApiModel):
    """Health check response."""

    status: str = "ok"
    version: str = "0.1.0"
    database: str = "unknown"
    redis: str = "unknown"
