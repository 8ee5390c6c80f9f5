"""Pydantic API schemas."""

from visa_escrow.schemas.cases import (
    CancelCaseRequest,
    CompleteMilestoneRequest,
    PaymentSummary,
    RejectMilestoneRequest,
    ResolveDisputeRequest,
    TimelineEvent,
    TimelineResponse,
)
from visa_escrow.schemas.escrow import (
    CreateProposalRequest,
    DisputeRequest,
    DisputeView,
    ErrorResponse,
    EscrowListResponse,
    EscrowStatusResponse,
    EscrowSummary,
    FeeBreakdown,
    FundEscrowRequest,
    FundEscrowResponse,
    HealthResponse,
    MilestonePlanItem,
    MilestoneView,
    Pagination,
    ProposalResponse,
    ReleaseFundsRequest,
)

__all__ = [
    "CancelCaseRequest",
    "CompleteMilestoneRequest",
    "CreateProposalRequest",
    "DisputeRequest",
    "DisputeView",
    "ErrorResponse",
    "EscrowListResponse",
    "EscrowStatusResponse",
    "EscrowSummary",
    "FeeBreakdown",
    "FundEscrowRequest",
    "FundEscrowResponse",
    "HealthResponse",
    "MilestonePlanItem",
    "MilestoneView",
    "Pagination",
    "PaymentSummary",
    "ProposalResponse",
    "RejectMilestoneRequest",
    "ReleaseFundsRequest",
    "ResolveDisputeRequest",
    "TimelineEvent",
    "TimelineResponse",
]
