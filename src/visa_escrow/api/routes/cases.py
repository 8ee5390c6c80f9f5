"""Case REST API routes: milestone actions, disputes, cancellation, timeline."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Path

from visa_escrow.api.deps import get_actor, get_gateway
from visa_escrow.domain.collaborators import Actor
from visa_escrow.schemas.cases import (
    CancelCaseRequest,
    CompleteMilestoneRequest,
    RejectMilestoneRequest,
    ResolveDisputeRequest,
    TimelineResponse,
)
from visa_escrow.schemas.escrow import DisputeRequest, EscrowStatusResponse
from visa_escrow.services.gateway import WorkflowGateway

router = APIRouter(prefix="/api/v1/cases", tags=["Cases"])

_INDEX = Path(..., ge=0, description="0-based milestone index")


# ---------------------------------------------------------------------------
# Milestones
# ---------------------------------------------------------------------------


@router.post(
    "/{case_id}/milestones/{index}/complete",
    response_model=EscrowStatusResponse,
    summary="Submit a milestone with evidence",
)
async def complete_milestone(
    case_id: uuid.UUID,
    request: CompleteMilestoneRequest,
    index: int = _INDEX,
    actor: Actor = Depends(get_actor),
    gateway: WorkflowGateway = Depends(get_gateway),
) -> EscrowStatusResponse:
    return await gateway.complete_milestone(actor, case_id, index, request)


@router.post(
    "/{case_id}/milestones/{index}/approve",
    response_model=EscrowStatusResponse,
    summary="Approve a milestone and release its funds",
)
async def approve_milestone(
    case_id: uuid.UUID,
    index: int = _INDEX,
    actor: Actor = Depends(get_actor),
    gateway: WorkflowGateway = Depends(get_gateway),
) -> EscrowStatusResponse:
    return await gateway.approve_milestone(actor, case_id, index)


@router.post(
    "/{case_id}/milestones/{index}/reject",
    response_model=EscrowStatusResponse,
    summary="Send a submitted milestone back to the agent",
)
async def reject_milestone(
    case_id: uuid.UUID,
    request: RejectMilestoneRequest,
    index: int = _INDEX,
    actor: Actor = Depends(get_actor),
    gateway: WorkflowGateway = Depends(get_gateway),
) -> EscrowStatusResponse:
    return await gateway.reject_milestone(actor, case_id, index, request)


# ---------------------------------------------------------------------------
# Disputes
# ---------------------------------------------------------------------------


@router.post(
    "/{case_id}/dispute",
    response_model=EscrowStatusResponse,
    summary="Raise a dispute and hold available funds",
)
async def raise_dispute(
    case_id: uuid.UUID,
    request: DisputeRequest,
    actor: Actor = Depends(get_actor),
    gateway: WorkflowGateway = Depends(get_gateway),
) -> EscrowStatusResponse:
    return await gateway.raise_dispute(actor, case_id, request)


@router.post(
    "/{case_id}/dispute/resolve",
    response_model=EscrowStatusResponse,
    summary="Resolve the open dispute (arbitrator)",
)
async def resolve_dispute(
    case_id: uuid.UUID,
    request: ResolveDisputeRequest,
    actor: Actor = Depends(get_actor),
    gateway: WorkflowGateway = Depends(get_gateway),
) -> EscrowStatusResponse:
    """Release, refund or split the held funds."""
    return await gateway.resolve_dispute(actor, case_id, request)


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


@router.post(
    "/{case_id}/cancel",
    response_model=EscrowStatusResponse,
    summary="Cancel a case and refund unreleased funds (arbitrator)",
)
async def cancel_case(
    case_id: uuid.UUID,
    request: CancelCaseRequest,
    actor: Actor = Depends(get_actor),
    gateway: WorkflowGateway = Depends(get_gateway),
) -> EscrowStatusResponse:
    return await gateway.cancel_case(actor, case_id, request)


@router.get(
    "/{case_id}/timeline",
    response_model=TimelineResponse,
    summary="Case event timeline with a payment summary",
)
async def get_timeline(
    case_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    gateway: WorkflowGateway = Depends(get_gateway),
) -> TimelineResponse:
    return await gateway.get_timeline(actor, case_id)
