"""Proposal REST API routes.

Routes:
    POST   /api/v1/proposals  — Agent submits a milestone plan for a client
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from visa_escrow.api.deps import get_actor, get_gateway
from visa_escrow.domain.collaborators import Actor
from visa_escrow.schemas.escrow import CreateProposalRequest, ProposalResponse
from visa_escrow.services.gateway import WorkflowGateway

router = APIRouter(prefix="/api/v1/proposals", tags=["Proposals"])


@router.post(
    "",
    response_model=ProposalResponse,
    status_code=201,
    summary="Create a proposal",
)
async def create_proposal(
    request: CreateProposalRequest,
    actor: Actor = Depends(get_actor),
    gateway: WorkflowGateway = Depends(get_gateway),
) -> ProposalResponse:
    """Record the agent's milestone plan; the client funds it later."""
    return await gateway.create_proposal(actor, request)
