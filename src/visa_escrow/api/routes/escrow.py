"""Escrow account REST API routes.

Routes:
    POST   /api/v1/escrow/fund            — Fund escrow from an accepted proposal
    GET    /api/v1/escrow/all             — List every escrow account (admin)
    GET    /api/v1/escrow/mine            — List the caller's escrow accounts
    GET    /api/v1/escrow/{id}/status     — Balances, milestones and disputes
    POST   /api/v1/escrow/{id}/release    — Approve and release one milestone
    POST   /api/v1/escrow/{id}/hold       — Put available funds on hold (dispute)
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query

from visa_escrow.api.deps import get_actor, get_gateway
from visa_escrow.domain.collaborators import Actor
from visa_escrow.domain.enums import EscrowStatus
from visa_escrow.logging_config import get_logger
from visa_escrow.schemas.escrow import (
    DisputeRequest,
    EscrowListResponse,
    EscrowStatusResponse,
    FundEscrowRequest,
    FundEscrowResponse,
    ReleaseFundsRequest,
)
from visa_escrow.services.gateway import WorkflowGateway

router = APIRouter(prefix="/api/v1/escrow", tags=["Escrow"])
logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Fund
# ---------------------------------------------------------------------------


@router.post(
    "/fund",
    response_model=FundEscrowResponse,
    status_code=201,
    summary="Fund escrow for a proposal",
)
async def fund_escrow(
    request: FundEscrowRequest,
    actor: Actor = Depends(get_actor),
    gateway: WorkflowGateway = Depends(get_gateway),
) -> FundEscrowResponse:
    """Capture the client's deposit and open the case with its milestones."""
    return await gateway.fund_escrow(actor, request)


# ---------------------------------------------------------------------------
# Listings (declared before /{escrow_id} routes)
# ---------------------------------------------------------------------------


@router.get(
    "/all",
    response_model=EscrowListResponse,
    summary="List all escrow accounts",
)
async def list_all_escrows(
    page: int = Query(default=1, ge=1),
    limit: int | None = Query(default=None, ge=1),
    status: EscrowStatus | None = Query(default=None),
    actor: Actor = Depends(get_actor),
    gateway: WorkflowGateway = Depends(get_gateway),
) -> EscrowListResponse:
    return await gateway.list_all_escrows(actor, page, limit, status)


@router.get(
    "/mine",
    response_model=EscrowListResponse,
    summary="List escrow accounts the caller is a party to",
)
async def list_my_escrows(
    page: int = Query(default=1, ge=1),
    limit: int | None = Query(default=None, ge=1),
    actor: Actor = Depends(get_actor),
    gateway: WorkflowGateway = Depends(get_gateway),
) -> EscrowListResponse:
    return await gateway.list_my_escrows(actor, page, limit)


# ---------------------------------------------------------------------------
# Single account
# ---------------------------------------------------------------------------


@router.get(
    "/{escrow_id}/status",
    response_model=EscrowStatusResponse,
    summary="Get escrow status",
)
async def get_escrow_status(
    escrow_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    gateway: WorkflowGateway = Depends(get_gateway),
) -> EscrowStatusResponse:
    """Read-only snapshot of balances, milestones, progress and disputes."""
    return await gateway.get_escrow_status(actor, escrow_id)


@router.post(
    "/{escrow_id}/release",
    response_model=EscrowStatusResponse,
    summary="Release funds for a milestone",
)
async def release_funds(
    escrow_id: uuid.UUID,
    request: ReleaseFundsRequest,
    actor: Actor = Depends(get_actor),
    gateway: WorkflowGateway = Depends(get_gateway),
) -> EscrowStatusResponse:
    """Approve a submitted milestone and release its amount to the agent."""
    return await gateway.release_funds(actor, escrow_id, request)


@router.post(
    "/{escrow_id}/hold",
    response_model=EscrowStatusResponse,
    summary="Hold escrow funds pending a dispute",
)
async def hold_escrow(
    escrow_id: uuid.UUID,
    request: DisputeRequest,
    actor: Actor = Depends(get_actor),
    gateway: WorkflowGateway = Depends(get_gateway),
) -> EscrowStatusResponse:
    return await gateway.hold_escrow(actor, escrow_id, request)
