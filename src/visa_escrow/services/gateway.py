"""Workflow Gateway — the actor-facing front of the workflow engine.

Responsibilities:
    - Enforce the role each operation requires (client-only, agent-only,
      either party, or arbitrator).
    - Convert validated request schemas into domain values (Money,
      Disposition, MilestoneSpec) before anything reaches the engine.
    - Run the funding handshake: capture payment, claim the provider
      reference, then fund.
    - Project domain aggregates into response schemas.
    - Map domain errors to stable external result codes (to_error_body).

Both the REST routes and the simulation script call into this class.
"""

from __future__ import annotations

import math
from typing import TYPE_CHECKING

from visa_escrow.domain.enums import ErrorKind, Role
from visa_escrow.domain.escrow_account import Disposition
from visa_escrow.domain.exceptions import (
    AlreadyFundedError,
    EscrowWorkflowError,
    NotAuthenticatedError,
    NotAuthorizedError,
)
from visa_escrow.domain.milestone import MilestoneSpec
from visa_escrow.domain.money import Money, add
from visa_escrow.logging_config import get_logger
from visa_escrow.schemas.cases import PaymentSummary, TimelineEvent, TimelineResponse
from visa_escrow.schemas.escrow import (
    DisputeView,
    ErrorResponse,
    EscrowListResponse,
    EscrowStatusResponse,
    EscrowSummary,
    FeeBreakdown,
    FundEscrowResponse,
    MilestonePlanResponse,
    MilestoneView,
    Pagination,
    ProposalResponse,
)
from visa_escrow.services.workflow_engine import WorkflowEngine

if TYPE_CHECKING:
    import uuid
    from decimal import Decimal

    from visa_escrow.domain.case import Case, Dispute
    from visa_escrow.domain.collaborators import Actor
    from visa_escrow.domain.enums import EscrowStatus
    from visa_escrow.infrastructure.database.orm_models import Proposal
    from visa_escrow.schemas.cases import (
        CancelCaseRequest,
        CompleteMilestoneRequest,
        RejectMilestoneRequest,
        ResolveDisputeRequest,
    )
    from visa_escrow.schemas.escrow import (
        CreateProposalRequest,
        DisputeRequest,
        FundEscrowRequest,
        ReleaseFundsRequest,
    )
    from visa_escrow.services.context import WorkflowContext
    from visa_escrow.services.workflow_engine import CaseView

logger = get_logger(__name__)

KIND_STATUS_CODES: dict[ErrorKind, int] = {
    ErrorKind.VALIDATION: 422,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.AUTHORIZATION: 403,
    ErrorKind.STATE_CONFLICT: 409,
    ErrorKind.FUNDS: 400,
}


def to_error_body(exc: EscrowWorkflowError) -> tuple[int, ErrorResponse]:
    """Map a domain error to an HTTP status code and a stable error body."""
    status_code = 401 if isinstance(exc, NotAuthenticatedError) else KIND_STATUS_CODES[exc.kind]
    return status_code, ErrorResponse(
        error=exc.code,
        kind=exc.kind.value,
        message=exc.message,
        retriable=exc.retriable,
    )


def _require_role(actor: Actor, *roles: Role) -> None:
    if actor.role not in roles:
        allowed = " or ".join(r.value for r in roles)
        raise NotAuthorizedError(f"This operation requires the {allowed} role")


class WorkflowGateway:
    """Translates actor requests into workflow engine calls."""

    def __init__(self, context: WorkflowContext, engine: WorkflowEngine | None = None) -> None:
        self._ctx = context
        self._engine = engine or WorkflowEngine(context)

    @property
    def engine(self) -> WorkflowEngine:
        return self._engine

    # ------------------------------------------------------------------
    # Proposals
    # ------------------------------------------------------------------

    async def create_proposal(self, actor: Actor, req: CreateProposalRequest) -> ProposalResponse:
        _require_role(actor, Role.AGENT)
        currency = req.currency.upper()
        specs = [
            MilestoneSpec(
                title=item.title,
                description=item.description,
                amount=Money.from_major(item.amount, currency),
            )
            for item in req.milestones
        ]
        proposal = await self._engine.create_proposal(
            actor,
            client_id=req.client_id,
            title=req.title,
            specs=specs,
            currency=currency,
            description=req.description,
        )
        return self._proposal_response(proposal)

    # ------------------------------------------------------------------
    # Escrow
    # ------------------------------------------------------------------

    async def fund_escrow(self, actor: Actor, req: FundEscrowRequest) -> FundEscrowResponse:
        """Capture the deposit and fund escrow from the proposal.

        The proposal and amount are checked before capture. The provider
        reference is then claimed so a replayed payment event is processed
        once; the database constraint backs the claim up.
        """
        _require_role(actor, Role.CLIENT)
        amount = Money.from_major(req.amount, req.currency or self._ctx.settings.default_currency)
        await self._engine.check_fundable(actor, req.proposal_id, amount)

        reference = await self._ctx.payment_provider.capture(
            amount, req.payment_method, actor.actor_id
        )
        if not await self._claim_reference(reference):
            logger.warning("payment.duplicate_reference", reference=reference)
            raise AlreadyFundedError(reference)

        try:
            case = await self._engine.fund_escrow(
                actor,
                proposal_id=req.proposal_id,
                amount=amount,
                payment_reference=reference,
                payment_method=req.payment_method,
            )
        except EscrowWorkflowError:
            await self._release_reference(reference)
            raise

        escrow = case.escrow
        fees = None
        if escrow.fees is not None:
            fees = FeeBreakdown(
                platform_fee=escrow.fees.platform.to_major(),
                payment_fee=escrow.fees.payment.to_major(),
                total_fees=escrow.fees.total.to_major(),
            )
        return FundEscrowResponse(
            escrow_id=escrow.id,
            case_id=case.id,
            status=escrow.status,
            payment_reference=reference,
            funded_amount=escrow.funded.to_major(),
            currency=escrow.currency,
            fees=fees,
        )

    async def get_escrow_status(self, actor: Actor, escrow_id: uuid.UUID) -> EscrowStatusResponse:
        return self._status_response(await self._engine.get_escrow_status(actor, escrow_id))

    async def release_funds(
        self, actor: Actor, escrow_id: uuid.UUID, req: ReleaseFundsRequest
    ) -> EscrowStatusResponse:
        _require_role(actor, Role.CLIENT)
        case = await self._engine.release_for_escrow(actor, escrow_id, req.milestone_index)
        return self._status_response(self._engine.view(case))

    async def hold_escrow(
        self, actor: Actor, escrow_id: uuid.UUID, req: DisputeRequest
    ) -> EscrowStatusResponse:
        _require_role(actor, Role.CLIENT, Role.AGENT)
        case = await self._engine.hold_escrow(
            actor, escrow_id, req.reason, req.description, req.evidence
        )
        return self._status_response(self._engine.view(case))

    async def list_all_escrows(
        self,
        actor: Actor,
        page: int,
        limit: int | None = None,
        status: EscrowStatus | None = None,
    ) -> EscrowListResponse:
        """Every escrow account, newest first. Administrators only."""
        _require_role(actor, Role.ADMIN)
        return await self._list(page, limit, status=status)

    async def list_my_escrows(
        self, actor: Actor, page: int, limit: int | None = None
    ) -> EscrowListResponse:
        return await self._list(page, limit, party_id=actor.actor_id)

    # ------------------------------------------------------------------
    # Case actions
    # ------------------------------------------------------------------

    async def complete_milestone(
        self,
        actor: Actor,
        case_id: uuid.UUID,
        index: int,
        req: CompleteMilestoneRequest,
    ) -> EscrowStatusResponse:
        _require_role(actor, Role.AGENT)
        case = await self._engine.submit_milestone(actor, case_id, index, req.evidence, req.notes)
        return self._status_response(self._engine.view(case))

    async def approve_milestone(
        self, actor: Actor, case_id: uuid.UUID, index: int
    ) -> EscrowStatusResponse:
        _require_role(actor, Role.CLIENT)
        case = await self._engine.approve_milestone(actor, case_id, index)
        return self._status_response(self._engine.view(case))

    async def reject_milestone(
        self,
        actor: Actor,
        case_id: uuid.UUID,
        index: int,
        req: RejectMilestoneRequest,
    ) -> EscrowStatusResponse:
        _require_role(actor, Role.CLIENT)
        case = await self._engine.reject_milestone(actor, case_id, index, req.reason)
        return self._status_response(self._engine.view(case))

    async def raise_dispute(
        self, actor: Actor, case_id: uuid.UUID, req: DisputeRequest
    ) -> EscrowStatusResponse:
        _require_role(actor, Role.CLIENT, Role.AGENT)
        case = await self._engine.raise_dispute(
            actor, case_id, req.reason, req.description, req.evidence
        )
        return self._status_response(self._engine.view(case))

    async def resolve_dispute(
        self, actor: Actor, case_id: uuid.UUID, req: ResolveDisputeRequest
    ) -> EscrowStatusResponse:
        _require_role(actor, Role.ADMIN)
        disposition = Disposition(req.disposition, req.agent_percent)
        case = await self._engine.resolve_dispute(actor, case_id, disposition)
        return self._status_response(self._engine.view(case))

    async def cancel_case(
        self, actor: Actor, case_id: uuid.UUID, req: CancelCaseRequest
    ) -> EscrowStatusResponse:
        _require_role(actor, Role.ADMIN)
        case = await self._engine.cancel_case(actor, case_id, req.reason)
        return self._status_response(self._engine.view(case))

    async def get_timeline(self, actor: Actor, case_id: uuid.UUID) -> TimelineResponse:
        timeline = await self._engine.get_timeline(actor, case_id)
        case = timeline.case
        escrow = case.escrow
        currency = escrow.currency
        return TimelineResponse(
            case_id=str(case.id),
            case_status=case.status,
            events=[
                TimelineEvent(
                    position=evt.position,
                    event_type=evt.event_type,
                    actor_id=evt.actor_id,
                    milestone_index=evt.milestone_index,
                    amount=(
                        Money(evt.amount_minor, currency).to_major()
                        if evt.amount_minor is not None
                        else None
                    ),
                    metadata=evt.metadata_json,
                    created_at=evt.created_at,
                )
                for evt in timeline.events
            ],
            payment_summary=PaymentSummary(
                currency=currency,
                total=escrow.funded.to_major(),
                released=escrow.released.to_major(),
                held=escrow.held.to_major(),
                refunded=escrow.refunded.to_major(),
                remaining=add(escrow.available, escrow.held).to_major(),
            ),
        )

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _claim_reference(self, reference: str) -> bool:
        """Claim via the deduplicator; an unreachable one defers to the database."""
        if self._ctx.deduplicator is None:
            return True
        try:
            return await self._ctx.deduplicator.claim(reference)
        except Exception as exc:
            logger.warning("payment.dedup_unavailable", reference=reference, error=str(exc))
            return True

    async def _release_reference(self, reference: str) -> None:
        if self._ctx.deduplicator is None:
            return
        try:
            await self._ctx.deduplicator.release(reference)
        except Exception as exc:
            logger.warning("payment.dedup_release_failed", reference=reference, error=str(exc))

    async def _list(
        self,
        page: int,
        limit: int | None,
        status: EscrowStatus | None = None,
        party_id: uuid.UUID | None = None,
    ) -> EscrowListResponse:
        settings = self._ctx.settings
        limit = min(limit or settings.default_page_limit, settings.max_page_limit)
        page = max(page, 1)
        cases, total = await self._engine.list_escrows(page, limit, status=status, party_id=party_id)
        return EscrowListResponse(
            items=[self._summary(c) for c in cases],
            pagination=Pagination(
                total=total,
                page=page,
                limit=limit,
                pages=math.ceil(total / limit) if total else 0,
            ),
        )

    @staticmethod
    def _summary(case: Case) -> EscrowSummary:
        escrow = case.escrow
        return EscrowSummary(
            escrow_id=escrow.id,
            case_id=case.id,
            client_id=case.client_id,
            agent_id=case.agent_id,
            title=case.title,
            status=escrow.status,
            case_status=case.status,
            currency=escrow.currency,
            funded_amount=escrow.funded.to_major(),
            released_amount=escrow.released.to_major(),
            available_amount=escrow.available.to_major(),
            created_at=escrow.created_at,
        )

    @staticmethod
    def _dispute_view(d: Dispute) -> DisputeView:
        def major(m: Money | None) -> Decimal | None:
            return m.to_major() if m is not None else None

        return DisputeView(
            id=d.id,
            status=d.status,
            reason=d.reason,
            description=d.description,
            evidence=d.evidence,
            raised_by=d.raised_by,
            raised_by_role=d.raised_by_role,
            held_amount=d.held_amount.to_major(),
            released_amount=major(d.released_amount),
            refunded_amount=major(d.refunded_amount),
            agent_percent=d.agent_percent,
            resolved_by=d.resolved_by,
            created_at=d.created_at,
            resolved_at=d.resolved_at,
        )

    def _status_response(self, view: CaseView) -> EscrowStatusResponse:
        case = view.case
        escrow = case.escrow
        active = case.active_dispute
        return EscrowStatusResponse(
            escrow_id=escrow.id,
            case_id=case.id,
            client_id=case.client_id,
            agent_id=case.agent_id,
            title=case.title,
            status=escrow.status,
            case_status=case.status,
            currency=escrow.currency,
            funded_amount=escrow.funded.to_major(),
            released_amount=escrow.released.to_major(),
            held_amount=escrow.held.to_major(),
            refunded_amount=escrow.refunded.to_major(),
            available_amount=escrow.available.to_major(),
            progress_percent=view.progress_percent,
            milestones=[
                MilestoneView(
                    index=m.index,
                    title=m.title,
                    description=m.description,
                    amount=m.amount.to_major(),
                    status=m.status,
                    evidence=m.evidence,
                    evidence_urls=view.evidence_urls.get(m.index, []),
                    notes=m.notes,
                    rejection_reason=m.rejection_reason,
                    submitted_at=m.submitted_at,
                    approved_at=m.approved_at,
                    released_at=m.released_at,
                )
                for m in case.milestones
            ],
            active_dispute=self._dispute_view(active) if active is not None else None,
            disputes=[self._dispute_view(d) for d in case.disputes],
            version=case.version,
        )

    @staticmethod
    def _proposal_response(proposal: Proposal) -> ProposalResponse:
        return ProposalResponse(
            id=proposal.id,
            client_id=proposal.client_id,
            agent_id=proposal.agent_id,
            title=proposal.title,
            description=proposal.description,
            currency=proposal.currency,
            total_amount=Money(proposal.total_minor, proposal.currency).to_major(),
            status=proposal.status,
            milestones=[
                MilestonePlanResponse(
                    title=item["title"],
                    description=item.get("description", ""),
                    amount=Money(int(item["amount_minor"]), proposal.currency).to_major(),
                )
                for item in proposal.milestone_plan
            ],
            created_at=proposal.created_at,
        )
