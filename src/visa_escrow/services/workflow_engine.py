"""Workflow Engine — the only writer with authority over a whole case.

Coordinates between:
    - Domain entities (Case, EscrowAccount, Milestone) and their guards
    - Repositories (data access)
    - Timeline (append-only audit trail)
    - Collaborators fired after commit (notifications)

Every public mutation is one transaction: take the case lock, load the
aggregate with a row lock, mutate the in-memory domain objects, check the
ledger, write everything back and commit. Any exception discards the
session, so an approved-but-unreleased milestone (or any other partial
state) can never persist.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from visa_escrow.domain.case import Case
from visa_escrow.domain.collaborators import WorkflowNotification
from visa_escrow.domain.enums import (
    CaseStatus,
    EventType,
    ProposalStatus,
    Role,
)
from visa_escrow.domain.escrow_account import Disposition, EscrowFees, Settlement
from visa_escrow.domain.exceptions import (
    AlreadyFundedError,
    CaseNotFoundError,
    ConcurrentModificationError,
    CurrencyMismatchError,
    EscrowNotFoundError,
    InvalidAmountError,
    InvalidStateTransitionError,
    MilestoneSumMismatchError,
    NotAuthorizedError,
    ProposalNotFoundError,
)
from visa_escrow.domain.milestone import MilestoneSpec
from visa_escrow.domain.money import Money, percent_of, ratio_percent, total
from visa_escrow.infrastructure.database.orm_models import Proposal
from visa_escrow.infrastructure.database.repositories import (
    CaseRepository,
    EventRepository,
    ProposalRepository,
)
from visa_escrow.logging_config import bind_case, get_logger

if TYPE_CHECKING:
    import uuid
    from collections.abc import AsyncIterator, Sequence
    from datetime import datetime
    from decimal import Decimal

    from sqlalchemy.ext.asyncio import AsyncSession

    from visa_escrow.domain.case import Dispute
    from visa_escrow.domain.collaborators import Actor
    from visa_escrow.domain.enums import EscrowStatus, PaymentMethod
    from visa_escrow.infrastructure.database.orm_models import CaseEvent
    from visa_escrow.services.context import WorkflowContext

logger = get_logger(__name__)


@dataclass
class CaseView:
    """Read-only projection of a case for status responses."""

    case: Case
    progress_percent: Decimal
    evidence_urls: dict[int, list[str | None]]


@dataclass
class Timeline:
    case: Case
    events: list[CaseEvent]


class _UnitOfWork:
    """Repositories sharing one session, plus notifications to send after commit."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self.cases = CaseRepository(session)
        self.proposals = ProposalRepository(session)
        self.events = EventRepository(session)
        self.notifications: list[WorkflowNotification] = []


_FUNDING_UNIQUE_COLUMNS = ("payment_reference", "proposal_id")


def _is_duplicate_funding(err: IntegrityError) -> bool:
    """True if ``err`` is a unique violation on a payment reference or funded proposal.

    SQLite names the column (``escrow_accounts.payment_reference``);
    PostgreSQL names the default constraint (``cases_proposal_id_key``).
    """
    detail = str(err.orig).lower()
    if "unique" not in detail and "duplicate" not in detail:
        return False
    return any(column in detail for column in _FUNDING_UNIQUE_COLUMNS)


def _plan_to_specs(proposal: Proposal) -> list[MilestoneSpec]:
    return [
        MilestoneSpec(
            title=item["title"],
            description=item.get("description", ""),
            amount=Money(int(item["amount_minor"]), proposal.currency),
        )
        for item in proposal.milestone_plan
    ]


class WorkflowEngine:
    """Runs the escrow and case lifecycle operations."""

    def __init__(self, context: WorkflowContext) -> None:
        self._ctx = context

    # ------------------------------------------------------------------
    # Proposals
    # ------------------------------------------------------------------

    async def create_proposal(
        self,
        actor: Actor,
        client_id: uuid.UUID,
        title: str,
        specs: Sequence[MilestoneSpec],
        currency: str,
        description: str | None = None,
    ) -> Proposal:
        """Record an agent's milestone plan for a client."""
        if not specs or any(s.amount.is_zero for s in specs):
            raise InvalidAmountError("A proposal needs milestones with positive amounts")
        plan_total = total([s.amount for s in specs], currency)

        proposal = Proposal(
            id=self._ctx.new_id(),
            client_id=client_id,
            agent_id=actor.actor_id,
            title=title,
            description=description,
            currency=currency,
            total_minor=plan_total.amount,
            milestone_plan=[
                {"title": s.title, "description": s.description, "amount_minor": s.amount.amount}
                for s in specs
            ],
            status=ProposalStatus.PENDING.value,
            created_at=self._ctx.clock(),
        )
        async with self._ctx.session_factory() as session, session.begin():
            await ProposalRepository(session).create(proposal)

        logger.info(
            "proposal.created",
            proposal_id=str(proposal.id),
            agent_id=str(actor.actor_id),
            total_minor=plan_total.amount,
        )
        return proposal

    # ------------------------------------------------------------------
    # Funding
    # ------------------------------------------------------------------

    async def check_fundable(self, actor: Actor, proposal_id: uuid.UUID, amount: Money) -> None:
        """Validate a funding request before any money is captured."""
        async with self._ctx.session_factory() as session:
            proposal = await ProposalRepository(session).get_by_id(proposal_id)
            self._check_proposal(actor, proposal_id, proposal, amount)

    async def fund_escrow(
        self,
        actor: Actor,
        proposal_id: uuid.UUID,
        amount: Money,
        payment_reference: str,
        payment_method: PaymentMethod,
    ) -> Case:
        """Create the case, its escrow account and milestones, and credit the deposit.

        Raises:
            AlreadyFundedError: the proposal already backs a case, or the
                payment reference was already consumed.
        """
        try:
            async with self._transaction(proposal_id) as uow:
                now = self._ctx.clock()
                proposal = await uow.proposals.get_by_id(proposal_id, for_update=True)
                proposal = self._check_proposal(actor, proposal_id, proposal, amount)
                if await uow.cases.payment_reference_exists(payment_reference):
                    raise AlreadyFundedError(payment_reference)

                case = Case.create_with_milestones(
                    client_id=proposal.client_id,
                    agent_id=proposal.agent_id,
                    specs=_plan_to_specs(proposal),
                    funded_total=amount,
                    now=now,
                    title=proposal.title,
                    proposal_id=proposal.id,
                    case_id=self._ctx.new_id(),
                    escrow_id=self._ctx.new_id(),
                )
                bind_case(case.id)
                fees = EscrowFees(
                    platform=percent_of(amount, self._ctx.settings.platform_fee_percent),
                    payment=percent_of(amount, self._ctx.settings.payment_fee_percent),
                )
                case.escrow.fund(amount, payment_reference, payment_method, now, fees=fees)
                case.escrow.verify_ledger()

                await uow.cases.add(case)
                proposal.status = ProposalStatus.ACCEPTED.value
                await self._record(
                    uow,
                    case,
                    EventType.ESCROW_FUNDED,
                    actor,
                    now,
                    amount=amount,
                    metadata={
                        "payment_reference": payment_reference,
                        "payment_method": payment_method.value,
                        "escrow_status": case.escrow.status.value,
                    },
                )
        except IntegrityError as err:
            if not _is_duplicate_funding(err):
                raise
            logger.warning(
                "escrow.duplicate_funding",
                proposal_id=str(proposal_id),
                payment_reference=payment_reference,
            )
            raise AlreadyFundedError(payment_reference) from err

        logger.info(
            "escrow.funded",
            case_id=str(case.id),
            escrow_id=str(case.escrow.id),
            amount_minor=amount.amount,
            milestones=len(case.milestones),
        )
        return case

    # ------------------------------------------------------------------
    # Milestones
    # ------------------------------------------------------------------

    async def submit_milestone(
        self,
        actor: Actor,
        case_id: uuid.UUID,
        index: int,
        evidence: Sequence[str],
        notes: str | None = None,
    ) -> Case:
        """Agent delivers milestone ``index`` with evidence references."""
        async with self._transaction(case_id) as uow:
            now = self._ctx.clock()
            case = await self._load(uow, case_id)
            self._require_party(case, actor, Role.AGENT)
            self._require_active(case, "submit_milestone")

            milestone = case.milestone(index)
            milestone.submit(list(evidence), now, notes=notes)

            await self._save(uow, case, now)
            await self._record(
                uow,
                case,
                EventType.MILESTONE_SUBMITTED,
                actor,
                now,
                milestone_index=index,
                metadata={"evidence_count": len(milestone.evidence)},
            )

        logger.info("milestone.submitted", case_id=str(case_id), index=index)
        return case

    async def approve_milestone(self, actor: Actor, case_id: uuid.UUID, index: int) -> Case:
        """Client approves milestone ``index``; its funds are released in the same step.

        Approval, release and the completion check commit together or not
        at all. The loser of two concurrent approvals finds the milestone
        already released and gets InvalidMilestoneStateError.
        """
        async with self._transaction(case_id) as uow:
            now = self._ctx.clock()
            case = await self._load(uow, case_id)
            self._require_party(case, actor, Role.CLIENT)
            self._require_active(case, "approve_milestone")

            milestone = case.milestone(index)
            milestone.approve(now)
            case.escrow.release(milestone.amount, milestone, now)
            completed = case.check_completion(now)

            await self._save(uow, case, now)
            await self._record(
                uow, case, EventType.MILESTONE_APPROVED, actor, now, milestone_index=index
            )
            await self._record(
                uow,
                case,
                EventType.FUNDS_RELEASED,
                actor,
                now,
                milestone_index=index,
                amount=milestone.amount,
                metadata={"escrow_status": case.escrow.status.value},
            )
            if completed:
                await self._record(uow, case, EventType.CASE_COMPLETED, actor, now)

        logger.info(
            "milestone.approved",
            case_id=str(case_id),
            index=index,
            released_minor=milestone.amount.amount,
            escrow_status=case.escrow.status,
        )
        if completed:
            logger.info("case.completed", case_id=str(case_id))
        return case

    async def release_for_escrow(self, actor: Actor, escrow_id: uuid.UUID, index: int) -> Case:
        """Release funds for a milestone addressed by escrow id (approve + release)."""
        case_id = await self._case_id_for_escrow(escrow_id)
        return await self.approve_milestone(actor, case_id, index)

    async def reject_milestone(
        self,
        actor: Actor,
        case_id: uuid.UUID,
        index: int,
        reason: str,
    ) -> Case:
        """Client sends a submitted milestone back to the agent."""
        async with self._transaction(case_id) as uow:
            now = self._ctx.clock()
            case = await self._load(uow, case_id)
            self._require_party(case, actor, Role.CLIENT)
            self._require_active(case, "reject_milestone")

            case.milestone(index).reject(reason, now)

            await self._save(uow, case, now)
            await self._record(
                uow,
                case,
                EventType.MILESTONE_REJECTED,
                actor,
                now,
                milestone_index=index,
                metadata={"reason": reason},
            )

        logger.info("milestone.rejected", case_id=str(case_id), index=index)
        return case

    # ------------------------------------------------------------------
    # Disputes
    # ------------------------------------------------------------------

    async def raise_dispute(
        self,
        actor: Actor,
        case_id: uuid.UUID,
        reason: str,
        description: str = "",
        evidence: Sequence[str] = (),
    ) -> Case:
        """Client or agent opens a dispute; all available funds go on hold."""
        async with self._transaction(case_id) as uow:
            now = self._ctx.clock()
            case = await self._load(uow, case_id)
            role = self._require_party(case, actor, Role.CLIENT, Role.AGENT)

            dispute = case.raise_dispute(
                reason,
                raised_by=actor.actor_id,
                raised_by_role=role,
                now=now,
                description=description,
                evidence=evidence,
            )

            await self._save(uow, case, now)
            await self._record(
                uow,
                case,
                EventType.DISPUTE_RAISED,
                actor,
                now,
                amount=dispute.held_amount,
                metadata={"dispute_id": str(dispute.id), "reason": reason, "raised_by_role": role.value},
            )

        logger.info(
            "dispute.raised",
            case_id=str(case_id),
            dispute_id=str(dispute.id),
            held_minor=dispute.held_amount.amount,
            by=role,
        )
        return case

    async def hold_escrow(
        self,
        actor: Actor,
        escrow_id: uuid.UUID,
        reason: str,
        description: str = "",
        evidence: Sequence[str] = (),
    ) -> Case:
        case_id = await self._case_id_for_escrow(escrow_id)
        return await self.raise_dispute(actor, case_id, reason, description, evidence)

    async def resolve_dispute(
        self,
        actor: Actor,
        case_id: uuid.UUID,
        disposition: Disposition,
    ) -> Case:
        """Arbitrator settles the open dispute per ``disposition``."""
        self._require_arbitrator(actor, "resolve disputes")
        async with self._transaction(case_id) as uow:
            now = self._ctx.clock()
            case = await self._load(uow, case_id)
            dispute = case.active_dispute

            settlement = case.resolve_dispute(disposition, actor.actor_id, now)

            await self._save(uow, case, now)
            await self._record_dispute_resolved(
                uow, case, dispute, disposition, settlement, actor, now
            )
            if not settlement.released.is_zero:
                await self._record(
                    uow, case, EventType.FUNDS_RELEASED, actor, now, amount=settlement.released
                )
            if not settlement.refunded.is_zero:
                await self._record(
                    uow, case, EventType.FUNDS_REFUNDED, actor, now, amount=settlement.refunded
                )
            await self._record_terminal(uow, case, actor, now)

        logger.info(
            "dispute.resolved",
            case_id=str(case_id),
            disposition=disposition.type,
            released_minor=settlement.released.amount,
            refunded_minor=settlement.refunded.amount,
            case_status=case.status,
        )
        return case

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    async def cancel_case(self, actor: Actor, case_id: uuid.UUID, reason: str) -> Case:
        """Cancel the case and refund every unreleased fund to the client."""
        self._require_arbitrator(actor, "cancel cases")
        async with self._transaction(case_id) as uow:
            now = self._ctx.clock()
            case = await self._load(uow, case_id)
            dispute = case.active_dispute

            refunded = case.cancel(reason, actor.actor_id, now)

            await self._save(uow, case, now)
            if dispute is not None:
                await self._record_dispute_resolved(
                    uow,
                    case,
                    dispute,
                    Disposition.refund_to_client(),
                    Settlement(dispute.released_amount, dispute.refunded_amount),
                    actor,
                    now,
                )
            if not refunded.is_zero:
                await self._record(uow, case, EventType.FUNDS_REFUNDED, actor, now, amount=refunded)
            await self._record(
                uow, case, EventType.CASE_CANCELLED, actor, now, metadata={"reason": reason}
            )

        logger.info("case.cancelled", case_id=str(case_id), refunded_minor=refunded.amount)
        return case

    # ------------------------------------------------------------------
    # Read helpers
    # ------------------------------------------------------------------

    async def get_status(self, actor: Actor, case_id: uuid.UUID) -> CaseView:
        """Read-only snapshot: states, progress and evidence URLs."""
        async with self._ctx.session_factory() as session:
            case = await CaseRepository(session).get(case_id)
        if case is None:
            raise CaseNotFoundError(str(case_id))
        self._require_viewer(case, actor)
        return self.view(case)

    def view(self, case: Case) -> CaseView:
        """Project ``case`` with its release progress and evidence URLs."""
        return CaseView(
            case=case,
            progress_percent=ratio_percent(case.escrow.released, case.escrow.funded),
            evidence_urls={m.index: self._evidence_urls(m.evidence) for m in case.milestones},
        )

    async def get_escrow_status(self, actor: Actor, escrow_id: uuid.UUID) -> CaseView:
        return await self.get_status(actor, await self._case_id_for_escrow(escrow_id))

    async def list_escrows(
        self,
        page: int,
        limit: int,
        status: EscrowStatus | None = None,
        party_id: uuid.UUID | None = None,
    ) -> tuple[list[Case], int]:
        """Page through escrow accounts, newest first (``page`` is 1-based)."""
        async with self._ctx.session_factory() as session:
            return await CaseRepository(session).list_escrows(
                offset=(page - 1) * limit,
                limit=limit,
                status=status,
                party_id=party_id,
            )

    async def get_timeline(self, actor: Actor, case_id: uuid.UUID) -> Timeline:
        """Case timeline in recording order."""
        async with self._ctx.session_factory() as session:
            case = await CaseRepository(session).get(case_id)
            if case is None:
                raise CaseNotFoundError(str(case_id))
            self._require_viewer(case, actor)
            events = await EventRepository(session).get_by_case(case_id)
        return Timeline(case=case, events=events)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _transaction(self, lock_key: uuid.UUID) -> AsyncIterator[_UnitOfWork]:
        """Serialize on ``lock_key`` and run the body in one DB transaction.

        Notifications queued by the body are sent only after commit.
        """
        async with self._ctx.locks.hold(lock_key):
            try:
                async with self._ctx.session_factory() as session, session.begin():
                    uow = _UnitOfWork(session)
                    yield uow
            except StaleDataError as err:
                logger.warning("case.stale_write", key=str(lock_key))
                raise ConcurrentModificationError(str(lock_key)) from err
        await self._dispatch(uow.notifications)

    async def _load(self, uow: _UnitOfWork, case_id: uuid.UUID) -> Case:
        bind_case(case_id)
        case = await uow.cases.get(case_id, for_update=True)
        if case is None:
            raise CaseNotFoundError(str(case_id))
        return case

    async def _save(self, uow: _UnitOfWork, case: Case, now: datetime) -> None:
        case.escrow.verify_ledger()
        await uow.cases.save(case, now)

    async def _case_id_for_escrow(self, escrow_id: uuid.UUID) -> uuid.UUID:
        async with self._ctx.session_factory() as session:
            case_id = await CaseRepository(session).get_case_id_for_escrow(escrow_id)
        if case_id is None:
            raise EscrowNotFoundError(str(escrow_id))
        return case_id

    async def _record(
        self,
        uow: _UnitOfWork,
        case: Case,
        event_type: EventType,
        actor: Actor,
        now: datetime,
        milestone_index: int | None = None,
        amount: Money | None = None,
        metadata: dict | None = None,
    ) -> None:
        """Append a timeline event and queue its notification for both parties."""
        await uow.events.record(
            case_id=case.id,
            event_type=event_type,
            created_at=now,
            actor_id=str(actor.actor_id),
            milestone_index=milestone_index,
            amount=amount,
            metadata=metadata,
        )
        data: dict = {"case_status": case.status.value, "escrow_status": case.escrow.status.value}
        if milestone_index is not None:
            data["milestone_index"] = milestone_index
        if amount is not None:
            data["amount_minor"] = amount.amount
            data["currency"] = amount.currency
        uow.notifications.append(
            WorkflowNotification(
                event_type=event_type,
                case_id=case.id,
                recipients=(case.client_id, case.agent_id),
                occurred_at=now,
                data=data,
            )
        )

    async def _record_dispute_resolved(
        self,
        uow: _UnitOfWork,
        case: Case,
        dispute: Dispute,
        disposition: Disposition,
        settlement: Settlement,
        actor: Actor,
        now: datetime,
    ) -> None:
        await self._record(
            uow,
            case,
            EventType.DISPUTE_RESOLVED,
            actor,
            now,
            metadata={
                "dispute_id": str(dispute.id),
                "disposition": disposition.type.value,
                "agent_percent": (
                    str(disposition.agent_percent)
                    if disposition.agent_percent is not None
                    else None
                ),
                "released_minor": settlement.released.amount,
                "refunded_minor": settlement.refunded.amount,
                "escrow_status": case.escrow.status.value,
                "case_status": case.status.value,
            },
        )

    async def _record_terminal(
        self, uow: _UnitOfWork, case: Case, actor: Actor, now: datetime
    ) -> None:
        if case.status == CaseStatus.COMPLETED:
            await self._record(uow, case, EventType.CASE_COMPLETED, actor, now)
        elif case.status == CaseStatus.CANCELLED:
            await self._record(
                uow,
                case,
                EventType.CASE_CANCELLED,
                actor,
                now,
                metadata={"reason": case.cancellation_reason},
            )

    async def _dispatch(self, notifications: list[WorkflowNotification]) -> None:
        """Send post-commit notifications. Failures are logged, never raised."""
        for notification in notifications:
            try:
                await self._ctx.notifier.publish(notification)
            except Exception as exc:
                logger.error(
                    "notification.failed",
                    event_type=notification.event_type,
                    case_id=str(notification.case_id),
                    error=str(exc),
                )

    def _evidence_urls(self, references: Sequence[str]) -> list[str | None]:
        urls: list[str | None] = []
        for ref in references:
            try:
                urls.append(self._ctx.document_store.url_for(ref))
            except Exception as exc:
                logger.warning("document.url_failed", reference=ref, error=str(exc))
                urls.append(None)
        return urls

    @staticmethod
    def _check_proposal(
        actor: Actor,
        proposal_id: uuid.UUID,
        proposal: Proposal | None,
        amount: Money,
    ) -> Proposal:
        if proposal is None:
            raise ProposalNotFoundError(str(proposal_id))
        if proposal.client_id != actor.actor_id:
            raise NotAuthorizedError("Only the proposal's client can fund it")
        if proposal.status != ProposalStatus.PENDING.value:
            raise AlreadyFundedError(str(proposal_id))
        if amount.currency != proposal.currency:
            raise CurrencyMismatchError(amount.currency, proposal.currency)
        if amount.amount != proposal.total_minor:
            raise MilestoneSumMismatchError(proposal.total_minor, amount.amount)
        return proposal

    @staticmethod
    def _require_party(case: Case, actor: Actor, *roles: Role) -> Role:
        """Return the actor's role on the case if it is one of ``roles``."""
        role = case.role_of(actor.actor_id)
        if role is None or role not in roles:
            allowed = " or ".join(r.value for r in roles)
            raise NotAuthorizedError(f"Only the case's {allowed} may do this")
        return role

    @staticmethod
    def _require_viewer(case: Case, actor: Actor) -> None:
        if actor.role != Role.ADMIN and case.role_of(actor.actor_id) is None:
            raise NotAuthorizedError("Not a party to this case")

    @staticmethod
    def _require_arbitrator(actor: Actor, action: str) -> None:
        if actor.role != Role.ADMIN:
            raise NotAuthorizedError(f"Only an arbitrator may {action}")

    @staticmethod
    def _require_active(case: Case, attempted: str) -> None:
        if case.status != CaseStatus.ACTIVE:
            raise InvalidStateTransitionError("case", case.status.value, attempted)
