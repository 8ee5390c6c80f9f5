"""Repository classes for database access.

Repositories encapsulate all SQL queries and provide a clean interface
to the service layer. They accept an AsyncSession and never manage
their own transactions (that's the caller's responsibility).

CaseRepository translates between ORM rows and the domain aggregate
(Case + EscrowAccount + Milestones + Disputes). It remembers the rows it
loaded so ``save`` can write the mutated aggregate back onto them.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import func, or_, select

from visa_escrow.domain.case import Case, Dispute
from visa_escrow.domain.enums import (
    CaseStatus,
    DisputeStatus,
    EscrowStatus,
    MilestoneStatus,
    PaymentMethod,
    Role,
)
from visa_escrow.domain.escrow_account import EscrowAccount, EscrowFees
from visa_escrow.domain.milestone import Milestone
from visa_escrow.domain.money import Money
from visa_escrow.infrastructure.database.orm_models import (
    CaseEvent,
    CaseRecord,
    DisputeRecord,
    EscrowAccountRecord,
    MilestoneRecord,
    Proposal,
)

if TYPE_CHECKING:
    import uuid
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncSession

    from visa_escrow.domain.enums import EventType


def _money(minor: int | None, currency: str) -> Money | None:
    return None if minor is None else Money(minor, currency)


def _minor(money: Money | None) -> int | None:
    return None if money is None else money.amount


# ---------------------------------------------------------------------------
# Row <-> domain mapping
# ---------------------------------------------------------------------------


def _milestone_to_domain(row: MilestoneRecord) -> Milestone:
    return Milestone(
        id=row.id,
        index=row.sequence_index,
        title=row.title,
        description=row.description,
        amount=Money(row.amount_minor, row.currency),
        status=MilestoneStatus(row.status),
        evidence=list(row.evidence or []),
        notes=row.notes,
        submitted_at=row.submitted_at,
        approved_at=row.approved_at,
        released_at=row.released_at,
        rejection_reason=row.rejection_reason,
    )


def _escrow_to_domain(row: EscrowAccountRecord) -> EscrowAccount:
    fees = None
    if row.platform_fee_minor is not None and row.payment_fee_minor is not None:
        fees = EscrowFees(
            platform=Money(row.platform_fee_minor, row.currency),
            payment=Money(row.payment_fee_minor, row.currency),
        )
    return EscrowAccount(
        id=row.id,
        case_id=row.case_id,
        currency=row.currency,
        status=EscrowStatus(row.status),
        funded=Money(row.funded_minor, row.currency),
        released=Money(row.released_minor, row.currency),
        held=Money(row.held_minor, row.currency),
        refunded=Money(row.refunded_minor, row.currency),
        payment_reference=row.payment_reference,
        payment_method=PaymentMethod(row.payment_method) if row.payment_method else None,
        fees=fees,
        funded_at=row.funded_at,
        created_at=row.created_at,
    )


def _dispute_to_domain(row: DisputeRecord, currency: str) -> Dispute:
    return Dispute(
        id=row.id,
        raised_by=row.raised_by,
        raised_by_role=Role(row.raised_by_role),
        reason=row.reason,
        description=row.description,
        evidence=list(row.evidence or []),
        held_amount=Money(row.held_minor, currency),
        status=DisputeStatus(row.status),
        resolved_by=row.resolved_by,
        released_amount=_money(row.released_minor, currency),
        refunded_amount=_money(row.refunded_minor, currency),
        agent_percent=row.agent_percent,
        created_at=row.created_at,
        resolved_at=row.resolved_at,
    )


def case_to_domain(row: CaseRecord) -> Case:
    """Build the domain aggregate from a fully loaded case row."""
    escrow = _escrow_to_domain(row.escrow)
    return Case(
        id=row.id,
        client_id=row.client_id,
        agent_id=row.agent_id,
        title=row.title,
        proposal_id=row.proposal_id,
        status=CaseStatus(row.status),
        escrow=escrow,
        milestones=[_milestone_to_domain(m) for m in row.milestones],
        disputes=[_dispute_to_domain(d, escrow.currency) for d in row.disputes],
        cancellation_reason=row.cancellation_reason,
        created_at=row.created_at,
        completed_at=row.completed_at,
        cancelled_at=row.cancelled_at,
        version=row.version,
    )


def _write_milestone(row: MilestoneRecord, m: Milestone) -> None:
    row.status = m.status.value
    row.evidence = list(m.evidence)
    row.notes = m.notes
    row.rejection_reason = m.rejection_reason
    row.submitted_at = m.submitted_at
    row.approved_at = m.approved_at
    row.released_at = m.released_at


def _write_escrow(row: EscrowAccountRecord, escrow: EscrowAccount) -> None:
    row.status = escrow.status.value
    row.funded_minor = escrow.funded.amount
    row.released_minor = escrow.released.amount
    row.held_minor = escrow.held.amount
    row.refunded_minor = escrow.refunded.amount
    row.payment_reference = escrow.payment_reference
    row.payment_method = escrow.payment_method.value if escrow.payment_method else None
    row.platform_fee_minor = _minor(escrow.fees.platform) if escrow.fees else None
    row.payment_fee_minor = _minor(escrow.fees.payment) if escrow.fees else None
    row.funded_at = escrow.funded_at


def _write_dispute(row: DisputeRecord, d: Dispute) -> None:
    row.status = d.status.value
    row.resolved_by = d.resolved_by
    row.released_minor = _minor(d.released_amount)
    row.refunded_minor = _minor(d.refunded_amount)
    row.agent_percent = d.agent_percent
    row.resolved_at = d.resolved_at


def _new_dispute_row(case_id: uuid.UUID, d: Dispute) -> DisputeRecord:
    row = DisputeRecord(
        id=d.id,
        case_id=case_id,
        raised_by=d.raised_by,
        raised_by_role=d.raised_by_role.value,
        reason=d.reason,
        description=d.description,
        evidence=list(d.evidence),
        held_minor=d.held_amount.amount,
        created_at=d.created_at,
    )
    _write_dispute(row, d)
    return row


# ---------------------------------------------------------------------------
# Repositories
# ---------------------------------------------------------------------------


class CaseRepository:
    """Data access for the case aggregate."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session
        self._rows: dict[uuid.UUID, CaseRecord] = {}

    async def add(self, case: Case) -> CaseRecord:
        """Insert a new case with its escrow account, milestones and disputes."""
        escrow_row = EscrowAccountRecord(
            id=case.escrow.id,
            case_id=case.id,
            currency=case.escrow.currency,
            created_at=case.escrow.created_at,
        )
        _write_escrow(escrow_row, case.escrow)
        milestone_rows = []
        for m in case.milestones:
            row = MilestoneRecord(
                id=m.id,
                case_id=case.id,
                sequence_index=m.index,
                title=m.title,
                description=m.description,
                amount_minor=m.amount.amount,
                currency=m.amount.currency,
            )
            _write_milestone(row, m)
            milestone_rows.append(row)

        record = CaseRecord(
            id=case.id,
            proposal_id=case.proposal_id,
            client_id=case.client_id,
            agent_id=case.agent_id,
            title=case.title,
            status=case.status.value,
            cancellation_reason=case.cancellation_reason,
            created_at=case.created_at,
            completed_at=case.completed_at,
            cancelled_at=case.cancelled_at,
            escrow=escrow_row,
            milestones=milestone_rows,
            disputes=[_new_dispute_row(case.id, d) for d in case.disputes],
        )
        self._session.add(record)
        await self._session.flush()
        case.version = record.version
        self._rows[case.id] = record
        return record

    async def get(self, case_id: uuid.UUID, for_update: bool = False) -> Case | None:
        """Load the aggregate. ``for_update`` takes a row lock where supported."""
        stmt = select(CaseRecord).where(CaseRecord.id == case_id)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self._session.execute(stmt)
        record = result.scalar_one_or_none()
        if record is None:
            return None
        self._rows[record.id] = record
        return case_to_domain(record)

    async def get_case_id_for_escrow(self, escrow_id: uuid.UUID) -> uuid.UUID | None:
        result = await self._session.execute(
            select(EscrowAccountRecord.case_id).where(EscrowAccountRecord.id == escrow_id)
        )
        return result.scalar_one_or_none()

    async def payment_reference_exists(self, reference: str) -> bool:
        result = await self._session.execute(
            select(EscrowAccountRecord.id).where(
                EscrowAccountRecord.payment_reference == reference
            )
        )
        return result.scalar_one_or_none() is not None

    async def save(self, case: Case, now: datetime) -> None:
        """Write a loaded, mutated aggregate back and bump its version.

        Raises sqlalchemy.orm.exc.StaleDataError if another writer committed
        a newer version of the case first.
        """
        record = self._rows[case.id]
        record.status = case.status.value
        record.cancellation_reason = case.cancellation_reason
        record.completed_at = case.completed_at
        record.cancelled_at = case.cancelled_at
        # Always touch the case row so the version check runs on every write.
        record.updated_at = now

        _write_escrow(record.escrow, case.escrow)
        rows_by_index = {row.sequence_index: row for row in record.milestones}
        for m in case.milestones:
            _write_milestone(rows_by_index[m.index], m)

        rows_by_id = {row.id: row for row in record.disputes}
        for d in case.disputes:
            if d.id in rows_by_id:
                _write_dispute(rows_by_id[d.id], d)
            else:
                record.disputes.append(_new_dispute_row(case.id, d))

        await self._session.flush()
        case.version = record.version

    async def list_escrows(
        self,
        offset: int,
        limit: int,
        status: EscrowStatus | None = None,
        party_id: uuid.UUID | None = None,
    ) -> tuple[list[Case], int]:
        """Page through escrow accounts, newest first with id as tie-break.

        Returns the page as domain aggregates plus the total row count.
        """
        filters = []
        if status is not None:
            filters.append(EscrowAccountRecord.status == status.value)
        if party_id is not None:
            filters.append(or_(CaseRecord.client_id == party_id, CaseRecord.agent_id == party_id))

        count_stmt = (
            select(func.count())
            .select_from(EscrowAccountRecord)
            .join(CaseRecord, CaseRecord.id == EscrowAccountRecord.case_id)
            .where(*filters)
        )
        total = (await self._session.execute(count_stmt)).scalar_one()

        page_stmt = (
            select(CaseRecord)
            .join(EscrowAccountRecord, CaseRecord.id == EscrowAccountRecord.case_id)
            .where(*filters)
            .order_by(EscrowAccountRecord.created_at.desc(), EscrowAccountRecord.id.desc())
            .offset(offset)
            .limit(limit)
        )
        rows = (await self._session.execute(page_stmt)).scalars().all()
        return [case_to_domain(row) for row in rows], total


class ProposalRepository:
    """Data access for proposals."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, proposal: Proposal) -> Proposal:
        """Insert a new proposal."""
        self._session.add(proposal)
        await self._session.flush()
        return proposal

    async def get_by_id(self, proposal_id: uuid.UUID, for_update: bool = False) -> Proposal | None:
        stmt = select(Proposal).where(Proposal.id == proposal_id)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()


class EventRepository:
    """Data access for the append-only case timeline."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def record(
        self,
        case_id: uuid.UUID,
        event_type: EventType,
        created_at: datetime,
        actor_id: str = "SYSTEM",
        milestone_index: int | None = None,
        amount: Money | None = None,
        metadata: dict | None = None,
    ) -> CaseEvent:
        """Append a new timeline event. This is the ONLY write operation allowed."""
        result = await self._session.execute(
            select(func.coalesce(func.max(CaseEvent.position), 0)).where(
                CaseEvent.case_id == case_id
            )
        )
        evt = CaseEvent(
            case_id=case_id,
            position=result.scalar_one() + 1,
            event_type=event_type.value,
            actor_id=actor_id,
            milestone_index=milestone_index,
            amount_minor=_minor(amount),
            metadata_json=metadata,
            created_at=created_at,
        )
        self._session.add(evt)
        await self._session.flush()
        return evt

    async def get_by_case(self, case_id: uuid.UUID) -> list[CaseEvent]:
        """Fetch all events for a case in timeline order."""
        result = await self._session.execute(
            select(CaseEvent).where(CaseEvent.case_id == case_id).order_by(CaseEvent.position.asc())
        )
        return list(result.scalars().all())
