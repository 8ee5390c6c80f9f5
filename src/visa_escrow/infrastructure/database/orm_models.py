"""SQLAlchemy 2.0 ORM models for the visa escrow workflow.

Six tables:
    1. proposals        — Accepted-or-pending offers that fund a case.
    2. cases            — The work contract between a client and an agent.
    3. milestones       — Ordered payment milestones of a case.
    4. escrow_accounts  — The funds container bound 1:1 to a case.
    5. disputes         — Open and historical disputes on a case.
    6. case_events      — Append-only timeline of every state transition.

Design decisions:
    - UUIDs as primary keys, stored with the generic Uuid type so the same
      models run on PostgreSQL and SQLite.
    - Integer minor units for every amount (no floating point anywhere).
    - JSON columns (JSONB on PostgreSQL) for milestone plans, evidence and
      event metadata.
    - cases.version is the optimistic-lock column; every write to a case
      aggregate bumps it.
    - CHECK constraints keep status values and the balance ledger valid at
      the DB level.
    - case_events is append-only: no UPDATE or DELETE at the application level.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from decimal import Decimal  # noqa: TC003 - needed at runtime by SQLAlchemy Mapped[]

from sqlalchemy import (
    JSON,
    BigInteger,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    event,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

JsonType = JSON().with_variant(JSONB(), "postgresql")


def _now() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# ---------------------------------------------------------------------------
# Helper: auto-set updated_at on flush
# ---------------------------------------------------------------------------
def _set_updated_at(mapper, connection, target):  # noqa: ANN001
    """SQLAlchemy event listener that updates `updated_at` before flush."""
    if hasattr(target, "updated_at"):
        target.updated_at = _now()


# ---------------------------------------------------------------------------
# 1. proposals
# ---------------------------------------------------------------------------
class Proposal(Base):
    """An agent's offer to a client. Funding it creates the case."""

    __tablename__ = "proposals"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    client_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, nullable=False, comment="User who will fund the proposal"
    )
    agent_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, nullable=False, comment="Agent who authored the proposal"
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    total_minor: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        comment="Sum of the milestone plan in minor units",
    )
    milestone_plan: Mapped[list[dict]] = mapped_column(
        JsonType,
        nullable=False,
        comment='Ordered plan, e.g. [{"title": ..., "description": ..., "amount_minor": 50000}]',
    )
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now, onupdate=_now
    )

    __table_args__ = (
        CheckConstraint("status IN ('pending', 'accepted')", name="ck_proposal_valid_status"),
        CheckConstraint("total_minor > 0", name="ck_proposal_positive_total"),
        Index("idx_proposal_client", "client_id"),
        Index("idx_proposal_agent", "agent_id"),
    )

    def __repr__(self) -> str:
        return f"<Proposal id={self.id} status={self.status} total={self.total_minor}>"


# ---------------------------------------------------------------------------
# 2. cases
# ---------------------------------------------------------------------------
class CaseRecord(Base):
    """A case between a client and an agent, owner of the aggregate."""

    __tablename__ = "cases"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    proposal_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("proposals.id"),
        nullable=True,
        unique=True,
        comment="Proposal that funded this case (at most one case per proposal)",
    )
    client_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    agent_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False, default="")

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="active",
        comment="Current lifecycle state (guarded by CaseStateMachine)",
    )
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    version: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Optimistic-lock counter, bumped on every aggregate write",
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now, onupdate=_now
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    # --- Relationships ---
    milestones: Mapped[list[MilestoneRecord]] = relationship(
        "MilestoneRecord",
        back_populates="case",
        cascade="all, delete-orphan",
        order_by="MilestoneRecord.sequence_index.asc()",
        lazy="selectin",
    )
    escrow: Mapped[EscrowAccountRecord] = relationship(
        "EscrowAccountRecord",
        back_populates="case",
        cascade="all, delete-orphan",
        uselist=False,
        lazy="selectin",
    )
    disputes: Mapped[list[DisputeRecord]] = relationship(
        "DisputeRecord",
        back_populates="case",
        cascade="all, delete-orphan",
        order_by="DisputeRecord.created_at.asc()",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint(
            "status IN ('active', 'disputed', 'completed', 'cancelled')",
            name="ck_case_valid_status",
        ),
        Index("idx_case_status", "status"),
        Index("idx_case_client", "client_id"),
        Index("idx_case_agent", "agent_id"),
    )

    def __repr__(self) -> str:
        return f"<CaseRecord id={self.id} status={self.status} version={self.version}>"


# ---------------------------------------------------------------------------
# 3. milestones
# ---------------------------------------------------------------------------
class MilestoneRecord(Base):
    __tablename__ = "milestones"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    case_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("cases.id", ondelete="CASCADE"), nullable=False
    )
    sequence_index: Mapped[int] = mapped_column(
        Integer, nullable=False, comment="0-based execution order within the case"
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    amount_minor: Mapped[int] = mapped_column(BigInteger, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")

    evidence: Mapped[list[str]] = mapped_column(
        JsonType,
        nullable=False,
        default=list,
        comment="Opaque document references, resolved by the document store",
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    released_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    case: Mapped[CaseRecord] = relationship("CaseRecord", back_populates="milestones")

    __table_args__ = (
        UniqueConstraint("case_id", "sequence_index", name="uq_milestone_case_index"),
        CheckConstraint(
            "status IN ('pending', 'submitted', 'approved', 'released', 'rejected')",
            name="ck_milestone_valid_status",
        ),
        CheckConstraint("amount_minor > 0", name="ck_milestone_positive_amount"),
    )

    def __repr__(self) -> str:
        return (
            f"<MilestoneRecord case={self.case_id} index={self.sequence_index} "
            f"status={self.status}>"
        )


# ---------------------------------------------------------------------------
# 4. escrow_accounts
# ---------------------------------------------------------------------------
class EscrowAccountRecord(Base):
    """Balance buckets of a case's escrow, in minor units."""

    __tablename__ = "escrow_accounts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    case_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("cases.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="unfunded",
        comment="Current lifecycle state (guarded by EscrowStateMachine)",
    )

    funded_minor: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    released_minor: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    held_minor: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    refunded_minor: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    payment_reference: Mapped[str | None] = mapped_column(
        String(128),
        nullable=True,
        unique=True,
        comment="Provider reference of the funding payment; consumed once",
    )
    payment_method: Mapped[str | None] = mapped_column(String(20), nullable=True)
    platform_fee_minor: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    payment_fee_minor: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    funded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now, onupdate=_now
    )

    case: Mapped[CaseRecord] = relationship("CaseRecord", back_populates="escrow")

    __table_args__ = (
        CheckConstraint(
            "status IN ('unfunded', 'funded', 'partially_released', 'on_hold', "
            "'fully_released', 'refunded')",
            name="ck_escrow_valid_status",
        ),
        CheckConstraint(
            "funded_minor >= 0 AND released_minor >= 0 AND held_minor >= 0 "
            "AND refunded_minor >= 0",
            name="ck_escrow_non_negative",
        ),
        CheckConstraint(
            "released_minor + held_minor + refunded_minor <= funded_minor",
            name="ck_escrow_ledger",
        ),
        Index("idx_escrow_status", "status"),
        Index("idx_escrow_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<EscrowAccountRecord id={self.id} status={self.status} "
            f"funded={self.funded_minor} released={self.released_minor}>"
        )


# ---------------------------------------------------------------------------
# 5. disputes
# ---------------------------------------------------------------------------
class DisputeRecord(Base):
    __tablename__ = "disputes"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    case_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("cases.id", ondelete="CASCADE"), nullable=False
    )
    raised_by: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    raised_by_role: Mapped[str] = mapped_column(String(10), nullable=False)
    reason: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    evidence: Mapped[list[str]] = mapped_column(JsonType, nullable=False, default=list)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="open")
    held_minor: Mapped[int] = mapped_column(BigInteger, nullable=False)

    resolved_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    released_minor: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    refunded_minor: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    agent_percent: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now
    )
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    case: Mapped[CaseRecord] = relationship("CaseRecord", back_populates="disputes")

    __table_args__ = (
        CheckConstraint(
            "status IN ('open', 'resolved_release', 'resolved_refund', 'resolved_split')",
            name="ck_dispute_valid_status",
        ),
        Index("idx_dispute_case", "case_id"),
    )

    def __repr__(self) -> str:
        return f"<DisputeRecord id={self.id} case={self.case_id} status={self.status}>"


# ---------------------------------------------------------------------------
# 6. case_events (Append-Only Timeline)
# ---------------------------------------------------------------------------
class CaseEvent(Base):
    """Immutable record of a state transition in a case's lifecycle.

    This table is APPEND-ONLY. No UPDATE or DELETE operations are permitted
    at the application level. Every row represents a single atomic event.
    """

    __tablename__ = "case_events"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    case_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("cases.id", ondelete="CASCADE"), nullable=False
    )
    position: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="1-based order of the event within its case timeline",
    )

    event_type: Mapped[str] = mapped_column(
        String(40),
        nullable=False,
        comment="EventType enum value (e.g., ESCROW_FUNDED, FUNDS_RELEASED)",
    )
    actor_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        default="SYSTEM",
        comment="Who triggered this event (user id or SYSTEM)",
    )
    milestone_index: Mapped[int | None] = mapped_column(Integer, nullable=True)
    amount_minor: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    metadata_json: Mapped[dict | None] = mapped_column(
        "metadata",
        JsonType,
        nullable=True,
        default=None,
        comment="Arbitrary context: status change, reason, disposition",
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now
    )

    __table_args__ = (
        UniqueConstraint("case_id", "position", name="uq_event_case_position"),
        Index("idx_event_case", "case_id"),
        Index("idx_event_type", "event_type"),
        Index("idx_event_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<CaseEvent id={self.id} type={self.event_type} case={self.case_id}>"


# ---------------------------------------------------------------------------
# Register the auto-update listener for updated_at
# ---------------------------------------------------------------------------
for _model in (Proposal, CaseRecord, EscrowAccountRecord):
    event.listen(_model, "before_update", _set_updated_at)
