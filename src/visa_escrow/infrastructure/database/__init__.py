"""Database infrastructure — engine, ORM models, and repositories."""

from visa_escrow.infrastructure.database.engine import (
    build_engine,
    build_session_factory,
    close_db,
    create_tables,
    get_session_factory,
    init_db,
)
from visa_escrow.infrastructure.database.orm_models import (
    Base,
    CaseEvent,
    CaseRecord,
    DisputeRecord,
    EscrowAccountRecord,
    MilestoneRecord,
    Proposal,
)
from visa_escrow.infrastructure.database.repositories import (
    CaseRepository,
    EventRepository,
    ProposalRepository,
)

__all__ = [
    "Base",
    "CaseEvent",
    "CaseRecord",
    "DisputeRecord",
    "EscrowAccountRecord",
    "MilestoneRecord",
    "Proposal",
    "CaseRepository",
    "EventRepository",
    "ProposalRepository",
    "build_engine",
    "build_session_factory",
    "create_tables",
    "get_session_factory",
    "init_db",
    "close_db",
]
