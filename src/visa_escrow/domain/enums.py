"""Domain enumerations for the visa escrow workflow.

These enums define the canonical states and types used throughout the system.
They are framework-agnostic (no SQLAlchemy, no FastAPI imports).
"""

import enum


class EscrowStatus(enum.StrEnum):
    """Lifecycle states of an escrow account.

    State transitions are enforced by the EscrowStateMachine guard.
    See domain/state_machine.py for the transition table.
    """

    UNFUNDED = "unfunded"
    FUNDED = "funded"
    PARTIALLY_RELEASED = "partially_released"
    ON_HOLD = "on_hold"
    FULLY_RELEASED = "fully_released"
    REFUNDED = "refunded"


class MilestoneStatus(enum.StrEnum):
    """States of a single payment milestone. RELEASED is terminal."""

    PENDING = "pending"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    RELEASED = "released"
    REJECTED = "rejected"


class CaseStatus(enum.StrEnum):
    """Overall state of a case between a client and an agent."""

    ACTIVE = "active"
    DISPUTED = "disputed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class DisputeStatus(enum.StrEnum):
    """A dispute is OPEN until an arbitrator picks a disposition."""

    OPEN = "open"
    RESOLVED_RELEASE = "resolved_release"
    RESOLVED_REFUND = "resolved_refund"
    RESOLVED_SPLIT = "resolved_split"


class DispositionType(enum.StrEnum):
    """How held funds leave the hold when a dispute is resolved."""

    RELEASE_TO_AGENT = "release_to_agent"
    REFUND_TO_CLIENT = "refund_to_client"
    SPLIT = "split"


class Role(enum.StrEnum):
    """Roles resolved by the authorization collaborator."""

    CLIENT = "client"
    AGENT = "agent"
    ADMIN = "admin"


class PaymentMethod(enum.StrEnum):
    STRIPE = "stripe"
    PAYPAL = "paypal"
    BANK_TRANSFER = "bank_transfer"


class ProposalStatus(enum.StrEnum):
    PENDING = "pending"
    ACCEPTED = "accepted"


class ErrorKind(enum.StrEnum):
    """Stable error categories exposed across the API boundary.

    Callers use the kind to decide whether to retry: only a
    concurrent-modification STATE_CONFLICT is marked retriable.
    """

    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    AUTHORIZATION = "authorization"
    STATE_CONFLICT = "state_conflict"
    FUNDS = "funds"


class EventType(enum.StrEnum):
    """Types of timeline events recorded in the case_events table.

    Every state transition MUST produce exactly one event.
    This is the append-only audit trail kept for disputes.
    """

    # Lifecycle events
    ESCROW_FUNDED = "ESCROW_FUNDED"
    CASE_COMPLETED = "CASE_COMPLETED"
    CASE_CANCELLED = "CASE_CANCELLED"

    # Milestone events
    MILESTONE_SUBMITTED = "MILESTONE_SUBMITTED"
    MILESTONE_APPROVED = "MILESTONE_APPROVED"
    MILESTONE_REJECTED = "MILESTONE_REJECTED"
    FUNDS_RELEASED = "FUNDS_RELEASED"

    # Dispute events
    DISPUTE_RAISED = "DISPUTE_RAISED"
    DISPUTE_RESOLVED = "DISPUTE_RESOLVED"

    # Refund events
    FUNDS_REFUNDED = "FUNDS_REFUNDED"
