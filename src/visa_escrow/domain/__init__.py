"""Domain layer — pure business logic with zero framework dependencies."""

from visa_escrow.domain.case import Case, Dispute
from visa_escrow.domain.collaborators import (
    Actor,
    Authorizer,
    DocumentStore,
    NotificationSink,
    PaymentDeduplicator,
    PaymentProvider,
    WorkflowNotification,
)
from visa_escrow.domain.enums import (
    CaseStatus,
    DispositionType,
    EscrowStatus,
    EventType,
    MilestoneStatus,
    Role,
)
from visa_escrow.domain.escrow_account import Disposition, EscrowAccount, Settlement
from visa_escrow.domain.exceptions import (
    EscrowWorkflowError,
    InvalidStateTransitionError,
)
from visa_escrow.domain.milestone import Milestone, MilestoneSpec
from visa_escrow.domain.money import Money

__all__ = [
    "Actor",
    "Authorizer",
    "Case",
    "CaseStatus",
    "Dispute",
    "Disposition",
    "DispositionType",
    "DocumentStore",
    "EscrowAccount",
    "EscrowStatus",
    "EscrowWorkflowError",
    "EventType",
    "InvalidStateTransitionError",
    "Milestone",
    "MilestoneSpec",
    "MilestoneStatus",
    "Money",
    "NotificationSink",
    "PaymentDeduplicator",
    "PaymentProvider",
    "Role",
    "Settlement",
    "WorkflowNotification",
]
