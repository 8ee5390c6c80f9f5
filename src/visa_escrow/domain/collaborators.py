"""Collaborator protocols.

Defines the interfaces the workflow calls into: payment capture, payment
deduplication, notification delivery, document URLs and token
authorization. These are Protocols (structural subtyping) so concrete
adapters don't need to inherit from a base class.

The domain layer has ZERO imports from Redis, JOSE or any external service.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from datetime import datetime

    from visa_escrow.domain.enums import EventType, PaymentMethod, Role
    from visa_escrow.domain.money import Money


@dataclass(frozen=True)
class Actor:
    """The authenticated identity behind a request.

    Attributes:
        actor_id: User identifier (the token's ``sub`` claim).
        role: Role granted by the authorizer.
    """

    actor_id: uuid.UUID
    role: Role


@dataclass(frozen=True)
class WorkflowNotification:
    """Out-of-band message emitted after a transition commits."""

    event_type: EventType
    case_id: uuid.UUID
    recipients: tuple[uuid.UUID, ...]
    occurred_at: datetime
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for publishing on a message channel."""
        return {
            "event_type": self.event_type.value,
            "case_id": str(self.case_id),
            "recipients": [str(r) for r in self.recipients],
            "occurred_at": self.occurred_at.isoformat(),
            "data": self.data,
        }


@runtime_checkable
class PaymentProvider(Protocol):
    """Captures the client's deposit and returns the provider reference."""

    async def capture(self, amount: Money, method: PaymentMethod, payer_id: uuid.UUID) -> str: ...


@runtime_checkable
class PaymentDeduplicator(Protocol):
    """Claims a payment reference so the same event is processed once.

    ``claim`` returns False when the reference was already claimed;
    ``release`` gives up a claim whose funding attempt failed.
    """

    async def claim(self, reference: str) -> bool: ...

    async def release(self, reference: str) -> None: ...


@runtime_checkable
class NotificationSink(Protocol):
    async def publish(self, notification: WorkflowNotification) -> None: ...


@runtime_checkable
class DocumentStore(Protocol):
    """Resolves an opaque evidence reference to a retrievable URL."""

    def url_for(self, reference: str) -> str: ...


@runtime_checkable
class Authorizer(Protocol):
    """Resolves a bearer token to an Actor.

    Raises NotAuthenticatedError for a missing, expired or malformed token.
    """

    def resolve(self, token: str) -> Actor: ...
