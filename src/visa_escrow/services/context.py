"""Explicit dependencies of the workflow, built once and injected.

The workflow never reaches for module-level connections or settings: the
gateway and engine receive a WorkflowContext at construction. The app
lifespan builds the production one; tests build their own with a SQLite
session factory, a fixed clock and fake collaborators.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from visa_escrow.infrastructure.documents import UrlDocumentStore
from visa_escrow.infrastructure.notifications import (
    LoggingNotificationSink,
    RedisNotificationSink,
)
from visa_escrow.infrastructure.redis_client import RedisPaymentDeduplicator
from visa_escrow.services.locks import CaseLockRegistry
from visa_escrow.services.payment_service import SimulatedPaymentProvider

if TYPE_CHECKING:
    import redis.asyncio as aioredis
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from visa_escrow.config import Settings
    from visa_escrow.domain.collaborators import (
        DocumentStore,
        NotificationSink,
        PaymentDeduplicator,
        PaymentProvider,
    )


def utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass
class WorkflowContext:
    """Everything a workflow operation may touch besides its arguments.

    Attributes:
        settings: Application settings (fees, paging, currency).
        session_factory: Opens one AsyncSession per composite operation.
        payment_provider: Captures client deposits.
        notifier: Receives post-commit notifications.
        document_store: Resolves evidence references to URLs.
        deduplicator: Optional fast-path claim on payment references.
        locks: Per-case lock registry.
        clock: Returns the current aware datetime.
        new_id: Generates identifiers for new aggregates.
        redis: Raw client, kept for health checks only.
    """

    settings: Settings
    session_factory: async_sessionmaker[AsyncSession]
    payment_provider: PaymentProvider
    notifier: NotificationSink
    document_store: DocumentStore
    deduplicator: PaymentDeduplicator | None = None
    locks: CaseLockRegistry = field(default_factory=CaseLockRegistry)
    clock: Callable[[], datetime] = utc_now
    new_id: Callable[[], uuid.UUID] = uuid.uuid4
    redis: aioredis.Redis | None = None


def build_context(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    redis: aioredis.Redis | None = None,
) -> WorkflowContext:
    """Assemble the production context.

    Without Redis, notifications go to the log and payment deduplication
    relies on the database constraint alone.
    """
    if redis is not None:
        notifier: NotificationSink = RedisNotificationSink(redis, settings.notification_channel)
        deduplicator: PaymentDeduplicator | None = RedisPaymentDeduplicator(
            redis, settings.redis_idempotency_ttl_seconds
        )
    else:
        notifier = LoggingNotificationSink()
        deduplicator = None

    return WorkflowContext(
        settings=settings,
        session_factory=session_factory,
        payment_provider=SimulatedPaymentProvider(),
        notifier=notifier,
        document_store=UrlDocumentStore(settings.document_base_url),
        deduplicator=deduplicator,
        locks=CaseLockRegistry(settings.case_lock_timeout_seconds),
        redis=redis,
    )
