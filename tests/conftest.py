"""Shared test fixtures for the visa escrow test suite.

Provides:
    - A file-backed SQLite database per test (aiosqlite)
    - A WorkflowContext with a deterministic clock and in-memory collaborators
    - Workflow engine, gateway and actor fixtures
    - An httpx client bound to the FastAPI app, plus JWT helpers
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta
from decimal import Decimal

import httpx
import pytest
import pytest_asyncio

from visa_escrow.config import Settings
from visa_escrow.domain.collaborators import Actor, WorkflowNotification
from visa_escrow.domain.enums import PaymentMethod, Role
from visa_escrow.domain.milestone import MilestoneSpec
from visa_escrow.domain.money import Money
from visa_escrow.infrastructure.auth import JwtAuthorizer
from visa_escrow.infrastructure.database.engine import (
    build_engine,
    build_session_factory,
    create_tables,
)
from visa_escrow.infrastructure.documents import UrlDocumentStore
from visa_escrow.main import create_app
from visa_escrow.services.context import WorkflowContext
from visa_escrow.services.gateway import WorkflowGateway
from visa_escrow.services.locks import CaseLockRegistry
from visa_escrow.services.payment_service import SimulatedPaymentProvider
from visa_escrow.services.workflow_engine import WorkflowEngine

TEST_SECRET = "test-secret-key"
T0 = datetime(2026, 1, 5, 9, 0, tzinfo=UTC)


# ---------------------------------------------------------------------------
# In-memory collaborators
# ---------------------------------------------------------------------------


class StepClock:
    """Returns T0, T0+1s, T0+2s, ... so every event gets a distinct time."""

    def __init__(self, start: datetime = T0) -> None:
        self._now = start

    def __call__(self) -> datetime:
        current = self._now
        self._now += timedelta(seconds=1)
        return current


class RecordingNotificationSink:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.published: list[WorkflowNotification] = []

    async def publish(self, notification: WorkflowNotification) -> None:
        if self.fail:
            raise ConnectionError("notification service down")
        self.published.append(notification)

    def event_types(self) -> list[str]:
        return [n.event_type.value for n in self.published]


class InMemoryDeduplicator:
    def __init__(self) -> None:
        self.claimed: set[str] = set()

    async def claim(self, reference: str) -> bool:
        if reference in self.claimed:
            return False
        self.claimed.add(reference)
        return True

    async def release(self, reference: str) -> None:
        self.claimed.discard(reference)


# ---------------------------------------------------------------------------
# Infrastructure Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    return Settings(
        app_env="development",
        jwt_secret_key=TEST_SECRET,
        platform_fee_percent=Decimal("5"),
        payment_fee_percent=Decimal("2.9"),
        case_lock_timeout_seconds=5.0,
        default_page_limit=20,
        max_page_limit=50,
        document_base_url="https://docs.test/files",
    )


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'escrow.db'}")
    await create_tables(engine)
    yield build_session_factory(engine)
    await engine.dispose()


@pytest.fixture
def notifier() -> RecordingNotificationSink:
    return RecordingNotificationSink()


@pytest.fixture
def deduplicator() -> InMemoryDeduplicator:
    return InMemoryDeduplicator()


@pytest.fixture
def context(settings, session_factory, notifier, deduplicator) -> WorkflowContext:
    return WorkflowContext(
        settings=settings,
        session_factory=session_factory,
        payment_provider=SimulatedPaymentProvider(),
        notifier=notifier,
        document_store=UrlDocumentStore(settings.document_base_url),
        deduplicator=deduplicator,
        locks=CaseLockRegistry(settings.case_lock_timeout_seconds),
        clock=StepClock(),
    )


@pytest.fixture
def engine(context) -> WorkflowEngine:
    return WorkflowEngine(context)


@pytest.fixture
def gateway(context, engine) -> WorkflowGateway:
    return WorkflowGateway(context, engine)


# ---------------------------------------------------------------------------
# Domain Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def client() -> Actor:
    return Actor(uuid.UUID("11111111-1111-4111-8111-111111111111"), Role.CLIENT)


@pytest.fixture
def agent() -> Actor:
    return Actor(uuid.UUID("22222222-2222-4222-8222-222222222222"), Role.AGENT)


@pytest.fixture
def admin() -> Actor:
    return Actor(uuid.UUID("33333333-3333-4333-8333-333333333333"), Role.ADMIN)


@pytest.fixture
def outsider() -> Actor:
    return Actor(uuid.UUID("44444444-4444-4444-8444-444444444444"), Role.CLIENT)


@pytest.fixture
def four_milestones() -> list[MilestoneSpec]:
    """$2000 split into four $500 milestones."""
    titles = ["Document review", "Petition drafting", "Filing", "Interview preparation"]
    return [MilestoneSpec(title=t, amount=Money.from_major("500.00")) for t in titles]


@pytest_asyncio.fixture
async def proposal(engine, agent, client, four_milestones):
    return await engine.create_proposal(
        agent,
        client_id=client.actor_id,
        title="H-1B visa petition",
        specs=four_milestones,
        currency="USD",
    )


@pytest_asyncio.fixture
async def funded_case(engine, client, proposal):
    """A case funded with $2000 across four $500 milestones."""
    return await engine.fund_escrow(
        client,
        proposal_id=proposal.id,
        amount=Money.from_major("2000.00"),
        payment_reference="pi_test_0001",
        payment_method=PaymentMethod.STRIPE,
    )


# ---------------------------------------------------------------------------
# API Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def authorizer() -> JwtAuthorizer:
    return JwtAuthorizer(TEST_SECRET)


@pytest.fixture
def auth_headers(authorizer):
    """Build an Authorization header for an actor."""

    def _headers(actor: Actor) -> dict[str, str]:
        return {"Authorization": f"Bearer {authorizer.issue(actor.actor_id, actor.role)}"}

    return _headers


@pytest_asyncio.fixture
async def api(context, authorizer):
    app = create_app(context=context, authorizer=authorizer)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
        yield http
