#!/usr/bin/env python3
"""Visa Marketplace Escrow — End-to-End Simulation.

Simulates three scenarios with ClientBot, AgentBot and ArbitratorBot:

    Scenario 1: Happy Path
        - Agent proposes an H-1B petition in 4 milestones of $500
        - Client funds $2000 escrow
        - Agent completes each milestone, client approves -> case COMPLETED

    Scenario 2: Dispute and Refund
        - Milestone 0 is released ($500)
        - Client disputes -> remaining $1500 ON_HOLD
        - Arbitrator refunds the client -> case CANCELLED

    Scenario 3: Dispute and Split
        - Agent disputes after milestone 0 is rejected
        - Arbitrator splits the held funds 40/60 -> case CANCELLED

Usage:
    # Option A: PostgreSQL from DATABASE_URL:
    python simulation.py

    # Option B: Without Docker (SQLite file in a temp directory):
    python simulation.py --sqlite

    # Run a specific scenario:
    python simulation.py --sqlite --scenario 2
"""

from __future__ import annotations

import argparse
import asyncio
import tempfile
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path

from visa_escrow.config import get_settings
from visa_escrow.domain.collaborators import Actor
from visa_escrow.domain.enums import CaseStatus, DispositionType, EscrowStatus, PaymentMethod, Role
from visa_escrow.domain.exceptions import AlreadyOnHoldError, InvalidMilestoneStateError
from visa_escrow.infrastructure.database.engine import (
    build_engine,
    build_session_factory,
    close_db,
    create_tables,
    get_session_factory,
    init_db,
)
from visa_escrow.logging_config import get_logger, setup_logging
from visa_escrow.schemas.cases import (
    CompleteMilestoneRequest,
    RejectMilestoneRequest,
    ResolveDisputeRequest,
)
from visa_escrow.schemas.escrow import (
    CreateProposalRequest,
    DisputeRequest,
    EscrowStatusResponse,
    FundEscrowRequest,
    MilestonePlanItem,
)
from visa_escrow.services.context import build_context
from visa_escrow.services.gateway import WorkflowGateway

setup_logging(log_level="INFO", json_logs=False)
logger = get_logger("simulation")

# Module-level state
_sqlite_engine = None
_tmpdir: tempfile.TemporaryDirectory | None = None


# ---------------------------------------------------------------------------
# Database lifecycle helpers
# ---------------------------------------------------------------------------
async def init_gateway(use_sqlite: bool = False) -> WorkflowGateway:
    """Initialize the database and return a gateway over it."""
    global _sqlite_engine, _tmpdir
    settings = get_settings()

    if use_sqlite:
        _tmpdir = tempfile.TemporaryDirectory()
        url = f"sqlite+aiosqlite:///{Path(_tmpdir.name) / 'simulation.db'}"
        _sqlite_engine = build_engine(url)
        await create_tables(_sqlite_engine)
        session_factory = build_session_factory(_sqlite_engine)
        logger.info("database.sqlite_initialized", url=url)
    else:
        await init_db()
        session_factory = get_session_factory()

    return WorkflowGateway(build_context(settings, session_factory))


async def shutdown_database() -> None:
    """Close database connections."""
    global _sqlite_engine, _tmpdir
    if _sqlite_engine is not None:
        await _sqlite_engine.dispose()
        _sqlite_engine = None
        if _tmpdir is not None:
            _tmpdir.cleanup()
            _tmpdir = None
    else:
        await close_db()


# ---------------------------------------------------------------------------
# Bots
# ---------------------------------------------------------------------------
@dataclass
class ClientBot:
    """Simulated visa applicant who funds escrow and approves milestones."""

    actor: Actor = field(default_factory=lambda: Actor(uuid.uuid4(), Role.CLIENT))

    async def fund(
        self, gateway: WorkflowGateway, proposal_id: uuid.UUID, amount: Decimal
    ) -> tuple[uuid.UUID, uuid.UUID]:
        resp = await gateway.fund_escrow(
            self.actor,
            FundEscrowRequest(
                proposal_id=proposal_id,
                amount=amount,
                payment_method=PaymentMethod.STRIPE,
            ),
        )
        logger.info(
            "🔵 CLIENT: Escrow funded",
            escrow_id=str(resp.escrow_id),
            amount=str(resp.funded_amount),
            reference=resp.payment_reference,
        )
        return resp.escrow_id, resp.case_id

    async def approve(self, gateway: WorkflowGateway, case_id: uuid.UUID, index: int) -> None:
        status = await gateway.approve_milestone(self.actor, case_id, index)
        logger.info(
            "🔵 CLIENT: Milestone approved",
            index=index,
            released=str(status.released_amount),
            progress=str(status.progress_percent),
        )

    async def reject(
        self, gateway: WorkflowGateway, case_id: uuid.UUID, index: int, reason: str
    ) -> None:
        await gateway.reject_milestone(
            self.actor, case_id, index, RejectMilestoneRequest(reason=reason)
        )
        logger.info("🔵 CLIENT: Milestone rejected", index=index, reason=reason)

    async def dispute(self, gateway: WorkflowGateway, case_id: uuid.UUID, reason: str) -> None:
        status = await gateway.raise_dispute(self.actor, case_id, DisputeRequest(reason=reason))
        logger.info("🔵 CLIENT: Dispute raised", held=str(status.held_amount))


@dataclass
class AgentBot:
    """Simulated immigration agent who proposes plans and delivers milestones."""

    actor: Actor = field(default_factory=lambda: Actor(uuid.uuid4(), Role.AGENT))

    async def propose(
        self, gateway: WorkflowGateway, client: ClientBot, title: str, amounts: list[Decimal]
    ) -> uuid.UUID:
        proposal = await gateway.create_proposal(
            self.actor,
            CreateProposalRequest(
                client_id=client.actor.actor_id,
                title=title,
                milestones=[
                    MilestonePlanItem(title=f"Stage {i + 1}", amount=amount)
                    for i, amount in enumerate(amounts)
                ],
            ),
        )
        logger.info(
            "🟢 AGENT: Proposal created",
            proposal_id=str(proposal.id),
            total=str(proposal.total_amount),
        )
        return proposal.id

    async def complete(self, gateway: WorkflowGateway, case_id: uuid.UUID, index: int) -> None:
        await gateway.complete_milestone(
            self.actor,
            case_id,
            index,
            CompleteMilestoneRequest(evidence=[f"cases/{case_id}/stage-{index}.pdf"]),
        )
        logger.info("🟢 AGENT: Milestone submitted", index=index)

    async def dispute(self, gateway: WorkflowGateway, case_id: uuid.UUID, reason: str) -> None:
        status = await gateway.raise_dispute(self.actor, case_id, DisputeRequest(reason=reason))
        logger.info("🟢 AGENT: Dispute raised", held=str(status.held_amount))


@dataclass
class ArbitratorBot:
    actor: Actor = field(default_factory=lambda: Actor(uuid.uuid4(), Role.ADMIN))

    async def resolve(
        self,
        gateway: WorkflowGateway,
        case_id: uuid.UUID,
        disposition: DispositionType,
        agent_percent: Decimal | None = None,
    ) -> EscrowStatusResponse:
        status = await gateway.resolve_dispute(
            self.actor,
            case_id,
            ResolveDisputeRequest(disposition=disposition, agent_percent=agent_percent),
        )
        logger.info(
            "🟣 ARBITRATOR: Dispute resolved",
            disposition=disposition.value,
            escrow_status=status.status.value,
            case_status=status.case_status.value,
        )
        return status


# ---------------------------------------------------------------------------
# Print helpers
# ---------------------------------------------------------------------------
def banner(text: str) -> None:
    width = 70
    print("\n" + "=" * width)
    print(f"  {text}")
    print("=" * width + "\n")


def section(text: str) -> None:
    print(f"\n--- {text} ---\n")


def print_balances(status: EscrowStatusResponse) -> None:
    print(f"  Escrow: {status.status.value}   Case: {status.case_status.value}")
    print(
        f"  Funded {status.funded_amount} | Released {status.released_amount} | "
        f"Held {status.held_amount} | Refunded {status.refunded_amount} | "
        f"Available {status.available_amount}"
    )


async def print_timeline(gateway: WorkflowGateway, actor: Actor, case_id: uuid.UUID) -> None:
    timeline = await gateway.get_timeline(actor, case_id)
    print("\n  📜 Timeline:")
    for evt in timeline.events:
        amount = f" {evt.amount}" if evt.amount is not None else ""
        index = f" #{evt.milestone_index}" if evt.milestone_index is not None else ""
        print(f"    {evt.position}. [{evt.event_type}]{index}{amount} (by {evt.actor_id})")
    print()


# ===========================================================================
# Scenario 1: Happy Path
# ===========================================================================
async def scenario_1_happy_path(gateway: WorkflowGateway) -> None:
    banner("SCENARIO 1: Happy Path — Four $500 Milestones")
    client, agent = ClientBot(), AgentBot()

    section("Step 1: Agent proposes, client funds $2000")
    proposal_id = await agent.propose(
        gateway, client, "H-1B visa petition", [Decimal("500.00")] * 4
    )
    escrow_id, case_id = await client.fund(gateway, proposal_id, Decimal("2000.00"))

    section("Step 2: Approving a pending milestone is refused")
    try:
        await client.approve(gateway, case_id, 0)
    except InvalidMilestoneStateError as exc:
        print(f"  ✅ Refused: {exc.message}")

    section("Step 3: Each milestone is delivered and approved")
    for index in range(4):
        await agent.complete(gateway, case_id, index)
        await client.approve(gateway, case_id, index)

    status = await gateway.get_escrow_status(client.actor, escrow_id)
    print_balances(status)
    assert status.status == EscrowStatus.FULLY_RELEASED
    assert status.case_status == CaseStatus.COMPLETED
    await print_timeline(gateway, client.actor, case_id)


# ===========================================================================
# Scenario 2: Dispute and Refund
# ===========================================================================
async def scenario_2_dispute_refund(gateway: WorkflowGateway) -> None:
    banner("SCENARIO 2: Dispute and Refund")
    client, agent, arbitrator = ClientBot(), AgentBot(), ArbitratorBot()

    proposal_id = await agent.propose(
        gateway, client, "Student visa application", [Decimal("500.00")] * 4
    )
    escrow_id, case_id = await client.fund(gateway, proposal_id, Decimal("2000.00"))

    section("Step 1: Milestone 0 released")
    await agent.complete(gateway, case_id, 0)
    await client.approve(gateway, case_id, 0)

    section("Step 2: Client disputes the remaining work")
    await client.dispute(gateway, case_id, "Agent stopped responding")
    print_balances(await gateway.get_escrow_status(client.actor, escrow_id))

    try:
        await agent.dispute(gateway, case_id, "Client withheld documents")
    except AlreadyOnHoldError as exc:
        print(f"  ✅ Second hold refused: {exc.message}")

    section("Step 3: Arbitrator refunds the client")
    status = await arbitrator.resolve(gateway, case_id, DispositionType.REFUND_TO_CLIENT)
    print_balances(status)
    assert status.case_status == CaseStatus.CANCELLED
    await print_timeline(gateway, arbitrator.actor, case_id)


# ===========================================================================
# Scenario 3: Dispute and Split
# ===========================================================================
async def scenario_3_dispute_split(gateway: WorkflowGateway) -> None:
    banner("SCENARIO 3: Dispute and Split 40/60")
    client, agent, arbitrator = ClientBot(), AgentBot(), ArbitratorBot()

    proposal_id = await agent.propose(
        gateway, client, "Work permit renewal", [Decimal("300.00"), Decimal("700.00")]
    )
    _, case_id = await client.fund(gateway, proposal_id, Decimal("1000.00"))

    section("Step 1: Milestone 0 rejected, agent disputes")
    await agent.complete(gateway, case_id, 0)
    await client.reject(gateway, case_id, 0, "Wrong form submitted")
    await agent.dispute(gateway, case_id, "Form was correct for this visa class")

    section("Step 2: Arbitrator splits the held funds")
    status = await arbitrator.resolve(
        gateway, case_id, DispositionType.SPLIT, agent_percent=Decimal("40")
    )
    print_balances(status)
    assert status.released_amount == Decimal("400.00")
    assert status.refunded_amount == Decimal("600.00")
    await print_timeline(gateway, arbitrator.actor, case_id)


# ===========================================================================
# Main
# ===========================================================================
SCENARIOS = {
    1: scenario_1_happy_path,
    2: scenario_2_dispute_refund,
    3: scenario_3_dispute_split,
}


async def run(num: int = 0, use_sqlite: bool = False) -> None:
    """Run one scenario, or all of them when ``num`` is 0."""
    if num and num not in SCENARIOS:
        print(f"Unknown scenario {num}. Available: 1, 2, 3")
        return

    gateway = await init_gateway(use_sqlite=use_sqlite)
    try:
        print("\n  VISA MARKETPLACE ESCROW — SIMULATION")
        print(f"  Database: {'SQLite' if use_sqlite else 'PostgreSQL'}\n")
        for key, scenario in SCENARIOS.items():
            if num in (0, key):
                await scenario(gateway)
        print("\n" + "=" * 70)
        print("  ✅ SCENARIOS COMPLETED SUCCESSFULLY")
        print("=" * 70 + "\n")
    finally:
        await shutdown_database()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Visa Marketplace Escrow Simulation")
    parser.add_argument(
        "--scenario",
        type=int,
        default=0,
        help="Run a specific scenario (1, 2, or 3). Default: run all.",
    )
    parser.add_argument(
        "--sqlite",
        action="store_true",
        help="Use a temporary SQLite file instead of PostgreSQL (no Docker needed).",
    )
    args = parser.parse_args()
    asyncio.run(run(args.scenario, use_sqlite=args.sqlite))
