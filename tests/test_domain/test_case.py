"""Tests for the Case aggregate: construction, disputes, completion, cancellation."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

import pytest

from visa_escrow.domain.case import Case
from visa_escrow.domain.enums import (
    CaseStatus,
    DisputeStatus,
    EscrowStatus,
    MilestoneStatus,
    PaymentMethod,
    Role,
)
from visa_escrow.domain.escrow_account import Disposition
from visa_escrow.domain.exceptions import (
    AlreadyOnHoldError,
    InvalidAmountError,
    InvalidStateTransitionError,
    MilestoneIndexError,
    MilestoneSumMismatchError,
)
from visa_escrow.domain.milestone import MilestoneSpec
from visa_escrow.domain.money import Money

NOW = datetime(2026, 2, 1, tzinfo=UTC)
CLIENT = uuid.uuid4()
AGENT = uuid.uuid4()
ARBITRATOR = uuid.uuid4()


def _specs(*majors: str) -> list[MilestoneSpec]:
    return [MilestoneSpec(title=f"Stage {i}", amount=Money.from_major(m)) for i, m in enumerate(majors)]


def _funded_case(*majors: str) -> Case:
    specs = _specs(*(majors or ("500.00",) * 4))
    funded_total = Money(sum(s.amount.amount for s in specs))
    case = Case.create_with_milestones(CLIENT, AGENT, specs, funded_total, NOW)
    case.escrow.fund(funded_total, "pi_case", PaymentMethod.STRIPE, NOW)
    return case


def _approve_and_release(case: Case, index: int) -> None:
    m = case.milestone(index)
    m.submit([f"stage-{index}.pdf"], NOW)
    m.approve(NOW)
    case.escrow.release(m.amount, m, NOW)
    case.check_completion(NOW)


class TestCreateWithMilestones:
    def test_builds_ordered_milestones_and_unfunded_escrow(self) -> None:
        specs = _specs("500.00", "500.00", "500.00", "500.00")
        case = Case.create_with_milestones(CLIENT, AGENT, specs, Money.from_major("2000.00"), NOW)
        assert [m.index for m in case.milestones] == [0, 1, 2, 3]
        assert all(m.status == MilestoneStatus.PENDING for m in case.milestones)
        assert case.escrow.status == EscrowStatus.UNFUNDED
        assert case.escrow.case_id == case.id
        assert case.status == CaseStatus.ACTIVE

    def test_sum_must_match_funding(self) -> None:
        with pytest.raises(MilestoneSumMismatchError) as exc_info:
            Case.create_with_milestones(
                CLIENT, AGENT, _specs("500.00", "400.00"), Money.from_major("1000.00"), NOW
            )
        assert exc_info.value.code == "MILESTONE_SUM_MISMATCH"

    def test_requires_milestones(self) -> None:
        with pytest.raises(InvalidAmountError):
            Case.create_with_milestones(CLIENT, AGENT, [], Money(100), NOW)

    def test_zero_milestone_rejected(self) -> None:
        with pytest.raises(InvalidAmountError):
            Case.create_with_milestones(CLIENT, AGENT, _specs("0.00"), Money(0), NOW)


class TestQueries:
    def test_unknown_milestone_index(self) -> None:
        case = _funded_case()
        with pytest.raises(MilestoneIndexError):
            case.milestone(4)

    def test_role_of(self) -> None:
        case = _funded_case()
        assert case.role_of(CLIENT) == Role.CLIENT
        assert case.role_of(AGENT) == Role.AGENT
        assert case.role_of(uuid.uuid4()) is None


class TestCompletion:
    def test_all_released_completes_case(self) -> None:
        case = _funded_case()
        for index in range(4):
            _approve_and_release(case, index)
        assert case.status == CaseStatus.COMPLETED
        assert case.completed_at == NOW
        assert case.escrow.status == EscrowStatus.FULLY_RELEASED

    def test_partial_release_keeps_case_active(self) -> None:
        case = _funded_case()
        _approve_and_release(case, 0)
        assert case.status == CaseStatus.ACTIVE
        assert case.escrow.status == EscrowStatus.PARTIALLY_RELEASED


class TestDisputes:
    def test_dispute_holds_remaining_funds(self) -> None:
        case = _funded_case()
        _approve_and_release(case, 0)
        dispute = case.raise_dispute("Agent unresponsive", CLIENT, Role.CLIENT, NOW)
        assert dispute.held_amount == Money.from_major("1500.00")
        assert case.status == CaseStatus.DISPUTED
        assert case.escrow.status == EscrowStatus.ON_HOLD
        assert case.active_dispute is dispute

    def test_second_dispute_rejected(self) -> None:
        case = _funded_case()
        case.raise_dispute("First", CLIENT, Role.CLIENT, NOW)
        with pytest.raises(AlreadyOnHoldError):
            case.raise_dispute("Second", AGENT, Role.AGENT, NOW)
        assert len(case.disputes) == 1

    def test_refund_cancels_case(self) -> None:
        case = _funded_case()
        _approve_and_release(case, 0)
        case.raise_dispute("Agent unresponsive", CLIENT, Role.CLIENT, NOW)
        settlement = case.resolve_dispute(Disposition.refund_to_client(), ARBITRATOR, NOW)

        assert settlement.refunded == Money.from_major("1500.00")
        assert case.status == CaseStatus.CANCELLED
        assert case.escrow.status == EscrowStatus.REFUNDED
        dispute = case.disputes[0]
        assert dispute.status == DisputeStatus.RESOLVED_REFUND
        assert dispute.resolved_by == ARBITRATOR

    def test_release_to_agent_completes_case(self) -> None:
        case = _funded_case()
        _approve_and_release(case, 0)
        case.raise_dispute("Client will not approve", AGENT, Role.AGENT, NOW)
        case.resolve_dispute(Disposition.release_to_agent(), ARBITRATOR, NOW)

        assert case.status == CaseStatus.COMPLETED
        assert case.escrow.status == EscrowStatus.FULLY_RELEASED
        assert all(m.is_released for m in case.milestones)

    def test_full_split_to_agent_completes_case(self) -> None:
        case = _funded_case()
        case.raise_dispute("Dispute", AGENT, Role.AGENT, NOW)
        case.resolve_dispute(Disposition.split(100), ARBITRATOR, NOW)
        assert case.status == CaseStatus.COMPLETED

    def test_split_cancels_case(self) -> None:
        case = _funded_case("300.00", "700.00")
        case.raise_dispute("Dispute", AGENT, Role.AGENT, NOW)
        settlement = case.resolve_dispute(Disposition.split("40"), ARBITRATOR, NOW)
        assert settlement.released == Money.from_major("400.00")
        assert settlement.refunded == Money.from_major("600.00")
        assert case.status == CaseStatus.CANCELLED
        assert case.disputes[0].agent_percent == 40

    def test_resolve_without_dispute(self) -> None:
        case = _funded_case()
        with pytest.raises(InvalidStateTransitionError):
            case.resolve_dispute(Disposition.refund_to_client(), ARBITRATOR, NOW)


class TestCancel:
    def test_cancel_refunds_unreleased(self) -> None:
        case = _funded_case()
        _approve_and_release(case, 0)
        refunded = case.cancel("Client withdrew application", ARBITRATOR, NOW)
        assert refunded == Money.from_major("1500.00")
        assert case.status == CaseStatus.CANCELLED
        assert case.cancellation_reason == "Client withdrew application"
        assert case.escrow.released == Money.from_major("500.00")

    def test_cancel_resolves_open_dispute(self) -> None:
        case = _funded_case()
        case.raise_dispute("Dispute", CLIENT, Role.CLIENT, NOW)
        refunded = case.cancel("Arbitrator closed case", ARBITRATOR, NOW)
        assert refunded == Money.from_major("2000.00")
        assert case.disputes[0].status == DisputeStatus.RESOLVED_REFUND
        assert case.escrow.status == EscrowStatus.REFUNDED

    def test_cannot_cancel_completed(self) -> None:
        case = _funded_case("100.00")
        _approve_and_release(case, 0)
        with pytest.raises(InvalidStateTransitionError):
            case.cancel("Too late", ARBITRATOR, NOW)
