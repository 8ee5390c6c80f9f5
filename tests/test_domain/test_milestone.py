"""Tests for the Milestone entity."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from visa_escrow.domain.enums import MilestoneStatus
from visa_escrow.domain.exceptions import InvalidMilestoneStateError
from visa_escrow.domain.milestone import Milestone
from visa_escrow.domain.money import Money

NOW = datetime(2026, 2, 1, tzinfo=UTC)


def _milestone() -> Milestone:
    return Milestone(index=0, title="Document review", amount=Money(50000))


class TestMilestoneLifecycle:
    def test_submit_records_evidence(self) -> None:
        m = _milestone()
        m.submit(["passport.pdf"], NOW, notes="All pages scanned")
        assert m.status == MilestoneStatus.SUBMITTED
        assert m.evidence == ["passport.pdf"]
        assert m.notes == "All pages scanned"
        assert m.submitted_at == NOW

    def test_approve_then_release(self) -> None:
        m = _milestone()
        m.submit(["a.pdf"], NOW)
        m.approve(NOW)
        m.mark_released(NOW)
        assert m.is_released
        assert m.released_at == NOW

    def test_reject_and_resubmit_clears_reason(self) -> None:
        m = _milestone()
        m.submit(["a.pdf"], NOW)
        m.reject("Missing signature", NOW)
        assert m.status == MilestoneStatus.REJECTED
        assert m.rejection_reason == "Missing signature"

        m.submit(["a-signed.pdf"], NOW)
        assert m.status == MilestoneStatus.SUBMITTED
        assert m.rejection_reason is None
        assert m.evidence == ["a-signed.pdf"]


class TestMilestoneGuards:
    def test_cannot_approve_pending(self) -> None:
        m = _milestone()
        with pytest.raises(InvalidMilestoneStateError):
            m.approve(NOW)
        assert m.status == MilestoneStatus.PENDING

    def test_cannot_release_unapproved(self) -> None:
        m = _milestone()
        m.submit(["a.pdf"], NOW)
        with pytest.raises(InvalidMilestoneStateError):
            m.mark_released(NOW)

    def test_released_is_final(self) -> None:
        m = _milestone()
        m.arbitrated_release(NOW)
        with pytest.raises(InvalidMilestoneStateError):
            m.submit(["late.pdf"], NOW)
