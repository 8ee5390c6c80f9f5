"""HTTP tests: camelCase bodies, bearer auth, error bodies and status codes."""

from __future__ import annotations

from decimal import Decimal

import pytest


async def _propose(api, auth_headers, agent, client) -> dict:
    resp = await api.post(
        "/api/v1/proposals",
        json={
            "clientId": str(client.actor_id),
            "title": "Student visa application",
            "milestones": [
                {"title": "Document checklist", "amount": "400.00"},
                {"title": "Visa application", "amount": "600.00"},
            ],
        },
        headers=auth_headers(agent),
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


async def _fund(api, auth_headers, agent, client) -> dict:
    proposal = await _propose(api, auth_headers, agent, client)
    resp = await api.post(
        "/api/v1/escrow/fund",
        json={"proposalId": proposal["id"], "amount": "1000.00", "paymentMethod": "stripe"},
        headers=auth_headers(client),
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


class TestAuthentication:
    @pytest.mark.asyncio
    async def test_missing_token_is_401(self, api) -> None:
        resp = await api.get("/api/v1/escrow/mine")
        assert resp.status_code == 401
        assert resp.json()["error"] == "NOT_AUTHENTICATED"

    @pytest.mark.asyncio
    async def test_bad_token_is_401(self, api) -> None:
        resp = await api.get("/api/v1/escrow/mine", headers={"Authorization": "Bearer nope"})
        assert resp.status_code == 401

    @pytest.mark.asyncio
    async def test_wrong_role_is_403(self, api, auth_headers, client) -> None:
        resp = await api.get("/api/v1/escrow/all", headers=auth_headers(client))
        assert resp.status_code == 403
        body = resp.json()
        assert body["error"] == "NOT_AUTHORIZED"
        assert body["kind"] == "authorization"

    @pytest.mark.asyncio
    async def test_request_id_echoed(self, api) -> None:
        resp = await api.get("/health", headers={"X-Request-ID": "req-42"})
        assert resp.headers["X-Request-ID"] == "req-42"


class TestEscrowFlow:
    @pytest.mark.asyncio
    async def test_fund_response_shape(self, api, auth_headers, agent, client) -> None:
        funded = await _fund(api, auth_headers, agent, client)
        assert funded["status"] == "funded"
        assert Decimal(funded["fundedAmount"]) == Decimal("1000.00")
        assert funded["paymentReference"].startswith("pi_")
        assert Decimal(funded["fees"]["totalFees"]) == Decimal("79.00")

    @pytest.mark.asyncio
    async def test_complete_release_and_status(self, api, auth_headers, agent, client) -> None:
        funded = await _fund(api, auth_headers, agent, client)
        case_id, escrow_id = funded["caseId"], funded["escrowId"]

        resp = await api.post(
            f"/api/v1/cases/{case_id}/milestones/0/complete",
            json={"evidence": ["checklist.pdf"], "notes": "Signed by client"},
            headers=auth_headers(agent),
        )
        assert resp.status_code == 200, resp.text
        assert resp.json()["milestones"][0]["status"] == "submitted"

        resp = await api.post(
            f"/api/v1/escrow/{escrow_id}/release",
            json={"milestoneIndex": 0},
            headers=auth_headers(client),
        )
        assert resp.status_code == 200, resp.text

        status = (
            await api.get(f"/api/v1/escrow/{escrow_id}/status", headers=auth_headers(agent))
        ).json()
        assert Decimal(status["releasedAmount"]) == Decimal("400.00")
        assert Decimal(status["availableAmount"]) == Decimal("600.00")
        assert Decimal(status["progressPercent"]) == Decimal("40.00")
        assert status["milestones"][0]["status"] == "released"
        assert status["milestones"][0]["evidenceUrls"] == ["https://docs.test/files/checklist.pdf"]

    @pytest.mark.asyncio
    async def test_outsider_cannot_view(
        self, api, auth_headers, agent, client, outsider
    ) -> None:
        funded = await _fund(api, auth_headers, agent, client)
        resp = await api.get(
            f"/api/v1/escrow/{funded['escrowId']}/status", headers=auth_headers(outsider)
        )
        assert resp.status_code == 403

    @pytest.mark.asyncio
    async def test_approving_pending_milestone_conflicts(
        self, api, auth_headers, agent, client
    ) -> None:
        funded = await _fund(api, auth_headers, agent, client)
        resp = await api.post(
            f"/api/v1/cases/{funded['caseId']}/milestones/1/approve",
            headers=auth_headers(client),
        )
        assert resp.status_code == 409
        assert resp.json()["error"] == "INVALID_MILESTONE_STATE"

    @pytest.mark.asyncio
    async def test_unknown_escrow_is_404(self, api, auth_headers, client) -> None:
        resp = await api.get(
            "/api/v1/escrow/00000000-0000-4000-8000-000000000000/status",
            headers=auth_headers(client),
        )
        assert resp.status_code == 404
        assert resp.json()["kind"] == "not_found"


class TestDisputeFlow:
    @pytest.mark.asyncio
    async def test_hold_twice_then_refund(
        self, api, auth_headers, agent, client, admin
    ) -> None:
        funded = await _fund(api, auth_headers, agent, client)
        escrow_id, case_id = funded["escrowId"], funded["caseId"]

        resp = await api.post(
            f"/api/v1/escrow/{escrow_id}/hold",
            json={"reason": "No progress for 30 days"},
            headers=auth_headers(client),
        )
        assert resp.status_code == 200
        assert resp.json()["status"] == "on_hold"

        resp = await api.post(
            f"/api/v1/cases/{case_id}/dispute",
            json={"reason": "Client unresponsive"},
            headers=auth_headers(agent),
        )
        assert resp.status_code == 409
        body = resp.json()
        assert body["error"] == "ALREADY_ON_HOLD"
        assert body["kind"] == "state_conflict"
        assert body["retriable"] is False

        resp = await api.post(
            f"/api/v1/cases/{case_id}/dispute/resolve",
            json={"disposition": "refund_to_client"},
            headers=auth_headers(admin),
        )
        assert resp.status_code == 200, resp.text
        resolved = resp.json()
        assert resolved["status"] == "refunded"
        assert resolved["caseStatus"] == "cancelled"
        assert Decimal(resolved["refundedAmount"]) == Decimal("1000.00")

    @pytest.mark.asyncio
    async def test_split_needs_percentage(self, api, auth_headers, agent, client, admin) -> None:
        funded = await _fund(api, auth_headers, agent, client)
        resp = await api.post(
            f"/api/v1/cases/{funded['caseId']}/dispute/resolve",
            json={"disposition": "split"},
            headers=auth_headers(admin),
        )
        assert resp.status_code == 422
        body = resp.json()
        assert body["error"] == "VALIDATION_ERROR"
        assert body["details"]

    @pytest.mark.asyncio
    async def test_split_percentage_limited_to_two_decimals(
        self, api, auth_headers, agent, client, admin
    ) -> None:
        funded = await _fund(api, auth_headers, agent, client)
        await api.post(
            f"/api/v1/cases/{funded['caseId']}/dispute",
            json={"reason": "Partial delivery"},
            headers=auth_headers(agent),
        )
        resp = await api.post(
            f"/api/v1/cases/{funded['caseId']}/dispute/resolve",
            json={"disposition": "split", "agentPercent": "33.335"},
            headers=auth_headers(admin),
        )
        assert resp.status_code == 422
        assert resp.json()["kind"] == "validation"

    @pytest.mark.asyncio
    async def test_admin_cancels(self, api, auth_headers, agent, client, admin) -> None:
        funded = await _fund(api, auth_headers, agent, client)
        resp = await api.post(
            f"/api/v1/cases/{funded['caseId']}/cancel",
            json={"reason": "Application withdrawn"},
            headers=auth_headers(admin),
        )
        assert resp.status_code == 200
        assert resp.json()["caseStatus"] == "cancelled"


class TestValidation:
    @pytest.mark.asyncio
    async def test_negative_amount_rejected(self, api, auth_headers, agent, client) -> None:
        resp = await api.post(
            "/api/v1/proposals",
            json={
                "clientId": str(client.actor_id),
                "title": "Work permit",
                "milestones": [{"title": "Filing", "amount": "-5"}],
            },
            headers=auth_headers(agent),
        )
        assert resp.status_code == 422
        assert resp.json()["kind"] == "validation"

    @pytest.mark.asyncio
    async def test_negative_milestone_index_rejected(
        self, api, auth_headers, agent, client
    ) -> None:
        funded = await _fund(api, auth_headers, agent, client)
        resp = await api.post(
            f"/api/v1/cases/{funded['caseId']}/milestones/-1/approve",
            headers=auth_headers(client),
        )
        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_milestone_sum_mismatch(self, api, auth_headers, agent, client) -> None:
        proposal = await _propose(api, auth_headers, agent, client)
        resp = await api.post(
            "/api/v1/escrow/fund",
            json={"proposalId": proposal["id"], "amount": "999.99", "paymentMethod": "paypal"},
            headers=auth_headers(client),
        )
        assert resp.status_code == 422
        assert resp.json()["error"] == "MILESTONE_SUM_MISMATCH"


class TestListingsAndTimeline:
    @pytest.mark.asyncio
    async def test_mine_and_all(self, api, auth_headers, agent, client, admin, outsider) -> None:
        await _fund(api, auth_headers, agent, client)

        mine = (await api.get("/api/v1/escrow/mine", headers=auth_headers(client))).json()
        assert mine["pagination"]["total"] == 1
        assert mine["items"][0]["title"] == "Student visa application"

        theirs = (await api.get("/api/v1/escrow/mine", headers=auth_headers(outsider))).json()
        assert theirs["items"] == []

        resp = await api.get(
            "/api/v1/escrow/all", params={"status": "funded"}, headers=auth_headers(admin)
        )
        assert resp.status_code == 200
        assert resp.json()["pagination"]["total"] == 1

        resp = await api.get(
            "/api/v1/escrow/all", params={"status": "refunded"}, headers=auth_headers(admin)
        )
        assert resp.json()["pagination"]["total"] == 0

    @pytest.mark.asyncio
    async def test_timeline(self, api, auth_headers, agent, client) -> None:
        funded = await _fund(api, auth_headers, agent, client)
        case_id = funded["caseId"]
        await api.post(
            f"/api/v1/cases/{case_id}/milestones/0/complete",
            json={"evidence": ["checklist.pdf"]},
            headers=auth_headers(agent),
        )
        await api.post(
            f"/api/v1/cases/{case_id}/milestones/0/reject",
            json={"reason": "Missing passport copy"},
            headers=auth_headers(client),
        )

        resp = await api.get(f"/api/v1/cases/{case_id}/timeline", headers=auth_headers(client))
        assert resp.status_code == 200
        body = resp.json()
        assert [e["eventType"] for e in body["events"]] == [
            "ESCROW_FUNDED",
            "MILESTONE_SUBMITTED",
            "MILESTONE_REJECTED",
        ]
        assert [e["position"] for e in body["events"]] == [1, 2, 3]
        assert Decimal(body["paymentSummary"]["remaining"]) == Decimal("1000.00")


class TestHealth:
    @pytest.mark.asyncio
    async def test_health_without_redis(self, api) -> None:
        resp = await api.get("/health")
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "ok"
        assert body["database"] == "healthy"
        assert body["redis"] == "not_configured"
