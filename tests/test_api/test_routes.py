"""HTTP tests for the REST routes through the full middleware stack.

The application runs in-process over httpx's ASGI transport. Database,
publisher, Redis and scheduler dependencies are overridden, so no external
service is needed and the lifespan hooks are not run.
"""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal
from typing import TYPE_CHECKING

import pytest
import pytest_asyncio
from conftest import ADMIN, BUYER, OUTSIDER, SELLER, RecordingEventPublisher
from httpx import ASGITransport, AsyncClient

from negotiation_engine.api.deps import (
    get_db_session,
    get_publisher,
    get_redis_client,
    get_scheduler,
)
from negotiation_engine.domain.clock import as_utc
from negotiation_engine.main import create_app
from negotiation_engine.orchestration.jobs import PREMIUM_METRICS_JOB, register_default_jobs
from negotiation_engine.orchestration.scheduler import JobScheduler

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

BASE = "/api/v1/negotiations"


def as_user(user_id: str, role: str | None = None) -> dict[str, str]:
    headers = {"X-User-Id": user_id}
    if role:
        headers["X-User-Role"] = role
    return headers


ADMIN_HEADERS = as_user(ADMIN, "admin")


@pytest_asyncio.fixture
async def client(session_factory) -> AsyncIterator[AsyncClient]:
    app = create_app()
    publisher = RecordingEventPublisher()
    scheduler = JobScheduler(session_factory)
    register_default_jobs(scheduler)

    async def override_session():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db_session] = override_session
    app.dependency_overrides[get_publisher] = lambda: publisher
    app.dependency_overrides[get_redis_client] = lambda: None
    app.dependency_overrides[get_scheduler] = lambda: scheduler

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


async def open_via_api(client: AsyncClient, price: str = "250.00", quantity: int = 2) -> dict:
    response = await client.post(
        BASE,
        json={"listing_id": "listing-7", "seller_id": SELLER, "price": price, "quantity": quantity},
        headers=as_user(BUYER),
    )
    assert response.status_code == 201, response.text
    return response.json()


async def accept_via_api(client: AsyncClient) -> dict:
    negotiation = await open_via_api(client)
    response = await client.post(
        f"{BASE}/{negotiation['id']}/accept", json={}, headers=as_user(SELLER)
    )
    assert response.status_code == 200, response.text
    return response.json()


class TestViewerHeaders:
    @pytest.mark.asyncio
    async def test_missing_user_header(self, client) -> None:
        response = await client.post(
            BASE, json={"listing_id": "l", "seller_id": SELLER, "price": "10.00"}
        )
        assert response.status_code == 403
        assert response.json()["error"] == "FORBIDDEN"

    @pytest.mark.asyncio
    async def test_request_id_is_echoed(self, client) -> None:
        response = await client.get(
            f"{BASE}/missing", headers={**as_user(BUYER), "X-Request-ID": "req-123"}
        )
        assert response.status_code == 404
        assert response.json()["error"] == "NOT_FOUND"
        assert response.headers["X-Request-ID"] == "req-123"


class TestNegotiationRoutes:
    @pytest.mark.asyncio
    async def test_open_and_read(self, client) -> None:
        created = await open_via_api(client)
        assert created["status"] == "CREATED"
        assert created["buyer_id"] == BUYER
        assert len(created["offers"]) == 1

        response = await client.get(f"{BASE}/{created['id']}", headers=as_user(SELLER))
        body = response.json()
        assert response.status_code == 200
        assert body["viewer_role"] == "SELLER"
        assert set(body["allowed_events"]) == {"counter", "accept", "cancel"}
        assert body["escrow_funded_ratio"] is None

    @pytest.mark.asyncio
    async def test_outsider_cannot_read(self, client) -> None:
        created = await open_via_api(client)
        response = await client.get(f"{BASE}/{created['id']}", headers=as_user(OUTSIDER))
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_admin_can_read(self, client) -> None:
        created = await open_via_api(client)
        response = await client.get(f"{BASE}/{created['id']}", headers=ADMIN_HEADERS)
        assert response.status_code == 200
        assert response.json()["viewer_role"] == "ADMIN"

    @pytest.mark.asyncio
    async def test_open_with_response_deadline(self, client) -> None:
        response = await client.post(
            BASE,
            json={
                "listing_id": "listing-7",
                "seller_id": SELLER,
                "price": "250.00",
                "expires_at": "2025-06-05T10:00:00+00:00",
            },
            headers=as_user(BUYER),
        )
        assert response.status_code == 201
        deadline = as_utc(datetime.fromisoformat(response.json()["expires_at"]))
        assert deadline == datetime(2025, 6, 5, 10, 0, tzinfo=UTC)

    @pytest.mark.asyncio
    async def test_invalid_body(self, client) -> None:
        response = await client.post(
            BASE,
            json={"listing_id": "l", "seller_id": SELLER, "price": "-5"},
            headers=as_user(BUYER),
        )
        assert response.status_code == 400
        assert response.json()["error"] == "VALIDATION_FAILED"
        assert response.json()["fields"] == ["price"]

    @pytest.mark.asyncio
    async def test_counter_and_accept(self, client) -> None:
        created = await open_via_api(client)
        url = f"{BASE}/{created['id']}"

        countered = await client.post(
            f"{url}/offers", json={"price": "240.00"}, headers=as_user(SELLER)
        )
        assert countered.status_code == 201
        assert countered.json()["status"] == "COUNTERED"

        accepted = await client.post(
            f"{url}/accept", json={"agreed_price": "240.00"}, headers=as_user(BUYER)
        )
        body = accepted.json()
        assert accepted.status_code == 200
        assert body["status"] == "ACCEPTED"
        assert Decimal(body["escrow_account"]["expected_amount"]) == Decimal("480.00")
        assert body["contract"]["status"] == "DRAFT"

    @pytest.mark.asyncio
    async def test_second_accept_conflicts(self, client) -> None:
        accepted = await accept_via_api(client)
        response = await client.post(
            f"{BASE}/{accepted['id']}/accept", json={}, headers=as_user(SELLER)
        )
        assert response.status_code == 409
        assert response.json()["error"] == "INVALID_TRANSITION"

    @pytest.mark.asyncio
    async def test_escrow_to_completion(self, client) -> None:
        accepted = await accept_via_api(client)
        url = f"{BASE}/{accepted['id']}"

        partial = await client.post(
            f"{url}/escrow/fund", json={"amount": "100.00"}, headers=as_user(BUYER)
        )
        assert partial.json()["status"] == "ACCEPTED"

        overfund = await client.post(
            f"{url}/escrow/fund", json={"amount": "500.00"}, headers=as_user(BUYER)
        )
        assert overfund.status_code == 400
        assert overfund.json()["error"] == "VALIDATION_FAILED"

        funded = await client.post(
            f"{url}/escrow/fund", json={"amount": "400.00"}, headers=as_user(BUYER)
        )
        assert funded.json()["status"] == "ESCROW_FUNDED"

        await client.post(f"{url}/escrow/release", json={}, headers=as_user(BUYER))
        released = await client.post(
            f"{url}/escrow/release", json={"reason": "delivered"}, headers=as_user(SELLER)
        )
        assert released.json()["status"] == "ESCROW_RELEASED"

        completed = await client.post(f"{url}/complete", headers=as_user(SELLER))
        assert completed.json()["status"] == "COMPLETED"

        cancel = await client.post(f"{url}/cancel", json={}, headers=as_user(BUYER))
        assert cancel.status_code == 409

        events = await client.get(f"{url}/events", headers=as_user(BUYER))
        assert [e["event_type"] for e in events.json()] == [
            "NEGOTIATION_CREATED",
            "NEGOTIATION_ACCEPTED",
            "ESCROW_DEPOSIT_RECORDED",
            "ESCROW_FUNDED",
            "ESCROW_RELEASE_APPROVED",
            "ESCROW_RELEASED",
            "NEGOTIATION_COMPLETED",
        ]

    @pytest.mark.asyncio
    async def test_cancel_refunds(self, client) -> None:
        accepted = await accept_via_api(client)
        url = f"{BASE}/{accepted['id']}"
        await client.post(f"{url}/escrow/fund", json={"amount": "100.00"}, headers=as_user(BUYER))

        response = await client.post(
            f"{url}/cancel", json={"reason": "changed mind"}, headers=as_user(BUYER)
        )
        body = response.json()
        assert body["status"] == "CANCELLED"
        assert body["escrow_account"]["status"] == "REFUNDED"
        assert body["contract"]["status"] == "VOID"
        ledger = body["escrow_account"]["transactions"]
        assert [(t["type"], Decimal(t["amount"])) for t in ledger] == [
            ("FUND", Decimal("100.00")),
            ("REFUND", Decimal("100.00")),
        ]
        assert ledger[1]["reference"] == "changed mind"


class TestContractRoutes:
    @pytest.mark.asyncio
    async def test_revisions_and_compare(self, client) -> None:
        accepted = await accept_via_api(client)
        url = f"{BASE}/{accepted['id']}/contracts"

        first = await client.post(
            f"{url}/revisions", json={"body": "1. Scope\nA"}, headers=as_user(BUYER)
        )
        second = await client.post(
            f"{url}/revisions", json={"body": "1. Scope\nB\n2. Term\nC"}, headers=as_user(SELLER)
        )
        assert (first.status_code, second.status_code) == (201, 201)

        compare = await client.get(
            f"{url}/revisions/compare",
            params={"base": first.json()["id"], "target": second.json()["id"]},
            headers=as_user(BUYER),
        )
        assert compare.status_code == 200
        assert compare.json()["summary"] == {
            "added": 2,
            "removed": 0,
            "modified": 1,
            "unchanged": 1,
        }

        comment = await client.post(
            f"{url}/revisions/{second.json()['id']}/comments",
            json={"body": "Term is missing a duration."},
            headers=as_user(BUYER),
        )
        assert comment.status_code == 201

        resolved = await client.post(
            f"{url}/comments/{comment.json()['id']}/resolve", headers=as_user(SELLER)
        )
        assert resolved.json()["status"] == "RESOLVED"

        status = await client.post(
            f"{url}/revisions/{second.json()['id']}/status",
            json={"status": "ACCEPTED"},
            headers=as_user(BUYER),
        )
        assert status.json()["is_current"] is True

        listed = await client.get(f"{url}/revisions", headers=as_user(SELLER))
        assert [r["version"] for r in listed.json()] == [1, 2]
        assert len(listed.json()[1]["comments"]) == 1

    @pytest.mark.asyncio
    async def test_revision_before_acceptance(self, client) -> None:
        created = await open_via_api(client)
        response = await client.post(
            f"{BASE}/{created['id']}/contracts/revisions",
            json={"body": "1. Scope"},
            headers=as_user(BUYER),
        )
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_sign_in_app(self, client) -> None:
        accepted = await accept_via_api(client)
        url = f"{BASE}/{accepted['id']}/contracts/sign"

        buyer = await client.post(url, headers=as_user(BUYER))
        assert buyer.status_code == 200
        assert buyer.json()["role"] == "BUYER"
        assert buyer.json()["envelope_issued"] is True
        assert buyer.json()["completed"] is False
        assert buyer.json()["contract"]["provider_envelope_id"].startswith("env_")

        seller = await client.post(url, json={"intent": "seller"}, headers=as_user(SELLER))
        assert seller.json()["envelope_issued"] is False
        assert seller.json()["completed"] is True
        assert seller.json()["contract"]["status"] == "SIGNED"

        again = await client.post(url, headers=as_user(BUYER))
        assert again.status_code == 409
        assert again.json()["error"] == "CONTRACT_SIGNATURE_CONFLICT"

    @pytest.mark.asyncio
    async def test_outsider_cannot_sign(self, client) -> None:
        accepted = await accept_via_api(client)
        response = await client.post(
            f"{BASE}/{accepted['id']}/contracts/sign", headers=as_user(OUTSIDER)
        )
        assert response.status_code == 403


class TestWebhookRoute:
    @pytest.mark.asyncio
    async def test_delivery_and_redelivery(self, client) -> None:
        accepted = await accept_via_api(client)
        payload = {
            "negotiationId": accepted["id"],
            "contractId": accepted["contract"]["id"],
            "participant": {"id": BUYER, "role": "buyer"},
            "status": "signed",
        }
        url = "/api/v1/integrations/esign/webhooks"

        first = await client.post(url, json=payload)
        second = await client.post(url, json=payload)

        assert first.json() == {"ok": True, "duplicate": False}
        assert second.json() == {"ok": True, "duplicate": True}

    @pytest.mark.asyncio
    async def test_invalid_delivery(self, client) -> None:
        response = await client.post(
            "/api/v1/integrations/esign/webhooks", json={"status": "SIGNED"}
        )
        body = response.json()
        assert response.status_code == 400
        assert body["error"] == "INVALID_WEBHOOK"
        assert "negotiation_id" in body["fields"]


class TestAdminRoutes:
    @pytest.mark.asyncio
    async def test_jobs_require_admin(self, client) -> None:
        response = await client.get("/api/v1/admin/jobs", headers=as_user(BUYER))
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_trigger_and_health(self, client) -> None:
        triggered = await client.post(
            f"/api/v1/admin/jobs/{PREMIUM_METRICS_JOB}/trigger", headers=ADMIN_HEADERS
        )
        assert triggered.status_code == 200
        assert triggered.json()["status"] == "SUCCEEDED"

        health = await client.get("/api/v1/admin/jobs", headers=ADMIN_HEADERS)
        jobs = {job["name"]: job for job in health.json()["jobs"]}
        assert PREMIUM_METRICS_JOB in jobs
        assert jobs[PREMIUM_METRICS_JOB]["recent_runs"][0]["status"] == "SUCCEEDED"

    @pytest.mark.asyncio
    async def test_trigger_unknown_job(self, client) -> None:
        response = await client.post("/api/v1/admin/jobs/nope/trigger", headers=ADMIN_HEADERS)
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_premium_metrics(self, client) -> None:
        response = await client.get(
            "/api/v1/admin/premium/metrics",
            params={"window_days": 3, "tier": "PREMIUM"},
            headers=ADMIN_HEADERS,
        )
        body = response.json()
        assert response.status_code == 200
        assert body["window_days"] == 7
        assert body["tier"] == "PREMIUM"
        assert len(body["timeseries"]) == 7
        assert set(body["forecasts"]) == {"premium_completions", "contract_signatures"}
