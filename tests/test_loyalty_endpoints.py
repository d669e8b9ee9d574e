from datetime import timedelta

import pytest
from httpx import ASGITransport, AsyncClient

from conftest import NOW, seed_customer, seed_entry, seed_store


def _client(app) -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


@pytest.mark.asyncio
async def test_redeem_flow_through_pending_discount_queue(app_with_db) -> None:
    app, session_factory = app_with_db
    store_id = await seed_store(session_factory)
    customer_id = await seed_customer(session_factory, balance="2210", telegram_user_id=555)

    async with _client(app) as client:
        response = await client.post(
            "/api/v1/transactions",
            json={
                "customerId": customer_id,
                "storeId": store_id,
                "checkAmount": 1000,
                "pointsToRedeem": 200,
                "metadata": {"cashierName": "Ilze", "terminalId": "T-1"},
            },
        )
        assert response.status_code == 201
        payload = response.json()
        assert payload["kind"] == "redeem"
        assert payload["pointsEarned"] == 32.0
        assert payload["newBalance"] == 2042.0
        assert payload["finalAmount"] == 800.0
        discount_id = payload["pendingDiscountId"]
        assert discount_id is not None

        pending = await client.get(f"/api/v1/stores/{store_id}/pending-discounts")
        assert pending.status_code == 200
        assert [item["id"] for item in pending.json()] == [discount_id]
        assert pending.json()[0]["discountAmount"] == 200.0

        claimed = await client.post(
            f"/api/v1/pending-discounts/{discount_id}/transition",
            json={"status": "processing"},
        )
        assert claimed.status_code == 200
        assert claimed.json()["status"] == "processing"

        again = await client.post(
            f"/api/v1/pending-discounts/{discount_id}/transition",
            json={"status": "processing"},
        )
        assert again.status_code == 409
        assert again.json()["error"]["kind"] == "invalid_transition"

        applied = await client.post(
            f"/api/v1/pending-discounts/{discount_id}/transition",
            json={"status": "applied"},
        )
        assert applied.status_code == 200
        assert applied.json()["appliedAt"] is not None

        every = await client.get(f"/api/v1/stores/{store_id}/pending-discounts", params={"status": "all"})
        assert [item["status"] for item in every.json()] == ["applied"]

    assert app.state.notification_service.sent_events[0].recipient == 555


@pytest.mark.asyncio
async def test_transaction_errors_map_to_status_codes(app_with_db) -> None:
    app, session_factory = app_with_db
    store_id = await seed_store(session_factory)
    customer_id = await seed_customer(session_factory, balance="50")

    async with _client(app) as client:
        over_cap = await client.post(
            "/api/v1/transactions",
            json={"customerId": customer_id, "storeId": store_id, "checkAmount": 100, "pointsToRedeem": 30},
        )
        insufficient = await client.post(
            "/api/v1/transactions",
            json={"customerId": customer_id, "storeId": store_id, "checkAmount": 1000, "pointsToRedeem": 60},
        )
        missing = await client.post(
            "/api/v1/transactions",
            json={"customerId": customer_id + 1, "storeId": store_id, "checkAmount": 100},
        )
        invalid = await client.post(
            "/api/v1/transactions",
            json={"customerId": customer_id, "storeId": store_id, "checkAmount": 0},
        )

    assert over_cap.status_code == 422
    error = over_cap.json()["error"]
    assert error["kind"] == "limit_exceeded"
    assert error["details"]["cap"] == 20.0

    assert insufficient.status_code == 409
    assert insufficient.json()["error"]["details"] == {"required": 60.0, "available": 50.0}

    assert missing.status_code == 404
    assert missing.json()["error"]["kind"] == "not_found"

    assert invalid.status_code == 400
    assert invalid.json()["error"]["kind"] == "invalid_argument"


@pytest.mark.asyncio
async def test_customer_reads_reflect_unswept_expiry(app_with_db) -> None:
    app, session_factory = app_with_db
    customer_id = await seed_customer(session_factory, balance="150", card_number="4000000000000004")
    await seed_entry(session_factory, customer_id, amount="100", created_at=NOW - timedelta(days=46))
    await seed_entry(session_factory, customer_id, amount="50", created_at=NOW - timedelta(days=1))

    async with _client(app) as client:
        found = await client.get("/api/v1/customers/search", params={"card": " 4000000000000004 "})
        balance = await client.get(f"/api/v1/customers/{customer_id}/balance")
        history = await client.get(f"/api/v1/customers/{customer_id}/history")
        expiring = await client.get(f"/api/v1/customers/{customer_id}/expiring")
        unknown = await client.get("/api/v1/customers/search", params={"card": "0000"})

    assert found.status_code == 200
    assert found.json()["balance"] == 50.0
    assert found.json()["cachedBalance"] == 150.0
    assert found.json()["needsSync"] is True
    assert found.json()["name"] == "Anna Member"

    assert balance.json() == {
        "customerId": customer_id,
        "available": 50.0,
        "expiredNotYetSwept": 100.0,
        "needsSync": True,
    }

    history_payload = history.json()
    assert history_payload["retentionDays"] == 45
    assert history_payload["earnedTotal"] == 50.0
    assert [entry["amount"] for entry in history_payload["entries"]] == [50.0]

    assert expiring.json()["expiredNow"] == 100.0
    assert unknown.status_code == 404


@pytest.mark.asyncio
async def test_quote_and_recent_feed(app_with_db) -> None:
    app, session_factory = app_with_db
    store_id = await seed_store(session_factory)
    customer_id = await seed_customer(session_factory, balance="30")

    async with _client(app) as client:
        quote = await client.post(
            "/api/v1/transactions/quote",
            json={"checkAmount": 250, "pointsToRedeem": 100, "customerId": customer_id},
        )
        assert quote.status_code == 200
        assert quote.json()["maxRedeemable"] == 30.0
        assert quote.json()["pointsToRedeem"] == 30.0
        assert quote.json()["cashback"] == 8.8
        assert quote.json()["finalAmount"] == 220.0

        for amount in (100, 200):
            created = await client.post(
                "/api/v1/transactions",
                json={"customerId": customer_id, "storeId": store_id, "checkAmount": amount},
            )
            assert created.status_code == 201

        recent = await client.get("/api/v1/transactions/recent", params={"storeId": store_id, "limit": 500})

    assert recent.status_code == 200
    items = recent.json()
    assert [item["checkAmount"] for item in items] == [200.0, 100.0]
    assert items[0]["pointsEarned"] == 8.0


@pytest.mark.asyncio
async def test_manual_sweep_endpoint(app_with_db) -> None:
    app, session_factory = app_with_db
    customer_id = await seed_customer(session_factory, balance="100")
    await seed_entry(session_factory, customer_id, amount="100", created_at=NOW - timedelta(days=46))

    async with _client(app) as client:
        preview = await client.post("/api/v1/maintenance/expire-points", params={"dryRun": "true"})
        sweep = await client.post("/api/v1/maintenance/expire-points")
        balance = await client.get(f"/api/v1/customers/{customer_id}/balance")

    assert preview.json()["dryRun"] is True
    assert preview.json()["totalPointsExpired"] == 100.0
    assert sweep.json()["dryRun"] is False
    assert sweep.json()["customersAffected"] == 1
    assert balance.json()["available"] == 0.0
    assert balance.json()["needsSync"] is False


@pytest.mark.asyncio
async def test_health_and_readiness(app_with_db) -> None:
    app, _ = app_with_db

    async with _client(app) as client:
        root = await client.get("/healthz")
        health = await client.get("/api/v1/healthz")
        ready = await client.get("/api/v1/readyz")

    assert root.json()["status"] == "ok"
    assert health.json() == {"status": "ok"}
    payload = ready.json()
    assert payload["status"] == "ready"
    assert payload["components"]["database"]["status"] == "ready"
    assert payload["components"]["loyalty_job_scheduler"]["status"] == "disabled"
    assert "transactions" in payload["loyalty"]
