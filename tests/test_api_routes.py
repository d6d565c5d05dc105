# -*- coding: utf-8 -*-
"""HTTP-сценарий игрока и админа поверх create_app()."""

from __future__ import annotations

import json
import time
from datetime import timedelta

import httpx
import pytest

from bichobet.app import create_app
from bichobet.app.core.utils_core import utcnow
from bichobet.app.integrations.payment_gateways import sign_payload

ADMIN = {"X-Admin-Api-Key": "test-admin-key"}


@pytest.fixture
async def client(engine, gateway):
    transport = httpx.ASGITransport(app=create_app())
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


async def _login(client, username="zeca", password="pagodinho"):
    r = await client.post(
        "/api/accounts/register",
        json={"username": username, "password": password, "pix_key": "zeca@pix"},
    )
    assert r.status_code == 201, r.text
    r = await client.post("/api/accounts/login", json={"username": username, "password": password})
    assert r.status_code == 200, r.text
    return {"Authorization": f"Bearer {r.json()['access_token']}"}


async def _deposit(client, auth, amount="100.00", key="dep-http"):
    r = await client.post(
        "/api/payments/deposits",
        json={"amount": amount},
        headers={**auth, "Idempotency-Key": key},
    )
    assert r.status_code == 201, r.text
    external_id = r.json()["transaction"]["external_id"]

    body = json.dumps({"type": "payment.completed", "transaction_id": external_id}).encode("utf-8")
    ts = str(int(time.time()))
    signature = f"t={ts},v1={sign_payload('ezze-webhook-secret', ts, body)}"
    r = await client.post(
        "/api/payments/webhooks/ezzebank",
        content=body,
        headers={"x-ezzebank-signature": signature, "content-type": "application/json"},
    )
    assert r.status_code == 200, r.text
    return r.json()


async def _create_draw(client, starts_in=timedelta(hours=3)):
    r = await client.post(
        "/api/admin/draws",
        json={"name": "PTM 14h", "scheduled_at": (utcnow() + starts_in).isoformat()},
        headers=ADMIN,
    )
    assert r.status_code == 201, r.text
    return r.json()["id"]


async def test_health(client):
    r = await client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok", "db": "ok"}


async def test_register_login_and_me(client, settings):
    auth = await _login(client)

    r = await client.get("/api/accounts/me", headers=auth)

    assert r.status_code == 200
    me = r.json()
    assert me["username"] == "zeca"
    assert me["balance"] == "0.00"
    assert me["bonus_balance"] == f"{settings.SIGNUP_BONUS_AMOUNT:.2f}"
    assert me["grants"][0]["kind"] == "signup"


async def test_me_requires_token(client):
    r = await client.get("/api/accounts/me")
    assert r.status_code == 401


async def test_catalog_and_animals_are_public(client):
    types = (await client.get("/api/wagers/types")).json()
    animals = (await client.get("/api/animals")).json()

    assert len(types) == 12
    assert len(animals) == 25
    assert animals[0]["numbers"] == ["01", "02", "03", "04"]


async def test_deposit_webhook_credits_balance(client):
    auth = await _login(client)

    result = await _deposit(client, auth)

    assert result["outcome"] == "completed"
    me = (await client.get("/api/accounts/me", headers=auth)).json()
    assert me["balance"] == "100.00"


async def test_monetary_post_without_idempotency_key(client):
    auth = await _login(client)

    r = await client.post(
        "/api/wagers",
        json={"draw_id": 1, "wager_type": "group", "animals": [5], "stake": "5"},
        headers=auth,
    )

    assert r.status_code == 400
    assert r.json()["error"] == "idempotency_key_required"


async def test_wager_then_result_settles(client):
    auth = await _login(client)
    await _deposit(client, auth, amount="50.00")
    draw_id = await _create_draw(client)
    wager = {"draw_id": draw_id, "wager_type": "group", "premio_type": "1", "animals": [10], "stake": "10"}

    placed = await client.post("/api/wagers", json=wager, headers={**auth, "Idempotency-Key": "bet-1"})
    replay = await client.post("/api/wagers", json=wager, headers={**auth, "Idempotency-Key": "bet-1"})

    assert placed.status_code == 201, placed.text
    assert placed.json()["wager"]["potential_payout"] == "180.00"
    assert replay.json()["replayed"] is True

    r = await client.put(
        f"/api/admin/draws/{draw_id}/result",
        json={"results": [{"animal": 10, "number": "4537"}]},
        headers=ADMIN,
    )
    assert r.status_code == 200, r.text
    assert r.json()["draw"]["status"] == "completed"
    assert r.json()["settlement"]["won"] == 1

    again = await client.put(
        f"/api/admin/draws/{draw_id}/result",
        json={"results": [{"animal": 1, "number": "0001"}]},
        headers=ADMIN,
    )
    assert again.status_code == 409
    assert again.json()["error"] == "draw_already_settled"

    me = (await client.get("/api/accounts/me", headers=auth)).json()
    assert me["balance"] == "220.00"

    history = (await client.get("/api/wagers", headers=auth)).json()
    assert [w["status"] for w in history["items"]] == ["won"]

    invariants = await client.get(f"/api/admin/accounts/{me['id']}/invariants", headers=ADMIN)
    assert invariants.json()["ok"] is True


async def test_stake_above_cap_reports_max_stake(client):
    auth = await _login(client)
    await _deposit(client, auth, amount="100.00")
    draw_id = await _create_draw(client)

    r = await client.post(
        "/api/wagers",
        json={"draw_id": draw_id, "wager_type": "thousand", "numbers": ["1234"], "stake": "13"},
        headers={**auth, "Idempotency-Key": "cap"},
    )

    assert r.status_code == 400
    assert r.json()["error"] == "stake_out_of_bounds"
    assert r.json()["details"]["max_stake"] == "12.50"


async def test_admin_routes_require_credentials(client):
    r = await client.post(
        "/api/admin/draws",
        json={"name": "x", "scheduled_at": utcnow().isoformat()},
        headers={"X-Admin-Api-Key": "wrong"},
    )
    assert r.status_code == 401


async def test_withdrawal_request_holds_balance(client):
    auth = await _login(client)
    await _deposit(client, auth, amount="100.00")

    r = await client.post("/api/withdrawals", json={"amount": "40"}, headers={**auth, "Idempotency-Key": "wd"})

    assert r.status_code == 201, r.text
    assert r.json()["status"] == "pending"
    assert r.json()["direction"] == "withdrawal"
    me = (await client.get("/api/accounts/me", headers=auth)).json()
    assert me["balance"] == "60.00"
