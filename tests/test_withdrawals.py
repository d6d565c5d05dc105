# -*- coding: utf-8 -*-
"""Выводы: удержание при заявке, одобрение админом, возврат при сбое, сверка по ссылке."""

from __future__ import annotations

import json
import time
from datetime import timedelta
from decimal import Decimal

import pytest

from bichobet.app.core.errors_core import (
    GatewayError,
    InsufficientRealBalance,
    TransactionFinalized,
    WithdrawalError,
)
from bichobet.app.core.utils_core import utcnow
from bichobet.app.integrations.payment_gateways import sign_payload
from bichobet.app.models.accounts_models import Account
from bichobet.app.services.ledger_service import verify_account_invariants
from bichobet.app.services.payments_service import (
    RESULT_ALREADY_FINAL,
    RESULT_COMPLETED,
    RESULT_FAILED,
    RESULT_STILL_PENDING,
    get_transaction,
    handle_webhook,
    poll_pending_transactions,
)
from bichobet.app.services.withdraw_service import approve_withdrawal, reject_withdrawal, request_withdrawal


async def _balance(db, account_id):
    return (await db.get(Account, account_id, populate_existing=True)).balance


def _signed(payload):
    body = json.dumps(payload).encode("utf-8")
    ts = str(int(time.time()))
    return body, f"t={ts},v1={sign_payload('ezze-webhook-secret', ts, body)}"


async def test_request_holds_amount(db, make_account, gateway):
    account_id = await make_account("200.00")

    request = await request_withdrawal(db, account_id=account_id, amount="50", idempotency_key="w1")

    assert request.transaction.status == "pending"
    assert request.transaction.direction == "withdrawal"
    assert await _balance(db, account_id) == Decimal("150.00")

    replay = await request_withdrawal(db, account_id=account_id, amount="50", idempotency_key="w1")
    assert replay.replayed is True
    assert replay.transaction.id == request.transaction.id
    assert await _balance(db, account_id) == Decimal("150.00")


async def test_failed_withdrawal_restores_balance(db, make_account, gateway):
    account_id = await make_account("200.00")
    request = await request_withdrawal(db, account_id=account_id, amount="50", idempotency_key="w2")
    tx = await approve_withdrawal(db, request.transaction.id)
    assert tx.status == "processing"

    body, header = _signed({"type": "withdrawal.failed", "transaction_id": tx.external_id})
    result = await handle_webhook(db, gateway="ezzebank", raw_body=body, signature_header=header)
    again = await handle_webhook(db, gateway="ezzebank", raw_body=body, signature_header=header)

    assert result.outcome == RESULT_FAILED
    assert again.outcome == RESULT_ALREADY_FINAL
    assert await _balance(db, account_id) == Decimal("200.00")
    assert (await verify_account_invariants(db, account_id))["ok"]


async def test_completed_withdrawal_keeps_hold(db, make_account, gateway):
    account_id = await make_account("200.00")
    request = await request_withdrawal(db, account_id=account_id, amount="50", idempotency_key="w3")
    tx = await approve_withdrawal(db, request.transaction.id)

    body, header = _signed({"type": "withdrawal.completed", "transaction_id": tx.external_id})
    result = await handle_webhook(db, gateway="ezzebank", raw_body=body, signature_header=header)

    assert result.outcome == RESULT_COMPLETED
    assert await _balance(db, account_id) == Decimal("150.00")
    assert gateway.payouts[0]["pix_key"] == "player@pix"


async def test_request_rules(db, make_account, gateway):
    rich = await make_account("200.00")
    poor = await make_account("20.00")
    keyless = await make_account("200.00", pix_key=None)

    with pytest.raises(WithdrawalError):
        await request_withdrawal(db, account_id=rich, amount="5", idempotency_key="min")
    with pytest.raises(InsufficientRealBalance):
        await request_withdrawal(db, account_id=poor, amount="50", idempotency_key="big")
    with pytest.raises(WithdrawalError):
        await request_withdrawal(db, account_id=keyless, amount="50", idempotency_key="nokey")
    with pytest.raises(WithdrawalError):
        await request_withdrawal(db, account_id=rich, amount="50", gateway="pushinpay", idempotency_key="gw")

    assert await _balance(db, poor) == Decimal("20.00")


async def test_approval_blocked_by_gateway_balance(db, make_account, gateway):
    account_id = await make_account("200.00")
    request = await request_withdrawal(db, account_id=account_id, amount="100", idempotency_key="w4")
    gateway.balance = Decimal("99.99")

    with pytest.raises(WithdrawalError) as exc:
        await approve_withdrawal(db, request.transaction.id)

    assert exc.value.details["available"] == "99.99"
    assert exc.value.details["required"] == "100.00"
    assert (await get_transaction(db, request.transaction.id)).status == "pending"
    assert gateway.payouts == []


async def test_rejected_payout_returns_to_pending(db, make_account, gateway):
    account_id = await make_account("200.00")
    request = await request_withdrawal(db, account_id=account_id, amount="100", idempotency_key="w5")
    gateway.fail_payouts = True

    with pytest.raises(GatewayError) as exc:
        await approve_withdrawal(db, request.transaction.id)

    assert (await get_transaction(db, request.transaction.id)).status == "pending"
    assert exc.value.rejected is True
    assert gateway.payouts == []


async def test_double_approval_pays_once(db, make_account, gateway):
    account_id = await make_account("200.00")
    request = await request_withdrawal(db, account_id=account_id, amount="100", idempotency_key="w6")
    await approve_withdrawal(db, request.transaction.id)

    with pytest.raises(WithdrawalError):
        await approve_withdrawal(db, request.transaction.id)
    assert len(gateway.payouts) == 1


async def test_reject_refunds_and_is_final(db, make_account, gateway):
    account_id = await make_account("200.00")
    request = await request_withdrawal(db, account_id=account_id, amount="80", idempotency_key="w7")

    result = await reject_withdrawal(db, request.transaction.id, reason="suspicious")

    assert result.outcome == RESULT_FAILED
    assert await _balance(db, account_id) == Decimal("200.00")
    with pytest.raises(TransactionFinalized):
        await reject_withdrawal(db, request.transaction.id)
    with pytest.raises(TransactionFinalized):
        await approve_withdrawal(db, request.transaction.id)
    assert (await verify_account_invariants(db, account_id))["ok"]


async def test_reject_refused_once_payout_is_in_flight(db, make_account, gateway):
    account_id = await make_account("200.00")
    request = await request_withdrawal(db, account_id=account_id, amount="50", idempotency_key="w8")
    tx = await approve_withdrawal(db, request.transaction.id)

    with pytest.raises(WithdrawalError) as exc:
        await reject_withdrawal(db, tx.id, reason="changed my mind")
    assert exc.value.details["status"] == "processing"
    assert (await get_transaction(db, tx.id)).status == "processing"
    assert await _balance(db, account_id) == Decimal("150.00")

    body, header = _signed({"type": "withdrawal.completed", "transaction_id": tx.external_id})
    result = await handle_webhook(db, gateway="ezzebank", raw_body=body, signature_header=header)

    assert result.outcome == RESULT_COMPLETED
    assert await _balance(db, account_id) == Decimal("150.00")
    assert len(gateway.payouts) == 1
    assert (await verify_account_invariants(db, account_id))["ok"]


async def test_payout_timeout_stays_processing_and_pays_once(db, make_account, gateway):
    account_id = await make_account("200.00")
    request = await request_withdrawal(db, account_id=account_id, amount="60", idempotency_key="w9")
    tx_id = request.transaction.id
    gateway.payout_timeout = True

    with pytest.raises(GatewayError) as exc:
        await approve_withdrawal(db, tx_id)
    assert exc.value.rejected is False

    stuck = await get_transaction(db, tx_id)
    assert stuck.status == "processing"
    assert stuck.external_id is None
    assert gateway.payouts[0]["reference"] == f"wd-{tx_id}"

    gateway.payout_timeout = False
    with pytest.raises(WithdrawalError):
        await approve_withdrawal(db, tx_id)
    with pytest.raises(WithdrawalError):
        await reject_withdrawal(db, tx_id)
    assert len(gateway.payouts) == 1

    gateway.statuses[gateway.payouts[0]["external_id"]] = "completed"
    counters = await poll_pending_transactions(db, now=utcnow() + timedelta(hours=1))

    assert counters["checked"] == 1
    assert counters[RESULT_COMPLETED] == 1
    done = await get_transaction(db, tx_id)
    assert done.status == "completed"
    assert done.external_id == gateway.payouts[0]["external_id"]
    assert await _balance(db, account_id) == Decimal("140.00")
    assert (await verify_account_invariants(db, account_id))["ok"]


async def test_payout_unknown_to_gateway_returns_to_pending(db, make_account, gateway):
    account_id = await make_account("200.00")
    request = await request_withdrawal(db, account_id=account_id, amount="70", idempotency_key="w10")
    tx_id = request.transaction.id
    gateway.payout_timeout = True
    gateway.payout_sent_on_timeout = False

    with pytest.raises(GatewayError):
        await approve_withdrawal(db, tx_id)
    assert (await get_transaction(db, tx_id)).status == "processing"

    young = await poll_pending_transactions(db, now=utcnow())
    assert young["checked"] == 0

    counters = await poll_pending_transactions(db, now=utcnow() + timedelta(hours=1))
    assert counters[RESULT_STILL_PENDING] == 1
    assert (await get_transaction(db, tx_id)).status == "pending"
    assert await _balance(db, account_id) == Decimal("130.00")

    gateway.payout_timeout = False
    tx = await approve_withdrawal(db, tx_id)

    assert tx.status == "processing"
    assert tx.external_id == gateway.payouts[0]["external_id"]
    assert len(gateway.payouts) == 1


async def test_webhook_matches_withdrawal_by_reference(db, make_account, gateway):
    account_id = await make_account("200.00")
    request = await request_withdrawal(db, account_id=account_id, amount="40", idempotency_key="w11")
    tx_id = request.transaction.id
    gateway.payout_timeout = True
    with pytest.raises(GatewayError):
        await approve_withdrawal(db, tx_id)

    payout_id = gateway.payouts[0]["external_id"]
    body, header = _signed(
        {"type": "withdrawal.failed", "transaction_id": payout_id, "external_id": f"wd-{tx_id}"}
    )
    result = await handle_webhook(db, gateway="ezzebank", raw_body=body, signature_header=header)

    assert result.outcome == RESULT_FAILED
    failed = await get_transaction(db, tx_id)
    assert failed.external_id == payout_id
    assert await _balance(db, account_id) == Decimal("200.00")
    assert (await verify_account_invariants(db, account_id))["ok"]
