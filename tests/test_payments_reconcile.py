# -*- coding: utf-8 -*-
"""Депозиты PIX: инициация, вебхук, ручная проверка и опрос сходятся в одном зачислении."""

from __future__ import annotations

import json
import time
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import delete, select

from bichobet.app.core.errors_core import (
    DepositBelowMinimum,
    ForbiddenError,
    GatewayError,
    InvalidWebhookSignature,
    ValidationError,
)
from bichobet.app.core.utils_core import utcnow
from bichobet.app.integrations.payment_gateways import sign_payload
from bichobet.app.models.accounts_models import Account, BonusGrant
from bichobet.app.models.ledger_models import LedgerEntry
from bichobet.app.models.payments_models import PaymentTransaction
from bichobet.app.services.ledger_service import verify_account_invariants
from bichobet.app.services.payments_service import (
    RESULT_ALREADY_FINAL,
    RESULT_COMPLETED,
    RESULT_FAILED,
    RESULT_IGNORED,
    RESULT_STILL_PENDING,
    check_transaction_status,
    get_transaction,
    handle_webhook,
    initiate_deposit,
    list_account_transactions,
    poll_pending_transactions,
)


def _signed(payload, secret="ezze-webhook-secret"):
    body = json.dumps(payload).encode("utf-8")
    ts = str(int(time.time()))
    return body, f"t={ts},v1={sign_payload(secret, ts, body)}"


async def _balance(db, account_id):
    return (await db.get(Account, account_id, populate_existing=True)).balance


async def _deposit_credits(db, account_id):
    rows = await db.execute(
        select(LedgerEntry).where(LedgerEntry.account_id == account_id, LedgerEntry.reason == "deposit")
    )
    return rows.scalars().all()


async def test_initiate_deposit_returns_pix_instructions(db, make_account, gateway):
    account_id = await make_account()

    started = await initiate_deposit(db, account_id=account_id, amount="50.00", idempotency_key="dep-1")

    assert started.transaction.status == "pending"
    assert started.transaction.external_id == "ezzebank-chg-1"
    assert started.copy_paste.startswith("00020126")
    assert started.qr_code_base64
    assert await _balance(db, account_id) == Decimal("0.00")

    again = await initiate_deposit(db, account_id=account_id, amount="50.00", idempotency_key="dep-1")
    assert again.replayed is True
    assert again.transaction.id == started.transaction.id
    assert again.copy_paste == started.copy_paste
    assert len(gateway.charges) == 1


async def test_deposit_below_gateway_minimum(db, make_account, gateway):
    account_id = await make_account()
    with pytest.raises(DepositBelowMinimum):
        await initiate_deposit(db, account_id=account_id, amount="1.50", gateway="pushinpay")


async def test_unknown_gateway_rejected(db, make_account, gateway):
    account_id = await make_account()
    with pytest.raises(ValidationError):
        await initiate_deposit(db, account_id=account_id, amount="10", gateway="paypal")


async def test_gateway_failure_marks_deposit_failed(db, make_account, gateway):
    account_id = await make_account()
    gateway.fail_charges = True

    with pytest.raises(GatewayError):
        await initiate_deposit(db, account_id=account_id, amount="20", idempotency_key="boom")

    [row] = await list_account_transactions(db, account_id)
    tx = await get_transaction(db, row.id)
    assert tx.status == "failed"
    assert tx.failure_reason == "gateway_error"


async def test_webhook_check_and_poll_credit_exactly_once(db, make_account, gateway):
    account_id = await make_account()
    started = await initiate_deposit(db, account_id=account_id, amount="100.00", idempotency_key="once")
    tx_id = started.transaction.id
    external_id = started.transaction.external_id
    gateway.statuses[external_id] = "paid"

    body, header = _signed({"type": "payment.completed", "transaction_id": external_id})
    first = await handle_webhook(db, gateway="ezzebank", raw_body=body, signature_header=header)
    assert first.outcome == RESULT_COMPLETED

    repeat = await handle_webhook(db, gateway="ezzebank", raw_body=body, signature_header=header)
    manual = await check_transaction_status(db, tx_id, account_id=account_id)
    polled = await poll_pending_transactions(db, now=utcnow() + timedelta(hours=1))

    assert repeat.outcome == RESULT_ALREADY_FINAL
    assert manual.outcome == RESULT_ALREADY_FINAL
    assert polled["checked"] == 0
    assert await _balance(db, account_id) == Decimal("100.00")
    assert len(await _deposit_credits(db, account_id)) == 1
    assert (await get_transaction(db, tx_id)).finalized_at is not None
    assert (await verify_account_invariants(db, account_id))["ok"]


async def test_manual_check_completes_when_gateway_reports_paid(db, make_account, gateway):
    account_id = await make_account()
    started = await initiate_deposit(db, account_id=account_id, amount="30", idempotency_key="m")
    tx_id = started.transaction.id

    pending = await check_transaction_status(db, tx_id, account_id=account_id)
    assert pending.outcome == RESULT_STILL_PENDING

    gateway.statuses[started.transaction.external_id] = "paid"
    done = await check_transaction_status(db, tx_id, account_id=account_id)
    assert done.outcome == RESULT_COMPLETED
    assert await _balance(db, account_id) == Decimal("30.00")


async def test_manual_check_gateway_error_keeps_status(db, make_account, gateway):
    account_id = await make_account()
    started = await initiate_deposit(db, account_id=account_id, amount="30", idempotency_key="e")
    gateway.fail_status = True

    result = await check_transaction_status(db, started.transaction.id, account_id=account_id)

    assert result.outcome == RESULT_STILL_PENDING
    assert (await get_transaction(db, started.transaction.id)).status == "pending"


async def test_manual_check_of_foreign_transaction_forbidden(db, make_account, gateway):
    owner = await make_account()
    other = await make_account()
    started = await initiate_deposit(db, account_id=owner, amount="30", idempotency_key="f")

    with pytest.raises(ForbiddenError):
        await check_transaction_status(db, started.transaction.id, account_id=other)


async def test_poll_resolves_paid_and_failed(db, make_account, gateway):
    account_id = await make_account()
    paid = await initiate_deposit(db, account_id=account_id, amount="40", idempotency_key="p1")
    expired = await initiate_deposit(db, account_id=account_id, amount="15", idempotency_key="p2")
    waiting = await initiate_deposit(db, account_id=account_id, amount="25", idempotency_key="p3")
    gateway.statuses[paid.transaction.external_id] = "paid"
    gateway.statuses[expired.transaction.external_id] = "expired"

    counters = await poll_pending_transactions(db, now=utcnow() + timedelta(hours=1))

    assert counters["checked"] == 3
    assert counters[RESULT_COMPLETED] == 1
    assert counters[RESULT_FAILED] == 1
    assert counters[RESULT_STILL_PENDING] == 1
    assert await _balance(db, account_id) == Decimal("40.00")
    assert (await get_transaction(db, waiting.transaction.id)).status == "pending"


async def test_poll_skips_young_transactions(db, make_account, gateway):
    account_id = await make_account()
    await initiate_deposit(db, account_id=account_id, amount="40", idempotency_key="young")

    counters = await poll_pending_transactions(db, now=utcnow())

    assert counters["checked"] == 0


async def test_first_deposit_bonus_granted_once(db, make_account, gateway):
    account_id = await make_account()
    first = await initiate_deposit(db, account_id=account_id, amount="100", apply_bonus=True, idempotency_key="b1")
    second = await initiate_deposit(db, account_id=account_id, amount="100", apply_bonus=True, idempotency_key="b2")

    for started in (first, second):
        body, header = _signed({"type": "payment.completed", "transaction_id": started.transaction.external_id})
        await handle_webhook(db, gateway="ezzebank", raw_body=body, signature_header=header)

    grants = (await db.execute(select(BonusGrant))).scalars().all()
    assert len(grants) == 1
    assert grants[0].kind == "first_deposit"
    assert grants[0].amount == Decimal("100.00")
    assert grants[0].rollover_target == Decimal("300.00")
    assert (await db.get(Account, account_id, populate_existing=True)).first_deposit_bonus_claimed is True
    assert (await verify_account_invariants(db, account_id))["ok"]


async def test_claimed_flag_blocks_bonus_after_history_reset(db, make_account, gateway):
    account_id = await make_account()
    first = await initiate_deposit(db, account_id=account_id, amount="100", apply_bonus=True, idempotency_key="h1")
    body, header = _signed({"type": "payment.completed", "transaction_id": first.transaction.external_id})
    await handle_webhook(db, gateway="ezzebank", raw_body=body, signature_header=header)

    # история депозитов и грантов стёрта, флаг на аккаунте остался
    await db.execute(delete(BonusGrant).where(BonusGrant.account_id == account_id))
    await db.execute(delete(PaymentTransaction).where(PaymentTransaction.id == first.transaction.id))
    await db.commit()
    assert (await db.get(Account, account_id, populate_existing=True)).first_deposit_bonus_claimed is True

    second = await initiate_deposit(db, account_id=account_id, amount="100", apply_bonus=True, idempotency_key="h2")
    body, header = _signed({"type": "payment.completed", "transaction_id": second.transaction.external_id})
    result = await handle_webhook(db, gateway="ezzebank", raw_body=body, signature_header=header)

    assert result.outcome == RESULT_COMPLETED
    assert (await db.execute(select(BonusGrant))).scalars().all() == []
    assert await _balance(db, account_id) == Decimal("200.00")


async def test_webhook_with_bad_signature_changes_nothing(db, make_account, gateway):
    account_id = await make_account()
    started = await initiate_deposit(db, account_id=account_id, amount="60", idempotency_key="sig")
    body, _ = _signed({"type": "payment.completed", "transaction_id": started.transaction.external_id})
    _, forged = _signed({"type": "payment.completed", "transaction_id": "other"})

    with pytest.raises(InvalidWebhookSignature):
        await handle_webhook(db, gateway="ezzebank", raw_body=body, signature_header=forged)
    with pytest.raises(InvalidWebhookSignature):
        await handle_webhook(db, gateway="ezzebank", raw_body=body, signature_header=None)

    assert (await get_transaction(db, started.transaction.id)).status == "pending"
    assert await _balance(db, account_id) == Decimal("0.00")


async def test_webhook_for_unknown_transaction_is_ignored(db, gateway, engine):
    body, header = _signed({"type": "payment.completed", "transaction_id": "nope"})
    result = await handle_webhook(db, gateway="ezzebank", raw_body=body, signature_header=header)
    assert result.outcome == RESULT_IGNORED


async def test_webhook_failed_event(db, make_account, gateway):
    account_id = await make_account()
    started = await initiate_deposit(db, account_id=account_id, amount="60", idempotency_key="wf")
    body, header = _signed({"type": "payment.failed", "transaction_id": started.transaction.external_id})

    result = await handle_webhook(db, gateway="ezzebank", raw_body=body, signature_header=header)

    assert result.outcome == RESULT_FAILED
    assert await _balance(db, account_id) == Decimal("0.00")
