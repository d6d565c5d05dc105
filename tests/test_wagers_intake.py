# -*- coding: utf-8 -*-
"""Приём ставок: источник средств, идемпотентность, отыгрыш, закрытый тираж."""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select

from bichobet.app.core.errors_core import (
    BonusBetsDisabled,
    DrawClosed,
    InsufficientBonusBalance,
    InsufficientRealBalance,
    NotFoundError,
)
from bichobet.app.models.accounts_models import Account, BonusGrant
from bichobet.app.models.ledger_models import LedgerEntry
from bichobet.app.services import bonus_service
from bichobet.app.services.bet_validation_service import validate_wager
from bichobet.app.services.ledger_service import lock_account, run_atomic, verify_account_invariants
from bichobet.app.services.wagers_service import list_account_wagers, place_wager


async def _grant_signup(db, account_id):
    async def _work():
        account = await lock_account(db, account_id)
        return await bonus_service.grant_signup_bonus(db, account)

    return await run_atomic(db, _work, op="test_grant")


async def _group_wager(db, draw_id, stake="10", animal=5):
    return await validate_wager(
        db, wager_type="group", premio_type="1", animals=[animal], numbers=[], stake=stake, draw_id=draw_id
    )


async def _balance(db, account_id):
    account = await db.get(Account, account_id, populate_existing=True)
    return account.balance


async def test_real_funded_wager_debits_balance(db, make_account, make_draw):
    account_id = await make_account("50.00")
    draw_id = await make_draw()

    result = await place_wager(
        db, account_id=account_id, wager=await _group_wager(db, draw_id), idempotency_key="k-1"
    )

    assert result.wager.status == "pending"
    assert result.wager.funding_source == "real"
    assert result.wager.potential_payout == Decimal("180.00")
    assert result.fallback_to_bonus is False
    assert await _balance(db, account_id) == Decimal("40.00")
    assert (await verify_account_invariants(db, account_id))["ok"]


async def test_same_idempotency_key_returns_same_wager(db, make_account, make_draw):
    account_id = await make_account("50.00")
    draw_id = await make_draw()
    wager = await _group_wager(db, draw_id)

    first = await place_wager(db, account_id=account_id, wager=wager, idempotency_key="same")
    second = await place_wager(db, account_id=account_id, wager=wager, idempotency_key="same")

    assert second.replayed is True
    assert second.wager.id == first.wager.id
    assert await _balance(db, account_id) == Decimal("40.00")
    entries = (await db.execute(select(LedgerEntry).where(LedgerEntry.reason == "wager"))).scalars().all()
    assert len(entries) == 1


async def test_insufficient_real_without_bonus_rejected(db, make_account, make_draw):
    account_id = await make_account("5.00")
    draw_id = await make_draw()

    with pytest.raises(InsufficientRealBalance) as exc:
        await place_wager(db, account_id=account_id, wager=await _group_wager(db, draw_id), idempotency_key="k")

    assert exc.value.details["current_balance"] == Decimal("5.00")
    assert await _balance(db, account_id) == Decimal("5.00")


async def test_auto_fallback_to_bonus(db, make_account, make_draw):
    account_id = await make_account("0.00")
    await _grant_signup(db, account_id)
    draw_id = await make_draw()

    result = await place_wager(
        db, account_id=account_id, wager=await _group_wager(db, draw_id, stake="4"), idempotency_key="fb"
    )

    assert result.wager.funding_source == "bonus"
    assert result.fallback_to_bonus is True
    grant = (await db.execute(select(BonusGrant))).scalar_one()
    assert grant.remaining_amount == Decimal("6.00")
    assert grant.rolled_amount == Decimal("4.00")
    assert (await verify_account_invariants(db, account_id))["ok"]


async def test_bonus_bets_disabled(db, make_account, make_draw, settings, monkeypatch):
    account_id = await make_account("100.00")
    await _grant_signup(db, account_id)
    draw_id = await make_draw()
    monkeypatch.setattr(settings, "ALLOW_BONUS_BETS", False)

    with pytest.raises(BonusBetsDisabled):
        await place_wager(
            db,
            account_id=account_id,
            wager=await _group_wager(db, draw_id),
            use_bonus=True,
            idempotency_key="nb",
        )


async def test_real_wager_advances_rollover_and_releases_bonus(db, make_account, make_draw):
    account_id = await make_account("100.00")
    await _grant_signup(db, account_id)
    draw_id = await make_draw()

    # signup 10.00 × 3 = 30.00 к отыгрышу
    first = await place_wager(
        db, account_id=account_id, wager=await _group_wager(db, draw_id, stake="29.99"), idempotency_key="r1"
    )
    assert first.released_bonus == Decimal("0.00")

    second = await place_wager(
        db, account_id=account_id, wager=await _group_wager(db, draw_id, stake="1"), idempotency_key="r2"
    )
    assert second.released_bonus == Decimal("10.00")

    grant = (await db.execute(select(BonusGrant).execution_options(populate_existing=True))).scalar_one()
    assert grant.status == "completed"
    assert grant.remaining_amount == Decimal("0.00")
    # 100 − 29.99 − 1 + 10 (высвобожденный бонус)
    assert await _balance(db, account_id) == Decimal("79.01")
    assert (await verify_account_invariants(db, account_id))["ok"]


async def test_started_draw_is_closed(db, make_account, make_draw):
    account_id = await make_account("50.00")
    draw_id = await make_draw(starts_in=timedelta(minutes=-1))

    with pytest.raises(DrawClosed):
        await place_wager(db, account_id=account_id, wager=await _group_wager(db, draw_id), idempotency_key="late")
    assert await _balance(db, account_id) == Decimal("50.00")


async def test_unknown_draw(db, make_account):
    account_id = await make_account("50.00")
    with pytest.raises(NotFoundError):
        await place_wager(db, account_id=account_id, wager=await _group_wager(db, 999), idempotency_key="x")


async def test_list_account_wagers_newest_first(db, make_account, make_draw):
    account_id = await make_account("50.00")
    draw_id = await make_draw()
    for n in range(3):
        await place_wager(
            db, account_id=account_id, wager=await _group_wager(db, draw_id, stake="1"), idempotency_key=f"l{n}"
        )

    rows = await list_account_wagers(db, account_id, limit=2)
    assert len(rows) == 2
    assert rows[0].id > rows[1].id


async def test_bonus_preference_spends_soonest_expiry_first(db, make_account, make_draw):
    account_id = await make_account("100.00")
    signup = await _grant_signup(db, account_id)

    async def _short_grant():
        account = await lock_account(db, account_id)
        return await bonus_service._create_grant(
            db, account, kind="first_deposit", amount=Decimal("5.00"), rollover=Decimal("3"), expiration_days=2
        )

    short = await run_atomic(db, _short_grant, op="test_grant")
    draw_id = await make_draw()

    # 8.00 = 5.00 с гранта, истекающего раньше, + 3.00 с signup
    result = await place_wager(
        db,
        account_id=account_id,
        wager=await _group_wager(db, draw_id, stake="8"),
        use_bonus=True,
        idempotency_key="pref",
    )

    assert result.wager.funding_source == "bonus"
    assert result.fallback_to_bonus is False
    by_id = {
        g.id: g
        for g in (await db.execute(select(BonusGrant).execution_options(populate_existing=True))).scalars()
    }
    assert by_id[short.id].remaining_amount == Decimal("0.00")
    assert by_id[signup.id].remaining_amount == Decimal("7.00")
    spend_key = f"wager:{account_id}:pref:bonus"
    spend = (await db.execute(select(LedgerEntry).where(LedgerEntry.idempotency_key == spend_key))).scalar_one()
    assert spend.meta["grants"] == {str(short.id): "5.00", str(signup.id): "3.00"}
    assert await _balance(db, account_id) == Decimal("100.00")

    with pytest.raises(InsufficientBonusBalance):
        await place_wager(
            db,
            account_id=account_id,
            wager=await _group_wager(db, draw_id, stake="7.01"),
            use_bonus=True,
            idempotency_key="too-much",
        )
    grant = await db.get(BonusGrant, signup.id, populate_existing=True)
    assert grant.remaining_amount == Decimal("7.00")
    assert await _balance(db, account_id) == Decimal("100.00")
    assert (await verify_account_invariants(db, account_id))["ok"]
