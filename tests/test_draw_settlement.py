# -*- coding: utf-8 -*-
"""Ввод результата тиража и расчёт ставок ровно один раз."""

from __future__ import annotations

from decimal import Decimal

import pytest
from sqlalchemy import select, update

from bichobet.app.core.errors_core import DrawAlreadySettled, InvalidWagerShape, NotFoundError, UnknownAnimal
from bichobet.app.models.accounts_models import Account, BonusGrant
from bichobet.app.models.ledger_models import LedgerEntry
from bichobet.app.models.lottery_models import Draw, Wager
from bichobet.app.services.bet_validation_service import validate_wager
from bichobet.app.schemas.wagers_schemas import summary_out
from bichobet.app.services import bonus_service, settlement_service
from bichobet.app.services.ledger_service import lock_account, run_atomic, verify_account_invariants
from bichobet.app.services.odds_service import OddsCatalog
from bichobet.app.services.settlement_service import resume_settlement, submit_result
from bichobet.app.services.wagers_service import place_wager

CATALOG = OddsCatalog(overrides={"dozen": Decimal("90")})

# 1-й приз: группа 10 (Coelho), число 4537
RESULT = [(10, "4537"), (3, "0911")]


async def _dozen(db, account_id, draw_id, number, key, *, use_bonus=False):
    validated = await validate_wager(
        db,
        wager_type="dozen",
        premio_type="1",
        animals=[],
        numbers=[number],
        stake="10",
        draw_id=draw_id,
        catalog=CATALOG,
    )
    placed = await place_wager(
        db, account_id=account_id, wager=validated, use_bonus=use_bonus, idempotency_key=key
    )
    return placed.wager.id


async def _balance(db, account_id):
    return (await db.get(Account, account_id, populate_existing=True)).balance


async def test_dozen_win_pays_floor_of_stake_times_multiplier(db, make_account, make_draw):
    winner = await make_account("10.00")
    loser = await make_account("10.00")
    draw_id = await make_draw()
    win_id = await _dozen(db, winner, draw_id, "37", "w")
    lose_id = await _dozen(db, loser, draw_id, "38", "l")

    draw, summary = await submit_result(db, draw_id, RESULT, catalog=CATALOG)

    assert draw.status == "completed"
    assert summary.settled == 2
    assert summary.won == 1
    assert summary.lost == 1
    assert summary.total_payout == Decimal("900.00")

    won = await db.get(Wager, win_id, populate_existing=True)
    lost = await db.get(Wager, lose_id, populate_existing=True)
    assert (won.status, won.payout) == ("won", Decimal("900.00"))
    assert (lost.status, lost.payout) == ("lost", None)
    assert await _balance(db, winner) == Decimal("900.00")
    assert await _balance(db, loser) == Decimal("0.00")
    assert (await verify_account_invariants(db, winner))["ok"]


async def test_second_result_submission_is_rejected(db, make_account, make_draw):
    account_id = await make_account("10.00")
    draw_id = await make_draw()
    await _dozen(db, account_id, draw_id, "37", "once")
    await submit_result(db, draw_id, RESULT, catalog=CATALOG)

    with pytest.raises(DrawAlreadySettled):
        await submit_result(db, draw_id, [(1, "0001")], catalog=CATALOG)

    credits = (
        await db.execute(select(LedgerEntry).where(LedgerEntry.reason == "settlement"))
    ).scalars().all()
    assert len(credits) == 1
    draw = await db.get(Draw, draw_id, populate_existing=True)
    assert draw.number_1 == "4537"


async def test_resume_only_touches_pending_wagers(db, make_account, make_draw):
    first = await make_account("10.00")
    second = await make_account("10.00")
    draw_id = await make_draw()
    settled_id = await _dozen(db, first, draw_id, "37", "a")
    pending_id = await _dozen(db, second, draw_id, "37", "b")

    # расчёт «прервался» после первой ставки
    await db.execute(
        update(Draw).where(Draw.id == draw_id).values(status="completed", animal_1=10, number_1="4537")
    )
    await db.execute(update(Wager).where(Wager.id == settled_id).values(status="won", payout=Decimal("900")))
    await db.commit()

    summary = await resume_settlement(db, draw_id, catalog=CATALOG)

    assert summary.settled == 1
    assert summary.skipped == 1
    assert (await db.get(Wager, pending_id, populate_existing=True)).status == "won"
    assert await _balance(db, second) == Decimal("900.00")
    # первая ставка не кредитовалась повторно
    assert await _balance(db, first) == Decimal("0.00")


async def test_result_validation(db, make_draw):
    draw_id = await make_draw()
    with pytest.raises(InvalidWagerShape):
        await submit_result(db, draw_id, [])
    with pytest.raises(InvalidWagerShape):
        await submit_result(db, draw_id, [(10, "537")])
    with pytest.raises(UnknownAnimal):
        await submit_result(db, draw_id, [(26, "4537")])
    with pytest.raises(NotFoundError):
        await submit_result(db, 404, [(10, "4537")])
    assert (await db.get(Draw, draw_id, populate_existing=True)).status == "pending"


async def test_bonus_funded_win_is_paid_to_real_balance(db, make_account, make_draw):
    account_id = await make_account("5.00")

    async def _grant():
        return await bonus_service.grant_signup_bonus(db, await lock_account(db, account_id))

    await run_atomic(db, _grant, op="test_grant")
    draw_id = await make_draw()
    wager_id = await _dozen(db, account_id, draw_id, "37", "bonus-win", use_bonus=True)
    assert (await db.get(Wager, wager_id, populate_existing=True)).funding_source == "bonus"
    assert await _balance(db, account_id) == Decimal("5.00")

    _, summary = await submit_result(db, draw_id, RESULT, catalog=CATALOG)

    assert summary.won == 1
    assert await _balance(db, account_id) == Decimal("905.00")
    grant = (await db.execute(select(BonusGrant).execution_options(populate_existing=True))).scalar_one()
    assert grant.remaining_amount == Decimal("0.00")
    assert grant.status == "active"
    assert (await verify_account_invariants(db, account_id))["ok"]


async def test_failed_wager_is_reported_for_resume(db, make_account, make_draw, monkeypatch):
    first = await make_account("10.00")
    second = await make_account("10.00")
    draw_id = await make_draw()
    broken_id = await _dozen(db, first, draw_id, "37", "broken")
    fine_id = await _dozen(db, second, draw_id, "38", "fine")

    settle_one = settlement_service._settle_one

    async def _flaky(db, *, wager_id, **kwargs):
        if wager_id == broken_id:
            raise RuntimeError("connection reset")
        return await settle_one(db, wager_id=wager_id, **kwargs)

    monkeypatch.setattr(settlement_service, "_settle_one", _flaky)
    _, summary = await submit_result(db, draw_id, RESULT, catalog=CATALOG)

    out = summary_out(summary)
    assert out.errors == 1
    assert out.failed_wager_ids == [broken_id]
    assert out.needs_resume is True
    assert summary.lost == 1
    assert (await db.get(Wager, broken_id, populate_existing=True)).status == "pending"

    monkeypatch.setattr(settlement_service, "_settle_one", settle_one)
    resumed = await resume_settlement(db, draw_id, catalog=CATALOG)

    assert resumed.settled == 1
    assert resumed.skipped == 1
    assert resumed.needs_resume is False
    assert (await db.get(Wager, fine_id, populate_existing=True)).status == "lost"
    assert await _balance(db, first) == Decimal("900.00")
