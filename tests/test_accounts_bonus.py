# -*- coding: utf-8 -*-
"""Регистрация, вход, бонус за регистрацию, истечение и отмена грантов."""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

import jwt
import pytest
from sqlalchemy import select, update

from bichobet.app.core.errors_core import ForbiddenError, ValidationError
from bichobet.app.core.utils_core import utcnow
from bichobet.app.models.accounts_models import BonusGrant
from bichobet.app.models.ledger_models import LedgerEntry
from bichobet.app.services.accounts_service import authenticate, get_account_snapshot, register_account
from bichobet.app.services.bonus_service import cancel_grant, expire_stale_grants
from bichobet.app.services.ledger_service import verify_account_invariants


async def test_register_grants_signup_bonus(db, settings):
    account = await register_account(db, username="maria_rj", password="s3cret!", cpf="123.456.789-01")

    snapshot = await get_account_snapshot(db, account.id)
    assert snapshot.balance == Decimal("0.00")
    assert snapshot.bonus_balance == settings.SIGNUP_BONUS_AMOUNT
    [grant] = snapshot.grants
    assert grant.kind == "signup"
    assert grant.rollover_target == Decimal("30.00")
    assert account.cpf == "12345678901"
    assert (await verify_account_invariants(db, account.id))["ok"]


async def test_register_rejects_bad_input_and_duplicates(db):
    await register_account(db, username="joao", password="123456")
    with pytest.raises(ValidationError):
        await register_account(db, username="joao", password="123456")
    with pytest.raises(ValidationError):
        await register_account(db, username="x", password="123456")
    with pytest.raises(ValidationError):
        await register_account(db, username="pedro", password="123")
    with pytest.raises(ValidationError):
        await register_account(db, username="pedro", password="123456", cpf="123")


async def test_signup_bonus_disabled(db, settings, monkeypatch):
    monkeypatch.setattr(settings, "SIGNUP_BONUS_ENABLED", False)
    account = await register_account(db, username="semBonus", password="123456")
    snapshot = await get_account_snapshot(db, account.id)
    assert snapshot.grants == []


async def test_authenticate_issues_player_token(db, settings):
    account = await register_account(db, username="ana", password="correct-horse")

    token = await authenticate(db, username="ana", password="correct-horse")

    payload = jwt.decode(token, settings.SECRET_KEY, algorithms=["HS256"])
    assert payload["sub"] == str(account.id)
    assert payload["role"] == "player"
    with pytest.raises(ForbiddenError):
        await authenticate(db, username="ana", password="wrong")


async def test_expire_stale_grants_forfeits_bonus(db):
    account = await register_account(db, username="carla", password="123456")
    await db.execute(update(BonusGrant).values(expires_at=utcnow() - timedelta(minutes=1)))
    await db.commit()

    expired = await expire_stale_grants(db)

    assert expired == 1
    grant = (await db.execute(select(BonusGrant).execution_options(populate_existing=True))).scalar_one()
    assert grant.status == "expired"
    assert grant.remaining_amount == Decimal("0.00")
    assert (await verify_account_invariants(db, account.id))["ok"]
    assert await expire_stale_grants(db) == 0


async def test_cancel_grant(db):
    account = await register_account(db, username="bruno", password="123456")
    grant_id = (await db.execute(select(BonusGrant.id))).scalar_one()

    cancelled = await cancel_grant(db, grant_id)

    assert cancelled.status == "cancelled"
    entry = (
        await db.execute(select(LedgerEntry).where(LedgerEntry.reason == "bonus_cancel"))
    ).scalar_one()
    assert entry.amount == Decimal("10.00")
    assert (await verify_account_invariants(db, account.id))["ok"]
    with pytest.raises(ValidationError):
        await cancel_grant(db, grant_id)
