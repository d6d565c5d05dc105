# -*- coding: utf-8 -*-
"""Бонусные гранты: расходование, отыгрыш, истечение (над объектами в памяти)."""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

import pytest

from bichobet.app.core.errors_core import InsufficientBonusBalance
from bichobet.app.core.utils_core import utcnow
from bichobet.app.models.accounts_models import BonusGrant
from bichobet.app.services.bonus_service import (
    advance_rollover,
    debit_bonus,
    expire_stale,
    first_deposit_bonus_amount,
    spendable_bonus,
)

NOW = utcnow()


def _grant(grant_id, amount, *, rollover="3", expires_in_days=7, remaining=None, rolled="0", status="active"):
    amount = Decimal(amount)
    return BonusGrant(
        id=grant_id,
        account_id=1,
        kind="signup",
        amount=amount,
        remaining_amount=Decimal(remaining) if remaining is not None else amount,
        rollover_target=amount * Decimal(rollover),
        rolled_amount=Decimal(rolled),
        status=status,
        expires_at=NOW + timedelta(days=expires_in_days),
    )


def test_first_deposit_bonus_is_percentage_with_cap():
    assert first_deposit_bonus_amount(Decimal("100")) == Decimal("100.00")
    assert first_deposit_bonus_amount(Decimal("350")) == Decimal("200.00")


def test_spendable_ignores_expired_and_finished_grants():
    grants = [
        _grant(1, "10"),
        _grant(2, "20", expires_in_days=-1),
        _grant(3, "30", status="completed", remaining="0"),
    ]
    assert spendable_bonus(grants, NOW) == Decimal("10.00")


def test_debit_takes_soonest_expiring_grant_first():
    later = _grant(1, "10", expires_in_days=7)
    sooner = _grant(2, "5", expires_in_days=2)
    parts = debit_bonus([later, sooner], Decimal("8"), NOW)
    assert [(g.id, amount) for g, amount in parts] == [(2, Decimal("5.00")), (1, Decimal("3.00"))]
    assert sooner.remaining_amount == Decimal("0.00")
    assert later.remaining_amount == Decimal("7.00")


def test_debit_more_than_spendable_raises():
    with pytest.raises(InsufficientBonusBalance):
        debit_bonus([_grant(1, "10")], Decimal("10.01"), NOW)


def test_rollover_exact_target_completes_grant():
    grant = _grant(1, "10", rolled="29.99")
    released = advance_rollover([grant], Decimal("0.01"), NOW)
    assert grant.status == "completed"
    assert grant.remaining_amount == Decimal("0.00")
    assert released == [(grant, Decimal("10.00"))]


def test_rollover_one_cent_short_keeps_grant_active():
    grant = _grant(1, "10")
    released = advance_rollover([grant], Decimal("29.99"), NOW)
    assert released == []
    assert grant.status == "active"
    assert grant.rolled_amount == Decimal("29.99")


def test_rollover_never_exceeds_target():
    grant = _grant(1, "10", rolled="25")
    advance_rollover([grant], Decimal("100"), NOW)
    assert grant.rolled_amount == Decimal("30.00")


def test_expire_stale_forfeits_remaining():
    stale = _grant(1, "10", expires_in_days=-1, remaining="4")
    fresh = _grant(2, "10")
    expired = expire_stale([stale, fresh], NOW)
    assert expired == [(stale, Decimal("4.00"))]
    assert stale.status == "expired"
    assert stale.remaining_amount == Decimal("0.00")
    assert fresh.status == "active"
