# -*- coding: utf-8 -*-
# bichobet/app/services/accounts_service.py
# =============================================================================
# Назначение кода:
#   Регистрация игрока (с бонусом за регистрацию в той же транзакции),
#   вход по логину/паролю с выдачей JWT и снимок баланса для /accounts/me.
#
# Канон/инварианты:
#   • username уникален (UNIQUE в БД + предварительная проверка).
#   • Пароль хранится только как bcrypt-хэш (passlib).
#   • Снимок показывает реальный баланс, тратимый бонус и активные гранты.
# =============================================================================

from __future__ import annotations

import re
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from bichobet.app.core.errors_core import ForbiddenError, NotFoundError, ValidationError
from bichobet.app.core.logging_core import get_logger
from bichobet.app.core.security_core import (
    ROLE_ADMIN,
    ROLE_PLAYER,
    hash_password,
    issue_access_token,
    verify_password,
)
from bichobet.app.core.utils_core import d2, utcnow
from bichobet.app.models.accounts_models import Account, BonusGrant
from bichobet.app.services import bonus_service
from bichobet.app.services.ledger_service import run_atomic

logger = get_logger(__name__)

_USERNAME_RE = re.compile(r"^[A-Za-z0-9_.\-]{3,64}$")
_CPF_RE = re.compile(r"^[0-9]{11}$")


@dataclass(frozen=True)
class AccountSnapshot:
    account: Account
    balance: Decimal
    bonus_balance: Decimal
    grants: List[BonusGrant] = field(default_factory=list)


async def _find_by_username(db: AsyncSession, username: str) -> Optional[Account]:
    res = await db.execute(select(Account).where(Account.username == username))
    return res.scalar_one_or_none()


async def register_account(
    db: AsyncSession,
    *,
    username: str,
    password: str,
    cpf: Optional[str] = None,
    pix_key: Optional[str] = None,
) -> Account:
    name = (username or "").strip()
    if not _USERNAME_RE.match(name):
        raise ValidationError("Username must be 3-64 letters, digits, dot, dash or underscore.")
    if len(password or "") < 6:
        raise ValidationError("Password must have at least 6 characters.")
    cpf_digits = re.sub(r"\D", "", cpf or "") or None
    if cpf_digits is not None and not _CPF_RE.match(cpf_digits):
        raise ValidationError("CPF must have 11 digits.")

    async def _work() -> Account:
        if await _find_by_username(db, name) is not None:
            raise ValidationError("Username is already taken.", details={"username": name})
        account = Account(
            username=name,
            password_hash=hash_password(password),
            cpf=cpf_digits,
            pix_key=(pix_key or "").strip() or None,
        )
        db.add(account)
        await db.flush()
        await bonus_service.grant_signup_bonus(db, account)
        return account

    try:
        account = await run_atomic(db, _work, op="account_register")
    except IntegrityError as exc:
        raise ValidationError("Username is already taken.", details={"username": name}) from exc
    logger.info("Account registered", extra={"account_id": account.id})
    return account


async def authenticate(db: AsyncSession, *, username: str, password: str) -> str:
    """Логин → JWT (sub = id аккаунта, role = admin|player)."""
    account = await _find_by_username(db, (username or "").strip())
    if account is None or not verify_password(password or "", account.password_hash):
        logger.warning("Login failed", extra={"login": (username or "")[:64]})
        raise ForbiddenError("Invalid username or password.")
    if account.is_blocked:
        raise ForbiddenError("Account is blocked.", details={"account_id": account.id})
    role = ROLE_ADMIN if account.is_admin else ROLE_PLAYER
    return issue_access_token(account.id, role=role)


async def get_account_snapshot(db: AsyncSession, account_id: int) -> AccountSnapshot:
    account = await db.get(Account, int(account_id), populate_existing=True)
    if account is None:
        raise NotFoundError("Account not found.", details={"account_id": account_id})
    now = utcnow()
    res = await db.execute(
        select(BonusGrant)
        .where(BonusGrant.account_id == account.id, BonusGrant.status == "active")
        .order_by(BonusGrant.expires_at.asc(), BonusGrant.id.asc())
    )
    grants = [g for g in res.scalars().all() if bonus_service.is_spendable(g, now)]
    return AccountSnapshot(
        account=account,
        balance=d2(account.balance),
        bonus_balance=bonus_service.spendable_bonus(grants, now),
        grants=grants,
    )


__all__ = ["AccountSnapshot", "register_account", "authenticate", "get_account_snapshot"]
