# -*- coding: utf-8 -*-
# bichobet/app/services/bonus_service.py
# =============================================================================
# Назначение кода:
#   Бонусный учёт: гранты signup / first_deposit, расходование бонуса на ставки
#   (старейший срок - первым), отыгрыш (rollover), истечение и отмена.
#
# Канон/инварианты:
#   • Каждый грант: rollover_target = amount × rollover, expires_at = now + days.
#   • spendable = Σ remaining по active-грантам с expires_at > now.
#   • Отыгрыш: rolled = min(rolled + stake, target); rolled == target → completed,
#     остаток переводится на реальный баланс (bonus_release:<id>).
#   • Завершённые гранты (completed/expired/cancelled) не меняются никогда;
#     их remaining_amount всегда 0.
#   • Бонус каждого вида - максимум один на аккаунт за всю историю.
#
# ИИ-защита:
#   • Чистые функции (spendable_bonus, expire_stale, debit_bonus,
#     advance_rollover) работают над списком грантов в памяти; запись журнала
#     и commit - в обёртках ниже и в вызывающих сервисах.
#
# Запреты:
#   • Бонус не выводится напрямую - только через отыгрыш.
# =============================================================================

from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bichobet.app.core.config_core import get_settings
from bichobet.app.core.errors_core import InsufficientBonusBalance, NotFoundError, ValidationError
from bichobet.app.core.logging_core import get_logger
from bichobet.app.core.utils_core import as_utc, d2, utcnow
from bichobet.app.models.accounts_models import Account, BonusGrant
from bichobet.app.models.payments_models import PaymentTransaction
from bichobet.app.services.ledger_service import (
    ZERO,
    credit_real,
    lock_account,
    record_bonus,
    run_atomic,
)

logger = get_logger(__name__)


# -----------------------------------------------------------------------------
# Чистые функции над грантами
# -----------------------------------------------------------------------------
def is_spendable(grant: BonusGrant, now: datetime) -> bool:
    return grant.status == "active" and as_utc(grant.expires_at) > now


def _by_expiry(grants: Sequence[BonusGrant]) -> List[BonusGrant]:
    return sorted(grants, key=lambda g: (as_utc(g.expires_at), g.id or 0))


def spendable_bonus(grants: Sequence[BonusGrant], now: Optional[datetime] = None) -> Decimal:
    now = now or utcnow()
    return d2(sum((g.remaining_amount for g in grants if is_spendable(g, now)), ZERO))


def expire_stale(
    grants: Sequence[BonusGrant], now: Optional[datetime] = None
) -> List[Tuple[BonusGrant, Decimal]]:
    """active-гранты с истёкшим сроком → expired; возвращает (грант, сгоревший остаток)."""
    now = now or utcnow()
    out: List[Tuple[BonusGrant, Decimal]] = []
    for grant in grants:
        if grant.status != "active" or as_utc(grant.expires_at) > now:
            continue
        forfeited = d2(grant.remaining_amount)
        grant.status = "expired"
        grant.remaining_amount = ZERO
        grant.completed_at = now
        out.append((grant, forfeited))
    return out


def debit_bonus(
    grants: Sequence[BonusGrant], amount: Decimal, now: Optional[datetime] = None
) -> List[Tuple[BonusGrant, Decimal]]:
    """
    Списывает amount с active-грантов, начиная с ближайшего срока истечения.
    Возвращает разбивку [(грант, списано)]; InsufficientBonusBalance - если не хватает.
    """
    now = now or utcnow()
    amount = d2(amount)
    available = spendable_bonus(grants, now)
    if available < amount:
        raise InsufficientBonusBalance(current_bonus_balance=available, required_amount=amount)

    left = amount
    parts: List[Tuple[BonusGrant, Decimal]] = []
    for grant in _by_expiry([g for g in grants if is_spendable(g, now)]):
        if left <= ZERO:
            break
        take = min(d2(grant.remaining_amount), left)
        if take <= ZERO:
            continue
        grant.remaining_amount = d2(grant.remaining_amount - take)
        left = d2(left - take)
        parts.append((grant, take))
    return parts


def advance_rollover(
    grants: Sequence[BonusGrant], stake: Decimal, now: Optional[datetime] = None
) -> List[Tuple[BonusGrant, Decimal]]:
    """
    Двигает отыгрыш каждого active-гранта на stake. Достигшие цели гранты
    становятся completed; возвращает [(грант, высвобожденный остаток)].
    """
    now = now or utcnow()
    stake = d2(stake)
    released: List[Tuple[BonusGrant, Decimal]] = []
    for grant in _by_expiry([g for g in grants if is_spendable(g, now)]):
        target = d2(grant.rollover_target)
        grant.rolled_amount = min(d2(grant.rolled_amount + stake), target)
        if grant.rolled_amount >= target:
            amount = d2(grant.remaining_amount)
            grant.status = "completed"
            grant.remaining_amount = ZERO
            grant.completed_at = now
            released.append((grant, amount))
    return released


# -----------------------------------------------------------------------------
# Запись в журнал (без commit - внутри транзакции вызывающего)
# -----------------------------------------------------------------------------
async def load_active_grants(db: AsyncSession, account_id: int) -> List[BonusGrant]:
    """active-гранты аккаунта под FOR UPDATE (аккаунт уже заблокирован)."""
    stmt = (
        select(BonusGrant)
        .where(BonusGrant.account_id == int(account_id), BonusGrant.status == "active")
        .order_by(BonusGrant.expires_at.asc(), BonusGrant.id.asc())
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return list((await db.execute(stmt)).scalars().all())


async def record_expirations(
    db: AsyncSession, account_id: int, expired: Sequence[Tuple[BonusGrant, Decimal]]
) -> None:
    for grant, forfeited in expired:
        logger.info("Bonus grant expired", extra={"grant_id": grant.id, "forfeited": str(forfeited)})
        if forfeited > ZERO:
            await record_bonus(
                db,
                account_id=account_id,
                amount=forfeited,
                direction="debit",
                reason="bonus_expire",
                idempotency_key=f"bonus_expire:{grant.id}",
                meta={"grant_id": grant.id},
            )


async def record_bonus_spend(
    db: AsyncSession,
    account_id: int,
    parts: Sequence[Tuple[BonusGrant, Decimal]],
    *,
    idempotency_key: str,
    balance_after: Decimal,
    meta: Optional[Dict] = None,
) -> None:
    """Одна бонусная debit-запись на ставку с разбивкой по грантам в meta."""
    total = d2(sum((amount for _, amount in parts), ZERO))
    if total <= ZERO:
        return
    await record_bonus(
        db,
        account_id=account_id,
        amount=total,
        direction="debit",
        reason="wager",
        idempotency_key=idempotency_key,
        balance_after=balance_after,
        meta={**(meta or {}), "grants": {str(g.id): f"{amount:.2f}" for g, amount in parts}},
    )


async def record_releases(
    db: AsyncSession, account: Account, released: Sequence[Tuple[BonusGrant, Decimal]]
) -> Decimal:
    """Высвобождение отыгранных остатков: bonus debit + real credit. Возвращает сумму."""
    total = ZERO
    for grant, amount in released:
        logger.info(
            "Bonus rollover completed", extra={"grant_id": grant.id, "released": str(amount)}
        )
        if amount <= ZERO:
            continue
        await record_bonus(
            db,
            account_id=account.id,
            amount=amount,
            direction="debit",
            reason="bonus_release",
            idempotency_key=f"bonus_release:{grant.id}",
            meta={"grant_id": grant.id},
        )
        await credit_real(
            db,
            account,
            amount,
            reason="bonus_release",
            idempotency_key=f"bonus_release:{grant.id}:real",
            meta={"grant_id": grant.id},
        )
        total += amount
    return d2(total)


async def _create_grant(
    db: AsyncSession,
    account: Account,
    *,
    kind: str,
    amount: Decimal,
    rollover: Decimal,
    expiration_days: int,
    source_transaction_id: Optional[int] = None,
) -> BonusGrant:
    now = utcnow()
    amount = d2(amount)
    grant = BonusGrant(
        account_id=account.id,
        kind=kind,
        amount=amount,
        remaining_amount=amount,
        rollover_target=d2(amount * rollover),
        rolled_amount=ZERO,
        status="active",
        expires_at=now + timedelta(days=int(expiration_days)),
        source_transaction_id=source_transaction_id,
        created_at=now,
    )
    db.add(grant)
    await db.flush()
    await record_bonus(
        db,
        account_id=account.id,
        amount=amount,
        direction="credit",
        reason="bonus_grant",
        idempotency_key=f"bonus_grant:{grant.id}",
        meta={"grant_id": grant.id, "kind": kind},
    )
    logger.info(
        "Bonus granted",
        extra={"account_id": account.id, "kind": kind, "amount": str(amount), "grant_id": grant.id},
    )
    return grant


async def _has_grant_of_kind(db: AsyncSession, account_id: int, kind: str) -> bool:
    stmt = select(BonusGrant.id).where(
        BonusGrant.account_id == int(account_id), BonusGrant.kind == kind
    ).limit(1)
    return (await db.execute(stmt)).scalar_one_or_none() is not None


async def grant_signup_bonus(db: AsyncSession, account: Account) -> Optional[BonusGrant]:
    """Бонус за регистрацию (если включён и ещё не выдавался)."""
    s = get_settings()
    if not s.SIGNUP_BONUS_ENABLED or s.SIGNUP_BONUS_AMOUNT <= ZERO:
        return None
    if await _has_grant_of_kind(db, account.id, "signup"):
        return None
    return await _create_grant(
        db,
        account,
        kind="signup",
        amount=s.SIGNUP_BONUS_AMOUNT,
        rollover=s.SIGNUP_BONUS_ROLLOVER,
        expiration_days=s.SIGNUP_BONUS_EXPIRATION_DAYS,
    )


def first_deposit_bonus_amount(deposit_amount: Decimal) -> Decimal:
    """min(deposit × percentage / 100, max_amount), округление вниз."""
    s = get_settings()
    raw = d2(deposit_amount) * s.FIRST_DEPOSIT_BONUS_PERCENTAGE / Decimal(100)
    return d2(min(raw, s.FIRST_DEPOSIT_BONUS_MAX_AMOUNT))


async def grant_first_deposit_bonus(
    db: AsyncSession, account: Account, deposit_tx: PaymentTransaction
) -> Optional[BonusGrant]:
    """
    Бонус на первый депозит. Условия (все сразу):
      • функция включена и депозит помечен apply_bonus=true;
      • флаг first_deposit_bonus_claimed ещё не стоит;
      • грантов first_deposit у аккаунта не было (в любом статусе);
      • других завершённых депозитов у аккаунта нет.
    """
    s = get_settings()
    if not s.FIRST_DEPOSIT_BONUS_ENABLED:
        return None
    if not bool((deposit_tx.meta or {}).get("apply_bonus")):
        return None
    if account.first_deposit_bonus_claimed:
        return None
    if await _has_grant_of_kind(db, account.id, "first_deposit"):
        return None
    other_completed = await db.execute(
        select(PaymentTransaction.id)
        .where(
            PaymentTransaction.account_id == account.id,
            PaymentTransaction.direction == "deposit",
            PaymentTransaction.status == "completed",
            PaymentTransaction.id != deposit_tx.id,
        )
        .limit(1)
    )
    if other_completed.scalar_one_or_none() is not None:
        return None

    amount = first_deposit_bonus_amount(deposit_tx.amount)
    if amount <= ZERO:
        return None
    account.first_deposit_bonus_claimed = True
    return await _create_grant(
        db,
        account,
        kind="first_deposit",
        amount=amount,
        rollover=s.FIRST_DEPOSIT_BONUS_ROLLOVER,
        expiration_days=s.FIRST_DEPOSIT_BONUS_EXPIRATION_DAYS,
        source_transaction_id=deposit_tx.id,
    )


# -----------------------------------------------------------------------------
# Операции с commit
# -----------------------------------------------------------------------------
async def cancel_grant(db: AsyncSession, grant_id: int) -> BonusGrant:
    """Админ: active → cancelled, остаток сгорает."""
    grant_row = await db.get(BonusGrant, int(grant_id))
    if grant_row is None:
        raise NotFoundError("Bonus grant not found.", details={"grant_id": grant_id})
    account_id = grant_row.account_id

    async def _work() -> BonusGrant:
        await lock_account(db, account_id)
        stmt = (
            select(BonusGrant)
            .where(BonusGrant.id == int(grant_id))
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        grant = (await db.execute(stmt)).scalar_one()
        if grant.status != "active":
            raise ValidationError(
                "Only active grants can be cancelled.",
                details={"grant_id": grant.id, "status": grant.status},
            )
        forfeited = d2(grant.remaining_amount)
        grant.status = "cancelled"
        grant.remaining_amount = ZERO
        grant.completed_at = utcnow()
        if forfeited > ZERO:
            await record_bonus(
                db,
                account_id=account_id,
                amount=forfeited,
                direction="debit",
                reason="bonus_cancel",
                idempotency_key=f"bonus_cancel:{grant.id}",
                meta={"grant_id": grant.id},
            )
        await db.flush()
        logger.info("Bonus grant cancelled", extra={"grant_id": grant.id, "forfeited": str(forfeited)})
        return grant

    return await run_atomic(db, _work, op="bonus_cancel")


async def expire_stale_grants(db: AsyncSession, now: Optional[datetime] = None) -> int:
    """
    Плановая зачистка: все active-гранты с истёкшим сроком → expired.
    Каждый аккаунт - отдельная короткая транзакция. Возвращает число грантов.
    """
    now = now or utcnow()
    rows = await db.execute(
        select(BonusGrant.id, BonusGrant.account_id).where(
            BonusGrant.status == "active", BonusGrant.expires_at <= now
        )
    )
    by_account: Dict[int, int] = defaultdict(int)
    for _, account_id in rows.all():
        by_account[int(account_id)] += 1
    await db.commit()

    total = 0
    for account_id in sorted(by_account):

        async def _work(account_id: int = account_id) -> int:
            await lock_account(db, account_id)
            grants = await load_active_grants(db, account_id)
            expired = expire_stale(grants, now)
            await record_expirations(db, account_id, expired)
            await db.flush()
            return len(expired)

        total += await run_atomic(db, _work, op="bonus_expire")
    if total:
        logger.info("Expired bonus grants", extra={"count": total})
    return total


__all__ = [
    "is_spendable",
    "spendable_bonus",
    "expire_stale",
    "debit_bonus",
    "advance_rollover",
    "load_active_grants",
    "record_expirations",
    "record_bonus_spend",
    "record_releases",
    "grant_signup_bonus",
    "grant_first_deposit_bonus",
    "first_deposit_bonus_amount",
    "cancel_grant",
    "expire_stale_grants",
]
