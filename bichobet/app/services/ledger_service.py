# -*- coding: utf-8 -*-
# bichobet/app/services/ledger_service.py
# =============================================================================
# Bicho Bet - денежный журнал (канон, READ-THROUGH идемпотентность)
# -----------------------------------------------------------------------------
# ЕДИНСТВЕННАЯ точка записи движений по балансам:
#   • lock_account(...)      - SELECT ... FOR UPDATE строки аккаунта
#   • credit_real(...)       - кредит реального баланса + запись журнала
#   • debit_real(...)        - дебет реального баланса (без ухода в минус)
#   • record_bonus(...)      - запись журнала по бонусному балансу
#   • run_atomic(...)        - транзакционная обвязка с ретраями и replay
#
# Правила:
#   • У игрока ЗАПРЕЩЁН отрицательный баланс.
#   • Любая запись журнала идемпотентна по idempotency_key (UNIQUE).
#   • Numeric(18,2), округление вниз через utils_core.d2().
#   • Σ журнала по real = accounts.balance; Σ по bonus = Σ remaining грантов.
#
# ИИ-защита/самовосстановление:
#   • READ-THROUGH: без предварительного SELECT по ключу. Конфликт UNIQUE →
#     откат и возврат уже записанного результата (replay).
#   • Мягкие ретраи для deadlock/serialize конфликтов.
# =============================================================================

from __future__ import annotations

import asyncio
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

from sqlalchemy import select
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from bichobet.app.core.errors_core import InsufficientRealBalance, NotFoundError
from bichobet.app.core.logging_core import get_logger
from bichobet.app.core.system_locks import BalanceSnapshot, ensure_non_negative_after
from bichobet.app.core.utils_core import d2
from bichobet.app.models.accounts_models import Account, BonusGrant
from bichobet.app.models.ledger_models import LedgerEntry

logger = get_logger(__name__)

T = TypeVar("T")

ZERO = Decimal("0.00")

_MAX_TRIES = 3
_BACKOFF_SEC = 0.15


# -----------------------------------------------------------------------------
# Блокировки
# -----------------------------------------------------------------------------
async def lock_account(db: AsyncSession, account_id: int) -> Account:
    """
    Строка аккаунта под FOR UPDATE. populate_existing - чтобы identity map
    не отдал устаревший баланс из прошлой транзакции этой же сессии.
    """
    stmt = (
        select(Account)
        .where(Account.id == int(account_id))
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    account = (await db.execute(stmt)).scalar_one_or_none()
    if account is None:
        raise NotFoundError("Account not found.", details={"account_id": account_id})
    return account


# -----------------------------------------------------------------------------
# Журнал
# -----------------------------------------------------------------------------
async def post_entry(
    db: AsyncSession,
    *,
    account_id: int,
    amount: Decimal,
    direction: str,
    balance_type: str,
    reason: str,
    idempotency_key: str,
    balance_after: Optional[Decimal] = None,
    meta: Optional[Dict[str, Any]] = None,
) -> LedgerEntry:
    """Вставка записи журнала; flush сразу, чтобы конфликт ключа всплыл здесь."""
    entry = LedgerEntry(
        account_id=int(account_id),
        amount=d2(amount),
        direction=direction,
        balance_type=balance_type,
        reason=reason,
        idempotency_key=idempotency_key,
        balance_after=(d2(balance_after) if balance_after is not None else None),
        meta=meta or None,
    )
    db.add(entry)
    await db.flush()
    return entry


async def credit_real(
    db: AsyncSession,
    account: Account,
    amount: Decimal,
    *,
    reason: str,
    idempotency_key: str,
    meta: Optional[Dict[str, Any]] = None,
) -> LedgerEntry:
    """Кредит реального баланса. Аккаунт должен быть заблокирован вызывающим."""
    amount = d2(amount)
    if amount <= ZERO:
        raise ValueError("credit amount must be positive")
    account.balance = d2(account.balance + amount)
    return await post_entry(
        db,
        account_id=account.id,
        amount=amount,
        direction="credit",
        balance_type="real",
        reason=reason,
        idempotency_key=idempotency_key,
        balance_after=account.balance,
        meta=meta,
    )


async def debit_real(
    db: AsyncSession,
    account: Account,
    amount: Decimal,
    *,
    reason: str,
    idempotency_key: str,
    meta: Optional[Dict[str, Any]] = None,
) -> LedgerEntry:
    """Дебет реального баланса; InsufficientRealBalance, если не хватает."""
    amount = d2(amount)
    if amount <= ZERO:
        raise ValueError("debit amount must be positive")
    current = d2(account.balance)
    if current < amount:
        raise InsufficientRealBalance(current_balance=current, required_amount=amount)
    ensure_non_negative_after(BalanceSnapshot(real=current, bonus=ZERO), -amount, ZERO)
    account.balance = d2(current - amount)
    return await post_entry(
        db,
        account_id=account.id,
        amount=amount,
        direction="debit",
        balance_type="real",
        reason=reason,
        idempotency_key=idempotency_key,
        balance_after=account.balance,
        meta=meta,
    )


async def record_bonus(
    db: AsyncSession,
    *,
    account_id: int,
    amount: Decimal,
    direction: str,
    reason: str,
    idempotency_key: str,
    balance_after: Optional[Decimal] = None,
    meta: Optional[Dict[str, Any]] = None,
) -> LedgerEntry:
    """Запись по бонусному балансу (сами остатки грантов меняет bonus_service)."""
    return await post_entry(
        db,
        account_id=account_id,
        amount=amount,
        direction=direction,
        balance_type="bonus",
        reason=reason,
        idempotency_key=idempotency_key,
        balance_after=balance_after,
        meta=meta,
    )


async def find_entry(db: AsyncSession, idempotency_key: str) -> Optional[LedgerEntry]:
    stmt = select(LedgerEntry).where(LedgerEntry.idempotency_key == idempotency_key).limit(1)
    return (await db.execute(stmt)).scalar_one_or_none()


# -----------------------------------------------------------------------------
# Сверка
# -----------------------------------------------------------------------------
async def ledger_sum(db: AsyncSession, account_id: int, balance_type: str) -> Decimal:
    """Σ(credit) − Σ(debit) по типу баланса (суммируем Decimal в Python)."""
    stmt = select(LedgerEntry.direction, LedgerEntry.amount).where(
        LedgerEntry.account_id == int(account_id),
        LedgerEntry.balance_type == balance_type,
    )
    total = ZERO
    for direction, amount in (await db.execute(stmt)).all():
        total += amount if direction == "credit" else -amount
    return d2(total)


async def verify_account_invariants(db: AsyncSession, account_id: int) -> Dict[str, Any]:
    """
    Сверка журнала с балансами:
      • real:  Σ журнала = accounts.balance;
      • bonus: Σ журнала = Σ remaining_amount активных грантов
        (у завершённых грантов остаток всегда обнулён).
    """
    account = await db.get(Account, int(account_id), populate_existing=True)
    if account is None:
        raise NotFoundError("Account not found.", details={"account_id": account_id})
    rows = await db.execute(
        select(BonusGrant.remaining_amount).where(
            BonusGrant.account_id == int(account_id),
            BonusGrant.status == "active",
        )
    )
    remaining = sum(rows.scalars().all(), ZERO)
    real_sum = await ledger_sum(db, account_id, "real")
    bonus_sum = await ledger_sum(db, account_id, "bonus")
    report = {
        "account_id": int(account_id),
        "real_balance": d2(account.balance),
        "real_ledger": real_sum,
        "bonus_remaining": d2(remaining),
        "bonus_ledger": bonus_sum,
    }
    report["ok"] = report["real_balance"] == real_sum and report["bonus_remaining"] == bonus_sum
    if not report["ok"]:
        logger.error("Ledger invariant violated", extra={k: str(v) for k, v in report.items()})
    return report


# -----------------------------------------------------------------------------
# Транзакционная обвязка
# -----------------------------------------------------------------------------
def _is_unique_violation(exc: BaseException) -> bool:
    return "unique" in str(exc).lower() or "duplicate key" in str(exc).lower()


def _is_retryable(exc: BaseException) -> bool:
    msg = str(exc).lower()
    return "deadlock" in msg or "could not serialize" in msg or "serialization" in msg


async def run_atomic(
    db: AsyncSession,
    work: Callable[[], Awaitable[T]],
    *,
    op: str,
    replay: Optional[Callable[[], Awaitable[Optional[T]]]] = None,
) -> T:
    """
    Выполняет work() и фиксирует транзакцию; при любой ошибке - rollback.

      • IntegrityError по UNIQUE и задан replay → возвращаем replay()
        (операция уже была выполнена ранее с тем же ключом).
      • deadlock/serialization → короткий backoff и повтор.
      • Остальное (включая доменные BichoError) - наверх без изменений.
    """
    last_exc: Optional[BaseException] = None
    for attempt in range(1, _MAX_TRIES + 1):
        try:
            result = await work()
            await db.commit()
            return result
        except IntegrityError as exc:
            await db.rollback()
            if replay is not None and _is_unique_violation(exc):
                previous = await replay()
                if previous is not None:
                    logger.info("Idempotent replay", extra={"op": op})
                    return previous
            raise
        except DBAPIError as exc:
            await db.rollback()
            if _is_retryable(exc) and attempt < _MAX_TRIES:
                logger.warning("Retrying after DB conflict", extra={"op": op, "attempt": attempt})
                last_exc = exc
                await asyncio.sleep(_BACKOFF_SEC * attempt)
                continue
            raise
        except Exception:
            await db.rollback()
            raise
    raise RuntimeError(f"{op} failed after {_MAX_TRIES} attempts: {last_exc}")


__all__ = [
    "ZERO",
    "lock_account",
    "post_entry",
    "credit_real",
    "debit_real",
    "record_bonus",
    "find_entry",
    "ledger_sum",
    "verify_account_invariants",
    "run_atomic",
]
