# -*- coding: utf-8 -*-
# bichobet/app/services/wagers_service.py
# =============================================================================
# Назначение кода:
#   Приём ставки: выбор источника средств (real | bonus), списание, отыгрыш
#   бонусов и запись ставки pending. Одна атомарная транзакция на ставку.
#
# Канон/инварианты:
#   • Тираж pending и ещё не начался, иначе DrawClosed.
#   • Строка аккаунта под FOR UPDATE на всё время операции.
#   • Предпочтение use_bonus выключено или активных грантов нет → списываем
#     real. Не хватает real → авто-переход на бонус (если разрешён и бонуса
#     хватает, fallback_to_bonus=True) либо InsufficientRealBalance.
#   • use_bonus включено → списание с грантов (ближайший срок - первым).
#   • Каждая ставка двигает отыгрыш ВСЕХ активных грантов, независимо от
#     источника средств.
#   • Повтор с тем же Idempotency-Key возвращает ранее созданную ставку.
#
# Запреты:
#   • Отменять ставку нельзя; статус меняет только расчёт тиража.
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from bichobet.app.core.config_core import get_settings
from bichobet.app.core.errors_core import (
    BonusBetsDisabled,
    ForbiddenError,
    InsufficientRealBalance,
    NotFoundError,
)
from bichobet.app.core.logging_core import get_logger
from bichobet.app.core.utils_core import d2, gen_idempotency_key, utcnow
from bichobet.app.models.lottery_models import Draw, Wager
from bichobet.app.services import bonus_service
from bichobet.app.services.bet_validation_service import ValidatedWager
from bichobet.app.services.draws_service import ensure_open
from bichobet.app.services.ledger_service import ZERO, debit_real, lock_account, run_atomic

logger = get_logger(__name__)


@dataclass(frozen=True)
class PlacementResult:
    wager: Wager
    fallback_to_bonus: bool = False
    replayed: bool = False
    released_bonus: Decimal = ZERO


async def _find_by_key(db: AsyncSession, wager_key: str) -> Optional[Wager]:
    stmt = (
        select(Wager)
        .where(Wager.idempotency_key == wager_key)
        .execution_options(populate_existing=True)
    )
    return (await db.execute(stmt)).scalar_one_or_none()


async def place_wager(
    db: AsyncSession,
    *,
    account_id: int,
    wager: ValidatedWager,
    draw_id: Optional[int] = None,
    use_bonus: bool = False,
    idempotency_key: Optional[str] = None,
) -> PlacementResult:
    """
    Атомарный приём проверенной ставки.

    Ключ ставки в БД - "<account_id>:<Idempotency-Key>", поэтому одинаковые
    ключи разных игроков не конфликтуют.
    """
    target_draw_id = draw_id if draw_id is not None else wager.draw_id
    if target_draw_id is None:
        raise NotFoundError("Draw not found.", details={"draw_id": None})
    idk = (idempotency_key or "").strip() or gen_idempotency_key("auto")
    wager_key = f"{account_id}:{idk}"
    ledger_key = f"wager:{account_id}:{idk}"
    s = get_settings()

    async def _work() -> PlacementResult:
        account = await lock_account(db, account_id)

        existing = await _find_by_key(db, wager_key)
        if existing is not None:
            return PlacementResult(
                wager=existing,
                fallback_to_bonus=(existing.funding_source == "bonus" and not use_bonus),
                replayed=True,
            )

        draw_stmt = (
            select(Draw)
            .where(Draw.id == int(target_draw_id))
            .with_for_update(read=True)
            .execution_options(populate_existing=True)
        )
        draw = (await db.execute(draw_stmt)).scalar_one_or_none()
        if draw is None:
            raise NotFoundError("Draw not found.", details={"draw_id": target_draw_id})
        now = utcnow()
        ensure_open(draw, now)

        if account.is_blocked:
            raise ForbiddenError("Account is blocked.", details={"account_id": account.id})

        grants = await bonus_service.load_active_grants(db, account.id)
        expired = bonus_service.expire_stale(grants, now)
        await bonus_service.record_expirations(db, account.id, expired)
        active = [g for g in grants if bonus_service.is_spendable(g, now)]

        stake = d2(wager.stake)
        funding = "real"
        fallback = False
        if use_bonus and active:
            if not s.ALLOW_BONUS_BETS:
                raise BonusBetsDisabled()
            funding = "bonus"
        elif d2(account.balance) < stake:
            bonus_available = bonus_service.spendable_bonus(active, now)
            if s.BONUS_AUTO_FALLBACK and s.ALLOW_BONUS_BETS and bonus_available >= stake:
                funding = "bonus"
                fallback = True
            else:
                raise InsufficientRealBalance(current_balance=d2(account.balance), required_amount=stake)

        row = Wager(
            account_id=account.id,
            draw_id=draw.id,
            wager_type=wager.wager_type,
            premio_type=wager.premio_type,
            animals=list(wager.animals),
            numbers=list(wager.numbers),
            stake=stake,
            potential_payout=wager.potential_payout,
            funding_source=funding,
            status="pending",
            idempotency_key=wager_key,
            created_at=now,
        )
        db.add(row)
        await db.flush()

        meta: Dict[str, Any] = {"wager_id": row.id, "draw_id": draw.id}
        if funding == "real":
            await debit_real(db, account, stake, reason="wager", idempotency_key=ledger_key, meta=meta)
        else:
            parts = bonus_service.debit_bonus(active, stake, now)
            await bonus_service.record_bonus_spend(
                db,
                account.id,
                parts,
                idempotency_key=f"{ledger_key}:bonus",
                balance_after=bonus_service.spendable_bonus(active, now),
                meta=meta,
            )

        released = bonus_service.advance_rollover(active, stake, now)
        released_total = await bonus_service.record_releases(db, account, released)
        await db.flush()

        logger.info(
            "Wager placed",
            extra={
                "wager_id": row.id,
                "account_id": account.id,
                "draw_id": draw.id,
                "wager_type": row.wager_type,
                "stake": str(stake),
                "funding": funding,
                "fallback_to_bonus": fallback,
            },
        )
        return PlacementResult(
            wager=row, fallback_to_bonus=fallback, replayed=False, released_bonus=released_total
        )

    async def _replay() -> Optional[PlacementResult]:
        existing = await _find_by_key(db, wager_key)
        if existing is None:
            return None
        return PlacementResult(wager=existing, replayed=True)

    return await run_atomic(db, _work, op="wager_place", replay=_replay)


async def list_account_wagers(
    db: AsyncSession,
    account_id: int,
    *,
    limit: int = 50,
    cursor_ts=None,
    cursor_id: Optional[int] = None,
) -> List[Wager]:
    """Ставки игрока, новые первыми; keyset по (created_at, id)."""
    stmt = select(Wager).where(Wager.account_id == int(account_id))
    if cursor_ts is not None and cursor_id is not None:
        stmt = stmt.where(
            or_(
                Wager.created_at < cursor_ts,
                and_(Wager.created_at == cursor_ts, Wager.id < cursor_id),
            )
        )
    stmt = stmt.order_by(Wager.created_at.desc(), Wager.id.desc()).limit(limit)
    return list((await db.execute(stmt)).scalars().all())


__all__ = ["PlacementResult", "place_wager", "list_account_wagers"]
