# -*- coding: utf-8 -*-
# bichobet/app/routes/admin/admin_routes.py
# =============================================================================
# Назначение кода:
# Админ-API Bicho Bet: расписание тиражей, ввод результата с расчётом ставок,
# возобновление прерванного расчёта, одобрение/отклонение выводов, отмена
# бонус-грантов, сверка инвариантов журнала по аккаунту.
#
# Канон/инварианты (важно):
# • Любые денежные операции идут ТОЛЬКО через сервисы (ledger_service внутри).
# • Результат тиража вводится ровно один раз: повтор → 409 draw_already_settled.
# • Денежные POST по выводам требуют Idempotency-Key.
# • Вход в админку: JWT с role=admin ИЛИ X-Admin-Api-Key.
#
# Запреты:
# • Никаких прямых SQL для денег из роутов; только сервисные функции.
# =============================================================================

from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from bichobet.app.core.logging_core import get_logger
from bichobet.app.deps import get_db, require_admin, require_idempotency_key
from bichobet.app.schemas.accounts_schemas import BonusGrantOut
from bichobet.app.schemas.payments_schemas import RejectIn, StatusCheckOut, TransactionOut
from bichobet.app.schemas.wagers_schemas import (
    DrawCreateIn,
    DrawOut,
    DrawResultIn,
    DrawResultOut,
    SettlementSummaryOut,
    summary_out,
)
from bichobet.app.services.bonus_service import cancel_grant
from bichobet.app.services.draws_service import create_draw
from bichobet.app.services.ledger_service import verify_account_invariants
from bichobet.app.services.settlement_service import resume_settlement, submit_result
from bichobet.app.services.withdraw_service import approve_withdrawal, reject_withdrawal

logger = get_logger(__name__)
router = APIRouter(prefix="/admin", tags=["admin"])


# =============================================================================
# Тиражи
# =============================================================================
@router.post("/draws", response_model=DrawOut, status_code=status.HTTP_201_CREATED)
async def admin_create_draw(
    body: DrawCreateIn,
    actor: str = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> DrawOut:
    draw = await create_draw(db, name=body.name, scheduled_at=body.scheduled_at)
    logger.info("Admin scheduled draw", extra={"actor": actor, "draw_id": draw.id})
    return DrawOut.from_model(draw)


@router.put("/draws/{draw_id}/result", response_model=DrawResultOut)
async def admin_submit_result(
    draw_id: int,
    body: DrawResultIn,
    actor: str = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> DrawResultOut:
    """
    Что делает:
      • Фиксирует 1..5 пар (животное, 4-значный номер) и рассчитывает все
        pending-ставки тиража.
    Исключения:
      • 409 draw_already_settled - результат уже введён (побочных эффектов нет).
      • 400 invalid_wager_shape / 404 unknown_animal - некорректный результат.
    """
    pairs = [(r.animal, r.number) for r in body.results]
    draw, summary = await submit_result(db, draw_id, pairs)
    logger.info("Admin submitted draw result", extra={"actor": actor, "draw_id": draw_id})
    return DrawResultOut(draw=DrawOut.from_model(draw), settlement=summary_out(summary))


@router.post("/draws/{draw_id}/resume", response_model=SettlementSummaryOut)
async def admin_resume_settlement(
    draw_id: int,
    actor: str = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> SettlementSummaryOut:
    summary = await resume_settlement(db, draw_id)
    logger.info("Admin resumed settlement", extra={"actor": actor, "draw_id": draw_id})
    return summary_out(summary)


# =============================================================================
# Выводы
# =============================================================================
@router.post("/withdrawals/{transaction_id}/approve", response_model=TransactionOut)
async def admin_approve_withdrawal(
    transaction_id: int,
    actor: str = Depends(require_admin),
    _idk: str = Depends(require_idempotency_key),
    db: AsyncSession = Depends(get_db),
) -> TransactionOut:
    tx = await approve_withdrawal(db, transaction_id)
    logger.info("Admin approved withdrawal", extra={"actor": actor, "transaction_id": transaction_id})
    return TransactionOut.from_model(tx)


@router.post("/withdrawals/{transaction_id}/reject", response_model=StatusCheckOut)
async def admin_reject_withdrawal(
    transaction_id: int,
    body: RejectIn,
    actor: str = Depends(require_admin),
    _idk: str = Depends(require_idempotency_key),
    db: AsyncSession = Depends(get_db),
) -> StatusCheckOut:
    result = await reject_withdrawal(db, transaction_id, reason=body.reason)
    logger.info("Admin rejected withdrawal", extra={"actor": actor, "transaction_id": transaction_id})
    return StatusCheckOut(**result.as_dict())


# =============================================================================
# Бонусы и сверка
# =============================================================================
@router.post("/bonuses/{grant_id}/cancel", response_model=BonusGrantOut)
async def admin_cancel_bonus(
    grant_id: int,
    actor: str = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> BonusGrantOut:
    grant = await cancel_grant(db, grant_id)
    logger.info("Admin cancelled bonus grant", extra={"actor": actor, "grant_id": grant_id})
    return BonusGrantOut.from_model(grant)


@router.get("/accounts/{account_id}/invariants")
async def admin_account_invariants(
    account_id: int,
    actor: str = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> Dict[str, Any]:
    """Сверка: реальный баланс = сумма журнала real; остатки грантов = журнал bonus."""
    report = await verify_account_invariants(db, account_id)
    return {k: (str(v) if not isinstance(v, (bool, int)) else v) for k, v in report.items()}


__all__ = ["router"]
