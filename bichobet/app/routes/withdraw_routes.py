# -*- coding: utf-8 -*-
# bichobet/app/routes/withdraw_routes.py
# =============================================================================
# Назначение кода:
#   • Заявка игрока на вывод PIX. Денежный POST → Idempotency-Key обязателен.
#     Сумма удерживается с реального баланса сразу; одобрение и отклонение -
#     в админке (admin/admin_routes.py).
#
# Канон/инварианты (строго):
#   • Игрок не может уйти в минус (жёсткий запрет в сервисе).
#   • Бонусный баланс не выводится; только реальный.
#   • Повтор с тем же Idempotency-Key возвращает ранее созданную заявку.
# =============================================================================

from __future__ import annotations

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from bichobet.app.deps import get_current_account_id, get_db, require_idempotency_key
from bichobet.app.schemas.payments_schemas import TransactionOut, WithdrawalIn
from bichobet.app.services.withdraw_service import request_withdrawal

router = APIRouter(prefix="/withdrawals", tags=["withdrawals"])


@router.post("", response_model=TransactionOut, status_code=status.HTTP_201_CREATED)
async def post_withdrawal(
    body: WithdrawalIn,
    account_id: int = Depends(get_current_account_id),
    idempotency_key: str = Depends(require_idempotency_key),
    db: AsyncSession = Depends(get_db),
) -> TransactionOut:
    result = await request_withdrawal(
        db,
        account_id=account_id,
        amount=body.amount,
        pix_key=body.pix_key,
        idempotency_key=idempotency_key,
    )
    return TransactionOut.from_model(result.transaction)


__all__ = ["router"]
