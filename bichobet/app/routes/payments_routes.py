# -*- coding: utf-8 -*-
# bichobet/app/routes/payments_routes.py
# =============================================================================
# Назначение кода:
#   • Депозит PIX: создание транзакции и выдача «copia e cola» / QR.
#   • Ручная проверка статуса транзакции игроком.
#   • История транзакций (keyset-курсор).
#   • Вебхуки шлюзов: подпись проверяется до разбора тела.
#
# Канон/инварианты:
#   • Вебхук, ручная проверка и фоновый опрос сходятся в одном охраняемом
#     переходе payments_service - зачисление ровно один раз.
#   • Вебхуки не требуют Idempotency-Key: их идемпотентность - статус в БД.
# =============================================================================

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from bichobet.app.core.logging_core import get_logger
from bichobet.app.deps import (
    PageParams,
    get_current_account_id,
    get_db,
    pagination_params,
    require_idempotency_key,
)
from bichobet.app.schemas.common_schemas import CursorPage
from bichobet.app.schemas.payments_schemas import DepositIn, DepositOut, StatusCheckOut, TransactionOut
from bichobet.app.services.payments_service import (
    check_transaction_status,
    handle_webhook,
    initiate_deposit,
    list_account_transactions,
)

logger = get_logger(__name__)
router = APIRouter(prefix="/payments", tags=["payments"])

SIGNATURE_HEADERS = ("x-ezzebank-signature", "x-pushinpay-signature", "x-webhook-signature")


@router.post("/deposits", response_model=DepositOut, status_code=status.HTTP_201_CREATED)
async def post_deposit(
    body: DepositIn,
    account_id: int = Depends(get_current_account_id),
    idempotency_key: str = Depends(require_idempotency_key),
    db: AsyncSession = Depends(get_db),
) -> DepositOut:
    result = await initiate_deposit(
        db,
        account_id=account_id,
        amount=body.amount,
        gateway=body.gateway,
        apply_bonus=body.apply_bonus,
        idempotency_key=idempotency_key,
    )
    return DepositOut(
        transaction=TransactionOut.from_model(result.transaction),
        pix_copy_paste=result.copy_paste,
        pix_qr_code_base64=result.qr_code_base64,
        replayed=result.replayed,
    )


@router.post("/{transaction_id}/check", response_model=StatusCheckOut)
async def post_check_status(
    transaction_id: int,
    account_id: int = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_db),
) -> StatusCheckOut:
    """Ручной триггер: спросить шлюз и, если платёж прошёл, зачислить."""
    result = await check_transaction_status(db, transaction_id, account_id=account_id)
    return StatusCheckOut(**result.as_dict())


@router.get("", response_model=CursorPage[TransactionOut])
async def get_my_transactions(
    direction: Optional[str] = Query(None, pattern="^(deposit|withdrawal)$"),
    page: PageParams = Depends(pagination_params),
    account_id: int = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_db),
) -> CursorPage[TransactionOut]:
    rows = await list_account_transactions(
        db,
        account_id,
        limit=page.limit,
        cursor_ts=page.cursor_ts,
        cursor_id=page.cursor_id,
        direction=direction,
    )
    next_cursor = page.next_cursor(rows)
    return CursorPage[TransactionOut](
        items=[TransactionOut.from_model(tx) for tx in rows], next_cursor=next_cursor
    )


@router.post("/webhooks/{gateway}", response_model=StatusCheckOut)
async def post_webhook(gateway: str, request: Request, db: AsyncSession = Depends(get_db)) -> StatusCheckOut:
    raw_body = await request.body()
    signature: Optional[str] = None
    for header in SIGNATURE_HEADERS:
        signature = request.headers.get(header)
        if signature:
            break
    result = await handle_webhook(db, gateway=gateway, raw_body=raw_body, signature_header=signature)
    return StatusCheckOut(**result.as_dict())


__all__ = ["router"]
