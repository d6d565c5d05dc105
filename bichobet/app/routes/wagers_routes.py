# -*- coding: utf-8 -*-
# bichobet/app/routes/wagers_routes.py
# =============================================================================
# Назначение кода:
#   • Справочник животных и каталог типов ставок с коэффициентами.
#   • Приём ставки (денежный POST → Idempotency-Key обязателен).
#   • История ставок игрока (keyset-курсор).
#
# Канон/инварианты:
#   • Форма ставки и лимиты проверяются до любых блокировок
#     (bet_validation_service), списание и запись - одна транзакция
#     (wagers_service).
#   • Повтор с тем же Idempotency-Key возвращает ранее созданную ставку.
# =============================================================================

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from bichobet.app.core.logging_core import get_logger
from bichobet.app.core.utils_core import money_str
from bichobet.app.deps import (
    PageParams,
    get_current_account_id,
    get_db,
    pagination_params,
    require_idempotency_key,
)
from bichobet.app.schemas.common_schemas import CursorPage
from bichobet.app.schemas.wagers_schemas import AnimalOut, WagerIn, WagerOut, WagerPlacedOut, WagerTypeOut
from bichobet.app.services.bet_validation_service import validate_wager
from bichobet.app.services.draws_service import list_animals
from bichobet.app.services.odds_service import get_catalog
from bichobet.app.services.wagers_service import list_account_wagers, place_wager

logger = get_logger(__name__)
router = APIRouter(tags=["wagers"])


@router.get("/animals", response_model=List[AnimalOut])
async def get_animals(db: AsyncSession = Depends(get_db)) -> List[AnimalOut]:
    return [AnimalOut.from_model(a) for a in await list_animals(db)]


@router.get("/wagers/types", response_model=List[WagerTypeOut])
async def get_wager_types() -> List[WagerTypeOut]:
    return [WagerTypeOut(**item) for item in get_catalog().as_public_list()]


@router.post("/wagers", response_model=WagerPlacedOut, status_code=status.HTTP_201_CREATED)
async def post_wager(
    body: WagerIn,
    account_id: int = Depends(get_current_account_id),
    idempotency_key: str = Depends(require_idempotency_key),
    db: AsyncSession = Depends(get_db),
) -> WagerPlacedOut:
    """
    Что делает:
      • Проверяет форму/лимиты, списывает ставку (real или bonus), двигает
        отыгрыш бонусов и возвращает ставку с потенциальным выигрышем.
    Исключения (JSON с контекстом):
      • 400 invalid_wager_shape / stake_out_of_bounds / draw_closed /
        insufficient_real_balance / bonus_bets_disabled;
      • 404 unknown_animal.
    """
    validated = await validate_wager(
        db,
        wager_type=body.wager_type,
        premio_type=body.premio_type,
        animals=body.animals,
        numbers=body.numbers,
        stake=body.stake,
        draw_id=body.draw_id,
    )
    result = await place_wager(
        db,
        account_id=account_id,
        wager=validated,
        draw_id=body.draw_id,
        use_bonus=body.use_bonus,
        idempotency_key=idempotency_key,
    )
    return WagerPlacedOut(
        wager=WagerOut.from_model(result.wager),
        fallback_to_bonus=result.fallback_to_bonus,
        replayed=result.replayed,
        released_bonus=money_str(result.released_bonus),
    )


@router.get("/wagers", response_model=CursorPage[WagerOut])
async def get_my_wagers(
    page: PageParams = Depends(pagination_params),
    account_id: int = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_db),
) -> CursorPage[WagerOut]:
    rows = await list_account_wagers(
        db, account_id, limit=page.limit, cursor_ts=page.cursor_ts, cursor_id=page.cursor_id
    )
    next_cursor = page.next_cursor(rows)
    return CursorPage[WagerOut](items=[WagerOut.from_model(w) for w in rows], next_cursor=next_cursor)


__all__ = ["router"]
