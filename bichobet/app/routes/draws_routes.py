# -*- coding: utf-8 -*-
# bichobet/app/routes/draws_routes.py
# =============================================================================
# Назначение кода:
#   Публичный список ближайших тиражей, открытых для ставок.
#   Создание тиража и ввод результата - в admin/admin_routes.py.
# =============================================================================

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from bichobet.app.deps import get_db
from bichobet.app.schemas.wagers_schemas import DrawOut
from bichobet.app.services.draws_service import get_draw, list_upcoming

router = APIRouter(prefix="/draws", tags=["draws"])


@router.get("/upcoming", response_model=List[DrawOut])
async def get_upcoming(
    limit: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
) -> List[DrawOut]:
    return [DrawOut.from_model(d) for d in await list_upcoming(db, limit=limit)]


@router.get("/{draw_id}", response_model=DrawOut)
async def get_one(draw_id: int, db: AsyncSession = Depends(get_db)) -> DrawOut:
    return DrawOut.from_model(await get_draw(db, draw_id))


__all__ = ["router"]
