# -*- coding: utf-8 -*-
# bichobet/app/services/draws_service.py
# =============================================================================
# Назначение кода:
#   Расписание тиражей и справочник животных: создание тиража (админ),
#   список ближайших тиражей, проверка «тираж открыт для ставок».
#
# Канон/инварианты:
#   • Новый тираж всегда pending и без результата.
#   • Ставки принимаются, пока status = pending и scheduled_at > now.
#   • Ввод результата и расчёт - только в settlement_service.
# =============================================================================

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bichobet.app.core.errors_core import DrawClosed, NotFoundError, ValidationError
from bichobet.app.core.logging_core import get_logger
from bichobet.app.core.utils_core import as_utc, utcnow
from bichobet.app.models.lottery_models import Animal, Draw
from bichobet.app.services.ledger_service import run_atomic

logger = get_logger(__name__)


def is_open(draw: Draw, now: Optional[datetime] = None) -> bool:
    now = now or utcnow()
    return draw.status == "pending" and as_utc(draw.scheduled_at) > now


def ensure_open(draw: Draw, now: Optional[datetime] = None) -> None:
    """DrawClosed, если тираж уже проведён или время начала прошло."""
    if not is_open(draw, now):
        status = draw.status if draw.status != "pending" else "started"
        raise DrawClosed(draw_id=draw.id, draw_status=status)


async def get_draw(db: AsyncSession, draw_id: int) -> Draw:
    draw = await db.get(Draw, int(draw_id), populate_existing=True)
    if draw is None:
        raise NotFoundError("Draw not found.", details={"draw_id": draw_id})
    return draw


async def create_draw(db: AsyncSession, *, name: str, scheduled_at: datetime) -> Draw:
    if scheduled_at.tzinfo is None:
        raise ValidationError("scheduled_at must carry a timezone.", details={"scheduled_at": str(scheduled_at)})
    if as_utc(scheduled_at) <= utcnow():
        raise ValidationError("Draw must be scheduled in the future.", details={"scheduled_at": str(scheduled_at)})

    async def _work() -> Draw:
        draw = Draw(name=name.strip(), scheduled_at=as_utc(scheduled_at), status="pending")
        db.add(draw)
        await db.flush()
        return draw

    draw = await run_atomic(db, _work, op="draw_create")
    logger.info("Draw scheduled", extra={"draw_id": draw.id, "scheduled_at": str(draw.scheduled_at)})
    return draw


async def list_upcoming(db: AsyncSession, *, limit: int = 20) -> List[Draw]:
    stmt = (
        select(Draw)
        .where(Draw.status == "pending", Draw.scheduled_at > utcnow())
        .order_by(Draw.scheduled_at.asc(), Draw.id.asc())
        .limit(limit)
    )
    return list((await db.execute(stmt)).scalars().all())


async def list_animals(db: AsyncSession) -> List[Animal]:
    return list((await db.execute(select(Animal).order_by(Animal.group_number))).scalars().all())


__all__ = ["is_open", "ensure_open", "get_draw", "create_draw", "list_upcoming", "list_animals"]
