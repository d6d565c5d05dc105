# -*- coding: utf-8 -*-
# bichobet/app/schemas/wagers_schemas.py
# =============================================================================
# Назначение кода:
# DTO ставок, каталога коэффициентов, тиражей и справочника животных.
#
# Канон / инварианты:
# • Вход ставки не пересчитывает ничего: форму и лимиты проверяет
#   bet_validation_service, здесь только типы.
# • Номера - строки цифр (ведущие нули значимы: "07" ≠ "7").
# =============================================================================

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field

from bichobet.app.core.utils_core import money_str
from bichobet.app.schemas.common_schemas import iso


class WagerIn(BaseModel):
    draw_id: int = Field(..., ge=1)
    wager_type: str = Field(..., examples=["group", "dozen", "passe_ida"])
    premio_type: str = Field("1", examples=["1", "1-5"])
    animals: List[Union[int, str]] = Field(default_factory=list)
    numbers: List[str] = Field(default_factory=list)
    stake: Union[str, int, float] = Field(..., description="Ставка в BRL, не более 2 знаков")
    use_bonus: bool = Field(False, description="Списывать с бонусного баланса")


class WagerOut(BaseModel):
    id: int
    draw_id: int
    wager_type: str
    premio_type: str
    animals: List[int]
    numbers: List[str]
    stake: str
    potential_payout: str
    funding_source: str
    status: str
    payout: Optional[str] = None
    created_at: Optional[str] = None
    settled_at: Optional[str] = None

    @classmethod
    def from_model(cls, w) -> "WagerOut":
        return cls(
            id=w.id,
            draw_id=w.draw_id,
            wager_type=w.wager_type,
            premio_type=w.premio_type,
            animals=[int(a) for a in (w.animals or [])],
            numbers=[str(n) for n in (w.numbers or [])],
            stake=money_str(w.stake),
            potential_payout=money_str(w.potential_payout),
            funding_source=w.funding_source,
            status=w.status,
            payout=money_str(w.payout) if w.payout is not None else None,
            created_at=iso(w.created_at),
            settled_at=iso(w.settled_at),
        )


class WagerPlacedOut(BaseModel):
    wager: WagerOut
    fallback_to_bonus: bool = False
    replayed: bool = False
    released_bonus: str = "0.00"


class WagerTypeOut(BaseModel):
    code: str
    label: str
    animals: int
    numbers: int
    digits: int
    kind: str
    multiplier: str
    premio_types: List[str]


class AnimalOut(BaseModel):
    id: int
    name: str
    group_number: int
    numbers: List[str]

    @classmethod
    def from_model(cls, a) -> "AnimalOut":
        return cls(
            id=a.id,
            name=a.name,
            group_number=a.group_number,
            numbers=[n for n in (a.numbers or "").split(",") if n],
        )


class DrawCreateIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    scheduled_at: datetime = Field(..., description="Время начала тиража (с таймзоной)")


class ResultPairIn(BaseModel):
    animal: int = Field(..., ge=1)
    number: str = Field(..., description="Ровно 4 цифры, например '0137'")


class DrawResultIn(BaseModel):
    results: List[ResultPairIn] = Field(..., min_length=1, max_length=5)


class DrawOut(BaseModel):
    id: int
    name: str
    scheduled_at: Optional[str]
    status: str
    results: List[Dict[str, Any]] = Field(default_factory=list)
    settled_at: Optional[str] = None

    @classmethod
    def from_model(cls, d) -> "DrawOut":
        return cls(
            id=d.id,
            name=d.name,
            scheduled_at=iso(d.scheduled_at),
            status=d.status,
            results=[
                {"tier": tier, "animal": animal, "number": number}
                for tier, (animal, number) in enumerate(d.result_pairs(), start=1)
            ],
            settled_at=iso(d.settled_at),
        )


class SettlementSummaryOut(BaseModel):
    draw_id: int
    settled: int
    won: int
    lost: int
    skipped: int
    total_payout: str
    errors: int = 0
    failed_wager_ids: List[int] = Field(default_factory=list)
    needs_resume: bool = False


class DrawResultOut(BaseModel):
    draw: DrawOut
    settlement: SettlementSummaryOut


def summary_out(summary) -> SettlementSummaryOut:
    return SettlementSummaryOut(
        **summary.as_dict(),
        errors=len(summary.errors),
        failed_wager_ids=summary.failed_wager_ids,
        needs_resume=summary.needs_resume,
    )


__all__ = [
    "WagerIn",
    "WagerOut",
    "WagerPlacedOut",
    "WagerTypeOut",
    "AnimalOut",
    "DrawCreateIn",
    "ResultPairIn",
    "DrawResultIn",
    "DrawOut",
    "SettlementSummaryOut",
    "DrawResultOut",
    "summary_out",
]
