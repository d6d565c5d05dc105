# -*- coding: utf-8 -*-
# bichobet/app/schemas/common_schemas.py
# =============================================================================
# Назначение кода:
# Базовые Pydantic-схемы Bicho Bet для всех API: курсорная пагинация,
# денежные значения строкой с 2 знаками, типовые ответы. Единый контракт
# для фронтенда.
#
# Канон / инварианты:
# • Все суммы - Decimal(18, 2). Снаружи всегда выдаём строкой с 2 знаками.
# • Все листинги используют курсорную пагинацию (без OFFSET).
#
# Запреты:
# • Нет бизнес-логики и пересчётов - только декларативные DTO/валидаторы.
# =============================================================================

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Generic, List, Optional, TypeVar

from pydantic import BaseModel, Field, field_validator

from bichobet.app.core.utils_core import money_str


def parse_money(value: Any) -> Decimal:
    """Строка/число → Decimal без потери точности; мусор → ValueError."""
    if isinstance(value, bool):
        raise ValueError("Некорректное денежное значение")
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError, TypeError):
        raise ValueError("Некорректное денежное значение")
    if not amount.is_finite():
        raise ValueError("Некорректное денежное значение")
    return amount


class ErrorResponse(BaseModel):
    """Форма ошибки, которую отдают обработчики errors_core."""

    error: str = Field(..., description="Короткий код ошибки (snake-case)")
    message: str = Field(..., description="Человеко-читаемое описание проблемы")
    details: dict = Field(default_factory=dict, description="Контекст ошибки")


class OkMeta(BaseModel):
    ok: bool = Field(True, description="Флаг успешной операции")
    server_time: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat(),
        description="UTC-время формирования ответа (ISO-8601)",
    )


T = TypeVar("T")


class CursorPage(BaseModel, Generic[T]):
    """
    Контейнер страницы списка:
      • items - элементы текущей выборки;
      • next_cursor - курсор следующей страницы (или None);
      • server_time - отметка времени формирования ответа.
    """

    items: List[T] = Field(..., description="Элементы текущей страницы")
    next_cursor: Optional[str] = Field(None, description="Курсор следующей страницы или None")
    server_time: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat(),
        description="UTC-время формирования ответа (ISO-8601)",
    )


class MoneyIn(BaseModel):
    """Базовый вход с денежным полем amount (строка или число)."""

    amount: Decimal = Field(..., description="Сумма в BRL, не более 2 знаков")

    @field_validator("amount", mode="before")
    @classmethod
    def _parse_amount(cls, v: Any) -> Decimal:
        amount = parse_money(v)
        if amount <= 0:
            raise ValueError("Сумма должна быть положительной")
        if amount.as_tuple().exponent < -2:
            raise ValueError("Не более 2 знаков после запятой")
        return amount


def iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


__all__ = [
    "parse_money",
    "money_str",
    "iso",
    "ErrorResponse",
    "OkMeta",
    "CursorPage",
    "MoneyIn",
]
