# -*- coding: utf-8 -*-
# bichobet/app/core/utils_core.py
# =============================================================================
# Назначение:
#   Мелкие чистые помощники, которыми пользуются сервисы, схемы и шлюзы:
#   денежный Decimal (реалы, 2 знака), UTC-время, HMAC подписи вебхуков,
#   автоключи идемпотентности для ставок без заголовка.
#
# Канон:
#   • Любая сумма в реалах проходит через d2(): 2 знака, округление вниз.
#   • Выплата по ставке обрезается до целого реала через floor_units().
#   • Даты из SQLite приходят «наивными» и трактуются как UTC.
#
# Запреты:
#   • Без импортов FastAPI/SQLAlchemy и без ввода-вывода.
# =============================================================================

from __future__ import annotations

import hashlib
import hmac
import secrets
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_DOWN, ROUND_FLOOR
from typing import Optional, Union

NumberLike = Union[str, int, float, Decimal]

CENTS = Decimal("0.01")


def decimal_from(value: NumberLike) -> Decimal:
    if isinstance(value, Decimal):
        return value
    # float → str → Decimal: 0.1 остаётся 0.1, а не 0.1000000000000000055...
    return Decimal(str(value)) if isinstance(value, float) else Decimal(value)


def d2(value: NumberLike) -> Decimal:
    """R$ с 2 знаками, ROUND_DOWN. Мусор на входе даёт 0.00."""
    try:
        return decimal_from(value).quantize(CENTS, rounding=ROUND_DOWN)
    except InvalidOperation:
        return Decimal("0.00")


def floor_units(value: NumberLike) -> Decimal:
    """R$ 899.99 → 899; R$ 900 → 900."""
    return decimal_from(value).to_integral_value(rounding=ROUND_FLOOR)


def money_str(value: NumberLike) -> str:
    return format(d2(value), ".2f")


def utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """aware-UTC; наивное значение (SQLite) считается уже UTC."""
    if value is None:
        return None
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value.astimezone(timezone.utc)


def _as_bytes(value: Union[str, bytes]) -> bytes:
    return value.encode("utf-8") if isinstance(value, str) else value


def hmac_sha256_hex(secret: Union[str, bytes], message: Union[str, bytes]) -> str:
    return hmac.new(_as_bytes(secret), _as_bytes(message), hashlib.sha256).hexdigest()


def constant_time_equals(a: str, b: str) -> bool:
    return hmac.compare_digest(_as_bytes(a), _as_bytes(b))


def gen_idempotency_key(prefix: str = "auto", length: int = 24) -> str:
    """"auto_Xq3..." для ставки, пришедшей без Idempotency-Key (вне HTTP)."""
    return f"{prefix}_{secrets.token_urlsafe(length)}"


__all__ = [
    "CENTS",
    "decimal_from",
    "d2",
    "floor_units",
    "money_str",
    "utcnow",
    "as_utc",
    "hmac_sha256_hex",
    "constant_time_equals",
    "gen_idempotency_key",
]
