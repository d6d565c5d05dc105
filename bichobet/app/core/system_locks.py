# -*- coding: utf-8 -*-
# bichobet/app/core/system_locks.py
# =============================================================================
# Назначение кода:
#   Жёсткие замки Bicho Bet, которые не зависят от конкретной ручки:
#   • стартовая проверка лимитов ставок (MIN/MAX_BET_AMOUNT, MAX_PAYOUT);
#   • «ни один баланс не уходит в минус» перед списанием в журнале;
#   • Idempotency-Key на денежных путях (зависимость + middleware).
#
# ИИ-защита / самовосстановление:
#   • Неконсистентные лимиты роняют create_app(), а не первую ставку.
#   • Middleware ловит денежный путь, даже если в роуте забыли Depends.
#
# Запреты:
#   • Здесь не двигаются деньги и не читается БД.
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Callable, Iterable, Optional, Tuple

from fastapi import FastAPI, Header, HTTPException, Request, status
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse
from starlette.types import ASGIApp

from bichobet.app.core.config_core import get_settings
from bichobet.app.core.logging_core import get_logger

logger = get_logger(__name__)

MONETARY_METHODS: Tuple[str, ...] = ("POST", "PUT", "PATCH", "DELETE")

# Пути без API_PREFIX. Вебхуки и расчёт тиража идемпотентны статусами в БД.
MONETARY_PATHS: Tuple[str, ...] = (
    "/wagers",
    "/payments/deposits",
    "/withdrawals",
    "/admin/withdrawals",
)


class LockViolation(RuntimeError):
    """Нарушен инвариант проекта (ошибка кода или конфигурации, не игрока)."""


@dataclass(frozen=True)
class BalanceSnapshot:
    real: Decimal
    bonus: Decimal


def assert_bet_limits_consistent() -> None:
    s = get_settings()
    if s.MIN_BET_AMOUNT <= 0:
        raise LockViolation(f"MIN_BET_AMOUNT must be positive, got {s.MIN_BET_AMOUNT}.")
    if s.MIN_BET_AMOUNT > s.MAX_BET_AMOUNT:
        raise LockViolation(
            f"MIN_BET_AMOUNT ({s.MIN_BET_AMOUNT}) exceeds MAX_BET_AMOUNT ({s.MAX_BET_AMOUNT})."
        )
    if s.MAX_PAYOUT <= 0:
        raise LockViolation(f"MAX_PAYOUT must be positive, got {s.MAX_PAYOUT}.")


def ensure_non_negative_after(before: BalanceSnapshot, delta_real: Decimal, delta_bonus: Decimal) -> None:
    """Вызывается до изменения баланса; CHECK в БД ловит то, что прошло мимо."""
    real_after = before.real + delta_real
    bonus_after = before.bonus + delta_bonus
    if real_after < 0 or bonus_after < 0:
        raise LockViolation(f"Balance would go negative: real={real_after}, bonus={bonus_after}.")


async def require_idempotency_key(
    idempotency_key: Optional[str] = Header(default=None, alias="Idempotency-Key"),
) -> str:
    key = (idempotency_key or "").strip()
    if not key:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Idempotency-Key header is required for monetary operations.",
        )
    return key


class MonetaryIdempotencyMiddleware(BaseHTTPMiddleware):
    """
    Мутирующий запрос на денежный путь без Idempotency-Key → 400
    {"error": "idempotency_key_required"} до входа в роут.
    """

    def __init__(
        self,
        app: ASGIApp,
        *,
        api_prefix: str = "",
        paths: Optional[Iterable[str]] = None,
    ) -> None:
        super().__init__(app)
        root = (api_prefix or "").rstrip("/")
        self.prefixes = tuple(root + p for p in (paths if paths is not None else MONETARY_PATHS))

    def _is_monetary(self, request: Request) -> bool:
        return request.method in MONETARY_METHODS and request.url.path.startswith(self.prefixes)

    async def dispatch(self, request: Request, call_next: Callable[[Request], Any]) -> Any:  # type: ignore[override]
        if self._is_monetary(request) and not (request.headers.get("Idempotency-Key") or "").strip():
            logger.info("Monetary request rejected: no Idempotency-Key", extra={"path": request.url.path})
            return JSONResponse(
                status_code=status.HTTP_400_BAD_REQUEST,
                content={
                    "error": "idempotency_key_required",
                    "message": "Idempotency-Key header is required for monetary operations.",
                },
            )
        return await call_next(request)


def init_system_locks(app: FastAPI) -> None:
    """Один раз из create_app(): проверка лимитов и установка middleware."""
    settings = get_settings()
    assert_bet_limits_consistent()
    app.add_middleware(MonetaryIdempotencyMiddleware, api_prefix=settings.API_PREFIX)
    if settings.BONUS_AUTO_FALLBACK and not settings.ALLOW_BONUS_BETS:
        logger.warning("BONUS_AUTO_FALLBACK is set but ALLOW_BONUS_BETS=false; fallback never applies.")
    logger.info(
        "System locks installed",
        extra={"min_bet": str(settings.MIN_BET_AMOUNT), "max_bet": str(settings.MAX_BET_AMOUNT)},
    )


__all__ = [
    "MONETARY_PATHS",
    "LockViolation",
    "BalanceSnapshot",
    "assert_bet_limits_consistent",
    "ensure_non_negative_after",
    "require_idempotency_key",
    "MonetaryIdempotencyMiddleware",
    "init_system_locks",
]
