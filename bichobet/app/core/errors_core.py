# -*- coding: utf-8 -*-
# bichobet/app/core/errors_core.py
# =============================================================================
# Назначение кода:
#   • Единый слой доменных ошибок Bicho Bet.
#   • Канонические машинные коды ошибок для фронтенда/логов.
#   • Унифицированные JSON-ответы для FastAPI: {"error", "message", "details"}.
#
# Канон / инварианты:
#   • Сервисы ставок, бонусов, расчёта тиражей и платежей бросают ТОЛЬКО
#     исключения из этого модуля (или LockViolation из system_locks).
#   • details несут контекст, нужный клиенту: текущий баланс и требуемую
#     сумму, максимальную допустимую ставку и т.п.
#   • Клиенту никогда не утекают технические детали (stack trace, DSN, ключи).
#
# ИИ-защита:
#   • Неизвестная ошибка логируется полностью, наружу - только internal_error.
#   • LockViolation возвращается как 400 lock_violation, а не 500.
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple, cast

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse

from bichobet.app.core.logging_core import get_logger
from bichobet.app.core.system_locks import LockViolation

logger = get_logger(__name__)


def _money(value: Any) -> Any:
    """Decimal → строка с 2 знаками для JSON-деталей."""
    if isinstance(value, Decimal):
        return f"{value:.2f}"
    return value


# -----------------------------------------------------------------------------
# Базовая доменная ошибка
# -----------------------------------------------------------------------------
@dataclass(eq=False)
class BichoError(Exception):
    """
    Базовое доменное исключение.

    Поля:
      • code         - стабильный машинный код ошибки (snake_case).
      • message      - короткое безопасное сообщение для клиента.
      • http_status  - HTTP код по умолчанию.
      • details      - безопасные детали (без секретов).
    """

    code: str
    message: str
    http_status: int = status.HTTP_400_BAD_REQUEST
    details: Dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": self.code, "message": self.message}
        if self.details:
            payload["details"] = {k: _money(v) for k, v in self.details.items()}
        return payload

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


# -----------------------------------------------------------------------------
# Общие ошибки
# -----------------------------------------------------------------------------
class NotFoundError(BichoError):
    """Ресурс не найден (аккаунт, тираж, ставка, транзакция)."""

    def __init__(self, message: str = "Resource not found.", *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(
            code="not_found",
            message=message,
            http_status=status.HTTP_404_NOT_FOUND,
            details=details or {},
        )


class ValidationError(BichoError):
    """Некорректные входные данные/состояние."""

    def __init__(self, message: str = "Invalid data.", *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(
            code="validation_error",
            message=message,
            http_status=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details=details or {},
        )


class ForbiddenError(BichoError):
    """Обращение к чужому ресурсу."""

    def __init__(self, message: str = "Access denied.", *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(
            code="forbidden",
            message=message,
            http_status=status.HTTP_403_FORBIDDEN,
            details=details or {},
        )


# -----------------------------------------------------------------------------
# Ставки
# -----------------------------------------------------------------------------
class InvalidWagerShape(BichoError):
    """Неверное количество животных/чисел, длина числа или вид приза для типа ставки."""

    def __init__(self, message: str = "Invalid wager shape.", *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(
            code="invalid_wager_shape",
            message=message,
            http_status=status.HTTP_400_BAD_REQUEST,
            details=details or {},
        )


class UnknownAnimal(BichoError):
    def __init__(self, animal_id: Any, *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(
            code="unknown_animal",
            message=f"Animal {animal_id!r} does not exist.",
            http_status=status.HTTP_404_NOT_FOUND,
            details={"animal_id": animal_id, **(details or {})},
        )


class StakeOutOfBounds(BichoError):
    """
    Ставка вне допустимых границ. details всегда содержат max_stake -
    максимальную ставку, при которой выигрыш не превышает потолок.
    """

    def __init__(
        self,
        message: str = "Stake is out of bounds.",
        *,
        stake: Decimal,
        min_stake: Decimal,
        max_stake: Decimal,
        potential_payout: Optional[Decimal] = None,
        max_payout: Optional[Decimal] = None,
    ) -> None:
        details: Dict[str, Any] = {
            "stake": stake,
            "min_stake": min_stake,
            "max_stake": max_stake,
        }
        if potential_payout is not None:
            details["potential_payout"] = potential_payout
        if max_payout is not None:
            details["max_payout"] = max_payout
        super().__init__(
            code="stake_out_of_bounds",
            message=message,
            http_status=status.HTTP_400_BAD_REQUEST,
            details=details,
        )

    @property
    def max_stake(self) -> Decimal:
        return self.details["max_stake"]


class DrawClosed(BichoError):
    """Тираж не принимает ставки (уже проведён или время начала прошло)."""

    def __init__(self, draw_id: int, draw_status: str) -> None:
        super().__init__(
            code="draw_closed",
            message="Draw is not open for wagers.",
            http_status=status.HTTP_400_BAD_REQUEST,
            details={"draw_id": draw_id, "status": draw_status},
        )


class InsufficientRealBalance(BichoError):
    def __init__(self, current_balance: Decimal, required_amount: Decimal) -> None:
        super().__init__(
            code="insufficient_real_balance",
            message="Insufficient real balance.",
            http_status=status.HTTP_400_BAD_REQUEST,
            details={"current_balance": current_balance, "required_amount": required_amount},
        )

    @property
    def current_balance(self) -> Decimal:
        return self.details["current_balance"]

    @property
    def required_amount(self) -> Decimal:
        return self.details["required_amount"]


class InsufficientBonusBalance(BichoError):
    def __init__(self, current_bonus_balance: Decimal, required_amount: Decimal) -> None:
        super().__init__(
            code="insufficient_bonus_balance",
            message="Insufficient bonus balance.",
            http_status=status.HTTP_400_BAD_REQUEST,
            details={
                "current_bonus_balance": current_bonus_balance,
                "required_amount": required_amount,
            },
        )

    @property
    def current_bonus_balance(self) -> Decimal:
        return self.details["current_bonus_balance"]


class BonusBetsDisabled(BichoError):
    def __init__(self) -> None:
        super().__init__(
            code="bonus_bets_disabled",
            message="Bonus wagers are disabled.",
            http_status=status.HTTP_400_BAD_REQUEST,
        )


# -----------------------------------------------------------------------------
# Тиражи
# -----------------------------------------------------------------------------
class DrawAlreadySettled(BichoError):
    def __init__(self, draw_id: int) -> None:
        super().__init__(
            code="draw_already_settled",
            message="Draw result was already submitted.",
            http_status=status.HTTP_409_CONFLICT,
            details={"draw_id": draw_id},
        )


class SettlementInconsistency(BichoError):
    """Ставка тиража уже не в pending в момент расчёта. Внутри пакета - лог и пропуск."""

    def __init__(self, wager_id: int, wager_status: str) -> None:
        super().__init__(
            code="settlement_inconsistency",
            message="Wager is not pending at settlement time.",
            http_status=status.HTTP_409_CONFLICT,
            details={"wager_id": wager_id, "status": wager_status},
        )


# -----------------------------------------------------------------------------
# Платежи
# -----------------------------------------------------------------------------
class TransactionFinalized(BichoError):
    def __init__(self, transaction_id: int, tx_status: str) -> None:
        super().__init__(
            code="transaction_finalized",
            message="Payment transaction is already final.",
            http_status=status.HTTP_409_CONFLICT,
            details={"transaction_id": transaction_id, "status": tx_status},
        )


class DepositBelowMinimum(BichoError):
    def __init__(self, amount: Decimal, min_amount: Decimal, gateway: str) -> None:
        super().__init__(
            code="deposit_below_minimum",
            message=f"Minimum deposit is {min_amount:.2f}.",
            http_status=status.HTTP_400_BAD_REQUEST,
            details={"amount": amount, "min_amount": min_amount, "gateway": gateway},
        )


class WithdrawalError(BichoError):
    """Ошибка обработки заявки на вывод."""

    def __init__(self, message: str = "Withdrawal operation error.", *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(
            code="withdrawal_error",
            message=message,
            http_status=status.HTTP_400_BAD_REQUEST,
            details=details or {},
        )


class GatewayError(BichoError):
    """
    Платёжный шлюз недоступен или ответил ошибкой.

    rejected=True - шлюз точно не принял запрос (4xx, запрос не ушёл).
    rejected=False - исход неизвестен (таймаут, 5xx, битый ответ): запрос
    мог быть исполнен.
    """

    def __init__(self, gateway: str, message: str = "Payment gateway error.", *, rejected: bool = False) -> None:
        super().__init__(
            code="gateway_error",
            message=message,
            http_status=status.HTTP_502_BAD_GATEWAY,
            details={"gateway": gateway},
        )
        self.rejected = rejected


class InvalidWebhookSignature(BichoError):
    def __init__(self, message: str = "Invalid webhook signature.") -> None:
        super().__init__(
            code="invalid_signature",
            message=message,
            http_status=status.HTTP_401_UNAUTHORIZED,
        )


# -----------------------------------------------------------------------------
# Нормализация исключений → (status_code, payload)
# -----------------------------------------------------------------------------
def normalize_exception(exc: BaseException) -> Tuple[int, Dict[str, Any]]:
    """
    Приводит произвольное исключение к каноническому HTTP-ответу.

      • BichoError     → свой http_status + to_payload().
      • LockViolation  → 400 + lock_violation.
      • HTTPException  → status_code + http_error.
      • Любая другая   → 500 + internal_error (без деталей).
    """
    if isinstance(exc, BichoError):
        return exc.http_status, exc.to_payload()

    if isinstance(exc, LockViolation):
        logger.warning("LockViolation occurred: %s", str(exc))
        return status.HTTP_400_BAD_REQUEST, {"error": "lock_violation", "message": str(exc)}

    if isinstance(exc, HTTPException):
        details: Dict[str, Any] = {}
        if isinstance(exc.detail, str):
            msg = exc.detail
        elif isinstance(exc.detail, dict):
            details = cast(Dict[str, Any], exc.detail)
            msg = details.get("message") or details.get("detail") or "HTTP error."
        else:
            msg = "HTTP error."
        payload: Dict[str, Any] = {"error": "http_error", "message": msg}
        if details:
            payload["details"] = details
        return exc.status_code, payload

    logger.exception("Unhandled exception", extra={"error_type": type(exc).__name__})
    return (
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        {"error": "internal_error", "message": "Internal server error."},
    )


# -----------------------------------------------------------------------------
# FastAPI-хендлеры исключений
# -----------------------------------------------------------------------------
async def bicho_error_handler(request: Request, exc: BichoError) -> JSONResponse:
    status_code, payload = normalize_exception(exc)
    log = logger.warning if status_code in (401, 403) else logger.info
    log(
        "BichoError handled",
        extra={"path": request.url.path, "error": exc.code, "status": status_code},
    )
    return JSONResponse(status_code=status_code, content=payload)


async def lock_violation_handler(request: Request, exc: LockViolation) -> JSONResponse:
    status_code, payload = normalize_exception(exc)
    logger.warning("LockViolation handled", extra={"path": request.url.path, "status": status_code})
    return JSONResponse(status_code=status_code, content=payload)


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Клиенту отдаём только безопасный internal_error, stack trace - в лог."""
    status_code, payload = normalize_exception(exc)
    logger.error(
        "Unhandled exception handled by generic handler",
        extra={"path": request.url.path, "status": status_code, "exc_type": type(exc).__name__},
    )
    return JSONResponse(status_code=status_code, content=payload)


def setup_exception_handlers(app: FastAPI) -> None:
    """Подключает обработчики; вызывается один раз в create_app()."""
    app.add_exception_handler(BichoError, bicho_error_handler)
    app.add_exception_handler(LockViolation, lock_violation_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
    logger.info("Exception handlers registered for BichoError/LockViolation/Exception")


# =============================================================================
# Пояснения «для чайника»:
#   • В сервисе бросайте наследника BichoError, а не HTTPException - тогда фронт
#     увидит стабильный error и понятные details (например, max_stake).
#   • SettlementInconsistency наружу почти никогда не выходит: движок расчёта
#     логирует её и пропускает ставку.
#   • Не забудьте вызвать setup_exception_handlers(app) в create_app().
# =============================================================================

__all__ = [
    "BichoError",
    "NotFoundError",
    "ValidationError",
    "ForbiddenError",
    "InvalidWagerShape",
    "UnknownAnimal",
    "StakeOutOfBounds",
    "DrawClosed",
    "InsufficientRealBalance",
    "InsufficientBonusBalance",
    "BonusBetsDisabled",
    "DrawAlreadySettled",
    "SettlementInconsistency",
    "TransactionFinalized",
    "DepositBelowMinimum",
    "WithdrawalError",
    "GatewayError",
    "InvalidWebhookSignature",
    "normalize_exception",
    "setup_exception_handlers",
]
