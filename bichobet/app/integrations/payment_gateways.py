# -*- coding: utf-8 -*-
# bichobet/app/integrations/payment_gateways.py
# =============================================================================
# Bicho Bet - общий контракт PIX-шлюзов, реестр клиентов и проверка подписи
# вебхуков.
# -----------------------------------------------------------------------------
# Назначение:
#   • DTO ответов шлюза (PixCharge, GatewayStatus, PixPayout, WebhookEvent).
#   • Протокол PaymentGateway - то, что нужно payments/withdraw сервисам.
#   • Реестр get_gateway(name) с возможностью подмены клиента (тесты/стенды).
#   • verify_webhook_signature: заголовок "t=<ts>,v1=<hex>", HMAC-SHA256 над
#     timestamp + "t" + сырое тело, сравнение за константное время.
#
# Канон/инварианты:
#   • Модуль не двигает деньги и не ходит в БД.
#   • Статусы шлюзов нормализуются к трём исходам: completed | failed | pending.
#
# ИИ-защита:
#   • Любая сетевая ошибка клиента превращается в GatewayError - сервисы
#     трактуют её как «ещё в обработке», статус транзакции не меняется.
#     Только GatewayError(rejected=True) означает «шлюз точно не исполнил».
# =============================================================================
from __future__ import annotations

import time
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Optional, Protocol

from bichobet.app.core.config_core import get_settings
from bichobet.app.core.errors_core import GatewayError
from bichobet.app.core.logging_core import get_logger
from bichobet.app.core.utils_core import constant_time_equals, hmac_sha256_hex

logger = get_logger(__name__)

OUTCOME_COMPLETED = "completed"
OUTCOME_FAILED = "failed"
OUTCOME_PENDING = "pending"

WEBHOOK_EVENTS: Dict[str, tuple[str, str]] = {
    "payment.completed": ("deposit", OUTCOME_COMPLETED),
    "payment.failed": ("deposit", OUTCOME_FAILED),
    "withdrawal.completed": ("withdrawal", OUTCOME_COMPLETED),
    "withdrawal.failed": ("withdrawal", OUTCOME_FAILED),
}


@dataclass(frozen=True)
class PixCharge:
    """Инструкция на оплату депозита: PIX «copia e cola» и/или QR (base64)."""

    external_id: str
    copy_paste: Optional[str]
    qr_code_base64: Optional[str] = None
    expires_at: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class GatewayStatus:
    external_id: str
    outcome: str
    raw_status: str
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class PixPayout:
    external_id: str
    raw_status: str
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class WebhookEvent:
    event_type: str
    direction: Optional[str]
    outcome: str
    external_id: str
    payload: Dict[str, Any] = field(default_factory=dict)


class PaymentGateway(Protocol):
    name: str

    async def create_pix_charge(
        self, *, amount: Decimal, reference: str, webhook_url: Optional[str]
    ) -> PixCharge: ...

    async def get_status(self, external_id: str, *, direction: str) -> GatewayStatus: ...

    async def get_available_balance(self) -> Decimal: ...

    async def create_pix_payout(
        self, *, amount: Decimal, pix_key: str, reference: str, webhook_url: Optional[str]
    ) -> PixPayout: ...

    async def find_payout(self, reference: str) -> Optional[GatewayStatus]: ...


def normalize_outcome(raw_status: Optional[str]) -> str:
    """Сырые статусы шлюзов → completed | failed | pending."""
    status = (raw_status or "").strip().lower()
    if status in {"paid", "completed", "approved", "confirmed", "succeeded"}:
        return OUTCOME_COMPLETED
    if status in {"failed", "error", "cancelled", "canceled", "expired", "rejected", "returned"}:
        return OUTCOME_FAILED
    return OUTCOME_PENDING


def parse_webhook_event(payload: Dict[str, Any]) -> WebhookEvent:
    """
    Тело вебхука → WebhookEvent. Поддерживаются:
      • {"type": "payment.completed", "transaction_id": "..."} (EzzeBank);
      • {"id": "...", "status": "paid"} (Pushin Pay).
    """
    event_type = str(payload.get("type") or payload.get("event") or "")
    external_id = payload.get("transaction_id") or payload.get("id") or payload.get("transactionId")
    if not external_id:
        raise GatewayError("webhook", "Webhook payload has no transaction id.")
    if event_type in WEBHOOK_EVENTS:
        direction, outcome = WEBHOOK_EVENTS[event_type]
        return WebhookEvent(event_type, direction, outcome, str(external_id), payload)
    outcome = normalize_outcome(payload.get("status"))
    return WebhookEvent(event_type or "status", None, outcome, str(external_id), payload)


# -----------------------------------------------------------------------------
# Подпись вебхуков
# -----------------------------------------------------------------------------
def parse_signature_header(header: Optional[str]) -> Optional[tuple[str, str]]:
    """ "t=1700000000,v1=abc..." → ("1700000000", "abc..."); иначе None."""
    if not header:
        return None
    timestamp: Optional[str] = None
    signature: Optional[str] = None
    for element in header.split(","):
        key, sep, value = element.strip().partition("=")
        if not sep:
            continue
        if key == "t":
            timestamp = value.strip()
        elif key == "v1":
            signature = value.strip()
    if not timestamp or not signature:
        return None
    return timestamp, signature


def sign_payload(secret: str, timestamp: str, raw_body: bytes) -> str:
    return hmac_sha256_hex(secret, timestamp.encode("utf-8") + b"t" + raw_body)


def verify_webhook_signature(
    header: Optional[str],
    raw_body: bytes,
    secret: Optional[str],
    *,
    tolerance_sec: int = 0,
    now: Optional[float] = None,
) -> bool:
    """True - подпись валидна (и метка времени в пределах допуска, если он задан)."""
    if not secret:
        return False
    parsed = parse_signature_header(header)
    if parsed is None:
        return False
    timestamp, received = parsed
    if tolerance_sec > 0:
        try:
            ts_value = int(timestamp)
        except ValueError:
            return False
        current = now if now is not None else time.time()
        if abs(current - ts_value) > tolerance_sec:
            return False
    expected = sign_payload(secret, timestamp, raw_body)
    return constant_time_equals(received.lower(), expected)


# -----------------------------------------------------------------------------
# Реестр клиентов
# -----------------------------------------------------------------------------
_overrides: Dict[str, PaymentGateway] = {}
_instances: Dict[str, PaymentGateway] = {}


def _build(name: str) -> PaymentGateway:
    if name == "ezzebank":
        from bichobet.app.integrations.ezzebank_api import EzzeBankClient

        return EzzeBankClient()
    if name == "pushinpay":
        from bichobet.app.integrations.pushinpay_api import PushinPayClient

        return PushinPayClient()
    raise GatewayError(name, f"Unknown payment gateway: {name}")


def get_gateway(name: Optional[str] = None) -> PaymentGateway:
    gateway_name = (name or get_settings().DEFAULT_PAYMENT_GATEWAY).strip().lower()
    if gateway_name in _overrides:
        return _overrides[gateway_name]
    if gateway_name not in _instances:
        _instances[gateway_name] = _build(gateway_name)
    return _instances[gateway_name]


def override_gateway(name: str, gateway: PaymentGateway) -> None:
    """Подменить клиента шлюза (тестовые стенды, песочница)."""
    _overrides[name] = gateway


def clear_gateway_overrides() -> None:
    _overrides.clear()
    _instances.clear()


__all__ = [
    "OUTCOME_COMPLETED",
    "OUTCOME_FAILED",
    "OUTCOME_PENDING",
    "PixCharge",
    "GatewayStatus",
    "PixPayout",
    "WebhookEvent",
    "PaymentGateway",
    "normalize_outcome",
    "parse_webhook_event",
    "parse_signature_header",
    "sign_payload",
    "verify_webhook_signature",
    "get_gateway",
    "override_gateway",
    "clear_gateway_overrides",
]
