# -*- coding: utf-8 -*-
# bichobet/app/integrations/pushinpay_api.py
# =============================================================================
# Bicho Bet - клиент Pushin Pay (только PIX cash-in)
# -----------------------------------------------------------------------------
# Назначение:
#   • POST /api/pix/cashIn: сумма в сентаво (int), ответ - id, qr_code,
#     qr_code_base64.
#   • GET /api/transactions/{id}: статус; paid/completed → completed.
#   • GET /api/v2/balance: баланс счёта.
#
# Запреты:
#   • Выплат через Pushin Pay нет: create_pix_payout всегда GatewayError.
# =============================================================================
from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, Optional

import httpx

from bichobet.app.core.config_core import get_settings
from bichobet.app.core.errors_core import GatewayError
from bichobet.app.core.logging_core import get_logger
from bichobet.app.core.utils_core import d2
from bichobet.app.integrations.payment_gateways import (
    GatewayStatus,
    PixCharge,
    PixPayout,
    normalize_outcome,
)

logger = get_logger(__name__)

GATEWAY_NAME = "pushinpay"


class PushinPayClient:
    name = GATEWAY_NAME

    def __init__(
        self,
        *,
        token: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        s = get_settings()
        self.token = token or s.PUSHINPAY_TOKEN
        self.base_url = (base_url or s.PUSHINPAY_API_URL).rstrip("/")
        self.timeout_seconds = float(timeout_seconds or s.NETWORK_REQUEST_TIMEOUT_SEC)
        self._transport = transport

    async def _request(self, method: str, path: str, *, json: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        if not self.token:
            raise GatewayError(GATEWAY_NAME, "Pushin Pay token is not configured.", rejected=True)
        headers = {"Authorization": f"Bearer {self.token}", "Accept": "application/json"}
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url, timeout=self.timeout_seconds, transport=self._transport
            ) as client:
                response = await client.request(method, path, json=json, headers=headers)
                response.raise_for_status()
                return response.json()
        except httpx.HTTPStatusError as exc:
            code = exc.response.status_code
            logger.warning(
                "[PushinPay] request answered with error",
                extra={"method": method, "path": path, "status": code},
            )
            raise GatewayError(
                GATEWAY_NAME, f"Pushin Pay answered HTTP {code}.", rejected=400 <= code < 500
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning(
                "[PushinPay] request failed",
                extra={"method": method, "path": path, "error": str(exc)},
            )
            raise GatewayError(GATEWAY_NAME, "Pushin Pay request failed.") from exc

    async def create_pix_charge(
        self, *, amount: Decimal, reference: str, webhook_url: Optional[str]
    ) -> PixCharge:
        cents = int(d2(amount) * 100)
        payload: Dict[str, Any] = {"value": cents}
        if webhook_url:
            payload["webhook_url"] = webhook_url
        data = await self._request("POST", "/api/pix/cashIn", json=payload)
        external_id = data.get("id")
        if not external_id:
            raise GatewayError(GATEWAY_NAME, "Pushin Pay returned no transaction id.")
        return PixCharge(
            external_id=str(external_id),
            copy_paste=data.get("qr_code"),
            qr_code_base64=data.get("qr_code_base64"),
            raw=data,
        )

    async def get_status(self, external_id: str, *, direction: str) -> GatewayStatus:
        data = await self._request("GET", f"/api/transactions/{external_id}")
        raw_status = str(data.get("status") or "")
        return GatewayStatus(
            external_id=str(external_id),
            outcome=normalize_outcome(raw_status),
            raw_status=raw_status,
            raw=data,
        )

    async def get_available_balance(self) -> Decimal:
        data = await self._request("GET", "/api/v2/balance")
        value = data.get("balance", data.get("amount"))
        if value is None:
            raise GatewayError(GATEWAY_NAME, "Pushin Pay balance response has no balance.")
        return d2(value)

    async def create_pix_payout(
        self, *, amount: Decimal, pix_key: str, reference: str, webhook_url: Optional[str]
    ) -> PixPayout:
        raise GatewayError(GATEWAY_NAME, "Pushin Pay does not support PIX payouts.", rejected=True)

    async def find_payout(self, reference: str) -> Optional[GatewayStatus]:
        return None


__all__ = ["PushinPayClient", "GATEWAY_NAME"]
