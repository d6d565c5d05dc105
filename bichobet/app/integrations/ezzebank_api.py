# -*- coding: utf-8 -*-
# bichobet/app/integrations/ezzebank_api.py
# =============================================================================
# Bicho Bet - клиент EzzeBank (PIX cash-in / cash-out)
# -----------------------------------------------------------------------------
# Назначение:
#   • OAuth client_credentials: POST /v2/oauth/token (Basic client_id:secret),
#     токен кешируется в памяти процесса на 29 минут.
#   • Создание PIX-платежа, запрос статуса платежа/вывода, баланс счёта,
#     создание PIX-вывода.
#
# Канон/инварианты:
#   • Модуль не ходит в БД и не двигает деньги - только HTTP и DTO.
#   • Любой сбой сети/HTTP → GatewayError("ezzebank", ...); 4xx и отказ до
#     отправки запроса помечаются rejected=True, таймауты и 5xx - нет.
#
# ИИ-защиты:
#   • Таймауты httpx из NETWORK_REQUEST_TIMEOUT_SEC.
#   • 401 на запросе → сброс кеша токена и одна повторная попытка.
# =============================================================================
from __future__ import annotations

import asyncio
import base64
import time
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

GATEWAY_NAME = "ezzebank"
_BASE_URLS = {
    "sandbox": "https://api-staging.ezzebank.com",
    "production": "https://api.ezzebank.com",
}
_TOKEN_TTL_SEC = 29 * 60


class EzzeBankClient:
    """Тонкий асинхронный клиент EzzeBank."""

    name = GATEWAY_NAME

    def __init__(
        self,
        *,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        environment: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        s = get_settings()
        self.client_id = client_id or s.EZZEBANK_CLIENT_ID
        self.client_secret = client_secret or s.EZZEBANK_CLIENT_SECRET
        env = (environment or s.EZZEBANK_ENVIRONMENT or "sandbox").strip().lower()
        self.base_url = _BASE_URLS.get(env, _BASE_URLS["sandbox"])
        self.timeout_seconds = float(timeout_seconds or s.NETWORK_REQUEST_TIMEOUT_SEC)
        self._transport = transport
        self._token: Optional[str] = None
        self._token_expires_at = 0.0
        self._token_lock = asyncio.Lock()

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout_seconds,
            transport=self._transport,
        )

    # ---- OAuth ----
    async def _access_token(self, *, force: bool = False) -> str:
        if not (self.client_id and self.client_secret):
            raise GatewayError(GATEWAY_NAME, "EzzeBank credentials are not configured.", rejected=True)
        async with self._token_lock:
            if not force and self._token and time.monotonic() < self._token_expires_at:
                return self._token
            basic = base64.b64encode(f"{self.client_id}:{self.client_secret}".encode("utf-8")).decode("ascii")
            try:
                async with self._client() as client:
                    response = await client.post(
                        "/v2/oauth/token",
                        data={"grant_type": "client_credentials"},
                        headers={"Authorization": f"Basic {basic}", "Accept": "application/json"},
                    )
                    response.raise_for_status()
                    payload = response.json()
            except (httpx.HTTPError, ValueError) as exc:
                logger.warning("[EzzeBank] token request failed", extra={"error": str(exc)})
                raise GatewayError(GATEWAY_NAME, "EzzeBank authentication failed.", rejected=True) from exc
            token = payload.get("access_token")
            if not token:
                raise GatewayError(GATEWAY_NAME, "EzzeBank returned no access token.", rejected=True)
            self._token = str(token)
            self._token_expires_at = time.monotonic() + _TOKEN_TTL_SEC
            return self._token

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """Запрос с Bearer-токеном; при 401 - обновляем токен и повторяем один раз."""
        for attempt in (1, 2):
            token = await self._access_token(force=attempt == 2)
            headers = {"Authorization": f"Bearer {token}", "Accept": "application/json"}
            try:
                async with self._client() as client:
                    response = await client.request(method, path, json=json, params=params, headers=headers)
                    if response.status_code == 401 and attempt == 1:
                        continue
                    response.raise_for_status()
                    return response.json()
            except httpx.HTTPStatusError as exc:
                code = exc.response.status_code
                logger.warning(
                    "[EzzeBank] request answered with error",
                    extra={"method": method, "path": path, "status": code},
                )
                raise GatewayError(
                    GATEWAY_NAME, f"EzzeBank answered HTTP {code}.", rejected=400 <= code < 500
                ) from exc
            except (httpx.HTTPError, ValueError) as exc:
                logger.warning(
                    "[EzzeBank] request failed",
                    extra={"method": method, "path": path, "error": str(exc)},
                )
                raise GatewayError(GATEWAY_NAME, "EzzeBank request failed.") from exc
        raise GatewayError(GATEWAY_NAME, "EzzeBank rejected the access token.", rejected=True)

    # ---- PIX ----
    async def create_pix_charge(
        self, *, amount: Decimal, reference: str, webhook_url: Optional[str]
    ) -> PixCharge:
        payload: Dict[str, Any] = {
            "amount": float(d2(amount)),
            "description": f"Deposit {reference}",
            "external_id": reference,
            "expires_in": 3600,
        }
        if webhook_url:
            payload["webhook_url"] = webhook_url
        data = await self._request("POST", "/pix/payments", json=payload)
        external_id = data.get("id")
        if not external_id:
            raise GatewayError(GATEWAY_NAME, "EzzeBank returned no payment id.")
        return PixCharge(
            external_id=str(external_id),
            copy_paste=data.get("qr_code") or data.get("pix_key"),
            qr_code_base64=data.get("qr_code_image"),
            expires_at=data.get("expires_at"),
            raw=data,
        )

    async def get_status(self, external_id: str, *, direction: str) -> GatewayStatus:
        path = f"/pix/withdrawals/{external_id}" if direction == "withdrawal" else f"/pix/payments/{external_id}"
        data = await self._request("GET", path)
        raw_status = str(data.get("status") or "")
        return GatewayStatus(
            external_id=str(external_id),
            outcome=normalize_outcome(raw_status),
            raw_status=raw_status,
            raw=data,
        )

    async def get_available_balance(self) -> Decimal:
        data = await self._request("GET", "/v2/balance")
        value = data.get("balance", data.get("available"))
        if value is None:
            raise GatewayError(GATEWAY_NAME, "EzzeBank balance response has no balance.")
        return d2(value)

    async def create_pix_payout(
        self, *, amount: Decimal, pix_key: str, reference: str, webhook_url: Optional[str]
    ) -> PixPayout:
        payload: Dict[str, Any] = {
            "amount": float(d2(amount)),
            "pix_key": pix_key,
            "description": f"Withdrawal {reference}",
            "external_id": reference,
        }
        if webhook_url:
            payload["webhook_url"] = webhook_url
        data = await self._request("POST", "/pix/withdrawals", json=payload)
        external_id = data.get("id")
        if not external_id:
            raise GatewayError(GATEWAY_NAME, "EzzeBank returned no withdrawal id.")
        return PixPayout(external_id=str(external_id), raw_status=str(data.get("status") or ""), raw=data)

    async def find_payout(self, reference: str) -> Optional[GatewayStatus]:
        """
        Вывод по нашей ссылке external_id (wd-<tx_id>). None - шлюз такого
        вывода не знает, т.е. запрос на выплату до него не дошёл.
        """
        data = await self._request("GET", "/pix/withdrawals", params={"external_id": reference})
        items = data.get("data", data.get("items", [])) if isinstance(data, dict) else data
        match = next((item for item in items or [] if item.get("external_id") == reference), None)
        if match is None or not match.get("id"):
            return None
        raw_status = str(match.get("status") or "")
        return GatewayStatus(
            external_id=str(match["id"]),
            outcome=normalize_outcome(raw_status),
            raw_status=raw_status,
            raw=match,
        )


__all__ = ["EzzeBankClient", "GATEWAY_NAME"]
