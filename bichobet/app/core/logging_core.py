# -*- coding: utf-8 -*-
# bichobet/app/core/logging_core.py
# =============================================================================
# Назначение кода:
#   Логирование Bicho Bet: один root-хэндлер на stdout, контекст корреляции
#   запроса/тика планировщика и маскирование чувствительных данных игрока.
#
# Канон / инварианты:
#   • prod/test - JSON (python-json-logger), dev/local или LOG_JSON=false -
#     строка для человека.
#   • Каждая запись несёт env, svc, rid (запрос или тик), idk (Idempotency-Key)
#     и aid (id аккаунта из JWT).
#   • Секреты из настроек вырезаются из текста; поля extra pix_key / cpf
#     маскируются до последних 4 символов.
#
# Запреты:
#   • Никаких сетевых/блокирующих операций в форматерах и фильтрах.
#   • Пароли и тела вебхуков целиком в лог не пишутся.
# =============================================================================

from __future__ import annotations

import contextvars
import logging
import sys
import uuid
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

from pythonjsonlogger import jsonlogger
from starlette.datastructures import Headers, MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from bichobet.app.core.config_core import get_settings

_rid_var: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar("rid", default=None)
_idk_var: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar("idk", default=None)
_aid_var: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar("aid", default=None)

_CONTEXT_VARS = {"rid": _rid_var, "idk": _idk_var, "aid": _aid_var}


def set_request_context(
    *,
    request_id: Optional[str] = None,
    idempotency_key: Optional[str] = None,
    account_id: Optional[int | str] = None,
) -> None:
    """Middleware ставит rid/idk, зависимость аутентификации - aid."""
    if request_id is not None:
        _rid_var.set(str(request_id))
    if idempotency_key is not None:
        _idk_var.set(str(idempotency_key))
    if account_id is not None:
        _aid_var.set(str(account_id))


def clear_request_context() -> None:
    for var in _CONTEXT_VARS.values():
        var.set(None)


@contextmanager
def job_context(job: str) -> Iterator[str]:
    """rid для одного тика планировщика: "<job>-<hex>"; очищается на выходе."""
    rid = f"{job}-{uuid.uuid4().hex[:12]}"
    set_request_context(request_id=rid)
    try:
        yield rid
    finally:
        clear_request_context()


# -----------------------------------------------------------------------------
# Фильтры
# -----------------------------------------------------------------------------
class ContextFilter(logging.Filter):
    """env/svc и значения contextvars; поля из extra не перетираются."""

    def __init__(self, env: str, service: str) -> None:
        super().__init__()
        self._static = {"env": env, "svc": service}

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in self._static.items():
            if not hasattr(record, key):
                setattr(record, key, value)
        for key, var in _CONTEXT_VARS.items():
            if not hasattr(record, key):
                setattr(record, key, var.get() or "-")
        return True


def mask_tail(value: Any, keep: int = 4) -> str:
    """"12345678901" → "*******8901"; короткие значения скрываются целиком."""
    text = str(value)
    if len(text) <= keep:
        return "*" * len(text)
    return "*" * (len(text) - keep) + text[-keep:]


class SensitiveDataFilter(logging.Filter):
    """
    • Значения секретов из настроек (ключи шлюзов, JWT, DSN) → "****" в тексте.
    • Атрибуты записи pix_key / cpf (пришли через extra) → mask_tail().
    """

    MASK = "****"
    SECRET_SETTINGS = (
        "SECRET_KEY",
        "DATABASE_URL",
        "ADMIN_API_KEY",
        "EZZEBANK_CLIENT_SECRET",
        "EZZEBANK_WEBHOOK_SECRET",
        "PUSHINPAY_TOKEN",
        "PUSHINPAY_WEBHOOK_SECRET",
    )
    PLAYER_FIELDS = ("pix_key", "cpf")

    def __init__(self, settings_obj: object) -> None:
        super().__init__()
        self._secrets: List[str] = [
            value
            for value in (getattr(settings_obj, key, None) for key in self.SECRET_SETTINGS)
            if isinstance(value, str) and len(value) >= 4
        ]

    def _scrub(self, text: str) -> str:
        for secret in self._secrets:
            if secret in text:
                text = text.replace(secret, self.MASK)
        return text

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = self._scrub(record.msg)
        if isinstance(record.args, tuple):
            record.args = tuple(self._scrub(a) if isinstance(a, str) else a for a in record.args)
        for field_name in self.PLAYER_FIELDS:
            value = getattr(record, field_name, None)
            if value:
                setattr(record, field_name, mask_tail(value))
        return True


# -----------------------------------------------------------------------------
# Форматеры
# -----------------------------------------------------------------------------
class DevFormatter(logging.Formatter):
    """12:00:00 INFO  bichobet.app.services.wagers_service [rid aid] Wager placed"""

    def __init__(self) -> None:
        super().__init__(
            fmt="%(asctime)s %(levelname)-5s %(name)s [%(rid)s %(aid)s] %(message)s",
            datefmt="%H:%M:%S",
        )


class JsonFormatter(jsonlogger.JsonFormatter):
    """Короткие ключи верхнего уровня; extra (wager_id, transaction_id, ...) - рядом."""

    _RENAMES = {"asctime": "time", "levelname": "level", "name": "logger", "message": "msg"}

    def process_log_record(self, log_record: Dict[str, Any]) -> Dict[str, Any]:
        record = super().process_log_record(log_record)
        return {self._RENAMES.get(key, key): value for key, value in record.items()}


def setup_logging() -> None:
    """Root-логгер, формат по окружению, фильтры; uvicorn/fastapi - через root."""
    settings = get_settings()
    env = settings.env_normalized
    if settings.DEBUG:
        level = logging.DEBUG
    else:
        resolved = logging.getLevelName((settings.LOG_LEVEL or "INFO").upper())
        level = resolved if isinstance(resolved, int) else logging.INFO

    handler = logging.StreamHandler(sys.stdout)
    if env in ("local", "dev") or not settings.LOG_JSON:
        handler.setFormatter(DevFormatter())
    else:
        handler.setFormatter(
            JsonFormatter(fmt="%(asctime)s %(levelname)s %(name)s %(env)s %(svc)s %(rid)s %(idk)s %(aid)s %(message)s")
        )
    handler.addFilter(ContextFilter(env=env, service=settings.PROJECT_NAME))
    handler.addFilter(SensitiveDataFilter(settings))

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(level)
    root.addHandler(handler)

    for name in ("uvicorn", "uvicorn.error", "uvicorn.access", "fastapi"):
        lg = logging.getLogger(name)
        lg.handlers.clear()
        lg.setLevel(level)
        lg.propagate = True
    if settings.DEBUG:
        logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO)

    logging.getLogger(__name__).debug(
        "Logging initialized", extra={"level_name": logging.getLevelName(level), "json": settings.LOG_JSON}
    )


def get_logger(name: Optional[str] = None) -> logging.Logger:
    return logging.getLogger(name)


# -----------------------------------------------------------------------------
# ASGI-middleware корреляции
# -----------------------------------------------------------------------------
class CorrelationIdMiddleware:
    """
    X-Request-ID (или новый uuid4) и Idempotency-Key запроса → contextvars;
    X-Request-ID возвращается в ответе.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        headers = Headers(scope=scope)
        rid = headers.get("x-request-id") or uuid.uuid4().hex
        set_request_context(request_id=rid, idempotency_key=headers.get("idempotency-key"))

        async def send_with_rid(message: Message) -> None:
            if message["type"] == "http.response.start":
                MutableHeaders(scope=message).append("x-request-id", rid)
            await send(message)

        try:
            await self.app(scope, receive, send_with_rid)
        finally:
            clear_request_context()


setup_logging()

__all__ = [
    "setup_logging",
    "get_logger",
    "set_request_context",
    "clear_request_context",
    "job_context",
    "mask_tail",
    "CorrelationIdMiddleware",
]
