# -*- coding: utf-8 -*-
# bichobet/app/routes/__init__.py
# =============================================================================
# Назначение кода:
#   Единая точка подключения всех HTTP-роутов Bicho Bet. Этот модуль агрегирует
#   подмодули роутов и предоставляет:
#     • общий APIRouter (api_router), в который «вмонтированы» все роуты;
#     • функцию register(app, prefix="") для подключения в FastAPI;
#     • список подключённых модулей для диагностики.
#
# Канон/инварианты:
#   • Этот модуль НЕ выполняет бизнес-логику и НЕ трогает деньги - только проводка
#     маршрутов.
#   • Каждый модуль сам содержит свой prefix ("/accounts", "/admin", ...).
#   • Модуль без `router: APIRouter` - ошибка сборки, а не тихий пропуск.
# =============================================================================

from __future__ import annotations

from importlib import import_module
from typing import List, Tuple

from fastapi import APIRouter, FastAPI

from bichobet.app.core.logging_core import get_logger

logger = get_logger(__name__)

# Порядок важен для читабельности / предсказуемости логов.
ROUTERS_EXPECTED: Tuple[str, ...] = (
    "accounts_routes",
    "wagers_routes",
    "draws_routes",
    "payments_routes",
    "withdraw_routes",
    "admin.admin_routes",
)

api_router = APIRouter()
_ATTACHED: List[str] = []


def _include(module_basename: str) -> None:
    fqmn = f"bichobet.app.routes.{module_basename}"
    mod = import_module(fqmn)
    router = getattr(mod, "router", None)
    if not isinstance(router, APIRouter):
        raise RuntimeError(f"{fqmn} does not export router: APIRouter")
    api_router.include_router(router)
    _ATTACHED.append(module_basename)


for _name in ROUTERS_EXPECTED:
    _include(_name)


def register(app: FastAPI, prefix: str = "") -> None:
    """Регистрирует агрегированный роутер в приложении (prefix обычно "/api")."""
    app.include_router(api_router, prefix=prefix)
    logger.info("Routes registered", extra={"prefix": prefix, "routers": ",".join(_ATTACHED)})


def list_registered_routes() -> List[str]:
    return list(_ATTACHED)


__all__ = [
    "api_router",
    "register",
    "list_registered_routes",
    "ROUTERS_EXPECTED",
]
