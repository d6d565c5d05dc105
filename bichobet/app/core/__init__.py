# -*- coding: utf-8 -*-
# bichobet/app/core/__init__.py
# =============================================================================
# Назначение кода:
# Единая точка входа ядра Bicho Bet: загрузка настроек, первичная инициализация
# логирования и безопасный экспорт диагностики ядра для /health и планировщика.
#
# Канон/инварианты:
# • Источник истины - config_core.get_settings(); локальных дублей констант нет.
# • Денежные операции здесь НЕ выполняются (только конфиг/проверки/экспорты).
#
# Запреты:
# • Не импортируем тяжёлые слои (models/services) - только ядро.
# =============================================================================

from __future__ import annotations

from typing import Any, Dict, List

from .config_core import get_settings
from .logging_core import get_logger
from . import system_locks

CORE_VERSION = "1.0.0"

logger = get_logger(__name__)


def core_health() -> Dict[str, Any]:
    """
    Быстрые sanity-checks ключевых настроек. Никаких падений - только отчёт
    вида {ok, errors, snapshot} для /health и логов воркеров.
    """
    settings = get_settings()
    errors: List[str] = []

    try:
        system_locks.assert_bet_limits_consistent()
    except system_locks.LockViolation as exc:
        errors.append(str(exc))
    if not settings.DATABASE_URL:
        errors.append("DATABASE_URL must be set.")
    if not settings.SECRET_KEY:
        errors.append("SECRET_KEY must be set.")
    if settings.PAYMENT_POLL_INTERVAL_SEC <= 0:
        errors.append("PAYMENT_POLL_INTERVAL_SEC must be positive.")

    snapshot = {
        "coreVersion": CORE_VERSION,
        **settings.debug_dump(),
    }
    return {"ok": not errors, "errors": errors, "snapshot": snapshot}


__all__ = [
    "CORE_VERSION",
    "get_settings",
    "logger",
    "core_health",
]
