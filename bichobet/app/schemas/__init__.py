# -*- coding: utf-8 -*-
# bichobet/app/schemas/__init__.py
# =============================================================================
# Назначение кода:
# Централизованный «фасад» для Pydantic-схем Bicho Bet. Даёт единый импорт:
#     from bichobet.app.schemas import WagerIn, DepositOut, ...
# Подхватывает публичные символы из модулей-схем по их __all__.
#
# Канон / инварианты:
# • Здесь НЕТ бизнес-логики - только агрегация схем.
# • При конфликте имён между модулями - предупреждение в лог, уже
#   экспортированное имя НЕ перезаписывается.
# =============================================================================

from __future__ import annotations

from importlib import import_module
from typing import Dict, List, Tuple

from bichobet.app.core.logging_core import get_logger

_logger = get_logger(__name__)

SCHEMAS_VERSION: str = "v1.0"

# Порядок важен: чем раньше модуль - тем выше приоритет его имён при конфликте.
_SCHEMA_MODULES_ORDERED: List[str] = [
    "bichobet.app.schemas.common_schemas",
    "bichobet.app.schemas.accounts_schemas",
    "bichobet.app.schemas.wagers_schemas",
    "bichobet.app.schemas.payments_schemas",
]

# name -> (module_name, object_ref)
_export_registry: Dict[str, Tuple[str, object]] = {}

__all__: List[str] = []


def _safe_register(name: str, module_name: str, value: object) -> None:
    if name in _export_registry:
        prev_module, _ = _export_registry[name]
        _logger.warning(
            "Schema name conflict; duplicate skipped",
            extra={"schema": name, "first_module": prev_module, "skipped_module": module_name},
        )
        return
    globals()[name] = value
    _export_registry[name] = (module_name, value)
    __all__.append(name)


for _mod_path in _SCHEMA_MODULES_ORDERED:
    _mod = import_module(_mod_path)
    for _public_name in getattr(_mod, "__all__", ()):
        _safe_register(_public_name, _mod_path, getattr(_mod, _public_name))

__all__ = sorted(set(__all__))


def get_public_exports() -> Dict[str, object]:
    """Сводка экспортов фасада по модулям (для диагностики и тестов)."""
    by_module: Dict[str, List[str]] = {}
    for name, (mod, _obj) in _export_registry.items():
        by_module.setdefault(mod, []).append(name)
    for names in by_module.values():
        names.sort()
    return {
        "version": SCHEMAS_VERSION,
        "modules": len(_SCHEMA_MODULES_ORDERED),
        "symbols": len(__all__),
        "by_module": {k: v for k, v in sorted(by_module.items())},
    }
