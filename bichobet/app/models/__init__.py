# -*- coding: utf-8 -*-
# bichobet/app/models/__init__.py
# =============================================================================
# Назначение кода:
# Единая точка входа слоя моделей Bicho Bet. Централизует:
#  • загрузку ORM-базиса (Base, схема БД),
#  • регистрацию всех моделей в Base.metadata (нужно Alembic и тестам),
#  • реестр MODEL_REGISTRY для доступа к классам моделей по имени,
#  • лёгкую диагностику полноты набора таблиц (models_health).
#
# Канон/инварианты (важно):
#  • Модели описывают структуру данных, НЕ содержат бизнес-логики и денег.
#  • Денежные операции выполняются ТОЛЬКО в services/ledger_service.py.
#
# Запреты:
#  • Не размещать в __init__ бизнес-операции, миграции и DDL.
# =============================================================================

from __future__ import annotations

import inspect
from typing import Dict, List, Optional, Tuple, Type

from ..core.database_core import SCHEMA, Base
from ..core.logging_core import get_logger
from . import accounts_models, ledger_models, lottery_models, payments_models
from .accounts_models import Account, BonusGrant
from .ledger_models import LedgerEntry
from .lottery_models import Animal, Draw, Wager
from .payments_models import PaymentTransaction

logger = get_logger(__name__)

_MODEL_MODULES = (accounts_models, lottery_models, payments_models, ledger_models)


def _collect_model_classes(module) -> Dict[str, Type[Base]]:
    """{ClassName: Class} для всех подклассов Base с объявленным __tablename__."""
    registry: Dict[str, Type[Base]] = {}
    for name, obj in vars(module).items():
        if inspect.isclass(obj) and issubclass(obj, Base) and hasattr(obj, "__tablename__"):
            registry[name] = obj
    return registry


MODEL_REGISTRY: Dict[str, Type[Base]] = {}
for _mod in _MODEL_MODULES:
    MODEL_REGISTRY.update(_collect_model_classes(_mod))


def get_model(name: str) -> Optional[Type[Base]]:
    """get_model("Wager") → <class Wager> или None."""
    return MODEL_REGISTRY.get(name)


def list_models() -> List[Tuple[str, str]]:
    result: List[Tuple[str, str]] = []
    for cls_name, cls in sorted(MODEL_REGISTRY.items(), key=lambda kv: kv[0].lower()):
        result.append((cls_name, getattr(cls, "__tablename__", "?")))
    return result


def models_health() -> Dict[str, object]:
    """
    Проверяет наличие критически важных сущностей:
      • Account / BonusGrant       - балансы и бонусы;
      • Animal / Draw / Wager      - игровое ядро;
      • PaymentTransaction         - депозиты и выводы;
      • LedgerEntry                - денежный журнал.
    """
    required = ["Account", "BonusGrant", "Animal", "Draw", "Wager", "PaymentTransaction", "LedgerEntry"]
    present_pairs = list_models()
    present = {cls for cls, _ in present_pairs}
    missing = [name for name in required if name not in present]
    report = {"ok": not missing, "missing_classes": missing, "present": present_pairs, "schema": SCHEMA}
    if missing:
        logger.warning("models_health: missing=%s", missing)
    return report


__all__ = [
    "Base",
    "SCHEMA",
    "Account",
    "BonusGrant",
    "Animal",
    "Draw",
    "Wager",
    "PaymentTransaction",
    "LedgerEntry",
    "MODEL_REGISTRY",
    "get_model",
    "list_models",
    "models_health",
]

# =============================================================================
# Пояснения «для чайника»:
# • MODEL_REGISTRY - «единое место правды» для классов моделей.
# • Таблицы создаются миграциями Alembic; тесты вызывают
#   Base.metadata.create_all на SQLite сами.
# =============================================================================
