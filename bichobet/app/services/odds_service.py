# -*- coding: utf-8 -*-
# bichobet/app/services/odds_service.py
# =============================================================================
# Назначение кода:
#   Каталог коэффициентов: тип ставки → форма выбора и множитель выплаты.
#   Листовой модуль - не ходит в БД и не двигает деньги.
#
# Канон/инварианты:
#   • Набор типов закрыт (12 кодов). Неизвестный код → InvalidWagerShape.
#   • premio "1-5" (все пять призов) делит множитель на 5.
#   • potential_payout = floor(stake × effective_multiplier) до целых единиц.
#   • Каталог неизменяем в рантайме: mapping заморожен (MappingProxyType),
#     переопределения приходят только из ODDS_OVERRIDES при старте.
#
# Запреты:
#   • Не менять коэффициенты «на лету» из запросов.
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from functools import lru_cache
from types import MappingProxyType
from typing import Dict, Mapping, Optional, Tuple

from bichobet.app.core.config_core import get_settings
from bichobet.app.core.errors_core import InvalidWagerShape
from bichobet.app.core.logging_core import get_logger
from bichobet.app.core.utils_core import decimal_from, floor_units

logger = get_logger(__name__)

KIND_SINGLE = "single"
KIND_COMBINATION = "combination"
KIND_PASSE = "passe"

ALL_TIERS = "1-5"
SINGLE_TIERS = ("1", "2", "3", "4", "5")


@dataclass(frozen=True)
class WagerTypeSpec:
    """Форма ставки: сколько животных/чисел и какой длины, какой приз допустим."""

    code: str
    label: str
    animals: int
    numbers: int
    digits: int
    kind: str
    multiplier: Decimal

    @property
    def allowed_premios(self) -> Tuple[str, ...]:
        if self.kind == KIND_SINGLE:
            return SINGLE_TIERS + (ALL_TIERS,)
        if self.kind == KIND_PASSE:
            return ("1",)
        return (ALL_TIERS,)


_DEFAULT_TYPES: Tuple[WagerTypeSpec, ...] = (
    WagerTypeSpec("group", "Grupo", 1, 0, 0, KIND_SINGLE, Decimal("18")),
    WagerTypeSpec("duque_grupo", "Duque de Grupo", 2, 0, 0, KIND_COMBINATION, Decimal("80")),
    WagerTypeSpec("terno_grupo", "Terno de Grupo", 3, 0, 0, KIND_COMBINATION, Decimal("750")),
    WagerTypeSpec("quadra_duque", "Quadra de Grupo", 4, 0, 0, KIND_COMBINATION, Decimal("5000")),
    WagerTypeSpec("quina_grupo", "Quina de Grupo", 5, 0, 0, KIND_COMBINATION, Decimal("25000")),
    WagerTypeSpec("passe_ida", "Passe Ida", 2, 0, 0, KIND_PASSE, Decimal("90")),
    WagerTypeSpec("passe_ida_volta", "Passe Ida e Volta", 2, 0, 0, KIND_PASSE, Decimal("45")),
    WagerTypeSpec("dozen", "Dezena", 0, 1, 2, KIND_SINGLE, Decimal("60")),
    WagerTypeSpec("hundred", "Centena", 0, 1, 3, KIND_SINGLE, Decimal("600")),
    WagerTypeSpec("thousand", "Milhar", 0, 1, 4, KIND_SINGLE, Decimal("4000")),
    WagerTypeSpec("duque_dezena", "Duque de Dezena", 0, 2, 2, KIND_COMBINATION, Decimal("1500")),
    WagerTypeSpec("terno_dezena", "Terno de Dezena", 0, 3, 2, KIND_COMBINATION, Decimal("25000")),
)


class OddsCatalog:
    """
    Неизменяемый каталог типов ставок.

        catalog = OddsCatalog(overrides={"dozen": Decimal("90")})
        catalog.potential_payout(Decimal("10"), "dozen", "1")  # → 900
    """

    def __init__(self, overrides: Optional[Mapping[str, Decimal]] = None) -> None:
        types: Dict[str, WagerTypeSpec] = {}
        for spec in _DEFAULT_TYPES:
            types[spec.code] = spec
        for code, mult in (overrides or {}).items():
            base = types.get(code)
            if base is None:
                logger.warning("Odds override for unknown wager type ignored", extra={"wager_type": code})
                continue
            types[code] = WagerTypeSpec(
                base.code, base.label, base.animals, base.numbers, base.digits, base.kind,
                decimal_from(mult),
            )
        self._types: Mapping[str, WagerTypeSpec] = MappingProxyType(types)

    @property
    def types(self) -> Mapping[str, WagerTypeSpec]:
        return self._types

    def get(self, wager_type: str) -> WagerTypeSpec:
        spec = self._types.get(wager_type)
        if spec is None:
            raise InvalidWagerShape(
                "Unknown wager type.",
                details={"wager_type": wager_type, "allowed": sorted(self._types)},
            )
        return spec

    def multiplier(self, wager_type: str) -> Decimal:
        return self.get(wager_type).multiplier

    def effective_multiplier(self, wager_type: str, premio_type: str) -> Decimal:
        base = self.multiplier(wager_type)
        if premio_type == ALL_TIERS:
            return base / Decimal(5)
        return base

    def potential_payout(self, stake: Decimal, wager_type: str, premio_type: str) -> Decimal:
        return floor_units(decimal_from(stake) * self.effective_multiplier(wager_type, premio_type))

    def as_public_list(self) -> list[dict]:
        """Каталог для GET /wagers/types."""
        out = []
        for spec in self._types.values():
            out.append(
                {
                    "code": spec.code,
                    "label": spec.label,
                    "animals": spec.animals,
                    "numbers": spec.numbers,
                    "digits": spec.digits,
                    "kind": spec.kind,
                    "multiplier": f"{spec.multiplier}",
                    "premio_types": list(spec.allowed_premios),
                }
            )
        return out


def covered_tiers(premio_type: str) -> Tuple[int, ...]:
    """premio "3" → (3,); premio "1-5" → (1, 2, 3, 4, 5)."""
    if premio_type == ALL_TIERS:
        return (1, 2, 3, 4, 5)
    if premio_type in SINGLE_TIERS:
        return (int(premio_type),)
    raise InvalidWagerShape("Unknown premio type.", details={"premio_type": premio_type})


@lru_cache(maxsize=1)
def get_catalog() -> OddsCatalog:
    """Каталог процесса: дефолты + ODDS_OVERRIDES."""
    return OddsCatalog(overrides=get_settings().odds_overrides())


__all__ = [
    "ALL_TIERS",
    "KIND_SINGLE",
    "KIND_COMBINATION",
    "KIND_PASSE",
    "WagerTypeSpec",
    "OddsCatalog",
    "covered_tiers",
    "get_catalog",
]
