# -*- coding: utf-8 -*-
# bichobet/app/services/bet_validation_service.py
# =============================================================================
# Назначение кода:
#   Проверка формы ставки до любых денежных действий: тип, вид приза,
#   количество животных/чисел, длина чисел, существование животных, границы
#   ставки и потолок выигрыша. Результат - неизменяемый ValidatedWager.
#
# Канон/инварианты:
#   • Количество выборов и длина чисел - строго равны форме типа. Никакого
#     дополнения нулями и обрезки: "5" для дюжины отклоняется.
#   • Повторы внутри одной ставки запрещены.
#   • potential_payout = floor(stake × effective); при превышении MAX_PAYOUT
#     ошибка сообщает max_stake = floor_to_cents(MAX_PAYOUT / effective).
#
# ИИ-защита:
#   • Чистая часть (validate_shape) не ходит в БД - её легко тестировать;
#     async validate_wager лишь подгружает справочник животных.
# =============================================================================

from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Optional, Sequence, Set, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bichobet.app.core.config_core import get_settings
from bichobet.app.core.errors_core import InvalidWagerShape, StakeOutOfBounds, UnknownAnimal
from bichobet.app.core.utils_core import d2, decimal_from
from bichobet.app.models.lottery_models import Animal
from bichobet.app.services.odds_service import OddsCatalog, WagerTypeSpec, get_catalog

_DIGITS_RE = re.compile(r"[0-9]+")


@dataclass(frozen=True)
class ValidatedWager:
    """Проверенная ставка, готовая к приёму (WagerIntake)."""

    spec: WagerTypeSpec
    premio_type: str
    animals: Tuple[int, ...]
    numbers: Tuple[str, ...]
    stake: Decimal
    effective_multiplier: Decimal
    potential_payout: Decimal
    draw_id: Optional[int] = None

    @property
    def wager_type(self) -> str:
        return self.spec.code


def _coerce_animal_ids(raw: Sequence[Any], wager_type: str) -> Tuple[int, ...]:
    out = []
    for item in raw:
        if isinstance(item, bool) or not isinstance(item, (int, str)):
            raise InvalidWagerShape(
                "Animal selection must be an integer id.",
                details={"wager_type": wager_type, "received": repr(item)},
            )
        try:
            out.append(int(item))
        except ValueError:
            raise InvalidWagerShape(
                "Animal selection must be an integer id.",
                details={"wager_type": wager_type, "received": item},
            )
    return tuple(out)


def _coerce_stake(raw: Any) -> Decimal:
    try:
        stake = decimal_from(raw)
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidWagerShape("Stake must be a decimal amount.", details={"stake": repr(raw)})
    if not stake.is_finite():
        raise InvalidWagerShape("Stake must be a decimal amount.", details={"stake": repr(raw)})
    if d2(stake) != stake:
        raise InvalidWagerShape(
            "Stake must have at most 2 decimal places.", details={"stake": str(stake)}
        )
    return d2(stake)


def max_stake_for(effective: Decimal) -> Decimal:
    """Максимальная ставка, при которой выигрыш не превышает MAX_PAYOUT."""
    s = get_settings()
    by_payout = d2(s.MAX_PAYOUT / effective)
    return min(by_payout, d2(s.MAX_BET_AMOUNT))


def validate_shape(
    *,
    wager_type: str,
    premio_type: str,
    animals: Sequence[Any],
    numbers: Sequence[Any],
    stake: Any,
    known_animal_ids: Iterable[int],
    draw_id: Optional[int] = None,
    catalog: Optional[OddsCatalog] = None,
) -> ValidatedWager:
    """Полная проверка ставки по известному набору животных (без БД)."""
    catalog = catalog or get_catalog()
    spec = catalog.get(wager_type)

    if premio_type not in spec.allowed_premios:
        raise InvalidWagerShape(
            "Premio type is not allowed for this wager type.",
            details={
                "wager_type": wager_type,
                "premio_type": premio_type,
                "allowed": list(spec.allowed_premios),
            },
        )

    animals = list(animals or [])
    numbers = list(numbers or [])
    if len(animals) != spec.animals:
        raise InvalidWagerShape(
            f"Wager type '{wager_type}' requires exactly {spec.animals} animal(s).",
            details={"wager_type": wager_type, "expected": spec.animals, "received": len(animals)},
        )
    if len(numbers) != spec.numbers:
        raise InvalidWagerShape(
            f"Wager type '{wager_type}' requires exactly {spec.numbers} number(s).",
            details={"wager_type": wager_type, "expected": spec.numbers, "received": len(numbers)},
        )

    clean_numbers = []
    for raw in numbers:
        if not isinstance(raw, str) or not _DIGITS_RE.fullmatch(raw):
            raise InvalidWagerShape(
                "Numbers must be strings of decimal digits.",
                details={"wager_type": wager_type, "received": repr(raw)},
            )
        if len(raw) != spec.digits:
            raise InvalidWagerShape(
                f"Wager type '{wager_type}' requires {spec.digits}-digit numbers.",
                details={
                    "wager_type": wager_type,
                    "expected_length": spec.digits,
                    "received_length": len(raw),
                    "received": raw,
                },
            )
        clean_numbers.append(raw)

    animal_ids = _coerce_animal_ids(animals, wager_type)
    if len(set(animal_ids)) != len(animal_ids) or len(set(clean_numbers)) != len(clean_numbers):
        raise InvalidWagerShape(
            "Duplicate selections are not allowed.", details={"wager_type": wager_type}
        )

    known: Set[int] = set(known_animal_ids)
    for animal_id in animal_ids:
        if animal_id not in known:
            raise UnknownAnimal(animal_id)

    s = get_settings()
    amount = _coerce_stake(stake)
    effective = catalog.effective_multiplier(wager_type, premio_type)
    max_stake = max_stake_for(effective)
    if amount < s.MIN_BET_AMOUNT:
        raise StakeOutOfBounds(
            f"Minimum stake is {s.MIN_BET_AMOUNT:.2f}.",
            stake=amount,
            min_stake=s.MIN_BET_AMOUNT,
            max_stake=max_stake,
        )
    if amount > s.MAX_BET_AMOUNT:
        raise StakeOutOfBounds(
            f"Maximum stake is {s.MAX_BET_AMOUNT:.2f}.",
            stake=amount,
            min_stake=s.MIN_BET_AMOUNT,
            max_stake=max_stake,
        )

    potential = catalog.potential_payout(amount, wager_type, premio_type)
    if potential > s.MAX_PAYOUT:
        raise StakeOutOfBounds(
            "Potential payout exceeds the maximum payout.",
            stake=amount,
            min_stake=s.MIN_BET_AMOUNT,
            max_stake=max_stake,
            potential_payout=potential,
            max_payout=s.MAX_PAYOUT,
        )

    return ValidatedWager(
        spec=spec,
        premio_type=premio_type,
        animals=animal_ids,
        numbers=tuple(clean_numbers),
        stake=amount,
        effective_multiplier=effective,
        potential_payout=potential,
        draw_id=draw_id,
    )


async def load_animal_ids(db: AsyncSession) -> Set[int]:
    rows = await db.execute(select(Animal.id))
    return {int(r) for r in rows.scalars().all()}


async def validate_wager(
    db: AsyncSession,
    *,
    wager_type: str,
    premio_type: str,
    animals: Sequence[Any],
    numbers: Sequence[Any],
    stake: Any,
    draw_id: Optional[int] = None,
    catalog: Optional[OddsCatalog] = None,
) -> ValidatedWager:
    known = await load_animal_ids(db) if animals else set()
    return validate_shape(
        wager_type=wager_type,
        premio_type=premio_type,
        animals=animals,
        numbers=numbers,
        stake=stake,
        known_animal_ids=known,
        draw_id=draw_id,
        catalog=catalog,
    )


__all__ = ["ValidatedWager", "validate_shape", "validate_wager", "load_animal_ids", "max_stake_for"]
