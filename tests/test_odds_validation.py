# -*- coding: utf-8 -*-
"""Каталог коэффициентов и проверка формы ставки (без БД)."""

from __future__ import annotations

from decimal import Decimal

import pytest

from bichobet.app.core.config_core import get_settings
from bichobet.app.core.errors_core import InvalidWagerShape, StakeOutOfBounds, UnknownAnimal
from bichobet.app.services.bet_validation_service import validate_shape
from bichobet.app.services.odds_service import OddsCatalog, covered_tiers

ALL_ANIMALS = set(range(1, 26))


def _validate(**kwargs):
    params = dict(
        premio_type="1",
        animals=[],
        numbers=[],
        stake="10",
        known_animal_ids=ALL_ANIMALS,
        catalog=OddsCatalog(),
    )
    params.update(kwargs)
    return validate_shape(**params)


def test_catalog_has_twelve_types_with_default_multipliers():
    catalog = OddsCatalog()
    assert len(catalog.types) == 12
    assert catalog.multiplier("group") == Decimal("18")
    assert catalog.multiplier("dozen") == Decimal("60")
    assert catalog.multiplier("thousand") == Decimal("4000")
    assert catalog.multiplier("passe_ida_volta") == Decimal("45")


def test_all_tiers_divides_multiplier_by_five():
    catalog = OddsCatalog()
    assert catalog.effective_multiplier("group", "1-5") == Decimal("3.6")
    assert catalog.potential_payout(Decimal("10"), "group", "1-5") == Decimal("36")


def test_potential_payout_is_floored_to_whole_units():
    catalog = OddsCatalog()
    # 1.55 × 18 = 27.90 → 27
    assert catalog.potential_payout(Decimal("1.55"), "group", "1") == Decimal("27")


def test_overrides_replace_multiplier_and_ignore_unknown_codes():
    catalog = OddsCatalog(overrides={"dozen": Decimal("90"), "nonsense": Decimal("5")})
    assert catalog.potential_payout(Decimal("10"), "dozen", "1") == Decimal("900")
    assert "nonsense" not in catalog.types


def test_catalog_mapping_is_read_only():
    catalog = OddsCatalog()
    with pytest.raises(TypeError):
        catalog.types["group"] = catalog.types["dozen"]  # type: ignore[index]


def test_unknown_wager_type_rejected():
    with pytest.raises(InvalidWagerShape):
        OddsCatalog().get("sena")


def test_covered_tiers():
    assert covered_tiers("3") == (3,)
    assert covered_tiers("1-5") == (1, 2, 3, 4, 5)
    with pytest.raises(InvalidWagerShape):
        covered_tiers("6")


def test_group_wager_is_valid():
    validated = _validate(wager_type="group", animals=[7])
    assert validated.animals == (7,)
    assert validated.stake == Decimal("10.00")
    assert validated.potential_payout == Decimal("180")


def test_dozen_requires_exactly_two_digits():
    with pytest.raises(InvalidWagerShape) as exc:
        _validate(wager_type="dozen", numbers=["5"])
    assert exc.value.details["expected_length"] == 2
    assert exc.value.details["received_length"] == 1


def test_numbers_must_be_digit_strings():
    with pytest.raises(InvalidWagerShape):
        _validate(wager_type="hundred", numbers=["1a3"])


def test_wrong_number_of_animals_rejected():
    with pytest.raises(InvalidWagerShape) as exc:
        _validate(wager_type="duque_grupo", animals=[1], premio_type="1-5")
    assert exc.value.details["expected"] == 2


def test_duplicate_selections_rejected():
    with pytest.raises(InvalidWagerShape):
        _validate(wager_type="duque_grupo", animals=[3, 3], premio_type="1-5")
    with pytest.raises(InvalidWagerShape):
        _validate(wager_type="duque_dezena", numbers=["12", "12"], premio_type="1-5")


def test_unknown_animal_is_reported():
    with pytest.raises(UnknownAnimal):
        _validate(wager_type="group", animals=[26])


def test_premio_not_allowed_for_combination():
    with pytest.raises(InvalidWagerShape):
        _validate(wager_type="terno_grupo", animals=[1, 2, 3], premio_type="1")


def test_passe_only_on_first_prize():
    validated = _validate(wager_type="passe_ida", animals=[4, 9], premio_type="1")
    assert validated.effective_multiplier == Decimal("90")
    with pytest.raises(InvalidWagerShape):
        _validate(wager_type="passe_ida", animals=[4, 9], premio_type="1-5")


def test_stake_below_minimum():
    settings = get_settings()
    with pytest.raises(StakeOutOfBounds) as exc:
        _validate(wager_type="group", animals=[1], stake="0.50")
    assert exc.value.details["min_stake"] == settings.MIN_BET_AMOUNT


def test_stake_with_three_decimals_rejected():
    with pytest.raises(InvalidWagerShape):
        _validate(wager_type="group", animals=[1], stake="1.005")


def test_payout_cap_reports_max_stake():
    settings = get_settings()
    # milhar ×4000: 50000 / 4000 = 12.50
    with pytest.raises(StakeOutOfBounds) as exc:
        _validate(wager_type="thousand", numbers=["1234"], stake="13")
    assert exc.value.details["max_stake"] == Decimal("12.50")
    assert exc.value.details["max_payout"] == settings.MAX_PAYOUT

    ok = _validate(wager_type="thousand", numbers=["1234"], stake="12.50")
    assert ok.potential_payout == Decimal("50000")
