# -*- coding: utf-8 -*-
"""Правила выигрыша по типам ставок (чистые функции расчёта)."""

from __future__ import annotations

import pytest

from bichobet.app.services.odds_service import OddsCatalog
from bichobet.app.services.settlement_service import is_winning

CATALOG = OddsCatalog()

# приз: (животное, число)
RESULTS = [
    (10, "4537"),
    (3, "0911"),
    (25, "7800"),
    (1, "1203"),
    (18, "2270"),
]


def _wins(wager_type, premio_type="1", animals=(), numbers=(), results=RESULTS):
    return is_winning(
        wager_type=wager_type,
        premio_type=premio_type,
        animals=list(animals),
        numbers=list(numbers),
        results=results,
        catalog=CATALOG,
    )


def test_group_on_single_tier():
    assert _wins("group", "1", animals=[10])
    assert not _wins("group", "1", animals=[3])
    assert _wins("group", "2", animals=[3])


def test_group_on_all_tiers():
    assert _wins("group", "1-5", animals=[18])
    assert not _wins("group", "1-5", animals=[7])


@pytest.mark.parametrize(
    "wager_type,number,expected",
    [
        ("dozen", "37", True),
        ("dozen", "38", False),
        ("hundred", "537", True),
        ("hundred", "437", False),
        ("thousand", "4537", True),
        ("thousand", "4536", False),
    ],
)
def test_number_suffix_on_first_prize(wager_type, number, expected):
    assert _wins(wager_type, "1", numbers=[number]) is expected


def test_dozen_on_all_tiers_matches_any_prize():
    assert _wins("dozen", "1-5", numbers=["00"])
    assert not _wins("dozen", "3", numbers=["37"])


def test_animal_combinations_need_distinct_prizes():
    assert _wins("duque_grupo", "1-5", animals=[10, 25])
    assert not _wins("duque_grupo", "1-5", animals=[10, 7])
    assert _wins("terno_grupo", "1-5", animals=[1, 3, 18])
    assert _wins("quina_grupo", "1-5", animals=[10, 3, 25, 1, 18])


def test_dozen_combinations():
    assert _wins("duque_dezena", "1-5", numbers=["37", "70"])
    assert not _wins("duque_dezena", "1-5", numbers=["37", "99"])
    assert _wins("terno_dezena", "1-5", numbers=["11", "00", "03"])


def test_passe_ida_is_ordered():
    assert _wins("passe_ida", "1", animals=[10, 3])
    assert not _wins("passe_ida", "1", animals=[3, 10])


def test_passe_ida_volta_accepts_either_order():
    assert _wins("passe_ida_volta", "1", animals=[10, 3])
    assert _wins("passe_ida_volta", "1", animals=[3, 10])
    assert not _wins("passe_ida_volta", "1", animals=[10, 25])


def test_missing_prizes_are_skipped():
    only_first = RESULTS[:1]
    assert not _wins("group", "1-5", animals=[3], results=only_first)
    assert not _wins("passe_ida", "1", animals=[10, 3], results=only_first)
    assert not _wins("group", "2", animals=[3], results=only_first)
