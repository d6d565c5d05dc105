# -*- coding: utf-8 -*-
# bichobet/app/services/settlement_service.py
# =============================================================================
# Назначение кода:
#   Ввод результата тиража и расчёт всех его ставок ровно один раз.
#
# Канон/инварианты:
#   • Тираж pending → completed одним атомарным UPDATE ... WHERE status='pending'.
#     Повторная отправка результата → DrawAlreadySettled, без побочных эффектов.
#   • Каждая ставка рассчитывается в своей короткой транзакции:
#     блокировка аккаунта → CAS ставки pending → won|lost → кредит выигрыша.
#     Прерванный расчёт продолжает resume_settlement: трогаются только pending.
#   • Выигрыш пересчитывается по текущему каталогу (floor(stake × effective))
#     и всегда зачисляется на реальный баланс (ключ settle:<wager_id>).
#   • Ставка не в pending в момент расчёта → SettlementInconsistency: лог и пропуск.
#   • Сбой расчёта ставки не прерывает проход: её id попадает в
#     failed_wager_ids, ставка остаётся pending до resume_settlement.
#
# Запреты:
#   • Никаких повторных кредитов: CAS по статусу ставки + UNIQUE ключ журнала.
# =============================================================================

from __future__ import annotations

import re
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from bichobet.app.core.errors_core import (
    DrawAlreadySettled,
    InvalidWagerShape,
    NotFoundError,
    SettlementInconsistency,
    UnknownAnimal,
    ValidationError,
)
from bichobet.app.core.logging_core import get_logger
from bichobet.app.core.utils_core import d2, utcnow
from bichobet.app.models.lottery_models import Draw, Wager
from bichobet.app.services.bet_validation_service import load_animal_ids
from bichobet.app.services.ledger_service import ZERO, credit_real, lock_account, run_atomic
from bichobet.app.services.odds_service import (
    KIND_COMBINATION,
    KIND_PASSE,
    OddsCatalog,
    covered_tiers,
    get_catalog,
)

logger = get_logger(__name__)

_RESULT_NUMBER_RE = re.compile(r"[0-9]{4}")

ResultPair = Tuple[int, str]


@dataclass
class SettlementSummary:
    draw_id: int
    settled: int = 0
    won: int = 0
    lost: int = 0
    skipped: int = 0
    total_payout: Decimal = ZERO
    errors: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def failed_wager_ids(self) -> List[int]:
        return [int(item["wager_id"]) for item in self.errors]

    @property
    def needs_resume(self) -> bool:
        return bool(self.errors)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "draw_id": self.draw_id,
            "settled": self.settled,
            "won": self.won,
            "lost": self.lost,
            "skipped": self.skipped,
            "total_payout": f"{self.total_payout:.2f}",
        }


# -----------------------------------------------------------------------------
# Сопоставление ставки с результатом (чистые функции)
# -----------------------------------------------------------------------------
def _tier_values(results: Sequence[ResultPair], premio_type: str) -> List[ResultPair]:
    """Пары результата на покрытых призах (отсутствующие призы пропускаются)."""
    out: List[ResultPair] = []
    for tier in covered_tiers(premio_type):
        if tier <= len(results):
            out.append(results[tier - 1])
    return out


def is_winning(
    *,
    wager_type: str,
    premio_type: str,
    animals: Sequence[int],
    numbers: Sequence[str],
    results: Sequence[ResultPair],
    catalog: Optional[OddsCatalog] = None,
) -> bool:
    """
    True - ставка выиграла.

      • group: выбранное животное на любом покрытом призе;
      • dozen/hundred/thousand: последние 2/3/4 цифры числа любого покрытого приза;
      • комбинации животных/дюжин: каждый выбор на своём (различном) призе;
      • passe_ida: животное 1 на 1-м призе и животное 2 на 2-м;
        passe_ida_volta: те же два животных на 1-м и 2-м в любом порядке.
    """
    catalog = catalog or get_catalog()
    spec = catalog.get(wager_type)
    animals = [int(a) for a in animals]

    if spec.kind == KIND_PASSE:
        if len(results) < 2:
            return False
        first, second = results[0][0], results[1][0]
        if wager_type == "passe_ida":
            return animals[0] == first and animals[1] == second
        return {animals[0], animals[1]} == {first, second}

    tiers = _tier_values(results, premio_type)
    if spec.animals:
        tier_animals = [a for a, _ in tiers]
        if spec.kind == KIND_COMBINATION:
            return _match_distinct(animals, tier_animals)
        return animals[0] in tier_animals

    tier_tails = [n[-spec.digits:] for _, n in tiers]
    if spec.kind == KIND_COMBINATION:
        return _match_distinct(list(numbers), tier_tails)
    return numbers[0] in tier_tails


def _match_distinct(selected: Sequence[Any], tier_values: Sequence[Any]) -> bool:
    """Каждому выбору - свой приз (жадно; выборы внутри ставки различны)."""
    free = list(tier_values)
    for value in selected:
        if value not in free:
            return False
        free.remove(value)
    return True


# -----------------------------------------------------------------------------
# Проверка результата
# -----------------------------------------------------------------------------
def _normalize_results(pairs: Sequence[Sequence[Any]], known_animals: set) -> List[ResultPair]:
    if not pairs:
        raise InvalidWagerShape("First prize result is mandatory.", details={"received": 0})
    if len(pairs) > 5:
        raise InvalidWagerShape("At most 5 prize results.", details={"received": len(pairs)})
    out: List[ResultPair] = []
    for tier, pair in enumerate(pairs, start=1):
        if pair is None or len(pair) != 2:
            raise InvalidWagerShape("Each prize needs an animal and a number.", details={"tier": tier})
        raw_animal, number = pair
        if isinstance(raw_animal, bool) or not isinstance(raw_animal, int):
            raise InvalidWagerShape("Animal id must be an integer.", details={"tier": tier})
        if raw_animal not in known_animals:
            raise UnknownAnimal(raw_animal, details={"tier": tier})
        if not isinstance(number, str) or not _RESULT_NUMBER_RE.fullmatch(number):
            raise InvalidWagerShape(
                "Result numbers must be exactly 4 digits.",
                details={"tier": tier, "received": repr(number)},
            )
        out.append((raw_animal, number))
    return out


# -----------------------------------------------------------------------------
# Расчёт
# -----------------------------------------------------------------------------
async def _settle_one(
    db: AsyncSession,
    *,
    wager_id: int,
    account_id: int,
    won: bool,
    payout: Optional[Decimal],
    draw_id: int,
) -> bool:
    """Одна ставка - одна транзакция. False - ставку уже рассчитал кто-то другой."""

    async def _work() -> bool:
        account = await lock_account(db, account_id)
        res = await db.execute(
            update(Wager)
            .where(Wager.id == wager_id, Wager.status == "pending")
            .values(
                status="won" if won else "lost",
                payout=payout if won else None,
                settled_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        if res.rowcount != 1:
            return False
        if won and payout is not None and payout > ZERO:
            await credit_real(
                db,
                account,
                payout,
                reason="settlement",
                idempotency_key=f"settle:{wager_id}",
                meta={"wager_id": wager_id, "draw_id": draw_id},
            )
        return True

    return await run_atomic(db, _work, op="wager_settle")


async def settle_pending_wagers(
    db: AsyncSession, draw_id: int, *, catalog: Optional[OddsCatalog] = None
) -> SettlementSummary:
    """Проходит все ставки тиража; pending рассчитывает, прочие - лог и пропуск."""
    catalog = catalog or get_catalog()
    draw = await db.get(Draw, int(draw_id), populate_existing=True)
    if draw is None:
        raise NotFoundError("Draw not found.", details={"draw_id": draw_id})
    if draw.status != "completed":
        raise ValidationError("Draw has no result yet.", details={"draw_id": draw_id})
    results = draw.result_pairs()

    rows = await db.execute(
        select(
            Wager.id,
            Wager.account_id,
            Wager.status,
            Wager.wager_type,
            Wager.premio_type,
            Wager.animals,
            Wager.numbers,
            Wager.stake,
        )
        .where(Wager.draw_id == int(draw_id))
        .order_by(Wager.id.asc())
    )
    snapshot = rows.all()
    await db.commit()

    summary = SettlementSummary(draw_id=int(draw_id))
    for wager_id, account_id, status, wager_type, premio_type, animals, numbers, stake in snapshot:
        if status != "pending":
            issue = SettlementInconsistency(wager_id=wager_id, wager_status=status)
            logger.warning("Wager skipped during settlement", extra={"draw_id": draw_id, **issue.details})
            summary.skipped += 1
            continue

        won = is_winning(
            wager_type=wager_type,
            premio_type=premio_type,
            animals=animals or [],
            numbers=numbers or [],
            results=results,
            catalog=catalog,
        )
        payout = d2(catalog.potential_payout(stake, wager_type, premio_type)) if won else None
        try:
            applied = await _settle_one(
                db,
                wager_id=wager_id,
                account_id=account_id,
                won=won,
                payout=payout,
                draw_id=int(draw_id),
            )
        except Exception as exc:  # noqa: BLE001
            logger.exception("Wager settlement failed", extra={"wager_id": wager_id, "draw_id": draw_id})
            summary.errors.append({"wager_id": wager_id, "error": type(exc).__name__})
            continue
        if not applied:
            logger.warning(
                "Wager skipped during settlement",
                extra={"draw_id": draw_id, "wager_id": wager_id, "status": "not_pending"},
            )
            summary.skipped += 1
            continue

        summary.settled += 1
        if won:
            summary.won += 1
            summary.total_payout = d2(summary.total_payout + payout)
        else:
            summary.lost += 1

    logger.info("Draw settlement pass finished", extra=summary.as_dict())
    if summary.needs_resume:
        logger.error(
            "Draw settlement incomplete; run resume",
            extra={"draw_id": draw_id, "failed_wager_ids": summary.failed_wager_ids},
        )
    return summary


async def submit_result(
    db: AsyncSession,
    draw_id: int,
    pairs: Sequence[Sequence[Any]],
    *,
    catalog: Optional[OddsCatalog] = None,
) -> Tuple[Draw, SettlementSummary]:
    """
    Фиксирует результат тиража (ровно один раз) и рассчитывает ставки.
    DrawAlreadySettled - если результат уже был введён.
    """
    known = await load_animal_ids(db)
    results = _normalize_results(pairs, known)

    values: Dict[str, Any] = {"status": "completed", "settled_at": utcnow()}
    for tier, (animal_id, number) in enumerate(results, start=1):
        values[f"animal_{tier}"] = animal_id
        values[f"number_{tier}"] = number

    async def _work() -> None:
        res = await db.execute(
            update(Draw)
            .where(Draw.id == int(draw_id), Draw.status == "pending")
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if res.rowcount == 1:
            return
        exists = (await db.execute(select(Draw.id).where(Draw.id == int(draw_id)))).scalar_one_or_none()
        if exists is None:
            raise NotFoundError("Draw not found.", details={"draw_id": draw_id})
        raise DrawAlreadySettled(draw_id=int(draw_id))

    await run_atomic(db, _work, op="draw_result")
    logger.info("Draw result recorded", extra={"draw_id": draw_id, "tiers": len(results)})

    summary = await settle_pending_wagers(db, draw_id, catalog=catalog)
    draw = await db.get(Draw, int(draw_id), populate_existing=True)
    return draw, summary


async def resume_settlement(
    db: AsyncSession, draw_id: int, *, catalog: Optional[OddsCatalog] = None
) -> SettlementSummary:
    """Повторный проход после прерывания: только ставки, оставшиеся pending."""
    return await settle_pending_wagers(db, draw_id, catalog=catalog)


__all__ = [
    "SettlementSummary",
    "is_winning",
    "settle_pending_wagers",
    "submit_result",
    "resume_settlement",
]
