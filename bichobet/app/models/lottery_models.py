# -*- coding: utf-8 -*-
# bichobet/app/models/lottery_models.py
# =============================================================================
# Назначение кода:
#   SQLAlchemy-модели игрового ядра: животные (25 групп), тиражи и ставки.
#
# Канон/инварианты:
#   • Тираж: pending → completed ровно один раз; результат - до пяти пар
#     (животное, 4-значное число), первая пара обязательна.
#   • Ставка: pending → won | lost; payout заполняется только у выигрыша.
#   • Выбор игрока хранится как JSON-списки (животные - id, числа - строки
#     ровно той длины, которую требует тип ставки).
#   • idempotency_key ставки уникален: повтор запроса не создаёт дубль.
#
# Запреты:
#   • Никакой денежной логики в моделях.
# =============================================================================

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from ..core.database_core import Base, JSONDict, fk, sql_in, table_args
from ..core.utils_core import utcnow

DRAW_STATUSES = ("pending", "completed")
WAGER_STATUSES = ("pending", "won", "lost")
FUNDING_SOURCES = ("real", "bonus")
PREMIO_TYPES = ("1", "2", "3", "4", "5", "1-5")


ANIMAL_NAMES: Tuple[str, ...] = (
    "Avestruz", "Águia", "Burro", "Borboleta", "Cachorro",
    "Cabra", "Carneiro", "Camelo", "Cobra", "Coelho",
    "Cavalo", "Elefante", "Galo", "Gato", "Jacaré",
    "Leão", "Macaco", "Porco", "Pavão", "Peru",
    "Touro", "Tigre", "Urso", "Veado", "Vaca",
)


def group_numbers(group: int) -> str:
    """Десятки группы: 1 → "01,02,03,04", 25 → "97,98,99,00"."""
    return ",".join(f"{n % 100:02d}" for n in range(4 * group - 3, 4 * group + 1))


def animal_seed_rows() -> List[Dict[str, Any]]:
    """25 строк справочника животных (id = номер группы)."""
    return [
        {"id": g, "name": name, "group_number": g, "numbers": group_numbers(g)}
        for g, name in enumerate(ANIMAL_NAMES, start=1)
    ]


class Animal(Base):
    """
    Животное-группа. Группа N покрывает десятки 4N-3..4N (группа 25 - 97,98,99,00).
    """

    __tablename__ = "animals"
    __table_args__ = table_args(
        UniqueConstraint("group_number", name="uq_animals_group"),
        CheckConstraint("group_number BETWEEN 1 AND 25", name="group_range"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    name: Mapped[str] = mapped_column(String(32), nullable=False)
    group_number: Mapped[int] = mapped_column(Integer, nullable=False)
    numbers: Mapped[str] = mapped_column(String(16), nullable=False)

    def __repr__(self) -> str:
        return f"<Animal {self.id} {self.name} g={self.group_number}>"


class Draw(Base):
    """
    Тираж. Пока pending - принимает ставки до scheduled_at; после ввода
    результата - completed навсегда.
    """

    __tablename__ = "draws"
    __table_args__ = table_args(
        CheckConstraint(sql_in("status", DRAW_STATUSES), name="status_enum"),
        Index("ix_draws_status_scheduled", "status", "scheduled_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(64), nullable=False)
    scheduled_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default="pending", server_default="pending"
    )

    animal_1: Mapped[Optional[int]] = mapped_column(Integer, fk("animals.id"), nullable=True)
    animal_2: Mapped[Optional[int]] = mapped_column(Integer, fk("animals.id"), nullable=True)
    animal_3: Mapped[Optional[int]] = mapped_column(Integer, fk("animals.id"), nullable=True)
    animal_4: Mapped[Optional[int]] = mapped_column(Integer, fk("animals.id"), nullable=True)
    animal_5: Mapped[Optional[int]] = mapped_column(Integer, fk("animals.id"), nullable=True)
    number_1: Mapped[Optional[str]] = mapped_column(String(4), nullable=True)
    number_2: Mapped[Optional[str]] = mapped_column(String(4), nullable=True)
    number_3: Mapped[Optional[str]] = mapped_column(String(4), nullable=True)
    number_4: Mapped[Optional[str]] = mapped_column(String(4), nullable=True)
    number_5: Mapped[Optional[str]] = mapped_column(String(4), nullable=True)

    settled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now()
    )

    def result_pairs(self) -> List[tuple[int, str]]:
        """Заполненные пары (animal_id, number) по порядку призов 1..5."""
        out: List[tuple[int, str]] = []
        for tier in range(1, 6):
            animal = getattr(self, f"animal_{tier}")
            number = getattr(self, f"number_{tier}")
            if animal is None or number is None:
                break
            out.append((animal, number))
        return out

    def __repr__(self) -> str:
        return f"<Draw id={self.id} {self.name} {self.status}>"


class Wager(Base):
    """
    Ставка игрока на тираж.

      • wager_type       - group / dozen / ... / terno_dezena.
      • premio_type      - "1".."5" или "1-5".
      • animals/numbers  - выбор игрока (JSON-списки).
      • stake            - сумма ставки; potential_payout - floor(stake × коэф.).
      • funding_source   - real | bonus.
      • payout           - фактический выигрыш (только для won).
    """

    __tablename__ = "wagers"
    __table_args__ = table_args(
        UniqueConstraint("idempotency_key", name="uq_wagers_idem_key"),
        CheckConstraint(sql_in("status", WAGER_STATUSES), name="status_enum"),
        CheckConstraint(sql_in("funding_source", FUNDING_SOURCES), name="funding_enum"),
        CheckConstraint(sql_in("premio_type", PREMIO_TYPES), name="premio_enum"),
        CheckConstraint("stake > 0", name="stake_pos"),
        Index("ix_wagers_draw_status", "draw_id", "status"),
        Index("ix_wagers_account_created", "account_id", "created_at", "id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(Integer, fk("accounts.id"), nullable=False)
    draw_id: Mapped[int] = mapped_column(Integer, fk("draws.id"), nullable=False)

    wager_type: Mapped[str] = mapped_column(String(24), nullable=False)
    premio_type: Mapped[str] = mapped_column(String(4), nullable=False)
    animals: Mapped[List[Any]] = mapped_column(JSONDict, nullable=False, default=list)
    numbers: Mapped[List[Any]] = mapped_column(JSONDict, nullable=False, default=list)

    stake: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    potential_payout: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    funding_source: Mapped[str] = mapped_column(String(8), nullable=False)
    status: Mapped[str] = mapped_column(
        String(8), nullable=False, default="pending", server_default="pending"
    )
    payout: Mapped[Optional[Decimal]] = mapped_column(Numeric(18, 2), nullable=True)
    idempotency_key: Mapped[Optional[str]] = mapped_column(String(160), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now()
    )
    settled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<Wager id={self.id} draw={self.draw_id} {self.wager_type}/{self.premio_type} {self.status}>"


__all__ = [
    "Animal",
    "ANIMAL_NAMES",
    "group_numbers",
    "animal_seed_rows",
    "Draw",
    "Wager",
    "DRAW_STATUSES",
    "WAGER_STATUSES",
    "FUNDING_SOURCES",
    "PREMIO_TYPES",
]
