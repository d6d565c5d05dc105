# -*- coding: utf-8 -*-
"""Seed the 25 animal groups.

Назначение:
    • Заполнить справочник animals: id = номер группы 1..25, десятки
      4N-3..4N (группа 25 - 97,98,99,00).

Канон/инварианты:
    • Повторный запуск не дублирует строки (вставляются только отсутствующие id).
"""

from __future__ import annotations

from alembic import op
from sqlalchemy import select

from bichobet.app.models.lottery_models import Animal, animal_seed_rows

revision: str = "0002"
down_revision: str | None = "0001"
branch_labels = None
depends_on = None


def upgrade() -> None:
    bind = op.get_bind()
    existing = {row[0] for row in bind.execute(select(Animal.id))}
    rows = [row for row in animal_seed_rows() if row["id"] not in existing]
    if rows:
        op.bulk_insert(Animal.__table__, rows)


def downgrade() -> None:
    bind = op.get_bind()
    bind.execute(Animal.__table__.delete().where(Animal.id.in_([r["id"] for r in animal_seed_rows()])))
