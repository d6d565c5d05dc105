# -*- coding: utf-8 -*-
"""Initial migration for Bicho Bet.

Назначение:
    • Создать схему ядра и все таблицы согласно текущим моделям
      (accounts, bonus_grants, animals, draws, wagers, payment_transactions,
      ledger_entries) вместе с CHECK/UNIQUE/индексами из ORM.

Канон/инварианты:
    • Денежные операции и балансы не изменяются - только DDL.
    • Таблицы создаются через Declarative Base, что исключает расхождение между
      миграцией и моделями.

Запреты:
    • Нет create_all вне Alembic; здесь единственная точка создания.
"""

from __future__ import annotations

from alembic import op
from sqlalchemy import text

from bichobet.app.core.config_core import get_settings
from bichobet.app.core.database_core import Base
from bichobet.app.core.logging_core import get_logger
from bichobet.app.models import MODEL_REGISTRY

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: str | None = None
branch_labels = None
depends_on = None

logger = get_logger(__name__)
SCHEMA = get_settings().db_schema
_ = MODEL_REGISTRY


def upgrade() -> None:
    """Создать схему и все таблицы/индексы из моделей."""

    bind = op.get_bind()
    if SCHEMA and bind.dialect.name == "postgresql":
        logger.info("Creating schema if missing", extra={"schema": SCHEMA})
        bind.execute(text(f'CREATE SCHEMA IF NOT EXISTS "{SCHEMA}"'))
    Base.metadata.create_all(bind=bind, checkfirst=True)


def downgrade() -> None:
    """Удалить таблицы и схему (для чистого отката)."""

    bind = op.get_bind()
    Base.metadata.drop_all(bind=bind, checkfirst=True)
    if SCHEMA and bind.dialect.name == "postgresql":
        logger.info("Dropping schema (cascade)", extra={"schema": SCHEMA})
        bind.execute(text(f'DROP SCHEMA IF EXISTS "{SCHEMA}" CASCADE'))
