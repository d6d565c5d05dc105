# -*- coding: utf-8 -*-
"""Alembic для Bicho Bet: схема счетов, журнала, тиражей, ставок и платежей.

Канон:
    • DSN берётся из DATABASE_URL (config_core), ini-файл его не хранит.
    • Метаданные - Base.metadata после импорта всех моделей.
    • На SQLite (локальный прогон) ALTER идёт batch-режимом.

Запреты:
    • create_all/drop_all здесь не вызываются: DDL живёт в versions/.
"""

from __future__ import annotations

import asyncio
from logging.config import fileConfig
from typing import Any, Dict

from alembic import context
from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import create_async_engine

from bichobet.app.core.config_core import get_settings
from bichobet.app.core.database_core import Base
import bichobet.app.models  # noqa: F401  (регистрирует таблицы в Base.metadata)

alembic_cfg = context.config
if alembic_cfg.config_file_name:
    fileConfig(alembic_cfg.config_file_name, disable_existing_loggers=False)

DATABASE_URL = get_settings().database_url_asyncpg()


def _options() -> Dict[str, Any]:
    return {
        "target_metadata": Base.metadata,
        "compare_type": True,
        "compare_server_default": True,
        "include_schemas": True,
        "render_as_batch": DATABASE_URL.startswith("sqlite"),
    }


def _migrate(connection: Connection) -> None:
    context.configure(connection=connection, **_options())
    with context.begin_transaction():
        context.run_migrations()


async def _migrate_online() -> None:
    engine = create_async_engine(DATABASE_URL, poolclass=pool.NullPool)
    try:
        async with engine.connect() as connection:
            await connection.run_sync(_migrate)
    finally:
        await engine.dispose()


if context.is_offline_mode():
    # alembic upgrade head --sql: печатает DDL без подключения.
    context.configure(url=DATABASE_URL, literal_binds=True, dialect_opts={"paramstyle": "named"}, **_options())
    with context.begin_transaction():
        context.run_migrations()
else:
    asyncio.run(_migrate_online())
