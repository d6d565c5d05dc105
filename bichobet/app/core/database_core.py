# -*- coding: utf-8 -*-
# bichobet/app/core/database_core.py
# =============================================================================
# Назначение кода:
#   • Единая точка работы с БД Bicho Bet (PostgreSQL + asyncpg + SQLAlchemy 2.0).
#   • Создание и конфигурация AsyncEngine и async_sessionmaker.
#   • Декларативная база моделей и помощники схемы (schema-qualified таблицы).
#   • Безопасная выдача сессий для FastAPI-роутов, сервисов и планировщика.
#
# Канон / инварианты:
#   • Только async-движок (create_async_engine), никаких sync-engine.
#   • DSN берём из Settings.database_url_asyncpg().
#   • Сессии expire_on_commit=False, autoflush=False.
#   • Схема задаётся DB_SCHEMA_CORE; пустое значение - таблицы без схемы
#     (SQLite в тестах).
#
# Запреты:
#   • Никакой бизнес-логики в этом модуле.
#   • Никаких DDL здесь - структура БД создаётся только миграциями Alembic.
# =============================================================================

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional, Tuple

from sqlalchemy import JSON, ForeignKey, MetaData, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from bichobet.app.core.config_core import get_settings
from bichobet.app.core.logging_core import get_logger

logger = get_logger(__name__)
settings = get_settings()

SCHEMA: Optional[str] = settings.db_schema

_NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class Base(DeclarativeBase):
    """Декларативная база всех моделей; метаданные привязаны к схеме ядра."""

    metadata = MetaData(schema=SCHEMA, naming_convention=_NAMING_CONVENTION)


def table_args(*items: Any) -> Tuple[Any, ...]:
    """__table_args__ с учётом схемы: (CheckConstraint(...), ..., {"schema": ...})."""
    opts: Dict[str, Any] = {"schema": SCHEMA} if SCHEMA else {}
    return (*items, opts)


def fk(target: str, **kwargs: Any) -> ForeignKey:
    """ForeignKey("accounts.id") → ForeignKey("bicho_core.accounts.id") при наличии схемы."""
    full = f"{SCHEMA}.{target}" if SCHEMA else target
    return ForeignKey(full, **kwargs)


def sql_in(column: str, values: Tuple[str, ...]) -> str:
    """Текст CHECK-ограничения: status IN ('a','b')."""
    rendered = ",".join(f"'{v}'" for v in values)
    return f"{column} IN ({rendered})"


# JSONB в PostgreSQL, обычный JSON в SQLite (тесты)
JSONDict = JSON().with_variant(JSONB(), "postgresql")


# -----------------------------------------------------------------------------
# Движок и фабрика сессий (создаются лениво, по текущим настройкам)
# -----------------------------------------------------------------------------
_engine: Optional[AsyncEngine] = None
_sessions: Optional[async_sessionmaker[AsyncSession]] = None


def _build_engine() -> AsyncEngine:
    """Postgres: пул из DB_POOL_SIZE/DB_MAX_OVERFLOW; SQLite: пул aiosqlite по умолчанию."""
    current = get_settings()
    options: Dict[str, Any] = {"pool_pre_ping": True, "echo": current.DEBUG}
    if not current.is_sqlite:
        options.update(pool_size=current.DB_POOL_SIZE, max_overflow=current.DB_MAX_OVERFLOW)
    engine = create_async_engine(current.database_url_asyncpg(), **options)
    logger.info("DB engine created", extra={"dialect": engine.dialect.name})
    return engine


def get_engine() -> AsyncEngine:
    global _engine
    if _engine is None:
        _engine = _build_engine()
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    global _sessions
    if _sessions is None:
        _sessions = async_sessionmaker(get_engine(), expire_on_commit=False, autoflush=False)
    return _sessions


async def reset_engine() -> None:
    """Закрывает пул; следующий get_engine() соберёт движок заново (shutdown, тесты)."""
    global _engine, _sessions
    engine, _engine, _sessions = _engine, None, None
    if engine is not None:
        await engine.dispose()
        logger.info("DB engine disposed")


# -----------------------------------------------------------------------------
# Выдача сессий
# -----------------------------------------------------------------------------
@asynccontextmanager
async def lifespan_session() -> AsyncIterator[AsyncSession]:
    """
    Сессия вне HTTP-запроса (планировщик, скрипты):

        async with lifespan_session() as db:
            await poll_pending_transactions(db)

    commit делают сервисы (ledger_service.run_atomic); здесь только откат
    незавершённой работы и закрытие.
    """
    async with get_session_factory()() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


async def get_db() -> AsyncIterator[AsyncSession]:
    """Зависимость FastAPI: одна сессия на запрос."""
    async with lifespan_session() as session:
        yield session


# -----------------------------------------------------------------------------
# Health-check / ping
# -----------------------------------------------------------------------------
async def db_ping() -> bool:
    """SELECT 1 для /health; недоступная БД даёт False, не исключение."""
    try:
        async with get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
    except (OperationalError, DBAPIError, RuntimeError) as exc:
        logger.error("DB ping failed", extra={"error": str(exc)})
        return False
    return True


__all__ = [
    "AsyncSession",
    "AsyncEngine",
    "Base",
    "SCHEMA",
    "table_args",
    "fk",
    "sql_in",
    "JSONDict",
    "get_engine",
    "get_session_factory",
    "get_db",
    "lifespan_session",
    "db_ping",
    "reset_engine",
]
