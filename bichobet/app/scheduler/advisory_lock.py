# ============================================================================
# Bicho Bet - scheduler.advisory_lock
# -----------------------------------------------------------------------------
# Назначение: общий advisory-лок для фоновых воркеров, чтобы в кластере тик
# выполнял ровно один процесс.
#
# Канон/инварианты:
#   • Лок держится отдельной сессией (своё соединение) на всё время тика;
#     рабочая сессия тика коммитит независимо.
#   • Вне PostgreSQL (SQLite в тестах) лок не нужен - тик выполняется всегда.
# ============================================================================
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy import text

from ..core.database_core import lifespan_session
from ..core.logging_core import get_logger

logger = get_logger(__name__)


def _is_postgres(session) -> bool:
    bind = session.get_bind()
    return bind.dialect.name == "postgresql"


@asynccontextmanager
async def advisory_lock(key: int) -> AsyncIterator[bool]:
    """
    async with advisory_lock(84_301) as acquired:
        if acquired: ...тик...
    """
    async with lifespan_session() as lock_session:
        if not _is_postgres(lock_session):
            yield True
            return
        result = await lock_session.execute(text("SELECT pg_try_advisory_lock(:k)").bindparams(k=key))
        acquired = bool(result.scalar_one())
        try:
            yield acquired
        finally:
            if acquired:
                await lock_session.execute(text("SELECT pg_advisory_unlock(:k)").bindparams(k=key))
            await lock_session.rollback()


__all__ = ["advisory_lock"]
