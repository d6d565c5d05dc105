# ==============================================================================
# Bicho Bet - FastAPI application factory
# ------------------------------------------------------------------------------
# Назначение: создаёт и конфигурирует FastAPI-приложение, подключает
# обязательные middleware, обработчики ошибок и роутеры всех разделов.
#
# Канон/инварианты:
#   • Согласованность лимитов ставок проверяется до создания приложения
#     (init_system_locks → assert_bet_limits_consistent).
#   • Денежные POST/PUT требуют Idempotency-Key (MonetaryIdempotencyMiddleware
#     + проверки на маршрутах).
#   • Балансы меняют только сервисы через ledger_service; этот модуль не
#     совершает финансовых операций.
#
# ИИ-защиты/самовосстановление:
#   • create_app() можно вызывать несколько раз без изменения состояния.
#   • При завершении процесса пул соединений БД закрывается (reset_engine).
#
# Запреты:
#   • Не запускает планировщики - только HTTP-API.
#   • Не создаёт таблицы: схема БД - только миграции Alembic.
# ==============================================================================
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .core.config_core import get_settings
from .core.database_core import db_ping, reset_engine
from .core.errors_core import setup_exception_handlers
from .core.logging_core import CorrelationIdMiddleware, get_logger
from .core.system_locks import init_system_locks
from .routes import register

logger = get_logger(__name__)


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    yield
    await reset_engine()


def create_app() -> FastAPI:
    """Создать FastAPI-приложение с каноническими middleware и роутерами."""

    settings = get_settings()
    app = FastAPI(title=settings.PROJECT_NAME, version=settings.APP_VERSION, lifespan=_lifespan)

    init_system_locks(app)
    origins = settings.effective_cors_origins()
    if origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )
    app.add_middleware(CorrelationIdMiddleware)
    setup_exception_handlers(app)

    register(app, prefix=settings.API_PREFIX)

    @app.get("/health", tags=["health"])
    async def health() -> Dict[str, str]:
        """Живость сервиса и доступность БД (SELECT 1)."""

        db_ok = await db_ping()
        return {"status": "ok" if db_ok else "degraded", "db": "ok" if db_ok else "down"}

    logger.info("FastAPI app initialised", extra={"api_prefix": settings.API_PREFIX})
    return app


# ==============================================================================
# Пояснения «для чайника»:
#   • Этот модуль ничего не пишет в БД и не двигает деньги - только конфигурирует API.
#   • Idempotency-Key проверяется middleware + зависимость на денежных маршрутах.
#   • Планировщики запускаются отдельными процессами (bichobet/app/scheduler).
# ==============================================================================
