# ============================================================================
# Bicho Bet - scheduler.expire_bonuses
# -----------------------------------------------------------------------------
# Назначение: периодическая уборка активных бонус-грантов с истёкшим сроком:
# статус expired, остаток списывается в журнал (bonus_expire:<grant_id>).
#
# Канон/инварианты:
#   • Ставки и так не тратят просроченный бонус (проверка при приёме);
#     уборка приводит статусы и журнал в порядок для /accounts/me.
#   • Один аккаунт - одна короткая транзакция (bonus_service).
# ============================================================================
from __future__ import annotations

import asyncio
from random import randint
from typing import Awaitable, Callable, Optional

from ..core.config_core import get_settings
from ..core.database_core import lifespan_session
from ..core.logging_core import get_logger, job_context
from ..services.bonus_service import expire_stale_grants
from .advisory_lock import advisory_lock

logger = get_logger(__name__)

_LOCK_KEY = 84_302


async def _run_once_guarded() -> Optional[int]:
    with job_context("expire_bonuses"):
        async with advisory_lock(_LOCK_KEY) as acquired:
            if not acquired:
                logger.info("bonus expiry tick skipped: lock held")
                return None
            try:
                async with lifespan_session() as session:
                    expired = await expire_stale_grants(session)
            except Exception as exc:  # noqa: BLE001 - фиксируем, но не падаем
                logger.exception("bonus expiry tick failed", extra={"error": str(exc)})
                return None
            if expired:
                logger.info("bonus expiry tick finished", extra={"expired": expired})
            return expired


async def _run_forever(sleeper: Callable[[float], Awaitable[None]] = asyncio.sleep) -> None:
    base_sleep = int(get_settings().BONUS_EXPIRY_INTERVAL_SEC)
    while True:
        await _run_once_guarded()
        jitter = randint(-15, 15)
        await sleeper(max(1, base_sleep + jitter))


def run_forever() -> None:
    asyncio.run(_run_forever())


if __name__ == "__main__":
    run_forever()
