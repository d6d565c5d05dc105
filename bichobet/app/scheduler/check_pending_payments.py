# ============================================================================
# Bicho Bet - scheduler.check_pending_payments
# -----------------------------------------------------------------------------
# Назначение: вечный опрос «зависших» транзакций шлюзов (депозиты и выводы
# в pending/processing старше PAYMENT_POLL_MIN_AGE_SEC) с advisory-локом и
# делегированием логики в payments_service.
#
# Канон/инварианты:
#   • Опрос - третий триггер завершения наряду с вебхуком и ручной проверкой;
#     все три сходятся в одном охраняемом переходе статуса.
#   • Ошибка шлюза оставляет транзакцию в прежнем статусе.
#
# ИИ-защиты/самовосстановление:
#   • _run_once_guarded ловит любые исключения тика, не валя цикл.
#   • _run_forever добавляет джиттер к паузе между тиками.
#   • Advisory-лок исключает параллельный дубль в кластере.
# ============================================================================
from __future__ import annotations

import asyncio
from random import randint
from typing import Awaitable, Callable, Dict, Optional

from ..core.config_core import get_settings
from ..core.database_core import lifespan_session
from ..core.logging_core import get_logger, job_context
from ..services.payments_service import poll_pending_transactions
from .advisory_lock import advisory_lock

logger = get_logger(__name__)

_LOCK_KEY = 84_301


async def _run_once_guarded() -> Optional[Dict[str, int]]:
    """Один тик: опрос шлюзов по открытым транзакциям, не падая при ошибках."""

    with job_context("poll_payments"):
        async with advisory_lock(_LOCK_KEY) as acquired:
            if not acquired:
                logger.info("pending payments tick skipped: lock held")
                return None
            try:
                async with lifespan_session() as session:
                    return await poll_pending_transactions(session)
            except Exception as exc:  # noqa: BLE001 - фиксируем, но не падаем
                logger.exception("pending payments tick failed", extra={"error": str(exc)})
                return None


async def _run_forever(sleeper: Callable[[float], Awaitable[None]] = asyncio.sleep) -> None:
    base_sleep = int(get_settings().PAYMENT_POLL_INTERVAL_SEC)
    while True:
        await _run_once_guarded()
        jitter = randint(-10, 10)
        await sleeper(max(1, base_sleep + jitter))


def run_forever() -> None:
    asyncio.run(_run_forever())


if __name__ == "__main__":
    run_forever()

# ============================================================================
# Пояснения «для чайника»:
#   • Если вебхук шлюза потерялся, депозит всё равно зачислится: этот цикл
#     спросит у шлюза статус и проведёт транзакцию через тот же охраняемый
#     переход, что и вебхук.
#   • Двойного зачисления не будет: второй сигнал получит already_final.
# ============================================================================
