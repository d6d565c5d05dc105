# -*- coding: utf-8 -*-
# bichobet/app/deps.py
# =============================================================================
# Bicho Bet - зависимости FastAPI, общие для всех роутеров:
#   сессия БД, аккаунт из JWT, админ-допуск, Idempotency-Key и keyset-страницы
#   для истории ставок и платежей.
#
# Канон:
#   • История отдаётся от новых к старым, курсор = (created_at, id) последней
#     строки страницы; offset-пагинации нет.
#   • Бизнес-логики здесь нет.
# =============================================================================
from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional, Sequence, Tuple

from fastapi import HTTPException, Query, status

from bichobet.app.core.database_core import get_db
from bichobet.app.core.security_core import get_current_account_id, require_admin
from bichobet.app.core.system_locks import require_idempotency_key
from bichobet.app.core.utils_core import as_utc


def encode_cursor(created_at: datetime, row_id: int) -> str:
    raw = f"{as_utc(created_at).isoformat()}|{int(row_id)}"
    return base64.urlsafe_b64encode(raw.encode("utf-8")).decode("ascii").rstrip("=")


def decode_cursor(cursor: str) -> Tuple[datetime, int]:
    """Обратное к encode_cursor; мусор → 400 Invalid cursor."""
    padded = cursor + "=" * (-len(cursor) % 4)
    try:
        created_raw, id_raw = base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8").split("|", 1)
        return as_utc(datetime.fromisoformat(created_raw)), int(id_raw)
    except (ValueError, UnicodeError, binascii.Error):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid cursor")


@dataclass(frozen=True)
class PageParams:
    limit: int
    cursor_ts: Optional[datetime] = None
    cursor_id: Optional[int] = None

    def next_cursor(self, rows: Sequence[Any]) -> Optional[str]:
        """Курсор следующей страницы, если текущая заполнена целиком."""
        if len(rows) < self.limit or not rows:
            return None
        return encode_cursor(rows[-1].created_at, rows[-1].id)


async def pagination_params(
    cursor: Optional[str] = Query(None, description="Opaque cursor from the previous page"),
    limit: int = Query(50, ge=1, le=200),
) -> PageParams:
    if not cursor:
        return PageParams(limit=limit)
    ts, row_id = decode_cursor(cursor)
    return PageParams(limit=limit, cursor_ts=ts, cursor_id=row_id)


__all__ = [
    "get_db",
    "get_current_account_id",
    "require_admin",
    "require_idempotency_key",
    "encode_cursor",
    "decode_cursor",
    "PageParams",
    "pagination_params",
]
