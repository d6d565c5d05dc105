# -*- coding: utf-8 -*-
# bichobet/app/routes/accounts_routes.py
# =============================================================================
# Назначение кода:
#   • Регистрация (с бонусом за регистрацию), вход (JWT), профиль /me с
#     реальным и бонусным балансом.
#
# Запреты:
#   • Роуты не меняют балансы напрямую - только через сервисы.
# =============================================================================

from __future__ import annotations

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from bichobet.app.core.logging_core import get_logger
from bichobet.app.deps import get_current_account_id, get_db
from bichobet.app.schemas.accounts_schemas import AccountOut, LoginIn, RegisterIn, TokenOut
from bichobet.app.services.accounts_service import authenticate, get_account_snapshot, register_account

logger = get_logger(__name__)
router = APIRouter(prefix="/accounts", tags=["accounts"])


@router.post("/register", response_model=AccountOut, status_code=status.HTTP_201_CREATED)
async def post_register(body: RegisterIn, db: AsyncSession = Depends(get_db)) -> AccountOut:
    account = await register_account(
        db,
        username=body.username,
        password=body.password,
        cpf=body.cpf,
        pix_key=body.pix_key,
    )
    return AccountOut.from_snapshot(await get_account_snapshot(db, account.id))


@router.post("/login", response_model=TokenOut)
async def post_login(body: LoginIn, db: AsyncSession = Depends(get_db)) -> TokenOut:
    token = await authenticate(db, username=body.username, password=body.password)
    return TokenOut(access_token=token)


@router.get("/me", response_model=AccountOut)
async def get_me(
    account_id: int = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_db),
) -> AccountOut:
    """Реальный баланс, тратимый бонус и активные гранты с прогрессом отыгрыша."""
    return AccountOut.from_snapshot(await get_account_snapshot(db, account_id))


__all__ = ["router"]
