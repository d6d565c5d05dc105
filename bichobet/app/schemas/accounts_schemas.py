# -*- coding: utf-8 -*-
# bichobet/app/schemas/accounts_schemas.py
# =============================================================================
# Назначение кода:
# DTO аккаунта: регистрация, вход, снимок балансов и бонус-грантов.
# Суммы наружу - строки с 2 знаками.
# =============================================================================

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field

from bichobet.app.core.utils_core import money_str
from bichobet.app.schemas.common_schemas import iso


class RegisterIn(BaseModel):
    username: str = Field(..., min_length=3, max_length=64)
    password: str = Field(..., min_length=6, max_length=128)
    cpf: Optional[str] = Field(None, max_length=14, description="CPF, 11 цифр (маска допускается)")
    pix_key: Optional[str] = Field(None, max_length=140, description="PIX-ключ для выводов")


class LoginIn(BaseModel):
    username: str
    password: str


class TokenOut(BaseModel):
    access_token: str
    token_type: str = "bearer"


class BonusGrantOut(BaseModel):
    id: int
    kind: str
    amount: str
    remaining_amount: str
    rollover_target: str
    rolled_amount: str
    status: str
    expires_at: Optional[str]

    @classmethod
    def from_model(cls, grant) -> "BonusGrantOut":
        return cls(
            id=grant.id,
            kind=grant.kind,
            amount=money_str(grant.amount),
            remaining_amount=money_str(grant.remaining_amount),
            rollover_target=money_str(grant.rollover_target),
            rolled_amount=money_str(grant.rolled_amount),
            status=grant.status,
            expires_at=iso(grant.expires_at),
        )


class AccountOut(BaseModel):
    id: int
    username: str
    balance: str = Field(..., description="Реальный баланс (выводимый)")
    bonus_balance: str = Field(..., description="Сумма остатков активных бонусов")
    pix_key: Optional[str] = None
    grants: List[BonusGrantOut] = Field(default_factory=list)

    @classmethod
    def from_snapshot(cls, snap) -> "AccountOut":
        return cls(
            id=snap.account.id,
            username=snap.account.username,
            balance=money_str(snap.balance),
            bonus_balance=money_str(snap.bonus_balance),
            pix_key=snap.account.pix_key,
            grants=[BonusGrantOut.from_model(g) for g in snap.grants],
        )


__all__ = ["RegisterIn", "LoginIn", "TokenOut", "BonusGrantOut", "AccountOut"]
