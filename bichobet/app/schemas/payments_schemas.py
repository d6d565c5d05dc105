# -*- coding: utf-8 -*-
# bichobet/app/schemas/payments_schemas.py
# =============================================================================
# Назначение кода:
# DTO депозитов, выводов и сверки статусов платёжных транзакций.
# =============================================================================

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field

from bichobet.app.core.utils_core import money_str
from bichobet.app.schemas.common_schemas import MoneyIn, iso


class DepositIn(MoneyIn):
    gateway: Optional[str] = Field(None, description="ezzebank | pushinpay (по умолчанию из настроек)")
    apply_bonus: bool = Field(False, description="Запросить бонус первого депозита")


class WithdrawalIn(MoneyIn):
    pix_key: Optional[str] = Field(None, max_length=140, description="PIX-ключ (иначе ключ из профиля)")


class RejectIn(BaseModel):
    reason: Optional[str] = Field(None, max_length=255)


class TransactionOut(BaseModel):
    id: int
    gateway: str
    external_id: Optional[str]
    direction: str
    amount: str
    status: str
    failure_reason: Optional[str] = None
    created_at: Optional[str] = None
    finalized_at: Optional[str] = None

    @classmethod
    def from_model(cls, tx) -> "TransactionOut":
        return cls(
            id=tx.id,
            gateway=tx.gateway,
            external_id=tx.external_id,
            direction=tx.direction,
            amount=money_str(tx.amount),
            status=tx.status,
            failure_reason=tx.failure_reason,
            created_at=iso(tx.created_at),
            finalized_at=iso(tx.finalized_at),
        )


class DepositOut(BaseModel):
    transaction: TransactionOut
    pix_copy_paste: Optional[str] = Field(None, description="PIX «copia e cola»")
    pix_qr_code_base64: Optional[str] = Field(None, description="QR-код (base64)")
    replayed: bool = False


class StatusCheckOut(BaseModel):
    transaction_id: Optional[int]
    outcome: str = Field(..., description="completed | failed | still_pending | already_final | ignored")
    status: Optional[str] = None


__all__ = [
    "DepositIn",
    "WithdrawalIn",
    "RejectIn",
    "TransactionOut",
    "DepositOut",
    "StatusCheckOut",
]
