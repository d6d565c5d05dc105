# -*- coding: utf-8 -*-
# bichobet/app/models/ledger_models.py
# =============================================================================
# Назначение кода:
#   ORM-модель денежного журнала: каждая запись - одно движение по реальному
#   или бонусному балансу аккаунта.
#
# Канон/инварианты:
#   • Идемпотентность на уровне БД: idempotency_key UNIQUE (read-through replay).
#   • Σ(credit) − Σ(debit) по balance_type='real' = accounts.balance.
#   • Σ(credit) − Σ(debit) по balance_type='bonus' = Σ remaining_amount грантов.
#   • amount > 0; направление задаётся direction.
#
# Запреты:
#   • Никакой бизнес-логики - только хранение факта.
# =============================================================================

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from ..core.database_core import Base, JSONDict, fk, sql_in, table_args
from ..core.utils_core import utcnow

LEDGER_DIRECTIONS = ("credit", "debit")
BALANCE_TYPES = ("real", "bonus")


class LedgerEntry(Base):
    """
    Запись журнала.

      • reason          - 'deposit', 'wager', 'settlement', 'withdrawal_hold',
                          'withdrawal_refund', 'bonus_grant', 'bonus_release',
                          'bonus_expire', 'bonus_cancel'.
      • balance_after   - реальный баланс после операции (для real) или
                          бонусный после операции (для bonus).
      • meta            - wager_id, tx_id, grant_id и разбивка бонусного списания.
    """

    __tablename__ = "ledger_entries"
    __table_args__ = table_args(
        UniqueConstraint("idempotency_key", name="uq_ledger_idem_key"),
        CheckConstraint("amount > 0", name="amount_pos"),
        CheckConstraint(sql_in("direction", LEDGER_DIRECTIONS), name="direction_enum"),
        CheckConstraint(sql_in("balance_type", BALANCE_TYPES), name="balance_type_enum"),
        Index("ix_ledger_account_created", "account_id", "created_at", "id"),
        Index("ix_ledger_reason_created", "reason", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(Integer, fk("accounts.id"), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    direction: Mapped[str] = mapped_column(String(8), nullable=False)
    balance_type: Mapped[str] = mapped_column(String(8), nullable=False)
    reason: Mapped[str] = mapped_column(String(32), nullable=False)
    idempotency_key: Mapped[str] = mapped_column(String(200), nullable=False)
    balance_after: Mapped[Optional[Decimal]] = mapped_column(Numeric(18, 2), nullable=True)
    meta: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSONDict, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now()
    )

    def __repr__(self) -> str:
        return (
            f"<LedgerEntry id={self.id} acc={self.account_id} {self.direction} "
            f"{self.amount} {self.balance_type} {self.reason}>"
        )


__all__ = ["LedgerEntry", "LEDGER_DIRECTIONS", "BALANCE_TYPES"]
