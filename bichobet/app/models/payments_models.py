# -*- coding: utf-8 -*-
# bichobet/app/models/payments_models.py
# =============================================================================
# Назначение кода:
#   ORM-модель платёжных транзакций (депозиты и выводы через PIX-шлюзы).
#
# Канон/инварианты:
#   • Статусы: pending → processing → completed | failed. completed/failed -
#     терминальные и неизменяемые.
#   • Переход в терминальный статус - только атомарный UPDATE ... WHERE status
#     IN ('pending','processing') в сервисе; модель лишь хранит факт.
#   • (gateway, external_id) уникальны - вебхук однозначно находит транзакцию.
#   • meta хранит apply_bonus (опт-ин бонуса на первый депозит), pix_key и
#     последний ответ шлюза.
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

TX_DIRECTIONS = ("deposit", "withdrawal")
TX_STATUSES = ("pending", "processing", "completed", "failed")
TX_OPEN_STATUSES = ("pending", "processing")
TX_FINAL_STATUSES = ("completed", "failed")
GATEWAYS = ("ezzebank", "pushinpay")


class PaymentTransaction(Base):
    """Транзакция шлюза: депозит (PIX cash-in) или вывод (PIX cash-out)."""

    __tablename__ = "payment_transactions"
    __table_args__ = table_args(
        UniqueConstraint("gateway", "external_id", name="uq_payment_tx_gateway_external"),
        UniqueConstraint("idempotency_key", name="uq_payment_tx_idem_key"),
        CheckConstraint(sql_in("direction", TX_DIRECTIONS), name="direction_enum"),
        CheckConstraint(sql_in("status", TX_STATUSES), name="status_enum"),
        CheckConstraint(sql_in("gateway", GATEWAYS), name="gateway_enum"),
        CheckConstraint("amount > 0", name="amount_pos"),
        Index("ix_payment_tx_status_created", "status", "created_at"),
        Index("ix_payment_tx_account_created", "account_id", "created_at", "id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(Integer, fk("accounts.id"), nullable=False)
    gateway: Mapped[str] = mapped_column(String(16), nullable=False)
    external_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    direction: Mapped[str] = mapped_column(String(16), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default="pending", server_default="pending"
    )
    meta: Mapped[Dict[str, Any]] = mapped_column(JSONDict, nullable=False, default=dict)
    failure_reason: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    idempotency_key: Mapped[Optional[str]] = mapped_column(String(160), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
        server_default=func.now(),
    )
    finalized_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    @property
    def is_final(self) -> bool:
        return self.status in TX_FINAL_STATUSES

    def __repr__(self) -> str:
        return (
            f"<PaymentTransaction id={self.id} {self.direction} {self.amount} "
            f"{self.gateway}:{self.external_id} {self.status}>"
        )


__all__ = [
    "PaymentTransaction",
    "TX_DIRECTIONS",
    "TX_STATUSES",
    "TX_OPEN_STATUSES",
    "TX_FINAL_STATUSES",
    "GATEWAYS",
]
