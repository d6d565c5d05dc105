# -*- coding: utf-8 -*-
# bichobet/app/models/accounts_models.py
# =============================================================================
# Назначение кода:
#   ORM-модели домена «Аккаунты и бонусы»:
#   • Account     - игрок с реальным (выводимым) балансом;
#   • BonusGrant  - бонусный грант (signup / first_deposit) с отыгрышем.
#
# Канон/инварианты:
#   • Деньги - Numeric(18,2); округление вниз выполняют СЕРВИСЫ.
#   • balance ≥ 0 (CHECK); остаток гранта 0 ≤ remaining ≤ amount;
#     rolled_amount ≤ rollover_target.
#   • UNIQUE(account_id, kind): бонус каждого вида - максимум один на аккаунт
#     за всю историю, независимо от статуса гранта.
#   • first_deposit_bonus_claimed - долговременный флаг, не сбрасывается никогда.
#
# Запреты:
#   • Модели НЕ выполняют денежных операций; только структура данных.
# =============================================================================

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    Boolean,
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

from ..core.database_core import Base, fk, sql_in, table_args
from ..core.utils_core import utcnow

GRANT_KINDS = ("signup", "first_deposit")
GRANT_STATUSES = ("active", "completed", "expired", "cancelled")


class Account(Base):
    """
    Игровой аккаунт.

    Поля:
      • username                     - логин (уникален).
      • password_hash                - bcrypt-хеш (passlib).
      • cpf / pix_key                - данные для PIX-выплат.
      • balance                      - реальный баланс (≥ 0), единственный
                                       выводимый баланс.
      • is_blocked                   - блокировка (ставки и вывод запрещены).
      • first_deposit_bonus_claimed  - бонус на первый депозит уже был выдан.
    """

    __tablename__ = "accounts"
    __table_args__ = table_args(
        UniqueConstraint("username", name="uq_accounts_username"),
        CheckConstraint("balance >= 0", name="balance_nonneg"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(64), nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    cpf: Mapped[Optional[str]] = mapped_column(String(14), nullable=True)
    pix_key: Mapped[Optional[str]] = mapped_column(String(140), nullable=True)

    balance: Mapped[Decimal] = mapped_column(
        Numeric(18, 2), nullable=False, default=Decimal("0.00"), server_default="0"
    )
    is_blocked: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default="false"
    )
    is_admin: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default="false"
    )
    first_deposit_bonus_claimed: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default="false"
    )

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

    def __repr__(self) -> str:
        return f"<Account id={self.id} user={self.username} balance={self.balance}>"


class BonusGrant(Base):
    """
    Бонусный грант.

    Статусы: active → completed (отыгран) | expired (истёк срок) | cancelled (админ).
    Нефинальный только active; завершённые гранты сервисы не трогают.
    """

    __tablename__ = "bonus_grants"
    __table_args__ = table_args(
        UniqueConstraint("account_id", "kind", name="uq_bonus_grants_account_kind"),
        CheckConstraint(sql_in("kind", GRANT_KINDS), name="kind_enum"),
        CheckConstraint(sql_in("status", GRANT_STATUSES), name="status_enum"),
        CheckConstraint("amount >= 0", name="amount_nonneg"),
        CheckConstraint("remaining_amount >= 0", name="remaining_nonneg"),
        CheckConstraint("remaining_amount <= amount", name="remaining_le_amount"),
        CheckConstraint("rolled_amount <= rollover_target", name="rolled_le_target"),
        Index("ix_bonus_grants_account_status", "account_id", "status"),
        Index("ix_bonus_grants_status_expires", "status", "expires_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(
        Integer, fk("accounts.id", ondelete="CASCADE"), nullable=False
    )
    kind: Mapped[str] = mapped_column(String(16), nullable=False)

    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    remaining_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    rollover_target: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    rolled_amount: Mapped[Decimal] = mapped_column(
        Numeric(18, 2), nullable=False, default=Decimal("0.00"), server_default="0"
    )

    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default="active", server_default="active"
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    source_transaction_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now()
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return (
            f"<BonusGrant id={self.id} acc={self.account_id} {self.kind} {self.status} "
            f"rem={self.remaining_amount} rolled={self.rolled_amount}/{self.rollover_target}>"
        )


__all__ = ["Account", "BonusGrant", "GRANT_KINDS", "GRANT_STATUSES"]
