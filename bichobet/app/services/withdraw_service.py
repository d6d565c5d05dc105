# -*- coding: utf-8 -*-
# bichobet/app/services/withdraw_service.py
# =============================================================================
# Назначение кода:
#   Выводы PIX: заявка игрока (удержание суммы сразу), одобрение админом
#   (проверка баланса шлюза → отправка выплаты → processing), отклонение
#   (failed + возврат через охраняемый переход).
#
# Канон/инварианты:
#   • Заявка и удержание withdraw:<tx_id>:hold - одна атомарная транзакция.
#   • Баланс шлюза запрашивается до любых блокировок БД.
#   • Перед выплатой заявка «захватывается» CAS pending → processing: два
#     одновременных одобрения не отправят две выплаты.
#   • Отказ шлюза (4xx, GatewayError.rejected) → заявка возвращается в pending.
#     Неясный исход (таймаут, 5xx) → заявка остаётся processing, её разрешает
#     сверка по ссылке wd-<tx_id>; повторное одобрение выплату не отправит.
#   • Отклонение админом - только из pending: processing уже ушёл в шлюз.
#
# Запреты:
#   • Выплаты только через шлюзы, поддерживающие cash-out (EzzeBank).
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from bichobet.app.core.config_core import get_settings
from bichobet.app.core.errors_core import (
    ForbiddenError,
    GatewayError,
    InsufficientRealBalance,
    TransactionFinalized,
    ValidationError,
    WithdrawalError,
)
from bichobet.app.core.logging_core import get_logger
from bichobet.app.core.utils_core import d2, utcnow
from bichobet.app.integrations.payment_gateways import get_gateway
from bichobet.app.models.payments_models import TX_FINAL_STATUSES, PaymentTransaction
from bichobet.app.services.ledger_service import debit_real, lock_account, run_atomic
from bichobet.app.services.payments_service import (
    RESULT_ALREADY_FINAL,
    RESULT_STILL_PENDING,
    TRIGGER_ADMIN,
    ReconcileResult,
    fail_transaction,
    get_transaction,
    mark_processing,
    payout_reference,
)

logger = get_logger(__name__)

PAYOUT_GATEWAYS = ("ezzebank",)


@dataclass(frozen=True)
class WithdrawalRequest:
    transaction: PaymentTransaction
    replayed: bool = False


async def _find_by_key(db: AsyncSession, key: str) -> Optional[PaymentTransaction]:
    stmt = (
        select(PaymentTransaction)
        .where(PaymentTransaction.idempotency_key == key)
        .execution_options(populate_existing=True)
    )
    return (await db.execute(stmt)).scalar_one_or_none()


async def request_withdrawal(
    db: AsyncSession,
    *,
    account_id: int,
    amount: Any,
    pix_key: Optional[str] = None,
    idempotency_key: Optional[str] = None,
    gateway: Optional[str] = None,
) -> WithdrawalRequest:
    """Заявка на вывод: сумма удерживается с реального баланса сразу."""
    s = get_settings()
    value = d2(amount)
    min_amount = d2(s.WITHDRAW_MIN_AMOUNT)
    if value < min_amount:
        raise WithdrawalError(
            "Withdrawal amount is below the minimum.",
            details={"amount": str(value), "min_amount": str(min_amount)},
        )
    gateway_name = (gateway or PAYOUT_GATEWAYS[0]).strip().lower()
    if gateway_name not in PAYOUT_GATEWAYS:
        raise WithdrawalError("Gateway does not support PIX payouts.", details={"gateway": gateway_name})

    tx_key = f"withdraw:{account_id}:{idempotency_key.strip()}" if (idempotency_key or "").strip() else None

    async def _work() -> WithdrawalRequest:
        account = await lock_account(db, account_id)
        if tx_key is not None:
            existing = await _find_by_key(db, tx_key)
            if existing is not None:
                return WithdrawalRequest(transaction=existing, replayed=True)
        if account.is_blocked:
            raise ForbiddenError("Account is blocked.", details={"account_id": account.id})
        target_key = (pix_key or account.pix_key or "").strip()
        if not target_key:
            raise WithdrawalError("PIX key is required for withdrawals.", details={"account_id": account.id})
        if d2(account.balance) < value:
            raise InsufficientRealBalance(current_balance=d2(account.balance), required_amount=value)

        tx = PaymentTransaction(
            account_id=account.id,
            gateway=gateway_name,
            direction="withdrawal",
            amount=value,
            status="pending",
            meta={"pix_key": target_key},
            idempotency_key=tx_key,
        )
        db.add(tx)
        await db.flush()
        await debit_real(
            db,
            account,
            value,
            reason="withdrawal_hold",
            idempotency_key=f"withdraw:{tx.id}:hold",
            meta={"transaction_id": tx.id},
        )
        return WithdrawalRequest(transaction=tx)

    async def _replay() -> Optional[WithdrawalRequest]:
        existing = await _find_by_key(db, tx_key) if tx_key else None
        return WithdrawalRequest(transaction=existing, replayed=True) if existing is not None else None

    result = await run_atomic(db, _work, op="withdraw_request", replay=_replay)
    if not result.replayed:
        logger.info(
            "Withdrawal requested",
            extra={"transaction_id": result.transaction.id, "account_id": account_id, "amount": str(value)},
        )
    return result


async def _claim(db: AsyncSession, tx_id: int, *, from_status: str, to_status: str, **values: Any) -> bool:
    async def _work() -> bool:
        res = await db.execute(
            update(PaymentTransaction)
            .where(PaymentTransaction.id == tx_id, PaymentTransaction.status == from_status)
            .values(status=to_status, updated_at=utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        return res.rowcount == 1

    return await run_atomic(db, _work, op=f"withdraw_{to_status}")


async def approve_withdrawal(db: AsyncSession, tx_id: int) -> PaymentTransaction:
    """
    Одобрение админом. Недостаточно средств на счёте шлюза → WithdrawalError
    с available/required, заявка остаётся pending.
    """
    tx = await get_transaction(db, tx_id)
    if tx.direction != "withdrawal":
        raise ValidationError("Transaction is not a withdrawal.", details={"transaction_id": tx_id})
    if tx.status in TX_FINAL_STATUSES:
        raise TransactionFinalized(transaction_id=int(tx_id), tx_status=tx.status)
    if tx.status != "pending":
        raise WithdrawalError("Withdrawal is already being processed.", details={"transaction_id": tx_id})
    amount = d2(tx.amount)
    gateway_name = str(tx.gateway)
    pix_key = str((tx.meta or {}).get("pix_key") or "")
    await db.commit()

    client = get_gateway(gateway_name)
    available = d2(await client.get_available_balance())
    if available < amount:
        logger.warning(
            "Withdrawal approval blocked: gateway balance too low",
            extra={"transaction_id": tx_id, "available": str(available), "required": str(amount)},
        )
        raise WithdrawalError(
            "Insufficient gateway balance for this withdrawal.",
            details={"transaction_id": tx_id, "available": str(available), "required": str(amount)},
        )

    if not await mark_processing(db, int(tx_id)):
        current = await get_transaction(db, tx_id)
        if current.status in TX_FINAL_STATUSES:
            raise TransactionFinalized(transaction_id=int(tx_id), tx_status=current.status)
        raise WithdrawalError("Withdrawal is already being processed.", details={"transaction_id": tx_id})

    s = get_settings()
    try:
        payout = await client.create_pix_payout(
            amount=amount,
            pix_key=pix_key,
            reference=payout_reference(int(tx_id)),
            webhook_url=s.webhook_url(gateway_name),
        )
    except GatewayError as exc:
        if exc.rejected:
            await _claim(db, int(tx_id), from_status="processing", to_status="pending")
            logger.warning("Withdrawal payout rejected by gateway", extra={"transaction_id": tx_id})
        else:
            logger.warning(
                "Withdrawal payout outcome unknown; left processing for reconciliation",
                extra={"transaction_id": tx_id, "reference": payout_reference(int(tx_id))},
            )
        raise

    async def _attach() -> PaymentTransaction:
        await db.execute(
            update(PaymentTransaction)
            .where(PaymentTransaction.id == int(tx_id), PaymentTransaction.external_id.is_(None))
            .values(external_id=payout.external_id, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return await get_transaction(db, tx_id)

    tx = await run_atomic(db, _attach, op="withdraw_attach")
    logger.info(
        "Withdrawal approved",
        extra={"transaction_id": tx_id, "external_id": payout.external_id, "amount": str(amount)},
    )
    return tx


async def reject_withdrawal(db: AsyncSession, tx_id: int, *, reason: Optional[str] = None) -> ReconcileResult:
    """
    Отклонение админом: failed + возврат удержанной суммы. Только из pending:
    заявку в processing закрывает вебхук или сверка со шлюзом.
    """
    tx = await get_transaction(db, tx_id)
    if tx.direction != "withdrawal":
        raise ValidationError("Transaction is not a withdrawal.", details={"transaction_id": tx_id})
    await db.commit()
    result = await fail_transaction(
        db,
        int(tx_id),
        trigger=TRIGGER_ADMIN,
        reason=reason or "rejected_by_admin",
        from_statuses=("pending",),
    )
    if result.outcome == RESULT_ALREADY_FINAL:
        raise TransactionFinalized(transaction_id=int(tx_id), tx_status=result.status or "unknown")
    if result.outcome == RESULT_STILL_PENDING:
        raise WithdrawalError(
            "Withdrawal payout is already in flight and cannot be rejected.",
            details={"transaction_id": tx_id, "status": result.status},
        )
    return result


__all__ = [
    "PAYOUT_GATEWAYS",
    "WithdrawalRequest",
    "request_withdrawal",
    "approve_withdrawal",
    "reject_withdrawal",
]
