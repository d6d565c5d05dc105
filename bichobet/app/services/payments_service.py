# -*- coding: utf-8 -*-
# bichobet/app/services/payments_service.py
# =============================================================================
# Назначение кода:
#   Депозиты PIX и сверка статусов транзакций шлюзов. Три независимых триггера
#   (вебхук, ручная проверка игроком, фоновый опрос) сходятся в одном
#   охраняемом переходе статуса, поэтому деньги зачисляются ровно один раз.
#
# Канон/инварианты:
#   • pending → processing → completed | failed; финальные статусы не меняются.
#   • Охрана перехода - один UPDATE ... WHERE id=:id AND status IN
#     ('pending','processing') с проверкой rowcount, в той же транзакции, что
#     и кредит депозита (deposit:<tx_id>) или возврат вывода
#     (withdraw:<tx_id>:refund).
#   • Бонус первого депозита - в той же транзакции, что и зачисление депозита.
#   • Ошибка шлюза при проверке статуса → статус не меняется, исход still_pending.
#   • Вебхук без валидной подписи не обрабатывается вовсе.
#   • Вывод в processing без id шлюза ищется у шлюза по ссылке wd-<tx_id>
#     (опрос и поле external_id вебхука).
#
# ИИ-защита:
#   • Сетевые вызовы шлюзов выполняются вне транзакций БД и без блокировок.
#   • Повторный сигнал завершения → already_final, без побочных эффектов.
#
# Запреты:
#   • Нет ручной правки балансов в обход ledger_service.
# =============================================================================

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import and_, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from bichobet.app.core.config_core import get_settings
from bichobet.app.core.errors_core import (
    DepositBelowMinimum,
    ForbiddenError,
    GatewayError,
    InvalidWebhookSignature,
    NotFoundError,
    ValidationError,
)
from bichobet.app.core.logging_core import get_logger
from bichobet.app.core.utils_core import as_utc, d2, utcnow
from bichobet.app.integrations.payment_gateways import (
    OUTCOME_COMPLETED,
    OUTCOME_FAILED,
    get_gateway,
    parse_webhook_event,
    verify_webhook_signature,
)
from bichobet.app.models.payments_models import GATEWAYS, TX_FINAL_STATUSES, TX_OPEN_STATUSES, PaymentTransaction
from bichobet.app.services import bonus_service
from bichobet.app.services.ledger_service import credit_real, lock_account, run_atomic

logger = get_logger(__name__)

RESULT_COMPLETED = "completed"
RESULT_FAILED = "failed"
RESULT_STILL_PENDING = "still_pending"
RESULT_ALREADY_FINAL = "already_final"
RESULT_IGNORED = "ignored"

TRIGGER_WEBHOOK = "webhook"
TRIGGER_MANUAL = "manual"
TRIGGER_POLL = "poll"
TRIGGER_ADMIN = "admin"


@dataclass(frozen=True)
class ReconcileResult:
    transaction_id: Optional[int]
    outcome: str
    status: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        return {"transaction_id": self.transaction_id, "outcome": self.outcome, "status": self.status}


@dataclass(frozen=True)
class DepositInitiation:
    transaction: PaymentTransaction
    copy_paste: Optional[str]
    qr_code_base64: Optional[str]
    replayed: bool = False


@dataclass(frozen=True)
class _TxSnapshot:
    """Плоская копия транзакции: переживает rollback сессии."""

    id: int
    account_id: int
    gateway: str
    external_id: Optional[str]
    direction: str
    status: str
    updated_at: Optional[datetime] = None


def _snapshot(tx: PaymentTransaction) -> _TxSnapshot:
    return _TxSnapshot(
        id=int(tx.id),
        account_id=int(tx.account_id),
        gateway=str(tx.gateway),
        external_id=tx.external_id,
        direction=str(tx.direction),
        status=str(tx.status),
        updated_at=as_utc(tx.updated_at),
    )


def payout_reference(tx_id: int) -> str:
    """Ссылка вывода у шлюза (external_id в запросе выплаты)."""
    return f"wd-{int(tx_id)}"


def _tx_id_from_payout_reference(reference: Any) -> Optional[int]:
    text_ref = str(reference or "")
    if not text_ref.startswith("wd-") or not text_ref[3:].isdigit():
        return None
    return int(text_ref[3:])


def normalize_gateway(gateway: Optional[str]) -> str:
    name = (gateway or get_settings().DEFAULT_PAYMENT_GATEWAY or "").strip().lower()
    if name not in GATEWAYS:
        raise ValidationError("Unknown payment gateway.", details={"gateway": gateway, "allowed": list(GATEWAYS)})
    return name


async def get_transaction(db: AsyncSession, tx_id: int) -> PaymentTransaction:
    tx = await db.get(PaymentTransaction, int(tx_id), populate_existing=True)
    if tx is None:
        raise NotFoundError("Transaction not found.", details={"transaction_id": tx_id})
    return tx


async def _find_by_key(db: AsyncSession, key: str) -> Optional[PaymentTransaction]:
    stmt = (
        select(PaymentTransaction)
        .where(PaymentTransaction.idempotency_key == key)
        .execution_options(populate_existing=True)
    )
    return (await db.execute(stmt)).scalar_one_or_none()


async def _current_status(db: AsyncSession, tx_id: int) -> Optional[str]:
    res = await db.execute(select(PaymentTransaction.status).where(PaymentTransaction.id == int(tx_id)))
    return res.scalar_one_or_none()


async def _guarded_transition(
    db: AsyncSession,
    tx_id: int,
    *,
    to_status: str,
    from_statuses=TX_OPEN_STATUSES,
    **values: Any,
) -> bool:
    """Атомарный CAS статуса. False - транзакция уже не в from_statuses."""
    now = utcnow()
    payload: Dict[str, Any] = {"status": to_status, "updated_at": now, **values}
    if to_status in ("completed", "failed"):
        payload["finalized_at"] = now
    res = await db.execute(
        update(PaymentTransaction)
        .where(PaymentTransaction.id == int(tx_id), PaymentTransaction.status.in_(tuple(from_statuses)))
        .values(**payload)
        .execution_options(synchronize_session=False)
    )
    return res.rowcount == 1


# -----------------------------------------------------------------------------
# Депозит
# -----------------------------------------------------------------------------
async def initiate_deposit(
    db: AsyncSession,
    *,
    account_id: int,
    amount: Any,
    gateway: Optional[str] = None,
    apply_bonus: bool = False,
    idempotency_key: Optional[str] = None,
) -> DepositInitiation:
    """
    Создаёт pending-депозит и получает у шлюза PIX «copia e cola» / QR.

    Порядок: (1) запись pending + commit, (2) HTTP к шлюзу вне транзакции,
    (3) сохранение external_id. Сбой шлюза → транзакция failed, деньги не
    двигались, наружу GatewayError.
    """
    s = get_settings()
    gateway_name = normalize_gateway(gateway)
    value = d2(amount)
    min_amount = d2(s.min_deposit_for(gateway_name))
    if value < min_amount:
        raise DepositBelowMinimum(amount=value, min_amount=min_amount, gateway=gateway_name)

    tx_key = f"deposit:{account_id}:{idempotency_key.strip()}" if (idempotency_key or "").strip() else None

    async def _create() -> tuple[PaymentTransaction, bool]:
        account = await lock_account(db, account_id)
        if tx_key is not None:
            existing = await _find_by_key(db, tx_key)
            if existing is not None:
                return existing, True
        if account.is_blocked:
            raise ForbiddenError("Account is blocked.", details={"account_id": account.id})
        tx = PaymentTransaction(
            account_id=account.id,
            gateway=gateway_name,
            direction="deposit",
            amount=value,
            status="pending",
            meta={"apply_bonus": bool(apply_bonus)},
            idempotency_key=tx_key,
        )
        db.add(tx)
        await db.flush()
        return tx, False

    async def _replay() -> Optional[tuple[PaymentTransaction, bool]]:
        existing = await _find_by_key(db, tx_key) if tx_key else None
        return (existing, True) if existing is not None else None

    tx, replayed = await run_atomic(db, _create, op="deposit_create", replay=_replay)
    if replayed:
        meta = dict(tx.meta or {})
        return DepositInitiation(
            transaction=tx,
            copy_paste=meta.get("pix_copy_paste"),
            qr_code_base64=meta.get("pix_qr_code_base64"),
            replayed=True,
        )

    tx_id = int(tx.id)
    client = get_gateway(gateway_name)
    try:
        charge = await client.create_pix_charge(
            amount=value,
            reference=f"dep-{tx_id}",
            webhook_url=s.webhook_url(gateway_name),
        )
    except GatewayError:
        async def _fail() -> bool:
            return await _guarded_transition(db, tx_id, to_status="failed", failure_reason="gateway_error")

        await run_atomic(db, _fail, op="deposit_gateway_failed")
        logger.warning("Deposit charge creation failed", extra={"transaction_id": tx_id, "gateway": gateway_name})
        raise

    meta = {
        "apply_bonus": bool(apply_bonus),
        "pix_copy_paste": charge.copy_paste,
        "pix_qr_code_base64": charge.qr_code_base64,
        "pix_expires_at": charge.expires_at,
    }

    async def _attach() -> PaymentTransaction:
        await db.execute(
            update(PaymentTransaction)
            .where(PaymentTransaction.id == tx_id)
            .values(external_id=charge.external_id, meta=meta, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return await get_transaction(db, tx_id)

    tx = await run_atomic(db, _attach, op="deposit_attach")
    logger.info(
        "Deposit initiated",
        extra={
            "transaction_id": tx_id,
            "account_id": account_id,
            "gateway": gateway_name,
            "amount": str(value),
            "apply_bonus": bool(apply_bonus),
        },
    )
    return DepositInitiation(transaction=tx, copy_paste=charge.copy_paste, qr_code_base64=charge.qr_code_base64)


# -----------------------------------------------------------------------------
# Охраняемые переходы
# -----------------------------------------------------------------------------
async def complete_transaction(
    db: AsyncSession,
    tx_id: int,
    *,
    trigger: str,
    gateway_payload: Optional[Dict[str, Any]] = None,
) -> ReconcileResult:
    """
    Завершает транзакцию ровно один раз. Депозит: кредит real + бонус первого
    депозита (если запрошен и положен). Вывод: баланс не меняется (удержан
    при запросе).
    """

    async def _work() -> ReconcileResult:
        tx = await get_transaction(db, tx_id)
        account = await lock_account(db, tx.account_id)
        if not await _guarded_transition(db, tx.id, to_status="completed"):
            return ReconcileResult(int(tx_id), RESULT_ALREADY_FINAL, await _current_status(db, tx_id))

        if tx.direction == "deposit":
            await credit_real(
                db,
                account,
                d2(tx.amount),
                reason="deposit",
                idempotency_key=f"deposit:{tx.id}",
                meta={"transaction_id": tx.id, "gateway": tx.gateway, "trigger": trigger},
            )
            grant = await bonus_service.grant_first_deposit_bonus(db, account, tx)
            if grant is not None:
                logger.info(
                    "First deposit bonus granted",
                    extra={"transaction_id": tx.id, "grant_id": grant.id, "bonus": str(grant.amount)},
                )
        await db.flush()
        return ReconcileResult(int(tx_id), RESULT_COMPLETED, "completed")

    async def _replay() -> ReconcileResult:
        return ReconcileResult(int(tx_id), RESULT_ALREADY_FINAL, await _current_status(db, tx_id))

    result = await run_atomic(db, _work, op="tx_complete", replay=_replay)
    logger.info(
        "Transaction completion signal",
        extra={"transaction_id": tx_id, "trigger": trigger, "outcome": result.outcome},
    )
    if gateway_payload:
        logger.debug("Gateway payload", extra={"transaction_id": tx_id, "payload": gateway_payload})
    return result


async def fail_transaction(
    db: AsyncSession,
    tx_id: int,
    *,
    trigger: str,
    reason: Optional[str] = None,
    from_statuses: Tuple[str, ...] = TX_OPEN_STATUSES,
) -> ReconcileResult:
    """
    Переводит транзакцию в failed; для вывода возвращает удержанную сумму.
    Транзакция вне from_statuses не трогается: already_final для финальной,
    still_pending для открытой (например, вывод уже ушёл в шлюз).
    """

    async def _work() -> ReconcileResult:
        tx = await get_transaction(db, tx_id)
        account = await lock_account(db, tx.account_id)
        failure = (reason or "gateway_failed")[:255]
        if not await _guarded_transition(
            db, tx.id, to_status="failed", from_statuses=from_statuses, failure_reason=failure
        ):
            current = await _current_status(db, tx_id)
            outcome = RESULT_ALREADY_FINAL if current in TX_FINAL_STATUSES else RESULT_STILL_PENDING
            return ReconcileResult(int(tx_id), outcome, current)
        if tx.direction == "withdrawal":
            await credit_real(
                db,
                account,
                d2(tx.amount),
                reason="withdrawal_refund",
                idempotency_key=f"withdraw:{tx.id}:refund",
                meta={"transaction_id": tx.id, "trigger": trigger, "reason": failure},
            )
        await db.flush()
        return ReconcileResult(int(tx_id), RESULT_FAILED, "failed")

    async def _replay() -> ReconcileResult:
        return ReconcileResult(int(tx_id), RESULT_ALREADY_FINAL, await _current_status(db, tx_id))

    result = await run_atomic(db, _work, op="tx_fail", replay=_replay)
    logger.info(
        "Transaction failure signal",
        extra={"transaction_id": tx_id, "trigger": trigger, "outcome": result.outcome},
    )
    return result


async def mark_processing(
    db: AsyncSession,
    tx_id: int,
    *,
    external_id: Optional[str] = None,
) -> bool:
    """pending → processing. False - транзакция уже не pending."""
    values: Dict[str, Any] = {}
    if external_id is not None:
        values["external_id"] = external_id

    async def _work() -> bool:
        return await _guarded_transition(
            db, tx_id, to_status="processing", from_statuses=("pending",), **values
        )

    return await run_atomic(db, _work, op="tx_processing")


# -----------------------------------------------------------------------------
# Сверка со шлюзом (ручная и фоновая)
# -----------------------------------------------------------------------------
async def _attach_payout_id(db: AsyncSession, tx_id: int, external_id: str) -> None:
    async def _work() -> None:
        await db.execute(
            update(PaymentTransaction)
            .where(PaymentTransaction.id == int(tx_id), PaymentTransaction.external_id.is_(None))
            .values(external_id=external_id, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )

    await run_atomic(db, _work, op="withdraw_attach_by_reference")


async def _resolve_payout_by_reference(
    db: AsyncSession, snap: _TxSnapshot, *, trigger: str, now: Optional[datetime] = None
) -> ReconcileResult:
    """
    Вывод в processing без id шлюза (ответ на выплату потерян): ищем его у
    шлюза по payout_reference. Нашёлся - привязываем id и сверяем исход.
    Шлюз его не знает дольше PAYMENT_POLL_MIN_AGE_SEC - выплата не ушла,
    возвращаем в pending для повторного одобрения.
    """
    reference = payout_reference(snap.id)
    try:
        remote = await get_gateway(snap.gateway).find_payout(reference)
    except GatewayError:
        logger.warning(
            "Gateway payout lookup failed",
            extra={"transaction_id": snap.id, "gateway": snap.gateway, "trigger": trigger},
        )
        return ReconcileResult(snap.id, RESULT_STILL_PENDING, snap.status)

    if remote is None:
        age_limit = timedelta(seconds=int(get_settings().PAYMENT_POLL_MIN_AGE_SEC))
        if snap.updated_at is None or (now or utcnow()) - snap.updated_at < age_limit:
            return ReconcileResult(snap.id, RESULT_STILL_PENDING, snap.status)

        async def _revert() -> bool:
            res = await db.execute(
                update(PaymentTransaction)
                .where(
                    PaymentTransaction.id == snap.id,
                    PaymentTransaction.status == "processing",
                    PaymentTransaction.external_id.is_(None),
                )
                .values(status="pending", updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            return res.rowcount == 1

        if await run_atomic(db, _revert, op="withdraw_unknown_to_gateway"):
            logger.warning(
                "Withdrawal unknown to gateway; returned to pending",
                extra={"transaction_id": snap.id, "gateway": snap.gateway, "reference": reference},
            )
            return ReconcileResult(snap.id, RESULT_STILL_PENDING, "pending")
        return ReconcileResult(snap.id, RESULT_STILL_PENDING, await _current_status(db, snap.id))

    await _attach_payout_id(db, snap.id, remote.external_id)
    logger.info(
        "Withdrawal matched by reference",
        extra={"transaction_id": snap.id, "gateway": snap.gateway, "external_id": remote.external_id},
    )
    if remote.outcome == OUTCOME_COMPLETED:
        return await complete_transaction(db, snap.id, trigger=trigger, gateway_payload=remote.raw)
    if remote.outcome == OUTCOME_FAILED:
        return await fail_transaction(db, snap.id, trigger=trigger, reason=f"gateway_status:{remote.raw_status}")
    return ReconcileResult(snap.id, RESULT_STILL_PENDING, snap.status)


async def _resolve_with_gateway(
    db: AsyncSession, snap: _TxSnapshot, *, trigger: str, now: Optional[datetime] = None
) -> ReconcileResult:
    if snap.status not in TX_OPEN_STATUSES:
        return ReconcileResult(snap.id, RESULT_ALREADY_FINAL, snap.status)
    if not snap.external_id:
        if snap.direction == "withdrawal" and snap.status == "processing":
            return await _resolve_payout_by_reference(db, snap, trigger=trigger, now=now)
        return ReconcileResult(snap.id, RESULT_STILL_PENDING, snap.status)

    try:
        remote = await get_gateway(snap.gateway).get_status(snap.external_id, direction=snap.direction)
    except GatewayError:
        logger.warning(
            "Gateway status check failed",
            extra={"transaction_id": snap.id, "gateway": snap.gateway, "trigger": trigger},
        )
        return ReconcileResult(snap.id, RESULT_STILL_PENDING, snap.status)

    if remote.outcome == OUTCOME_COMPLETED:
        return await complete_transaction(db, snap.id, trigger=trigger, gateway_payload=remote.raw)
    if remote.outcome == OUTCOME_FAILED:
        return await fail_transaction(db, snap.id, trigger=trigger, reason=f"gateway_status:{remote.raw_status}")
    return ReconcileResult(snap.id, RESULT_STILL_PENDING, snap.status)


async def check_transaction_status(db: AsyncSession, tx_id: int, *, account_id: int) -> ReconcileResult:
    """Ручная проверка игроком: только своя транзакция."""
    tx = await get_transaction(db, tx_id)
    if int(tx.account_id) != int(account_id):
        raise ForbiddenError("Transaction belongs to another account.", details={"transaction_id": tx_id})
    snap = _snapshot(tx)
    await db.commit()
    return await _resolve_with_gateway(db, snap, trigger=TRIGGER_MANUAL)


async def poll_pending_transactions(
    db: AsyncSession,
    *,
    now: Optional[datetime] = None,
    limit: int = 100,
) -> Dict[str, int]:
    """
    Фоновый проход по открытым транзакциям старше PAYMENT_POLL_MIN_AGE_SEC:
    с id шлюза, а также выводам в processing без него (поиск по ссылке).
    Ошибка по одной транзакции учитывается в счётчике и не прерывает проход.
    """
    s = get_settings()
    now = now or utcnow()
    cutoff = now - timedelta(seconds=int(s.PAYMENT_POLL_MIN_AGE_SEC))
    rows = await db.execute(
        select(PaymentTransaction)
        .where(
            PaymentTransaction.status.in_(TX_OPEN_STATUSES),
            or_(
                PaymentTransaction.external_id.is_not(None),
                and_(PaymentTransaction.direction == "withdrawal", PaymentTransaction.status == "processing"),
            ),
            PaymentTransaction.created_at <= cutoff,
        )
        .order_by(PaymentTransaction.created_at.asc(), PaymentTransaction.id.asc())
        .limit(limit)
    )
    snapshots = [_snapshot(tx) for tx in rows.scalars().all()]
    await db.commit()

    counters: Dict[str, int] = {
        "checked": 0,
        RESULT_COMPLETED: 0,
        RESULT_FAILED: 0,
        RESULT_STILL_PENDING: 0,
        RESULT_ALREADY_FINAL: 0,
        "errors": 0,
    }
    for snap in snapshots:
        counters["checked"] += 1
        try:
            result = await _resolve_with_gateway(db, snap, trigger=TRIGGER_POLL, now=now)
        except Exception:  # noqa: BLE001
            logger.exception("Pending transaction poll failed", extra={"transaction_id": snap.id})
            counters["errors"] += 1
            continue
        counters[result.outcome] = counters.get(result.outcome, 0) + 1

    if snapshots:
        logger.info("Pending transactions polled", extra=counters)
    return counters


# -----------------------------------------------------------------------------
# Вебхуки
# -----------------------------------------------------------------------------
async def _find_payout_by_reference(
    db: AsyncSession, gateway_name: str, reference: Any
) -> Optional[PaymentTransaction]:
    """Вывод без id шлюза, найденный по нашей ссылке wd-<tx_id> из тела вебхука."""
    tx_id = _tx_id_from_payout_reference(reference)
    if tx_id is None:
        return None
    row = await db.execute(
        select(PaymentTransaction).where(
            PaymentTransaction.id == tx_id,
            PaymentTransaction.gateway == gateway_name,
            PaymentTransaction.direction == "withdrawal",
            PaymentTransaction.external_id.is_(None),
        )
    )
    return row.scalar_one_or_none()


async def handle_webhook(
    db: AsyncSession,
    *,
    gateway: str,
    raw_body: bytes,
    signature_header: Optional[str],
) -> ReconcileResult:
    s = get_settings()
    gateway_name = normalize_gateway(gateway)
    if not verify_webhook_signature(
        signature_header,
        raw_body,
        s.webhook_secret_for(gateway_name),
        tolerance_sec=int(s.WEBHOOK_TOLERANCE_SEC),
    ):
        logger.warning(
            "Webhook rejected: invalid signature",
            extra={"gateway": gateway_name, "has_header": bool(signature_header)},
        )
        raise InvalidWebhookSignature()

    try:
        payload = json.loads(raw_body.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as exc:
        raise ValidationError("Webhook body is not valid JSON.") from exc
    if not isinstance(payload, dict):
        raise ValidationError("Webhook body must be a JSON object.")

    event = parse_webhook_event(payload)
    row = await db.execute(
        select(PaymentTransaction).where(
            PaymentTransaction.gateway == gateway_name,
            PaymentTransaction.external_id == event.external_id,
        )
    )
    tx = row.scalar_one_or_none()
    if tx is None:
        tx = await _find_payout_by_reference(db, gateway_name, payload.get("external_id"))
        if tx is not None:
            await db.execute(
                update(PaymentTransaction)
                .where(PaymentTransaction.id == tx.id, PaymentTransaction.external_id.is_(None))
                .values(external_id=event.external_id, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
    if tx is None:
        logger.warning(
            "Webhook for unknown transaction",
            extra={"gateway": gateway_name, "external_id": event.external_id, "event_type": event.event_type},
        )
        await db.commit()
        return ReconcileResult(None, RESULT_IGNORED)
    snap = _snapshot(tx)
    await db.commit()

    if event.direction is not None and event.direction != snap.direction:
        logger.warning(
            "Webhook direction mismatch",
            extra={"transaction_id": snap.id, "event_type": event.event_type, "direction": snap.direction},
        )
        return ReconcileResult(snap.id, RESULT_IGNORED, snap.status)

    if event.outcome == OUTCOME_COMPLETED:
        return await complete_transaction(db, snap.id, trigger=TRIGGER_WEBHOOK, gateway_payload=payload)
    if event.outcome == OUTCOME_FAILED:
        return await fail_transaction(db, snap.id, trigger=TRIGGER_WEBHOOK, reason=f"webhook:{event.event_type}")
    return ReconcileResult(snap.id, RESULT_STILL_PENDING, snap.status)


# -----------------------------------------------------------------------------
# История
# -----------------------------------------------------------------------------
async def list_account_transactions(
    db: AsyncSession,
    account_id: int,
    *,
    limit: int = 50,
    cursor_ts: Optional[datetime] = None,
    cursor_id: Optional[int] = None,
    direction: Optional[str] = None,
) -> List[PaymentTransaction]:
    stmt = select(PaymentTransaction).where(PaymentTransaction.account_id == int(account_id))
    if direction:
        stmt = stmt.where(PaymentTransaction.direction == direction)
    if cursor_ts is not None and cursor_id is not None:
        stmt = stmt.where(
            or_(
                PaymentTransaction.created_at < cursor_ts,
                and_(PaymentTransaction.created_at == cursor_ts, PaymentTransaction.id < cursor_id),
            )
        )
    stmt = stmt.order_by(PaymentTransaction.created_at.desc(), PaymentTransaction.id.desc()).limit(limit)
    return list((await db.execute(stmt)).scalars().all())


__all__ = [
    "RESULT_COMPLETED",
    "RESULT_FAILED",
    "RESULT_STILL_PENDING",
    "RESULT_ALREADY_FINAL",
    "RESULT_IGNORED",
    "ReconcileResult",
    "DepositInitiation",
    "normalize_gateway",
    "get_transaction",
    "initiate_deposit",
    "complete_transaction",
    "fail_transaction",
    "mark_processing",
    "payout_reference",
    "check_transaction_status",
    "poll_pending_transactions",
    "handle_webhook",
    "list_account_transactions",
]
