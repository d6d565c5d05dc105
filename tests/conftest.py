# -*- coding: utf-8 -*-
# tests/conftest.py
# =============================================================================
# Общие фикстуры тестов Bicho Bet:
#   • окружение выставляется ДО импорта bichobet (схема ядра пустая → SQLite);
#   • каждая тестовая функция получает свежий файл SQLite, таблицы и 25 животных;
#   • FakeGateway подменяет PIX-шлюзы через override_gateway.
# =============================================================================

from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal
from typing import Dict, List, Optional

os.environ.update(
    {
        "ENV": "test",
        "DATABASE_URL": "sqlite+aiosqlite:///./.pytest-bichobet.db",
        "DB_SCHEMA_CORE": "",
        "SECRET_KEY": "test-secret-key-please-change",
        "ADMIN_API_KEY": "test-admin-key",
        "EZZEBANK_WEBHOOK_SECRET": "ezze-webhook-secret",
        "PUSHINPAY_WEBHOOK_SECRET": "pushin-webhook-secret",
        "LOG_JSON": "false",
        "LOG_LEVEL": "WARNING",
    }
)

import pytest  # noqa: E402

from bichobet.app.core.config_core import get_settings  # noqa: E402
from bichobet.app.core.database_core import Base, get_engine, get_session_factory, reset_engine  # noqa: E402
from bichobet.app.core.errors_core import GatewayError  # noqa: E402
from bichobet.app.core.utils_core import utcnow  # noqa: E402
from bichobet.app.integrations.payment_gateways import (  # noqa: E402
    GatewayStatus,
    PixCharge,
    PixPayout,
    clear_gateway_overrides,
    normalize_outcome,
    override_gateway,
)
from bichobet.app.models import MODEL_REGISTRY  # noqa: E402
from bichobet.app.models.accounts_models import Account  # noqa: E402
from bichobet.app.models.lottery_models import Animal, Draw, animal_seed_rows  # noqa: E402
from bichobet.app.services import odds_service  # noqa: E402
from bichobet.app.services.ledger_service import credit_real, lock_account, run_atomic  # noqa: E402

_ = MODEL_REGISTRY


@dataclass
class FakeGateway:
    """PIX-шлюз в памяти: выдаёт external_id, отвечает заданными статусами."""

    name: str = "ezzebank"
    balance: Decimal = Decimal("100000.00")
    statuses: Dict[str, str] = field(default_factory=dict)
    fail_charges: bool = False
    fail_status: bool = False
    fail_payouts: bool = False
    payout_timeout: bool = False
    payout_sent_on_timeout: bool = True
    charges: List[Dict[str, object]] = field(default_factory=list)
    payouts: List[Dict[str, object]] = field(default_factory=list)
    status_calls: int = 0

    async def create_pix_charge(self, *, amount, reference, webhook_url) -> PixCharge:
        if self.fail_charges:
            raise GatewayError(self.name, "charge failed")
        external_id = f"{self.name}-chg-{len(self.charges) + 1}"
        self.charges.append({"amount": amount, "reference": reference, "external_id": external_id})
        return PixCharge(
            external_id=external_id,
            copy_paste=f"00020126PIX{reference}",
            qr_code_base64="iVBORw0KGgo=",
            expires_at=None,
        )

    async def get_status(self, external_id: str, *, direction: str) -> GatewayStatus:
        self.status_calls += 1
        if self.fail_status:
            raise GatewayError(self.name, "status unavailable")
        raw = self.statuses.get(external_id, "pending")
        outcome = normalize_outcome(raw)
        return GatewayStatus(external_id=external_id, outcome=outcome, raw_status=raw, raw={"status": raw})

    async def get_available_balance(self) -> Decimal:
        return self.balance

    async def create_pix_payout(self, *, amount, pix_key, reference, webhook_url) -> PixPayout:
        """fail_payouts - отказ 4xx; payout_timeout - ответ потерян (выплата ушла, если payout_sent_on_timeout)."""
        if self.fail_payouts:
            raise GatewayError(self.name, "payout rejected", rejected=True)
        if self.payout_timeout and not self.payout_sent_on_timeout:
            raise GatewayError(self.name, "payout timed out")
        external_id = f"{self.name}-wd-{len(self.payouts) + 1}"
        self.payouts.append(
            {"amount": amount, "pix_key": pix_key, "reference": reference, "external_id": external_id}
        )
        if self.payout_timeout:
            raise GatewayError(self.name, "payout timed out")
        return PixPayout(external_id=external_id, raw_status="processing")

    async def find_payout(self, reference: str) -> Optional[GatewayStatus]:
        if self.fail_status:
            raise GatewayError(self.name, "lookup unavailable")
        for payout in self.payouts:
            if payout["reference"] == reference:
                external_id = str(payout["external_id"])
                raw = self.statuses.get(external_id, "processing")
                return GatewayStatus(
                    external_id=external_id, outcome=normalize_outcome(raw), raw_status=raw, raw={"status": raw}
                )
        return None


@pytest.fixture
async def engine(tmp_path):
    os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{tmp_path / 'bichobet.db'}"
    get_settings.cache_clear()
    odds_service.get_catalog.cache_clear()
    await reset_engine()
    eng = get_engine()
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    async with get_session_factory()() as session:
        session.add_all([Animal(**row) for row in animal_seed_rows()])
        await session.commit()
    yield eng
    await eng.dispose()
    get_settings.cache_clear()
    odds_service.get_catalog.cache_clear()


@pytest.fixture
async def db(engine):
    session = get_session_factory()()
    try:
        yield session
    finally:
        await session.close()


@pytest.fixture
def settings(engine):
    return get_settings()


@pytest.fixture
def gateway():
    ezze = FakeGateway(name="ezzebank")
    pushin = FakeGateway(name="pushinpay")
    override_gateway("ezzebank", ezze)
    override_gateway("pushinpay", pushin)
    yield ezze
    clear_gateway_overrides()


@pytest.fixture
def make_account(db):
    """Фабрика аккаунтов: стартовый баланс зачисляется через журнал."""
    counter = {"n": 0}

    async def _make(balance: str = "0.00", *, pix_key: Optional[str] = "player@pix", is_admin: bool = False) -> int:
        counter["n"] += 1
        account = Account(
            username=f"player{counter['n']}",
            password_hash="not-a-real-hash",
            pix_key=pix_key,
            is_admin=is_admin,
        )
        db.add(account)
        await db.flush()
        account_id = account.id
        await db.commit()

        amount = Decimal(balance)
        if amount > 0:

            async def _fund() -> None:
                locked = await lock_account(db, account_id)
                await credit_real(
                    db, locked, amount, reason="deposit", idempotency_key=f"test-fund:{account_id}"
                )

            await run_atomic(db, _fund, op="test_fund")
        return account_id

    return _make


@pytest.fixture
def make_draw(db):
    async def _make(*, starts_in: timedelta = timedelta(hours=2), name: str = "PT Rio 14h") -> int:
        draw = Draw(name=name, scheduled_at=utcnow() + starts_in, status="pending")
        db.add(draw)
        await db.flush()
        draw_id = draw.id
        await db.commit()
        return draw_id

    return _make
