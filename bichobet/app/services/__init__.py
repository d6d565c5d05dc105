# -*- coding: utf-8 -*-
# bichobet/app/services/__init__.py
# =============================================================================
# Bicho Bet - сервисный слой (единая точка входа)
# -----------------------------------------------------------------------------
# Назначение файла:
#   • Дать единый, стабильный вход для доменных сервисов: каталог
#     коэффициентов, проверка ставок, бонусы, приём ставок, расчёт тиражей,
#     платежи и выводы.
#
# Важные принципы:
#   • Никакой бизнес-логики здесь нет - только импорты.
#   • Никаких HTTP-запросов/блокирующих операций на уровне импорта.
# =============================================================================

from __future__ import annotations

from .odds_service import OddsCatalog, WagerTypeSpec, get_catalog  # noqa: F401
from .bet_validation_service import ValidatedWager, validate_shape, validate_wager  # noqa: F401
from .ledger_service import run_atomic, verify_account_invariants  # noqa: F401
from .bonus_service import (  # noqa: F401
    cancel_grant,
    expire_stale_grants,
    grant_first_deposit_bonus,
    grant_signup_bonus,
)
from .draws_service import create_draw, list_upcoming  # noqa: F401
from .wagers_service import PlacementResult, list_account_wagers, place_wager  # noqa: F401
from .settlement_service import (  # noqa: F401
    SettlementSummary,
    resume_settlement,
    settle_pending_wagers,
    submit_result,
)
from .payments_service import (  # noqa: F401
    ReconcileResult,
    check_transaction_status,
    complete_transaction,
    fail_transaction,
    handle_webhook,
    initiate_deposit,
    poll_pending_transactions,
)
from .withdraw_service import approve_withdrawal, reject_withdrawal, request_withdrawal  # noqa: F401
from .accounts_service import authenticate, get_account_snapshot, register_account  # noqa: F401

__all__ = [
    # --- odds / validation ---
    "OddsCatalog",
    "WagerTypeSpec",
    "get_catalog",
    "ValidatedWager",
    "validate_shape",
    "validate_wager",
    # --- ledger / bonus ---
    "run_atomic",
    "verify_account_invariants",
    "cancel_grant",
    "expire_stale_grants",
    "grant_first_deposit_bonus",
    "grant_signup_bonus",
    # --- draws / wagers / settlement ---
    "create_draw",
    "list_upcoming",
    "PlacementResult",
    "list_account_wagers",
    "place_wager",
    "SettlementSummary",
    "resume_settlement",
    "settle_pending_wagers",
    "submit_result",
    # --- payments / withdrawals ---
    "ReconcileResult",
    "check_transaction_status",
    "complete_transaction",
    "fail_transaction",
    "handle_webhook",
    "initiate_deposit",
    "poll_pending_transactions",
    "approve_withdrawal",
    "reject_withdrawal",
    "request_withdrawal",
    # --- accounts ---
    "authenticate",
    "get_account_snapshot",
    "register_account",
]
