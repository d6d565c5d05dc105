# -*- coding: utf-8 -*-
"""Подпись вебхуков и разбор событий шлюзов."""

from __future__ import annotations

import pytest

from bichobet.app.core.errors_core import GatewayError
from bichobet.app.integrations.payment_gateways import (
    OUTCOME_COMPLETED,
    OUTCOME_FAILED,
    OUTCOME_PENDING,
    normalize_outcome,
    parse_signature_header,
    parse_webhook_event,
    sign_payload,
    verify_webhook_signature,
)

SECRET = "whsec-test"
BODY = b'{"type":"payment.completed","transaction_id":"ezz-1"}'


def _header(ts: str, body: bytes = BODY, secret: str = SECRET) -> str:
    return f"t={ts},v1={sign_payload(secret, ts, body)}"


def test_valid_signature_accepted():
    assert verify_webhook_signature(_header("1700000000"), BODY, SECRET)


def test_tampered_body_rejected():
    header = _header("1700000000")
    assert not verify_webhook_signature(header, BODY.replace(b"ezz-1", b"ezz-2"), SECRET)


def test_wrong_secret_or_missing_parts_rejected():
    assert not verify_webhook_signature(_header("1700000000", secret="other"), BODY, SECRET)
    assert not verify_webhook_signature("v1=abcdef", BODY, SECRET)
    assert not verify_webhook_signature(None, BODY, SECRET)
    assert not verify_webhook_signature(_header("1700000000"), BODY, None)


def test_timestamp_tolerance():
    header = _header("1700000000")
    assert verify_webhook_signature(header, BODY, SECRET, tolerance_sec=300, now=1700000100)
    assert not verify_webhook_signature(header, BODY, SECRET, tolerance_sec=300, now=1700000400)


def test_parse_signature_header_ignores_noise():
    assert parse_signature_header(" t=12 , v1=ABC , v0=zzz") == ("12", "ABC")
    assert parse_signature_header("garbage") is None


def test_parse_ezzebank_event():
    event = parse_webhook_event({"type": "withdrawal.failed", "transaction_id": "wd-9"})
    assert event.direction == "withdrawal"
    assert event.outcome == OUTCOME_FAILED
    assert event.external_id == "wd-9"


def test_parse_status_style_event():
    event = parse_webhook_event({"id": "pp-1", "status": "paid"})
    assert event.direction is None
    assert event.outcome == OUTCOME_COMPLETED


def test_event_without_transaction_id_is_rejected():
    with pytest.raises(GatewayError):
        parse_webhook_event({"type": "payment.completed"})


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("PAID", OUTCOME_COMPLETED),
        ("expired", OUTCOME_FAILED),
        ("created", OUTCOME_PENDING),
        (None, OUTCOME_PENDING),
    ],
)
def test_normalize_outcome(raw, expected):
    assert normalize_outcome(raw) == expected
