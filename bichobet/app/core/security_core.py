# -*- coding: utf-8 -*-
# bichobet/app/core/security_core.py
# =============================================================================
# Назначение кода:
#   «Кто делает запрос» для Bicho Bet: пароли игроков (bcrypt), токены доступа
#   (JWT HS256, sub = id аккаунта, role = player | admin) и допуск к
#   админ-ручкам тиражей и выводов.
#
# Канон / инварианты:
#   • SECRET_KEY обязателен: без него любая операция с токеном → 500.
#   • Админ: X-Admin-Api-Key (скрипты) или токен с role=admin.
#   • Ключи сравниваются через hmac.compare_digest.
#
# Запреты:
#   • Балансы и деньги здесь не читаются и не меняются.
#   • Принадлежность ставки/платежа аккаунту проверяют сервисы, не этот модуль.
# =============================================================================

from __future__ import annotations

import hmac
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
from uuid import uuid4

import jwt
from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from passlib.context import CryptContext

from bichobet.app.core.config_core import get_settings
from bichobet.app.core.logging_core import get_logger, set_request_context

logger = get_logger(__name__)

JWT_ALGORITHM = "HS256"
ROLE_ADMIN = "admin"
ROLE_PLAYER = "player"

_passwords = CryptContext(schemes=["bcrypt"], deprecated="auto")
_bearer = HTTPBearer(auto_error=False)


def hash_password(password: str) -> str:
    return _passwords.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    return _passwords.verify(password, hashed)


def _signing_key() -> str:
    key = get_settings().SECRET_KEY
    if not key:
        logger.error("SECRET_KEY is not configured; tokens cannot be issued or checked")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Server is not configured")
    return str(key)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


def issue_access_token(account_id: int, *, role: str = ROLE_PLAYER, ttl: Optional[timedelta] = None) -> str:
    """Токен входа игрока/админа; срок по умолчанию ACCESS_TOKEN_EXPIRE_MINUTES."""
    lifetime = ttl if ttl is not None else timedelta(minutes=get_settings().ACCESS_TOKEN_EXPIRE_MINUTES)
    issued = datetime.now(tz=timezone.utc)
    claims: Dict[str, Any] = {
        "sub": str(account_id),
        "role": role,
        "iat": int(issued.timestamp()),
        "exp": int((issued + lifetime).timestamp()),
        "jti": uuid4().hex,
    }
    return jwt.encode(claims, _signing_key(), algorithm=JWT_ALGORITHM)


def read_access_token(token: str) -> Dict[str, Any]:
    key = _signing_key()
    try:
        return jwt.decode(token, key, algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise _unauthorized("Token expired")
    except jwt.InvalidTokenError:
        raise _unauthorized("Invalid token")


async def get_current_account_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
) -> int:
    """Bearer → id аккаунта; id попадает в контекст логов как aid."""
    if credentials is None:
        raise _unauthorized("Not authenticated")
    claims = read_access_token(credentials.credentials)
    try:
        account_id = int(claims["sub"])
    except (KeyError, TypeError, ValueError):
        raise _unauthorized("Invalid token subject")
    set_request_context(account_id=account_id)
    return account_id


def _admin_key_ok(candidate: Optional[str]) -> bool:
    expected = get_settings().ADMIN_API_KEY
    if not expected or not candidate:
        return False
    return hmac.compare_digest(expected.encode("utf-8"), candidate.encode("utf-8"))


async def require_admin(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
    x_admin_api_key: Optional[str] = Header(default=None, alias="X-Admin-Api-Key"),
) -> str:
    """
    Допуск к результатам тиражей, отмене бонусов и одобрению выводов.
    Возвращает метку актора для логов: "api-key" или "admin:<id>".
    """
    if _admin_key_ok(x_admin_api_key):
        return "api-key"
    if credentials is None:
        if x_admin_api_key:
            logger.warning("Admin access denied: X-Admin-Api-Key mismatch")
        raise _unauthorized("Admin credentials required")

    claims = read_access_token(credentials.credentials)
    if claims.get("role") != ROLE_ADMIN:
        logger.warning("Admin access denied: token without admin role", extra={"sub": claims.get("sub")})
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not enough rights")
    return f"admin:{claims.get('sub')}"


__all__ = [
    "ROLE_ADMIN",
    "ROLE_PLAYER",
    "hash_password",
    "verify_password",
    "issue_access_token",
    "read_access_token",
    "get_current_account_id",
    "require_admin",
]
