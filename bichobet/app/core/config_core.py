# -*- coding: utf-8 -*-
# bichobet/app/core/config_core.py
# =============================================================================
# Назначение:
#   • Единый конфигурационный модуль Bicho Bet (FastAPI + SQLAlchemy async).
#   • Канонический источник всех настроек: ставки, бонусы, платёжные шлюзы,
#     планировщик, логирование.
#
# Канон / инварианты Bicho Bet:
#   1) Деньги - Decimal с 2 знаками, округление вниз (ROUND_DOWN).
#      Потенциальный выигрыш округляется вниз до целой единицы валюты.
#   2) Пользователь никогда не уходит в минус ни по реальному, ни по бонусному
#      балансу.
#   3) Бонус каждого вида (signup / first_deposit) выдаётся аккаунту не более
#      одного раза за всю историю.
#   4) Любые денежные POST требуют Idempotency-Key (строго).
#   5) Терминальные статусы платёжных транзакций не меняются никогда.
#
# ИИ-защита / самодиагностика:
#   • configure_decimal_context() настраивает Decimal (ROUND_DOWN + precision).
#   • initialize_runtime() проверяет DSN и печатает предупреждения по
#     секретам шлюзов (логирование ещё не поднято).
#   • Валидаторы Pydantic не дают задать отрицательные лимиты ставок и
#     некорректные проценты бонусов.
# =============================================================================

from __future__ import annotations

from decimal import Decimal, ROUND_DOWN, getcontext
from functools import lru_cache
from typing import Dict, Iterable, List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# =============================================================================
# Вспомогательные утилиты (локальные, без сетевых вызовов)
# =============================================================================


def _parse_csv(value: object) -> List[str]:
    """Преобразует CSV-строку 'a,b,c' в ['a', 'b', 'c'] (пробелы обрезаются)."""
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [str(x).strip() for x in value if str(x).strip()]
    s = str(value).strip()
    if not s:
        return []
    return [item.strip() for item in s.split(",") if item.strip()]


def _unique(items: Iterable[str]) -> List[str]:
    """Возвращает элементы без повторов, сохраняя порядок первого появления."""
    out: List[str] = []
    for item in items:
        if item not in out:
            out.append(item)
    return out


# =============================================================================
# Док-описания полей (используются в Swagger и как подсказки «для чайника»)
# =============================================================================


class _Doc:
    # Приложение
    PROJECT_NAME = "Имя проекта (отображается в Swagger/health)."
    ENV = "Окружение: production/dev/local/test (нормализуется в prod/dev/local/test)."
    DEBUG = "Расширенные логи и трассировки (только для dev/local)."
    APP_VERSION = "Версия приложения (попадает в /health)."

    APP_HOST = "Адрес для uvicorn (обычно 0.0.0.0)."
    APP_PORT = "Порт для uvicorn (например, 8000)."
    API_PREFIX = "Префикс REST API, например /api."
    CORS_ORIGINS = "Список разрешённых Origin (CSV)."

    # БД
    DATABASE_URL = (
        "DSN PostgreSQL. Будет автоматически приведён к async "
        "(postgresql+asyncpg://). sqlite+aiosqlite:// пропускается как есть."
    )
    DB_POOL_SIZE = "Размер пула соединений SQLAlchemy."
    DB_MAX_OVERFLOW = "Дополнительные соединения в пике."
    DB_SCHEMA_CORE = "Схема ядра (accounts, wagers, draws, ledger). Пусто - без схемы."

    # Безопасность
    SECRET_KEY = "Секрет подписи JWT (HS256)."
    ACCESS_TOKEN_EXPIRE_MINUTES = "Время жизни access-токена (минуты)."
    ADMIN_API_KEY = "Сервисный ключ админки (заголовок X-Admin-Api-Key)."

    # Ставки
    MIN_BET_AMOUNT = "Минимальная ставка (BRL)."
    MAX_BET_AMOUNT = "Максимальная ставка (BRL)."
    MAX_PAYOUT = "Максимальный потенциальный выигрыш одной ставки (BRL)."
    ALLOW_BONUS_BETS = "Разрешить ставки с бонусного баланса."
    BONUS_AUTO_FALLBACK = "Переключаться на бонус, если реального баланса не хватает."
    ODDS_OVERRIDES = "Переопределение коэффициентов: 'group:18,dozen:60,...'."

    # Бонусы
    SIGNUP_BONUS_ENABLED = "Бонус за регистрацию включён."
    SIGNUP_BONUS_AMOUNT = "Сумма бонуса за регистрацию (BRL)."
    SIGNUP_BONUS_ROLLOVER = "Множитель отыгрыша бонуса за регистрацию."
    SIGNUP_BONUS_EXPIRATION_DAYS = "Срок жизни бонуса за регистрацию (дней)."
    FIRST_DEPOSIT_BONUS_ENABLED = "Бонус на первый депозит включён."
    FIRST_DEPOSIT_BONUS_PERCENTAGE = "Процент бонуса от первого депозита."
    FIRST_DEPOSIT_BONUS_MAX_AMOUNT = "Потолок бонуса на первый депозит (BRL)."
    FIRST_DEPOSIT_BONUS_ROLLOVER = "Множитель отыгрыша бонуса на первый депозит."
    FIRST_DEPOSIT_BONUS_EXPIRATION_DAYS = "Срок жизни бонуса на первый депозит (дней)."

    # Платежи
    DEFAULT_PAYMENT_GATEWAY = "Шлюз по умолчанию для депозитов (ezzebank/pushinpay)."
    EZZEBANK_ENVIRONMENT = "Окружение EzzeBank: sandbox/production."
    EZZEBANK_CLIENT_ID = "client_id EzzeBank (OAuth client_credentials)."
    EZZEBANK_CLIENT_SECRET = "client_secret EzzeBank."
    EZZEBANK_WEBHOOK_SECRET = "Секрет подписи вебхуков EzzeBank (HMAC-SHA256)."
    EZZEBANK_MIN_DEPOSIT = "Минимальный депозит через EzzeBank (BRL)."
    PUSHINPAY_TOKEN = "Bearer-токен Pushin Pay."
    PUSHINPAY_API_URL = "Базовый URL Pushin Pay."
    PUSHINPAY_MIN_DEPOSIT = "Минимальный депозит через Pushin Pay (BRL)."
    PUSHINPAY_WEBHOOK_SECRET = "Секрет подписи вебхуков Pushin Pay (HMAC-SHA256)."
    PAYMENT_WEBHOOK_BASE_URL = "Публичный базовый URL для вебхуков шлюзов."
    WITHDRAW_MIN_AMOUNT = "Минимальная сумма вывода (BRL)."
    WEBHOOK_TOLERANCE_SEC = "Допустимый возраст подписи вебхука (сек, 0 - без проверки)."

    # Планировщик
    PAYMENT_POLL_INTERVAL_SEC = "Интервал опроса зависших платежей (сек)."
    PAYMENT_POLL_MIN_AGE_SEC = "Возраст транзакции, после которого её опрашивают (сек)."
    BONUS_EXPIRY_INTERVAL_SEC = "Интервал уборки просроченных бонусов (сек)."
    NETWORK_REQUEST_TIMEOUT_SEC = "Таймаут сетевых запросов (сек)."

    # Logging
    LOG_LEVEL = "Уровень логирования (INFO/DEBUG/WARNING/ERROR)."
    LOG_JSON = "Лог в JSON (true/false)."


# =============================================================================
# Настройки приложения (единственный источник истины)
# =============================================================================


class Settings(BaseSettings):
    """
    Контейнер переменных окружения Bicho Bet.

    Важное:
      • Секреты берём только из ENV - в код не шьём.
      • Decimal настроен на ROUND_DOWN и достаточный precision.
      • Лимиты ставок и параметры бонусов читаются сервисами в момент
        операции, поэтому их можно менять без перезапуска тестов/воркеров.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # --------------------------- БАЗОВЫЕ НАСТРОЙКИ ---------------------------
    PROJECT_NAME: str = Field("Bicho Bet", description=_Doc.PROJECT_NAME)
    ENV: str = Field("production", description=_Doc.ENV)
    DEBUG: bool = Field(False, description=_Doc.DEBUG)
    APP_VERSION: str = Field("1.0.0", description=_Doc.APP_VERSION)

    APP_HOST: str = Field("0.0.0.0", description=_Doc.APP_HOST)
    APP_PORT: int = Field(8000, description=_Doc.APP_PORT)
    API_PREFIX: str = Field("/api", description=_Doc.API_PREFIX)
    CORS_ORIGINS: str = Field("http://localhost:5173", description=_Doc.CORS_ORIGINS)

    # --------------------------------- БАЗА ----------------------------------
    DATABASE_URL: Optional[str] = Field(None, description=_Doc.DATABASE_URL)
    DB_POOL_SIZE: int = Field(10, description=_Doc.DB_POOL_SIZE)
    DB_MAX_OVERFLOW: int = Field(10, description=_Doc.DB_MAX_OVERFLOW)
    DB_SCHEMA_CORE: str = Field("bicho_core", description=_Doc.DB_SCHEMA_CORE)

    # ------------------------------- SECURITY --------------------------------
    SECRET_KEY: Optional[str] = Field(None, description=_Doc.SECRET_KEY)
    ACCESS_TOKEN_EXPIRE_MINUTES: int = Field(
        60 * 24,
        description=_Doc.ACCESS_TOKEN_EXPIRE_MINUTES,
    )
    ADMIN_API_KEY: Optional[str] = Field(None, description=_Doc.ADMIN_API_KEY)

    # -------------------------------- СТАВКИ ---------------------------------
    MIN_BET_AMOUNT: Decimal = Field(Decimal("1.00"), description=_Doc.MIN_BET_AMOUNT)
    MAX_BET_AMOUNT: Decimal = Field(Decimal("1000.00"), description=_Doc.MAX_BET_AMOUNT)
    MAX_PAYOUT: Decimal = Field(Decimal("50000.00"), description=_Doc.MAX_PAYOUT)
    ALLOW_BONUS_BETS: bool = Field(True, description=_Doc.ALLOW_BONUS_BETS)
    BONUS_AUTO_FALLBACK: bool = Field(True, description=_Doc.BONUS_AUTO_FALLBACK)
    ODDS_OVERRIDES: str = Field("", description=_Doc.ODDS_OVERRIDES)

    # -------------------------------- БОНУСЫ ---------------------------------
    SIGNUP_BONUS_ENABLED: bool = Field(True, description=_Doc.SIGNUP_BONUS_ENABLED)
    SIGNUP_BONUS_AMOUNT: Decimal = Field(
        Decimal("10.00"),
        description=_Doc.SIGNUP_BONUS_AMOUNT,
    )
    SIGNUP_BONUS_ROLLOVER: Decimal = Field(
        Decimal("3"),
        description=_Doc.SIGNUP_BONUS_ROLLOVER,
    )
    SIGNUP_BONUS_EXPIRATION_DAYS: int = Field(
        7,
        description=_Doc.SIGNUP_BONUS_EXPIRATION_DAYS,
    )

    FIRST_DEPOSIT_BONUS_ENABLED: bool = Field(
        True,
        description=_Doc.FIRST_DEPOSIT_BONUS_ENABLED,
    )
    FIRST_DEPOSIT_BONUS_PERCENTAGE: Decimal = Field(
        Decimal("100"),
        description=_Doc.FIRST_DEPOSIT_BONUS_PERCENTAGE,
    )
    FIRST_DEPOSIT_BONUS_MAX_AMOUNT: Decimal = Field(
        Decimal("200.00"),
        description=_Doc.FIRST_DEPOSIT_BONUS_MAX_AMOUNT,
    )
    FIRST_DEPOSIT_BONUS_ROLLOVER: Decimal = Field(
        Decimal("3"),
        description=_Doc.FIRST_DEPOSIT_BONUS_ROLLOVER,
    )
    FIRST_DEPOSIT_BONUS_EXPIRATION_DAYS: int = Field(
        7,
        description=_Doc.FIRST_DEPOSIT_BONUS_EXPIRATION_DAYS,
    )

    # ------------------------------- ПЛАТЕЖИ ---------------------------------
    DEFAULT_PAYMENT_GATEWAY: str = Field(
        "ezzebank",
        description=_Doc.DEFAULT_PAYMENT_GATEWAY,
    )
    EZZEBANK_ENVIRONMENT: str = Field("sandbox", description=_Doc.EZZEBANK_ENVIRONMENT)
    EZZEBANK_CLIENT_ID: Optional[str] = Field(None, description=_Doc.EZZEBANK_CLIENT_ID)
    EZZEBANK_CLIENT_SECRET: Optional[str] = Field(
        None,
        description=_Doc.EZZEBANK_CLIENT_SECRET,
    )
    EZZEBANK_WEBHOOK_SECRET: Optional[str] = Field(
        None,
        description=_Doc.EZZEBANK_WEBHOOK_SECRET,
    )
    EZZEBANK_MIN_DEPOSIT: Decimal = Field(
        Decimal("1.00"),
        description=_Doc.EZZEBANK_MIN_DEPOSIT,
    )
    PUSHINPAY_TOKEN: Optional[str] = Field(None, description=_Doc.PUSHINPAY_TOKEN)
    PUSHINPAY_API_URL: str = Field(
        "https://api.pushinpay.com.br",
        description=_Doc.PUSHINPAY_API_URL,
    )
    PUSHINPAY_MIN_DEPOSIT: Decimal = Field(
        Decimal("2.00"),
        description=_Doc.PUSHINPAY_MIN_DEPOSIT,
    )
    PUSHINPAY_WEBHOOK_SECRET: Optional[str] = Field(
        None,
        description=_Doc.PUSHINPAY_WEBHOOK_SECRET,
    )
    PAYMENT_WEBHOOK_BASE_URL: Optional[str] = Field(
        None,
        description=_Doc.PAYMENT_WEBHOOK_BASE_URL,
    )
    WITHDRAW_MIN_AMOUNT: Decimal = Field(
        Decimal("10.00"),
        description=_Doc.WITHDRAW_MIN_AMOUNT,
    )
    WEBHOOK_TOLERANCE_SEC: int = Field(300, description=_Doc.WEBHOOK_TOLERANCE_SEC)

    # ------------------------------- ПЛАНИРОВЩИК -----------------------------
    PAYMENT_POLL_INTERVAL_SEC: int = Field(
        120,
        description=_Doc.PAYMENT_POLL_INTERVAL_SEC,
    )
    PAYMENT_POLL_MIN_AGE_SEC: int = Field(
        60,
        description=_Doc.PAYMENT_POLL_MIN_AGE_SEC,
    )
    BONUS_EXPIRY_INTERVAL_SEC: int = Field(
        600,
        description=_Doc.BONUS_EXPIRY_INTERVAL_SEC,
    )
    NETWORK_REQUEST_TIMEOUT_SEC: int = Field(
        20,
        description=_Doc.NETWORK_REQUEST_TIMEOUT_SEC,
    )

    # --------------------------------- LOGGING -------------------------------
    LOG_LEVEL: str = Field("INFO", description=_Doc.LOG_LEVEL)
    LOG_JSON: bool = Field(True, description=_Doc.LOG_JSON)

    # =========================== ВАЛИДАТОРЫ (ИИ-защита) ======================

    @field_validator(
        "MIN_BET_AMOUNT",
        "MAX_BET_AMOUNT",
        "MAX_PAYOUT",
        "SIGNUP_BONUS_AMOUNT",
        "FIRST_DEPOSIT_BONUS_MAX_AMOUNT",
        "EZZEBANK_MIN_DEPOSIT",
        "PUSHINPAY_MIN_DEPOSIT",
        "WITHDRAW_MIN_AMOUNT",
    )
    @classmethod
    def _v_money_non_negative(cls, value: Decimal) -> Decimal:
        """Денежные лимиты не могут быть отрицательными."""
        if value < 0:
            raise ValueError("денежные лимиты должны быть >= 0")
        return value.quantize(Decimal("0.01"), rounding=ROUND_DOWN)

    @field_validator("SIGNUP_BONUS_ROLLOVER", "FIRST_DEPOSIT_BONUS_ROLLOVER")
    @classmethod
    def _v_rollover(cls, value: Decimal) -> Decimal:
        if value < 0:
            raise ValueError("множитель отыгрыша должен быть >= 0")
        return value

    @field_validator("FIRST_DEPOSIT_BONUS_PERCENTAGE")
    @classmethod
    def _v_percentage(cls, value: Decimal) -> Decimal:
        if value < 0 or value > 1000:
            raise ValueError("FIRST_DEPOSIT_BONUS_PERCENTAGE должен быть в диапазоне 0..1000")
        return value

    @field_validator("DEFAULT_PAYMENT_GATEWAY")
    @classmethod
    def _v_gateway(cls, value: str) -> str:
        v = (value or "").strip().lower()
        if v not in {"ezzebank", "pushinpay"}:
            print(f"[WARN] DEFAULT_PAYMENT_GATEWAY={value!r} неизвестен. Применяем ezzebank.")
            return "ezzebank"
        return v

    # =========================== Удобные свойства/методы =====================

    # ---- ENV флаги ----
    @property
    def env_normalized(self) -> str:
        """Нормализует ENV к одному из: prod/dev/local/test."""
        value = (self.ENV or "").strip().lower()
        if value.startswith("prod") or value == "production":
            return "prod"
        if value.startswith("dev"):
            return "dev"
        if value.startswith("loc") or value == "local":
            return "local"
        if value.startswith("test"):
            return "test"
        return "prod"

    @property
    def is_prod(self) -> bool:
        return self.env_normalized == "prod"

    @property
    def db_schema(self) -> Optional[str]:
        """Схема ядра или None (SQLite/тесты без схем)."""
        value = (self.DB_SCHEMA_CORE or "").strip()
        return value or None

    # ---- База данных / DSN ----
    def database_url_asyncpg(self) -> str:
        """
        Возвращает DSN для SQLAlchemy async:
          postgres://   → postgresql+asyncpg://
          postgresql:// → postgresql+asyncpg:// при отсутствии '+asyncpg'.
          sqlite+aiosqlite:// остаётся как есть (локальные тесты).
        """
        if not self.DATABASE_URL:
            raise RuntimeError("DATABASE_URL не задан (нужен DSN Postgres).")
        url = self.DATABASE_URL
        if url.startswith("postgres://"):
            url = url.replace("postgres://", "postgresql+asyncpg://", 1)
        elif url.startswith("postgresql://") and "asyncpg" not in url:
            url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
        return url

    @property
    def is_sqlite(self) -> bool:
        return bool(self.DATABASE_URL) and self.DATABASE_URL.startswith("sqlite")

    # ---- Decimal / точности ----
    def configure_decimal_context(self) -> None:
        """Настраивает глобальный Decimal: precision 28+, ROUND_DOWN."""
        ctx = getcontext()
        ctx.prec = max(ctx.prec, 28)
        ctx.rounding = ROUND_DOWN

    # ---- Ставки ----
    def odds_overrides(self) -> Dict[str, Decimal]:
        """
        Разбирает ODDS_OVERRIDES вида 'group:18,dozen:60'.
        Мусорные пары пропускаются с предупреждением.
        """
        out: Dict[str, Decimal] = {}
        for pair in _parse_csv(self.ODDS_OVERRIDES):
            code, sep, raw = pair.partition(":")
            if not sep:
                print(f"[WARN] ODDS_OVERRIDES: пропущена пара без ':' - {pair!r}")
                continue
            try:
                mult = Decimal(raw.strip())
            except Exception:  # noqa: BLE001
                print(f"[WARN] ODDS_OVERRIDES: нечисловой коэффициент - {pair!r}")
                continue
            if mult <= 0:
                print(f"[WARN] ODDS_OVERRIDES: коэффициент <= 0 - {pair!r}")
                continue
            out[code.strip().lower()] = mult
        return out

    # ---- Платежи ----
    def webhook_url(self, gateway: str) -> Optional[str]:
        """Публичный URL вебхука: <PAYMENT_WEBHOOK_BASE_URL><API_PREFIX>/payments/webhooks/<gw>."""
        if not self.PAYMENT_WEBHOOK_BASE_URL:
            return None
        base = self.PAYMENT_WEBHOOK_BASE_URL.rstrip("/")
        prefix = (self.API_PREFIX or "").rstrip("/")
        return f"{base}{prefix}/payments/webhooks/{gateway}"

    def webhook_secret_for(self, gateway: str) -> Optional[str]:
        if gateway == "ezzebank":
            return self.EZZEBANK_WEBHOOK_SECRET
        if gateway == "pushinpay":
            return self.PUSHINPAY_WEBHOOK_SECRET
        return None

    def min_deposit_for(self, gateway: str) -> Decimal:
        if gateway == "pushinpay":
            return self.PUSHINPAY_MIN_DEPOSIT
        return self.EZZEBANK_MIN_DEPOSIT

    # ---- CORS ----
    def effective_cors_origins(self) -> List[str]:
        """Возвращает итоговый список CORS-Origin (после парсинга CSV)."""
        return _unique(_parse_csv(self.CORS_ORIGINS))

    # ---- Health/диагностика ----
    def assert_required_secrets(self) -> None:
        """
        Мягкая самодиагностика критичных секретов.
        Печатает WARN, но не падает.
        """
        if not self.DATABASE_URL:
            print("[WARN] DATABASE_URL не задан - БД будет недоступна.")
        if not self.SECRET_KEY:
            print("[WARN] SECRET_KEY не задан - выдача JWT невозможна.")
        if not self.EZZEBANK_WEBHOOK_SECRET:
            print("[WARN] EZZEBANK_WEBHOOK_SECRET не задан - вебхуки EzzeBank будут отклоняться.")
        if self.DEFAULT_PAYMENT_GATEWAY == "ezzebank" and not (
            self.EZZEBANK_CLIENT_ID and self.EZZEBANK_CLIENT_SECRET
        ):
            print("[WARN] EzzeBank выбран по умолчанию, но client_id/secret не заданы.")

    def debug_dump(self) -> Dict[str, str]:
        """Безопасный дамп ключевых настроек (без секретов) для /health и логов."""
        return {
            "env": self.env_normalized,
            "projectName": self.PROJECT_NAME,
            "version": self.APP_VERSION,
            "apiPrefix": self.API_PREFIX,
            "dbUrlSet": "yes" if bool(self.DATABASE_URL) else "no",
            "corsCount": str(len(self.effective_cors_origins())),
            "isProd": str(self.is_prod),
            "defaultGateway": self.DEFAULT_PAYMENT_GATEWAY,
            "ezzebankEnvironment": self.EZZEBANK_ENVIRONMENT,
            "bonusBets": str(self.ALLOW_BONUS_BETS),
        }

    # ---- Инициализация рантайма ----
    def initialize_runtime(self) -> None:
        """
        Единая точка инициализации конфигурации при старте приложения:
          • Приведение DSN БД к async-формату.
          • Настройка Decimal контекста (ROUND_DOWN).
          • Мягкая самодиагностика секретов.
        """
        if self.DATABASE_URL:
            _ = self.database_url_asyncpg()

        self.configure_decimal_context()
        if self.env_normalized != "test":
            self.assert_required_secrets()


# =============================================================================
# Синглтон настроек для всего приложения
# =============================================================================


@lru_cache()
def get_settings() -> Settings:
    """Создаёт и кэширует объект Settings, выполняя initialize_runtime()."""
    settings_obj = Settings()
    settings_obj.initialize_runtime()
    return settings_obj


# Удобный глобальный экспорт:
# from bichobet.app.core.config_core import settings
settings: Settings = get_settings()

__all__ = ["Settings", "get_settings", "settings"]
