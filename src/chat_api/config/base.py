from __future__ import annotations

import binascii
import json
import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any, Final

from advanced_alchemy.utils.text import slugify
from litestar.serialization import decode_json, encode_json
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import NullPool

DEFAULT_MODULE_NAME = "chat_api"
BASE_DIR: Final[Path] = Path(__file__).resolve().parent.parent

TRUE_VALUES = {"True", "true", "1", "yes", "Y", "T"}


def _env_list(name: str, default: str) -> list[str]:
    value = os.getenv(name, default)
    if value.startswith("[") and value.endswith("]"):
        return list(json.loads(value))
    return [item.strip() for item in value.split(",") if item.strip()]


@dataclass
class DatabaseSettings:
    ECHO: bool = field(default_factory=lambda: os.getenv("DATABASE_ECHO", "False") in TRUE_VALUES)
    """Enable SQLAlchemy engine logs."""
    POOL_MAX_OVERFLOW: int = field(default_factory=lambda: int(os.getenv("DATABASE_MAX_POOL_OVERFLOW", "10")))
    """Max overflow for SQLAlchemy connection pool"""
    POOL_SIZE: int = field(default_factory=lambda: int(os.getenv("DATABASE_POOL_SIZE", "5")))
    """Pool size for SQLAlchemy connection pool"""
    POOL_TIMEOUT: int = field(default_factory=lambda: int(os.getenv("DATABASE_POOL_TIMEOUT", "30")))
    """Time in seconds for timing connections out of the connection pool."""
    POOL_RECYCLE: int = field(default_factory=lambda: int(os.getenv("DATABASE_POOL_RECYCLE", "300")))
    """Amount of time to wait before recycling connections."""
    POOL_PRE_PING: bool = field(default_factory=lambda: os.getenv("DATABASE_PRE_POOL_PING", "False") in TRUE_VALUES)
    """Optionally ping database before fetching a session from the connection pool."""
    URL: str = field(default_factory=lambda: os.getenv("DATABASE_URL", "sqlite+aiosqlite:///db.sqlite3"))
    """SQLAlchemy Database URL."""
    CREATE_ALL: bool = field(default_factory=lambda: os.getenv("DATABASE_CREATE_ALL", "True") in TRUE_VALUES)
    """Create missing tables on application startup."""
    _engine_instance: AsyncEngine | None = None
    """SQLAlchemy engine instance generated from settings."""

    @property
    def engine(self) -> AsyncEngine:
        return self.get_engine()

    def get_engine(self) -> AsyncEngine:
        if self._engine_instance is not None:
            return self._engine_instance
        if self.URL.startswith("postgresql+asyncpg"):
            engine = create_async_engine(
                url=self.URL,
                future=True,
                json_serializer=encode_json,
                json_deserializer=decode_json,
                echo=self.ECHO,
                max_overflow=self.POOL_MAX_OVERFLOW,
                pool_size=self.POOL_SIZE,
                pool_timeout=self.POOL_TIMEOUT,
                pool_recycle=self.POOL_RECYCLE,
                pool_pre_ping=self.POOL_PRE_PING,
                pool_use_lifo=True,
            )
        elif self.URL.startswith("sqlite+aiosqlite"):
            engine = create_async_engine(
                url=self.URL,
                future=True,
                json_serializer=encode_json,
                json_deserializer=decode_json,
                echo=self.ECHO,
                poolclass=NullPool,
            )

            @event.listens_for(engine.sync_engine, "connect")
            def _sqla_on_connect(dbapi_connection: Any, _: Any) -> Any:  # pragma: no cover
                """Enable foreign key enforcement for cascading deletes."""
                cursor = dbapi_connection.cursor()
                cursor.execute("PRAGMA foreign_keys=ON")
                cursor.close()
        else:
            engine = create_async_engine(
                url=self.URL,
                future=True,
                json_serializer=encode_json,
                json_deserializer=decode_json,
                echo=self.ECHO,
                max_overflow=self.POOL_MAX_OVERFLOW,
                pool_size=self.POOL_SIZE,
                pool_timeout=self.POOL_TIMEOUT,
                pool_recycle=self.POOL_RECYCLE,
                pool_pre_ping=self.POOL_PRE_PING,
            )
        self._engine_instance = engine
        return self._engine_instance


@dataclass
class LogSettings:
    """Logger configuration"""

    LEVEL: int = field(default_factory=lambda: int(os.getenv("LOG_LEVEL", "20")))
    """Stdlib log levels.

    Only emit logs at this level, or higher.
    """
    OBFUSCATE_COOKIES: set[str] = field(default_factory=lambda: {"session", "XSRF-TOKEN"})
    """Request cookie keys to obfuscate."""
    OBFUSCATE_HEADERS: set[str] = field(default_factory=lambda: {"Authorization", "X-API-KEY", "X-XSRF-TOKEN", "Stripe-Signature"})
    """Request header keys to obfuscate."""
    REQUEST_FIELDS: list[str] = field(
        default_factory=lambda: ["path", "method", "query", "path_params"],
    )
    """Attributes of the [Request][litestar.connection.request.Request] to be logged."""
    RESPONSE_FIELDS: list[str] = field(default_factory=lambda: ["status_code"])
    """Attributes of the [Response][litestar.response.Response] to be logged."""
    SQLALCHEMY_LEVEL: int = field(default_factory=lambda: int(os.getenv("SQLALCHEMY_LOG_LEVEL", "30")))
    """Level to log SQLAlchemy logs."""
    GRANIAN_ACCESS_LEVEL: int = field(default_factory=lambda: int(os.getenv("GRANIAN_ACCESS_LOG_LEVEL", "30")))
    """Level to log granian access logs."""
    GRANIAN_ERROR_LEVEL: int = field(default_factory=lambda: int(os.getenv("GRANIAN_ERROR_LOG_LEVEL", "20")))
    """Level to log granian error logs."""


@dataclass
class AISettings:
    """Upstream completion provider configuration."""

    API_KEY: str = field(default_factory=lambda: os.getenv("AI_API_KEY", ""))
    """API key for the OpenAI compatible completion endpoint."""
    BASE_URL: str | None = field(default_factory=lambda: os.getenv("AI_BASE_URL") or None)
    """Base URL of the completion endpoint; the OpenAI default is used when unset."""
    DEFAULT_MODEL: str = field(default_factory=lambda: os.getenv("AI_DEFAULT_MODEL", "deepseek-r1-250120"))
    """Model used when a chat request does not name one."""
    TEMPERATURE: float = field(default_factory=lambda: float(os.getenv("AI_TEMPERATURE", "0.7")))
    MAX_TOKENS: int = field(default_factory=lambda: int(os.getenv("AI_MAX_TOKENS", "2000")))
    TIMEOUT: float = field(default_factory=lambda: float(os.getenv("AI_TIMEOUT", "60")))
    """Seconds to wait on the upstream before giving up."""


@dataclass
class ChatSettings:
    """Chat pipeline tuning."""

    HISTORY_LIMIT: int = field(default_factory=lambda: int(os.getenv("CHAT_HISTORY_LIMIT", "20")))
    """Number of prior messages forwarded upstream with each turn."""
    TITLE_LENGTH: int = field(default_factory=lambda: int(os.getenv("CHAT_TITLE_LENGTH", "50")))
    """Characters of the first message used as a new conversation title."""
    CHECKPOINT_EVERY: int = field(default_factory=lambda: int(os.getenv("CHAT_CHECKPOINT_EVERY", "25")))
    """Persist partial assistant content after this many chunks. ``0`` disables checkpoints."""
    GENERATING_TIMEOUT_SECONDS: int = field(
        default_factory=lambda: int(os.getenv("CHAT_GENERATING_TIMEOUT_SECONDS", "300")),
    )
    """Age after which a ``generating`` assistant message no longer blocks new sends."""


@dataclass
class StripeSettings:
    """Payment provider configuration."""

    SECRET_KEY: str = field(default_factory=lambda: os.getenv("STRIPE_SECRET_KEY", ""))
    WEBHOOK_SECRET: str = field(default_factory=lambda: os.getenv("STRIPE_WEBHOOK_SECRET", ""))
    BASE_PRICE_ID: str = field(default_factory=lambda: os.getenv("STRIPE_BASE_PRICE_ID", ""))
    PRO_PRICE_ID: str = field(default_factory=lambda: os.getenv("STRIPE_PRO_PRICE_ID", ""))


@dataclass
class AppSettings:
    """Application configuration"""

    URL: str = field(default_factory=lambda: os.getenv("APP_URL", "http://localhost:8000"))
    """The frontend base URL"""
    ENV: str = field(default_factory=lambda: os.getenv("APP_ENV", "development"))
    """Deployment environment name. ``production`` hides server error details."""
    DEBUG: bool = field(default_factory=lambda: os.getenv("APP_DEBUG", "False") in TRUE_VALUES)
    """Run `Litestar` with `debug=True`."""
    SECRET_KEY: str = field(
        default_factory=lambda: os.getenv("SECRET_KEY", binascii.hexlify(os.urandom(32)).decode(encoding="utf-8")),
    )
    """Application secret key."""
    NAME: str = field(default_factory=lambda: os.getenv("APP_NAME", "Chat API"))
    """Application name."""
    ALLOWED_CORS_ORIGINS: list[str] = field(default_factory=lambda: _env_list("ALLOWED_CORS_ORIGINS", "*"))
    """Allowed CORS Origins"""
    JWT_ENCRYPTION_ALGORITHM: str = field(default_factory=lambda: os.getenv("JWT_ENCRYPTION_ALGORITHM", "HS256"))
    """JWT Encryption Algorithm"""
    ACCESS_TOKEN_EXPIRES_MINUTES: int = field(
        default_factory=lambda: int(os.getenv("ACCESS_TOKEN_EXPIRES_MINUTES", "60")),
    )
    """Lifetime of an access token."""
    REFRESH_TOKEN_EXPIRES_DAYS: int = field(default_factory=lambda: int(os.getenv("REFRESH_TOKEN_EXPIRES_DAYS", "30")))
    """Lifetime of a refresh token."""

    @property
    def slug(self) -> str:
        """Return a slugified name.

        Returns:
            `self.NAME`, all lowercase and hyphens instead of spaces.
        """
        return slugify(self.NAME)

    @property
    def is_production(self) -> bool:
        return self.ENV.lower() == "production"


@dataclass
class Settings:
    app: AppSettings = field(default_factory=AppSettings)
    db: DatabaseSettings = field(default_factory=DatabaseSettings)
    log: LogSettings = field(default_factory=LogSettings)
    ai: AISettings = field(default_factory=AISettings)
    chat: ChatSettings = field(default_factory=ChatSettings)
    stripe: StripeSettings = field(default_factory=StripeSettings)

    @classmethod
    def from_env(cls, dotenv_filename: str = ".env") -> Settings:
        env_file = Path(f"{os.curdir}/{dotenv_filename}")
        if env_file.is_file():
            from dotenv import load_dotenv

            load_dotenv(env_file, override=True)
        return Settings()


@lru_cache(maxsize=1, typed=True)
def get_settings() -> Settings:
    return Settings.from_env()

