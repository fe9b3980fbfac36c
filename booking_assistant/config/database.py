"""
booking_assistant.config.database – session store connection config.

Env vars: DATABASE_URL, DB_POOL_SIZE, DB_MAX_OVERFLOW, DB_POOL_TIMEOUT, DB_POOL_RECYCLE, DB_ECHO.
"""
from __future__ import annotations

import os
from dataclasses import dataclass

from booking_assistant.core.exceptions import ConfigurationError

_SUPPORTED_PREFIXES = ("postgresql://", "postgres://", "postgresql+asyncpg://")


def _validate_url(url: str) -> str:
    url = (url or "").strip()
    if not url:
        raise ConfigurationError("DATABASE_URL is required and must be non-empty")
    if not url.startswith(_SUPPORTED_PREFIXES):
        raise ConfigurationError(
            "DATABASE_URL must start with postgresql://, postgres:// or postgresql+asyncpg://",
            details={"url_prefix": url.split(":", 1)[0]},
        )
    return url


def _positive(value: int, name: str, *, allow_zero: bool = False) -> int:
    floor = 0 if allow_zero else 1
    if not isinstance(value, int) or value < floor:
        raise ConfigurationError(f"{name} must be an integer >= {floor}, got {value!r}")
    return value


@dataclass(frozen=True)
class DatabaseConfig:
    """
    Connection pool settings for the session/message store.

    All fields are validated on construction.
    """

    url: str
    pool_size: int = 5
    max_overflow: int = 10
    pool_timeout: int = 30
    pool_recycle: int = 1800
    echo: bool = False
    application_name: str = "booking-assistant"

    def __post_init__(self) -> None:
        _validate_url(self.url)
        _positive(self.pool_size, "pool_size")
        _positive(self.max_overflow, "max_overflow", allow_zero=True)
        _positive(self.pool_timeout, "pool_timeout")
        _positive(self.pool_recycle, "pool_recycle")
        if not self.application_name.strip():
            raise ConfigurationError("application_name must be a non-empty string")

    @property
    def async_url(self) -> str:
        """DSN rewritten for the asyncpg driver."""
        for prefix in ("postgresql://", "postgres://"):
            if self.url.startswith(prefix):
                return self.url.replace(prefix, "postgresql+asyncpg://", 1)
        return self.url

    @classmethod
    def from_env(cls, **overrides: object) -> "DatabaseConfig":
        raw_url = overrides.get("url") or os.environ.get("DATABASE_URL", "")

        def _int(attr: str, env: str, default: int) -> int:
            value = overrides.get(attr)
            if value is not None:
                return int(value)  # type: ignore[arg-type]
            try:
                return int(os.environ.get(env, default))
            except ValueError as exc:
                raise ConfigurationError(f"{env} must be an integer", cause=exc) from exc

        echo = overrides.get("echo")
        if echo is None:
            echo = os.environ.get("DB_ECHO", "").strip().lower() in ("1", "true", "yes")

        return cls(
            url=_validate_url(str(raw_url)),
            pool_size=_int("pool_size", "DB_POOL_SIZE", 5),
            max_overflow=_int("max_overflow", "DB_MAX_OVERFLOW", 10),
            pool_timeout=_int("pool_timeout", "DB_POOL_TIMEOUT", 30),
            pool_recycle=_int("pool_recycle", "DB_POOL_RECYCLE", 1800),
            echo=bool(echo),
            application_name=str(
                overrides.get("application_name")
                or os.environ.get("DB_APPLICATION_NAME", "booking-assistant")
            ),
        )


def load_database_config(**overrides: object) -> DatabaseConfig:
    """Load and validate the database config from the environment."""
    return DatabaseConfig.from_env(**overrides)
