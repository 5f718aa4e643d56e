"""
chatcore.config.postgres – PostgreSQL connection config (dataclass + validators).

Env vars: DATABASE_URL, DB_POOL_SIZE, DB_MAX_OVERFLOW, DB_POOL_TIMEOUT,
DB_POOL_RECYCLE, DB_ECHO, DB_APPLICATION_NAME.
"""
from __future__ import annotations

import os
from dataclasses import dataclass

from chatcore.core.exceptions import ConfigurationError

_TRUE = ("1", "true", "yes")


def _validate_url(url: str) -> str:
    url = (url or "").strip()
    if not url:
        raise ConfigurationError("DATABASE_URL is required and must be non-empty")
    if not url.startswith(("postgresql://", "postgres://", "postgresql+asyncpg://")):
        raise ConfigurationError(
            "DATABASE_URL must start with postgresql://, postgres:// or postgresql+asyncpg://",
            details={"url_prefix": url.split(":", 1)[0]},
        )
    return url


def _require_int(value: int, name: str, min_val: int) -> int:
    if not isinstance(value, int) or value < min_val:
        raise ConfigurationError(f"{name} must be an integer >= {min_val}, got {value!r}")
    return value


@dataclass(frozen=True)
class PostgresConfig:
    """
    PostgreSQL connection and pool configuration.

    The URL is rewritten to the asyncpg driver by the engine builder.
    """

    url: str
    pool_size: int = 10
    max_overflow: int = 20
    pool_timeout: int = 30
    pool_recycle: int = 1800
    echo: bool = False
    application_name: str = "chatcore"

    def __post_init__(self) -> None:
        _validate_url(self.url)
        _require_int(self.pool_size, "pool_size", 1)
        _require_int(self.max_overflow, "max_overflow", 0)
        _require_int(self.pool_timeout, "pool_timeout", 1)
        _require_int(self.pool_recycle, "pool_recycle", 1)
        if not self.application_name.strip():
            raise ConfigurationError("application_name must be a non-empty string")

    @property
    def async_url(self) -> str:
        """DSN with the asyncpg driver selected."""
        url = self.url
        if url.startswith("postgres://"):
            url = "postgresql://" + url[len("postgres://"):]
        if url.startswith("postgresql://"):
            url = "postgresql+asyncpg://" + url[len("postgresql://"):]
        return url

    @classmethod
    def from_env(cls, **overrides: object) -> "PostgresConfig":
        """Build config from the environment; keyword overrides win."""

        def _int(attr: str, env: str, default: int) -> int:
            v = overrides.get(attr)
            if v is None:
                v = os.environ.get(env, default)
            try:
                return int(v)  # type: ignore[arg-type]
            except (TypeError, ValueError) as exc:
                raise ConfigurationError(f"{env} must be an integer", cause=exc) from exc

        echo = overrides.get("echo")
        if echo is None:
            echo = os.environ.get("DB_ECHO", "").strip().lower() in _TRUE
        url = overrides.get("url") or os.environ.get(
            "DATABASE_URL", "postgresql://localhost/chatcore"
        )
        return cls(
            url=_validate_url(str(url)),
            pool_size=_int("pool_size", "DB_POOL_SIZE", 10),
            max_overflow=_int("max_overflow", "DB_MAX_OVERFLOW", 20),
            pool_timeout=_int("pool_timeout", "DB_POOL_TIMEOUT", 30),
            pool_recycle=_int("pool_recycle", "DB_POOL_RECYCLE", 1800),
            echo=bool(echo),
            application_name=str(
                overrides.get("application_name")
                or os.environ.get("DB_APPLICATION_NAME", "chatcore")
            ),
        )


def load_postgres_config(**overrides: object) -> PostgresConfig:
    """Load and validate PostgreSQL config. Raises ConfigurationError."""
    return PostgresConfig.from_env(**overrides)
