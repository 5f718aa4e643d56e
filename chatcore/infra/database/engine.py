"""
chatcore.infra.database.engine – async SQLAlchemy 2.0 engine, session factory and schema setup.

``init_db()`` creates the ORM tables and then runs a short list of idempotent
DDL statements for columns and indexes added after the first release.
"""
from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Optional
from urllib.parse import urlparse, urlunparse

import asyncpg
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncConnection,
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

import chatcore.infra.database.models  # noqa: F401  registers every table on Base.metadata
from chatcore.infra.database.models.base import Base

if TYPE_CHECKING:
    from chatcore.config import PostgresConfig

logger = logging.getLogger(__name__)

_DBNAME_PATTERN = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")

_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def _load_config(config: Optional["PostgresConfig"]) -> "PostgresConfig":
    if config is not None:
        return config
    from chatcore.config import load_postgres_config
    return load_postgres_config()


async def ensure_database_exists(config: Optional["PostgresConfig"] = None) -> None:
    """Create the target database when missing (connects to ``postgres`` first)."""
    config = _load_config(config)
    parsed = urlparse(config.url)
    dbname = (parsed.path or "/postgres").strip("/").split("?")[0] or "postgres"
    if dbname == "postgres":
        return
    if not _DBNAME_PATTERN.match(dbname):
        logger.warning("ensure_database_exists: refusing unsafe database name %r", dbname)
        return
    admin_url = urlunparse(
        ("postgresql", parsed.netloc, "/postgres", parsed.params, parsed.query, parsed.fragment)
    )
    try:
        conn = await asyncpg.connect(admin_url)
    except (OSError, asyncpg.PostgresError) as exc:
        logger.debug("ensure_database_exists: cannot reach postgres (%s), skipping", exc)
        return
    try:
        exists = await conn.fetchval("SELECT 1 FROM pg_database WHERE datname = $1", dbname)
        if exists is None:
            await conn.execute(f'CREATE DATABASE "{dbname}"')
            logger.info("Database created: %s", dbname)
    finally:
        await conn.close()


def build_engine(
    config: Optional["PostgresConfig"] = None,
    *,
    echo: Optional[bool] = None,
    use_null_pool: bool = False,
) -> AsyncEngine:
    """Create and cache the async engine."""
    global _engine
    if _engine is not None:
        return _engine

    config = _load_config(config)
    connect_args: dict = {
        "server_settings": {"application_name": config.application_name, "jit": "off"}
    }
    do_echo = echo if echo is not None else config.echo

    if use_null_pool:
        _engine = create_async_engine(
            config.async_url, echo=do_echo, poolclass=NullPool, connect_args=connect_args,
        )
        logger.info("AsyncEngine created with NullPool")
    else:
        _engine = create_async_engine(
            config.async_url,
            echo=do_echo,
            pool_size=config.pool_size,
            max_overflow=config.max_overflow,
            pool_timeout=config.pool_timeout,
            pool_recycle=config.pool_recycle,
            pool_pre_ping=True,
            connect_args=connect_args,
        )
        logger.info(
            "AsyncEngine created: pool_size=%d max_overflow=%d",
            config.pool_size, config.max_overflow,
        )
    return _engine


def build_session_factory(engine: Optional[AsyncEngine] = None) -> async_sessionmaker[AsyncSession]:
    global _session_factory
    if _session_factory is not None:
        return _session_factory
    if engine is None:
        engine = build_engine()
    _session_factory = async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False, autoflush=False,
    )
    return _session_factory


async def _migrate_db(conn: AsyncConnection) -> None:
    """Idempotent DDL for schema changes made after tables first shipped."""
    migrations = [
        # older deployments created the follow-up table without the partial unique index
        "CREATE UNIQUE INDEX IF NOT EXISTS uq_mensajes_programados_pending "
        "ON mensajes_programados (tenant_id, canal, contacto) WHERE enviado = false",
        "ALTER TABLE mensajes_programados ADD COLUMN IF NOT EXISTS sent_at TIMESTAMPTZ",
        "ALTER TABLE clientes ADD COLUMN IF NOT EXISTS awaiting_updated_at TIMESTAMPTZ",
        "ALTER TABLE clientes ADD COLUMN IF NOT EXISTS selected_channel VARCHAR(32)",
        "ALTER TABLE messages ADD COLUMN IF NOT EXISTS interest_level INTEGER",
    ]
    for stmt in migrations:
        try:
            async with conn.begin_nested():
                await conn.execute(text(stmt))
        except SQLAlchemyError as exc:
            logger.warning("Migration statement skipped (%s): %s", exc.__class__.__name__, stmt)
    logger.info("Database migration complete")


async def init_db(config: Optional["PostgresConfig"] = None, *, drop_all: bool = False) -> None:
    """Create all tables and apply migrations. Use a migration tool in production."""
    engine = build_engine(_load_config(config))
    async with engine.begin() as conn:
        if drop_all:
            logger.warning("Dropping all ORM tables (drop_all=True)")
            await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
        await _migrate_db(conn)
    logger.info("Database initialised")


async def close_engine() -> None:
    """Dispose the pool. Call on shutdown."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
        logger.info("AsyncEngine disposed")
        _engine = None
        _session_factory = None
