"""
Async engine and session factory for the booking store.

The engine is built once per process from a DatabaseConfig (or the
environment). ``ensure_database_exists`` creates the booking database on first
start through the ``postgres`` maintenance database.
"""
from __future__ import annotations

import logging
import re
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any, Dict, Optional
from urllib.parse import urlparse, urlunparse

import asyncpg
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

# Importing the models registers every table on Base.metadata.
import booking_assistant.infra.database.models  # noqa: F401
from booking_assistant.infra.database.models.base import Base

if TYPE_CHECKING:
    from booking_assistant.config import DatabaseConfig

logger = logging.getLogger(__name__)

_SAFE_NAME = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")

_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def _config_or_env(config: Optional["DatabaseConfig"]) -> "DatabaseConfig":
    if config is not None:
        return config
    from booking_assistant.config import load_database_config
    return load_database_config()


def split_database_url(url: str) -> tuple[str, str]:
    """``(database name, maintenance DSN)`` for a Postgres URL."""
    parsed = urlparse(url.replace("postgresql+asyncpg://", "postgresql://", 1))
    name = parsed.path.strip("/") or "postgres"
    return name, urlunparse(parsed._replace(path="/postgres"))


async def ensure_database_exists(config: Optional["DatabaseConfig"] = None) -> bool:
    """Create the booking database when it is missing. True when it was created."""
    name, maintenance_url = split_database_url(_config_or_env(config).url)
    if name == "postgres":
        return False
    if not _SAFE_NAME.match(name):
        logger.warning("ensure_database_exists: refusing database name %r", name)
        return False
    try:
        conn = await asyncpg.connect(maintenance_url)
    except (OSError, asyncpg.PostgresError) as exc:
        logger.debug("ensure_database_exists: maintenance database unreachable (%s)", exc)
        return False
    try:
        if await conn.fetchval("SELECT 1 FROM pg_database WHERE datname = $1", name) is not None:
            return False
        await conn.execute(f'CREATE DATABASE "{name}"')
        logger.info("ensure_database_exists: created %s", name)
        return True
    finally:
        await conn.close()


def build_engine(config: Optional["DatabaseConfig"] = None, *, use_null_pool: bool = False) -> AsyncEngine:
    """The process-wide engine; ``use_null_pool`` opens a connection per checkout."""
    global _engine
    if _engine is not None:
        return _engine

    config = _config_or_env(config)
    pooling: Dict[str, Any] = {"poolclass": NullPool} if use_null_pool else {
        "pool_size": config.pool_size,
        "max_overflow": config.max_overflow,
        "pool_timeout": config.pool_timeout,
        "pool_recycle": config.pool_recycle,
        "pool_pre_ping": True,
    }
    _engine = create_async_engine(
        config.async_url,
        echo=config.echo,
        connect_args={"server_settings": {"application_name": config.application_name}},
        **pooling,
    )
    logger.info(
        "build_engine: %s with %s",
        config.application_name,
        "NullPool" if use_null_pool else f"pool_size={config.pool_size}",
    )
    return _engine


def build_session_factory(engine: Optional[AsyncEngine] = None) -> async_sessionmaker[AsyncSession]:
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(
            engine or build_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
    return _session_factory


@asynccontextmanager
async def session_scope(
    factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> AsyncIterator[AsyncSession]:
    """One unit of work: commit when the block succeeds, roll back when it raises."""
    async with (factory or build_session_factory())() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db(config: Optional["DatabaseConfig"] = None, *, drop_all: bool = False) -> None:
    """Create the booking tables (development and tests)."""
    engine = build_engine(config)
    async with engine.begin() as conn:
        if drop_all:
            logger.warning("init_db: dropping all booking tables")
            await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    logger.info("init_db: %d tables ready", len(Base.metadata.tables))


async def close_engine() -> None:
    """Dispose the pool and forget the cached engine and factory."""
    global _engine, _session_factory
    if _engine is None:
        return
    await _engine.dispose()
    _engine = None
    _session_factory = None
    logger.info("close_engine: pool disposed")
