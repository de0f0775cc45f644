"""Database configuration and session management.

This module builds the asynchronous SQLAlchemy engine and session
factory used by the API.  ``DATABASE_URL`` selects the database; plain
``sqlite://`` and ``postgresql://`` URLs are upgraded to the async
``aiosqlite`` and ``psycopg`` drivers.  When no URL is configured the
application fails fast unless ``DB_DEV_FALLBACK_SQLITE`` is enabled, in
which case a local SQLite file is used.

Background workers run synchronously; ``sync_database_url`` derives the
matching sync URL for them.
"""

from __future__ import annotations

import logging
import os
from typing import AsyncGenerator, Dict, Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.engine.url import make_url
from sqlalchemy.orm import declarative_base

from billsplit.core.config import settings

logger = logging.getLogger(__name__)

USING_SQLITE_FALLBACK: bool = False
LAST_DB_INIT_ERROR: Optional[str] = None


def normalise_async_url(url: str) -> str:
    """Upgrade a database URL to the async driver used by the API."""
    url_obj = make_url(url)
    driver = url_obj.drivername or ""
    if driver == "sqlite":
        url_obj = url_obj.set(drivername="sqlite+aiosqlite")
    elif driver in {"postgresql", "postgres", "postgresql+psycopg2", "postgresql+asyncpg"}:
        url_obj = url_obj.set(drivername="postgresql+psycopg")
    return url_obj.render_as_string(hide_password=False)


def sync_database_url(url: Optional[str] = None) -> str:
    """Return the synchronous counterpart of the configured database URL."""
    url_obj = make_url(url or db_url)
    driver = url_obj.drivername or ""
    if driver.startswith("sqlite"):
        url_obj = url_obj.set(drivername="sqlite")
    elif driver.startswith("postgres"):
        url_obj = url_obj.set(drivername="postgresql+psycopg")
    return url_obj.render_as_string(hide_password=False)


primary_db_url = settings.DATABASE_URL or os.getenv("DATABASE_URL")
if not primary_db_url:
    if not settings.DB_DEV_FALLBACK_SQLITE:
        raise RuntimeError(
            "No database URL provided via DATABASE_URL; with "
            "DB_DEV_FALLBACK_SQLITE=false a Postgres URL is required."
        )
    primary_db_url = settings.SQLITE_FALLBACK_URL
    USING_SQLITE_FALLBACK = True

db_url = normalise_async_url(primary_db_url)

engine_kwargs: dict[str, Any] = dict(echo=False, pool_pre_ping=True)
engine = create_async_engine(db_url, **engine_kwargs)

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)

Base = declarative_base()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency that yields a database session scoped to the request."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


async def init_db() -> None:
    """Create all tables declared on ``Base``.

    When the configured database is unreachable in development and
    ``DB_DEV_FALLBACK_SQLITE`` is set, the module-level engine and
    session factory are swapped for a local SQLite database.
    """
    global engine, AsyncSessionLocal, USING_SQLITE_FALLBACK, LAST_DB_INIT_ERROR
    from billsplit.models import tables  # noqa: F401
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
    except Exception as e:
        LAST_DB_INIT_ERROR = str(e)
        is_dev = (settings.ENVIRONMENT or "development").lower() == "development"
        if not (is_dev and settings.DB_DEV_FALLBACK_SQLITE) or USING_SQLITE_FALLBACK:
            raise
        logger.warning("DB init failed (%s); falling back to SQLite for development", e)
        engine = create_async_engine(settings.SQLITE_FALLBACK_URL, **engine_kwargs)
        AsyncSessionLocal = async_sessionmaker(
            engine, class_=AsyncSession, expire_on_commit=False, autocommit=False, autoflush=False
        )
        USING_SQLITE_FALLBACK = True
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)


def get_db_debug_info() -> Dict[str, Any]:
    """Return non-sensitive information about the current DB engine."""
    info: Dict[str, Any] = {
        "using_sqlite_fallback": USING_SQLITE_FALLBACK,
        "environment": (settings.ENVIRONMENT or "development"),
    }
    if LAST_DB_INIT_ERROR:
        info["last_db_init_error"] = LAST_DB_INIT_ERROR
    try:
        url_obj = make_url(str(engine.url))
        info.update(
            {
                "drivername": url_obj.drivername,
                "host": url_obj.host,
                "port": url_obj.port,
                "database": url_obj.database,
                "url": url_obj.render_as_string(hide_password=True),
            }
        )
    except Exception as ex:
        info["error"] = f"unable to parse engine url: {ex}"
    return info
