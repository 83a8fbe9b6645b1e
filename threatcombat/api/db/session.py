"""
Database Session Management

Async SQLAlchemy engine and sessions for the membership store.

The engine is created lazily on first use. Request handlers get a session
through ``get_db``; the audit recorder opens sessions of its own from
``get_session_maker`` so its writes survive a request rollback.
"""

import logging
import ssl
from typing import Any, AsyncGenerator, Dict, Optional, Union

from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from threatcombat.api.config import settings

logger = logging.getLogger(__name__)

_engine: Optional[AsyncEngine] = None
_async_session_maker: Optional[async_sessionmaker] = None

SSL_MODES = ("disable", "prefer", "require", "verify-ca", "verify-full")


def ssl_argument(mode: str, ca_file: Optional[str] = None) -> Union[str, ssl.SSLContext, None]:
    """
    Translate the configured SSL mode into asyncpg's ``ssl`` argument.

    A CA bundle always yields a verifying context, checking the hostname
    unless the mode is verify-ca.

    Raises:
        ValueError: unknown mode
    """
    if mode not in SSL_MODES:
        raise ValueError(f"DATABASE_SSL_MODE must be one of {', '.join(SSL_MODES)}")
    if mode == "disable":
        return None
    if ca_file:
        context = ssl.create_default_context(cafile=ca_file)
        context.check_hostname = mode != "verify-ca"
        return context
    return mode


def engine_options(url: str) -> Dict[str, Any]:
    """Keyword arguments for ``create_async_engine`` for this database URL."""
    options: Dict[str, Any] = {"echo": settings.DATABASE_ECHO}

    if make_url(url).get_backend_name() == "sqlite":
        return options

    options.update(
        pool_size=settings.DATABASE_POOL_SIZE,
        max_overflow=settings.DATABASE_MAX_OVERFLOW,
        pool_recycle=settings.DATABASE_POOL_RECYCLE_SECONDS,
        pool_pre_ping=True,
    )

    ssl_arg = ssl_argument(settings.DATABASE_SSL_MODE, settings.DATABASE_SSL_CA_FILE)
    if ssl_arg is not None:
        options["connect_args"] = {"ssl": ssl_arg}

    return options


def get_engine() -> AsyncEngine:
    """Get or create the database engine."""
    global _engine

    if _engine is None:
        url = settings.DATABASE_URL
        logger.info(
            "Creating engine for %s (ssl=%s)",
            make_url(url).render_as_string(hide_password=True),
            settings.DATABASE_SSL_MODE,
        )
        _engine = create_async_engine(url, **engine_options(url))

    return _engine


def get_session_maker() -> async_sessionmaker:
    """Get or create the session maker."""
    global _async_session_maker

    if _async_session_maker is None:
        _async_session_maker = async_sessionmaker(
            get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    return _async_session_maker


async def init_db() -> None:
    """Check connectivity and, when configured, create missing tables."""
    from threatcombat.api.db.models import Base

    async with get_engine().begin() as conn:
        if settings.DATABASE_CREATE_TABLES:
            logger.info("Creating missing tables")
            await conn.run_sync(Base.metadata.create_all)
        else:
            await conn.execute(text("SELECT 1"))

    logger.info("Database ready")


async def close_db() -> None:
    """Dispose of the engine and its pool."""
    global _engine, _async_session_maker

    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _async_session_maker = None
        logger.info("Database connection closed")


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency that provides a database session.

    Services commit their own work; anything left uncommitted when the
    request fails is rolled back.

    Usage in FastAPI:
        @router.get("/users")
        async def list_users(db: AsyncSession = Depends(get_db)):
            ...
    """
    async with get_session_maker()() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
