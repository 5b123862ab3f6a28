"""
Database engine and session lifecycle.

PostgreSQL (asyncpg) runs with a pre-pinged, recycled connection pool. SQLite
(aiosqlite) is used for tests and local runs; its connections enforce foreign
keys and wait up to SQLITE_LOCK_TIMEOUT_SECONDS for a write lock.
"""
from collections.abc import AsyncGenerator
from typing import Any

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from order_fulfillment.config import Settings, get_settings
from order_fulfillment.database.models import Base

SQLITE_LOCK_TIMEOUT_SECONDS = 30

_engine: AsyncEngine | None = None
_async_session_factory: async_sessionmaker[AsyncSession] | None = None


def _enable_sqlite_foreign_keys(dbapi_connection: Any, connection_record: Any) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def build_engine(settings: Settings, **overrides: Any) -> AsyncEngine:
    """
    Create an engine configured for the backend named by ``settings.database_url``.

    Args:
        settings: Settings holding the URL and pool configuration
        **overrides: Extra ``create_async_engine`` arguments (e.g. ``poolclass``)

    Returns:
        AsyncEngine: New engine; the caller owns its disposal
    """
    engine_kwargs: dict[str, Any] = {"echo": settings.database_echo}

    if settings.is_sqlite:
        engine_kwargs["connect_args"] = {"timeout": SQLITE_LOCK_TIMEOUT_SECONDS}
    else:
        engine_kwargs.update(
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
            pool_pre_ping=True,
            pool_recycle=3600,
        )
    engine_kwargs.update(overrides)

    engine = create_async_engine(settings.database_url, **engine_kwargs)
    if settings.is_sqlite:
        event.listen(engine.sync_engine, "connect", _enable_sqlite_foreign_keys)
    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """
    Build a session factory bound to ``engine``.

    Loaded objects stay usable after commit; the workflow re-reads orders
    explicitly whenever it needs fresh state.
    """
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


def get_engine() -> AsyncEngine:
    """Application-wide engine, created on first use."""
    global _engine
    if _engine is None:
        _engine = build_engine(get_settings())
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Application-wide session factory, created on first use."""
    global _async_session_factory
    if _async_session_factory is None:
        _async_session_factory = create_session_factory(get_engine())
    return _async_session_factory


async def get_db() -> AsyncGenerator[AsyncSession, Any]:
    """
    FastAPI dependency yielding one session per request.

    Whatever the workflow left uncommitted is committed when the request
    succeeds and rolled back when it raises.

    Example:
        @order_router.get("/{order_id}")
        async def get_order(order_id: int, db: AsyncSession = Depends(get_db)):
            ...
    """
    async with get_session_factory()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db() -> None:
    """Create any missing tables for the order, catalog and stock ledger models."""
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Dispose of the application engine and forget the session factory."""
    global _engine, _async_session_factory
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _async_session_factory = None
