"""Database engine, session factory and request-scoped sessions."""

from __future__ import annotations

import logging
import time

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from ticketauth.core.config import get_settings
from ticketauth.core.structured_logging import log_json

settings = get_settings()
logger = logging.getLogger(__name__)

MAX_LOGGED_STATEMENT_CHARS = 2000


def async_database_url(url: str) -> str:
    """Map a plain PostgreSQL URL onto the asyncpg driver; other URLs pass through."""
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return url


def install_slow_query_log(engine: AsyncEngine, threshold_ms: float) -> None:
    """Log statements slower than `threshold_ms` as `slow_query` events."""

    @event.listens_for(engine.sync_engine, "before_cursor_execute")
    def _start_timer(conn, cursor, statement, parameters, context, executemany) -> None:
        context._ticketauth_query_start = time.perf_counter()

    @event.listens_for(engine.sync_engine, "after_cursor_execute")
    def _log_if_slow(conn, cursor, statement, parameters, context, executemany) -> None:
        start = getattr(context, "_ticketauth_query_start", None)
        if start is None:
            return
        duration_ms = (time.perf_counter() - start) * 1000
        if duration_ms < threshold_ms:
            return

        # Parameters are never logged; they may hold emails.
        stmt = str(statement)
        if len(stmt) > MAX_LOGGED_STATEMENT_CHARS:
            stmt = stmt[: MAX_LOGGED_STATEMENT_CHARS - 3] + "..."
        log_json(
            logger,
            logging.WARNING,
            "slow_query",
            duration_ms=round(duration_ms, 2),
            statement=stmt,
            executemany=executemany,
        )


# SQLite and test databases never share pooled connections across event loops.
_use_null_pool = "test" in settings.database_url or settings.database_url.startswith("sqlite")

engine = create_async_engine(
    async_database_url(settings.database_url),
    echo=False,
    poolclass=NullPool if _use_null_pool else None,
    pool_pre_ping=not _use_null_pool,
)

if settings.slow_query_ms > 0:
    install_slow_query_log(engine, settings.slow_query_ms)

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


async def get_db() -> AsyncSession:
    """Request-scoped database session.

    Services commit their own logical steps; anything left pending when the
    request finishes is committed here, and rolled back on error.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Session factory for components that need their own transactions (audit)."""
    return AsyncSessionLocal
