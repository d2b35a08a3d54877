"""Database engine and session management."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from pathlib import Path

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from drivemirror.core.config import settings

# Applied to every new SQLite connection; sync steps from several requests
# may write the same file concurrently
SQLITE_PRAGMAS = (
    "PRAGMA journal_mode=WAL",
    "PRAGMA synchronous=NORMAL",
    "PRAGMA busy_timeout=30000",
)


def get_database_url() -> str:
    """Configured database URL, or the SQLite file under ``config_path``."""
    if settings.database_url:
        return settings.database_url

    config_path = settings.config_path
    try:
        config_path.mkdir(parents=True, exist_ok=True)
    except OSError:
        # Not writable outside the container; use a local directory instead
        config_path = Path("./config")
        config_path.mkdir(parents=True, exist_ok=True)

    return f"sqlite+aiosqlite:///{config_path / 'drivemirror.db'}"


def build_engine(url: str, **kwargs) -> AsyncEngine:
    """Create an async engine, tuning SQLite connections for concurrent writers."""
    is_sqlite = url.startswith("sqlite")
    if is_sqlite:
        kwargs.setdefault("connect_args", {"timeout": 30})

    new_engine = create_async_engine(url, echo=settings.debug, pool_pre_ping=True, **kwargs)

    if is_sqlite:

        @event.listens_for(new_engine.sync_engine, "connect")
        def _set_sqlite_pragmas(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            for pragma in SQLITE_PRAGMAS:
                cursor.execute(pragma)
            cursor.close()

    return new_engine


engine = build_engine(get_database_url())

async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency yielding a session that commits on success.

    Services flush but leave committing to the caller; this is the commit
    point for single-step endpoints.
    """
    async with async_session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
