"""
Database connection and session management.

Two kinds of sessions come out of the same pool:

- regular sessions (``get_session``, ``tenant_session`` in ``app.core.isolation``)
  are subject to the tenant isolation policy;
- system sessions (``system_session``) bypass it and are reserved for the
  credential store: API key scans, invitation lookups by token, admin actions.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlmodel import SQLModel

from app.core.config import get_settings

settings = get_settings()

ISOLATION_BYPASS_KEY = "isolation_bypass"


def _engine_kwargs(url: str) -> dict:
    if url.startswith("sqlite"):
        return {}
    return {"pool_size": settings.db_pool_size, "pool_pre_ping": True}


engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    future=True,
    **_engine_kwargs(settings.database_url),
)


if engine.dialect.name == "sqlite":

    @event.listens_for(engine.sync_engine, "connect")
    def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


async_session_factory = sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def init_db():
    """Create all tables (development and tests; production uses Alembic)."""
    import app.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency for database sessions."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


@asynccontextmanager
async def get_session_context():
    """Context manager for use outside of FastAPI request lifecycle."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


@asynccontextmanager
async def system_session():
    """Session that is not subject to tenant isolation. Commits on success."""
    async with async_session_factory() as session:
        session.info[ISOLATION_BYPASS_KEY] = True
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_system_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency variant of ``system_session``."""
    async with system_session() as session:
        yield session


async def check_database_health() -> bool:
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except Exception:
        return False
