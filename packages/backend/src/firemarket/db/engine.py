"""Async SQLAlchemy engine and session factory.

Learn: SQLAlchemy 2.0 async mode — create_async_engine for connection pooling,
AsyncSession for per-request database access, dependency injection via FastAPI.
"""

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from firemarket.config import settings


def _engine_kwargs(url: str) -> dict:
    # SQLite (local dev) has no server-side pool to size.
    if url.startswith("sqlite"):
        return {"echo": settings.debug}
    return {"echo": settings.debug, "pool_size": 5, "max_overflow": 15}


engine: AsyncEngine = create_async_engine(
    settings.database_url, **_engine_kwargs(settings.database_url)
)

# Session factory: one session per request.
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_db() -> AsyncSession:
    """FastAPI dependency — yields a session per request, auto-closes."""
    async with async_session_factory() as session:
        try:
            yield session
        finally:
            await session.close()


async def create_tables(bind: AsyncEngine = engine) -> None:
    """Create any missing tables (schema migrations are managed elsewhere)."""
    from firemarket.db.models import Base

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
