"""
Database engine and session management.

Routes get a session per request from the session factory stored on
app.state; background webhook deliveries open their own sessions from the
same factory.
"""
from collections.abc import AsyncGenerator

from fastapi import Request
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from flux.models.base import Base


def create_engine(database_url: str) -> AsyncEngine:
    """Create the async engine for the configured database URL."""
    return create_async_engine(database_url)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create a session factory bound to the engine."""
    return async_sessionmaker(engine, expire_on_commit=False)


async def create_all_tables(engine: AsyncEngine):
    """Create all tables registered on Base."""
    # Import models so they register with Base
    import flux.models.project  # noqa: F401
    import flux.models.task  # noqa: F401
    import flux.models.webhook  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency yielding a session for the current request."""
    session_factory = request.app.state.session_factory
    async with session_factory() as session:
        yield session
