"""Database connection and session management."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from netpay_engine.models import Base

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine


class Database:
    """Owns the async engine and session factory for one process.

    Constructed explicitly at startup (API lifespan, worker entry point or a
    test fixture) and disposed at shutdown. Components receive sessions
    produced here rather than reaching for a shared module-level client.
    """

    def __init__(self, url: str, echo: bool = False):
        self.url = url
        self.engine: AsyncEngine = create_async_engine(url, **_engine_options(url, echo))
        self.session_factory = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Get a database session that commits on success."""
        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def create_all(self) -> None:
        """Create all tables (development and tests)."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def dispose(self) -> None:
        await self.engine.dispose()


def _engine_options(url: str, echo: bool) -> dict:
    options: dict = {"echo": echo}
    if url.startswith("sqlite"):
        return options
    options.update(pool_pre_ping=True, pool_size=10, max_overflow=20)
    return options
