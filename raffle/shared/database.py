"""Async SQLAlchemy database engine and session management."""
from __future__ import annotations

from collections.abc import AsyncGenerator

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all ORM models."""


class Database:
    """Storage handle: one engine and its session factory.

    Created at startup, disposed at shutdown, and passed to whatever needs
    storage.  Nothing reads the pool from module state.
    """

    def __init__(self, url: str, echo: bool = False) -> None:
        engine_kwargs: dict = {"echo": echo, "pool_pre_ping": True}
        if not url.startswith("sqlite"):
            engine_kwargs.update(pool_size=10, max_overflow=20)
        self.url = url
        self.engine = create_async_engine(url, **engine_kwargs)
        self.sessions: async_sessionmaker[AsyncSession] = async_sessionmaker(
            self.engine,
            expire_on_commit=False,
            class_=AsyncSession,
        )

    async def create_all(self) -> None:
        """Create all tables defined in the ORM models."""
        from raffle.shared import models  # noqa: F401 – register models

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def dispose(self) -> None:
        await self.engine.dispose()


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session bound to the app's storage handle."""
    db: Database = request.app.state.db
    async with db.sessions() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
