# app/db/sql.py
from __future__ import annotations

from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from app.core.config import settings
from app.db.base import Base


def build_engine(dsn: str, *, echo: bool = False) -> AsyncEngine:
    """
    Create the async engine. Pool sizing only applies to server databases;
    SQLite (used by the test-suite) keeps SQLAlchemy's defaults.
    """
    url = make_url(dsn)
    if url.get_backend_name() == "sqlite":
        return create_async_engine(dsn, echo=echo)
    return create_async_engine(
        dsn,
        echo=echo,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_pre_ping=True,
        pool_timeout=settings.DB_POOL_TIMEOUT,
    )


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=bind,
        expire_on_commit=False,
        autoflush=False,
        class_=AsyncSession,
    )


engine = build_engine(settings.SQL_DSN, echo=settings.DB_ECHO)

AsyncSessionLocal = build_session_factory(engine)


async def ping_db(session_factory: async_sessionmaker[AsyncSession] = AsyncSessionLocal) -> bool:
    async with session_factory() as session:
        await session.execute(text("SELECT 1"))
        return True


async def init_db(bind: AsyncEngine = engine, *, drop: bool = False) -> None:
    """
    Create all tables registered on Base.metadata.
    """
    # Import all models here so they get registered
    from app.modules.appointments import models as _appointments  # noqa: F401
    from app.modules.audit import models as _audit  # noqa: F401
    from app.modules.doctors import models as _doctors  # noqa: F401

    async with bind.begin() as conn:
        if drop:
            await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
