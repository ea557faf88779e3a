"""
Async SQLAlchemy engine and session factory.

Production runs on PostgreSQL through ``asyncpg``; the tests hand
``build_engine`` a SQLite URL, which keeps SQLAlchemy's default pool.  The
dispatch coordinator opens several sessions at once for its parallel reads,
so ``db_pool_size`` must stay above that per-request fan-out.
"""

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from ridehail.config import settings


class Base(DeclarativeBase):
    """Shared declarative base for all ORM models."""


def build_engine(
    url: str, *, pool_size: int = 20, max_overflow: int = 20, echo: bool = False
) -> AsyncEngine:
    if make_url(url).get_backend_name() == "sqlite":
        return create_async_engine(url, echo=echo)
    return create_async_engine(
        url,
        echo=echo,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_pre_ping=True,
    )


def session_factory_for(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # Rows stay readable after commit; services return them to the API
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


engine = build_engine(
    settings.database_url,
    pool_size=settings.db_pool_size,
    max_overflow=settings.db_max_overflow,
    echo=settings.db_echo,
)
async_session_factory = session_factory_for(engine)
