"""Transaction boundary shared by all services."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ridehail.domain.errors import UpstreamUnavailable

logger = logging.getLogger(__name__)


@asynccontextmanager
async def transaction(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncIterator[AsyncSession]:
    """Yield a session; commit on success, rollback on error.

    Storage failures surface as ``UpstreamUnavailable``; domain errors raised
    inside the block propagate unchanged after the rollback.
    """
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except SQLAlchemyError as exc:
            await session.rollback()
            logger.exception("Storage failure, transaction rolled back")
            raise UpstreamUnavailable("Storage unavailable") from exc
        except Exception:
            await session.rollback()
            raise


@asynccontextmanager
async def read_only(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncIterator[AsyncSession]:
    async with session_factory() as session:
        try:
            yield session
        except SQLAlchemyError as exc:
            raise UpstreamUnavailable("Storage unavailable") from exc
