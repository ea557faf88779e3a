"""
Offer Expiry Worker
===================

Runs every ``offer_sweep_interval_seconds`` (default 15 s).

A ride that stays ``requested`` longer than ``offer_ttl_seconds`` has an
expired offer: no candidate accepted in time.  Each cycle cancels those
rides through the lifecycle service (reason ``offer_expired``), which also
notifies the rider and the remaining candidates.

Concurrency safety
------------------
* **Redis lease** (``DistributedLock``) ensures only one instance sweeps at a
  time across multiple API processes; long sweeps renew it as they go.
* The cancel itself is a compare-and-set, so a driver accepting during the
  sweep either wins (the cancel becomes ``InvalidTransition`` and is
  skipped) or loses with ``AlreadyAccepted``/``InvalidTransition``.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Optional

import redis.asyncio as aioredis
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ridehail.domain.errors import InvalidTransition, NotFound
from ridehail.infrastructure.locks import DistributedLock
from ridehail.infrastructure.repositories import RideRepository
from ridehail.services.lifecycle import RideLifecycle
from ridehail.services.unit_of_work import read_only

logger = logging.getLogger(__name__)

EXPIRY_REASON = "offer_expired"
RENEW_EVERY = 20


class OfferExpiryWorker:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        lifecycle: RideLifecycle,
        redis_factory: Callable[[], Awaitable[aioredis.Redis]],
        *,
        offer_ttl_seconds: int = 60,
        interval_seconds: int = 15,
    ):
        self.sessions = session_factory
        self.lifecycle = lifecycle
        self.redis_factory = redis_factory
        self.offer_ttl = timedelta(seconds=offer_ttl_seconds)
        self.interval = interval_seconds
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None

    # ── Public API ────────────────────────────────────────────────────

    async def start(self) -> None:
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._loop(), name="offer-expiry")
        logger.info("Offer expiry worker started (interval=%ds)", self.interval)

    async def stop(self) -> None:
        if self._stop_event:
            self._stop_event.set()
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        logger.info("Offer expiry worker stopped")

    async def run_cycle(self, now: Optional[datetime] = None) -> int:
        """Execute one sweep.  Returns the number of rides cancelled."""
        redis = await self.redis_factory()
        lock = DistributedLock(redis, "offer_expiry", ttl_seconds=max(self.interval * 2, 30))
        if not await lock.acquire():
            logger.debug("Lock held by another worker – skipping sweep")
            return 0
        try:
            return await self.expire_stale(now, lock)
        finally:
            await lock.release()

    async def expire_stale(
        self,
        now: Optional[datetime] = None,
        lock: Optional[DistributedLock] = None,
    ) -> int:
        """Cancel rides older than the offer window.

        With *lock*, the lease is renewed every ``RENEW_EVERY`` rides and the
        sweep stops early once it is lost.
        """
        cutoff = (now or datetime.now(timezone.utc)) - self.offer_ttl
        async with read_only(self.sessions) as session:
            stale = await RideRepository(session).stale_requested_ids(cutoff)

        expired = 0
        for position, ride_id in enumerate(stale, start=1):
            if lock is not None and position % RENEW_EVERY == 0:
                if not await lock.extend():
                    logger.warning("Sweep lease lost after %d rides, stopping", expired)
                    break
            try:
                await self.lifecycle.cancel(ride_id, None, EXPIRY_REASON)
            except (InvalidTransition, NotFound):
                # accepted or cancelled since the scan
                continue
            expired += 1
        if expired:
            logger.info("Offer sweep: %d rides expired", expired)
        return expired

    # ── Internals ─────────────────────────────────────────────────────

    async def _loop(self) -> None:
        """Periodic loop: run a sweep then sleep."""
        assert self._stop_event is not None
        while not self._stop_event.is_set():
            try:
                await self.run_cycle()
            except Exception:
                logger.exception("Unhandled error in offer sweep")
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval)
                break
            except asyncio.TimeoutError:
                pass  # next cycle
