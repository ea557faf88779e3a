"""
Ephemeral offer store.

An offer (ride id + ordered candidate list + expiry) exists only during the
accept race.  It is kept in Redis under ``offer:{ride_id}`` with a TTL equal
to the remaining offer window, and deleted as soon as the race resolves.
Nothing here is authoritative: the ride row's compare-and-set decides the
winner; the offer only restricts *who* may try.  Redis errors are logged
and treated as "no offer on record".
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional, Protocol

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from ridehail.domain.entities import Offer

logger = logging.getLogger(__name__)


class OfferStore(Protocol):
    async def put(self, offer: Offer) -> None: ...

    async def get(self, ride_id: int) -> Optional[Offer]: ...

    async def discard(self, ride_id: int) -> None: ...


class RedisOfferStore:
    def __init__(self, client_factory: Callable[[], Awaitable[aioredis.Redis]]):
        self._client_factory = client_factory

    @staticmethod
    def key(ride_id: int) -> str:
        return f"offer:{ride_id}"

    async def put(self, offer: Offer) -> None:
        ttl = int((offer.expires_at - datetime.now(timezone.utc)).total_seconds())
        if ttl <= 0:
            return
        try:
            client = await self._client_factory()
            await client.set(
                self.key(offer.ride_id), json.dumps(offer.to_dict()), ex=ttl
            )
        except RedisError:
            logger.warning("Could not store offer for ride %s", offer.ride_id, exc_info=True)

    async def get(self, ride_id: int) -> Optional[Offer]:
        try:
            client = await self._client_factory()
            raw = await client.get(self.key(ride_id))
        except RedisError:
            logger.warning("Offer lookup failed for ride %s", ride_id, exc_info=True)
            return None
        if raw is None:
            return None
        return Offer.from_dict(json.loads(raw))

    async def discard(self, ride_id: int) -> None:
        try:
            client = await self._client_factory()
            await client.delete(self.key(ride_id))
        except RedisError:
            logger.warning("Could not discard offer for ride %s", ride_id, exc_info=True)
