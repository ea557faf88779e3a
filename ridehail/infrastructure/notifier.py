"""
Publish-only real-time channel.

Core services depend on the ``Notifier`` protocol only.  ``RedisNotifier``
maps ``publish(topic, payload)`` onto Redis ``PUBLISH`` with a JSON body;
the websocket gateway (out of scope here) subscribes to the same topics.
Delivery is at-most-once and unacknowledged.

Topics
------
* ``rider:{id}``          -- events for one rider
* ``driver:{id}``         -- offers and events for one driver
* ``drivers:locations``   -- position fan-out
"""

from __future__ import annotations

import json
import logging
from typing import Any, Awaitable, Callable, Protocol

import redis.asyncio as aioredis

logger = logging.getLogger(__name__)

DRIVER_LOCATIONS_TOPIC = "drivers:locations"


def rider_topic(rider_id: int) -> str:
    return f"rider:{rider_id}"


def driver_topic(driver_id: int) -> str:
    return f"driver:{driver_id}"


class Notifier(Protocol):
    async def publish(self, topic: str, payload: dict[str, Any]) -> None: ...


class RedisNotifier:
    def __init__(self, client_factory: Callable[[], Awaitable[aioredis.Redis]]):
        self._client_factory = client_factory

    async def publish(self, topic: str, payload: dict[str, Any]) -> None:
        client = await self._client_factory()
        receivers = await client.publish(topic, json.dumps(payload, default=str))
        logger.debug("Published %s to %s (%d receivers)", payload.get("event"), topic, receivers)
