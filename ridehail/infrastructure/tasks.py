"""
Detached background tasks.

Fire-and-forget work (analytics writes, offer broadcast, event publish) is
scheduled here instead of being awaited by the request.  A strong reference
is held until the task finishes, and any exception is logged and dropped so
it can never reach the caller's result.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Coroutine

logger = logging.getLogger(__name__)

_pending: set[asyncio.Task] = set()


def fire_and_forget(coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task:
    task = asyncio.create_task(coro, name=name)
    _pending.add(task)
    task.add_done_callback(_finished)
    return task


def _finished(task: asyncio.Task) -> None:
    _pending.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("Background task %s failed", task.get_name(), exc_info=exc)


async def drain(timeout: float = 5.0) -> None:
    """Wait for in-flight detached tasks, including ones they spawn."""
    while _pending:
        _, still_running = await asyncio.wait(list(_pending), timeout=timeout)
        if still_running:
            for task in still_running:
                task.cancel()
            break
