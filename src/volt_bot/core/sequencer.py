"""Per-user sequencing of inbound messages."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Hashable

from volt_bot.log import get_logger

logger = get_logger(__name__)


class UserSequencer:
    """Processes one message at a time per user, in arrival order.

    Different users run concurrently. ``asyncio.Lock`` wakes waiters in FIFO
    order, so a user's queued messages are handled in the order they arrived.
    """

    def __init__(self) -> None:
        self._locks: dict[Hashable, asyncio.Lock] = {}
        self._holders: dict[Hashable, int] = {}

    @asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        self._holders[key] = self._holders.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._holders[key] -= 1
            if self._holders[key] == 0:
                # Nobody running or queued for this user
                del self._holders[key]
                del self._locks[key]
