"""
Per-subscriber serialization point.

Interactive transitions and scheduler writes for the same subscriber acquire
the same lock, so a payment and a grace-period expiry never interleave.
Database row locks (``SELECT ... FOR UPDATE``) cover multi-process deployments.
"""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager


class SubscriberLocks:
    """Registry of asyncio locks keyed by subscriber id, dropped when idle."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._holders: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, subscriber_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(subscriber_id, asyncio.Lock())
        self._holders[subscriber_id] = self._holders.get(subscriber_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._holders[subscriber_id] -= 1
            if self._holders[subscriber_id] == 0:
                del self._holders[subscriber_id]
                del self._locks[subscriber_id]

    def is_locked(self, subscriber_id: str) -> bool:
        lock = self._locks.get(subscriber_id)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)


subscriber_locks = SubscriberLocks()

__all__ = ["SubscriberLocks", "subscriber_locks"]
