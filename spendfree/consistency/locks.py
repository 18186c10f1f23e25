"""
Per-user locks.

Taxonomy removals and expense writes for the same user are serialized
through one asyncio.Lock per user, so a usage check and the settings
write that follows it cannot interleave with an expense insert that
references the item being removed. This only covers a single process;
separate processes sharing a backend still race.

Locks are held weakly: once no coroutine holds or waits on a user's
lock it is dropped, and the next request for that user creates a new one.
"""

import asyncio
import weakref
from contextlib import asynccontextmanager
from typing import AsyncIterator


class UserLockRegistry:
    """Hands out one lock per user ID, created on first use."""

    def __init__(self):
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def lock_for(self, user_id: str) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[user_id] = lock
        return lock

    @asynccontextmanager
    async def hold(self, user_id: str) -> AsyncIterator[None]:
        lock = self.lock_for(user_id)
        async with lock:
            yield

    @property
    def tracked_users(self) -> int:
        """Number of users whose lock is currently alive."""
        return len(self._locks)
