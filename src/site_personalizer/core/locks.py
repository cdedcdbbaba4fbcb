"""Per-key asyncio locks.

Writers that read-modify-write a single row (the content cache and the
personalization store) hold the lock for that row's key so that two
coroutines in the same process never interleave their merges.  The
``SELECT ... FOR UPDATE`` issued inside the lock covers writers in other
processes.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Hashable
from contextlib import asynccontextmanager


class KeyedLock:
    """A family of :class:`asyncio.Lock` objects indexed by key.

    Locks are created on first use and discarded once no coroutine holds or
    waits on them, so the mapping does not grow with the number of keys ever
    seen.
    """

    def __init__(self) -> None:
        self._locks: dict[Hashable, asyncio.Lock] = {}
        self._waiters: dict[Hashable, int] = {}

    @asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[None]:
        """Hold the lock for *key* for the duration of the ``async with`` block."""
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)
