# locks.py
# Per-schedule serialization of mutations.

import asyncio
from contextlib import asynccontextmanager
from typing import Dict, Hashable


class ScheduleLocks:
    """One asyncio.Lock per schedule id (or other key); unrelated keys never contend."""

    def __init__(self):
        self._locks: Dict[Hashable, asyncio.Lock] = {}

    def get(self, key: Hashable) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    @asynccontextmanager
    async def hold(self, key: Hashable):
        lock = self.get(key)
        async with lock:
            yield


schedule_locks = ScheduleLocks()
