import asyncio
from contextlib import asynccontextmanager


class KeyedLock:
    """
    In-process mutual exclusion per key (e.g. per order id). Entries are
    dropped once nobody holds or waits on them, so the map does not grow
    with the number of orders ever touched.
    """

    def __init__(self):
        self._locks: dict = {}
        self._waiters: dict = {}

    @asynccontextmanager
    async def hold(self, key):
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            if not self._waiters[key]:
                del self._waiters[key]
                del self._locks[key]

    def __len__(self):
        return len(self._locks)
