import asyncio
from collections.abc import AsyncIterator, Hashable
from contextlib import AsyncExitStack, asynccontextmanager


class SlotLocks:
    """Per-key asyncio locks, dropped once nobody holds or waits on them.

    Keys are slot keys (teacher, date, canonical time). Two holders of the same key run
    one after the other; different keys never wait on each other.

    These only serialize callers inside one process. Across processes the booking
    service also locks the teacher's schedule in the database.
    """

    def __init__(self) -> None:
        self._locks: dict[Hashable, asyncio.Lock] = {}
        self._users: dict[Hashable, int] = {}

    @asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    @asynccontextmanager
    async def hold_many(self, *keys: Hashable) -> AsyncIterator[None]:
        """Hold several keys together. Always taken in sorted order so two movers can't deadlock."""
        async with AsyncExitStack() as stack:
            for key in sorted(set(keys)):
                await stack.enter_async_context(self.hold(key))
            yield

    def __len__(self) -> int:
        return len(self._locks)


slot_locks = SlotLocks()
