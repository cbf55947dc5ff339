"""Per-slot asyncio locks for the reservation engine."""
import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator


class SlotLockRegistry:
    """
    Hands out one asyncio.Lock per time slot id.

    Calls on different slots never wait on each other. An entry is dropped
    once no coroutine holds or waits on it, so the registry only grows with
    the number of slots being worked on right now.
    """

    def __init__(self) -> None:
        self._locks: dict[int, asyncio.Lock] = {}
        self._users: dict[int, int] = {}

    @asynccontextmanager
    async def hold(self, slot_id: int) -> AsyncIterator[None]:
        lock = self._locks.get(slot_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[slot_id] = lock
        self._users[slot_id] = self._users.get(slot_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[slot_id] -= 1
            if self._users[slot_id] == 0:
                del self._users[slot_id]
                del self._locks[slot_id]

    def is_locked(self, slot_id: int) -> bool:
        lock = self._locks.get(slot_id)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)
