"""Per-Request Lock Table — serializes transitions on the same request id.

Invariants:
    - At most one holder per request id at a time
    - Entries are reference-counted and removed when the last holder/waiter leaves
    - Different request ids never block each other

Design Decisions:
    - asyncio.Lock per id: all transitions run on the event loop, no thread handoff
"""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager


class RequestLockTable:

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, request_id: str) -> AsyncIterator[None]:
        lock = self._locks.get(request_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[request_id] = lock
        self._users[request_id] = self._users.get(request_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            remaining = self._users[request_id] - 1
            if remaining:
                self._users[request_id] = remaining
            else:
                del self._users[request_id]
                del self._locks[request_id]

    def __len__(self) -> int:
        return len(self._locks)
