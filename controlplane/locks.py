"""
Per-pipeline serialization of orchestration calls.

Deploy, start, pause and delete on the same pipeline must not interleave;
calls on different pipelines run concurrently.
"""

import asyncio
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict


class KeyedLock:
    """asyncio.Lock per key, dropped once no caller holds or waits on it."""

    def __init__(self):
        self._locks: Dict[Any, asyncio.Lock] = {}
        self._users: Dict[Any, int] = defaultdict(int)

    @asynccontextmanager
    async def hold(self, key: Any) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] += 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                self._locks.pop(key, None)

    def is_locked(self, key: Any) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()


# Process-wide; the orchestrator and the monitoring remediation share it
pipeline_locks = KeyedLock()
