"""
Keyed mutual exclusion for per-token scheduler work.
"""
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict

logger = logging.getLogger(__name__)


class KeyedLock:
    """
    One asyncio.Lock per key.

    Overlapping ticks for the same token queue behind each other instead of
    racing on the same deployment rows. Different keys never block.
    """

    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock_for(self, key: str) -> asyncio.Lock:
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    @asynccontextmanager
    async def acquire(self, key: str) -> AsyncIterator[None]:
        lock = self._lock_for(key)
        if lock.locked():
            logger.debug(f"Waiting for in-flight work on {key}")
        async with lock:
            yield

    def is_locked(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()
