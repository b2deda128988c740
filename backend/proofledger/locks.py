"""Keyed mutual exclusion for per-channel and per-shard critical sections."""

from __future__ import annotations

import asyncio
import threading
from contextlib import asynccontextmanager, contextmanager
from typing import AsyncIterator, Iterator

# purpose: serialize read-modify-write sequences that share one key
# inputs: arbitrary string keys (channel ids, store shard names)
# outputs: context managers holding the lock bound to that key
# status: pilot


class KeyedLock:
    """Hand out one ``threading.Lock`` per key."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    def _lock_for(self, key: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        lock = self._lock_for(key)
        with lock:
            yield


class AsyncKeyedLock:
    """Hand out one ``asyncio.Lock`` per key for coroutine-side serialization."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}

    def locked(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            yield


channel_locks = KeyedLock()

# one holder per prover install; every stage reads and writes its shared resource tree
prover_tree_locks = AsyncKeyedLock()
