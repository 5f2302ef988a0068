"""Per-counter asyncio locks used to serialise root updates."""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from contextlib import AsyncExitStack, asynccontextmanager
from typing import AsyncIterator
from uuid import UUID


class CounterLockRegistry:
    """Hands out one :class:`asyncio.Lock` per counter id.

    Locks for a set of counters are always acquired in sorted id order, so two
    overlapping root updates cannot deadlock each other.
    """

    def __init__(self) -> None:
        self._locks: dict[UUID, asyncio.Lock] = {}

    def lock_for(self, counter_id: UUID) -> asyncio.Lock:
        lock = self._locks.get(counter_id)
        if lock is None:
            lock = self._locks[counter_id] = asyncio.Lock()
        return lock

    @asynccontextmanager
    async def hold(self, counter_ids: Iterable[UUID]) -> AsyncIterator[tuple[UUID, ...]]:
        ordered = tuple(sorted(set(counter_ids), key=str))
        async with AsyncExitStack() as stack:
            for counter_id in ordered:
                await stack.enter_async_context(self.lock_for(counter_id))
            yield ordered

    def forget(self, counter_id: UUID) -> None:
        """Drop the lock of a deleted counter unless someone is waiting on it."""

        lock = self._locks.get(counter_id)
        if lock is not None and not lock.locked():
            self._locks.pop(counter_id, None)

    def __len__(self) -> int:
        return len(self._locks)
