"""Per-key coalescing of concurrent async loads.

Two callers that miss the same cache key at the same time await one shared
task instead of each starting its own upstream operation. The entry is
dropped as soon as the task settles, so the next miss starts a fresh load.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Hashable
from typing import Generic, TypeVar

import structlog

T = TypeVar("T")

log = structlog.get_logger()


class SingleFlight(Generic[T]):
    def __init__(self) -> None:
        self._in_flight: dict[Hashable, asyncio.Task[T]] = {}

    def in_flight(self, key: Hashable) -> bool:
        return key in self._in_flight

    async def run(self, key: Hashable, loader: Callable[[], Awaitable[T]]) -> T:
        task = self._in_flight.get(key)
        if task is not None:
            log.debug("singleflight_joined", key=str(key))
        else:
            task = asyncio.ensure_future(loader())
            self._in_flight[key] = task
            task.add_done_callback(lambda _t, k=key: self._forget(k, _t))
        # shield: one caller being cancelled must not cancel the shared load
        return await asyncio.shield(task)

    def _forget(self, key: Hashable, task: asyncio.Task[T]) -> None:
        if self._in_flight.get(key) is task:
            del self._in_flight[key]
