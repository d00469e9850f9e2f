"""Async concurrency primitives: a fixed-size indexed worker pool and a polling deadline."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Generic, TypeVar, cast

T = TypeVar("T")
R = TypeVar("R")


@dataclass(slots=True)
class IndexedWorkerPool(Generic[T, R]):
    """Run ``worker`` over ``items`` with ``min(max_concurrency, len(items))`` workers.

    Workers pull the next index from a shared cursor, so at most ``max_concurrency`` calls are
    in flight at once and results keep the input order. ``on_error`` converts a worker
    exception into a result for that item; without it the first exception propagates after the
    remaining workers are cancelled.
    """

    max_concurrency: int
    on_error: Callable[[T, Exception], R] | None = None
    _cursor: int = field(init=False, default=0, repr=False)

    def __post_init__(self) -> None:
        if self.max_concurrency <= 0:
            raise ValueError("max_concurrency must be > 0")

    async def map(self, items: Sequence[T], worker: Callable[[T], Awaitable[R]]) -> list[R]:
        if not items:
            return []

        results: list[R | None] = [None] * len(items)
        self._cursor = 0
        worker_count = min(self.max_concurrency, len(items))

        async def drain() -> None:
            while True:
                index = self._cursor
                self._cursor += 1
                if index >= len(items):
                    return
                item = items[index]
                try:
                    results[index] = await worker(item)
                except Exception as exc:
                    if self.on_error is None:
                        raise
                    results[index] = self.on_error(item, exc)

        tasks = [asyncio.create_task(drain()) for _ in range(worker_count)]
        try:
            await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        return cast("list[R]", results)


@dataclass(slots=True)
class PollDeadline:
    """Monotonic-clock deadline for bounded polling loops."""

    seconds: float
    started: float = field(default_factory=time.monotonic)

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self.started

    def expired(self, extra_seconds: float = 0.0) -> bool:
        return self.elapsed > self.seconds + extra_seconds


__all__ = [
    "IndexedWorkerPool",
    "PollDeadline",
]
