"""Fixed-size asyncio worker pool for lists of deferred tasks."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, List, Sequence, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class BoundedPool:
    """
    Run deferred tasks with at most `concurrency` in flight.

    Created once per run and reused for every page. Each worker claims the
    next unclaimed index and writes its result into that slot of a pre-sized
    list, so results come back in task order. A task that raises is handed to
    `on_error(index, exc)`, whose return value fills the slot; sibling tasks
    keep running.
    """

    def __init__(self, concurrency: int = 20) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.concurrency = concurrency

    async def run(
        self,
        tasks: Sequence[Callable[[], Awaitable[T]]],
        on_error: Callable[[int, Exception], T],
    ) -> List[T]:
        results: List[T] = [None] * len(tasks)  # type: ignore[list-item]
        next_index = 0

        async def worker() -> None:
            nonlocal next_index
            while next_index < len(tasks):
                i = next_index
                next_index += 1
                try:
                    results[i] = await tasks[i]()
                except Exception as e:
                    logger.debug(f"Task {i} failed: {e!r}")
                    results[i] = on_error(i, e)

        workers = min(self.concurrency, len(tasks))
        await asyncio.gather(*(worker() for _ in range(workers)))
        return results
