from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from typing import TypeVar

T = TypeVar("T")
R = TypeVar("R")


async def run_bounded(
    items: Sequence[T],
    handler: Callable[[T], Awaitable[R]],
    concurrency: int,
) -> list[R]:
    """Run ``handler`` over ``items`` with at most ``concurrency`` in flight.

    Workers pull the next item from a shared queue as soon as they finish the
    previous one, so a slow recipient never holds up a fixed share of the
    batch. Results come back in input order. ``handler`` is expected to turn
    its own failures into results; an exception escaping it cancels the pool.
    """
    if concurrency < 1:
        raise ValueError("concurrency must be positive")
    if not items:
        return []

    queue: asyncio.Queue[tuple[int, T]] = asyncio.Queue()
    for position, item in enumerate(items):
        queue.put_nowait((position, item))
    results: list[R | None] = [None] * len(items)

    async def worker() -> None:
        while True:
            try:
                position, item = queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            try:
                results[position] = await handler(item)
            finally:
                queue.task_done()

    workers = [asyncio.create_task(worker()) for _ in range(min(concurrency, len(items)))]
    try:
        await asyncio.gather(*workers)
    except BaseException:
        for task in workers:
            task.cancel()
        raise
    return results  # type: ignore[return-value]
