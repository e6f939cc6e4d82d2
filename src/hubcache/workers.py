"""Bounded worker pool with first-failure cancellation."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import TypeVar

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 4

T = TypeVar("T")
R = TypeVar("R")


async def run_bounded(
    items: Sequence[T],
    worker: Callable[[T], Awaitable[R]],
    *,
    limit: int = DEFAULT_CONCURRENCY,
) -> list[R]:
    """Run ``worker(item)`` for every item, at most *limit* at a time.

    Items are handed out from a shared queue to *limit* worker tasks. The
    first exception sets a shared cancellation flag: idle workers stop before
    taking another item and busy ones are cancelled at their next await. That
    exception, and only that one, is re-raised. Results keep the order of
    *items*.
    """
    if limit < 1:
        raise ValueError("limit must be at least 1")
    if not items:
        return []

    queue: asyncio.Queue[tuple[int, T]] = asyncio.Queue()
    for pair in enumerate(items):
        queue.put_nowait(pair)

    results: list[R | None] = [None] * len(items)
    cancelled = asyncio.Event()
    failures: list[BaseException] = []
    tasks: list[asyncio.Task[None]] = []

    async def drain() -> None:
        while not cancelled.is_set():
            try:
                index, item = queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            try:
                results[index] = await worker(item)
            except Exception as exc:
                if cancelled.is_set():
                    return
                failures.append(exc)
                cancelled.set()
                current = asyncio.current_task()
                for task in tasks:
                    if task is not current:
                        task.cancel()
                return

    tasks.extend(asyncio.create_task(drain()) for _ in range(min(limit, len(items))))
    await asyncio.gather(*tasks, return_exceptions=True)

    if failures:
        logger.debug("Worker pool stopped after failure: %s", failures[0])
        raise failures[0]
    return results  # type: ignore[return-value]
