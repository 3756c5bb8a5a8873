"""Bounded-concurrency execution of async workers."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


async def do_with_max_concurrency(
    limit: int,
    items: Sequence[T],
    worker: Callable[[T], Awaitable[R]],
) -> list[R | Exception]:
    """Apply *worker* to every item with at most *limit* calls in flight.

    Results are returned in input order. A slot is freed when a call
    completes, successfully or not. An exception raised by the worker
    becomes the result for that item only; the other items keep running.

    Args:
        limit: Maximum number of concurrent worker calls (>= 1).
        items: Jobs to process.
        worker: Async callable applied to each item.

    Returns:
        One entry per item: the worker's result or the exception it raised.

    Raises:
        ValueError: If *limit* is lower than 1.
    """
    if limit < 1:
        raise ValueError(f"Concurrency limit must be a positive integer, got {limit}")
    if not items:
        return []

    semaphore = asyncio.Semaphore(limit)

    async def _run(index: int, item: T) -> R:
        async with semaphore:
            logger.debug("Dispatching item %d/%d", index + 1, len(items))
            return await worker(item)

    results = await asyncio.gather(
        *(_run(i, item) for i, item in enumerate(items)),
        return_exceptions=True,
    )
    for index, result in enumerate(results):
        if isinstance(result, BaseException) and not isinstance(result, Exception):
            raise result
        if isinstance(result, Exception):
            logger.error("Worker failed for item %d: %s", index + 1, result)
    return list(results)
