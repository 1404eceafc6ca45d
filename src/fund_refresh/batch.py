from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Sequence, TypeVar

MAX_CONCURRENT_REQUESTS = 5

T = TypeVar("T")
R = TypeVar("R")


async def batch_execute(
    items: Sequence[T],
    fn: Callable[[T], Awaitable[R]],
    concurrency: int = MAX_CONCURRENT_REQUESTS,
    *,
    return_exceptions: bool = False,
) -> list[Any]:
    """Run ``fn`` over ``items`` in consecutive chunks of ``concurrency``.

    Each chunk runs concurrently and is awaited as a whole before the next one
    starts, so at most ``concurrency`` calls are in flight. ``results[i]``
    always belongs to ``items[i]``.
    """
    if concurrency < 1:
        raise ValueError(f"concurrency must be at least 1, got {concurrency}")

    results: list[Any] = []
    for start in range(0, len(items), concurrency):
        chunk = items[start : start + concurrency]
        chunk_results = await asyncio.gather(
            *(fn(item) for item in chunk),
            return_exceptions=return_exceptions,
        )
        results.extend(chunk_results)
    return results
