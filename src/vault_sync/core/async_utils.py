"""Async helpers for running blocking HTTP and filesystem calls from the engine."""

import asyncio
import logging
import math
from typing import Any, Awaitable, Callable, Sequence, TypeVar

T = TypeVar("T")
logger = logging.getLogger(__name__)

MIN_BATCH_SIZE = 5
MAX_BATCH_SIZE = 20

# Module-level semaphore, initialized when a sync service starts
_semaphore: asyncio.Semaphore | None = None


def init_semaphore(max_parallel: int = 5) -> None:
    """Initialize the request semaphore. Call once before the first sync."""
    global _semaphore
    _semaphore = asyncio.Semaphore(max_parallel)
    logger.info(
        "Remote request semaphore initialized: max_parallel=%d",
        max_parallel,
    )


async def run_sync(
    func: Callable[..., T], *args: Any, **kwargs: Any
) -> T:
    """Run a blocking function in a worker thread without blocking the event loop.

    Used for filesystem primitives, which are not bounded by the semaphore.

    Example:
        entry = await run_sync(vault.get_entry, "notes/a.md")
    """
    return await asyncio.to_thread(func, *args, **kwargs)


async def run_sync_limited(
    func: Callable[..., T], *args: Any, **kwargs: Any
) -> T:
    """Run a blocking remote call in a worker thread, bounded by the semaphore.

    Falls back to unbounded if the semaphore has not been initialized.
    """
    if _semaphore is None:
        return await asyncio.to_thread(func, *args, **kwargs)
    async with _semaphore:
        return await asyncio.to_thread(func, *args, **kwargs)


def adaptive_batch_size(
    queue_length: int,
    minimum: int = MIN_BATCH_SIZE,
    maximum: int = MAX_BATCH_SIZE,
) -> int:
    """Pick a group size for *queue_length* items.

    Scales with the queue (one tenth of it, rounded up) and is clamped to
    ``[minimum, maximum]``.
    """
    return max(minimum, min(maximum, math.ceil(queue_length / 10)))


async def run_in_batches(
    factories: Sequence[Callable[[], Awaitable[T]]],
    batch_size: int | None = None,
) -> list[T]:
    """Run coroutine factories group by group.

    Each group of *batch_size* factories runs concurrently and is awaited
    before the next group starts, so at most *batch_size* operations are in
    flight.  Results are returned in input order.

    Args:
        factories: Zero-argument callables returning awaitables.
        batch_size: Group size; ``adaptive_batch_size`` when omitted.

    Returns:
        Results of all factories.
    """
    if not factories:
        return []
    size = batch_size or adaptive_batch_size(len(factories))
    results: list[T] = []
    for start in range(0, len(factories), size):
        group = factories[start : start + size]
        results.extend(await asyncio.gather(*(f() for f in group)))
    return results
