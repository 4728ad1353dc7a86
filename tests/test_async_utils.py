"""
Tests for async_utils module.

Covers run_sync, run_sync_limited, init_semaphore, adaptive_batch_size
and run_in_batches.
"""

import asyncio

import pytest

from vault_sync.core import async_utils
from vault_sync.core.async_utils import (
    adaptive_batch_size,
    init_semaphore,
    run_in_batches,
    run_sync,
    run_sync_limited,
)


def _sync_add(a: int, b: int) -> int:
    return a + b


async def test_run_sync_calls_function():
    assert await run_sync(_sync_add, 3, 4) == 7


async def test_run_sync_kwargs():
    assert await run_sync(_sync_add, a=1, b=2) == 3


async def test_run_sync_limited_without_semaphore():
    assert async_utils._semaphore is None
    assert await run_sync_limited(_sync_add, 2, 2) == 4


async def test_run_sync_limited_with_semaphore():
    init_semaphore(2)
    assert isinstance(async_utils._semaphore, asyncio.Semaphore)
    results = await asyncio.gather(
        *(run_sync_limited(_sync_add, i, i) for i in range(6))
    )
    assert results == [0, 2, 4, 6, 8, 10]


async def test_run_sync_propagates_exceptions():
    def boom():
        raise RuntimeError("disk gone")

    with pytest.raises(RuntimeError, match="disk gone"):
        await run_sync(boom)


# ---------------------------------------------------------------------------
# Grouping
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    ("length", "expected"),
    [(0, 5), (3, 5), (50, 5), (51, 6), (120, 12), (200, 20), (5000, 20)],
)
def test_adaptive_batch_size(length, expected):
    assert adaptive_batch_size(length) == expected


async def test_run_in_batches_empty():
    assert await run_in_batches([]) == []


async def test_run_in_batches_keeps_order_and_bounds_in_flight():
    in_flight = 0
    peak = 0

    def factory(i):
        async def work():
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            # Later items finish first inside a group.
            await asyncio.sleep(0.001 * (10 - i % 10))
            in_flight -= 1
            return i

        return work

    results = await run_in_batches([factory(i) for i in range(23)], batch_size=4)

    assert results == list(range(23))
    assert peak == 4


async def test_run_in_batches_groups_run_sequentially():
    events: list[tuple[str, int]] = []

    def factory(i):
        async def work():
            events.append(("start", i))
            await asyncio.sleep(0)
            events.append(("end", i))
            return i

        return work

    await run_in_batches([factory(i) for i in range(6)], batch_size=3)

    second_group = events.index(("start", 3))
    assert {i for kind, i in events[:second_group] if kind == "end"} == {0, 1, 2}


async def test_run_in_batches_propagates_failure():
    async def ok():
        return 1

    async def bad():
        raise ValueError("nope")

    with pytest.raises(ValueError, match="nope"):
        await run_in_batches([lambda: ok(), lambda: bad()], batch_size=2)
