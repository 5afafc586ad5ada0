"""
Tests for async_utils module.

Covers run_sync, run_sync_limited, gather_limited, and init_semaphore.
"""

import threading
import time

import pytest

import source_tracking.core.async_utils as mod
from source_tracking.core.async_utils import (
    gather_limited,
    init_semaphore,
    run_sync,
    run_sync_limited,
)


def _sync_add(a: int, b: int) -> int:
    return a + b


@pytest.fixture
def restore_semaphore():
    original = mod._semaphore
    yield
    mod._semaphore = original


async def test_run_sync_calls_function():
    """run_sync delegates to a worker thread with correct args."""
    assert await run_sync(_sync_add, 3, 4) == 7


async def test_run_sync_passes_kwargs():
    def _kw_func(*, name: str) -> str:
        return f"hello {name}"

    assert await run_sync(_kw_func, name="world") == "hello world"


async def test_init_semaphore_sets_value(restore_semaphore):
    init_semaphore(5)
    assert mod._semaphore is not None
    assert mod._semaphore._value == 5


async def test_run_sync_limited_without_semaphore(restore_semaphore):
    """run_sync_limited falls back to unbounded when semaphore is None."""
    mod._semaphore = None
    assert await run_sync_limited(_sync_add, 5, 6) == 11


async def test_gather_limited_preserves_order(restore_semaphore):
    init_semaphore(3)
    coros = [run_sync_limited(lambda x: x, i) for i in range(5)]
    assert await gather_limited(coros) == [0, 1, 2, 3, 4]


async def test_gather_limited_empty_list():
    assert await gather_limited([]) == []


async def test_gather_limited_propagates_failure():
    """A failing coroutine fails the join; no partial result is returned."""

    async def ok():
        return 1

    async def boom():
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError, match="boom"):
        await gather_limited([ok(), boom()])


async def test_run_sync_limited_concurrency_bound(restore_semaphore):
    """run_sync_limited actually limits concurrency via semaphore."""
    init_semaphore(2)

    max_concurrent = 0
    current = 0
    lock = threading.Lock()

    def _track(val):
        nonlocal max_concurrent, current
        with lock:
            current += 1
            max_concurrent = max(max_concurrent, current)
        time.sleep(0.05)
        with lock:
            current -= 1
        return val

    results = await gather_limited([run_sync_limited(_track, i) for i in range(6)])

    assert results == [0, 1, 2, 3, 4, 5]
    assert max_concurrent <= 2
