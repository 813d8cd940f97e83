"""Tests for per-key locks."""

import asyncio

import pytest

from dropwatch.utils.locks import KeyedLocks


@pytest.mark.asyncio
async def test_same_key_is_serialized():
    locks = KeyedLocks()
    order = []

    async def worker(name, delay):
        async with locks.hold("walmart"):
            order.append(f"{name}-in")
            await asyncio.sleep(delay)
            order.append(f"{name}-out")

    await asyncio.gather(worker("a", 0.05), worker("b", 0))

    assert order == ["a-in", "a-out", "b-in", "b-out"]


@pytest.mark.asyncio
async def test_different_keys_do_not_block():
    locks = KeyedLocks()
    inside = asyncio.Event()

    async def holder():
        async with locks.hold((1, 1)):
            await inside.wait()

    task = asyncio.create_task(holder())
    await asyncio.sleep(0)
    async with locks.hold((2, 1)):
        inside.set()
    await task


@pytest.mark.asyncio
async def test_locks_are_dropped_after_use():
    locks = KeyedLocks()

    async def use(key):
        async with locks.hold(key):
            await asyncio.sleep(0)

    await asyncio.gather(*(use((i, 1)) for i in range(50)), use((3, 1)))
    assert len(locks) == 0


@pytest.mark.asyncio
async def test_lock_released_on_error():
    locks = KeyedLocks()
    with pytest.raises(ValueError):
        async with locks.hold("target"):
            raise ValueError("boom")

    assert len(locks) == 0
    async with locks.hold("target"):
        pass
