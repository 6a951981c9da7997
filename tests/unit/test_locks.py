"""Unit tests for the keyed per-order lock map."""

import asyncio

import pytest
from services.orders_service.locks import KeyedLock


@pytest.mark.asyncio
@pytest.mark.unit
async def test_same_key_is_serialized():
    locks = KeyedLock()
    trace = []

    async def worker(name):
        async with locks.hold("order-1"):
            trace.append(f"{name}:in")
            await asyncio.sleep(0)
            trace.append(f"{name}:out")

    await asyncio.gather(worker("a"), worker("b"))

    assert trace in (
        ["a:in", "a:out", "b:in", "b:out"],
        ["b:in", "b:out", "a:in", "a:out"],
    )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_different_keys_do_not_block_each_other():
    locks = KeyedLock()
    inside = asyncio.Event()

    async def holder():
        async with locks.hold("order-1"):
            await inside.wait()

    task = asyncio.create_task(holder())
    await asyncio.sleep(0)

    async with locks.hold("order-2"):
        inside.set()

    await task


@pytest.mark.asyncio
@pytest.mark.unit
async def test_entries_are_evicted_when_idle():
    locks = KeyedLock()

    async with locks.hold("order-1"):
        assert "order-1" in locks
        assert len(locks) == 1

    assert "order-1" not in locks
    assert len(locks) == 0


@pytest.mark.asyncio
@pytest.mark.unit
async def test_entry_is_evicted_after_error():
    locks = KeyedLock()

    with pytest.raises(RuntimeError):
        async with locks.hold("order-1"):
            raise RuntimeError("boom")

    assert len(locks) == 0
