"""Tests for the per-class concurrency gate."""

import asyncio

import pytest

from arbiter.core.errors import GateSaturated
from arbiter.resilience.concurrency_gate import ClassLimit, ConcurrencyGate, PriorityClass


@pytest.mark.asyncio
async def test_limits_concurrency_per_class():
    gate = ConcurrencyGate({PriorityClass.BACKGROUND: ClassLimit(2)})
    running = 0
    peak = 0

    async def work():
        nonlocal running, peak
        running += 1
        peak = max(peak, running)
        await asyncio.sleep(0.01)
        running -= 1

    await asyncio.gather(*(gate.run(PriorityClass.BACKGROUND, work) for _ in range(6)))
    assert peak == 2
    assert gate.status()["background"].active == 0


@pytest.mark.asyncio
async def test_waiters_are_served_fifo():
    gate = ConcurrencyGate({PriorityClass.FACT_CHECK: ClassLimit(1)})
    order = []
    release = asyncio.Event()

    async def holder():
        async with gate.slot(PriorityClass.FACT_CHECK):
            await release.wait()

    async def waiter(n):
        async with gate.slot(PriorityClass.FACT_CHECK):
            order.append(n)

    first = asyncio.create_task(holder())
    await asyncio.sleep(0)
    waiters = [asyncio.create_task(waiter(n)) for n in range(3)]
    await asyncio.sleep(0)

    assert gate.status()["fact_check"].waiting == 3
    release.set()
    await asyncio.gather(first, *waiters)
    assert order == [0, 1, 2]


@pytest.mark.asyncio
async def test_classes_are_independent():
    gate = ConcurrencyGate({PriorityClass.SUMMARIZATION: ClassLimit(1), PriorityClass.USER_REPLY: ClassLimit(1)})
    release = asyncio.Event()

    async def hold_summary():
        async with gate.slot(PriorityClass.SUMMARIZATION):
            await release.wait()

    blocker = asyncio.create_task(hold_summary())
    await asyncio.sleep(0)

    async def reply():
        return "reply"

    assert await asyncio.wait_for(gate.run(PriorityClass.USER_REPLY, reply), timeout=1) == "reply"
    release.set()
    await blocker


@pytest.mark.asyncio
async def test_saturated_class_fails_fast():
    gate = ConcurrencyGate({PriorityClass.BACKGROUND: ClassLimit(1, max_queue_depth=1)})
    release = asyncio.Event()

    async def hold():
        async with gate.slot(PriorityClass.BACKGROUND):
            await release.wait()

    holder = asyncio.create_task(hold())
    await asyncio.sleep(0)
    queued = asyncio.create_task(hold())
    await asyncio.sleep(0)

    with pytest.raises(GateSaturated):
        async with gate.slot(PriorityClass.BACKGROUND):
            pass

    release.set()
    await asyncio.gather(holder, queued)


@pytest.mark.asyncio
async def test_slot_released_when_work_fails():
    gate = ConcurrencyGate({PriorityClass.BACKGROUND: ClassLimit(1)})

    async def fail():
        raise ValueError("boom")

    with pytest.raises(ValueError):
        await gate.run(PriorityClass.BACKGROUND, fail)

    assert gate.status()["background"].active == 0


def test_rejects_zero_concurrency():
    with pytest.raises(ValueError):
        ConcurrencyGate({PriorityClass.BACKGROUND: ClassLimit(0)})
