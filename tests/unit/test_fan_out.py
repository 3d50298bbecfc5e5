from __future__ import annotations

import asyncio

import pytest

from subscriber.app.application.fan_out import Broadcast
from tests.conftest import iterate


async def _drain(branch, *, delay: float = 0.0) -> list:
    out = []
    async for item in branch:
        if delay:
            await asyncio.sleep(delay)
        out.append(item)
    return out


@pytest.mark.parametrize("kwargs", [{"branches": 0, "buffer_size": 1}, {"branches": 2, "buffer_size": 0}])
def test_invalid_arguments_rejected(kwargs):
    with pytest.raises(ValueError):
        Broadcast(iterate([]), **kwargs)


@pytest.mark.asyncio
async def test_every_branch_sees_every_element_in_order():
    items = list(range(50))
    broadcast = Broadcast(iterate(items), branches=3, buffer_size=4)

    _, *results = await asyncio.gather(
        broadcast.run(),
        _drain(broadcast.branch(0)),
        _drain(broadcast.branch(1), delay=0.001),
        _drain(broadcast.branch(2)),
    )

    assert results == [items, items, items]
    assert broadcast.forwarded == 50
    assert broadcast.error is None


@pytest.mark.asyncio
async def test_fast_branch_runs_ahead_within_buffer():
    items = list(range(10))
    broadcast = Broadcast(iterate(items), branches=2, buffer_size=10)
    slow_gate = asyncio.Event()

    async def slow() -> list:
        await slow_gate.wait()
        return await _drain(broadcast.branch(1))

    pump = asyncio.create_task(broadcast.run())
    slow_task = asyncio.create_task(slow())
    fast = await asyncio.wait_for(_drain(broadcast.branch(0)), timeout=2.0)

    assert fast == items
    slow_gate.set()
    assert await slow_task == items
    await pump


@pytest.mark.asyncio
async def test_upstream_failure_reaches_every_branch_after_elements():
    broadcast = Broadcast(iterate([1, 2], error=RuntimeError("boom")), branches=2, buffer_size=8)
    seen: list[list[int]] = [[], []]

    async def consume(index: int) -> None:
        async for item in broadcast.branch(index):
            seen[index].append(item)

    pump = asyncio.create_task(broadcast.run())
    results = await asyncio.gather(consume(0), consume(1), return_exceptions=True)
    await pump

    assert seen == [[1, 2], [1, 2]]
    assert all(isinstance(r, RuntimeError) for r in results)
    assert isinstance(broadcast.error, RuntimeError)
