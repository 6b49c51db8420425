from __future__ import annotations

import asyncio

import pytest

from kbchat.utils.single_flight import SingleFlight


@pytest.mark.anyio
async def test_concurrent_consumers_share_one_call():
    calls = 0
    release = asyncio.Event()

    async def load() -> str:
        nonlocal calls
        calls += 1
        await release.wait()
        return "value"

    flight = SingleFlight(load, name="load")
    flight.start()
    waiters = [asyncio.ensure_future(flight.get()) for _ in range(3)]
    await asyncio.sleep(0)
    release.set()

    assert await asyncio.gather(*waiters) == ["value", "value", "value"]
    assert await flight.get() == "value"
    assert calls == 1
    assert flight.calls == 1
    assert flight.done()


@pytest.mark.anyio
async def test_failure_is_shared_and_not_retried():
    calls = 0

    async def load() -> str:
        nonlocal calls
        calls += 1
        raise RuntimeError("boom")

    flight = SingleFlight(load)

    for _ in range(2):
        with pytest.raises(RuntimeError, match="boom"):
            await flight.get()
    assert calls == 1


@pytest.mark.anyio
async def test_cancelled_waiter_does_not_cancel_shared_task():
    release = asyncio.Event()

    async def load() -> int:
        await release.wait()
        return 42

    flight = SingleFlight(load)
    waiter = asyncio.ensure_future(flight.get())
    await asyncio.sleep(0)
    waiter.cancel()
    with pytest.raises(asyncio.CancelledError):
        await waiter

    release.set()
    assert await flight.get() == 42


@pytest.mark.anyio
async def test_discard_cancels_pending_work():
    started = asyncio.Event()

    async def load() -> int:
        started.set()
        await asyncio.sleep(3600)
        return 1

    flight = SingleFlight(load)
    task = flight.start()
    await started.wait()

    flight.discard()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert task.cancelled()


@pytest.mark.anyio
async def test_discard_before_start_is_a_no_op():
    async def load() -> int:
        return 1

    flight = SingleFlight(load)
    flight.discard()

    assert flight.calls == 0
    assert not flight.done()
