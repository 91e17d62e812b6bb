import asyncio

import pytest

from permaserve.services.dispatch import BackgroundDispatcher


@pytest.mark.asyncio
async def test_same_key_is_not_spawned_twice_while_running() -> None:
    dispatcher = BackgroundDispatcher()
    gate = asyncio.Event()
    runs = []

    async def job() -> None:
        runs.append("run")
        await gate.wait()

    assert dispatcher.spawn("chunk:demo:0", job)
    assert not dispatcher.spawn("chunk:demo:0", job)
    assert dispatcher.pending == 1

    gate.set()
    await dispatcher.drain()

    assert runs == ["run"]
    assert dispatcher.pending == 0
    assert dispatcher.spawn("chunk:demo:0", job)
    await dispatcher.drain()
    assert runs == ["run", "run"]


@pytest.mark.asyncio
async def test_failing_task_does_not_escape() -> None:
    dispatcher = BackgroundDispatcher()

    async def job() -> None:
        raise RuntimeError("boom")

    dispatcher.spawn("descriptor:demo", job)
    await dispatcher.drain()

    assert dispatcher.pending == 0


@pytest.mark.asyncio
async def test_cancel_all_stops_queued_and_running_tasks() -> None:
    dispatcher = BackgroundDispatcher(max_concurrency=1)
    started = []

    async def job(index: int) -> None:
        started.append(index)
        await asyncio.sleep(30)

    for index in range(5):
        dispatcher.spawn(f"chunk:demo:{index}", lambda index=index: job(index))
    await asyncio.sleep(0)

    await asyncio.wait_for(dispatcher.cancel_all(), timeout=1.0)

    assert dispatcher.pending == 0
    assert started == [0]
