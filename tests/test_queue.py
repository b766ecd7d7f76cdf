"""Tests for relaybot.agent.queue — serial FIFO semantics."""

from __future__ import annotations

import asyncio
import random

import pytest
from conftest import FakeRunner

from relaybot.agent.queue import JobQueue
from relaybot.agent.types import CANCELLED_FROM_QUEUE, Destination

DEST = Destination("console", "c1")


@pytest.mark.asyncio
async def test_enqueue_runs_and_resolves(fake_runner):
    queue = JobQueue(fake_runner)
    handle = queue.enqueue("hello", DEST)

    result = await handle.result()
    assert result.output == "done: hello"
    assert handle.position == 1
    assert fake_runner.calls[0][1] == handle.id
    assert not queue.is_processing


@pytest.mark.asyncio
async def test_n_enqueues_fifo_and_serial(fake_runner):
    """N enqueues → N results, FIFO start order, never two at once."""
    queue = JobQueue(fake_runner)
    handles = [queue.enqueue(f"job-{i}", DEST) for i in range(10)]

    results = await asyncio.gather(*(h.result() for h in handles))

    assert [r.output for r in results] == [f"done: job-{i}" for i in range(10)]
    assert fake_runner.started == [f"job-{i}" for i in range(10)]
    assert fake_runner.max_active == 1


@pytest.mark.asyncio
async def test_concurrent_producers(fake_runner):
    """Producers on independent tasks still see one active job at a time."""
    fake_runner.delay = 0.001
    queue = JobQueue(fake_runner)

    async def producer(n: int):
        await asyncio.sleep(random.random() / 100)
        return await queue.enqueue(f"p{n}", DEST).result()

    results = await asyncio.gather(*(producer(n) for n in range(25)))

    assert len(results) == 25
    assert sorted(fake_runner.started) == sorted(f"p{n}" for n in range(25))
    assert fake_runner.max_active == 1


@pytest.mark.asyncio
async def test_positions_are_snapshots():
    runner = FakeRunner()
    runner.release = asyncio.Event()
    queue = JobQueue(runner)

    first = queue.enqueue("a", DEST)
    await asyncio.sleep(0)  # worker picks up "a"
    second = queue.enqueue("b", DEST)
    third = queue.enqueue("c", DEST)

    assert (first.position, second.position, third.position) == (1, 2, 3)
    assert len(queue) == 2

    runner.release.set()
    await asyncio.gather(first.result(), second.result(), third.result())
    assert second.position == 2  # not updated as the queue drains


@pytest.mark.asyncio
async def test_remove_from_queue():
    runner = FakeRunner()
    runner.release = asyncio.Event()
    queue = JobQueue(runner)

    running = queue.enqueue("a", DEST)
    await asyncio.sleep(0)
    waiting = queue.enqueue("b", DEST)

    assert queue.remove_from_queue(waiting.id) is True
    cancelled = await waiting.result()
    assert cancelled.cancelled
    assert cancelled.error == CANCELLED_FROM_QUEUE
    assert cancelled.status == "cancelled"

    # already removed / already started → no-op
    assert queue.remove_from_queue(waiting.id) is False
    assert queue.remove_from_queue(running.id) is False
    assert queue.remove_from_queue("nope") is False

    runner.release.set()
    await running.result()
    assert runner.started == ["a"]


@pytest.mark.asyncio
async def test_runner_exception_does_not_stop_worker(fake_runner):
    queue = JobQueue(fake_runner)
    bad = queue.enqueue("boom", DEST)
    good = queue.enqueue("fine", DEST)

    with pytest.raises(RuntimeError, match="runner exploded"):
        await bad.result()
    assert (await good.result()).output == "done: fine"


@pytest.mark.asyncio
async def test_worker_restarts_after_idle(fake_runner):
    queue = JobQueue(fake_runner)
    await queue.enqueue("one", DEST).result()
    assert not queue.is_processing

    await queue.enqueue("two", DEST).result()
    assert fake_runner.started == ["one", "two"]


@pytest.mark.asyncio
async def test_pending_snapshot_and_current():
    runner = FakeRunner()
    runner.release = asyncio.Event()
    queue = JobQueue(runner)

    a = queue.enqueue("a", DEST)
    await asyncio.sleep(0)
    queue.enqueue("b", DEST, working_dir="/tmp")

    assert queue.current_job.id == a.id
    pending = queue.pending()
    assert [j.prompt for j in pending] == ["b"]
    assert str(pending[0].working_dir) == "/tmp"

    runner.release.set()
    await a.result()


@pytest.mark.asyncio
async def test_shutdown_cancels_pending():
    runner = FakeRunner()
    runner.release = asyncio.Event()
    queue = JobQueue(runner)

    a = queue.enqueue("a", DEST)
    await asyncio.sleep(0)
    b = queue.enqueue("b", DEST)

    async def finish_soon():
        await asyncio.sleep(0.05)
        runner.release.set()

    asyncio.create_task(finish_soon())
    await queue.shutdown(timeout_s=2)

    assert (await b.result()).cancelled
    assert (await a.result()).output == "done: a"
    assert runner.started == ["a"]
    assert not queue.is_processing
