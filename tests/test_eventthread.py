import asyncio
import threading
import time

import pytest

from yrpc.eventthread import EventThread


@pytest.fixture
def io_thread():
    thread = EventThread()
    thread.start()
    yield thread
    thread.stop()
    thread.join(5)


def test_call_soon_runs_on_loop_thread(io_thread):
    done = threading.Event()
    seen = []

    def record(value):
        seen.append((value, threading.get_ident()))
        done.set()

    io_thread.call_soon(record, "value")
    assert done.wait(5)
    assert io_thread.is_running
    assert seen[0][0] == "value"
    assert seen[0][1] != threading.get_ident()


def test_submit_returns_coroutine_result(io_thread):
    async def echo(value):
        await asyncio.sleep(0)
        return value

    assert io_thread.submit(echo("value")).result(timeout=5) == "value"


def test_submit_before_start_runs_after_start():
    thread = EventThread()

    async def echo(value):
        return value

    future = thread.submit(echo("later"))
    assert not future.done()
    thread.start()
    try:
        assert future.result(timeout=5) == "later"
    finally:
        thread.stop()
        thread.join(5)


def test_call_every_ticks_until_cancelled(io_thread):
    ticks = []
    enough = threading.Event()

    def tick():
        ticks.append(time.monotonic())
        if len(ticks) >= 3:
            enough.set()

    future = io_thread.call_every(10, tick)
    assert enough.wait(5)
    future.cancel()
    time.sleep(0.05)
    count = len(ticks)
    time.sleep(0.1)
    assert len(ticks) == count
    assert ticks == sorted(ticks)
    assert io_thread.is_running


def test_call_every_survives_exceptions(io_thread):
    calls = []
    enough = threading.Event()

    def flaky():
        calls.append(1)
        if len(calls) >= 2:
            enough.set()
        raise ValueError("boom")

    future = io_thread.call_every(10, flaky)
    assert enough.wait(5)
    future.cancel()
    assert len(calls) >= 2
    assert io_thread.is_running


def test_start_twice_raises(io_thread):
    with pytest.raises(RuntimeError):
        io_thread.start()


def test_stop_finishes_thread_and_rejects_work():
    thread = EventThread()
    thread.start()
    assert thread.is_running
    thread.stop()
    thread.join(5)
    assert not thread.is_running

    async def noop():
        return None

    with pytest.raises(RuntimeError):
        thread.submit(noop())


def test_context_manager_runs_and_stops():
    async def echo(value):
        return value

    with EventThread() as thread:
        assert thread.submit(echo(5)).result(timeout=5) == 5
    assert not thread.is_running