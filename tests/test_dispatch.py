"""Tests for cross-thread dispatch onto the engine loop."""

import asyncio
import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from modledger.util.dispatch import submit


@pytest.fixture
def engine_loop():
    loop = asyncio.new_event_loop()
    thread = threading.Thread(target=loop.run_forever, daemon=True)
    thread.start()
    yield loop
    loop.call_soon_threadsafe(loop.stop)
    thread.join(timeout=5)
    loop.close()


async def double(value):
    await asyncio.sleep(0)
    return value * 2


async def explode():
    raise ValueError("bad input")


def test_future_carries_the_result(engine_loop):
    assert submit(double(21), engine_loop).result(timeout=5) == 42


def test_callback_runs_on_chosen_executor(engine_loop):
    delivered = threading.Event()
    seen = {}

    def callback(result, error):
        seen["result"] = result
        seen["error"] = error
        seen["thread"] = threading.current_thread().name
        delivered.set()

    with ThreadPoolExecutor(max_workers=1, thread_name_prefix="game-tick") as pool:
        submit(double(5), engine_loop, callback, executor=pool.submit)
        assert delivered.wait(timeout=5)

    assert seen["result"] == 10
    assert seen["error"] is None
    assert seen["thread"].startswith("game-tick")


def test_callback_receives_the_error(engine_loop):
    delivered = threading.Event()
    seen = {}

    def callback(result, error):
        seen.update(result=result, error=error)
        delivered.set()

    future = submit(explode(), engine_loop, callback)

    assert delivered.wait(timeout=5)
    assert seen["result"] is None
    assert isinstance(seen["error"], ValueError)
    with pytest.raises(ValueError):
        future.result(timeout=5)


def test_raising_callback_does_not_break_delivery(engine_loop):
    def callback(result, error):
        raise RuntimeError("continuation bug")

    future = submit(double(1), engine_loop, callback)

    assert future.result(timeout=5) == 2
