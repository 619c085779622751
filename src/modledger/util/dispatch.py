"""
Run engine coroutines from foreign threads and deliver results elsewhere.

The engine lives on one asyncio loop. Callers such as a game tick thread may
need their continuation to run on their own executor instead of on the
loop; :func:`submit` schedules the coroutine on the engine loop and hands
the outcome to a callback on the executor the caller picks.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
from typing import Any, Callable, Coroutine, Optional, TypeVar

from modledger.util.logger import get_logger

logger = get_logger("dispatch")

T = TypeVar("T")

Executor = Callable[[Callable[[], None]], Any]


def _run_inline(task: Callable[[], None]) -> None:
    task()


def submit(
    coro: Coroutine[Any, Any, T],
    loop: asyncio.AbstractEventLoop,
    callback: Optional[Callable[[Optional[T], Optional[BaseException]], None]] = None,
    executor: Optional[Executor] = None,
) -> "concurrent.futures.Future[T]":
    """
    Schedule ``coro`` on ``loop`` from any thread.

    Args:
        coro: Engine coroutine to run.
        loop: The engine's running event loop.
        callback: Called as ``callback(result, error)`` once ``coro`` finishes;
            exactly one of the two is not None.
        executor: Callable that accepts a zero-argument task and runs it where
            the caller needs (e.g. ``thread_pool.submit`` or a game scheduler's
            ``run_task``). Defaults to running on the thread that completed
            the future.

    Returns:
        The concurrent future for callers that prefer to block or poll.
    """
    future = asyncio.run_coroutine_threadsafe(coro, loop)
    if callback is None:
        return future

    run = executor or _run_inline

    def _deliver(done: "concurrent.futures.Future[T]") -> None:
        if done.cancelled():
            outcome, error = None, concurrent.futures.CancelledError()
        elif done.exception() is not None:
            outcome, error = None, done.exception()
        else:
            outcome, error = done.result(), None

        def _continuation() -> None:
            try:
                callback(outcome, error)
            except Exception:
                logger.exception("[DISPATCH] Continuation raised")

        run(_continuation)

    future.add_done_callback(_deliver)
    return future
