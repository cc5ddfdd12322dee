from __future__ import annotations

import asyncio
import threading
import time

import pytest

from gitapply.threads import run_blocking


def test_run_blocking_returns_the_result() -> None:
    assert asyncio.run(run_blocking(divmod, 7, 2)) == (3, 1)


def test_run_blocking_propagates_errors() -> None:
    def _fail() -> None:
        raise ValueError("bad tree")

    with pytest.raises(ValueError, match="bad tree"):
        asyncio.run(run_blocking(_fail))


def test_cancel_waits_for_the_worker_thread() -> None:
    started = threading.Event()
    finished = threading.Event()

    def _slow() -> None:
        started.set()
        time.sleep(0.2)
        finished.set()

    async def _scenario() -> bool:
        task = asyncio.create_task(run_blocking(_slow))
        while not started.is_set():
            await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        return finished.is_set()

    assert asyncio.run(_scenario()) is True


def test_cancel_does_not_leak_worker_errors() -> None:
    started = threading.Event()

    def _slow_failure() -> None:
        started.set()
        time.sleep(0.1)
        raise OSError("disk gone")

    async def _scenario() -> None:
        task = asyncio.create_task(run_blocking(_slow_failure))
        while not started.is_set():
            await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(_scenario())
