"""Run blocking git and filesystem work off the event loop."""

from __future__ import annotations

import asyncio
from typing import Any, Callable, TypeVar

T = TypeVar("T")


async def run_blocking(func: Callable[..., T], /, *args: Any, **kwargs: Any) -> T:
    """Call ``func`` in a worker thread and return its result.

    A worker thread cannot be interrupted, so when the caller is cancelled
    this waits for the call to return before re-raising. Locks held by the
    caller therefore stay held while the thread still touches the clone or
    the host.
    """

    future = asyncio.ensure_future(asyncio.to_thread(func, *args, **kwargs))
    try:
        return await asyncio.shield(future)
    except asyncio.CancelledError:
        await asyncio.wait({future})
        if not future.cancelled():
            future.exception()
        raise
