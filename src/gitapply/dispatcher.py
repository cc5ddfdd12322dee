"""Apply every change of a changeset concurrently."""

from __future__ import annotations

import asyncio

from loguru import logger

from .methods import Method
from .models import Change, ChangeSet, Destination


class DispatchError(RuntimeError):
    """Raised when at least one change of a changeset failed to apply."""

    def __init__(self, message: str, *, change: Change, failures: int) -> None:
        super().__init__(message)
        self.change = change
        self.failures = failures


async def apply_all(method: Method, changeset: ChangeSet) -> None:
    """Run ``method.apply`` once per change and wait for every call to finish.

    Raises ``DispatchError`` for the first failure reported, after all tasks
    have completed. Cancelling the caller cancels the in-flight tasks.
    """

    if not changeset:
        return

    failures: list[tuple[Change, BaseException]] = []

    async def _run(change: Change, destination: Destination) -> None:
        try:
            await method.apply(change, destination)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("Method {} failed on {}: {}", method.kind, change.describe(), exc)
            failures.append((change, exc))

    tasks = [asyncio.create_task(_run(change, destination)) for change, destination in changeset]
    try:
        await asyncio.gather(*tasks)
    except asyncio.CancelledError:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise

    if failures:
        change, exc = failures[0]
        raise DispatchError(
            f"error running method {method.kind} for change from: '{change.from_name}' to '{change.to_name}': {exc}",
            change=change,
            failures=len(failures),
        ) from exc
