"""Resumable catch-up of a target clone for one deployment method.

Each tick fetches the branch head, replays any changeset left in flight by an
earlier tick, and then applies the changes between the last applied commit
and the new head. Two tags per method record progress in the clone:

* ``current-<method>`` points at the last commit whose changeset fully applied.
* ``progress-<method>`` is written before a changeset starts and removed once
  it settles, so a crash leaves ``progress != current`` behind.
"""

from __future__ import annotations

import asyncio

from loguru import logger

from .dispatcher import DispatchError, apply_all
from .methods import Method
from .models import ZERO_COMMIT, Target, TickOutcome, TickResult, is_zero
from .repository import RepositoryAccessor
from .selector import select_changes
from .tags import StateTagStore
from .threads import run_blocking


class CatchUpError(RuntimeError):
    """Raised when a tick cannot bring a method up to date."""


class CatchUpCoordinator:
    """Drives ticks for every method attached to one target."""

    def __init__(
        self,
        target: Target,
        repository: RepositoryAccessor,
        *,
        store: StateTagStore | None = None,
    ) -> None:
        self.target = target
        self.repository = repository
        self.store = store or StateTagStore(repository)

    async def apply(self, method: Method, from_commit: str, to_commit: str) -> int:
        """Apply the filtered changeset ``from_commit -> to_commit``; return its size."""

        if is_zero(to_commit):
            raise CatchUpError("Cannot run apply if desired state is empty")

        changeset = await run_blocking(
            select_changes,
            self.repository,
            self.target.clone_dir,
            method.target_path,
            from_commit,
            to_commit,
            suffixes=method.suffixes,
            glob_pattern=method.glob,
        )
        logger.info(
            "Applying {} change(s) for {}/{} from {} to {}",
            len(changeset),
            self.target.name,
            method.kind,
            _short(from_commit),
            _short(to_commit),
        )

        try:
            await apply_all(method, changeset)
        except DispatchError as exc:
            raise CatchUpError(
                f"Error applying change from {from_commit} to {to_commit} "
                f"for path '{method.target_path}' in {self.target.clone_dir}: {exc}"
            ) from exc

        return len(changeset)

    async def catch_up_current(self, method: Method, current: str) -> int:
        """Re-apply everything up to ``current`` starting from the empty tree."""

        try:
            return await self.apply(method, ZERO_COMMIT, current)
        except CatchUpError:
            raise
        except Exception as exc:
            raise CatchUpError(f"Failed to apply changes up to current {current}: {exc}") from exc

    async def catch_up_progress(self, method: Method, current: str, progress: str) -> int:
        """Finish a changeset interrupted between ``current`` and ``progress``.

        Returns the number of replayed changes (0 when nothing was in flight).
        """

        replayed = 0
        if not is_zero(progress) and progress != current:
            logger.warning(
                "Found interrupted changeset for {}/{}: replaying {} -> {}",
                self.target.name,
                method.kind,
                _short(current),
                _short(progress),
            )
            try:
                replayed = await self.apply(method, current, progress)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                await run_blocking(self.store.delete_progress, method.kind)
                raise CatchUpError(f"Failed to apply from current to in progress: {exc}") from exc

            await run_blocking(self.store.update_current, method.kind, progress)

        await run_blocking(self.store.delete_progress, method.kind)
        return replayed

    async def catch_up_latest(self, method: Method, current: str, latest: str) -> int:
        """Apply ``current -> latest`` behind a progress tag and advance ``current``."""

        await run_blocking(self.store.create_progress, method.kind, latest)
        try:
            applied = await self.apply(method, current, latest)
        except asyncio.CancelledError:
            await self._discard_progress(method)
            raise
        except Exception as exc:
            await run_blocking(self.store.delete_progress, method.kind)
            raise CatchUpError(f"Failed to apply changes: {exc}") from exc

        await run_blocking(self.store.update_current, method.kind, latest)
        await run_blocking(self.store.delete_progress, method.kind)
        return applied

    async def process(self, method: Method, *, initial: bool = False) -> TickResult:
        """Run one full tick for ``method`` while holding the target lock."""

        async with self.target.lock:
            latest = await run_blocking(self.repository.fetch_latest, self.target.branch)
            current = await run_blocking(self.store.read_current, method.kind)
            progress = await run_blocking(self.store.read_progress, method.kind)
            start = current

            if initial and not is_zero(current):
                logger.info("Initial catch-up of {}/{} to {}", self.target.name, method.kind, _short(current))
                await self.catch_up_current(method, current)

            replayed = await self.catch_up_progress(method, current, progress)
            if not is_zero(progress) and progress != current:
                current = progress

            if latest == current:
                outcome = TickOutcome.RECOVERED if current != start else TickOutcome.UP_TO_DATE
                logger.debug("{}/{} is up to date at {}", self.target.name, method.kind, _short(current))
                return TickResult(
                    target=self.target.name,
                    method=method.kind,
                    outcome=outcome,
                    from_commit=start,
                    to_commit=current,
                    changes=replayed,
                )

            applied = await self.catch_up_latest(method, current, latest)
            logger.info("{}/{} moved to {}", self.target.name, method.kind, _short(latest))
            return TickResult(
                target=self.target.name,
                method=method.kind,
                outcome=TickOutcome.APPLIED,
                from_commit=start,
                to_commit=latest,
                changes=replayed + applied,
            )

    async def run_tick(self, method: Method, *, initial: bool = False) -> TickResult:
        """Like ``process`` but logs failures and reports them instead of raising."""

        try:
            return await self.process(method, initial=initial)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error("Tick for {}/{} failed: {}", self.target.name, method.kind, exc)
            return TickResult(
                target=self.target.name,
                method=method.kind,
                outcome=TickOutcome.FAILED,
                error=str(exc),
            )

    async def _discard_progress(self, method: Method) -> None:
        try:
            await run_blocking(self.store.delete_progress, method.kind)
        except Exception as exc:  # noqa: BLE001
            logger.error("Could not remove progress tag for {}/{}: {}", self.target.name, method.kind, exc)


def _short(commit: str) -> str:
    return "empty" if is_zero(commit) else commit[:12]
