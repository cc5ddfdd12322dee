"""High level orchestration of targets, methods, and their ticks."""

from __future__ import annotations

import asyncio
import random
from typing import Awaitable, Callable, Dict, Iterable, Sequence

from loguru import logger

from .config import Config, TargetConfig
from .coordinator import CatchUpCoordinator
from .methods import Method, build_method
from .models import ZERO_COMMIT, TagStatus, Target, TickOutcome, TickResult
from .repository import GitRepository, RepositoryAccessor
from .tags import StateTagStore
from .threads import run_blocking

RepositoryFactory = Callable[[Target], RepositoryAccessor]
Sleeper = Callable[[float], Awaitable[None]]


class AgentError(RuntimeError):
    """Raised when the agent is asked for something the configuration lacks."""


def _open_or_clone(target: Target) -> RepositoryAccessor:
    return GitRepository.open_or_clone(target.url, target.clone_dir, target.branch)


class Agent:
    """Owns one coordinator per target and schedules method ticks."""

    def __init__(self, config: Config, *, repository_factory: RepositoryFactory | None = None) -> None:
        self.config = config
        self._repository_factory = repository_factory or _open_or_clone
        self.targets: Dict[str, Target] = {
            name: _target_from_config(target_config) for name, target_config in config.targets.items()
        }
        self.methods: Dict[str, list[Method]] = {
            name: [build_method(method_config) for method_config in target_config.methods.values()]
            for name, target_config in config.targets.items()
        }
        self._coordinators: Dict[str, CatchUpCoordinator] = {}
        self.last_results: Dict[tuple[str, str], TickResult] = {}

    async def prepare(self, name: str) -> CatchUpCoordinator:
        """Return the coordinator for ``name``, opening (or cloning) its repository once."""

        target = self._target(name)
        if name not in self._coordinators:
            async with target.lock:
                if name not in self._coordinators:
                    repository = await run_blocking(self._repository_factory, target)
                    self._coordinators[name] = CatchUpCoordinator(target, repository)
        return self._coordinators[name]

    async def run_once(self, targets: Iterable[str] | None = None, *, initial: bool = False) -> list[TickResult]:
        """Tick every method of the selected targets once; targets run concurrently."""

        selected = self._select_targets(targets)
        batches = await asyncio.gather(*(self._tick_target(name, initial=initial) for name in selected))
        return [result for batch in batches for result in batch]

    async def watch(
        self,
        targets: Iterable[str] | None = None,
        *,
        max_ticks: int | None = None,
        sleep: Sleeper = asyncio.sleep,
        rng: Callable[[], float] = random.random,
    ) -> list[TickResult]:
        """Tick each (target, method) on its own schedule.

        The first tick of every pair is an initial catch-up. Runs forever unless
        ``max_ticks`` bounds the number of ticks per pair; only a bounded run
        collects and returns every result. ``last_results`` always holds the
        latest result of each pair.
        """

        selected = self._select_targets(targets)
        results: list[TickResult] = []

        async def _loop(name: str, method: Method) -> None:
            schedule = method.schedule_info()
            initial = True
            ticks = 0
            while max_ticks is None or ticks < max_ticks:
                result = await self._tick_method(name, method, initial=initial)
                self.last_results[(name, method.kind)] = result
                if max_ticks is not None:
                    results.append(result)
                initial = initial and result.outcome is TickOutcome.FAILED
                ticks += 1
                if max_ticks is not None and ticks >= max_ticks:
                    break
                delay = schedule.interval + rng() * schedule.jitter
                logger.debug("Next tick for {}/{} in {:.1f}s", name, method.kind, delay)
                await sleep(delay)

        await asyncio.gather(*(_loop(name, method) for name in selected for method in self.methods[name]))
        return results

    def status(self, targets: Iterable[str] | None = None) -> list[TagStatus]:
        statuses: list[TagStatus] = []
        for name in self._select_targets(targets):
            target = self.targets[name]
            store = self._existing_store(target)
            for method in self.methods[name]:
                if store is None:
                    statuses.append(TagStatus(name, method.kind, ZERO_COMMIT, ZERO_COMMIT))
                else:
                    statuses.append(store.snapshot(name, method.kind))
        return statuses

    def reset(self, name: str, kinds: Sequence[str] | None = None) -> list[str]:
        """Forget the tags of ``kinds`` (default: every method) on target ``name``."""

        target = self._target(name)
        store = self._existing_store(target)
        available = [method.kind for method in self.methods[name]]
        selected = list(kinds) if kinds else available
        for kind in selected:
            if kind not in available:
                raise AgentError(f"Target '{name}' has no method '{kind}'")
        if store is None:
            return []
        for kind in selected:
            store.forget(kind)
            logger.info("Forgot applied state of {}/{}", name, kind)
        return selected

    # ------------------------------------------------------------------
    # Internal helpers

    def _target(self, name: str) -> Target:
        try:
            return self.targets[name]
        except KeyError as exc:
            raise AgentError(f"Unknown target '{name}'") from exc

    def _select_targets(self, targets: Iterable[str] | None) -> list[str]:
        if targets is None:
            return list(self.targets)
        selected: list[str] = []
        for name in targets:
            self._target(name)
            selected.append(name)
        return selected

    def _existing_store(self, target: Target) -> StateTagStore | None:
        if target.name in self._coordinators:
            return self._coordinators[target.name].store
        if not (target.clone_dir / ".git").exists():
            return None
        return StateTagStore(GitRepository.open(target.clone_dir))

    async def _tick_target(self, name: str, *, initial: bool) -> list[TickResult]:
        return list(
            await asyncio.gather(*(self._tick_method(name, method, initial=initial) for method in self.methods[name]))
        )

    async def _tick_method(self, name: str, method: Method, *, initial: bool) -> TickResult:
        try:
            coordinator = await self.prepare(name)
        except Exception as exc:  # noqa: BLE001
            logger.error("Could not prepare target {}: {}", name, exc)
            return TickResult(target=name, method=method.kind, outcome=TickOutcome.FAILED, error=str(exc))
        return await coordinator.run_tick(method, initial=initial)


def _target_from_config(config: TargetConfig) -> Target:
    return Target(name=config.name, url=config.url, branch=config.branch, clone_dir=config.clone_dir)
