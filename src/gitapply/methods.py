"""Deployment methods driven by the dispatcher, one call per change."""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, ClassVar, Dict

from loguru import logger

from .config import ConfigError, MethodConfig
from .filesystem import place_file, prune_empty_parents, remove_path
from .models import Change, Deletion, Destination, ScheduleInfo
from .threads import run_blocking


class MethodError(RuntimeError):
    """Raised when a method cannot reconcile the host with a change."""


class Method(ABC):
    """Interface every deployment method implements.

    ``apply`` must be idempotent: it can be called again for a change whose
    previous outcome is unknown, for instance when an interrupted changeset
    is replayed.
    """

    kind: ClassVar[str]

    def __init__(self, config: MethodConfig) -> None:
        self.config = config

    @property
    def target_path(self) -> str:
        return self.config.target_path

    @property
    def glob(self) -> str | None:
        return self.config.glob

    @property
    def suffixes(self) -> tuple[str, ...] | None:
        return self.config.suffixes

    def schedule_info(self) -> ScheduleInfo:
        return ScheduleInfo(interval=self.config.interval, jitter=self.config.jitter)

    @abstractmethod
    async def apply(self, change: Change, destination: Destination) -> None:
        """Reconcile the host with ``change``; ``destination`` may be ``DELETE``."""


class FileTransferMethod(Method):
    """Places changed files under a destination directory on the host."""

    kind = "filetransfer"

    def __init__(self, config: MethodConfig) -> None:
        super().__init__(config)
        if config.destination is None:
            raise ConfigError(f"Method '{self.kind}' requires a 'destination' directory")
        self.destination_dir: Path = config.destination

    def installed_path(self, name: str) -> Path:
        return self.destination_dir / name

    async def apply(self, change: Change, destination: Destination) -> None:
        await run_blocking(self._apply_sync, change, destination)

    def _apply_sync(self, change: Change, destination: Destination) -> None:
        try:
            if change.from_name and change.from_name != change.to_name:
                self._remove(change.from_name)

            if isinstance(destination, Deletion):
                return

            installed = self.installed_path(change.to_name)
            if place_file(destination, installed, mode=self.config.mode):
                logger.info("Placed {} at {}", destination, installed)
            else:
                logger.debug("{} already up to date", installed)
        except OSError as exc:
            raise MethodError(f"Error transferring {change.describe()} to {self.destination_dir}: {exc}") from exc

    def _remove(self, name: str) -> None:
        installed = self.installed_path(name)
        if remove_path(installed):
            logger.info("Removed {}", installed)
            prune_empty_parents(installed, stop=self.destination_dir)


MethodFactory = Callable[[MethodConfig], Method]

_REGISTRY: Dict[str, MethodFactory] = {
    FileTransferMethod.kind: FileTransferMethod,
}


def register_method(kind: str, factory: MethodFactory) -> None:
    """Make ``kind`` available to ``build_method``."""

    _REGISTRY[kind] = factory


def registered_kinds() -> tuple[str, ...]:
    return tuple(sorted(_REGISTRY))


def build_method(config: MethodConfig) -> Method:
    try:
        factory = _REGISTRY[config.kind]
    except KeyError as exc:
        known = ", ".join(registered_kinds())
        raise ConfigError(f"Unknown method '{config.kind}' (known methods: {known})") from exc
    return factory(config)
