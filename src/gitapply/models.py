"""Shared models and enums for gitapply."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Union

ZERO_COMMIT = "0" * 40
"""Commit id standing for "no history"; resolves to the empty tree."""


def is_zero(commit: str | None) -> bool:
    return not commit or commit == ZERO_COMMIT


class Deletion(Enum):
    """Destination marker for changes that remove an artifact."""

    DELETE = "delete"

    def __repr__(self) -> str:
        return "DELETE"


DELETE = Deletion.DELETE

Destination = Union[Path, Deletion]


class ChangeKind(str, Enum):
    """Operation implied by a tree entry difference."""

    CREATE = "create"
    MODIFY = "modify"
    DELETE = "delete"


@dataclass(frozen=True, slots=True)
class Change:
    """One file that differs between two trees.

    Names are relative to the diffed subpath and empty on the side where the
    file does not exist. Equality and hashing use the content of the change.
    """

    from_name: str = ""
    to_name: str = ""
    from_blob: str = ""
    to_blob: str = ""

    @property
    def kind(self) -> ChangeKind:
        if not self.to_name:
            return ChangeKind.DELETE
        if not self.from_name:
            return ChangeKind.CREATE
        return ChangeKind.MODIFY

    @property
    def name(self) -> str:
        return self.to_name or self.from_name

    def describe(self) -> str:
        return f"{self.kind.value} from '{self.from_name}' to '{self.to_name}'"


@dataclass(frozen=True, slots=True)
class ChangeSet:
    """Filtered changes paired with their resolved destinations."""

    entries: tuple[tuple[Change, Destination], ...] = ()

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self):
        return iter(self.entries)

    def __bool__(self) -> bool:
        return bool(self.entries)


@dataclass(frozen=True, slots=True)
class ScheduleInfo:
    """How often a method wants to be ticked."""

    interval: float
    jitter: float = 0.0


@dataclass(eq=False)
class Target:
    """A tracked repository branch and its local clone."""

    name: str
    url: str
    branch: str
    clone_dir: Path
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)


class TickState(str, Enum):
    """Tag-derived state of a (target, method) pair."""

    CLEAN = "clean"
    INTERRUPTED = "interrupted"


class TickOutcome(str, Enum):
    """Outcome of one coordinator tick."""

    UP_TO_DATE = "up_to_date"
    APPLIED = "applied"
    RECOVERED = "recovered"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class TickResult:
    """Result emitted for each (target, method) tick."""

    target: str
    method: str
    outcome: TickOutcome
    from_commit: str = ZERO_COMMIT
    to_commit: str = ZERO_COMMIT
    changes: int = 0
    error: str | None = None


@dataclass(frozen=True, slots=True)
class TagStatus:
    """Snapshot of the state tags for a (target, method) pair."""

    target: str
    method: str
    current: str
    progress: str

    @property
    def state(self) -> TickState:
        if not is_zero(self.progress) and self.progress != self.current:
            return TickState.INTERRUPTED
        return TickState.CLEAN
