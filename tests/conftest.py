from __future__ import annotations

import asyncio
import sys
import threading
import time
from pathlib import Path, PurePosixPath
from typing import Callable, Iterable, Iterator, Mapping

import pytest
from git import Repo
from loguru import logger

from gitapply.config import MethodConfig
from gitapply.methods import Method
from gitapply.models import ZERO_COMMIT, Change, Destination, is_zero
from gitapply.repository import TagExistsError, TagNotFoundError, normalize_subpath


@pytest.fixture
def fake_home(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("USERPROFILE", str(home))
    return home


@pytest.fixture(autouse=True)
def git_identity(monkeypatch: pytest.MonkeyPatch) -> None:
    for prefix in ("GIT_AUTHOR", "GIT_COMMITTER"):
        monkeypatch.setenv(f"{prefix}_NAME", "gitapply tests")
        monkeypatch.setenv(f"{prefix}_EMAIL", "tests@example.com")


@pytest.fixture(autouse=True)
def reset_logging() -> Iterator[None]:
    """Drop sinks the CLI bound to a test runner's streams."""

    yield
    logger.remove()
    logger.add(sys.stderr, level="DEBUG")


class Upstream:
    """A working-tree repository acting as the remote for clones."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self.repo = Repo.init(path)
        self.commit({}, message="initial")
        self.repo.git.checkout("-B", "main")

    @property
    def url(self) -> str:
        return str(self.path)

    def commit(self, files: Mapping[str, str | None], *, message: str = "update") -> str:
        """Write (or delete, for ``None``) ``files`` and commit them."""

        added: list[str] = []
        removed: list[str] = []
        for name, content in files.items():
            path = self.path / name
            if content is None:
                removed.append(name)
                continue
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content)
            added.append(name)
        if added:
            self.repo.index.add(added)
        if removed:
            self.repo.index.remove(removed, working_tree=True)
        return self.repo.index.commit(message).hexsha


@pytest.fixture
def upstream(tmp_path: Path) -> Upstream:
    return Upstream(tmp_path / "upstream")


class FakeRepository:
    """In-memory ``RepositoryAccessor`` with linear history."""

    def __init__(self) -> None:
        self.commits: dict[str, dict[str, str]] = {}
        self.tags: dict[str, str] = {}
        self.head = ZERO_COMMIT
        self.fetch_error: Exception | None = None
        self.fetches = 0
        self.fetch_delay = 0.0
        self.diff_delay = 0.0
        self.active_fetches = 0
        self.max_active_fetches = 0
        self._guard = threading.Lock()

    def commit(self, files: Mapping[str, str | None]) -> str:
        tree = dict(self.commits.get(self.head, {}))
        for name, content in files.items():
            if content is None:
                tree.pop(name, None)
            else:
                tree[name] = content
        sha = f"{len(self.commits) + 1:040x}"
        self.commits[sha] = tree
        self.head = sha
        return sha

    def fetch_latest(self, branch: str) -> str:
        with self._guard:
            self.fetches += 1
            self.active_fetches += 1
            self.max_active_fetches = max(self.max_active_fetches, self.active_fetches)
        try:
            time.sleep(self.fetch_delay)
            if self.fetch_error is not None:
                raise self.fetch_error
            return self.head
        finally:
            with self._guard:
                self.active_fetches -= 1

    def read_tag(self, name: str) -> str | None:
        return self.tags.get(name)

    def create_tag(self, name: str, commit: str) -> None:
        if name in self.tags:
            raise TagExistsError(name)
        self.tags[name] = commit

    def delete_tag(self, name: str) -> None:
        if name not in self.tags:
            raise TagNotFoundError(name)
        del self.tags[name]

    def diff(self, from_commit: str, to_commit: str, subpath: str) -> list[Change]:
        time.sleep(self.diff_delay)
        before = self._subtree(from_commit, subpath)
        after = self._subtree(to_commit, subpath)
        changes: list[Change] = []
        for name in sorted(before.keys() | after.keys()):
            old, new = before.get(name), after.get(name)
            if old == new:
                continue
            changes.append(
                Change(
                    from_name=name if old is not None else "",
                    to_name=name if new is not None else "",
                    from_blob=old or "",
                    to_blob=new or "",
                )
            )
        return changes

    def _subtree(self, commit: str, subpath: str) -> dict[str, str]:
        if is_zero(commit):
            return {}
        prefix = normalize_subpath(subpath)
        tree = self.commits[commit]
        if not prefix:
            return dict(tree)
        result: dict[str, str] = {}
        for name, content in tree.items():
            path = PurePosixPath(name)
            if PurePosixPath(prefix) in path.parents:
                result[path.relative_to(prefix).as_posix()] = content
        return result


@pytest.fixture
def fake_repo() -> FakeRepository:
    return FakeRepository()


class RecordingMethod(Method):
    """Method that records calls and fails on chosen names."""

    kind = "recording"

    def __init__(
        self,
        config: MethodConfig | None = None,
        *,
        fail_on: Iterable[str] = (),
        delays: Mapping[str, float] | None = None,
        on_apply: Callable[[Change, Destination], None] | None = None,
    ) -> None:
        super().__init__(config or MethodConfig(kind=self.kind))
        self.fail_on = set(fail_on)
        self.delays = dict(delays or {})
        self.on_apply = on_apply
        self.calls: list[tuple[Change, Destination]] = []

    async def apply(self, change: Change, destination: Destination) -> None:
        self.calls.append((change, destination))
        if self.on_apply is not None:
            self.on_apply(change, destination)
        await asyncio.sleep(self.delays.get(change.name, 0))
        if change.name in self.fail_on:
            raise RuntimeError(f"boom: {change.name}")


@pytest.fixture
def recording_method() -> Callable[..., RecordingMethod]:
    return RecordingMethod
