"""Git access for gitapply."""

from __future__ import annotations

from pathlib import Path, PurePosixPath
from typing import Protocol

import git
from git import GitCommandError, InvalidGitRepositoryError, NoSuchPathError, Repo
from git.exc import BadName, BadObject
from loguru import logger

from .models import Change, is_zero


class RepositoryError(RuntimeError):
    """Raised when the local clone cannot be read or updated."""


class TagExistsError(RepositoryError):
    """Raised when creating a tag that already exists."""


class TagNotFoundError(RepositoryError):
    """Raised when deleting a tag that does not exist."""


class RepositoryAccessor(Protocol):
    """Operations the apply core needs from a repository clone."""

    def fetch_latest(self, branch: str) -> str: ...

    def read_tag(self, name: str) -> str | None: ...

    def create_tag(self, name: str, commit: str) -> None: ...

    def delete_tag(self, name: str) -> None: ...

    def diff(self, from_commit: str, to_commit: str, subpath: str) -> list[Change]: ...


def normalize_subpath(subpath: str | PurePosixPath | None) -> str:
    """Return ``subpath`` as a posix path without leading ``./`` or slashes."""

    if subpath is None:
        return ""
    text = PurePosixPath(str(subpath).replace("\\", "/")).as_posix()
    if text in (".", "/"):
        return ""
    return text.strip("/")


class GitRepository:
    """``RepositoryAccessor`` backed by a local GitPython clone."""

    def __init__(self, repo: Repo) -> None:
        self.repo = repo

    @property
    def directory(self) -> Path:
        return Path(self.repo.working_tree_dir or self.repo.git_dir)

    @classmethod
    def open(cls, directory: Path) -> "GitRepository":
        try:
            return cls(Repo(directory))
        except (InvalidGitRepositoryError, NoSuchPathError) as exc:
            raise RepositoryError(f"Error opening repository: {directory}") from exc

    @classmethod
    def open_or_clone(cls, url: str, directory: Path, branch: str) -> "GitRepository":
        """Open the clone at ``directory``, cloning ``url`` there first if needed."""

        if (directory / ".git").exists():
            return cls.open(directory)

        logger.info("Cloning {} (branch {}) into {}", url, branch, directory)
        directory.parent.mkdir(parents=True, exist_ok=True)
        try:
            repo = Repo.clone_from(url, directory, branch=branch)
        except GitCommandError as exc:
            raise RepositoryError(f"Error cloning {url} into {directory}: {str(exc.stderr).strip()}") from exc
        return cls(repo)

    def fetch_latest(self, branch: str) -> str:
        """Fetch ``branch`` from origin, check it out detached, and return its head."""

        tracking = f"refs/remotes/origin/{branch}"
        try:
            origin = self.repo.remote("origin")
        except ValueError as exc:
            raise RepositoryError(f"Repository {self.directory} has no 'origin' remote") from exc

        try:
            origin.fetch(f"+refs/heads/{branch}:{tracking}")
        except GitCommandError as exc:
            raise RepositoryError(
                f"Error fetching branch {branch} from remote repository {origin.url}: {str(exc.stderr).strip()}"
            ) from exc

        try:
            head = self.repo.commit(tracking).hexsha
            self.repo.git.checkout(head, force=True)
        except (GitCommandError, BadName, BadObject, ValueError) as exc:
            raise RepositoryError(f"Error checking out {tracking} in {self.directory}") from exc

        logger.debug("Fetched {} at {} in {}", branch, head, self.directory)
        return head

    def read_tag(self, name: str) -> str | None:
        ref = git.TagReference(self.repo, f"refs/tags/{name}")
        if not ref.is_valid():
            return None
        try:
            return ref.commit.hexsha
        except ValueError as exc:
            raise RepositoryError(f"Error getting reference to tag {name}") from exc

    def create_tag(self, name: str, commit: str) -> None:
        if self.read_tag(name) is not None:
            raise TagExistsError(f"Tag {name} already exists")
        try:
            self.repo.create_tag(name, ref=commit)
        except GitCommandError as exc:
            if "already exists" in str(exc.stderr):
                raise TagExistsError(f"Tag {name} already exists") from exc
            raise RepositoryError(f"Error creating tag {name} with hash {commit}") from exc

    def delete_tag(self, name: str) -> None:
        if self.read_tag(name) is None:
            raise TagNotFoundError(f"Tag {name} not found")
        try:
            self.repo.delete_tag(name)
        except GitCommandError as exc:
            if "not found" in str(exc.stderr):
                raise TagNotFoundError(f"Tag {name} not found") from exc
            raise RepositoryError(f"Error deleting tag {name}") from exc

    def diff(self, from_commit: str, to_commit: str, subpath: str) -> list[Change]:
        """Return per-file differences between the subtrees at ``subpath``."""

        before = self._flatten(from_commit, subpath)
        after = self._flatten(to_commit, subpath)

        changes: list[Change] = []
        for name in sorted(before.keys() | after.keys()):
            old = before.get(name)
            new = after.get(name)
            if old == new:
                continue
            changes.append(
                Change(
                    from_name=name if old is not None else "",
                    to_name=name if new is not None else "",
                    from_blob=old[0] if old else "",
                    to_blob=new[0] if new else "",
                )
            )
        return changes

    # ------------------------------------------------------------------
    # Internal helpers

    def _subtree(self, commit: str, subpath: str) -> git.Tree | None:
        if is_zero(commit):
            return None

        try:
            tree = self.repo.commit(commit).tree
        except (BadName, BadObject, ValueError) as exc:
            raise RepositoryError(f"Error getting commit at hash {commit} from repo {self.directory}") from exc

        path = normalize_subpath(subpath)
        if not path:
            return tree
        try:
            subtree = tree / path
        except KeyError as exc:
            raise RepositoryError(f"Error getting sub tree at path {path} for commit {commit}") from exc
        if not isinstance(subtree, git.Tree):
            raise RepositoryError(f"Path {path} at commit {commit} is not a directory")
        return subtree

    def _flatten(self, commit: str, subpath: str) -> dict[str, tuple[str, int]]:
        subtree = self._subtree(commit, subpath)
        if subtree is None:
            return {}

        prefix = PurePosixPath(subtree.path) if subtree.path else None
        entries: dict[str, tuple[str, int]] = {}
        for item in subtree.traverse():
            if item.type != "blob":
                continue
            path = PurePosixPath(item.path)
            name = path.relative_to(prefix).as_posix() if prefix else path.as_posix()
            entries[name] = (item.hexsha, item.mode)
        return entries

