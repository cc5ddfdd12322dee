"""Durable apply progress stored as git tags in the target clone."""

from __future__ import annotations

from loguru import logger

from .models import ZERO_COMMIT, TagStatus
from .repository import RepositoryAccessor, TagExistsError, TagNotFoundError

CURRENT_PREFIX = "current"
PROGRESS_PREFIX = "progress"


def current_tag(method: str) -> str:
    """Name of the tag marking the last fully applied commit for ``method``."""

    return f"{CURRENT_PREFIX}-{method}"


def progress_tag(method: str) -> str:
    """Name of the tag marking a commit whose changeset started applying."""

    return f"{PROGRESS_PREFIX}-{method}"


class StateTagStore:
    """Reads and writes the ``current-*`` and ``progress-*`` tags of one clone.

    The store is not safe against concurrent writers of the same tag; callers
    hold the target lock while using it.
    """

    def __init__(self, repository: RepositoryAccessor) -> None:
        self.repository = repository

    def read_tag(self, name: str) -> str | None:
        return self.repository.read_tag(name)

    def write_tag(self, name: str, commit: str) -> None:
        """Point ``name`` at ``commit``, replacing any existing tag."""

        self.delete_tag(name)
        try:
            self.repository.create_tag(name, commit)
        except TagExistsError:
            logger.debug("Tag {} already exists, keeping it", name)

    def delete_tag(self, name: str) -> None:
        try:
            self.repository.delete_tag(name)
        except TagNotFoundError:
            return

    # ------------------------------------------------------------------
    # Per-method helpers

    def read_current(self, method: str) -> str:
        return self.read_tag(current_tag(method)) or ZERO_COMMIT

    def read_progress(self, method: str) -> str:
        return self.read_tag(progress_tag(method)) or ZERO_COMMIT

    def update_current(self, method: str, commit: str) -> None:
        logger.debug("Moving {} to {}", current_tag(method), commit)
        self.write_tag(current_tag(method), commit)

    def create_progress(self, method: str, commit: str) -> None:
        """Record ``commit`` as in flight; an existing progress tag is left alone."""

        try:
            self.repository.create_tag(progress_tag(method), commit)
        except TagExistsError:
            logger.debug("Progress tag for {} already exists", method)

    def delete_progress(self, method: str) -> None:
        self.delete_tag(progress_tag(method))

    def snapshot(self, target: str, method: str) -> TagStatus:
        return TagStatus(
            target=target,
            method=method,
            current=self.read_current(method),
            progress=self.read_progress(method),
        )

    def forget(self, method: str) -> None:
        """Drop both tags so the next tick starts from the empty tree."""

        self.delete_progress(method)
        self.delete_tag(current_tag(method))
