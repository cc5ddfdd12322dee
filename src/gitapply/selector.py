"""Diff two commits of a target subpath and filter the result by policy."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Sequence

from loguru import logger

from .models import DELETE, Change, ChangeKind, ChangeSet, Destination
from .repository import RepositoryAccessor, normalize_subpath

MATCH_ALL = "**"


class GlobError(ValueError):
    """Raised when a glob pattern cannot be compiled."""


def compile_glob(pattern: str | None) -> re.Pattern[str]:
    """Compile ``pattern`` into a regular expression matched against whole names.

    ``*`` and ``**`` match any run of characters, path separators included.
    ``?`` matches one character, ``[...]`` and ``[!...]`` are character
    classes and ``{a,b}`` lists alternatives. ``\\`` escapes the next
    character.
    """

    if pattern is None:
        pattern = MATCH_ALL
    body, _ = _parse(pattern, 0, nested=False)
    return re.compile(f"(?s:{body})")


def _parse(pattern: str, index: int, *, nested: bool) -> tuple[str, int]:
    parts: list[str] = []
    length = len(pattern)

    while index < length:
        char = pattern[index]
        if char == "\\":
            if index + 1 >= length:
                raise GlobError(f"Error compiling glob for pattern {pattern!r}: trailing escape")
            parts.append(re.escape(pattern[index + 1]))
            index += 2
        elif char == "*":
            while index < length and pattern[index] == "*":
                index += 1
            parts.append(".*")
        elif char == "?":
            parts.append(".")
            index += 1
        elif char == "[":
            klass, index = _parse_class(pattern, index)
            parts.append(klass)
        elif char == "{":
            alternatives: list[str] = []
            index += 1
            while True:
                alternative, index = _parse(pattern, index, nested=True)
                alternatives.append(alternative)
                if index >= length:
                    raise GlobError(f"Error compiling glob for pattern {pattern!r}: unclosed '{{'")
                closing = pattern[index]
                index += 1
                if closing == "}":
                    break
            parts.append("(?:" + "|".join(alternatives) + ")")
        elif nested and char in ",}":
            return "".join(parts), index
        else:
            parts.append(re.escape(char))
            index += 1

    return "".join(parts), index


def _parse_class(pattern: str, index: int) -> tuple[str, int]:
    start = index
    index += 1
    negate = index < len(pattern) and pattern[index] == "!"
    if negate:
        index += 1

    members: list[str] = []
    while index < len(pattern) and pattern[index] != "]":
        char = pattern[index]
        if char == "\\" and index + 1 < len(pattern):
            members.append(re.escape(pattern[index + 1]))
            index += 2
            continue
        if char == "-" and members:
            members.append("-")
        else:
            members.append(re.escape(char))
        index += 1

    if index >= len(pattern) or not members:
        raise GlobError(f"Error compiling glob for pattern {pattern!r}: bad character class at {start}")

    return "[" + ("^" if negate else "") + "".join(members) + "]", index + 1


def matches_suffix(name: str, suffixes: Sequence[str] | None) -> bool:
    """Return ``True`` when ``name`` ends with one of ``suffixes`` (``None`` allows all)."""

    if suffixes is None:
        return True
    return any(name.endswith(suffix) for suffix in suffixes)


def filter_changes(
    changes: Sequence[Change],
    *,
    base_dir: Path,
    suffixes: Sequence[str] | None = None,
    glob_pattern: str | None = None,
) -> ChangeSet:
    """Keep changes allowed by the suffix list and glob, resolving destinations."""

    matcher = compile_glob(glob_pattern)
    selected: list[tuple[Change, Destination]] = []

    for change in changes:
        if not change.to_name and not change.from_name:
            logger.debug("Skipping change without names")
            continue

        name = change.name
        if not matches_suffix(name, suffixes) or matcher.fullmatch(name) is None:
            continue

        if change.kind is ChangeKind.DELETE:
            selected.append((change, DELETE))
        else:
            selected.append((change, base_dir / change.to_name))

    return ChangeSet(entries=tuple(selected))


def select_changes(
    repository: RepositoryAccessor,
    clone_dir: Path,
    subpath: str,
    from_commit: str,
    to_commit: str,
    *,
    suffixes: Sequence[str] | None = None,
    glob_pattern: str | None = None,
) -> ChangeSet:
    """Return the filtered changeset between two commits for ``subpath``."""

    path = normalize_subpath(subpath)
    changes = repository.diff(from_commit, to_commit, path)
    changeset = filter_changes(
        changes,
        base_dir=clone_dir / path if path else clone_dir,
        suffixes=suffixes,
        glob_pattern=glob_pattern,
    )
    logger.debug(
        "Selected {} of {} changes under '{}' from {} to {}",
        len(changeset),
        len(changes),
        path,
        from_commit,
        to_commit,
    )
    return changeset
