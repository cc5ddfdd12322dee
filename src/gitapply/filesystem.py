"""Filesystem helpers for placing repository files on the host."""

from __future__ import annotations

import os
import shutil
import tempfile
from hashlib import blake2b
from pathlib import Path


def ensure_parent(path: Path) -> None:
    """Ensure the parent directory exists."""

    path.parent.mkdir(parents=True, exist_ok=True)


def hash_file(path: Path) -> str:
    """Return a BLAKE2 hash of the file contents at ``path``."""

    hasher = blake2b(digest_size=32)
    with path.open("rb") as handle:
        for chunk in iter(lambda: handle.read(1024 * 1024), b""):
            hasher.update(chunk)
    return hasher.hexdigest()


def same_content(source: Path, destination: Path) -> bool:
    """Return ``True`` if ``destination`` is a regular file identical to ``source``."""

    if destination.is_symlink() or not destination.is_file():
        return False
    if source.stat().st_size != destination.stat().st_size:
        return False
    return hash_file(source) == hash_file(destination)


def place_file(source: Path, destination: Path, *, mode: int | None = None) -> bool:
    """Atomically copy ``source`` to ``destination``.

    Returns ``True`` if the destination was written, ``False`` if it already
    held the same content (and mode, when one is requested).
    """

    if same_content(source, destination) and (
        mode is None or destination.stat().st_mode & 0o7777 == mode
    ):
        return False

    if destination.is_dir() and not destination.is_symlink():
        shutil.rmtree(destination)

    ensure_parent(destination)
    fd, temp_name = tempfile.mkstemp(prefix=f".{destination.name}.gitapply-tmp-", dir=destination.parent)
    os.close(fd)
    temp_path = Path(temp_name)
    try:
        shutil.copy2(source, temp_path)
        if mode is not None:
            temp_path.chmod(mode)
        os.replace(temp_path, destination)
    except Exception:
        if temp_path.exists():
            temp_path.unlink(missing_ok=True)
        raise
    return True


def remove_path(path: Path) -> bool:
    """Delete ``path`` whether it is a file, directory, or symlink.

    Returns ``True`` if something was removed.
    """

    if not path.exists() and not path.is_symlink():
        return False
    if path.is_symlink() or path.is_file():
        path.unlink()
        return True
    shutil.rmtree(path)
    return True


def prune_empty_parents(path: Path, *, stop: Path) -> None:
    """Remove empty directories above ``path`` up to (not including) ``stop``."""

    stop = stop.resolve(strict=False)
    current = path.parent
    while current.resolve(strict=False) != stop and stop in current.resolve(strict=False).parents:
        try:
            current.rmdir()
        except OSError:
            return
        current = current.parent
