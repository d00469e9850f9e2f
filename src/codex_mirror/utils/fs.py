"""
codex-mirror — filesystem utilities

Purpose
- Provide small, synchronous filesystem helpers for atomic writes, confinement checks, and
  tolerant removal. Async callers run them through ``asyncio.to_thread``.

Functional requirements
- Atomic writes use temp files in the destination directory and replace in a single step.
- A partially written temp file is removed on failure; the target is never truncated.

Non-functional requirements
- Standard library only.
"""

from __future__ import annotations

import contextlib
import json
import os
import shutil
import tempfile
from pathlib import Path
from typing import Any

PathLike = str | os.PathLike[str]

__all__ = [
    "atomic_write",
    "copy_dir",
    "copy_file",
    "ensure_dir",
    "is_file",
    "is_relative_to",
    "is_writable_dir",
    "read_json",
    "remove_path",
    "write_json_atomic",
]


def atomic_write(
    path: PathLike,
    data: bytes | str,
    *,
    encoding: str = "utf-8",
    mode: int | None = None,
) -> None:
    """
    Atomically write ``data`` to ``path``.

    The write strategy is:
    1. create temp file in the same directory (``0o600`` until ``mode`` is applied),
    2. write + flush + fsync file data,
    3. replace target via ``os.replace``.
    """

    target = Path(path)
    target_parent = target.parent.resolve(strict=True)
    if not target_parent.is_dir():
        raise NotADirectoryError(f"{target_parent!s} is not a directory")

    fd, temp_name = tempfile.mkstemp(
        prefix=f".{target.name}.",
        suffix=".tmp",
        dir=str(target_parent),
    )
    temp_path = Path(temp_name)

    try:
        if isinstance(data, bytes):
            with os.fdopen(fd, "wb") as file_handle:
                file_handle.write(data)
                file_handle.flush()
                os.fsync(file_handle.fileno())
        else:
            with os.fdopen(fd, "w", encoding=encoding) as file_handle:
                file_handle.write(data)
                file_handle.flush()
                os.fsync(file_handle.fileno())

        if mode is not None:
            os.chmod(temp_path, mode)
        os.replace(temp_path, target)
        _fsync_directory(target_parent)
    except BaseException:
        with contextlib.suppress(OSError):
            temp_path.unlink(missing_ok=True)
        raise


def write_json_atomic(path: PathLike, payload: Any, *, mode: int | None = None) -> None:
    """Serialize ``payload`` as indented JSON (trailing newline) and write it atomically."""

    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    rendered = json.dumps(payload, indent=2, ensure_ascii=False) + "\n"
    atomic_write(target, rendered, mode=mode)


def read_json(path: PathLike) -> Any:
    with Path(path).open("r", encoding="utf-8") as handle:
        return json.load(handle)


def ensure_dir(path: PathLike) -> Path:
    directory = Path(path)
    directory.mkdir(parents=True, exist_ok=True)
    return directory


def remove_path(path: PathLike) -> None:
    """Remove a file, symlink, or directory tree. Missing paths are not an error."""

    target = Path(path)
    if target.is_symlink() or target.is_file():
        target.unlink(missing_ok=True)
        return
    if target.is_dir():
        shutil.rmtree(target)
        return
    target.unlink(missing_ok=True)


def copy_dir(source: PathLike, destination: PathLike) -> None:
    """Recursively copy ``source`` into ``destination``, keeping symlinks as symlinks."""

    shutil.copytree(source, destination, symlinks=True, dirs_exist_ok=True)


def copy_file(source: PathLike, destination: PathLike) -> None:
    target = Path(destination)
    target.parent.mkdir(parents=True, exist_ok=True)
    shutil.copy2(source, target)


def is_file(path: PathLike) -> bool:
    return Path(path).is_file()


def is_writable_dir(path: PathLike) -> bool:
    candidate = Path(path)
    return candidate.is_dir() and os.access(candidate, os.W_OK)


def is_relative_to(child: Path, parent: Path) -> bool:
    try:
        child.relative_to(parent)
    except ValueError:
        return False
    return True


def _fsync_directory(path: Path) -> None:
    """
    Best-effort directory fsync for metadata durability after ``os.replace``.

    Some platforms/filesystems do not support fsync on directories.
    """

    if os.name == "nt":
        return

    flags = os.O_RDONLY
    if hasattr(os, "O_DIRECTORY"):
        flags |= os.O_DIRECTORY

    try:
        dir_fd = os.open(path, flags)
    except OSError:
        return

    try:
        os.fsync(dir_fd)
    except OSError:
        return
    finally:
        os.close(dir_fd)
