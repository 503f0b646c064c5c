"""
issue-loop — filesystem utilities

File: src/issue_loop/utils/fs.py
Last updated: 2026-10-17

Purpose
- Atomic writes for the task-graph document and other loop state.

Functional requirements
- Writes go to a temp file in the destination directory and replace the target in one step.
- A failed write leaves the previous file untouched and removes the temp file.

Non-functional requirements
- Standard library only.
"""

from __future__ import annotations

import contextlib
import os
import tempfile
from pathlib import Path

PathLike = str | os.PathLike[str]

__all__ = [
    "atomic_write",
    "ensure_parent_dir",
]


def atomic_write(path: PathLike, data: bytes | str, *, encoding: str = "utf-8") -> None:
    """
    Atomically write ``data`` to ``path``.

    1. create a temp file next to the target,
    2. write, flush and fsync,
    3. ``os.replace`` onto the target and fsync the directory.
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
    payload = data if isinstance(data, bytes) else data.encode(encoding)

    try:
        with os.fdopen(fd, "wb") as file_handle:
            file_handle.write(payload)
            file_handle.flush()
            os.fsync(file_handle.fileno())
        os.replace(temp_path, target)
        _fsync_directory(target_parent)
    except Exception:
        with contextlib.suppress(OSError):
            temp_path.unlink(missing_ok=True)
        raise


def ensure_parent_dir(path: PathLike) -> Path:
    """Create the parent directory of ``path`` when missing and return ``path``."""

    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    return target


def _fsync_directory(path: Path) -> None:
    """Best-effort directory fsync after ``os.replace``."""

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
