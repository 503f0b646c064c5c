"""Single-instance process lock for the main loop."""

from __future__ import annotations

from pathlib import Path
from types import TracebackType
from typing import Any

import structlog
from filelock import FileLock, Timeout

from issue_loop.errors import LockContentionError
from issue_loop.utils.fs import ensure_parent_dir


class LoopLock:
    """Exclusive, non-blocking lock held for the lifetime of one loop run."""

    def __init__(self, path: Path | str, *, logger: Any | None = None) -> None:
        self._path = Path(path)
        self._lock = FileLock(str(self._path), timeout=0)
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def path(self) -> Path:
        return self._path

    @property
    def is_locked(self) -> bool:
        return self._lock.is_locked

    def acquire(self) -> None:
        ensure_parent_dir(self._path)
        try:
            self._lock.acquire(timeout=0)
        except Timeout as exc:
            self._logger.error("loop_lock_contended", lock_path=str(self._path))
            raise LockContentionError(str(self._path)) from exc
        self._logger.debug("loop_lock_acquired", lock_path=str(self._path))

    def release(self) -> None:
        if self._lock.is_locked:
            self._lock.release()
            self._logger.debug("loop_lock_released", lock_path=str(self._path))

    def __enter__(self) -> LoopLock:
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        self.release()


__all__ = ["LoopLock"]
