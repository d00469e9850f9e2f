"""
codex-mirror — cross-process exclusive lock file.

Purpose
- Serialize registry writers across independent processes on one host using only
  create-exclusive file semantics.

Functional requirements
- Acquisition polls on ``EEXIST`` up to ``timeout_seconds``; afterwards a stale lock (older than
  ``stale_after_seconds`` and owned by the current user) is reclaimed; after
  ``timeout_seconds + stale_after_seconds`` acquisition fails with :class:`LockTimeoutError`.
- Stale reclamation and release unlink only when the path still has the device/inode identity
  that was observed, so a lock re-created by another process is never deleted.
- A symlink or non-regular file at the lock path raises :class:`LockIntegrityError` and is
  never unlinked.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import stat
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Final

from codex_mirror.errors import LockIntegrityError, LockTimeoutError
from codex_mirror.utils.concurrency import PollDeadline

logger = logging.getLogger(__name__)

DEFAULT_STALE_MULTIPLIER: Final[int] = 6
LOCK_FILE_MODE: Final[int] = 0o600


@dataclass(frozen=True, slots=True)
class HeldLock:
    """An acquired lock: the open descriptor plus the identity of the file it refers to."""

    path: Path
    fd: int
    device: int
    inode: int


class FileLock:
    def __init__(
        self,
        lock_path: Path | str,
        *,
        timeout_seconds: float = 10.0,
        poll_interval_seconds: float = 0.04,
        stale_after_seconds: float | None = None,
    ) -> None:
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        if poll_interval_seconds <= 0:
            raise ValueError("poll_interval_seconds must be > 0")
        self._path = Path(lock_path)
        self._timeout = float(timeout_seconds)
        self._poll_interval = float(poll_interval_seconds)
        self._stale_after = (
            float(stale_after_seconds)
            if stale_after_seconds is not None
            else self._timeout * DEFAULT_STALE_MULTIPLIER
        )

    @property
    def path(self) -> Path:
        return self._path

    @property
    def stale_after_seconds(self) -> float:
        return self._stale_after

    @asynccontextmanager
    async def hold(self) -> AsyncIterator[HeldLock]:
        held = await self.acquire()
        try:
            yield held
        finally:
            await asyncio.to_thread(self.release, held)

    async def acquire(self) -> HeldLock:
        await asyncio.to_thread(self._path.parent.mkdir, parents=True, exist_ok=True)
        deadline = PollDeadline(self._timeout)

        while True:
            held = await self._create_once()
            if held is not None:
                return held

            if deadline.expired():
                if await asyncio.to_thread(self._reclaim_if_stale):
                    continue

            if deadline.expired(self._stale_after):
                raise LockTimeoutError(f"Timed out waiting for registry lock at {self._path}")

            await asyncio.sleep(self._poll_interval)

    async def _create_once(self) -> HeldLock | None:
        # The worker thread outlives a cancelled waiter; release whatever it ends up creating.
        attempt = asyncio.ensure_future(asyncio.to_thread(self._try_create))
        try:
            return await asyncio.shield(attempt)
        except asyncio.CancelledError:
            attempt.add_done_callback(self._release_abandoned)
            raise

    def _release_abandoned(self, attempt: asyncio.Future[HeldLock | None]) -> None:
        if attempt.cancelled() or attempt.exception() is not None:
            return
        held = attempt.result()
        if held is not None:
            logger.debug(
                "releasing lock acquired after cancellation", extra={"path": str(self._path)}
            )
            self.release(held)

    def release(self, held: HeldLock) -> None:
        """Close the descriptor and unlink the lock if it is still the file we created."""

        with contextlib.suppress(OSError):
            os.close(held.fd)
        try:
            current = os.lstat(held.path)
        except FileNotFoundError:
            return
        if (current.st_dev, current.st_ino) != (held.device, held.inode):
            logger.warning("lock file replaced while held; leaving it", extra={"path": str(held.path)})
            return
        with contextlib.suppress(FileNotFoundError):
            os.unlink(held.path)

    def _try_create(self) -> HeldLock | None:
        flags = os.O_CREAT | os.O_EXCL | os.O_WRONLY
        flags |= getattr(os, "O_NOFOLLOW", 0) | getattr(os, "O_CLOEXEC", 0)
        try:
            fd = os.open(self._path, flags, LOCK_FILE_MODE)
        except FileExistsError:
            with contextlib.suppress(FileNotFoundError):
                self._check_integrity(os.lstat(self._path))
            return None

        try:
            payload = f"{os.getpid()}\n{int(time.time() * 1000)}\n".encode()
            os.write(fd, payload)
            info = os.fstat(fd)
        except BaseException:
            os.close(fd)
            with contextlib.suppress(OSError):
                os.unlink(self._path)
            raise
        return HeldLock(path=self._path, fd=fd, device=info.st_dev, inode=info.st_ino)

    def _reclaim_if_stale(self) -> bool:
        """Remove a stale lock; return ``True`` when the path is free to retry immediately."""

        try:
            observed = os.lstat(self._path)
        except FileNotFoundError:
            return True

        self._check_integrity(observed)

        age = time.time() - self._acquired_at(observed)
        if age <= self._stale_after:
            return False

        if hasattr(os, "getuid") and observed.st_uid != os.getuid():
            logger.warning(
                "stale registry lock is owned by another user; not reclaiming",
                extra={"path": str(self._path), "owner_uid": observed.st_uid},
            )
            return False

        try:
            current = os.lstat(self._path)
        except FileNotFoundError:
            return True
        if (current.st_dev, current.st_ino) != (observed.st_dev, observed.st_ino):
            return False

        with contextlib.suppress(FileNotFoundError):
            os.unlink(self._path)
        logger.warning(
            "reclaimed stale registry lock",
            extra={"path": str(self._path), "age_seconds": round(age, 3)},
        )
        return True

    def _check_integrity(self, observed: os.stat_result) -> None:
        if stat.S_ISLNK(observed.st_mode):
            raise LockIntegrityError(f"Registry lock path is a symlink: {self._path}")
        if not stat.S_ISREG(observed.st_mode):
            raise LockIntegrityError(f"Registry lock path is not a regular file: {self._path}")

    def _acquired_at(self, observed: os.stat_result) -> float:
        """Acquisition time from the lock payload, falling back to the file mtime."""

        try:
            fd = os.open(self._path, os.O_RDONLY | getattr(os, "O_NOFOLLOW", 0))
        except OSError:
            return observed.st_mtime
        try:
            raw = os.read(fd, 128).decode("utf-8", errors="replace")
        except OSError:
            return observed.st_mtime
        finally:
            os.close(fd)

        lines = raw.splitlines()
        if len(lines) >= 2 and lines[1].strip().isdigit():
            return int(lines[1].strip()) / 1000.0
        return observed.st_mtime


__all__ = [
    "DEFAULT_STALE_MULTIPLIER",
    "FileLock",
    "HeldLock",
    "LOCK_FILE_MODE",
]
