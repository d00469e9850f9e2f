"""Subprocess execution helpers: interactive runs and bounded, captured runs."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Final

logger = logging.getLogger(__name__)

MAX_CAPTURE_BYTES: Final[int] = 1024 * 1024
KILL_GRACE_SECONDS: Final[float] = 0.3


@dataclass(frozen=True, slots=True)
class CaptureResult:
    """Normalized result of a captured run. ``timed_out`` is reported, never raised."""

    code: int
    stdout: str
    stderr: str
    timed_out: bool
    duration_ms: float = 0.0

    @property
    def succeeded(self) -> bool:
        return not self.timed_out and self.code == 0

    @property
    def combined_output(self) -> str:
        return f"{self.stdout}\n{self.stderr}"


async def run_interactive(
    command: str,
    args: Sequence[str],
    *,
    env: Mapping[str, str] | None = None,
    cwd: Path | str | None = None,
) -> int:
    """Run ``command`` with inherited stdio and return its exit code. No timeout applies."""

    process = await asyncio.create_subprocess_exec(
        command,
        *args,
        env=None if env is None else dict(env),
        cwd=None if cwd is None else str(cwd),
    )
    try:
        return _normalize_returncode(await process.wait())
    except asyncio.CancelledError:
        await _terminate(process)
        raise


async def run_capture(
    command: str,
    args: Sequence[str],
    *,
    env: Mapping[str, str] | None = None,
    cwd: Path | str | None = None,
    timeout_seconds: float = 10.0,
    kill_grace_seconds: float = KILL_GRACE_SECONDS,
) -> CaptureResult:
    """Run ``command`` capturing stdout/stderr, bounded by ``timeout_seconds``.

    On timeout the child receives SIGTERM, then SIGKILL after ``kill_grace_seconds`` if it is
    still alive. Whatever output was produced before that is returned with ``timed_out=True``.
    """

    if timeout_seconds <= 0:
        raise ValueError("timeout_seconds must be > 0")

    started = time.perf_counter()
    process = await asyncio.create_subprocess_exec(
        command,
        *args,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        env=None if env is None else dict(env),
        cwd=None if cwd is None else str(cwd),
    )

    stdout_buffer = bytearray()
    stderr_buffer = bytearray()
    readers = asyncio.gather(
        _drain(process.stdout, stdout_buffer),
        _drain(process.stderr, stderr_buffer),
        process.wait(),
    )

    timed_out = False
    try:
        await asyncio.wait_for(asyncio.shield(readers), timeout=timeout_seconds)
    except TimeoutError:
        timed_out = True
        logger.debug("captured run timed out", extra={"command": command, "timeout": timeout_seconds})
        await _terminate(process, grace_seconds=kill_grace_seconds)
        with contextlib.suppress(Exception):
            await asyncio.wait_for(readers, timeout=kill_grace_seconds + 1.0)
    except asyncio.CancelledError:
        await _terminate(process, grace_seconds=kill_grace_seconds)
        raise

    duration_ms = (time.perf_counter() - started) * 1000.0
    return CaptureResult(
        code=_normalize_returncode(process.returncode),
        stdout=_decode(stdout_buffer),
        stderr=_decode(stderr_buffer),
        timed_out=timed_out,
        duration_ms=duration_ms,
    )


async def _drain(stream: asyncio.StreamReader | None, buffer: bytearray) -> None:
    if stream is None:
        return
    while True:
        chunk = await stream.read(65536)
        if not chunk:
            return
        buffer.extend(chunk)
        overflow = len(buffer) - MAX_CAPTURE_BYTES
        if overflow > 0:
            del buffer[:overflow]


async def _terminate(
    process: asyncio.subprocess.Process,
    *,
    grace_seconds: float = KILL_GRACE_SECONDS,
) -> None:
    if process.returncode is not None:
        return
    with contextlib.suppress(ProcessLookupError):
        process.terminate()
    try:
        await asyncio.wait_for(process.wait(), timeout=grace_seconds)
    except TimeoutError:
        with contextlib.suppress(ProcessLookupError):
            process.kill()
        await process.wait()


def _normalize_returncode(code: int | None) -> int:
    if code is None:
        return 1
    if code < 0:
        # Killed by signal -N; report the conventional shell status.
        return 128 + (-code)
    return code


def _decode(buffer: bytearray) -> str:
    return bytes(buffer).decode("utf-8", errors="replace")


__all__ = [
    "CaptureResult",
    "KILL_GRACE_SECONDS",
    "MAX_CAPTURE_BYTES",
    "run_capture",
    "run_interactive",
]
