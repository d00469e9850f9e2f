"""Unit tests for subprocess helpers."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from codex_mirror.utils.process import CaptureResult, run_capture, run_interactive

_ENV = {"PATH": os.environ.get("PATH", "/usr/bin:/bin")}


@pytest.mark.asyncio
async def test_capture_collects_both_streams() -> None:
    result = await run_capture("sh", ["-c", "echo out; echo err >&2; exit 4"], env=_ENV)

    assert result.code == 4
    assert result.stdout == "out\n"
    assert result.stderr == "err\n"
    assert not result.timed_out
    assert not result.succeeded
    assert result.combined_output == "out\n\nerr\n"


@pytest.mark.asyncio
async def test_capture_uses_given_env_and_cwd(tmp_path: Path) -> None:
    result = await run_capture(
        "sh",
        ["-c", 'echo "$MARKER"; pwd'],
        env={**_ENV, "MARKER": "isolated"},
        cwd=tmp_path,
    )

    lines = result.stdout.splitlines()
    assert lines[0] == "isolated"
    assert Path(lines[1]).resolve() == tmp_path.resolve()


@pytest.mark.asyncio
async def test_capture_times_out_and_kills() -> None:
    result = await run_capture(
        "sh",
        ["-c", "echo started; exec sleep 30"],
        env=_ENV,
        timeout_seconds=0.3,
        kill_grace_seconds=0.1,
    )

    assert result.timed_out
    assert not result.succeeded
    assert result.code == 128 + 15
    assert "started" in result.stdout
    assert result.duration_ms < 5000


@pytest.mark.asyncio
async def test_capture_ignores_sigterm_then_kills() -> None:
    result = await run_capture(
        "sh",
        ["-c", "trap '' TERM; echo ready; while :; do sleep 0.05; done"],
        env=_ENV,
        timeout_seconds=0.3,
        kill_grace_seconds=0.1,
    )

    assert result.timed_out
    assert result.code == 128 + 9


@pytest.mark.asyncio
async def test_capture_rejects_non_positive_timeout() -> None:
    with pytest.raises(ValueError):
        await run_capture("true", [], timeout_seconds=0)


@pytest.mark.asyncio
async def test_missing_command_raises() -> None:
    with pytest.raises(FileNotFoundError):
        await run_capture("definitely-not-a-command-xyz", [], env=_ENV)


@pytest.mark.asyncio
async def test_interactive_returns_exit_code() -> None:
    assert await run_interactive("sh", ["-c", "exit 5"], env=_ENV) == 5
    assert await run_interactive("sh", ["-c", "exit 0"], env=_ENV) == 0


def test_capture_result_properties() -> None:
    ok = CaptureResult(code=0, stdout="a", stderr="b", timed_out=False)
    timed_out = CaptureResult(code=0, stdout="", stderr="", timed_out=True)

    assert ok.succeeded
    assert ok.combined_output == "a\nb"
    assert not timed_out.succeeded
