"""Unit tests for clone health checks."""

from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path

import pytest

from codex_mirror.core.clone_paths import derive_clone_paths
from codex_mirror.core.doctor import AUTH_PROBE_ARGS, Doctor, classify_auth_output
from codex_mirror.core.launcher import Launcher
from codex_mirror.core.secrets import write_clone_secrets
from codex_mirror.domain.models import AuthStatus, CloneRecord, CloneTemplate, RuntimeKind
from codex_mirror.utils.process import CaptureResult


class FakeLauncher(Launcher):
    def __init__(self, outputs: dict[str, CaptureResult] | None = None) -> None:
        super().__init__({})
        self.outputs = outputs or {}
        self.calls: list[tuple[str, tuple[str, ...], float]] = []

    async def capture(
        self,
        clone: CloneRecord,
        args: Sequence[str],
        cwd: Path | str | None = None,
        timeout_seconds: float = 8.0,
    ) -> CaptureResult:
        self.calls.append((clone.name, tuple(args), timeout_seconds))
        if clone.name == "explodes":
            raise RuntimeError("status check crashed")
        return self.outputs.get(
            clone.name,
            CaptureResult(code=0, stdout="Logged in using ChatGPT", stderr="", timed_out=False),
        )


def _healthy_clone(
    tmp_path: Path,
    name: str = "alpha",
    *,
    template: CloneTemplate = CloneTemplate.OFFICIAL,
    version: str = "1.0.0",
) -> CloneRecord:
    root = tmp_path / name
    paths = derive_clone_paths(root)
    for directory in paths.isolated_dirs():
        directory.mkdir(parents=True, exist_ok=True)
    paths.runtime_entry_path.parent.mkdir(parents=True, exist_ok=True)
    paths.runtime_entry_path.write_text("#!/bin/sh\n", encoding="utf-8")
    wrapper = tmp_path / "bin" / name
    wrapper.parent.mkdir(parents=True, exist_ok=True)
    wrapper.write_text("#!/bin/sh\n", encoding="utf-8")
    return CloneRecord(
        id=f"id-{name}",
        name=name,
        template=template,
        root_path=str(root),
        runtime_path=str(paths.runtime_dir),
        runtime_entry_path=str(paths.runtime_entry_path),
        runtime_kind=RuntimeKind.BINARY,
        wrapper_path=str(wrapper),
        codex_version_pinned=version,
        created_at="2026-01-01T00:00:00.000Z",
        updated_at="2026-01-01T00:00:00.000Z",
    )


@pytest.mark.parametrize(
    ("output", "expected"),
    [
        ("Logged in using an API key", AuthStatus.LOGGED_IN),
        ("Not logged in", AuthStatus.NOT_LOGGED_IN),
        ("error: NOT LOGGED IN\n", AuthStatus.NOT_LOGGED_IN),
        ("something else entirely", AuthStatus.UNKNOWN),
        ("", AuthStatus.UNKNOWN),
    ],
)
def test_classify_auth_output(output: str, expected: AuthStatus) -> None:
    assert classify_auth_output(output) is expected


@pytest.mark.asyncio
async def test_healthy_clone_passes(tmp_path: Path) -> None:
    launcher = FakeLauncher()
    doctor = Doctor(launcher, auth_timeout_seconds=2.5, environ={})

    result = await doctor.check_one(_healthy_clone(tmp_path))

    assert result.ok
    assert result.errors == ()
    assert result.auth_status is AuthStatus.LOGGED_IN
    assert result.writable
    assert launcher.calls == [("alpha", AUTH_PROBE_ARGS, 2.5)]


@pytest.mark.asyncio
async def test_not_logged_in_is_still_ok(tmp_path: Path) -> None:
    launcher = FakeLauncher(
        {"alpha": CaptureResult(code=1, stdout="", stderr="Not logged in", timed_out=False)}
    )

    result = await Doctor(launcher, environ={}).check_one(_healthy_clone(tmp_path))

    assert result.ok
    assert result.auth_status is AuthStatus.NOT_LOGGED_IN


@pytest.mark.asyncio
async def test_unknown_auth_fails_official_clone(tmp_path: Path) -> None:
    launcher = FakeLauncher(
        {"alpha": CaptureResult(code=0, stdout="???", stderr="", timed_out=False)}
    )

    result = await Doctor(launcher, environ={}).check_one(_healthy_clone(tmp_path))

    assert not result.ok
    assert result.auth_status is AuthStatus.UNKNOWN
    assert "Could not determine auth status" in result.errors


@pytest.mark.asyncio
async def test_timeout_is_reported(tmp_path: Path) -> None:
    launcher = FakeLauncher(
        {"alpha": CaptureResult(code=143, stdout="", stderr="", timed_out=True)}
    )

    result = await Doctor(launcher, auth_timeout_seconds=5, environ={}).check_one(
        _healthy_clone(tmp_path)
    )

    assert not result.ok
    assert "Auth check timed out after 5s" in result.errors


@pytest.mark.asyncio
async def test_missing_paths_are_reported(tmp_path: Path) -> None:
    clone = _healthy_clone(tmp_path)
    Path(clone.runtime_entry_path).unlink()
    Path(clone.wrapper_path).unlink()
    logs_dir = derive_clone_paths(clone.root_path).logs_dir
    logs_dir.rmdir()

    result = await Doctor(FakeLauncher(), environ={}).check_one(clone)

    assert not result.ok
    assert not result.writable
    assert f"Runtime entry missing: {clone.runtime_entry_path}" in result.errors
    assert f"Wrapper missing: {clone.wrapper_path}" in result.errors
    assert f"Missing directory: {logs_dir}" in result.errors


@pytest.mark.asyncio
async def test_minimax_clone_requires_api_key_and_pinned_version(tmp_path: Path) -> None:
    clone = _healthy_clone(tmp_path, template=CloneTemplate.MINIMAX, version="0.50.0")
    launcher = FakeLauncher(
        {"alpha": CaptureResult(code=0, stdout="???", stderr="", timed_out=False)}
    )

    result = await Doctor(launcher, environ={}).check_one(clone)

    assert not result.ok
    assert result.auth_status is AuthStatus.UNKNOWN
    assert "Could not determine auth status" not in result.errors
    assert "MiniMax API key is missing. Set MINIMAX_API_KEY in clone setup or shell." in result.errors
    assert "MiniMax template expects Codex 0.57.0; run 'codex-mirror update alpha'" in result.errors


@pytest.mark.asyncio
async def test_minimax_api_key_from_secrets_or_shell(tmp_path: Path) -> None:
    clone = _healthy_clone(tmp_path, template=CloneTemplate.MINIMAX, version="0.57.0")

    from_shell = await Doctor(FakeLauncher(), environ={"MINIMAX_API_KEY": "k"}).check_one(clone)
    assert from_shell.ok

    await write_clone_secrets(derive_clone_paths(clone.root_path), {"MINIMAX_API_KEY": "k"})
    from_secrets = await Doctor(FakeLauncher(), environ={}).check_one(clone)
    assert from_secrets.ok


@pytest.mark.asyncio
async def test_check_many_keeps_order_and_isolates_failures(tmp_path: Path) -> None:
    clones = [_healthy_clone(tmp_path, name) for name in ("c1", "explodes", "c3", "c4", "c5")]

    results = await Doctor(FakeLauncher(), concurrency=2, environ={}).check_many(clones)

    assert [result.name for result in results] == ["c1", "explodes", "c3", "c4", "c5"]
    failed = results[1]
    assert not failed.ok
    assert failed.errors == ("Unexpected doctor error: status check crashed",)
    assert all(result.ok for index, result in enumerate(results) if index != 1)


@pytest.mark.asyncio
async def test_missing_runtime_entry_keeps_collected_errors(tmp_path: Path) -> None:
    clone = _healthy_clone(tmp_path)
    Path(clone.runtime_entry_path).unlink()

    [result] = await Doctor(Launcher({}), environ={}).check_many([clone])

    assert not result.ok
    assert result.auth_status is AuthStatus.UNKNOWN
    assert result.errors[0] == f"Runtime entry missing: {clone.runtime_entry_path}"
    assert any(error.startswith("Auth check failed: ") for error in result.errors)
    assert not any(error.startswith("Unexpected doctor error") for error in result.errors)


@pytest.mark.asyncio
async def test_non_executable_runtime_entry_reports_auth_failure(tmp_path: Path) -> None:
    clone = _healthy_clone(tmp_path)
    Path(clone.runtime_entry_path).chmod(0o644)

    result = await Doctor(Launcher({}), environ={}).check_one(clone)

    assert not result.ok
    assert result.auth_status is AuthStatus.UNKNOWN
    assert result.writable
    assert [error for error in result.errors if error.startswith("Auth check failed: ")]


@pytest.mark.asyncio
async def test_check_many_empty() -> None:
    assert await Doctor(FakeLauncher(), environ={}).check_many([]) == []


def test_rejects_non_positive_timeout() -> None:
    with pytest.raises(ValueError):
        Doctor(FakeLauncher(), auth_timeout_seconds=0)


@pytest.mark.asyncio
async def test_result_serializes_camel_case(tmp_path: Path) -> None:
    result = await Doctor(FakeLauncher(), environ={}).check_one(_healthy_clone(tmp_path))

    payload = result.to_dict()
    assert payload["authStatus"] == "logged_in"
    assert payload["runtimePath"] == result.runtime_path
    assert payload["errors"] == []
