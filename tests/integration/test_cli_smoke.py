"""
codex-mirror — CLI subprocess smoke contracts

Purpose
- Drive ``python -m codex_mirror`` end to end against a fake ``codex`` on ``PATH``.
- Verify exit codes, command output, and the on-disk side effects of create/run/doctor/remove.
"""

from __future__ import annotations

import json
import os
import subprocess
import sys
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[2]
SRC_PATH = PROJECT_ROOT / "src"

_FAKE_CODEX = """#!/bin/sh
case "$1" in
  -V) echo "codex-cli 1.0.0" ;;
  login)
    if [ "$2" = "status" ]; then echo "Logged in using ChatGPT"; else echo "login flow"; fi ;;
  *) echo "home=$HOME args=$*"; exit 3 ;;
esac
"""


class Sandbox:
    def __init__(self, root: Path) -> None:
        self.root = root
        self.home = root / "mirror-home"
        self.bin_dir = root / "bin"
        self.system_bin = root / "system-bin"
        self.system_bin.mkdir(parents=True)
        codex = self.system_bin / "codex"
        codex.write_text(_FAKE_CODEX, encoding="utf-8")
        codex.chmod(0o755)

    def env(self) -> dict[str, str]:
        env = os.environ.copy()
        existing_pythonpath = env.get("PYTHONPATH")
        src_pythonpath = str(SRC_PATH)
        env["PYTHONPATH"] = (
            src_pythonpath if not existing_pythonpath else f"{src_pythonpath}:{existing_pythonpath}"
        )
        env["PATH"] = f"{self.system_bin}{os.pathsep}{env.get('PATH', '/usr/bin:/bin')}"
        env["CODEX_MIRROR_HOME"] = str(self.home)
        env["CODEX_MIRROR_BIN_DIR"] = str(self.bin_dir)
        env.pop("CODEX_MIRROR_CLI", None)
        env.pop("NO_COLOR", None)
        return env

    def run(self, *args: str) -> subprocess.CompletedProcess[str]:
        return subprocess.run(
            [sys.executable, "-m", "codex_mirror", *args],
            cwd=self.root,
            text=True,
            capture_output=True,
            check=False,
            env=self.env(),
        )


def _render_failure(label: str, completed: subprocess.CompletedProcess[str]) -> str:
    return (
        f"{label} failed with exit code {completed.returncode}\n"
        f"stdout:\n{completed.stdout}\n"
        f"stderr:\n{completed.stderr}\n"
    )


@pytest.fixture
def sandbox(tmp_path: Path) -> Sandbox:
    return Sandbox(tmp_path)


@pytest.mark.integration
def test_version_and_usage(sandbox: Sandbox) -> None:
    version = sandbox.run("--version")
    assert version.returncode == 0, _render_failure("--version", version)
    assert "codex-mirror" in version.stdout

    usage = sandbox.run()
    assert usage.returncode == 2
    assert "usage" in usage.stderr.lower()


@pytest.mark.integration
def test_empty_registry_listing(sandbox: Sandbox) -> None:
    listing = sandbox.run("list")
    assert listing.returncode == 0, _render_failure("list", listing)
    assert "No clones found." in listing.stdout

    as_json = sandbox.run("list", "--json")
    assert as_json.returncode == 0, _render_failure("list --json", as_json)
    assert json.loads(as_json.stdout) == []

    doctor = sandbox.run("doctor")
    assert doctor.returncode == 0, _render_failure("doctor", doctor)


@pytest.mark.integration
def test_usage_errors_exit_2(sandbox: Sandbox) -> None:
    invalid = sandbox.run("create", "--name", "../evil")
    assert invalid.returncode == 2
    assert invalid.stderr.startswith("Error: Clone name cannot")

    missing = sandbox.run("remove", "ghost")
    assert missing.returncode == 2
    assert "Clone 'ghost' was not found" in missing.stderr

    unknown_template = sandbox.run("create", "--name", "work", "--template", "nope")
    assert unknown_template.returncode == 2
    assert "Unsupported template" in unknown_template.stderr

    ambiguous = sandbox.run("update")
    assert ambiguous.returncode == 2
    assert "Provide a clone name or use --all" in ambiguous.stderr


@pytest.mark.integration
def test_clone_lifecycle(sandbox: Sandbox) -> None:
    created = sandbox.run("create", "--name", "work")
    assert created.returncode == 0, _render_failure("create", created)
    assert "Created clone 'work'" in created.stdout

    clone_root = sandbox.home / "clones" / "work"
    metadata = json.loads((clone_root / ".codex-mirror" / "clone.json").read_text(encoding="utf-8"))
    assert metadata["codexVersionPinned"] == "1.0.0"
    assert metadata["runtimeKind"] == "binary"
    wrapper = sandbox.bin_dir / "work"
    assert wrapper.is_file()

    duplicate = sandbox.run("create", "--name", "work")
    assert duplicate.returncode == 2
    assert "already exists" in duplicate.stderr

    listing = sandbox.run("list")
    assert listing.returncode == 0, _render_failure("list", listing)
    assert "work" in listing.stdout
    assert "1.0.0" in listing.stdout

    doctor = sandbox.run("doctor", "--json")
    assert doctor.returncode == 0, _render_failure("doctor --json", doctor)
    [result] = json.loads(doctor.stdout)
    assert result["ok"] is True
    assert result["authStatus"] == "logged_in"

    launched = sandbox.run("run", "work", "--", "exec", "hi")
    assert launched.returncode == 3
    assert f"home={clone_root / '.codex-mirror' / 'home'}" in launched.stdout
    assert "args=exec hi" in launched.stdout

    via_wrapper = subprocess.run(
        [str(wrapper), "exec", "there"],
        cwd=sandbox.root,
        text=True,
        capture_output=True,
        check=False,
        env=sandbox.env(),
    )
    assert via_wrapper.returncode == 3, _render_failure("wrapper", via_wrapper)
    assert "args=exec there" in via_wrapper.stdout

    log_file = sandbox.home / "logs" / "codex-mirror.jsonl"
    events = [json.loads(line) for line in log_file.read_text(encoding="utf-8").splitlines()]
    assert any(event["message"] == "created clone" for event in events)

    removed = sandbox.run("remove", "work")
    assert removed.returncode == 0, _render_failure("remove", removed)
    assert not wrapper.exists()
    assert not (clone_root / ".codex-mirror").exists()
    assert json.loads(sandbox.run("list", "--json").stdout) == []


@pytest.mark.integration
def test_doctor_reports_broken_clone(sandbox: Sandbox) -> None:
    created = sandbox.run("create", "--name", "work")
    assert created.returncode == 0, _render_failure("create", created)
    (sandbox.bin_dir / "work").unlink()

    doctor = sandbox.run("doctor", "work")

    assert doctor.returncode == 1
    assert "FAIL work" in doctor.stdout
    assert "Wrapper missing" in doctor.stdout
