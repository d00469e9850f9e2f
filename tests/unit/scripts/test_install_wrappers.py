"""
codex-mirror — wrapper installation script smoke tests.

Purpose
- Keep ``scripts/install_wrappers.py`` executable and its ``--json`` output stable.
"""

from __future__ import annotations

import json
import os
import subprocess
import sys
from pathlib import Path

import pytest

from codex_mirror.domain.models import CloneRecord, Registry, RuntimeKind

REPO_ROOT = Path(__file__).resolve().parents[3]
SRC_PATH = REPO_ROOT / "src"


def _run_script(home: Path, *args: str) -> subprocess.CompletedProcess[str]:
    env = os.environ.copy()
    existing_pythonpath = env.get("PYTHONPATH")
    src_pythonpath = str(SRC_PATH)
    env["PYTHONPATH"] = (
        src_pythonpath if not existing_pythonpath else f"{src_pythonpath}:{existing_pythonpath}"
    )
    env["CODEX_MIRROR_HOME"] = str(home)
    env["CODEX_MIRROR_BIN_DIR"] = str(home / "default-bin")
    return subprocess.run(
        [sys.executable, "scripts/install_wrappers.py", *args],
        cwd=REPO_ROOT,
        text=True,
        capture_output=True,
        check=False,
        env=env,
    )


def _render_failure(label: str, completed: subprocess.CompletedProcess[str]) -> str:
    return (
        f"{label} failed with exit code {completed.returncode}\n"
        f"stdout:\n{completed.stdout}\n"
        f"stderr:\n{completed.stderr}\n"
    )


@pytest.mark.unit
def test_install_wrappers_help_smoke(tmp_path: Path) -> None:
    result = _run_script(tmp_path, "--help")

    assert result.returncode == 0, _render_failure("install_wrappers --help", result)
    assert "usage" in result.stdout.lower()
    assert "--json" in result.stdout


@pytest.mark.unit
def test_install_wrappers_with_empty_registry(tmp_path: Path) -> None:
    bin_dir = tmp_path / "bin"
    result = _run_script(tmp_path, str(bin_dir), "--json")

    assert result.returncode == 0, _render_failure("install_wrappers --json", result)
    payload = json.loads(result.stdout)
    assert payload == {"bin_dir": bin_dir.resolve().as_posix(), "wrappers": []}


@pytest.mark.unit
def test_install_wrappers_writes_each_clone(tmp_path: Path) -> None:
    clone_root = tmp_path / "clones" / "work"
    clone = CloneRecord(
        id="abc",
        name="work",
        root_path=str(clone_root),
        runtime_path=str(clone_root / ".codex-mirror" / "runtime"),
        runtime_entry_path=str(clone_root / ".codex-mirror" / "runtime" / "bin" / "codex"),
        runtime_kind=RuntimeKind.BINARY,
        wrapper_path=str(tmp_path / "default-bin" / "work"),
        codex_version_pinned="1.0.0",
        created_at="2026-01-01T00:00:00.000Z",
        updated_at="2026-01-01T00:00:00.000Z",
    )
    (tmp_path / "registry.json").write_text(
        json.dumps(Registry(clones=[clone]).to_dict()), encoding="utf-8"
    )
    bin_dir = tmp_path / "bin"

    result = _run_script(tmp_path, str(bin_dir), "--json")

    assert result.returncode == 0, _render_failure("install_wrappers --json", result)
    wrapper = bin_dir.resolve() / "work"
    assert json.loads(result.stdout)["wrappers"] == [str(wrapper)]
    assert wrapper.is_file()
    assert 'run work -- "$@"' in wrapper.read_text(encoding="utf-8")
    registry = json.loads((tmp_path / "registry.json").read_text(encoding="utf-8"))
    assert registry["clones"][0]["wrapperPath"] == str(wrapper)
