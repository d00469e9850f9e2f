"""Per-clone launcher scripts confined to a single bin directory."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import shlex
import stat
import tempfile
from dataclasses import dataclass
from pathlib import Path, PurePath
from typing import Final

from codex_mirror.constants import DEFAULT_CLI_COMMAND, ENV_CLI_OVERRIDE
from codex_mirror.core.clone_name import assert_valid_clone_name
from codex_mirror.domain.models import CloneRecord
from codex_mirror.errors import UnsafeOverwriteError, UnsafePathError

logger = logging.getLogger(__name__)

WRAPPER_TEMP_MODE: Final[int] = 0o700
WRAPPER_MODE: Final[int] = 0o755


@dataclass(frozen=True, slots=True)
class WrapperRunner:
    """How a wrapper re-enters codex-mirror: ``command [args...] run <name> -- ...``."""

    command: str = DEFAULT_CLI_COMMAND
    args: tuple[str, ...] = ()


class WrapperManager:
    def __init__(self, bin_dir: Path | str, runner: WrapperRunner | None = None) -> None:
        self._bin_dir = Path(os.path.abspath(os.fspath(bin_dir)))
        self._runner = runner or WrapperRunner()

    @property
    def bin_dir(self) -> Path:
        return self._bin_dir

    def path_for_clone(self, name: str) -> Path:
        """Validated wrapper path for ``name``; never outside :attr:`bin_dir`."""

        clone_name = assert_valid_clone_name(name)
        wrapper_path = Path(os.path.normpath(self._bin_dir / clone_name))
        self._assert_within_bin_dir(wrapper_path)
        return wrapper_path

    async def install(self, clone: CloneRecord) -> str:
        wrapper_path = self.path_for_clone(clone.name)
        await asyncio.to_thread(self._install_sync, wrapper_path, clone.name)
        logger.info("installed wrapper", extra={"clone": clone.name, "path": str(wrapper_path)})
        return str(wrapper_path)

    async def remove(self, name: str) -> None:
        wrapper_path = self.path_for_clone(name)
        await asyncio.to_thread(_unlink_missing_ok, wrapper_path)

    def render(self, clone_name: str) -> str:
        return build_wrapper_script(clone_name, self._runner)

    def _assert_within_bin_dir(self, path: Path) -> None:
        try:
            relative = PurePath(os.path.relpath(path, self._bin_dir))
        except ValueError as exc:
            raise UnsafePathError(f"Unsafe wrapper path computed for clone: {path}") from exc
        if (
            relative.is_absolute()
            or str(relative) in {"", "."}
            or ".." in relative.parts
        ):
            raise UnsafePathError(f"Unsafe wrapper path computed for clone: {path}")

    def _install_sync(self, wrapper_path: Path, clone_name: str) -> None:
        self._bin_dir.mkdir(parents=True, exist_ok=True)
        _assert_safe_install_target(wrapper_path)

        fd, temp_name = tempfile.mkstemp(
            prefix=f".{wrapper_path.name}.",
            suffix=".tmp",
            dir=str(self._bin_dir),
        )
        temp_path = Path(temp_name)
        try:
            os.fchmod(fd, WRAPPER_TEMP_MODE)
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(self.render(clone_name))
                handle.flush()
                os.fsync(handle.fileno())
            os.chmod(temp_path, WRAPPER_MODE)
            os.replace(temp_path, wrapper_path)
        except BaseException:
            with contextlib.suppress(OSError):
                temp_path.unlink(missing_ok=True)
            raise


def build_wrapper_script(clone_name: str, runner: WrapperRunner) -> str:
    name_literal = shlex.quote(clone_name)
    command_literal = shlex.quote(runner.command)
    args_literal = " ".join(shlex.quote(arg) for arg in runner.args)
    return (
        "#!/usr/bin/env bash\n"
        "set -euo pipefail\n"
        f'if [[ -n "${{{ENV_CLI_OVERRIDE}:-}}" ]]; then\n'
        f'  exec "${ENV_CLI_OVERRIDE}" run {name_literal} -- "$@"\n'
        "fi\n"
        f"RUNNER_CMD={command_literal}\n"
        f"RUNNER_ARGS=({args_literal})\n"
        "if (( ${#RUNNER_ARGS[@]} > 0 )); then\n"
        f'  exec "$RUNNER_CMD" "${{RUNNER_ARGS[@]}}" run {name_literal} -- "$@"\n'
        "fi\n"
        f'exec "$RUNNER_CMD" run {name_literal} -- "$@"\n'
    )


def _assert_safe_install_target(path: Path) -> None:
    try:
        target = os.lstat(path)
    except FileNotFoundError:
        return
    if stat.S_ISLNK(target.st_mode):
        raise UnsafeOverwriteError(f"Refusing to overwrite wrapper symlink at {path}")
    if not stat.S_ISREG(target.st_mode):
        raise UnsafeOverwriteError(f"Refusing to overwrite non-regular wrapper target at {path}")


def _unlink_missing_ok(path: Path) -> None:
    path.unlink(missing_ok=True)


__all__ = [
    "WRAPPER_MODE",
    "WrapperManager",
    "WrapperRunner",
    "build_wrapper_script",
]
