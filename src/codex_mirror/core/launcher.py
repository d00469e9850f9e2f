"""
codex-mirror — isolated launcher.

Purpose
- Start a clone's runtime with an environment that points every home/config/cache lookup at
  the clone's private tree, and with the clone's default arguments applied where they make
  sense.

Functional requirements
- The inherited environment is an immutable snapshot taken at construction; the process
  environment is never mutated.
- Isolation variables always override both the inherited environment and stored secrets.
- Default arguments are never injected into control commands or when a profile is chosen
  explicitly.
"""

from __future__ import annotations

import os
import shutil
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Final

from codex_mirror.core.clone_paths import derive_clone_paths
from codex_mirror.core.secrets import read_clone_secrets_sync
from codex_mirror.domain.models import CloneRecord, RuntimeKind
from codex_mirror.utils.process import CaptureResult, run_capture, run_interactive

DEFAULT_CAPTURE_TIMEOUT_SECONDS: Final[float] = 8.0

CONTROL_COMMANDS: Final[frozenset[str]] = frozenset(
    {
        "login",
        "logout",
        "help",
        "completion",
        "mcp",
        "mcp-server",
        "app-server",
        "apply",
        "sandbox",
        "debug",
        "features",
        "--help",
        "-h",
        "--version",
        "-V",
    }
)
AFTER_SUBCOMMAND_KEYWORDS: Final[frozenset[str]] = frozenset({"exec", "e", "resume"})
PROFILE_FLAGS: Final[frozenset[str]] = frozenset({"--profile", "-p"})


@dataclass(frozen=True, slots=True)
class Invocation:
    command: str
    args: tuple[str, ...]


class Launcher:
    def __init__(self, base_env: Mapping[str, str] | None = None) -> None:
        snapshot = dict(os.environ if base_env is None else base_env)
        self._base_env: Mapping[str, str] = MappingProxyType(snapshot)

    @property
    def base_env(self) -> Mapping[str, str]:
        return self._base_env

    def build_environment(
        self,
        clone: CloneRecord,
        base_env: Mapping[str, str] | None = None,
    ) -> dict[str, str]:
        paths = derive_clone_paths(clone.root_path)
        env = dict(self._base_env if base_env is None else base_env)
        env.update(read_clone_secrets_sync(paths))
        env.update(
            {
                "HOME": str(paths.home_dir),
                "CODEX_HOME": str(paths.codex_home_dir),
                "XDG_CONFIG_HOME": str(paths.config_home_dir),
                "XDG_DATA_HOME": str(paths.data_home_dir),
                "XDG_CACHE_HOME": str(paths.cache_home_dir),
            }
        )
        return env

    def resolve_invocation(self, clone: CloneRecord, args: Sequence[str]) -> Invocation:
        if clone.runtime_kind is RuntimeKind.NPM_PACKAGE:
            node = shutil.which("node", path=self._base_env.get("PATH")) or "node"
            return Invocation(command=node, args=(clone.runtime_entry_path, *args))
        return Invocation(command=clone.runtime_entry_path, args=tuple(args))

    def resolve_launch_args(self, clone: CloneRecord, args: Sequence[str]) -> tuple[str, ...]:
        """Merge the clone's default arguments into ``args``.

        Defaults go in front of the caller's arguments, except after ``exec``/``e``/``resume``
        where they follow the subcommand. Control commands and explicit profile selection are
        passed through untouched.
        """

        caller = tuple(args)
        defaults = clone.default_codex_args
        if not defaults:
            return caller
        if not caller:
            return defaults
        if _has_profile_flag(caller):
            return caller

        first, rest = caller[0], caller[1:]
        if first in CONTROL_COMMANDS:
            return caller
        if first in AFTER_SUBCOMMAND_KEYWORDS:
            return (first, *defaults, *rest)
        return (*defaults, *caller)

    async def run(
        self,
        clone: CloneRecord,
        args: Sequence[str],
        cwd: Path | str | None = None,
    ) -> int:
        invocation = self.resolve_invocation(clone, self.resolve_launch_args(clone, args))
        return await run_interactive(
            invocation.command,
            invocation.args,
            env=self.build_environment(clone),
            cwd=cwd,
        )

    async def capture(
        self,
        clone: CloneRecord,
        args: Sequence[str],
        cwd: Path | str | None = None,
        timeout_seconds: float = DEFAULT_CAPTURE_TIMEOUT_SECONDS,
    ) -> CaptureResult:
        invocation = self.resolve_invocation(clone, self.resolve_launch_args(clone, args))
        return await run_capture(
            invocation.command,
            invocation.args,
            env=self.build_environment(clone),
            cwd=cwd,
            timeout_seconds=timeout_seconds,
        )


def _has_profile_flag(args: Sequence[str]) -> bool:
    return any(arg in PROFILE_FLAGS or arg.startswith("--profile=") for arg in args)


__all__ = [
    "AFTER_SUBCOMMAND_KEYWORDS",
    "CONTROL_COMMANDS",
    "DEFAULT_CAPTURE_TIMEOUT_SECONDS",
    "Invocation",
    "Launcher",
    "PROFILE_FLAGS",
]
