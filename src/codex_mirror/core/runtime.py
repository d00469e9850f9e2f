"""Runtime acquisition: copy the system ``codex`` installation into a clone."""

from __future__ import annotations

import asyncio
import logging
import os
import re
import shutil
from collections.abc import Mapping
from pathlib import Path
from typing import Final, Protocol

from codex_mirror.constants import RUNTIME_COMMAND
from codex_mirror.domain.models import RuntimeInfo, RuntimeKind
from codex_mirror.errors import RuntimeNotFoundError
from codex_mirror.utils.fs import copy_dir, copy_file, remove_path
from codex_mirror.utils.process import run_capture

logger = logging.getLogger(__name__)

_VERSION_RE: Final[re.Pattern[str]] = re.compile(r"codex-cli\s+(\S+)")
_VERSION_PROBE_TIMEOUT_SECONDS: Final[float] = 10.0


class RuntimeProvider(Protocol):
    """Installs a runtime copy into ``runtime_dir``.

    Implementations raise :class:`RuntimeNotFoundError` when no installation is discoverable.
    """

    async def install(
        self, runtime_dir: Path, *, pinned_version: str | None = None
    ) -> RuntimeInfo: ...


class SystemRuntimeProvider:
    """Copy whatever ``codex`` resolves to on ``PATH``.

    npm installs (``.../bin/codex.js``) are copied as a whole package; anything else is treated
    as a standalone binary.
    """

    def __init__(
        self,
        *,
        command: str = RUNTIME_COMMAND,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self._command = command
        self._environ = dict(os.environ if environ is None else environ)

    async def detect(self) -> tuple[Path, Path, str]:
        """Return ``(command_path, resolved_path, version)`` of the system install."""

        found = shutil.which(self._command, path=self._environ.get("PATH"))
        if found is None:
            raise RuntimeNotFoundError(f"Could not find `{self._command}` on PATH")
        command_path = Path(found)
        resolved = command_path.resolve()
        version = await self._detect_version(command_path)
        return command_path, resolved, version

    async def install(self, runtime_dir: Path, *, pinned_version: str | None = None) -> RuntimeInfo:
        command_path, resolved, version = await self.detect()
        if pinned_version is not None and pinned_version != version:
            logger.warning(
                "system runtime version differs from template pin",
                extra={"pinned_version": pinned_version, "system_version": version},
            )

        await asyncio.to_thread(remove_path, runtime_dir)
        await asyncio.to_thread(runtime_dir.mkdir, parents=True, exist_ok=True)

        if resolved.name == "codex.js" and resolved.parent.name == "bin":
            package_root = resolved.parent.parent
            target_root = runtime_dir / "package"
            await asyncio.to_thread(copy_dir, package_root, target_root)
            entry_path = target_root / "bin" / "codex.js"
            if not entry_path.is_file():
                raise RuntimeNotFoundError(
                    f"Copied Codex package is missing entry script: {entry_path}"
                )
            return RuntimeInfo(
                kind=RuntimeKind.NPM_PACKAGE,
                entry_path=str(entry_path),
                source_path=str(package_root),
                version=version,
                source_codex_path=str(command_path),
            )

        target_binary = runtime_dir / "bin" / "codex"
        await asyncio.to_thread(copy_file, resolved, target_binary)
        await asyncio.to_thread(os.chmod, target_binary, 0o755)
        return RuntimeInfo(
            kind=RuntimeKind.BINARY,
            entry_path=str(target_binary),
            source_path=str(resolved),
            version=version,
            source_codex_path=str(command_path),
        )

    async def _detect_version(self, command_path: Path) -> str:
        try:
            result = await run_capture(
                str(command_path),
                ["-V"],
                env=self._environ,
                timeout_seconds=_VERSION_PROBE_TIMEOUT_SECONDS,
            )
        except OSError:
            return "unknown"
        match = _VERSION_RE.search(result.combined_output)
        return match.group(1) if match else "unknown"


__all__ = ["RuntimeProvider", "SystemRuntimeProvider"]
