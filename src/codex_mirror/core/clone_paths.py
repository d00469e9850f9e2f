"""Fixed on-disk layout of a clone, derived purely from its root path."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from codex_mirror.constants import (
    CLONE_BASE_DIRNAME,
    CLONE_METADATA_FILENAME,
    CLONE_SECRETS_FILENAME,
)


@dataclass(frozen=True, slots=True)
class ClonePaths:
    clone_base_dir: Path
    metadata_path: Path
    secrets_path: Path
    runtime_dir: Path
    runtime_entry_path: Path
    home_dir: Path
    codex_home_dir: Path
    config_home_dir: Path
    data_home_dir: Path
    cache_home_dir: Path
    logs_dir: Path

    def isolated_dirs(self) -> tuple[Path, ...]:
        """Directories a usable clone must have, in creation order."""

        return (self.clone_base_dir, self.home_dir, self.codex_home_dir, self.logs_dir)


def derive_clone_paths(root_path: str | os.PathLike[str]) -> ClonePaths:
    root = Path(os.path.abspath(os.fspath(root_path)))
    base = root / CLONE_BASE_DIRNAME
    runtime_dir = base / "runtime"
    home_dir = base / "home"
    return ClonePaths(
        clone_base_dir=base,
        metadata_path=base / CLONE_METADATA_FILENAME,
        secrets_path=base / CLONE_SECRETS_FILENAME,
        runtime_dir=runtime_dir,
        runtime_entry_path=runtime_dir / "bin" / "codex",
        home_dir=home_dir,
        codex_home_dir=home_dir / ".codex",
        config_home_dir=home_dir / ".config",
        data_home_dir=home_dir / ".local" / "share",
        cache_home_dir=home_dir / ".cache",
        logs_dir=base / "logs",
    )


__all__ = ["ClonePaths", "derive_clone_paths"]
