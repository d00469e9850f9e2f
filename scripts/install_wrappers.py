"""
codex-mirror — wrapper installation helper.

Purpose
- Reinstall the launcher script of every registered clone into a bin directory, for use from
  shell provisioning scripts where the console script may not be on ``PATH`` yet.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from collections.abc import Sequence
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = REPO_ROOT / "src"


def _ensure_src_path() -> None:
    if str(SRC_PATH) not in sys.path:
        sys.path.insert(0, str(SRC_PATH))


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Install codex-mirror wrappers for all clones into a bin directory.",
    )
    parser.add_argument(
        "bin_dir",
        nargs="?",
        type=Path,
        default=Path("~/.local/bin"),
        help="Target wrapper directory (default: ~/.local/bin).",
    )
    parser.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Path to codex-mirror config TOML.",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Emit machine-readable JSON output.",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)
    bin_dir = args.bin_dir.expanduser().resolve()

    _ensure_src_path()
    from codex_mirror.config import load_settings
    from codex_mirror.core.clone_manager import CloneManager
    from codex_mirror.core.runtime import SystemRuntimeProvider
    from codex_mirror.core.wrappers import WrapperManager
    from codex_mirror.persistence.registry import RegistryStore
    from codex_mirror.ui.cli import resolve_wrapper_runner

    try:
        settings = load_settings(args.config_path)
        registry = RegistryStore(
            settings.registry_path,
            lock_timeout_seconds=settings.lock_timeout_seconds,
            lock_poll_interval_seconds=settings.lock_poll_interval_seconds,
        )
        runner = resolve_wrapper_runner("codex-mirror")
        manager = CloneManager(
            registry,
            WrapperManager(settings.bin_dir, runner),
            SystemRuntimeProvider(),
        )
        refreshed = asyncio.run(manager.refresh_wrappers(WrapperManager(bin_dir, runner)))
    except Exception as exc:  # noqa: BLE001
        if args.json:
            print(json.dumps({"bin_dir": bin_dir.as_posix(), "error": str(exc)}, sort_keys=True))
        else:
            print(f"error: {exc}", file=sys.stderr)
        return 1

    wrapper_paths = sorted(clone.wrapper_path for clone in refreshed)
    if args.json:
        payload = {"bin_dir": bin_dir.as_posix(), "wrappers": wrapper_paths}
        print(json.dumps(payload, sort_keys=True, separators=(",", ":")))
    else:
        print(f"Wrappers installed in {bin_dir}")
        for path in wrapper_paths:
            print(f"  - {path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
