"""Command-line interface router for codex-mirror."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import shutil
import sys
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Final

from codex_mirror import __version__
from codex_mirror.config import Settings, load_settings
from codex_mirror.core.clone_manager import CloneManager, CreateCloneOptions
from codex_mirror.core.clone_name import assert_valid_clone_name, sanitize_clone_name
from codex_mirror.core.doctor import Doctor
from codex_mirror.core.launcher import Launcher
from codex_mirror.core.runtime import SystemRuntimeProvider
from codex_mirror.core.templates import get_template_spec, template_label
from codex_mirror.core.wrappers import WrapperManager, WrapperRunner
from codex_mirror.domain.models import DoctorResult
from codex_mirror.errors import ValidationError
from codex_mirror.observability.logging import setup_logging
from codex_mirror.persistence.registry import RegistryStore
from codex_mirror.ui.render import CLIRenderer, create_renderer

logger = logging.getLogger(__name__)

PROG: Final[str] = "codex-mirror"

Handler = Callable[[argparse.Namespace, "AppContext"], Awaitable[int]]


@dataclass(frozen=True, slots=True)
class CLIError(RuntimeError):
    """Typed CLI failure with an explicit process exit code."""

    message: str
    exit_code: int = 2

    def __str__(self) -> str:
        return self.message


@dataclass(slots=True)
class AppContext:
    """Components wired from settings for one CLI invocation."""

    settings: Settings
    registry: RegistryStore
    wrappers: WrapperManager
    manager: CloneManager
    launcher: Launcher
    doctor: Doctor
    renderer: CLIRenderer
    environ: Mapping[str, str]


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse command router for all supported commands."""

    parser = argparse.ArgumentParser(
        prog=PROG,
        description=(
            "Manage isolated Codex clones with independent auth/session state.\n\n"
            "Common workflows:\n"
            "  codex-mirror create --name work     Create a clone\n"
            "  codex-mirror run work -- exec hi    Run Codex inside a clone\n"
            "  codex-mirror doctor                 Health check every clone\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("-V", "--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Path to config TOML (default: <global root>/config.toml if present).",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        default=False,
        help="Enable debug logging on stderr.",
    )
    parser.add_argument(
        "--no-color",
        action="store_true",
        default=False,
        help="Disable colored output (also respects NO_COLOR env var).",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # create --------------------------------------------------------------
    create_parser = subparsers.add_parser("create", help="Create a new clone.")
    create_parser.add_argument("--name", required=True, help="Clone name.")
    create_parser.add_argument(
        "--root",
        default=None,
        help="Custom clone storage directory (default: <global root>/clones/<name>).",
    )
    create_parser.add_argument(
        "--template",
        default=None,
        help="Clone template: official (default) or minimax.",
    )
    create_parser.add_argument("--api-key", default=None, help="Provider API key for the template.")
    create_parser.set_defaults(handler=_cmd_create)

    # list ----------------------------------------------------------------
    list_parser = subparsers.add_parser("list", help="List clones.")
    list_parser.add_argument("--json", action="store_true", default=False, help="Emit JSON output.")
    list_parser.add_argument("--full", action="store_true", default=False, help="Show full metadata.")
    list_parser.set_defaults(handler=_cmd_list)

    # run -----------------------------------------------------------------
    run_parser = subparsers.add_parser(
        "run",
        help="Run Codex inside a clone.",
        description="Run Codex inside a clone. Arguments after the name (or after --) are forwarded.",
    )
    run_parser.add_argument("name", help="Clone name.")
    run_parser.add_argument("codex_args", nargs=argparse.REMAINDER, help="Arguments for Codex.")
    run_parser.set_defaults(handler=_cmd_run)

    # login / logout ------------------------------------------------------
    login_parser = subparsers.add_parser("login", help="Run Codex login in clone context.")
    login_parser.add_argument("name", help="Clone name.")
    login_parser.set_defaults(handler=_cmd_login)

    logout_parser = subparsers.add_parser("logout", help="Run Codex logout in clone context.")
    logout_parser.add_argument("name", help="Clone name.")
    logout_parser.set_defaults(handler=_cmd_logout)

    # doctor --------------------------------------------------------------
    doctor_parser = subparsers.add_parser("doctor", help="Health check one or all clones.")
    doctor_parser.add_argument("name", nargs="?", default=None, help="Clone name.")
    doctor_parser.add_argument("--json", action="store_true", default=False, help="Emit JSON output.")
    doctor_parser.set_defaults(handler=_cmd_doctor)

    # update --------------------------------------------------------------
    update_parser = subparsers.add_parser(
        "update", help="Update one clone or all clones to the current Codex version."
    )
    update_parser.add_argument("name", nargs="?", default=None, help="Clone name.")
    update_parser.add_argument("--all", action="store_true", default=False, help="Update all clones.")
    update_parser.set_defaults(handler=_cmd_update)

    # remove --------------------------------------------------------------
    remove_parser = subparsers.add_parser("remove", help="Remove a clone.")
    remove_parser.add_argument("name", help="Clone name.")
    remove_parser.set_defaults(handler=_cmd_remove)

    # wrapper install -----------------------------------------------------
    wrapper_parser = subparsers.add_parser("wrapper", help="Manage clone wrapper scripts.")
    wrapper_sub = wrapper_parser.add_subparsers(dest="wrapper_command", required=True)
    wrapper_install = wrapper_sub.add_parser("install", help="Install wrappers for all clones.")
    wrapper_install.add_argument("--bin-dir", default=None, help="Target wrapper directory.")
    wrapper_install.set_defaults(handler=_cmd_wrapper_install)

    # set-key -------------------------------------------------------------
    set_key_parser = subparsers.add_parser("set-key", help="Store a provider API key for a clone.")
    set_key_parser.add_argument("name", help="Clone name.")
    set_key_parser.add_argument("--api-key", required=True, help="Provider API key.")
    set_key_parser.set_defaults(handler=_cmd_set_key)

    return parser


# ---------------------------------------------------------------------------
# Entrypoints
# ---------------------------------------------------------------------------


def run_cli(
    argv: Sequence[str] | None = None,
    *,
    environ: Mapping[str, str] | None = None,
) -> int:
    """Parse argv, route to a command handler, and return process exit code."""

    parser = build_parser()
    namespace = parser.parse_args(list(argv) if argv is not None else None)
    handler: Handler | None = getattr(namespace, "handler", None)
    if handler is None:
        parser.print_help(sys.stderr)
        return 2

    env = dict(os.environ if environ is None else environ)
    context = build_context(namespace, env)
    try:
        return int(asyncio.run(handler(namespace, context)))
    except CLIError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return exc.exit_code


def build_context(args: argparse.Namespace, environ: Mapping[str, str]) -> AppContext:
    cli_overrides: dict[str, object] = {}
    if args.debug:
        cli_overrides["observability.log_level"] = "DEBUG"
        cli_overrides["observability.log_to_stderr"] = True
    settings = load_settings(args.config_path, environ=environ, cli_overrides=cli_overrides)
    setup_logging(
        settings.log_dir,
        level=settings.log_level,
        log_to_stderr=settings.log_to_stderr,
    )

    registry = RegistryStore(
        settings.registry_path,
        lock_timeout_seconds=settings.lock_timeout_seconds,
        lock_poll_interval_seconds=settings.lock_poll_interval_seconds,
    )
    wrappers = WrapperManager(settings.bin_dir, resolve_wrapper_runner())
    manager = CloneManager(
        registry,
        wrappers,
        SystemRuntimeProvider(environ=environ),
        environ=environ,
    )
    launcher = Launcher(environ)
    doctor = Doctor(
        launcher,
        auth_timeout_seconds=settings.auth_timeout_seconds,
        concurrency=settings.doctor_concurrency,
        environ=environ,
    )
    return AppContext(
        settings=settings,
        registry=registry,
        wrappers=wrappers,
        manager=manager,
        launcher=launcher,
        doctor=doctor,
        renderer=create_renderer(no_color=args.no_color),
        environ=environ,
    )


def resolve_wrapper_runner(argv0: str | None = None) -> WrapperRunner:
    """How generated wrappers should re-enter this CLI, based on how it was started."""

    script = sys.argv[0] if argv0 is None else argv0
    if not script or script == "-c" or script.endswith(".py"):
        return WrapperRunner(command=sys.executable, args=("-m", "codex_mirror"))
    resolved = shutil.which(script) or os.path.abspath(script)
    return WrapperRunner(command=resolved)


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


async def _cmd_create(args: argparse.Namespace, ctx: AppContext) -> int:
    name = assert_valid_clone_name(args.name)
    root = args.root or str(ctx.settings.clones_dir / sanitize_clone_name(name))
    clone = await ctx.manager.create_clone(
        CreateCloneOptions(name=name, root_path=root, template=args.template, api_key=args.api_key)
    )
    out = ctx.renderer
    out.text(f"Created clone '{clone.name}' at {clone.root_path}")
    out.kv("Template", template_label(clone.template), indent="")
    out.kv("Wrapper", clone.wrapper_path, indent="")
    for note in get_template_spec(clone.template).notes:
        out.text(f"Note: {note}")
    return 0


async def _cmd_list(args: argparse.Namespace, ctx: AppContext) -> int:
    clones = await ctx.manager.list_clones()
    out = ctx.renderer
    if args.json:
        out.text(json.dumps([clone.to_dict() for clone in clones], indent=2))
        return 0
    if not clones:
        out.text("No clones found.")
        return 0

    if args.full:
        for clone in clones:
            out.heading(clone.name)
            out.kv("template", clone.template.value)
            out.kv("root", clone.root_path)
            out.kv("version", clone.codex_version_pinned)
            out.kv("runtime", clone.runtime_entry_path)
            out.kv("wrapper", clone.wrapper_path)
            out.kv("created", clone.created_at)
            out.kv("updated", clone.updated_at)
            out.blank()
        return 0

    out.table(
        ("NAME", "TEMPLATE", "VERSION", "ROOT"),
        [
            (clone.name, clone.template.value, clone.codex_version_pinned, clone.root_path)
            for clone in clones
        ],
    )
    return 0


async def _cmd_run(args: argparse.Namespace, ctx: AppContext) -> int:
    clone = await ctx.manager.get_clone(args.name)
    forwarded = list(args.codex_args)
    if forwarded and forwarded[0] == "--":
        forwarded = forwarded[1:]
    return await ctx.launcher.run(clone, forwarded, cwd=Path.cwd())


async def _cmd_login(args: argparse.Namespace, ctx: AppContext) -> int:
    clone = await ctx.manager.get_clone(args.name)
    return await ctx.launcher.run(clone, ["login"], cwd=Path.cwd())


async def _cmd_logout(args: argparse.Namespace, ctx: AppContext) -> int:
    clone = await ctx.manager.get_clone(args.name)
    return await ctx.launcher.run(clone, ["logout"], cwd=Path.cwd())


async def _cmd_doctor(args: argparse.Namespace, ctx: AppContext) -> int:
    if args.name:
        clones = [await ctx.manager.get_clone(args.name)]
    else:
        clones = await ctx.manager.list_clones()
    results = await ctx.doctor.check_many(clones)

    if args.json:
        ctx.renderer.text(json.dumps([result.to_dict() for result in results], indent=2))
    else:
        _render_doctor(ctx.renderer, results)
    return 0 if all(result.ok for result in results) else 1


async def _cmd_update(args: argparse.Namespace, ctx: AppContext) -> int:
    if args.all:
        if args.name:
            raise CLIError("Use either a clone name or --all, not both")
        updated = await ctx.manager.update_all()
        ctx.renderer.text(f"Updated {len(updated)} clone(s).")
        return 0
    if not args.name:
        raise CLIError("Provide a clone name or use --all")

    clone = await ctx.manager.update_clone(args.name)
    ctx.renderer.text(f"Updated clone '{clone.name}' to Codex {clone.codex_version_pinned}")
    return 0


async def _cmd_remove(args: argparse.Namespace, ctx: AppContext) -> int:
    removed = await ctx.manager.remove_clone(args.name)
    ctx.renderer.text(f"Removed clone '{removed.name}' from {removed.root_path}")
    return 0


async def _cmd_wrapper_install(args: argparse.Namespace, ctx: AppContext) -> int:
    if args.bin_dir:
        target = WrapperManager(Path(args.bin_dir).expanduser(), resolve_wrapper_runner())
    else:
        target = ctx.wrappers
    refreshed = await ctx.manager.refresh_wrappers(target)
    ctx.renderer.text(f"Installed {len(refreshed)} wrapper(s) in {target.bin_dir}")
    return 0


async def _cmd_set_key(args: argparse.Namespace, ctx: AppContext) -> int:
    if not args.api_key.strip():
        raise ValidationError("API key must not be empty")
    clone = await ctx.manager.set_api_key(args.name, args.api_key)
    ctx.renderer.text(f"Stored API key for clone '{clone.name}'")
    return 0


# ---------------------------------------------------------------------------
# Rendering helpers
# ---------------------------------------------------------------------------


def _render_doctor(out: CLIRenderer, results: Sequence[DoctorResult]) -> None:
    if not results:
        out.text("No clones found.")
        return

    for result in results:
        if result.ok:
            out.ok(result.name)
        else:
            out.fail(result.name)
        out.kv("runtime", result.runtime_path)
        out.kv("wrapper", result.wrapper_path)
        out.kv("auth", result.auth_status.value)
        out.kv("writable", "yes" if result.writable else "no")
        for error in result.errors:
            out.kv("error", error)
        out.blank()


__all__ = [
    "AppContext",
    "CLIError",
    "build_context",
    "build_parser",
    "resolve_wrapper_runner",
    "run_cli",
]
