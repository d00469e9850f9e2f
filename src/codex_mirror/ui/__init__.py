"""Command-line surface: argparse router and plain-text renderer."""

from codex_mirror.ui.cli import build_parser, run_cli
from codex_mirror.ui.render import CLIRenderer, create_renderer

__all__ = ["CLIRenderer", "build_parser", "create_renderer", "run_cli"]
