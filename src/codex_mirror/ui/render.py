"""Output rendering abstraction for the codex-mirror CLI.

Purpose
- Provide a thin rendering layer for CLI output: headings, key/value lines, tables, and
  diagnostic check lines.

Non-functional requirements
- Plain-text rendering only; respects ``NO_COLOR`` and ``--no-color`` so output stays
  deterministic when piped.
"""

from __future__ import annotations

import os
import sys
from typing import TYPE_CHECKING, TextIO

if TYPE_CHECKING:
    from collections.abc import Sequence


def _color_allowed(no_color_flag: bool, stream: TextIO) -> bool:
    """Check whether color output should be attempted."""

    if no_color_flag:
        return False
    if os.environ.get("NO_COLOR", ""):
        return False
    return hasattr(stream, "isatty") and stream.isatty()


class CLIRenderer:
    """Thin CLI output renderer.

    Produces clean, deterministic plain-text output.
    """

    def __init__(self, *, no_color: bool = False, stream: TextIO | None = None) -> None:
        self._stream = stream
        self._color = _color_allowed(no_color, self.stream)

    @property
    def stream(self) -> TextIO:
        return self._stream if self._stream is not None else sys.stdout

    def heading(self, text: str) -> None:
        self._print(text)

    def kv(self, key: str, value: object, *, indent: str = "  ") -> None:
        """Print a key: value pair."""

        self._print(f"{indent}{key}: {value}")

    def text(self, line: str) -> None:
        self._print(line)

    def blank(self) -> None:
        self._print("")

    def warning(self, text: str) -> None:
        self._print(f"  Warning: {text}")

    def table(self, headers: Sequence[str], rows: Sequence[Sequence[str]]) -> None:
        """Print a formatted ASCII table."""

        if not rows:
            return

        col_count = len(headers)
        widths = [len(h) for h in headers]
        for row in rows:
            for i in range(min(len(row), col_count)):
                widths[i] = max(widths[i], len(str(row[i])))

        def _pad(cells: Sequence[str]) -> str:
            parts: list[str] = []
            for i in range(col_count):
                cell = str(cells[i]) if i < len(cells) else ""
                parts.append(cell.ljust(widths[i]))
            return "  ".join(parts).rstrip()

        self._print(_pad(list(headers)))
        self._print("  ".join("-" * w for w in widths))
        for row in rows:
            self._print(_pad(list(row)))

    def ok(self, label: str) -> None:
        """Print a passing diagnostic check."""

        self._print(f"{self._paint('OK', '32')} {label}")

    def fail(self, label: str) -> None:
        """Print a failing diagnostic check."""

        self._print(f"{self._paint('FAIL', '31')} {label}")

    def _paint(self, text: str, code: str) -> str:
        if not self._color:
            return text
        return f"\033[{code}m{text}\033[0m"

    def _print(self, line: str) -> None:
        print(line, file=self.stream)


def create_renderer(*, no_color: bool = False) -> CLIRenderer:
    """Create a CLI renderer with the given settings."""

    return CLIRenderer(no_color=no_color)


__all__ = ["CLIRenderer", "create_renderer"]
