"""Clone name validation and sanitization.

A clone name becomes a directory name and a wrapper file name, so it must be safe as a single
path component on every platform we may share a home directory with.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Final

from codex_mirror.constants import MAX_CLONE_NAME_LENGTH
from codex_mirror.errors import ValidationError

_CLONE_NAME_RE: Final[re.Pattern[str]] = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9._-]*$")
_WINDOWS_RESERVED_NAMES: Final[frozenset[str]] = frozenset(
    {"con", "prn", "aux", "nul"}
    | {f"com{index}" for index in range(1, 10)}
    | {f"lpt{index}" for index in range(1, 10)}
)


@dataclass(frozen=True, slots=True)
class CloneNameValidation:
    ok: bool
    normalized: str
    error: str | None = None


def validate_clone_name(raw: str) -> CloneNameValidation:
    normalized = raw.strip()
    if not normalized:
        return CloneNameValidation(False, normalized, "Clone name cannot be empty")

    if len(normalized) > MAX_CLONE_NAME_LENGTH:
        return CloneNameValidation(
            False,
            normalized,
            f"Clone name must be {MAX_CLONE_NAME_LENGTH} characters or fewer",
        )

    if "/" in normalized or "\\" in normalized:
        return CloneNameValidation(False, normalized, "Clone name cannot contain path separators")

    if ".." in normalized:
        return CloneNameValidation(False, normalized, "Clone name cannot include '..'")

    if _CLONE_NAME_RE.fullmatch(normalized) is None:
        return CloneNameValidation(
            False,
            normalized,
            "Use letters, numbers, dot, underscore, and hyphen; "
            "must start with letter or number",
        )

    if normalized.lower() in _WINDOWS_RESERVED_NAMES:
        return CloneNameValidation(False, normalized, "Clone name is reserved on Windows")

    return CloneNameValidation(True, normalized)


def assert_valid_clone_name(raw: str) -> str:
    """Return the normalized name or raise :class:`ValidationError`."""

    result = validate_clone_name(raw)
    if not result.ok:
        raise ValidationError(result.error or "Invalid clone name")
    return result.normalized


def sanitize_clone_name(raw: str) -> str:
    """Map arbitrary text onto a name that passes :func:`validate_clone_name`."""

    base = raw.strip()
    base = re.sub(r"[\\/]", "-", base)
    base = re.sub(r"\.\.+", ".", base)
    base = re.sub(r"[^a-zA-Z0-9._-]", "-", base)
    base = re.sub(r"^[^a-zA-Z0-9]+", "", base)
    base = re.sub(r"-+", "-", base)
    base = base[:MAX_CLONE_NAME_LENGTH]

    if not base:
        return "clone"
    if base.lower() in _WINDOWS_RESERVED_NAMES:
        return f"c-{base}"
    return base


__all__ = [
    "CloneNameValidation",
    "assert_valid_clone_name",
    "sanitize_clone_name",
    "validate_clone_name",
]
