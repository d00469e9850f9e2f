"""Per-clone credential map stored as owner-only JSON next to the clone metadata.

Reads are tolerant: malformed files or entries are dropped, never fatal, so a damaged secrets
file cannot stop a clone from launching.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Mapping
from typing import Final

from codex_mirror.core.clone_paths import ClonePaths
from codex_mirror.core.templates import get_template_spec
from codex_mirror.domain.models import CloneTemplate
from codex_mirror.utils.fs import read_json, remove_path, write_json_atomic

logger = logging.getLogger(__name__)

SECRETS_FILE_MODE: Final[int] = 0o600

_SECRET_KEY_RE: Final[re.Pattern[str]] = re.compile(r"^[A-Z_][A-Z0-9_]*$")

CloneSecrets = dict[str, str]


def normalize_secrets(raw: object) -> CloneSecrets:
    """Keep only ``UPPER_CASE`` keys with non-empty string values (trimmed)."""

    if not isinstance(raw, Mapping):
        return {}
    normalized: CloneSecrets = {}
    for key, value in raw.items():
        if not isinstance(key, str) or _SECRET_KEY_RE.fullmatch(key) is None:
            continue
        if not isinstance(value, str):
            continue
        trimmed = value.strip()
        if trimmed:
            normalized[key] = trimmed
    return normalized


def write_clone_secrets_sync(paths: ClonePaths, secrets: Mapping[str, object]) -> None:
    normalized = normalize_secrets(secrets)
    if not normalized:
        remove_path(paths.secrets_path)
        return
    write_json_atomic(paths.secrets_path, normalized, mode=SECRETS_FILE_MODE)


async def write_clone_secrets(paths: ClonePaths, secrets: Mapping[str, object]) -> None:
    """Persist ``secrets``; an empty (after normalization) map deletes the file."""

    await asyncio.to_thread(write_clone_secrets_sync, paths, secrets)


def read_clone_secrets_sync(paths: ClonePaths) -> CloneSecrets:
    try:
        raw = read_json(paths.secrets_path)
    except FileNotFoundError:
        return {}
    except (OSError, ValueError) as exc:
        logger.warning(
            "ignoring unreadable clone secrets file",
            extra={"path": str(paths.secrets_path), "reason": exc.__class__.__name__},
        )
        return {}
    return normalize_secrets(raw)


async def read_clone_secrets(paths: ClonePaths) -> CloneSecrets:
    return await asyncio.to_thread(read_clone_secrets_sync, paths)


def build_template_secrets(template: CloneTemplate, api_key: str | None) -> CloneSecrets:
    """Secrets a template wants persisted for ``api_key`` (empty when there is none)."""

    key_name = template_secret_key(template)
    value = (api_key or "").strip()
    if key_name is None or not value:
        return {}
    return {key_name: value}


def template_secret_key(template: CloneTemplate) -> str | None:
    """Environment variable name the template reads its API key from, if any."""

    return get_template_spec(template).secret_env


__all__ = [
    "CloneSecrets",
    "SECRETS_FILE_MODE",
    "build_template_secrets",
    "normalize_secrets",
    "read_clone_secrets",
    "read_clone_secrets_sync",
    "template_secret_key",
    "write_clone_secrets",
    "write_clone_secrets_sync",
]
