"""Stable constants shared across codex-mirror components."""

from __future__ import annotations

from typing import Final

# Persisted document versions.
REGISTRY_SCHEMA_VERSION: Final[int] = 1

# Per-clone layout (relative to the clone root path).
CLONE_BASE_DIRNAME: Final[str] = ".codex-mirror"
CLONE_METADATA_FILENAME: Final[str] = "clone.json"
CLONE_SECRETS_FILENAME: Final[str] = "secrets.json"

# Global layout (relative to the global root).
REGISTRY_FILENAME: Final[str] = "registry.json"
CLONES_DIRNAME: Final[str] = "clones"
LOGS_DIRNAME: Final[str] = "logs"
CONFIG_FILENAME: Final[str] = "config.toml"

# Environment variable names.
ENV_GLOBAL_ROOT: Final[str] = "CODEX_MIRROR_HOME"
ENV_BIN_DIR: Final[str] = "CODEX_MIRROR_BIN_DIR"
ENV_CLI_OVERRIDE: Final[str] = "CODEX_MIRROR_CLI"
ENV_MINIMAX_VERSION_OVERRIDE: Final[str] = "CODEX_MIRROR_MINIMAX_CODEX_VERSION"
ENV_DISABLE_MINIMAX_PIN: Final[str] = "CODEX_MIRROR_DISABLE_MINIMAX_RUNTIME_PIN"

DEFAULT_CLI_COMMAND: Final[str] = "codex-mirror"
RUNTIME_COMMAND: Final[str] = "codex"

MAX_CLONE_NAME_LENGTH: Final[int] = 64

__all__ = [
    "CLONES_DIRNAME",
    "CLONE_BASE_DIRNAME",
    "CLONE_METADATA_FILENAME",
    "CLONE_SECRETS_FILENAME",
    "CONFIG_FILENAME",
    "DEFAULT_CLI_COMMAND",
    "ENV_BIN_DIR",
    "ENV_CLI_OVERRIDE",
    "ENV_DISABLE_MINIMAX_PIN",
    "ENV_GLOBAL_ROOT",
    "ENV_MINIMAX_VERSION_OVERRIDE",
    "LOGS_DIRNAME",
    "MAX_CLONE_NAME_LENGTH",
    "REGISTRY_FILENAME",
    "REGISTRY_SCHEMA_VERSION",
    "RUNTIME_COMMAND",
]
