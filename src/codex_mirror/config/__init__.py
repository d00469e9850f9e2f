"""Settings loading: defaults, ``config.toml``, ``CODEX_MIRROR_`` env vars, CLI overrides."""

from codex_mirror.config.loader import (
    DEFAULT_CONFIG,
    ENV_PREFIX,
    ConfigLoadError,
    Settings,
    load_settings,
)

__all__ = [
    "ConfigLoadError",
    "DEFAULT_CONFIG",
    "ENV_PREFIX",
    "Settings",
    "load_settings",
]
