"""
codex-mirror — runtime config loader.

Purpose
- Load effective settings from defaults, ``<global_root>/config.toml``, environment variables,
  and CLI overrides.

Functional requirements
- Precedence: CLI > env (``CODEX_MIRROR_<SECTION>_<KEY>`` plus the short ``CODEX_MIRROR_HOME``
  and ``CODEX_MIRROR_BIN_DIR``) > file > defaults.
- An explicitly passed config file must exist; the default one is optional.
- Unknown keys, coercion failures, and out-of-range values raise :class:`ConfigLoadError`.
- Path values are expanded (``~``, ``$VAR``) and normalized relative to the config file.
"""

from __future__ import annotations

import logging
import os
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Final, Literal, TypeVar

from codex_mirror.constants import (
    CLONES_DIRNAME,
    CONFIG_FILENAME,
    ENV_BIN_DIR,
    ENV_GLOBAL_ROOT,
    LOGS_DIRNAME,
    REGISTRY_FILENAME,
)

ENV_PREFIX: Final[str] = "CODEX_MIRROR_"

_BOOLEAN_TRUE: Final[frozenset[str]] = frozenset({"1", "true", "t", "yes", "y", "on"})
_BOOLEAN_FALSE: Final[frozenset[str]] = frozenset({"0", "false", "f", "no", "n", "off"})
_LOG_LEVELS: Final[frozenset[str]] = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})

T = TypeVar("T")

ValueKind = Literal["str", "int", "float", "bool", "path"]

DEFAULT_CONFIG: Final[Mapping[str, Mapping[str, object]]] = {
    "paths": {
        "global_root": "~/.codex-mirror",
        "bin_dir": "~/.local/bin",
    },
    "registry": {
        "lock_timeout_seconds": 10.0,
        "lock_poll_interval_seconds": 0.04,
    },
    "doctor": {
        "concurrency": 4,
        "auth_timeout_seconds": 5.0,
    },
    "observability": {
        "log_level": "INFO",
        "log_to_stderr": False,
    },
}

_KINDS: Final[Mapping[tuple[str, str], ValueKind]] = {
    ("paths", "global_root"): "path",
    ("paths", "bin_dir"): "path",
    ("registry", "lock_timeout_seconds"): "float",
    ("registry", "lock_poll_interval_seconds"): "float",
    ("doctor", "concurrency"): "int",
    ("doctor", "auth_timeout_seconds"): "float",
    ("observability", "log_level"): "str",
    ("observability", "log_to_stderr"): "bool",
}

# Short names kept for compatibility with existing shell setups.
_ENV_ALIASES: Final[Mapping[str, tuple[str, str]]] = {
    ENV_GLOBAL_ROOT: ("paths", "global_root"),
    ENV_BIN_DIR: ("paths", "bin_dir"),
}


class ConfigLoadError(ValueError):
    """Raised when config cannot be loaded or overrides cannot be coerced."""


@dataclass(frozen=True, slots=True)
class Settings:
    global_root: Path
    bin_dir: Path
    lock_timeout_seconds: float = 10.0
    lock_poll_interval_seconds: float = 0.04
    doctor_concurrency: int = 4
    auth_timeout_seconds: float = 5.0
    log_level: str = "INFO"
    log_to_stderr: bool = False
    config_path: Path | None = None

    @property
    def registry_path(self) -> Path:
        return self.global_root / REGISTRY_FILENAME

    @property
    def clones_dir(self) -> Path:
        return self.global_root / CLONES_DIRNAME

    @property
    def log_dir(self) -> Path:
        return self.global_root / LOGS_DIRNAME


def load_settings(
    config_path: str | Path | None = None,
    *,
    environ: Mapping[str, str] | None = None,
    cli_overrides: Mapping[str, object] | None = None,
) -> Settings:
    """Load effective settings with deterministic precedence: CLI > env > file > defaults."""

    env_map = dict(os.environ if environ is None else environ)
    cli_payload = _materialize_cli_overrides(cli_overrides or {})
    env_payload = _collect_env_overrides(env_map)

    explicit_path = config_path is not None
    if config_path is not None:
        resolved_path = Path(os.path.expandvars(str(config_path))).expanduser().resolve()
    else:
        resolved_path = _default_config_path(cli_payload, env_payload)

    file_payload = _load_toml_file(resolved_path, required=explicit_path)
    _validate_file_payload(file_payload, resolved_path)

    merged: dict[str, dict[str, object]] = {
        section: dict(values) for section, values in DEFAULT_CONFIG.items()
    }
    for layer in (file_payload, env_payload, cli_payload):
        for section, values in layer.items():
            merged[section].update(values)

    settings = _build_settings(
        merged,
        base_dir=resolved_path.parent,
        config_path=resolved_path if resolved_path.exists() else None,
    )
    logging.getLogger(__name__).debug(
        "loaded settings",
        extra={"config_path": str(settings.config_path), "global_root": str(settings.global_root)},
    )
    return settings


def _default_config_path(
    cli_payload: Mapping[str, Mapping[str, object]],
    env_payload: Mapping[str, Mapping[str, object]],
) -> Path:
    raw_root: object = DEFAULT_CONFIG["paths"]["global_root"]
    for layer in (env_payload, cli_payload):
        candidate = layer.get("paths", {}).get("global_root")
        if candidate is not None:
            raw_root = candidate
    root = _normalize_one_path(str(raw_root), Path.cwd())
    return root / CONFIG_FILENAME


def _load_toml_file(path: Path, *, required: bool) -> dict[str, Any]:
    if not path.exists():
        if required:
            raise ConfigLoadError(f"config file not found: {path}")
        return {}

    try:
        with path.open("rb") as handle:
            parsed = tomllib.load(handle)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigLoadError(f"invalid TOML in {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigLoadError(f"unable to read config file {path}: {exc}") from exc

    return parsed


def _validate_file_payload(payload: Mapping[str, object], path: Path) -> None:
    for section, values in payload.items():
        if section not in DEFAULT_CONFIG:
            raise ConfigLoadError(f"unknown config section [{section}] in {path}")
        if not isinstance(values, Mapping):
            raise ConfigLoadError(f"config section [{section}] must be a table in {path}")
        for key in values:
            if (section, key) not in _KINDS:
                raise ConfigLoadError(f"unknown config key {section}.{key} in {path}")


def _collect_env_overrides(environ: Mapping[str, str]) -> dict[str, dict[str, object]]:
    overrides: dict[str, dict[str, object]] = {}
    for alias in sorted(_ENV_ALIASES):
        raw = environ.get(alias)
        if raw is not None and raw.strip():
            section, key = _ENV_ALIASES[alias]
            overrides.setdefault(section, {})[key] = _coerce_env(raw, _KINDS[section, key], alias)

    for section, key in sorted(_KINDS):
        env_name = _env_name_for_path(section, key)
        raw = environ.get(env_name)
        if raw is None:
            continue
        overrides.setdefault(section, {})[key] = _coerce_env(raw, _KINDS[section, key], env_name)
    return overrides


def _coerce_env(raw: str, value_type: ValueKind, env_name: str) -> object:
    value = raw.strip()
    if value_type in {"str", "path"}:
        return value
    if value_type == "int":
        try:
            return int(value)
        except ValueError as exc:
            raise ConfigLoadError(f"{env_name} must be an integer") from exc
    if value_type == "float":
        try:
            return float(value)
        except ValueError as exc:
            raise ConfigLoadError(f"{env_name} must be a number") from exc

    lowered = value.lower()
    if lowered in _BOOLEAN_TRUE:
        return True
    if lowered in _BOOLEAN_FALSE:
        return False
    raise ConfigLoadError(f"{env_name} must be a boolean (true/false/1/0/yes/no/on/off)")


def _materialize_cli_overrides(cli_overrides: Mapping[str, object]) -> dict[str, dict[str, object]]:
    payload: dict[str, dict[str, object]] = {}
    for dotted in sorted(cli_overrides):
        value = cli_overrides[dotted]
        if value is None:
            continue
        section, _, key = dotted.partition(".")
        if (section, key) not in _KINDS:
            raise ConfigLoadError(f"invalid CLI override key {dotted!r}")
        payload.setdefault(section, {})[key] = value
    return payload


def _build_settings(
    merged: Mapping[str, Mapping[str, object]],
    *,
    base_dir: Path,
    config_path: Path | None,
) -> Settings:
    paths = merged["paths"]
    registry = merged["registry"]
    doctor = merged["doctor"]
    observability = merged["observability"]

    log_level = _expect(observability["log_level"], str, "observability.log_level").upper()
    if log_level not in _LOG_LEVELS:
        raise ConfigLoadError(
            f"observability.log_level must be one of: {', '.join(sorted(_LOG_LEVELS))}"
        )
    concurrency = _expect(doctor["concurrency"], int, "doctor.concurrency")
    if concurrency < 1:
        raise ConfigLoadError("doctor.concurrency must be >= 1")

    return Settings(
        global_root=_normalize_one_path(
            _expect(paths["global_root"], str, "paths.global_root"), base_dir
        ),
        bin_dir=_normalize_one_path(_expect(paths["bin_dir"], str, "paths.bin_dir"), base_dir),
        lock_timeout_seconds=_positive(registry["lock_timeout_seconds"], "registry.lock_timeout_seconds"),
        lock_poll_interval_seconds=_positive(
            registry["lock_poll_interval_seconds"], "registry.lock_poll_interval_seconds"
        ),
        doctor_concurrency=concurrency,
        auth_timeout_seconds=_positive(doctor["auth_timeout_seconds"], "doctor.auth_timeout_seconds"),
        log_level=log_level,
        log_to_stderr=_expect(observability["log_to_stderr"], bool, "observability.log_to_stderr"),
        config_path=config_path,
    )


def _expect(value: object, kind: type[T], name: str) -> T:
    if kind is int and isinstance(value, bool):
        raise ConfigLoadError(f"{name} must be {kind.__name__}")
    if not isinstance(value, kind):
        raise ConfigLoadError(f"{name} must be {kind.__name__}")
    return value


def _positive(value: object, name: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigLoadError(f"{name} must be a number")
    if value <= 0:
        raise ConfigLoadError(f"{name} must be > 0")
    return float(value)


def _normalize_one_path(raw: str, base_dir: Path) -> Path:
    expanded = os.path.expandvars(raw)
    candidate = Path(expanded).expanduser()
    if not candidate.is_absolute():
        candidate = base_dir / candidate
    return Path(os.path.normpath(str(candidate)))


def _env_name_for_path(section: str, key: str) -> str:
    return f"{ENV_PREFIX}{section.upper()}_{key.upper()}"


__all__ = [
    "ConfigLoadError",
    "DEFAULT_CONFIG",
    "ENV_PREFIX",
    "Settings",
    "load_settings",
]
