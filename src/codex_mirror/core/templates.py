"""
codex-mirror — clone templates.

Purpose
- Load the shipped template catalog (``templates.yaml``) and apply a template to a fresh clone
  home: provider config, default launch arguments, and the pinned runtime version.

Functional requirements
- Unknown template names are rejected with :class:`ValidationError`.
- Provider config files are only rewritten when a compatibility fix actually changes them.
- Runtime pins honour the per-template override/disable environment variables.
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Final

import yaml

from codex_mirror.domain.models import CloneTemplate
from codex_mirror.errors import SchemaError, ValidationError
from codex_mirror.utils.fs import atomic_write

logger = logging.getLogger(__name__)

_CONFIG_FILENAME: Final[str] = "config.toml"
_RETRY_SETTINGS: Final[tuple[tuple[str, int], ...]] = (
    ("request_max_retries", 4),
    ("stream_max_retries", 10),
    ("stream_idle_timeout_ms", 300000),
)


@dataclass(frozen=True, slots=True)
class ProviderSpec:
    id: str
    name: str
    base_url: str
    model: str
    profiles: tuple[str, ...]
    legacy_models: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class TemplateSpec:
    template: CloneTemplate
    label: str
    aliases: tuple[str, ...]
    default_codex_args: tuple[str, ...]
    tolerate_unknown_auth: bool
    notes: tuple[str, ...]
    recommended_codex_version: str | None = None
    pin_override_env: str | None = None
    pin_disable_env: str | None = None
    secret_env: str | None = None
    provider: ProviderSpec | None = None


@dataclass(frozen=True, slots=True)
class TemplateApplyResult:
    template: CloneTemplate
    default_codex_args: tuple[str, ...]
    notes: tuple[str, ...]


def _bundled_catalog_path() -> Path:
    return Path(__file__).resolve().with_name("templates.yaml")


@lru_cache(maxsize=1)
def load_template_catalog() -> Mapping[CloneTemplate, TemplateSpec]:
    """Parse the packaged catalog once; malformed entries raise :class:`SchemaError`."""

    raw = _bundled_catalog_path().read_text(encoding="utf-8")
    try:
        payload = yaml.safe_load(raw)
    except yaml.YAMLError as exc:
        raise SchemaError(f"Invalid YAML in template catalog: {exc}") from exc
    return parse_template_catalog(payload)


def parse_template_catalog(payload: object) -> dict[CloneTemplate, TemplateSpec]:
    if not isinstance(payload, Mapping) or not isinstance(payload.get("templates"), Mapping):
        raise SchemaError("template catalog must contain a 'templates' mapping")

    catalog: dict[CloneTemplate, TemplateSpec] = {}
    for key, entry in payload["templates"].items():
        try:
            template = CloneTemplate(key)
        except ValueError as exc:
            raise SchemaError(f"unknown template {key!r} in catalog") from exc
        if not isinstance(entry, Mapping):
            raise SchemaError(f"template {key!r} must be a mapping")
        catalog[template] = _parse_spec(template, entry)

    missing = [item.value for item in CloneTemplate if item not in catalog]
    if missing:
        raise SchemaError(f"template catalog is missing: {', '.join(missing)}")
    return catalog


def get_template_spec(template: CloneTemplate) -> TemplateSpec:
    return load_template_catalog()[template]


def parse_clone_template(value: str | CloneTemplate | None) -> CloneTemplate:
    if isinstance(value, CloneTemplate):
        return value
    if value is None or not value.strip():
        return CloneTemplate.OFFICIAL

    normalized = value.strip().lower()
    for spec in load_template_catalog().values():
        if normalized == spec.template.value or normalized in spec.aliases:
            return spec.template

    allowed = ", ".join(item.value for item in CloneTemplate)
    raise ValidationError(f"Unsupported template '{value}'. Use one of: {allowed}")


def template_label(template: CloneTemplate) -> str:
    return get_template_spec(template).label


def resolve_template_runtime_pin(
    template: CloneTemplate,
    environ: Mapping[str, str] | None = None,
) -> str | None:
    """Runtime version a template wants installed, or ``None`` for "whatever is on the system"."""

    spec = get_template_spec(template)
    if spec.recommended_codex_version is None:
        return None

    env = os.environ if environ is None else environ
    if spec.pin_disable_env and env.get(spec.pin_disable_env) == "1":
        return None
    if spec.pin_override_env:
        override = env.get(spec.pin_override_env, "").strip()
        if override:
            return override
    return spec.recommended_codex_version


def apply_clone_template_sync(template: CloneTemplate, codex_home_dir: Path) -> TemplateApplyResult:
    spec = get_template_spec(template)
    if spec.provider is not None:
        codex_home_dir.mkdir(parents=True, exist_ok=True)
        atomic_write(codex_home_dir / _CONFIG_FILENAME, render_provider_config(spec))
    return TemplateApplyResult(
        template=template,
        default_codex_args=spec.default_codex_args,
        notes=spec.notes,
    )


async def apply_clone_template(template: CloneTemplate, codex_home_dir: Path) -> TemplateApplyResult:
    return await asyncio.to_thread(apply_clone_template_sync, template, codex_home_dir)


def ensure_template_compatibility_sync(template: CloneTemplate, codex_home_dir: Path) -> bool:
    spec = get_template_spec(template)
    if spec.provider is None:
        return False

    path = codex_home_dir / _CONFIG_FILENAME
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return False

    updated = migrate_provider_config(raw, spec.provider)
    if updated == raw:
        return False
    atomic_write(path, updated)
    logger.info("migrated template provider config", extra={"path": str(path)})
    return True


async def ensure_template_compatibility(template: CloneTemplate, codex_home_dir: Path) -> bool:
    """Re-apply template fixes to an existing config; returns whether the file changed."""

    return await asyncio.to_thread(ensure_template_compatibility_sync, template, codex_home_dir)


def render_provider_config(spec: TemplateSpec) -> str:
    provider = spec.provider
    if provider is None:
        raise ValueError(f"template {spec.template.value!r} has no provider block")

    lines = [
        f"# Managed by codex-mirror (template: {spec.template.value})",
        "# You can edit this file anytime for custom models/profiles.",
        "",
        f"[model_providers.{provider.id}]",
        f'name = "{provider.name}"',
        f'base_url = "{provider.base_url}"',
    ]
    if spec.secret_env:
        lines.append(f'env_key = "{spec.secret_env}"')
    lines.append('wire_api = "chat"')
    lines.append("requires_openai_auth = false")
    lines.extend(f"{key} = {value}" for key, value in _RETRY_SETTINGS)
    for profile in provider.profiles:
        lines.extend(("", *_profile_block(profile, provider)))
    return "\n".join(lines) + "\n"


def migrate_provider_config(raw: str, provider: ProviderSpec) -> str:
    """Apply in-place compatibility fixes to a provider config written by older releases."""

    updated = re.sub(r'wire_api\s*=\s*"responses"', 'wire_api = "chat"', raw)

    if provider.legacy_models:
        legacy = "|".join(re.escape(model) for model in provider.legacy_models)
        updated = re.sub(rf'model\s*=\s*"(?:{legacy})"', f'model = "{provider.model}"', updated)

    if not all(key in updated for key, _ in _RETRY_SETTINGS):
        retry_lines = "\n".join(f"{key} = {value}" for key, value in _RETRY_SETTINGS)
        updated = re.sub(
            r"requires_openai_auth\s*=\s*(true|false)",
            lambda match: f"{match.group(0)}\n{retry_lines}",
            updated,
            count=1,
        )

    for profile in provider.profiles:
        if f"[profiles.{profile}]" in updated:
            continue
        suffix = "" if updated.endswith("\n") else "\n"
        updated = f"{updated}{suffix}\n" + "\n".join(_profile_block(profile, provider)) + "\n"

    return updated


def _profile_block(profile: str, provider: ProviderSpec) -> tuple[str, ...]:
    return (
        f"[profiles.{profile}]",
        f'model = "{provider.model}"',
        f'model_provider = "{provider.id}"',
    )


def _parse_spec(template: CloneTemplate, entry: Mapping[str, Any]) -> TemplateSpec:
    where = f"templates.{template.value}"
    provider_raw = entry.get("provider")
    provider: ProviderSpec | None = None
    if provider_raw is not None:
        if not isinstance(provider_raw, Mapping):
            raise SchemaError(f"{where}.provider must be a mapping")
        provider = ProviderSpec(
            id=_required_str(provider_raw, "id", f"{where}.provider"),
            name=_required_str(provider_raw, "name", f"{where}.provider"),
            base_url=_required_str(provider_raw, "base_url", f"{where}.provider"),
            model=_required_str(provider_raw, "model", f"{where}.provider"),
            profiles=_str_tuple(provider_raw.get("profiles"), f"{where}.provider.profiles"),
            legacy_models=_str_tuple(
                provider_raw.get("legacy_models"), f"{where}.provider.legacy_models"
            ),
        )

    return TemplateSpec(
        template=template,
        label=_required_str(entry, "label", where),
        aliases=tuple(alias.lower() for alias in _str_tuple(entry.get("aliases"), f"{where}.aliases")),
        default_codex_args=_str_tuple(entry.get("default_codex_args"), f"{where}.default_codex_args"),
        tolerate_unknown_auth=bool(entry.get("tolerate_unknown_auth", False)),
        notes=_str_tuple(entry.get("notes"), f"{where}.notes"),
        recommended_codex_version=_optional_str(entry, "recommended_codex_version", where),
        pin_override_env=_optional_str(entry, "pin_override_env", where),
        pin_disable_env=_optional_str(entry, "pin_disable_env", where),
        secret_env=_optional_str(entry, "secret_env", where),
        provider=provider,
    )


def _required_str(data: Mapping[str, Any], key: str, where: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value.strip():
        raise SchemaError(f"{where}.{key} must be a non-empty string")
    return value.strip()


def _optional_str(data: Mapping[str, Any], key: str, where: str) -> str | None:
    if data.get(key) is None:
        return None
    return _required_str(data, key, where)


def _str_tuple(value: object, where: str) -> tuple[str, ...]:
    if value is None:
        return ()
    if not isinstance(value, Sequence) or isinstance(value, (str, bytes)):
        raise SchemaError(f"{where} must be a list of strings")
    if not all(isinstance(item, str) for item in value):
        raise SchemaError(f"{where} must be a list of strings")
    return tuple(value)


__all__ = [
    "ProviderSpec",
    "TemplateApplyResult",
    "TemplateSpec",
    "apply_clone_template",
    "apply_clone_template_sync",
    "ensure_template_compatibility",
    "ensure_template_compatibility_sync",
    "get_template_spec",
    "load_template_catalog",
    "migrate_provider_config",
    "parse_clone_template",
    "parse_template_catalog",
    "render_provider_config",
    "resolve_template_runtime_pin",
    "template_label",
]
