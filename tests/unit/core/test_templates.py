"""Unit tests for the template catalog and provider config handling."""

from __future__ import annotations

from pathlib import Path

import pytest

from codex_mirror.core.templates import (
    apply_clone_template,
    ensure_template_compatibility,
    get_template_spec,
    load_template_catalog,
    parse_clone_template,
    parse_template_catalog,
    resolve_template_runtime_pin,
    template_label,
)
from codex_mirror.domain.models import CloneTemplate
from codex_mirror.errors import SchemaError, ValidationError

_LEGACY_CONFIG = """[model_providers.minimax]
wire_api = "responses"
requires_openai_auth = false

[profiles.minimax]
model = "MiniMax-M1-80k"
model_provider = "minimax"
"""


def test_catalog_covers_every_template() -> None:
    catalog = load_template_catalog()
    assert set(catalog) == set(CloneTemplate)


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (None, CloneTemplate.OFFICIAL),
        ("", CloneTemplate.OFFICIAL),
        ("official", CloneTemplate.OFFICIAL),
        ("codex", CloneTemplate.OFFICIAL),
        ("default", CloneTemplate.OFFICIAL),
        ("  MiniMax ", CloneTemplate.MINIMAX),
        (CloneTemplate.MINIMAX, CloneTemplate.MINIMAX),
    ],
)
def test_parse_clone_template(value: str | CloneTemplate | None, expected: CloneTemplate) -> None:
    assert parse_clone_template(value) is expected


def test_parse_clone_template_rejects_unknown() -> None:
    with pytest.raises(ValidationError, match="Unsupported template"):
        parse_clone_template("unknown")


def test_template_labels() -> None:
    assert template_label(CloneTemplate.OFFICIAL) == "Official Codex"
    assert template_label(CloneTemplate.MINIMAX) == "MiniMax"


def test_runtime_pin_resolution() -> None:
    recommended = get_template_spec(CloneTemplate.MINIMAX).recommended_codex_version
    assert recommended == "0.57.0"

    assert resolve_template_runtime_pin(CloneTemplate.OFFICIAL, {}) is None
    assert resolve_template_runtime_pin(CloneTemplate.MINIMAX, {}) == recommended
    assert (
        resolve_template_runtime_pin(
            CloneTemplate.MINIMAX, {"CODEX_MIRROR_MINIMAX_CODEX_VERSION": "0.55.0"}
        )
        == "0.55.0"
    )
    assert (
        resolve_template_runtime_pin(
            CloneTemplate.MINIMAX,
            {
                "CODEX_MIRROR_MINIMAX_CODEX_VERSION": "0.55.0",
                "CODEX_MIRROR_DISABLE_MINIMAX_RUNTIME_PIN": "1",
            },
        )
        is None
    )


@pytest.mark.asyncio
async def test_minimax_template_writes_provider_config(tmp_path: Path) -> None:
    codex_home = tmp_path / ".codex"

    applied = await apply_clone_template(CloneTemplate.MINIMAX, codex_home)

    assert applied.default_codex_args == ("--profile", "m21")
    config = (codex_home / "config.toml").read_text(encoding="utf-8")
    assert "[model_providers.minimax]" in config
    assert 'env_key = "MINIMAX_API_KEY"' in config
    assert 'wire_api = "chat"' in config
    assert "request_max_retries = 4" in config
    assert "stream_max_retries = 10" in config
    assert "stream_idle_timeout_ms = 300000" in config
    assert "[profiles.m21]" in config
    assert "[profiles.minimax]" in config
    assert 'model = "MiniMax-M2.5"' in config


@pytest.mark.asyncio
async def test_official_template_writes_nothing(tmp_path: Path) -> None:
    codex_home = tmp_path / ".codex"

    applied = await apply_clone_template(CloneTemplate.OFFICIAL, codex_home)

    assert applied.default_codex_args == ()
    assert not (codex_home / "config.toml").exists()


@pytest.mark.asyncio
async def test_compatibility_migrates_legacy_config(tmp_path: Path) -> None:
    codex_home = tmp_path / ".codex"
    codex_home.mkdir()
    config_path = codex_home / "config.toml"
    config_path.write_text(_LEGACY_CONFIG, encoding="utf-8")

    assert await ensure_template_compatibility(CloneTemplate.MINIMAX, codex_home) is True

    config = config_path.read_text(encoding="utf-8")
    assert 'wire_api = "chat"' in config
    assert "responses" not in config
    assert 'model = "MiniMax-M2.5"' in config
    assert "MiniMax-M1-80k" not in config
    assert "request_max_retries = 4" in config
    assert "[profiles.m21]" in config
    assert config.count("[profiles.minimax]") == 1


@pytest.mark.asyncio
async def test_compatibility_is_idempotent(tmp_path: Path) -> None:
    codex_home = tmp_path / ".codex"
    await apply_clone_template(CloneTemplate.MINIMAX, codex_home)
    before = (codex_home / "config.toml").read_text(encoding="utf-8")

    assert await ensure_template_compatibility(CloneTemplate.MINIMAX, codex_home) is False
    assert (codex_home / "config.toml").read_text(encoding="utf-8") == before


@pytest.mark.asyncio
async def test_compatibility_without_config_is_noop(tmp_path: Path) -> None:
    assert await ensure_template_compatibility(CloneTemplate.MINIMAX, tmp_path) is False
    assert await ensure_template_compatibility(CloneTemplate.OFFICIAL, tmp_path) is False


def test_catalog_parser_rejects_bad_shapes() -> None:
    with pytest.raises(SchemaError):
        parse_template_catalog([])
    with pytest.raises(SchemaError, match="unknown template"):
        parse_template_catalog({"templates": {"other": {"label": "x"}}})
    with pytest.raises(SchemaError, match="missing"):
        parse_template_catalog({"templates": {"official": {"label": "Official Codex"}}})
    with pytest.raises(SchemaError, match="label"):
        parse_template_catalog({"templates": {"official": {}, "minimax": {"label": "M"}}})
